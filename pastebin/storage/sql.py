from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime
from typing import Hashable, Iterator, Optional

from sqlalchemy import DateTime, Integer, String, Text, delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import Mapped, Session, mapped_column

from pastebin.db import Base
from pastebin.storage.base import (
    PasteStore,
    StoredValue,
    StoreUnavailable,
    TransientStoreError,
)


logger = logging.getLogger(__name__)


class PasteEntry(Base):
    """One serialized paste per row; ``version`` arbitrates concurrent writers."""

    __tablename__ = "pastes"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class SqlStore(PasteStore):
    """
    Paste storage in a relational database through SQLAlchemy.

    Owns session lifecycle: one session per call, committed on success,
    rolled back on exception and always closed.
    """

    name = "sql"

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except OperationalError as exc:
            session.rollback()
            if exc.connection_invalidated:
                raise StoreUnavailable(str(exc)) from exc
            raise TransientStoreError(str(exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get(self, key: str) -> Optional[StoredValue]:
        with self._session() as session:
            row = session.execute(
                select(PasteEntry.payload, PasteEntry.version).where(PasteEntry.id == key)
            ).one_or_none()
        if row is None:
            return None
        return StoredValue(row.payload, row.version)

    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        try:
            with self._session() as session:
                entry = None if only_if_absent else session.get(PasteEntry, key)
                if entry is None:
                    session.add(PasteEntry(id=key, payload=payload, version=1))
                else:
                    entry.payload = payload
                    entry.version = entry.version + 1
        except IntegrityError as exc:
            if only_if_absent:
                return False
            # Lost a race with a concurrent insert of the same key.
            raise TransientStoreError(str(exc)) from exc
        return True

    def delete(self, key: str) -> None:
        with self._session() as session:
            session.execute(delete(PasteEntry).where(PasteEntry.id == key))

    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        condition = (PasteEntry.id == key) & (PasteEntry.version == version)
        with self._session() as session:
            if payload is None:
                result = session.execute(delete(PasteEntry).where(condition))
            else:
                result = session.execute(
                    update(PasteEntry)
                    .where(condition)
                    .values(payload=payload, version=PasteEntry.version + 1)
                )
            return result.rowcount == 1

    def ping(self) -> bool:
        try:
            with self._session() as session:
                session.execute(select(1))
        except (TransientStoreError, DBAPIError) as exc:
            logger.warning(
                "Database ping failed",
                extra={
                    "event": "storage_ping_failed",
                    "storage": self.name,
                    "error_type": type(exc).__name__,
                },
            )
            return False
        return True
