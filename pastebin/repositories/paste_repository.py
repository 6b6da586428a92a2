from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Hashable, Optional, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from pastebin.domain.models import CorruptRecordError, PasteRecord
from pastebin.observability import get_correlation_id
from pastebin.storage.base import PasteStore, TransientStoreError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class StorageError(Exception):
    """Raised when a write to the backing store fails after all retries."""


class PasteRepository:
    """
    Repository for paste records.

    All access to paste storage goes through this class. It owns the JSON
    codec, retries transient backend failures with a linearly growing wait,
    and repairs corrupt payloads by deleting them.
    """

    def __init__(
        self,
        store: PasteStore,
        *,
        attempts: int = 3,
        backoff_seconds: float = 0.1,
    ) -> None:
        self.store = store
        self._attempts = max(1, attempts)
        self._backoff = max(0.0, backoff_seconds)

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self._attempts),
            wait=wait_incrementing(start=self._backoff, increment=self._backoff),
            retry=retry_if_exception_type(TransientStoreError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

    def _call(self, op: Callable[..., T], *args, **kwargs) -> T:
        return self._retrying()(op, *args, **kwargs)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------
    def save(
        self,
        paste_id: str,
        record: PasteRecord,
        *,
        only_if_absent: bool = False,
    ) -> bool:
        """
        Serialize and store a record, overwriting any prior value.

        With ``only_if_absent`` nothing is written when the id is taken and
        False is returned. Raises ``StorageError`` once retries are exhausted.
        """
        try:
            return self._call(
                self.store.put,
                paste_id,
                record.to_payload(),
                only_if_absent=only_if_absent,
            )
        except RetryError as exc:
            self._log_exhausted("save", paste_id, exc)
            raise StorageError("Failed to save paste after multiple attempts.") from exc

    def replace(
        self,
        paste_id: str,
        version: Hashable,
        record: Optional[PasteRecord],
    ) -> bool:
        """
        Conditionally overwrite (or, with ``record=None``, delete) a paste.

        Returns False when the stored version no longer matches ``version``.
        """
        payload = None if record is None else record.to_payload()
        try:
            return self._call(self.store.swap, paste_id, version, payload)
        except RetryError as exc:
            self._log_exhausted("replace", paste_id, exc)
            raise StorageError("Failed to update paste after multiple attempts.") from exc

    def delete(self, paste_id: str) -> bool:
        """Remove a paste. Missing ids are a no-op; returns False only on failure."""
        try:
            self._call(self.store.delete, paste_id)
        except RetryError as exc:
            self._log_exhausted("delete", paste_id, exc)
            return False
        return True

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------
    def load(self, paste_id: str) -> Optional[PasteRecord]:
        loaded = self.load_versioned(paste_id)
        return None if loaded is None else loaded[0]

    def load_versioned(self, paste_id: str) -> Optional[tuple[PasteRecord, Hashable]]:
        """
        Return the record and its version token, or ``None``.

        A read that keeps failing is reported as absent. A payload that does
        not parse is deleted and likewise reported as absent.
        """
        try:
            stored = self._call(self.store.get, paste_id)
        except RetryError as exc:
            self._log_exhausted("load", paste_id, exc)
            return None

        if stored is None:
            return None

        try:
            record = PasteRecord.from_payload(stored.payload)
        except CorruptRecordError:
            logger.error(
                "Corrupt paste payload; deleting",
                extra={
                    "event": "paste_corrupt",
                    "paste_id": paste_id,
                    "correlation_id": get_correlation_id(),
                },
            )
            self.delete(paste_id)
            return None

        return record, stored.version

    def exists(self, paste_id: str) -> bool:
        return self.load(paste_id) is not None

    def _log_exhausted(self, operation: str, paste_id: str, exc: RetryError) -> None:
        cause = exc.last_attempt.exception()
        logger.error(
            "Storage %s failed after %d attempts",
            operation,
            self._attempts,
            extra={
                "event": "storage_retries_exhausted",
                "paste_id": paste_id,
                "storage": self.store.name,
                "error_type": type(cause).__name__ if cause else None,
                "correlation_id": get_correlation_id(),
            },
        )
