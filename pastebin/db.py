from __future__ import annotations

from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


Base = declarative_base()


def create_db_engine(database_uri: str, *, echo: bool = False) -> Engine:
    """
    Build the SQLAlchemy engine for the SQL paste store.

    In-memory SQLite URLs share one connection so every session sees the
    same database.
    """
    if not database_uri:
        raise RuntimeError("SQLALCHEMY_DATABASE_URI is not configured.")

    kwargs: dict[str, Any] = {"echo": echo, "future": True}
    if database_uri.startswith("sqlite") and ":memory:" in database_uri:
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}

    return create_engine(database_uri, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
