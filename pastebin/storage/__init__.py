from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pastebin.storage.base import (
    PasteStore,
    StoredValue,
    StoreUnavailable,
    TransientStoreError,
)
from pastebin.storage.failover import FailoverStore
from pastebin.storage.memory import MemoryStore


logger = logging.getLogger(__name__)

__all__ = [
    "FailoverStore",
    "MemoryStore",
    "PasteStore",
    "StoredValue",
    "StoreUnavailable",
    "TransientStoreError",
    "build_store",
]


def build_store(config: Mapping[str, Any]) -> PasteStore:
    """
    Select the storage strategy once, at process start.

    ``STORAGE_BACKEND`` picks ``redis`` (with a process-local fallback),
    ``sql`` or ``memory``.
    """

    backend = (config.get("STORAGE_BACKEND") or "redis").lower()

    if backend == "memory":
        store: PasteStore = MemoryStore()
    elif backend == "sql":
        from pastebin.db import create_db_engine, create_session_factory
        from pastebin.storage.sql import SqlStore

        engine = create_db_engine(
            config["SQLALCHEMY_DATABASE_URI"],
            echo=config.get("SQLALCHEMY_ECHO", False),
        )
        store = SqlStore(create_session_factory(engine))
    elif backend == "redis":
        redis_url = config.get("REDIS_URL")
        if not redis_url:
            logger.warning(
                "No REDIS_URL configured; using in-memory storage (not production-ready)",
                extra={"event": "storage_selected", "storage": "memory"},
            )
            return MemoryStore()

        from pastebin.storage.redis_store import RedisStore

        primary = RedisStore.from_url(
            redis_url,
            key_prefix=config.get("REDIS_KEY_PREFIX", "paste:"),
            socket_timeout=config.get("REDIS_SOCKET_TIMEOUT"),
        )
        store = FailoverStore(
            primary,
            MemoryStore(),
            retry_after=config.get("PRIMARY_RETRY_AFTER_SECONDS", 30.0),
        )
    else:
        raise ValueError(f"Unknown STORAGE_BACKEND {backend!r}. Use redis, sql or memory.")

    logger.info(
        "Storage backend selected",
        extra={"event": "storage_selected", "storage": store.name},
    )
    return store
