from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Hashable, Iterator, Optional

import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, WatchError

from pastebin.storage.base import (
    PasteStore,
    StoredValue,
    StoreUnavailable,
    TransientStoreError,
)


logger = logging.getLogger(__name__)


class RedisStore(PasteStore):
    """
    Paste storage on a remote Redis server.

    Conditional writes use optimistic transactions (``WATCH``/``MULTI``/
    ``EXEC``); the stored payload itself serves as the version token.
    Replies are kept as raw bytes so that undecodable data reaches the
    record codec and is handled as corruption.
    """

    name = "redis"

    def __init__(self, client: "redis.Redis", *, key_prefix: str = "paste:") -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        *,
        key_prefix: str = "paste:",
        socket_timeout: float | None = None,
    ) -> "RedisStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=False,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Optional[StoredValue]:
        with _translate_errors():
            payload = self._client.get(self._key(key))
        if payload is None:
            return None
        return StoredValue(payload, payload)

    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        with _translate_errors():
            written = self._client.set(self._key(key), payload, nx=only_if_absent)
        return bool(written)

    def delete(self, key: str) -> None:
        with _translate_errors():
            self._client.delete(self._key(key))

    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        name = self._key(key)
        with _translate_errors():
            with self._client.pipeline() as pipe:
                try:
                    pipe.watch(name)
                    if pipe.get(name) != version:
                        return False
                    pipe.multi()
                    if payload is None:
                        pipe.delete(name)
                    else:
                        pipe.set(name, payload)
                    pipe.execute()
                except WatchError:
                    return False
        return True

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError as exc:
            logger.warning(
                "Redis ping failed",
                extra={
                    "event": "storage_ping_failed",
                    "storage": self.name,
                    "error_type": type(exc).__name__,
                },
            )
            return False

    def close(self) -> None:
        self._client.close()


@contextmanager
def _translate_errors() -> Iterator[None]:
    """Map redis-py exceptions onto the storage error hierarchy."""
    try:
        yield
    except RedisConnectionError as exc:
        raise StoreUnavailable(str(exc)) from exc
    except RedisError as exc:
        raise TransientStoreError(str(exc)) from exc
