from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Hashable, Optional, TypeVar

from pastebin.storage.base import PasteStore, StoredValue, StoreUnavailable


logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailoverStore(PasteStore):
    """
    Route calls to a primary store, falling back to a local one while the
    primary is unreachable.

    The primary is marked down when its startup ping fails or when a call
    raises ``StoreUnavailable``; it is probed again once ``retry_after``
    seconds have passed.
    """

    def __init__(
        self,
        primary: PasteStore,
        fallback: PasteStore,
        *,
        retry_after: float = 30.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.primary = primary
        self.fallback = fallback
        self._retry_after = retry_after
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._down_since: float | None = None

        if not primary.ping():
            self._mark_down("startup ping failed")

    @property
    def name(self) -> str:  # type: ignore[override]
        return self.fallback.name if self.primary_down else self.primary.name

    @property
    def primary_down(self) -> bool:
        with self._lock:
            return self._down_since is not None

    def _mark_down(self, reason: str) -> None:
        with self._lock:
            already_down = self._down_since is not None
            self._down_since = self._monotonic()
        if not already_down:
            logger.warning(
                "Primary store unavailable; using %s fallback (%s)",
                self.fallback.name,
                reason,
                extra={"event": "storage_failover", "storage": self.fallback.name},
            )

    def _should_probe(self) -> bool:
        with self._lock:
            if self._down_since is None:
                return False
            return self._monotonic() - self._down_since >= self._retry_after

    def _active(self) -> PasteStore:
        if self._should_probe():
            if self.primary.ping():
                with self._lock:
                    self._down_since = None
                logger.info(
                    "Primary store reachable again",
                    extra={"event": "storage_recovered", "storage": self.primary.name},
                )
            else:
                self._mark_down("probe failed")
        return self.fallback if self.primary_down else self.primary

    def _call(self, op: Callable[[PasteStore], T]) -> T:
        store = self._active()
        if store is self.fallback:
            return op(store)
        try:
            return op(store)
        except StoreUnavailable as exc:
            self._mark_down(str(exc))
            return op(self.fallback)

    def get(self, key: str) -> Optional[StoredValue]:
        return self._call(lambda store: store.get(key))

    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        return self._call(lambda store: store.put(key, payload, only_if_absent=only_if_absent))

    def delete(self, key: str) -> None:
        self._call(lambda store: store.delete(key))

    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        return self._call(lambda store: store.swap(key, version, payload))

    def ping(self) -> bool:
        return self.primary.ping()

    def close(self) -> None:
        self.primary.close()
        self.fallback.close()
