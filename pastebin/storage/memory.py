from __future__ import annotations

import itertools
import threading
from typing import Hashable, Optional

from pastebin.storage.base import PasteStore, StoredValue


class MemoryStore(PasteStore):
    """
    Process-local store used in development, tests and as the fallback when
    the remote store is unreachable.

    Payloads are kept as immutable strings, so nothing a caller holds can
    alias the stored state.
    """

    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, StoredValue] = {}
        self._lock = threading.Lock()
        self._versions = itertools.count(1)

    def get(self, key: str) -> Optional[StoredValue]:
        with self._lock:
            return self._data.get(key)

    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        with self._lock:
            if only_if_absent and key in self._data:
                return False
            self._data[key] = StoredValue(payload, next(self._versions))
            return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        with self._lock:
            current = self._data.get(key)
            if current is None or current.version != version:
                return False
            if payload is None:
                del self._data[key]
            else:
                self._data[key] = StoredValue(payload, next(self._versions))
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._data)
