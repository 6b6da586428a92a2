from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Hashable, NamedTuple, Optional


class TransientStoreError(Exception):
    """A backend call failed in a way that may succeed if retried."""


class StoreUnavailable(TransientStoreError):
    """The backend cannot be reached at all."""


class StoredValue(NamedTuple):
    payload: str | bytes
    # Opaque token handed back to ``swap``; only equality is meaningful.
    version: Hashable


class PasteStore(ABC):
    """
    Key-value storage strategy behind the paste repository.

    Values are serialized JSON, written as str and read back as str or
    bytes. Implementations must be safe to call from concurrent request
    threads.
    """

    name: str = "store"

    @abstractmethod
    def get(self, key: str) -> Optional[StoredValue]:
        """Return the stored value for ``key``, or ``None`` if absent."""

    @abstractmethod
    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        """
        Store ``payload`` under ``key``.

        With ``only_if_absent`` the write happens only when the key does not
        exist yet; the return value tells whether it was written.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``; deleting a missing key is a no-op."""

    @abstractmethod
    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        """
        Conditionally replace ``key`` (or delete it when ``payload`` is None).

        Succeeds only if the stored version still equals ``version``; returns
        False when the key changed or vanished since it was read.
        """

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None
