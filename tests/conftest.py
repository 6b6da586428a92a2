from __future__ import annotations

import threading
from collections.abc import Iterator
from typing import Hashable, Optional

import pytest
from flask import Flask
from flask.testing import FlaskClient

from pastebin import create_app
from pastebin.repositories.paste_repository import PasteRepository
from pastebin.services.paste_service import PasteService
from pastebin.storage.base import StoredValue, TransientStoreError
from pastebin.storage.memory import MemoryStore


T0 = 1_700_000_000_000


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FlakyStore(MemoryStore):
    """
    Memory store whose selected operations fail a fixed number of times
    before behaving normally.
    """

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        super().__init__()
        self.failures = dict(failures or {})
        self.calls: dict[str, int] = {}

    def _maybe_fail(self, op: str) -> None:
        self.calls[op] = self.calls.get(op, 0) + 1
        remaining = self.failures.get(op, 0)
        if remaining:
            self.failures[op] = remaining - 1
            raise TransientStoreError(f"{op} failed")

    def get(self, key: str) -> Optional[StoredValue]:
        self._maybe_fail("get")
        return super().get(key)

    def put(self, key: str, payload: str, *, only_if_absent: bool = False) -> bool:
        self._maybe_fail("put")
        return super().put(key, payload, only_if_absent=only_if_absent)

    def delete(self, key: str) -> None:
        self._maybe_fail("delete")
        super().delete(key)

    def swap(self, key: str, version: Hashable, payload: Optional[str]) -> bool:
        self._maybe_fail("swap")
        return super().swap(key, version, payload)


class RendezvousStore(MemoryStore):
    """
    Memory store that, once armed, holds the first ``parties`` reads at a
    barrier so that concurrent callers all observe the same version.
    """

    def __init__(self, parties: int = 2) -> None:
        super().__init__()
        self._barrier = threading.Barrier(parties, timeout=5)
        self._parties = parties
        self._held = 0
        self._armed = False
        self._count_lock = threading.Lock()

    def arm(self) -> None:
        self._armed = True

    def get(self, key: str) -> Optional[StoredValue]:
        value = super().get(key)
        with self._count_lock:
            hold = self._armed and self._held < self._parties
            if hold:
                self._held += 1
        if hold:
            self._barrier.wait()
        return value


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def repository(store: MemoryStore) -> PasteRepository:
    """Repository without retry waits so failure paths stay fast."""
    return PasteRepository(store, attempts=3, backoff_seconds=0)


@pytest.fixture
def paste_service(repository: PasteRepository) -> PasteService:
    return PasteService(repository=repository, clock=lambda: T0)


@pytest.fixture
def app(store: MemoryStore) -> Iterator[Flask]:
    app = create_app("testing", store=store)
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    return app.test_client()
