from __future__ import annotations

from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from pastebin.db import Base, create_db_engine, create_session_factory
from pastebin.storage import build_store
from pastebin.storage.base import PasteStore, StoreUnavailable, TransientStoreError
from pastebin.storage.failover import FailoverStore
from pastebin.storage.memory import MemoryStore
from pastebin.storage.redis_store import RedisStore
from pastebin.storage.sql import SqlStore


# ---------------------------------------------------------------------------
# Shared contract, exercised against the memory and SQL stores
# ---------------------------------------------------------------------------


@pytest.fixture
def sql_store() -> Iterator[SqlStore]:
    engine = create_db_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(engine)
    try:
        yield SqlStore(create_session_factory(engine))
    finally:
        engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def kv_store(request: pytest.FixtureRequest) -> PasteStore:
    if request.param == "memory":
        return MemoryStore()
    return request.getfixturevalue("sql_store")


def test_put_get_delete(kv_store: PasteStore) -> None:
    assert kv_store.get("a") is None
    assert kv_store.put("a", "one") is True
    assert kv_store.get("a").payload == "one"

    kv_store.delete("a")
    kv_store.delete("a")
    assert kv_store.get("a") is None


def test_put_overwrites_and_changes_version(kv_store: PasteStore) -> None:
    kv_store.put("a", "one")
    before = kv_store.get("a")
    kv_store.put("a", "two")
    after = kv_store.get("a")

    assert after.payload == "two"
    assert after.version != before.version


def test_put_only_if_absent(kv_store: PasteStore) -> None:
    assert kv_store.put("a", "one", only_if_absent=True) is True
    assert kv_store.put("a", "two", only_if_absent=True) is False
    assert kv_store.get("a").payload == "one"


def test_swap_succeeds_once_per_version(kv_store: PasteStore) -> None:
    kv_store.put("a", "one")
    version = kv_store.get("a").version

    assert kv_store.swap("a", version, "two") is True
    assert kv_store.swap("a", version, "three") is False
    assert kv_store.get("a").payload == "two"


def test_swap_to_none_deletes(kv_store: PasteStore) -> None:
    kv_store.put("a", "one")
    version = kv_store.get("a").version

    assert kv_store.swap("a", version, None) is True
    assert kv_store.get("a") is None
    assert kv_store.swap("a", version, None) is False


def test_swap_on_missing_key_fails(kv_store: PasteStore) -> None:
    assert kv_store.swap("missing", 1, "x") is False


def test_ping(kv_store: PasteStore) -> None:
    assert kv_store.ping() is True


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


@pytest.fixture
def redis_client() -> MagicMock:
    return MagicMock()


@pytest.fixture
def pipe(redis_client: MagicMock) -> MagicMock:
    pipe = MagicMock()
    redis_client.pipeline.return_value.__enter__.return_value = pipe
    return pipe


def test_redis_get_uses_prefixed_key_and_payload_as_version(redis_client: MagicMock) -> None:
    redis_client.get.return_value = b'{"content": "x"}'
    store = RedisStore(redis_client)

    value = store.get("abc")

    redis_client.get.assert_called_once_with("paste:abc")
    assert value.payload == value.version == b'{"content": "x"}'


def test_redis_get_missing(redis_client: MagicMock) -> None:
    redis_client.get.return_value = None
    assert RedisStore(redis_client).get("abc") is None


def test_redis_from_url_keeps_replies_as_bytes(monkeypatch: pytest.MonkeyPatch) -> None:
    from_url = MagicMock()
    monkeypatch.setattr(redis.Redis, "from_url", from_url)

    RedisStore.from_url("redis://localhost:6379/0", socket_timeout=1.5)

    from_url.assert_called_once_with(
        "redis://localhost:6379/0",
        decode_responses=False,
        socket_timeout=1.5,
        socket_connect_timeout=1.5,
    )


def test_redis_put_only_if_absent_uses_nx(redis_client: MagicMock) -> None:
    redis_client.set.return_value = None
    store = RedisStore(redis_client, key_prefix="p:")

    assert store.put("abc", "v", only_if_absent=True) is False
    redis_client.set.assert_called_once_with("p:abc", "v", nx=True)


def test_redis_swap_writes_inside_transaction(redis_client: MagicMock, pipe: MagicMock) -> None:
    pipe.get.return_value = "v1"
    store = RedisStore(redis_client)

    assert store.swap("abc", "v1", "v2") is True
    pipe.watch.assert_called_once_with("paste:abc")
    pipe.multi.assert_called_once()
    pipe.set.assert_called_once_with("paste:abc", "v2")
    pipe.execute.assert_called_once()


def test_redis_swap_deletes_when_payload_is_none(redis_client: MagicMock, pipe: MagicMock) -> None:
    pipe.get.return_value = "v1"

    assert RedisStore(redis_client).swap("abc", "v1", None) is True
    pipe.delete.assert_called_once_with("paste:abc")


def test_redis_swap_rejects_changed_value(redis_client: MagicMock, pipe: MagicMock) -> None:
    pipe.get.return_value = "v-other"

    assert RedisStore(redis_client).swap("abc", "v1", "v2") is False
    pipe.execute.assert_not_called()


def test_redis_swap_reports_watch_conflict(redis_client: MagicMock, pipe: MagicMock) -> None:
    pipe.get.return_value = "v1"
    pipe.execute.side_effect = WatchError("changed")

    assert RedisStore(redis_client).swap("abc", "v1", "v2") is False


def test_redis_connection_errors_mean_unavailable(redis_client: MagicMock) -> None:
    redis_client.get.side_effect = RedisConnectionError("refused")

    with pytest.raises(StoreUnavailable):
        RedisStore(redis_client).get("abc")


def test_redis_timeouts_are_transient(redis_client: MagicMock) -> None:
    redis_client.set.side_effect = RedisTimeoutError("slow")

    with pytest.raises(TransientStoreError) as excinfo:
        RedisStore(redis_client).put("abc", "v")
    assert not isinstance(excinfo.value, StoreUnavailable)


def test_redis_ping_failure_returns_false(redis_client: MagicMock) -> None:
    redis_client.ping.side_effect = RedisConnectionError("refused")
    assert RedisStore(redis_client).ping() is False


# ---------------------------------------------------------------------------
# Failover
# ---------------------------------------------------------------------------


class _UnreachableStore(MemoryStore):
    name = "remote"

    def __init__(self) -> None:
        super().__init__()
        self.reachable = False

    def ping(self) -> bool:
        return self.reachable

    def get(self, key):
        if not self.reachable:
            raise StoreUnavailable("down")
        return super().get(key)

    def put(self, key, payload, *, only_if_absent=False):
        if not self.reachable:
            raise StoreUnavailable("down")
        return super().put(key, payload, only_if_absent=only_if_absent)


class _FakeMonotonic:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_failover_uses_fallback_when_primary_down_at_start() -> None:
    primary, fallback = _UnreachableStore(), MemoryStore()
    store = FailoverStore(primary, fallback)

    assert store.primary_down
    assert store.name == "memory"
    store.put("a", "one")
    assert fallback.get("a").payload == "one"


def test_failover_switches_when_primary_fails_mid_call() -> None:
    primary, fallback = _UnreachableStore(), MemoryStore()
    primary.reachable = True
    store = FailoverStore(primary, fallback)
    assert store.name == "remote"

    primary.reachable = False
    assert store.put("a", "one") is True
    assert store.primary_down
    assert fallback.get("a").payload == "one"


def test_failover_returns_to_primary_after_probe() -> None:
    clock = _FakeMonotonic()
    primary, fallback = _UnreachableStore(), MemoryStore()
    store = FailoverStore(primary, fallback, retry_after=30, monotonic=clock)

    primary.reachable = True
    clock.now = 10
    store.put("a", "fallback")
    assert fallback.get("a") is not None

    clock.now = 31
    store.put("b", "primary")
    assert not store.primary_down
    assert primary.get("b").payload == "primary"


# ---------------------------------------------------------------------------
# Strategy selection
# ---------------------------------------------------------------------------


def test_build_store_memory() -> None:
    assert isinstance(build_store({"STORAGE_BACKEND": "memory"}), MemoryStore)


def test_build_store_redis_without_url_uses_memory() -> None:
    assert isinstance(build_store({"STORAGE_BACKEND": "redis", "REDIS_URL": None}), MemoryStore)


def test_build_store_sql() -> None:
    store = build_store(
        {"STORAGE_BACKEND": "sql", "SQLALCHEMY_DATABASE_URI": "sqlite+pysqlite:///:memory:"}
    )
    assert isinstance(store, SqlStore)


def test_build_store_redis_wraps_primary_with_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    primary = _UnreachableStore()
    monkeypatch.setattr(
        "pastebin.storage.redis_store.RedisStore.from_url",
        lambda url, **kwargs: primary,
    )

    store = build_store({"STORAGE_BACKEND": "redis", "REDIS_URL": "redis://nowhere:6379"})

    assert isinstance(store, FailoverStore)
    assert store.primary is primary
    assert store.primary_down


def test_build_store_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError):
        build_store({"STORAGE_BACKEND": "floppy"})
