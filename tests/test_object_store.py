"""Object store backends, retry/fallback wrapper and ledger documents."""

import json

import httpx
import pytest

from conftest import ADMIN, run
from pariledger.engine.core import EngineConfig, MarketEngine
from pariledger.engine.sweeper import run_refund_sweeper
from pariledger.errors import StorageError, StorageUnavailable
from pariledger.storage.ledger_store import MARKETS_KEY, LedgerStore
from pariledger.storage.object_store import (
    FileObjectStore,
    HttpObjectStore,
    MemoryObjectStore,
    ResilientObjectStore,
)


class FlakyStore:
    """Fails the first `failures` calls, then behaves like memory."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0
        self.inner = MemoryObjectStore()

    async def _maybe_fail(self) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise StorageError("boom")

    async def get(self, key):
        await self._maybe_fail()
        return await self.inner.get(key)

    async def put(self, key, doc):
        await self._maybe_fail()
        await self.inner.put(key, doc)


def test_memory_store_copies_documents():
    store = MemoryObjectStore()
    doc = {"a": [1]}
    run(store.put("k", doc))
    doc["a"].append(2)
    assert run(store.get("k")) == {"a": [1]}
    assert run(store.get("missing")) is None


def test_file_store_round_trip(tmp_path):
    store = FileObjectStore(tmp_path / "data")
    assert run(store.get("markets.json")) is None
    run(store.put("markets.json", {"markets": []}))
    assert json.loads((tmp_path / "data" / "markets.json").read_text()) == {"markets": []}
    assert run(store.get("markets.json")) == {"markets": []}


def test_file_store_corrupt_document_raises(tmp_path):
    (tmp_path / "bad.json").write_text("{not json")
    with pytest.raises(StorageError):
        run(FileObjectStore(tmp_path).get("bad.json"))


def test_resilient_retries_then_succeeds():
    primary = FlakyStore(failures=2)
    store = ResilientObjectStore(primary, max_retries=3, base_delay_sec=0)
    run(store.put("k", {"v": 1}))
    assert primary.calls == 3
    assert run(store.get("k")) == {"v": 1}


def test_resilient_falls_back_to_cache():
    primary = FlakyStore(failures=0)
    cache = MemoryObjectStore()
    store = ResilientObjectStore(primary, cache, max_retries=1, base_delay_sec=0)
    run(store.put("k", {"v": 1}))
    assert run(cache.get("k")) == {"v": 1}

    primary.failures = 10_000
    assert run(store.get("k")) == {"v": 1}
    run(store.put("k", {"v": 2}))
    assert run(cache.get("k")) == {"v": 2}


def test_resilient_uncached_read_is_unavailable():
    store = ResilientObjectStore(FlakyStore(failures=10_000), max_retries=0, base_delay_sec=0)
    with pytest.raises(StorageUnavailable):
        run(store.get("never-written"))


def test_http_store_get_put():
    docs = {}

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["Authorization"] == "Bearer secret"
        key = request.url.path
        if request.method == "PUT":
            docs[key] = json.loads(request.content)
            return httpx.Response(200)
        if key not in docs:
            return httpx.Response(404)
        return httpx.Response(200, json=docs[key])

    store = HttpObjectStore(
        "https://storage.test/object", "bucket", token="secret", transport=httpx.MockTransport(handler)
    )
    assert run(store.get("markets.json")) is None
    run(store.put("markets.json", {"markets": []}))
    assert docs == {"/object/bucket/markets.json": {"markets": []}}
    assert run(store.get("markets.json")) == {"markets": []}


def test_http_store_server_error_raises():
    store = HttpObjectStore(
        "https://storage.test", "bucket", transport=httpx.MockTransport(lambda r: httpx.Response(500))
    )
    with pytest.raises(StorageError):
        run(store.get("markets.json"))


def test_ledger_store_initializes_and_versions(store, object_store):
    assert run(store.load_markets()) == []
    assert MARKETS_KEY in object_store.keys()

    async def edit():
        async with store.editing_markets() as session:
            session.mark_dirty()
        async with store.editing_markets() as session:
            return session.version

    assert run(edit()) == 1


def test_ledger_store_storage_failure_is_unavailable():
    store = LedgerStore(FlakyStore(failures=10_000))
    with pytest.raises(StorageUnavailable):
        run(store.load_markets())


def test_resilient_write_during_outage_survives_recovery():
    primary = FlakyStore(failures=0)
    store = ResilientObjectStore(primary, max_retries=0, base_delay_sec=0)
    run(store.put("k", {"v": 1}))

    primary.failures = 10_000
    run(store.put("k", {"v": 2}))
    assert store.pending == {"k"}
    assert run(store.get("k")) == {"v": 2}

    primary.failures = 0
    assert run(store.get("k")) == {"v": 2}
    assert run(primary.inner.get("k")) == {"v": 2}
    assert store.pending == set()


def test_resilient_flush_pushes_pending_keys():
    primary = FlakyStore(failures=10_000)
    store = ResilientObjectStore(primary, max_retries=0, base_delay_sec=0)
    run(store.put("a", {"v": 1}))
    run(store.put("b", {"v": 2}))
    assert run(store.flush()) == 2

    primary.failures = 0
    assert run(store.flush()) == 0
    assert run(primary.inner.get("a")) == {"v": 1}
    assert run(primary.inner.get("b")) == {"v": 2}


def test_bet_placed_during_outage_is_kept(clock):
    primary = FlakyStore(failures=0)
    engine = MarketEngine(
        LedgerStore(ResilientObjectStore(primary, max_retries=0, base_delay_sec=0)),
        EngineConfig(admin_wallet=ADMIN),
        clock=clock,
    )
    market_id = run(engine.create_market(ADMIN, "Will it hold?")).data["market_id"]

    primary.failures = 10_000
    assert run(engine.place_bet(market_id, "alice", 10.0, "yes", "sig-1")).success

    primary.failures = 0
    assert len(run(engine.get_market(market_id)).bets) == 1
    assert run(engine.get_balance("alice")).balance == pytest.approx(-10.0)
    stored = run(primary.inner.get(MARKETS_KEY))
    assert len(stored["markets"][0]["bets"]) == 1


def test_sweeper_flushes_pending_writes(clock):
    primary = FlakyStore(failures=0)
    store = LedgerStore(ResilientObjectStore(primary, max_retries=0, base_delay_sec=0))
    engine = MarketEngine(store, EngineConfig(admin_wallet=ADMIN), clock=clock)
    run(engine.create_market(ADMIN, "First?"))

    primary.failures = 10_000
    run(engine.create_market(ADMIN, "Second?"))
    assert MARKETS_KEY in store.object_store.pending

    primary.failures = 0
    run(run_refund_sweeper(engine, interval_sec=0, max_sweeps=1))
    assert store.object_store.pending == set()
    assert len(run(primary.inner.get(MARKETS_KEY))["markets"]) == 2
