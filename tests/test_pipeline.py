import asyncio

from eth_abi import encode

from mempool_watch.classifier import ROUTER_FUNCTIONS, WEI_PER_ETH
from mempool_watch.dedupe import HashDeduper
from mempool_watch.exposure import ExposureEvaluator
from mempool_watch.pipeline import EVENT_LARGE_SWAP, EVENT_WATCHED, AlertPipeline
from mempool_watch.sink import AlertSink
from mempool_watch.storage import InMemoryAlertStore
from mempool_watch.types import RawTransaction, TokenPrice
from mempool_watch.watchlist import WatchRegistry

ROUTER = "0x7a250d5630b4cf539739df2c5dacb4c659f2488d"
USDC = "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48"
WETH = "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2"
WHALE = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"


def calldata(name: str, args: list) -> bytes:
    fn = next(f for f in ROUTER_FUNCTIONS.values() if f.name == name)
    return fn.selector + encode(list(fn.arg_types), args)


class DictTransactions:
    def __init__(self, txs: dict[str, RawTransaction] | None = None) -> None:
        self.txs = txs or {}

    def add(self, tx_hash: str, sender: str, to: str | None, value_wei: int = 0, data: bytes = b"") -> None:
        self.txs[tx_hash] = RawTransaction(tx_hash, sender, to, value_wei, data)

    async def get_transaction(self, tx_hash: str) -> RawTransaction | None:
        await asyncio.sleep(0)
        return self.txs.get(tx_hash)


class StubPrices:
    def __init__(self, native: float = 2000.0, tokens: dict | None = None) -> None:
        self.native = native
        self.tokens = tokens or {}

    async def native_usd_price(self) -> float:
        return self.native

    async def token_usd_price(self, token_address: str) -> TokenPrice | None:
        return self.tokens.get(token_address.lower())


class RecordingBroadcaster:
    def __init__(self) -> None:
        self.alerts = []

    async def broadcast(self, alert) -> int:
        self.alerts.append(alert)
        return 1


class FailingStore(InMemoryAlertStore):
    async def append_alert(self, draft):
        raise RuntimeError("disk full")


def build(txs: DictTransactions, prices: StubPrices | None = None, store=None, **kwargs):
    store = store or InMemoryAlertStore()
    broadcaster = RecordingBroadcaster()
    sink = AlertSink(store, broadcaster)
    pipeline = AlertPipeline(
        txs,
        ExposureEvaluator(prices or StubPrices()),
        WatchRegistry(store),
        sink,
        **kwargs,
    )
    return pipeline, store, broadcaster


def test_large_native_transfer_creates_one_alert() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 30 * WEI_PER_ETH)
    pipeline, store, broadcaster = build(txs)

    async def scenario():
        alert = await pipeline.handle("0x01")
        await pipeline.sink.drain()
        return alert

    alert = asyncio.run(scenario())
    assert alert is not None
    assert alert.event_type == EVENT_LARGE_SWAP
    assert alert.usd_value == 60000.0
    assert alert.score == 70
    assert alert.raw["from"] == WHALE
    assert [a.id for a in broadcaster.alerts] == [alert.id]


def test_small_transfer_to_unknown_contract_never_alerts() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, WEI_PER_ETH)
    pipeline, store, broadcaster = build(txs, prices=StubPrices(native=10_000_000.0))

    assert asyncio.run(pipeline.handle("0x01")) is None
    assert asyncio.run(store.count_existing("alerts")) == 0


def test_below_threshold_without_watchlist_is_dropped() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 2 * WEI_PER_ETH)
    pipeline, store, _ = build(txs)

    assert asyncio.run(pipeline.handle("0x01")) is None
    assert pipeline.metrics.over_floor == 1


def test_watched_sender_alerts_below_threshold() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE.upper().replace("0X", "0x"), OTHER, 2 * WEI_PER_ETH)
    pipeline, store, broadcaster = build(txs)

    async def scenario():
        await store.create_watchlist("whales", {"addresses": [WHALE]})
        alert = await pipeline.handle("0x01")
        await pipeline.sink.drain()
        return alert

    alert = asyncio.run(scenario())
    assert alert is not None
    assert alert.event_type == EVENT_WATCHED
    assert alert.raw["watched"] is True
    assert len(broadcaster.alerts) == 1


def test_watched_token_applies_to_token_in_swaps() -> None:
    txs = DictTransactions()
    txs.add(
        "0x01",
        OTHER,
        ROUTER,
        0,
        calldata("swapExactTokensForTokens", [1_000 * 10**6, 1, [USDC, WETH], OTHER, 9999999999]),
    )
    prices = StubPrices(tokens={USDC: TokenPrice(1.0, 6)})
    pipeline, store, _ = build(txs, prices=prices)

    async def scenario():
        await store.create_watchlist("stables", {"tokens": [USDC]})
        return await pipeline.handle("0x01")

    alert = asyncio.run(scenario())
    assert alert is not None
    assert alert.usd_value == 1000.0


def test_watched_token_ignored_for_native_transfers() -> None:
    txs = DictTransactions()
    txs.add("0x01", OTHER, USDC, 2 * WEI_PER_ETH)
    pipeline, store, _ = build(txs)

    async def scenario():
        await store.create_watchlist("stables", {"tokens": [USDC]})
        return await pipeline.handle("0x01")

    assert asyncio.run(scenario()) is None


def test_unpriced_first_hop_token_terminates_quietly() -> None:
    txs = DictTransactions()
    txs.add(
        "0x01",
        WHALE,
        ROUTER,
        0,
        calldata("swapExactTokensForETH", [10**30, 1, [USDC, WETH], WHALE, 9999999999]),
    )
    pipeline, store, _ = build(txs)

    assert asyncio.run(pipeline.handle("0x01")) is None
    assert asyncio.run(store.count_existing("alerts")) == 0
    assert pipeline.metrics.errors == 0


def test_missing_transaction_and_contract_creation_are_ignored() -> None:
    txs = DictTransactions()
    txs.add("0x02", WHALE, None, 100 * WEI_PER_ETH)
    pipeline, store, _ = build(txs)

    assert asyncio.run(pipeline.handle("0x01")) is None
    assert asyncio.run(pipeline.handle("0x02")) is None
    assert pipeline.metrics.not_found == 1


def test_exceptions_are_contained() -> None:
    class ExplodingTransactions:
        async def get_transaction(self, tx_hash: str):
            raise ValueError("bad payload")

    pipeline, _, _ = build(ExplodingTransactions())
    assert asyncio.run(pipeline.handle("0x01")) is None
    assert pipeline.metrics.errors == 1


def test_persistence_failure_drops_alert_without_fanout() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 100 * WEI_PER_ETH)
    pipeline, _, broadcaster = build(txs, store=FailingStore())

    async def scenario():
        alert = await pipeline.handle("0x01")
        await pipeline.sink.drain()
        return alert

    assert asyncio.run(scenario()) is None
    assert broadcaster.alerts == []
    assert pipeline.metrics.alerts_failed == 1


def test_repeated_hash_alerts_once() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 100 * WEI_PER_ETH)
    pipeline, store, _ = build(txs, deduper=HashDeduper(ttl_seconds=60))

    async def scenario():
        await asyncio.gather(pipeline.handle("0x01"), pipeline.handle("0x01"))

    asyncio.run(scenario())
    assert asyncio.run(store.count_existing("alerts")) == 1
    assert pipeline.metrics.duplicates == 1


def test_custom_threshold() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 2 * WEI_PER_ETH)
    pipeline, _, _ = build(txs, threshold_usd=1000.0)
    assert asyncio.run(pipeline.handle("0x01")) is not None


def test_concurrent_qualifying_runs_get_unique_increasing_ids() -> None:
    txs = DictTransactions()
    hashes = [f"0x{i:064x}" for i in range(60)]
    for h in hashes:
        txs.add(h, WHALE, OTHER, 100 * WEI_PER_ETH)
    pipeline, store, broadcaster = build(txs)

    async def scenario():
        alerts = await asyncio.gather(*(pipeline.handle(h) for h in hashes))
        await pipeline.sink.drain()
        return alerts

    alerts = asyncio.run(scenario())
    ids = [a.id for a in alerts]
    assert len(set(ids)) == len(hashes)
    assert sorted(ids) == list(range(1, len(hashes) + 1))
    assert len(broadcaster.alerts) == len(hashes)

    recent = asyncio.run(store.list_recent_alerts(100))
    assert [a.id for a in recent] == sorted(ids, reverse=True)


def test_watched_sender_below_usd_floor_is_dropped() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 2 * WEI_PER_ETH)
    txs.add(
        "0x02",
        WHALE,
        ROUTER,
        0,
        calldata("swapExactTokensForTokens", [50 * 10**6, 1, [USDC, WETH], WHALE, 9999999999]),
    )
    prices = StubPrices(native=10.0, tokens={USDC: TokenPrice(1.0, 6)})
    pipeline, store, broadcaster = build(txs, prices=prices)

    async def scenario():
        await store.create_watchlist("whales", {"addresses": [WHALE], "tokens": [USDC]})
        return await pipeline.handle("0x01"), await pipeline.handle("0x02")

    assert asyncio.run(scenario()) == (None, None)
    assert pipeline.metrics.classified == 2
    assert pipeline.metrics.over_floor == 0
    assert asyncio.run(store.count_existing("alerts")) == 0
    assert broadcaster.alerts == []


def test_non_finite_price_never_alerts_for_watched_sender() -> None:
    txs = DictTransactions()
    txs.add("0x01", WHALE, OTHER, 2 * WEI_PER_ETH)
    txs.add(
        "0x02",
        WHALE,
        ROUTER,
        0,
        calldata("swapExactTokensForTokens", [50 * 10**6, 1, [USDC, WETH], WHALE, 9999999999]),
    )
    prices = StubPrices(native=float("nan"), tokens={USDC: TokenPrice(float("inf"), 6)})
    pipeline, store, _ = build(txs, prices=prices)

    async def scenario():
        await store.create_watchlist("whales", {"addresses": [WHALE]})
        return await pipeline.handle("0x01"), await pipeline.handle("0x02")

    assert asyncio.run(scenario()) == (None, None)
    assert asyncio.run(store.count_existing("alerts")) == 0
