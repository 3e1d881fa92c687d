from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from .classifier import eth_to_wei
from .config import Settings
from .dedupe import HashDeduper
from .exposure import ExposureEvaluator
from .feed import FeedConnectionManager
from .live import LiveBroadcaster
from .notifiers import Notifier, build_notifiers
from .pipeline import EVENT_LARGE_SWAP, AlertPipeline, TransactionSource
from .pricing import CoinGeckoPriceSource, MoralisPriceSource, PriceCache, PriceResolver
from .rpc import JsonRpcTransactionSource
from .sink import AlertSink
from .storage import AlertStore, open_store
from .types import Alert, AlertDraft, RawTransaction, WatchEntry
from .watchlist import WatchRegistry

logger = logging.getLogger(__name__)

MAX_WATCHLIST_NAME_LENGTH = 50
SYNTHETIC_SCORE = 85
SYNTHETIC_USD_VALUE = 120000.0


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Background task %s failed", task.get_name(), exc_info=exc)


class _NoTransactions:
    async def get_transaction(self, tx_hash: str) -> RawTransaction | None:
        return None


class AlertService:
    def __init__(
        self,
        settings: Settings,
        *,
        store: AlertStore | None = None,
        transactions: TransactionSource | None = None,
        notifiers: list[Notifier] | None = None,
        price_resolver: PriceResolver | None = None,
    ) -> None:
        self.settings = settings
        self.store = store if store is not None else open_store(settings.database_path)
        self._closeables: list[Any] = []

        if transactions is None:
            if settings.rpc_http_url:
                rpc = JsonRpcTransactionSource(settings.rpc_http_url)
                self._closeables.append(rpc)
                transactions = rpc
            else:
                transactions = _NoTransactions()

        if price_resolver is None:
            price_resolver = self._build_price_resolver(settings)
        self.prices = price_resolver

        self.broadcaster = LiveBroadcaster(self.store, settings.live_backlog_size)
        self.sink = AlertSink(
            self.store,
            self.broadcaster,
            notifiers if notifiers is not None else build_notifiers(settings),
        )
        self.watchlists = WatchRegistry(self.store, settings.watchlist_refresh_seconds)
        self.pipeline = AlertPipeline(
            transactions,
            ExposureEvaluator(self.prices),
            self.watchlists,
            self.sink,
            chain=settings.chain,
            threshold_usd=settings.alert_threshold_usd,
            min_exposure_usd=settings.min_exposure_usd,
            native_floor_wei=eth_to_wei(settings.native_transfer_floor_eth),
            deduper=HashDeduper(settings.dedup_ttl_seconds),
        )
        self.feed = FeedConnectionManager(
            settings.feed_ws_url,
            self.pipeline.handle,
            max_attempts=settings.feed_max_reconnect_attempts,
            delay_unit=settings.feed_reconnect_delay_seconds,
        )

    def _build_price_resolver(self, settings: Settings) -> PriceResolver:
        native = CoinGeckoPriceSource(settings.coingecko_api_base)
        self._closeables.append(native)
        token = None
        if settings.moralis_api_key:
            token = MoralisPriceSource(settings.moralis_api_key, settings.moralis_chain)
            self._closeables.append(token)
        else:
            logger.info("MORALIS_API_KEY not set, token swaps cannot be valued")
        return PriceResolver(
            PriceCache(),
            native_source=native,
            token_source=token,
            native_ttl_seconds=settings.native_price_ttl_seconds,
            token_ttl_seconds=settings.token_price_ttl_seconds,
            native_fallback_usd=settings.native_price_fallback_usd,
        )

    async def recent_alerts(self, limit: int = 100) -> list[Alert]:
        return await self.store.list_recent_alerts(limit)

    async def register_watchlist(
        self, name: str = "default", config: dict[str, Any] | None = None
    ) -> WatchEntry:
        if not isinstance(name, str) or len(name) > MAX_WATCHLIST_NAME_LENGTH:
            raise ValueError("Invalid watchlist name")
        if config is not None and not isinstance(config, dict):
            raise ValueError("Watchlist config must be an object")
        entry = await self.store.create_watchlist(name, config or {})
        self.watchlists.invalidate()
        logger.info("Watchlist %d (%s) registered", entry.id, entry.name)
        return entry

    async def inject_synthetic_alert(self) -> Alert | None:
        draft = AlertDraft(
            chain=self.settings.chain,
            event_type=EVENT_LARGE_SWAP,
            score=SYNTHETIC_SCORE,
            usd_value=SYNTHETIC_USD_VALUE,
            tx_hash=f"0xFAKE{random.randrange(1_000_000)}",
            raw={},
        )
        return await self.sink.emit(draft, summary="Synthetic alert for demonstration")

    async def run(self) -> None:
        tasks = [asyncio.create_task(self._health_loop(), name="health-log")]
        if self.settings.live_port:
            tasks.append(
                asyncio.create_task(
                    self.broadcaster.serve(self.settings.live_host, self.settings.live_port),
                    name="live-server",
                )
            )
        for task in tasks:
            task.add_done_callback(_log_task_failure)
        try:
            await self.feed.run()
            # Feed disabled or given up; keep serving live subscribers and injected alerts.
            await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            self.feed.stop()
            self.broadcaster.stop()
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.close()

    async def close(self) -> None:
        await self.feed.drain()
        await self.sink.close()
        for closeable in self._closeables:
            await closeable.close()
        self.prices.cache.clear()
        await self.store.close()

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.health_log_interval_seconds)
            metrics = self.pipeline.metrics
            logger.info(
                (
                    "health feed=%s hashes_seen=%d classified=%d over_floor=%d "
                    "alerts_created=%d alerts_failed=%d errors=%d subscribers=%d"
                ),
                self.feed.state.value,
                metrics.hashes_seen,
                metrics.classified,
                metrics.over_floor,
                metrics.alerts_created,
                metrics.alerts_failed,
                metrics.errors,
                self.broadcaster.subscriber_count,
            )
