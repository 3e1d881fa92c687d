from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Protocol

from .classifier import WEI_PER_ETH, classify
from .dedupe import HashDeduper
from .exposure import ExposureEvaluator
from .sink import AlertSink
from .types import Alert, AlertDraft, CallKind, DecodedTransaction, ExposureResult, RawTransaction
from .watchlist import WatchRegistry

logger = logging.getLogger(__name__)

EVENT_LARGE_SWAP = "pending_large_swap"
EVENT_WATCHED = "watched_activity"


class TransactionSource(Protocol):
    async def get_transaction(self, tx_hash: str) -> RawTransaction | None: ...


@dataclass
class Metrics:
    hashes_seen: int = 0
    duplicates: int = 0
    not_found: int = 0
    classified: int = 0
    over_floor: int = 0
    alerts_created: int = 0
    alerts_failed: int = 0
    errors: int = 0


class AlertPipeline:
    def __init__(
        self,
        transactions: TransactionSource,
        evaluator: ExposureEvaluator,
        watchlists: WatchRegistry,
        sink: AlertSink,
        *,
        chain: str = "ethereum",
        threshold_usd: float = 50000.0,
        min_exposure_usd: float = 100.0,
        native_floor_wei: int = WEI_PER_ETH,
        deduper: HashDeduper | None = None,
    ) -> None:
        self.transactions = transactions
        self.evaluator = evaluator
        self.watchlists = watchlists
        self.sink = sink
        self.chain = chain
        self.threshold_usd = threshold_usd
        self.min_exposure_usd = min_exposure_usd
        self.native_floor_wei = native_floor_wei
        self.deduper = deduper
        self.metrics = Metrics()

    async def handle(self, tx_hash: str) -> Alert | None:
        """Run one pending hash through the pipeline; never raises."""
        self.metrics.hashes_seen += 1
        try:
            return await self._process(tx_hash)
        except Exception:
            self.metrics.errors += 1
            logger.exception("Error handling pending transaction %s", tx_hash)
            return None

    async def _process(self, tx_hash: str) -> Alert | None:
        if self.deduper is not None and not self.deduper.is_new(tx_hash):
            self.metrics.duplicates += 1
            return None

        raw = await self.transactions.get_transaction(tx_hash)
        if raw is None:
            self.metrics.not_found += 1
            return None

        decoded = classify(raw, self.native_floor_wei)
        if decoded is None or decoded.kind is CallKind.UNRECOGNIZED:
            return None
        self.metrics.classified += 1

        exposure = await self.evaluator.evaluate(decoded)
        if not math.isfinite(exposure.usd_value) or exposure.usd_value < self.min_exposure_usd:
            logger.debug("Dropping %s below floor (usd=%.2f)", tx_hash, exposure.usd_value)
            return None
        self.metrics.over_floor += 1

        snapshot = await self.watchlists.snapshot()
        watch_token = exposure.token if decoded.kind.is_token_in else None
        is_watched = snapshot.matches(decoded.sender, watch_token)
        over_threshold = exposure.usd_value >= self.threshold_usd
        if not (over_threshold or is_watched):
            return None

        draft = AlertDraft(
            chain=self.chain,
            event_type=EVENT_LARGE_SWAP if over_threshold else EVENT_WATCHED,
            score=exposure.severity_score,
            usd_value=exposure.usd_value,
            tx_hash=tx_hash,
            raw=build_raw_context(decoded, exposure, is_watched),
        )
        alert = await self.sink.emit(draft, summary=exposure.summary, is_watched=is_watched)
        if alert is None:
            self.metrics.alerts_failed += 1
        else:
            self.metrics.alerts_created += 1
        return alert


def build_raw_context(
    decoded: DecodedTransaction, exposure: ExposureResult, is_watched: bool
) -> dict[str, Any]:
    return {
        "from": decoded.sender,
        "to": decoded.recipient,
        "method": decoded.call.method,
        "kind": decoded.kind.value,
        "path": list(decoded.call.path),
        "value_wei": str(decoded.value_wei),
        "summary": exposure.summary,
        "watched": is_watched,
    }
