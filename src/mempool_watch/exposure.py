from __future__ import annotations

import math
from decimal import Decimal

from .classifier import WEI_PER_ETH
from .pricing import PriceResolver
from .types import CallKind, DecodedTransaction, ExposureResult

# Inclusive lower bounds, checked highest first.
SEVERITY_BUCKETS: tuple[tuple[float, int], ...] = (
    (500_000, 99),
    (200_000, 92),
    (100_000, 85),
    (50_000, 70),
    (10_000, 55),
)
BASE_SEVERITY = 40


def severity_score(usd_value: float) -> int:
    for lower_bound, score in SEVERITY_BUCKETS:
        if usd_value >= lower_bound:
            return score
    return BASE_SEVERITY


def scale_units(amount: int, decimals: int) -> float:
    return float(Decimal(amount) / (Decimal(10) ** decimals))


def wei_to_eth(amount_wei: int) -> float:
    return float(Decimal(amount_wei) / Decimal(WEI_PER_ETH))


class ExposureEvaluator:
    def __init__(self, prices: PriceResolver) -> None:
        self.prices = prices

    async def evaluate(self, tx: DecodedTransaction) -> ExposureResult:
        kind = tx.kind

        if kind is CallKind.NATIVE_TRANSFER:
            eth_amount = wei_to_eth(tx.value_wei)
            usd = eth_amount * await self.prices.native_usd_price()
            summary = f"ETH transfer from {tx.sender} value {eth_amount:.4f}"
            return self._result(usd, summary)

        if kind is CallKind.SWAP_EXACT_NATIVE_FOR_TOKENS:
            eth_amount = wei_to_eth(tx.value_wei)
            usd = eth_amount * await self.prices.native_usd_price()
            summary = f"{tx.call.method} from {tx.sender}, ETH in {eth_amount:.4f}"
            return self._result(usd, summary)

        if kind.is_token_in and tx.call.path:
            token = tx.call.path[0]
            quote = await self.prices.token_usd_price(token)
            if quote is None:
                return ExposureResult(0.0, severity_score(0.0), "", token=token)
            amount = scale_units(tx.call.amount_in, quote.decimals)
            summary = f"{tx.call.method} from {tx.sender}, token {token}, amount {amount:.4f}"
            return self._result(amount * quote.usd_price, summary, token=token)

        return ExposureResult(0.0, severity_score(0.0), "")

    @staticmethod
    def _result(usd: float, summary: str, token: str | None = None) -> ExposureResult:
        usd = max(usd, 0.0) if math.isfinite(usd) else 0.0
        return ExposureResult(usd_value=usd, severity_score=severity_score(usd), summary=summary, token=token)
