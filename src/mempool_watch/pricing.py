from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from typing import Any, Protocol

import httpx

from .types import TokenPrice

logger = logging.getLogger(__name__)

NATIVE_KEY = "eth"


class PriceCache:
    """TTL cache shared by every pipeline run on the event loop.

    Entries are dropped on the first read after expiry. ``last`` keeps the
    most recent value ever stored per key so callers can degrade to it.
    Nothing here awaits, so reads and writes never interleave mid-update.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[Any, float]] = {}
        self._last: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        self._entries[key] = (value, self._clock() + ttl_seconds)
        self._last[key] = value

    def last(self, key: str) -> Any | None:
        return self._last.get(key)

    def clear(self) -> None:
        self._entries.clear()
        self._last.clear()


class NativePriceSource(Protocol):
    async def native_usd_price(self) -> float: ...


class TokenPriceSource(Protocol):
    async def token_price(self, token_address: str) -> TokenPrice | None: ...


class CoinGeckoPriceSource:
    def __init__(
        self,
        api_base: str = "https://api.coingecko.com/api/v3",
        coin_id: str = "ethereum",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_base = api_base.rstrip("/")
        self.coin_id = coin_id
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def native_usd_price(self) -> float:
        resp = await self._client.get(
            f"{self.api_base}/simple/price",
            params={"ids": self.coin_id, "vs_currencies": "usd"},
        )
        resp.raise_for_status()
        price = float(resp.json()[self.coin_id]["usd"])
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"CoinGecko returned unusable price {price}")
        return price


class MoralisPriceSource:
    def __init__(
        self,
        api_key: str,
        chain: str = "eth",
        api_base: str = "https://deep-index.moralis.io/api/v2",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chain = chain
        self.api_base = api_base.rstrip("/")
        self._headers = {"X-API-Key": api_key}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def token_price(self, token_address: str) -> TokenPrice | None:
        resp = await self._client.get(
            f"{self.api_base}/erc20/{token_address}/price",
            params={"chain": self.chain},
            headers=self._headers,
        )
        resp.raise_for_status()
        return parse_token_price(resp.json())


def parse_token_price(payload: Any) -> TokenPrice | None:
    if not isinstance(payload, dict):
        return None
    try:
        usd_price = float(payload.get("usdPrice") or 0)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(usd_price) or usd_price <= 0:
        return None

    raw_decimals = payload.get("decimals") or payload.get("tokenDecimals") or 18
    try:
        decimals = int(raw_decimals)
    except (TypeError, ValueError):
        decimals = 18
    return TokenPrice(usd_price=usd_price, decimals=decimals)


class PriceResolver:
    def __init__(
        self,
        cache: PriceCache,
        native_source: NativePriceSource | None = None,
        token_source: TokenPriceSource | None = None,
        native_ttl_seconds: float = 120.0,
        token_ttl_seconds: float = 300.0,
        native_fallback_usd: float = 2000.0,
    ) -> None:
        self.cache = cache
        self.native_source = native_source
        self.token_source = token_source
        self.native_ttl_seconds = native_ttl_seconds
        self.token_ttl_seconds = token_ttl_seconds
        self.native_fallback_usd = native_fallback_usd

    async def native_usd_price(self) -> float:
        cached = self.cache.get(NATIVE_KEY)
        if cached is not None:
            return cached

        if self.native_source is not None:
            try:
                price = await self.native_source.native_usd_price()
            except Exception as exc:
                logger.warning("Native price lookup failed: %s", exc)
            else:
                if math.isfinite(price) and price > 0:
                    self.cache.set(NATIVE_KEY, price, self.native_ttl_seconds)
                    return price
                logger.warning("Ignoring unusable native price %r", price)

        last = self.cache.last(NATIVE_KEY)
        if last is not None:
            return last
        return self.native_fallback_usd

    async def token_usd_price(self, token_address: str) -> TokenPrice | None:
        """Return the token's USD price, or ``None`` when it cannot be valued."""
        key = "token:" + token_address.lower()
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if self.token_source is None:
            return None

        try:
            quote = await self.token_source.token_price(token_address.lower())
        except Exception as exc:
            logger.debug("Token price lookup failed for %s: %s", token_address, exc)
            return None

        if quote is None or not math.isfinite(quote.usd_price) or quote.usd_price <= 0:
            return None
        self.cache.set(key, quote, self.token_ttl_seconds)
        return quote
