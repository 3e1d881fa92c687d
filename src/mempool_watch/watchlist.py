from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from .types import WatchEntry

logger = logging.getLogger(__name__)


class WatchlistSource(Protocol):
    async def list_watchlists(self) -> list[WatchEntry]: ...


def _clean_list(value: Any) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set, frozenset)):
        return []
    out: list[str] = []
    for item in value:
        if not isinstance(item, str):
            continue
        text = item.strip().lower()
        if text and text not in out:
            out.append(text)
    return out


def normalize_watch_config(config: Any) -> dict[str, list[str]]:
    if not isinstance(config, dict):
        config = {}
    return {
        "addresses": _clean_list(config.get("addresses")),
        "tokens": _clean_list(config.get("tokens")),
    }


@dataclass(frozen=True)
class WatchSnapshot:
    addresses: frozenset[str] = frozenset()
    tokens: frozenset[str] = frozenset()

    @classmethod
    def from_entries(cls, entries: Iterable[WatchEntry]) -> WatchSnapshot:
        addresses: set[str] = set()
        tokens: set[str] = set()
        for entry in entries:
            addresses.update(a.lower() for a in entry.addresses)
            tokens.update(t.lower() for t in entry.tokens)
        return cls(frozenset(addresses), frozenset(tokens))

    def matches(self, sender: str | None, token: str | None = None) -> bool:
        if sender and sender.lower() in self.addresses:
            return True
        return bool(token) and token.lower() in self.tokens


class WatchRegistry:
    """Read view over stored watchlists.

    With ``refresh_seconds`` of 0 every call re-reads the store; otherwise a
    snapshot is reused until it is that old.
    """

    def __init__(
        self,
        source: WatchlistSource,
        refresh_seconds: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.refresh_seconds = refresh_seconds
        self._clock = clock
        self._snapshot: WatchSnapshot | None = None
        self._loaded_at = 0.0

    async def snapshot(self) -> WatchSnapshot:
        now = self._clock()
        if (
            self._snapshot is not None
            and self.refresh_seconds > 0
            and now - self._loaded_at < self.refresh_seconds
        ):
            return self._snapshot

        entries = await self.source.list_watchlists()
        snapshot = WatchSnapshot.from_entries(entries)
        self._snapshot = snapshot
        self._loaded_at = now
        return snapshot

    def invalidate(self) -> None:
        self._snapshot = None
