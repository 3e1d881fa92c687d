from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable


class HashDeduper:
    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._seen: OrderedDict[str, float] = OrderedDict()

    def is_new(self, key: str) -> bool:
        now = self._clock()
        self._purge(now)
        key = key.lower()
        if key in self._seen:
            return False
        self._seen[key] = now
        return True

    def __len__(self) -> int:
        return len(self._seen)

    def _purge(self, now: float) -> None:
        cutoff = now - self.ttl_seconds
        while self._seen:
            first_key = next(iter(self._seen))
            if self._seen[first_key] >= cutoff:
                break
            self._seen.popitem(last=False)
