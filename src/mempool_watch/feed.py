from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import websockets

logger = logging.getLogger(__name__)

SUBSCRIBE_REQUEST_ID = 1
SUBSCRIBE_REQUEST = {
    "jsonrpc": "2.0",
    "id": SUBSCRIBE_REQUEST_ID,
    "method": "eth_subscribe",
    "params": ["newPendingTransactions"],
}


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def _default_connect(url: str) -> Any:
    return websockets.connect(url, ping_interval=20, ping_timeout=20)


class FeedConnectionManager:
    """Keeps one ``newPendingTransactions`` subscription alive.

    Every hash is handed to ``on_hash`` in its own task; the read loop never
    waits for it. After a drop the manager waits ``delay_unit * attempt``
    before reconnecting and gives up after ``max_attempts`` consecutive
    failures. A confirmed subscription resets the attempt counter.
    """

    def __init__(
        self,
        url: str | None,
        on_hash: Callable[[str], Awaitable[Any]],
        *,
        connect: Callable[[str], Any] = _default_connect,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_attempts: int = 5,
        delay_unit: float = 1.0,
    ) -> None:
        self.url = url
        self.on_hash = on_hash
        self.max_attempts = max_attempts
        self.delay_unit = delay_unit
        self.state = FeedState.DISCONNECTED
        self.attempts = 0
        self.hashes_received = 0
        self.exhausted = False
        self._connect = connect
        self._sleep = sleep
        self._stop = asyncio.Event()
        self._tasks: set[asyncio.Task[None]] = set()

    async def run(self) -> None:
        if not self.url:
            logger.info("ALCHEMY_WS_URL not set, mempool watcher disabled")
            return

        while not self._stop.is_set():
            self.state = FeedState.CONNECTING
            try:
                await self._listen_once()
                if not self._stop.is_set():
                    logger.warning("Feed connection closed by upstream")
            except asyncio.CancelledError:
                self.state = FeedState.DISCONNECTED
                raise
            except Exception as exc:
                logger.warning("Feed connection error: %s", exc)

            self.state = FeedState.DISCONNECTED
            if self._stop.is_set():
                break
            if self.attempts >= self.max_attempts:
                self.exhausted = True
                logger.critical(
                    "Feed reconnect attempts exhausted (%d), mempool watcher is down",
                    self.max_attempts,
                )
                break

            self.attempts += 1
            delay = self.delay_unit * self.attempts
            logger.warning(
                "Reconnecting to feed in %.1fs (attempt %d/%d)",
                delay,
                self.attempts,
                self.max_attempts,
            )
            await self._sleep(delay)

        self.state = FeedState.DISCONNECTED

    async def _listen_once(self) -> None:
        async with self._connect(self.url) as ws:
            await ws.send(json.dumps(SUBSCRIBE_REQUEST))
            async for raw in ws:
                if self._stop.is_set():
                    return
                self._handle_message(raw)

    def _handle_message(self, raw: str | bytes) -> None:
        payload = decode_feed_message(raw)
        if payload is None:
            logger.debug("Ignoring malformed feed message")
            return

        if payload.get("id") == SUBSCRIBE_REQUEST_ID:
            if payload.get("error"):
                raise RuntimeError(f"Feed subscription rejected: {payload['error']}")
            self.state = FeedState.CONNECTED
            self.attempts = 0
            logger.info("Subscribed to pending transactions (subscription=%s)", payload.get("result"))
            return

        tx_hash = extract_pending_hash(payload)
        if tx_hash is not None:
            self.hashes_received += 1
            self._spawn(tx_hash)

    def _spawn(self, tx_hash: str) -> None:
        task = asyncio.create_task(self._deliver(tx_hash))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, tx_hash: str) -> None:
        try:
            await self.on_hash(tx_hash)
        except Exception:
            logger.exception("Pending handler error for %s", tx_hash)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stop(self) -> None:
        self._stop.set()


def extract_pending_hash(payload: Any) -> str | None:
    if not isinstance(payload, dict) or payload.get("method") != "eth_subscription":
        return None
    params = payload.get("params")
    if not isinstance(params, dict):
        return None
    result = params.get("result")
    if isinstance(result, dict):
        result = result.get("hash")
    if isinstance(result, str) and result.startswith("0x"):
        return result
    return None


def decode_feed_message(raw: str | bytes) -> dict[str, Any] | None:
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return payload if isinstance(payload, dict) else None
