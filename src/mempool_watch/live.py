from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Protocol

import websockets

from .types import Alert

logger = logging.getLogger(__name__)


class Subscriber(Protocol):
    async def send(self, message: str) -> None: ...


class RecentAlertSource(Protocol):
    async def list_recent_alerts(self, limit: int = 100) -> list[Alert]: ...


def encode_event(event_type: str, data: Any) -> str:
    return json.dumps({"type": event_type, "data": data}, default=str)


class LiveBroadcaster:
    """Tracks connected websocket subscribers and pushes alerts to them."""

    def __init__(self, store: RecentAlertSource, backlog_size: int = 100) -> None:
        self.store = store
        self.backlog_size = backlog_size
        self._subscribers: set[Subscriber] = set()
        # Alerts broadcast while a new subscriber is still receiving its backlog.
        self._pending: dict[Subscriber, list[Alert]] = {}
        self._stop = asyncio.Event()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def register(self, subscriber: Subscriber) -> None:
        buffered: list[Alert] = []
        self._pending[subscriber] = buffered
        try:
            recent = await self.store.list_recent_alerts(self.backlog_size)
            await subscriber.send(encode_event("alerts", [a.to_dict() for a in recent]))
            sent_ids = {a.id for a in recent}
            while buffered:
                alert = buffered.pop(0)
                if alert.id not in sent_ids:
                    await subscriber.send(encode_event("alert", alert.to_dict()))
        finally:
            self._pending.pop(subscriber, None)
        self._subscribers.add(subscriber)
        logger.info("Live subscriber connected (total=%d)", len(self._subscribers))

    def unregister(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)

    async def broadcast(self, alert: Alert) -> int:
        """Send ``alert`` to every subscriber; returns how many received it."""
        for buffered in self._pending.values():
            buffered.append(alert)
        subscribers = list(self._subscribers)
        if not subscribers:
            return 0
        message = encode_event("alert", alert.to_dict())
        results = await asyncio.gather(
            *(s.send(message) for s in subscribers), return_exceptions=True
        )
        delivered = 0
        for subscriber, result in zip(subscribers, results):
            if isinstance(result, BaseException):
                logger.debug("Dropping live subscriber after send failure: %s", result)
                self.unregister(subscriber)
            else:
                delivered += 1
        return delivered

    async def _handler(self, connection: Any) -> None:
        try:
            await self.register(connection)
            async for _ in connection:
                pass
        except websockets.ConnectionClosed:
            pass
        finally:
            self.unregister(connection)

    async def serve(self, host: str, port: int) -> None:
        async with websockets.serve(self._handler, host, port):
            logger.info("Live alert server listening on ws://%s:%d", host, port)
            await self._stop.wait()

    def stop(self) -> None:
        self._stop.set()
