from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Protocol

from .notifiers import Notifier
from .storage import AlertStore
from .types import Alert, AlertDraft, AlertNotice, ChannelOutcome

logger = logging.getLogger(__name__)

LIVE_CHANNEL = "live"


class Broadcaster(Protocol):
    async def broadcast(self, alert: Alert) -> int: ...


class AlertSink:
    """Persists qualified alerts and fans them out.

    Fan-out runs in a background task per alert so neither the caller nor
    sibling channels wait on a slow channel. Failures are logged only.
    """

    def __init__(
        self,
        store: AlertStore,
        broadcaster: Broadcaster | None = None,
        notifiers: Sequence[Notifier] = (),
    ) -> None:
        self.store = store
        self.broadcaster = broadcaster
        self.notifiers = list(notifiers)
        self._pending: set[asyncio.Task[list[ChannelOutcome]]] = set()

    async def emit(self, draft: AlertDraft, summary: str = "", is_watched: bool = False) -> Alert | None:
        try:
            alert = await self.store.append_alert(draft)
        except Exception:
            logger.exception("Failed to persist alert for %s, alert dropped", draft.tx_hash)
            return None

        logger.info(
            "ALERT id=%d tx=%s usd=%.0f score=%d watched=%s",
            alert.id,
            alert.tx_hash,
            alert.usd_value,
            alert.score,
            is_watched,
        )
        notice = AlertNotice(alert=alert, summary=summary, is_watched=is_watched)
        task = asyncio.create_task(self.dispatch(notice))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return alert

    async def dispatch(self, notice: AlertNotice) -> list[ChannelOutcome]:
        names: list[str] = []
        calls = []
        if self.broadcaster is not None:
            names.append(LIVE_CHANNEL)
            calls.append(self.broadcaster.broadcast(notice.alert))
        for notifier in self.notifiers:
            names.append(notifier.name)
            calls.append(notifier.send(notice))

        results = await asyncio.gather(*calls, return_exceptions=True)
        outcomes: list[ChannelOutcome] = []
        for name, result in zip(names, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning("Alert %d delivery via %s failed: %s", notice.alert.id, name, result)
                outcomes.append(ChannelOutcome(channel=name, ok=False, error=str(result)))
            else:
                outcomes.append(ChannelOutcome(channel=name, ok=True))
        return outcomes

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        for notifier in self.notifiers:
            await notifier.close()
