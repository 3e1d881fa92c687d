from __future__ import annotations

import logging
from typing import Protocol

import httpx

from .config import Settings
from .formatting import alert_subject, format_alert_html, format_alert_text
from .types import AlertNotice

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    name: str

    async def send(self, notice: AlertNotice) -> None: ...

    async def close(self) -> None: ...


class DiscordNotifier:
    name = "discord"

    def __init__(
        self,
        webhook_url: str,
        explorer_base: str = "https://etherscan.io/tx",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.explorer_base = explorer_base
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, notice: AlertNotice) -> None:
        response = await self._client.post(
            self.webhook_url,
            json={"content": format_alert_text(notice, self.explorer_base)},
        )
        response.raise_for_status()


class TelegramNotifier:
    name = "telegram"

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        explorer_base: str = "https://etherscan.io/tx",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chat_id = chat_id
        self.explorer_base = explorer_base
        self._url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, notice: AlertNotice) -> None:
        response = await self._client.post(
            self._url,
            json={
                "chat_id": self.chat_id,
                "text": format_alert_html(notice, self.explorer_base),
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
        )
        if response.status_code == 429:
            raise RuntimeError("Telegram rate limited, dropping alert")
        response.raise_for_status()
        data = response.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram send failed: {data}")


class SendGridNotifier:
    name = "email"

    def __init__(
        self,
        api_key: str,
        to_email: str,
        from_email: str,
        explorer_base: str = "https://etherscan.io/tx",
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.to_email = to_email
        self.from_email = from_email
        self.explorer_base = explorer_base
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def send(self, notice: AlertNotice) -> None:
        response = await self._client.post(
            "https://api.sendgrid.com/v3/mail/send",
            headers=self._headers,
            json={
                "personalizations": [{"to": [{"email": self.to_email}]}],
                "from": {"email": self.from_email},
                "subject": alert_subject(notice),
                "content": [
                    {"type": "text/plain", "value": format_alert_text(notice, self.explorer_base)}
                ],
            },
        )
        response.raise_for_status()


def build_notifiers(settings: Settings) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if settings.discord_webhook_url:
        notifiers.append(DiscordNotifier(settings.discord_webhook_url, settings.explorer_tx_base))
    if settings.telegram_bot_token and settings.telegram_chat_id:
        notifiers.append(
            TelegramNotifier(
                settings.telegram_bot_token, settings.telegram_chat_id, settings.explorer_tx_base
            )
        )
    if settings.sendgrid_api_key:
        notifiers.append(
            SendGridNotifier(
                settings.sendgrid_api_key,
                settings.to_email,
                settings.from_email,
                settings.explorer_tx_base,
            )
        )
    logger.info("Notification channels enabled: %s", [n.name for n in notifiers] or "none")
    return notifiers
