from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    feed_ws_url: str | None = None
    rpc_http_url: str | None = None
    chain: str = "ethereum"
    alert_threshold_usd: float = 50000.0
    min_exposure_usd: float = 100.0
    native_transfer_floor_eth: float = 1.0
    native_price_ttl_seconds: float = 120.0
    token_price_ttl_seconds: float = 300.0
    native_price_fallback_usd: float = 2000.0
    coingecko_api_base: str = "https://api.coingecko.com/api/v3"
    moralis_api_key: str | None = None
    moralis_chain: str = "eth"
    discord_webhook_url: str | None = None
    telegram_bot_token: str | None = None
    telegram_chat_id: str | None = None
    sendgrid_api_key: str | None = None
    to_email: str = "you@example.com"
    from_email: str = "alerts@example.com"
    database_path: str | None = None
    live_host: str = "0.0.0.0"
    live_port: int = 8080
    live_backlog_size: int = 100
    feed_max_reconnect_attempts: int = 5
    feed_reconnect_delay_seconds: float = 1.0
    watchlist_refresh_seconds: float = 0.0
    dedup_ttl_seconds: int = 3600
    explorer_tx_base: str = "https://etherscan.io/tx"
    health_log_interval_seconds: int = 60
    log_level: str = "INFO"


def _optional_str(name: str) -> str | None:
    return os.getenv(name, "").strip() or None


def _optional_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


def derive_http_url(ws_url: str | None) -> str | None:
    if not ws_url:
        return None
    if ws_url.startswith("wss://"):
        return "https://" + ws_url[len("wss://") :]
    if ws_url.startswith("ws://"):
        return "http://" + ws_url[len("ws://") :]
    return ws_url


def load_settings() -> Settings:
    load_dotenv()
    feed_ws_url = _optional_str("ALCHEMY_WS_URL")
    return Settings(
        feed_ws_url=feed_ws_url,
        rpc_http_url=_optional_str("RPC_HTTP_URL") or derive_http_url(feed_ws_url),
        chain=os.getenv("CHAIN", "ethereum").strip(),
        alert_threshold_usd=_optional_float("DEFAULT_USD_THRESHOLD", 50000.0),
        min_exposure_usd=_optional_float("MIN_EXPOSURE_USD", 100.0),
        native_transfer_floor_eth=_optional_float("NATIVE_TRANSFER_FLOOR_ETH", 1.0),
        native_price_ttl_seconds=_optional_float("NATIVE_PRICE_TTL_SECONDS", 120.0),
        token_price_ttl_seconds=_optional_float("TOKEN_PRICE_TTL_SECONDS", 300.0),
        native_price_fallback_usd=_optional_float("NATIVE_PRICE_FALLBACK_USD", 2000.0),
        coingecko_api_base=os.getenv(
            "COINGECKO_API_BASE", "https://api.coingecko.com/api/v3"
        ).strip(),
        moralis_api_key=_optional_str("MORALIS_API_KEY"),
        moralis_chain=os.getenv("MORALIS_CHAIN", "eth").strip(),
        discord_webhook_url=_optional_str("DISCORD_WEBHOOK_URL"),
        telegram_bot_token=_optional_str("TELEGRAM_BOT_TOKEN"),
        telegram_chat_id=_optional_str("TELEGRAM_CHAT_ID"),
        sendgrid_api_key=_optional_str("SENDGRID_API_KEY"),
        to_email=os.getenv("TO_EMAIL", "you@example.com").strip(),
        from_email=os.getenv("FROM_EMAIL", "alerts@example.com").strip(),
        database_path=_optional_str("DATABASE_PATH"),
        live_host=os.getenv("LIVE_HOST", "0.0.0.0").strip(),
        live_port=_optional_int("LIVE_PORT", 8080),
        live_backlog_size=_optional_int("LIVE_BACKLOG_SIZE", 100),
        feed_max_reconnect_attempts=_optional_int("FEED_MAX_RECONNECT_ATTEMPTS", 5),
        feed_reconnect_delay_seconds=_optional_float("FEED_RECONNECT_DELAY_SECONDS", 1.0),
        watchlist_refresh_seconds=_optional_float("WATCHLIST_REFRESH_SECONDS", 0.0),
        dedup_ttl_seconds=_optional_int("DEDUP_TTL_SECONDS", 3600),
        explorer_tx_base=os.getenv("EXPLORER_TX_BASE", "https://etherscan.io/tx").strip(),
        health_log_interval_seconds=_optional_int("HEALTH_LOG_INTERVAL_SECONDS", 60),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
    )
