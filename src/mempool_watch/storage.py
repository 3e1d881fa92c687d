from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from .types import Alert, AlertDraft, WatchEntry
from .watchlist import normalize_watch_config

logger = logging.getLogger(__name__)


class AlertStore(Protocol):
    async def append_alert(self, draft: AlertDraft) -> Alert: ...

    async def list_recent_alerts(self, limit: int = 100) -> list[Alert]: ...

    async def list_watchlists(self) -> list[WatchEntry]: ...

    async def create_watchlist(self, name: str, config: dict[str, Any]) -> WatchEntry: ...

    async def count_existing(self, kind: str) -> int: ...

    async def close(self) -> None: ...


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _watch_entry(entry_id: int, name: str, config: dict[str, Any], created_at: datetime) -> WatchEntry:
    clean = normalize_watch_config(config)
    return WatchEntry(
        id=entry_id,
        name=name,
        addresses=frozenset(clean["addresses"]),
        tokens=frozenset(clean["tokens"]),
        created_at=created_at,
    )


class InMemoryAlertStore:
    def __init__(self) -> None:
        self._alerts: list[Alert] = []
        self._watchlists: list[WatchEntry] = []
        self._lock = asyncio.Lock()

    async def append_alert(self, draft: AlertDraft) -> Alert:
        # Count and append happen with no await in between.
        async with self._lock:
            alert = Alert(
                id=len(self._alerts) + 1,
                chain=draft.chain,
                event_type=draft.event_type,
                score=draft.score,
                usd_value=draft.usd_value,
                tx_hash=draft.tx_hash,
                raw=dict(draft.raw),
                created_at=_now(),
            )
            self._alerts.append(alert)
        return alert

    async def list_recent_alerts(self, limit: int = 100) -> list[Alert]:
        return list(reversed(self._alerts))[:limit]

    async def list_watchlists(self) -> list[WatchEntry]:
        return list(self._watchlists)

    async def create_watchlist(self, name: str, config: dict[str, Any]) -> WatchEntry:
        async with self._lock:
            entry = _watch_entry(len(self._watchlists) + 1, name, config, _now())
            self._watchlists.append(entry)
        return entry

    async def count_existing(self, kind: str) -> int:
        if kind == "alerts":
            return len(self._alerts)
        if kind == "watchlists":
            return len(self._watchlists)
        raise ValueError(f"Unknown record kind: {kind}")

    async def close(self) -> None:
        return None


class SqliteAlertStore:
    """SQLite-backed store; blocking calls run in worker threads."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()
        logger.info("Alert database initialized: %s", self.db_path)

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS alerts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    chain TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    usd_value REAL NOT NULL,
                    tx_hash TEXT NOT NULL,
                    raw TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watchlists (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    config TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_created ON alerts(created_at)")

    async def append_alert(self, draft: AlertDraft) -> Alert:
        return await asyncio.to_thread(self._append_alert, draft)

    def _append_alert(self, draft: AlertDraft) -> Alert:
        created_at = _now()
        with self._write_lock, self._get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT INTO alerts (chain, event_type, score, usd_value, tx_hash, raw, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    draft.chain,
                    draft.event_type,
                    draft.score,
                    draft.usd_value,
                    draft.tx_hash,
                    json.dumps(draft.raw, default=str),
                    created_at.isoformat(),
                ),
            )
            alert_id = int(cursor.lastrowid)
        return Alert(
            id=alert_id,
            chain=draft.chain,
            event_type=draft.event_type,
            score=draft.score,
            usd_value=draft.usd_value,
            tx_hash=draft.tx_hash,
            raw=dict(draft.raw),
            created_at=created_at,
        )

    async def list_recent_alerts(self, limit: int = 100) -> list[Alert]:
        return await asyncio.to_thread(self._list_recent_alerts, limit)

    def _list_recent_alerts(self, limit: int) -> list[Alert]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM alerts ORDER BY id DESC LIMIT ?", (limit,)
            ).fetchall()
        return [
            Alert(
                id=row["id"],
                chain=row["chain"],
                event_type=row["event_type"],
                score=row["score"],
                usd_value=row["usd_value"],
                tx_hash=row["tx_hash"],
                raw=json.loads(row["raw"]),
                created_at=datetime.fromisoformat(row["created_at"]),
            )
            for row in rows
        ]

    async def list_watchlists(self) -> list[WatchEntry]:
        return await asyncio.to_thread(self._list_watchlists)

    def _list_watchlists(self) -> list[WatchEntry]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM watchlists ORDER BY id").fetchall()
        entries: list[WatchEntry] = []
        for row in rows:
            try:
                config = json.loads(row["config"])
            except json.JSONDecodeError:
                logger.warning("Skipping watchlist %s with unreadable config", row["id"])
                continue
            entries.append(
                _watch_entry(row["id"], row["name"], config, datetime.fromisoformat(row["created_at"]))
            )
        return entries

    async def create_watchlist(self, name: str, config: dict[str, Any]) -> WatchEntry:
        return await asyncio.to_thread(self._create_watchlist, name, config)

    def _create_watchlist(self, name: str, config: dict[str, Any]) -> WatchEntry:
        created_at = _now()
        clean = normalize_watch_config(config)
        with self._write_lock, self._get_connection() as conn:
            cursor = conn.execute(
                "INSERT INTO watchlists (name, config, created_at) VALUES (?, ?, ?)",
                (name, json.dumps(clean), created_at.isoformat()),
            )
            entry_id = int(cursor.lastrowid)
        return _watch_entry(entry_id, name, clean, created_at)

    async def count_existing(self, kind: str) -> int:
        if kind not in ("alerts", "watchlists"):
            raise ValueError(f"Unknown record kind: {kind}")
        return await asyncio.to_thread(self._count, kind)

    def _count(self, table: str) -> int:
        with self._get_connection() as conn:
            row = conn.execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()
        return int(row["n"])

    async def close(self) -> None:
        return None


def open_store(database_path: str | None) -> AlertStore:
    if database_path:
        return SqliteAlertStore(database_path)
    logger.info("DATABASE_PATH not set, alerts are kept in memory only")
    return InMemoryAlertStore()
