import asyncio

import pytest

from mempool_watch.storage import InMemoryAlertStore, SqliteAlertStore, open_store
from mempool_watch.types import AlertDraft


def draft(tx_hash: str) -> AlertDraft:
    return AlertDraft(
        chain="ethereum",
        event_type="pending_large_swap",
        score=92,
        usd_value=250000.0,
        tx_hash=tx_hash,
        raw={"from": "0xabc", "path": ["0x1", "0x2"]},
    )


def test_sqlite_store_round_trips_alerts_newest_first(tmp_path) -> None:
    store = SqliteAlertStore(tmp_path / "alerts.db")

    async def scenario():
        for i in range(3):
            await store.append_alert(draft(f"0x{i}"))
        return await store.list_recent_alerts(2), await store.count_existing("alerts")

    recent, count = asyncio.run(scenario())
    assert count == 3
    assert [a.id for a in recent] == [3, 2]
    assert recent[0].raw == {"from": "0xabc", "path": ["0x1", "0x2"]}
    assert recent[0].created_at.tzinfo is not None


def test_sqlite_store_assigns_unique_ids_under_concurrency(tmp_path) -> None:
    store = SqliteAlertStore(tmp_path / "alerts.db")

    async def scenario():
        return await asyncio.gather(*(store.append_alert(draft(f"0x{i}")) for i in range(50)))

    alerts = asyncio.run(scenario())
    assert sorted(a.id for a in alerts) == list(range(1, 51))


def test_sqlite_store_watchlists_are_normalized(tmp_path) -> None:
    path = tmp_path / "alerts.db"
    store = SqliteAlertStore(path)

    async def scenario():
        await store.create_watchlist("whales", {"addresses": ["0xABC", " 0xabc ", 5], "tokens": "0xDEF"})
        # Re-open to read from disk.
        return await SqliteAlertStore(path).list_watchlists()

    entries = asyncio.run(scenario())
    assert len(entries) == 1
    assert entries[0].name == "whales"
    assert entries[0].addresses == frozenset({"0xabc"})
    assert entries[0].tokens == frozenset({"0xdef"})


def test_in_memory_store_counts_and_rejects_unknown_kind() -> None:
    store = InMemoryAlertStore()

    async def scenario():
        await store.append_alert(draft("0x1"))
        await store.create_watchlist("a", {})
        return await store.count_existing("alerts"), await store.count_existing("watchlists")

    assert asyncio.run(scenario()) == (1, 1)
    with pytest.raises(ValueError):
        asyncio.run(store.count_existing("users"))


def test_open_store_picks_backend(tmp_path) -> None:
    assert isinstance(open_store(None), InMemoryAlertStore)
    assert isinstance(open_store(str(tmp_path / "x.db")), SqliteAlertStore)
