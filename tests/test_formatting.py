from datetime import datetime, timezone

from mempool_watch.formatting import (
    alert_subject,
    build_tx_link,
    format_alert_html,
    format_alert_text,
    format_usd,
    short_address,
)
from mempool_watch.types import Alert, AlertNotice

EXPLORER = "https://etherscan.io/tx"


def _notice(is_watched: bool = False, summary: str = "ETH transfer from 0x1 value 30.0000") -> AlertNotice:
    alert = Alert(
        id=1,
        chain="ethereum",
        event_type="pending_large_swap",
        score=70,
        usd_value=60000.6,
        tx_hash="0xabc",
        raw={},
        created_at=datetime(2026, 2, 10, 12, tzinfo=timezone.utc),
    )
    return AlertNotice(alert=alert, summary=summary, is_watched=is_watched)


def test_short_address() -> None:
    assert short_address("0x1234567890abcdef") == "0x1234...cdef"
    assert short_address(None) == "Unknown"


def test_format_usd_rounds_and_groups() -> None:
    assert format_usd(120000) == "$120,000"
    assert format_usd(60000.6) == "$60,001"


def test_links() -> None:
    assert build_tx_link(EXPLORER, "0xabc") == "https://etherscan.io/tx/0xabc"
    assert build_tx_link(EXPLORER + "/", "0xabc") == "https://etherscan.io/tx/0xabc"
    assert build_tx_link(EXPLORER, None) is None


def test_plain_text_message_lines() -> None:
    text = format_alert_text(_notice(), EXPLORER)
    assert text.splitlines() == [
        "⚠️ Pending large swap ~ $60,001",
        "ETH transfer from 0x1 value 30.0000",
        "https://etherscan.io/tx/0xabc",
    ]


def test_watched_alert_wording() -> None:
    notice = _notice(is_watched=True)
    assert format_alert_text(notice, EXPLORER).startswith("⚠️ Watched address/token alert")
    assert alert_subject(notice) == "Watched Alert"
    assert alert_subject(_notice()) == "Pending large swap"


def test_html_message_escapes_summary() -> None:
    html = format_alert_html(_notice(summary="<script>"), EXPLORER)
    assert "&lt;script&gt;" in html
    assert "<b>Score:</b> 70" in html
    assert 'href="https://etherscan.io/tx/0xabc"' in html
