from __future__ import annotations

from html import escape

from .types import AlertNotice


def short_address(address: str | None) -> str:
    if not address:
        return "Unknown"
    addr = address.strip()
    if len(addr) <= 12:
        return addr
    return f"{addr[:6]}...{addr[-4:]}"


def format_usd(amount: float) -> str:
    return f"${round(amount):,.0f}"


def build_tx_link(base_url: str, tx_hash: str | None) -> str | None:
    if not tx_hash:
        return None
    return f"{base_url.rstrip('/')}/{tx_hash}"


def alert_subject(notice: AlertNotice) -> str:
    return "Watched Alert" if notice.is_watched else "Pending large swap"


def _headline(notice: AlertNotice) -> str:
    label = "Watched address/token alert" if notice.is_watched else "Pending large swap"
    return f"⚠️ {label} ~ {format_usd(notice.alert.usd_value)}"


def format_alert_text(notice: AlertNotice, explorer_base: str) -> str:
    lines = [_headline(notice)]
    if notice.summary:
        lines.append(notice.summary)
    link = build_tx_link(explorer_base, notice.alert.tx_hash)
    if link:
        lines.append(link)
    return "\n".join(lines)


def format_alert_html(notice: AlertNotice, explorer_base: str) -> str:
    alert = notice.alert
    link = build_tx_link(explorer_base, alert.tx_hash)
    link_line = (
        f'<a href="{escape(link, quote=True)}">View transaction</a>' if link else "No link available"
    )
    return (
        f"<b>{escape(_headline(notice))}</b>\n\n"
        f"📊 <b>Score:</b> {alert.score}\n"
        f"🏷 <b>Type:</b> {escape(alert.event_type)}\n"
        f"📝 {escape(notice.summary or 'No summary')}\n\n"
        f"🔗 {link_line}"
    )
