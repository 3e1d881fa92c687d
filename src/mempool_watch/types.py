from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CallKind(str, Enum):
    NATIVE_TRANSFER = "native_transfer"
    SWAP_EXACT_NATIVE_FOR_TOKENS = "swap_exact_native_for_tokens"
    SWAP_EXACT_TOKENS_FOR_TOKENS = "swap_exact_tokens_for_tokens"
    SWAP_EXACT_TOKENS_FOR_NATIVE = "swap_exact_tokens_for_native"
    UNRECOGNIZED = "unrecognized"

    @property
    def is_token_in(self) -> bool:
        return self in (CallKind.SWAP_EXACT_TOKENS_FOR_TOKENS, CallKind.SWAP_EXACT_TOKENS_FOR_NATIVE)


@dataclass(frozen=True)
class RawTransaction:
    tx_hash: str
    sender: str
    recipient: str | None
    value_wei: int
    input_data: bytes


@dataclass(frozen=True)
class ClassifiedCall:
    kind: CallKind
    method: str
    path: tuple[str, ...] = ()
    amount_in: int = 0
    amount_out_min: int = 0


@dataclass(frozen=True)
class DecodedTransaction:
    tx_hash: str
    sender: str
    recipient: str | None
    value_wei: int
    input_data: bytes
    call: ClassifiedCall

    @property
    def kind(self) -> CallKind:
        return self.call.kind


@dataclass(frozen=True)
class TokenPrice:
    usd_price: float
    decimals: int = 18


@dataclass(frozen=True)
class ExposureResult:
    usd_value: float
    severity_score: int
    summary: str
    token: str | None = None


@dataclass(frozen=True)
class WatchEntry:
    id: int
    name: str
    addresses: frozenset[str] = frozenset()
    tokens: frozenset[str] = frozenset()
    created_at: datetime | None = None

    @property
    def config(self) -> dict[str, list[str]]:
        return {"addresses": sorted(self.addresses), "tokens": sorted(self.tokens)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "config": self.config,
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class AlertDraft:
    chain: str
    event_type: str
    score: int
    usd_value: float
    tx_hash: str
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Alert:
    id: int
    chain: str
    event_type: str
    score: int
    usd_value: float
    tx_hash: str
    raw: dict[str, Any]
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chain": self.chain,
            "event_type": self.event_type,
            "score": self.score,
            "usd_value": self.usd_value,
            "tx_hash": self.tx_hash,
            "raw": dict(self.raw),
            "created_at": _iso(self.created_at),
        }


@dataclass(frozen=True)
class AlertNotice:
    alert: Alert
    summary: str
    is_watched: bool = False


@dataclass(frozen=True)
class ChannelOutcome:
    channel: str
    ok: bool
    error: str | None = None


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")
