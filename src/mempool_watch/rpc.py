from __future__ import annotations

import itertools
import logging
from typing import Any

import httpx

from .types import RawTransaction

logger = logging.getLogger(__name__)


class JsonRpcTransactionSource:
    """Looks up pending transactions with ``eth_getTransactionByHash``."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.rpc_url = rpc_url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_transaction(self, tx_hash: str) -> RawTransaction | None:
        result = await self._call("eth_getTransactionByHash", [tx_hash])
        if result is None:
            return None
        return parse_rpc_transaction(result)

    async def _call(self, method: str, params: list[Any]) -> Any:
        resp = await self._client.post(
            self.rpc_url,
            json={"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params},
        )
        resp.raise_for_status()
        payload = resp.json()
        if not isinstance(payload, dict):
            raise RuntimeError(f"Malformed JSON-RPC response to {method}: {payload!r}")
        if payload.get("error"):
            raise RuntimeError(f"JSON-RPC {method} failed: {payload['error']}")
        return payload.get("result")


def _hex_to_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    if isinstance(value, int):
        return value
    text = str(value)
    return int(text, 16) if text.startswith(("0x", "0X")) else int(text)


def _hex_to_bytes(value: Any) -> bytes:
    if not value:
        return b""
    text = str(value)
    if text.startswith(("0x", "0X")):
        text = text[2:]
    return bytes.fromhex(text)


def parse_rpc_transaction(record: Any) -> RawTransaction | None:
    if not isinstance(record, dict):
        return None
    tx_hash = record.get("hash")
    sender = record.get("from")
    if not tx_hash or not sender:
        return None
    try:
        value = _hex_to_int(record.get("value"))
        data = _hex_to_bytes(record.get("input") or record.get("data"))
    except ValueError:
        logger.debug("Unparseable transaction payload for %s", tx_hash)
        return None
    recipient = record.get("to")
    return RawTransaction(
        tx_hash=str(tx_hash),
        sender=str(sender),
        recipient=str(recipient) if recipient else None,
        value_wei=value,
        input_data=data,
    )
