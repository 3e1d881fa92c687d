from __future__ import annotations

from dataclasses import dataclass

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector

from .types import CallKind, ClassifiedCall, DecodedTransaction, RawTransaction

WEI_PER_ETH = 10**18

KNOWN_ROUTERS: frozenset[str] = frozenset(
    {
        "0x7a250d5630b4cf539739df2c5dacb4c659f2488d",  # Uniswap V2
        "0xe592427a0aece92de3edee1f18e0157c05861564",  # Uniswap V3 router
    }
)


@dataclass(frozen=True)
class RouterFunction:
    name: str
    arg_types: tuple[str, ...]
    kind: CallKind

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    @property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)


_FUNCTIONS = (
    RouterFunction(
        "swapExactTokensForTokens",
        ("uint256", "uint256", "address[]", "address", "uint256"),
        CallKind.SWAP_EXACT_TOKENS_FOR_TOKENS,
    ),
    RouterFunction(
        "swapExactETHForTokens",
        ("uint256", "address[]", "address", "uint256"),
        CallKind.SWAP_EXACT_NATIVE_FOR_TOKENS,
    ),
    RouterFunction(
        "swapExactTokensForETH",
        ("uint256", "uint256", "address[]", "address", "uint256"),
        CallKind.SWAP_EXACT_TOKENS_FOR_NATIVE,
    ),
)

ROUTER_FUNCTIONS: dict[bytes, RouterFunction] = {fn.selector: fn for fn in _FUNCTIONS}


def is_known_router(address: str | None) -> bool:
    return bool(address) and address.lower() in KNOWN_ROUTERS


def decode_router_call(tx: RawTransaction) -> ClassifiedCall | None:
    data = tx.input_data
    if len(data) < 4:
        return None
    fn = ROUTER_FUNCTIONS.get(bytes(data[:4]))
    if fn is None:
        return None
    try:
        args = decode(list(fn.arg_types), bytes(data[4:]))
    except (DecodingError, ValueError, OverflowError):
        return None

    if fn.kind is CallKind.SWAP_EXACT_NATIVE_FOR_TOKENS:
        amount_out_min, path = args[0], args[1]
        amount_in = tx.value_wei
    else:
        amount_in, amount_out_min, path = args[0], args[1], args[2]

    return ClassifiedCall(
        kind=fn.kind,
        method=fn.name,
        path=tuple(str(token).lower() for token in path),
        amount_in=int(amount_in),
        amount_out_min=int(amount_out_min),
    )


def classify(
    tx: RawTransaction, native_floor_wei: int = WEI_PER_ETH
) -> DecodedTransaction | None:
    """Classify ``tx``; contract creations (no recipient) yield ``None``."""
    if not tx.recipient:
        return None

    call: ClassifiedCall | None = None
    if is_known_router(tx.recipient):
        call = decode_router_call(tx)

    if call is None:
        if tx.value_wei > native_floor_wei:
            call = ClassifiedCall(
                kind=CallKind.NATIVE_TRANSFER, method="transfer", amount_in=tx.value_wei
            )
        else:
            call = ClassifiedCall(kind=CallKind.UNRECOGNIZED, method="unknown")

    return DecodedTransaction(
        tx_hash=tx.tx_hash,
        sender=tx.sender.lower(),
        recipient=tx.recipient.lower(),
        value_wei=tx.value_wei,
        input_data=tx.input_data,
        call=call,
    )


def eth_to_wei(amount: float) -> int:
    return int(round(amount * WEI_PER_ETH))
