from __future__ import annotations

from decimal import ROUND_HALF_UP, Context, Decimal, localcontext

from .errors import QueryError
from .types import NormalizedBalance

NATIVE_DECIMALS = 18
TOKEN_DISPLAY_PLACES = 4
MAX_DECIMALS = 255

# uint256 has 78 digits; leave room for the fractional part at any decimals value.
_CONTEXT = Context(prec=400, rounding=ROUND_HALF_UP)
_TOKEN_QUANTUM = Decimal(1).scaleb(-TOKEN_DISPLAY_PLACES)


def validate_decimals(value: object) -> int:
    """Accept a decimals() result only if it is a uint8-sized integer."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise QueryError(f"decimals must be an integer, got {value!r}")
    if value < 0 or value > MAX_DECIMALS:
        raise QueryError(f"decimals out of range: {value}")
    return value


def _check_raw(raw: int) -> None:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise QueryError(f"balance must be an integer, got {raw!r}")
    if raw < 0:
        raise QueryError(f"balance cannot be negative: {raw}")


def _plain(value: Decimal) -> str:
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def normalize_native(raw: int, decimals: int = NATIVE_DECIMALS, symbol: str = "ETH") -> NormalizedBalance:
    """Full precision conversion, e.g. 300000000000000000 wei -> "0.3"."""
    _check_raw(raw)
    decimals = validate_decimals(decimals)
    if raw == 0:
        return NormalizedBalance(value=Decimal(0), display="0", symbol=symbol)

    with localcontext(_CONTEXT):
        value = Decimal(raw).scaleb(-decimals)
    return NormalizedBalance(value=value, display=_plain(value), symbol=symbol)


def normalize_token(raw: int, decimals: int, symbol: str) -> NormalizedBalance:
    """Token balances are rounded half-up to four places; the rounded value is what gets compared."""
    _check_raw(raw)
    decimals = validate_decimals(decimals)
    if raw == 0:
        return NormalizedBalance(value=Decimal(0), display="0", symbol=symbol)

    with localcontext(_CONTEXT):
        value = Decimal(raw).scaleb(-decimals).quantize(_TOKEN_QUANTUM)
    return NormalizedBalance(value=value, display=format(value, "f"), symbol=symbol)
