from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .errors import ParseError
from .types import NormalizedBalance


def parse_threshold(text: str) -> Decimal:
    cleaned = str(text).strip()
    # Decimal() takes "1_000"; config thresholds are plain decimal literals only.
    if "_" in cleaned:
        raise ParseError(f"threshold {text!r} is not a decimal number")
    try:
        value = Decimal(cleaned)
    except InvalidOperation as exc:
        raise ParseError(f"threshold {text!r} is not a decimal number") from exc
    if not value.is_finite():
        raise ParseError(f"threshold {text!r} is not a finite number")
    return value


def is_breach(balance: NormalizedBalance, threshold: Decimal) -> bool:
    # Strict: a balance sitting exactly on the threshold is fine.
    return balance.value < threshold
