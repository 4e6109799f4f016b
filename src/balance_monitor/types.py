from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class TokenType(str, Enum):
    NATIVE = "native"
    ERC20 = "erc20"


class CheckStatus(str, Enum):
    OK = "ok"
    BREACH = "breach"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ChainInfo:
    rpc: str
    name: str
    native_symbol: str = "ETH"


@dataclass(frozen=True)
class MonitorItem:
    address: str
    chain_id: int
    token_type: TokenType
    threshold: str
    token_address: str | None = None


@dataclass(frozen=True)
class NormalizedBalance:
    value: Decimal
    display: str
    symbol: str


@dataclass(frozen=True)
class AlertMessage:
    address: str
    chain_name: str
    chain_id: int
    token_symbol: str
    current_balance: str
    threshold: str


@dataclass(frozen=True)
class CheckResult:
    item: MonitorItem
    status: CheckStatus
    balance: NormalizedBalance | None = None
    error: str | None = None
    alert_delivered: bool = False
