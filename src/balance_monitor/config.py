from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from dotenv import load_dotenv

from .errors import ConfigError
from .types import ChainInfo, MonitorItem, TokenType

DEFAULT_CONFIG_PATH = "config.json"
DEFAULT_RPC_TIMEOUT_SECONDS = 10.0
DEFAULT_ALERT_TIMEOUT_SECONDS = 15.0


@dataclass(frozen=True)
class MonitorConfig:
    chains: Mapping[int, ChainInfo]
    slack_webhook: str | None
    interval_seconds: int
    monitors: tuple[MonitorItem, ...]
    rpc_timeout_seconds: float = DEFAULT_RPC_TIMEOUT_SECONDS
    alert_timeout_seconds: float = DEFAULT_ALERT_TIMEOUT_SECONDS
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        object.__setattr__(self, "chains", MappingProxyType(dict(self.chains)))
        object.__setattr__(self, "monitors", tuple(self.monitors))

    def chain_for(self, chain_id: int) -> ChainInfo | None:
        chain = self.chains.get(chain_id)
        if chain is None or not chain.rpc:
            return None
        return chain


def _optional_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigError(f"{name} must be positive, got {raw!r}")
    return value


def _positive_number(value: Any, field: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"{field} must be a positive number, got {value!r}")
    return float(value)


def _parse_chains(raw: Any) -> dict[int, ChainInfo]:
    if not isinstance(raw, dict):
        raise ConfigError("rpc must be a mapping of chain id to {rpc, name}")

    chains: dict[int, ChainInfo] = {}
    for key, entry in raw.items():
        try:
            chain_id = int(key)
        except (TypeError, ValueError) as exc:
            raise ConfigError(f"rpc key {key!r} is not an integer chain id") from exc
        if not isinstance(entry, dict):
            raise ConfigError(f"rpc entry for chain {chain_id} must be an object")

        rpc = str(entry.get("rpc") or "").strip()
        name = str(entry.get("name") or "").strip() or f"Chain {chain_id}"
        symbol = str(entry.get("symbol") or "").strip() or "ETH"
        chains[chain_id] = ChainInfo(rpc=rpc, name=name, native_symbol=symbol)
    return chains


def _parse_monitor(index: int, raw: Any) -> MonitorItem:
    if not isinstance(raw, dict):
        raise ConfigError(f"monitors[{index}] must be an object")

    address = str(raw.get("address") or "").strip()
    if not address:
        raise ConfigError(f"monitors[{index}] is missing address")

    chain_raw = raw.get("chainId")
    if isinstance(chain_raw, bool) or (isinstance(chain_raw, float) and not chain_raw.is_integer()):
        raise ConfigError(f"monitors[{index}] has invalid chainId {chain_raw!r}")
    try:
        chain_id = int(chain_raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"monitors[{index}] has invalid chainId {chain_raw!r}") from exc

    type_raw = str(raw.get("tokenType") or "").strip().lower()
    try:
        token_type = TokenType(type_raw)
    except ValueError as exc:
        raise ConfigError(f"monitors[{index}] has unknown tokenType {type_raw!r}") from exc

    threshold = raw.get("threshold")
    if threshold is None or str(threshold).strip() == "":
        raise ConfigError(f"monitors[{index}] is missing threshold")

    # Missing tokenAddress and unparsable thresholds are reported per sweep, not here.
    token_address = str(raw.get("tokenAddress") or "").strip() or None

    return MonitorItem(
        address=address,
        chain_id=chain_id,
        token_type=token_type,
        threshold=str(threshold).strip(),
        token_address=token_address,
    )


def parse_config(document: Any) -> MonitorConfig:
    if not isinstance(document, dict):
        raise ConfigError("configuration must be a JSON object")

    interval = document.get("interval")
    if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
        raise ConfigError(f"interval must be a positive integer, got {interval!r}")

    monitors_raw = document.get("monitors")
    if not isinstance(monitors_raw, list):
        raise ConfigError("monitors must be a list")

    rpc_timeout = DEFAULT_RPC_TIMEOUT_SECONDS
    if document.get("rpcTimeout") is not None:
        rpc_timeout = _positive_number(document["rpcTimeout"], "rpcTimeout")

    webhook = str(document.get("slackWebhook") or "").strip()

    return MonitorConfig(
        chains=_parse_chains(document.get("rpc", {})),
        slack_webhook=webhook or None,
        interval_seconds=interval,
        monitors=tuple(_parse_monitor(i, m) for i, m in enumerate(monitors_raw)),
        rpc_timeout_seconds=rpc_timeout,
    )


def load_config(path: str | None = None) -> MonitorConfig:
    load_dotenv()
    path = path or os.getenv("BALANCE_MONITOR_CONFIG", "").strip() or DEFAULT_CONFIG_PATH

    try:
        with open(path, encoding="utf-8") as fh:
            document = json.load(fh)
    except OSError as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Configuration file {path} is not valid JSON: {exc}") from exc

    config = parse_config(document)

    webhook = os.getenv("SLACK_WEBHOOK_URL", "").strip() or config.slack_webhook
    return MonitorConfig(
        chains=config.chains,
        slack_webhook=webhook,
        interval_seconds=config.interval_seconds,
        monitors=config.monitors,
        rpc_timeout_seconds=_optional_float("RPC_TIMEOUT_SECONDS", config.rpc_timeout_seconds),
        alert_timeout_seconds=_optional_float(
            "ALERT_TIMEOUT_SECONDS", DEFAULT_ALERT_TIMEOUT_SECONDS
        ),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
