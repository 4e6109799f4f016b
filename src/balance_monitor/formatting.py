from __future__ import annotations

import json
from typing import Any

from .types import AlertMessage, ChainInfo, MonitorItem, NormalizedBalance

ALERT_TITLE = "⚠️ Balance Alert ⚠️"


def chain_label(name: str | None, chain_id: int) -> str:
    return f"{name or f'Chain {chain_id}'} ({chain_id})"


def build_alert(item: MonitorItem, chain: ChainInfo, balance: NormalizedBalance) -> AlertMessage:
    return AlertMessage(
        address=item.address,
        chain_name=chain.name,
        chain_id=item.chain_id,
        token_symbol=balance.symbol,
        current_balance=balance.display,
        threshold=item.threshold,
    )


def build_slack_payload(alert: AlertMessage) -> dict[str, Any]:
    fields = [
        ("Address", alert.address),
        ("Chain", chain_label(alert.chain_name, alert.chain_id)),
        ("Token", alert.token_symbol),
        ("Current Balance", alert.current_balance),
        ("Threshold", alert.threshold),
    ]
    return {
        "text": ALERT_TITLE,
        "attachments": [
            {"fields": [{"title": title, "value": value, "short": True} for title, value in fields]}
        ],
    }


def render_alert(alert: AlertMessage) -> str:
    return json.dumps(build_slack_payload(alert), indent=2, ensure_ascii=False)
