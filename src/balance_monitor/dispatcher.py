from __future__ import annotations

import logging

from .errors import DeliveryError
from .formatting import build_slack_payload, chain_label, render_alert
from .slack_notifier import SlackNotifier
from .types import AlertMessage

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """Sends one alert per detected breach, or logs it when no webhook is set."""

    def __init__(self, notifier: SlackNotifier | None = None) -> None:
        self.notifier = notifier

    async def close(self) -> None:
        if self.notifier is not None:
            await self.notifier.close()

    async def dispatch(self, alert: AlertMessage) -> bool:
        """Return True when the alert was handed to the transport."""
        chain = chain_label(alert.chain_name, alert.chain_id)

        if self.notifier is None:
            logger.warning(
                "Slack webhook is not configured, logging alert instead:\n%s",
                render_alert(alert),
            )
            logger.warning("Alert would be sent for %s on %s", alert.address, chain)
            return False

        try:
            await self.notifier.send(build_slack_payload(alert))
        except DeliveryError as exc:
            logger.error("Failed to send alert for %s on %s: %s", alert.address, chain, exc)
            return False

        logger.info("Alert sent for %s on %s", alert.address, chain)
        return True
