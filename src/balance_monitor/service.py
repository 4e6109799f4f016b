from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .balances import normalize_native, normalize_token, validate_decimals
from .chain_client import ChainQueryClient, EvmRpcClient
from .config import MonitorConfig
from .dispatcher import AlertDispatcher
from .errors import ParseError, QueryError
from .formatting import build_alert
from .scheduler import FixedRateScheduler
from .slack_notifier import SlackNotifier
from .thresholds import is_breach, parse_threshold
from .types import ChainInfo, CheckResult, CheckStatus, MonitorItem, NormalizedBalance, TokenType

logger = logging.getLogger(__name__)


@dataclass
class Metrics:
    sweeps: int = 0
    checks: int = 0
    breaches: int = 0
    skipped: int = 0
    failed: int = 0
    alerts_sent: int = 0


async def fetch_balance(
    chain_client: ChainQueryClient, chain: ChainInfo, item: MonitorItem
) -> NormalizedBalance:
    """Query and normalize one balance. ``item`` must already be validated by check_item."""
    if item.token_type is TokenType.NATIVE:
        raw = await chain_client.get_native_balance(chain.rpc, item.address)
        return normalize_native(raw, symbol=chain.native_symbol)

    token = item.token_address or ""
    raw = await chain_client.get_token_balance(chain.rpc, token, item.address)
    decimals = validate_decimals(await chain_client.get_token_decimals(chain.rpc, token))
    symbol = await chain_client.get_token_symbol(chain.rpc, token)
    return normalize_token(raw, decimals, symbol or "UNKNOWN")


async def check_item(
    config: MonitorConfig,
    item: MonitorItem,
    chain_client: ChainQueryClient,
    dispatcher: AlertDispatcher,
) -> CheckResult:
    """Evaluate one monitor item. Errors come back as a result, never as an exception."""
    chain = config.chain_for(item.chain_id)
    if chain is None:
        logger.error("No RPC URL found for chain ID %d, skipping %s", item.chain_id, item.address)
        return CheckResult(item, CheckStatus.SKIPPED, error=f"unknown chain id {item.chain_id}")

    if item.token_type is TokenType.ERC20 and not item.token_address:
        logger.error(
            "Monitor for %s on chain %d is erc20 but has no tokenAddress, skipping",
            item.address,
            item.chain_id,
        )
        return CheckResult(item, CheckStatus.SKIPPED, error="erc20 monitor is missing tokenAddress")

    try:
        threshold = parse_threshold(item.threshold)
    except ParseError as exc:
        logger.error("Bad threshold for %s on chain %d: %s", item.address, item.chain_id, exc)
        return CheckResult(item, CheckStatus.SKIPPED, error=str(exc))

    try:
        balance = await fetch_balance(chain_client, chain, item)
    except QueryError as exc:
        logger.error(
            "Error checking balance for %s on chain %d: %s", item.address, item.chain_id, exc
        )
        return CheckResult(item, CheckStatus.FAILED, error=str(exc))

    logger.info(
        "Checking %s on %s (%d): %s %s",
        item.address,
        chain.name,
        item.chain_id,
        balance.display,
        balance.symbol,
    )

    if not is_breach(balance, threshold):
        return CheckResult(item, CheckStatus.OK, balance=balance)

    delivered = await dispatcher.dispatch(build_alert(item, chain, balance))
    return CheckResult(item, CheckStatus.BREACH, balance=balance, alert_delivered=delivered)


class MonitorService:
    def __init__(
        self,
        config: MonitorConfig,
        chain_client: ChainQueryClient | None = None,
        dispatcher: AlertDispatcher | None = None,
        scheduler: FixedRateScheduler | None = None,
    ) -> None:
        self.config = config
        self.metrics = Metrics()
        self.chain_client = chain_client or EvmRpcClient(timeout=config.rpc_timeout_seconds)
        if dispatcher is None:
            notifier = None
            if config.slack_webhook:
                notifier = SlackNotifier(config.slack_webhook, timeout=config.alert_timeout_seconds)
            dispatcher = AlertDispatcher(notifier)
        self.dispatcher = dispatcher
        self.scheduler = scheduler or FixedRateScheduler(config.interval_seconds)

    async def run(self, max_sweeps: int | None = None) -> None:
        logger.info(
            "Starting balance monitor: %d monitors, %d chains, interval=%ds, slack=%s",
            len(self.config.monitors),
            len(self.config.chains),
            self.config.interval_seconds,
            "on" if self.config.slack_webhook else "off",
        )
        try:
            await self.scheduler.run(self.sweep, max_runs=max_sweeps)
        finally:
            await self.dispatcher.close()
            close = getattr(self.chain_client, "close", None)
            if close is not None:
                await close()

    async def sweep(self) -> list[CheckResult]:
        self._log_health()
        logger.info("Checking all balances...")
        self.metrics.sweeps += 1
        results: list[CheckResult] = []

        for item in self.config.monitors:
            try:
                result = await check_item(self.config, item, self.chain_client, self.dispatcher)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception(
                    "Unexpected error checking %s on chain %d", item.address, item.chain_id
                )
                result = CheckResult(item, CheckStatus.FAILED, error=repr(exc))
            self._record(result)
            results.append(result)

        logger.info(
            "sweep complete checked=%d breaches=%d skipped=%d failed=%d alerts_sent=%d",
            len(results),
            sum(1 for r in results if r.status is CheckStatus.BREACH),
            sum(1 for r in results if r.status is CheckStatus.SKIPPED),
            sum(1 for r in results if r.status is CheckStatus.FAILED),
            sum(1 for r in results if r.alert_delivered),
        )
        return results

    def _log_health(self) -> None:
        logger.info(
            (
                "health sweeps=%d checks=%d breaches=%d "
                "skipped=%d failed=%d alerts_sent=%d"
            ),
            self.metrics.sweeps,
            self.metrics.checks,
            self.metrics.breaches,
            self.metrics.skipped,
            self.metrics.failed,
            self.metrics.alerts_sent,
        )

    def _record(self, result: CheckResult) -> None:
        self.metrics.checks += 1
        if result.status is CheckStatus.BREACH:
            self.metrics.breaches += 1
        elif result.status is CheckStatus.SKIPPED:
            self.metrics.skipped += 1
        elif result.status is CheckStatus.FAILED:
            self.metrics.failed += 1
        if result.alert_delivered:
            self.metrics.alerts_sent += 1
