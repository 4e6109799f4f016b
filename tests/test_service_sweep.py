import asyncio
import logging

import httpx
import pytest

from balance_monitor.chain_client import ChainQueryClient
from balance_monitor.config import MonitorConfig
from balance_monitor.dispatcher import AlertDispatcher
from balance_monitor.errors import DeliveryError, QueryError
from balance_monitor.scheduler import FixedRateScheduler
from balance_monitor.service import MonitorService, check_item, fetch_balance
from balance_monitor.slack_notifier import SlackNotifier
from balance_monitor.types import AlertMessage, ChainInfo, CheckStatus, MonitorItem, TokenType

ETH = 10**18


class DummyChainClient:
    def __init__(
        self,
        native: dict[str, int] | None = None,
        tokens: dict[str, tuple[int, int, str]] | None = None,
        failing: set[str] | None = None,
    ) -> None:
        self.native = native or {}
        self.tokens = tokens or {}
        self.failing = failing or set()
        self.calls: list[tuple[str, str]] = []

    def _maybe_fail(self, address: str) -> None:
        if address in self.failing:
            raise QueryError(f"rpc timeout for {address}")

    async def get_native_balance(self, rpc_url: str, address: str) -> int:
        self.calls.append(("native", address))
        self._maybe_fail(address)
        return self.native[address]

    async def get_token_balance(self, rpc_url: str, token_address: str, owner_address: str) -> int:
        self.calls.append(("balanceOf", owner_address))
        self._maybe_fail(owner_address)
        return self.tokens[token_address][0]

    async def get_token_decimals(self, rpc_url: str, token_address: str) -> int:
        return self.tokens[token_address][1]

    async def get_token_symbol(self, rpc_url: str, token_address: str) -> str:
        return self.tokens[token_address][2]


class DummyNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.payloads: list[dict] = []

    async def send(self, payload: dict) -> None:
        self.payloads.append(payload)
        if self.fail:
            raise DeliveryError("webhook down")

    async def close(self) -> None:
        return None


class RecordingDispatcher(AlertDispatcher):
    def __init__(self) -> None:
        super().__init__(None)
        self.alerts: list[AlertMessage] = []

    async def dispatch(self, alert: AlertMessage) -> bool:
        self.alerts.append(alert)
        return await super().dispatch(alert)


def _config(*monitors: MonitorItem, webhook: str | None = None) -> MonitorConfig:
    return MonitorConfig(
        chains={
            1: ChainInfo(rpc="https://eth.example", name="Ethereum"),
            56: ChainInfo(rpc="", name="BSC"),
        },
        slack_webhook=webhook,
        interval_seconds=60,
        monitors=tuple(monitors),
    )


def _native(address: str, threshold: str = "0.5", chain_id: int = 1) -> MonitorItem:
    return MonitorItem(address=address, chain_id=chain_id, token_type=TokenType.NATIVE, threshold=threshold)


def _erc20(address: str, token: str | None, threshold: str = "100") -> MonitorItem:
    return MonitorItem(
        address=address,
        chain_id=1,
        token_type=TokenType.ERC20,
        threshold=threshold,
        token_address=token,
    )


def test_native_breach_produces_alert() -> None:
    item = _native("0xA")
    chain = DummyChainClient(native={"0xA": 3 * ETH // 10})
    dispatcher = RecordingDispatcher()

    result = asyncio.run(check_item(_config(item), item, chain, dispatcher))

    assert result.status is CheckStatus.BREACH
    assert dispatcher.alerts == [AlertMessage("0xA", "Ethereum", 1, "ETH", "0.3", "0.5")]


def test_native_balance_equal_to_threshold_is_not_a_breach() -> None:
    item = _native("0xA")
    chain = DummyChainClient(native={"0xA": 5 * ETH // 10})
    dispatcher = RecordingDispatcher()

    result = asyncio.run(check_item(_config(item), item, chain, dispatcher))

    assert result.status is CheckStatus.OK
    assert result.balance is not None and result.balance.display == "0.5"
    assert dispatcher.alerts == []


def test_erc20_balance_above_threshold() -> None:
    item = _erc20("0xA", "0xT")
    chain = DummyChainClient(tokens={"0xT": (250 * ETH, 18, "DAI")})
    dispatcher = RecordingDispatcher()

    result = asyncio.run(check_item(_config(item), item, chain, dispatcher))

    assert result.status is CheckStatus.OK
    assert result.balance is not None
    assert result.balance.display == "250.0000"
    assert result.balance.symbol == "DAI"
    assert dispatcher.alerts == []


def test_erc20_breach_uses_token_symbol() -> None:
    item = _erc20("0xA", "0xT")
    chain = DummyChainClient(tokens={"0xT": (99_999_000, 6, "USDC")})
    dispatcher = RecordingDispatcher()

    asyncio.run(check_item(_config(item), item, chain, dispatcher))

    assert dispatcher.alerts[0].token_symbol == "USDC"
    assert dispatcher.alerts[0].current_balance == "99.9990"
    assert dispatcher.alerts[0].threshold == "100"


def test_erc20_without_token_address_is_skipped(caplog: pytest.LogCaptureFixture) -> None:
    item = _erc20("0xA", None)
    chain = DummyChainClient()

    with caplog.at_level(logging.ERROR):
        result = asyncio.run(check_item(_config(item), item, chain, RecordingDispatcher()))

    assert result.status is CheckStatus.SKIPPED
    assert chain.calls == []
    assert "no tokenAddress" in caplog.text


def test_out_of_range_decimals_fails_the_item() -> None:
    item = _erc20("0xA", "0xT")
    chain = DummyChainClient(tokens={"0xT": (1, 300, "BAD")})
    dispatcher = RecordingDispatcher()

    result = asyncio.run(check_item(_config(item), item, chain, dispatcher))

    assert result.status is CheckStatus.FAILED
    assert "decimals" in (result.error or "")
    assert dispatcher.alerts == []


def test_unparsable_threshold_is_skipped() -> None:
    item = _native("0xA", threshold="lots")
    chain = DummyChainClient(native={"0xA": 0})

    result = asyncio.run(check_item(_config(item), item, chain, RecordingDispatcher()))

    assert result.status is CheckStatus.SKIPPED
    assert chain.calls == []


def test_chain_without_rpc_url_is_skipped() -> None:
    item = _native("0xA", chain_id=56)
    result = asyncio.run(check_item(_config(item), item, DummyChainClient(), RecordingDispatcher()))
    assert result.status is CheckStatus.SKIPPED


def test_unknown_chain_is_reported_once_and_others_still_run(caplog: pytest.LogCaptureFixture) -> None:
    items = (_native("0xA"), _native("0xB", chain_id=999), _native("0xC"))
    chain = DummyChainClient(native={"0xA": ETH, "0xC": ETH})
    service = MonitorService(_config(*items), chain_client=chain, dispatcher=RecordingDispatcher())

    with caplog.at_level(logging.ERROR):
        results = asyncio.run(service.sweep())

    assert [r.status for r in results] == [CheckStatus.OK, CheckStatus.SKIPPED, CheckStatus.OK]
    assert caplog.text.count("No RPC URL found for chain ID 999") == 1
    assert chain.calls == [("native", "0xA"), ("native", "0xC")]


def test_query_failure_does_not_stop_the_sweep() -> None:
    items = tuple(_native(f"0x{i}") for i in range(5))
    chain = DummyChainClient(native={f"0x{i}": 0 for i in range(5)}, failing={"0x2"})
    dispatcher = RecordingDispatcher()
    service = MonitorService(_config(*items), chain_client=chain, dispatcher=dispatcher)

    results = asyncio.run(service.sweep())

    assert len(results) == 5
    assert results[2].status is CheckStatus.FAILED
    assert "rpc timeout" in (results[2].error or "")
    assert [r.status for i, r in enumerate(results) if i != 2] == [CheckStatus.BREACH] * 4
    assert [a.address for a in dispatcher.alerts] == ["0x0", "0x1", "0x3", "0x4"]
    assert service.metrics.failed == 1
    assert service.metrics.breaches == 4


def test_unexpected_exception_is_isolated() -> None:
    class ExplodingClient(DummyChainClient):
        async def get_native_balance(self, rpc_url: str, address: str) -> int:
            if address == "0xA":
                raise KeyError("surprise")
            return await super().get_native_balance(rpc_url, address)

    items = (_native("0xA"), _native("0xB"))
    chain = ExplodingClient(native={"0xB": ETH})
    service = MonitorService(_config(*items), chain_client=chain, dispatcher=RecordingDispatcher())

    results = asyncio.run(service.sweep())

    assert [r.status for r in results] == [CheckStatus.FAILED, CheckStatus.OK]


def test_no_webhook_means_log_only(caplog: pytest.LogCaptureFixture) -> None:
    item = _native("0xA")
    chain = DummyChainClient(native={"0xA": 0})
    service = MonitorService(_config(item), chain_client=chain)

    with caplog.at_level(logging.WARNING):
        results = asyncio.run(service.sweep())

    assert service.dispatcher.notifier is None
    assert results[0].status is CheckStatus.BREACH
    assert results[0].alert_delivered is False
    assert "Alert would be sent for 0xA on Ethereum (1)" in caplog.text


def test_delivery_failure_continues_with_next_items() -> None:
    items = (_native("0xA"), _native("0xB"), _native("0xC"))
    chain = DummyChainClient(native={"0xA": 0, "0xB": 0, "0xC": ETH})
    notifier = DummyNotifier(fail=True)
    service = MonitorService(
        _config(*items, webhook="https://hooks.example"),
        chain_client=chain,
        dispatcher=AlertDispatcher(notifier),
    )

    results = asyncio.run(service.sweep())

    assert [r.status for r in results] == [CheckStatus.BREACH, CheckStatus.BREACH, CheckStatus.OK]
    # one attempt per breach, no retries
    assert len(notifier.payloads) == 2
    assert service.metrics.alerts_sent == 0


def test_sustained_breach_alerts_every_sweep() -> None:
    item = _native("0xA")
    chain = DummyChainClient(native={"0xA": 0})
    notifier = DummyNotifier()
    service = MonitorService(
        _config(item, webhook="https://hooks.example"),
        chain_client=chain,
        dispatcher=AlertDispatcher(notifier),
    )

    asyncio.run(service.sweep())
    asyncio.run(service.sweep())

    assert len(notifier.payloads) == 2
    assert service.metrics.alerts_sent == 2


def test_run_sweeps_then_closes_clients() -> None:
    class ClosingClient(DummyChainClient):
        closed = False

        async def close(self) -> None:
            self.closed = True

    async def no_wait(seconds: float) -> None:
        return None

    item = _native("0xA")
    chain = ClosingClient(native={"0xA": ETH})
    service = MonitorService(
        _config(item),
        chain_client=chain,
        dispatcher=RecordingDispatcher(),
        scheduler=FixedRateScheduler(60, clock=lambda: 0.0, sleep=no_wait),
    )

    asyncio.run(service.run(max_sweeps=2))

    assert service.metrics.sweeps == 2
    assert chain.calls == [("native", "0xA"), ("native", "0xA")]
    assert chain.closed is True


def test_malformed_webhook_is_reported_and_sweep_continues(caplog: pytest.LogCaptureFixture) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    items = (_native("0xA"), _native("0xB"))
    chain = DummyChainClient(native={"0xA": 0, "0xB": ETH})
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = SlackNotifier("https://hooks.example/\x00", client=client)
    service = MonitorService(
        _config(*items, webhook="https://hooks.example/\x00"),
        chain_client=chain,
        dispatcher=AlertDispatcher(notifier),
    )

    with caplog.at_level(logging.ERROR):
        results = asyncio.run(service.sweep())

    assert [r.status for r in results] == [CheckStatus.BREACH, CheckStatus.OK]
    assert results[0].alert_delivered is False
    assert "Failed to send alert for 0xA on Ethereum (1)" in caplog.text
    assert "Unexpected error" not in caplog.text


def test_health_line_reports_running_totals(caplog: pytest.LogCaptureFixture) -> None:
    items = (_native("0xA"), _native("0xB", chain_id=56), _native("0xC"))
    chain = DummyChainClient(native={"0xA": 0, "0xC": ETH})
    notifier = DummyNotifier()
    service = MonitorService(
        _config(*items, webhook="https://hooks.example"),
        chain_client=chain,
        dispatcher=AlertDispatcher(notifier),
    )

    asyncio.run(service.sweep())
    with caplog.at_level(logging.INFO, logger="balance_monitor.service"):
        asyncio.run(service.sweep())

    assert (
        "health sweeps=1 checks=3 breaches=1 skipped=1 failed=0 alerts_sent=1" in caplog.text
    )
    assert service.metrics.sweeps == 2
    assert service.metrics.checks == 6


def test_fetch_balance_reads_token_metadata() -> None:
    item = _erc20("0xA", "0xT")
    chain = DummyChainClient(tokens={"0xT": (1_500_000, 6, "")})

    balance = asyncio.run(fetch_balance(chain, ChainInfo("https://eth.example", "Ethereum"), item))

    assert balance.display == "1.5000"
    assert balance.symbol == "UNKNOWN"
    assert chain.calls == [("balanceOf", "0xA")]


def test_dummy_client_satisfies_query_protocol() -> None:
    assert isinstance(DummyChainClient(), ChainQueryClient)
