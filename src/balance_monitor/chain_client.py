from __future__ import annotations

import itertools
import logging
import re
from typing import Any, Protocol, runtime_checkable

import httpx
from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError

from .errors import QueryError

logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

# First four bytes of keccak256 of the ERC20 function signatures.
BALANCE_OF_SELECTOR = bytes.fromhex("70a08231")
DECIMALS_SELECTOR = bytes.fromhex("313ce567")
SYMBOL_SELECTOR = bytes.fromhex("95d89b41")


def _address_bytes(address: str, role: str) -> bytes:
    if not isinstance(address, str) or not _ADDRESS_RE.match(address.strip()):
        raise QueryError(f"invalid {role} address {address!r}")
    return bytes.fromhex(address.strip()[2:])


def _hex_quantity(value: Any, method: str) -> int:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise QueryError(f"{method} returned a non-hex result: {value!r}")
    try:
        return int(value, 16)
    except ValueError as exc:
        raise QueryError(f"{method} returned a non-hex result: {value!r}") from exc


def _hex_data(value: Any, method: str) -> bytes:
    if not isinstance(value, str) or not value.startswith("0x"):
        raise QueryError(f"{method} returned a non-hex result: {value!r}")
    try:
        data = bytes.fromhex(value[2:])
    except ValueError as exc:
        raise QueryError(f"{method} returned malformed data: {value!r}") from exc
    if not data:
        raise QueryError(f"{method} returned no data; is the token address a contract?")
    return data


@runtime_checkable
class ChainQueryClient(Protocol):
    """What the sweep needs from a chain backend. Any failure must surface as QueryError."""

    async def get_native_balance(self, rpc_url: str, address: str) -> int: ...

    async def get_token_balance(self, rpc_url: str, token_address: str, owner_address: str) -> int: ...

    async def get_token_decimals(self, rpc_url: str, token_address: str) -> int: ...

    async def get_token_symbol(self, rpc_url: str, token_address: str) -> str: ...


class EvmRpcClient:
    """Reads balances and ERC20 metadata over Ethereum JSON-RPC.

    The endpoint is passed on every call so a single client (and its
    connection pool) can serve every configured chain.
    """

    def __init__(self, timeout: float = 10.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._ids = itertools.count(1)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_native_balance(self, rpc_url: str, address: str) -> int:
        _address_bytes(address, "account")
        result = await self._rpc(rpc_url, "eth_getBalance", [address.strip(), "latest"])
        return _hex_quantity(result, "eth_getBalance")

    async def get_token_balance(self, rpc_url: str, token_address: str, owner_address: str) -> int:
        owner = _address_bytes(owner_address, "owner")
        data = BALANCE_OF_SELECTOR + encode(["address"], [owner])
        raw = await self._call(rpc_url, token_address, data, "balanceOf")
        return self._decode_single("uint256", raw, "balanceOf")

    async def get_token_decimals(self, rpc_url: str, token_address: str) -> int:
        # Some tokens declare decimals as uint256; range checking happens in the normalizer.
        raw = await self._call(rpc_url, token_address, DECIMALS_SELECTOR, "decimals")
        return self._decode_single("uint256", raw, "decimals")

    async def get_token_symbol(self, rpc_url: str, token_address: str) -> str:
        raw = await self._call(rpc_url, token_address, SYMBOL_SELECTOR, "symbol")
        try:
            (symbol,) = decode(["string"], raw)
        except (DecodingError, UnicodeDecodeError):
            # Legacy tokens (MKR and friends) return bytes32.
            if len(raw) != 32:
                raise QueryError(f"symbol() returned undecodable data ({len(raw)} bytes)") from None
            symbol = raw.rstrip(b"\x00").decode("utf-8", errors="replace")
        return symbol.strip()

    async def _call(self, rpc_url: str, token_address: str, data: bytes, name: str) -> bytes:
        _address_bytes(token_address, "token")
        method = f"eth_call {name}()"
        result = await self._rpc(
            rpc_url,
            "eth_call",
            [{"to": token_address.strip(), "data": "0x" + data.hex()}, "latest"],
        )
        return _hex_data(result, method)

    @staticmethod
    def _decode_single(abi_type: str, raw: bytes, name: str) -> int:
        try:
            (value,) = decode([abi_type], raw)
        except DecodingError as exc:
            raise QueryError(f"{name}() returned malformed data: {exc}") from exc
        return value

    async def _rpc(self, rpc_url: str, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(rpc_url, json=payload)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as exc:
            # Keep the endpoint URL out of the message; it often embeds an API key.
            raise QueryError(f"{method} failed with HTTP {exc.response.status_code}") from exc
        except httpx.InvalidURL as exc:
            raise QueryError(f"{method} has a malformed RPC URL") from exc
        except httpx.HTTPError as exc:
            raise QueryError(f"{method} request failed: {exc!r}") from exc
        except ValueError as exc:
            raise QueryError(f"{method} returned invalid JSON") from exc

        if not isinstance(data, dict):
            raise QueryError(f"{method} returned an unexpected payload: {data!r}")
        if data.get("error"):
            raise QueryError(f"{method} returned RPC error: {data['error']}")
        if "result" not in data:
            raise QueryError(f"{method} response has no result")

        logger.debug("%s -> %s", method, data["result"])
        return data["result"]
