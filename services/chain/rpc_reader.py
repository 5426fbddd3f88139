"""Ethereum JSON-RPC chain reader over HTTP.

Issues eth_chainId and eth_getTransactionReceipt against a single node. Each
call is one observation: there is no retry here, the client retries the
whole purchase request instead.

Based on the Ethereum JSON-RPC specification:
https://ethereum.org/en/developers/docs/apis/json-rpc/
"""

import itertools
import logging
from typing import Any

import httpx

from services.chain.base import ChainReader, ChainReadError, LogEntry, TransactionReceipt
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class JsonRpcChainReader(ChainReader):
    """Chain reader using httpx against a JSON-RPC endpoint."""

    def __init__(self, settings: Settings) -> None:
        """Initialize reader.

        Args:
            settings: Application settings with rpc_url and rpc_timeout_seconds
        """
        self.settings = settings
        self._rpc_url = settings.rpc_url
        self._client = httpx.AsyncClient(timeout=settings.rpc_timeout_seconds)
        self._ids = itertools.count(1)

    @property
    def provider_name(self) -> str:
        return "json-rpc"

    async def aclose(self) -> None:
        await self._client.aclose()

    async def is_available(self, expected_chain_id: int) -> bool:
        try:
            return await self.get_chain_id() == expected_chain_id
        except ChainReadError as e:
            logger.warning(f"Chain node health check failed: {e}")
            return False

    async def get_chain_id(self) -> int:
        result = await self._call("eth_chainId", [])
        try:
            return int(result, 16)
        except (TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed eth_chainId result: {result!r}") from e

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionReceipt | None:
        result = await self._call("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            return None

        try:
            return _parse_receipt(result)
        except (KeyError, TypeError, ValueError) as e:
            raise ChainReadError(f"Malformed receipt for {tx_hash}: {e}") from e

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Send one JSON-RPC request and return its result.

        Raises:
            ChainReadError: On transport failure, HTTP error or JSON-RPC error
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self._rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise ChainReadError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise ChainReadError(f"{method} returned invalid JSON") from e

        if not isinstance(body, dict):
            raise ChainReadError(f"{method} returned unexpected payload")
        if body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else error
            raise ChainReadError(f"{method} error: {message}")

        return body.get("result")


def _parse_receipt(raw: dict[str, Any]) -> TransactionReceipt:
    block_number = raw.get("blockNumber")
    return TransactionReceipt(
        transaction_hash=raw["transactionHash"],
        status=int(raw["status"], 16),
        block_number=int(block_number, 16) if block_number else None,
        logs=[
            LogEntry(
                address=log["address"],
                topics=list(log.get("topics") or []),
                data=log.get("data") or "0x",
            )
            for log in raw.get("logs") or []
        ],
    )
