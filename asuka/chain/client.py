"""Chain client interface and a JSON-RPC implementation"""
from __future__ import annotations

import itertools
import logging
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

import httpx

from asuka.errors import SubmissionError


logger = logging.getLogger("asuka.chain")


class ChainStatus(str, Enum):
    """Status of a broadcast transaction as reported by the chain"""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@runtime_checkable
class ChainClient(Protocol):
    """Signs/broadcasts payloads and reports their status"""

    async def submit(self, payload: Any) -> str:
        """Broadcast ``payload`` and return the transaction id. Raises SubmissionError."""
        ...

    async def get_status(self, tx_id: str) -> ChainStatus:
        ...


# Starknet finality/execution statuses
_CONFIRMED_FINALITY = {"ACCEPTED_ON_L2", "ACCEPTED_ON_L1"}
_FAILED_FINALITY = {"REJECTED"}


class JsonRpcChainClient:
    """
    Chain client speaking Starknet-style JSON-RPC over HTTP.

    The payload handed to ``submit`` must already be a signed invoke
    transaction object; signing belongs to whoever builds the payload.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _call(self, method: str, params: Any) -> Any:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        response = await self._http().post(self.rpc_url, json=request)
        response.raise_for_status()
        body = response.json()
        if "error" in body and body["error"]:
            error = body["error"]
            raise RuntimeError(f"RPC error {error.get('code')}: {error.get('message')}")
        return body.get("result")

    async def submit(self, payload: Any) -> str:
        try:
            result = await self._call("starknet_addInvokeTransaction", {"invoke_transaction": payload})
        except (httpx.HTTPError, RuntimeError, ValueError) as exc:
            logger.warning("Submission to %s failed: %s", self.rpc_url, exc)
            raise SubmissionError(str(exc)) from exc

        tx_id = (result or {}).get("transaction_hash")
        if not tx_id:
            raise SubmissionError("RPC response did not include a transaction hash")
        logger.info("Submitted transaction %s", tx_id)
        return tx_id

    async def get_status(self, tx_id: str) -> ChainStatus:
        """Map the node's finality/execution status onto ChainStatus"""
        result = await self._call("starknet_getTransactionStatus", {"transaction_hash": tx_id})
        result = result or {}
        finality = result.get("finality_status", "")
        execution = result.get("execution_status")

        if finality in _FAILED_FINALITY or execution == "REVERTED":
            return ChainStatus.FAILED
        if finality in _CONFIRMED_FINALITY:
            return ChainStatus.CONFIRMED
        return ChainStatus.PENDING
