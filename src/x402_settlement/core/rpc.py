"""
JSON-RPC client for the ledger.

Every raw failure (transport exceptions, HTTP status codes, JSON-RPC error
objects) is classified here into :class:`RpcTransient` or
:class:`RpcPermanent` with a structured :class:`RpcErrorKind`.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from .errors import RpcErrorKind, RpcPermanent, RpcTransient
from .ledger import (
    Commitment,
    LatestBlockhash,
    SignatureInfo,
    SignatureStatus,
    TransactionRecord,
)

__all__ = [
    "SolanaRpcClient",
    "classify_http_status",
    "classify_rpc_error",
    "classify_transaction_error",
]

# JSON-RPC server error codes returned by ledger nodes.
_NODE_BEHIND_CODES = frozenset({-32004, -32005, -32007, -32009, -32014, -32016})
_PREFLIGHT_FAILURE = -32002
_SIGNATURE_FAILURE = -32003
_INVALID_REQUEST_CODES = frozenset({-32600, -32601, -32602})
_INTERNAL_ERROR = -32603

_INSUFFICIENT_FUNDS_ERRORS = frozenset(
    {"InsufficientFundsForFee", "InsufficientFundsForRent", "InsufficientFunds"}
)
# Both the system program (ResultWithNegativeLamports) and the token
# program (InsufficientFunds) report a shortfall as custom error 1.
_INSUFFICIENT_FUNDS_CUSTOM_CODE = 1


def _error_name(err: Any) -> Optional[str]:
    if isinstance(err, str):
        return err
    if isinstance(err, Mapping) and len(err) == 1:
        return next(iter(err))
    return None


def classify_transaction_error(err: Any) -> RpcErrorKind:
    """Classify a structured transaction error (``meta.err`` / ``data.err``)."""
    name = _error_name(err)
    if name in _INSUFFICIENT_FUNDS_ERRORS:
        return RpcErrorKind.INSUFFICIENT_FUNDS
    if name == "BlockhashNotFound":
        return RpcErrorKind.BLOCKHASH_NOT_FOUND
    if name == "AlreadyProcessed":
        return RpcErrorKind.ALREADY_PROCESSED
    if name == "InstructionError":
        detail = err["InstructionError"]
        if isinstance(detail, Sequence) and len(detail) == 2:
            inner = detail[1]
            if isinstance(inner, Mapping) and inner.get("Custom") == _INSUFFICIENT_FUNDS_CUSTOM_CODE:
                return RpcErrorKind.INSUFFICIENT_FUNDS
    return RpcErrorKind.TRANSACTION_REJECTED


def classify_http_status(status_code: int) -> RpcErrorKind:
    if status_code == 429:
        return RpcErrorKind.RATE_LIMITED
    if status_code >= 500:
        return RpcErrorKind.SERVER_ERROR
    return RpcErrorKind.INVALID_REQUEST


def classify_rpc_error(error: Mapping[str, Any]) -> RpcErrorKind:
    """Classify a JSON-RPC ``error`` object by its code and structured data."""
    code = error.get("code")
    if code == 429:
        return RpcErrorKind.RATE_LIMITED
    if code in _NODE_BEHIND_CODES:
        return RpcErrorKind.NODE_BEHIND
    if code == _PREFLIGHT_FAILURE:
        data = error.get("data")
        err = data.get("err") if isinstance(data, Mapping) else None
        return classify_transaction_error(err)
    if code == _SIGNATURE_FAILURE:
        return RpcErrorKind.TRANSACTION_REJECTED
    if code in _INVALID_REQUEST_CODES:
        return RpcErrorKind.INVALID_REQUEST
    if code == _INTERNAL_ERROR:
        return RpcErrorKind.SERVER_ERROR
    return RpcErrorKind.SERVER_ERROR


def _raise_for_kind(kind: RpcErrorKind, message: str, detail: Any = None) -> None:
    error_cls = RpcTransient if kind.retryable else RpcPermanent
    raise error_cls(message, kind=kind, detail=detail)


class SolanaRpcClient:
    """
    Thin JSON-RPC wrapper around a shared :class:`requests.Session`.

    The blocking HTTP call runs in a worker thread so independent
    verification flows can await it concurrently.
    """

    def __init__(
        self,
        url: str,
        *,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout
        self._ids = itertools.count(1)

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        body = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        try:
            response = self.session.post(self.url, json=body, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RpcTransient(
                f"{method} failed to reach {self.url}: {exc}",
                kind=RpcErrorKind.NETWORK,
            ) from exc

        if response.status_code >= 400:
            _raise_for_kind(
                classify_http_status(response.status_code),
                f"{method} responded with {response.status_code}: {response.text}",
                detail={"status": response.status_code},
            )
        try:
            payload = response.json()
        except json.JSONDecodeError as exc:
            raise RpcTransient(
                f"Failed to parse JSON from {self.url} for {method}: {response.text}",
                kind=RpcErrorKind.SERVER_ERROR,
            ) from exc

        error = payload.get("error") if isinstance(payload, Mapping) else None
        if error:
            _raise_for_kind(
                classify_rpc_error(error),
                f"{method} returned RPC error {error.get('code')}: {error.get('message')}",
                detail=error,
            )
        if not isinstance(payload, Mapping) or "result" not in payload:
            raise RpcPermanent(
                f"{method} response carried neither result nor error",
                kind=RpcErrorKind.MALFORMED_RESPONSE,
                detail=payload,
            )
        return payload["result"]

    async def request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        logging.debug("RPC %s %s", method, params)
        return await asyncio.to_thread(self.call, method, params)

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 10,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> List[SignatureInfo]:
        result = await self.request(
            "getSignaturesForAddress",
            [address, {"limit": limit, "commitment": commitment.value}],
        )
        return [SignatureInfo.from_response(entry) for entry in result or ()]

    async def get_signature_statuses(
        self,
        signatures: Sequence[str],
    ) -> List[Optional[SignatureStatus]]:
        result = await self.request(
            "getSignatureStatuses",
            [list(signatures), {"searchTransactionHistory": True}],
        )
        values = (result or {}).get("value") or []
        return [
            SignatureStatus.from_response(entry) if entry is not None else None
            for entry in values
        ]

    async def get_transaction(
        self,
        signature: str,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> Optional[TransactionRecord]:
        result = await self.request(
            "getTransaction",
            [
                signature,
                {
                    "commitment": commitment.value,
                    "encoding": "jsonParsed",
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if result is None:
            return None
        return TransactionRecord.from_response(result, signature=signature, commitment=commitment)

    async def get_account_info(
        self,
        address: str,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> Optional[Dict[str, Any]]:
        result = await self.request(
            "getAccountInfo",
            [address, {"commitment": commitment.value, "encoding": "jsonParsed"}],
        )
        return (result or {}).get("value")

    async def get_token_balance(
        self,
        token_account: str,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> Optional[int]:
        """
        Return the raw token amount held by ``token_account`` or ``None`` when
        the account does not exist.
        """
        value = await self.get_account_info(token_account, commitment=commitment)
        if value is None:
            return None
        try:
            amount = value["data"]["parsed"]["info"]["tokenAmount"]["amount"]
        except (KeyError, TypeError) as exc:
            raise RpcPermanent(
                f"Account {token_account} is not a parsed token account",
                kind=RpcErrorKind.MALFORMED_RESPONSE,
                detail=value,
            ) from exc
        return int(amount)

    async def get_mint_decimals(
        self,
        mint: str,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> Optional[int]:
        """Return the decimals of ``mint`` or ``None`` when the mint does not exist."""
        value = await self.get_account_info(mint, commitment=commitment)
        if value is None:
            return None
        try:
            decimals = value["data"]["parsed"]["info"]["decimals"]
        except (KeyError, TypeError) as exc:
            raise RpcPermanent(
                f"Account {mint} is not a parsed mint account",
                kind=RpcErrorKind.MALFORMED_RESPONSE,
                detail=value,
            ) from exc
        return int(decimals)

    async def get_latest_blockhash(
        self,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> LatestBlockhash:
        result = await self.request("getLatestBlockhash", [{"commitment": commitment.value}])
        return LatestBlockhash.from_response(result)

    async def get_block_height(
        self,
        *,
        commitment: Commitment = Commitment.CONFIRMED,
    ) -> int:
        result = await self.request("getBlockHeight", [{"commitment": commitment.value}])
        return int(result)

    async def send_transaction(
        self,
        raw_transaction: bytes,
        *,
        preflight_commitment: Commitment = Commitment.CONFIRMED,
        max_retries: int = 3,
    ) -> str:
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        result = await self.request(
            "sendTransaction",
            [
                encoded,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": preflight_commitment.value,
                    "maxRetries": max_retries,
                },
            ],
        )
        return str(result)

    def close(self) -> None:
        self.session.close()