"""
Typed views of ledger RPC responses.

This is the only place that tolerates the quirks of live RPC payloads:
deprecated fields that nodes now return as ``null`` (``costUnits``,
``loadedAddresses``, ``rewards``, ``returnData``) are ignored, and fields that
are legitimately optional (``blockTime``, ``confirmationStatus``, ``err``)
become ``None``. A payload missing a structurally required field raises
:class:`RpcPermanent` with ``MALFORMED_RESPONSE`` so the rest of the package
only ever handles validated data.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from .errors import RpcErrorKind, RpcPermanent

__all__ = [
    "AccountKey",
    "Commitment",
    "LatestBlockhash",
    "SignatureInfo",
    "SignatureStatus",
    "TokenBalance",
    "TransactionRecord",
]


class Commitment(enum.Enum):
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"

    @property
    def rank(self) -> int:
        return _COMMITMENT_RANK[self]

    def at_least(self, other: "Commitment") -> bool:
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Commitment"]:
        if value is None:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


_COMMITMENT_RANK = {
    Commitment.PROCESSED: 0,
    Commitment.CONFIRMED: 1,
    Commitment.FINALIZED: 2,
}


def _malformed(what: str, payload: Any) -> RpcPermanent:
    return RpcPermanent(
        f"Malformed RPC response: {what}",
        kind=RpcErrorKind.MALFORMED_RESPONSE,
        detail=payload,
    )


def _require(payload: Mapping[str, Any], key: str, what: str) -> Any:
    if not isinstance(payload, Mapping) or payload.get(key) is None:
        raise _malformed(f"{what} is missing '{key}'", payload)
    return payload[key]


@dataclass(frozen=True)
class SignatureInfo:
    signature: str
    slot: int
    block_time: Optional[int]
    commitment: Optional[Commitment]
    execution_error: Any = None

    @property
    def failed(self) -> bool:
        return self.execution_error is not None

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "SignatureInfo":
        return cls(
            signature=str(_require(payload, "signature", "signature info")),
            slot=int(_require(payload, "slot", "signature info")),
            block_time=payload.get("blockTime"),
            commitment=Commitment.parse(payload.get("confirmationStatus")),
            execution_error=payload.get("err"),
        )


@dataclass(frozen=True)
class SignatureStatus:
    slot: int
    commitment: Optional[Commitment]
    execution_error: Any = None
    confirmations: Optional[int] = None

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "SignatureStatus":
        commitment = Commitment.parse(payload.get("confirmationStatus"))
        confirmations = payload.get("confirmations")
        # Older nodes omit confirmationStatus; null confirmations means rooted.
        if commitment is None and "confirmationStatus" not in payload:
            commitment = Commitment.FINALIZED if confirmations is None else Commitment.CONFIRMED
        return cls(
            slot=int(_require(payload, "slot", "signature status")),
            commitment=commitment,
            execution_error=payload.get("err"),
            confirmations=confirmations,
        )


@dataclass(frozen=True)
class AccountKey:
    pubkey: str
    signer: bool = False
    writable: bool = False

    @classmethod
    def from_response(cls, payload: Any) -> "AccountKey":
        if isinstance(payload, str):
            return cls(pubkey=payload)
        return cls(
            pubkey=str(_require(payload, "pubkey", "account key")),
            signer=bool(payload.get("signer", False)),
            writable=bool(payload.get("writable", False)),
        )


@dataclass(frozen=True)
class TokenBalance:
    account_index: int
    mint: str
    owner: Optional[str]
    amount: int
    decimals: int

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "TokenBalance":
        ui_amount = _require(payload, "uiTokenAmount", "token balance")
        return cls(
            account_index=int(_require(payload, "accountIndex", "token balance")),
            mint=str(_require(payload, "mint", "token balance")),
            owner=payload.get("owner"),
            amount=int(_require(ui_amount, "amount", "token amount")),
            decimals=int(ui_amount.get("decimals") or 0),
        )


def _token_balances(entries: Optional[Sequence[Mapping[str, Any]]]) -> Tuple[TokenBalance, ...]:
    return tuple(TokenBalance.from_response(entry) for entry in entries or ())


@dataclass(frozen=True)
class TransactionRecord:
    """
    A confirmed transaction as read from ``getTransaction`` (jsonParsed).
    """

    signature: str
    slot: int
    block_time: Optional[int]
    execution_error: Any
    fee: int
    account_keys: Tuple[AccountKey, ...]
    pre_balances: Tuple[int, ...]
    post_balances: Tuple[int, ...]
    pre_token_balances: Tuple[TokenBalance, ...]
    post_token_balances: Tuple[TokenBalance, ...]
    instructions: Tuple[Dict[str, Any], ...] = ()
    commitment: Optional[Commitment] = None

    @property
    def failed(self) -> bool:
        return self.execution_error is not None

    def account_addresses(self) -> Tuple[str, ...]:
        return tuple(key.pubkey for key in self.account_keys)

    def index_of(self, address: str) -> Optional[int]:
        for index, key in enumerate(self.account_keys):
            if key.pubkey == address:
                return index
        return None

    def native_delta(self, index: int) -> int:
        pre = self.pre_balances[index] if index < len(self.pre_balances) else 0
        post = self.post_balances[index] if index < len(self.post_balances) else 0
        return post - pre

    @classmethod
    def from_response(
        cls,
        payload: Mapping[str, Any],
        *,
        signature: Optional[str] = None,
        commitment: Optional[Commitment] = None,
    ) -> "TransactionRecord":
        meta = _require(payload, "meta", "transaction")
        transaction = _require(payload, "transaction", "transaction")
        message = _require(transaction, "message", "transaction")
        account_keys = tuple(
            AccountKey.from_response(key) for key in message.get("accountKeys") or ()
        )
        signatures = transaction.get("signatures") or ()
        resolved_signature = signature or (signatures[0] if signatures else None)
        if resolved_signature is None:
            raise _malformed("transaction has no signature", payload)

        return cls(
            signature=str(resolved_signature),
            slot=int(_require(payload, "slot", "transaction")),
            block_time=payload.get("blockTime"),
            execution_error=meta.get("err"),
            fee=int(meta.get("fee") or 0),
            account_keys=account_keys,
            pre_balances=tuple(int(value) for value in meta.get("preBalances") or ()),
            post_balances=tuple(int(value) for value in meta.get("postBalances") or ()),
            pre_token_balances=_token_balances(meta.get("preTokenBalances")),
            post_token_balances=_token_balances(meta.get("postTokenBalances")),
            instructions=tuple(dict(ix) for ix in message.get("instructions") or ()),
            commitment=commitment,
        )


@dataclass(frozen=True)
class LatestBlockhash:
    blockhash: str
    last_valid_block_height: int

    @classmethod
    def from_response(cls, payload: Mapping[str, Any]) -> "LatestBlockhash":
        value = _require(payload, "value", "latest blockhash")
        return cls(
            blockhash=str(_require(value, "blockhash", "latest blockhash")),
            last_valid_block_height=int(
                _require(value, "lastValidBlockHeight", "latest blockhash")
            ),
        )
