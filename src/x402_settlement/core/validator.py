"""
Check a confirmed transaction against a :class:`TransferExpectation`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from spl.token.instructions import get_associated_token_address

from .errors import ValidationMismatch
from .ledger import Commitment, TokenBalance, TransactionRecord
from .models import TransferExpectation
from .retry import RetryPolicy, Sleep

__all__ = [
    "DEFAULT_NATIVE_TOLERANCE",
    "DEFAULT_TOKEN_TOLERANCE",
    "TransferValidator",
    "ValidatedTransfer",
    "extract_payer",
    "fetch_payer",
]

# Up to 0.001 SOL of drift is accepted for rent-exempt reserves and fees.
DEFAULT_NATIVE_TOLERANCE = 1_000_000
DEFAULT_TOKEN_TOLERANCE = 1


@dataclass(frozen=True)
class ValidatedTransfer:
    signature: str
    amount: int
    asset: str


class TransferValidator:
    def __init__(
        self,
        *,
        native_tolerance: int = DEFAULT_NATIVE_TOLERANCE,
        token_tolerance: int = DEFAULT_TOKEN_TOLERANCE,
    ) -> None:
        self.native_tolerance = native_tolerance
        self.token_tolerance = token_tolerance

    def validate(
        self,
        transaction: TransactionRecord,
        expectation: TransferExpectation,
    ) -> ValidatedTransfer:
        reference = expectation.reference.address
        if transaction.index_of(reference) is None:
            raise self._mismatch(
                "Reference not found in transaction; this is not the expected payment",
                transaction,
                expectation,
                actual=None,
                reason="reference_missing",
            )

        if expectation.is_native:
            actual = self._native_delta(transaction, expectation)
            tolerance = self.native_tolerance
        else:
            actual = self._token_delta(transaction, expectation)
            tolerance = self.token_tolerance

        if abs(actual - expectation.amount) > tolerance:
            raise self._mismatch(
                f"Wrong amount transferred. Expected {expectation.amount}, got {actual}",
                transaction,
                expectation,
                actual=actual,
                reason="amount",
            )

        logging.debug(
            "Transfer %s validated: %s %s to %s",
            transaction.signature,
            actual,
            expectation.asset_label,
            expectation.recipient,
        )
        return ValidatedTransfer(
            signature=transaction.signature,
            amount=actual,
            asset=expectation.asset_label,
        )

    def _native_delta(self, transaction: TransactionRecord, expectation: TransferExpectation) -> int:
        recipient = str(expectation.recipient)
        index = transaction.index_of(recipient)
        delta = transaction.native_delta(index) if index is not None else 0
        if delta > 0:
            return delta
        if _received_any_token(transaction, recipient):
            raise self._mismatch(
                f"Recipient {recipient} received a token instead of the native asset",
                transaction,
                expectation,
                actual=0,
                reason="wrong_asset",
            )
        raise self._mismatch(
            f"No native transfer to {recipient} found in transaction",
            transaction,
            expectation,
            actual=delta if index is not None else 0,
            reason="wrong_recipient",
        )

    def _token_delta(self, transaction: TransactionRecord, expectation: TransferExpectation) -> int:
        recipient = str(expectation.recipient)
        mint = str(expectation.asset)
        token_account = str(get_associated_token_address(expectation.recipient, expectation.asset))

        def held(balance: TokenBalance) -> bool:
            if balance.mint != mint:
                return False
            if balance.owner is not None:
                return balance.owner == recipient
            # Older nodes omit the owner; fall back to the associated account.
            return _address_at(transaction, balance.account_index) == token_account

        post = sum(b.amount for b in transaction.post_token_balances if held(b))
        pre = sum(b.amount for b in transaction.pre_token_balances if held(b))
        delta = post - pre
        if delta > 0:
            return delta

        if _received_any_token(transaction, recipient, exclude_mint=mint):
            raise self._mismatch(
                f"Recipient {recipient} received a different token than {mint}",
                transaction,
                expectation,
                actual=0,
                reason="wrong_asset",
            )
        raise self._mismatch(
            f"No {mint} transfer to {recipient} found in transaction",
            transaction,
            expectation,
            actual=max(delta, 0),
            reason="wrong_recipient",
        )

    @staticmethod
    def _mismatch(
        message: str,
        transaction: TransactionRecord,
        expectation: TransferExpectation,
        *,
        actual: Optional[int],
        reason: str,
    ) -> ValidationMismatch:
        logging.warning("Validation of %s failed (%s): %s", transaction.signature, reason, message)
        return ValidationMismatch(
            message,
            expected=expectation.amount,
            actual=actual,
            reason=reason,
            reference=expectation.reference.address,
            signature=transaction.signature,
            detail=expectation.describe(),
        )


def _address_at(transaction: TransactionRecord, index: int) -> Optional[str]:
    if 0 <= index < len(transaction.account_keys):
        return transaction.account_keys[index].pubkey
    return None


def _received_any_token(
    transaction: TransactionRecord,
    owner: str,
    *,
    exclude_mint: Optional[str] = None,
) -> bool:
    for post in transaction.post_token_balances:
        if post.owner != owner or post.mint == exclude_mint:
            continue
        pre = next(
            (
                b.amount
                for b in transaction.pre_token_balances
                if b.account_index == post.account_index and b.mint == post.mint
            ),
            0,
        )
        if post.amount > pre:
            return True
    return False


def extract_payer(transaction: TransactionRecord) -> Optional[str]:
    """
    Return the wallet that paid: the first signer, or failing that the source
    (native) or authority (token) of the first parsed transfer instruction.
    """
    for key in transaction.account_keys:
        if key.signer:
            return key.pubkey
    for instruction in transaction.instructions:
        parsed = instruction.get("parsed")
        if not isinstance(parsed, dict):
            continue
        info = parsed.get("info") or {}
        kind = parsed.get("type")
        if kind in ("transfer", "transferChecked"):
            payer = info.get("authority") or info.get("source")
            if payer:
                return str(payer)
    return None


async def fetch_payer(
    rpc,
    signature: str,
    *,
    retry: Optional[RetryPolicy] = None,
    commitment: Commitment = Commitment.CONFIRMED,
    sleep: Sleep = asyncio.sleep,
) -> Optional[str]:
    """
    Fetch ``signature`` through the retry policy and return its payer.

    ``None`` means the ledger does not know the transaction or it names no
    payer; RPC failures that outlast the retries propagate.
    """
    retry = retry or RetryPolicy()
    record = await retry.run(
        lambda: rpc.get_transaction(signature, commitment=commitment),
        "getTransaction",
        sleep=sleep,
    )
    if record is None:
        logging.warning("Transaction %s not found while extracting its payer", signature)
        return None
    payer = extract_payer(record)
    if payer is None:
        logging.warning("Could not extract a payer from %s", signature)
    else:
        logging.info("Extracted payer %s from %s", payer, signature)
    return payer
