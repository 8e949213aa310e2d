"""Shared fixtures: an in-memory ledger and a virtual clock."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from x402_settlement.core.ledger import (
    AccountKey,
    Commitment,
    LatestBlockhash,
    SignatureInfo,
    SignatureStatus,
    TokenBalance,
    TransactionRecord,
)
from x402_settlement.core.models import PaymentReference, TransferExpectation
from x402_settlement.core.retry import RetryPolicy

TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
SYSTEM_PROGRAM = "11111111111111111111111111111111"


class VirtualClock:
    """Monotonic clock whose ``sleep`` advances time instantly."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeLedger:
    """Implements the async surface of ``SolanaRpcClient`` in memory."""

    def __init__(self) -> None:
        self.signatures: Dict[str, List[SignatureInfo]] = defaultdict(list)
        self.reveal_after: Dict[str, int] = {}
        self.statuses: Dict[str, List[Optional[SignatureStatus]]] = {}
        self.transactions: Dict[str, TransactionRecord] = {}
        self.accounts: Dict[str, Dict[str, Any]] = {}
        self.token_balances: Dict[str, int] = {}
        self.mints: Dict[str, int] = {}
        self.block_height = 100
        self.latest = LatestBlockhash(blockhash=str(Hash.new_unique()), last_valid_block_height=250)
        self.failures: Dict[str, List[Exception]] = defaultdict(list)
        self.calls: List[str] = []
        self.sent: List[bytes] = []
        self.closed = False
        self._lookups: Dict[str, int] = defaultdict(int)

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures[method].extend(errors)

    def count(self, method: str) -> int:
        return self.calls.count(method)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def add_signature(self, address: str, info: SignatureInfo, *, after_lookups: int = 0) -> None:
        self.signatures[address].append(info)
        if after_lookups:
            self.reveal_after[address] = after_lookups

    def set_status(self, signature: str, *statuses: Optional[SignatureStatus]) -> None:
        """Successive polls return successive statuses; the last one sticks."""
        self.statuses[signature] = list(statuses)

    async def get_signatures_for_address(self, address, *, limit=10, commitment=Commitment.CONFIRMED):
        self._enter("getSignaturesForAddress")
        self._lookups[address] += 1
        if self._lookups[address] <= self.reveal_after.get(address, 0):
            return []
        return list(self.signatures.get(address, []))[:limit]

    async def get_signature_statuses(self, signatures):
        self._enter("getSignatureStatuses")
        result = []
        for signature in signatures:
            queue = self.statuses.get(signature)
            if not queue:
                result.append(None)
            elif len(queue) > 1:
                result.append(queue.pop(0))
            else:
                result.append(queue[0])
        return result

    async def get_transaction(self, signature, *, commitment=Commitment.CONFIRMED):
        self._enter("getTransaction")
        return self.transactions.get(signature)

    async def get_account_info(self, address, *, commitment=Commitment.CONFIRMED):
        self._enter("getAccountInfo")
        if address in self.accounts:
            return self.accounts[address]
        if address in self.token_balances:
            amount = str(self.token_balances[address])
            return {"data": {"parsed": {"info": {"tokenAmount": {"amount": amount}}}}}
        return None

    async def get_token_balance(self, token_account, *, commitment=Commitment.CONFIRMED):
        self._enter("getTokenBalance")
        return self.token_balances.get(token_account)

    async def get_mint_decimals(self, mint, *, commitment=Commitment.CONFIRMED):
        self._enter("getMintDecimals")
        return self.mints.get(mint)

    async def get_latest_blockhash(self, *, commitment=Commitment.CONFIRMED):
        self._enter("getLatestBlockhash")
        return self.latest

    async def get_block_height(self, *, commitment=Commitment.CONFIRMED):
        self._enter("getBlockHeight")
        return self.block_height

    async def send_transaction(self, raw_transaction, *, preflight_commitment=Commitment.CONFIRMED, max_retries=3):
        self._enter("sendTransaction")
        await asyncio.sleep(0)
        self.sent.append(raw_transaction)
        return f"sig-{len(self.sent)}"

    def close(self) -> None:
        self.closed = True


def token_transfer(
    *,
    signature: str,
    payer: Pubkey,
    recipient: Pubkey,
    mint: Pubkey,
    amount: int,
    reference: Optional[PaymentReference],
    recipient_before: int = 0,
    err: Any = None,
    block_time: Optional[int] = 1_700_000_000,
) -> TransactionRecord:
    payer_ata = get_associated_token_address(payer, mint)
    recipient_ata = get_associated_token_address(recipient, mint)
    keys = [
        AccountKey(str(payer), signer=True, writable=True),
        AccountKey(str(payer_ata), writable=True),
        AccountKey(str(recipient_ata), writable=True),
    ]
    if reference is not None:
        keys.append(AccountKey(reference.address))
    keys.append(AccountKey(TOKEN_PROGRAM))
    sent = 0 if err is not None else amount
    return TransactionRecord(
        signature=signature,
        slot=42,
        block_time=block_time,
        execution_error=err,
        fee=5000,
        account_keys=tuple(keys),
        pre_balances=tuple([10_000_000] + [2_039_280] * (len(keys) - 1)),
        post_balances=tuple([9_995_000] + [2_039_280] * (len(keys) - 1)),
        pre_token_balances=(
            TokenBalance(1, str(mint), str(payer), 1_000_000, 6),
            TokenBalance(2, str(mint), str(recipient), recipient_before, 6),
        ),
        post_token_balances=(
            TokenBalance(1, str(mint), str(payer), 1_000_000 - sent, 6),
            TokenBalance(2, str(mint), str(recipient), recipient_before + sent, 6),
        ),
        instructions=(
            {
                "programId": TOKEN_PROGRAM,
                "parsed": {
                    "type": "transferChecked",
                    "info": {"authority": str(payer), "mint": str(mint)},
                },
            },
        ),
    )


def native_transfer(
    *,
    signature: str,
    payer: Pubkey,
    recipient: Pubkey,
    lamports: int,
    reference: Optional[PaymentReference],
) -> TransactionRecord:
    keys = [
        AccountKey(str(payer), signer=True, writable=True),
        AccountKey(str(recipient), writable=True),
    ]
    if reference is not None:
        keys.append(AccountKey(reference.address))
    keys.append(AccountKey(SYSTEM_PROGRAM))
    return TransactionRecord(
        signature=signature,
        slot=42,
        block_time=1_700_000_000,
        execution_error=None,
        fee=5000,
        account_keys=tuple(keys),
        pre_balances=tuple([5_000_000_000, 1_000_000] + [1] * (len(keys) - 2)),
        post_balances=tuple(
            [5_000_000_000 - lamports - 5000, 1_000_000 + lamports] + [1] * (len(keys) - 2)
        ),
        pre_token_balances=(),
        post_token_balances=(),
    )


def confirmed(signature: str, *, slot: int = 42, err: Any = None) -> SignatureInfo:
    return SignatureInfo(
        signature=signature,
        slot=slot,
        block_time=1_700_000_000,
        commitment=Commitment.CONFIRMED,
        execution_error=err,
    )


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def retry() -> RetryPolicy:
    return RetryPolicy(jitter=False)


@pytest.fixture
def mint() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def merchant() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def payer() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def reference() -> PaymentReference:
    return PaymentReference(Pubkey.new_unique())


@pytest.fixture
def expectation(merchant, mint, reference) -> TransferExpectation:
    return TransferExpectation(recipient=merchant, amount=50_000, asset=mint, reference=reference)
