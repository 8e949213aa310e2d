"""
Unsigned transaction templates for payment, reward and refund flows.

Payment templates must satisfy the settlement facilitator's exact-structure
check: three instructions in the order compute-limit, compute-price,
transfer, with a fee payer distinct from the sending wallet. When the sender
is its own fee payer, wallets inject protective instructions and the
facilitator rejects the transaction.
"""

from __future__ import annotations

import asyncio
import base64
import enum
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from .errors import ConfigError, TemplateError
from .ledger import Commitment
from .models import PaymentReference
from .retry import RetryPolicy, Sleep
from .units import format_address

__all__ = [
    "COMPUTE_BUDGET_PROGRAM_ID",
    "MEMO_PROGRAM_ID",
    "ComputeBudget",
    "TemplateKind",
    "TransactionBuilder",
    "TransactionTemplate",
    "instruction_labels",
]

COMPUTE_BUDGET_PROGRAM_ID = Pubkey.from_string("ComputeBudget111111111111111111111111111111")
MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")

_SET_COMPUTE_UNIT_LIMIT = 2
_SET_COMPUTE_UNIT_PRICE = 3
_TOKEN_TRANSFER_CHECKED = 12
_SYSTEM_TRANSFER = 2


@dataclass(frozen=True)
class ComputeBudget:
    units: int
    micro_lamports: int

    def instructions(self) -> List[Instruction]:
        return [
            set_compute_unit_limit(self.units),
            set_compute_unit_price(self.micro_lamports),
        ]


# Payment: a single transferChecked fits comfortably in 40k units.
PAYMENT_COMPUTE = ComputeBudget(units=40_000, micro_lamports=1)
# Reward/refund: ATA creation (~23k) + transfer (~6k) + memo (~13k) + headroom.
PAYOUT_COMPUTE = ComputeBudget(units=80_000, micro_lamports=500_000)


class TemplateKind(enum.Enum):
    PAYMENT = "payment"
    REWARD = "reward"
    REFUND = "refund"


def instruction_labels(instructions: Sequence[Instruction]) -> List[str]:
    labels = []
    for ix in instructions:
        tag = ix.data[0] if ix.data else None
        if ix.program_id == COMPUTE_BUDGET_PROGRAM_ID and tag == _SET_COMPUTE_UNIT_LIMIT:
            labels.append("compute_limit")
        elif ix.program_id == COMPUTE_BUDGET_PROGRAM_ID and tag == _SET_COMPUTE_UNIT_PRICE:
            labels.append("compute_price")
        elif ix.program_id == TOKEN_PROGRAM_ID and tag == _TOKEN_TRANSFER_CHECKED:
            labels.append("transfer")
        elif ix.program_id == SYSTEM_PROGRAM_ID and tag == _SYSTEM_TRANSFER:
            labels.append("transfer")
        elif ix.program_id == MEMO_PROGRAM_ID:
            labels.append("memo")
        else:
            labels.append("create_account" if ix.accounts else "other")
    return labels


@dataclass(frozen=True)
class TransactionTemplate:
    """
    Unsigned instruction sequence bound to a blockhash.

    A template is only valid until the ledger passes
    ``last_valid_block_height``; after that it must be rebuilt.
    """

    kind: TemplateKind
    instructions: Tuple[Instruction, ...]
    fee_payer: Pubkey
    sender: Pubkey
    recipient: Pubkey
    amount: int
    asset: Optional[Pubkey]
    blockhash: str
    last_valid_block_height: int
    reference: Optional[str] = None

    @property
    def labels(self) -> List[str]:
        return instruction_labels(self.instructions)

    def message(self) -> MessageV0:
        return MessageV0.try_compile(
            self.fee_payer,
            list(self.instructions),
            [],
            Hash.from_string(self.blockhash),
        )

    def unsigned_transaction(self) -> VersionedTransaction:
        message = self.message()
        placeholders = [Signature.default()] * message.header.num_required_signatures
        return VersionedTransaction.populate(message, placeholders)

    def serialize(self) -> str:
        return base64.b64encode(bytes(self.unsigned_transaction())).decode("ascii")

    def is_expired(self, block_height: int) -> bool:
        return block_height > self.last_valid_block_height


def _with_reference(instruction: Instruction, reference: Optional[PaymentReference]) -> Instruction:
    if reference is None:
        return instruction
    accounts = list(instruction.accounts)
    accounts.append(AccountMeta(reference.pubkey, is_signer=False, is_writable=False))
    return Instruction(instruction.program_id, instruction.data, accounts)


def _memo(text: str) -> Instruction:
    return Instruction(MEMO_PROGRAM_ID, text.encode("utf-8"), [])


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise ConfigError(f"Amount must be an integer in atomic units, got {amount!r}")
    if amount <= 0:
        raise ConfigError("Amount must be greater than zero")


def _check_decimals(decimals: Optional[int]) -> None:
    if decimals is None:
        return
    if isinstance(decimals, bool) or not isinstance(decimals, int) or decimals < 0:
        raise ConfigError(f"Decimals must be a non-negative integer, got {decimals!r}")


class TransactionBuilder:
    def __init__(
        self,
        rpc,
        *,
        asset_mint: Optional[Pubkey],
        asset_decimals: int,
        facilitator_fee_payer: Optional[Pubkey] = None,
        separate_fee_payer: bool = True,
        retry: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
        blockhash_commitment: Commitment = Commitment.CONFIRMED,
    ) -> None:
        self.rpc = rpc
        self.asset_mint = asset_mint
        self.asset_decimals = asset_decimals
        self.facilitator_fee_payer = facilitator_fee_payer
        self.separate_fee_payer = separate_fee_payer
        self.retry = retry or RetryPolicy()
        self.sleep = sleep
        self.blockhash_commitment = blockhash_commitment

    async def _call(self, fn, operation: str):
        return await self.retry.run(fn, operation, sleep=self.sleep)

    def _resolve_mint(self, mint: Optional[Pubkey], native: bool) -> Optional[Pubkey]:
        if native:
            return None
        return mint if mint is not None else self.asset_mint

    async def _account_exists(self, address: Pubkey) -> bool:
        info = await self._call(
            lambda: self.rpc.get_account_info(str(address)), "getAccountInfo"
        )
        return info is not None

    async def _decimals_for(self, asset: Pubkey, decimals: Optional[int], context) -> int:
        """
        Decimals passed to ``transfer_checked``: explicit ones win, the
        configured asset uses its configured decimals, and any other mint is
        read from the ledger.
        """
        if decimals is not None:
            return decimals
        if asset == self.asset_mint:
            return self.asset_decimals
        found = await self._call(
            lambda: self.rpc.get_mint_decimals(str(asset)), "getAccountInfo"
        )
        if found is None:
            raise TemplateError(f"Mint {asset} does not exist", **context)
        return found

    async def _blockhash(self):
        return await self._call(
            lambda: self.rpc.get_latest_blockhash(commitment=self.blockhash_commitment),
            "getLatestBlockhash",
        )

    def _payment_fee_payer(self, sender: Pubkey) -> Pubkey:
        if not self.separate_fee_payer:
            return sender
        if self.facilitator_fee_payer is None:
            raise ConfigError("Fee-payer separation is enabled but no facilitator fee payer is set")
        if self.facilitator_fee_payer == sender:
            raise ConfigError("The facilitator fee payer must differ from the sending wallet")
        return self.facilitator_fee_payer

    async def build_payment(
        self,
        *,
        sender: Pubkey,
        recipient: Pubkey,
        amount: int,
        reference: Optional[PaymentReference] = None,
        mint: Optional[Pubkey] = None,
        native: bool = False,
        decimals: Optional[int] = None,
    ) -> TransactionTemplate:
        """
        Build the user-pays-service template.

        Fails with :class:`TemplateError` before returning anything when a
        token account involved in the transfer does not exist or the sender
        cannot cover the amount.
        """
        _check_amount(amount)
        _check_decimals(decimals)
        fee_payer = self._payment_fee_payer(sender)
        asset = self._resolve_mint(mint, native)
        context = {"reference": reference.address if reference else None, "expected_amount": amount}

        logging.info(
            "Building payment template %s -> %s for %d atomic units",
            format_address(sender),
            format_address(recipient),
            amount,
        )

        if asset is None:
            info = await self._call(lambda: self.rpc.get_account_info(str(sender)), "getAccountInfo")
            lamports = int((info or {}).get("lamports") or 0)
            if info is None or lamports < amount:
                raise TemplateError(
                    f"Sender {sender} holds {lamports} lamports but needs {amount}",
                    **context,
                )
            transfer_ix = transfer(
                TransferParams(from_pubkey=sender, to_pubkey=recipient, lamports=amount)
            )
        else:
            sender_account = get_associated_token_address(sender, asset)
            recipient_account = get_associated_token_address(recipient, asset)
            balance = await self._call(
                lambda: self.rpc.get_token_balance(str(sender_account)), "getAccountInfo"
            )
            if balance is None:
                raise TemplateError(
                    f"Sender {sender} has no token account for {asset}", **context
                )
            if balance < amount:
                raise TemplateError(
                    f"Insufficient balance: sender holds {balance} but needs {amount}",
                    **context,
                )
            if not await self._account_exists(recipient_account):
                raise TemplateError(
                    f"Recipient {recipient} has no token account for {asset}", **context
                )
            token_decimals = await self._decimals_for(asset, decimals, context)
            transfer_ix = transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=sender_account,
                    mint=asset,
                    dest=recipient_account,
                    owner=sender,
                    amount=amount,
                    decimals=token_decimals,
                )
            )

        instructions = PAYMENT_COMPUTE.instructions() + [_with_reference(transfer_ix, reference)]
        latest = await self._blockhash()
        template = TransactionTemplate(
            kind=TemplateKind.PAYMENT,
            instructions=tuple(instructions),
            fee_payer=fee_payer,
            sender=sender,
            recipient=recipient,
            amount=amount,
            asset=asset,
            blockhash=latest.blockhash,
            last_valid_block_height=latest.last_valid_block_height,
            reference=reference.address if reference else None,
        )
        if template.labels != ["compute_limit", "compute_price", "transfer"]:
            raise TemplateError(f"Payment template has unexpected shape {template.labels}", **context)
        return template

    async def _build_payout(
        self,
        kind: TemplateKind,
        *,
        source: Pubkey,
        recipient: Pubkey,
        amount: int,
        reference: Optional[PaymentReference],
        memo: Optional[str],
        asset: Optional[Pubkey],
        decimals: Optional[int] = None,
    ) -> TransactionTemplate:
        _check_amount(amount)
        _check_decimals(decimals)
        context = {"reference": reference.address if reference else None, "expected_amount": amount}
        instructions = PAYOUT_COMPUTE.instructions()

        if asset is None:
            transfer_ix = transfer(
                TransferParams(from_pubkey=source, to_pubkey=recipient, lamports=amount)
            )
        else:
            source_account = get_associated_token_address(source, asset)
            recipient_account = get_associated_token_address(recipient, asset)
            if not await self._account_exists(recipient_account):
                logging.info(
                    "Recipient %s has no token account; adding creation instruction",
                    format_address(recipient),
                )
                instructions.append(create_associated_token_account(source, recipient, asset))
            token_decimals = await self._decimals_for(asset, decimals, context)
            transfer_ix = transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source_account,
                    mint=asset,
                    dest=recipient_account,
                    owner=source,
                    amount=amount,
                    decimals=token_decimals,
                )
            )

        instructions.append(_with_reference(transfer_ix, reference))
        if memo:
            instructions.append(_memo(memo))

        latest = await self._blockhash()
        logging.info(
            "Built %s template %s -> %s for %d atomic units (%d instructions)",
            kind.value,
            format_address(source),
            format_address(recipient),
            amount,
            len(instructions),
        )
        return TransactionTemplate(
            kind=kind,
            instructions=tuple(instructions),
            fee_payer=source,
            sender=source,
            recipient=recipient,
            amount=amount,
            asset=asset,
            blockhash=latest.blockhash,
            last_valid_block_height=latest.last_valid_block_height,
            reference=reference.address if reference else None,
        )

    async def build_reward(
        self,
        *,
        service: Pubkey,
        recipient: Pubkey,
        amount: int,
        reference: Optional[PaymentReference] = None,
        memo: Optional[str] = None,
        mint: Optional[Pubkey] = None,
        native: bool = False,
        decimals: Optional[int] = None,
    ) -> TransactionTemplate:
        """Service pays the counterparty; the service signs and pays fees."""
        return await self._build_payout(
            TemplateKind.REWARD,
            source=service,
            recipient=recipient,
            amount=amount,
            reference=reference,
            memo=memo,
            asset=self._resolve_mint(mint, native),
            decimals=decimals,
        )

    async def build_refund(
        self,
        *,
        platform: Pubkey,
        recipient: Pubkey,
        amount: int,
        reference: PaymentReference,
        memo: Optional[str] = None,
        mint: Optional[Pubkey] = None,
        native: bool = False,
        decimals: Optional[int] = None,
    ) -> TransactionTemplate:
        """Platform refund wallet pays the counterparty, tagged with the original reference."""
        if reference is None:
            raise ConfigError("Refund templates must carry the original payment reference")
        return await self._build_payout(
            TemplateKind.REFUND,
            source=platform,
            recipient=recipient,
            amount=amount,
            reference=reference,
            memo=memo,
            asset=self._resolve_mint(mint, native),
            decimals=decimals,
        )
