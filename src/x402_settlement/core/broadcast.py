"""
Signing and broadcasting of reward/refund templates from service-held keys.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from .builder import TransactionTemplate
from .errors import ConfigError, TemplateExpired
from .ledger import Commitment
from .retry import RetryPolicy, Sleep
from .units import format_address
from .waiter import ConfirmationOutcome, ConfirmationWaiter

__all__ = ["BroadcastResult", "SignerQueue"]


@dataclass(frozen=True)
class BroadcastResult:
    signature: str
    signer: str
    outcome: Optional[ConfirmationOutcome] = None


class SignerQueue:
    """
    Serialises broadcasts per signing identity.

    Two templates from the same fee payer never sign and send concurrently;
    templates from different signers proceed independently.
    """

    def __init__(
        self,
        rpc,
        *,
        retry: Optional[RetryPolicy] = None,
        waiter: Optional[ConfirmationWaiter] = None,
        preflight_commitment: Commitment = Commitment.CONFIRMED,
        confirm_timeout: float = 30.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rpc = rpc
        self.retry = retry or RetryPolicy()
        self.waiter = waiter
        self.preflight_commitment = preflight_commitment
        self.confirm_timeout = confirm_timeout
        self.sleep = sleep
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, signer: str) -> asyncio.Lock:
        lock = self._locks.get(signer)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[signer] = lock
        return lock

    async def sign_and_broadcast(
        self,
        template: TransactionTemplate,
        keypair: Keypair,
        *,
        wait: bool = True,
    ) -> BroadcastResult:
        signer = str(keypair.pubkey())
        if keypair.pubkey() != template.fee_payer:
            raise ConfigError(
                f"Keypair {signer} is not the fee payer {template.fee_payer} of this template"
            )

        async with self.lock_for(signer):
            block_height = await self.retry.run(
                lambda: self.rpc.get_block_height(commitment=self.preflight_commitment),
                "getBlockHeight",
                sleep=self.sleep,
            )
            if template.is_expired(block_height):
                raise TemplateExpired(
                    f"Blockhash {template.blockhash} expired at height "
                    f"{template.last_valid_block_height} (now {block_height}); rebuild the template",
                    reference=template.reference,
                    expected_amount=template.amount,
                )

            transaction = VersionedTransaction(template.message(), [keypair])
            # Resending a signed transaction is safe: the ledger deduplicates by signature.
            signature = await self.retry.run(
                lambda: self.rpc.send_transaction(
                    bytes(transaction),
                    preflight_commitment=self.preflight_commitment,
                ),
                "sendTransaction",
                sleep=self.sleep,
            )
            logging.info(
                "Broadcast %s template from %s: %s",
                template.kind.value,
                format_address(signer),
                signature,
            )

        outcome = None
        if wait and self.waiter is not None:
            outcome = await self.waiter.wait_for_signature(
                signature,
                timeout=self.confirm_timeout,
                reference=template.reference,
            )
        return BroadcastResult(signature=signature, signer=signer, outcome=outcome)
