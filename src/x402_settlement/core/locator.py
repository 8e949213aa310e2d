"""
Locate the transaction carrying a payment reference.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Iterable, List, Optional

from .errors import NotFoundYet, RpcTransient, VerificationTimeout
from .ledger import Commitment, SignatureInfo
from .models import PaymentReference
from .retry import Clock, RetryPolicy, Sleep

__all__ = ["PaymentLocator", "rank_signatures", "select_signature"]


def rank_signatures(
    candidates: Iterable[SignatureInfo],
    min_commitment: Commitment = Commitment.CONFIRMED,
) -> List[SignatureInfo]:
    """
    Signatures at or above ``min_commitment``, successful ones first, each
    group newest first.
    """
    eligible = [
        info
        for info in candidates
        if info.commitment is not None and info.commitment.at_least(min_commitment)
    ]
    eligible.sort(key=lambda info: (info.failed, -info.slot))
    return eligible


def select_signature(
    candidates: Iterable[SignatureInfo],
    min_commitment: Commitment = Commitment.CONFIRMED,
) -> Optional[SignatureInfo]:
    """
    Pick the most recent signature at or above ``min_commitment``.

    Successful signatures win over failed ones so that a resubmitted payment
    is not shadowed by an earlier rejected attempt; a failed signature is
    only returned when nothing else qualifies.
    """
    ranked = rank_signatures(candidates, min_commitment)
    return ranked[0] if ranked else None


class PaymentLocator:
    def __init__(
        self,
        rpc,
        *,
        retry: Optional[RetryPolicy] = None,
        poll_interval: float = 1.0,
        min_commitment: Commitment = Commitment.CONFIRMED,
        history_limit: int = 10,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.rpc = rpc
        self.retry = retry or RetryPolicy()
        self.poll_interval = poll_interval
        self.min_commitment = min_commitment
        self.history_limit = history_limit
        self.sleep = sleep
        self.clock = clock

    async def _history(self, reference: PaymentReference) -> List[SignatureInfo]:
        # getSignaturesForAddress accepts confirmed/finalized only.
        query_commitment = (
            Commitment.FINALIZED
            if self.min_commitment is Commitment.FINALIZED
            else Commitment.CONFIRMED
        )
        return await self.retry.run(
            lambda: self.rpc.get_signatures_for_address(
                reference.address,
                limit=self.history_limit,
                commitment=query_commitment,
            ),
            "getSignaturesForAddress",
            sleep=self.sleep,
        )

    async def find(self, reference: PaymentReference) -> SignatureInfo:
        """Single lookup; raises :class:`NotFoundYet` when nothing qualifies."""
        chosen = select_signature(await self._history(reference), self.min_commitment)
        if chosen is None:
            raise NotFoundYet(
                f"No {self.min_commitment.value} transaction found for reference {reference}",
                reference=reference.address,
            )
        return chosen

    async def candidates(self, reference: PaymentReference) -> List[SignatureInfo]:
        """Successful signatures mentioning ``reference``, newest first."""
        ranked = rank_signatures(await self._history(reference), self.min_commitment)
        return [info for info in ranked if not info.failed]

    async def locate(
        self,
        reference: PaymentReference,
        *,
        timeout: float,
    ) -> SignatureInfo:
        deadline = self.clock() + timeout
        attempts = 0
        last_error: Optional[RpcTransient] = None
        while True:
            attempts += 1
            try:
                found = await self.find(reference)
            except NotFoundYet:
                pass
            except RpcTransient as exc:
                last_error = exc
                logging.warning(
                    "Lookup for reference %s hit a transient RPC error: %s", reference, exc
                )
            else:
                logging.info(
                    "Located %s for reference %s after %d attempt(s)",
                    found.signature,
                    reference,
                    attempts,
                )
                return found

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise VerificationTimeout(
                    f"No transaction for reference {reference} within {timeout:.1f}s",
                    reference=reference.address,
                    state="searching",
                    detail={"attempts": attempts, "last_error": str(last_error) if last_error else None},
                )
            await self.sleep(min(self.poll_interval, remaining))
