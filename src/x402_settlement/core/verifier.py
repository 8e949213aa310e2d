"""
End-to-end payment verification: locate, confirm, fetch, validate.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Optional, Sequence, Tuple, Union

from .errors import (
    NotFoundYet,
    OnChainExecutionFailure,
    RpcTransient,
    ValidationMismatch,
    VerificationTimeout,
)
from .ledger import Commitment, TransactionRecord
from .models import TransferExpectation, VerificationResult
from .reference import ReferenceTracker
from .retry import Clock, RetryPolicy, Sleep
from .validator import TransferValidator, ValidatedTransfer
from .waiter import ConfirmationWaiter

__all__ = ["PaymentVerifier"]


class PaymentVerifier:
    """
    Issues a :class:`VerificationResult` only for a transaction that reached
    the waiter's target commitment and passed the transfer validator.
    """

    def __init__(
        self,
        rpc,
        waiter: ConfirmationWaiter,
        *,
        tracker: Optional[ReferenceTracker] = None,
        validator: Optional[TransferValidator] = None,
        retry: Optional[RetryPolicy] = None,
        default_timeout: float = 30.0,
        poll_interval: float = 1.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.rpc = rpc
        self.waiter = waiter
        self.tracker = tracker or ReferenceTracker()
        self.validator = validator or TransferValidator()
        self.retry = retry or RetryPolicy()
        self.default_timeout = default_timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock
        self.wall_clock = wall_clock

    @property
    def commitment(self) -> Commitment:
        return self.waiter.target

    async def _fetch_transaction(
        self,
        signature: str,
        *,
        deadline: float,
        reference: Optional[str],
        expected_amount: Optional[int],
    ) -> TransactionRecord:
        # A confirmed status can briefly precede getTransaction visibility on
        # a lagging node, so a null body is polled until the deadline.
        while True:
            try:
                record = await self.retry.run(
                    lambda: self.rpc.get_transaction(signature, commitment=self.commitment),
                    "getTransaction",
                    sleep=self.sleep,
                )
            except RpcTransient as exc:
                logging.warning("Fetching %s failed transiently: %s", signature, exc)
                record = None
            if record is not None:
                return record

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise VerificationTimeout(
                    f"Transaction {signature} was confirmed but could not be fetched",
                    reference=reference,
                    expected_amount=expected_amount,
                    signature=signature,
                    state="found_pending",
                )
            await self.sleep(min(self.poll_interval, remaining))

    async def _earlier_match(
        self,
        expectation: TransferExpectation,
        *,
        skip: str,
    ) -> Optional[Tuple[TransactionRecord, ValidatedTransfer]]:
        """
        Look through the other confirmed transactions that mention the
        reference, newest first, for one that satisfies ``expectation``.
        A later transaction that merely touches the reference must not hide
        the payment itself.
        """
        try:
            candidates = await self.waiter.locator.candidates(expectation.reference)
        except RpcTransient as exc:
            logging.warning("Could not list other candidates for %s: %s", expectation.reference, exc)
            return None

        for info in candidates:
            if info.signature == skip or not info.commitment.at_least(self.commitment):
                continue
            try:
                record = await self.retry.run(
                    lambda: self.rpc.get_transaction(info.signature, commitment=self.commitment),
                    "getTransaction",
                    sleep=self.sleep,
                )
            except RpcTransient as exc:
                logging.warning("Fetching candidate %s failed transiently: %s", info.signature, exc)
                continue
            if record is None or record.failed:
                continue
            try:
                validated = self.validator.validate(record, expectation)
            except ValidationMismatch:
                continue
            logging.info(
                "Reference %s matched by earlier transaction %s", expectation.reference, record.signature
            )
            return record, validated
        return None

    async def verify(
        self,
        expectation: TransferExpectation,
        *,
        timeout: Optional[float] = None,
    ) -> VerificationResult:
        cached = self.tracker.cached_result(expectation)
        if cached is not None:
            logging.info("Reference %s already verified as %s", expectation.reference, cached.signature)
            return cached

        self.tracker.register(expectation)
        timeout = self.default_timeout if timeout is None else timeout
        deadline = self.clock() + timeout
        reference = expectation.reference.address

        logging.info("Verifying payment %s", expectation.describe())
        try:
            outcome = await self.waiter.wait(expectation.reference, timeout=timeout)
        except (OnChainExecutionFailure, VerificationTimeout) as exc:
            if exc.expected_amount is None:
                exc.expected_amount = expectation.amount
            raise

        record = await self._fetch_transaction(
            outcome.signature,
            deadline=deadline,
            reference=reference,
            expected_amount=expectation.amount,
        )
        if record.failed:
            raise OnChainExecutionFailure(
                f"Transaction {record.signature} failed on-chain: {record.execution_error}",
                reference=reference,
                expected_amount=expectation.amount,
                signature=record.signature,
                detail=record.execution_error,
            )

        try:
            validated = self.validator.validate(record, expectation)
        except ValidationMismatch:
            earlier = await self._earlier_match(expectation, skip=record.signature)
            if earlier is None:
                raise
            record, validated = earlier
        timestamp = record.block_time if record.block_time is not None else int(self.wall_clock())
        result = VerificationResult(
            signature=validated.signature,
            validated_amount=validated.amount,
            timestamp=timestamp,
            reference=reference,
            slot=record.slot,
        )
        logging.info(
            "Payment verified: %s paid %d %s (reference %s)",
            result.signature,
            result.validated_amount,
            validated.asset,
            reference,
        )
        return self.tracker.consume(expectation, result)

    async def verify_many(
        self,
        expectations: Sequence[TransferExpectation],
        *,
        timeout: Optional[float] = None,
    ) -> List[Union[VerificationResult, BaseException]]:
        """
        Verify independent payments concurrently. Failures are returned in
        place rather than cancelling the other flows.
        """
        return list(
            await asyncio.gather(
                *(self.verify(expectation, timeout=timeout) for expectation in expectations),
                return_exceptions=True,
            )
        )

    async def verify_signature(
        self,
        signature: str,
        *,
        timeout: Optional[float] = None,
    ) -> TransactionRecord:
        """
        Confirm that a known signature landed without an execution error.
        Used for refunds, where the signature is known but no expectation
        was registered.
        """
        timeout = self.default_timeout if timeout is None else timeout
        deadline = self.clock() + timeout
        await self.waiter.wait_for_signature(signature, timeout=timeout)
        record = await self._fetch_transaction(
            signature,
            deadline=deadline,
            reference=None,
            expected_amount=None,
        )
        if record.failed:
            raise OnChainExecutionFailure(
                f"Transaction {signature} failed on-chain: {record.execution_error}",
                signature=signature,
                detail=record.execution_error,
            )
        return record

    async def check(self, expectation: TransferExpectation) -> Optional[VerificationResult]:
        """
        Non-blocking single pass: ``None`` while no payment has been seen.
        """
        cached = self.tracker.cached_result(expectation)
        if cached is not None:
            return cached
        try:
            await self.waiter.locator.find(expectation.reference)
        except NotFoundYet:
            return None
        return await self.verify(expectation)
