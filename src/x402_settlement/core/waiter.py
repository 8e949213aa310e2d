"""
Drive a payment from "searching" to the target commitment.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .errors import OnChainExecutionFailure, RpcTransient, VerificationTimeout
from .ledger import Commitment, SignatureStatus
from .locator import PaymentLocator
from .models import PaymentReference
from .retry import Clock, RetryPolicy, Sleep

__all__ = ["ConfirmationOutcome", "ConfirmationWaiter", "WaitState"]


class WaitState(enum.Enum):
    SEARCHING = "searching"
    FOUND_PENDING = "found_pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (WaitState.CONFIRMED, WaitState.FAILED, WaitState.TIMED_OUT)


_ALLOWED = {
    WaitState.SEARCHING: {WaitState.FOUND_PENDING, WaitState.TIMED_OUT},
    WaitState.FOUND_PENDING: {WaitState.CONFIRMED, WaitState.FAILED, WaitState.TIMED_OUT},
    WaitState.CONFIRMED: set(),
    WaitState.FAILED: set(),
    WaitState.TIMED_OUT: set(),
}


@dataclass
class _Tracker:
    state: WaitState
    label: str
    on_transition: Optional[Callable[[WaitState, WaitState], None]] = None
    history: List[WaitState] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def move(self, new_state: WaitState) -> None:
        if new_state not in _ALLOWED[self.state]:
            raise RuntimeError(f"Illegal transition {self.state.value} -> {new_state.value}")
        logging.info("%s: %s -> %s", self.label, self.state.value, new_state.value)
        previous, self.state = self.state, new_state
        self.history.append(new_state)
        if self.on_transition is not None:
            self.on_transition(previous, new_state)


@dataclass(frozen=True)
class ConfirmationOutcome:
    state: WaitState
    signature: str
    slot: int
    commitment: Commitment
    transitions: Tuple[WaitState, ...] = ()


class ConfirmationWaiter:
    def __init__(
        self,
        rpc,
        locator: PaymentLocator,
        *,
        target: Commitment = Commitment.CONFIRMED,
        retry: Optional[RetryPolicy] = None,
        poll_interval: float = 2.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        if target is Commitment.PROCESSED:
            raise ValueError("Target commitment must be confirmed or finalized")
        self.rpc = rpc
        self.locator = locator
        self.target = target
        self.retry = retry or RetryPolicy()
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    async def wait(
        self,
        reference: PaymentReference,
        *,
        timeout: float,
        on_transition: Optional[Callable[[WaitState, WaitState], None]] = None,
    ) -> ConfirmationOutcome:
        tracker = _Tracker(WaitState.SEARCHING, f"reference {reference}", on_transition)
        deadline = self.clock() + timeout
        try:
            found = await self.locator.locate(reference, timeout=timeout)
        except VerificationTimeout:
            tracker.move(WaitState.TIMED_OUT)
            raise

        tracker.move(WaitState.FOUND_PENDING)
        if found.failed:
            tracker.move(WaitState.FAILED)
            raise OnChainExecutionFailure(
                f"Transaction {found.signature} failed on-chain: {found.execution_error}",
                reference=reference.address,
                signature=found.signature,
                detail=found.execution_error,
            )
        return await self._confirm(
            found.signature,
            deadline=deadline,
            timeout=timeout,
            tracker=tracker,
            reference=reference.address,
        )

    async def wait_for_signature(
        self,
        signature: str,
        *,
        timeout: float,
        reference: Optional[str] = None,
    ) -> ConfirmationOutcome:
        """Confirm a signature that is already known, e.g. one we broadcast."""
        tracker = _Tracker(WaitState.FOUND_PENDING, f"signature {signature}")
        return await self._confirm(
            signature,
            deadline=self.clock() + timeout,
            timeout=timeout,
            tracker=tracker,
            reference=reference,
        )

    async def _status(self, signature: str) -> Optional[SignatureStatus]:
        statuses = await self.retry.run(
            lambda: self.rpc.get_signature_statuses([signature]),
            "getSignatureStatuses",
            sleep=self.sleep,
        )
        return statuses[0] if statuses else None

    async def _confirm(
        self,
        signature: str,
        *,
        deadline: float,
        timeout: float,
        tracker: _Tracker,
        reference: Optional[str],
    ) -> ConfirmationOutcome:
        last_seen: Optional[Commitment] = None
        while True:
            try:
                status = await self._status(signature)
            except RpcTransient as exc:
                logging.warning("Status poll for %s failed transiently: %s", signature, exc)
                status = None

            if status is not None:
                if status.execution_error is not None:
                    tracker.move(WaitState.FAILED)
                    raise OnChainExecutionFailure(
                        f"Transaction {signature} failed on-chain: {status.execution_error}",
                        reference=reference,
                        signature=signature,
                        detail=status.execution_error,
                    )
                last_seen = status.commitment
                if status.commitment is not None and status.commitment.at_least(self.target):
                    tracker.move(WaitState.CONFIRMED)
                    return ConfirmationOutcome(
                        state=WaitState.CONFIRMED,
                        signature=signature,
                        slot=status.slot,
                        commitment=status.commitment,
                        transitions=tuple(tracker.history),
                    )

            remaining = deadline - self.clock()
            if remaining <= 0:
                tracker.move(WaitState.TIMED_OUT)
                raise VerificationTimeout(
                    f"Transaction {signature} did not reach {self.target.value} "
                    f"within {timeout:.1f}s",
                    reference=reference,
                    signature=signature,
                    state=WaitState.FOUND_PENDING.value,
                    detail={"last_commitment": last_seen.value if last_seen else None},
                )
            await self.sleep(min(self.poll_interval, remaining))
