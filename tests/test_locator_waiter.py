import asyncio

import pytest

from conftest import confirmed
from x402_settlement.core.errors import (
    NotFoundYet,
    OnChainExecutionFailure,
    RpcErrorKind,
    RpcTransient,
    VerificationTimeout,
)
from x402_settlement.core.ledger import Commitment, SignatureInfo, SignatureStatus
from x402_settlement.core.locator import PaymentLocator, select_signature
from x402_settlement.core.waiter import ConfirmationWaiter, WaitState


def _locator(ledger, retry, clock, **kwargs):
    return PaymentLocator(ledger, retry=retry, sleep=clock.sleep, clock=clock, **kwargs)


def _waiter(ledger, retry, clock, **kwargs):
    return ConfirmationWaiter(
        ledger,
        _locator(ledger, retry, clock),
        retry=retry,
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


def test_select_prefers_newest_confirmed_success():
    candidates = [
        confirmed("old", slot=10),
        confirmed("newest-failed", slot=30, err={"InstructionError": [2, {"Custom": 1}]}),
        confirmed("new", slot=20),
        SignatureInfo("processed-only", 40, None, Commitment.PROCESSED),
    ]
    assert select_signature(candidates).signature == "new"


def test_select_falls_back_to_failed_and_ignores_weak_statuses():
    failed = confirmed("failed", slot=5, err="InsufficientFundsForFee")
    assert select_signature([failed]).signature == "failed"
    assert select_signature([SignatureInfo("p", 9, None, Commitment.PROCESSED)]) is None
    assert select_signature([SignatureInfo("n", 9, None, None)]) is None


def test_find_raises_not_found_yet(ledger, retry, clock, reference):
    with pytest.raises(NotFoundYet) as info:
        asyncio.run(_locator(ledger, retry, clock).find(reference))
    assert info.value.reference == reference.address


def test_locate_times_out_after_deadline(ledger, retry, clock, reference):
    locator = _locator(ledger, retry, clock, poll_interval=1.0)

    with pytest.raises(VerificationTimeout) as info:
        asyncio.run(locator.locate(reference, timeout=5.0))

    assert info.value.state == "searching"
    assert clock.now == pytest.approx(5.0)
    assert all(delay <= 1.0 for delay in clock.sleeps)
    assert ledger.count("getSignaturesForAddress") == 6


def test_locate_polls_until_signature_appears(ledger, retry, clock, reference):
    ledger.add_signature(reference.address, confirmed("sig-1"), after_lookups=2)

    found = asyncio.run(_locator(ledger, retry, clock).locate(reference, timeout=10.0))

    assert found.signature == "sig-1"
    assert clock.now == pytest.approx(2.0)


def test_locate_survives_exhausted_transient_errors(ledger, clock, reference):
    from x402_settlement.core.retry import RetryPolicy

    ledger.add_signature(reference.address, confirmed("sig-1"))
    ledger.fail(
        "getSignaturesForAddress",
        RpcTransient("503", kind=RpcErrorKind.SERVER_ERROR),
        RpcTransient("503", kind=RpcErrorKind.SERVER_ERROR),
    )
    locator = PaymentLocator(
        ledger,
        retry=RetryPolicy(max_retries=0),
        sleep=clock.sleep,
        clock=clock,
    )

    found = asyncio.run(locator.locate(reference, timeout=10.0))

    assert found.signature == "sig-1"
    assert ledger.count("getSignaturesForAddress") == 3


def test_waiter_reaches_confirmed(ledger, retry, clock, reference):
    ledger.add_signature(reference.address, confirmed("sig-1"))
    ledger.set_status(
        "sig-1",
        None,
        SignatureStatus(slot=42, commitment=Commitment.PROCESSED),
        SignatureStatus(slot=42, commitment=Commitment.CONFIRMED),
    )
    seen = []

    outcome = asyncio.run(
        _waiter(ledger, retry, clock).wait(
            reference, timeout=30.0, on_transition=lambda old, new: seen.append((old, new))
        )
    )

    assert outcome.state is WaitState.CONFIRMED
    assert outcome.signature == "sig-1"
    assert outcome.transitions == (WaitState.SEARCHING, WaitState.FOUND_PENDING, WaitState.CONFIRMED)
    assert seen == [
        (WaitState.SEARCHING, WaitState.FOUND_PENDING),
        (WaitState.FOUND_PENDING, WaitState.CONFIRMED),
    ]
    assert ledger.count("getSignatureStatuses") == 3


def test_waiter_finalized_target_waits_for_finalized(ledger, retry, clock, reference):
    ledger.add_signature(reference.address, confirmed("sig-1"))
    ledger.set_status(
        "sig-1",
        SignatureStatus(slot=42, commitment=Commitment.CONFIRMED),
        SignatureStatus(slot=42, commitment=Commitment.FINALIZED),
    )

    outcome = asyncio.run(
        _waiter(ledger, retry, clock, target=Commitment.FINALIZED).wait(reference, timeout=30.0)
    )

    assert outcome.commitment is Commitment.FINALIZED
    assert clock.sleeps == [2.0]


def test_waiter_rejects_processed_target(ledger, retry, clock):
    with pytest.raises(ValueError):
        _waiter(ledger, retry, clock, target=Commitment.PROCESSED)


def test_failed_signature_is_terminal(ledger, retry, clock, reference):
    ledger.add_signature(
        reference.address,
        confirmed("sig-bad", err={"InstructionError": [2, {"Custom": 1}]}),
    )

    with pytest.raises(OnChainExecutionFailure) as info:
        asyncio.run(_waiter(ledger, retry, clock).wait(reference, timeout=30.0))

    assert info.value.signature == "sig-bad"
    assert info.value.reference == reference.address
    assert ledger.count("getSignatureStatuses") == 0


def test_status_error_moves_to_failed(ledger, retry, clock, reference):
    ledger.add_signature(reference.address, confirmed("sig-1"))
    ledger.set_status("sig-1", SignatureStatus(slot=42, commitment=Commitment.CONFIRMED, execution_error="AccountInUse"))
    seen = []

    with pytest.raises(OnChainExecutionFailure):
        asyncio.run(
            _waiter(ledger, retry, clock).wait(
                reference, timeout=30.0, on_transition=lambda old, new: seen.append(new)
            )
        )
    assert seen == [WaitState.FOUND_PENDING, WaitState.FAILED]


def test_search_timeout_is_distinct_from_pending_timeout(ledger, retry, clock, reference):
    with pytest.raises(VerificationTimeout) as searching:
        asyncio.run(_waiter(ledger, retry, clock).wait(reference, timeout=5.0))
    assert searching.value.state == "searching"
    assert searching.value.signature is None

    ledger.add_signature(reference.address, confirmed("sig-1"))
    ledger.set_status("sig-1", SignatureStatus(slot=42, commitment=Commitment.PROCESSED))
    with pytest.raises(VerificationTimeout) as pending:
        asyncio.run(_waiter(ledger, retry, clock).wait(reference, timeout=5.0))
    assert pending.value.state == "found_pending"
    assert pending.value.signature == "sig-1"


def test_wait_for_known_signature(ledger, retry, clock):
    ledger.set_status("sig-9", SignatureStatus(slot=3, commitment=Commitment.FINALIZED))

    outcome = asyncio.run(_waiter(ledger, retry, clock).wait_for_signature("sig-9", timeout=10.0))

    assert outcome.state is WaitState.CONFIRMED
    assert outcome.transitions == (WaitState.FOUND_PENDING, WaitState.CONFIRMED)
    assert ledger.count("getSignaturesForAddress") == 0


def test_independent_waits_run_concurrently(ledger, retry, clock):
    from x402_settlement.core.models import PaymentReference
    from solders.pubkey import Pubkey

    references = [PaymentReference(Pubkey.new_unique()) for _ in range(3)]
    for index, reference in enumerate(references):
        ledger.add_signature(reference.address, confirmed(f"sig-{index}"))
        ledger.set_status(f"sig-{index}", SignatureStatus(slot=42, commitment=Commitment.CONFIRMED))
    waiter = _waiter(ledger, retry, clock)

    async def run_all():
        return await asyncio.gather(*(waiter.wait(ref, timeout=10.0) for ref in references))

    outcomes = asyncio.run(run_all())
    assert [outcome.signature for outcome in outcomes] == ["sig-0", "sig-1", "sig-2"]
