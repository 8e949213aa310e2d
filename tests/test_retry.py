import asyncio
import random

import pytest

from x402_settlement.core.errors import RpcErrorKind, RpcPermanent, RpcTransient
from x402_settlement.core.retry import RetryPolicy, is_retryable


def _flaky(errors, result="ok"):
    calls = []

    async def call():
        calls.append(len(calls))
        if errors:
            raise errors.pop(0)
        return result

    return call, calls


def test_single_502_is_retried_once(clock):
    call, calls = _flaky([RpcTransient("502 Bad Gateway", kind=RpcErrorKind.SERVER_ERROR)])
    retries = []

    result = asyncio.run(
        RetryPolicy().run(
            call,
            "getTransaction",
            sleep=clock.sleep,
            on_retry=lambda exc, attempt, delay: retries.append((attempt, delay)),
        )
    )

    assert result == "ok"
    assert len(calls) == 2
    assert len(retries) == 1
    assert len(clock.sleeps) == 1
    assert clock.sleeps[0] > 0


def test_permanent_errors_are_not_retried(clock):
    call, calls = _flaky(
        [RpcPermanent("insufficient funds", kind=RpcErrorKind.INSUFFICIENT_FUNDS)]
    )

    with pytest.raises(RpcPermanent):
        asyncio.run(RetryPolicy().run(call, "sendTransaction", sleep=clock.sleep))

    assert len(calls) == 1
    assert clock.sleeps == []


def test_gives_up_after_max_retries(clock):
    errors = [RpcTransient("429", kind=RpcErrorKind.RATE_LIMITED) for _ in range(10)]
    call, calls = _flaky(errors)

    with pytest.raises(RpcTransient):
        asyncio.run(RetryPolicy(max_retries=3, jitter=False).run(call, "getBlockHeight", sleep=clock.sleep))

    assert len(calls) == 4
    assert clock.sleeps == [0.5, 1.0, 2.0]


def test_non_rpc_errors_propagate_immediately(clock):
    async def broken():
        raise KeyError("value")

    with pytest.raises(KeyError):
        asyncio.run(RetryPolicy().run(broken, "getAccountInfo", sleep=clock.sleep))
    assert clock.sleeps == []


@pytest.mark.parametrize("seed", range(20))
def test_jittered_delays_are_non_decreasing_and_capped(seed):
    policy = RetryPolicy(max_delay=10.0, rng=random.Random(seed))
    delays = [policy.delay_for(attempt) for attempt in range(12)]

    assert all(later >= earlier for earlier, later in zip(delays, delays[1:]))
    assert max(delays) <= 10.0
    assert delays[0] >= 0.25


def test_unjittered_schedule():
    policy = RetryPolicy(jitter=False, max_delay=3.0)
    assert [policy.delay_for(n) for n in range(4)] == [0.5, 1.0, 2.0, 3.0]


@pytest.mark.parametrize(
    "kind, retryable",
    [
        (RpcErrorKind.RATE_LIMITED, True),
        (RpcErrorKind.SERVER_ERROR, True),
        (RpcErrorKind.NETWORK, True),
        (RpcErrorKind.NODE_BEHIND, True),
        (RpcErrorKind.BLOCKHASH_NOT_FOUND, True),
        (RpcErrorKind.INSUFFICIENT_FUNDS, False),
        (RpcErrorKind.INVALID_REQUEST, False),
        (RpcErrorKind.TRANSACTION_REJECTED, False),
        (RpcErrorKind.MALFORMED_RESPONSE, False),
    ],
)
def test_retryable_partition(kind, retryable):
    error_cls = RpcTransient if kind.retryable else RpcPermanent
    assert is_retryable(error_cls("boom", kind=kind)) is retryable
    assert RetryPolicy().should_retry(error_cls("boom", kind=kind)) is retryable


def test_plain_exceptions_are_not_retryable():
    assert not is_retryable(ValueError("nope"))
