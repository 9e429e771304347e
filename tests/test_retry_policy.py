import pytest

from feedmap.domain.reconciliation.errors import (
    AccessDeniedError,
    InvalidCredentialError,
    MalformedResponseError,
    QuotaExceededError,
    ReconciliationError,
    RetryExhaustedError,
    TransientServiceError,
)
from feedmap.domain.reconciliation.retry_policy import RetryPolicy


class Operation:
    """Records the model used per attempt and replays scripted outcomes."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.models = []

    async def __call__(self, model):
        self.models.append(model)
        outcome = self.outcomes.pop(0) if self.outcomes else "ok"
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def policy():
    return RetryPolicy(max_attempts=3, backoff_base=1.0, fallback_models=["fallback-a", "fallback-b"])


def test_model_for_attempt_rotates_through_fallbacks(policy):
    models = [policy.model_for_attempt(i, "primary") for i in range(6)]

    assert models == ["primary", "fallback-a", "fallback-b", "fallback-a", "fallback-b", "fallback-a"]


def test_model_for_attempt_without_fallbacks_reuses_requested():
    policy = RetryPolicy(fallback_models=[])

    assert policy.model_for_attempt(2, "primary") == "primary"


def test_delay_before_grows_exponentially():
    policy = RetryPolicy(backoff_base=1.0)

    assert [policy.delay_before(k) for k in range(5)] == [0.0, 2.0, 4.0, 8.0, 16.0]


def test_invalid_max_attempts():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)


@pytest.mark.asyncio
async def test_success_on_first_attempt_does_not_wait(policy, sleep_recorder):
    operation = Operation(["done"])

    assert await policy.run(operation, "primary", sleep=sleep_recorder) == "done"
    assert operation.models == ["primary"]
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_transient_errors_exhaust_every_attempt(policy, sleep_recorder):
    operation = Operation([TransientServiceError("overloaded")] * 10)

    with pytest.raises(RetryExhaustedError) as exc_info:
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert len(operation.models) == 3
    assert operation.models == ["primary", "fallback-a", "fallback-b"]
    assert exc_info.value.attempts == 3
    assert "retried 3 times" in str(exc_info.value)
    assert sleep_recorder.calls == [2.0, 4.0]


@pytest.mark.asyncio
async def test_backoff_waits_are_non_decreasing_and_exponential(sleep_recorder):
    policy = RetryPolicy(max_attempts=5, backoff_base=0.5)
    operation = Operation([TransientServiceError("busy")] * 5)

    with pytest.raises(RetryExhaustedError):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    waits = sleep_recorder.calls
    assert len(waits) == 4
    assert waits == sorted(waits)
    for k, wait in enumerate(waits, start=1):
        assert wait == pytest.approx(0.5 * 2 ** k)


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    InvalidCredentialError("bad key"),
    QuotaExceededError("no credit"),
    AccessDeniedError("forbidden"),
])
async def test_permanent_errors_are_not_retried(policy, sleep_recorder, error):
    operation = Operation([error])

    with pytest.raises(type(error)):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert len(operation.models) == 1
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_transient_error_then_success_uses_fallback(policy, sleep_recorder):
    operation = Operation([TransientServiceError("503"), "recovered"])

    assert await policy.run(operation, "primary", sleep=sleep_recorder) == "recovered"
    assert operation.models == ["primary", "fallback-a"]
    assert sleep_recorder.calls == [2.0]


@pytest.mark.asyncio
async def test_malformed_response_is_retried_once(policy, sleep_recorder):
    operation = Operation([MalformedResponseError("bad json")] * 3)

    with pytest.raises(MalformedResponseError):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert len(operation.models) == 2


@pytest.mark.asyncio
async def test_malformed_response_not_retried_when_disabled(sleep_recorder):
    policy = RetryPolicy(max_attempts=3, malformed_retries=0)
    operation = Operation([MalformedResponseError("bad json"), "ok"])

    with pytest.raises(MalformedResponseError):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert len(operation.models) == 1


@pytest.mark.asyncio
async def test_unclassified_errors_propagate_without_retry(policy, sleep_recorder):
    operation = Operation([RuntimeError("boom")] * 3)

    with pytest.raises(RuntimeError, match="boom"):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert operation.models == ["primary"]
    assert sleep_recorder.calls == []


@pytest.mark.asyncio
async def test_non_retryable_reconciliation_error_is_not_retried(policy, sleep_recorder):
    operation = Operation([ReconciliationError("Model service rejected the request: 400 invalid model")])

    with pytest.raises(ReconciliationError, match="invalid model"):
        await policy.run(operation, "primary", sleep=sleep_recorder)

    assert operation.models == ["primary"]
    assert sleep_recorder.calls == []
