from __future__ import annotations

import pytest

from edge_provisioner.engine.errors import ProviderError, TransientProviderError
from edge_provisioner.engine.retry import RetryCounter, RetryPolicy, call_with_retry


class Flaky:
    def __init__(self, failures: int, error: ProviderError | None = None) -> None:
        self.failures = failures
        self.error = error or TransientProviderError("503 backend unavailable", status=503)
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def test_delay_is_exponential_and_capped() -> None:
    policy = RetryPolicy(base_delay=0.5, multiplier=2.0, max_delay=3.0)
    assert [policy.delay(n) for n in range(1, 6)] == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_transient_errors_retry_until_success() -> None:
    sleeps: list[float] = []
    counter = RetryCounter()
    fn = Flaky(failures=2)

    result = call_with_retry(
        fn, RetryPolicy(base_delay=1.0), label="url_map.web", sleep=sleeps.append, counter=counter
    )

    assert result == "ok"
    assert fn.calls == 3
    assert counter.attempts == 3
    assert sleeps == [1.0, 2.0]


def test_gives_up_after_max_attempts() -> None:
    sleeps: list[float] = []
    fn = Flaky(failures=10)

    with pytest.raises(ProviderError, match="giving up after 3 attempts") as exc_info:
        call_with_retry(
            fn, RetryPolicy(max_attempts=3, base_delay=0.1), label="x", sleep=sleeps.append
        )

    assert fn.calls == 3
    assert len(sleeps) == 2
    assert not exc_info.value.retryable
    assert exc_info.value.status == 503
    assert isinstance(exc_info.value.__cause__, TransientProviderError)


def test_non_transient_errors_are_not_retried() -> None:
    fn = Flaky(failures=1, error=ProviderError("invalid argument", status=400))

    with pytest.raises(ProviderError, match="invalid argument"):
        call_with_retry(fn, RetryPolicy(), label="x", sleep=lambda _s: None)

    assert fn.calls == 1


def test_other_exceptions_propagate_unchanged() -> None:
    def boom() -> None:
        raise KeyError("missing")

    with pytest.raises(KeyError):
        call_with_retry(boom, RetryPolicy(), label="x", sleep=lambda _s: None)


def test_policy_rejects_zero_attempts() -> None:
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
