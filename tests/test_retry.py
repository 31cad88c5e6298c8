import random

import pytest

from apicsync.core.errors import DecodeError, MalformedAttributes, RemoteError, TransportError
from apicsync.core.retry import RetryPolicy, with_retry


class _Op:
    def __init__(self, fail_times, exc_factory):
        self.fail_times = fail_times
        self.exc_factory = exc_factory
        self.calls = []
        self.raised = []

    def __call__(self, attempt):
        self.calls.append(attempt)
        if len(self.calls) <= self.fail_times:
            exc = self.exc_factory(len(self.calls))
            self.raised.append(exc)
            raise exc
        return "ok"


@pytest.mark.parametrize("n", [0, 1, 3])
def test_always_failing_operation_runs_n_plus_one_times(n):
    op = _Op(99, lambda i: TransportError(f"attempt {i}"))
    with pytest.raises(TransportError) as ei:
        with_retry(op, RetryPolicy.immediate(n))
    assert op.calls == list(range(1, n + 2))
    # the surfaced error is the very exception of the final attempt
    assert ei.value is op.raised[-1]
    assert ei.value.attempts == n + 1


def test_success_after_transient_failures():
    op = _Op(2, lambda i: RemoteError(100, "busy"))
    assert with_retry(op, RetryPolicy.immediate(3)) == "ok"
    assert op.calls == [1, 2, 3]


def test_decode_errors_are_retried():
    op = _Op(1, lambda i: DecodeError("descr", "{}"))
    assert with_retry(op, RetryPolicy.immediate(1)) == "ok"


def test_malformed_attributes_is_not_retried():
    op = _Op(5, lambda i: MalformedAttributes("descr"))
    with pytest.raises(MalformedAttributes):
        with_retry(op, RetryPolicy.immediate(3))
    assert op.calls == [1]


def test_unexpected_exceptions_are_not_retried():
    def boom(attempt):
        raise KeyError("x")

    with pytest.raises(KeyError):
        with_retry(boom, RetryPolicy.immediate(3))


def test_single_attempt_policy():
    op = _Op(1, lambda i: TransportError("down"))
    with pytest.raises(TransportError):
        with_retry(op, RetryPolicy.single_attempt())
    assert op.calls == [1]


def test_jitter_is_sampled_per_attempt(monkeypatch):
    slept = []
    monkeypatch.setattr("time.sleep", lambda s: slept.append(s))
    policy = RetryPolicy(max_attempts=3, delay_sec=0.5, jitter_sec=0.2)
    op = _Op(99, lambda i: TransportError("down"))
    with pytest.raises(TransportError):
        with_retry(op, policy, rng=random.Random(7))

    assert len(slept) == 3
    assert all(0.5 <= s < 0.7 for s in slept)
    assert len(set(slept)) == 3


def test_failures_are_logged(caplog):
    op = _Op(1, lambda i: TransportError("flaky"))
    with caplog.at_level("ERROR", logger="apicsync.retry"):
        with_retry(op, RetryPolicy.immediate(2), describe="read object uni/tn-x")
    assert "Failed to read object uni/tn-x" in caplog.text
    assert "retries: 0" in caplog.text


def test_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=-1)
    with pytest.raises(ValueError):
        RetryPolicy(delay_sec=-1.0)
    assert RetryPolicy().total_attempts == 4
