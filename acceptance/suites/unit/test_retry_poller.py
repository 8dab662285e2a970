#!/usr/bin/env python3
"""
Retry Poller Tests

Properties:
1. Success on attempt k <= N returns after exactly k invocations
2. Failure on all N attempts reports the Nth error after N invocations, N-1 sleeps
3. Raised exceptions are retried like Failure; FatalRetryError stops at once
4. RetryPolicy rejects invalid budgets

Run:
    python3 -m pytest acceptance/suites/unit/test_retry_poller.py -v
"""

import json

import pytest
from hypothesis import given, settings, strategies as st

from acceptance.conftest import SleepRecorder
from acceptance.framework.wait import (
    RetryPolicy,
    Success,
    Failure,
    RetryExhausted,
    FatalRetryError,
    do_with_retry
)


def scripted(successful_attempt, value="ok"):
    """Operation that fails until successful_attempt (1-based), counting calls."""
    calls = []

    def operation():
        calls.append(len(calls) + 1)
        attempt = len(calls)
        if successful_attempt is not None and attempt >= successful_attempt:
            return Success(value)
        return Failure(f"attempt {attempt} not ready")

    return operation, calls


@given(st.integers(min_value=1, max_value=40), st.data())
@settings(max_examples=100)
def test_success_on_attempt_k_invokes_exactly_k_times(max_attempts, data):
    k = data.draw(st.integers(min_value=1, max_value=max_attempts))
    sleeps = SleepRecorder()
    operation, calls = scripted(k, value=f"value-{k}")

    result = do_with_retry("converge", RetryPolicy(max_attempts, 0.5), operation, sleep=sleeps)

    assert result == f"value-{k}"
    assert len(calls) == k
    assert sleeps.calls == [0.5] * (k - 1)


@given(st.integers(min_value=1, max_value=40))
@settings(max_examples=50)
def test_exhaustion_reports_last_error(max_attempts):
    sleeps = SleepRecorder()
    operation, calls = scripted(None)

    with pytest.raises(RetryExhausted) as exc_info:
        do_with_retry("converge", RetryPolicy(max_attempts, 2.0), operation, sleep=sleeps)

    assert len(calls) == max_attempts
    assert len(sleeps.calls) == max_attempts - 1
    assert exc_info.value.attempts == max_attempts
    assert exc_info.value.last_error == f"attempt {max_attempts} not ready"
    assert exc_info.value.description == "converge"


def test_exhaustion_message_names_description_and_error(sleeps):
    with pytest.raises(RetryExhausted) as exc_info:
        do_with_retry("Check Consul members", RetryPolicy(2, 0), lambda: Failure("5 of 7 joined"), sleep=sleeps)

    message = str(exc_info.value)
    assert "Check Consul members" in message
    assert "5 of 7 joined" in message


def test_first_attempt_success_never_sleeps(sleeps):
    assert do_with_retry("instant", RetryPolicy(5, 10), lambda: Success(42), sleep=sleeps) == 42
    assert sleeps.calls == []


def test_raised_exception_is_retried(sleeps):
    attempts = []

    def operation():
        attempts.append(1)
        if len(attempts) < 3:
            raise ConnectionError("refused")
        return Success("up")

    assert do_with_retry("flaky", RetryPolicy(5, 1), operation, sleep=sleeps) == "up"
    assert len(attempts) == 3


def test_raised_exception_surfaces_as_last_error(sleeps):
    error = TimeoutError("timed out")

    def operation():
        raise error

    with pytest.raises(RetryExhausted) as exc_info:
        do_with_retry("slow", RetryPolicy(3, 1), operation, sleep=sleeps)
    assert exc_info.value.last_error is error


def test_fatal_error_stops_immediately(sleeps):
    attempts = []

    def operation():
        attempts.append(1)
        raise FatalRetryError("endpoint is malformed")

    with pytest.raises(FatalRetryError):
        do_with_retry("fatal", RetryPolicy(10, 1), operation, sleep=sleeps)
    assert len(attempts) == 1
    assert sleeps.calls == []


def test_operation_must_return_outcome(sleeps):
    with pytest.raises(TypeError):
        do_with_retry("bad", RetryPolicy(3, 0), lambda: "not an outcome", sleep=sleeps)


def test_success_may_carry_falsy_value(sleeps):
    assert do_with_retry("empty", RetryPolicy(3, 0), lambda: Success(""), sleep=sleeps) == ""


@pytest.mark.parametrize("max_attempts,interval", [
    (0, 1.0),
    (-3, 1.0),
    (1, -0.1),
    (2.5, 1.0),
    (True, 1.0),
])
def test_policy_rejects_invalid_budget(max_attempts, interval):
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts, interval)


def test_policy_is_immutable():
    policy = RetryPolicy(30, 5)
    with pytest.raises(Exception):
        policy.max_attempts = 1
    assert policy.budget_seconds == 145


def test_attempts_are_logged(run_logger, sleeps):
    operation, _ = scripted(3)
    do_with_retry("logged", RetryPolicy(5, 1), operation, sleep=sleeps, logger=run_logger)
    run_logger.close()

    events = [json.loads(line) for line in run_logger.log_file.read_text().splitlines()]
    types = [e["event"] for e in events]
    assert types.count("retry_attempt_failed") == 2
    assert types.count("retry_succeeded") == 1
    assert [e["attempt"] for e in events if e["event"].startswith("retry_")] == [1, 2, 3]


def test_poll_start_logs_the_time_budget(run_logger, sleeps):
    operation, _ = scripted(1)
    do_with_retry("budgeted", RetryPolicy(30, 5), operation, sleep=sleeps, logger=run_logger)
    run_logger.close()

    events = [json.loads(line) for line in run_logger.log_file.read_text().splitlines()]
    started = [e for e in events if e["event"] == "poll_started"]
    assert len(started) == 1
    assert started[0]["details"] == {"description": "budgeted", "max_attempts": 30, "budget_seconds": 145}
    types = [e["event"] for e in events]
    assert types.index("poll_started") < types.index("retry_succeeded")
