"""
Bounded-Retry Polling

Cloud instances boot and cluster agents gossip on their own schedule, so
every observation of a freshly deployed cluster is polled rather than
asserted once.

Usage:
    from acceptance.framework.wait import RetryPolicy, Success, Failure, do_with_retry

    def check():
        ips = cloud.public_ips(group)
        if not ips:
            return Failure(f"no instances in {group} yet")
        return Success(ips[0])

    ip = do_with_retry("Waiting for instances", RetryPolicy(30, 5.0), check)

Semantics:
- The operation is invoked at most policy.max_attempts times
- A Success returns immediately; nothing sleeps after the last attempt
- Every Failure (and every exception other than FatalRetryError) is retried
- Exhaustion raises RetryExhausted carrying the last attempt's error
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar, Union

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry budget: how many attempts and how long between them."""
    max_attempts: int
    interval: float

    def __post_init__(self):
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise ValueError(f"max_attempts must be an integer, got {self.max_attempts!r}")
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.interval < 0:
            raise ValueError(f"interval must be >= 0, got {self.interval}")

    @property
    def budget_seconds(self) -> float:
        """Total time spent sleeping if every attempt fails."""
        return (self.max_attempts - 1) * self.interval


@dataclass(frozen=True)
class Success(Generic[T]):
    """Operation converged; carries the value to hand back to the caller."""
    value: T


@dataclass(frozen=True)
class Failure:
    """Operation has not converged yet; carries the reason."""
    reason: Any

    def __str__(self) -> str:
        return str(self.reason)


Outcome = Union[Success, Failure]


class RetryExhausted(Exception):
    """Raised when every attempt of a retry loop failed."""

    def __init__(self, description: str, attempts: int, last_error: Any):
        self.description = description
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"'{description}' unsuccessful after {attempts} attempts. Last error: {last_error}"
        )


class FatalRetryError(Exception):
    """
    Raised by an operation to stop retrying immediately.

    Propagates out of do_with_retry unchanged.
    """
    pass


def do_with_retry(
    description: str,
    policy: RetryPolicy,
    operation: Callable[[], Outcome],
    sleep: Callable[[float], None] = time.sleep,
    logger=None
) -> Any:
    """
    Run operation until it returns Success or the attempt budget runs out.

    Args:
        description: Human-readable description, used in logs and errors
        policy: Attempt budget and interval between attempts
        operation: Callable returning Success(value) or Failure(reason)
        sleep: Sleep function (injected by tests)
        logger: Optional RunLogger receiving a poll_started event and one event per attempt

    Returns:
        The value carried by the first Success

    Raises:
        RetryExhausted: If all attempts failed
        FatalRetryError: If the operation raised it
    """
    last_error: Any = None
    if logger:
        logger.info(
            "poll_started",
            f"{description} (up to {policy.max_attempts} attempts, {policy.budget_seconds:.0f}s)",
            details={
                "description": description,
                "max_attempts": policy.max_attempts,
                "budget_seconds": policy.budget_seconds,
            }
        )

    for attempt in range(1, policy.max_attempts + 1):
        try:
            outcome = operation()
        except FatalRetryError:
            raise
        except Exception as e:
            outcome = Failure(e)

        if isinstance(outcome, Success):
            if logger:
                logger.retry_event("succeeded", description, attempt, policy.max_attempts)
            return outcome.value

        if not isinstance(outcome, Failure):
            raise TypeError(
                f"{description}: operation must return Success or Failure, got {type(outcome).__name__}"
            )

        last_error = outcome.reason
        if attempt < policy.max_attempts:
            if logger:
                logger.retry_event("attempt_failed", description, attempt, policy.max_attempts, last_error)
            else:
                print(f"[retry] {description} (attempt {attempt}/{policy.max_attempts}): {last_error}", flush=True)
            sleep(policy.interval)

    if logger:
        logger.retry_event("exhausted", description, policy.max_attempts, policy.max_attempts, last_error)
    raise RetryExhausted(description, policy.max_attempts, last_error)
