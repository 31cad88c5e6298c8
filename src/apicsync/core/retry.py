"""
Retry policy shared by the four reconciler operations.

A policy with max_attempts = N runs an operation at most N + 1 times. Between
attempts it sleeps delay_sec plus a uniform random jitter in [0, jitter_sec),
sampled again for every attempt so that concurrent workers retrying against
the same APIC drift apart. When the ceiling is reached the exception raised
by the last attempt propagates unchanged. MalformedAttributes and any
non-ReconcileError exception are raised on the first occurrence.

The loop itself is `retrying.Retrying`.
"""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

from retrying import Retrying

from .errors import RETRYABLE_ERRORS, ReconcileError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    delay_sec: float = 30.0
    jitter_sec: float = 0.005

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")
        if self.delay_sec < 0 or self.jitter_sec < 0:
            raise ValueError("delay_sec and jitter_sec must be >= 0")

    @classmethod
    def single_attempt(cls) -> "RetryPolicy":
        return cls(max_attempts=0, delay_sec=0.0, jitter_sec=0.0)

    @classmethod
    def immediate(cls, max_attempts: int) -> "RetryPolicy":
        return cls(max_attempts=max_attempts, delay_sec=0.0, jitter_sec=0.0)

    @property
    def total_attempts(self) -> int:
        return self.max_attempts + 1

    def next_delay_ms(self, rng: Any = random) -> float:
        jitter = rng.uniform(0.0, self.jitter_sec) if self.jitter_sec else 0.0
        return (self.delay_sec + jitter) * 1000.0


def with_retry(
    operation: Callable[[int], T],
    policy: RetryPolicy,
    *,
    describe: str = "run operation",
    logger: Optional[logging.LoggerAdapter] = None,
    rng: Any = None,
) -> T:
    """Run `operation(attempt_number)` under `policy`; see module docstring."""
    log = logger or logging.getLogger("apicsync.retry")
    rng = rng or random
    state = {"attempt": 0, "last": None}

    def attempt() -> T:
        state["attempt"] += 1
        try:
            return operation(state["attempt"])
        except ReconcileError as exc:
            exc.attempts = state["attempt"]
            state["last"] = exc
            raise

    def wait(previous_attempt_number: int, delay_since_first_attempt_ms: int) -> float:
        delay_ms = policy.next_delay_ms(rng)
        log.error(
            "Failed to %s: %s, retries: %s (next attempt in %.3fs)",
            describe, state["last"], previous_attempt_number - 1, delay_ms / 1000.0,
        )
        return delay_ms

    retryer = Retrying(
        stop_max_attempt_number=policy.total_attempts,
        wait_func=wait,
        retry_on_exception=lambda exc: isinstance(exc, RETRYABLE_ERRORS),
        wrap_exception=False,
    )
    return retryer.call(attempt)
