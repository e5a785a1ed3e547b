"""Exponential-backoff wrapper around the command runner."""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from gb_common.errors import ExecutionError, InvocationCancelled, RetryExhausted

from gb_provisioner.engine.cancel import CancelToken
from gb_provisioner.services.commands import CommandRunner

logger = logging.getLogger(__name__)

Notify = Callable[[ExecutionError, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters for one invocation."""

    max_attempts: int = 10
    base_delay: float = 0.5
    max_delay: float = 10.0
    multiplier: float = 1.5
    jitter: float = 0.5

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")

    def delay(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """Delay to wait after failed ``attempt`` (1-based)."""
        raw = min(self.max_delay, self.base_delay * (self.multiplier ** (attempt - 1)))
        if self.jitter > 0 and raw > 0:
            spread = raw * self.jitter
            raw = (rng or random).uniform(raw - spread, raw + spread)
        return min(self.max_delay, max(0.0, raw))


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of a successful invocation."""

    output: str
    elapsed_ns: int
    attempts: int


class ResilientInvoker:
    """Retry flaky client invocations with capped exponential backoff."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._runner = runner or CommandRunner()
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def invoke(
        self,
        program: str,
        args: Sequence[str] = (),
        *,
        policy: RetryPolicy | None = None,
        stream: bool = False,
        notify: Notify | None = None,
        cancel: CancelToken | None = None,
    ) -> InvocationResult:
        """Run ``program`` until it succeeds or the attempt budget is spent.

        A tripped ``cancel`` token is checked after each failed attempt; the
        invocation then raises `InvocationCancelled` instead of backing off.
        """
        active = policy or self._policy
        report = notify or self._make_notify(program, args)
        last_error: ExecutionError | None = None

        for attempt in range(1, active.max_attempts + 1):
            started = time.perf_counter_ns()
            try:
                output = self._runner.run(program, args, stream=stream)
            except ExecutionError as exc:
                last_error = exc
                if attempt >= active.max_attempts:
                    break
                if cancel is not None and cancel.should_stop():
                    raise InvocationCancelled(
                        f"{program} cancelled after {attempt} attempt(s)",
                        context={"program": program, "attempts": attempt},
                        cause=exc,
                    ) from exc
                delay = active.delay(attempt, self._rng)
                report(exc, delay)
                self._sleep(delay)
                continue
            return InvocationResult(
                output=output,
                elapsed_ns=time.perf_counter_ns() - started,
                attempts=attempt,
            )

        assert last_error is not None
        raise RetryExhausted(active.max_attempts, last_error) from last_error

    @staticmethod
    def _make_notify(program: str, args: Sequence[str]) -> Notify:
        command = " ".join([program, *args])

        def _notify(error: ExecutionError, delay: float) -> None:
            logger.info("%s failed (%s); retrying in %.2fs", command, error, delay)

        return _notify
