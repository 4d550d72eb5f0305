"""
Readiness Polling
=================

``RetryPolicy`` is the one bounded-wait primitive in the project: a settle
delay, then up to ``max_attempts`` predicate calls spaced ``interval``
seconds apart. The launcher uses it after ``docker compose up`` and the
diagnostics tool uses it after a remediation restart.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from chatstack.health import HealthChecker
from chatstack.models import HealthStatus, ReadinessState, StackHealth

logger = logging.getLogger("chatstack.readiness")


@dataclass(frozen=True)
class RetryOutcome:
    succeeded: bool
    attempts: int
    elapsed: float


@dataclass(frozen=True)
class RetryPolicy:
    interval: float = 2.0
    max_attempts: int = 30
    settle_delay: float = 0.0

    @classmethod
    def from_config(cls, config: dict) -> "RetryPolicy":
        readiness = config.get("readiness", {})
        return cls(
            interval=float(readiness.get("interval_seconds", 2)),
            max_attempts=int(readiness.get("max_attempts", 30)),
            settle_delay=float(readiness.get("settle_seconds", 15)),
        )

    @property
    def budget(self) -> float:
        """Upper bound on time spent sleeping, in seconds."""
        return self.settle_delay + self.max_attempts * self.interval

    def run(
        self,
        predicate: Callable[[], bool],
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        on_retry: Optional[Callable[[int], None]] = None,
    ) -> RetryOutcome:
        """Call *predicate* until it returns True or the budget runs out.

        Never calls the predicate more than ``max_attempts`` times and never
        sleeps past ``budget`` in total.
        """
        start = clock()
        deadline = start + self.budget
        if self.settle_delay > 0:
            sleep(self.settle_delay)

        attempts = 0
        while attempts < self.max_attempts:
            attempts += 1
            if predicate():
                return RetryOutcome(True, attempts, clock() - start)
            if attempts >= self.max_attempts:
                break
            remaining = deadline - clock()
            if remaining <= 0:
                break
            if on_retry:
                on_retry(attempts)
            sleep(min(self.interval, remaining))
        return RetryOutcome(False, attempts, clock() - start)


class ReadinessPoller:
    """Polls every service until all respond or the policy is exhausted.

    Services that came up are not probed again; their last healthy status
    is kept for the final report.
    """

    def __init__(self, checker: HealthChecker, policy: RetryPolicy):
        self.checker = checker
        self.policy = policy

    def poll(
        self,
        services: Optional[list[str]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> tuple[RetryOutcome, StackHealth]:
        names = services or list(self.checker.probes)
        states = {
            name: ReadinessState(
                service=name,
                target=self.checker.target(name),
                max_attempts=self.policy.max_attempts,
                interval=self.policy.interval,
            )
            for name in names
        }
        latest: dict[str, HealthStatus] = {}

        def all_ready() -> bool:
            for name, state in states.items():
                if state.ready:
                    continue
                state.attempts += 1
                status = self.checker.check(name)
                latest[name] = status
                if status.healthy:
                    state.ready = True
                    logger.info("%s is ready (%s)", name, state.target)
            return all(s.ready for s in states.values())

        def progress(attempt: int) -> None:
            pending = [n for n, s in states.items() if not s.ready]
            logger.debug("attempt %d/%d, waiting on: %s", attempt, self.policy.max_attempts, ", ".join(pending))

        outcome = self.policy.run(all_ready, sleep=sleep, clock=clock, on_retry=progress)
        components = [latest[name] for name in names if name in latest]
        health = StackHealth(
            components=components,
            all_healthy=outcome.succeeded,
        )
        return outcome, health
