"""
Launcher
========

Pulls images, brings the stack up in dependency order and waits for the
services with a bounded ``RetryPolicy``. Running out of attempts is a
warning, not a failure: the containers may still be starting.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from chatstack.compose import Compose
from chatstack.errors import LaunchError
from chatstack.health import HealthChecker
from chatstack.models import LaunchReport
from chatstack.readiness import ReadinessPoller, RetryPolicy

logger = logging.getLogger("chatstack.launcher")


class Launcher:
    def __init__(
        self,
        compose: Compose,
        checker: HealthChecker,
        policy: RetryPolicy,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.compose = compose
        self.checker = checker
        self.policy = policy
        self._sleep = sleep
        self._clock = clock

    def launch(self) -> LaunchReport:
        """Pull, start and poll.

        Raises:
            LaunchError: ``docker compose up`` itself failed.
        """
        report = LaunchReport()

        logger.info("Pulling Docker images...")
        if self.compose.pull() == 0:
            report.pulled = True
        else:
            logger.warning("Failed to pull some images, continuing with local images...")

        logger.info("Starting services...")
        if self.compose.up() != 0:
            raise LaunchError("docker compose up -d failed; see the output above")
        report.started = True

        logger.info(
            "Waiting for services to start (settle %.0fs, then up to %d checks every %.0fs)...",
            self.policy.settle_delay,
            self.policy.max_attempts,
            self.policy.interval,
        )
        poller = ReadinessPoller(self.checker, self.policy)
        outcome, health = poller.poll(sleep=self._sleep, clock=self._clock)
        report.attempts = outcome.attempts
        report.health = health
        report.all_healthy = outcome.succeeded

        if outcome.succeeded:
            logger.info("All services are running! (%d checks, %.0fs)", outcome.attempts, outcome.elapsed)
        else:
            pending = ", ".join(c.component for c in health.components if not c.healthy) or "unknown"
            logger.warning(
                "Services may still be starting up (not ready yet: %s). "
                "Check status with: ./status.sh, or run: chatstack diagnose",
                pending,
            )
        return report
