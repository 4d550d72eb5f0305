"""Thin wrapper over ``docker compose`` bound to one installation root."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from chatstack.manifest import COMPOSE_FILE
from chatstack.privilege import CommandResult, CommandRunner, UnprivilegedRunner

logger = logging.getLogger("chatstack.compose")


class Compose:
    """Runs compose subcommands against ``<root>/docker-compose.yml``."""

    def __init__(self, root: Path, runner: Optional[CommandRunner] = None):
        self.root = Path(root)
        self.runner = runner or UnprivilegedRunner()

    @property
    def manifest(self) -> Path:
        return self.root / COMPOSE_FILE

    def _argv(self, *args: str) -> list[str]:
        return [
            "docker",
            "compose",
            "--project-directory",
            str(self.root),
            "-f",
            str(self.manifest),
            *args,
        ]

    def run(self, *args: str, timeout: Optional[float] = None) -> int:
        return self.runner.run(self._argv(*args), timeout=timeout)

    def capture(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        return self.runner.capture(self._argv(*args), timeout=timeout)

    def pull(self) -> int:
        return self.run("pull")

    def up(self, services: Sequence[str] = ()) -> int:
        return self.run("up", "-d", *services)

    def ps(self) -> CommandResult:
        return self.capture("ps")

    def logs(self, service: str, tail: int = 20) -> CommandResult:
        return self.capture("logs", service, f"--tail={tail}")

    def exec(self, service: str, *command: str, timeout: Optional[float] = None) -> CommandResult:
        return self.capture("exec", "-T", service, *command, timeout=timeout)

    def docker(self, *args: str, timeout: Optional[float] = None) -> CommandResult:
        """Plain ``docker`` call (inspect, port, ps) with the same runner."""
        return self.runner.capture(["docker", *args], timeout=timeout)


def daemon_reachable(runner: Optional[CommandRunner] = None) -> bool:
    """True when ``docker info`` succeeds without extra privileges."""
    runner = runner or UnprivilegedRunner()
    return runner.capture(["docker", "info"], timeout=30).ok
