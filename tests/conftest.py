"""Shared fixtures: ``src/`` on sys.path and a recording command runner
so no test ever shells out to apt, docker or sudo.
"""

import sys
from pathlib import Path

import pytest

_src = str(Path(__file__).resolve().parent.parent / "src")
if _src not in sys.path:
    sys.path.insert(0, _src)

from chatstack.config import _DEFAULTS, StackSettings
from chatstack.models import CredentialBundle, HealthStatus, InstallationContext, PrivilegeTier
from chatstack.privilege import CommandResult, CommandRunner


class FakeRunner(CommandRunner):
    """Records argv lists; exit codes come from ``responses`` keyed by argv prefix."""

    def __init__(self, tier=PrivilegeTier.ELEVATION, prefix=("sudo",), responses=None):
        self.tier = tier
        self.prefix = prefix
        self.responses = dict(responses or {})
        self.calls: list[list[str]] = []
        self.inputs: list = []

    def _lookup(self, command) -> CommandResult:
        argv = tuple(command)
        best = None
        for key, result in self.responses.items():
            if argv[: len(key)] == key and (best is None or len(key) > len(best)):
                best = key
        if best is None:
            return CommandResult(0)
        result = self.responses[best]
        return result if isinstance(result, CommandResult) else CommandResult(result)

    def run(self, command, timeout=None) -> int:
        self.calls.append(list(command))
        return self._lookup(command).returncode

    def capture(self, command, timeout=None, input=None) -> CommandResult:
        self.calls.append(list(command))
        self.inputs.append(input)
        return self._lookup(command)

    def ran(self, *argv: str) -> bool:
        return any(call[: len(argv)] == list(argv) for call in self.calls)


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def config():
    return {k: dict(v) for k, v in _DEFAULTS.items()}


@pytest.fixture
def stack():
    return StackSettings()


@pytest.fixture
def credentials():
    return CredentialBundle(
        master_key="sk-0123456789abcdef0123456789abcdef",
        salt_key="sk-salt-0123456789abcdef0123456789abcdef0123456789abcdef",
        db_password="Pg7hQ2xLm9RtV4wZ8kN3bC",
        webui_secret="fedcba9876543210fedcba9876543210",
    )


@pytest.fixture
def context(tmp_path):
    return InstallationContext(
        user="alice",
        tier=PrivilegeTier.ELEVATION,
        command_prefix=("sudo",),
        install_root=tmp_path / "openwebui-litellm",
        home=tmp_path,
    )


class FakeClock:
    """Virtual time: sleeping advances the clock instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedChecker:
    """Stands in for HealthChecker: each service turns healthy on a given attempt."""

    def __init__(self, ready_on: dict[str, int]):
        self.ready_on = ready_on
        self.calls: dict[str, int] = {name: 0 for name in ready_on}
        self.probes = {name: None for name in ready_on}

    def target(self, name: str) -> str:
        return f"fake://{name}"

    def check(self, name: str) -> HealthStatus:
        self.calls[name] += 1
        healthy = self.calls[name] >= self.ready_on[name]
        return HealthStatus(component=name, healthy=healthy, error=None if healthy else "not yet")
