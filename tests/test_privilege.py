"""Tests for the environment prober and command runner strategies."""

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from chatstack.errors import PrivilegeError
from chatstack.models import PrivilegeTier
from chatstack.privilege import (
    AdministratorRunner,
    CommandResult,
    CommandRunner,
    ElevatedRunner,
    UnprivilegedRunner,
    detect_runner,
    probe_environment,
    runner_for,
)


def _sudo(ok: bool):
    """Patch the plain runner's ``sudo -n true`` answer."""
    return patch.object(UnprivilegedRunner, "capture", return_value=CommandResult(0 if ok else 1))


def _no_tty():
    return patch("chatstack.privilege.sys.stdin", **{"isatty.return_value": False})


class TestRunners:
    def test_prefixes(self):
        assert AdministratorRunner().wrap(["apt", "update"]) == ["apt", "update"]
        assert ElevatedRunner().wrap(["apt", "update"]) == ["sudo", "apt", "update"]
        assert UnprivilegedRunner().wrap(["docker", "ps"]) == ["docker", "ps"]

    def test_runner_for_tier(self):
        for tier in PrivilegeTier:
            assert runner_for(tier).tier is tier

    def test_missing_binary_is_127(self):
        runner = UnprivilegedRunner()
        assert runner.run(["chatstack-no-such-binary"]) == 127
        result = runner.capture(["chatstack-no-such-binary"])
        assert result.returncode == 127
        assert not result.ok

    def test_capture_timeout(self):
        with patch("chatstack.privilege.subprocess.run", side_effect=subprocess.TimeoutExpired("x", 1)):
            result = CommandRunner().capture(["sleep", "10"], timeout=1)
        assert result.returncode == 124

    def test_capture_passes_input(self):
        done = subprocess.CompletedProcess(["tee"], 0, stdout="line\n", stderr="")
        with patch("chatstack.privilege.subprocess.run", return_value=done) as run:
            result = ElevatedRunner().capture(["tee", "/etc/x"], input="line\n")
        assert result.ok and result.stdout == "line\n"
        argv = run.call_args.args[0]
        assert argv == ["sudo", "tee", "/etc/x"]
        assert run.call_args.kwargs["input"] == "line\n"


class TestProbeEnvironment:
    def test_administrator(self, config):
        context, runner = probe_environment(config, euid=0, user="root", home=Path("/home/ignored"))
        assert context.tier is PrivilegeTier.ADMINISTRATOR
        assert context.install_root == Path("/root/openwebui-litellm")
        assert context.command_prefix == ()
        assert isinstance(runner, AdministratorRunner)

    def test_administrator_disallowed(self, config):
        config["install"]["allow_administrator"] = False
        with pytest.raises(PrivilegeError):
            probe_environment(config, euid=0, user="root")

    def test_elevation(self, config, tmp_path):
        with _sudo(True):
            context, runner = probe_environment(config, euid=1000, user="alice", home=tmp_path)
        assert context.tier is PrivilegeTier.ELEVATION
        assert context.command_prefix == ("sudo",)
        assert context.install_root == tmp_path / "openwebui-litellm"
        assert isinstance(runner, ElevatedRunner)

    def test_unprivileged_without_tty(self, config, tmp_path):
        with _sudo(False), _no_tty():
            context, runner = probe_environment(config, euid=1000, user="alice", home=tmp_path)
        assert context.tier is PrivilegeTier.UNPRIVILEGED
        assert context.install_root == tmp_path / "openwebui-litellm"
        assert runner.prefix == ()

    def test_elevation_required(self, config, tmp_path):
        config["install"]["require_elevation"] = True
        with _sudo(False), _no_tty():
            with pytest.raises(PrivilegeError):
                probe_environment(config, euid=1000, user="alice", home=tmp_path)

    def test_context_is_immutable(self, config, tmp_path):
        with _sudo(True):
            context, _ = probe_environment(config, euid=1000, user="alice", home=tmp_path)
        with pytest.raises(Exception):
            context.install_root = tmp_path / "elsewhere"

    def test_custom_dir_name(self, config, tmp_path):
        config["install"]["dir_name"] = "chat"
        with _sudo(True):
            context, _ = probe_environment(config, euid=1000, user="alice", home=tmp_path)
        assert context.install_root == tmp_path / "chat"


class TestDetectRunner:
    def test_root(self):
        assert isinstance(detect_runner(euid=0), AdministratorRunner)

    def test_sudo(self):
        with _sudo(True):
            assert isinstance(detect_runner(euid=1000), ElevatedRunner)

    def test_plain(self):
        with _sudo(False):
            assert isinstance(detect_runner(euid=1000), UnprivilegedRunner)
