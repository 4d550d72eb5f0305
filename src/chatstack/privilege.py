"""
Environment Prober
==================

Decides once per run who is installing, which privilege tier they hold and
where the installation root lives, and hands back the matching command
runner strategy. Every later step receives these two objects explicitly.
"""

from __future__ import annotations

import getpass
import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from chatstack.errors import PrivilegeError
from chatstack.models import InstallationContext, PrivilegeTier

logger = logging.getLogger("chatstack.privilege")

COMMAND_NOT_FOUND = 127


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Strategy for executing commands at the privilege level of the run."""

    tier: PrivilegeTier
    prefix: tuple[str, ...] = ()

    def wrap(self, command: Sequence[str]) -> list[str]:
        return [*self.prefix, *command]

    def run(self, command: Sequence[str], timeout: Optional[float] = None) -> int:
        """Run *command* with inherited stdio and return its exit status."""
        argv = self.wrap(command)
        logger.debug("exec: %s", " ".join(argv))
        try:
            return subprocess.run(argv, timeout=timeout).returncode
        except FileNotFoundError:
            logger.debug("command not found: %s", argv[0])
            return COMMAND_NOT_FOUND

    def capture(
        self,
        command: Sequence[str],
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Run *command* and collect its output instead of streaming it."""
        argv = self.wrap(command)
        logger.debug("exec (captured): %s", " ".join(argv))
        try:
            proc = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input,
            )
        except FileNotFoundError:
            return CommandResult(COMMAND_NOT_FOUND, "", f"{argv[0]}: command not found")
        except subprocess.TimeoutExpired:
            return CommandResult(124, "", f"timed out after {timeout}s")
        return CommandResult(proc.returncode, proc.stdout or "", proc.stderr or "")


class AdministratorRunner(CommandRunner):
    tier = PrivilegeTier.ADMINISTRATOR


class ElevatedRunner(CommandRunner):
    tier = PrivilegeTier.ELEVATION
    prefix = ("sudo",)


class UnprivilegedRunner(CommandRunner):
    """No elevation available; commands that need root are expected to fail."""
    tier = PrivilegeTier.UNPRIVILEGED


_RUNNERS = {
    PrivilegeTier.ADMINISTRATOR: AdministratorRunner,
    PrivilegeTier.ELEVATION: ElevatedRunner,
    PrivilegeTier.UNPRIVILEGED: UnprivilegedRunner,
}


def runner_for(tier: PrivilegeTier) -> CommandRunner:
    return _RUNNERS[tier]()


def _sudo_available(plain: CommandRunner) -> bool:
    if plain.capture(["sudo", "-n", "true"]).ok:
        return True
    if not sys.stdin.isatty():
        return False
    logger.warning("Passwordless sudo not available, asking for sudo credentials...")
    return plain.run(["sudo", "-v"]) == 0


def probe_environment(
    config: dict,
    euid: Optional[int] = None,
    home: Optional[Path] = None,
    user: Optional[str] = None,
) -> tuple[InstallationContext, CommandRunner]:
    """Inspect the invoking identity and pick tier, root and runner.

    Args:
        config: Merged configuration (see ``chatstack.config.load_config``).
        euid, home, user: Overrides for tests; default to the real process.

    Raises:
        PrivilegeError: administrator runs are disallowed, or elevation is
            required and was denied.
    """
    install = config.get("install", {})
    dir_name = install.get("dir_name", "openwebui-litellm")
    euid = os.geteuid() if euid is None else euid
    user = user or getpass.getuser()
    home = home or Path.home()

    if euid == 0:
        if not install.get("allow_administrator", True):
            raise PrivilegeError(
                "This installer should not be run as root. "
                "Run it as a regular user with sudo privileges."
            )
        admin_home = Path(install.get("administrator_home", "/root"))
        logger.info("Running as root user")
        tier = PrivilegeTier.ADMINISTRATOR
        root = admin_home / dir_name
        home = admin_home
    else:
        plain = UnprivilegedRunner()
        if _sudo_available(plain):
            tier = PrivilegeTier.ELEVATION
            logger.info("Running as regular user with sudo privileges")
        elif install.get("require_elevation", False):
            raise PrivilegeError(
                "This installer requires sudo privileges. "
                "Please ensure you can run sudo commands."
            )
        else:
            tier = PrivilegeTier.UNPRIVILEGED
            logger.warning(
                "No sudo access available; will attempt installation with "
                "current user permissions, privileged steps may fail"
            )
        root = home / dir_name

    runner = runner_for(tier)
    context = InstallationContext(
        user=user,
        tier=tier,
        command_prefix=runner.prefix,
        install_root=root,
        home=home,
    )
    logger.info("Installation directory: %s", context.install_root)
    return context, runner


def detect_runner(euid: Optional[int] = None) -> CommandRunner:
    """Non-interactive tier detection for the post-install tools."""
    euid = os.geteuid() if euid is None else euid
    if euid == 0:
        return AdministratorRunner()
    if UnprivilegedRunner().capture(["sudo", "-n", "true"]).ok:
        return ElevatedRunner()
    return UnprivilegedRunner()
