"""
Install Workflow
================

Environment Prober -> Runtime Installer -> install root -> Secret Generator
-> Manifest Synthesizer -> Operator Script Emitter -> Launcher -> report.

Each step either raises a ``ChatstackError`` (fatal) or logs a warning and
moves on. Step events are appended as JSON lines to ``install.jsonl`` inside
the installation root.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from chatstack.compose import Compose, daemon_reachable
from chatstack.config import StackSettings
from chatstack.credentials import generate_credentials
from chatstack.diagnostics import PUBLIC_IP_SERVICES, detect_server_ip
from chatstack.errors import InstallCancelled
from chatstack.health import HealthChecker
from chatstack.launcher import Launcher
from chatstack.manifest import write_artifacts, write_credentials_record
from chatstack.models import CredentialBundle, InstallationContext, LaunchReport
from chatstack.privilege import CommandRunner, UnprivilegedRunner, probe_environment
from chatstack.readiness import RetryPolicy
from chatstack.runtime import RuntimeInstaller
from chatstack.scripts import write_scripts

logger = logging.getLogger("chatstack.installer")

BACKUP_STAMP = "%Y%m%d_%H%M%S"


def prepare_install_root(root: Path, now: Optional[datetime] = None) -> Optional[Path]:
    """Move an existing *root* aside and create it empty.

    The old tree is renamed to ``<root>.backup.<YYYYmmdd_HHMMSS>``; a numeric
    suffix is appended if that name is already taken. Returns the backup path,
    or None when there was nothing to back up.
    """
    root = Path(root)
    backup: Optional[Path] = None
    if root.exists():
        stamp = (now or datetime.now()).strftime(BACKUP_STAMP)
        backup = root.with_name(f"{root.name}.backup.{stamp}")
        n = 1
        while backup.exists():
            backup = root.with_name(f"{root.name}.backup.{stamp}.{n}")
            n += 1
        logger.warning("Directory %s already exists. Backing up to %s", root, backup)
        root.rename(backup)
    root.mkdir(parents=True)
    logger.info("Project directory created: %s", root)
    return backup


def confirm(prompt: str = "Continue with installation? (y/N): ", reader: Callable[[str], str] = input) -> None:
    """Ask before touching the system.

    Raises:
        InstallCancelled: anything other than y/yes.
    """
    try:
        answer = reader(prompt)
    except EOFError:
        answer = ""
    if answer.strip().lower() not in ("y", "yes"):
        raise InstallCancelled("Installation cancelled.")


class Installer:
    """Runs the full install once for one invocation."""

    def __init__(
        self,
        config: dict,
        context: InstallationContext,
        runner: CommandRunner,
        install_runtime: bool = True,
        launch: bool = True,
        runtime_installer: Optional[RuntimeInstaller] = None,
        launcher_factory: Optional[Callable[[Compose, StackSettings], Launcher]] = None,
        server_ip: Optional[Callable[[], str]] = None,
    ):
        self.config = config
        self.context = context
        self.runner = runner
        self.stack = StackSettings.from_config(config)
        self.install_runtime = install_runtime
        self.launch = launch
        self.runtime_installer = runtime_installer or RuntimeInstaller(context, runner, config)
        self._launcher_factory = launcher_factory or self._default_launcher
        self._server_ip = server_ip or (
            lambda: detect_server_ip(config.get("diagnostics", {}).get("public_ip_services", PUBLIC_IP_SERVICES))
        )
        self._events: list[dict] = []
        self.credentials: Optional[CredentialBundle] = None
        self.backup: Optional[Path] = None
        self.launch_report: Optional[LaunchReport] = None
        self.server_ip = "localhost"

    @classmethod
    def from_environment(cls, config: dict, **kwargs) -> "Installer":
        context, runner = probe_environment(config)
        return cls(config, context, runner, **kwargs)

    # -- events ---------------------------------------------------------------

    def _event(self, step: str, ok: bool, **extra) -> None:
        record = {
            "event": "install_step",
            "step": step,
            "ok": ok,
            "timestamp": time.time(),
            "iso_time": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
            **extra,
        }
        self._events.append(record)

    def _flush_events(self) -> None:
        root = self.context.install_root
        if not root.exists():
            return
        log_name = self.config.get("logging", {}).get("event_log", "install.jsonl")
        with open(root / log_name, "a", encoding="utf-8") as f:
            for record in self._events:
                f.write(json.dumps(record, default=str) + "\n")
        self._events.clear()

    # -- steps ----------------------------------------------------------------

    def _docker_runner(self) -> CommandRunner:
        # A fresh docker group grant only applies to new login sessions.
        plain = UnprivilegedRunner()
        if self.context.is_administrator or daemon_reachable(plain):
            return plain
        logger.info("Docker daemon not reachable as %s yet, using %s", self.context.user, self.context.tier.value)
        return self.runner

    def _default_launcher(self, compose: Compose, stack: StackSettings) -> Launcher:
        timeout = float(self.config.get("readiness", {}).get("probe_timeout", 2.0))
        checker = HealthChecker(stack, compose, timeout=timeout)
        return Launcher(compose, checker, RetryPolicy.from_config(self.config))

    def run(self) -> LaunchReport:
        """Execute every step. Fatal steps raise ``ChatstackError``."""
        ctx = self.context
        logger.info("Installing for %s (%s) into %s", ctx.user, ctx.tier.value, ctx.install_root)

        if self.install_runtime:
            installed = self.runtime_installer.ensure()
            self._event("runtime", True, installed=installed)

        self.backup = prepare_install_root(ctx.install_root)
        self._event("install_root", True, backup=str(self.backup) if self.backup else None)

        self.credentials = generate_credentials()
        self._event("credentials", True, source=self.credentials.source, insecure=self.credentials.insecure)

        artifacts = write_artifacts(ctx.install_root, ctx, self.credentials, self.stack)
        self._event("artifacts", True, files=sorted(artifacts))

        scripts = write_scripts(ctx.install_root, self.stack)
        self._event("scripts", True, files=[p.name for p in scripts])

        server_ip = self._server_ip()
        self.server_ip = server_ip
        write_credentials_record(
            ctx.install_root,
            ctx,
            self.credentials,
            self.stack,
            server_ip,
            datetime.now().isoformat(timespec="seconds"),
        )
        self._flush_events()

        report = LaunchReport()
        if self.launch:
            compose = Compose(ctx.install_root, self._docker_runner())
            try:
                report = self._launcher_factory(compose, self.stack).launch()
                self._event("launch", True, all_healthy=report.all_healthy, attempts=report.attempts)
            except Exception as e:
                self._event("launch", False, error=str(e))
                raise
            finally:
                self._flush_events()
        self.launch_report = report
        return report

    # -- final report -----------------------------------------------------------

    def summary(self) -> str:
        ctx, stack, creds = self.context, self.stack, self.credentials
        server_ip = self.server_ip
        lines = [
            "Installation Complete!",
            "",
            f"Installation Directory: {ctx.install_root}",
        ]
        if self.backup:
            lines.append(f"Previous install moved to: {self.backup}")
        lines += [
            "",
            "Access URLs:",
            f"  - Open WebUI:        http://{server_ip}:{stack.chat_ui_port}",
            f"  - LiteLLM API:       http://{server_ip}:{stack.gateway_port}",
            f"  - LiteLLM Dashboard: http://{server_ip}:{stack.gateway_port}/ui",
            "",
        ]
        if creds:
            lines += [
                "LiteLLM Dashboard Credentials:",
                f"  - Username: {creds.ui_username}",
                f"  - Password: {creds.ui_password}",
                "",
            ]
        lines += [
            "Management Commands: ./start.sh ./stop.sh ./status.sh ./logs.sh ./restart.sh ./update.sh ./backup.sh",
            "",
            "Next Steps:",
            "  1. Visit Open WebUI and create your admin account (first user becomes admin)",
            "  2. Change the dashboard login in .env (UI_USERNAME / UI_PASSWORD)",
            "  3. Add your provider API keys to .env",
            "  4. Run ./restart.sh after editing .env",
            "",
            f"Credentials saved to: {ctx.install_root / 'credentials.txt'} (delete it once noted)",
        ]
        return "\n".join(lines)

    def warnings(self) -> list[str]:
        """Operator-facing caveats that must be printed after an install."""
        notes = [
            "The LiteLLM dashboard login is the fixed demo default admin/admin123; change it.",
            "The model catalog is fixed (OpenAI, Anthropic, Google, Cohere aliases plus 'echo'); "
            "edit litellm-config.yaml to change it.",
        ]
        if self.credentials and self.credentials.insecure:
            notes.insert(0, "Secrets were generated WITHOUT a cryptographic source; rotate them before production use.")
        if self.launch_report and self.launch and not self.launch_report.all_healthy:
            notes.append("Services were not all ready yet. Check with ./status.sh or chatstack diagnose.")
        return notes
