"""
Diagnostics Tool
================

Read-mostly walk through an existing installation to narrow down why the
gateway is not reachable from outside. Every step is reported as a
``Finding``; nothing here fails the process. The only mutations are one
restart of a stopped gateway container and a best-effort firewall allow rule.

Usage:
    chatstack diagnose                 # from inside the installation root
    chatstack diagnose --dir ~/openwebui-litellm --no-firewall
"""

from __future__ import annotations

import ipaddress
import logging
from pathlib import Path
from typing import Optional

import httpx
import psutil
import yaml

from chatstack.compose import Compose
from chatstack.config import StackSettings
from chatstack.errors import ManifestMissingError
from chatstack.health import HealthChecker
from chatstack.manifest import (
    COMPOSE_FILE,
    CONTAINER_GATEWAY,
    ENV_FILE,
    ROUTING_CONFIG,
    SERVICE_GATEWAY,
    parse_env_file,
)
from chatstack.models import DiagnosticReport, Finding
from chatstack.privilege import CommandRunner, UnprivilegedRunner
from chatstack.readiness import RetryPolicy

logger = logging.getLogger("chatstack.diagnostics")

PUBLIC_IP_SERVICES = ("https://ifconfig.me", "https://ipinfo.io/ip")
EXTERNAL_TIMEOUT = 5.0
SAMPLE_CHARS = 300


def detect_server_ip(
    services: tuple[str, ...] | list[str] = PUBLIC_IP_SERVICES,
    runner: Optional[CommandRunner] = None,
    timeout: float = EXTERNAL_TIMEOUT,
) -> str:
    """Public address first, then the first local address, then localhost."""
    for url in services:
        try:
            with httpx.Client(timeout=timeout) as client:
                resp = client.get(url)
            candidate = resp.text.strip()
            ipaddress.ip_address(candidate)
            return candidate
        except (httpx.HTTPError, ValueError):
            logger.debug("Public IP lookup via %s failed", url)
    runner = runner or UnprivilegedRunner()
    result = runner.capture(["hostname", "-I"])
    if result.ok and result.stdout.split():
        return result.stdout.split()[0]
    return "localhost"


def _mask(value: str) -> str:
    if len(value) <= 8:
        return "****"
    return value[:6] + "..." + value[-2:]


def _sample(text: str, lines: int = 3) -> str:
    return "\n".join(text.splitlines()[:lines])[:SAMPLE_CHARS]


class Diagnostics:
    """Runs the connectivity checks against one installation root."""

    def __init__(
        self,
        root: Path,
        config: Optional[dict] = None,
        runner: Optional[CommandRunner] = None,
        open_firewall: Optional[bool] = None,
        policy: Optional[RetryPolicy] = None,
    ):
        config = config or {}
        diag = config.get("diagnostics", {})
        self.root = Path(root)
        self.stack = StackSettings.from_config(config)
        self.runner = runner or UnprivilegedRunner()
        self.compose = Compose(self.root, self.runner)
        self.checker = HealthChecker(self.stack, self.compose, timeout=EXTERNAL_TIMEOUT)
        self.ip_services = list(diag.get("public_ip_services", PUBLIC_IP_SERVICES))
        self.open_firewall = diag.get("open_firewall", True) if open_firewall is None else open_firewall
        self.policy = policy or RetryPolicy(
            interval=2.0,
            max_attempts=int(diag.get("restart_wait_attempts", 8)),
            settle_delay=0.0,
        )
        self.report = DiagnosticReport()

    def _add(self, step: str, ok: Optional[bool], summary: str, output: str = "") -> Finding:
        finding = Finding(step=step, ok=ok, summary=summary, output=output.rstrip())
        self.report.findings.append(finding)
        log = logger.info if ok is not False else logger.warning
        log("%s: %s", step, summary)
        return finding

    # -- individual steps ----------------------------------------------------

    def check_containers(self) -> None:
        result = self.compose.ps()
        self._add("containers", result.ok, "docker compose ps", result.stdout or result.stderr)

    def check_gateway_logs(self) -> None:
        result = self.compose.logs(SERVICE_GATEWAY, tail=20)
        self._add("gateway logs", None, "last 20 lines of the gateway log", result.stdout or result.stderr)

    def check_local_gateway(self) -> bool:
        status = self.checker.check_gateway()
        if status.healthy:
            self._add("local gateway", True, f"LiteLLM is accessible on localhost:{self.stack.gateway_port}")
        else:
            self._add("local gateway", False, f"LiteLLM is not accessible on localhost:{self.stack.gateway_port}", status.error or "")
        return status.healthy

    def check_gateway_running(self) -> bool:
        result = self.compose.docker("ps", "--filter", f"name=^{CONTAINER_GATEWAY}$", "--format", "{{.Names}}")
        if CONTAINER_GATEWAY in result.stdout.split():
            self._add("gateway container", True, f"{CONTAINER_GATEWAY} is running")
            return True

        self._add("gateway container", False, f"{CONTAINER_GATEWAY} is not running, attempting to start it")
        if self.compose.up([SERVICE_GATEWAY]) != 0:
            self._add("gateway restart", False, "docker compose up -d litellm failed")
            return False
        outcome = self.policy.run(lambda: self.checker.check_gateway().healthy)
        if outcome.succeeded:
            self._add("gateway restart", True, f"LiteLLM started successfully after {outcome.attempts} checks")
        else:
            self._add("gateway restart", False, "LiteLLM did not answer after restart; check docker compose logs litellm")
        return outcome.succeeded

    def check_listening_ports(self) -> None:
        ports = {self.stack.gateway_port, self.stack.chat_ui_port, self.stack.database_port}
        try:
            listening = sorted({
                conn.laddr.port
                for conn in psutil.net_connections(kind="inet")
                if conn.status == psutil.CONN_LISTEN and conn.laddr and conn.laddr.port in ports
            })
        except (psutil.AccessDenied, OSError) as e:
            self._add("listening ports", None, f"could not list sockets: {e}")
            return
        missing = sorted(ports - set(listening))
        gateway_ok = self.stack.gateway_port in listening
        summary = f"listening: {listening or 'none'}"
        if missing:
            summary += f"; not listening: {missing}"
        self._add("listening ports", gateway_ok, summary)

    def check_firewall(self) -> None:
        status = self.runner.capture(["ufw", "status"])
        if not status.ok:
            self._add("firewall", None, "UFW not installed or not active", status.stderr)
            return
        self._add("firewall", None, "ufw status", status.stdout)
        if not self.open_firewall:
            return
        port = str(self.stack.gateway_port)
        allow = self.runner.capture(["ufw", "allow", port])
        if allow.ok:
            self._add("firewall rule", True, f"port {port} allowed in ufw", allow.stdout)
        else:
            self._add("firewall rule", None, f"could not modify firewall for port {port} (may not have permissions)", allow.stderr)

    def check_external(self, server_ip: str) -> bool:
        url = f"http://{server_ip}:{self.stack.gateway_port}/health"
        try:
            with httpx.Client(timeout=EXTERNAL_TIMEOUT) as client:
                resp = client.get(url)
            reachable = resp.status_code < 500
        except httpx.HTTPError as e:
            self._add("external access", False, f"LiteLLM is not accessible at {url}", str(e))
            return False
        if reachable:
            self._add("external access", True, f"LiteLLM is accessible externally at {url}")
        else:
            self._add("external access", False, f"{url} answered HTTP {resp.status_code}")
        return reachable

    def inspect_manifest(self) -> None:
        try:
            manifest = yaml.safe_load((self.root / COMPOSE_FILE).read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            self._add("manifest", None, f"could not parse {COMPOSE_FILE}: {e}")
            return
        gateway = (manifest.get("services") or {}).get(SERVICE_GATEWAY) or {}
        if gateway.get("network_mode") == "host":
            logs = self.compose.capture("logs", SERVICE_GATEWAY).stdout
            hints = [line for line in logs.splitlines() if any(w in line.lower() for w in ("listening", "bind", "host"))]
            self._add(
                "manifest",
                None,
                "gateway uses host networking; check it binds 0.0.0.0",
                "\n".join(hints[-5:]),
            )
        else:
            ports = gateway.get("ports") or []
            self._add(
                "manifest",
                bool(ports),
                f"gateway uses port mapping: {ports or 'no ports published'}",
            )

    def check_container_health(self) -> None:
        result = self.compose.docker("inspect", CONTAINER_GATEWAY, "--format", "{{.State.Health.Status}}")
        if result.ok and result.stdout.strip():
            state = result.stdout.strip()
            self._add("container health", state == "healthy", f"{CONTAINER_GATEWAY} health: {state}")
        else:
            self._add("container health", None, "health check not configured or container missing", result.stderr)

    def sample_endpoints(self) -> None:
        env = self._env()
        headers = {}
        if env.get("LITELLM_MASTER_KEY"):
            headers["Authorization"] = f"Bearer {env['LITELLM_MASTER_KEY']}"
        for path in ("/health", "/v1/models"):
            url = f"{self.stack.gateway_url}{path}"
            try:
                with httpx.Client(timeout=EXTERNAL_TIMEOUT) as client:
                    resp = client.get(url, headers=headers)
                self._add(f"endpoint {path}", resp.status_code < 400, f"HTTP {resp.status_code}", _sample(resp.text))
            except httpx.HTTPError as e:
                self._add(f"endpoint {path}", False, f"{path} not responding", str(e))

    def check_config_files(self) -> None:
        config_path = self.root / ROUTING_CONFIG
        if config_path.exists():
            head = "\n".join(config_path.read_text(encoding="utf-8").splitlines()[:10])
            self._add("routing config", True, f"{ROUTING_CONFIG} exists", head)
        else:
            self._add("routing config", False, f"{ROUTING_CONFIG} missing")

        env = self._env()
        if env:
            shown = [
                f"{k}={_mask(v)}"
                for k, v in env.items()
                if k.startswith("LITELLM") or k.startswith("DATABASE")
            ][:5]
            self._add("environment file", True, f"{ENV_FILE} exists", "\n".join(shown))
        else:
            self._add("environment file", False, f"{ENV_FILE} missing or empty")

    def _env(self) -> dict[str, str]:
        path = self.root / ENV_FILE
        if not path.exists():
            return {}
        try:
            return parse_env_file(path.read_text(encoding="utf-8"))
        except OSError:
            return {}

    # -- driver ---------------------------------------------------------------

    def run(self) -> DiagnosticReport:
        """Run every step in order and return the collected report.

        Raises:
            ManifestMissingError: *root* holds no docker-compose.yml.
        """
        if not (self.root / COMPOSE_FILE).exists():
            raise ManifestMissingError(
                f"{COMPOSE_FILE} not found in {self.root}. "
                "Run this from your installation directory, e.g. "
                "cd ~/openwebui-litellm && chatstack diagnose"
            )

        self.check_containers()
        self.check_gateway_logs()
        self.check_local_gateway()
        self.check_gateway_running()
        self.check_listening_ports()
        self.check_firewall()

        server_ip = detect_server_ip(self.ip_services, self.runner)
        self.report.server_ip = server_ip
        self._add("server address", None, f"Server IP detected: {server_ip}")
        if not self.check_external(server_ip):
            self.inspect_manifest()

        self.check_container_health()
        self.sample_endpoints()
        self.check_config_files()

        port = self.stack.gateway_port
        self.report.checklist = [
            f"Restart LiteLLM: docker compose restart {SERVICE_GATEWAY}",
            f"Check logs: docker compose logs {SERVICE_GATEWAY} -f",
            "Rebuild: docker compose down && docker compose up -d",
            f"Open the firewall: ufw allow {port}",
            f"Check cloud provider security groups for inbound port {port}",
            f"Try from your browser: http://{server_ip}:{port}/ui and http://{server_ip}:{self.stack.chat_ui_port}",
        ]
        return self.report


def format_report(report: DiagnosticReport) -> str:
    marks = {True: "[OK]  ", False: "[FAIL]", None: "[INFO]"}
    lines = ["LiteLLM Diagnostics", "==================="]
    for finding in report.findings:
        lines.append(f"{marks[finding.ok]} {finding.step}: {finding.summary}")
        if finding.output:
            lines.extend("        " + line for line in finding.output.splitlines())
    lines += ["", "Quick Fixes:", "============"]
    lines.extend(f"{i}. {item}" for i, item in enumerate(report.checklist, start=1))
    return "\n".join(lines)
