"""Tests for the diagnostics walk-through against a rendered installation root."""

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import psutil
import pytest
from conftest import FakeRunner

from chatstack.diagnostics import Diagnostics, detect_server_ip, format_report
from chatstack.errors import ManifestMissingError
from chatstack.manifest import write_artifacts
from chatstack.privilege import CommandResult
from chatstack.readiness import RetryPolicy

SERVER_IP = "203.0.113.7"


@pytest.fixture
def root(tmp_path, context, credentials, stack):
    root = tmp_path / "install"
    write_artifacts(root, context, credentials, stack)
    return root


def _listening(*ports):
    return [
        SimpleNamespace(laddr=SimpleNamespace(port=port), status=psutil.CONN_LISTEN)
        for port in ports
    ]


def _http(external_ok=True, status_code=200):
    """Patch httpx.Client: IP lookups answer SERVER_IP, the rest answer status_code."""
    def get(url, **kwargs):
        if url.startswith(f"http://{SERVER_IP}") and not external_ok:
            raise httpx.ConnectError("Connection refused")
        resp = MagicMock(spec=httpx.Response)
        resp.status_code = status_code
        resp.text = SERVER_IP if "ifconfig" in url or "ipinfo" in url else '{"status": "healthy"}'
        return resp

    mock_client_cls = patch("chatstack.diagnostics.httpx.Client")
    return mock_client_cls, get


def _run(root, runner, external_ok=True, ports=(4000, 8080, 5432), **kwargs):
    client_patch, get = _http(external_ok)
    with client_patch as mock_client_cls, \
            patch("chatstack.diagnostics.psutil.net_connections", return_value=_listening(*ports)):
        mock_client = MagicMock()
        mock_client.get.side_effect = get
        mock_client_cls.return_value.__enter__.return_value = mock_client
        diagnostics = Diagnostics(root, runner=runner, policy=RetryPolicy(interval=0, max_attempts=2), **kwargs)
        report = diagnostics.run()
    return report, mock_client


def _running_runner(extra=None):
    responses = {
        ("docker", "ps"): CommandResult(0, "litellm-proxy\n"),
        ("docker", "inspect"): CommandResult(0, "healthy\n"),
        ("ufw", "status"): CommandResult(0, "Status: active\n"),
    }
    responses.update(extra or {})
    return FakeRunner(responses=responses)


class TestDiagnostics:
    def test_missing_manifest(self, tmp_path):
        with pytest.raises(ManifestMissingError, match="docker-compose.yml"):
            Diagnostics(tmp_path, runner=FakeRunner()).run()

    def test_healthy_install(self, root):
        runner = _running_runner()
        report, _ = _run(root, runner)
        assert report.server_ip == SERVER_IP
        assert report.problems == []
        steps = [f.step for f in report.findings]
        assert steps.index("containers") < steps.index("gateway logs") < steps.index("local gateway")
        assert "external access" in steps
        assert "manifest" not in steps
        assert runner.ran("ufw", "allow", "4000")
        assert report.checklist

    def test_master_key_sent_to_models_endpoint(self, root, credentials):
        _, mock_client = _run(root, _running_runner())
        models_calls = [c for c in mock_client.get.call_args_list if c.args[0].endswith("/v1/models")]
        assert models_calls
        assert models_calls[0].kwargs["headers"] == {"Authorization": f"Bearer {credentials.master_key}"}

    def test_secrets_masked(self, root, credentials):
        report, _ = _run(root, _running_runner())
        env_finding = next(f for f in report.findings if f.step == "environment file")
        assert env_finding.ok is True
        assert credentials.master_key not in env_finding.output
        assert credentials.db_password not in format_report(report)

    def test_stopped_gateway_is_restarted(self, root):
        runner = _running_runner({("docker", "ps"): CommandResult(0, "")})
        report, _ = _run(root, runner)
        assert runner.ran("docker", "compose", "--project-directory", str(root), "-f",
                          str(root / "docker-compose.yml"), "up", "-d", "litellm")
        restart = next(f for f in report.findings if f.step == "gateway restart")
        assert restart.ok is True

    def test_external_failure_inspects_manifest(self, root):
        report, _ = _run(root, _running_runner(), external_ok=False)
        external = next(f for f in report.findings if f.step == "external access")
        assert external.ok is False
        manifest = next(f for f in report.findings if f.step == "manifest")
        assert "port mapping" in manifest.summary
        assert "4000:4000" in manifest.summary

    def test_gateway_port_not_listening(self, root):
        report, _ = _run(root, _running_runner(), ports=(8080,))
        finding = next(f for f in report.findings if f.step == "listening ports")
        assert finding.ok is False
        assert "4000" in finding.summary

    def test_no_firewall_flag(self, root):
        runner = _running_runner()
        _run(root, runner, open_firewall=False)
        assert runner.ran("ufw", "status")
        assert not runner.ran("ufw", "allow")

    def test_manifest_untouched(self, root):
        before = (root / "docker-compose.yml").read_text()
        _run(root, _running_runner(), external_ok=False)
        assert (root / "docker-compose.yml").read_text() == before

    def test_format_report(self, root):
        report, _ = _run(root, _running_runner())
        text = format_report(report)
        assert text.startswith("LiteLLM Diagnostics")
        assert "[OK]" in text
        assert "Quick Fixes:" in text
        assert f"http://{SERVER_IP}:4000/ui" in text


class TestDetectServerIp:
    def test_invalid_answer_falls_back_to_hostname(self):
        runner = FakeRunner(responses={("hostname", "-I"): CommandResult(0, "10.0.0.5 172.17.0.1\n")})
        with patch("chatstack.diagnostics.httpx.Client") as mock_client_cls:
            mock_client = MagicMock()
            resp = MagicMock(spec=httpx.Response)
            resp.text = "<html>rate limited</html>"
            mock_client.get.return_value = resp
            mock_client_cls.return_value.__enter__.return_value = mock_client
            assert detect_server_ip(runner=runner) == "10.0.0.5"

    def test_localhost_as_last_resort(self):
        runner = FakeRunner(responses={("hostname", "-I"): CommandResult(1)})
        with patch("chatstack.diagnostics.httpx.Client") as mock_client_cls:
            mock_client_cls.return_value.__enter__.return_value.get.side_effect = httpx.ConnectError("offline")
            assert detect_server_ip(runner=runner) == "localhost"
