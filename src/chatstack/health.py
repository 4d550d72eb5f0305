"""
Health Check Module
===================

Probes the three stack services and returns structured results via
Pydantic models:

  - LiteLLM gateway   GET /health on the gateway port
  - Open WebUI        GET / on the chat UI port
  - PostgreSQL        pg_isready inside the database container

Any HTTP answer below 500 counts as reachable: the gateway's /health
demands the master key and a 401 still proves the server is up.
Probes never raise.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

import httpx

from chatstack.compose import Compose
from chatstack.config import StackSettings
from chatstack.manifest import SERVICE_CHAT_UI, SERVICE_DATABASE, SERVICE_GATEWAY
from chatstack.models import HealthStatus, StackHealth


class HealthChecker:
    """Probes all stack services one after another."""

    def __init__(
        self,
        stack: Optional[StackSettings] = None,
        compose: Optional[Compose] = None,
        timeout: float = 2.0,
    ):
        self.stack = stack or StackSettings()
        self.compose = compose
        self.timeout = timeout
        self.gateway_url = self.stack.gateway_url
        self.chat_ui_url = self.stack.chat_ui_url
        self.probes: dict[str, Callable[[], HealthStatus]] = {
            SERVICE_DATABASE: self.check_database,
            SERVICE_GATEWAY: self.check_gateway,
            SERVICE_CHAT_UI: self.check_chat_ui,
        }
        if compose is None:
            # Without a compose handle the database can only be judged via the gateway.
            del self.probes[SERVICE_DATABASE]

    def target(self, name: str) -> str:
        if name == SERVICE_GATEWAY:
            return f"{self.gateway_url}/health"
        if name == SERVICE_CHAT_UI:
            return self.chat_ui_url
        if name == SERVICE_DATABASE:
            return f"pg_isready -U {self.stack.database_user} -d {self.stack.database_name}"
        raise KeyError(name)

    def check(self, name: str) -> HealthStatus:
        return self.probes[name]()

    def check_all(self) -> StackHealth:
        components = [probe() for probe in self.probes.values()]
        return StackHealth(
            components=components,
            all_healthy=all(c.healthy for c in components),
        )

    def _http(self, component: str, url: str) -> HealthStatus:
        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.get(url)
            latency = (time.perf_counter() - start) * 1000
            if resp.status_code >= 500:
                return HealthStatus(
                    component=component,
                    healthy=False,
                    latency_ms=latency,
                    details={"status_code": resp.status_code},
                    error=f"HTTP {resp.status_code}",
                )
            return HealthStatus(
                component=component,
                healthy=True,
                latency_ms=latency,
                details={"status_code": resp.status_code},
            )
        except httpx.TimeoutException:
            latency = (time.perf_counter() - start) * 1000
            return HealthStatus(
                component=component,
                healthy=False,
                latency_ms=latency,
                error=f"timeout ({component} did not respond within {self.timeout}s)",
            )
        except Exception as e:
            latency = (time.perf_counter() - start) * 1000
            return HealthStatus(
                component=component,
                healthy=False,
                latency_ms=latency,
                error=str(e),
            )

    def check_gateway(self) -> HealthStatus:
        """Probe the LiteLLM /health endpoint."""
        return self._http(SERVICE_GATEWAY, self.target(SERVICE_GATEWAY))

    def check_chat_ui(self) -> HealthStatus:
        """Probe the Open WebUI root page."""
        return self._http(SERVICE_CHAT_UI, self.target(SERVICE_CHAT_UI))

    def check_database(self) -> HealthStatus:
        """Run pg_isready inside the database container."""
        start = time.perf_counter()
        if self.compose is None:
            return HealthStatus(component=SERVICE_DATABASE, healthy=False, error="no compose handle")
        try:
            result = self.compose.exec(
                SERVICE_DATABASE,
                "pg_isready",
                "-U",
                self.stack.database_user,
                "-d",
                self.stack.database_name,
                timeout=max(self.timeout, 5.0),
            )
        except Exception as e:
            return HealthStatus(
                component=SERVICE_DATABASE,
                healthy=False,
                latency_ms=(time.perf_counter() - start) * 1000,
                error=str(e),
            )
        latency = (time.perf_counter() - start) * 1000
        if result.ok:
            return HealthStatus(
                component=SERVICE_DATABASE,
                healthy=True,
                latency_ms=latency,
                details={"output": result.stdout.strip()},
            )
        return HealthStatus(
            component=SERVICE_DATABASE,
            healthy=False,
            latency_ms=latency,
            error=(result.stderr or result.stdout).strip() or f"pg_isready exited {result.returncode}",
        )
