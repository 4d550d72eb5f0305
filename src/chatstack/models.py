"""
chatstack Data Models
=====================

Pydantic v2 data structures shared by the install workflow, the launcher
and the diagnostics tool.
"""

from __future__ import annotations

import time
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class PrivilegeTier(str, Enum):
    ADMINISTRATOR = "administrator"
    ELEVATION = "elevation"
    UNPRIVILEGED = "unprivileged"


class NetworkMode(str, Enum):
    PORTS = "ports"
    HOST = "host"


class InstallationContext(BaseModel):
    """Who is installing and where. Built once by the prober, never mutated."""
    model_config = ConfigDict(frozen=True)

    user: str
    tier: PrivilegeTier
    command_prefix: tuple[str, ...] = ()
    install_root: Path
    home: Path

    @property
    def is_administrator(self) -> bool:
        return self.tier is PrivilegeTier.ADMINISTRATOR


class CredentialBundle(BaseModel):
    model_config = ConfigDict(frozen=True)

    master_key: str
    salt_key: str
    db_password: str
    webui_secret: str
    ui_username: str = "admin"
    ui_password: str = "admin123"
    source: str = "openssl"      # openssl | urandom | fallback
    insecure: bool = False       # True only for the timestamp fallback


class ModelRoute(BaseModel):
    model_config = ConfigDict(frozen=True)

    alias: str
    provider_model: str
    api_key_env: Optional[str] = None   # None means a literal test key
    literal_key: Optional[str] = None


class HealthCheck(BaseModel):
    test: list[str]
    interval: str = "30s"
    timeout: str = "10s"
    retries: int = 3


class ServiceDescriptor(BaseModel):
    name: str
    container_name: str
    image: str
    ports: list[str] = Field(default_factory=list)
    network_mode: Optional[str] = None
    volumes: list[str] = Field(default_factory=list)
    environment: dict[str, str] = Field(default_factory=dict)
    command: list[str] = Field(default_factory=list)
    depends_on: dict[str, str] = Field(default_factory=dict)  # service -> condition
    healthcheck: Optional[HealthCheck] = None
    restart: str = "unless-stopped"

    @property
    def uses_host_network(self) -> bool:
        return self.network_mode == "host"


class ReadinessState(BaseModel):
    """Transient per-service poll bookkeeping. Never persisted."""
    service: str
    target: str
    attempts: int = 0
    max_attempts: int = 30
    interval: float = 2.0
    ready: bool = False


class HealthStatus(BaseModel):
    component: str
    healthy: bool
    latency_ms: float = 0.0
    details: dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


class StackHealth(BaseModel):
    components: list[HealthStatus] = Field(default_factory=list)
    all_healthy: bool = False
    timestamp: float = Field(default_factory=time.time)

    def get(self, component: str) -> Optional[HealthStatus]:
        for status in self.components:
            if status.component == component:
                return status
        return None


class LaunchReport(BaseModel):
    pulled: bool = False
    started: bool = False
    all_healthy: bool = False
    attempts: int = 0
    health: Optional[StackHealth] = None


class Finding(BaseModel):
    step: str
    ok: Optional[bool] = None   # None for purely informational steps
    summary: str = ""
    output: str = ""


class DiagnosticReport(BaseModel):
    findings: list[Finding] = Field(default_factory=list)
    checklist: list[str] = Field(default_factory=list)
    server_ip: str = "localhost"

    @property
    def problems(self) -> list[Finding]:
        return [f for f in self.findings if f.ok is False]
