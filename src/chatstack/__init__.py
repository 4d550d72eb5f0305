"""
chatstack
=========

Single-host bootstrap for a self-hosted AI chat stack: Open WebUI in front
of a LiteLLM gateway backed by PostgreSQL, run with Docker Compose.

This package provides:
- Privilege probing and elevation strategies
- Credential generation and manifest rendering
- Docker installation, launch and bounded readiness polling
- Operator scripts and a connectivity diagnostics tool
"""

from chatstack.config import StackSettings, load_config
from chatstack.credentials import generate_credentials
from chatstack.diagnostics import Diagnostics
from chatstack.installer import Installer, prepare_install_root
from chatstack.manifest import (
    render_compose,
    render_env_file,
    render_routing_config,
    write_artifacts,
)
from chatstack.models import (
    CredentialBundle,
    InstallationContext,
    NetworkMode,
    PrivilegeTier,
    ServiceDescriptor,
)
from chatstack.privilege import CommandRunner, probe_environment
from chatstack.readiness import ReadinessPoller, RetryPolicy
from chatstack.scripts import write_scripts

__version__ = "1.0.0"

__all__ = [
    # Configuration
    "StackSettings",
    "load_config",
    # Workflow
    "Installer",
    "prepare_install_root",
    "probe_environment",
    "CommandRunner",
    "generate_credentials",
    "render_compose",
    "render_env_file",
    "render_routing_config",
    "write_artifacts",
    "write_scripts",
    "ReadinessPoller",
    "RetryPolicy",
    "Diagnostics",
    # Pydantic models
    "CredentialBundle",
    "InstallationContext",
    "NetworkMode",
    "PrivilegeTier",
    "ServiceDescriptor",
]
