"""
chatstack Configuration
=======================

YAML-based configuration with sensible defaults.
Loads from chatstack_config.yaml if present, otherwise uses built-in defaults.
A handful of environment variables override the file for quick one-off runs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml

from chatstack.errors import ConfigError
from chatstack.models import NetworkMode

_DEFAULTS = {
    "install": {
        "dir_name": "openwebui-litellm",
        "administrator_home": "/root",
        "allow_administrator": True,
        "require_elevation": False,
        "project_name": "openwebui-litellm",
    },
    "network": {
        "mode": "ports",
        "network_name": "openwebui-litellm-network",
    },
    "images": {
        "database": "postgres:15",
        "gateway": "ghcr.io/berriai/litellm:main-latest",
        "chat_ui": "ghcr.io/open-webui/open-webui:main",
    },
    "ports": {
        "chat_ui": 8080,
        "gateway": 4000,
        "database": 5432,
    },
    "database": {
        "name": "litellm",
        "user": "litellm",
    },
    "chat_ui": {
        "default_models": "gpt-4o-mini,echo",
        "enable_signup": True,
    },
    "readiness": {
        "settle_seconds": 15,
        "interval_seconds": 2,
        "max_attempts": 30,
        "probe_timeout": 2.0,
    },
    "runtime": {
        "install_method": "convenience",
        "convenience_url": "https://get.docker.com",
        "gpg_url": "https://download.docker.com/linux/ubuntu/gpg",
        "repository_url": "https://download.docker.com/linux/ubuntu",
        "prerequisites": ["curl", "wget", "ca-certificates", "gnupg", "lsb-release"],
        "group": "docker",
    },
    "diagnostics": {
        "public_ip_services": ["https://ifconfig.me", "https://ipinfo.io/ip"],
        "open_firewall": True,
        "restart_wait_attempts": 8,
    },
    "logging": {
        "console_verbosity": "info",
        "event_log": "install.jsonl",
    },
}

# Listening ports baked into the upstream images.
POSTGRES_PORT = 5432
OPEN_WEBUI_PORT = 8080

_ENV_OVERRIDES = {
    "CHATSTACK_NETWORK_MODE": ("network", "mode", str),
    "CHATSTACK_INSTALL_DIR": ("install", "dir_name", str),
    "CHATSTACK_POLL_ATTEMPTS": ("readiness", "max_attempts", int),
}


def load_config(path: str | Path = "chatstack_config.yaml") -> dict:
    """Load configuration from YAML file, merging with defaults.

    Args:
        path: Path to YAML config file. If relative, resolved from CWD.

    Returns:
        Merged config dict with all sections populated.
    """
    config = {k: dict(v) for k, v in _DEFAULTS.items()}
    config_path = Path(path)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                user = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {config_path}: {e}") from e
        if not isinstance(user, dict):
            raise ConfigError(f"{config_path} must hold a mapping of sections")
        for section, values in user.items():
            if section in config and isinstance(values, dict):
                config[section].update(values)
            else:
                config[section] = values

    for var, (section, key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var, "").strip()
        if raw:
            try:
                config[section][key] = cast(raw)
            except ValueError as e:
                raise ConfigError(f"{var}={raw!r} is not a valid {cast.__name__}") from e
    return config


@dataclass(frozen=True)
class StackSettings:
    """Typed view over the merged config that the renderers consume."""

    project_name: str = "openwebui-litellm"
    network_mode: NetworkMode = NetworkMode.PORTS
    network_name: str = "openwebui-litellm-network"
    database_image: str = "postgres:15"
    gateway_image: str = "ghcr.io/berriai/litellm:main-latest"
    chat_ui_image: str = "ghcr.io/open-webui/open-webui:main"
    chat_ui_port: int = 8080
    gateway_port: int = 4000
    database_port: int = 5432
    database_name: str = "litellm"
    database_user: str = "litellm"
    default_models: str = "gpt-4o-mini,echo"
    enable_signup: bool = True

    @classmethod
    def from_config(cls, config: dict) -> "StackSettings":
        """Build settings from a merged config.

        Raises:
            ConfigError: unknown network mode or a non-integer port.
        """
        install = config.get("install", {})
        network = config.get("network", {})
        images = config.get("images", {})
        ports = config.get("ports", {})
        database = config.get("database", {})
        chat_ui = config.get("chat_ui", {})
        mode = network.get("mode", "ports")
        try:
            network_mode = NetworkMode(mode)
        except ValueError as e:
            choices = ", ".join(m.value for m in NetworkMode)
            raise ConfigError(f"Unknown network mode {mode!r} (expected one of: {choices})") from e
        try:
            chat_ui_port = int(ports.get("chat_ui", cls.chat_ui_port))
            gateway_port = int(ports.get("gateway", cls.gateway_port))
            database_port = int(ports.get("database", cls.database_port))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Ports must be integers: {e}") from e
        return cls(
            project_name=install.get("project_name", cls.project_name),
            network_mode=network_mode,
            network_name=network.get("network_name", cls.network_name),
            database_image=images.get("database", cls.database_image),
            gateway_image=images.get("gateway", cls.gateway_image),
            chat_ui_image=images.get("chat_ui", cls.chat_ui_image),
            chat_ui_port=chat_ui_port,
            gateway_port=gateway_port,
            database_port=database_port,
            database_name=database.get("name", cls.database_name),
            database_user=database.get("user", cls.database_user),
            default_models=chat_ui.get("default_models", cls.default_models),
            enable_signup=bool(chat_ui.get("enable_signup", cls.enable_signup)),
        )

    @property
    def database_host(self) -> str:
        # Host networking shares the host's loopback; bridge networking resolves service names.
        return "localhost" if self.network_mode is NetworkMode.HOST else "postgres"

    @property
    def database_container_port(self) -> int:
        """Port PostgreSQL listens on inside its container.

        With published ports the container keeps the image default and only the
        host side moves; with host networking the server itself binds
        ``database_port`` (via ``PGPORT``).
        """
        return self.database_port if self.network_mode is NetworkMode.HOST else POSTGRES_PORT

    @property
    def chat_ui_container_port(self) -> int:
        """Port Open WebUI listens on inside its container (``PORT`` in host mode)."""
        return self.chat_ui_port if self.network_mode is NetworkMode.HOST else OPEN_WEBUI_PORT

    @property
    def gateway_host(self) -> str:
        return "localhost" if self.network_mode is NetworkMode.HOST else "litellm"

    @property
    def gateway_url(self) -> str:
        return f"http://localhost:{self.gateway_port}"

    @property
    def chat_ui_url(self) -> str:
        return f"http://localhost:{self.chat_ui_port}"
