"""
Manifest Synthesizer
====================

Renders the three artifacts of an install from the installation context,
the credential bundle and the stack settings:

  - ``litellm-config.yaml``  gateway model routing
  - ``.env``                 flat key/value environment for compose
  - ``docker-compose.yml``   the three service descriptors

Rendering is pure (same input, byte-identical output); writing is a separate
step. The model catalog is fixed here, not discovered.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Optional

import yaml

from chatstack.config import StackSettings
from chatstack.errors import ManifestError
from chatstack.models import (
    CredentialBundle,
    HealthCheck,
    InstallationContext,
    ModelRoute,
    NetworkMode,
    ServiceDescriptor,
)

logger = logging.getLogger("chatstack.manifest")

ROUTING_CONFIG = "litellm-config.yaml"
ENV_FILE = ".env"
COMPOSE_FILE = "docker-compose.yml"
CREDENTIALS_FILE = "credentials.txt"
ARTIFACTS = (ENV_FILE, COMPOSE_FILE, ROUTING_CONFIG)

SERVICE_DATABASE = "postgres"
SERVICE_GATEWAY = "litellm"
SERVICE_CHAT_UI = "open-webui"

CONTAINER_DATABASE = "litellm-postgres"
CONTAINER_GATEWAY = "litellm-proxy"
CONTAINER_CHAT_UI = "open-webui"

VOLUMES = ("postgres-data", "litellm-data", "open-webui-data")

PROVIDER_KEYS = (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "GOOGLE_API_KEY",
    "COHERE_API_KEY",
)

MODEL_CATALOG: tuple[ModelRoute, ...] = (
    ModelRoute(alias="gpt-4o", provider_model="openai/gpt-4o", api_key_env="OPENAI_API_KEY"),
    ModelRoute(alias="gpt-4o-mini", provider_model="openai/gpt-4o-mini", api_key_env="OPENAI_API_KEY"),
    ModelRoute(alias="gpt-3.5-turbo", provider_model="openai/gpt-3.5-turbo", api_key_env="OPENAI_API_KEY"),
    ModelRoute(
        alias="claude-3-5-sonnet",
        provider_model="anthropic/claude-3-5-sonnet-20241022",
        api_key_env="ANTHROPIC_API_KEY",
    ),
    ModelRoute(
        alias="claude-3-5-haiku",
        provider_model="anthropic/claude-3-5-haiku-20241022",
        api_key_env="ANTHROPIC_API_KEY",
    ),
    ModelRoute(alias="gemini-pro", provider_model="gemini/gemini-pro", api_key_env="GOOGLE_API_KEY"),
    ModelRoute(alias="command-r-plus", provider_model="cohere/command-r-plus", api_key_env="COHERE_API_KEY"),
    # Test alias: never reaches a real provider without a key.
    ModelRoute(alias="echo", provider_model="openai/gpt-3.5-turbo", literal_key="test"),
)
COMPLETION_MODEL = "gpt-4o-mini"
MODEL_GROUP_ALIASES = {"gpt-4": "gpt-4o", "gpt-3.5": "gpt-3.5-turbo"}

_VAR_REF = re.compile(r"\$\{([A-Z0-9_]+)(?::-([^}]*))?\}")


def _dump(data: dict) -> str:
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False, width=1000)


# ---------------------------------------------------------------------------
# Routing config
# ---------------------------------------------------------------------------

def render_routing_config(
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
) -> str:
    """Render ``litellm-config.yaml``. Secrets appear only as env references."""
    model_list = []
    for route in MODEL_CATALOG:
        api_key = f"os.environ/{route.api_key_env}" if route.api_key_env else route.literal_key
        model_list.append({
            "model_name": route.alias,
            "litellm_params": {"model": route.provider_model, "api_key": api_key},
        })
    data = {
        "model_list": model_list,
        "router_settings": {
            "routing_strategy": "least-busy",
            "model_group_alias": dict(MODEL_GROUP_ALIASES),
        },
        "general_settings": {
            "completion_model": COMPLETION_MODEL,
            "disable_spend_logs": False,
            "master_key": "os.environ/LITELLM_MASTER_KEY",
            "database_url": "os.environ/DATABASE_URL",
        },
        "litellm_settings": {
            "json_logs": True,
        },
    }
    return "# LiteLLM gateway routing, generated by chatstack\n" + _dump(data)


# ---------------------------------------------------------------------------
# Environment file
# ---------------------------------------------------------------------------

def database_url(credentials: CredentialBundle, stack: StackSettings) -> str:
    return (
        f"postgresql://{stack.database_user}:{credentials.db_password}"
        f"@{stack.database_host}:{stack.database_container_port}/{stack.database_name}"
    )


def environment_values(credentials: CredentialBundle, stack: StackSettings) -> dict[str, str]:
    """The flat key/value union written to ``.env``, in file order."""
    return {
        "LITELLM_MASTER_KEY": credentials.master_key,
        "LITELLM_SALT_KEY": credentials.salt_key,
        "LITELLM_LOG": "INFO",
        "LITELLM_PORT": str(stack.gateway_port),
        "LITELLM_HOST": "0.0.0.0",
        "STORE_MODEL_IN_DB": "True",
        "DATABASE_URL": database_url(credentials, stack),
        "POSTGRES_DB": stack.database_name,
        "POSTGRES_USER": stack.database_user,
        "POSTGRES_PASSWORD": credentials.db_password,
        "UI_USERNAME": credentials.ui_username,
        "UI_PASSWORD": credentials.ui_password,
        "OPENAI_API_BASE_URL": f"http://{stack.gateway_host}:{stack.gateway_port}/v1",
        "WEBUI_SECRET_KEY": credentials.webui_secret,
        "DEFAULT_MODELS": stack.default_models,
        "ENABLE_SIGNUP": "true" if stack.enable_signup else "false",
    }


_ENV_SECTIONS = (
    ("LiteLLM gateway", ("LITELLM_MASTER_KEY", "LITELLM_SALT_KEY", "LITELLM_LOG",
                         "LITELLM_PORT", "LITELLM_HOST", "STORE_MODEL_IN_DB")),
    ("Database", ("DATABASE_URL", "POSTGRES_DB", "POSTGRES_USER", "POSTGRES_PASSWORD")),
    ("LiteLLM dashboard login (fixed defaults, change them)", ("UI_USERNAME", "UI_PASSWORD")),
    ("Open WebUI", ("OPENAI_API_BASE_URL", "WEBUI_SECRET_KEY", "DEFAULT_MODELS", "ENABLE_SIGNUP")),
)


def render_env_file(
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
) -> str:
    values = environment_values(credentials, stack)
    lines = [
        "# Open WebUI + LiteLLM environment, generated by chatstack",
        f"# Installation root: {context.install_root}",
        "",
    ]
    for title, keys in _ENV_SECTIONS:
        lines.append(f"# {title}")
        lines.extend(f"{key}={values[key]}" for key in keys)
        lines.append("")
    lines.append("# Upstream provider API keys. Uncomment, fill in, then ./restart.sh")
    lines.extend(f"# {key}=your_{key.lower()}_here" for key in PROVIDER_KEYS)
    lines.append("")
    return "\n".join(lines)


def parse_env_file(text: str) -> dict[str, str]:
    """Read ``KEY=value`` lines, skipping comments and blanks."""
    values: dict[str, str] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#") or "=" not in stripped:
            continue
        key, value = stripped.split("=", 1)
        values[key.strip()] = value.strip().strip('"').strip("'")
    return values


# ---------------------------------------------------------------------------
# Service descriptors
# ---------------------------------------------------------------------------

def build_services(stack: StackSettings) -> list[ServiceDescriptor]:
    """Declare the database, gateway and chat UI in dependency order.

    Gateway waits for a healthy database; chat UI waits for a healthy gateway.
    One network mode applies to all three.
    """
    host = stack.network_mode is NetworkMode.HOST

    def publish(port: int, target: Optional[int] = None) -> list[str]:
        return [] if host else [f"{port}:{target or port}"]

    network_mode = "host" if host else None

    database_env = {
        "POSTGRES_DB": "${POSTGRES_DB}",
        "POSTGRES_USER": "${POSTGRES_USER}",
        "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
    }
    if host:
        # No port mapping on the host network: move the server itself.
        database_env["PGPORT"] = str(stack.database_container_port)

    database = ServiceDescriptor(
        name=SERVICE_DATABASE,
        container_name=CONTAINER_DATABASE,
        image=stack.database_image,
        ports=publish(stack.database_port, stack.database_container_port),
        network_mode=network_mode,
        volumes=["postgres-data:/var/lib/postgresql/data"],
        environment=database_env,
        healthcheck=HealthCheck(
            test=["CMD-SHELL", "pg_isready -U ${POSTGRES_USER} -d ${POSTGRES_DB}"],
            interval="10s",
            timeout="5s",
            retries=5,
        ),
    )

    gateway_env = {
        "LITELLM_MASTER_KEY": "${LITELLM_MASTER_KEY}",
        "LITELLM_SALT_KEY": "${LITELLM_SALT_KEY}",
        "DATABASE_URL": "${DATABASE_URL}",
        "LITELLM_LOG": "${LITELLM_LOG}",
        "STORE_MODEL_IN_DB": "${STORE_MODEL_IN_DB}",
        "UI_USERNAME": "${UI_USERNAME}",
        "UI_PASSWORD": "${UI_PASSWORD}",
    }
    for key in PROVIDER_KEYS:
        gateway_env[key] = "${" + key + ":-}"

    gateway = ServiceDescriptor(
        name=SERVICE_GATEWAY,
        container_name=CONTAINER_GATEWAY,
        image=stack.gateway_image,
        ports=publish(stack.gateway_port, stack.gateway_port),
        network_mode=network_mode,
        volumes=[f"./{ROUTING_CONFIG}:/app/config.yaml:ro", "litellm-data:/app/data"],
        environment=gateway_env,
        command=["--config", "/app/config.yaml", "--port", str(stack.gateway_port), "--host", "0.0.0.0"],
        depends_on={SERVICE_DATABASE: "service_healthy"},
        healthcheck=HealthCheck(
            test=[
                "CMD",
                "python",
                "-c",
                "import urllib.request; urllib.request.urlopen("
                f"'http://localhost:{stack.gateway_port}/health/liveliness')",
            ],
            interval="30s",
            timeout="10s",
            retries=3,
        ),
    )

    chat_ui_env = {
        "OPENAI_API_BASE_URL": "${OPENAI_API_BASE_URL}",
        "OPENAI_API_KEY": "${LITELLM_MASTER_KEY}",
        "WEBUI_SECRET_KEY": "${WEBUI_SECRET_KEY}",
        "DEFAULT_MODELS": "${DEFAULT_MODELS}",
        "ENABLE_SIGNUP": "${ENABLE_SIGNUP}",
    }
    if host:
        chat_ui_env["PORT"] = str(stack.chat_ui_container_port)

    chat_ui = ServiceDescriptor(
        name=SERVICE_CHAT_UI,
        container_name=CONTAINER_CHAT_UI,
        image=stack.chat_ui_image,
        ports=publish(stack.chat_ui_port, stack.chat_ui_container_port),
        network_mode=network_mode,
        volumes=["open-webui-data:/app/backend/data"],
        environment=chat_ui_env,
        depends_on={SERVICE_GATEWAY: "service_healthy"},
        healthcheck=HealthCheck(test=["CMD", "curl", "-f", f"http://localhost:{stack.chat_ui_container_port}"]),
    )
    return [database, gateway, chat_ui]


def validate_services(services: list[ServiceDescriptor]) -> NetworkMode:
    """Check descriptors are internally consistent and return their network mode.

    Raises:
        ManifestError: mixed network modes, a host-mode service publishing
            ports, or a dependency on an unknown / health-less service.
    """
    if not services:
        raise ManifestError("No services declared")
    modes = {NetworkMode.HOST if s.uses_host_network else NetworkMode.PORTS for s in services}
    if len(modes) != 1:
        raise ManifestError("Services mix host networking and published ports")
    by_name = {s.name: s for s in services}
    for svc in services:
        if svc.uses_host_network and svc.ports:
            raise ManifestError(f"{svc.name}: host networking cannot publish ports")
        for dep, condition in svc.depends_on.items():
            target = by_name.get(dep)
            if target is None:
                raise ManifestError(f"{svc.name} depends on unknown service {dep!r}")
            if condition == "service_healthy" and target.healthcheck is None:
                raise ManifestError(f"{svc.name} waits for {dep} health but {dep} has no healthcheck")
    return modes.pop()


def _service_block(svc: ServiceDescriptor) -> dict:
    block: dict = {"image": svc.image, "container_name": svc.container_name}
    if svc.network_mode:
        block["network_mode"] = svc.network_mode
    if svc.ports:
        block["ports"] = list(svc.ports)
    if svc.volumes:
        block["volumes"] = list(svc.volumes)
    if svc.environment:
        block["environment"] = dict(svc.environment)
    if svc.command:
        block["command"] = list(svc.command)
    if svc.depends_on:
        block["depends_on"] = {dep: {"condition": cond} for dep, cond in svc.depends_on.items()}
    block["restart"] = svc.restart
    if svc.healthcheck:
        block["healthcheck"] = {
            "test": list(svc.healthcheck.test),
            "interval": svc.healthcheck.interval,
            "timeout": svc.healthcheck.timeout,
            "retries": svc.healthcheck.retries,
        }
    return block


def render_compose(
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
) -> str:
    services = build_services(stack)
    mode = validate_services(services)
    data: dict = {
        "name": stack.project_name,
        "services": {svc.name: _service_block(svc) for svc in services},
        "volumes": {vol: {"driver": "local"} for vol in VOLUMES},
    }
    if mode is NetworkMode.PORTS:
        data["networks"] = {"default": {"name": stack.network_name}}
    return "# Open WebUI + LiteLLM stack, generated by chatstack\n" + _dump(data)


def resolve_service_environment(
    environment: dict[str, str],
    env_values: dict[str, str],
) -> dict[str, str]:
    """Interpolate ``${VAR}`` / ``${VAR:-default}`` the way compose does."""
    def sub(match: re.Match) -> str:
        name, default = match.group(1), match.group(2)
        value = env_values.get(name)
        if value is None or (value == "" and default is not None):
            return default or ""
        return value

    return {key: _VAR_REF.sub(sub, value) for key, value in environment.items()}


# ---------------------------------------------------------------------------
# Credentials record
# ---------------------------------------------------------------------------

def render_credentials_record(
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
    server_ip: str,
    generated_at: str,
) -> str:
    lines = [
        "Open WebUI + LiteLLM Installation Credentials",
        "=============================================",
        f"Server: {server_ip}",
        f"Generated on: {generated_at}",
        "",
        "Access URLs:",
        f"- Open WebUI: http://{server_ip}:{stack.chat_ui_port}",
        f"- LiteLLM API: http://{server_ip}:{stack.gateway_port}",
        f"- LiteLLM Dashboard: http://{server_ip}:{stack.gateway_port}/ui",
        "",
        "LiteLLM Dashboard (fixed default login, change it):",
        f"- Username: {credentials.ui_username}",
        f"- Password: {credentials.ui_password}",
        "",
        "API Access:",
        f"- Master Key: {credentials.master_key}",
        "",
        "Database:",
        f"- Host: localhost:{stack.database_port}",
        f"- Database: {stack.database_name}",
        f"- Username: {stack.database_user}",
        f"- Password: {credentials.db_password}",
        "",
        "Management:",
        f"cd {context.install_root}",
        "./start.sh / ./stop.sh / ./status.sh / ./logs.sh / ./backup.sh",
        "",
    ]
    if credentials.insecure:
        lines += [
            "WARNING: these secrets came from a low-entropy fallback.",
            "Rotate them before exposing this stack to anyone.",
            "",
        ]
    lines.append("IMPORTANT: Keep this file secure and delete it after noting the credentials!")
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def _write(path: Path, text: str, mode: Optional[int] = None) -> Path:
    path.write_text(text, encoding="utf-8")
    if mode is not None:
        os.chmod(path, mode)
    logger.info("Wrote file: %s", path)
    return path


def write_artifacts(
    root: Path,
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
) -> dict[str, Path]:
    """Render and write the three artifacts into *root*."""
    root.mkdir(parents=True, exist_ok=True)
    return {
        ROUTING_CONFIG: _write(root / ROUTING_CONFIG, render_routing_config(context, credentials, stack)),
        ENV_FILE: _write(root / ENV_FILE, render_env_file(context, credentials, stack), 0o600),
        COMPOSE_FILE: _write(root / COMPOSE_FILE, render_compose(context, credentials, stack)),
    }


def write_credentials_record(
    root: Path,
    context: InstallationContext,
    credentials: CredentialBundle,
    stack: StackSettings,
    server_ip: str,
    generated_at: str,
) -> Path:
    text = render_credentials_record(context, credentials, stack, server_ip, generated_at)
    return _write(root / CREDENTIALS_FILE, text, 0o600)
