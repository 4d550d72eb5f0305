"""
Operator Script Emitter
=======================

Writes the seven standalone bash wrappers an operator uses after install:
start, stop, status, restart, logs, update, backup. Each one changes into
its own directory, talks to ``docker compose`` directly and shares nothing
with the others.
"""

from __future__ import annotations

import logging
import stat
import textwrap
from pathlib import Path

from chatstack.config import StackSettings
from chatstack.manifest import (
    ARTIFACTS,
    SERVICE_DATABASE,
    VOLUMES,
)

logger = logging.getLogger("chatstack.scripts")

SCRIPT_NAMES = (
    "start.sh",
    "stop.sh",
    "status.sh",
    "restart.sh",
    "logs.sh",
    "update.sh",
    "backup.sh",
)
LOG_TAIL_LINES = 50

_PREAMBLE = '#!/usr/bin/env bash\ncd "$(dirname "$0")" || exit 1\n'


def _script(body: str) -> str:
    return _PREAMBLE + textwrap.dedent(body).lstrip("\n")


def render_start(stack: StackSettings) -> str:
    return _script(
        f"""
        echo "Starting Open WebUI + LiteLLM services..."
        docker compose up -d
        echo "Services started!"
        echo ""
        SERVER_IP=$(hostname -I 2>/dev/null | awk '{{print $1}}')
        SERVER_IP=${{SERVER_IP:-localhost}}
        echo "Access URLs:"
        echo "  - Open WebUI:        http://${{SERVER_IP}}:{stack.chat_ui_port}"
        echo "  - LiteLLM API:       http://${{SERVER_IP}}:{stack.gateway_port}"
        echo "  - LiteLLM Dashboard: http://${{SERVER_IP}}:{stack.gateway_port}/ui"
        """
    )


def render_stop(stack: StackSettings) -> str:
    return _script(
        """
        echo "Stopping Open WebUI + LiteLLM services..."
        docker compose down
        echo "Services stopped! (named volumes kept)"
        """
    )


def render_status(stack: StackSettings) -> str:
    return _script(
        f"""
        echo "Service Status:"
        echo "=================="
        docker compose ps
        echo ""
        echo "Health Checks:"
        echo "=================="

        if curl -s -o /dev/null --max-time 5 http://localhost:{stack.gateway_port}/health; then
            echo "LiteLLM API: Online"
        else
            echo "LiteLLM API: Offline"
        fi

        if curl -s -o /dev/null --max-time 5 http://localhost:{stack.chat_ui_port}; then
            echo "Open WebUI: Online"
        else
            echo "Open WebUI: Offline"
        fi

        if docker compose exec -T {SERVICE_DATABASE} pg_isready -U {stack.database_user} -d {stack.database_name} >/dev/null 2>&1; then
            echo "PostgreSQL: Online"
        else
            echo "PostgreSQL: Offline"
        fi
        """
    )


def render_restart(stack: StackSettings) -> str:
    return _script(
        """
        echo "Restarting Open WebUI + LiteLLM services..."
        docker compose restart
        echo "Services restarted!"
        """
    )


def render_logs(stack: StackSettings) -> str:
    return _script(
        f"""
        if [ "$1" = "follow" ] || [ "$1" = "-f" ]; then
            echo "Following logs (Ctrl+C to exit)..."
            exec docker compose logs -f
        fi
        echo "Recent logs:"
        docker compose logs --tail={LOG_TAIL_LINES}
        echo ""
        echo "Use './logs.sh follow' to follow logs in real-time"
        """
    )


def render_update(stack: StackSettings) -> str:
    return _script(
        """
        echo "Updating Open WebUI + LiteLLM to latest images..."
        docker compose pull
        docker compose up -d
        echo "Services updated!"
        """
    )


def render_backup(stack: StackSettings) -> str:
    volume_lines = "\n".join(
        f'echo "Backing up volume {vol}..."\n'
        f'docker run --rm -v {stack.project_name}_{vol}:/data -v "$BACKUP_DIR":/backup '
        f"alpine tar czf /backup/{vol}.tar.gz -C /data ."
        for vol in VOLUMES
    )
    artifacts = " ".join(ARTIFACTS)
    body = (
        'BACKUP_DIR="$(pwd)/backups/$(date +%Y%m%d_%H%M%S)"\n'
        'mkdir -p "$BACKUP_DIR"\n'
        "\n"
        'echo "Creating backup in $BACKUP_DIR..."\n'
        f"{volume_lines}\n"
        "\n"
        'echo "Dumping PostgreSQL database..."\n'
        f"docker compose exec -T {SERVICE_DATABASE} pg_dump -U {stack.database_user} "
        f'{stack.database_name} > "$BACKUP_DIR/postgres-dump.sql"\n'
        "\n"
        'echo "Copying configuration files..."\n'
        f'cp {artifacts} "$BACKUP_DIR/"\n'
        "\n"
        'echo "Backup completed: $BACKUP_DIR"\n'
    )
    return _PREAMBLE + body


_RENDERERS = {
    "start.sh": render_start,
    "stop.sh": render_stop,
    "status.sh": render_status,
    "restart.sh": render_restart,
    "logs.sh": render_logs,
    "update.sh": render_update,
    "backup.sh": render_backup,
}


def render_scripts(stack: StackSettings) -> dict[str, str]:
    return {name: _RENDERERS[name](stack) for name in SCRIPT_NAMES}


def make_executable(path: Path) -> None:
    """Mark a file as executable for user/group/others."""
    mode = path.stat().st_mode
    path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def write_scripts(root: Path, stack: StackSettings) -> list[Path]:
    """Write every operator script into *root* and mark it executable."""
    logger.info("Creating management scripts...")
    written: list[Path] = []
    for name, text in render_scripts(stack).items():
        path = root / name
        path.write_text(text, encoding="utf-8")
        make_executable(path)
        written.append(path)
    logger.info("Management scripts created: %s", ", ".join(p.name for p in written))
    return written
