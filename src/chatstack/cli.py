"""Command line entry point.

Usage:
    # Full install (asks for confirmation first)
    chatstack install
    chatstack install --yes --network-mode host --install-method repository

    # Write the artifacts and operator scripts somewhere without touching Docker
    chatstack render --output ./preview

    # Post-install tools, run from (or pointed at) the installation root
    chatstack status --dir ~/openwebui-litellm
    chatstack diagnose --dir ~/openwebui-litellm --no-firewall
"""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from pathlib import Path
from typing import Optional

from chatstack.compose import Compose
from chatstack.config import StackSettings, load_config
from chatstack.credentials import generate_credentials
from chatstack.diagnostics import Diagnostics, format_report
from chatstack.errors import ChatstackError, InstallCancelled
from chatstack.health import HealthChecker
from chatstack.installer import Installer, confirm, prepare_install_root
from chatstack.manifest import write_artifacts, write_credentials_record
from chatstack.models import InstallationContext
from chatstack.privilege import detect_runner
from chatstack.scripts import write_scripts

logger = logging.getLogger("chatstack.cli")

BANNER = """\
Open WebUI + LiteLLM installer
This will install and configure:
  - Docker and the Docker Compose plugin (if missing)
  - Open WebUI (chat interface)
  - LiteLLM (unified AI gateway + dashboard)
  - PostgreSQL (gateway database)
"""


def setup_logging(verbosity: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, verbosity.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
    )


def _apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    if getattr(args, "network_mode", None):
        config["network"]["mode"] = args.network_mode
    if getattr(args, "install_method", None):
        config["runtime"]["install_method"] = args.install_method
    return config


def cmd_install(args: argparse.Namespace, config: dict) -> int:
    print(BANNER)
    if not args.yes:
        confirm()
    installer = Installer.from_environment(
        config,
        install_runtime=not args.skip_runtime,
        launch=not args.no_launch,
    )
    installer.run()
    print()
    print(installer.summary())
    for note in installer.warnings():
        logger.warning(note)
    return 0


def cmd_render(args: argparse.Namespace, config: dict) -> int:
    root = Path(args.output).expanduser().resolve()
    runner = detect_runner()
    context = InstallationContext(
        user=getpass.getuser(),
        tier=runner.tier,
        command_prefix=runner.prefix,
        install_root=root,
        home=Path.home(),
    )
    stack = StackSettings.from_config(config)
    prepare_install_root(root)
    credentials = generate_credentials()
    write_artifacts(root, context, credentials, stack)
    write_scripts(root, stack)
    write_credentials_record(root, context, credentials, stack, "localhost", "render")
    print(f"Rendered stack into {root}")
    return 0


def cmd_status(args: argparse.Namespace, config: dict) -> int:
    root = Path(args.dir).expanduser().resolve()
    stack = StackSettings.from_config(config)
    compose = Compose(root, detect_runner())
    if not compose.manifest.exists():
        logger.error("%s not found; point --dir at your installation directory", compose.manifest)
        return 1
    health = HealthChecker(stack, compose).check_all()
    for status in health.components:
        verdict = "Online" if status.healthy else "Offline"
        print(f"{status.component}: {verdict}")
    return 0


def cmd_diagnose(args: argparse.Namespace, config: dict) -> int:
    root = Path(args.dir).expanduser().resolve()
    diagnostics = Diagnostics(
        root,
        config,
        runner=detect_runner(),
        open_firewall=False if args.no_firewall else None,
    )
    report = diagnostics.run()
    print(format_report(report))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatstack",
        description="Install and manage an Open WebUI + LiteLLM + PostgreSQL stack",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", default="chatstack_config.yaml", help="YAML config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    install = subparsers.add_parser("install", help="Install and launch the stack")
    install.add_argument("-y", "--yes", action="store_true", help="Skip the confirmation prompt")
    install.add_argument("--network-mode", choices=["ports", "host"])
    install.add_argument("--install-method", choices=["convenience", "repository"])
    install.add_argument("--skip-runtime", action="store_true", help="Do not install Docker")
    install.add_argument("--no-launch", action="store_true", help="Write files only, do not start")
    install.set_defaults(func=cmd_install)

    render = subparsers.add_parser("render", help="Write artifacts and scripts without Docker")
    render.add_argument("-o", "--output", required=True)
    render.add_argument("--network-mode", choices=["ports", "host"])
    render.set_defaults(func=cmd_render)

    status = subparsers.add_parser("status", help="Probe the installed services once")
    status.add_argument("--dir", default=".")
    status.set_defaults(func=cmd_status)

    diagnose = subparsers.add_parser("diagnose", help="Troubleshoot gateway connectivity")
    diagnose.add_argument("--dir", default=".")
    diagnose.add_argument("--no-firewall", action="store_true", help="Do not add a ufw allow rule")
    diagnose.set_defaults(func=cmd_diagnose)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging("debug" if args.verbose else "info")

    try:
        config = _apply_overrides(load_config(args.config), args)
        if not args.verbose:
            verbosity = config.get("logging", {}).get("console_verbosity", "info")
            logging.getLogger().setLevel(getattr(logging, str(verbosity).upper(), logging.INFO))
        return args.func(args, config)
    except InstallCancelled as e:
        logger.warning("%s", e)
        return 1
    except ChatstackError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
