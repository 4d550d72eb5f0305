"""
Runtime Installer
=================

Makes sure Docker and its compose plugin are present. Installs them through
apt plus either Docker's convenience script or Docker's signed apt
repository when the ``docker`` binary is missing.

Fatal: prerequisite packages, the vendor install itself.
Warning only: package index refresh, service enable, group membership.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from typing import Callable, Optional

import httpx

from chatstack.errors import RuntimeInstallError
from chatstack.models import InstallationContext
from chatstack.privilege import CommandRunner

logger = logging.getLogger("chatstack.runtime")

DOCKER_PACKAGES = [
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
]
KEYRING_PATH = "/usr/share/keyrings/docker-archive-keyring.gpg"
SOURCES_PATH = "/etc/apt/sources.list.d/docker.list"
DOWNLOAD_TIMEOUT = 60.0


def download(url: str, suffix: str = "") -> str:
    """Fetch *url* into a temp file and return its path."""
    with httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True) as client:
        resp = client.get(url)
        resp.raise_for_status()
    fd, path = tempfile.mkstemp(prefix="chatstack-", suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(resp.content)
    return path


class RuntimeInstaller:
    """Installs the container runtime with the run's privilege strategy."""

    def __init__(
        self,
        context: InstallationContext,
        runner: CommandRunner,
        config: Optional[dict] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        fetch: Callable[..., str] = download,
    ):
        runtime = (config or {}).get("runtime", {})
        self.context = context
        self.runner = runner
        self.method = runtime.get("install_method", "convenience")
        self.convenience_url = runtime.get("convenience_url", "https://get.docker.com")
        self.gpg_url = runtime.get("gpg_url", "https://download.docker.com/linux/ubuntu/gpg")
        self.repository_url = runtime.get("repository_url", "https://download.docker.com/linux/ubuntu")
        self.prerequisites = list(
            runtime.get("prerequisites", ["curl", "wget", "ca-certificates", "gnupg", "lsb-release"])
        )
        self.group = runtime.get("group", "docker")
        self._which = which
        self._fetch = fetch

    def ensure(self) -> bool:
        """Install Docker if missing. Returns True if an install happened.

        Raises:
            RuntimeInstallError: prerequisites or the vendor install failed.
        """
        if self._which("docker"):
            logger.info("Docker is already installed")
            self._grant_group()
            self._check_compose()
            return False

        logger.info("Installing Docker (method=%s)...", self.method)
        if self.runner.run(["apt", "update", "-qq"]) != 0:
            logger.warning("Could not update package manager, continuing...")

        if self.runner.run(["apt", "install", "-y", *self.prerequisites]) != 0:
            raise RuntimeInstallError("Failed to install dependencies: " + " ".join(self.prerequisites))

        if self.method == "repository":
            self._install_from_repository()
        elif self.method == "convenience":
            self._install_convenience_script()
        else:
            raise RuntimeInstallError(f"Unknown runtime install method: {self.method!r}")

        for action in ("start", "enable"):
            if self.runner.run(["systemctl", action, "docker"]) != 0:
                logger.warning("systemctl %s docker failed, continuing...", action)

        self._grant_group()
        self._check_compose()
        logger.info("Docker installed successfully!")
        return True

    # -- install methods -----------------------------------------------------

    def _install_convenience_script(self) -> None:
        logger.info("Downloading and installing Docker from %s", self.convenience_url)
        try:
            script = self._fetch(self.convenience_url, ".sh")
        except httpx.HTTPError as e:
            raise RuntimeInstallError(f"Could not download Docker install script: {e}") from e
        try:
            if self.runner.run(["sh", script]) != 0:
                raise RuntimeInstallError("Docker convenience script failed")
        finally:
            try:
                os.remove(script)
            except OSError:
                logger.debug("Could not remove %s", script)

    def _install_from_repository(self) -> None:
        logger.info("Adding Docker GPG key...")
        try:
            key = self._fetch(self.gpg_url, ".asc")
        except httpx.HTTPError as e:
            raise RuntimeInstallError(f"Could not download Docker GPG key: {e}") from e
        try:
            if self.runner.run(["gpg", "--batch", "--yes", "--dearmor", "-o", KEYRING_PATH, key]) != 0:
                raise RuntimeInstallError("Could not import Docker GPG key")
        finally:
            try:
                os.remove(key)
            except OSError:
                logger.debug("Could not remove %s", key)

        logger.info("Adding Docker repository...")
        arch = self.runner.capture(["dpkg", "--print-architecture"]).stdout.strip() or "amd64"
        codename = self.runner.capture(["lsb_release", "-cs"]).stdout.strip()
        if not codename:
            raise RuntimeInstallError("Could not determine distribution codename (lsb_release -cs)")
        line = f"deb [arch={arch} signed-by={KEYRING_PATH}] {self.repository_url} {codename} stable\n"
        result = self.runner.capture(["tee", SOURCES_PATH], input=line)
        if not result.ok:
            raise RuntimeInstallError(f"Could not write {SOURCES_PATH}: {result.stderr.strip()}")

        logger.info("Installing Docker packages...")
        if self.runner.run(["apt", "update", "-qq"]) != 0:
            logger.warning("Could not refresh package index after adding the Docker repository")
        if self.runner.run(["apt", "install", "-y", *DOCKER_PACKAGES]) != 0:
            raise RuntimeInstallError("Failed to install Docker packages")

    # -- best-effort steps ---------------------------------------------------

    def _grant_group(self) -> None:
        if self.context.is_administrator:
            return
        if self.runner.run(["usermod", "-aG", self.group, self.context.user]) != 0:
            logger.warning("Could not add %s to the %s group", self.context.user, self.group)
            return
        logger.warning(
            "Added %s to the %s group; you may need to log out and back in "
            "for Docker permissions to take effect",
            self.context.user,
            self.group,
        )

    def _check_compose(self) -> None:
        if not self.runner.capture(["docker", "compose", "version"]).ok:
            logger.warning("The docker compose plugin does not respond; later steps may fail")
