"""
Secret Generator
================

Produces the gateway master key, the gateway salt key, the database password
and the chat UI session secret for one install.

Source preference:
  1. ``openssl rand`` when openssl is on PATH
  2. the OS entropy device, folded into an alphanumeric alphabet
  3. wall clock + weak PRNG; flagged ``insecure`` and logged as such

The UI username/password are fixed demo defaults, not generated.
"""

from __future__ import annotations

import hashlib
import logging
import random
import shutil
import string
import subprocess
import time
from pathlib import Path
from typing import Callable, Optional

from chatstack.models import CredentialBundle

logger = logging.getLogger("chatstack.credentials")

MASTER_KEY_PREFIX = "sk-"
SALT_KEY_PREFIX = "sk-salt-"
UI_USERNAME = "admin"
UI_PASSWORD = "admin123"

ALPHANUMERIC = string.ascii_letters + string.digits
ENTROPY_DEVICE = Path("/dev/urandom")

# Character counts per token for each source. Hex carries 4 bits per char,
# the 62-symbol alphabet carries ~5.95 bits per char.
_HEX_LENGTHS = {"master_key": 32, "salt_key": 48, "webui_secret": 32}
_ALNUM_LENGTHS = {"master_key": 32, "salt_key": 48, "db_password": 22, "webui_secret": 32}
MIN_DB_PASSWORD_LENGTH = 22  # 22 x ~5.95 bits clears 128

_MAX_TRIES = 5


def _openssl(*args: str) -> str:
    proc = subprocess.run(
        ["openssl", "rand", *args],
        capture_output=True,
        text=True,
        check=True,
    )
    return proc.stdout.strip()


def _openssl_tokens() -> dict[str, str]:
    db_password = _openssl("-base64", "24")
    for ch in "=+/":
        db_password = db_password.replace(ch, "")
    return {
        "master_key": MASTER_KEY_PREFIX + _openssl("-hex", "16"),
        "salt_key": SALT_KEY_PREFIX + _openssl("-hex", "24"),
        "db_password": db_password,
        "webui_secret": _openssl("-hex", "16"),
    }


def fold_alphanumeric(read: Callable[[int], bytes], length: int) -> str:
    """Draw *length* characters from [A-Za-z0-9] out of a byte source.

    Bytes at or above the largest multiple of 62 are discarded so every
    symbol stays equally likely.
    """
    limit = 256 - (256 % len(ALPHANUMERIC))
    out: list[str] = []
    while len(out) < length:
        for byte in read(length * 2):
            if byte < limit:
                out.append(ALPHANUMERIC[byte % len(ALPHANUMERIC)])
                if len(out) == length:
                    break
    return "".join(out)


def _device_tokens(device: Path = ENTROPY_DEVICE) -> dict[str, str]:
    with open(device, "rb") as f:
        def read(n: int) -> bytes:
            return f.read(n)

        return {
            "master_key": MASTER_KEY_PREFIX + fold_alphanumeric(read, _ALNUM_LENGTHS["master_key"]),
            "salt_key": SALT_KEY_PREFIX + fold_alphanumeric(read, _ALNUM_LENGTHS["salt_key"]),
            "db_password": fold_alphanumeric(read, _ALNUM_LENGTHS["db_password"]),
            "webui_secret": fold_alphanumeric(read, _ALNUM_LENGTHS["webui_secret"]),
        }


def _fallback_tokens() -> dict[str, str]:
    stamp = str(int(time.time()))

    def weak(n: int) -> str:
        seed = f"{random.random()}{time.time_ns()}".encode()
        digest = hashlib.md5(seed).hexdigest()
        while len(digest) < n:
            digest += hashlib.md5(digest.encode()).hexdigest()
        return digest[:n]

    return {
        "master_key": f"{MASTER_KEY_PREFIX}{stamp}{weak(_HEX_LENGTHS['master_key'])}",
        "salt_key": f"{SALT_KEY_PREFIX}{stamp}{weak(_HEX_LENGTHS['salt_key'])}",
        "db_password": f"db{stamp}{weak(MIN_DB_PASSWORD_LENGTH)}",
        "webui_secret": f"web{stamp}{weak(_HEX_LENGTHS['webui_secret'])}",
    }


def _distinct(tokens: dict[str, str]) -> bool:
    values = list(tokens.values())
    return all(values) and len(set(values)) == len(values)


def generate_credentials(
    openssl_path: Optional[str] = None,
    device: Optional[Path] = None,
) -> CredentialBundle:
    """Generate a fresh ``CredentialBundle``, walking the source chain.

    Args:
        openssl_path: Resolved openssl binary; looked up on PATH when omitted.
        device: Entropy device; defaults to ``/dev/urandom``.
    """
    logger.info("Generating secure credentials...")
    openssl_path = openssl_path if openssl_path is not None else shutil.which("openssl")
    device = device or ENTROPY_DEVICE

    tokens: dict[str, str] = {}
    source = ""
    if openssl_path:
        try:
            for _ in range(_MAX_TRIES):
                tokens = _openssl_tokens()
                if _distinct(tokens) and len(tokens["db_password"]) >= MIN_DB_PASSWORD_LENGTH:
                    source = "openssl"
                    break
        except (OSError, subprocess.CalledProcessError) as e:
            logger.warning("openssl rand failed (%s), falling back to %s", e, device)

    if not source and device.exists():
        try:
            for _ in range(_MAX_TRIES):
                tokens = _device_tokens(device)
                if _distinct(tokens):
                    source = "urandom"
                    break
        except OSError as e:
            logger.warning("Could not read %s (%s)", device, e)

    if not source:
        tokens = _fallback_tokens()
        while not _distinct(tokens):
            tokens = _fallback_tokens()
        source = "fallback"
        logger.warning(
            "No cryptographic randomness source available; using timestamp-based "
            "credentials. These are NOT secure, rotate them before production use."
        )

    logger.info("Credentials generated successfully (source=%s)", source)
    return CredentialBundle(
        **tokens,
        ui_username=UI_USERNAME,
        ui_password=UI_PASSWORD,
        source=source,
        insecure=source == "fallback",
    )
