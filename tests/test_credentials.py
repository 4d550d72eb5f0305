"""Tests for the secret generator and its source fallback chain."""

import subprocess
from unittest.mock import patch

import pytest

from chatstack.credentials import (
    ALPHANUMERIC,
    MASTER_KEY_PREFIX,
    MIN_DB_PASSWORD_LENGTH,
    SALT_KEY_PREFIX,
    fold_alphanumeric,
    generate_credentials,
)


def _secrets(bundle):
    return [bundle.master_key, bundle.salt_key, bundle.db_password, bundle.webui_secret]


class TestFoldAlphanumeric:
    def test_length_and_alphabet(self):
        data = iter(range(256))

        def read(n):
            return bytes(next(data) % 256 for _ in range(n))

        token = fold_alphanumeric(read, 40)
        assert len(token) == 40
        assert set(token) <= set(ALPHANUMERIC)

    def test_rejects_biased_bytes(self):
        # 248..255 sit above the largest multiple of 62 and must be skipped.
        chunks = [bytes([255, 250, 0]), bytes([1, 2, 3])]

        def read(n):
            return chunks.pop(0)

        assert fold_alphanumeric(read, 3) == "abc"


class TestGenerateCredentials:
    def test_urandom_source(self):
        bundle = generate_credentials(openssl_path="", device=None)
        assert bundle.source == "urandom"
        assert bundle.insecure is False
        assert bundle.master_key.startswith(MASTER_KEY_PREFIX)
        assert bundle.salt_key.startswith(SALT_KEY_PREFIX)
        assert len(bundle.db_password) >= MIN_DB_PASSWORD_LENGTH
        assert set(bundle.db_password) <= set(ALPHANUMERIC)
        assert len(set(_secrets(bundle))) == 4

    def test_fixed_ui_login(self):
        bundle = generate_credentials(openssl_path="")
        assert bundle.ui_username == "admin"
        assert bundle.ui_password == "admin123"

    def test_two_runs_differ(self):
        first = generate_credentials(openssl_path="")
        second = generate_credentials(openssl_path="")
        assert set(_secrets(first)).isdisjoint(_secrets(second))

    def test_openssl_source(self):
        outputs = iter([
            "AbC+dEf/GhI=jKlMnOpQrStUvWxYz012",   # base64 db password
            "0123456789abcdef0123456789abcdef",   # master key hex
            "aa" * 24,                             # salt key hex
            "fedcba9876543210fedcba9876543210",   # ui secret hex
        ])

        def fake_run(argv, **kwargs):
            return subprocess.CompletedProcess(argv, 0, stdout=next(outputs) + "\n", stderr="")

        with patch("chatstack.credentials.subprocess.run", side_effect=fake_run):
            bundle = generate_credentials(openssl_path="/usr/bin/openssl")

        assert bundle.source == "openssl"
        assert bundle.master_key == "sk-0123456789abcdef0123456789abcdef"
        assert bundle.salt_key == "sk-salt-" + "aa" * 24
        assert bundle.db_password == "AbCdEfGhIjKlMnOpQrStUvWxYz012"
        for ch in "=+/":
            assert ch not in bundle.db_password

    def test_short_openssl_password_is_rejected(self):
        counter = iter(range(1000))

        def fake_run(argv, **kwargs):
            if "-base64" in argv:
                out = "Ab+Cd/Ef=GhIjKlMnOpQrSt"  # 20 characters once stripped
            else:
                out = f"{next(counter):032x}"
            return subprocess.CompletedProcess(argv, 0, stdout=out + "\n", stderr="")

        with patch("chatstack.credentials.subprocess.run", side_effect=fake_run):
            bundle = generate_credentials(openssl_path="/usr/bin/openssl")

        assert bundle.source == "urandom"
        assert MIN_DB_PASSWORD_LENGTH == 22
        assert len(bundle.db_password) >= MIN_DB_PASSWORD_LENGTH

    def test_openssl_failure_falls_back_to_device(self):
        err = subprocess.CalledProcessError(1, ["openssl"])
        with patch("chatstack.credentials.subprocess.run", side_effect=err):
            bundle = generate_credentials(openssl_path="/usr/bin/openssl")
        assert bundle.source == "urandom"

    def test_fallback_is_flagged_insecure(self, tmp_path, caplog):
        bundle = generate_credentials(openssl_path="", device=tmp_path / "no-such-device")
        assert bundle.source == "fallback"
        assert bundle.insecure is True
        assert len(set(_secrets(bundle))) == 4
        assert all(_secrets(bundle))
        assert "NOT secure" in caplog.text

    @pytest.mark.parametrize("field", ["master_key", "salt_key", "db_password", "webui_secret"])
    def test_bundle_is_frozen(self, credentials, field):
        with pytest.raises(Exception):
            setattr(credentials, field, "x")
