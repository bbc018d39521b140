"""Tests for easy_splunk.config — settings defaults and environment parsing."""
from __future__ import annotations

from pathlib import Path

import pytest

from easy_splunk.compression import Compression
from easy_splunk.config import BundleSettings
from easy_splunk.errors import InvalidInputError
from easy_splunk.retry import RetryPolicy


class TestDefaults:
    def test_defaults(self) -> None:
        settings = BundleSettings.from_env({})
        assert settings.retry_attempts == 5
        assert settings.compression is Compression.GZIP
        assert settings.bundle_version == "0.0.0"
        assert settings.verify_after_load is False
        assert settings.require_checksum is False
        assert settings.runtime is None
        assert settings.versions_file == Path("versions.env")
        assert settings.secrets_dir.name == "secrets"

    def test_retry_policy(self) -> None:
        assert BundleSettings().retry_policy() == RetryPolicy(5, 1.0, 20.0)


class TestFromEnv:
    def test_reads_every_variable(self, tmp_path: Path) -> None:
        settings = BundleSettings.from_env(
            {
                "EASY_SPLUNK_RETRY_ATTEMPTS": "3",
                "EASY_SPLUNK_RETRY_BASE_DELAY": "0.5",
                "EASY_SPLUNK_RETRY_MAX_DELAY": "4",
                "TARBALL_COMPRESSION": "zstd",
                "BUNDLE_VERSION": "2.0.0",
                "EASY_SPLUNK_VERIFY_AFTER_LOAD": "yes",
                "EASY_SPLUNK_REQUIRE_CHECKSUM": "1",
                "EASY_SPLUNK_SECRETS_DIR": str(tmp_path),
                "EASY_SPLUNK_VERSIONS_FILE": "conf/versions.env",
                "CONTAINER_RUNTIME": "podman",
            }
        )
        assert settings.retry_policy() == RetryPolicy(3, 0.5, 4.0)
        assert settings.compression is Compression.ZSTD
        assert settings.bundle_version == "2.0.0"
        assert settings.verify_after_load is True
        assert settings.require_checksum is True
        assert settings.secrets_dir == tmp_path
        assert settings.versions_file == Path("conf/versions.env")
        assert settings.runtime == "podman"

    def test_app_version_fallback(self) -> None:
        assert BundleSettings.from_env({"APP_VERSION": "1.4.0"}).bundle_version == "1.4.0"

    @pytest.mark.parametrize(
        "environ",
        [
            {"EASY_SPLUNK_RETRY_ATTEMPTS": "many"},
            {"EASY_SPLUNK_RETRY_BASE_DELAY": "soon"},
            {"EASY_SPLUNK_REQUIRE_CHECKSUM": "maybe"},
            {"TARBALL_COMPRESSION": "bzip2"},
        ],
    )
    def test_invalid_values_raise(self, environ: dict[str, str]) -> None:
        with pytest.raises(InvalidInputError):
            BundleSettings.from_env(environ)

    def test_settings_are_frozen(self) -> None:
        with pytest.raises(AttributeError):
            BundleSettings().retry_attempts = 1  # type: ignore[misc]
