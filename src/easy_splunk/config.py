"""Tunables for the bundle lifecycle.

All settings are optional and have defaults.  :meth:`BundleSettings.from_env`
reads them from environment variables so existing deployment environments
keep working (``TARBALL_COMPRESSION``, ``BUNDLE_VERSION`` and friends).
"""
from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from easy_splunk.compression import Compression
from easy_splunk.errors import InvalidInputError
from easy_splunk.retry import RetryPolicy

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _default_secrets_dir() -> Path:
    return Path.home() / ".easy-splunk" / "secrets"


@dataclass(frozen=True)
class BundleSettings:
    """Configuration shared by the assembler and the loader.

    Attributes
    ----------
    retry_attempts:
        Maximum pull attempts per image.
    retry_base_delay:
        Seconds to wait after the first failed pull.
    retry_max_delay:
        Cap on the wait between pull attempts.
    compression:
        Image archive compression mode.
    bundle_version:
        Version string recorded in the manifest.
    verify_after_load:
        List runtime images after a load, for operator sanity checks.
    require_checksum:
        Refuse to load an archive that has no ``.sha256`` sidecar.
    secrets_dir:
        Directory holding the key used to encrypt the ``versions.env``
        snapshot.
    versions_file:
        Versions file snapshotted into bundles when none is passed
        explicitly.  Relative paths resolve against the working directory.
    runtime:
        Preferred container engine, or ``None`` to auto-detect.
    """

    retry_attempts: int = 5
    retry_base_delay: float = 1.0
    retry_max_delay: float = 20.0
    compression: Compression = Compression.GZIP
    bundle_version: str = "0.0.0"
    verify_after_load: bool = False
    require_checksum: bool = False
    secrets_dir: Path = field(default_factory=_default_secrets_dir)
    versions_file: Path = Path("versions.env")
    runtime: str | None = None

    def retry_policy(self) -> RetryPolicy:
        """Return the pull retry policy described by these settings."""
        return RetryPolicy(
            max_attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "BundleSettings":
        """Build settings from environment variables.

        Parameters
        ----------
        environ:
            Mapping to read from.  Defaults to :data:`os.environ`.

        Raises
        ------
        InvalidInputError
            If a variable holds a value of the wrong type.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        secrets_dir = env.get("EASY_SPLUNK_SECRETS_DIR")
        versions_file = env.get("EASY_SPLUNK_VERSIONS_FILE")

        return cls(
            retry_attempts=_int(env, "EASY_SPLUNK_RETRY_ATTEMPTS", defaults.retry_attempts),
            retry_base_delay=_float(
                env, "EASY_SPLUNK_RETRY_BASE_DELAY", defaults.retry_base_delay
            ),
            retry_max_delay=_float(
                env, "EASY_SPLUNK_RETRY_MAX_DELAY", defaults.retry_max_delay
            ),
            compression=Compression.parse(
                env.get("TARBALL_COMPRESSION", defaults.compression.value)
            ),
            bundle_version=env.get("BUNDLE_VERSION")
            or env.get("APP_VERSION")
            or defaults.bundle_version,
            verify_after_load=_bool(
                env, "EASY_SPLUNK_VERIFY_AFTER_LOAD", defaults.verify_after_load
            ),
            require_checksum=_bool(
                env, "EASY_SPLUNK_REQUIRE_CHECKSUM", defaults.require_checksum
            ),
            secrets_dir=Path(secrets_dir).expanduser() if secrets_dir else defaults.secrets_dir,
            versions_file=Path(versions_file) if versions_file else defaults.versions_file,
            runtime=env.get("CONTAINER_RUNTIME") or None,
        )


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise InvalidInputError(f"{key} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise InvalidInputError(f"{key} must be a number, got {raw!r}") from None


def _bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise InvalidInputError(f"{key} must be a boolean flag, got {raw!r}")


__all__ = ["BundleSettings"]
