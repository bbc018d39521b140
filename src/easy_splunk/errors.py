"""Error taxonomy for the air-gapped bundle lifecycle.

Every error raised by :mod:`easy_splunk` derives from :class:`AirGapError`
and carries the process exit code the CLI should terminate with.

Classes
-------
- AirGapError             Base class (exit code 1).
- InvalidInputError       Empty lists, malformed flags or files (exit code 2).
- MissingDependencyError  No runtime, no compression tool (exit code 3).
- BundleIOError           File not found / unreadable / unwritable (exit code 4).
- ChecksumMismatchError   Integrity check failed (exit code 5).
- RuntimeCommandError     Non-zero exit from an external command (exit code 6).
"""
from __future__ import annotations

from pathlib import Path


class AirGapError(Exception):
    """Base class for all bundle lifecycle errors.

    Parameters
    ----------
    message:
        Human-readable description of the failure.
    hint:
        Optional remediation advice shown by the CLI under the message.
    """

    exit_code: int = 1

    def __init__(self, message: str, hint: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint


class InvalidInputError(AirGapError, ValueError):
    """Raised for empty image lists, unknown options and malformed files."""

    exit_code = 2


class MissingDependencyError(AirGapError):
    """Raised when a required external tool or runtime is unavailable."""

    exit_code = 3


class BundleIOError(AirGapError, OSError):
    """Raised when a bundle member cannot be found, read or written."""

    exit_code = 4


class ChecksumMismatchError(AirGapError):
    """Raised when a file does not match its recorded SHA-256 digest.

    Attributes
    ----------
    path:
        The file whose integrity check failed.
    expected:
        Digest recorded in the sidecar or manifest (``None`` if absent).
    actual:
        Digest computed from the file on disk (``None`` if not computed).
    """

    exit_code = 5

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        expected: str | None = None,
        actual: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.path = path
        self.expected = expected
        self.actual = actual


class RuntimeCommandError(AirGapError):
    """Raised when a pull/save/load/inspect or compressor command fails."""

    exit_code = 6

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.command = list(command) if command else []
        self.returncode = returncode
        self.stderr = stderr


__all__ = [
    "AirGapError",
    "BundleIOError",
    "ChecksumMismatchError",
    "InvalidInputError",
    "MissingDependencyError",
    "RuntimeCommandError",
]
