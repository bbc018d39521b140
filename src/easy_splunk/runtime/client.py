"""Container runtime client.

:class:`ContainerRuntime` is the capability the bundle lifecycle depends on.
:class:`CliContainerRuntime` implements it by shelling out to the ``docker``
or ``podman`` binary; both accept the same sub-commands for everything used
here.  Tests substitute an in-memory implementation.
"""
from __future__ import annotations

import abc
import logging
import subprocess
from collections.abc import Sequence
from pathlib import Path

from easy_splunk.errors import MissingDependencyError, RuntimeCommandError

logger = logging.getLogger(__name__)

SUPPORTED_RUNTIMES: tuple[str, ...] = ("docker", "podman")


class ContainerRuntime(abc.ABC):
    """Abstract container engine used to pull, save, load and inspect images."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Engine name recorded in manifests (``"docker"`` or ``"podman"``)."""

    @abc.abstractmethod
    def pull(self, ref: str) -> None:
        """Pull *ref* into the local image store."""

    @abc.abstractmethod
    def save(self, output: Path, refs: Sequence[str]) -> None:
        """Save all *refs* into a single tar archive at *output*."""

    @abc.abstractmethod
    def load(self, archive: Path) -> None:
        """Load a raw or compressed image tar archive."""

    @abc.abstractmethod
    def image_exists(self, ref: str) -> bool:
        """Return True if *ref* is present in the local image store."""

    @abc.abstractmethod
    def images(self) -> list[str]:
        """Return ``repo:tag`` strings for every local image."""

    @abc.abstractmethod
    def repo_digest(self, ref: str) -> str | None:
        """Return the registry digest (``repo@sha256:...``) of *ref*, if known."""


class CliContainerRuntime(ContainerRuntime):
    """Runtime backed by the ``docker`` or ``podman`` command line.

    Parameters
    ----------
    name:
        Either ``"docker"`` or ``"podman"``.
    executable:
        Path to the binary.  Defaults to *name*, resolved via ``PATH``.
    timeout:
        Optional timeout in seconds applied to every invocation.
    """

    def __init__(
        self,
        name: str,
        executable: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if name not in SUPPORTED_RUNTIMES:
            raise MissingDependencyError(
                f"Unsupported container runtime {name!r}. "
                f"Must be one of: {list(SUPPORTED_RUNTIMES)}"
            )
        self._name = name
        self._executable = executable or name
        self._timeout = timeout

    def __repr__(self) -> str:
        return f"CliContainerRuntime(name={self._name!r}, executable={self._executable!r})"

    @property
    def name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # ContainerRuntime implementation
    # ------------------------------------------------------------------

    def pull(self, ref: str) -> None:
        logger.debug("Pulling %s", ref)
        self._run(["pull", ref])

    def save(self, output: Path, refs: Sequence[str]) -> None:
        logger.info("Saving %d image(s) to %s", len(refs), output)
        self._run(["save", "-o", str(output), *refs])

    def load(self, archive: Path) -> None:
        logger.info("Loading images from %s into %s", archive, self._name)
        self._run(["load", "-i", str(archive)])

    def image_exists(self, ref: str) -> bool:
        result = self._run(["image", "inspect", ref], check=False)
        return result.returncode == 0

    def images(self) -> list[str]:
        result = self._run(["images", "--format", "{{.Repository}}:{{.Tag}}"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def repo_digest(self, ref: str) -> str | None:
        result = self._run(
            ["image", "inspect", "--format", "{{index .RepoDigests 0}}", ref],
            check=False,
        )
        digest = result.stdout.strip()
        if result.returncode != 0 or not digest or "@" not in digest:
            return None
        return digest

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _run(
        self, args: list[str], check: bool = True
    ) -> subprocess.CompletedProcess[str]:
        command = [self._executable, *args]
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=False,
            )
        except FileNotFoundError as exc:
            raise MissingDependencyError(
                f"Container runtime binary not found: {self._executable}",
                hint=f"Install {self._name} or set CONTAINER_RUNTIME.",
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RuntimeCommandError(
                f"Command timed out after {self._timeout}s: {' '.join(command)}",
                command=command,
            ) from exc

        if check and result.returncode != 0:
            raise RuntimeCommandError(
                f"{self._name} {args[0]} failed with exit code {result.returncode}: "
                f"{result.stderr.strip()}",
                command=command,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result


__all__ = [
    "CliContainerRuntime",
    "ContainerRuntime",
    "SUPPORTED_RUNTIMES",
]
