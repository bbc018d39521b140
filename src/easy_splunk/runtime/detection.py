"""Container runtime detection.

Podman is preferred when both engines are installed; Docker is only
selected when its daemon answers ``docker info``.  An explicit preference
(from ``--runtime`` or ``CONTAINER_RUNTIME``) bypasses the search but must
still resolve to an installed binary.
"""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable

from easy_splunk.errors import MissingDependencyError
from easy_splunk.runtime.client import SUPPORTED_RUNTIMES, CliContainerRuntime

logger = logging.getLogger(__name__)

_DETECTION_ORDER: tuple[str, ...] = ("podman", "docker")

_REMEDIATION = (
    "Install Podman (dnf install podman) or Docker and make sure the "
    "Docker daemon is running, or set CONTAINER_RUNTIME explicitly."
)


def _docker_daemon_running(executable: str) -> bool:
    try:
        result = subprocess.run(
            [executable, "info"], capture_output=True, text=True, timeout=30, check=False
        )
    except (OSError, subprocess.TimeoutExpired):
        return False
    return result.returncode == 0


def detect_runtime(
    preferred: str | None = None,
    which: Callable[[str], str | None] = shutil.which,
    daemon_check: Callable[[str], bool] = _docker_daemon_running,
) -> CliContainerRuntime:
    """Return a runtime client for the first usable container engine.

    Parameters
    ----------
    preferred:
        Force a specific engine.  ``None`` auto-detects.
    which:
        Binary lookup, injected for tests.
    daemon_check:
        Docker daemon liveness check, injected for tests.

    Raises
    ------
    MissingDependencyError
        If the preferred engine is unknown or not installed, or if no
        engine is usable.
    """
    if preferred:
        if preferred not in SUPPORTED_RUNTIMES:
            raise MissingDependencyError(
                f"Unknown container runtime {preferred!r}. "
                f"Must be one of: {list(SUPPORTED_RUNTIMES)}",
                hint=_REMEDIATION,
            )
        executable = which(preferred)
        if executable is None:
            raise MissingDependencyError(
                f"Requested container runtime {preferred!r} is not installed.",
                hint=_REMEDIATION,
            )
        logger.info("Using container runtime: %s", preferred)
        return CliContainerRuntime(preferred, executable=executable)

    for name in _DETECTION_ORDER:
        executable = which(name)
        if executable is None:
            continue
        if name == "docker" and not daemon_check(executable):
            logger.warning("Docker is installed, but the Docker daemon is not running.")
            continue
        logger.info("Detected container runtime: %s", name)
        return CliContainerRuntime(name, executable=executable)

    raise MissingDependencyError(
        "No supported container runtime (podman or docker) was found.",
        hint=_REMEDIATION,
    )


__all__ = ["detect_runtime"]
