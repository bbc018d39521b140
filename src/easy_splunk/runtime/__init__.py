"""Container runtime abstraction and detection."""
from __future__ import annotations

from easy_splunk.runtime.client import SUPPORTED_RUNTIMES, CliContainerRuntime, ContainerRuntime
from easy_splunk.runtime.detection import detect_runtime

__all__ = [
    "CliContainerRuntime",
    "ContainerRuntime",
    "SUPPORTED_RUNTIMES",
    "detect_runtime",
]
