"""Versions file parsing and image collection."""
from __future__ import annotations

from easy_splunk.versions.loader import (
    collect_images,
    image_ref,
    load_versions_file,
    parse_versions_file,
    validate_versions,
)

__all__ = [
    "collect_images",
    "image_ref",
    "load_versions_file",
    "parse_versions_file",
    "validate_versions",
]
