"""Versions file integration.

A versions file (``versions.env``) is a shell-compatible ``KEY=value`` file
that pins every image the stack needs::

    SPLUNK_IMAGE=splunk/splunk:9.1.2
    SPLUNK_DIGEST=sha256:...
    PROMETHEUS_IMAGE=prom/prometheus@sha256:...

The file is parsed with python-dotenv into a plain dict and never exported
into ``os.environ``.  A syntax pass runs over the whole file before any
value is read, so a malformed file is rejected without partial results.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from dotenv import dotenv_values
from dotenv.parser import parse_stream

from easy_splunk.bundler.images import is_valid_digest
from easy_splunk.errors import BundleIOError, InvalidInputError

logger = logging.getLogger(__name__)

IMAGE_SUFFIX = "_IMAGE"
DIGEST_SUFFIX = "_DIGEST"
VERSION_SUFFIX = "_VERSION"

_SEMVER_LIKE = re.compile(r"^v?\d+\.\d+\.\d+")
_SEMVER = re.compile(r"^v?\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?$")


def _check_syntax(path: Path) -> None:
    try:
        with path.open(encoding="utf-8") as fh:
            for binding in parse_stream(fh):
                if binding.error:
                    raise InvalidInputError(
                        f"Invalid syntax in versions file {path} at line "
                        f"{binding.original.line}: {binding.original.string.strip()!r}"
                    )
    except OSError as exc:
        raise BundleIOError(f"Cannot read versions file {path}: {exc}") from exc


def parse_versions_file(path: Path) -> dict[str, str]:
    """Parse *path* into an ordered ``{key: value}`` dict.

    Keys without a value are dropped.  ``${VAR}`` references are expanded.

    Raises
    ------
    BundleIOError
        If the file does not exist or cannot be read.
    InvalidInputError
        If any line cannot be parsed.
    """
    if not path.is_file():
        raise BundleIOError(f"Versions file not found: {path}")
    _check_syntax(path)

    raw = dotenv_values(path, interpolate=True, encoding="utf-8")
    values = {key: value for key, value in raw.items() if value is not None}
    logger.debug("Parsed %d entries from %s", len(values), path)
    return values


def validate_versions(values: dict[str, str]) -> list[str]:
    """Return a list of problems with ``*_DIGEST`` and ``*_VERSION`` entries.

    - Every ``*_DIGEST`` must be ``sha256:<64 lowercase hex>``.
    - ``*_VERSION`` values that start like a semantic version must be one
      (``1.2.3`` or ``v1.2.3``); free-form versions are left alone.
    """
    errors: list[str] = []
    for key, value in values.items():
        if key.endswith(DIGEST_SUFFIX) and not is_valid_digest(value):
            errors.append(f"Bad digest in versions file: {key}={value!r}")
        elif (
            key.endswith(VERSION_SUFFIX)
            and _SEMVER_LIKE.match(value)
            and not _SEMVER.match(value)
        ):
            errors.append(f"Invalid semver: {key}={value!r}")
    return errors


def load_versions_file(path: Path) -> dict[str, str]:
    """Parse and validate *path*.

    Raises
    ------
    InvalidInputError
        If the file has syntax errors or invalid digests/versions.
    """
    values = parse_versions_file(path)
    errors = validate_versions(values)
    if errors:
        for error in errors:
            logger.error("%s", error)
        raise InvalidInputError(
            f"Version validation failed for {path}: {len(errors)} problem(s)"
        )
    logger.info("Versions loaded and validated: %s", path)
    return values


def collect_images(path: Path) -> list[str]:
    """Return the image references declared by ``*_IMAGE`` keys in *path*.

    Order follows first appearance in the file; duplicates and empty
    values are dropped.
    """
    values = load_versions_file(path)
    images: list[str] = []
    seen: set[str] = set()
    for key, value in values.items():
        if not key.endswith(IMAGE_SUFFIX):
            continue
        ref = value.strip()
        if not ref or ref in seen:
            continue
        seen.add(ref)
        images.append(ref)
    logger.debug("Collected %d image(s) from %s", len(images), path)
    return images


def image_ref(repo: str, digest: str | None = None, tag: str | None = None) -> str:
    """Build an image reference, preferring an immutable digest.

    Returns ``repo@digest`` when *digest* is valid, otherwise ``repo:tag``
    (logged as a warning because tags are mutable).

    Raises
    ------
    InvalidInputError
        If *repo* is empty, or neither a valid digest nor a tag is given.
    """
    if not repo:
        raise InvalidInputError("image_ref: repository is required")
    if digest and is_valid_digest(digest):
        return f"{repo}@{digest}"
    if tag:
        logger.warning("Using mutable tag for %s: %s (no valid digest provided)", repo, tag)
        return f"{repo}:{tag}"
    raise InvalidInputError(f"image_ref: need a valid digest or a tag for {repo}")


__all__ = [
    "collect_images",
    "image_ref",
    "load_versions_file",
    "parse_versions_file",
    "validate_versions",
]
