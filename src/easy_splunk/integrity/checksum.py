"""SHA-256 checksum records for bundle archives.

A checksum record is a sidecar file named ``<file>.sha256`` holding a single
line in ``sha256sum`` format::

    <64 lowercase hex chars>  <basename>

The record is valid only if recomputing the digest of the referenced file
reproduces the stored value exactly.
"""
from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.integrity.atomic import atomic_write_text

logger = logging.getLogger(__name__)

CHECKSUM_SUFFIX = ".sha256"

_CHUNK_SIZE = 65_536
_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")
_RECORD_LINE = re.compile(r"^(?P<digest>[0-9A-Fa-f]{64}) [ *](?P<name>.+)$")


@dataclass(frozen=True)
class ChecksumRecord:
    """Parsed content of a ``.sha256`` sidecar.

    Attributes
    ----------
    digest:
        Hex digest exactly as stored in the sidecar.
    filename:
        Basename the record refers to.
    """

    digest: str
    filename: str

    def render(self) -> str:
        """Return the sidecar line, including the trailing newline."""
        return f"{self.digest}  {self.filename}\n"

    def refers_to(self, path: Path) -> bool:
        """Return True if the record names *path* (directory part ignored)."""
        return Path(self.filename).name == path.name


def checksum_path(path: Path) -> Path:
    """Return the sidecar path for *path* (``<path>.sha256``)."""
    return path.with_name(path.name + CHECKSUM_SUFFIX)


def is_valid_hex_digest(value: str) -> bool:
    """Return True if *value* is a lowercase 64-character SHA-256 hex digest."""
    return bool(_HEX_DIGEST.match(value))


def compute_digest(path: Path) -> str:
    """Compute the SHA-256 hex digest of a file.

    Reads in 64 KiB chunks so multi-gigabyte image archives are hashed with
    constant memory.

    Parameters
    ----------
    path:
        File to hash.

    Returns
    -------
    str
        Lowercase hex SHA-256 digest.

    Raises
    ------
    BundleIOError
        If *path* does not exist or cannot be read.
    """
    hasher = hashlib.sha256()
    try:
        with path.open("rb") as fh:
            while True:
                chunk = fh.read(_CHUNK_SIZE)
                if not chunk:
                    break
                hasher.update(chunk)
    except OSError as exc:
        raise BundleIOError(f"Cannot compute checksum of {path}: {exc}") from exc
    return hasher.hexdigest()


def write_checksum(path: Path) -> Path:
    """Write the ``.sha256`` sidecar for *path*.

    Parameters
    ----------
    path:
        File to checksum.

    Returns
    -------
    Path
        Path of the sidecar that was written (mode 0644).

    Raises
    ------
    BundleIOError
        If *path* cannot be read or the sidecar cannot be written.
    """
    if not path.is_file():
        raise BundleIOError(f"Cannot generate checksum. File not found: {path}")
    logger.info("Generating SHA256 checksum for %s", path)
    record = ChecksumRecord(digest=compute_digest(path), filename=path.name)
    sidecar = atomic_write_text(checksum_path(path), record.render(), mode=0o644)
    logger.debug("Checksum file created: %s", sidecar)
    return sidecar


def read_checksum_record(sidecar: Path) -> ChecksumRecord:
    """Parse a ``.sha256`` sidecar.

    Raises
    ------
    BundleIOError
        If the sidecar cannot be read.
    InvalidInputError
        If the first line is not in ``<hex>  <name>`` format.
    """
    try:
        text = sidecar.read_text(encoding="utf-8")
    except OSError as exc:
        raise BundleIOError(f"Cannot read checksum file {sidecar}: {exc}") from exc

    first_line = text.splitlines()[0].strip() if text.strip() else ""
    match = _RECORD_LINE.match(first_line)
    if match is None:
        raise InvalidInputError(f"Malformed checksum file: {sidecar}")
    return ChecksumRecord(digest=match.group("digest"), filename=match.group("name"))


def verify_checksum(path: Path) -> bool:
    """Verify *path* against its ``.sha256`` sidecar.

    The comparison is case-sensitive: the stored value must be the
    lowercase hex digest produced by :func:`compute_digest`.

    Returns
    -------
    bool
        ``True`` only when both files exist and the digests match.  A
        missing file, missing sidecar, malformed sidecar or a sidecar naming
        a different file yields ``False`` and is logged; this function never
        raises for those cases.
    """
    sidecar = checksum_path(path)
    if not sidecar.is_file():
        logger.error("Checksum file not found: %s", sidecar)
        return False
    if not path.is_file():
        logger.error("File to verify not found: %s", path)
        return False

    try:
        record = read_checksum_record(sidecar)
    except InvalidInputError as exc:
        logger.error("%s", exc)
        return False
    if not record.refers_to(path):
        logger.error(
            "Checksum file %s refers to %r, not %s", sidecar, record.filename, path.name
        )
        return False

    logger.debug("Verifying %s using checksum file %s", path, sidecar)
    actual = compute_digest(path)
    if actual != record.digest:
        logger.error(
            "Checksum mismatch for %s (expected %s, got %s)", path, record.digest, actual
        )
        return False
    return True


__all__ = [
    "CHECKSUM_SUFFIX",
    "ChecksumRecord",
    "checksum_path",
    "compute_digest",
    "is_valid_hex_digest",
    "read_checksum_record",
    "verify_checksum",
    "write_checksum",
]
