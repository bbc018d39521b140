"""Integrity primitives: SHA-256 checksum records and atomic writes."""
from __future__ import annotations

from easy_splunk.integrity.atomic import atomic_write_bytes, atomic_write_text
from easy_splunk.integrity.checksum import (
    CHECKSUM_SUFFIX,
    ChecksumRecord,
    checksum_path,
    compute_digest,
    read_checksum_record,
    verify_checksum,
    write_checksum,
)

__all__ = [
    "CHECKSUM_SUFFIX",
    "ChecksumRecord",
    "atomic_write_bytes",
    "atomic_write_text",
    "checksum_path",
    "compute_digest",
    "read_checksum_record",
    "verify_checksum",
    "write_checksum",
]
