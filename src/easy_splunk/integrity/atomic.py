"""Atomic file writes.

Content is written to a temporary file in the destination directory,
flushed, given its final mode and then renamed over the target so readers
never observe a partially written manifest, checksum or secret.
"""
from __future__ import annotations

import os
import tempfile
from pathlib import Path

from easy_splunk.errors import BundleIOError


def atomic_write_bytes(path: Path, data: bytes, mode: int = 0o644) -> Path:
    """Atomically replace *path* with *data*.

    Parameters
    ----------
    path:
        Destination file.  Its parent directory must exist.
    data:
        Bytes to write.
    mode:
        Permission bits applied to the file before it becomes visible.

    Returns
    -------
    Path
        The destination path.

    Raises
    ------
    BundleIOError
        If the temporary file cannot be written or renamed.
    """
    directory = path.parent
    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=directory
        )
    except OSError as exc:
        raise BundleIOError(f"Cannot create temporary file in {directory}: {exc}") from exc

    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException as exc:
        tmp_path.unlink(missing_ok=True)
        if isinstance(exc, OSError):
            raise BundleIOError(f"Cannot write {path}: {exc}") from exc
        raise
    return path


def atomic_write_text(
    path: Path, text: str, mode: int = 0o644, encoding: str = "utf-8"
) -> Path:
    """Atomically replace *path* with *text* encoded as *encoding*."""
    return atomic_write_bytes(path, text.encode(encoding), mode=mode)


__all__ = [
    "atomic_write_bytes",
    "atomic_write_text",
]
