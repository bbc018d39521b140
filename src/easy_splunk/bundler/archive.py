"""Image archive builder.

Saves a set of already-pulled images into one tar file with a single
runtime ``save`` invocation, applies the configured compression and emits
the ``.sha256`` checksum record next to the result.
"""
from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path

from easy_splunk.compression import Compression, Compressor, get_compressor
from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.integrity.checksum import checksum_path, write_checksum
from easy_splunk.runtime.client import ContainerRuntime

logger = logging.getLogger(__name__)

ARCHIVE_MODE = 0o644


def archive_filename(base: Path, compression: Compression) -> Path:
    """Return *base* with the suffix for *compression* appended."""
    return base.with_name(base.name + compression.suffix)


def save_images_archive(
    runtime: ContainerRuntime,
    output_path: Path,
    refs: Sequence[str],
    compression: "Compression | str" = Compression.GZIP,
    compressor: Compressor | None = None,
) -> Path:
    """Save *refs* into a single (optionally compressed) archive.

    Parameters
    ----------
    runtime:
        Engine whose image store holds *refs*.
    output_path:
        Path of the uncompressed tar, e.g. ``bundle/images.tar``.  The
        compression suffix is appended to form the final name.
    refs:
        Images to include.
    compression:
        ``gzip``, ``zstd`` or ``none``.
    compressor:
        Override the compressor; by default one is chosen from the tools
        installed on the host.

    Returns
    -------
    Path
        The final archive path.  Its ``.sha256`` sidecar exists on return.

    Raises
    ------
    InvalidInputError
        If *refs* is empty or *compression* is unknown.
    MissingDependencyError
        If the compression tool is not installed.
    RuntimeCommandError
        If the save or compression command fails.
    """
    if not refs:
        raise InvalidInputError("No images provided to save_images_archive.")
    mode = Compression.parse(compression)
    if compressor is None:
        compressor = get_compressor(mode)
    elif compressor.mode is not mode:
        raise InvalidInputError(
            f"Compressor produces {compressor.mode.value!r} but {mode.value!r} was requested"
        )

    parent = output_path.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BundleIOError(f"Cannot create output directory {parent}: {exc}") from exc

    final_path = archive_filename(output_path, mode)
    _remove_stale_variants(output_path, keep=final_path)

    # Staged next to the output so the final rename never crosses filesystems.
    staging = Path(tempfile.mkdtemp(prefix=".images-", dir=parent))
    tmp_tar = staging / "save.tar"
    tmp_out = staging / final_path.name
    try:
        logger.info("Saving %d image(s) to archive: %s", len(refs), final_path)
        runtime.save(tmp_tar, list(refs))
        if not tmp_tar.is_file():
            raise BundleIOError(f"Runtime save produced no archive at {tmp_tar}")

        if mode is not Compression.NONE:
            logger.info("Compressing archive with %s", mode.value)
        compressor.compress(tmp_tar, tmp_out)
        tmp_out.replace(final_path)
        os.chmod(final_path, ARCHIVE_MODE)
        write_checksum(final_path)
    except BaseException:
        final_path.unlink(missing_ok=True)
        checksum_path(final_path).unlink(missing_ok=True)
        raise
    finally:
        shutil.rmtree(staging, ignore_errors=True)

    logger.info("Image archive created: %s", final_path)
    return final_path


def _remove_stale_variants(base: Path, keep: Path) -> None:
    for mode in Compression:
        candidate = archive_filename(base, mode)
        if candidate == keep:
            continue
        for stale in (candidate, checksum_path(candidate)):
            if stale.exists():
                logger.debug("Removing stale archive member %s", stale)
                stale.unlink()


__all__ = [
    "archive_filename",
    "save_images_archive",
]
