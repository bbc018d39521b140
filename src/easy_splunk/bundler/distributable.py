"""Distributable bundle archive.

A finished bundle directory is packed into one ``<name>.tar.gz`` holding a
single top-level directory, with a ``.sha256`` record next to it.  Both
files are transferred to the disconnected host, where :func:`unpack_bundle`
checks the record before extracting anything.

Packing is reproducible: members are added in sorted order, owned by
``0:0`` with mtime 0, and the gzip header carries no name or timestamp.
"""
from __future__ import annotations

import gzip
import logging
import os
import shutil
import tarfile
import tempfile
from pathlib import Path, PurePosixPath

from easy_splunk.errors import BundleIOError, ChecksumMismatchError, InvalidInputError
from easy_splunk.integrity.checksum import checksum_path, verify_checksum, write_checksum

logger = logging.getLogger(__name__)

DISTRIBUTABLE_SUFFIX = ".tar.gz"
DISTRIBUTABLE_MODE = 0o644


def distributable_path(
    bundle_dir: Path, name: str | None = None, output_dir: Path | None = None
) -> Path:
    """Return where the packed archive of *bundle_dir* is written.

    Defaults to ``<bundle_dir.parent>/<bundle_dir.name>.tar.gz``.

    Raises
    ------
    InvalidInputError
        If *name* is not a plain file name.
    """
    base = name if name is not None else bundle_dir.name
    if base.endswith(DISTRIBUTABLE_SUFFIX):
        base = base[: -len(DISTRIBUTABLE_SUFFIX)]
    if not base or "/" in base or "\\" in base or base in (".", ".."):
        raise InvalidInputError(f"Archive name must be a plain file name, got {name!r}")
    directory = output_dir if output_dir is not None else bundle_dir.parent
    return directory / f"{base}{DISTRIBUTABLE_SUFFIX}"


def package_bundle(
    bundle_dir: Path, name: str | None = None, output_dir: Path | None = None
) -> Path:
    """Pack *bundle_dir* into a reproducible ``.tar.gz`` and checksum it.

    Parameters
    ----------
    bundle_dir:
        A finished bundle directory.
    name:
        Archive base name; defaults to the directory name.
    output_dir:
        Where to write the archive; defaults to the bundle's parent.

    Returns
    -------
    Path
        The archive path.  Its ``.sha256`` sidecar exists on return.

    Raises
    ------
    BundleIOError
        If *bundle_dir* is not a directory or the archive cannot be written.
    InvalidInputError
        If the archive would be written inside *bundle_dir*.
    """
    if not bundle_dir.is_dir():
        raise BundleIOError(f"Bundle directory not found: {bundle_dir}")
    destination = distributable_path(bundle_dir, name, output_dir)
    if destination.parent.resolve().is_relative_to(bundle_dir.resolve()):
        raise InvalidInputError(
            f"Refusing to write {destination} inside the bundle it packs",
            hint="Choose an output directory outside the bundle.",
        )

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise BundleIOError(f"Cannot create output directory {destination.parent}: {exc}") from exc

    logger.info("Packing bundle %s into %s", bundle_dir, destination)
    fd, tmp_name = tempfile.mkstemp(prefix=".bundle-", suffix=".tmp", dir=destination.parent)
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as raw, gzip.GzipFile(
            filename="", mode="wb", fileobj=raw, mtime=0
        ) as gz, tarfile.open(fileobj=gz, mode="w", format=tarfile.GNU_FORMAT) as tar:
            top = PurePosixPath(bundle_dir.name)
            tar.add(bundle_dir, arcname=str(top), recursive=False, filter=_normalise)
            for path in sorted(bundle_dir.rglob("*")):
                if path.is_symlink() or not (path.is_file() or path.is_dir()):
                    logger.warning("Not packing non-regular member %s", path)
                    continue
                arcname = top / path.relative_to(bundle_dir).as_posix()
                tar.add(path, arcname=str(arcname), recursive=False, filter=_normalise)
        os.chmod(tmp_path, DISTRIBUTABLE_MODE)
        os.replace(tmp_path, destination)
    except OSError as exc:
        tmp_path.unlink(missing_ok=True)
        raise BundleIOError(f"Cannot write bundle archive {destination}: {exc}") from exc
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise

    write_checksum(destination)
    logger.info(
        "Bundle archive created: %s (transfer it together with %s)",
        destination,
        checksum_path(destination).name,
    )
    return destination


def unpack_bundle(archive: Path, destination: Path) -> Path:
    """Verify *archive* against its sidecar and extract it into *destination*.

    Only regular files and directories below one top-level directory are
    accepted; anything else (links, devices, absolute or ``..`` paths)
    rejects the whole archive before a byte is written.

    Returns
    -------
    Path
        The extracted bundle directory, ``destination/<top-level name>``.

    Raises
    ------
    BundleIOError
        If *archive* is missing or unreadable, or the target directory
        already exists.
    ChecksumMismatchError
        If the sidecar is missing or does not match.
    InvalidInputError
        If the archive layout is unsafe or has no single top-level directory.
    """
    if not archive.is_file():
        raise BundleIOError(f"Bundle archive not found: {archive}")
    if not verify_checksum(archive):
        raise ChecksumMismatchError(
            f"Bundle archive failed checksum verification: {archive}",
            path=archive,
            hint=f"Transfer {archive.name} together with {checksum_path(archive).name}.",
        )
    logger.info("Bundle archive checksum is valid: %s", archive)

    try:
        with tarfile.open(archive, "r:gz") as tar:
            members = tar.getmembers()
            top = _check_members(archive, members)
            target = destination / top
            if target.exists():
                raise BundleIOError(
                    f"Refusing to overwrite existing directory {target}",
                    hint="Remove it or unpack somewhere else.",
                )
            destination.mkdir(parents=True, exist_ok=True)
            for member in members:
                _extract_member(tar, member, destination)
            # Applied last so a read-only directory cannot block its own children.
            for member in reversed(members):
                if member.isdir():
                    os.chmod(_member_path(destination, member), member.mode & 0o777)
    except BundleIOError:
        raise
    except (tarfile.TarError, OSError) as exc:
        raise BundleIOError(f"Cannot unpack {archive}: {exc}") from exc

    logger.info("Bundle unpacked to %s", target)
    return target


def _normalise(info: tarfile.TarInfo) -> tarfile.TarInfo:
    info.uid = info.gid = 0
    info.uname = info.gname = "root"
    info.mtime = 0
    return info


def _check_members(archive: Path, members: list[tarfile.TarInfo]) -> str:
    tops: set[str] = set()
    for member in members:
        path = PurePosixPath(member.name)
        if path.is_absolute() or ".." in path.parts or not path.parts:
            raise InvalidInputError(f"Unsafe path {member.name!r} in {archive}")
        if not (member.isfile() or member.isdir()):
            raise InvalidInputError(f"Unsupported member type {member.name!r} in {archive}")
        tops.add(path.parts[0])
    if len(tops) != 1:
        raise InvalidInputError(
            f"{archive} must contain exactly one top-level directory, found {sorted(tops)}"
        )
    return tops.pop()


def _member_path(destination: Path, member: tarfile.TarInfo) -> Path:
    return destination.joinpath(*PurePosixPath(member.name).parts)


def _extract_member(tar: tarfile.TarFile, member: tarfile.TarInfo, destination: Path) -> None:
    path = _member_path(destination, member)
    if member.isdir():
        path.mkdir(parents=True, exist_ok=True)
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    source = tar.extractfile(member)
    if source is None:
        raise BundleIOError(f"Cannot read {member.name} from archive")
    with source, path.open("wb") as out:
        shutil.copyfileobj(source, out)
    os.chmod(path, member.mode & 0o777)


__all__ = [
    "DISTRIBUTABLE_SUFFIX",
    "distributable_path",
    "package_bundle",
    "unpack_bundle",
]
