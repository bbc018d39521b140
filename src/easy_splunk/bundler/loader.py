"""Bundle loader — imports a bundle's images on the air-gapped host.

Loading never trusts an archive blindly: when a ``.sha256`` record exists
next to it the archive is verified first, and a mismatch aborts before the
container runtime is invoked.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from easy_splunk.bundler.assembler import COMPOSE_FILENAME
from easy_splunk.bundler.manifest import ManifestV2, find_manifest, load_manifest
from easy_splunk.compression import Compression
from easy_splunk.config import BundleSettings
from easy_splunk.errors import (
    AirGapError,
    BundleIOError,
    ChecksumMismatchError,
    InvalidInputError,
)
from easy_splunk.integrity.checksum import (
    checksum_path,
    compute_digest,
    read_checksum_record,
    verify_checksum,
)
from easy_splunk.runtime.client import ContainerRuntime

logger = logging.getLogger(__name__)

ARCHIVE_CANDIDATES: tuple[str, ...] = tuple(
    "images.tar" + mode.suffix for mode in (Compression.NONE, Compression.GZIP, Compression.ZSTD)
)


@dataclass
class VerificationReport:
    """Outcome of :meth:`BundleLoader.verify_bundle`.

    Attributes
    ----------
    bundle_dir:
        The bundle that was checked.
    archive:
        Archive the checksum was validated for.
    checksum_ok:
        Whether the archive matched its ``.sha256`` record.
    missing_images:
        Manifest images the runtime does not have.
    file_failures:
        Bundle members (v2 only) whose digest no longer matches the manifest.
    """

    bundle_dir: Path
    archive: Path
    checksum_ok: bool
    present_images: list[str] = field(default_factory=list)
    missing_images: list[str] = field(default_factory=list)
    file_failures: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.checksum_ok and not self.missing_images and not self.file_failures


class BundleLoader:
    """Locates, verifies and loads bundle archives.

    Parameters
    ----------
    runtime:
        Container engine used for ``load`` and presence checks.
    settings:
        Tunables; defaults to :class:`BundleSettings()`.
    """

    def __init__(self, runtime: ContainerRuntime, settings: BundleSettings | None = None) -> None:
        self._runtime = runtime
        self._settings = settings or BundleSettings()

    def locate_archive(self, bundle_dir: Path) -> Path:
        """Return the image archive inside *bundle_dir*.

        The manifest's ``archive`` field wins when a manifest exists.
        Otherwise exactly one of ``images.tar``, ``images.tar.gz`` and
        ``images.tar.zst`` must be present.

        Raises
        ------
        BundleIOError
            If the bundle directory or the archive does not exist.
        InvalidInputError
            If more than one archive candidate exists and no manifest
            disambiguates them.
        """
        if not bundle_dir.is_dir():
            raise BundleIOError(f"Bundle directory not found: {bundle_dir}")

        manifest_path = find_manifest(bundle_dir)
        if manifest_path is not None:
            archive = bundle_dir / load_manifest(manifest_path).archive
            if not archive.is_file():
                raise BundleIOError(f"Archive named in {manifest_path.name} not found: {archive}")
            return archive

        found = [bundle_dir / name for name in ARCHIVE_CANDIDATES if (bundle_dir / name).is_file()]
        if not found:
            raise BundleIOError(
                f"No image archive found in {bundle_dir}",
                hint=f"Expected one of: {', '.join(ARCHIVE_CANDIDATES)}",
            )
        if len(found) > 1:
            raise InvalidInputError(
                f"Ambiguous image archives in {bundle_dir}: "
                f"{', '.join(p.name for p in found)}",
                hint="Remove the stale archives or restore the bundle manifest.",
            )
        return found[0]

    def load_image_archive(self, archive: Path) -> None:
        """Verify *archive* against its checksum record and load it.

        Raises
        ------
        BundleIOError
            If *archive* does not exist.
        ChecksumMismatchError
            If the archive does not match its ``.sha256`` record, or the
            record is missing while ``require_checksum`` is set.
        RuntimeCommandError
            If the runtime ``load`` fails.
        """
        if not archive.is_file():
            raise BundleIOError(f"Archive not found: {archive}")

        sidecar = checksum_path(archive)
        if sidecar.is_file():
            self._verify_or_raise(archive)
            logger.info("Checksum verified: %s", archive)
        elif self._settings.require_checksum:
            raise ChecksumMismatchError(
                f"Checksum file missing for {archive}",
                path=archive,
                hint="Unset EASY_SPLUNK_REQUIRE_CHECKSUM to load unverified archives.",
            )
        else:
            logger.warning("Checksum file missing for %s; loading without verification", archive)

        logger.info("Loading images from %s", archive)
        self._runtime.load(archive)
        logger.info("Images loaded from %s", archive)

    def load_bundle(self, bundle_dir: Path) -> Path:
        """Locate and load the archive in *bundle_dir*; return its path."""
        archive = self.locate_archive(bundle_dir)
        self.load_image_archive(archive)

        if self._settings.verify_after_load:
            try:
                images = self._runtime.images()
            except AirGapError as exc:
                logger.warning("Could not list images after load: %s", exc)
            else:
                logger.info("Runtime now has %d image(s)", len(images))
                for ref in images:
                    logger.info("  %s", ref)
        return archive

    def verify_bundle(self, bundle_dir: Path) -> VerificationReport:
        """Check archive integrity and image presence for *bundle_dir*.

        Every image named in the manifest is checked; missing ones are
        reported rather than raised.

        Raises
        ------
        BundleIOError
            If the bundle has no manifest.
        """
        manifest_path = find_manifest(bundle_dir)
        if manifest_path is None:
            raise BundleIOError(f"No manifest found in {bundle_dir}")
        manifest = load_manifest(manifest_path)
        archive = self.locate_archive(bundle_dir)

        report = VerificationReport(
            bundle_dir=bundle_dir,
            archive=archive,
            checksum_ok=verify_checksum(archive),
        )
        for ref in manifest.image_names():
            if self._runtime.image_exists(ref):
                report.present_images.append(ref)
            else:
                logger.warning("Image not present in runtime: %s", ref)
                report.missing_images.append(ref)

        if isinstance(manifest, ManifestV2):
            report.file_failures.extend(_check_member_digests(bundle_dir, manifest))

        if report.ok:
            logger.info("Bundle verified: %s", bundle_dir)
        else:
            logger.error(
                "Bundle verification failed: checksum_ok=%s, %d missing image(s), "
                "%d file failure(s)",
                report.checksum_ok,
                len(report.missing_images),
                len(report.file_failures),
            )
        return report

    def _verify_or_raise(self, archive: Path) -> None:
        actual = compute_digest(archive)
        try:
            record = read_checksum_record(checksum_path(archive))
        except InvalidInputError as exc:
            raise ChecksumMismatchError(
                f"Checksum record for {archive} is unreadable",
                path=archive,
                actual=actual,
                hint="The checksum file was modified or truncated; copy the bundle again.",
            ) from exc
        if not record.refers_to(archive):
            raise ChecksumMismatchError(
                f"Checksum record for {archive} names {record.filename!r}",
                path=archive,
                expected=record.digest,
                actual=actual,
                hint="The checksum file belongs to another archive.",
            )
        if actual != record.digest:
            raise ChecksumMismatchError(
                f"Checksum verification failed for {archive}",
                path=archive,
                expected=record.digest,
                actual=actual,
                hint="The archive was modified or corrupted in transfer; copy it again.",
            )


def _check_member_digests(bundle_dir: Path, manifest: ManifestV2) -> list[str]:
    failures: list[str] = []
    expected = dict(manifest.files)
    if manifest.compose_checksum:
        expected.setdefault(COMPOSE_FILENAME, manifest.compose_checksum)
        if expected[COMPOSE_FILENAME] != manifest.compose_checksum:
            failures.append(COMPOSE_FILENAME)

    for name, digest in sorted(expected.items()):
        member = bundle_dir / name
        if not member.is_file():
            logger.error("Bundle member missing: %s", member)
            failures.append(name)
        elif compute_digest(member) != digest:
            logger.error("Bundle member modified: %s", member)
            failures.append(name)
    return sorted(set(failures))


__all__ = [
    "ARCHIVE_CANDIDATES",
    "BundleLoader",
    "VerificationReport",
]
