"""Bundle assembler — builds distributable air-gapped bundle directories.

The assembler is the create-path entry point.  It:

1. Pulls every requested image through the injected runtime.
2. Saves them into ``images.tar[.gz|.zst]`` with a checksum record.
3. Copies extra ``includes`` (files or directories) into the bundle.
4. Writes the manifest (v1 ``manifest.json`` or v2 ``bundle-manifest.json``).
5. Stores an encrypted snapshot of the versions file, if one exists.
6. Writes a README with provenance and load instructions.
7. Audits the result and writes ``security-audit.txt``.

Re-running with the same inputs rebuilds every member; archives and their
checksum records come out byte-identical, only the manifest's ``created``
and ``created_by`` fields change.  Members added by the previous build
(compose file, includes, manifests) are removed first, so switching schema
or dropping an include leaves nothing stale behind.

Classes
-------
- BundleResult     Paths and metadata of a finished bundle.
- BundleAssembler  Orchestrates the pipeline above.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
import textwrap
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from easy_splunk.bundler.archive import save_images_archive
from easy_splunk.bundler.images import pull_images
from easy_splunk.bundler.manifest import (
    MANIFEST_FILENAMES,
    MANIFEST_V1_FILENAME,
    MANIFEST_V2_FILENAME,
    ImageEntry,
    Manifest,
    ManifestV1,
    ManifestV2,
    find_manifest,
    load_manifest,
    write_manifest,
)
from easy_splunk.compression import Compression, Compressor
from easy_splunk.config import BundleSettings
from easy_splunk.errors import AirGapError, BundleIOError, InvalidInputError
from easy_splunk.integrity.atomic import atomic_write_text
from easy_splunk.integrity.checksum import compute_digest
from easy_splunk.runtime.client import ContainerRuntime
from easy_splunk.security.audit import AUDIT_REPORT_FILENAME, AuditReport, SecurityAuditor
from easy_splunk.security.secrets import SecretsVault

logger = logging.getLogger(__name__)

ARCHIVE_BASENAME = "images.tar"
SECRETS_SNAPSHOT_FILENAME = "versions.env"
COMPOSE_FILENAME = "docker-compose.yml"
README_FILENAME = "README"
DEFAULT_COMPOSE_VERSION = "3.8"

BUNDLE_DIR_MODE = 0o755
SENSITIVE_FILE_MODE = 0o600
SENSITIVE_DIR_MODE = 0o700

# Included paths whose name matches are restricted to the owner.
_SENSITIVE_INCLUDE = re.compile(r"secrets|credentials", re.IGNORECASE)

_RESERVED_MEMBERS = frozenset({
    *MANIFEST_FILENAMES,
    SECRETS_SNAPSHOT_FILENAME,
    COMPOSE_FILENAME,
    README_FILENAME,
    AUDIT_REPORT_FILENAME,
})


@dataclass
class BundleResult:
    """Outcome of a bundle assembly.

    Attributes
    ----------
    bundle_dir:
        The populated bundle directory.
    archive_path:
        Path of the image archive inside the bundle.
    manifest_path:
        Path of the manifest that was written.
    manifest:
        The manifest model as written.
    images:
        Image references included, in order.
    secrets_snapshot:
        Path of the encrypted versions snapshot, or ``None``.
    audit:
        Security audit report for the finished bundle.
    includes:
        Names of the extra files and directories copied into the bundle.
    distributable:
        Packed ``<name>.tar.gz`` of the bundle, when one was requested.
    """

    bundle_dir: Path
    archive_path: Path
    manifest_path: Path
    manifest: Manifest
    images: list[str]
    secrets_snapshot: Path | None = None
    audit: AuditReport | None = None
    members: list[str] = field(default_factory=list)
    includes: list[str] = field(default_factory=list)
    distributable: Path | None = None


class BundleAssembler:
    """Creates air-gapped bundles with a given container runtime.

    Parameters
    ----------
    runtime:
        Container engine used to pull and save images.  The engine name is
        recorded in the manifest.
    settings:
        Tunables; defaults to :class:`BundleSettings()`.
    vault:
        Encrypts the versions snapshot.  Defaults to a vault in
        ``settings.secrets_dir``.
    auditor:
        Security audit producer.  Defaults to :class:`SecurityAuditor()`.
    compressor:
        Override the archive compressor (mainly for tests).
    sleep:
        Backoff sleep used between pull retries.
    """

    def __init__(
        self,
        runtime: ContainerRuntime,
        settings: BundleSettings | None = None,
        vault: SecretsVault | None = None,
        auditor: SecurityAuditor | None = None,
        compressor: Compressor | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._runtime = runtime
        self._settings = settings or BundleSettings()
        self._vault = vault or SecretsVault(self._settings.secrets_dir)
        self._auditor = auditor or SecurityAuditor()
        self._compressor = compressor
        self._sleep = sleep

    @property
    def settings(self) -> BundleSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def create_bundle(
        self,
        bundle_dir: Path,
        images: Sequence[str],
        versions_file: Path | None = None,
        includes: Sequence[Path] = (),
    ) -> BundleResult:
        """Create a schema v1 bundle in *bundle_dir*.

        Parameters
        ----------
        bundle_dir:
            Output directory; created with mode 0755 if absent.
        images:
            Image references to include, in order.
        versions_file:
            Versions file to snapshot.  Falls back to
            ``settings.versions_file`` when that file exists.
        includes:
            Extra files or directories copied into the bundle root under
            their own name.  Missing paths are skipped with a warning;
            names containing ``secrets`` or ``credentials`` are made
            owner-only.

        Returns
        -------
        BundleResult
            Paths and metadata of the finished bundle.

        Raises
        ------
        InvalidInputError
            If *images* is empty or an include would overwrite a bundle
            member.
        RuntimeCommandError
            If a pull exhausts its retries or the save fails.
        """
        refs = self._prepare(bundle_dir, images, includes, keep=includes)
        archive = self._build_archive(bundle_dir, refs)
        included = self._copy_includes(bundle_dir, includes)

        manifest = ManifestV1(
            runtime=self._runtime.name,
            compression=self._settings.compression,
            archive=archive.name,
            bundle_version=self._settings.bundle_version,
            includes=included,
            images=refs,
        )
        manifest_path = write_manifest(manifest, bundle_dir / MANIFEST_V1_FILENAME)
        logger.info("Manifest written: %s", manifest_path)

        snapshot = self._snapshot_secrets(bundle_dir, versions_file)
        self._write_readme(bundle_dir, manifest)
        audit = self._audit(bundle_dir)

        logger.info("Air-gapped bundle created at %s", bundle_dir)
        return BundleResult(
            bundle_dir=bundle_dir,
            archive_path=archive,
            manifest_path=manifest_path,
            manifest=manifest,
            images=refs,
            secrets_snapshot=snapshot,
            audit=audit,
            members=_list_members(bundle_dir),
            includes=included,
        )

    def create_enhanced_bundle(
        self,
        bundle_dir: Path,
        images: Sequence[str],
        compose_file: Path,
        versions_file: Path | None = None,
        includes: Sequence[Path] = (),
    ) -> BundleResult:
        """Create a schema v2 bundle carrying a compose file and digests.

        In addition to the v1 members, the compose file is copied into the
        bundle as ``docker-compose.yml``, every image's registry digest is
        resolved, and ``bundle-manifest.json`` records the compose checksum
        plus a SHA-256 for every other file in the bundle, files inside
        included directories among them.

        Raises
        ------
        BundleIOError
            If *compose_file* does not exist.
        InvalidInputError
            If *images* is empty or an include would overwrite a bundle
            member.
        """
        if not compose_file.is_file():
            raise BundleIOError(f"Compose file not found: {compose_file}")

        refs = self._prepare(bundle_dir, images, includes, keep=[compose_file, *includes])
        archive = self._build_archive(bundle_dir, refs)
        included = self._copy_includes(bundle_dir, includes)

        bundled_compose = bundle_dir / COMPOSE_FILENAME
        if compose_file.resolve() != bundled_compose.resolve():
            shutil.copyfile(compose_file, bundled_compose)
            os.chmod(bundled_compose, 0o644)
        compose_checksum = compute_digest(bundled_compose)
        compose_version = read_compose_version(bundled_compose)

        entries = [
            ImageEntry(name=ref, digest=self._runtime.repo_digest(ref) or "unknown")
            for ref in refs
        ]
        for entry in entries:
            if entry.digest == "unknown":
                logger.warning("Could not resolve a registry digest for %s", entry.name)

        snapshot = self._snapshot_secrets(bundle_dir, versions_file)
        draft = ManifestV2(
            runtime=self._runtime.name,
            compression=self._settings.compression,
            archive=archive.name,
            bundle_version=self._settings.bundle_version,
            compose_version=compose_version,
            compose_checksum=compose_checksum,
            includes=included,
            images=entries,
        )
        self._write_readme(bundle_dir, draft)
        audit = self._audit(bundle_dir)

        manifest = draft.model_copy(update={"files": _member_checksums(bundle_dir)})
        manifest_path = write_manifest(manifest, bundle_dir / MANIFEST_V2_FILENAME)
        logger.info("Enhanced manifest written: %s", manifest_path)

        logger.info("Enhanced air-gapped bundle created at %s", bundle_dir)
        return BundleResult(
            bundle_dir=bundle_dir,
            archive_path=archive,
            manifest_path=manifest_path,
            manifest=manifest,
            images=refs,
            secrets_snapshot=snapshot,
            audit=audit,
            members=_list_members(bundle_dir),
            includes=included,
        )

    # ------------------------------------------------------------------
    # Pipeline steps
    # ------------------------------------------------------------------

    def _prepare(
        self,
        bundle_dir: Path,
        images: Sequence[str],
        includes: Sequence[Path],
        keep: Iterable[Path] = (),
    ) -> list[str]:
        refs = [ref.strip() for ref in images if ref and ref.strip()]
        if not refs:
            raise InvalidInputError(
                "No images supplied for the bundle.",
                hint="Check the versions file or pass --image.",
            )
        _check_include_names(includes)

        logger.info("Creating air-gapped bundle in %s", bundle_dir)
        logger.info("Images to include (%d): %s", len(refs), ", ".join(refs))
        try:
            bundle_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(bundle_dir, BUNDLE_DIR_MODE)
            self._clear_previous_build(bundle_dir, keep)
        except OSError as exc:
            raise BundleIOError(f"Cannot prepare bundle directory {bundle_dir}: {exc}") from exc
        return refs

    def _clear_previous_build(self, bundle_dir: Path, keep: Iterable[Path]) -> None:
        kept = {path.resolve() for path in keep}
        stale = [COMPOSE_FILENAME]
        previous = find_manifest(bundle_dir)
        if previous is not None:
            try:
                stale.extend(load_manifest(previous).includes)
            except AirGapError as exc:
                logger.warning("Ignoring unreadable manifest %s: %s", previous, exc)

        for name in stale:
            member = bundle_dir / name
            if not (member.exists() or member.is_symlink()) or member.resolve() in kept:
                continue
            logger.debug("Removing member of the previous build: %s", member)
            if member.is_dir() and not member.is_symlink():
                shutil.rmtree(member)
            else:
                member.unlink()

        # Also drops a manifest of the other schema.
        for name in MANIFEST_FILENAMES:
            (bundle_dir / name).unlink(missing_ok=True)

    def _copy_includes(self, bundle_dir: Path, includes: Sequence[Path]) -> list[str]:
        included: list[str] = []
        for source in includes:
            if not source.exists():
                logger.warning("Skip missing include: %s", source)
                continue
            destination = bundle_dir / source.name
            try:
                if source.resolve() != destination.resolve():
                    if source.is_dir():
                        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)
                    else:
                        shutil.copy2(source, destination)
                if _SENSITIVE_INCLUDE.search(source.name):
                    _restrict_to_owner(destination)
            except OSError as exc:
                raise BundleIOError(f"Cannot include {source} in the bundle: {exc}") from exc
            logger.debug("Included: %s", source)
            included.append(source.name)
        return included

    def _build_archive(self, bundle_dir: Path, refs: list[str]) -> Path:
        pull_images(
            self._runtime,
            refs,
            policy=self._settings.retry_policy(),
            sleep=self._sleep,
        )
        return save_images_archive(
            self._runtime,
            bundle_dir / ARCHIVE_BASENAME,
            refs,
            compression=self._settings.compression,
            compressor=self._compressor,
        )

    def _snapshot_secrets(self, bundle_dir: Path, versions_file: Path | None) -> Path | None:
        destination = bundle_dir / SECRETS_SNAPSHOT_FILENAME
        source = versions_file if versions_file is not None else self._settings.versions_file
        if not source.is_file():
            if versions_file is not None:
                raise BundleIOError(f"Versions file not found: {versions_file}")
            logger.debug("No versions file at %s; skipping secrets snapshot", source)
            destination.unlink(missing_ok=True)
            return None
        return self._vault.encrypt_file(source, destination)

    def _write_readme(self, bundle_dir: Path, manifest: Manifest) -> Path:
        text = render_readme(manifest)
        path = atomic_write_text(bundle_dir / README_FILENAME, text, mode=0o644)
        logger.debug("README written: %s", path)
        return path

    def _audit(self, bundle_dir: Path) -> AuditReport:
        report = self._auditor.audit(bundle_dir)
        self._auditor.write_report(report, bundle_dir / AUDIT_REPORT_FILENAME)
        return report


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def read_compose_version(compose_file: Path) -> str:
    """Return the top-level ``version`` of a compose file (default ``3.8``)."""
    try:
        document = yaml.safe_load(compose_file.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Cannot read compose version from %s: %s", compose_file, exc)
        return DEFAULT_COMPOSE_VERSION
    if isinstance(document, dict) and document.get("version") is not None:
        return str(document["version"])
    return DEFAULT_COMPOSE_VERSION


def render_readme(manifest: Manifest) -> str:
    """Render the human-readable README for a bundle."""
    image_lines = "\n".join(f"  - {name}" for name in manifest.image_names())
    manifest_name = (
        MANIFEST_V2_FILENAME if isinstance(manifest, ManifestV2) else MANIFEST_V1_FILENAME
    )
    decompress = {
        Compression.GZIP: "gzip-compressed",
        Compression.ZSTD: "zstd-compressed",
        Compression.NONE: "uncompressed",
    }[manifest.compression]
    return textwrap.dedent(
        """\
        Air-gapped bundle
        =================

        Created:       {created}
        Created by:    {created_by}
        Runtime:       {runtime}
        Architecture:  {architecture}
        Version:       {bundle_version}
        Archive:       {archive} ({decompress})
        Manifest:      {manifest_name}

        Images:
        {images}

        Loading on the target host
        --------------------------
        1. Copy this whole directory to the disconnected host.
        2. Verify the archive:   sha256sum -c {archive}.sha256
        3. Load the images:      easy-splunk-airgap load <this directory>
           (or manually:         {runtime} load -i {archive})
        4. Confirm presence:     easy-splunk-airgap verify <this directory>

        versions.env, when present, is encrypted.  Decrypt it with the
        bundle key from the build host:
            easy-splunk-airgap decrypt-secrets versions.env
        """
    ).format(
        created=manifest.created,
        created_by=manifest.created_by,
        runtime=manifest.runtime,
        architecture=manifest.architecture,
        bundle_version=manifest.bundle_version,
        archive=manifest.archive,
        decompress=decompress,
        manifest_name=manifest_name,
        images=image_lines,
    )


def _check_include_names(includes: Sequence[Path]) -> None:
    seen: set[str] = set()
    for source in includes:
        name = source.name
        if name in _RESERVED_MEMBERS or name.startswith(ARCHIVE_BASENAME) or name in seen:
            raise InvalidInputError(
                f"Include {source} would overwrite bundle member {name!r}",
                hint="Rename the file or directory before including it.",
            )
        seen.add(name)


def _restrict_to_owner(path: Path) -> None:
    if not path.is_dir():
        os.chmod(path, SENSITIVE_FILE_MODE)
        return
    os.chmod(path, SENSITIVE_DIR_MODE)
    for child in path.rglob("*"):
        if child.is_symlink():
            continue
        os.chmod(child, SENSITIVE_DIR_MODE if child.is_dir() else SENSITIVE_FILE_MODE)


def _member_checksums(bundle_dir: Path) -> dict[str, str]:
    checksums: dict[str, str] = {}
    for path in sorted(bundle_dir.rglob("*")):
        name = path.relative_to(bundle_dir).as_posix()
        if path.is_file() and name not in MANIFEST_FILENAMES:
            checksums[name] = compute_digest(path)
    return checksums


def _list_members(bundle_dir: Path) -> list[str]:
    return sorted(p.name for p in bundle_dir.iterdir() if p.is_file())


__all__ = [
    "ARCHIVE_BASENAME",
    "BundleAssembler",
    "BundleResult",
    "COMPOSE_FILENAME",
    "README_FILENAME",
    "SECRETS_SNAPSHOT_FILENAME",
    "read_compose_version",
    "render_readme",
]
