"""easy-splunk-airgap — build, transfer and load air-gapped container image bundles.

Public API
----------
The stable public surface is everything exported from this module.
Anything inside submodules not re-exported here is considered private
and may change without notice.

Example
-------
>>> import easy_splunk
>>> easy_splunk.__version__
'0.1.0'

Create
------
>>> from easy_splunk import BundleAssembler, BundleSettings, detect_runtime
>>> assembler = BundleAssembler(detect_runtime(), BundleSettings.from_env())  # doctest: +SKIP
>>> assembler.create_bundle(Path("bundle"), ["busybox:latest"])  # doctest: +SKIP

Load
----
>>> from easy_splunk import BundleLoader
>>> BundleLoader(detect_runtime()).load_bundle(Path("bundle"))  # doctest: +SKIP
"""
from __future__ import annotations

__version__: str = "0.1.0"

# ---------------------------------------------------------------------------
# Errors and configuration
# ---------------------------------------------------------------------------
from easy_splunk.compression import Compression, get_compressor
from easy_splunk.config import BundleSettings
from easy_splunk.errors import (
    AirGapError,
    BundleIOError,
    ChecksumMismatchError,
    InvalidInputError,
    MissingDependencyError,
    RuntimeCommandError,
)
from easy_splunk.retry import RetryPolicy, retry_call

# ---------------------------------------------------------------------------
# Integrity
# ---------------------------------------------------------------------------
from easy_splunk.integrity import (
    compute_digest,
    read_checksum_record,
    verify_checksum,
    write_checksum,
)

# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------
from easy_splunk.runtime import CliContainerRuntime, ContainerRuntime, detect_runtime

# ---------------------------------------------------------------------------
# Bundler
# ---------------------------------------------------------------------------
from easy_splunk.bundler import (
    BundleAssembler,
    BundleLoader,
    BundleResult,
    ImageEntry,
    ImageReference,
    Manifest,
    ManifestV1,
    ManifestV2,
    VerificationReport,
    load_manifest,
    package_bundle,
    parse_manifest,
    pull_images,
    save_images_archive,
    unpack_bundle,
)

# ---------------------------------------------------------------------------
# Versions and security
# ---------------------------------------------------------------------------
from easy_splunk.versions import collect_images, image_ref, load_versions_file, parse_versions_file
from easy_splunk.security import AuditReport, SecretsVault, SecurityAuditor
from easy_splunk.convenience import create_bundle_from_versions

__all__ = [
    "__version__",
    # Errors and configuration
    "AirGapError",
    "BundleIOError",
    "BundleSettings",
    "ChecksumMismatchError",
    "Compression",
    "InvalidInputError",
    "MissingDependencyError",
    "RetryPolicy",
    "RuntimeCommandError",
    "get_compressor",
    "retry_call",
    # Integrity
    "compute_digest",
    "read_checksum_record",
    "verify_checksum",
    "write_checksum",
    # Runtime
    "CliContainerRuntime",
    "ContainerRuntime",
    "detect_runtime",
    # Bundler
    "BundleAssembler",
    "BundleLoader",
    "BundleResult",
    "ImageEntry",
    "ImageReference",
    "Manifest",
    "ManifestV1",
    "ManifestV2",
    "VerificationReport",
    "load_manifest",
    "package_bundle",
    "parse_manifest",
    "pull_images",
    "save_images_archive",
    "unpack_bundle",
    # Versions and security
    "AuditReport",
    "SecretsVault",
    "SecurityAuditor",
    "collect_images",
    "create_bundle_from_versions",
    "image_ref",
    "load_versions_file",
    "parse_versions_file",
]
