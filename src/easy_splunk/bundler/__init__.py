"""Bundle creation and loading.

Sub-modules
-----------
images     Image reference parsing and retrying pulls.
archive    ``runtime save`` plus compression into ``images.tar[.gz|.zst]``.
manifest   v1/v2 manifest models.
assembler  :class:`BundleAssembler`, the create path.
loader     :class:`BundleLoader`, the load and verify path.
distributable  Packed ``<name>.tar.gz`` of a finished bundle, and its unpacking.
"""
from __future__ import annotations

from easy_splunk.bundler.archive import save_images_archive
from easy_splunk.bundler.assembler import BundleAssembler, BundleResult
from easy_splunk.bundler.distributable import package_bundle, unpack_bundle
from easy_splunk.bundler.images import ImageReference, pull_images
from easy_splunk.bundler.loader import BundleLoader, VerificationReport
from easy_splunk.bundler.manifest import (
    ImageEntry,
    Manifest,
    ManifestV1,
    ManifestV2,
    load_manifest,
    parse_manifest,
)

__all__ = [
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
]
