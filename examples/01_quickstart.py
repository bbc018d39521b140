#!/usr/bin/env python3
"""Example: Quickstart — easy-splunk-airgap

Build a bundle from a versions file on a connected host, then verify it the
way the disconnected host would before loading.

Usage:
    python examples/01_quickstart.py versions.env dist/bundle

Requirements:
    pip install easy-splunk-airgap
    docker or podman on PATH
"""
from __future__ import annotations

import sys
from pathlib import Path

import easy_splunk
from easy_splunk import (
    BundleLoader,
    BundleSettings,
    collect_images,
    create_bundle_from_versions,
    detect_runtime,
)


def main() -> None:
    versions_file = Path(sys.argv[1] if len(sys.argv) > 1 else "versions.env")
    bundle_dir = Path(sys.argv[2] if len(sys.argv) > 2 else "dist/bundle")
    print(f"easy-splunk-airgap version: {easy_splunk.__version__}")

    # Step 1: See which images the versions file pins
    images = collect_images(versions_file)
    print(f"Images declared in {versions_file}:")
    for ref in images:
        print(f"  {ref}")

    # Step 2: Pull, archive and describe them in a bundle
    settings = BundleSettings.from_env()
    runtime = detect_runtime(settings.runtime)
    result = create_bundle_from_versions(bundle_dir, versions_file, runtime=runtime, settings=settings)
    print(f"\nBundle written to {result.bundle_dir}")
    print(f"  Archive:  {result.archive_path.name}")
    print(f"  Manifest: {result.manifest_path.name}")
    if result.audit is not None:
        print(f"  Audit findings: {len(result.audit.findings)}")

    # Step 3: Check integrity and image presence
    report = BundleLoader(runtime, settings).verify_bundle(bundle_dir)
    print(f"\nChecksum ok: {report.checksum_ok}")
    print(f"Missing images: {report.missing_images or 'none'}")


if __name__ == "__main__":
    main()
