"""Convenience API for easy-splunk-airgap — versions-file quickstart.

Example
-------
::

    from pathlib import Path
    from easy_splunk import create_bundle_from_versions

    result = create_bundle_from_versions(Path("dist/bundle"), Path("versions.env"), package=True)
    print(result.distributable)

"""
from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from pathlib import Path

from easy_splunk.bundler.assembler import BundleAssembler, BundleResult
from easy_splunk.bundler.distributable import package_bundle
from easy_splunk.compression import Compressor
from easy_splunk.config import BundleSettings
from easy_splunk.errors import InvalidInputError
from easy_splunk.runtime.client import ContainerRuntime
from easy_splunk.runtime.detection import detect_runtime
from easy_splunk.security.secrets import SecretsVault
from easy_splunk.versions.loader import collect_images


def merge_images(declared: Sequence[str], extra: Sequence[str] = ()) -> list[str]:
    """Return *declared* followed by *extra*, blanks dropped, first occurrence kept."""
    refs = (ref.strip() for ref in [*declared, *extra])
    return list(dict.fromkeys(ref for ref in refs if ref))


def create_bundle_from_versions(
    bundle_dir: Path,
    versions_file: Path,
    runtime: ContainerRuntime | None = None,
    settings: BundleSettings | None = None,
    compose_file: Path | None = None,
    extra_images: Sequence[str] = (),
    includes: Sequence[Path] = (),
    package: bool = False,
    package_name: str | None = None,
    vault: SecretsVault | None = None,
    compressor: Compressor | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> BundleResult:
    """Build a bundle containing every ``*_IMAGE`` listed in *versions_file*.

    The same versions file is snapshotted (encrypted) into the bundle.  When
    *compose_file* is given an enhanced (schema v2) bundle is produced.

    Parameters
    ----------
    bundle_dir:
        Output directory.
    versions_file:
        ``KEY=value`` file declaring the images.
    runtime:
        Container engine; auto-detected from ``settings.runtime`` when omitted.
    settings:
        Tunables; defaults to :meth:`BundleSettings.from_env`.
    extra_images:
        References added after the declared ones; duplicates are dropped.
    includes:
        Extra files or directories copied into the bundle.
    package:
        Also pack the bundle into ``<package_name>.tar.gz`` next to it.

    Raises
    ------
    InvalidInputError
        If the versions file is malformed or no images remain.
    """
    settings = settings or BundleSettings.from_env()
    images = merge_images(collect_images(versions_file), extra_images)
    if not images:
        raise InvalidInputError(
            f"No *_IMAGE entries found in {versions_file}",
            hint="Add a line such as SPLUNK_IMAGE=splunk/splunk:9.1.2 or pass --image.",
        )

    assembler = BundleAssembler(
        runtime or detect_runtime(settings.runtime),
        settings,
        vault=vault,
        compressor=compressor,
        sleep=sleep,
    )
    if compose_file is not None:
        result = assembler.create_enhanced_bundle(
            bundle_dir, images, compose_file, versions_file=versions_file, includes=includes
        )
    else:
        result = assembler.create_bundle(
            bundle_dir, images, versions_file=versions_file, includes=includes
        )
    if package:
        result.distributable = package_bundle(bundle_dir, name=package_name)
    return result


__all__ = ["create_bundle_from_versions", "merge_images"]
