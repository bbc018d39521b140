"""Shared fixtures: an in-memory container runtime and test settings."""
from __future__ import annotations

import io
import json
import tarfile
from collections.abc import Iterable, Sequence
from pathlib import Path

import pytest

from easy_splunk.compression import Compression
from easy_splunk.config import BundleSettings
from easy_splunk.errors import RuntimeCommandError
from easy_splunk.runtime.client import ContainerRuntime


class FakeRuntime(ContainerRuntime):
    """Container runtime double backed by a set of image references.

    ``save`` writes a small deterministic tar whose ``manifest.json`` lists
    the saved tags; ``load`` reads it back into the image store.
    """

    def __init__(
        self,
        name: str = "docker",
        images: Iterable[str] = (),
        digests: dict[str, str] | None = None,
        pull_failures: dict[str, int] | None = None,
    ) -> None:
        self._name = name
        self.store: set[str] = set(images)
        self.digests = dict(digests or {})
        self.pull_failures = dict(pull_failures or {})
        self.calls: list[tuple[str, str]] = []

    @property
    def name(self) -> str:
        return self._name

    def pull(self, ref: str) -> None:
        self.calls.append(("pull", ref))
        remaining = self.pull_failures.get(ref, 0)
        if remaining:
            self.pull_failures[ref] = remaining - 1
            raise RuntimeCommandError(f"pull failed: {ref}", command=["pull", ref], returncode=1)
        self.store.add(ref)

    def save(self, output: Path, refs: Sequence[str]) -> None:
        self.calls.append(("save", ",".join(refs)))
        missing = [ref for ref in refs if ref not in self.store]
        if missing:
            raise RuntimeCommandError(f"no such image: {missing[0]}", returncode=1)
        with tarfile.open(output, "w", format=tarfile.GNU_FORMAT) as tar:
            manifest = json.dumps([{"RepoTags": [ref]} for ref in refs]).encode()
            _add_member(tar, "manifest.json", manifest)
            for index, ref in enumerate(refs):
                _add_member(tar, f"layer-{index}.txt", ref.encode())

    def load(self, archive: Path) -> None:
        self.calls.append(("load", str(archive)))
        try:
            with tarfile.open(archive, "r:*") as tar:
                member = tar.extractfile("manifest.json")
                entries = json.loads(member.read()) if member else []
        except (tarfile.TarError, KeyError) as exc:
            raise RuntimeCommandError(f"load failed: {exc}", returncode=1) from exc
        for entry in entries:
            self.store.update(entry.get("RepoTags", []))

    def image_exists(self, ref: str) -> bool:
        return ref in self.store

    def images(self) -> list[str]:
        return sorted(self.store)

    def repo_digest(self, ref: str) -> str | None:
        return self.digests.get(ref)

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)


def _add_member(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mtime = 0
    info.mode = 0o644
    tar.addfile(info, io.BytesIO(data))


@pytest.fixture()
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture()
def make_runtime() -> type[FakeRuntime]:
    """Return the FakeRuntime class for tests that need custom state."""
    return FakeRuntime


@pytest.fixture()
def settings(tmp_path: Path) -> BundleSettings:
    """Uncompressed, no-wait settings isolated from the user's home."""
    return BundleSettings(
        compression=Compression.NONE,
        retry_base_delay=0.0,
        retry_max_delay=0.0,
        secrets_dir=tmp_path / "secrets",
        versions_file=tmp_path / "no-such-versions.env",
        bundle_version="1.2.3",
    )


@pytest.fixture()
def versions_file(tmp_path: Path) -> Path:
    path = tmp_path / "versions.env"
    path.write_text(
        "# pinned images\n"
        "SPLUNK_VERSION=9.1.2\n"
        "SPLUNK_IMAGE=splunk/splunk:${SPLUNK_VERSION}\n"
        "BUSYBOX_IMAGE=busybox:latest\n"
        "DUPLICATE_IMAGE=busybox:latest\n"
        "EMPTY_IMAGE=\n",
        encoding="utf-8",
    )
    return path
