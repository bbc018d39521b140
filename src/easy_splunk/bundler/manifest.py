"""Bundle manifest data model.

A manifest is the JSON descriptor that travels with a bundle.  Two schema
versions exist:

- **v1** (``manifest.json``) lists image references as plain strings.
- **v2** (``bundle-manifest.json``, "enhanced") records the resolved
  registry digest of every image, the checksum of the bundled compose file
  and a ``files`` map of SHA-256 digests for every other bundle member.

Classes
-------
- ImageEntry   Frozen image name/digest pair used by v2.
- ManifestV1   Pydantic v2 model for ``schema: 1``.
- ManifestV2   Pydantic v2 model for ``schema: 2``.

Functions
---------
- load_manifest / parse_manifest   Schema-dispatching deserialisers.
- write_manifest                   Atomic serialisation.
"""
from __future__ import annotations

import datetime
import getpass
import json
import platform
import socket
from pathlib import Path
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from easy_splunk.compression import Compression
from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.integrity.atomic import atomic_write_text

MANIFEST_V1_FILENAME = "manifest.json"
MANIFEST_V2_FILENAME = "bundle-manifest.json"
MANIFEST_FILENAMES: tuple[str, ...] = (MANIFEST_V1_FILENAME, MANIFEST_V2_FILENAME)

# Legacy string tag used by older enhanced bundles.
_LEGACY_SCHEMA_TAGS: dict[str, int] = {"air-gapped-bundle-v2": 2}


# ---------------------------------------------------------------------------
# Provenance helpers
# ---------------------------------------------------------------------------


def utc_timestamp() -> str:
    """Return the current UTC time as ``YYYY-mm-ddTHH:MM:SSZ``."""
    return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def creator_identity() -> str:
    """Return ``<user>@<host>`` for the current process, ``unknown`` where not available."""
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    host = socket.gethostname() or "unknown"
    return f"{user}@{host}"


def host_architecture() -> str:
    """Return the machine architecture, e.g. ``x86_64``."""
    return platform.machine() or "unknown"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ImageEntry(BaseModel):
    """An image listed in a v2 manifest.

    Attributes
    ----------
    name:
        Image reference as requested (``repo:tag`` or ``repo@digest``).
    digest:
        Registry digest reported by the runtime, or ``"unknown"``.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    digest: str = "unknown"


def _plain_name(field_name: str, value: str) -> str:
    if not value or "/" in value or "\\" in value or value in (".", ".."):
        raise ValueError(f"{field_name} must be a plain file name, got {value!r}")
    return value


class _ManifestBase(BaseModel):
    """Fields shared by every manifest schema."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    created: str = Field(default_factory=utc_timestamp)
    created_by: str = Field(default_factory=creator_identity)
    runtime: str
    compression: Compression
    archive: str
    bundle_version: str = "0.0.0"
    architecture: str = Field(default_factory=host_architecture)
    includes: list[str] = Field(default_factory=list)

    @field_validator("archive")
    @classmethod
    def _archive_is_basename(cls, value: str) -> str:
        return _plain_name("archive", value)

    @field_validator("includes")
    @classmethod
    def _includes_are_basenames(cls, value: list[str]) -> list[str]:
        return [_plain_name("includes", name) for name in value]

    @model_validator(mode="after")
    def _compression_matches_archive(self) -> "_ManifestBase":
        try:
            actual = Compression.from_filename(self.archive)
        except InvalidInputError as exc:
            raise ValueError(str(exc)) from None
        if actual is not self.compression:
            raise ValueError(
                f"compression {self.compression.value!r} does not match archive "
                f"{self.archive!r}"
            )
        return self

    def to_json(self, indent: int = 2) -> str:
        """Serialise the manifest to a JSON string (``schema`` key included)."""
        raw = self.model_dump(mode="json", by_alias=True)
        ordered = {"schema": raw.pop("schema"), **raw}
        return json.dumps(ordered, indent=indent) + "\n"


class ManifestV1(_ManifestBase):
    """Flat manifest: ``images`` is a list of reference strings."""

    schema_version: Literal[1] = Field(default=1, alias="schema")
    images: list[str]

    def image_names(self) -> list[str]:
        return list(self.images)


class ManifestV2(_ManifestBase):
    """Enhanced manifest with image digests, compose checksum and file map.

    Attributes
    ----------
    compose_version:
        ``version`` declared by the bundled compose file.
    compose_checksum:
        SHA-256 of the bundled ``docker-compose.yml``; empty when absent.
    images:
        Ordered image entries with their resolved digests.
    files:
        ``{filename: sha256}`` for every bundle member except this manifest.
    """

    schema_version: Literal[2] = Field(default=2, alias="schema")
    compose_version: str = "3.8"
    compose_checksum: str = ""
    images: list[ImageEntry]
    files: dict[str, str] = Field(default_factory=dict)

    def image_names(self) -> list[str]:
        return [entry.name for entry in self.images]


Manifest = Union[ManifestV1, ManifestV2]

_SCHEMAS: dict[int, type[_ManifestBase]] = {1: ManifestV1, 2: ManifestV2}


# ---------------------------------------------------------------------------
# (De)serialisation
# ---------------------------------------------------------------------------


def parse_manifest(data: str) -> Manifest:
    """Deserialise a manifest, dispatching on its ``schema`` key.

    Raises
    ------
    InvalidInputError
        If *data* is not JSON, has an unknown schema, or does not match the
        schema's model.
    """
    try:
        raw = json.loads(data)
    except json.JSONDecodeError as exc:
        raise InvalidInputError(f"Manifest is not valid JSON: {exc}") from exc
    if not isinstance(raw, dict):
        raise InvalidInputError("Manifest must be a JSON object")

    schema = raw.get("schema")
    if isinstance(schema, str):
        schema = _LEGACY_SCHEMA_TAGS.get(schema, schema)
    if isinstance(schema, bool) or schema not in _SCHEMAS:
        raise InvalidInputError(f"Unsupported manifest schema: {raw.get('schema')!r}")
    raw["schema"] = schema

    try:
        return _SCHEMAS[schema].model_validate(raw)  # type: ignore[return-value]
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid schema {schema} manifest: {exc}") from exc


def load_manifest(path: Path) -> Manifest:
    """Read and deserialise the manifest at *path*.

    Raises
    ------
    BundleIOError
        If the file cannot be read.
    InvalidInputError
        If the content is not a valid manifest.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise BundleIOError(f"Cannot read manifest {path}: {exc}") from exc
    return parse_manifest(text)


def write_manifest(manifest: Manifest, path: Path) -> Path:
    """Atomically write *manifest* as JSON to *path* (mode 0644)."""
    return atomic_write_text(path, manifest.to_json(), mode=0o644)


def find_manifest(bundle_dir: Path) -> Path | None:
    """Return the manifest file inside *bundle_dir*, preferring the enhanced one."""
    for name in (MANIFEST_V2_FILENAME, MANIFEST_V1_FILENAME):
        candidate = bundle_dir / name
        if candidate.is_file():
            return candidate
    return None


__all__ = [
    "ImageEntry",
    "MANIFEST_FILENAMES",
    "MANIFEST_V1_FILENAME",
    "MANIFEST_V2_FILENAME",
    "Manifest",
    "ManifestV1",
    "ManifestV2",
    "creator_identity",
    "find_manifest",
    "host_architecture",
    "load_manifest",
    "parse_manifest",
    "utc_timestamp",
    "write_manifest",
]
