"""Tests for easy_splunk.integrity — checksum records and atomic writes."""
from __future__ import annotations

import hashlib
import os
import stat
from pathlib import Path

import pytest

from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.integrity.atomic import atomic_write_bytes, atomic_write_text
from easy_splunk.integrity.checksum import (
    ChecksumRecord,
    checksum_path,
    compute_digest,
    is_valid_hex_digest,
    read_checksum_record,
    verify_checksum,
    write_checksum,
)


def _write(path: Path, data: bytes) -> Path:
    path.write_bytes(data)
    return path


# ---------------------------------------------------------------------------
# compute_digest
# ---------------------------------------------------------------------------


class TestComputeDigest:
    def test_matches_hashlib(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "a.bin", b"hello world")
        assert compute_digest(target) == hashlib.sha256(b"hello world").hexdigest()

    def test_large_file_streams_in_chunks(self, tmp_path: Path) -> None:
        data = os.urandom(200_000)
        target = _write(tmp_path / "big.bin", data)
        assert compute_digest(target) == hashlib.sha256(data).hexdigest()

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BundleIOError):
            compute_digest(tmp_path / "nope")

    def test_digest_is_lowercase_hex(self, tmp_path: Path) -> None:
        digest = compute_digest(_write(tmp_path / "x", b"x"))
        assert is_valid_hex_digest(digest)


# ---------------------------------------------------------------------------
# write_checksum / read_checksum_record
# ---------------------------------------------------------------------------


class TestWriteChecksum:
    def test_sidecar_format(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "images.tar", b"payload")
        sidecar = write_checksum(target)
        assert sidecar == tmp_path / "images.tar.sha256"
        expected = hashlib.sha256(b"payload").hexdigest()
        assert sidecar.read_text() == f"{expected}  images.tar\n"

    def test_sidecar_mode_is_0644(self, tmp_path: Path) -> None:
        sidecar = write_checksum(_write(tmp_path / "f", b"1"))
        assert stat.S_IMODE(sidecar.stat().st_mode) == 0o644

    def test_rewrite_is_idempotent(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"same")
        first = write_checksum(target).read_bytes()
        second = write_checksum(target).read_bytes()
        assert first == second

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BundleIOError):
            write_checksum(tmp_path / "absent")
        assert not checksum_path(tmp_path / "absent").exists()


class TestReadChecksumRecord:
    def test_parses_text_mode_record(self, tmp_path: Path) -> None:
        digest = "a" * 64
        sidecar = tmp_path / "f.sha256"
        sidecar.write_text(f"{digest}  f\n")
        assert read_checksum_record(sidecar) == ChecksumRecord(digest=digest, filename="f")

    def test_parses_binary_mode_record(self, tmp_path: Path) -> None:
        sidecar = tmp_path / "f.sha256"
        sidecar.write_text(f"{'b' * 64} *f\n")
        assert read_checksum_record(sidecar).filename == "f"

    @pytest.mark.parametrize("content", ["", "not a checksum\n", f"{'a' * 63}  f\n"])
    def test_malformed_record_raises(self, tmp_path: Path, content: str) -> None:
        sidecar = tmp_path / "f.sha256"
        sidecar.write_text(content)
        with pytest.raises(InvalidInputError):
            read_checksum_record(sidecar)


# ---------------------------------------------------------------------------
# verify_checksum
# ---------------------------------------------------------------------------


class TestVerifyChecksum:
    def test_round_trip_verifies(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        write_checksum(target)
        assert verify_checksum(target) is True

    def test_modified_file_fails(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        write_checksum(target)
        target.write_bytes(b"tampered")
        assert verify_checksum(target) is False

    def test_tampered_sidecar_fails(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        checksum_path(target).write_text(f"{'0' * 64}  f\n")
        assert verify_checksum(target) is False

    def test_uppercase_digest_does_not_match(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        digest = compute_digest(target).upper()
        checksum_path(target).write_text(f"{digest}  f\n")
        assert verify_checksum(target) is False

    def test_missing_sidecar_returns_false(self, tmp_path: Path) -> None:
        assert verify_checksum(_write(tmp_path / "f", b"data")) is False

    def test_missing_file_returns_false(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        write_checksum(target)
        target.unlink()
        assert verify_checksum(target) is False

    def test_malformed_sidecar_returns_false(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        checksum_path(target).write_text("garbage\n")
        assert verify_checksum(target) is False

    def test_record_for_other_file_fails(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        checksum_path(target).write_text(f"{compute_digest(target)}  g\n")
        assert verify_checksum(target) is False

    def test_record_with_directory_prefix_verifies(self, tmp_path: Path) -> None:
        target = _write(tmp_path / "f", b"data")
        checksum_path(target).write_text(f"{compute_digest(target)}  dist/f\n")
        assert verify_checksum(target) is True


# ---------------------------------------------------------------------------
# atomic writes
# ---------------------------------------------------------------------------


class TestAtomicWrite:
    def test_writes_bytes_with_mode(self, tmp_path: Path) -> None:
        target = atomic_write_bytes(tmp_path / "secret", b"s3cret", mode=0o600)
        assert target.read_bytes() == b"s3cret"
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_replaces_existing_file(self, tmp_path: Path) -> None:
        target = tmp_path / "f.txt"
        target.write_text("old")
        atomic_write_text(target, "new")
        assert target.read_text() == "new"

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        atomic_write_text(tmp_path / "f.txt", "content")
        assert [p.name for p in tmp_path.iterdir()] == ["f.txt"]

    def test_missing_directory_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BundleIOError):
            atomic_write_text(tmp_path / "no" / "such" / "dir" / "f.txt", "x")
