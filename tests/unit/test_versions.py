"""Tests for easy_splunk.versions — versions file parsing and image collection."""
from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from easy_splunk.errors import BundleIOError, InvalidInputError
from easy_splunk.versions.loader import (
    collect_images,
    image_ref,
    load_versions_file,
    parse_versions_file,
    validate_versions,
)

DIGEST = "sha256:" + "0123456789abcdef" * 4


def _versions(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "versions.env"
    path.write_text(text, encoding="utf-8")
    return path


class TestParseVersionsFile:
    def test_interpolates_earlier_values(self, versions_file: Path) -> None:
        values = parse_versions_file(versions_file)
        assert values["SPLUNK_IMAGE"] == "splunk/splunk:9.1.2"

    def test_does_not_touch_environ(self, versions_file: Path) -> None:
        parse_versions_file(versions_file)
        assert "BUSYBOX_IMAGE" not in os.environ

    def test_quoted_values_and_comments(self, tmp_path: Path) -> None:
        path = _versions(tmp_path, '# header\nexport A_IMAGE="app:1.0"  # trailing\nB=\'x y\'\n')
        assert parse_versions_file(path) == {"A_IMAGE": "app:1.0", "B": "x y"}

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(BundleIOError):
            parse_versions_file(tmp_path / "absent.env")

    def test_syntax_error_reports_line(self, tmp_path: Path) -> None:
        path = _versions(tmp_path, "A_IMAGE=app:1\nNOT A VALID LINE=\n")
        with pytest.raises(InvalidInputError) as excinfo:
            parse_versions_file(path)
        assert "line 2" in str(excinfo.value)


class TestValidateVersions:
    def test_valid_entries(self) -> None:
        values = {
            "SPLUNK_DIGEST": DIGEST,
            "SPLUNK_VERSION": "9.1.2",
            "APP_VERSION": "v1.2.3-rc.1",
            "NAME_VERSION": "latest",
        }
        assert validate_versions(values) == []

    def test_bad_digest(self) -> None:
        errors = validate_versions({"SPLUNK_DIGEST": "sha256:abc"})
        assert len(errors) == 1
        assert "SPLUNK_DIGEST" in errors[0]

    def test_bad_semver(self) -> None:
        assert validate_versions({"SPLUNK_VERSION": "9.1.2.3"})

    def test_load_rejects_invalid_file(self, tmp_path: Path) -> None:
        path = _versions(tmp_path, "A_IMAGE=app:1\nA_DIGEST=nope\n")
        with pytest.raises(InvalidInputError):
            load_versions_file(path)


class TestCollectImages:
    def test_order_dedup_and_empty_values(self, versions_file: Path) -> None:
        assert collect_images(versions_file) == ["splunk/splunk:9.1.2", "busybox:latest"]

    def test_duplicates_collapse(self, tmp_path: Path) -> None:
        path = _versions(tmp_path, "A_IMAGE=x\nB_IMAGE=y\nC_IMAGE=x\n")
        assert collect_images(path) == ["x", "y"]

    def test_non_image_keys_ignored(self, tmp_path: Path) -> None:
        path = _versions(tmp_path, "IMAGE_TAG=ignored\nA_IMAGES=also\nA_IMAGE=kept\n")
        assert collect_images(path) == ["kept"]

    def test_no_images(self, tmp_path: Path) -> None:
        assert collect_images(_versions(tmp_path, "FOO=bar\n")) == []


class TestImageRef:
    def test_prefers_digest(self) -> None:
        assert image_ref("busybox", digest=DIGEST, tag="1.36") == f"busybox@{DIGEST}"

    def test_tag_fallback_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="easy_splunk"):
            assert image_ref("busybox", digest="bogus", tag="1.36") == "busybox:1.36"
        assert "mutable tag" in caplog.text

    def test_requires_repo(self) -> None:
        with pytest.raises(InvalidInputError):
            image_ref("", tag="1")

    def test_requires_digest_or_tag(self) -> None:
        with pytest.raises(InvalidInputError):
            image_ref("busybox")
