"""Tests for CLI commands in easy_splunk.cli.main.

Uses Click's CliRunner for full in-process invocation; the container
runtime is replaced with the in-memory fake from conftest.
"""
from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from easy_splunk.cli import main as cli_main
from easy_splunk.cli.main import cli
from easy_splunk.errors import MissingDependencyError
from easy_splunk.integrity.checksum import checksum_path


# ---------------------------------------------------------------------------
# Shared fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture()
def env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> dict[str, str]:
    for name in ("CONTAINER_RUNTIME", "BUNDLE_VERSION", "APP_VERSION"):
        monkeypatch.delenv(name, raising=False)
    return {
        "TARBALL_COMPRESSION": "none",
        "EASY_SPLUNK_SECRETS_DIR": str(tmp_path / "secrets"),
        "EASY_SPLUNK_VERSIONS_FILE": str(tmp_path / "absent.env"),
        "EASY_SPLUNK_RETRY_BASE_DELAY": "0",
        "EASY_SPLUNK_RETRY_MAX_DELAY": "0",
    }


@pytest.fixture()
def runtime(fake_runtime, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(cli_main, "detect_runtime", lambda preferred=None: fake_runtime)
    return fake_runtime


@pytest.fixture()
def bundle(tmp_path: Path, runner: CliRunner, env: dict[str, str], runtime) -> Path:
    path = tmp_path / "bundle"
    result = runner.invoke(
        cli, ["create", str(path), "-i", "busybox:latest", "-i", "alpine:3.19"], env=env
    )
    assert result.exit_code == 0, result.output
    return path


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


class TestVersionCommand:
    def test_version_prints_package_name(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert result.exit_code == 0
        assert "easy-splunk-airgap" in result.output

    def test_version_contains_version_string(self, runner: CliRunner) -> None:
        result = runner.invoke(cli, ["version"])
        assert any(ch.isdigit() for ch in result.output)


# ---------------------------------------------------------------------------
# create / create-from-versions
# ---------------------------------------------------------------------------


class TestCreateCommand:
    def test_creates_bundle(self, bundle: Path) -> None:
        assert (bundle / "images.tar").is_file()
        assert (bundle / "images.tar.sha256").is_file()
        assert (bundle / "manifest.json").is_file()

    def test_json_output(self, tmp_path: Path, runner, env, runtime) -> None:
        result = runner.invoke(
            cli,
            ["create", str(tmp_path / "b"), "-i", "busybox:latest", "--json-output"],
            env=env,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["schema"] == 1
        assert data["images"] == ["busybox:latest"]
        assert data["archive"].endswith("images.tar")

    def test_image_option_required(self, tmp_path: Path, runner, env, runtime) -> None:
        result = runner.invoke(cli, ["create", str(tmp_path / "b")], env=env)
        assert result.exit_code == 2

    def test_compose_file_makes_enhanced_bundle(
        self, tmp_path: Path, runner, env, runtime
    ) -> None:
        compose = tmp_path / "compose.yml"
        compose.write_text("version: '3.8'\nservices: {}\n")
        result = runner.invoke(
            cli,
            [
                "create", str(tmp_path / "b"),
                "-i", "busybox:latest",
                "--compose-file", str(compose),
                "--json-output",
            ],
            env=env,
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["schema"] == 2
        assert (tmp_path / "b" / "bundle-manifest.json").is_file()

    def test_runtime_failure_maps_to_exit_code(
        self, tmp_path: Path, runner, env, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def no_runtime(preferred=None):
            raise MissingDependencyError("no runtime", hint="install podman")

        monkeypatch.setattr(cli_main, "detect_runtime", no_runtime)
        result = runner.invoke(cli, ["create", str(tmp_path / "b"), "-i", "x:1"], env=env)
        assert result.exit_code == 3
        assert "install podman" in result.output

    def test_invalid_env_maps_to_exit_code(self, tmp_path: Path, runner, env, runtime) -> None:
        env = {**env, "EASY_SPLUNK_RETRY_ATTEMPTS": "lots"}
        result = runner.invoke(cli, ["create", str(tmp_path / "b"), "-i", "x:1"], env=env)
        assert result.exit_code == 2


class TestCreateFromVersionsCommand:
    def test_uses_versions_images(
        self, tmp_path: Path, runner, env, runtime, versions_file: Path
    ) -> None:
        result = runner.invoke(
            cli,
            ["create-from-versions", str(tmp_path / "b"), str(versions_file), "--json-output"],
            env=env,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["images"] == ["splunk/splunk:9.1.2", "busybox:latest"]
        assert data["secrets_snapshot"].endswith("versions.env")

    def test_extra_images_are_merged(
        self, tmp_path: Path, runner, env, runtime, versions_file: Path
    ) -> None:
        result = runner.invoke(
            cli,
            [
                "create-from-versions", str(tmp_path / "b"), str(versions_file),
                "-i", "alpine:3.19",
                "-i", "busybox:latest",
                "--json-output",
            ],
            env=env,
        )
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["images"] == [
            "splunk/splunk:9.1.2",
            "busybox:latest",
            "alpine:3.19",
        ]

    def test_package_and_include(
        self, tmp_path: Path, runner, env, runtime, versions_file: Path
    ) -> None:
        config = tmp_path / "config"
        config.mkdir()
        (config / "app.conf").write_text("[app]\n")
        result = runner.invoke(
            cli,
            [
                "create-from-versions", str(tmp_path / "out" / "b"), str(versions_file),
                "--include", str(config),
                "--package",
                "--name", "app-bundle",
                "--json-output",
            ],
            env=env,
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["includes"] == ["config"]
        assert data["distributable"] == str(tmp_path / "out" / "app-bundle.tar.gz")
        assert checksum_path(tmp_path / "out" / "app-bundle.tar.gz").is_file()

    def test_no_images_is_invalid_input(self, tmp_path: Path, runner, env, runtime) -> None:
        empty = tmp_path / "empty.env"
        empty.write_text("FOO=bar\n")
        result = runner.invoke(
            cli, ["create-from-versions", str(tmp_path / "b"), str(empty)], env=env
        )
        assert result.exit_code == 2
        assert not (tmp_path / "b").exists()


# ---------------------------------------------------------------------------
# load / verify
# ---------------------------------------------------------------------------


class TestLoadCommand:
    def test_load(self, bundle: Path, runner, env, runtime) -> None:
        result = runner.invoke(cli, ["load", str(bundle)], env=env)
        assert result.exit_code == 0, result.output
        assert runtime.count("load") == 1

    def test_tampered_sidecar_exit_code(self, bundle: Path, runner, env, runtime) -> None:
        checksum_path(bundle / "images.tar").write_text(f"{'0' * 64}  images.tar\n")
        result = runner.invoke(cli, ["load", str(bundle)], env=env)
        assert result.exit_code == 5
        assert runtime.count("load") == 0

    def test_require_checksum_flag(self, bundle: Path, runner, env, runtime) -> None:
        checksum_path(bundle / "images.tar").unlink()
        result = runner.invoke(cli, ["load", str(bundle), "--require-checksum"], env=env)
        assert result.exit_code == 5

    def test_missing_bundle(self, tmp_path: Path, runner, env, runtime) -> None:
        result = runner.invoke(cli, ["load", str(tmp_path / "nope")], env=env)
        assert result.exit_code == 4


class TestVerifyCommand:
    def test_verify_ok(self, bundle: Path, runner, env, runtime) -> None:
        result = runner.invoke(cli, ["verify", str(bundle), "--json-output"], env=env)
        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["ok"] is True

    def test_verify_reports_missing(self, bundle: Path, runner, env, runtime) -> None:
        runtime.store.discard("alpine:3.19")
        result = runner.invoke(cli, ["verify", str(bundle), "--json-output"], env=env)
        assert result.exit_code == 1
        assert json.loads(result.stdout)["missing_images"] == ["alpine:3.19"]

    def test_verify_table_output(self, bundle: Path, runner, env, runtime) -> None:
        result = runner.invoke(cli, ["verify", str(bundle)], env=env)
        assert result.exit_code == 0
        assert "Bundle verified" in result.output


# ---------------------------------------------------------------------------
# images / checksum / decrypt-secrets
# ---------------------------------------------------------------------------


class TestImagesCommand:
    def test_lists_images(self, runner, env, versions_file: Path) -> None:
        result = runner.invoke(cli, ["images", str(versions_file)], env=env)
        assert result.exit_code == 0
        assert result.stdout.splitlines() == ["splunk/splunk:9.1.2", "busybox:latest"]

    def test_json_output(self, runner, env, versions_file: Path) -> None:
        result = runner.invoke(cli, ["images", str(versions_file), "--json-output"], env=env)
        assert json.loads(result.stdout) == {"images": ["splunk/splunk:9.1.2", "busybox:latest"]}

    def test_missing_file(self, tmp_path: Path, runner, env) -> None:
        result = runner.invoke(cli, ["images", str(tmp_path / "absent.env")], env=env)
        assert result.exit_code == 4


class TestChecksumCommand:
    def test_write_then_verify(self, tmp_path: Path, runner, env) -> None:
        target = tmp_path / "file.bin"
        target.write_bytes(b"data")
        assert runner.invoke(cli, ["checksum", str(target), "--write"], env=env).exit_code == 0
        assert checksum_path(target).is_file()
        assert runner.invoke(cli, ["checksum", str(target)], env=env).exit_code == 0

    def test_mismatch_exit_code(self, tmp_path: Path, runner, env) -> None:
        target = tmp_path / "file.bin"
        target.write_bytes(b"data")
        checksum_path(target).write_text(f"{'0' * 64}  file.bin\n")
        assert runner.invoke(cli, ["checksum", str(target)], env=env).exit_code == 5


class TestPackageCommands:
    def test_package_then_unpack(self, tmp_path: Path, bundle: Path, runner, env) -> None:
        packed = runner.invoke(
            cli, ["package", str(bundle), "-o", str(tmp_path / "transfer")], env=env
        )
        assert packed.exit_code == 0, packed.output
        archive = tmp_path / "transfer" / "bundle.tar.gz"
        assert packed.stdout.strip() == str(archive)

        unpacked = runner.invoke(
            cli, ["unpack", str(archive), "-d", str(tmp_path / "target")], env=env
        )
        assert unpacked.exit_code == 0, unpacked.output
        assert (tmp_path / "target" / "bundle" / "images.tar").is_file()

    def test_unpack_tampered_archive(self, tmp_path: Path, bundle: Path, runner, env) -> None:
        runner.invoke(cli, ["package", str(bundle)], env=env)
        archive = bundle.parent / "bundle.tar.gz"
        with archive.open("ab") as fh:
            fh.write(b"\0")
        result = runner.invoke(
            cli, ["unpack", str(archive), "-d", str(tmp_path / "target")], env=env
        )
        assert result.exit_code == 5


class TestDecryptSecretsCommand:
    def test_decrypts_snapshot(
        self, tmp_path: Path, runner, env, runtime, versions_file: Path
    ) -> None:
        bundle = tmp_path / "b"
        created = runner.invoke(
            cli, ["create-from-versions", str(bundle), str(versions_file)], env=env
        )
        assert created.exit_code == 0, created.output

        output = tmp_path / "plain.env"
        result = runner.invoke(
            cli, ["decrypt-secrets", str(bundle / "versions.env"), "-o", str(output)], env=env
        )
        assert result.exit_code == 0, result.output
        assert output.read_bytes() == versions_file.read_bytes()

    def test_to_stdout(self, tmp_path: Path, runner, env, runtime, versions_file) -> None:
        bundle = tmp_path / "b"
        runner.invoke(cli, ["create-from-versions", str(bundle), str(versions_file)], env=env)
        result = runner.invoke(cli, ["decrypt-secrets", str(bundle / "versions.env")], env=env)
        assert result.exit_code == 0
        assert "BUSYBOX_IMAGE=busybox:latest" in result.stdout
