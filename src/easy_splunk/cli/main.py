"""CLI entry point for easy-splunk-airgap.

Invoked as::

    easy-splunk-airgap [OPTIONS] COMMAND [ARGS]...

or, during development::

    python -m easy_splunk.cli.main

Commands
--------
- ``create``                Build a bundle from explicit ``--image`` refs.
- ``create-from-versions``  Build a bundle from a versions file.
- ``load``                  Verify and load a bundle's images.
- ``verify``                Check archive integrity and image presence.
- ``images``                List the images a versions file declares.
- ``checksum``              Write or verify a ``.sha256`` record.
- ``decrypt-secrets``       Decrypt a bundle's ``versions.env`` snapshot.
- ``package``               Pack a bundle directory into a checksummed ``.tar.gz``.
- ``unpack``                Verify and extract a packed bundle.
"""
from __future__ import annotations

import dataclasses
import functools
import json
import logging
import signal
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from easy_splunk.compression import Compression
from easy_splunk.config import BundleSettings
from easy_splunk.errors import AirGapError, ChecksumMismatchError
from easy_splunk.runtime.client import SUPPORTED_RUNTIMES, ContainerRuntime
from easy_splunk.runtime.detection import detect_runtime

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_COMPRESSION_CHOICE = click.Choice([mode.value for mode in Compression], case_sensitive=False)


def _packaging_options(func: F) -> F:
    """Attach the --include, --package and --name options shared by create commands."""
    func = click.option(
        "--name",
        "package_name",
        default=None,
        help="Base name of the packed archive. Default: the bundle directory name.",
    )(func)
    func = click.option(
        "--package",
        is_flag=True,
        default=False,
        help="Also pack the bundle into <name>.tar.gz (+ .sha256) next to it.",
    )(func)
    func = click.option(
        "--include",
        "includes",
        multiple=True,
        type=click.Path(path_type=Path),
        help="Extra file or directory to copy into the bundle. Repeatable.",
    )(func)
    return func


# ---------------------------------------------------------------------------
# Plumbing
# ---------------------------------------------------------------------------


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


def _terminate(signum: int, frame: object) -> None:
    raise SystemExit(128 + signum)


def _install_signal_handlers() -> None:
    try:
        signal.signal(signal.SIGTERM, _terminate)
    except ValueError:
        # Only possible from the main thread.
        logger.debug("SIGTERM handler not installed (not in main thread)")


def handle_errors(func: F) -> F:
    """Print :class:`AirGapError` failures and exit with their exit code."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except AirGapError as exc:
            err_console.print(f"[bold red]Error:[/bold red] {exc.message}")
            if exc.hint:
                err_console.print(f"[dim]Hint:[/dim] {exc.hint}")
            sys.exit(exc.exit_code)

    return wrapper  # type: ignore[return-value]


def _settings(ctx: click.Context, compression: str | None = None) -> BundleSettings:
    settings: BundleSettings = ctx.obj["settings"]
    if compression is not None:
        settings = dataclasses.replace(settings, compression=Compression.parse(compression))
    return settings


def _runtime(settings: BundleSettings) -> ContainerRuntime:
    runtime = detect_runtime(settings.runtime)
    logger.debug("Using container runtime: %s", runtime.name)
    return runtime


def _print_result(result: Any, json_output: bool) -> None:
    if json_output:
        output = {
            "bundle_dir": str(result.bundle_dir),
            "archive": str(result.archive_path),
            "manifest": str(result.manifest_path),
            "schema": result.manifest.schema_version,
            "images": result.images,
            "secrets_snapshot": str(result.secrets_snapshot) if result.secrets_snapshot else None,
            "audit_findings": len(result.audit.findings) if result.audit else 0,
            "members": result.members,
            "includes": result.includes,
            "distributable": str(result.distributable) if result.distributable else None,
        }
        console.print_json(json.dumps(output, indent=2))
        return

    console.print(
        Panel(
            f"[bold green]{result.bundle_dir}[/bold green]\n"
            f"Archive:  {result.archive_path.name}\n"
            f"Manifest: {result.manifest_path.name} (schema {result.manifest.schema_version})",
            title="Bundle created",
            expand=False,
        )
    )
    if result.distributable is not None:
        console.print(
            f"Transfer BOTH files: {result.distributable} and "
            f"{result.distributable.name}.sha256",
            soft_wrap=True,
        )
    table = Table(title="Images", show_header=True)
    table.add_column("#", style="dim")
    table.add_column("Reference", style="cyan")
    for index, ref in enumerate(result.images, start=1):
        table.add_row(str(index), ref)
    console.print(table)

    if result.audit is not None and result.audit.findings:
        console.print("\n[bold yellow]Security audit findings:[/bold yellow]")
        for finding in result.audit.findings:
            console.print(
                f"  [yellow]![/yellow] [{finding.severity.value}] {finding.path}: "
                f"{finding.description}"
            )


# ---------------------------------------------------------------------------
# Group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="easy-splunk-airgap")
@click.option(
    "--runtime",
    type=click.Choice(list(SUPPORTED_RUNTIMES)),
    default=None,
    help="Container runtime to use. Default: $CONTAINER_RUNTIME or auto-detect.",
)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
@handle_errors
def cli(ctx: click.Context, runtime: str | None, verbose: bool) -> None:
    """Build, transfer and load air-gapped container image bundles"""
    _configure_logging(verbose)
    _install_signal_handlers()
    settings = BundleSettings.from_env()
    if runtime is not None:
        settings = dataclasses.replace(settings, runtime=runtime)
    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


# ---------------------------------------------------------------------------
# version
# ---------------------------------------------------------------------------


@cli.command(name="version")
def version_command() -> None:
    """Show detailed version information."""
    from easy_splunk import __version__

    console.print(f"[bold]easy-splunk-airgap[/bold] v{__version__}")


# ---------------------------------------------------------------------------
# create
# ---------------------------------------------------------------------------


@cli.command(name="create")
@click.argument("bundle_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--image",
    "-i",
    "images",
    multiple=True,
    required=True,
    help="Image reference to include. Repeatable.",
)
@click.option(
    "--compression",
    "-c",
    type=_COMPRESSION_CHOICE,
    default=None,
    help="Archive compression. Default: $TARBALL_COMPRESSION or gzip.",
)
@click.option(
    "--compose-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Compose file to bundle; produces an enhanced (schema 2) bundle.",
)
@click.option(
    "--versions-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Versions file to snapshot (encrypted) into the bundle.",
)
@_packaging_options
@click.option("--json-output", is_flag=True, default=False, help="Output results as JSON.")
@click.pass_context
@handle_errors
def create_command(
    ctx: click.Context,
    bundle_dir: Path,
    images: tuple[str, ...],
    compression: str | None,
    compose_file: Path | None,
    versions_file: Path | None,
    includes: tuple[Path, ...],
    package: bool,
    package_name: str | None,
    json_output: bool,
) -> None:
    """Create a bundle from explicit image references.

    Examples:

    \b
        easy-splunk-airgap create dist/bundle -i splunk/splunk:9.1.2 -i busybox:latest
        easy-splunk-airgap create dist/bundle -i busybox:latest --compression zstd
        easy-splunk-airgap create dist/bundle -i busybox:latest --include config --package
    """
    from easy_splunk.bundler.assembler import BundleAssembler
    from easy_splunk.bundler.distributable import package_bundle

    settings = _settings(ctx, compression)
    assembler = BundleAssembler(_runtime(settings), settings)
    if compose_file is not None:
        result = assembler.create_enhanced_bundle(
            bundle_dir,
            list(images),
            compose_file,
            versions_file=versions_file,
            includes=list(includes),
        )
    else:
        result = assembler.create_bundle(
            bundle_dir, list(images), versions_file=versions_file, includes=list(includes)
        )
    if package:
        result.distributable = package_bundle(bundle_dir, name=package_name)
    _print_result(result, json_output)


# ---------------------------------------------------------------------------
# create-from-versions
# ---------------------------------------------------------------------------


@cli.command(name="create-from-versions")
@click.argument("bundle_dir", type=click.Path(file_okay=False, path_type=Path))
@click.argument("versions_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--image",
    "-i",
    "extra_images",
    multiple=True,
    help="Extra image reference added to the declared ones. Repeatable.",
)
@click.option(
    "--compression",
    "-c",
    type=_COMPRESSION_CHOICE,
    default=None,
    help="Archive compression. Default: $TARBALL_COMPRESSION or gzip.",
)
@click.option(
    "--compose-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Compose file to bundle; produces an enhanced (schema 2) bundle.",
)
@_packaging_options
@click.option("--json-output", is_flag=True, default=False, help="Output results as JSON.")
@click.pass_context
@handle_errors
def create_from_versions_command(
    ctx: click.Context,
    bundle_dir: Path,
    versions_file: Path,
    extra_images: tuple[str, ...],
    compression: str | None,
    compose_file: Path | None,
    includes: tuple[Path, ...],
    package: bool,
    package_name: str | None,
    json_output: bool,
) -> None:
    """Create a bundle with every *_IMAGE declared in VERSIONS_FILE.

    Images given with --image are added after the declared ones; duplicates
    are bundled once.
    """
    from easy_splunk.convenience import create_bundle_from_versions

    settings = _settings(ctx, compression)
    result = create_bundle_from_versions(
        bundle_dir,
        versions_file,
        runtime=_runtime(settings),
        settings=settings,
        compose_file=compose_file,
        extra_images=extra_images,
        includes=list(includes),
        package=package,
        package_name=package_name,
    )
    _print_result(result, json_output)


# ---------------------------------------------------------------------------
# load
# ---------------------------------------------------------------------------


@cli.command(name="load")
@click.argument("bundle_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--require-checksum",
    is_flag=True,
    default=False,
    help="Refuse archives without a .sha256 record.",
)
@click.option(
    "--verify-after-load",
    is_flag=True,
    default=False,
    help="List runtime images once the load completes.",
)
@click.pass_context
@handle_errors
def load_command(
    ctx: click.Context,
    bundle_dir: Path,
    require_checksum: bool,
    verify_after_load: bool,
) -> None:
    """Verify and load the image archive in BUNDLE_DIR."""
    from easy_splunk.bundler.loader import BundleLoader

    settings = _settings(ctx)
    overrides: dict[str, bool] = {}
    if require_checksum:
        overrides["require_checksum"] = True
    if verify_after_load:
        overrides["verify_after_load"] = True
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    archive = BundleLoader(_runtime(settings), settings).load_bundle(bundle_dir)
    console.print(f"[bold green]Loaded[/bold green] {archive}")


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


@cli.command(name="verify")
@click.argument("bundle_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option("--json-output", is_flag=True, default=False, help="Output results as JSON.")
@click.pass_context
@handle_errors
def verify_command(ctx: click.Context, bundle_dir: Path, json_output: bool) -> None:
    """Check archive checksum and image presence for BUNDLE_DIR.

    Exits 1 when anything is missing or modified.
    """
    from easy_splunk.bundler.loader import BundleLoader

    settings = _settings(ctx)
    report = BundleLoader(_runtime(settings), settings).verify_bundle(bundle_dir)

    if json_output:
        output = {
            "bundle_dir": str(report.bundle_dir),
            "archive": str(report.archive),
            "checksum_ok": report.checksum_ok,
            "present_images": report.present_images,
            "missing_images": report.missing_images,
            "file_failures": report.file_failures,
            "ok": report.ok,
        }
        console.print_json(json.dumps(output, indent=2))
    else:
        table = Table(title="Image presence", show_header=True)
        table.add_column("Image", style="cyan")
        table.add_column("Status")
        for ref in report.present_images:
            table.add_row(ref, "[green]present[/green]")
        for ref in report.missing_images:
            table.add_row(ref, "[red]missing[/red]")
        console.print(table)
        console.print(
            f"Archive checksum: {'[green]ok[/green]' if report.checksum_ok else '[red]FAILED[/red]'}"
        )
        for name in report.file_failures:
            console.print(f"  [red]x[/red] modified or missing: {name}")
        if report.ok:
            console.print("[bold green]Bundle verified.[/bold green]")
        else:
            console.print(
                f"[bold red]Verification failed:[/bold red] "
                f"{len(report.missing_images)} missing image(s), "
                f"{len(report.file_failures)} file failure(s)"
            )
    if not report.ok:
        sys.exit(1)


# ---------------------------------------------------------------------------
# images
# ---------------------------------------------------------------------------


@cli.command(name="images")
@click.argument("versions_file", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--json-output", is_flag=True, default=False, help="Output results as JSON.")
@handle_errors
def images_command(versions_file: Path, json_output: bool) -> None:
    """List the images declared by *_IMAGE keys in VERSIONS_FILE."""
    from easy_splunk.versions.loader import collect_images

    images = collect_images(versions_file)
    if json_output:
        console.print_json(json.dumps({"images": images}))
        return
    if not images:
        console.print("[yellow]No images declared.[/yellow]")
        return
    for ref in images:
        click.echo(ref)


# ---------------------------------------------------------------------------
# checksum
# ---------------------------------------------------------------------------


@cli.command(name="checksum")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--write", "write_record", is_flag=True, default=False, help="Write the .sha256 record.")
@handle_errors
def checksum_command(path: Path, write_record: bool) -> None:
    """Verify PATH against its .sha256 record, or write one with --write."""
    from easy_splunk.integrity.checksum import verify_checksum, write_checksum

    if write_record:
        sidecar = write_checksum(path)
        console.print(f"[bold green]Wrote[/bold green] {sidecar}", soft_wrap=True)
        return
    if not verify_checksum(path):
        raise ChecksumMismatchError(f"Checksum verification failed for {path}", path=path)
    console.print(f"[bold green]OK[/bold green] {path}", soft_wrap=True)


# ---------------------------------------------------------------------------
# decrypt-secrets
# ---------------------------------------------------------------------------


@cli.command(name="decrypt-secrets")
@click.argument("path", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write plaintext here (mode 0600) instead of stdout.",
)
@click.pass_context
@handle_errors
def decrypt_secrets_command(ctx: click.Context, path: Path, output: Path | None) -> None:
    """Decrypt an encrypted versions.env snapshot."""
    from easy_splunk.integrity.atomic import atomic_write_bytes
    from easy_splunk.security.secrets import SECRET_FILE_MODE, SecretsVault

    settings = _settings(ctx)
    plaintext = SecretsVault(settings.secrets_dir).decrypt_file(path)
    if output is None:
        click.echo(plaintext.decode("utf-8"), nl=False)
        return
    atomic_write_bytes(output, plaintext, mode=SECRET_FILE_MODE)
    err_console.print(f"[bold green]Decrypted[/bold green] {path} -> {output}")


# ---------------------------------------------------------------------------
# package / unpack
# ---------------------------------------------------------------------------


@cli.command(name="package")
@click.argument("bundle_dir", type=click.Path(file_okay=False, path_type=Path))
@click.option(
    "--name",
    "package_name",
    default=None,
    help="Archive base name. Default: the bundle directory name.",
)
@click.option(
    "--output-dir",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory for the archive. Default: the bundle's parent.",
)
@handle_errors
def package_command(bundle_dir: Path, package_name: str | None, output_dir: Path | None) -> None:
    """Pack BUNDLE_DIR into <name>.tar.gz with a .sha256 record."""
    from easy_splunk.bundler.distributable import package_bundle

    archive = package_bundle(bundle_dir, name=package_name, output_dir=output_dir)
    click.echo(str(archive))
    err_console.print(f"Transfer BOTH files: {archive.name} and {archive.name}.sha256")


@cli.command(name="unpack")
@click.argument("archive", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--dest",
    "-d",
    "destination",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory to extract into.",
)
@handle_errors
def unpack_command(archive: Path, destination: Path) -> None:
    """Verify ARCHIVE against its .sha256 record and extract the bundle."""
    from easy_splunk.bundler.distributable import unpack_bundle

    bundle_dir = unpack_bundle(archive, destination)
    click.echo(str(bundle_dir))


if __name__ == "__main__":
    cli()
