"""Archive compression modes and the external compressors behind them.

Compression is delegated to the standard command line tools so the
multi-threaded implementations (``pigz``, ``zstd -T0``) can be used when
they are installed.  Both gzip tools are run with ``-n`` so the output does
not embed the file name or timestamp and repeated runs over the same tar
produce identical bytes.
"""
from __future__ import annotations

import abc
import logging
import shutil
import subprocess
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from easy_splunk.errors import InvalidInputError, MissingDependencyError, RuntimeCommandError

logger = logging.getLogger(__name__)


class Compression(str, Enum):
    """Image archive encoding.

    Values
    ------
    GZIP:
        ``images.tar.gz`` (pigz when available, else gzip).
    ZSTD:
        ``images.tar.zst`` (requires the zstd tool).
    NONE:
        ``images.tar``, left uncompressed.
    """

    GZIP = "gzip"
    ZSTD = "zstd"
    NONE = "none"

    @property
    def suffix(self) -> str:
        """File suffix appended to ``.tar`` for this mode."""
        return _SUFFIXES[self]

    @classmethod
    def parse(cls, value: "str | Compression") -> "Compression":
        """Return the mode named by *value*.

        Raises
        ------
        InvalidInputError
            If *value* is not one of ``gzip``, ``zstd`` or ``none``.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidInputError(
                f"Unknown compression {value!r}. "
                f"Must be one of: {[mode.value for mode in cls]}"
            ) from None

    @classmethod
    def from_filename(cls, filename: str) -> "Compression":
        """Infer the mode from an archive file name.

        Raises
        ------
        InvalidInputError
            If the name does not end in ``.tar``, ``.tar.gz`` or ``.tar.zst``.
        """
        for mode in (cls.GZIP, cls.ZSTD):
            if filename.endswith(".tar" + mode.suffix):
                return mode
        if filename.endswith(".tar"):
            return cls.NONE
        raise InvalidInputError(f"Unrecognised archive extension: {filename!r}")


_SUFFIXES: dict[Compression, str] = {
    Compression.GZIP: ".gz",
    Compression.ZSTD: ".zst",
    Compression.NONE: "",
}


# ---------------------------------------------------------------------------
# Compressors
# ---------------------------------------------------------------------------


class Compressor(abc.ABC):
    """Turns an uncompressed tar into its final encoding."""

    mode: Compression

    @abc.abstractmethod
    def compress(self, source: Path, destination: Path) -> None:
        """Write the compressed form of *source* to *destination*.

        *source* is left in place; the caller owns its cleanup.
        """


class NullCompressor(Compressor):
    """Leaves the archive uncompressed."""

    mode = Compression.NONE

    def compress(self, source: Path, destination: Path) -> None:
        shutil.copyfile(source, destination)


class CommandCompressor(Compressor):
    """Pipes the archive through an external compression command.

    Parameters
    ----------
    mode:
        Compression mode this command produces.
    command:
        Argument vector; the source file path is appended and the
        compressed stream is read from stdout.
    """

    def __init__(self, mode: Compression, command: list[str]) -> None:
        self.mode = mode
        self._command = list(command)

    def __repr__(self) -> str:
        return f"CommandCompressor(mode={self.mode.value!r}, command={self._command!r})"

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def compress(self, source: Path, destination: Path) -> None:
        argv = [*self._command, str(source)]
        logger.debug("Compressing %s with: %s", source, " ".join(argv))
        with destination.open("wb") as out:
            result = subprocess.run(argv, stdout=out, stderr=subprocess.PIPE, check=False)
        if result.returncode != 0:
            stderr = result.stderr.decode("utf-8", errors="replace")
            raise RuntimeCommandError(
                f"{self._command[0]} failed with exit code {result.returncode}: {stderr.strip()}",
                command=argv,
                returncode=result.returncode,
                stderr=stderr,
            )


def get_compressor(
    mode: "Compression | str",
    which: Callable[[str], str | None] = shutil.which,
) -> Compressor:
    """Return the compressor for *mode* using the best available tool.

    Raises
    ------
    InvalidInputError
        If *mode* is not a known compression mode.
    MissingDependencyError
        If no tool able to produce *mode* is installed.
    """
    mode = Compression.parse(mode)

    if mode is Compression.NONE:
        return NullCompressor()

    if mode is Compression.GZIP:
        pigz = which("pigz")
        if pigz:
            return CommandCompressor(mode, [pigz, "-n", "-c"])
        gzip = which("gzip")
        if gzip:
            return CommandCompressor(mode, [gzip, "-n", "-c"])
        raise MissingDependencyError(
            "Neither pigz nor gzip is installed; cannot create a gzip archive.",
            hint="Install pigz or gzip, or use --compression none.",
        )

    zstd = which("zstd")
    if zstd:
        return CommandCompressor(mode, [zstd, "-q", "-T0", "-c"])
    raise MissingDependencyError(
        "zstd is not installed; cannot create a zstd archive.",
        hint="Install zstd, or use --compression gzip.",
    )


__all__ = [
    "CommandCompressor",
    "Compression",
    "Compressor",
    "NullCompressor",
    "get_compressor",
]
