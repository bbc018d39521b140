"""Image references and the image puller.

An image reference is ``repo[:tag]``, ``repo@sha256:<hex>`` or both
(``repo:tag@sha256:<hex>``).  When a digest is present it is the address
used to pull the image; tags are mutable and only a hint.
"""
from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from easy_splunk.errors import InvalidInputError
from easy_splunk.retry import RetryPolicy, retry_call
from easy_splunk.runtime.client import ContainerRuntime

logger = logging.getLogger(__name__)

_DIGEST_PATTERN = re.compile(r"^sha256:[a-f0-9]{64}$")


def is_valid_digest(value: str) -> bool:
    """Return True if *value* is ``sha256:`` followed by 64 lowercase hex chars."""
    return bool(_DIGEST_PATTERN.match(value))


@dataclass(frozen=True)
class ImageReference:
    """A parsed container image reference.

    Attributes
    ----------
    repository:
        Repository including any registry host, e.g.
        ``"docker.io/splunk/splunk"`` or ``"registry:5000/app"``.
    tag:
        Tag, or ``None`` when the reference carries none.
    digest:
        ``sha256:<hex>`` digest, or ``None``.
    """

    repository: str
    tag: str | None = None
    digest: str | None = None

    def __post_init__(self) -> None:
        if not self.repository:
            raise InvalidInputError("Image repository must not be empty")
        if self.digest is not None and not is_valid_digest(self.digest):
            raise InvalidInputError(
                f"Invalid image digest {self.digest!r}: expected sha256:<64 hex chars>"
            )

    @classmethod
    def parse(cls, ref: str) -> "ImageReference":
        """Parse an image reference string.

        Raises
        ------
        InvalidInputError
            If *ref* is empty or carries a malformed digest.
        """
        ref = ref.strip()
        if not ref:
            raise InvalidInputError("Image reference must not be empty")

        name, _, digest = ref.partition("@")
        # A colon after the last slash is a tag; one before it is a registry port.
        last_slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > last_slash:
            repository, tag = name[:colon], name[colon + 1:]
        else:
            repository, tag = name, None
        if tag == "":
            raise InvalidInputError(f"Empty tag in image reference {ref!r}")
        return cls(repository=repository, tag=tag, digest=digest or None)

    @property
    def is_pinned(self) -> bool:
        """True when the reference is addressed by an immutable digest."""
        return self.digest is not None

    @property
    def address(self) -> str:
        """The string used to pull or inspect the image."""
        if self.digest:
            return f"{self.repository}@{self.digest}"
        if self.tag:
            return f"{self.repository}:{self.tag}"
        return self.repository

    def __str__(self) -> str:
        text = self.repository
        if self.tag:
            text += f":{self.tag}"
        if self.digest:
            text += f"@{self.digest}"
        return text


def pull_images(
    runtime: ContainerRuntime,
    refs: Sequence[str],
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> list[str]:
    """Pull every image in *refs*, one at a time.

    Each pull is retried with exponential backoff.  The batch is fail-fast:
    the first image that exhausts its retries aborts the whole operation.

    Parameters
    ----------
    runtime:
        Container engine to pull with.
    refs:
        Image references, pulled in order.
    policy:
        Retry schedule.  Defaults to :class:`RetryPolicy()`.
    sleep:
        Injected for tests.

    Returns
    -------
    list[str]
        The references that were pulled, in order.

    Raises
    ------
    InvalidInputError
        If *refs* is empty.
    RuntimeCommandError
        The last pull error of the first image that could not be pulled.
    """
    if not refs:
        raise InvalidInputError("No images provided to pull.")
    policy = policy or RetryPolicy()

    logger.info("Pulling %d required image(s) with %s...", len(refs), runtime.name)
    pulled: list[str] = []
    for ref in refs:
        image = ImageReference.parse(ref)
        address = image.address
        if not image.is_pinned:
            logger.debug("Pulling %s by mutable tag", ref)
        retry_call(
            lambda: runtime.pull(address),
            policy,
            sleep=sleep,
            description=f"pull {address}",
        )
        pulled.append(ref)
    logger.info("All required images are available locally.")
    return pulled


__all__ = [
    "ImageReference",
    "is_valid_digest",
    "pull_images",
]
