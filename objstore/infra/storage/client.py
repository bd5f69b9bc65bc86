"""Storage backend protocol and data types.

This module defines the interface every object storage backend implements,
the location and listing value types, and the error taxonomy shared by
all backends.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol
from urllib.parse import urlsplit, urlunsplit


class StorageError(RuntimeError):
    """Raised when object storage operations fail."""


class ConfigurationError(StorageError):
    """Raised when client settings cannot be resolved."""


class LocalIOError(StorageError):
    """Raised when a local file cannot be opened, created or replaced."""

    def __init__(self, message: str, *, path: str | os.PathLike[str]) -> None:
        super().__init__(message)
        self.path = os.fspath(path)


class RemoteError(StorageError):
    """Raised when the backend rejects or fails a request."""

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class ObjectNotFoundError(RemoteError):
    """Raised when the addressed object does not exist."""


class InvalidLocationError(StorageError, ValueError):
    """Raised when a storage location fails validation."""


class InvalidKeyError(StorageError, ValueError):
    """Raised when a key path is empty or escapes its prefix."""


@dataclass(frozen=True, slots=True)
class Location:
    """A parsed storage location: scheme, bucket host and key prefix."""

    scheme: str
    host: str
    path: str = ""
    raw: str | None = field(default=None, compare=False, repr=False)

    def __post_init__(self) -> None:
        if not self.scheme:
            raise InvalidLocationError("Storage location is missing a scheme")
        if not self.host or not self.host.strip():
            raise InvalidLocationError("Storage location is missing a bucket name")
        if any(ch.isspace() or ch in "@:" for ch in self.host):
            raise InvalidLocationError(f"Invalid bucket name: {self.host!r}")

    @classmethod
    def parse(cls, url: str) -> "Location":
        """Parse ``scheme://bucket/prefix`` into a Location.

        Raises:
            InvalidLocationError: If the URL has no scheme or no bucket.
        """
        try:
            parts = urlsplit(url)
        except ValueError as exc:
            raise InvalidLocationError(f"Invalid storage location {url!r}: {exc}") from exc
        return cls(
            scheme=parts.scheme.lower(),
            host=parts.netloc,
            path=parts.path,
            raw=url,
        )

    def __str__(self) -> str:
        if self.raw is not None:
            return self.raw
        return urlunsplit((self.scheme, self.host, self.path, "", ""))


@dataclass(frozen=True, slots=True)
class ListedObject:
    """An entry returned by a listing.

    Object storage has no directories or permission bits, so ``is_dir``
    and ``mode`` are fixed.
    """

    name: str
    size: int
    last_modified: datetime | None

    @property
    def is_dir(self) -> bool:
        return False

    @property
    def mode(self) -> int:
        return 0


def _segments(value: str) -> list[str]:
    return [seg for seg in value.split("/") if seg and seg != "."]


def _clean_prefix(prefix: str) -> list[str]:
    # rooted path: ".." above the bucket root is dropped
    cleaned: list[str] = []
    for seg in _segments(prefix):
        if seg == "..":
            if cleaned:
                cleaned.pop()
        else:
            cleaned.append(seg)
    return cleaned


def join_key(prefix: str, relative: str) -> str:
    """Join a key prefix and a relative path with forward slashes.

    ``..`` in ``prefix`` is resolved within the prefix; ``..`` in
    ``relative`` may only consume segments of ``relative``.

    Raises:
        InvalidKeyError: If the result is empty or escapes the prefix.
    """
    base = _clean_prefix(prefix)
    tail: list[str] = []
    for seg in _segments(relative):
        if seg == "..":
            if not tail:
                raise InvalidKeyError(
                    f"Key {relative!r} escapes prefix {prefix!r}"
                )
            tail.pop()
        else:
            tail.append(seg)

    key = "/".join(base + tail)
    if not key:
        raise InvalidKeyError("Object key must not be empty")
    return key


class StorageBackend(Protocol):
    """Protocol defining the interface for file transfer backends.

    Implementations bind one location and expose transfers between the
    backend and the local filesystem.
    """

    def pull(self, source: str, target: str | os.PathLike[str]) -> int:
        """Download ``source`` (relative to the location prefix) into ``target``.

        Returns:
            Number of bytes written to ``target``.

        Raises:
            ConfigurationError: If client settings cannot be resolved.
            LocalIOError: If the target file cannot be written.
            RemoteError: If the backend request fails.
        """
        ...

    def push(self, target: str, source: str | os.PathLike[str]) -> int:
        """Upload the local file ``source`` to ``target`` under the location prefix.

        Returns:
            Number of bytes uploaded.

        Raises:
            ConfigurationError: If client settings cannot be resolved.
            LocalIOError: If the source file cannot be read.
            RemoteError: If the backend request fails.
        """
        ...

    def protocol(self) -> str:
        """Return the scheme identifier handled by this backend."""
        ...

    def url(self) -> str:
        """Return the location string this backend was built from."""
        ...

    def read_dir(self, dirname: str) -> list[ListedObject]:
        """List every object whose key starts with ``dirname``.

        Raises:
            ConfigurationError: If client settings cannot be resolved.
            RemoteError: If the listing fails.
        """
        ...

    def remove(self, target: str) -> None:
        """Delete the object stored at ``target``.

        Deleting a missing object succeeds.

        Raises:
            ConfigurationError: If client settings cannot be resolved.
            RemoteError: If the backend request fails.
        """
        ...
