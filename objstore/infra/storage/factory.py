"""Storage backend factory.

Creates a StorageBackend implementation for a location URL, dispatching on
its scheme. Connection options come from Settings.
"""

from __future__ import annotations

from objstore.common.config import Settings, get_settings
from objstore.infra.storage.client import InvalidLocationError, Location, StorageBackend
from objstore.infra.storage.s3_client import PROTOCOL as S3_PROTOCOL
from objstore.infra.storage.s3_client import S3StorageClient


def open_storage(
    url: Location | str, *, settings: Settings | None = None
) -> StorageBackend:
    """Build the backend matching the scheme of ``url``.

    Raises:
        InvalidLocationError: If the URL is invalid or its scheme is unsupported.
    """
    location = Location.parse(url) if isinstance(url, str) else url
    settings = settings or get_settings()
    if location.scheme == S3_PROTOCOL:
        return S3StorageClient.from_settings(settings, location)
    raise InvalidLocationError(
        f"Unsupported storage scheme: {location.scheme}. Only 's3' is supported."
    )
