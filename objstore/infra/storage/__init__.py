"""Object storage transfer layer.

This module provides a protocol-based abstraction for moving files between
local disk and object storage backends, with an S3 implementation that
also covers MinIO and other S3-compatible services.
"""

from .client import (
    ConfigurationError,
    InvalidKeyError,
    InvalidLocationError,
    ListedObject,
    LocalIOError,
    Location,
    ObjectNotFoundError,
    RemoteError,
    StorageBackend,
    StorageError,
    join_key,
)
from .factory import open_storage
from .s3_client import S3StorageClient, normalize_endpoint

__all__ = [
    "ConfigurationError",
    "InvalidKeyError",
    "InvalidLocationError",
    "ListedObject",
    "LocalIOError",
    "Location",
    "ObjectNotFoundError",
    "RemoteError",
    "S3StorageClient",
    "StorageBackend",
    "StorageError",
    "join_key",
    "normalize_endpoint",
    "open_storage",
]
