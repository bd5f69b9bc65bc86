"""S3-compatible transfer backend.

This module binds an ``s3://bucket/prefix`` location to file transfers
against AWS S3, MinIO, and other S3-compatible object storage services.
Multipart transfers, credential resolution, retries and pagination are
left to boto3.

Dependencies:
    - boto3
    - botocore
    - s3transfer
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterator
from urllib.parse import urlsplit, urlunsplit

import boto3
from boto3.exceptions import Boto3Error
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    NoRegionError,
    PartialCredentialsError,
    ProfileNotFound,
)
from s3transfer.exceptions import RetriesExceededError as TransferRetriesExceededError

from objstore.infra.observability.metrics import LATENCY, OPERATIONS, TRANSFERRED_BYTES
from objstore.infra.storage.client import (
    ConfigurationError,
    InvalidKeyError,
    InvalidLocationError,
    ListedObject,
    LocalIOError,
    Location,
    ObjectNotFoundError,
    RemoteError,
    StorageError,
    join_key,
)

if TYPE_CHECKING:
    from objstore.common.config import Settings

PROTOCOL = "s3"

LOOPBACK_ADDRESS = "127.0.0.1"
LOOPBACK_HOSTNAME = "localhost"

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})
SENSITIVE_HEADERS = frozenset({"authorization", "x-amz-security-token"})

_CONFIG_ERRORS = (
    NoCredentialsError,
    PartialCredentialsError,
    NoRegionError,
    ProfileNotFound,
)

logger = logging.getLogger(__name__)
wire_logger = logging.getLogger("objstore.s3.wire")


def normalize_endpoint(endpoint: str | None) -> str | None:
    """Rewrite a ``127.0.0.1`` endpoint host to ``localhost``.

    Some resolver setups are flaky with the literal loopback address, so
    local test servers are addressed by name. The port and the rest of
    the URL are preserved. Other hosts and unparsable strings are
    returned unchanged.
    """
    if not endpoint:
        return endpoint
    try:
        parts = urlsplit(endpoint)
        hostname = parts.hostname
        port = parts.port
    except ValueError:
        return endpoint
    if hostname != LOOPBACK_ADDRESS:
        return endpoint

    netloc = LOOPBACK_HOSTNAME if port is None else f"{LOOPBACK_HOSTNAME}:{port}"
    userinfo, sep, _ = parts.netloc.rpartition("@")
    if sep:
        netloc = f"{userinfo}@{netloc}"
    return urlunsplit(parts._replace(netloc=netloc))


@dataclass(frozen=True, slots=True)
class S3Options:
    """Connection options fixed for the lifetime of a client."""

    path_style: bool = False
    region: str | None = None
    endpoint: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None
    trace_requests: bool = False


def _translate_sdk_error(exc: Exception, message: str) -> StorageError:
    if isinstance(exc, _CONFIG_ERRORS):
        return ConfigurationError(f"Failed to resolve S3 configuration: {exc}")
    if isinstance(exc, ClientError):
        code = str(exc.response.get("Error", {}).get("Code") or "") or None
        if code in NOT_FOUND_CODES:
            return ObjectNotFoundError(f"{message}: {exc}", code=code)
        return RemoteError(f"{message}: {exc}", code=code)
    return RemoteError(f"{message}: {exc}")


@contextmanager
def _sdk_errors(message: str) -> Iterator[None]:
    try:
        yield
    except (
        ClientError,
        BotoCoreError,
        Boto3Error,
        TransferRetriesExceededError,
    ) as exc:
        raise _translate_sdk_error(exc, message) from exc


def _mask_headers(headers: Any) -> dict[str, str]:
    masked: dict[str, str] = {}
    for name, value in headers.items():
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        masked[name] = "***" if name.lower() in SENSITIVE_HEADERS else str(value)
    return masked


def _body_size(body: Any) -> int | None:
    if body is None:
        return 0
    if isinstance(body, (bytes, bytearray, str)):
        return len(body)
    return None


def _log_request(request: Any, **kwargs: Any) -> None:
    size = _body_size(request.body)
    wire_logger.debug(
        "s3_request method=%s url=%s body_bytes=%s",
        request.method,
        request.url,
        "-" if size is None else size,
        extra={
            "extra": {
                "method": request.method,
                "url": request.url,
                "headers": _mask_headers(request.headers),
                "body_bytes": size,
            }
        },
    )


def _log_response(http_response: Any = None, model: Any = None, **kwargs: Any) -> None:
    if http_response is None:
        return
    operation = getattr(model, "name", None) or "-"
    wire_logger.debug(
        "s3_response operation=%s status=%s",
        operation,
        http_response.status_code,
        extra={
            "extra": {
                "operation": operation,
                "status": http_response.status_code,
                "headers": _mask_headers(http_response.headers),
            }
        },
    )


def _attach_wire_logging(client: Any) -> None:
    client.meta.events.register("before-send.s3", _log_request)
    client.meta.events.register("after-call.s3", _log_response)


def _target_mode(path: Path) -> int:
    """Permission bits a freshly created or truncated ``path`` would carry."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        umask = os.umask(0)
        os.umask(umask)
        return 0o666 & ~umask


def _discard(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError:
        logger.warning("temp_cleanup_failed path=%s", path, exc_info=True)


class S3StorageClient:
    """S3-compatible transfer backend bound to one bucket and key prefix.

    Each operation builds its own boto3 client from the fixed options, so
    an instance holds no mutable state and may be shared between callers.
    """

    def __init__(
        self,
        location: Location | str,
        *,
        path_style: bool = False,
        region: str | None = None,
        endpoint: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        trace_requests: bool = False,
    ) -> None:
        """Bind the client to a location.

        Args:
            location: ``s3://bucket/prefix`` string or a parsed Location.
            path_style: Use path-style bucket addressing (MinIO and most
                local S3 servers need it).
            region: Region name; boto3's resolution chain applies when omitted.
            endpoint: Custom endpoint URL for S3-compatible services.
            access_key_id: Explicit access key; must be paired with
                ``secret_access_key``.
            secret_access_key: Explicit secret key.
            trace_requests: Log every request and response on the
                ``objstore.s3.wire`` logger.

        Raises:
            InvalidLocationError: If the location is not a valid s3 location.
        """
        if isinstance(location, str):
            location = Location.parse(location)
        if location.scheme != PROTOCOL:
            raise InvalidLocationError(
                f"Unsupported scheme {location.scheme!r} for S3 storage: {location}"
            )
        self._location = location
        self._options = S3Options(
            path_style=path_style,
            region=region,
            endpoint=endpoint,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            trace_requests=trace_requests,
        )

    @classmethod
    def from_settings(
        cls, settings: "Settings", location: Location | str | None = None
    ) -> "S3StorageClient":
        """Build a client from application settings.

        Raises:
            ConfigurationError: If no location is given and OBJSTORE_URL is unset.
            InvalidLocationError: If the location is invalid.
        """
        location = location or settings.OBJSTORE_URL
        if not location:
            raise ConfigurationError("OBJSTORE_URL is required")
        return cls(
            location,
            path_style=settings.s3_path_style,
            region=settings.S3_REGION,
            endpoint=settings.S3_ENDPOINT_URL,
            access_key_id=settings.S3_ACCESS_KEY_ID,
            secret_access_key=settings.S3_SECRET_ACCESS_KEY,
            trace_requests=settings.S3_TRACE_REQUESTS,
        )

    @property
    def location(self) -> Location:
        return self._location

    @property
    def options(self) -> S3Options:
        return self._options

    def _client_kwargs(self) -> dict[str, Any]:
        """Resolve boto3 client arguments from the fixed options.

        Anything not set explicitly is left to boto3's standard chain
        (environment, shared config files, instance metadata).
        """
        options = self._options
        addressing_style = "path" if options.path_style else "auto"
        kwargs: dict[str, Any] = {
            "config": Config(s3={"addressing_style": addressing_style}),
        }
        endpoint = normalize_endpoint(options.endpoint)
        if endpoint:
            kwargs["endpoint_url"] = endpoint
        if options.region:
            kwargs["region_name"] = options.region

        has_key = bool(options.access_key_id)
        has_secret = bool(options.secret_access_key)
        if has_key != has_secret:
            raise ConfigurationError(
                "access_key_id and secret_access_key must be provided together"
            )
        if has_key:
            kwargs["aws_access_key_id"] = options.access_key_id
            kwargs["aws_secret_access_key"] = options.secret_access_key
        return kwargs

    def _build_client(self) -> Any:
        """Create a boto3 S3 client for a single operation."""
        kwargs = self._client_kwargs()
        try:
            client = boto3.client("s3", **kwargs)
        except (BotoCoreError, ValueError) as exc:
            raise ConfigurationError(f"Failed to load S3 configuration: {exc}") from exc
        if self._options.trace_requests:
            _attach_wire_logging(client)
        return client

    @contextmanager
    def _observe(self, operation: str, key: str) -> Iterator[None]:
        start = time.perf_counter()
        status = "ok"
        try:
            yield
        except Exception as exc:
            status = type(exc).__name__
            logger.warning(
                "storage_error operation=%s bucket=%s key=%s error=%s",
                operation,
                self._location.host,
                key,
                exc,
                extra={
                    "extra": {
                        "operation": operation,
                        "bucket": self._location.host,
                        "key": key,
                        "error": status,
                        "code": getattr(exc, "code", None),
                    }
                },
            )
            raise
        finally:
            OPERATIONS.labels(PROTOCOL, operation, status).inc()
            LATENCY.labels(PROTOCOL, operation).observe(time.perf_counter() - start)

    def pull(self, source: str, target: str | os.PathLike[str]) -> int:
        """Download an object into a local file.

        The object is written to a temporary file next to ``target`` and
        renamed into place only after the download completed, so a failed
        transfer never leaves a partial file at ``target``. The parent
        directory of ``target`` must exist.

        Args:
            source: Key relative to the location prefix.
            target: Local file to create or replace.

        Returns:
            Number of bytes written.

        Raises:
            InvalidKeyError: If ``source`` escapes the location prefix.
            ConfigurationError: If client settings cannot be resolved.
            LocalIOError: If the target file cannot be written.
            ObjectNotFoundError: If the object does not exist.
            RemoteError: If the download fails.
        """
        bucket = self._location.host
        key = join_key(self._location.path, source)
        target_path = Path(target)

        with self._observe("pull", key):
            client = self._build_client()
            try:
                fd, tmp_name = tempfile.mkstemp(
                    prefix=f".{target_path.name}.",
                    suffix=".part",
                    dir=target_path.parent,
                )
            except OSError as exc:
                raise LocalIOError(
                    f"Failed to create target file {str(target_path)!r}: {exc}",
                    path=target_path,
                ) from exc

            tmp_path = Path(tmp_name)
            try:
                with os.fdopen(fd, "wb") as fh:
                    with _sdk_errors(f"Failed to download s3://{bucket}/{key}"):
                        client.download_fileobj(bucket, key, fh)
                    fh.flush()
                    os.fsync(fh.fileno())
                    size = os.fstat(fh.fileno()).st_size
                os.chmod(tmp_path, _target_mode(target_path))
                os.replace(tmp_path, target_path)
            except OSError as exc:
                _discard(tmp_path)
                raise LocalIOError(
                    f"Failed to write target file {str(target_path)!r}: {exc}",
                    path=target_path,
                ) from exc
            except BaseException:
                _discard(tmp_path)
                raise

        TRANSFERRED_BYTES.labels(PROTOCOL, "download").inc(size)
        logger.info(
            "pulled bucket=%s key=%s target=%s bytes=%s",
            bucket,
            key,
            target_path,
            size,
            extra={
                "extra": {
                    "bucket": bucket,
                    "key": key,
                    "target": str(target_path),
                    "bytes": size,
                }
            },
        )
        return size

    def push(self, target: str, source: str | os.PathLike[str]) -> int:
        """Upload a local file, replacing any object at the destination key.

        Args:
            target: Destination key relative to the location prefix.
            source: Local file to read.

        Returns:
            Number of bytes uploaded.

        Raises:
            InvalidKeyError: If ``target`` escapes the location prefix.
            ConfigurationError: If client settings cannot be resolved.
            LocalIOError: If the source file cannot be read.
            RemoteError: If the upload fails.
        """
        bucket = self._location.host
        key = join_key(self._location.path, target)
        source_path = Path(source)

        with self._observe("push", key):
            client = self._build_client()
            try:
                with open(source_path, "rb") as fh:
                    size = os.fstat(fh.fileno()).st_size
                    with _sdk_errors(f"Failed to upload to s3://{bucket}/{key}"):
                        client.upload_fileobj(fh, bucket, key)
            except OSError as exc:
                raise LocalIOError(
                    f"Failed to read input file {str(source_path)!r}: {exc}",
                    path=source_path,
                ) from exc

        TRANSFERRED_BYTES.labels(PROTOCOL, "upload").inc(size)
        logger.info(
            "pushed bucket=%s key=%s source=%s bytes=%s",
            bucket,
            key,
            source_path,
            size,
            extra={
                "extra": {
                    "bucket": bucket,
                    "key": key,
                    "source": str(source_path),
                    "bytes": size,
                }
            },
        )
        return size

    def protocol(self) -> str:
        return PROTOCOL

    def url(self) -> str:
        return str(self._location)

    def iter_dir(self, dirname: str) -> Iterator[ListedObject]:
        """Lazily list objects whose key starts with ``dirname``.

        ``dirname`` is used as the literal key prefix; the location prefix
        is not applied. Pages are fetched on demand until the backend
        reports no continuation token.
        """
        with self._observe("iter_dir", dirname):
            yield from self._list_objects(dirname)

    def _list_objects(self, dirname: str) -> Iterator[ListedObject]:
        bucket = self._location.host
        client = self._build_client()
        paginator = client.get_paginator("list_objects_v2")
        with _sdk_errors(f"Failed to list objects in s3://{bucket}/{dirname}"):
            for page in paginator.paginate(Bucket=bucket, Prefix=dirname):
                for item in page.get("Contents", []):
                    yield ListedObject(
                        name=item["Key"],
                        size=int(item.get("Size") or 0),
                        last_modified=item.get("LastModified"),
                    )

    def read_dir(self, dirname: str) -> list[ListedObject]:
        """List every object whose key starts with ``dirname``, in backend order."""
        with self._observe("read_dir", dirname):
            objects = list(self._list_objects(dirname))
        logger.debug(
            "listed bucket=%s prefix=%s count=%s",
            self._location.host,
            dirname,
            len(objects),
        )
        return objects

    def remove(self, target: str) -> None:
        """Delete the object at ``target``.

        ``target`` is used as the literal key, matching the names returned
        by :meth:`read_dir`. A missing object is not an error.
        """
        bucket = self._location.host
        with self._observe("remove", target):
            if not target:
                raise InvalidKeyError("Object key must not be empty")
            client = self._build_client()
            try:
                with _sdk_errors(f"Failed to delete s3://{bucket}/{target}"):
                    client.delete_object(Bucket=bucket, Key=target)
            except ObjectNotFoundError:
                logger.debug("remove_missing bucket=%s key=%s", bucket, target)
                return
        logger.debug("removed bucket=%s key=%s", bucket, target)
