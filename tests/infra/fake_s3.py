"""In-memory stand-in for the boto3 S3 client used in storage tests."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, BinaryIO, Iterator

from botocore.exceptions import ClientError


def client_error(code: str, operation: str, message: str = "error") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


@dataclass
class FakeListObjectsV2Paginator:
    """Pages through a FakeS3Client bucket like the list_objects_v2 paginator."""

    client: "FakeS3Client"

    def paginate(self, *, Bucket: str, Prefix: str = "") -> Iterator[dict[str, Any]]:
        objects = self.client.bucket(Bucket, "ListObjectsV2")
        self.client.calls.append(("paginate", {"Bucket": Bucket, "Prefix": Prefix}))
        keys = sorted(key for key in objects if key.startswith(Prefix))
        size = self.client.page_size
        if not keys:
            yield {"KeyCount": 0, "IsTruncated": False, "Prefix": Prefix}
            return
        for start in range(0, len(keys), size):
            chunk = keys[start : start + size]
            truncated = start + size < len(keys)
            page: dict[str, Any] = {
                "KeyCount": len(chunk),
                "IsTruncated": truncated,
                "Prefix": Prefix,
                "Contents": [
                    {
                        "Key": key,
                        "Size": len(objects[key]["Body"]),
                        "LastModified": objects[key]["LastModified"],
                        "ETag": f'"{key}"',
                    }
                    for key in chunk
                ],
            }
            if truncated:
                page["NextContinuationToken"] = f"token-{start + size}"
            yield page


@dataclass
class FakeS3Client:
    """In-memory mock of the boto3 S3 client surface used by S3StorageClient."""

    buckets: dict[str, dict[str, dict[str, Any]]] = field(
        default_factory=lambda: {"test-bucket": {}}
    )
    page_size: int = 1000
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def bucket(self, name: str, operation: str) -> dict[str, dict[str, Any]]:
        if name not in self.buckets:
            raise client_error(
                "NoSuchBucket", operation, "The specified bucket does not exist"
            )
        return self.buckets[name]

    def put(
        self,
        bucket: str,
        key: str,
        body: bytes,
        last_modified: datetime | None = None,
    ) -> None:
        """Test helper to seed an object."""
        self.buckets.setdefault(bucket, {})[key] = {
            "Body": bytes(body),
            "LastModified": last_modified or datetime.now(timezone.utc),
        }

    def body(self, bucket: str, key: str) -> bytes:
        return self.buckets[bucket][key]["Body"]

    def upload_fileobj(
        self, Fileobj: BinaryIO, Bucket: str, Key: str, **kwargs: Any
    ) -> None:
        self.calls.append(("upload_fileobj", {"Bucket": Bucket, "Key": Key}))
        objects = self.bucket(Bucket, "PutObject")
        objects[Key] = {
            "Body": Fileobj.read(),
            "LastModified": datetime.now(timezone.utc),
        }

    def download_fileobj(
        self, Bucket: str, Key: str, Fileobj: BinaryIO, **kwargs: Any
    ) -> None:
        self.calls.append(("download_fileobj", {"Bucket": Bucket, "Key": Key}))
        objects = self.bucket(Bucket, "HeadObject")
        if Key not in objects:
            raise client_error("404", "HeadObject", "Not Found")
        Fileobj.write(objects[Key]["Body"])

    def delete_object(self, *, Bucket: str, Key: str) -> dict[str, Any]:
        self.calls.append(("delete_object", {"Bucket": Bucket, "Key": Key}))
        self.bucket(Bucket, "DeleteObject").pop(Key, None)
        return {"ResponseMetadata": {"HTTPStatusCode": 204}}

    def get_paginator(self, operation_name: str) -> FakeListObjectsV2Paginator:
        if operation_name != "list_objects_v2":
            raise NotImplementedError(operation_name)
        return FakeListObjectsV2Paginator(self)
