"""In-memory S3-compatible client.

``MemoryS3Client`` implements the subset of the boto3 S3 client API that
``BucketFS`` uses, raising the same ``botocore`` error shapes S3 returns.
Useful for testing and for running against no backend at all.
"""

from __future__ import annotations

import hashlib
import io
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from botocore.exceptions import ClientError


def _error(code: str, message: str, operation: str, status: int) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {
                "RequestId": uuid.uuid4().hex[:16].upper(),
                "HTTPStatusCode": status,
            },
        },
        operation,
    )


def _read_body(body: Any) -> bytes:
    if body is None:
        return b""
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    return body.read()


@dataclass
class StoredObject:
    data: bytes
    etag: str
    last_modified: datetime
    extra: dict[str, str] = field(default_factory=dict)


@dataclass
class _MultipartUpload:
    key: str
    extra: dict[str, str]
    parts: dict[int, tuple[bytes, str]] = field(default_factory=dict)


class MemoryS3Client:
    """Thread-safe in-memory object store speaking the boto3 client API.

    Every call is appended to ``calls`` as ``(operation, kwargs)`` so tests
    can assert on the exact request sequence.

    Args:
        page_size: Maximum keys per ``list_objects_v2`` page.
        min_part_size: Smallest non-final multipart part accepted (S3
            rejects smaller ones with ``EntityTooSmall``). 0 disables the check.
    """

    def __init__(self, page_size: int = 1000, min_part_size: int = 0) -> None:
        self.buckets: dict[str, dict[str, StoredObject]] = {}
        self.uploads: dict[str, _MultipartUpload] = {}
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.page_size = page_size
        self.min_part_size = min_part_size
        self.closed = False
        self._lock = threading.RLock()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _record(self, operation: str, kwargs: dict[str, Any]) -> None:
        if self.closed:
            raise RuntimeError("Client is closed")
        self.calls.append((operation, kwargs))

    def _bucket(self, name: str) -> dict[str, StoredObject]:
        return self.buckets.setdefault(name, {})

    def _object(self, bucket: str, key: str, operation: str, head: bool = False) -> StoredObject:
        obj = self._bucket(bucket).get(key)
        if obj is None:
            if head:
                raise _error("404", "Not Found", operation, 404)
            raise _error("NoSuchKey", "The specified key does not exist.", operation, 404)
        return obj

    def _upload(self, upload_id: str, operation: str) -> _MultipartUpload:
        upload = self.uploads.get(upload_id)
        if upload is None:
            raise _error(
                "NoSuchUpload", "The specified upload does not exist.", operation, 404
            )
        return upload

    def count(self, operation: str) -> int:
        """Number of recorded calls to ``operation``."""
        return sum(1 for name, _ in self.calls if name == operation)

    def store(self, bucket: str, key: str, data: bytes) -> StoredObject:
        """Place an object directly, without recording a call."""
        with self._lock:
            obj = StoredObject(
                data=data,
                etag=f'"{hashlib.md5(data).hexdigest()}"',
                last_modified=datetime.now(timezone.utc),
            )
            self._bucket(bucket)[key] = obj
            return obj

    @staticmethod
    def _extra(kwargs: dict[str, Any]) -> dict[str, str]:
        names = ("ACL", "StorageClass", "ServerSideEncryption")
        return {name: kwargs[name] for name in names if name in kwargs}

    # -------------------------------------------------------------------------
    # Objects
    # -------------------------------------------------------------------------

    def head_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("head_object", kwargs)
            obj = self._object(kwargs["Bucket"], kwargs["Key"], "HeadObject", head=True)
            return {
                "ContentLength": len(obj.data),
                "ETag": obj.etag,
                "LastModified": obj.last_modified,
            }

    def get_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("get_object", kwargs)
            obj = self._object(kwargs["Bucket"], kwargs["Key"], "GetObject")
            if "IfMatch" in kwargs and kwargs["IfMatch"] != obj.etag:
                raise _error(
                    "PreconditionFailed",
                    "At least one of the pre-conditions you specified did not hold",
                    "GetObject",
                    412,
                )
            data = obj.data
            if "Range" in kwargs:
                start_text, _, end_text = kwargs["Range"][len("bytes="):].partition("-")
                start = int(start_text)
                end = int(end_text) + 1 if end_text else len(data)
                if start >= len(data):
                    raise _error(
                        "InvalidRange", "The requested range is not satisfiable", "GetObject", 416
                    )
                data = data[start:end]
            return {
                "Body": io.BytesIO(data),
                "ContentLength": len(data),
                "ETag": obj.etag,
                "LastModified": obj.last_modified,
            }

    def put_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("put_object", kwargs)
            obj = self.store(kwargs["Bucket"], kwargs["Key"], _read_body(kwargs.get("Body")))
            obj.extra = self._extra(kwargs)
            return {"ETag": obj.etag}

    def delete_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("delete_object", kwargs)
            self._bucket(kwargs["Bucket"]).pop(kwargs["Key"], None)
            return {}

    def delete_objects(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("delete_objects", kwargs)
            bucket = self._bucket(kwargs["Bucket"])
            deleted = []
            for entry in kwargs["Delete"]["Objects"]:
                bucket.pop(entry["Key"], None)
                deleted.append({"Key": entry["Key"]})
            if kwargs["Delete"].get("Quiet"):
                return {}
            return {"Deleted": deleted}

    def copy_object(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("copy_object", kwargs)
            source = kwargs["CopySource"]
            obj = self._object(source["Bucket"], source["Key"], "CopyObject")
            copied = self.store(kwargs["Bucket"], kwargs["Key"], obj.data)
            copied.extra = self._extra(kwargs)
            return {"CopyObjectResult": {"ETag": copied.etag}}

    def list_objects_v2(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("list_objects_v2", kwargs)
            prefix = kwargs.get("Prefix", "")
            delimiter = kwargs.get("Delimiter")
            token = kwargs.get("ContinuationToken")

            # Entries are (sort key, is prefix) like S3, which merges them in key order.
            entries: dict[str, bool] = {}
            for key in self._bucket(kwargs["Bucket"]):
                if not key.startswith(prefix):
                    continue
                if delimiter:
                    rest = key[len(prefix):]
                    index = rest.find(delimiter)
                    if index >= 0:
                        entries[prefix + rest[: index + len(delimiter)]] = True
                        continue
                entries[key] = False

            ordered = sorted(entries)
            if token:
                ordered = [name for name in ordered if name > token]
            page, rest = ordered[: self.page_size], ordered[self.page_size :]

            bucket = self._bucket(kwargs["Bucket"])
            response: dict[str, Any] = {
                "Prefix": prefix,
                "KeyCount": len(page),
                "IsTruncated": bool(rest),
                "Contents": [
                    {
                        "Key": name,
                        "Size": len(bucket[name].data),
                        "ETag": bucket[name].etag,
                        "LastModified": bucket[name].last_modified,
                    }
                    for name in page
                    if not entries[name]
                ],
                "CommonPrefixes": [{"Prefix": name} for name in page if entries[name]],
            }
            if rest:
                response["NextContinuationToken"] = page[-1]
            return response

    # -------------------------------------------------------------------------
    # Multipart
    # -------------------------------------------------------------------------

    def create_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("create_multipart_upload", kwargs)
            upload_id = uuid.uuid4().hex
            self.uploads[upload_id] = _MultipartUpload(
                key=kwargs["Key"], extra=self._extra(kwargs)
            )
            return {"Bucket": kwargs["Bucket"], "Key": kwargs["Key"], "UploadId": upload_id}

    def upload_part(self, **kwargs: Any) -> dict[str, Any]:
        data = _read_body(kwargs.get("Body"))
        with self._lock:
            self._record("upload_part", {**kwargs, "Body": data})
            upload = self._upload(kwargs["UploadId"], "UploadPart")
            etag = f'"{hashlib.md5(data).hexdigest()}"'
            upload.parts[kwargs["PartNumber"]] = (data, etag)
            return {"ETag": etag}

    def complete_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("complete_multipart_upload", kwargs)
            upload = self._upload(kwargs["UploadId"], "CompleteMultipartUpload")
            parts = kwargs["MultipartUpload"]["Parts"]
            numbers = [p["PartNumber"] for p in parts]
            if not parts or numbers != sorted(numbers):
                raise _error(
                    "InvalidPartOrder",
                    "The list of parts was not in ascending order.",
                    "CompleteMultipartUpload",
                    400,
                )
            chunks = []
            digests = b""
            for i, part in enumerate(parts):
                stored = upload.parts.get(part["PartNumber"])
                if stored is None or stored[1] != part["ETag"]:
                    raise _error(
                        "InvalidPart",
                        "One or more of the specified parts could not be found.",
                        "CompleteMultipartUpload",
                        400,
                    )
                if i < len(parts) - 1 and len(stored[0]) < self.min_part_size:
                    raise _error(
                        "EntityTooSmall",
                        "Your proposed upload is smaller than the minimum allowed size",
                        "CompleteMultipartUpload",
                        400,
                    )
                chunks.append(stored[0])
                digests += bytes.fromhex(stored[1].strip('"'))

            obj = self.store(kwargs["Bucket"], upload.key, b"".join(chunks))
            obj.etag = f'"{hashlib.md5(digests).hexdigest()}-{len(parts)}"'
            obj.extra = upload.extra
            del self.uploads[kwargs["UploadId"]]
            return {"Bucket": kwargs["Bucket"], "Key": upload.key, "ETag": obj.etag}

    def abort_multipart_upload(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("abort_multipart_upload", kwargs)
            self._upload(kwargs["UploadId"], "AbortMultipartUpload")
            del self.uploads[kwargs["UploadId"]]
            return {}

    def list_multipart_uploads(self, **kwargs: Any) -> dict[str, Any]:
        with self._lock:
            self._record("list_multipart_uploads", kwargs)
            prefix = kwargs.get("Prefix", "")
            return {
                "Uploads": [
                    {"Key": upload.key, "UploadId": upload_id}
                    for upload_id, upload in self.uploads.items()
                    if upload.key.startswith(prefix)
                ]
            }

    def close(self) -> None:
        self.closed = True
