"""Thin wrapper over the S3 object primitives.

Every call is stateless apart from the shared client. "Not found" answers
become ``None`` (or success, for deletes); every other backend error is
logged with its request id and re-raised unchanged.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any, BinaryIO

from botocore.exceptions import ClientError

from .cancellation import CancellationToken, check_cancelled

logger = logging.getLogger(__name__)

NOT_FOUND_CODES = frozenset({"404", "NoSuchKey", "NotFound"})

# DeleteObjects accepts at most this many keys per request.
MAX_DELETE_BATCH = 1000


def error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def is_not_found(error: ClientError) -> bool:
    return error_code(error) in NOT_FOUND_CODES


def request_id(error: ClientError) -> str | None:
    return error.response.get("ResponseMetadata", {}).get("RequestId")


class ObjectGateway:
    """Issues object-store calls against a single bucket.

    The client is created lazily on first use, cached, and closed exactly
    once by :meth:`close`. It is safe to share between streams.

    Args:
        bucket: Bucket name.
        client_factory: Callable returning a boto3-compatible S3 client.
        write_args: Extra arguments (ACL, storage class, encryption)
            passed to every PUT, copy and multipart initiate call.
    """

    def __init__(
        self,
        bucket: str,
        client_factory: Callable[[], Any],
        write_args: dict[str, str] | None = None,
    ):
        self.bucket = bucket
        self.write_args = dict(write_args or {})
        self._client_factory = client_factory
        self._client: Any = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def client(self) -> Any:
        if self._closed:
            raise ValueError(f"Gateway for bucket {self.bucket} is closed")
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = self._client_factory()
        return self._client

    def close(self) -> None:
        """Close the cached client, if one was created."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            client, self._client = self._client, None
        if client is not None and hasattr(client, "close"):
            client.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def _log_failure(self, operation: str, key: str, error: ClientError) -> None:
        logger.warning(
            f"{operation} failed for s3://{self.bucket}/{key}: {error_code(error)} "
            f"(request id {request_id(error)})"
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def head(self, key: str) -> dict[str, Any] | None:
        """Return object metadata, or None if the object does not exist."""
        try:
            return self.client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return None
            self._log_failure("HEAD", key, e)
            raise

    def get(
        self,
        key: str,
        start: int | None = None,
        end: int | None = None,
        if_match: str | None = None,
    ) -> dict[str, Any] | None:
        """Fetch an object, or the byte range ``[start, end)`` of it.

        Args:
            key: Object key.
            start: First byte offset (inclusive).
            end: Last byte offset (exclusive).
            if_match: ETag the object must still carry.

        Returns:
            The GET response (``Body`` stream and ``ContentLength``), or None
            if the object does not exist.
        """
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Key": key}
        if start is not None:
            kwargs["Range"] = f"bytes={start}-{'' if end is None else end - 1}"
        if if_match is not None:
            kwargs["IfMatch"] = if_match
        try:
            return self.client.get_object(**kwargs)
        except ClientError as e:
            if is_not_found(e):
                return None
            self._log_failure("GET", key, e)
            raise

    def list(
        self,
        prefix: str,
        delimiter: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Yield ListObjectsV2 pages until the listing is exhausted."""
        kwargs: dict[str, Any] = {"Bucket": self.bucket, "Prefix": prefix}
        if delimiter:
            kwargs["Delimiter"] = delimiter
        while True:
            check_cancelled(cancel_token)
            try:
                page = self.client.list_objects_v2(**kwargs)
            except ClientError as e:
                self._log_failure("LIST", prefix, e)
                raise
            yield page
            if not page.get("IsTruncated"):
                return
            kwargs["ContinuationToken"] = page["NextContinuationToken"]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def put(self, key: str, body: bytes | BinaryIO) -> str:
        """Store an object, returning its ETag."""
        try:
            response = self.client.put_object(
                Bucket=self.bucket, Key=key, Body=body, **self.write_args
            )
        except ClientError as e:
            self._log_failure("PUT", key, e)
            raise
        logger.debug(f"Uploaded s3://{self.bucket}/{key}")
        return response.get("ETag", "")

    def delete(self, key: str) -> None:
        """Delete an object. Deleting a missing object succeeds."""
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return
            self._log_failure("DELETE", key, e)
            raise
        logger.debug(f"Deleted s3://{self.bucket}/{key}")

    def delete_many(self, keys: list[str]) -> None:
        """Delete objects in batches.

        Raises:
            OSError: If the backend reports per-key failures.
        """
        for i in range(0, len(keys), MAX_DELETE_BATCH):
            batch = keys[i : i + MAX_DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
            except ClientError as e:
                self._log_failure("DELETE BATCH", batch[0], e)
                raise
            errors = [
                e for e in response.get("Errors", []) if e.get("Code") not in NOT_FOUND_CODES
            ]
            if errors:
                first = errors[0]
                logger.warning(
                    f"DELETE BATCH failed for {len(errors)} keys in s3://{self.bucket}, "
                    f"first {first.get('Key')}: {first.get('Code')}"
                )
                raise OSError(
                    f"Failed to delete {len(errors)} objects from {self.bucket}, "
                    f"first {first.get('Key')}: {first.get('Code')} {first.get('Message', '')}"
                )
            logger.debug(f"Deleted {len(batch)} objects from s3://{self.bucket}")

    def copy(self, source_key: str, dest_key: str) -> None:
        """Server-side copy within the bucket.

        Raises:
            FileNotFoundError: If the source does not exist.
        """
        try:
            self.client.copy_object(
                Bucket=self.bucket,
                CopySource={"Bucket": self.bucket, "Key": source_key},
                Key=dest_key,
                **self.write_args,
            )
        except ClientError as e:
            if is_not_found(e):
                raise FileNotFoundError(source_key) from e
            self._log_failure("COPY", source_key, e)
            raise
        logger.debug(f"Copied {source_key} to {dest_key}")

    # -------------------------------------------------------------------------
    # Multipart
    # -------------------------------------------------------------------------

    def create_multipart(self, key: str) -> str:
        try:
            response = self.client.create_multipart_upload(
                Bucket=self.bucket, Key=key, **self.write_args
            )
        except ClientError as e:
            self._log_failure("CREATE MULTIPART", key, e)
            raise
        upload_id = response["UploadId"]
        logger.debug(f"Initiated multipart upload {upload_id} for s3://{self.bucket}/{key}")
        return upload_id

    def upload_part(
        self, key: str, upload_id: str, part_number: int, body: bytes | BinaryIO
    ) -> str:
        """Upload one part, returning its ETag."""
        try:
            response = self.client.upload_part(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                PartNumber=part_number,
                Body=body,
            )
        except ClientError as e:
            self._log_failure(f"UPLOAD PART {part_number}", key, e)
            raise
        return response["ETag"]

    def complete_multipart(
        self, key: str, upload_id: str, etags: list[str]
    ) -> None:
        """Complete an upload from the ordered part ETags (part 1 first)."""
        parts = [{"PartNumber": i, "ETag": etag} for i, etag in enumerate(etags, 1)]
        try:
            self.client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except ClientError as e:
            self._log_failure("COMPLETE MULTIPART", key, e)
            raise
        logger.debug(
            f"Completed multipart upload {upload_id} for s3://{self.bucket}/{key} "
            f"({len(parts)} parts)"
        )

    def abort_multipart(self, key: str, upload_id: str) -> None:
        try:
            self.client.abort_multipart_upload(
                Bucket=self.bucket, Key=key, UploadId=upload_id
            )
        except ClientError as e:
            self._log_failure("ABORT MULTIPART", key, e)
            raise
        logger.debug(f"Aborted multipart upload {upload_id} for s3://{self.bucket}/{key}")

    def abort_quietly(self, key: str, upload_id: str) -> None:
        """Best-effort abort used on failure paths; never raises."""
        try:
            self.abort_multipart(key, upload_id)
        except Exception as e:
            logger.warning(f"Could not abort multipart upload {upload_id} for {key}: {e}")
