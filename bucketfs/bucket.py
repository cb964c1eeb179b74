"""Bucket-backed virtual filesystem.

Provides ``BucketFS``, a file and directory API over a flat S3-compatible
bucket. Paths are slash-separated and relative to the configured prefix.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Iterator
from typing import Any

from .base import FileAccessHints, FileItem, FileStream
from .cancellation import CancellationToken, check_cancelled
from .config import S3FSConfig, create_client
from .directories import DirectoryEmulator, file_item
from .gateway import ObjectGateway
from .paths import PathCodec, normalize_path
from .rangefile import ObjectReadStream, RandomAccessReadStream
from .resumable import ResumableUploadStream, UploadState
from .writefile import S3WriteStream

logger = logging.getLogger(__name__)


class BucketFS:
    """Virtual filesystem over an S3-compatible bucket.

    Files are objects under ``config.prefix``. Directories are emulated:
    a directory exists once it has a zero-length marker object (created by
    :meth:`create_directory`), while listings also report every
    subdirectory that merely contains files.

    The S3 client is created on first use and closed by :meth:`close`.

    Example:
        >>> fs = BucketFS(connect_fs(bucket="packages", prefix="feeds"))
        >>> with fs.create_write("nuget/a.1.0.nupkg") as f:
        ...     f.write(b"...")
        >>> fs.file_exists("nuget/a.1.0.nupkg")
        True
        >>> [item.name for item in fs.list("nuget")]
        ['a.1.0.nupkg']
    """

    def __init__(self, config: S3FSConfig, client: Any = None):
        """Initialize the filesystem.

        Args:
            config: Bucket configuration (see ``connect_fs``).
            client: Pre-built S3 client. Built from ``config`` on first use
                when omitted.
        """
        self.config = config
        self.codec = PathCodec(config.prefix)
        if client is not None:
            factory = lambda: client  # noqa: E731
        else:
            factory = functools.partial(create_client, config)
        self._gateway = ObjectGateway(config.bucket, factory, config.write_args())
        self._dirs = DirectoryEmulator(self._gateway, self.codec)

    @property
    def gateway(self) -> ObjectGateway:
        return self._gateway

    def _key(self, path: str) -> str:
        if not normalize_path(path):
            raise ValueError(f"A file name is required, got: {path!r}")
        return self.codec.encode(path)

    # -------------------------------------------------------------------------
    # Files
    # -------------------------------------------------------------------------

    def file_exists(self, path: str) -> bool:
        """Check if a file exists. The root is never a file."""
        if not normalize_path(path):
            return False
        return self._gateway.head(self.codec.encode(path)) is not None

    def open_read(
        self, path: str, hints: FileAccessHints = FileAccessHints.DEFAULT
    ) -> FileStream:
        """Open a file for reading.

        Args:
            path: File path.
            hints: ``RANDOM_ACCESS`` returns a seekable stream that fetches
                byte ranges on demand; otherwise the object is streamed
                sequentially from a single GET.

        Raises:
            FileNotFoundError: If the file doesn't exist.
        """
        key = self._key(path)
        if hints & FileAccessHints.RANDOM_ACCESS:
            metadata = self._gateway.head(key)
            if metadata is None:
                raise FileNotFoundError(f"File not found: {path}")
            return RandomAccessReadStream(self._gateway, key, metadata)

        response = self._gateway.get(key)
        if response is None:
            raise FileNotFoundError(f"File not found: {path}")
        return ObjectReadStream(response["Body"], response["ContentLength"], key)

    def create_write(
        self,
        path: str,
        hints: FileAccessHints = FileAccessHints.DEFAULT,
        cancel_token: CancellationToken | None = None,
    ) -> S3WriteStream:
        """Create (or overwrite) a file, returning a write-only stream.

        The object appears when the stream is closed.
        """
        return S3WriteStream(
            self._gateway,
            self._key(path),
            part_size=self.config.part_size,
            cancel_token=cancel_token,
        )

    def read(self, path: str) -> bytes:
        """Read file contents as bytes."""
        with self.open_read(path) as stream:
            return stream.read()

    def write(self, path: str, content: bytes) -> None:
        """Write bytes to a file, replacing any existing content.

        Raises:
            TypeError: If content is not bytes.
        """
        if not isinstance(content, (bytes, bytearray, memoryview)):
            raise TypeError(f"Expected bytes, got {type(content).__name__}")
        with self.create_write(path) as stream:
            stream.write(content)

    def delete(self, path: str) -> None:
        """Delete a file. Deleting a missing file succeeds."""
        self._gateway.delete(self._key(path))

    def copy(
        self,
        source: str,
        dest: str,
        overwrite: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Copy a file within the bucket (server-side).

        Raises:
            FileExistsError: If ``dest`` exists and overwrite is False.
            FileNotFoundError: If ``source`` doesn't exist.
        """
        source_key = self._key(source)
        dest_key = self._key(dest)
        if not overwrite and self._gateway.head(dest_key) is not None:
            raise FileExistsError(
                f"Destination file exists, but overwrite is not allowed: {dest}"
            )
        check_cancelled(cancel_token)
        self._gateway.copy(source_key, dest_key)

    def get_info(self, path: str) -> FileItem | None:
        """Return the entry for a file or directory, or None if neither exists."""
        normalized = normalize_path(path)
        if normalized:
            metadata = self._gateway.head(self.codec.encode(path))
            if metadata is not None:
                return file_item(normalized.rsplit("/", 1)[-1], metadata)
        return self._dirs.info(path)

    # -------------------------------------------------------------------------
    # Directories
    # -------------------------------------------------------------------------

    def directory_exists(self, path: str) -> bool:
        """Check if a directory exists (the root, or a marked directory)."""
        return self._dirs.exists(path)

    def create_directory(self, path: str) -> None:
        """Create a directory and any missing ancestors."""
        self._dirs.create(path)

    def delete_directory(
        self,
        path: str,
        recursive: bool = False,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Delete a directory and everything under it.

        Without ``recursive`` this does nothing.
        """
        self._dirs.delete(path, recursive, cancel_token)

    def list(
        self, path: str = "", cancel_token: CancellationToken | None = None
    ) -> Iterator[FileItem]:
        """Lazily list the immediate children of a directory."""
        return self._dirs.list(path, cancel_token)

    # -------------------------------------------------------------------------
    # Resumable uploads
    # -------------------------------------------------------------------------

    def begin_resumable_upload(
        self, path: str, cancel_token: CancellationToken | None = None
    ) -> ResumableUploadStream:
        """Start a multipart upload whose progress can be checkpointed."""
        key = self._key(path)
        check_cancelled(cancel_token)
        upload_id = self._gateway.create_multipart(key)
        return ResumableUploadStream(
            self._gateway, key, UploadState(upload_id), self.config.part_size
        )

    def continue_resumable_upload(self, path: str, token: bytes) -> ResumableUploadStream:
        """Reopen an upload from a token returned by ``commit``."""
        return ResumableUploadStream.from_token(
            self._gateway, self._key(path), token, self.config.part_size
        )

    def complete_resumable_upload(
        self, path: str, token: bytes, cancel_token: CancellationToken | None = None
    ) -> None:
        """Finish an upload from its last token."""
        stream = self.continue_resumable_upload(path, token)
        stream.complete(cancel_token)

    def cancel_resumable_upload(self, path: str, token: bytes) -> None:
        """Abort an upload from its last token. Never raises for backend errors."""
        stream = self.continue_resumable_upload(path, token)
        stream.cancel()

    # -------------------------------------------------------------------------
    # Lifetime
    # -------------------------------------------------------------------------

    def describe(self) -> str:
        """Short human-readable description of the target location."""
        return f"Amazon S3: {self.config.bucket}://{(self.config.prefix or '').lstrip('/')}"

    def close(self) -> None:
        """Close the underlying client. Safe to call more than once."""
        self._gateway.close()

    def __enter__(self) -> "BucketFS":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
