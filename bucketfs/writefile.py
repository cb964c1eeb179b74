"""Write stream that uploads to the object store while the caller writes."""

from __future__ import annotations

import io
import logging
import shutil
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from typing import IO, TYPE_CHECKING

from .cancellation import CancellationToken, check_cancelled
from .config import MIN_PART_SIZE

if TYPE_CHECKING:
    from .gateway import ObjectGateway

logger = logging.getLogger(__name__)

#: Buffers larger than this spill from memory to a temporary file.
SPOOL_MAX_SIZE = 1024 * 1024


def new_buffer(spool_size: int = SPOOL_MAX_SIZE) -> IO[bytes]:
    return tempfile.SpooledTemporaryFile(max_size=spool_size)


class S3WriteStream:
    """Write-only stream that persists to the object store on close.

    Data is buffered in parts of ``part_size`` bytes. An object smaller
    than two parts is stored with a single PUT on close. Once two full
    parts are buffered a multipart upload starts: every full part is handed
    to a single background worker, which uploads parts strictly in order
    while the caller keeps writing. Closing waits for the worker, uploads
    the tail as the last part and completes the upload. Any failure during
    multipart work aborts the upload before the error propagates.

    Attributes:
        key: Object key being written.
        part_size: Size of every part except the last.
    """

    def __init__(
        self,
        gateway: "ObjectGateway",
        key: str,
        part_size: int = MIN_PART_SIZE,
        cancel_token: CancellationToken | None = None,
        spool_size: int = SPOOL_MAX_SIZE,
    ):
        """Initialize a write stream.

        Args:
            gateway: Gateway used for all uploads.
            key: Object key to write.
            part_size: Multipart part size in bytes.
            cancel_token: Token checked before each backend call.
            spool_size: In-memory size of each part buffer before it
                spills to disk.
        """
        self._gateway = gateway
        self.key = key
        self.part_size = part_size
        self._cancel_token = cancel_token
        self._spool_size = spool_size

        self._buffer = new_buffer(spool_size)
        self._buffered = 0
        # First full part, held back until a second one proves multipart is needed.
        self._held: IO[bytes] | None = None
        self._bytes_written = 0
        self._closed = False

        self._executor: ThreadPoolExecutor | None = None
        self._futures: list[Future] = []
        self._next_part = 1
        self._upload_id: str | None = None
        self._etags: list[str] = []

    @property
    def upload_id(self) -> str | None:
        """Multipart upload id, once the background worker has initiated one."""
        return self._upload_id

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def write(self, data: bytes | bytearray | memoryview) -> int:
        """Append data to the object.

        Returns:
            Number of bytes written.

        Raises:
            TypeError: If data is not bytes-like.
            ValueError: If the stream is closed.
        """
        if self._closed:
            raise ValueError(f"I/O operation on closed file: {self.key}")
        if isinstance(data, str):
            raise TypeError(f"Expected bytes, got {type(data).__name__}")

        view = memoryview(data).cast("B")
        total = len(view)
        while view:
            room = self.part_size - self._buffered
            chunk = view[:room]
            self._buffer.write(chunk)
            self._buffered += len(chunk)
            view = view[room:]
            if self._buffered >= self.part_size:
                self._swap_buffer()

        self._bytes_written += total
        return total

    def writelines(self, lines: list[bytes]) -> None:
        for line in lines:
            self.write(line)

    def read(self, size: int = -1) -> bytes:
        raise io.UnsupportedOperation("read")

    def seek(self, offset: int, whence: int = 0) -> int:
        raise io.UnsupportedOperation("seek")

    def tell(self) -> int:
        """Return the number of bytes written so far."""
        return self._bytes_written

    def flush(self) -> None:
        """Flush is a no-op (parts upload as they fill, the rest on close)."""

    def _swap_buffer(self) -> None:
        full = self._buffer
        self._buffer = new_buffer(self._spool_size)
        self._buffered = 0

        if self._executor is None:
            if self._held is None:
                self._held = full
                return
            self._executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="bucketfs-upload"
            )
            held, self._held = self._held, None
            self._submit(held)
        self._submit(full)

    def _submit(self, buffer: IO[bytes]) -> None:
        number = self._next_part
        self._next_part += 1
        self._futures.append(self._executor.submit(self._upload_part, number, buffer))

    def _upload_part(self, number: int, buffer: IO[bytes]) -> None:
        # Runs on the single worker thread, so parts arrive in order.
        try:
            check_cancelled(self._cancel_token)
            if self._upload_id is None:
                self._upload_id = self._gateway.create_multipart(self.key)
            buffer.seek(0)
            etag = self._gateway.upload_part(self.key, self._upload_id, number, buffer)
            self._etags.append(etag)
            logger.debug(f"Uploaded part {number} of {self.key}")
        finally:
            buffer.close()

    def close(self) -> None:
        """Finalize the upload and release buffers.

        Raises:
            OperationCancelledError: If the cancel token was set.
            botocore.exceptions.ClientError: If the backend rejects a call.
        """
        if self._closed:
            return
        self._closed = True
        try:
            if self._executor is None:
                self._put_single()
            else:
                self._complete_multipart()
        finally:
            self._buffer.close()
            if self._held is not None:
                self._held.close()

    def _put_single(self) -> None:
        body = self._buffer
        if self._held is not None:
            self._buffer.seek(0)
            shutil.copyfileobj(self._buffer, self._held)
            body = self._held
        check_cancelled(self._cancel_token)
        body.seek(0)
        self._gateway.put(self.key, body)

    def _complete_multipart(self) -> None:
        try:
            for future in self._futures:
                future.result()
            check_cancelled(self._cancel_token)
            if self._buffered:
                self._buffer.seek(0)
                etag = self._gateway.upload_part(
                    self.key, self._upload_id, self._next_part, self._buffer
                )
                self._etags.append(etag)
            self._gateway.complete_multipart(self.key, self._upload_id, self._etags)
        except BaseException:
            self._executor.shutdown(wait=True, cancel_futures=True)
            if self._upload_id is not None:
                self._gateway.abort_quietly(self.key, self._upload_id)
            raise
        finally:
            self._executor.shutdown(wait=True)

    @property
    def closed(self) -> bool:
        """Return True if the stream is closed."""
        return self._closed

    def __enter__(self) -> "S3WriteStream":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
