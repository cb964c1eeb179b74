"""Read streams over stored objects.

``ObjectReadStream`` wraps the body of a single GET for sequential reads.
``RandomAccessReadStream`` issues a ranged GET per read, pinned to the ETag
captured when the stream was opened, so an overwrite while the stream is
open fails the next read instead of splicing old and new bytes.
"""

from __future__ import annotations

import io
import os
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .gateway import ObjectGateway


class ObjectReadStream:
    """Sequential, forward-only stream over a GET response body.

    Attributes:
        key: Object key being read.
        length: Total object size in bytes.
    """

    def __init__(self, body: Any, length: int, key: str):
        self._body = body
        self.length = length
        self.key = key
        self._position = 0
        self._closed = False

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return False

    def read(self, size: int = -1) -> bytes:
        if self._closed:
            raise ValueError(f"I/O operation on closed file: {self.key}")
        data = self._body.read() if size is None or size < 0 else self._body.read(size)
        self._position += len(data)
        return data

    def readinto(self, buffer: bytearray | memoryview) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def write(self, data: Any) -> int:
        raise io.UnsupportedOperation("write")

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        raise io.UnsupportedOperation("seek")

    def tell(self) -> int:
        return self._position

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._body.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __iter__(self):
        return iter(lambda: self.read(io.DEFAULT_BUFFER_SIZE), b"")

    def __enter__(self) -> "ObjectReadStream":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class RandomAccessReadStream:
    """Seekable read-only stream issuing ranged GETs on demand.

    Args:
        gateway: Gateway used for the ranged GETs.
        key: Object key.
        metadata: HEAD response captured at open time; supplies the total
            length and the ETag every read is pinned to.
    """

    def __init__(self, gateway: "ObjectGateway", key: str, metadata: dict[str, Any]):
        self._gateway = gateway
        self.key = key
        self.length: int = metadata["ContentLength"]
        self.etag: str = metadata["ETag"]
        self._position = 0
        self._closed = False

    def readable(self) -> bool:
        return True

    def writable(self) -> bool:
        return False

    def seekable(self) -> bool:
        return True

    def _check_open(self) -> None:
        if self._closed:
            raise ValueError(f"I/O operation on closed file: {self.key}")

    def read(self, size: int = -1) -> bytes:
        """Read up to ``size`` bytes (the rest of the object if negative).

        Raises:
            botocore.exceptions.ClientError: If the object changed since the
                stream was opened (PreconditionFailed) or the backend fails.
            FileNotFoundError: If the object was deleted.
        """
        self._check_open()
        end = self.length if size is None or size < 0 else min(self.length, self._position + size)
        if end <= self._position:
            return b""

        response = self._gateway.get(
            self.key, start=self._position, end=end, if_match=self.etag
        )
        if response is None:
            raise FileNotFoundError(self.key)

        wanted = end - self._position
        chunks = []
        received = 0
        body = response["Body"]
        try:
            # The transport may return short reads; loop until the span is filled.
            while received < wanted:
                chunk = body.read(wanted - received)
                if not chunk:
                    break
                chunks.append(chunk)
                received += len(chunk)
        finally:
            body.close()

        self._position += received
        return b"".join(chunks)

    def readinto(self, buffer: bytearray | memoryview) -> int:
        data = self.read(len(buffer))
        buffer[: len(data)] = data
        return len(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        """Move the read offset. SEEK_END is relative to the captured length."""
        self._check_open()
        if whence == os.SEEK_SET:
            position = offset
        elif whence == os.SEEK_CUR:
            position = self._position + offset
        elif whence == os.SEEK_END:
            position = self.length + offset
        else:
            raise ValueError(f"Invalid whence: {whence}")
        if position < 0:
            raise ValueError(f"Negative seek position {position}")
        self._position = position
        return position

    def tell(self) -> int:
        return self._position

    def write(self, data: Any) -> int:
        raise io.UnsupportedOperation("write")

    def truncate(self, size: int | None = None) -> int:
        raise io.UnsupportedOperation("truncate")

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "RandomAccessReadStream":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
