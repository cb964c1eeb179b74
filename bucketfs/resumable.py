"""Resumable multipart uploads.

A :class:`ResumableUploadStream` buffers written bytes and, on
:meth:`~ResumableUploadStream.commit`, returns an opaque token from which a
later stream (possibly in another process) resumes the same upload.

Token layout (all strings UTF-8, each prefixed with its byte length as a
7-bit variable-length integer)::

    upload id | int32 LE part count | part ETag * count | tail bytes
"""

from __future__ import annotations

import io
import logging
import struct
from dataclasses import dataclass, field
from typing import IO, TYPE_CHECKING

from .cancellation import CancellationToken, check_cancelled
from .config import MIN_PART_SIZE
from .writefile import new_buffer

if TYPE_CHECKING:
    from .gateway import ObjectGateway

logger = logging.getLogger(__name__)

_INT32 = struct.Struct("<i")


def _write_string(out: io.BytesIO, value: str) -> None:
    raw = value.encode("utf-8")
    length = len(raw)
    while length >= 0x80:
        out.write(bytes([(length & 0x7F) | 0x80]))
        length >>= 7
    out.write(bytes([length]))
    out.write(raw)


def _read_string(data: io.BytesIO) -> str:
    length = 0
    shift = 0
    while True:
        byte = data.read(1)
        if not byte:
            raise ValueError("Truncated upload token")
        length |= (byte[0] & 0x7F) << shift
        if byte[0] < 0x80:
            break
        shift += 7
        if shift > 28:
            raise ValueError("Malformed string length in upload token")
    raw = data.read(length)
    if len(raw) != length:
        raise ValueError("Truncated upload token")
    return raw.decode("utf-8")


@dataclass
class UploadState:
    """Progress of a multipart upload, as carried by a resumable token.

    Attributes:
        upload_id: Multipart upload id.
        etags: ETags of the committed parts, part 1 first.
        tail: Bytes written but not yet uploaded as a part.
    """

    upload_id: str
    etags: list[str] = field(default_factory=list)
    tail: bytes = b""

    def serialize(self) -> bytes:
        out = io.BytesIO()
        _write_string(out, self.upload_id)
        out.write(_INT32.pack(len(self.etags)))
        for etag in self.etags:
            _write_string(out, etag)
        out.write(self.tail)
        return out.getvalue()

    @classmethod
    def deserialize(cls, token: bytes) -> "UploadState":
        """Parse a token produced by :meth:`serialize`.

        Raises:
            ValueError: If the token is truncated or malformed.
        """
        data = io.BytesIO(token)
        upload_id = _read_string(data)
        raw_count = data.read(_INT32.size)
        if len(raw_count) != _INT32.size:
            raise ValueError("Truncated upload token")
        (count,) = _INT32.unpack(raw_count)
        if count < 0:
            raise ValueError(f"Invalid part count in upload token: {count}")
        etags = [_read_string(data) for _ in range(count)]
        return cls(upload_id=upload_id, etags=etags, tail=data.read())


class ResumableUploadStream:
    """Write stream for a multipart upload that survives process restarts.

    Every failure inside :meth:`commit` or :meth:`complete` cancels the
    upload before the error propagates.

    Example:
        >>> stream = fs.begin_resumable_upload("big.bin")
        >>> stream.write(chunk)
        >>> token = stream.commit()
        ... # later, elsewhere
        >>> fs.complete_resumable_upload("big.bin", token)
    """

    def __init__(
        self,
        gateway: "ObjectGateway",
        key: str,
        state: UploadState,
        min_part_size: int = MIN_PART_SIZE,
    ):
        self._gateway = gateway
        self.key = key
        self.upload_id = state.upload_id
        self.min_part_size = min_part_size
        self._etags = list(state.etags)
        self._buffer: IO[bytes] = new_buffer()
        self._buffer.write(state.tail)
        self._buffered = len(state.tail)
        self._bytes_written = 0
        self._closed = False

    @classmethod
    def from_token(
        cls,
        gateway: "ObjectGateway",
        key: str,
        token: bytes,
        min_part_size: int = MIN_PART_SIZE,
    ) -> "ResumableUploadStream":
        return cls(gateway, key, UploadState.deserialize(token), min_part_size)

    @property
    def state(self) -> UploadState:
        """Snapshot of the upload id, committed parts and unflushed bytes."""
        self._buffer.seek(0)
        tail = self._buffer.read(self._buffered)
        self._buffer.seek(0, io.SEEK_END)
        return UploadState(self.upload_id, list(self._etags), tail)

    @property
    def bytes_written(self) -> int:
        """Bytes written through this stream instance."""
        return self._bytes_written

    def readable(self) -> bool:
        return False

    def writable(self) -> bool:
        return True

    def seekable(self) -> bool:
        return False

    def write(self, data: bytes | bytearray | memoryview) -> int:
        if self._closed:
            raise ValueError(f"I/O operation on closed file: {self.key}")
        if isinstance(data, str):
            raise TypeError(f"Expected bytes, got {type(data).__name__}")
        written = self._buffer.write(data)
        self._buffered += written
        self._bytes_written += written
        return written

    def read(self, size: int = -1) -> bytes:
        raise io.UnsupportedOperation("read")

    def seek(self, offset: int, whence: int = 0) -> int:
        raise io.UnsupportedOperation("seek")

    def tell(self) -> int:
        return self._bytes_written

    def flush(self) -> None:
        pass

    def _upload_buffer(self) -> None:
        self._buffer.seek(0)
        number = len(self._etags) + 1
        etag = self._gateway.upload_part(self.key, self.upload_id, number, self._buffer)
        self._etags.append(etag)
        logger.debug(f"Uploaded part {number} of {self.key} ({self._buffered} bytes)")
        self._buffer.close()
        self._buffer = new_buffer()
        self._buffered = 0

    def commit(self, cancel_token: CancellationToken | None = None) -> bytes:
        """Checkpoint the upload and return a resumable token.

        Buffered bytes of at least ``min_part_size`` are uploaded as the next
        part; smaller tails travel inside the token.
        """
        try:
            check_cancelled(cancel_token)
            if self._buffered >= self.min_part_size:
                self._upload_buffer()
            return self.state.serialize()
        except BaseException:
            self.cancel()
            raise

    def complete(self, cancel_token: CancellationToken | None = None) -> None:
        """Upload the remaining bytes as the last part and finish the object."""
        try:
            check_cancelled(cancel_token)
            if self._buffered or not self._etags:
                self._upload_buffer()
            check_cancelled(cancel_token)
            self._gateway.complete_multipart(self.key, self.upload_id, self._etags)
        except BaseException:
            self.cancel()
            raise
        finally:
            self.close()

    def cancel(self) -> None:
        """Abort the upload, releasing its parts on the backend. Never raises."""
        self._gateway.abort_quietly(self.key, self.upload_id)
        self.close()

    def close(self) -> None:
        """Release the local buffer. The upload itself stays resumable."""
        if self._closed:
            return
        self._closed = True
        self._buffer.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __enter__(self) -> "ResumableUploadStream":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
