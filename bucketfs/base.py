"""Base dataclasses and stream interface.

Defines the entries produced by listings and metadata lookups, the access
hints accepted by ``BucketFS.open_read``, and the common capability
interface shared by the stream variants.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass
class FileItem:
    """A file or directory entry derived live from the object store.

    Attributes:
        name: File or directory name (last path segment).
        size: Object size in bytes (None for directories).
        is_dir: True if this is a directory, False for files.
        modified_at: Last modification time (UTC), if known.
    """

    name: str
    size: int | None
    is_dir: bool = False
    modified_at: datetime | None = None

    @classmethod
    def directory(cls, name: str) -> "FileItem":
        return cls(name=name, size=None, is_dir=True)


class FileAccessHints(enum.Flag):
    """Hints describing how a caller intends to read a file."""

    DEFAULT = 0
    RANDOM_ACCESS = enum.auto()
    SEQUENTIAL = enum.auto()


@runtime_checkable
class FileStream(Protocol):
    """Capability interface implemented by every stream variant.

    Variants answer ``readable()``/``writable()``/``seekable()`` and raise
    ``io.UnsupportedOperation`` for the calls they do not support.
    """

    def readable(self) -> bool: ...

    def writable(self) -> bool: ...

    def seekable(self) -> bool: ...

    def read(self, size: int = -1) -> bytes: ...

    def write(self, data: Any) -> int: ...

    def seek(self, offset: int, whence: int = 0) -> int: ...

    def tell(self) -> int: ...

    def close(self) -> None: ...

    @property
    def closed(self) -> bool: ...
