"""Directory emulation over key prefixes.

The object store has no directories. A directory exists when a zero-length
marker object ``<key>/`` exists for it; directories that only contain files
are listed (as common prefixes) but are not reported by :meth:`exists`
until they are created explicitly.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from datetime import timezone
from typing import TYPE_CHECKING, Any

from .base import FileItem
from .cancellation import CancellationToken, check_cancelled
from .paths import normalize_path

if TYPE_CHECKING:
    from .gateway import ObjectGateway
    from .paths import PathCodec

logger = logging.getLogger(__name__)


def _last_segment(name: str) -> str:
    return name.strip("/").rsplit("/", 1)[-1]


def file_item(name: str, obj: dict[str, Any]) -> FileItem:
    """Build a file entry from a listing entry or HEAD response."""
    modified = obj.get("LastModified")
    if modified is not None and modified.tzinfo is None:
        modified = modified.replace(tzinfo=timezone.utc)
    size = obj["Size"] if "Size" in obj else obj.get("ContentLength")
    return FileItem(name=name, size=size, is_dir=False, modified_at=modified)


class DirectoryEmulator:
    """Synthesizes directory operations from prefix listings and markers."""

    def __init__(self, gateway: "ObjectGateway", codec: "PathCodec"):
        self._gateway = gateway
        self._codec = codec

    def exists(self, path: str) -> bool:
        """True for the root, otherwise iff the directory's marker exists."""
        if not normalize_path(path):
            return True
        return self._gateway.head(self._codec.marker_key(path)) is not None

    def info(self, path: str) -> FileItem | None:
        if not self.exists(path):
            return None
        return FileItem.directory(_last_segment(normalize_path(path)))

    def create(self, path: str) -> None:
        """Create the directory's marker and a marker for every ancestor.

        Already existing markers are left untouched.
        """
        if self.exists(path):
            return
        parts = normalize_path(path).split("/")
        self._gateway.put(self._codec.marker_key(path), b"")
        logger.debug(f"Created directory marker for {path}")
        for i in range(len(parts) - 1, 0, -1):
            current = "/".join(parts[:i])
            if self.exists(current):
                continue
            self._gateway.put(self._codec.marker_key(current), b"")
            logger.debug(f"Created directory marker for {current}")

    def delete(
        self,
        path: str,
        recursive: bool,
        cancel_token: CancellationToken | None = None,
    ) -> None:
        """Delete everything under the directory when ``recursive``.

        Lists and batch-deletes until a listing comes back empty. Without
        ``recursive`` this is a no-op.
        """
        if not recursive:
            return
        prefix = self._codec.directory_prefix(path)
        while True:
            check_cancelled(cancel_token)
            page = next(self._gateway.list(prefix, cancel_token=cancel_token))
            keys = [obj["Key"] for obj in page.get("Contents", [])]
            if not keys:
                return
            self._gateway.delete_many(keys)

    def list(
        self,
        path: str,
        cancel_token: CancellationToken | None = None,
    ) -> Iterator[FileItem]:
        """Yield the immediate children of a directory, directories first per page.

        Each subdirectory is reported once even when it appears on several
        pages. The directory's own marker is not reported.
        """
        prefix = self._codec.directory_prefix(path)
        seen_dirs: set[str] = set()
        for page in self._gateway.list(prefix, delimiter="/", cancel_token=cancel_token):
            for common in page.get("CommonPrefixes", []):
                name = self._codec.decode(common["Prefix"], prefix)
                name = _last_segment(name)
                if name and name not in seen_dirs:
                    seen_dirs.add(name)
                    yield FileItem.directory(name)
            for obj in page.get("Contents", []):
                name = self._codec.decode(obj["Key"], prefix)
                if not name:
                    continue
                if "/" in name:
                    dir_name = name.split("/", 1)[0]
                    if dir_name not in seen_dirs:
                        seen_dirs.add(dir_name)
                        yield FileItem.directory(dir_name)
                    continue
                yield file_item(name, obj)
