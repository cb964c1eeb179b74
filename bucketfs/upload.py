"""Upload a local directory tree into a bucket."""

from __future__ import annotations

import fnmatch
import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import TYPE_CHECKING

from .cancellation import CancellationToken, check_cancelled

if TYPE_CHECKING:
    from .bucket import BucketFS

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


def _matches(name: str, includes: Iterable[str], excludes: Iterable[str]) -> bool:
    if not any(fnmatch.fnmatch(name, mask) for mask in includes):
        return False
    return not any(fnmatch.fnmatch(name, mask) for mask in excludes)


def find_files(
    source: str | Path,
    includes: Iterable[str] = ("*",),
    excludes: Iterable[str] = (),
) -> list[Path]:
    """List files under ``source`` whose relative path matches the masks.

    Masks are ``fnmatch`` patterns matched against the slash-separated path
    relative to ``source`` and against the bare file name.
    """
    root = Path(source)
    includes = list(includes)
    excludes = list(excludes)
    found = []
    for path in sorted(root.rglob("*")):
        if not path.is_file():
            continue
        relative = path.relative_to(root).as_posix()
        if _matches(relative, includes, excludes) or (
            "/" in relative and _matches(path.name, includes, excludes)
        ):
            found.append(path)
    return found


def upload_directory(
    fs: "BucketFS",
    source: str | Path,
    target: str = "",
    includes: Iterable[str] = ("*",),
    excludes: Iterable[str] = (),
    progress: Callable[[int, int], None] | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[str]:
    """Copy every matching file under ``source`` to ``target`` in the bucket.

    Args:
        fs: Destination filesystem.
        source: Local directory.
        target: Directory in the bucket that receives the files.
        includes: Masks a file must match (default: everything).
        excludes: Masks that exclude a file.
        progress: Called with ``(uploaded_bytes, total_bytes)`` after each
            chunk.
        cancel_token: Checked between chunks.

    Returns:
        Virtual paths written, in upload order.
    """
    root = Path(source)
    if not root.is_dir():
        logger.warning(f"Source directory {root} does not exist; nothing to upload.")
        return []

    files = find_files(root, includes, excludes)
    if not files:
        logger.warning(f"No files match the specified masks in {root}; nothing to upload.")
        return []

    total = sum(f.stat().st_size for f in files)
    uploaded = 0
    target = target.strip("/")
    written = []

    for local in files:
        relative = local.relative_to(root).as_posix()
        path = f"{target}/{relative}" if target else relative
        logger.info(f"Transferring {local} to {path} ({local.stat().st_size} bytes)...")

        with local.open("rb") as src, fs.create_write(path, cancel_token=cancel_token) as dst:
            while True:
                check_cancelled(cancel_token)
                chunk = src.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                dst.write(chunk)
                uploaded += len(chunk)
                if progress is not None:
                    progress(uploaded, total)
        written.append(path)

    return written
