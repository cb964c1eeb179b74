"""Mapping between virtual paths and object keys."""

from __future__ import annotations

import re

_MULTI_SLASH = re.compile(r"/{2,}")

# Keys written by old releases escaped some characters as runs of "!XX".
_LEGACY_ESCAPE = re.compile(r"(![0-9A-F][0-9A-F])+")


def normalize_path(path: str | None) -> str:
    """Normalize a virtual path.

    Trims leading and trailing separators and drops every run of two or
    more separators entirely.

    Args:
        path: Virtual path (e.g., "/packages//a.nupkg/").

    Returns:
        Normalized path (e.g., "packagesa.nupkg"); "" for the root.
    """
    if not path:
        return ""
    return _MULTI_SLASH.sub("", path.strip("/"))


def _unescape_legacy(match: re.Match) -> str:
    raw = bytes(int(part, 16) for part in match.group(0).split("!") if part)
    return raw.decode("utf-8", errors="replace")


def decode_legacy(name: str) -> str:
    """Undo the "!XX" escaping that older releases applied to keys."""
    return _LEGACY_ESCAPE.sub(_unescape_legacy, name)


class PathCodec:
    """Encodes virtual paths into object keys under a fixed prefix.

    Keys never start or end with a separator. The root encodes to the
    prefix itself (without its trailing separator).

    Example:
        >>> codec = PathCodec("feeds/")
        >>> codec.encode("/nuget/pkg.nupkg")
        'feeds/nuget/pkg.nupkg'
        >>> codec.decode("feeds/nuget/pkg.nupkg")
        'nuget/pkg.nupkg'
    """

    def __init__(self, prefix: str = ""):
        prefix = (prefix or "").strip("/")
        self.prefix = prefix + "/" if prefix else ""

    def encode(self, path: str | None) -> str:
        return (self.prefix + normalize_path(path)).strip("/")

    def directory_prefix(self, path: str | None) -> str:
        """Listing prefix for the contents of a directory ("" for bucket root)."""
        key = self.encode(path)
        return key + "/" if key else ""

    def marker_key(self, path: str | None) -> str:
        """Key of the zero-length object that marks a directory."""
        return self.encode(path) + "/"

    def decode(self, key: str, prefix: str | None = None) -> str:
        """Convert an object key back to a virtual path.

        Args:
            key: Object key.
            prefix: Listing prefix to strip instead of the configured one.

        Returns:
            Path relative to ``prefix``, with legacy escapes decoded.
        """
        strip = self.prefix if prefix is None else prefix
        if strip and key + "/" == strip:
            return ""
        if strip and key.startswith(strip):
            key = key[len(strip) :]
        return decode_legacy(key.strip("/"))
