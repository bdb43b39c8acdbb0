"""Exception taxonomy for citation key resolution.

Only ``CacheCorrupt`` and ``CacheWriteFailed`` abort a run. Everything else
is handled per citation and ends up as an ``Unresolved`` result.
"""

from __future__ import annotations


class CitekeyResolverError(Exception):
    """Base class for all errors raised by this package."""


class ConnectorUnreachable(CitekeyResolverError):
    """A data source could not be reached (refused, timed out, or kept failing)."""

    def __init__(self, url: str, reason: str, refused: bool = False) -> None:
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason
        self.refused = refused


class AmbiguityError(CitekeyResolverError):
    """Several candidates matched and none is uniquely pinned to the key."""

    def __init__(self, key: str, count: int, pinned: int = 0) -> None:
        super().__init__(f"{key}: {count} matches, {pinned} pinned to this key")
        self.key = key
        self.count = count
        self.pinned = pinned


class CacheCorrupt(CitekeyResolverError):
    """The existing bibliography file cannot be parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class CacheWriteFailed(CitekeyResolverError):
    """Writing or replacing the bibliography file failed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class UnsupportedFormatError(CitekeyResolverError, ValueError):
    """The bibliography filename has no supported suffix."""
