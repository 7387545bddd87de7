"""
Helpers for PATH-like variables.

A PATH-like value is an ordered list of segments joined by a platform
delimiter (``:`` on POSIX, ``;`` on Windows). These helpers are pure and
never touch any storage medium.
"""

from __future__ import annotations

from collections.abc import Iterable

_INVALID_CHARS = ("\0", "'", '"')


def split(value: str | None, delimiter: str = ":") -> list[str]:
    """
    Split a delimited string into trimmed segments.

    Args:
        value: The delimited string. ``None`` or ``""`` yields no segments.
        delimiter: Segment delimiter.

    Returns:
        List of segments with surrounding whitespace removed.
    """
    if not value:
        return []
    return [segment.strip() for segment in value.split(delimiter)]


def join(segments: Iterable[str], delimiter: str = ":") -> str:
    """Join segments with ``delimiter``, omitting empty ones."""
    return delimiter.join(segment for segment in segments if segment)


def unique(segments: Iterable[str], case_insensitive: bool = False) -> list[str]:
    """
    Remove duplicate segments. The first occurrence wins.

    Args:
        segments: Segments in order.
        case_insensitive: Compare segments ignoring case (Windows PATH).

    Returns:
        Segments with duplicates removed, original order preserved.
    """
    seen: set[str] = set()
    result = []
    for segment in segments:
        key = segment.upper() if case_insensitive else segment
        if key in seen:
            continue
        seen.add(key)
        result.append(segment)
    return result


def validate(segments: Iterable[str]) -> bool:
    """Return False if any segment is empty or holds a null byte or quote."""
    for segment in segments:
        if not segment:
            return False
        if any(char in segment for char in _INVALID_CHARS):
            return False
    return True


def normalize_case(segments: Iterable[str]) -> list[str]:
    """Uppercase every segment."""
    return [segment.upper() for segment in segments]
