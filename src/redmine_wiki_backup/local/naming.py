"""Utilities for mapping Redmine names to filesystem path segments."""

from __future__ import annotations

import re
from typing import Optional

from ..errors import UnsafePathError

_HOSTILE_RE = re.compile(r"[/\\\x00-\x1f\x7f]")
_MAX_SEGMENT_BYTES = 255


def safe_segment(value: Optional[str], *, suffix: str = "") -> str:
    """Return ``value`` + ``suffix`` as a single path segment.

    Path separators and control characters are replaced with ``_``, so a name
    without them is returned unchanged. Names that cannot be represented at
    all raise :class:`UnsafePathError`.
    """

    if value is None:
        raise UnsafePathError(value, "name is missing")
    escaped = _HOSTILE_RE.sub("_", str(value))
    if escaped.strip() in ("", ".", ".."):
        raise UnsafePathError(value, "name does not denote a file")
    segment = escaped + suffix
    if len(segment.encode("utf-8")) > _MAX_SEGMENT_BYTES:
        raise UnsafePathError(value, f"name is longer than {_MAX_SEGMENT_BYTES} bytes")
    return segment
