from __future__ import annotations

from typing import List

from .errors import PathEscapesRootError


def split_archive_path(p: str) -> List[str]:
    """Split an archive path into its canonical segments.

    Rules:
    - Convert backslashes to slashes
    - Ignore leading/trailing slashes, empty and '.' segments
    - Fold '..' into the preceding segment; stepping above the root raises

    The empty list denotes the root.
    """
    parts: List[str] = []
    for q in p.replace("\\", "/").split("/"):
        if q in ("", "."):
            continue
        if q == "..":
            if not parts:
                raise PathEscapesRootError(f"{p}: path escapes the archive root")
            parts.pop()
            continue
        parts.append(q)
    return parts


def norm_path(p: str) -> str:
    """Normalize archive paths to a canonical forward-slash form."""
    return "/".join(split_archive_path(p))
