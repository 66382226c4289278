"""
blobtree — header index builder for single-file archives.

A directory tree is packed as one contiguous blob of file contents plus a
header tree describing where each file lives in the blob:

- ArchiveIndex: path-addressed tree built one insertion at a time, with a
  single offset cursor that reserves each file's byte range in the blob.
- Per-file SHA-256 checksum and block digests over the effective content.
- Optional content transforms (deflate/zstd) run before hashing.
- Excluded ("unpacked") entries keep their size but take no blob space.
- Symlinks are stored as root-relative paths and resolved on lookup.

The header serializer and the blob writer consume ``ArchiveIndex.to_header()``
and the ``FileEntry.content_path`` of each committed file.
"""

__version__ = "0.1"

from .errors import (
    BlobTreeError,
    BrokenLinkError,
    FileTooLargeError,
    LinkCycleError,
    LinkEscapesRootError,
    NodeNotFoundError,
    PathConflictError,
    PathEscapesRootError,
)
from .index import ArchiveIndex, FileEntry, FileInfo
from .node import Node

__all__ = [
    "ArchiveIndex",
    "FileEntry",
    "FileInfo",
    "Node",
    "BlobTreeError",
    "BrokenLinkError",
    "FileTooLargeError",
    "LinkCycleError",
    "LinkEscapesRootError",
    "NodeNotFoundError",
    "PathConflictError",
    "PathEscapesRootError",
]
