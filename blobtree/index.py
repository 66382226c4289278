from __future__ import annotations

import logging
import os
import posixpath
import stat
import sys
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .constants import DEFAULT_BLOCK_SIZE, MAX_FILE_SIZE, MAX_LINK_DEPTH
from .errors import (
    BrokenLinkError,
    FileTooLargeError,
    LinkCycleError,
    LinkEscapesRootError,
    NodeNotFoundError,
    PathConflictError,
    PathEscapesRootError,
)
from .hashutil import ContentDigest, digest_file
from .node import Node
from .pathutil import norm_path, split_archive_path
from .transform import TransformFactory

logger = logging.getLogger(__name__)


@dataclass
class FileInfo:
    """On-disk facts about a source file, as reported by ``os.stat``."""

    size: int
    mode: int

    @classmethod
    def from_path(cls, fs_path: str) -> "FileInfo":
        st = os.stat(fs_path, follow_symlinks=True)
        return cls(size=st.st_size, mode=st.st_mode)


@dataclass
class TransformedFile:
    path: str
    size: int


@dataclass
class FileEntry:
    """A file insertion, first prepared and then committed to the tree.

    After commit, ``node`` is the stamped node and ``content_path`` names the
    bytes the writer must copy to ``node.offset``. A transformed copy lives in
    a temporary file owned by the caller; ``cleanup()`` removes it.
    """

    fs_path: str
    parts: List[str]
    size: int
    excluded: bool
    executable: bool = False
    digest: Optional[ContentDigest] = None
    transformed: Optional[TransformedFile] = None
    node: Optional[Node] = field(default=None, repr=False)

    @property
    def archive_path(self) -> str:
        return "/" + "/".join(self.parts)

    @property
    def content_path(self) -> str:
        return self.transformed.path if self.transformed else self.fs_path

    def cleanup(self) -> None:
        if self.transformed is not None:
            _remove_temp(self.transformed.path)
            self.transformed = None


def _remove_temp(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


class ArchiveIndex:
    """Header tree of an archive being built, plus the blob offset cursor.

    Insertions take filesystem paths, either absolute or relative to
    ``root_path``. Lookups take archive paths (``"/a/b"`` or ``"a/b"``).

    All tree mutations run under one lock. For files the stamping step
    (read ``cursor``, stamp the node, advance ``cursor``) happens inside that
    lock in ``commit_file``; the expensive work of ``prepare_file``
    (transform, hashing) does not touch shared state and may run on any
    thread.
    """

    def __init__(self, src: str, *, block_size: int = DEFAULT_BLOCK_SIZE):
        if block_size <= 0:
            raise ValueError("block_size must be positive")
        self.root_path = os.path.abspath(os.fspath(src))
        self.root = Node.directory()
        self.block_size = block_size
        self._cursor = 0
        self._lock = threading.Lock()

    @property
    def cursor(self) -> int:
        """Next free byte offset in the blob; also the total packed size."""
        return self._cursor

    # path resolution
    def _relative_parts(self, p: str) -> List[str]:
        p = os.fspath(p)
        if os.path.isabs(p):
            try:
                rel = os.path.relpath(p, self.root_path)
            except ValueError:
                # different drive
                raise PathEscapesRootError(f"{p}: path escapes the archive root {self.root_path}")
        else:
            rel = os.path.normpath(p)
        if rel == os.curdir:
            return []
        if rel == os.pardir or rel.startswith(os.pardir + os.sep):
            raise PathEscapesRootError(f"{p}: path escapes the archive root {self.root_path}")
        return [q for q in rel.split(os.sep) if q]

    def _fs_path(self, p: str) -> str:
        p = os.fspath(p)
        return p if os.path.isabs(p) else os.path.join(self.root_path, p)

    def _resolve(self, parts: List[str], *, create: bool) -> Node:
        """Walk ``parts`` from the root; with ``create``, missing segments
        become empty directories. Callers hold the lock when creating."""
        node = self.root
        for depth, name in enumerate(parts):
            if not node.is_dir:
                where = "/" + "/".join(parts[:depth])
                if create:
                    raise PathConflictError(f"{where}: not a directory")
                raise NodeNotFoundError("/" + "/".join(parts))
            child = node.children.get(name)
            if child is None:
                if not create:
                    raise NodeNotFoundError("/" + "/".join(parts))
                child = Node.directory()
                # new entries below an excluded directory are excluded too
                child.excluded = node.excluded
                node.children[name] = child
            node = child
        return node

    # insertion
    def insert_directory(self, path: str, exclude: bool = False) -> Dict[str, Node]:
        """Make ``path`` an empty directory node and return its children.

        The root itself keeps its children; only ``exclude`` applies to it.
        """
        parts = self._relative_parts(path)
        if not parts:
            with self._lock:
                if exclude:
                    self.root.excluded = True
                return self.root.children
        with self._lock:
            node = self._resolve(parts, create=True)
            if exclude:
                node.excluded = True
            children = node.make_directory()
        logger.debug("dir /%s%s", "/".join(parts), " (excluded)" if exclude else "")
        return children

    def insert_file(
        self,
        path: str,
        exclude: bool = False,
        file_info: Optional[FileInfo] = None,
        *,
        transform: Optional[TransformFactory] = None,
    ) -> FileEntry:
        """Prepare and commit one file; see ``prepare_file``/``commit_file``."""
        entry = self.prepare_file(path, exclude, file_info, transform=transform)
        try:
            return self.commit_file(entry)
        except BaseException:
            entry.cleanup()
            raise

    def prepare_file(
        self,
        path: str,
        exclude: bool = False,
        file_info: Optional[FileInfo] = None,
        *,
        transform: Optional[TransformFactory] = None,
    ) -> FileEntry:
        """Compute everything a file node needs except its offset.

        Files that are excluded, or whose parent directory is excluded, only
        record the on-disk size. Otherwise the optional transform runs into a
        temporary file, the effective size is checked against the u32 ceiling
        and the effective content is hashed.

        Raises:
            PathEscapesRootError, PathConflictError, FileTooLargeError, OSError
        """
        parts = self._relative_parts(path)
        if not parts:
            raise PathConflictError(f"{path}: the archive root is a directory")
        fs_path = self._fs_path(path)
        if file_info is None:
            file_info = FileInfo.from_path(fs_path)
        with self._lock:
            parent = self._resolve(parts[:-1], create=True)
            if not parent.is_dir:
                raise PathConflictError(f"/{'/'.join(parts[:-1])}: not a directory")
            parent_excluded = parent.excluded
        if exclude or parent_excluded:
            return FileEntry(fs_path=fs_path, parts=parts, size=file_info.size, excluded=True)

        transformed = self._apply_transform(fs_path, transform)
        size = transformed.size if transformed is not None else file_info.size
        try:
            if size > MAX_FILE_SIZE:
                raise FileTooLargeError(f"{fs_path}: file size can not be larger than {MAX_FILE_SIZE} bytes")
            digest = digest_file(transformed.path if transformed is not None else fs_path, self.block_size)
            # size and checksum must describe the same bytes
            if digest.size != size:
                logger.debug("%s: stat reported %d bytes, read %d", fs_path, size, digest.size)
                size = digest.size
                if size > MAX_FILE_SIZE:
                    raise FileTooLargeError(f"{fs_path}: file size can not be larger than {MAX_FILE_SIZE} bytes")
        except BaseException:
            if transformed is not None:
                _remove_temp(transformed.path)
            raise
        executable = sys.platform != "win32" and bool(file_info.mode & stat.S_IXUSR)
        return FileEntry(
            fs_path=fs_path,
            parts=parts,
            size=size,
            excluded=False,
            executable=executable,
            digest=digest,
            transformed=transformed,
        )

    def commit_file(self, entry: FileEntry) -> FileEntry:
        """Place a prepared file in the tree and reserve its blob range."""
        if entry.node is not None:
            raise RuntimeError(f"{entry.archive_path}: already committed")
        with self._lock:
            node = self._resolve(entry.parts, create=True)
            if node.is_file and node.offset is not None:
                # a blob range is reserved once and never moved
                raise PathConflictError(f"{entry.archive_path}: already placed at offset {node.offset}")
            if entry.excluded:
                node.make_excluded_file(entry.size)
            else:
                # critical section: cursor read ... cursor write
                offset = self._cursor
                node.make_file(
                    size=entry.size,
                    offset=offset,
                    checksum=entry.digest.checksum,
                    executable=entry.executable,
                    block_size=entry.digest.block_size,
                    blocks=entry.digest.blocks,
                )
                self._cursor = offset + entry.size
        entry.node = node
        if entry.excluded:
            logger.debug("file %s excluded (%d bytes)", entry.archive_path, entry.size)
        else:
            logger.debug("file %s at %d (%d bytes)", entry.archive_path, node.offset, entry.size)
        return entry

    def _apply_transform(self, fs_path: str, transform: Optional[TransformFactory]) -> Optional[TransformedFile]:
        tr = transform(fs_path) if transform is not None else None
        if tr is None:
            return None
        try:
            fd, tmp_path = tempfile.mkstemp(prefix="blobtree-")
        except OSError as exc:
            logger.warning("%s: cannot create temporary file (%s); packing untransformed content", fs_path, exc)
            return None
        try:
            with os.fdopen(fd, "wb") as out, open(fs_path, "rb") as src:
                tr(src, out)
            size = os.stat(tmp_path).st_size
        except Exception as exc:
            logger.warning("%s: transform failed (%s); packing untransformed content", fs_path, exc)
            _remove_temp(tmp_path)
            return None
        return TransformedFile(path=tmp_path, size=size)

    def insert_link(self, path: str) -> str:
        """Record ``path`` as a link to its real target, relative to the root.

        Raises:
            LinkEscapesRootError: the real target lies outside the root.
        """
        parts = self._relative_parts(path)
        fs_path = self._fs_path(path)
        real_root = os.path.realpath(self.root_path)
        target = os.path.realpath(fs_path)
        try:
            rel = os.path.relpath(target, real_root)
        except ValueError:
            raise LinkEscapesRootError(f"{fs_path}: file links out of the archive root")
        if rel == os.pardir or rel.startswith(os.pardir + os.sep):
            raise LinkEscapesRootError(f"{fs_path}: file links out of the archive root")
        link = rel.replace(os.sep, "/")
        with self._lock:
            node = self._resolve(parts, create=True)
            node.make_link(link)
        logger.debug("link /%s -> %s", "/".join(parts), link)
        return link

    # enumeration and lookup
    def walk(self) -> Iterator[Tuple[str, Node]]:
        """Yield ``(archive_path, node)`` for every node below the root, pre-order.

        Siblings come in insertion order, so equal insertion sequences walk
        identically. Not safe to interleave with insertions.
        """
        stack: List[Tuple[str, Node]] = [("/", self.root)]
        while stack:
            prefix, node = stack.pop()
            if prefix != "/":
                yield prefix, node
            if node.is_dir:
                # reversed so the first child is popped first
                for name, child in reversed(list(node.children.items())):
                    stack.append((posixpath.join(prefix, name), child))

    def list_files(self) -> List[str]:
        with self._lock:
            return [p for p, _ in self.walk()]

    def get_node(self, path: str) -> Node:
        """Look up an archive path without creating anything.

        Raises:
            NodeNotFoundError: some segment is missing.
        """
        parts = split_archive_path(path)
        with self._lock:
            return self._resolve(parts, create=False)

    def get_file(self, path: str, follow_links: bool = True) -> Node:
        """Like ``get_node`` but resolves link chains when ``follow_links``.

        Raises:
            NodeNotFoundError: ``path`` itself is missing.
            BrokenLinkError: a link in the chain points at nothing.
            LinkCycleError: the chain revisits a path or exceeds MAX_LINK_DEPTH hops.
        """
        node = self.get_node(path)
        if not follow_links:
            return node
        current = norm_path(path)
        seen = {current}
        while node.is_link:
            target = norm_path(node.link)
            if target in seen or len(seen) > MAX_LINK_DEPTH:
                raise LinkCycleError(f"/{current}: link cycle through /{target}")
            seen.add(target)
            try:
                node = self.get_node(target)
            except NodeNotFoundError as exc:
                raise BrokenLinkError(f"/{current}: link target /{target} does not exist") from exc
            current = target
        return node

    def to_header(self) -> Dict[str, Any]:
        """Nested mapping of the whole tree for the header writer."""
        with self._lock:
            return self.root.to_header()
