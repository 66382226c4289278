from __future__ import annotations

import concurrent.futures as _fut
import fnmatch
import logging
import os
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from .constants import DEFAULT_BLOCK_SIZE
from .index import ArchiveIndex, FileEntry
from .transform import TransformFactory

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    index: ArchiveIndex
    files: List[FileEntry] = field(default_factory=list)
    links: List[Tuple[str, str]] = field(default_factory=list)

    def packed(self) -> List[FileEntry]:
        """Committed, non-excluded files in blob order."""
        return [e for e in self.files if not e.excluded]

    def cleanup(self) -> None:
        for e in self.files:
            e.cleanup()


def _matches(rel: str, patterns: Sequence[str]) -> bool:
    name = rel.rsplit("/", 1)[-1]
    return any(fnmatch.fnmatch(rel, pat) or fnmatch.fnmatch(name, pat) for pat in patterns)


def _crawl(root: str) -> Tuple[List[str], List[str], List[str]]:
    """Collect root-relative directories, links and files in sorted depth-first order."""
    dirs: List[str] = []
    links: List[str] = []
    files: List[str] = []
    for cur, dirnames, filenames in os.walk(root, followlinks=False):
        rel_cur = os.path.relpath(cur, root)
        rel_cur = "" if rel_cur == os.curdir else rel_cur.replace(os.sep, "/")
        dirnames.sort()
        real_dirs = []
        for d in dirnames:
            rel = f"{rel_cur}/{d}" if rel_cur else d
            if os.path.islink(os.path.join(cur, d)):
                links.append(rel)
            else:
                dirs.append(rel)
                real_dirs.append(d)
        dirnames[:] = real_dirs
        for fn in sorted(filenames):
            rel = f"{rel_cur}/{fn}" if rel_cur else fn
            if os.path.islink(os.path.join(cur, fn)):
                links.append(rel)
            else:
                files.append(rel)
    return dirs, links, files


def _apply_ordering(files: List[str], ordering: Optional[Iterable[str]]) -> List[str]:
    if not ordering:
        return files
    present = set(files)
    first: List[str] = []
    for p in ordering:
        p = p.replace("\\", "/").strip("/")
        if p in present and p not in first:
            first.append(p)
    placed = set(first)
    return first + [f for f in files if f not in placed]


def build_index(
    src: str,
    *,
    unpack: Sequence[str] = (),
    unpack_dir: Sequence[str] = (),
    transform: Optional[TransformFactory] = None,
    ordering: Optional[Iterable[str]] = None,
    workers: int = 1,
    block_size: int = DEFAULT_BLOCK_SIZE,
) -> BuildResult:
    """Index the tree under ``src``.

    Directories are inserted first, then links, then files. Files matching
    ``unpack`` and everything below a directory matching ``unpack_dir`` are
    excluded from the blob. File contents are prepared on ``workers`` threads
    and committed in walk order (``ordering`` entries first), so offsets do
    not depend on thread scheduling.

    Transformed contents live in temporary files referenced by the returned
    entries; call ``BuildResult.cleanup()`` once the blob is written.
    """
    index = ArchiveIndex(src, block_size=block_size)
    result = BuildResult(index=index)
    dirs, links, files = _crawl(index.root_path)

    excluded_dirs = set()
    for rel in dirs:
        parent = rel.rsplit("/", 1)[0] if "/" in rel else ""
        exclude = parent in excluded_dirs or _matches(rel, unpack_dir)
        if exclude:
            excluded_dirs.add(rel)
        index.insert_directory(rel, exclude)

    for rel in links:
        result.links.append((rel, index.insert_link(rel)))

    todo = [(rel, _matches(rel, unpack)) for rel in _apply_ordering(files, ordering)]
    with _fut.ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [pool.submit(index.prepare_file, rel, exclude, transform=transform) for rel, exclude in todo]
    try:
        for f in futures:
            result.files.append(index.commit_file(f.result()))
    except BaseException:
        for f in futures:
            if f.exception() is None:
                f.result().cleanup()
        raise
    logger.info(
        "indexed %s: %d dirs, %d links, %d files, %d bytes packed",
        index.root_path, len(dirs), len(links), len(files), index.cursor,
    )
    return result
