from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import KIND_DIR, KIND_FILE, KIND_LINK, HASH_ALGORITHM


@dataclass
class Node:
    """One entry of the header tree.

    ``kind`` selects which fields are meaningful:

    - directory: ``children`` (name -> Node), ``excluded``
    - file: ``size``, ``offset``, ``checksum``, ``executable``, ``excluded``,
      plus the per-block digests in ``blocks``
    - link: ``link``, an archive path relative to the root

    Excluded files keep ``size`` only; ``offset`` and ``checksum`` stay None.
    """

    kind: int = KIND_DIR
    children: Optional[Dict[str, "Node"]] = field(default_factory=dict)
    excluded: bool = False
    size: Optional[int] = None
    offset: Optional[int] = None
    checksum: Optional[str] = None
    executable: bool = False
    link: Optional[str] = None
    block_size: Optional[int] = None
    blocks: Optional[List[str]] = None

    @classmethod
    def directory(cls) -> "Node":
        return cls(kind=KIND_DIR, children={})

    @property
    def is_dir(self) -> bool:
        return self.kind == KIND_DIR

    @property
    def is_file(self) -> bool:
        return self.kind == KIND_FILE

    @property
    def is_link(self) -> bool:
        return self.kind == KIND_LINK

    def _reset(self, kind: int) -> None:
        self.kind = kind
        self.children = None
        self.size = None
        self.offset = None
        self.checksum = None
        self.executable = False
        self.link = None
        self.block_size = None
        self.blocks = None

    def make_directory(self) -> Dict[str, "Node"]:
        # Re-inserting a path as a directory drops whatever it held before
        self._reset(KIND_DIR)
        self.children = {}
        return self.children

    def make_excluded_file(self, size: int) -> None:
        self._reset(KIND_FILE)
        self.size = size
        self.excluded = True

    def make_file(
        self,
        *,
        size: int,
        offset: int,
        checksum: str,
        executable: bool,
        block_size: int,
        blocks: List[str],
    ) -> None:
        self._reset(KIND_FILE)
        self.excluded = False
        self.size = size
        self.offset = offset
        self.checksum = checksum
        self.executable = executable
        self.block_size = block_size
        self.blocks = list(blocks)

    def make_link(self, target: str) -> None:
        self._reset(KIND_LINK)
        self.link = target

    def to_header(self) -> Dict[str, Any]:
        """Mapping form of this node (and its subtree) for the header writer."""
        out: Dict[str, Any] = {}
        if self.kind == KIND_DIR:
            out["files"] = {name: child.to_header() for name, child in (self.children or {}).items()}
            if self.excluded:
                out["excluded"] = True
        elif self.kind == KIND_LINK:
            out["link"] = self.link
        else:
            out["size"] = self.size
            if self.excluded:
                out["excluded"] = True
                return out
            # 64-bit offsets do not fit every reader's native number type
            out["offset"] = str(self.offset)
            if self.executable:
                out["executable"] = True
            out["checksum"] = self.checksum
            out["integrity"] = {
                "algorithm": HASH_ALGORITHM,
                "hash": self.checksum,
                "block_size": self.block_size,
                "blocks": list(self.blocks or []),
            }
        return out
