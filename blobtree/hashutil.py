from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import List

from .constants import DEFAULT_BLOCK_SIZE, READ_CHUNK_SIZE


@dataclass
class ContentDigest:
    checksum: str
    size: int
    block_size: int
    blocks: List[str] = field(default_factory=list)


def digest_file(fs_path: str, block_size: int = DEFAULT_BLOCK_SIZE) -> ContentDigest:
    """Hash a file's content as a whole and in ``block_size`` slices.

    Block digests are taken over consecutive slices of the content; an empty
    file still yields a single block digest (of the empty string).
    """
    whole = hashlib.sha256()
    block = hashlib.sha256()
    block_fill = 0
    blocks: List[str] = []
    total = 0
    with open(fs_path, "rb") as rf:
        while True:
            raw = rf.read(READ_CHUNK_SIZE)
            if not raw:
                break
            whole.update(raw)
            total += len(raw)
            view = memoryview(raw)
            while view:
                take = min(len(view), block_size - block_fill)
                block.update(view[:take])
                block_fill += take
                view = view[take:]
                if block_fill == block_size:
                    blocks.append(block.hexdigest())
                    block = hashlib.sha256()
                    block_fill = 0
    if block_fill or not blocks:
        blocks.append(block.hexdigest())
    return ContentDigest(checksum=whole.hexdigest(), size=total, block_size=block_size, blocks=blocks)
