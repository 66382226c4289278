from __future__ import annotations

import fnmatch
import os
import zlib
from typing import BinaryIO, Callable, Iterable, Optional

from .constants import CODEC_NONE, CODEC_DEFLATE, CODEC_ZSTD, DEFAULT_CODEC_ID, READ_CHUNK_SIZE

_HAS_ZSTD = False
_zstd_mod = None
try:  # zstd is optional; install the "zstd" extra to enable it
    import zstandard as _zstd_mod  # type: ignore
    _HAS_ZSTD = True
except ImportError:
    _zstd_mod = None
    _HAS_ZSTD = False


# A transform consumes the source byte stream and writes the transformed bytes.
Transform = Callable[[BinaryIO, BinaryIO], None]
# A transform factory picks the transform for a source path, or None for none.
TransformFactory = Callable[[str], Optional[Transform]]


class CodecTransform:
    """Streaming compression transform (deflate via zlib, zstd via zstandard)."""

    def __init__(self, codec_id: int = DEFAULT_CODEC_ID, level: Optional[int] = None):
        if codec_id == CODEC_ZSTD and not (_HAS_ZSTD and _zstd_mod is not None):
            raise RuntimeError("zstd codec selected but zstandard module is not available")
        if codec_id not in (CODEC_NONE, CODEC_DEFLATE, CODEC_ZSTD):
            raise RuntimeError(f"unsupported codec id: {codec_id}")
        self.codec_id = codec_id
        self.level = level

    def __call__(self, src: BinaryIO, dst: BinaryIO) -> None:
        if self.codec_id == CODEC_NONE:
            for raw in _read_chunks(src):
                dst.write(raw)
            return
        if self.codec_id == CODEC_DEFLATE:
            co = zlib.compressobj(self.level if self.level is not None else 6)
            for raw in _read_chunks(src):
                dst.write(co.compress(raw))
            dst.write(co.flush())
            return
        c = _zstd_mod.ZstdCompressor(level=self.level if self.level is not None else 3)
        c.copy_stream(src, dst, read_size=READ_CHUNK_SIZE)


def _read_chunks(src: BinaryIO) -> Iterable[bytes]:
    while True:
        raw = src.read(READ_CHUNK_SIZE)
        if not raw:
            break
        yield raw


def codec_transform_for(
    patterns: Iterable[str],
    codec_id: int = DEFAULT_CODEC_ID,
    level: Optional[int] = None,
) -> TransformFactory:
    """Build a factory applying one codec to paths whose basename or full path
    matches any of the glob ``patterns``."""
    pats = list(patterns)
    transform = CodecTransform(codec_id, level)

    def factory(fs_path: str) -> Optional[Transform]:
        name = os.path.basename(fs_path)
        for pat in pats:
            if fnmatch.fnmatch(name, pat) or fnmatch.fnmatch(fs_path, pat):
                return transform
        return None

    return factory
