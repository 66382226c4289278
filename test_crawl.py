from __future__ import annotations

import os
import tempfile
import unittest
import zlib
from pathlib import Path
from typing import Dict

from blobtree.crawl import build_index
from blobtree.errors import LinkEscapesRootError
from blobtree.transform import codec_transform_for


def _build_fixture_tree(root: Path, *, include_symlink: bool = True) -> Dict[str, bytes]:
    files: Dict[str, bytes] = {}
    (root / "docs" / "notes").mkdir(parents=True)
    files["docs/readme.txt"] = b"hello world\n" * 20
    files["docs/notes/binary.bin"] = os.urandom(2048)
    files["docs/notes/empty.txt"] = b""
    files["vendor/lib/big.dat"] = os.urandom(333)
    files["top.md"] = b"# Title\n"
    for rel, data in files.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(data)
    if include_symlink and hasattr(os, "symlink"):
        try:
            os.symlink("notes", root / "docs" / "ln_notes")
            os.symlink(os.path.join("..", "top.md"), root / "docs" / "ln_top")
        except (OSError, NotImplementedError):
            pass
    return files


class BuildIndexTests(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name) / "src"
        self.root.mkdir()
        self.files = _build_fixture_tree(self.root)

    def test_walk_order_and_tiling(self):
        result = build_index(str(self.root))
        index = result.index
        listed = index.list_files()
        for rel in self.files:
            self.assertIn("/" + rel, listed)
        self.assertIn("/docs/notes", listed)
        pos = 0
        for e in result.packed():
            self.assertEqual(e.node.offset, pos)
            self.assertEqual(e.node.size, len(self.files[e.archive_path[1:]]))
            pos += e.node.size
        self.assertEqual(pos, index.cursor)
        self.assertEqual(index.cursor, sum(len(d) for d in self.files.values()))
        # sorted depth-first walk order
        self.assertEqual(
            [e.archive_path for e in result.files],
            ["/top.md", "/docs/readme.txt", "/docs/notes/binary.bin", "/docs/notes/empty.txt", "/vendor/lib/big.dat"],
        )

    def test_symlinks_recorded(self):
        if not os.path.islink(self.root / "docs" / "ln_top"):
            self.skipTest("symlinks unavailable")
        result = build_index(str(self.root))
        self.assertIn(("docs/ln_top", "top.md"), result.links)
        self.assertIn(("docs/ln_notes", "docs/notes"), result.links)
        index = result.index
        self.assertIs(index.get_file("/docs/ln_top"), index.get_node("/top.md"))
        self.assertTrue(index.get_file("/docs/ln_notes").is_dir)

    def test_symlink_out_of_root_fails(self):
        outside = self.root.parent / "outside.txt"
        outside.write_bytes(b"x")
        try:
            os.symlink(str(outside), self.root / "escape")
        except (OSError, NotImplementedError) as exc:
            self.skipTest(f"symlinks unavailable: {exc}")
        with self.assertRaises(LinkEscapesRootError):
            build_index(str(self.root))

    def test_unpack_patterns_exclude_from_blob(self):
        result = build_index(str(self.root), unpack=["*.md"], unpack_dir=["vendor"])
        index = result.index
        self.assertTrue(index.get_node("/vendor").excluded)
        self.assertTrue(index.get_node("/vendor/lib").excluded)
        big = index.get_node("/vendor/lib/big.dat")
        self.assertTrue(big.excluded)
        self.assertEqual(big.size, 333)
        self.assertIsNone(big.offset)
        self.assertTrue(index.get_node("/top.md").excluded)
        packed = {e.archive_path for e in result.packed()}
        self.assertEqual(packed, {"/docs/readme.txt", "/docs/notes/binary.bin", "/docs/notes/empty.txt"})
        self.assertEqual(index.cursor, 20 * 12 + 2048)

    def test_ordering_places_listed_files_first(self):
        result = build_index(str(self.root), ordering=["vendor/lib/big.dat", "/docs/readme.txt", "missing"])
        order = [e.archive_path for e in result.files]
        self.assertEqual(order[:2], ["/vendor/lib/big.dat", "/docs/readme.txt"])
        self.assertEqual(result.index.get_node("/vendor/lib/big.dat").offset, 0)
        self.assertEqual(result.index.get_node("/docs/readme.txt").offset, 333)

    def test_parallel_prepare_is_reproducible(self):
        serial = build_index(str(self.root), transform=codec_transform_for(["*.txt"]))
        self.addCleanup(serial.cleanup)
        parallel = build_index(str(self.root), transform=codec_transform_for(["*.txt"]), workers=4)
        self.addCleanup(parallel.cleanup)
        self.assertEqual(serial.index.to_header(), parallel.index.to_header())
        self.assertEqual(serial.index.cursor, parallel.index.cursor)

    def test_transformed_content_and_cleanup(self):
        result = build_index(str(self.root), transform=codec_transform_for(["readme.txt"]))
        entry = next(e for e in result.files if e.archive_path == "/docs/readme.txt")
        tmp_path = entry.content_path
        with open(tmp_path, "rb") as fh:
            self.assertEqual(zlib.decompress(fh.read()), self.files["docs/readme.txt"])
        self.assertEqual(entry.node.size, os.path.getsize(tmp_path))
        result.cleanup()
        self.assertFalse(os.path.exists(tmp_path))


if __name__ == "__main__":
    unittest.main()
