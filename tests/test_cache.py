"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import tempfile
import threading
import unittest
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from tests.utility import TypedTestCase, make_png
from wr2conf.cache import DiagramCache, hash_string


class CountingRenderer:
    "Renders every diagram into the same small image, and counts invocations."

    def __init__(self, data: bytes | None = None) -> None:
        self.data = data if data is not None else make_png(10, 20)
        self.calls = 0
        self._lock = threading.Lock()

    def render(self, source: str) -> bytes:
        with self._lock:
            self.calls += 1
        return self.data


class FailingRenderer:
    def render(self, source: str) -> bytes:
        raise RuntimeError("syntax error in diagram")


class FaultyRenderer:
    def render(self, source: str) -> bytes:
        raise ValueError("unexpected front-matter value")


class TestHash(TypedTestCase):
    def test_known_value(self) -> None:
        self.assertEqual(hash_string("hello"), "f923099")
        self.assertEqual(hash_string(""), format(5381, "x"))

    def test_stable(self) -> None:
        self.assertEqual(hash_string("graph TD; A-->B"), hash_string("graph TD; A-->B"))
        self.assertNotEqual(hash_string("graph TD; A-->B"), hash_string("graph TD; A-->C"))

    def test_long_input(self) -> None:
        digest = hash_string("sequenceDiagram\n" * 500)
        self.assertRegex(digest, r"^[0-9a-f]+$")

    def test_non_ascii(self) -> None:
        self.assertRegex(hash_string("flowchart: Ünïcödé ✓ 🚀"), r"^[0-9a-f]+$")


class TestDiagramCache(TypedTestCase):
    temp_dir: tempfile.TemporaryDirectory[str]
    image_dir: Path

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.image_dir = Path(self.temp_dir.name)

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def test_resolve(self) -> None:
        cache = DiagramCache(self.image_dir)
        path = cache.resolve("mermaid", "graph TD; A-->B")
        self.assertEqual(path, self.image_dir / f"{hash_string('mermaid::graph TD; A-->B')}.png")
        self.assertNotEqual(path, cache.resolve("plantuml", "graph TD; A-->B"))
        self.assertFalse(path.exists())

    def test_render_once(self) -> None:
        cache = DiagramCache(self.image_dir)
        renderer = CountingRenderer()

        first = cache.ensure_rendered("mermaid", "graph TD; A-->B", renderer)
        second = cache.ensure_rendered("mermaid", "graph TD; A-->B", renderer)

        self.assertIsNotNone(first)
        self.assertEqual(first, second)
        self.assertEqual(renderer.calls, 1)

    def test_render_once_in_parallel(self) -> None:
        cache = DiagramCache(self.image_dir)
        renderer = CountingRenderer()

        with ThreadPoolExecutor(max_workers=8) as executor:
            paths = list(executor.map(lambda _: cache.ensure_rendered("mermaid", "graph LR; X-->Y", renderer), range(16)))

        self.assertEqual(len(set(paths)), 1)
        self.assertEqual(renderer.calls, 1)

    def test_rerender_on_corruption(self) -> None:
        cache = DiagramCache(self.image_dir)
        renderer = CountingRenderer()

        path = cache.ensure_rendered("mermaid", "graph TD; A-->B", renderer)
        assert path is not None
        path.write_bytes(b"\x89PNG")

        again = cache.ensure_rendered("mermaid", "graph TD; A-->B", renderer)
        self.assertEqual(again, path)
        self.assertEqual(renderer.calls, 2)
        self.assertEqual(path.read_bytes(), renderer.data)

    def test_render_failure(self) -> None:
        cache = DiagramCache(self.image_dir)
        self.assertIsNone(cache.ensure_rendered("mermaid", "graph ???", FailingRenderer()))
        self.assertFalse(cache.resolve("mermaid", "graph ???").exists())

    def test_render_unexpected_error(self) -> None:
        cache = DiagramCache(self.image_dir)
        with self.assertLogs("wr2conf.cache", level="WARNING"):
            self.assertIsNone(cache.ensure_rendered("mermaid", "graph TD; A-->B", FaultyRenderer()))
        self.assertEqual(list(self.image_dir.iterdir()), [])

    def test_render_invalid_output(self) -> None:
        cache = DiagramCache(self.image_dir)
        self.assertIsNone(cache.ensure_rendered("mermaid", "graph TD; A-->B", CountingRenderer(b"<svg/>")))
        self.assertFalse(cache.resolve("mermaid", "graph TD; A-->B").exists())

    def test_materialize(self) -> None:
        cache_dir = self.image_dir / "cache"
        image_dir = self.image_dir / "images"
        cache = DiagramCache(cache_dir, image_dir)

        path = cache.ensure_rendered("mermaid", "graph TD; A-->B", CountingRenderer())
        assert path is not None
        filename = cache.materialize(path)

        self.assertEqual(filename, path.name)
        self.assertEqual((image_dir / filename).read_bytes(), path.read_bytes())
        self.assertEqual(cache.materialize(path), filename)

    def test_materialize_same_directory(self) -> None:
        cache = DiagramCache(self.image_dir)
        path = cache.ensure_rendered("mermaid", "graph TD; A-->B", CountingRenderer())
        assert path is not None
        self.assertEqual(cache.materialize(path), path.name)
        self.assertTrue(path.exists())


if __name__ == "__main__":
    unittest.main()
