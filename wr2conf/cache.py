"""
Content-addressed cache for images generated from diagram definitions.

Copyright 2025-2026, wr2conf authors
"""

import logging
import os
import shutil
import threading
from pathlib import Path

from .mermaid import DiagramRenderer
from .png import is_png_file

LOGGER = logging.getLogger(__name__)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hash_string(text: str) -> str:
    """
    Computes a short, stable, non-cryptographic hash of a string.

    This is the *djb2* hash with the arithmetic of a 32-bit shift on an unbounded accumulator, iterating over UTF-16
    code units, rendered as the hexadecimal string of its absolute value. The same input always produces the same
    output across platforms and runs, which keeps generated file names (and hence published content) stable.
    """

    h = 5381
    data = text.encode("utf-16-le")
    for i in range(0, len(data), 2):
        code_unit = data[i] | (data[i + 1] << 8)
        h = _to_int32(_to_int32(h) << 5) + h + code_unit
    return format(abs(h), "x")


class DiagramCache:
    """
    Maps diagram definitions to PNG files on disk, rendering each distinct definition at most once.

    :param cache_dir: Directory where rendered images are stored under a content-derived name.
    :param image_dir: Directory holding the images referenced by the published page.
    """

    cache_dir: Path
    image_dir: Path

    _lock: threading.Lock
    _key_locks: dict[Path, threading.Lock]
    _materialized: set[str]

    def __init__(self, cache_dir: Path, image_dir: Path | None = None) -> None:
        self.cache_dir = cache_dir
        self.image_dir = image_dir if image_dir is not None else cache_dir
        self._lock = threading.Lock()
        self._key_locks = {}
        self._materialized = set()

    def resolve(self, kind: str, source: str) -> Path:
        "Canonical cache path for a diagram definition. Does not render anything."

        return self.cache_dir / f"{hash_string(f'{kind}::{source}')}.png"

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[path] = lock
            return lock

    @staticmethod
    def _discard(*paths: Path) -> None:
        for path in paths:
            path.unlink(missing_ok=True)

    def ensure_rendered(self, kind: str, source: str, renderer: DiagramRenderer) -> Path | None:
        """
        Returns the path to a valid rendered image, invoking the renderer only on a cache miss.

        A cached file that lacks the PNG signature is deleted and rendered again. Rendering failures are logged and
        reported as `None`, and leave no file behind.
        """

        path = self.resolve(kind, source)
        with self._lock_for(path):
            if is_png_file(path):
                LOGGER.debug("Cache hit for %s diagram: %s", kind, path.name)
                return path

            if path.exists():
                LOGGER.info("Discarding invalid cached image: %s", path)
                path.unlink()

            temp_path = path.with_name(f"{path.name}.{threading.get_ident()}.tmp")
            try:
                data = renderer.render(source)
                path.parent.mkdir(parents=True, exist_ok=True)
                temp_path.write_bytes(data)
                os.replace(temp_path, path)
            except (RuntimeError, OSError) as ex:
                LOGGER.warning("Failed to render %s diagram: %s", kind, ex)
                self._discard(path, temp_path)
                return None
            except Exception as ex:
                LOGGER.warning("Unexpected error rendering %s diagram: %s", kind, ex, exc_info=True)
                self._discard(path, temp_path)
                return None

            if not is_png_file(path):
                LOGGER.warning("Renderer produced invalid PNG data for %s diagram", kind)
                path.unlink(missing_ok=True)
                return None

            LOGGER.info("Rendered %s diagram: %s", kind, path.name)
            return path

    def materialize(self, cached_path: Path) -> str:
        """
        Makes a cached image available in the image directory, and returns its bare file name.

        The file is hard-linked, or copied where hard links are not supported, at most once per cache instance.
        """

        filename = cached_path.name
        with self._lock:
            if filename in self._materialized:
                return filename

            target = self.image_dir / filename
            if target.resolve() != cached_path.resolve():
                self.image_dir.mkdir(parents=True, exist_ok=True)
                target.unlink(missing_ok=True)
                try:
                    os.link(cached_path, target)
                except OSError:
                    shutil.copyfile(cached_path, target)

            self._materialized.add(filename)
            return filename
