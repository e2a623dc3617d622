"""
Reads the topic order of a Writerside or Authord project from its configuration files.

Copyright 2025-2026, wr2conf authors
"""

import logging
import os
from pathlib import Path
from typing import Literal

import lxml.etree as ET

from .serializer import JsonType, json_loads

LOGGER = logging.getLogger(__name__)

WRITERSIDE_CONFIG = "writerside.cfg"
AUTHORD_CONFIG = "authord.config.json"

ProjectKind = Literal["writerside", "authord"]


def detect_project(root_dir: Path) -> ProjectKind | None:
    "Identifies the kind of documentation project in a directory by its configuration file."

    if (root_dir / WRITERSIDE_CONFIG).is_file():
        return "writerside"
    if (root_dir / AUTHORD_CONFIG).is_file():
        return "authord"
    return None


def _is_markdown(path: str) -> bool:
    return os.path.splitext(path)[1].lower() == ".md"


def _normalize(candidates: list[str], base_dir: Path) -> list[Path]:
    "Keeps existing Markdown files, as absolute paths, in first-seen order."

    seen: set[Path] = set()
    paths: list[Path] = []
    for candidate in candidates:
        if not _is_markdown(candidate):
            continue
        path = Path(candidate)
        if not path.is_absolute():
            path = base_dir / path
        path = path.resolve()
        if path in seen or not path.is_file():
            continue
        seen.add(path)
        paths.append(path)
    return paths


def _parse_xml(path: Path) -> ET._Element | None:  # pyright: ignore [reportPrivateUsage]
    parser = ET.XMLParser(resolve_entities=False, no_network=True, remove_comments=True)
    try:
        return ET.parse(path, parser).getroot()
    except (ET.XMLSyntaxError, OSError) as ex:
        LOGGER.warning("Cannot read %s: %s", path, ex)
        return None


def _tree_references(root: ET._Element) -> list[str]:  # pyright: ignore [reportPrivateUsage]
    "Attribute values and text content that name a `.tree` file, in document order."

    refs: list[str] = []
    for element in root.iter(ET.Element):
        for value in element.attrib.values():
            value = value.strip()
            if value.lower().endswith(".tree"):
                refs.append(value)
        text = (element.text or "").strip()
        if text.lower().endswith(".tree"):
            refs.append(text)
    return refs


def _start_pages(root: ET._Element) -> list[str]:  # pyright: ignore [reportPrivateUsage]
    return [value for element in root.iter(ET.Element) if (value := element.get("start-page")) is not None]


def _tree_candidates(tree_path: Path) -> list[str]:
    root = _parse_xml(tree_path)
    if root is None:
        return []

    candidates = _start_pages(root)
    candidates.extend(topic for element in root.iter("toc-element") if (topic := element.get("topic")) is not None)
    return candidates


def read_writerside_order(root_dir: Path, md_dir: Path) -> list[Path]:
    """
    Reads the topic order of a Writerside project.

    Topics are collected from the start pages declared in `writerside.cfg`, then from each instance tree file it
    references, where the start page comes first and table of contents elements follow in depth-first order.

    :param root_dir: Project root directory, holding `writerside.cfg`.
    :param md_dir: Directory to resolve topics against when `writerside.cfg` declares no topics directory.
    :returns: Absolute paths of existing Markdown files.
    """

    cfg_path = root_dir / WRITERSIDE_CONFIG
    if not cfg_path.is_file():
        return []

    cfg = _parse_xml(cfg_path)
    if cfg is None:
        return []

    base_dir = md_dir
    topics = next(cfg.iter("topics"), None)
    if topics is not None and topics.get("dir"):
        base_dir = root_dir / topics.get("dir", "")

    candidates = _start_pages(cfg)
    for ref in _tree_references(cfg):
        tree_path = root_dir / ref
        if not tree_path.is_file():
            LOGGER.debug("Skipping missing tree file: %s", tree_path)
            continue
        candidates.extend(_tree_candidates(tree_path))

    return _normalize(candidates, base_dir)


def _walk_toc(node: JsonType, topics: list[str]) -> None:
    if isinstance(node, list):
        for item in node:
            _walk_toc(item, topics)
    elif isinstance(node, dict):
        topic = node.get("topic")
        if isinstance(topic, str):
            topics.append(topic)
        _walk_toc(node.get("toc-element"), topics)
        _walk_toc(node.get("toc"), topics)


def read_authord_order(root_dir: Path, md_dir: Path) -> list[Path]:
    """
    Reads the topic order of an Authord project from `authord.config.json`.

    For each instance, the start page comes first, followed by the topics of its table of contents in depth-first order.
    """

    cfg_path = root_dir / AUTHORD_CONFIG
    if not cfg_path.is_file():
        return []

    try:
        config = json_loads(cfg_path.read_bytes())
    except (ValueError, OSError) as ex:
        LOGGER.warning("Cannot read %s: %s", cfg_path, ex)
        return []

    candidates: list[str] = []
    instances = config.get("instances") if isinstance(config, dict) else None
    if isinstance(instances, list):
        for instance in instances:
            if not isinstance(instance, dict):
                continue
            start_page = instance.get("start-page")
            if isinstance(start_page, str):
                candidates.append(start_page)
            toc = instance.get("toc")
            if toc is None:
                toc = instance.get("toc-element")
            _walk_toc(toc, candidates)

    return _normalize(candidates, md_dir)


def list_all_markdown(md_dir: Path) -> list[Path]:
    """
    Lists Markdown files in a directory tree.

    Only files with the extension `.md` (in lower case) are included. Symbolic links are not followed.

    :returns: Absolute paths sorted by path relative to the directory.
    """

    if not md_dir.is_dir():
        return []

    base_dir = md_dir.resolve()
    files: list[Path] = []
    pending = [base_dir]
    while pending:
        current = pending.pop()
        try:
            entries = list(os.scandir(current))
        except OSError as ex:
            LOGGER.warning("Cannot scan directory %s: %s", current, ex)
            continue

        for entry in entries:
            if entry.is_symlink():
                continue
            if entry.is_dir(follow_symlinks=False):
                pending.append(current / entry.name)
            elif entry.is_file(follow_symlinks=False) and os.path.splitext(entry.name)[1] == ".md":
                files.append(current / entry.name)

    files.sort(key=lambda path: path.relative_to(base_dir).as_posix())
    return files


class OrderingResolver:
    """
    Produces the deterministic order in which Markdown files are published.

    The order declared in `writerside.cfg` takes precedence, then the order in `authord.config.json`. Files in the
    Markdown directory that neither declares are appended in alphabetical order.
    """

    def resolve(self, root_dir: Path, md_dir: Path) -> list[Path]:
        primary = read_writerside_order(root_dir, md_dir)
        if not primary:
            primary = read_authord_order(root_dir, md_dir)

        all_files = list_all_markdown(md_dir)
        if not primary:
            LOGGER.info("No configured topic order; publishing %d files in alphabetical order", len(all_files))
            return all_files

        listed = set(primary)
        orphans = [path for path in all_files if path not in listed]
        LOGGER.info("Appended %d orphan Markdown files", len(orphans))
        return primary + orphans
