"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .environment import BasicAuth

DEFAULT_TOC_MACRO_ID = "a854a720-dea6-4d0f-a0a2-e4591c07d85e"


@dataclass(frozen=True)
class TableOfContentsOptions:
    """
    Controls the table of contents macro injected into the published page.

    :param enabled: Whether to insert a table of contents when the document has none.
    :param max_level: Deepest heading level listed.
    :param position: Insert at the very top, or right after the first top-level heading.
    :param macro_id: Identifier of the macro instance, kept constant so that the page body is stable.
    """

    enabled: bool = True
    max_level: int = 3
    position: Literal["top", "after-first-h1"] = "top"
    macro_id: str = DEFAULT_TOC_MACRO_ID


@dataclass(frozen=True)
class PublishOptions:
    """
    Options for publishing a documentation project as a single Confluence page.

    :param root_dir: Project root directory, holding `writerside.cfg` or `authord.config.json`.
    :param md: Markdown topics directory, or a Markdown file to publish first.
    :param images: Directory of images referenced by the documents, and of rendered diagrams.
    :param page_id: Confluence page ID of an existing page to overwrite.
    :param base_url: Confluence site URL.
    :param basic_auth: Credentials for HTTP Basic authentication.
    :param title: Page title; defaults to the title in the front-matter of the entry file, then the current page title.
    :param toc: Table of contents options.
    :param render_mermaid: Whether to render Mermaid diagrams into images.
    :param strip_frontmatter: Whether to remove YAML front-matter from each Markdown file.
    :param max_workers: Number of parallel diagram renders and attachment uploads.
    """

    root_dir: Path | None = None
    md: Path | None = None
    images: Path | None = None
    page_id: str | None = None
    base_url: str | None = None
    basic_auth: BasicAuth | None = None
    title: str | None = None
    toc: TableOfContentsOptions = field(default_factory=TableOfContentsOptions)
    render_mermaid: bool = True
    strip_frontmatter: bool = True
    max_workers: int = 4


def default_image_dir(root_dir: Path) -> Path:
    "Image directory from the environment variable `AUTHORD_IMAGE_DIR`, or `images` in the project root."

    image_dir = os.getenv("AUTHORD_IMAGE_DIR")
    if image_dir:
        return Path(image_dir)
    return root_dir / "images"
