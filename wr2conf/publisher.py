"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import enum
import hashlib
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from .environment import OrderingError, PageError, ValidationError
from .frontmatter import split_frontmatter
from .mermaid import MermaidConfigProperties, MermaidRenderer
from .options import PublishOptions
from .ordering import OrderingResolver
from .repository import AttachmentRepository, FileSystem, PageRepository, PropertyStore
from .storage import MarkdownTransformer

LOGGER = logging.getLogger(__name__)

_ATTACHMENT_FILENAME_REGEXP = re.compile(r'ri:filename="([^"]+)"')


class Transformer(Protocol):
    def to_storage(self, markdown: str) -> str: ...


class Ordering(Protocol):
    def resolve(self, root_dir: Path, md_dir: Path) -> list[Path]: ...


@enum.unique
class PublishState(enum.Enum):
    "Outcome of a publish run."

    SKIPPED = "skipped"
    "Content and attachments are up to date; nothing was written."

    HEALED = "healed"
    "Content is up to date; missing attachments were uploaded."

    UPDATED = "updated"
    "Page body was replaced and the export hash recorded."


@dataclass(frozen=True)
class PublishResult:
    """
    Summary of a publish run.

    :param state: Final state of the run.
    :param export_hash: SHA-256 digest of the generated Confluence Storage Format document.
    :param uploaded: Number of attachments uploaded.
    :param version: New page version, if the page body was updated.
    """

    state: PublishState
    export_hash: str
    uploaded: int
    version: int | None = None


def extract_attachment_filenames(storage: str) -> list[str]:
    "Unique attachment file names referenced in a Confluence Storage Format document, in order of appearance."

    filenames: list[str] = []
    for match in _ATTACHMENT_FILENAME_REGEXP.finditer(storage):
        filename = match.group(1).strip()
        if filename and filename not in filenames:
            filenames.append(filename)
    return filenames


def prioritize_entrypoint(entry: Path, ordered: list[Path]) -> list[Path]:
    "Moves the entry file to the front of an ordered list, removing duplicates."

    paths: list[Path] = []
    for path in [entry, *ordered]:
        if path not in paths:
            paths.append(path)
    return paths


def export_hash(storage: str) -> str:
    return hashlib.sha256(storage.encode("utf-8")).hexdigest()


class Publisher:
    """
    Publishes a documentation project as a single Confluence page.

    The published document is the concatenation of all Markdown files in the project, in the order given by the
    project configuration. The SHA-256 digest of the generated Confluence Storage Format document is stored in a
    content property on the page. When the digest is unchanged, the page body is not rewritten, and only attachments
    missing from the page are uploaded.
    """

    fs: FileSystem
    ordering: Ordering
    pages: PageRepository
    attachments: AttachmentRepository
    properties: PropertyStore
    transformer: Transformer | None

    def __init__(
        self,
        *,
        fs: FileSystem,
        pages: PageRepository,
        attachments: AttachmentRepository,
        properties: PropertyStore,
        ordering: Ordering | None = None,
        transformer: Transformer | None = None,
    ) -> None:
        self.fs = fs
        self.pages = pages
        self.attachments = attachments
        self.properties = properties
        self.ordering = ordering or OrderingResolver()
        self.transformer = transformer

    def _validate(self, options: PublishOptions) -> tuple[Path, Path, Path, str]:
        if options.root_dir is None:
            raise ValidationError("project root directory is required", "root_dir")
        if options.md is None:
            raise ValidationError("Markdown directory or entry file is required", "md")
        if options.images is None:
            raise ValidationError("image directory is required", "images")
        if not options.base_url:
            raise ValidationError("Confluence base URL is required", "base_url")
        if options.basic_auth is None or not options.basic_auth.username or not options.basic_auth.password:
            raise ValidationError("Confluence user name and password are required", "basic_auth")
        if not options.page_id:
            raise ValidationError("Confluence page ID is required", "page_id")

        if not self.fs.exists(options.root_dir):
            raise ValidationError(f"project root directory does not exist: {options.root_dir}", "root_dir")
        if not self.fs.exists(options.images):
            raise ValidationError(f"image directory does not exist: {options.images}", "images")
        if not self.fs.exists(options.md):
            raise ValidationError(f"Markdown entry not found: {options.md}", "md")

        return options.root_dir, options.md, options.images, options.page_id

    def _create_transformer(self, options: PublishOptions, image_dir: Path) -> Transformer:
        renderer = MermaidRenderer(MermaidConfigProperties.from_env()) if options.render_mermaid else None
        return MarkdownTransformer(
            image_dir=image_dir,
            renderer=renderer,
            toc=options.toc,
            max_workers=options.max_workers,
        )

    def resolve_files(self, root_dir: Path, md: Path) -> list[Path]:
        """
        Produces the ordered list of Markdown files to publish.

        :param root_dir: Project root directory.
        :param md: Markdown directory, or an entry file to publish first.
        :returns: Absolute paths of existing Markdown files.
        """

        if md.suffix.lower() == ".md" and not md.is_dir():
            entry: Path | None = md.resolve()
            md_dir = md.parent
        else:
            entry = None
            md_dir = md

        ordered = [path.resolve() for path in self.ordering.resolve(root_dir, md_dir)]
        if entry is not None:
            ordered = prioritize_entrypoint(entry, ordered)

        files = [path for path in ordered if path.suffix.lower() == ".md" and self.fs.exists(path)]
        if not files:
            raise OrderingError("No markdown files to publish after resolution.")

        LOGGER.info("Resolved %d Markdown files", len(files))
        return files

    def read_document(self, files: list[Path], options: PublishOptions) -> tuple[str, str | None]:
        "Concatenates Markdown files, and extracts the title of the first one."

        title: str | None = None
        parts: list[str] = []
        for index, path in enumerate(files):
            text = self.fs.read_text(path)
            if options.strip_frontmatter:
                properties, text = split_frontmatter(text)
                if index == 0 and properties is not None:
                    value = properties.get("title")
                    if isinstance(value, str) and value.strip():
                        title = value.strip()
            parts.append(text)
        return "\n\n".join(parts), title

    def sync_attachments(self, page_id: str, storage: str, image_dir: Path, max_workers: int) -> int:
        """
        Uploads the files referenced by a document that the page does not have as attachments.

        Files missing from the image directory are skipped.

        :returns: Number of files uploaded.
        """

        required = extract_attachment_filenames(storage)
        if not required:
            return 0

        existing = self.attachments.list(page_id)
        missing: list[Path] = []
        for filename in required:
            if filename in existing:
                continue
            path = image_dir / filename
            if not self.fs.exists(path):
                LOGGER.warning("Missing local image file, skipping: %s", path)
                continue
            missing.append(path)

        if not missing:
            return 0

        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as executor:
            results = list(executor.map(lambda path: self.attachments.ensure(page_id, path), missing))
        return len(results)

    def publish(self, options: PublishOptions) -> PublishResult:
        "Publishes a documentation project to a Confluence page."

        root_dir, md, image_dir, page_id = self._validate(options)

        files = self.resolve_files(root_dir, md)
        markdown, frontmatter_title = self.read_document(files, options)

        transformer = self.transformer or self._create_transformer(options, image_dir)
        storage = transformer.to_storage(markdown)
        digest = export_hash(storage)

        if self.properties.get_export_hash(page_id) == digest:
            uploaded = self.sync_attachments(page_id, storage, image_dir, options.max_workers)
            LOGGER.info("No content delta; healed %d missing attachment(s)", uploaded)
            state = PublishState.HEALED if uploaded else PublishState.SKIPPED
            return PublishResult(state=state, export_hash=digest, uploaded=uploaded)

        if self.pages.get(page_id) is None:
            raise PageError(f"Confluence page not found: {page_id}")

        page = self.pages.put_storage_body(page_id, storage, options.title or frontmatter_title)
        uploaded = self.sync_attachments(page_id, storage, image_dir, options.max_workers)
        self.properties.set_export_hash(page_id, digest)

        LOGGER.info("Published page %s (attachments added: %d)", page_id, uploaded)
        return PublishResult(state=PublishState.UPDATED, export_hash=digest, uploaded=uploaded, version=page.version)
