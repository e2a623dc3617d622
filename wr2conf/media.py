"""
Rewrites images and diagrams in a Markdown syntax tree into attachment references.

Three kinds of source converge on one textual protocol, the *attachment stub*
`@@ATTACH|file=<name>[|key=value[;key=value...]]@@`:

* fenced diagram code blocks, once rendered into an image,
* HTML `<img>` tags embedded in Markdown, and
* Markdown images, whose dimension hints (e.g. `{ width=290 }`) are carried over.

Stubs are resolved into Confluence image elements after the document is converted into HTML.

Copyright 2025-2026, wr2conf authors
"""

import logging
import posixpath
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from html import unescape
from urllib.parse import unquote

from .cache import DiagramCache
from .mdast import Block, CodeSpan, Document, FencedCode, HtmlBlock, Image, Inline, InlineHtml, Paragraph, Text, Verbatim
from .mermaid import DiagramRenderer

LOGGER = logging.getLogger(__name__)

DIAGRAM_LANGUAGES = frozenset({"mermaid"})

STUB_REGEXP = re.compile(r"@@ATTACH\|(.*?)@@")

CODE_BLOCK_REGEXP = re.compile(r"(?P<tag><code-block\b[^>]*>)(?P<body>.*?)</code-block\s*>", re.IGNORECASE | re.DOTALL)

_IMG_TAG_REGEXP = re.compile(r"<img\b[^>]*?/?>", re.IGNORECASE)
_CDATA_REGEXP = re.compile(r"<!(?:--)?\[CDATA\[(.*?)\]\](?:--)?>", re.DOTALL)
_SIZE_REGEXP = re.compile(r"^(\d+)(?:px)?$")
_KEY_VALUE_SPACING = re.compile(r"\s*([:=])\s*")
_PARAM_SEPARATOR = re.compile(r"[,\s;]+")
_PARAM_REGEXP = re.compile(r"^([A-Za-z][\w-]*)\s*[:=]\s*(.*)$", re.DOTALL)


def normalize_size_px(value: str | None) -> str | None:
    "Normalizes a size such as `290` or `290px` into a pure integer string; other values yield `None`."

    if value is None:
        return None
    value = value.strip().strip("\"'").strip().lower()
    m = _SIZE_REGEXP.match(value)
    return m.group(1) if m else None


@dataclass(frozen=True)
class ImageSize:
    "Width and height of an image in pixels, each as a string of digits, if known."

    width: str | None = None
    height: str | None = None

    def __bool__(self) -> bool:
        return self.width is not None or self.height is not None

    def merge(self, other: "ImageSize") -> "ImageSize":
        "Combines two sizes, dimensions in `other` taking precedence."

        return ImageSize(width=other.width or self.width, height=other.height or self.height)


def _parse_key_values(text: str) -> dict[str, str]:
    params: dict[str, str] = {}
    text = _KEY_VALUE_SPACING.sub(r"\1", text.strip())
    for token in _PARAM_SEPARATOR.split(text):
        m = _PARAM_REGEXP.match(token)
        if m is None:
            continue
        params[m.group(1).lower()] = m.group(2).strip("\"'")
    return params


def parse_brace_params(text: str) -> ImageSize:
    """
    Parses width and height from an attribute group such as `{ width=290px; height=120 }`.

    Keys and values may be separated by `=` or `:`, pairs by whitespace, `,` or `;`. Values that are not
    plain integers (optionally with a `px` suffix) are dropped.
    """

    inner = text.strip()
    if inner.startswith("{") and inner.endswith("}"):
        inner = inner[1:-1]
    params = _parse_key_values(inner)
    return ImageSize(width=normalize_size_px(params.get("width")), height=normalize_size_px(params.get("height")))


def extract_leading_attr_blocks(text: str) -> tuple[list[str], int] | None:
    """
    Finds one or more `{...}` groups at the very beginning of a string.

    Groups may be nested and separated by blanks. A group that is not terminated on the same line ends the scan.

    :returns: The list of groups with their braces, and the number of characters they span, or `None` if the string
        does not start with a complete group.
    """

    groups: list[str] = []
    consumed = 0
    position = 0
    while True:
        if groups:
            while position < len(text) and text[position] in " \t":
                position += 1
        if position >= len(text) or text[position] != "{":
            break

        depth = 0
        end = -1
        for i in range(position, len(text)):
            c = text[i]
            if c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    end = i + 1
                    break
            elif c in "\r\n":
                break
        if end < 0:
            break

        groups.append(text[position:end])
        consumed = position = end

    if not groups:
        return None
    return groups, consumed


@dataclass(frozen=True)
class ImgAttributes:
    "Attributes of an HTML `<img>` tag relevant to attachments."

    src: str
    width: str | None = None
    height: str | None = None


def _pick_attr(tag: str, name: str) -> str | None:
    m = re.search(
        rf"""(?:^|\s){name}\s*=\s*(?:"([^"]*)"|'([^']*)'|([^\s"'>]+?)(?=\s|/?>|$))""",
        tag,
        flags=re.IGNORECASE,
    )
    if m is None:
        return None
    return next(group for group in m.groups() if group is not None)


def extract_img_attrs(fragment: str) -> ImgAttributes | None:
    """
    Extracts `src`, `width` and `height` from the first `<img>` tag in an HTML fragment.

    Attribute values may be double-quoted, single-quoted or unquoted. Returns `None` if there is no tag, or the tag
    has no usable `src` (e.g. because of a missing closing quote).
    """

    m = _IMG_TAG_REGEXP.search(fragment)
    if m is None:
        return None

    tag = m.group(0)
    src = _pick_attr(tag, "src")
    if not src:
        return None
    return ImgAttributes(src=src, width=_pick_attr(tag, "width"), height=_pick_attr(tag, "height"))


def basename_from_src(src: str) -> str:
    "Attachment file name for an image source: the last path component without query or fragment."

    path = re.split(r"[?#]", src, maxsplit=1)[0]
    return posixpath.basename(unquote(path).replace("\\", "/"))


@dataclass(frozen=True)
class AttachmentStub:
    """
    A parsed attachment stub.

    :param file: Attachment file name.
    :param size: Display dimensions.
    :param params: All parameters of the stub except the file name.
    """

    file: str
    size: ImageSize = ImageSize()
    params: dict[str, str] = field(default_factory=dict)


def make_stub(file: str, *, width: str | None = None, height: str | None = None) -> str:
    "Creates the textual marker that stands for an image attachment."

    params: list[str] = []
    if width is not None:
        params.append(f"width={width}")
    if height is not None:
        params.append(f"height={height}")
    if params:
        return f"@@ATTACH|file={file}|{';'.join(params)}@@"
    else:
        return f"@@ATTACH|file={file}@@"


def parse_stub(marker: str) -> AttachmentStub | None:
    "Parses an attachment stub, with or without the `@@` delimiters."

    m = STUB_REGEXP.fullmatch(marker.strip())
    body = m.group(1) if m is not None else marker.strip()

    params: dict[str, str] = {}
    for item in re.split(r"[|;]", body):
        key, sep, value = item.partition("=")
        if sep:
            params[key.strip().lower()] = value.strip()

    file = params.pop("file", "")
    if not file:
        return None
    size = ImageSize(width=normalize_size_px(params.get("width")), height=normalize_size_px(params.get("height")))
    return AttachmentStub(file=file, size=size, params=params)


def _img_tag_to_stub(tag: str, extra: ImageSize | None = None) -> str:
    attrs = extract_img_attrs(tag)
    if attrs is None:
        return tag
    file = basename_from_src(attrs.src)
    if not file:
        return tag

    size = ImageSize(width=normalize_size_px(attrs.width), height=normalize_size_px(attrs.height))
    if extra is not None:
        size = size.merge(extra)
    return make_stub(file, width=size.width, height=size.height)


def html_img_to_stubs(html: str) -> str:
    """
    Replaces every `<img>` tag with a usable `src` in an HTML fragment with an attachment stub.

    The content of Writerside `<code-block>` elements is a literal listing, and is left alone.
    """

    def replace(fragment: str) -> str:
        return _IMG_TAG_REGEXP.sub(lambda m: _img_tag_to_stub(m.group(0)), fragment)

    parts: list[str] = []
    last = 0
    for m in CODE_BLOCK_REGEXP.finditer(html):
        parts.append(replace(html[last : m.start()]))
        parts.append(m.group(0))
        last = m.end()
    parts.append(replace(html[last:]))
    return "".join(parts)


@dataclass(frozen=True)
class CodeListing:
    "Language and literal text of a Writerside `<code-block>` element."

    lang: str | None
    text: str


def parse_code_block(m: re.Match[str]) -> CodeListing:
    """
    Extracts the listing from a match of `CODE_BLOCK_REGEXP`.

    CDATA sections (also in the comment form `<!--[CDATA[...]]-->`) are taken as they are, character references
    elsewhere are decoded.
    """

    parts = _CDATA_REGEXP.split(m.group("body"))
    text = "".join(part if index % 2 else unescape(part) for index, part in enumerate(parts))
    lang = _pick_attr(m.group("tag"), "lang")
    return CodeListing(lang=lang.lower() if lang else None, text=text.strip("\r\n"))


def _consume_size_hints(children: list[Inline], index: int) -> ImageSize:
    """
    Consumes attribute groups at the start of the text node that follows the node at the given index.

    The consumed prefix is removed from the text node, and the text node is dropped if nothing remains.
    """

    if index + 1 >= len(children):
        return ImageSize()
    sibling = children[index + 1]
    if not isinstance(sibling, Text):
        return ImageSize()

    blocks = extract_leading_attr_blocks(sibling.value)
    if blocks is None:
        return ImageSize()

    groups, consumed = blocks
    size = ImageSize()
    for group in groups:
        size = size.merge(parse_brace_params(group))

    remainder = sibling.value[consumed:]
    if remainder:
        sibling.value = remainder
    else:
        del children[index + 1]
    return size


class MediaPreprocessor:
    """
    Rewrites diagrams and images in a Markdown syntax tree into attachment stubs.

    Blocks are visited once, top to bottom. Diagram rendering is deferred: the walk records the index of each
    diagram block, all diagrams are rendered in parallel, and replacements are applied afterwards by index.
    """

    cache: DiagramCache | None
    renderer: DiagramRenderer | None
    render_diagrams: bool
    max_workers: int
    languages: frozenset[str]

    def __init__(
        self,
        cache: DiagramCache | None = None,
        renderer: DiagramRenderer | None = None,
        *,
        render_diagrams: bool = True,
        max_workers: int = 4,
        languages: frozenset[str] = DIAGRAM_LANGUAGES,
    ) -> None:
        self.cache = cache
        self.renderer = renderer
        self.render_diagrams = render_diagrams
        self.max_workers = max_workers
        self.languages = languages

    def _diagrams_enabled(self) -> bool:
        return self.render_diagrams and self.cache is not None and self.renderer is not None and self.cache.image_dir.is_dir()

    def process(self, document: Document) -> Document:
        "Rewrites the document in place, and returns it."

        pending: list[tuple[int, FencedCode]] = []
        diagrams_enabled = self._diagrams_enabled()

        for index, block in enumerate(document.children):
            match block:
                case FencedCode():
                    if diagrams_enabled and block.lang in self.languages:
                        pending.append((index, block))
                case Paragraph():
                    self._rewrite_inline(block.children)
                case HtmlBlock():
                    block.value = html_img_to_stubs(block.value)
                case Verbatim():
                    pass
                case _:
                    raise NotImplementedError("match not exhaustive for block")

        if pending:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(executor.map(lambda item: self._render_block(item[1]), pending))

            for (index, _), replacement in zip(pending, results):
                if replacement is not None:
                    document.children[index] = replacement

        return document

    def _rewrite_inline(self, children: list[Inline]) -> None:
        index = 0
        while index < len(children):
            child = children[index]
            match child:
                case Image():
                    size = _consume_size_hints(children, index)
                    if size:
                        child.width = size.width
                        child.height = size.height
                case InlineHtml():
                    attrs = extract_img_attrs(child.value)
                    if attrs is not None and basename_from_src(attrs.src):
                        size = _consume_size_hints(children, index)
                        children[index] = Text(_img_tag_to_stub(child.value, size))
                case Text() | CodeSpan():
                    pass
                case _:
                    raise NotImplementedError("match not exhaustive for inline")
            index += 1

    def _render_block(self, block: FencedCode) -> Block | None:
        if self.cache is None or self.renderer is None or block.lang is None:
            return None

        path = self.cache.ensure_rendered(block.lang, block.value.strip(), self.renderer)
        if path is None:
            return None

        try:
            filename = self.cache.materialize(path)
        except OSError as ex:
            LOGGER.warning("Failed to copy rendered diagram %s into image directory: %s", path.name, ex)
            return None

        # blank lines keep the stub in a paragraph of its own, inside the same blockquote if any
        blank = block.quote.rstrip()
        return Paragraph([Text(f"{blank}\n{block.quote}{block.indent}{make_stub(filename)}\n{blank}\n")])
