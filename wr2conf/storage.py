"""
Converts HTML generated from Markdown into Confluence Storage Format.

Copyright 2025-2026, wr2conf authors
"""

import logging
from pathlib import Path

import lxml.etree as ET

from .cache import DiagramCache
from .csf import AC_ATTR, AC_ELEM, AC_TAG, RI_ATTR, RI_ELEM, ElementType, elements_from_html, elements_to_string, wrap_root
from .markdown import markdown_to_html
from .mdast import parse_markdown
from .media import (
    STUB_REGEXP,
    ImageSize,
    MediaPreprocessor,
    basename_from_src,
    extract_leading_attr_blocks,
    normalize_size_px,
    parse_brace_params,
    parse_stub,
)
from .mermaid import DiagramRenderer
from .options import TableOfContentsOptions
from .png import extract_png_dimensions, is_png_file

LOGGER = logging.getLogger(__name__)

HTML_VOID_ELEMENTS = frozenset(
    ["area", "base", "br", "col", "embed", "hr", "img", "input", "keygen", "link", "meta", "param", "source", "track", "wbr"]
)

TASK_LIST_CLASSES = frozenset(["contains-task-list", "task-list", "task-list-item"])

# elements whose content is shown as written
CODE_ELEMENTS = ("pre", "code", "code-block")

_LINE_THROUGH = "text-decoration:line-through;"


def _is_element(node: ElementType) -> bool:
    "False for comments and processing instructions."

    return isinstance(node.tag, str)


def _size_from_style(style: str | None) -> ImageSize:
    "Reads pixel width and height from CSS declarations such as `width: 290px; height: 120px`."

    if not style:
        return ImageSize()

    width: str | None = None
    height: str | None = None
    for declaration in style.split(";"):
        key, sep, value = declaration.partition(":")
        if not sep:
            continue
        key = key.strip().lower()
        if key == "width" and width is None:
            width = normalize_size_px(value)
        elif key == "height" and height is None:
            height = normalize_size_px(value)
    return ImageSize(width=width, height=height)


def _replace_with_text(node: ElementType, text: str) -> None:
    "Removes an element from its parent, and puts text (followed by the element tail) in its place."

    parent = node.getparent()
    if parent is None:
        raise ValueError("expected: element with a parent")

    text = text + (node.tail or "")
    previous = node.getprevious()
    if previous is not None:
        previous.tail = (previous.tail or "") + text
    else:
        parent.text = (parent.text or "") + text
    parent.remove(node)


def _replace_element(source: ElementType, target: ElementType) -> None:
    "Puts an element in place of another, keeping the text that follows the original."

    parent = source.getparent()
    if parent is None:
        raise ValueError("expected: element with a parent")

    target.tail = source.tail
    source.tail = None
    parent.replace(source, target)


class ImageSizeCache:
    """
    Original pixel dimensions of images in the image directory.

    Only PNG images are measured. Lookups are memoized, and files that are missing or cannot be decoded yield no size.
    """

    image_dir: Path | None
    _sizes: dict[str, tuple[int, int] | None]

    def __init__(self, image_dir: Path | None) -> None:
        self.image_dir = image_dir
        self._sizes = {}

    def get(self, filename: str) -> tuple[int, int] | None:
        if filename in self._sizes:
            return self._sizes[filename]

        size: tuple[int, int] | None = None
        if self.image_dir is not None:
            path = self.image_dir / filename
            if is_png_file(path):
                try:
                    size = extract_png_dimensions(path=path)
                except (OSError, ValueError) as ex:
                    LOGGER.debug("Cannot read dimensions of %s: %s", path, ex)

        self._sizes[filename] = size
        return size


class StorageFormatConverter:
    """
    Rewrites an HTML element tree in place into Confluence Storage Format.

    Each element is visited once in depth-first pre-order. Image elements become attachment references, task list
    checkboxes become text, strike-through becomes a styled span, and attributes are made XML-safe. A second pass
    resolves attachment stubs left in text, and wraps top-level images in paragraphs.
    """

    image_sizes: ImageSizeCache

    def __init__(self, image_sizes: ImageSizeCache) -> None:
        self.image_sizes = image_sizes

    def convert(self, container: ElementType) -> None:
        self.visit(container, in_code=False)
        self.resolve_stubs(container)
        self.wrap_images(container)

    def visit(self, node: ElementType, in_code: bool) -> None:
        "Recursively transforms all descendants of this node."

        index = 0
        while index < len(node):
            child = node[index]
            if not _is_element(child):
                index += 1
                continue

            # elements replaced by text leave the next sibling at the same index
            if self.transform(child, in_code) is not None:
                index += 1

    def transform(self, node: ElementType, in_code: bool) -> ElementType | None:
        tag = node.tag

        if tag == "input" and (node.get("type") or "").lower() == "checkbox":
            checked = "checked" in node.attrib or node.get("aria-checked") == "true"
            _replace_with_text(node, "[x]" if checked else "[ ]")
            return None

        if tag in ("ul", "ol", "li"):
            self._strip_task_classes(node)

        if tag == "img" and not in_code:
            image = self._transform_image(node)
            if image is not None:
                _replace_element(node, image)
                return image

        self.visit(node, in_code or tag in CODE_ELEMENTS)

        if tag == "a" and not (node.text or "").strip() and len(node) == 1:
            only = node[0]
            if only.tag == AC_TAG("image") and not (only.tail or "").strip():
                only.tail = None
                _replace_element(node, only)
                return only

        if tag == "del":
            node.tag = "span"
            style = (node.get("style") or "").strip()
            if "text-decoration" not in style:
                style = f"{style.rstrip(';')};{_LINE_THROUGH}" if style else _LINE_THROUGH
            node.set("style", style)

        if tag in HTML_VOID_ELEMENTS:
            node.text = None
            for child in list(node):
                node.remove(child)

        for name, value in node.attrib.items():
            if value == "" and name != "class" and ":" not in name:
                node.set(name, name)

        return node

    def _strip_task_classes(self, node: ElementType) -> None:
        classes = node.get("class")
        if classes is None:
            return

        kept = [token for token in classes.split() if token not in TASK_LIST_CLASSES]
        if kept:
            node.set("class", " ".join(kept))
        else:
            del node.attrib["class"]

    def _transform_image(self, image: ElementType) -> ElementType | None:
        src = image.get("src")
        if not src:
            return None
        filename = basename_from_src(src)
        if not filename:
            return None

        # Writerside images with a border effect keep only their width
        if "border-effect" in image.attrib:
            return self.create_attached_image(filename, ImageSize(width=normalize_size_px(image.get("width"))))

        size = _size_from_style(image.get("style")).merge(
            ImageSize(width=normalize_size_px(image.get("width")), height=normalize_size_px(image.get("height")))
        )
        size = size.merge(self._consume_trailing_size_hints(image))
        return self.create_attached_image(filename, size)

    def _consume_trailing_size_hints(self, image: ElementType) -> ImageSize:
        "Applies and removes `{width=... height=...}` groups in the text right after an image."

        tail = image.tail
        if not tail:
            return ImageSize()

        stripped = tail.lstrip()
        blocks = extract_leading_attr_blocks(stripped)
        if blocks is None:
            return ImageSize()

        groups, consumed = blocks
        size = ImageSize()
        for group in groups:
            size = size.merge(parse_brace_params(group))
        image.tail = stripped[consumed:] or None
        return size

    def create_attached_image(self, filename: str, size: ImageSize) -> ElementType:
        "An image embedded into the page, linking to an attachment."

        attrs: dict[str, str] = {}
        if size.width is not None:
            attrs[AC_ATTR("width")] = size.width
        if size.height is not None:
            attrs[AC_ATTR("height")] = size.height
        if size:
            attrs[AC_ATTR("thumbnail")] = "true"

        original = self.image_sizes.get(filename)
        if original is not None:
            attrs[AC_ATTR("original-width")] = str(original[0])
            attrs[AC_ATTR("original-height")] = str(original[1])

        return AC_ELEM(
            "image",
            attrs,
            RI_ELEM(
                "attachment",
                # refers to an attachment uploaded alongside the page
                {RI_ATTR("filename"): filename},
            ),
        )

    def _image_from_stub(self, marker: str) -> ElementType | None:
        stub = parse_stub(marker)
        if stub is None:
            LOGGER.warning("Skipping malformed attachment reference: %s", marker)
            return None
        return self.create_attached_image(stub.file, stub.size)

    def _split_markers(self, text: str) -> tuple[str, list[tuple[ElementType | None, str, str]]]:
        "Splits text into a leading part, and a list of (image, marker, following text) triples."

        parts = STUB_REGEXP.split(text)
        matches = [m.group(0) for m in STUB_REGEXP.finditer(text)]
        items: list[tuple[ElementType | None, str, str]] = []
        for marker, following in zip(matches, parts[2::2]):
            items.append((self._image_from_stub(marker), marker, following))
        return parts[0], items

    def _expand_text(self, element: ElementType) -> None:
        leading, items = self._split_markers(element.text or "")
        element.text = leading
        position = 0
        for image, marker, following in items:
            if image is None:
                self._append_text(element, position, marker + following)
                continue
            image.tail = following or None
            element.insert(position, image)
            position += 1

    def _expand_tail(self, element: ElementType) -> None:
        parent = element.getparent()
        if parent is None:
            return

        leading, items = self._split_markers(element.tail or "")
        element.tail = leading
        anchor = element
        for image, marker, following in items:
            if image is None:
                anchor.tail = (anchor.tail or "") + marker + following
                continue
            image.tail = following or None
            anchor.addnext(image)
            anchor = image

    def _append_text(self, element: ElementType, position: int, text: str) -> None:
        if position == 0:
            element.text = (element.text or "") + text
        else:
            previous = element[position - 1]
            previous.tail = (previous.tail or "") + text

    def resolve_stubs(self, container: ElementType) -> None:
        "Replaces attachment stubs that remain in text with attachment references."

        code_elements = {element for element in container.iter(*CODE_ELEMENTS)}

        def in_code(element: ElementType | None) -> bool:
            while element is not None:
                if element in code_elements:
                    return True
                element = element.getparent()
            return False

        for element in list(container.iter()):
            if not _is_element(element):
                continue

            text = element.text
            if text and "@@ATTACH" in text and not in_code(element):
                if element.tag == "a" and len(element) == 0 and STUB_REGEXP.fullmatch(text.strip()):
                    image = self._image_from_stub(text.strip())
                    if image is not None and element.getparent() is not None:
                        _replace_element(element, image)
                        continue
                self._expand_text(element)

            tail = element.tail
            if tail and "@@ATTACH" in tail and not in_code(element.getparent()):
                self._expand_tail(element)

    def wrap_images(self, container: ElementType) -> None:
        "Wraps top-level images in paragraphs."

        for child in list(container):
            if child.tag == AC_TAG("image"):
                paragraph = ET.Element("p")
                _replace_element(child, paragraph)
                paragraph.append(child)


def _is_toc_macro(element: ElementType) -> bool:
    if element.tag == AC_TAG("structured-macro"):
        return element.get(AC_ATTR("name")) == "toc"

    # macros written as raw HTML in Markdown keep their prefixed names
    if element.tag == "ac:structured-macro":
        return element.get("ac:name") == "toc"

    return False


def has_toc_macro(container: ElementType) -> bool:
    "True if the tree already holds a table of contents macro anywhere."

    return any(_is_toc_macro(element) for element in container.iter() if _is_element(element))


def insert_toc(container: ElementType, options: TableOfContentsOptions) -> bool:
    """
    Inserts a table of contents macro, unless disabled or the document already has one.

    The macro goes at the very top, or after the first top-level `<h1>` (at the top if there is none).

    :returns: True if a macro was inserted.
    """

    if not options.enabled or has_toc_macro(container):
        return False

    macro = AC_ELEM(
        "structured-macro",
        {
            AC_ATTR("name"): "toc",
            AC_ATTR("schema-version"): "1",
            AC_ATTR("macro-id"): options.macro_id,
        },
        AC_ELEM("parameter", {AC_ATTR("name"): "maxLevel"}, str(options.max_level)),
    )

    if options.position == "after-first-h1":
        heading = next((child for child in container if child.tag == "h1"), None)
        if heading is not None:
            heading.addnext(macro)
            return True

    macro.tail = container.text
    container.text = None
    container.insert(0, macro)
    return True


class MarkdownTransformer:
    """
    Transforms Markdown text into Confluence Storage Format.

    The pipeline runs the media preprocessor on the Markdown syntax tree, converts Markdown into HTML, rewrites the
    HTML tree into Confluence Storage Format, resolves attachment stubs, injects a table of contents, and serializes
    the result wrapped in a root element that declares the Confluence namespaces.

    :param image_dir: Directory of referenced images and rendered diagrams.
    :param renderer: Renders diagrams into PNG images; diagrams are kept as code if `None`.
    :param toc: Table of contents options.
    """

    image_dir: Path | None
    cache: DiagramCache | None
    renderer: DiagramRenderer | None
    toc: TableOfContentsOptions
    max_workers: int

    def __init__(
        self,
        *,
        image_dir: Path | None = None,
        renderer: DiagramRenderer | None = None,
        cache: DiagramCache | None = None,
        toc: TableOfContentsOptions | None = None,
        max_workers: int = 4,
    ) -> None:
        self.image_dir = image_dir
        self.renderer = renderer
        if cache is None and image_dir is not None:
            cache = DiagramCache(image_dir)
        self.cache = cache
        self.toc = toc or TableOfContentsOptions()
        self.max_workers = max_workers

    def to_storage(self, markdown: str) -> str:
        "Converts a Markdown document into a Confluence Storage Format string."

        document = parse_markdown(markdown)
        preprocessor = MediaPreprocessor(
            self.cache,
            self.renderer,
            render_diagrams=self.renderer is not None,
            max_workers=self.max_workers,
        )
        preprocessor.process(document)

        html = markdown_to_html(document.to_markdown())
        container = elements_from_html(html)

        converter = StorageFormatConverter(ImageSizeCache(self.image_dir))
        converter.convert(container)
        insert_toc(container, self.toc)

        return elements_to_string(wrap_root(container))
