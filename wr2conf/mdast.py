"""
A minimal Markdown syntax tree for block-level media rewriting.

Only the constructs that the media preprocessor needs to tell apart are modelled: fenced code blocks (also inside
blockquotes), raw HTML blocks, and inline images, image tags and code spans inside ordinary text. Indented code is kept
as verbatim text. Every node keeps its exact source text, so a document that is parsed and written back without
modification is reproduced byte for byte.

Copyright 2025-2026, wr2conf authors
"""

import re
from dataclasses import dataclass, field
from html import escape

_FENCE_OPEN = re.compile(r"^(?P<indent>[ \t]*)(?P<fence>`{3,}|~{3,})(?P<info>[^\r\n]*)\r?\n?$")
_HTML_BLOCK_START = re.compile(r"^ {0,3}(?:<(?:[A-Za-z][A-Za-z0-9-]*|/[A-Za-z][A-Za-z0-9-]*)(?:[\s/>]|$)|<!--)")
_IMG_TAG = re.compile(r"<img\b[^>]*?/?>", re.IGNORECASE)
_RAW_BLOCK_START = re.compile(r"^ {0,3}<(code-block|pre|script|style|textarea)(?:[\s>]|$)", re.IGNORECASE)
_QUOTE_MARKER = re.compile(r"[ ]{0,3}>[ ]?")
_LIST_ITEM = re.compile(r"^[ \t]*(?:[-*+]|\d{1,9}[.)])(?:[ \t]|$)")


@dataclass
class Text:
    "Literal text, including Markdown syntax that is passed through unchanged."

    value: str

    def to_markdown(self) -> str:
        return self.value


@dataclass
class CodeSpan:
    "Inline code delimited by backticks, kept verbatim."

    value: str

    def to_markdown(self) -> str:
        return self.value


@dataclass
class InlineHtml:
    "An HTML `<img>` tag embedded in running text."

    value: str

    def to_markdown(self) -> str:
        return self.value


@dataclass
class Image:
    """
    A Markdown inline image `![alt](url "title")`.

    :param alt: Alternate text.
    :param url: Image source as written.
    :param title: Optional title.
    :param raw: Source text of the image.
    :param width: Width hint in pixels, attached by the preprocessor.
    :param height: Height hint in pixels, attached by the preprocessor.
    """

    alt: str
    url: str
    title: str | None
    raw: str
    width: str | None = None
    height: str | None = None

    def to_markdown(self) -> str:
        if self.width is None and self.height is None:
            return self.raw

        # Markdown image syntax has no place for dimensions; emit an HTML image tag instead
        attrs = [("src", self.url), ("alt", self.alt)]
        if self.title is not None:
            attrs.append(("title", self.title))
        if self.width is not None:
            attrs.append(("width", self.width))
        if self.height is not None:
            attrs.append(("height", self.height))
        attr_list = " ".join(f'{name}="{escape(value, quote=True)}"' for name, value in attrs)
        return f"<img {attr_list} />"


Inline = Text | CodeSpan | InlineHtml | Image


@dataclass
class Paragraph:
    "A run of non-blank lines of ordinary Markdown, such as a paragraph, heading, list or table."

    children: list[Inline] = field(default_factory=list)

    def to_markdown(self) -> str:
        return "".join(child.to_markdown() for child in self.children)


@dataclass
class FencedCode:
    """
    A fenced code block.

    :param lang: Language identifier, i.e. the first word of the info string, or `None`.
    :param value: Code text with the indentation of the opening fence removed.
    :param indent: Leading whitespace of the opening fence, after any blockquote markers.
    :param raw: Source text of the whole block, fences included.
    :param quote: Blockquote markers that precede each line of a block nested in a blockquote, e.g. `> `.
    """

    lang: str | None
    value: str
    indent: str
    raw: str
    quote: str = ""

    def to_markdown(self) -> str:
        return self.raw


@dataclass
class HtmlBlock:
    """
    Raw HTML starting at the beginning of a line, extending to the next blank line.

    Elements whose content is literal text, such as `<pre>` or Writerside `<code-block>`, extend to their closing tag.
    """

    value: str

    def to_markdown(self) -> str:
        return self.value


@dataclass
class Verbatim:
    "Source text that carries no content of interest, e.g. blank lines or an indented code block."

    value: str

    def to_markdown(self) -> str:
        return self.value


Block = Paragraph | FencedCode | HtmlBlock | Verbatim


@dataclass
class Document:
    "Root of a Markdown syntax tree."

    children: list[Block] = field(default_factory=list)

    def to_markdown(self) -> str:
        return "".join(child.to_markdown() for child in self.children)


def _is_blank(line: str) -> bool:
    return not line.strip()


def _strip_indent(line: str, indent: str) -> str:
    "Removes up to the amount of the given indentation from the start of a line."

    count = 0
    while count < len(indent) and count < len(line) and line[count] in " \t":
        count += 1
    return line[count:]


def _match_closing_fence(line: str, fence: str) -> bool:
    stripped = line.strip()
    return len(stripped) >= len(fence) and stripped == fence[0] * len(stripped)


def _quote_depth(prefix: str) -> int:
    return prefix.count(">")


def _split_quote(line: str, limit: int | None = None) -> tuple[str, str]:
    "Separates the blockquote markers at the start of a line, at most `limit` of them, from the rest of the line."

    end = 0
    count = 0
    while limit is None or count < limit:
        m = _QUOTE_MARKER.match(line, end)
        if m is None:
            break
        end = m.end()
        count += 1
    return line[:end], line[end:]


def _is_indented_code(line: str) -> bool:
    return not _is_blank(line) and (line.startswith("    ") or line.lstrip(" ").startswith("\t"))


def _continues_list(lines: list[str], start: int) -> bool:
    "True if the nearest preceding non-blank line belongs to a list item, whose content may be indented."

    for line in reversed(lines[:start]):
        if not _is_blank(line):
            return _LIST_ITEM.match(line) is not None or line[0] in " \t"
    return False


def _opens_fence(line: str) -> bool:
    _, rest = _split_quote(line)
    return _FENCE_OPEN.match(rest) is not None


def _parse_fenced(lines: list[str], start: int) -> tuple[FencedCode, int] | None:
    quote, opening = _split_quote(lines[start])
    m = _FENCE_OPEN.match(opening)
    if m is None:
        return None

    indent, fence, info = m.group("indent"), m.group("fence"), m.group("info").strip()
    if fence[0] == "`" and "`" in info:
        return None

    # the info string may carry attributes, e.g. ```mermaid {.diagram}
    lang = info.split(maxsplit=1)[0].strip("{}.").lower() if info else None

    depth = _quote_depth(quote)
    end = start + 1
    body: list[str] = []
    while end < len(lines):
        line = lines[end]
        if depth:
            prefix, line = _split_quote(line, depth)
            if _quote_depth(prefix) != depth:
                # a line outside the blockquote ends the code block, otherwise an unclosed fence extends to the end
                break
        end += 1
        if _match_closing_fence(line, fence):
            break
        body.append(_strip_indent(line, indent))

    raw = "".join(lines[start:end])
    return FencedCode(lang=lang or None, value="".join(body), indent=indent, raw=raw, quote=quote), end


def _find_closing_bracket(text: str, start: int) -> int:
    "Index of the `]` that matches the `[` at the start position, or -1."

    depth = 0
    i = start
    while i < len(text):
        c = text[i]
        if c == "\\":
            i += 2
            continue
        if c == "[":
            depth += 1
        elif c == "]":
            depth -= 1
            if depth == 0:
                return i
        elif c == "\n" and i + 1 < len(text) and text[i + 1] == "\n":
            return -1
        i += 1
    return -1


def _parse_destination(text: str, i: int) -> tuple[str, int] | None:
    if i < len(text) and text[i] == "<":
        end = text.find(">", i + 1)
        if end < 0 or "\n" in text[i:end]:
            return None
        return text[i + 1 : end], end + 1

    depth = 0
    start = i
    while i < len(text):
        c = text[i]
        if c == "\\" and i + 1 < len(text):
            i += 2
            continue
        if c.isspace():
            break
        if c == "(":
            depth += 1
        elif c == ")":
            if depth == 0:
                break
            depth -= 1
        i += 1
    if i == start:
        return None
    return text[start:i], i


def _parse_title(text: str, i: int) -> tuple[str, int] | None:
    if i >= len(text):
        return None
    opener = text[i]
    closer = {'"': '"', "'": "'", "(": ")"}.get(opener)
    if closer is None:
        return None
    j = i + 1
    while j < len(text):
        if text[j] == "\\":
            j += 2
            continue
        if text[j] == closer:
            return text[i + 1 : j], j + 1
        j += 1
    return None


def _skip_space(text: str, i: int) -> int:
    while i < len(text) and text[i] in " \t\n":
        i += 1
    return i


def _parse_image(text: str, start: int) -> tuple[Image, int] | None:
    "Parses an inline image starting with `![` at the given position."

    close = _find_closing_bracket(text, start + 1)
    if close < 0 or close + 1 >= len(text) or text[close + 1] != "(":
        return None

    alt = text[start + 2 : close]
    i = _skip_space(text, close + 2)
    destination = _parse_destination(text, i)
    if destination is None:
        return None
    url, i = destination

    title: str | None = None
    j = _skip_space(text, i)
    if j > i:
        parsed_title = _parse_title(text, j)
        if parsed_title is not None:
            title, j = parsed_title
            j = _skip_space(text, j)
    if j >= len(text) or text[j] != ")":
        return None

    end = j + 1
    return Image(alt=alt, url=url, title=title, raw=text[start:end]), end


def parse_inline(text: str) -> list[Inline]:
    "Splits running text into literal text, code spans, images and HTML image tags."

    nodes: list[Inline] = []
    buffer: list[str] = []

    def flush() -> None:
        if buffer:
            nodes.append(Text("".join(buffer)))
            buffer.clear()

    i = 0
    while i < len(text):
        c = text[i]
        if c == "\\" and i + 1 < len(text):
            buffer.append(text[i : i + 2])
            i += 2
        elif c == "`":
            run = len(text[i:]) - len(text[i:].lstrip("`"))
            delimiter = "`" * run
            close = i + run
            while True:
                close = text.find(delimiter, close)
                if close < 0 or not text.startswith("`", close + run):
                    break
                close = close + run + len(text[close + run :]) - len(text[close + run :].lstrip("`"))
            if close < 0:
                buffer.append(delimiter)
                i += run
            else:
                flush()
                nodes.append(CodeSpan(text[i : close + run]))
                i = close + run
        elif c == "!" and text.startswith("![", i) and (image := _parse_image(text, i)) is not None:
            flush()
            node, i = image
            nodes.append(node)
        elif c == "<" and (m := _IMG_TAG.match(text, i)) is not None:
            flush()
            nodes.append(InlineHtml(m.group(0)))
            i = m.end()
        else:
            buffer.append(c)
            i += 1

    flush()
    return nodes


def parse_markdown(text: str) -> Document:
    "Parses Markdown text into a syntax tree of blocks."

    lines = text.splitlines(keepends=True)
    blocks: list[Block] = []

    i = 0
    while i < len(lines):
        line = lines[i]

        indented = _is_indented_code(line) and not _continues_list(lines, i)
        fenced = _parse_fenced(lines, i) if not indented else None
        if fenced is not None:
            block, i = fenced
            blocks.append(block)
            continue

        start = i
        if _is_blank(line):
            while i < len(lines) and _is_blank(lines[i]):
                i += 1
            blocks.append(Verbatim("".join(lines[start:i])))
        elif indented:
            # an indented code block runs up to the last indented line before a non-indented one
            while i < len(lines) and (_is_blank(lines[i]) or _is_indented_code(lines[i])):
                i += 1
            while _is_blank(lines[i - 1]):
                i -= 1
            blocks.append(Verbatim("".join(lines[start:i])))
        elif _HTML_BLOCK_START.match(line) and not _IMG_TAG.match(line.lstrip()):
            literal = _RAW_BLOCK_START.match(line)
            if literal is not None:
                closing = f"</{literal.group(1).lower()}"
                while i < len(lines) and closing not in lines[i].lower():
                    i += 1
                i = min(i + 1, len(lines))
            else:
                while i < len(lines) and not _is_blank(lines[i]):
                    i += 1
            blocks.append(HtmlBlock("".join(lines[start:i])))
        else:
            i += 1
            while i < len(lines) and not _is_blank(lines[i]) and not _opens_fence(lines[i]):
                i += 1
            blocks.append(Paragraph(parse_inline("".join(lines[start:i]))))

    return Document(blocks)
