"""
Converts Markdown into HTML with Python-Markdown, keeping attachment stubs and Writerside code listings intact.

Copyright 2025-2026, wr2conf authors
"""

import re
from html import escape

import markdown
from markdown.extensions import Extension
from markdown.preprocessors import Preprocessor

from .media import CODE_BLOCK_REGEXP, STUB_REGEXP, parse_code_block


class AttachmentStubPreprocessor(Preprocessor):
    """
    Shields attachment stubs from Markdown inline syntax.

    Each stub is moved into the raw HTML stash, and comes back verbatim when the HTML is assembled. This keeps the `|`
    in a stub from splitting table cells, and `_` or `*` in file names from starting emphasis.
    """

    def run(self, lines: list[str]) -> list[str]:
        return [STUB_REGEXP.sub(lambda m: self.md.htmlStash.store(m.group(0)), line) for line in lines]


class CodeBlockPreprocessor(Preprocessor):
    """
    Sets Writerside `<code-block>` elements aside as code listings.

    The listing, often wrapped in a CDATA section, is escaped and stashed as a `<pre>` element, so that neither Markdown
    nor the HTML parser interprets the markup it contains.
    """

    def run(self, lines: list[str]) -> list[str]:
        text = "\n".join(lines)
        if CODE_BLOCK_REGEXP.search(text) is None:
            return lines
        return CODE_BLOCK_REGEXP.sub(self._stash, text).split("\n")

    def _stash(self, m: re.Match[str]) -> str:
        listing = parse_code_block(m)
        lang = f' class="language-{escape(listing.lang)}"' if listing.lang else ""
        return self.md.htmlStash.store(f'<pre class="highlight"><code{lang}>{escape(listing.text, quote=False)}</code></pre>')


class WritersideExtension(Extension):
    "Registers the preprocessors for code listings and attachment stubs."

    def extendMarkdown(self, md: markdown.Markdown) -> None:
        # fenced code is set aside at priority 25, and raw HTML blocks at 20
        md.preprocessors.register(CodeBlockPreprocessor(md), "code_block_listing", 22)
        md.preprocessors.register(AttachmentStubPreprocessor(md), "attachment_stub", 15)


_CONVERTER = markdown.Markdown(
    extensions=[
        "footnotes",
        "markdown.extensions.tables",
        "md_in_html",
        "pymdownx.highlight",  # required by `pymdownx.superfences`
        "pymdownx.magiclink",
        "pymdownx.superfences",
        "pymdownx.tasklist",
        "pymdownx.tilde",
        "sane_lists",
        WritersideExtension(),
    ],
    extension_configs={
        "footnotes": {"BACKLINK_TITLE": ""},
        "pymdownx.highlight": {
            "use_pygments": False,
        },
        "pymdownx.tasklist": {
            "custom_checkbox": False,
        },
    },
)


def markdown_to_html(content: str) -> str:
    """
    Converts a Markdown document into HTML with Python-Markdown.

    Enables tables, strikethrough (`~~text~~`), task lists, automatic links and raw HTML passthrough. Attachment stubs
    are passed through unchanged, and Writerside `<code-block>` elements become code listings.

    :param content: Markdown input as a string.
    :returns: HTML output as a string.
    :see: https://python-markdown.github.io/
    """

    _CONVERTER.reset()
    html = _CONVERTER.convert(content)
    return html
