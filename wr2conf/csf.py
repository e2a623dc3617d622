"""
Parsing and serialization helpers for Confluence Storage Format (XHTML with `ac:` and `ri:` namespaced elements).

Copyright 2025-2026, wr2conf authors
"""

import re

import lxml.etree as ET
import lxml.html
from lxml.builder import ElementMaker

ElementType = ET._Element  # pyright: ignore [reportPrivateUsage]

# XML namespaces typically associated with Confluence Storage Format documents
_namespaces = {
    "ac": "http://atlassian.com/content",
    "ri": "http://atlassian.com/resource/identifier",
}
for key, value in _namespaces.items():
    ET.register_namespace(key, value)

AC_ELEM = ElementMaker(namespace=_namespaces["ac"], nsmap={"ac": _namespaces["ac"]})
RI_ELEM = ElementMaker(namespace=_namespaces["ri"], nsmap={"ri": _namespaces["ri"]})

_ROOT_START_TAG = "<div{}>".format("".join(f' xmlns:{key}="{value}"' for key, value in _namespaces.items()))
_TAG_REGEXP = re.compile(r"<[^<>]+>")
_NS_DECLARATION_REGEXP = re.compile(r'\s+xmlns:(?:{})="[^"]*"'.format("|".join(_namespaces.keys())))
_BARE_AMPERSAND_REGEXP = re.compile(r"&(?!(?:[A-Za-z][A-Za-z0-9]*|#[0-9]+|#[xX][0-9A-Fa-f]+);)")


class ConversionError(RuntimeError):
    "Raised when HTML cannot be turned into Confluence Storage Format."


def _qname(namespace_uri: str, name: str) -> str:
    return ET.QName(namespace_uri, name).text


def AC_ATTR(name: str) -> str:
    return _qname(_namespaces["ac"], name)


def RI_ATTR(name: str) -> str:
    return _qname(_namespaces["ri"], name)


def AC_TAG(name: str) -> str:
    return _qname(_namespaces["ac"], name)


def elements_from_html(html: str) -> ElementType:
    """
    Parses an HTML fragment into an element tree.

    The fragment is parsed leniently as HTML (not XML), since Markdown documents may embed arbitrary raw HTML. Top-level
    nodes are collected under a `<div>` container element. Comments are discarded.

    :param html: HTML fragment as a string.
    :returns: A container element holding the parsed content.
    """

    if not html.strip():
        return ET.Element("div")

    parser = lxml.html.HTMLParser(remove_comments=True)
    try:
        return lxml.html.fragment_fromstring(html, create_parent="div", parser=parser)
    except (ET.ParserError, ValueError) as ex:
        raise ConversionError(f"failed to parse HTML: {ex}") from ex


def wrap_root(container: ElementType) -> ElementType:
    """
    Moves the content of a container element into a root `<div>` that declares the Confluence XML namespaces.
    """

    root = ET.Element("div", nsmap=_namespaces)
    root.text = container.text
    for child in list(container):
        root.append(child)
    return root


def escape_bare_ampersands(text: str) -> str:
    "Escapes each `&` that does not start a named entity or a numeric character reference."

    return _BARE_AMPERSAND_REGEXP.sub("&amp;", text)


def elements_to_string(root: ElementType) -> str:
    """
    Converts a Confluence Storage Format element tree into an XML string to push to Confluence REST API.

    Namespace declarations appear once, on the root element. Empty elements are self-closed and attribute values are
    double-quoted.

    :param root: Synthesized XML element tree of a Confluence Storage Format document, wrapped in a root element.
    :returns: XML as a string.
    """

    xml = ET.tostring(root, encoding="unicode", method="xml")
    m = re.match(r"^<div\b[^>]*?(/?)>", xml)
    if m is None:
        raise ValueError("expected: Confluence content wrapped in a root element")

    if m.group(1):
        body = ""
    else:
        body = xml[m.end() :].removesuffix("</div>")

    # elements created before being attached to the root carry their own declarations
    body = _TAG_REGEXP.sub(lambda t: _NS_DECLARATION_REGEXP.sub("", t.group(0)), body)
    return escape_bare_ampersands(f"{_ROOT_START_TAG}{body}</div>")
