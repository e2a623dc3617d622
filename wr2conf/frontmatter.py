"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import logging
import re
import typing
from typing import TypeVar

import yaml

from .serializer import JsonType, json_to_object

LOGGER = logging.getLogger(__name__)

D = TypeVar("D")

_FRONT_MATTER_REGEXP = re.compile(r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", flags=re.DOTALL | re.MULTILINE)


def split_frontmatter(text: str) -> tuple[dict[str, JsonType] | None, str]:
    """
    Separates a leading YAML front-matter block from the rest of a Markdown document.

    A block that is not valid YAML, or whose top-level value is not a mapping, is left in the text untouched.

    :returns: A tuple of (1) the front-matter as a mapping, or `None`, and (2) the remaining text.
    """

    match = _FRONT_MATTER_REGEXP.match(text)
    if match is None:
        return None, text

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as ex:
        LOGGER.warning("Ignoring malformed front-matter: %s", ex)
        return None, text

    if not isinstance(data, dict):
        return None, text

    return typing.cast(dict[str, JsonType], data), text[match.end() :]


def extract_frontmatter_object(tp: type[D], text: str) -> tuple[D | None, str]:
    "Extracts the front-matter from a document into a structured object of the given type."

    data, text = split_frontmatter(text)

    value_object: D | None = None
    if data is not None:
        value_object = json_to_object(tp, data)

    return value_object, text
