"""
Publish Writerside and Authord documentation to a single Confluence page.

Resolves the ordered list of Markdown topics of a documentation project, converts the concatenated Markdown content
into the Confluence Storage Format (XHTML), renders Mermaid diagrams into image attachments, and invokes Confluence
API endpoints to upload images and content only when the published content has changed.
"""

from ._version import __version__

__all__ = ["__version__"]

__copyright__ = "Copyright 2025-2026, wr2conf authors"
__license__ = "MIT"
__status__ = "Production"
