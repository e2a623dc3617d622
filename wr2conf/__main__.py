"""
Publish Writerside and Authord documentation to a single Confluence page.

Flattens all topics of a documentation project into one Markdown document, converts it into the Confluence Storage
Format (XHTML), and overwrites the body of an existing Confluence page, uploading images as attachments.

Copyright 2025-2026, wr2conf authors
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Literal

from . import __version__
from .environment import ArgumentError, ConfluenceError, ConnectionProperties, OrderingError, PageError
from .options import PublishOptions, TableOfContentsOptions, default_image_dir
from .ordering import detect_project

ENVIRONMENT_HELP = """
environment variables:
  CONF_BASE_URL        alternative to --base-url
  CONF_BASIC_AUTH      alternative to --basic-auth (format: user:password)
  AUTHORD_IMAGE_DIR    image directory when --images is omitted (default: images)
  MMD_WIDTH, MMD_HEIGHT, MMD_SCALE, MMD_BG, MMD_THEME, MMD_CONFIG, MMD_TIMEOUT
                       Mermaid diagram rendering options
"""


class Arguments(argparse.Namespace):
    dir: str
    base_url: str | None
    basic_auth: str | None
    page_id: str
    title: str | None
    md: str
    images: str | None
    toc: bool
    toc_position: Literal["top", "after-first-h1"]
    toc_max_level: int
    render_mermaid: bool
    loglevel: str


def get_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Flatten a Writerside or Authord project into a single Confluence page.",
        epilog=ENVIRONMENT_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.prog = "confluence-single"
    parser.add_argument("--version", action="version", version=__version__)
    parser.add_argument("dir", nargs="?", default=".", help="Project root directory (default: current directory).")
    parser.add_argument("--base-url", dest="base_url", help="Confluence base URL, e.g. `https://example.atlassian.net/wiki`.")
    parser.add_argument("--basic-auth", dest="basic_auth", help="Basic authentication credentials as `user:password`.")
    parser.add_argument("-i", "--page-id", dest="page_id", required=True, help="ID of the existing Confluence page to update.")
    parser.add_argument("--title", help="Page title (default: title in front-matter of the first topic, or current page title).")
    parser.add_argument("--md", default="topics", help="Topics directory or entry Markdown file, relative to the project root (default: topics).")
    parser.add_argument("--images", help="Images directory, relative to the project root (default: images).")
    parser.add_argument(
        "--toc",
        action="store_true",
        default=True,
        help="Insert a table of contents if the document has none (default).",
    )
    parser.add_argument("--no-toc", dest="toc", action="store_false", help="Do not insert a table of contents.")
    parser.add_argument(
        "--toc-position",
        dest="toc_position",
        choices=["top", "after-first-h1"],
        default="top",
        help="Where to insert the table of contents.",
    )
    parser.add_argument(
        "--toc-max-level",
        dest="toc_max_level",
        type=int,
        choices=range(1, 7),
        metavar="{1-6}",
        default=3,
        help="Deepest heading level in the table of contents.",
    )
    parser.add_argument(
        "--no-render-mermaid",
        dest="render_mermaid",
        action="store_false",
        default=True,
        help="Keep Mermaid diagrams as code blocks instead of rendering them into images.",
    )
    parser.add_argument(
        "-l",
        "--loglevel",
        choices=[
            logging.getLevelName(level).lower()
            for level in (
                logging.DEBUG,
                logging.INFO,
                logging.WARN,
                logging.ERROR,
                logging.CRITICAL,
            )
        ],
        default=logging.getLevelName(logging.INFO).lower(),
        help="Use this option to set the log verbosity.",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = get_parser()
    args = Arguments()
    parser.parse_args(argv, namespace=args)

    logging.basicConfig(
        level=getattr(logging, args.loglevel.upper(), logging.INFO),
        format="%(asctime)s - %(levelname)s - %(funcName)s [%(lineno)d] - %(message)s",
    )

    root_dir = Path(args.dir).resolve()
    if detect_project(root_dir) is None:
        parser.error("No project config found in the provided directory (authord.config.json | writerside.cfg)")

    try:
        properties = ConnectionProperties(base_url=args.base_url, auth=args.basic_auth)
    except ArgumentError as e:
        parser.error(str(e))

    options = PublishOptions(
        root_dir=root_dir,
        md=root_dir / args.md,
        images=root_dir / args.images if args.images else default_image_dir(root_dir),
        page_id=args.page_id,
        base_url=properties.base_url,
        basic_auth=properties.auth,
        title=args.title,
        toc=TableOfContentsOptions(enabled=args.toc, max_level=args.toc_max_level, position=args.toc_position),
        render_mermaid=args.render_mermaid,
    )

    from requests import HTTPError

    from .api import ConfluenceAPI
    from .publisher import Publisher
    from .repository import ConfluenceAttachmentRepository, ConfluencePageRepository, ConfluencePropertyStore, LocalFileSystem

    try:
        with ConfluenceAPI(properties) as api:
            property_store = ConfluencePropertyStore(api)
            result = Publisher(
                fs=LocalFileSystem(),
                pages=ConfluencePageRepository(api),
                attachments=ConfluenceAttachmentRepository(api, property_store),
                properties=property_store,
            ).publish(options)
        logging.info("Publish finished: %s", result.state.value)
    except ArgumentError as e:
        parser.error(str(e))
    except (ConfluenceError, PageError, OrderingError, HTTPError) as err:
        logging.error(err)
        sys.exit(1)


if __name__ == "__main__":
    main()
