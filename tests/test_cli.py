"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import io
import os
import tempfile
import unittest
from contextlib import redirect_stderr
from pathlib import Path
from unittest.mock import MagicMock, patch

from tests.utility import TypedTestCase
from wr2conf.__main__ import Arguments, get_parser, main
from wr2conf.environment import BasicAuth, ConfluenceError
from wr2conf.options import PublishOptions
from wr2conf.publisher import PublishResult, PublishState

CLEAN_ENVIRONMENT = {key: value for key, value in os.environ.items() if not key.startswith(("CONF_", "AUTHORD_", "MMD_"))}


class TestParser(TypedTestCase):
    def parse(self, *argv: str) -> Arguments:
        args = Arguments()
        get_parser().parse_args(list(argv), namespace=args)
        return args

    def test_defaults(self) -> None:
        args = self.parse("-i", "123")
        self.assertEqual(args.dir, ".")
        self.assertEqual(args.page_id, "123")
        self.assertEqual(args.md, "topics")
        self.assertIsNone(args.images)
        self.assertIsNone(args.title)
        self.assertTrue(args.toc)
        self.assertEqual(args.toc_position, "top")
        self.assertEqual(args.toc_max_level, 3)
        self.assertTrue(args.render_mermaid)
        self.assertEqual(args.loglevel, "info")

    def test_options(self) -> None:
        args = self.parse(
            "docs",
            "--page-id=456",
            "--base-url=https://example.atlassian.net/wiki",
            "--basic-auth=user:token",
            "--md=topics/start.md",
            "--images=img",
            "--title=Handbook",
            "--no-toc",
            "--toc-position=after-first-h1",
            "--toc-max-level=2",
            "--no-render-mermaid",
            "--loglevel=debug",
        )
        self.assertEqual(args.dir, "docs")
        self.assertEqual(args.page_id, "456")
        self.assertEqual(args.base_url, "https://example.atlassian.net/wiki")
        self.assertEqual(args.basic_auth, "user:token")
        self.assertEqual(args.md, "topics/start.md")
        self.assertEqual(args.images, "img")
        self.assertEqual(args.title, "Handbook")
        self.assertFalse(args.toc)
        self.assertEqual(args.toc_position, "after-first-h1")
        self.assertEqual(args.toc_max_level, 2)
        self.assertFalse(args.render_mermaid)
        self.assertEqual(args.loglevel, "debug")

    def test_invalid(self) -> None:
        for argv in (
            [],
            ["-i", "123", "--toc-max-level=7"],
            ["-i", "123", "--toc-position=bottom"],
        ):
            with self.subTest(argv=argv):
                with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit) as context:
                    self.parse(*argv)
                self.assertEqual(context.exception.code, 2)


@patch.dict(os.environ, CLEAN_ENVIRONMENT, clear=True)
class TestMain(TypedTestCase):
    temp_dir: tempfile.TemporaryDirectory[str]
    root_dir: Path

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root_dir = Path(self.temp_dir.name).resolve()
        (self.root_dir / "authord.config.json").write_text('{"instances": []}', encoding="utf-8")

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def run_main(self, *argv: str) -> None:
        main([str(self.root_dir), "-i", "123", *argv])

    def test_missing_project(self) -> None:
        (self.root_dir / "authord.config.json").unlink()
        stderr = io.StringIO()
        with redirect_stderr(stderr), self.assertRaises(SystemExit) as context:
            self.run_main("--base-url=https://example.atlassian.net/wiki", "--basic-auth=user:token")
        self.assertEqual(context.exception.code, 2)
        self.assertIn("No project config found", stderr.getvalue())

    def test_missing_credentials(self) -> None:
        with redirect_stderr(io.StringIO()), self.assertRaises(SystemExit) as context:
            self.run_main("--base-url=https://example.atlassian.net/wiki")
        self.assertEqual(context.exception.code, 2)

    @patch("wr2conf.publisher.Publisher.publish")
    def test_publish(self, publish: MagicMock) -> None:
        publish.return_value = PublishResult(state=PublishState.UPDATED, export_hash="0" * 64, uploaded=0, version=2)

        self.run_main("--base-url=https://example.atlassian.net/wiki/", "--basic-auth=user:token", "--title=Handbook")

        publish.assert_called_once()
        options: PublishOptions = publish.call_args.args[0]
        self.assertEqual(options.root_dir, self.root_dir)
        self.assertEqual(options.md, self.root_dir / "topics")
        self.assertEqual(options.images, self.root_dir / "images")
        self.assertEqual(options.page_id, "123")
        self.assertEqual(options.base_url, "https://example.atlassian.net/wiki")
        self.assertEqual(options.basic_auth, BasicAuth("user", "token"))
        self.assertEqual(options.title, "Handbook")
        self.assertTrue(options.toc.enabled)

    @patch("wr2conf.publisher.Publisher.publish")
    def test_publish_environment(self, publish: MagicMock) -> None:
        publish.return_value = PublishResult(state=PublishState.SKIPPED, export_hash="0" * 64, uploaded=0)

        with patch.dict(
            os.environ,
            {
                "CONF_BASE_URL": "https://confluence.example.com",
                "CONF_BASIC_AUTH": "admin:secret",
                "AUTHORD_IMAGE_DIR": "/srv/images",
            },
        ):
            self.run_main("--no-toc", "--no-render-mermaid")

        options: PublishOptions = publish.call_args.args[0]
        self.assertEqual(options.base_url, "https://confluence.example.com")
        self.assertEqual(options.basic_auth, BasicAuth("admin", "secret"))
        self.assertEqual(options.images, Path("/srv/images"))
        self.assertFalse(options.toc.enabled)
        self.assertFalse(options.render_mermaid)

    @patch("wr2conf.publisher.Publisher.publish")
    def test_publish_failure(self, publish: MagicMock) -> None:
        publish.side_effect = ConfluenceError("update page failed for 123 with HTTP status 409", 409)

        with self.assertLogs(level="ERROR"), self.assertRaises(SystemExit) as context:
            self.run_main("--base-url=https://example.atlassian.net/wiki", "--basic-auth=user:token")
        self.assertEqual(context.exception.code, 1)


if __name__ == "__main__":
    unittest.main()
