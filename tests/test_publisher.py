"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import hashlib
import logging
import tempfile
import unittest
from pathlib import Path

from tests.utility import TypedTestCase, make_png
from wr2conf.environment import BasicAuth, ConfluenceError, OrderingError, PageError, ValidationError
from wr2conf.options import PublishOptions, TableOfContentsOptions
from wr2conf.publisher import PublishState, Publisher, extract_attachment_filenames, prioritize_entrypoint
from wr2conf.repository import AttachmentInfo, LocalFileSystem, PageInfo

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(funcName)s [%(lineno)d] - %(message)s",
)

AUTHORD_CONFIG = """{
  "instances": [
    {
      "id": "guide",
      "start-page": "beta.md",
      "toc-element": [
        {"topic": "beta.md"},
        {"topic": "alpha.md"}
      ]
    }
  ]
}
"""


class FakePages:
    def __init__(self, page: PageInfo | None = None) -> None:
        self.page = page
        self.updates: list[tuple[str, str, str | None]] = []
        self.fail_update = False

    def get(self, page_id: str) -> PageInfo | None:
        return self.page

    def put_storage_body(self, page_id: str, xhtml: str, title: str | None = None) -> PageInfo:
        if self.page is None:
            raise PageError(f"Confluence page not found: {page_id}")
        if self.fail_update:
            raise ConfluenceError(f"update page failed for {page_id} with HTTP status 500", 500)
        self.updates.append((page_id, xhtml, title))
        self.page = PageInfo(id=page_id, version=self.page.version + 1, title=title or self.page.title)
        return self.page


class FakeAttachments:
    def __init__(self) -> None:
        self.remote: set[str] = set()
        self.ensured: list[Path] = []

    def list(self, page_id: str) -> set[str]:
        return set(self.remote)

    def ensure(self, page_id: str, path: Path) -> AttachmentInfo:
        self.ensured.append(path)
        self.remote.add(path.name)
        return AttachmentInfo(id=f"att{len(self.ensured)}", filename=path.name, uploaded=True)


class FakeProperties:
    def __init__(self) -> None:
        self.hashes: dict[str, str] = {}
        self.writes = 0

    def get_export_hash(self, page_id: str) -> str | None:
        return self.hashes.get(page_id)

    def set_export_hash(self, page_id: str, value: str) -> None:
        self.writes += 1
        self.hashes[page_id] = value


class TestHelpers(TypedTestCase):
    def test_attachment_filenames(self) -> None:
        storage = (
            '<ac:image><ri:attachment ri:filename="a.png"/></ac:image>'
            '<ac:image><ri:attachment ri:filename=" b.png "/></ac:image>'
            '<ac:image><ri:attachment ri:filename="a.png"/></ac:image>'
        )
        self.assertListEqual(extract_attachment_filenames(storage), ["a.png", "b.png"])
        self.assertListEqual(extract_attachment_filenames("<p>none</p>"), [])

    def test_prioritize_entrypoint(self) -> None:
        a, b, c = Path("/d/a.md"), Path("/d/b.md"), Path("/d/c.md")
        self.assertListEqual(prioritize_entrypoint(b, [a, b, c]), [b, a, c])
        self.assertListEqual(prioritize_entrypoint(c, [a, b]), [c, a, b])


class TestPublisher(TypedTestCase):
    temp_dir: tempfile.TemporaryDirectory[str]
    root_dir: Path
    pages: FakePages
    attachments: FakeAttachments
    properties: FakeProperties

    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root_dir = Path(self.temp_dir.name).resolve()

        topics_dir = self.root_dir / "topics"
        images_dir = self.root_dir / "images"
        topics_dir.mkdir()
        images_dir.mkdir()

        (self.root_dir / "authord.config.json").write_text(AUTHORD_CONFIG, encoding="utf-8")
        (topics_dir / "alpha.md").write_text("# Alpha\n\n![Logo](../images/logo.png){ width=100 }\n", encoding="utf-8")
        (topics_dir / "beta.md").write_text("---\ntitle: User Guide\n---\n# Beta\n\nWelcome.\n", encoding="utf-8")
        (images_dir / "logo.png").write_bytes(make_png(200, 100))

        self.pages = FakePages(PageInfo(id="123", version=5, title="Existing title"))
        self.attachments = FakeAttachments()
        self.properties = FakeProperties()

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def publisher(self) -> Publisher:
        return Publisher(
            fs=LocalFileSystem(),
            pages=self.pages,
            attachments=self.attachments,
            properties=self.properties,
        )

    def options(self, **kwargs: object) -> PublishOptions:
        values: dict[str, object] = {
            "root_dir": self.root_dir,
            "md": self.root_dir / "topics",
            "images": self.root_dir / "images",
            "page_id": "123",
            "base_url": "https://example.atlassian.net/wiki",
            "basic_auth": BasicAuth("user", "token"),
            "toc": TableOfContentsOptions(enabled=False),
            "render_mermaid": False,
        }
        values.update(kwargs)
        return PublishOptions(**values)  # type: ignore[arg-type]

    def test_first_publish(self) -> None:
        result = self.publisher().publish(self.options())

        self.assertEqual(result.state, PublishState.UPDATED)
        self.assertEqual(result.version, 6)
        self.assertEqual(result.uploaded, 1)
        self.assertEqual(len(self.pages.updates), 1)

        page_id, storage, title = self.pages.updates[0]
        self.assertEqual(page_id, "123")
        self.assertEqual(title, "User Guide")
        self.assertLess(storage.index("<h1>Beta</h1>"), storage.index("<h1>Alpha</h1>"))
        self.assertNotIn("title: User Guide", storage)
        self.assertIn(
            '<ac:image ac:width="100" ac:thumbnail="true" ac:original-width="200" ac:original-height="100">'
            '<ri:attachment ri:filename="logo.png"/></ac:image>',
            storage,
        )

        self.assertEqual(self.attachments.ensured, [self.root_dir / "images" / "logo.png"])
        self.assertEqual(result.export_hash, hashlib.sha256(storage.encode("utf-8")).hexdigest())
        self.assertEqual(self.properties.hashes["123"], result.export_hash)

    def test_idempotent(self) -> None:
        first = self.publisher().publish(self.options())
        second = self.publisher().publish(self.options())

        self.assertEqual(second.state, PublishState.SKIPPED)
        self.assertEqual(second.export_hash, first.export_hash)
        self.assertEqual(second.uploaded, 0)
        self.assertEqual(len(self.pages.updates), 1)
        self.assertEqual(len(self.attachments.ensured), 1)
        self.assertEqual(self.properties.writes, 1)

    def test_heal_missing_attachment(self) -> None:
        self.publisher().publish(self.options())
        self.attachments.remote.clear()

        result = self.publisher().publish(self.options())

        self.assertEqual(result.state, PublishState.HEALED)
        self.assertEqual(result.uploaded, 1)
        self.assertIsNone(result.version)
        self.assertEqual(len(self.pages.updates), 1)
        self.assertEqual(self.properties.writes, 1)

    def test_missing_local_image(self) -> None:
        (self.root_dir / "images" / "logo.png").unlink()
        with self.assertLogs("wr2conf.publisher", level=logging.WARNING):
            result = self.publisher().publish(self.options())

        self.assertEqual(result.state, PublishState.UPDATED)
        self.assertEqual(result.uploaded, 0)
        self.assertEqual(self.attachments.ensured, [])

    def test_explicit_title(self) -> None:
        self.publisher().publish(self.options(title="Explicit"))
        self.assertEqual(self.pages.updates[0][2], "Explicit")

    def test_keep_frontmatter(self) -> None:
        self.publisher().publish(self.options(strip_frontmatter=False))
        _, storage, title = self.pages.updates[0]
        self.assertIsNone(title)
        self.assertIn("User Guide", storage)

    def test_entry_file_first(self) -> None:
        self.publisher().publish(self.options(md=self.root_dir / "topics" / "alpha.md"))
        _, storage, title = self.pages.updates[0]
        self.assertLess(storage.index("<h1>Alpha</h1>"), storage.index("<h1>Beta</h1>"))
        self.assertIsNone(title)

    def test_page_not_found(self) -> None:
        self.pages.page = None
        with self.assertRaises(PageError):
            self.publisher().publish(self.options())
        self.assertEqual(self.properties.writes, 0)

    def test_no_hash_after_failure(self) -> None:
        self.pages.fail_update = True
        with self.assertRaises(ConfluenceError):
            self.publisher().publish(self.options())
        self.assertEqual(self.properties.writes, 0)
        self.assertEqual(self.attachments.ensured, [])

    def test_no_markdown(self) -> None:
        for path in (self.root_dir / "topics").iterdir():
            path.unlink()
        with self.assertRaises(OrderingError) as context:
            self.publisher().publish(self.options())
        self.assertEqual(str(context.exception), "No markdown files to publish after resolution.")

    def test_validation(self) -> None:
        cases: list[tuple[dict[str, object], str]] = [
            ({"root_dir": None}, "root_dir"),
            ({"md": None}, "md"),
            ({"images": None}, "images"),
            ({"base_url": None}, "base_url"),
            ({"basic_auth": None}, "basic_auth"),
            ({"page_id": None}, "page_id"),
            ({"images": self.root_dir / "missing"}, "images"),
            ({"md": self.root_dir / "topics" / "missing.md"}, "md"),
            ({"root_dir": self.root_dir / "missing"}, "root_dir"),
        ]
        for kwargs, field in cases:
            with self.subTest(field=field, kwargs=kwargs):
                with self.assertRaises(ValidationError) as context:
                    self.publisher().publish(self.options(**kwargs))
                self.assertEqual(context.exception.field, field)

        self.assertEqual(self.pages.updates, [])


if __name__ == "__main__":
    unittest.main()
