"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import unittest

from tests.utility import TypedTestCase
from wr2conf.markdown import markdown_to_html


class TestMarkdownToHtml(TypedTestCase):
    def test_strikethrough(self) -> None:
        self.assertIn("<del>gone</del>", markdown_to_html("This is ~~gone~~."))

    def test_table(self) -> None:
        html = markdown_to_html("| A | B |\n|---|---|\n| 1 | 2 |\n")
        self.assertIn("<table>", html)
        self.assertIn("<td>1</td>", html)

    def test_task_list(self) -> None:
        html = markdown_to_html("- [x] done\n- [ ] todo\n")
        self.assertIn('type="checkbox"', html)
        self.assertIn("task-list-item", html)

    def test_autolink(self) -> None:
        self.assertIn('href="https://example.com"', markdown_to_html("Visit https://example.com today."))

    def test_raw_html(self) -> None:
        html = markdown_to_html('<div class="note">\n<b>bold</b>\n</div>\n')
        self.assertIn('<div class="note">', html)
        self.assertIn("<b>bold</b>", html)

    def test_stub_in_paragraph(self) -> None:
        self.assertEqual(
            markdown_to_html("See @@ATTACH|file=my_new_diagram.png|width=10@@ here"),
            "<p>See @@ATTACH|file=my_new_diagram.png|width=10@@ here</p>",
        )

    def test_stub_in_table(self) -> None:
        html = markdown_to_html("| Image | Caption |\n|---|---|\n| @@ATTACH|file=a_b_c.png@@ | Logo |\n")
        self.assertIn("<td>@@ATTACH|file=a_b_c.png@@</td>", html)
        self.assertIn("<td>Logo</td>", html)

    def test_stub_in_fenced_code(self) -> None:
        html = markdown_to_html("```\n@@ATTACH|file=a.png@@\n```\n")
        self.assertIn("@@ATTACH|file=a.png@@", html)
        self.assertIn("<code", html)

    def test_code_block_cdata(self) -> None:
        html = markdown_to_html('<code-block lang="XML">\n<![CDATA[\n<tag attr="1">\n\n  *text* & more\n</tag>\n]]>\n</code-block>\n')
        self.assertIn('<pre class="highlight"><code class="language-xml">', html)
        self.assertIn('&lt;tag attr="1"&gt;\n\n  *text* &amp; more\n&lt;/tag&gt;</code></pre>', html)
        self.assertNotIn("CDATA", html)
        self.assertNotIn("<em>", html)

    def test_code_block_without_cdata(self) -> None:
        html = markdown_to_html("<code-block lang=\"kotlin\">val a = x &lt; y</code-block>\n")
        self.assertIn('<code class="language-kotlin">val a = x &lt; y</code>', html)

    def test_repeated_conversion(self) -> None:
        first = markdown_to_html("Text[^1]\n\n[^1]: Note\n")
        second = markdown_to_html("Text[^1]\n\n[^1]: Note\n")
        self.assertEqual(first, second)


if __name__ == "__main__":
    unittest.main()
