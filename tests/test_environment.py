"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import os
import unittest
from pathlib import Path
from unittest.mock import patch

from tests.utility import TypedTestCase
from wr2conf.environment import ArgumentError, BasicAuth, ConnectionProperties
from wr2conf.options import default_image_dir


class TestBasicAuth(TypedTestCase):
    def test_parse(self) -> None:
        self.assertEqual(BasicAuth.parse("user@example.com:api:token"), BasicAuth("user@example.com", "api:token"))

    def test_parse_invalid(self) -> None:
        for value in ("user", "user:", ":password", ""):
            with self.subTest(value=value):
                with self.assertRaises(ArgumentError):
                    BasicAuth.parse(value)


@patch.dict(os.environ, {}, clear=True)
class TestConnectionProperties(TypedTestCase):
    def test_arguments(self) -> None:
        properties = ConnectionProperties(base_url="https://example.atlassian.net/wiki/", auth="user:token")
        self.assertEqual(properties.base_url, "https://example.atlassian.net/wiki")
        self.assertEqual(properties.auth, BasicAuth("user", "token"))
        self.assertIsNone(properties.headers)

    def test_environment(self) -> None:
        with patch.dict(os.environ, {"CONF_BASE_URL": "http://localhost:8090", "CONF_BASIC_AUTH": "admin:admin"}):
            properties = ConnectionProperties()
        self.assertEqual(properties.base_url, "http://localhost:8090")
        self.assertEqual(properties.auth, BasicAuth("admin", "admin"))

    def test_arguments_take_precedence(self) -> None:
        with patch.dict(os.environ, {"CONF_BASE_URL": "http://localhost:8090", "CONF_BASIC_AUTH": "admin:admin"}):
            properties = ConnectionProperties(base_url="https://example.com", auth=BasicAuth("user", "token"))
        self.assertEqual(properties.base_url, "https://example.com")
        self.assertEqual(properties.auth, BasicAuth("user", "token"))

    def test_missing(self) -> None:
        with self.assertRaises(ArgumentError):
            ConnectionProperties(auth="user:token")
        with self.assertRaises(ArgumentError):
            ConnectionProperties(base_url="https://example.com")

    def test_invalid_base_url(self) -> None:
        for base_url in ("example.com", "ftp://example.com", "https://", "https://example.com/wiki?x=1", "https://example.com/#top"):
            with self.subTest(base_url=base_url):
                with self.assertRaises(ArgumentError):
                    ConnectionProperties(base_url=base_url, auth="user:token")

    def test_default_image_dir(self) -> None:
        self.assertEqual(default_image_dir(Path("/project")), Path("/project/images"))
        with patch.dict(os.environ, {"AUTHORD_IMAGE_DIR": "/srv/images"}):
            self.assertEqual(default_image_dir(Path("/project")), Path("/srv/images"))


if __name__ == "__main__":
    unittest.main()
