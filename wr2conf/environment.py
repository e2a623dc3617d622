"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import os
from dataclasses import dataclass
from urllib.parse import urlparse


class ArgumentError(ValueError):
    "Raised when wrong arguments are passed to a function call."


class ValidationError(ArgumentError):
    """
    Raised when a publish option is missing or invalid.

    :param field: Name of the offending option.
    """

    field: str | None

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class PageError(ValueError):
    "Raised in case there is an issue with a Confluence page or a file to attach to it."


class ConfluenceError(RuntimeError):
    """
    Raised when a Confluence API call fails.

    :param status_code: HTTP status code returned by Confluence, if any.
    """

    status_code: int | None

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class OrderingError(RuntimeError):
    "Raised when the ordered list of Markdown files to publish cannot be produced."


@dataclass(frozen=True)
class BasicAuth:
    """
    Credentials for HTTP Basic authentication.

    :param username: Confluence user name (or e-mail address on Confluence Cloud).
    :param password: Password or API token.
    """

    username: str
    password: str

    @classmethod
    def parse(cls, value: str) -> "BasicAuth":
        "Parses credentials in the format `user:password`."

        username, sep, password = value.partition(":")
        if not sep or not username or not password:
            raise ArgumentError("Basic authentication credentials must follow the format `user:password`")
        return cls(username, password)


def _validate_base_url(base_url: str) -> str:
    if not base_url.startswith(("http://", "https://")):
        raise ArgumentError("Confluence base URL must start with `http://` or `https://`")

    parsed = urlparse(base_url)
    if not parsed.netloc:
        raise ArgumentError("Confluence base URL lacks a host name")
    if parsed.query or parsed.fragment:
        raise ArgumentError("Confluence base URL must not have a query string or fragment")

    return base_url.rstrip("/")


class ConnectionProperties:
    """
    Properties related to connecting to Confluence.

    :param base_url: Confluence site URL, e.g. `https://confluence.example.com` or `https://example.atlassian.net/wiki`.
    :param auth: Credentials for HTTP Basic authentication.
    :param headers: Additional HTTP headers to pass to Confluence REST API calls.
    """

    base_url: str
    auth: BasicAuth
    headers: dict[str, str] | None

    def __init__(
        self,
        *,
        base_url: str | None = None,
        auth: BasicAuth | str | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        opt_base_url = base_url or os.getenv("CONF_BASE_URL")
        opt_auth = auth or os.getenv("CONF_BASIC_AUTH")

        if not opt_base_url:
            raise ArgumentError("Confluence base URL not specified")
        if not opt_auth:
            raise ArgumentError("Confluence credentials not specified")

        self.base_url = _validate_base_url(opt_base_url)
        self.auth = opt_auth if isinstance(opt_auth, BasicAuth) else BasicAuth.parse(opt_auth)
        self.headers = headers
