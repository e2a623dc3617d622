"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import enum
import logging
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Any, TypeVar, cast, overload
from urllib.parse import urlencode, urlparse, urlunparse

import requests

from .environment import ArgumentError, ConnectionProperties, PageError
from .serializer import JsonType, json_to_object, object_to_json_payload

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@enum.unique
class ConfluenceVersion(enum.Enum):
    """
    Confluence REST API version an HTTP request corresponds to.

    Only the classic REST API is used, which both Confluence Cloud and Confluence Data Center/Server support.
    """

    VERSION_1 = "rest/api"


@enum.unique
class ConfluenceRepresentation(enum.Enum):
    STORAGE = "storage"


@dataclass(frozen=True)
class ConfluenceContentVersion:
    number: int
    minorEdit: bool = False
    message: str | None = None


@dataclass(frozen=True)
class ConfluencePageStorage:
    """
    Holds Confluence page content.

    :param representation: Type of content representation used (e.g. Confluence Storage Format).
    :param value: Body of the content, in the format found in the representation field.
    """

    representation: ConfluenceRepresentation
    value: str


@dataclass(frozen=True)
class ConfluencePageBody:
    """
    Holds Confluence page content.

    :param storage: Encapsulates content with meta-information about its representation.
    """

    storage: ConfluencePageStorage


@dataclass(frozen=True)
class ConfluencePageProperties:
    """
    Holds Confluence page properties used for page synchronization.

    :param id: Confluence page ID.
    :param title: Page title.
    :param version: Page version. Incremented when the page is updated.
    """

    id: str
    title: str
    version: ConfluenceContentVersion


@dataclass(frozen=True)
class ConfluenceUpdatePageRequest:
    id: str
    type: str
    title: str
    body: ConfluencePageBody
    version: ConfluenceContentVersion


@dataclass(frozen=True)
class ConfluenceAttachmentExtensions:
    comment: str | None = None
    mediaType: str = "application/octet-stream"
    fileSize: int = 0


@dataclass(frozen=True)
class ConfluenceAttachment:
    """
    Holds data for an object uploaded to Confluence as a page attachment.

    :param id: Unique ID for the attachment, e.g. `att123456`.
    :param title: Attachment title, which is the file name.
    :param extensions: Media type, size and description of the attachment.
    """

    id: str
    title: str
    extensions: ConfluenceAttachmentExtensions = field(default_factory=ConfluenceAttachmentExtensions)


@dataclass(frozen=True)
class ConfluenceContentProperty:
    """
    Represents a content property.

    :param key: Property key.
    :param value: Property value as JSON.
    """

    key: str
    value: JsonType


@dataclass(frozen=True)
class ConfluenceVersionedContentProperty(ConfluenceContentProperty):
    """
    Represents a content property.

    :param version: Version information about the property.
    """

    version: ConfluenceContentVersion


@dataclass(frozen=True)
class ConfluenceIdentifiedContentProperty(ConfluenceVersionedContentProperty):
    """
    Represents a content property.

    :param id: Property ID.
    """

    id: str


def build_url(base_url: str, query: dict[str, str] | None = None) -> str:
    "Builds a URL with scheme, host, port, path and query string parameters."

    scheme, netloc, path, params, query_str, fragment = urlparse(base_url)

    if params:
        raise ValueError("expected: url with no parameters")
    if query_str:
        raise ValueError("expected: url with no query string")
    if fragment:
        raise ValueError("expected: url with no fragment")

    url_parts = (scheme, netloc, path, None, urlencode(query) if query else None, None)
    return urlunparse(url_parts)


@overload
def response_cast(response_type: None, response: requests.Response) -> None: ...


@overload
def response_cast(response_type: type[T], response: requests.Response) -> T: ...


def response_cast(response_type: type[T] | None, response: requests.Response) -> T | None:
    "Converts a response body into the expected type."

    if response.text:
        LOGGER.debug("Received HTTP payload:\n%s", response.text)
    response.raise_for_status()
    if response_type is None:
        return None
    else:
        return json_to_object(response_type, response.json())


def status_code_of(ex: requests.RequestException) -> int | None:
    "HTTP status code carried by a failed request, if any."

    return ex.response.status_code if ex.response is not None else None


class ConfluenceAPI:
    """
    Represents an active connection to a Confluence server.

    ```
    with ConfluenceAPI(ConnectionProperties(base_url=..., auth=...)) as api:
        api.get_page_properties(page_id)
    ```
    """

    properties: ConnectionProperties
    session: "ConfluenceSession | None" = None

    def __init__(self, properties: ConnectionProperties) -> None:
        self.properties = properties

    def __enter__(self) -> "ConfluenceSession":
        session = requests.Session()
        session.auth = (self.properties.auth.username, self.properties.auth.password)
        if self.properties.headers:
            session.headers.update(self.properties.headers)

        self.session = ConfluenceSession(session, api_url=f"{self.properties.base_url}/")
        return self.session

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None


class ConfluenceSession:
    """
    Information about an open session to a Confluence server.

    Start a Confluence container:
    ```
    docker run -d -p 8090:8090 atlassian/confluence
    ```
    """

    _session: requests.Session
    _api_url: str

    page_size: int = 200

    def __init__(self, session: requests.Session, *, api_url: str) -> None:
        if not api_url.endswith("/"):
            raise ArgumentError("expected: Confluence API URL ending with `/`")

        self._session = session
        self._api_url = api_url
        LOGGER.info("Configured classic Confluence REST API URL: %s%s", self._api_url, ConfluenceVersion.VERSION_1.value)

    def close(self) -> None:
        self._session.close()
        self._session = requests.Session()

    def _build_url(self, version: ConfluenceVersion, path: str, query: dict[str, str] | None = None) -> str:
        """
        Builds a full URL for invoking the Confluence API.

        :param version: Confluence API version, which determines the URL path prefix.
        :param path: Path of API endpoint to invoke.
        :param query: Query parameters to pass to the API endpoint.
        :returns: A full URL.
        """

        base_url = f"{self._api_url}{version.value}{path}"
        return build_url(base_url, query)

    def _get(self, version: ConfluenceVersion, path: str, response_type: type[T], *, query: dict[str, str] | None = None) -> T:
        "Executes an HTTP request via Confluence API."

        url = self._build_url(version, path, query)
        # many Confluence Data Center/Server versions require a `Content-Type` header even though an HTTP GET request has no payload
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        response = self._session.get(url, headers=headers, verify=True)
        return response_cast(response_type, response)

    def _build_request(self, version: ConfluenceVersion, path: str, body: Any, response_type: type[T] | None) -> tuple[str, dict[str, str], bytes]:
        "Generates URL, headers and raw payload for a typed request/response."

        url = self._build_url(version, path)
        headers = {"Content-Type": "application/json"}
        if response_type is not None:
            headers["Accept"] = "application/json"
        data = object_to_json_payload(body)
        return url, headers, data

    @overload
    def _post(self, version: ConfluenceVersion, path: str, body: Any, response_type: None) -> None: ...

    @overload
    def _post(self, version: ConfluenceVersion, path: str, body: Any, response_type: type[T]) -> T: ...

    def _post(self, version: ConfluenceVersion, path: str, body: Any, response_type: type[T] | None) -> T | None:
        "Creates a new object via Confluence REST API."

        url, headers, data = self._build_request(version, path, body, response_type)
        response = self._session.post(url, data=data, headers=headers, verify=True)
        return response_cast(response_type, response)

    @overload
    def _put(self, version: ConfluenceVersion, path: str, body: Any, response_type: None) -> None: ...

    @overload
    def _put(self, version: ConfluenceVersion, path: str, body: Any, response_type: type[T]) -> T: ...

    def _put(self, version: ConfluenceVersion, path: str, body: Any, response_type: type[T] | None) -> T | None:
        "Updates an existing object via Confluence REST API."

        url, headers, data = self._build_request(version, path, body, response_type)
        response = self._session.put(url, data=data, headers=headers, verify=True)
        return response_cast(response_type, response)

    def _fetch(self, path: str, query: dict[str, str] | None = None) -> list[JsonType]:
        "Retrieves all results of a REST API paginated result-set."

        items: list[JsonType] = []

        # offset-based pagination with start and limit parameters
        start = 0
        limit = self.page_size

        while True:
            page_query = dict(query) if query else {}
            page_query["start"] = str(start)
            page_query["limit"] = str(limit)

            data = self._get(ConfluenceVersion.VERSION_1, path, dict[str, JsonType], query=page_query)
            results = cast(list[JsonType], data.get("results") or [])
            items.extend(results)

            # end pagination when we receive fewer results than the limit
            if len(results) < limit:
                break

            start += limit

        return items

    def get_page_properties(self, page_id: str) -> ConfluencePageProperties | None:
        """
        Retrieves Confluence wiki page details.

        :param page_id: The Confluence page ID.
        :returns: Confluence page information, or `None` if there is no such page.
        """

        path = f"/content/{page_id}"
        query = {"expand": "version,space"}
        try:
            return self._get(ConfluenceVersion.VERSION_1, path, ConfluencePageProperties, query=query)
        except requests.HTTPError as e:
            if status_code_of(e) == 404:
                return None
            raise

    def update_page(self, page_id: str, content: str, *, title: str, version: int) -> ConfluencePageProperties:
        """
        Updates a page using the Confluence REST API.

        :param page_id: The Confluence page ID.
        :param content: Confluence Storage Format XHTML.
        :param title: New title to assign to the page. Needs to be unique within a space.
        :param version: New version to assign to the page.
        :returns: Page information after the update.
        """

        LOGGER.info("Updating page: %s", page_id)
        path = f"/content/{page_id}"
        body = ConfluenceUpdatePageRequest(
            id=page_id,
            type="page",
            title=title,
            body=ConfluencePageBody(storage=ConfluencePageStorage(representation=ConfluenceRepresentation.STORAGE, value=content)),
            version=ConfluenceContentVersion(number=version, minorEdit=True),
        )
        return self._put(ConfluenceVersion.VERSION_1, path, body, ConfluencePageProperties)

    def get_attachments(self, page_id: str) -> list[ConfluenceAttachment]:
        """
        Lists all attachments of a Confluence page.

        :param page_id: The Confluence page ID.
        :returns: Attachment information.
        """

        path = f"/content/{page_id}/child/attachment"
        results = self._fetch(path)
        return json_to_object(list[ConfluenceAttachment], results)

    def get_attachment_by_name(self, page_id: str, filename: str) -> ConfluenceAttachment | None:
        """
        Retrieves a Confluence page attachment by file name.

        :param page_id: The Confluence page ID.
        :param filename: The attachment filename to search for.
        :returns: Confluence attachment information, or `None` if the page has no such attachment.
        """

        path = f"/content/{page_id}/child/attachment"
        query = {"filename": filename}
        data = self._get(ConfluenceVersion.VERSION_1, path, dict[str, JsonType], query=query)

        results = cast(list[JsonType], data.get("results") or [])
        if len(results) != 1:
            return None
        return json_to_object(ConfluenceAttachment, results[0])

    def upload_attachment(
        self,
        page_id: str,
        attachment_path: Path,
        *,
        attachment_id: str | None = None,
        content_type: str | None = None,
        comment: str | None = None,
    ) -> ConfluenceAttachment:
        """
        Uploads a file as a page attachment.

        :param page_id: Confluence page ID.
        :param attachment_path: Path to the file to upload; the file name becomes the attachment name.
        :param attachment_id: ID of an existing attachment to upload a new version of, or `None` to create one.
        :param content_type: Attachment MIME type.
        :param comment: Attachment description.
        :returns: Attachment information.
        """

        if not attachment_path.is_file():
            raise PageError(f"file not found: {attachment_path}")

        attachment_name = attachment_path.name
        if content_type is None:
            content_type, _ = mimetypes.guess_type(attachment_name, strict=True)
            if content_type is None:
                content_type = "application/octet-stream"

        if attachment_id is not None:
            id = attachment_id.removeprefix("att")
            path = f"/content/{page_id}/child/attachment/att{id}/data"
        else:
            path = f"/content/{page_id}/child/attachment"

        url = self._build_url(ConfluenceVersion.VERSION_1, path)

        with open(attachment_path, "rb") as attachment_file:
            file_to_upload: dict[str, tuple[str | None, Any, str, dict[str, str]]] = {
                "comment": (
                    None,
                    comment or "",
                    "text/plain; charset=utf-8",
                    {},
                ),
                "file": (
                    attachment_name,
                    attachment_file,
                    content_type,
                    {"Expires": "0"},
                ),
            }
            LOGGER.info("Uploading attachment: %s", attachment_name)
            response = self._session.post(
                url,
                files=file_to_upload,
                headers={
                    "X-Atlassian-Token": "no-check",
                    "Accept": "application/json",
                },
                verify=True,
            )

        data = response_cast(dict[str, JsonType], response)
        if "results" in data:
            result = cast(list[JsonType], data["results"])[0]
        else:
            result = data
        return json_to_object(ConfluenceAttachment, result)

    def get_content_property_for_page(self, page_id: str, key: str) -> ConfluenceIdentifiedContentProperty | None:
        """
        Retrieves a content property for a Confluence page.

        :param page_id: The Confluence page ID.
        :param key: The name of the property to fetch (with case-sensitive match).
        :returns: The content property value, or `None` if not found.
        """

        path = f"/content/{page_id}/property/{key}"
        try:
            return self._get(ConfluenceVersion.VERSION_1, path, ConfluenceIdentifiedContentProperty)
        except requests.HTTPError as e:
            # some Confluence versions report a missing property as a bad request
            if status_code_of(e) in (400, 404):
                return None
            raise

    def add_content_property_to_page(self, page_id: str, property: ConfluenceContentProperty) -> ConfluenceIdentifiedContentProperty:
        """
        Adds a new content property to a Confluence page.

        :param page_id: The Confluence page ID.
        :param property: Content property to add.
        :returns: The created content property with ID and version.
        """

        path = f"/content/{page_id}/property"
        return self._post(ConfluenceVersion.VERSION_1, path, property, ConfluenceIdentifiedContentProperty)

    def update_content_property_for_page(self, page_id: str, version: int, property: ConfluenceContentProperty) -> ConfluenceIdentifiedContentProperty:
        """
        Updates an existing content property associated with a Confluence page.

        :param page_id: The Confluence page ID.
        :param version: Version number to assign.
        :param property: Content property data to assign.
        :returns: Updated content property data.
        """

        path = f"/content/{page_id}/property/{property.key}"
        return self._put(
            ConfluenceVersion.VERSION_1,
            path,
            ConfluenceVersionedContentProperty(key=property.key, value=property.value, version=ConfluenceContentVersion(number=version)),
            ConfluenceIdentifiedContentProperty,
        )
