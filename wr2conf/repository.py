"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import hashlib
import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import requests

from .api import ConfluenceAttachment, ConfluenceContentProperty, ConfluenceSession, status_code_of
from .environment import ConfluenceError, PageError
from .serializer import JsonType

LOGGER = logging.getLogger(__name__)

EXPORT_HASH_KEY = "authord:exportHash"
ATTACHMENT_HASHES_KEY = "authord:attachmentHashes"


@dataclass(frozen=True)
class PageInfo:
    """
    Confluence page metadata relevant to publishing.

    :param id: Confluence page ID.
    :param version: Current version number of the page.
    :param title: Current page title.
    """

    id: str
    version: int
    title: str


@dataclass(frozen=True)
class AttachmentInfo:
    id: str
    filename: str
    uploaded: bool


class PageRepository(Protocol):
    def get(self, page_id: str) -> PageInfo | None: ...

    def put_storage_body(self, page_id: str, xhtml: str, title: str | None = None) -> PageInfo: ...


class AttachmentRepository(Protocol):
    def list(self, page_id: str) -> set[str]: ...

    def ensure(self, page_id: str, path: Path) -> AttachmentInfo: ...


class PropertyStore(Protocol):
    def get_export_hash(self, page_id: str) -> str | None: ...

    def set_export_hash(self, page_id: str, value: str) -> None: ...


class FileSystem(Protocol):
    def read_text(self, path: Path) -> str: ...

    def exists(self, path: Path) -> bool: ...


class LocalFileSystem:
    "Reads files from the local disk."

    def read_text(self, path: Path) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def exists(self, path: Path) -> bool:
        return path.exists()


@contextmanager
def _confluence_errors(operation: str, target: str) -> Iterator[None]:
    "Re-raises transport failures as a Confluence error that names the operation and its target."

    try:
        yield
    except requests.RequestException as ex:
        status_code = status_code_of(ex)
        if status_code is not None:
            message = f"{operation} failed for {target} with HTTP status {status_code}"
        else:
            message = f"{operation} failed for {target}: {ex}"
        raise ConfluenceError(message, status_code) from ex


def file_checksum(path: Path) -> str:
    "SHA-256 digest of a file's content as a hexadecimal string."

    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


class ConfluencePageRepository:
    "Reads and writes the body of Confluence pages."

    def __init__(self, api: ConfluenceSession) -> None:
        self.api = api

    def get(self, page_id: str) -> PageInfo | None:
        with _confluence_errors("get page", page_id):
            page = self.api.get_page_properties(page_id)
        if page is None:
            return None
        return PageInfo(id=page.id, version=page.version.number, title=page.title)

    def put_storage_body(self, page_id: str, xhtml: str, title: str | None = None) -> PageInfo:
        """
        Overwrites the body of a page, incrementing its version.

        :param page_id: Confluence page ID.
        :param xhtml: Confluence Storage Format document.
        :param title: New page title, or `None` to keep the current one.
        :returns: Page metadata after the update.
        """

        current = self.get(page_id)
        if current is None:
            raise PageError(f"Confluence page not found: {page_id}")

        with _confluence_errors("update page", page_id):
            page = self.api.update_page(page_id, xhtml, title=title or current.title, version=current.version + 1)
        LOGGER.info("Updated page %s to version %d", page_id, page.version.number)
        return PageInfo(id=page.id, version=page.version.number, title=page.title)


class ConfluencePropertyStore:
    "Keeps publishing state in content properties of a Confluence page."

    def __init__(self, api: ConfluenceSession) -> None:
        self.api = api

    def get_value(self, page_id: str, key: str) -> JsonType:
        with _confluence_errors("get content property", f"{page_id}/{key}"):
            prop = self.api.get_content_property_for_page(page_id, key)
        return prop.value if prop is not None else None

    def set_value(self, page_id: str, key: str, value: JsonType) -> None:
        "Creates or updates a content property."

        target = f"{page_id}/{key}"
        with _confluence_errors("get content property", target):
            prop = self.api.get_content_property_for_page(page_id, key)

        if prop is not None:
            with _confluence_errors("update content property", target):
                self.api.update_content_property_for_page(page_id, prop.version.number + 1, ConfluenceContentProperty(key, value))
        else:
            with _confluence_errors("add content property", target):
                self.api.add_content_property_to_page(page_id, ConfluenceContentProperty(key, value))

    def get_export_hash(self, page_id: str) -> str | None:
        value = self.get_value(page_id, EXPORT_HASH_KEY)
        return value if isinstance(value, str) else None

    def set_export_hash(self, page_id: str, value: str) -> None:
        self.set_value(page_id, EXPORT_HASH_KEY, value)


class ConfluenceAttachmentRepository:
    """
    Uploads page attachments, skipping files whose content Confluence already has.

    The SHA-256 digest of each uploaded file is recorded in a content property on the page, such that an unchanged
    file is never uploaded twice.
    """

    def __init__(self, api: ConfluenceSession, properties: ConfluencePropertyStore | None = None) -> None:
        self.api = api
        self.properties = properties or ConfluencePropertyStore(api)
        self._manifest_lock = threading.Lock()

    def list(self, page_id: str) -> set[str]:
        with _confluence_errors("list attachments", page_id):
            attachments = self.api.get_attachments(page_id)
        return {attachment.title for attachment in attachments}

    def _get_manifest(self, page_id: str) -> dict[str, str]:
        value = self.properties.get_value(page_id, ATTACHMENT_HASHES_KEY)
        if not isinstance(value, dict):
            return {}
        return {key: item for key, item in value.items() if isinstance(item, str)}

    def _record_checksum(self, page_id: str, filename: str, checksum: str) -> None:
        # uploads may run in parallel; each merges its entry into the latest manifest
        with self._manifest_lock:
            manifest: dict[str, JsonType] = dict(self._get_manifest(page_id))
            manifest[filename] = checksum
            self.properties.set_value(page_id, ATTACHMENT_HASHES_KEY, manifest)

    def _find(self, page_id: str, filename: str) -> ConfluenceAttachment | None:
        with _confluence_errors("get attachment", f"{page_id}/{filename}"):
            return self.api.get_attachment_by_name(page_id, filename)

    def _upload(self, page_id: str, path: Path) -> ConfluenceAttachment:
        target = f"{page_id}/{path.name}"
        existing = self._find(page_id, path.name)
        if existing is not None:
            with _confluence_errors("update attachment", target):
                return self.api.upload_attachment(page_id, path, attachment_id=existing.id)

        try:
            return self.api.upload_attachment(page_id, path)
        except requests.HTTPError as ex:
            if status_code_of(ex) not in (400, 409):
                raise ConfluenceError(f"create attachment failed for {target} with HTTP status {status_code_of(ex)}", status_code_of(ex)) from ex

            # an attachment with the same name appeared in the meantime
            LOGGER.info("Attachment %s already exists; updating in place", path.name)
            existing = self._find(page_id, path.name)
            if existing is None:
                raise ConfluenceError(f"create attachment failed for {target} with HTTP status {status_code_of(ex)}", status_code_of(ex)) from ex
            with _confluence_errors("update attachment", target):
                return self.api.upload_attachment(page_id, path, attachment_id=existing.id)
        except requests.RequestException as ex:
            raise ConfluenceError(f"create attachment failed for {target}: {ex}") from ex

    def ensure(self, page_id: str, path: Path) -> AttachmentInfo:
        """
        Makes sure a page has an attachment with the content of a local file.

        :param page_id: Confluence page ID.
        :param path: Local file, whose name becomes the attachment name.
        :returns: Attachment information, with a flag telling whether an upload took place.
        """

        if not path.is_file():
            raise PageError(f"file not found: {path}")

        checksum = file_checksum(path)
        if self._get_manifest(page_id).get(path.name) == checksum:
            existing = self._find(page_id, path.name)
            if existing is not None:
                LOGGER.info("Up-to-date attachment: %s", path.name)
                return AttachmentInfo(id=existing.id, filename=path.name, uploaded=False)

        attachment = self._upload(page_id, path)
        self._record_checksum(page_id, path.name, checksum)
        return AttachmentInfo(id=attachment.id, filename=attachment.title, uploaded=True)
