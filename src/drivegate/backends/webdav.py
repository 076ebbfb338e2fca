"""WebDAVDrive: a WebDAV collection exposed as a drive (httpx)."""

from __future__ import annotations

import base64
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any
from urllib.parse import quote, unquote, urlparse

import httpx

from drivegate.drive.exceptions import (
    NotAllowedError,
    NotFoundError,
    PreconditionFailedError,
    RemoteApiError,
    UnauthorizedError,
    UnsupportedError,
)
from drivegate.drive.streams import COPY_CHUNK_SIZE
from drivegate.drive.task import dummy_context
from drivegate.drive.types import (
    BaseEntry,
    ContentURL,
    DriveMeta,
    EntryType,
    UploadConfig,
    find_entry,
    use_local_provider,
)
from drivegate.drive.utils import clean_path, is_root_path

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from drivegate.drive.cache import EntryCacheItem
    from drivegate.drive.protocol import ContentReader, Entry
    from drivegate.drive.task import TaskContext

logger = logging.getLogger(__name__)

_DAV = "{DAV:}"
_PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop>'
    "<d:resourcetype/><d:getcontentlength/><d:getlastmodified/>"
    "</d:prop></d:propfind>"
)


def _check_response(resp: httpx.Response) -> None:
    """Map an error status onto the drive error taxonomy."""
    status = resp.status_code
    if status < 400:
        return
    if status == 404:
        raise NotFoundError(f"Not found: {resp.request.url.path}")
    if status == 401:
        raise UnauthorizedError("WebDAV server rejected the credentials")
    if status == 412:
        raise PreconditionFailedError()
    raise RemoteApiError(status, resp.text[:200] if resp.text else resp.reason_phrase)


def _parse_mod_time(value: str | None) -> int:
    if not value:
        return -1
    try:
        return int(parsedate_to_datetime(value).timestamp() * 1000)
    except (TypeError, ValueError):
        return -1


class _ResponseReader:
    """Async reader over a streamed httpx response; closes it exactly once."""

    def __init__(self, resp: httpx.Response) -> None:
        self._resp = resp
        self._chunks: AsyncIterator[bytes] = resp.aiter_bytes()
        self._buffer = b""
        self._eof = False
        self._closed = False

    async def read(self, size: int = -1) -> bytes:
        while not self._eof and (size < 0 or len(self._buffer) < size):
            try:
                self._buffer += await self._chunks.__anext__()
            except StopAsyncIteration:
                self._eof = True
        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._resp.aclose()


@dataclass
class WebDAVEntry(BaseEntry):
    """Resource of a :class:`WebDAVDrive`."""

    async def get_reader(self) -> ContentReader:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, WebDAVDrive)
        drive = self.drive
        request = drive.client.build_request("GET", drive.url_for(self.path))
        resp = await drive.client.send(request, stream=True, auth=drive.auth)
        if resp.status_code >= 400:
            await resp.aread()
            await resp.aclose()
            _check_response(resp)
        return _ResponseReader(resp)

    async def get_url(self) -> ContentURL:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, WebDAVDrive)
        headers = None
        if self.drive.auth_header is not None:
            headers = {"Authorization": self.drive.auth_header}
        return ContentURL(url=self.drive.url_for(self.path), proxy=True, headers=headers)


class WebDAVDrive:
    """WebDAV collection rooted at *url*.

    The client is injectable so tests can route through
    ``httpx.MockTransport``.
    """

    def __init__(
        self,
        url: str,
        *,
        username: str | None = None,
        password: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = url.rstrip("/")
        self._base_path = unquote(urlparse(self.base_url).path).rstrip("/")
        self.auth = httpx.BasicAuth(username, password or "") if username else None
        self.auth_header = (
            "Basic " + base64.b64encode(f"{username}:{password or ''}".encode()).decode()
            if username
            else None
        )
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def url_for(self, path: str, is_dir: bool = False) -> str:
        path = clean_path(path)
        segments = path.split("/") if path else []
        url = self.base_url + "/" + "/".join(quote(seg, safe="") for seg in segments)
        if is_dir and segments:
            url += "/"
        return url

    def _href_to_path(self, href: str) -> str:
        href_path = unquote(urlparse(href).path).rstrip("/")
        if not href_path.startswith(self._base_path):
            return clean_path(href_path)
        return clean_path(href_path[len(self._base_path):])

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        resp = await self.client.request(method, url, auth=self.auth, **kwargs)
        _check_response(resp)
        return resp

    async def _propfind(self, path: str, depth: int) -> list[WebDAVEntry]:
        resp = await self._request(
            "PROPFIND",
            self.url_for(path, is_dir=depth > 0),
            content=_PROPFIND_BODY,
            headers={"Depth": str(depth), "Content-Type": "application/xml; charset=utf-8"},
        )
        try:
            root = ET.fromstring(resp.content)
        except ET.ParseError as e:
            raise RemoteApiError(resp.status_code, f"Invalid PROPFIND response: {e}") from e

        entries: list[WebDAVEntry] = []
        for response in root.iter(f"{_DAV}response"):
            href = response.findtext(f"{_DAV}href") or ""
            prop = None
            for propstat in response.iter(f"{_DAV}propstat"):
                status = propstat.findtext(f"{_DAV}status") or ""
                if " 200 " in status or status.endswith(" 200"):
                    prop = propstat.find(f"{_DAV}prop")
                    break
            if prop is None:
                continue
            resourcetype = prop.find(f"{_DAV}resourcetype")
            is_dir = resourcetype is not None and resourcetype.find(f"{_DAV}collection") is not None
            length = prop.findtext(f"{_DAV}getcontentlength")
            entries.append(
                WebDAVEntry(
                    path=self._href_to_path(href),
                    type=EntryType.DIR if is_dir else EntryType.FILE,
                    size=-1 if is_dir else int(length or 0),
                    mod_time=_parse_mod_time(prop.findtext(f"{_DAV}getlastmodified")),
                    drive=self,
                )
            )
        return entries

    # =========================================================================
    # Read
    # =========================================================================

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=True)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return WebDAVEntry(path="", type=EntryType.DIR, drive=self)
        entries = await self._propfind(path, 0)
        if not entries:
            raise NotFoundError(f"Not found: {path}")
        entry = entries[0]
        entry.path = path
        return entry

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        entries = await self._propfind(path, 1)
        children: list[Entry] = []
        for entry in entries:
            if entry.path == path:
                if not entry.is_dir:
                    raise NotAllowedError(f"Not a directory: {path}")
                continue
            children.append(entry)
        return children

    def restore_entry(self, item: EntryCacheItem) -> Entry:
        return WebDAVEntry(
            path=item.path, type=item.type, size=item.size, mod_time=item.mod_time, drive=self
        )

    async def _exists(self, path: str) -> bool:
        try:
            await self.get(path)
        except NotFoundError:
            return False
        return True

    # =========================================================================
    # Write
    # =========================================================================

    async def save(
        self,
        path: str,
        size: int,
        override: bool,
        reader: ContentReader,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        path = clean_path(path)
        if not path:
            raise NotAllowedError("cannot save to the drive root")
        if not override and await self._exists(path):
            raise NotAllowedError(f"Already exists: {path}")
        ctx = ctx or dummy_context()

        async def _body() -> AsyncIterator[bytes]:
            while True:
                ctx.check()
                chunk = await reader.read(COPY_CHUNK_SIZE)
                if not chunk:
                    break
                ctx.progress(len(chunk))
                yield chunk

        headers = {"Content-Length": str(size)} if size >= 0 else None
        await self._request("PUT", self.url_for(path), content=_body(), headers=headers)
        return await self.get(path)

    async def make_dir(self, path: str) -> Entry:
        path = clean_path(path)
        resp = await self.client.request("MKCOL", self.url_for(path, is_dir=True), auth=self.auth)
        if resp.status_code == 405:
            existing = await self.get(path)
            if not existing.is_dir:
                raise NotAllowedError(f"A file exists at: {path}")
            return existing
        _check_response(resp)
        return WebDAVEntry(path=path, type=EntryType.DIR, drive=self)

    async def _copy_or_move(self, method: str, src: Entry, dst: str, override: bool) -> Entry:
        dst = clean_path(dst)
        try:
            await self._request(
                method,
                self.url_for(src.path, is_dir=src.is_dir),
                headers={
                    "Destination": self.url_for(dst, is_dir=src.is_dir),
                    "Overwrite": "T" if override else "F",
                },
            )
        except PreconditionFailedError:
            raise NotAllowedError(f"Already exists: {dst}") from None
        return await self.get(dst)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, WebDAVEntry) and e.drive is self)
        if own is None:
            raise UnsupportedError("webdav copies only its own entries")
        return await self._copy_or_move("COPY", own, dst, override)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, WebDAVEntry) and e.drive is self)
        if own is None:
            raise NotAllowedError("cannot move entries across drives")
        return await self._copy_or_move("MOVE", own, dst, override)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        if is_root_path(path):
            raise NotAllowedError("cannot delete the drive root")
        entry = await self.get(path)
        await self._request("DELETE", self.url_for(path, is_dir=entry.is_dir))

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        if not override and await self._exists(path):
            raise NotAllowedError(f"Already exists: {clean_path(path)}")
        return use_local_provider(size)

    async def dispose(self) -> None:
        await self.client.aclose()
        logger.debug("Closed WebDAV client for %s", self.base_url)
