"""Tests for backends/webdav.py against a fake server on httpx.MockTransport."""

from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from urllib.parse import quote, unquote, urlparse

import httpx
import pytest

from drivegate.backends.webdav import WebDAVDrive, WebDAVEntry
from drivegate.drive.exceptions import NotAllowedError, NotFoundError, RemoteApiError, UnauthorizedError
from drivegate.drive.streams import BytesReader, read_all

BASE = "https://dav.example/remote/dav"
MTIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeDAVServer:
    """In-memory WebDAV collection under ``/remote/dav``."""

    prefix = "/remote/dav"

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {""}
        self.requests: list[httpx.Request] = []
        self.require_auth: str | None = None

    def _path(self, url: str) -> str:
        path = unquote(urlparse(url).path)
        return path[len(self.prefix):].strip("/")

    def _parent(self, path: str) -> str:
        return path.rsplit("/", 1)[0] if "/" in path else ""

    def _exists(self, path: str) -> bool:
        return path in self.files or path in self.dirs

    def _response_xml(self, path: str) -> str:
        href = quote(self.prefix + ("/" + path if path else "") + ("/" if path in self.dirs else ""))
        if path in self.dirs:
            props = "<d:resourcetype><d:collection/></d:resourcetype>"
        else:
            props = f"<d:resourcetype/><d:getcontentlength>{len(self.files[path])}</d:getcontentlength>"
        props += f"<d:getlastmodified>{format_datetime(MTIME, usegmt=True)}</d:getlastmodified>"
        return (
            f"<d:response><d:href>{href}</d:href><d:propstat><d:prop>{props}</d:prop>"
            "<d:status>HTTP/1.1 200 OK</d:status></d:propstat></d:response>"
        )

    def _propfind(self, path: str, depth: str) -> httpx.Response:
        if not self._exists(path):
            return httpx.Response(404)
        paths = [path]
        if depth == "1" and path in self.dirs:
            paths += sorted(p for p in (*self.dirs, *self.files) if p and self._parent(p) == path)
        body = '<?xml version="1.0"?><d:multistatus xmlns:d="DAV:">'
        body += "".join(self._response_xml(p) for p in paths) + "</d:multistatus>"
        return httpx.Response(207, content=body.encode())

    def _relocate(self, src: str, dst: str, keep: bool) -> None:
        for d in sorted(p for p in self.dirs if p == src or p.startswith(src + "/")):
            self.dirs.add(dst + d[len(src):])
            if not keep:
                self.dirs.discard(d)
        for f in [p for p in self.files if p == src or p.startswith(src + "/")]:
            self.files[dst + f[len(src):]] = self.files[f]
            if not keep:
                del self.files[f]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.require_auth is not None and request.headers.get("Authorization") != self.require_auth:
            return httpx.Response(401)
        path = self._path(str(request.url))
        method = request.method
        if method == "PROPFIND":
            return self._propfind(path, request.headers.get("Depth", "1"))
        if method == "GET":
            if path not in self.files:
                return httpx.Response(404)
            return httpx.Response(200, content=self.files[path])
        if method == "PUT":
            if self._parent(path) not in self.dirs:
                return httpx.Response(409)
            self.files[path] = await request.aread()
            return httpx.Response(201)
        if method == "MKCOL":
            if self._exists(path):
                return httpx.Response(405)
            if self._parent(path) not in self.dirs:
                return httpx.Response(409)
            self.dirs.add(path)
            return httpx.Response(201)
        if method in ("COPY", "MOVE"):
            dst = self._path(request.headers["Destination"])
            if self._exists(dst) and request.headers.get("Overwrite") == "F":
                return httpx.Response(412)
            if not self._exists(path):
                return httpx.Response(404)
            self._relocate(path, dst, keep=method == "COPY")
            return httpx.Response(201)
        if method == "DELETE":
            if not self._exists(path):
                return httpx.Response(404)
            self.dirs = {d for d in self.dirs if not (d == path or d.startswith(path + "/"))}
            self.files = {f: v for f, v in self.files.items() if not (f == path or f.startswith(path + "/"))}
            return httpx.Response(204)
        return httpx.Response(405)


@pytest.fixture
def server() -> FakeDAVServer:
    s = FakeDAVServer()
    s.dirs.update({"docs", "docs/sub dir"})
    s.files["docs/readme.txt"] = b"hello"
    return s


@pytest.fixture
async def drive(server: FakeDAVServer):
    client = httpx.AsyncClient(transport=httpx.MockTransport(server))
    d = WebDAVDrive(BASE + "/", client=client)
    yield d
    await d.dispose()


# =========================================================================
# URLs and errors
# =========================================================================


class TestURLs:
    def test_url_for_quotes_segments(self):
        drive = WebDAVDrive(BASE)
        assert drive.url_for("a b/c#d") == BASE + "/a%20b/c%23d"
        assert drive.url_for("docs", is_dir=True) == BASE + "/docs/"
        assert drive.url_for("") == BASE + "/"

    def test_href_to_path(self):
        drive = WebDAVDrive(BASE)
        assert drive._href_to_path("/remote/dav/docs/sub%20dir/") == "docs/sub dir"
        assert drive._href_to_path(BASE + "/x.txt") == "x.txt"

    def test_auth_header(self):
        drive = WebDAVDrive(BASE, username="u", password="p")
        assert drive.auth_header == "Basic dTpw"


class TestErrors:
    async def test_unauthorized(self, server: FakeDAVServer, drive: WebDAVDrive):
        server.require_auth = "Basic nope"
        with pytest.raises(UnauthorizedError):
            await drive.get("docs")

    async def test_credentials_are_sent(self, server: FakeDAVServer):
        server.require_auth = "Basic dTpw"
        client = httpx.AsyncClient(transport=httpx.MockTransport(server))
        drive = WebDAVDrive(BASE, username="u", password="p", client=client)
        assert (await drive.get("docs")).is_dir
        await drive.dispose()

    async def test_invalid_xml(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(207, content=b"<oops")))
        drive = WebDAVDrive(BASE, client=client)
        with pytest.raises(RemoteApiError):
            await drive.get("x")
        await drive.dispose()


# =========================================================================
# Reads
# =========================================================================


class TestWebDAVReads:
    async def test_get_file(self, drive: WebDAVDrive):
        entry = await drive.get("docs/readme.txt")
        assert isinstance(entry, WebDAVEntry)
        assert entry.path == "docs/readme.txt"
        assert entry.size == 5
        assert entry.mod_time == int(MTIME.timestamp() * 1000)

    async def test_get_missing(self, drive: WebDAVDrive):
        with pytest.raises(NotFoundError):
            await drive.get("nope")

    async def test_list_dir(self, drive: WebDAVDrive):
        entries = {e.path: e.is_dir for e in await drive.list_dir("docs")}
        assert entries == {"docs/readme.txt": False, "docs/sub dir": True}

    async def test_list_file_not_allowed(self, drive: WebDAVDrive):
        with pytest.raises(NotAllowedError):
            await drive.list_dir("docs/readme.txt")

    async def test_reader(self, drive: WebDAVDrive):
        entry = await drive.get("docs/readme.txt")
        assert await read_all(await entry.get_reader()) == b"hello"

    async def test_url_is_proxied(self, drive: WebDAVDrive):
        url = await (await drive.get("docs/readme.txt")).get_url()
        assert url.proxy is True
        assert url.url == BASE + "/docs/readme.txt"


# =========================================================================
# Writes
# =========================================================================


class TestWebDAVWrites:
    async def test_save(self, drive: WebDAVDrive, server: FakeDAVServer):
        entry = await drive.save("docs/new.txt", 3, False, BytesReader(b"new"))
        assert entry.size == 3
        assert server.files["docs/new.txt"] == b"new"

    async def test_save_existing(self, drive: WebDAVDrive):
        with pytest.raises(NotAllowedError):
            await drive.save("docs/readme.txt", 1, False, BytesReader(b"x"))

    async def test_make_dir(self, drive: WebDAVDrive, server: FakeDAVServer):
        entry = await drive.make_dir("docs/new")
        assert entry.is_dir
        assert "docs/new" in server.dirs
        assert (await drive.make_dir("docs/new")).is_dir

    async def test_make_dir_over_file(self, drive: WebDAVDrive):
        with pytest.raises(NotAllowedError):
            await drive.make_dir("docs/readme.txt")

    async def test_copy(self, drive: WebDAVDrive, server: FakeDAVServer):
        entry = await drive.copy(await drive.get("docs"), "backup", False)
        assert entry.is_dir
        assert server.files["backup/readme.txt"] == b"hello"
        copy_request = [r for r in server.requests if r.method == "COPY"][0]
        assert copy_request.headers["Overwrite"] == "F"

    async def test_copy_conflict_is_not_allowed(self, drive: WebDAVDrive):
        with pytest.raises(NotAllowedError):
            await drive.copy(await drive.get("docs/readme.txt"), "docs/sub dir", False)

    async def test_move(self, drive: WebDAVDrive, server: FakeDAVServer):
        await drive.move(await drive.get("docs/readme.txt"), "readme.txt", False)
        assert "docs/readme.txt" not in server.files
        assert server.files["readme.txt"] == b"hello"

    async def test_delete(self, drive: WebDAVDrive, server: FakeDAVServer):
        await drive.delete("docs")
        assert server.files == {}
        assert server.dirs == {""}

    async def test_delete_root(self, drive: WebDAVDrive):
        with pytest.raises(NotAllowedError):
            await drive.delete("")
