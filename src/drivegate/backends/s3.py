"""S3Drive: an S3-compatible bucket exposed as a drive (boto3)."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from botocore.exceptions import ClientError

from drivegate.drive.exceptions import (
    DriveError,
    NotAllowedError,
    NotFoundError,
    PermissionDeniedError,
    RemoteApiError,
    UnauthorizedError,
    UnsupportedError,
)
from drivegate.drive.streams import FileReader, stage_to_temp_file
from drivegate.drive.task import dummy_context
from drivegate.drive.tree import build_tree, flatten_tree
from drivegate.drive.types import (
    DEFAULT_CHUNK_THRESHOLD,
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
    from datetime import datetime

    from drivegate.drive.cache import EntryCacheItem
    from drivegate.drive.protocol import ContentReader, Entry
    from drivegate.drive.task import TaskContext

logger = logging.getLogger(__name__)

S3_PROVIDER = "s3"
S3_MULTIPART_PROVIDER = "s3-multipart"
DELETE_BATCH_SIZE = 1000
PRESIGN_EXPIRES = 2 * 60 * 60

_NOT_FOUND_CODES = {"NoSuchBucket", "NoSuchKey", "NotFound", "404"}
_UNAUTHORIZED_CODES = {"InvalidAccessKeyId", "SignatureDoesNotMatch"}


def _to_millis(value: datetime | None) -> int:
    return int(value.timestamp() * 1000) if value is not None else -1


def _map_client_error(e: ClientError) -> DriveError:
    """Translate a botocore error into the drive error taxonomy."""
    error = e.response.get("Error", {})
    code = str(error.get("Code", ""))
    message = error.get("Message", "") or code
    status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 500)
    if code in _NOT_FOUND_CODES or status == 404:
        return NotFoundError(message)
    if code in _UNAUTHORIZED_CODES:
        return UnauthorizedError(message)
    if code == "AccessDenied":
        return PermissionDeniedError(message)
    return RemoteApiError(status, f"{code}: {message}")


class _BodyReader:
    """Async reader over a botocore ``StreamingBody``."""

    def __init__(self, body: Any) -> None:
        self._body = body
        self._closed = False

    async def read(self, size: int = -1) -> bytes:
        if size < 0:
            return await asyncio.to_thread(self._body.read)
        return await asyncio.to_thread(self._body.read, size)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await asyncio.to_thread(self._body.close)


@dataclass
class S3Entry(BaseEntry):
    """Object (file) or prefix (dir) of an :class:`S3Drive`."""

    async def get_reader(self) -> ContentReader:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, S3Drive)
        resp = await self.drive._call(self.drive.client.get_object, Key=self.path)
        return _BodyReader(resp["Body"])

    async def get_url(self) -> ContentURL:
        if self.is_dir:
            raise NotAllowedError("cannot read a directory")
        assert isinstance(self.drive, S3Drive)
        url = await asyncio.to_thread(
            self.drive.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.drive.bucket, "Key": self.path},
            ExpiresIn=PRESIGN_EXPIRES,
        )
        return ContentURL(url=url, proxy=self.drive.proxy_download)


class S3Drive:
    """Keys map one-to-one onto drive paths.

    A directory is a zero-byte marker object whose key ends with ``/``
    (or any prefix with objects under it).  Blocking boto3 calls run in
    worker threads.
    """

    def __init__(
        self,
        client: Any,
        bucket: str,
        *,
        proxy_upload: bool = False,
        proxy_download: bool = False,
        chunk_threshold: int = DEFAULT_CHUNK_THRESHOLD,
        temp_dir: str | None = None,
    ) -> None:
        self.client = client
        self.bucket = bucket
        self.proxy_upload = proxy_upload
        self.proxy_download = proxy_download
        self.chunk_threshold = chunk_threshold
        self.temp_dir = temp_dir

    async def _call(self, fn: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, Bucket=self.bucket, **kwargs)
        except ClientError as e:
            raise _map_client_error(e) from e

    async def check(self) -> None:
        """Fail fast when the bucket is unreachable."""
        await self._call(self.client.head_bucket)

    def _dir_entry(self, path: str, mod_time: int = -1) -> S3Entry:
        return S3Entry(path=path, type=EntryType.DIR, mod_time=mod_time, drive=self)

    def _file_entry(self, path: str, size: int, mod_time: int) -> S3Entry:
        return S3Entry(path=path, type=EntryType.FILE, size=size, mod_time=mod_time, drive=self)

    # =========================================================================
    # Read
    # =========================================================================

    async def meta(self) -> DriveMeta:
        return DriveMeta(can_write=True)

    async def get(self, path: str) -> Entry:
        path = clean_path(path)
        if is_root_path(path):
            return self._dir_entry("")
        try:
            head = await self._call(self.client.head_object, Key=path)
            return self._file_entry(path, head.get("ContentLength", 0), _to_millis(head.get("LastModified")))
        except NotFoundError:
            pass
        try:
            head = await self._call(self.client.head_object, Key=path + "/")
            return self._dir_entry(path, _to_millis(head.get("LastModified")))
        except NotFoundError:
            pass
        probe = await self._call(self.client.list_objects_v2, Prefix=path + "/", MaxKeys=1)
        if probe.get("KeyCount", 0) > 0:
            return self._dir_entry(path)
        raise NotFoundError(f"Not found: {path}")

    async def list_dir(self, path: str) -> list[Entry]:
        path = clean_path(path)
        prefix = ""
        if path:
            entry = await self.get(path)
            if not entry.is_dir:
                raise NotAllowedError(f"Not a directory: {path}")
            prefix = path + "/"

        entries: list[Entry] = []
        token: str | None = None
        while True:
            kwargs: dict[str, Any] = {"Prefix": prefix, "Delimiter": "/"}
            if token:
                kwargs["ContinuationToken"] = token
            resp = await self._call(self.client.list_objects_v2, **kwargs)
            for obj in resp.get("Contents", []):
                key = obj["Key"]
                if key == prefix:
                    continue
                entries.append(
                    self._file_entry(key, obj.get("Size", 0), _to_millis(obj.get("LastModified")))
                )
            for cp in resp.get("CommonPrefixes", []):
                entries.append(self._dir_entry(cp["Prefix"].rstrip("/")))
            if not resp.get("IsTruncated"):
                break
            token = resp.get("NextContinuationToken")
        return entries

    def restore_entry(self, item: EntryCacheItem) -> Entry:
        return S3Entry(
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

        staged = reader
        if not isinstance(reader, FileReader):
            staged = await stage_to_temp_file(reader, ctx, temp_dir=self.temp_dir)
        try:
            assert isinstance(staged, FileReader)
            try:
                await asyncio.to_thread(
                    self.client.upload_file, str(staged.path), self.bucket, path
                )
            except ClientError as e:
                raise _map_client_error(e) from e
        finally:
            if staged is not reader:
                await staged.close()
        return await self.get(path)

    async def make_dir(self, path: str) -> Entry:
        path = clean_path(path)
        try:
            existing = await self.get(path)
        except NotFoundError:
            existing = None
        if existing is not None:
            if existing.is_dir:
                return existing
            raise NotAllowedError(f"A file exists at: {path}")
        await self._call(self.client.put_object, Key=path + "/", Body=b"")
        return self._dir_entry(path)

    async def copy(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, S3Entry) and e.drive is self)
        if own is None or own.is_dir:
            raise UnsupportedError("s3 copies only its own files")
        dst = clean_path(dst)
        if not override and await self._exists(dst):
            raise NotAllowedError(f"Already exists: {dst}")
        await self._call(
            self.client.copy_object,
            Key=dst,
            CopySource={"Bucket": self.bucket, "Key": own.path},
        )
        (ctx or dummy_context()).progress(max(own.size, 0))
        return await self.get(dst)

    async def move(
        self,
        src: Entry,
        dst: str,
        override: bool,
        *,
        ctx: TaskContext | None = None,
    ) -> Entry:
        own = find_entry(src, lambda e: isinstance(e, S3Entry) and e.drive is self)
        if own is None:
            raise NotAllowedError("cannot move entries across drives")
        dst = clean_path(dst)
        if not own.path or not dst:
            raise NotAllowedError("cannot move the drive root")
        if not override and await self._exists(dst):
            raise NotAllowedError(f"Already exists: {dst}")
        ctx = ctx or dummy_context()

        if not own.is_dir:
            await self._call(
                self.client.copy_object,
                Key=dst,
                CopySource={"Bucket": self.bucket, "Key": own.path},
            )
            await self._call(self.client.delete_object, Key=own.path)
            return await self.get(dst)

        root = await build_tree(own, ctx)
        for node in flatten_tree(root):
            ctx.check()
            rel = node.entry.path[len(own.path):]
            target = dst + rel
            if node.entry.is_dir:
                await self._call(self.client.put_object, Key=target + "/", Body=b"")
            else:
                await self._call(
                    self.client.copy_object,
                    Key=target,
                    CopySource={"Bucket": self.bucket, "Key": node.entry.path},
                )
        await self._delete_tree(own, ctx)
        return self._dir_entry(dst)

    async def delete(self, path: str, *, ctx: TaskContext | None = None) -> None:
        path = clean_path(path)
        if is_root_path(path):
            raise NotAllowedError("cannot delete the drive root")
        entry = await self.get(path)
        if not entry.is_dir:
            await self._call(self.client.delete_object, Key=path)
            return
        await self._delete_tree(entry, ctx or dummy_context())

    async def _delete_tree(self, entry: Entry, ctx: TaskContext) -> None:
        """Delete a prefix in post-order, batching keys per request."""
        root = await build_tree(entry, ctx)
        keys = [
            node.entry.path + "/" if node.entry.is_dir else node.entry.path
            for node in flatten_tree(root, deep_first=True)
        ]
        for start in range(0, len(keys), DELETE_BATCH_SIZE):
            ctx.check()
            batch = keys[start:start + DELETE_BATCH_SIZE]
            resp = await self._call(
                self.client.delete_objects,
                Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
            )
            errors = resp.get("Errors") or []
            if errors:
                first = errors[0]
                raise RemoteApiError(
                    500, f"{first.get('Key')}: {first.get('Code')} {first.get('Message', '')}".strip()
                )
            ctx.progress(len(batch))
        logger.debug("Deleted %d keys under %s", len(keys), entry.path)

    # =========================================================================
    # Upload
    # =========================================================================

    async def _presign(self, method: str, **params: Any) -> str:
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            method,
            Params={"Bucket": self.bucket, **params},
            ExpiresIn=PRESIGN_EXPIRES,
        )

    async def upload(
        self,
        path: str,
        size: int,
        override: bool,
        config: dict[str, Any] | None = None,
    ) -> UploadConfig | None:
        """Hand out presigned URLs, or run a follow-up multipart *action*."""
        path = clean_path(path)
        config = config or {}
        action = config.get("action", "")
        upload_id = config.get("uploadId", "")

        if action == "UploadPart":
            seq = int(config.get("seq", -1))
            url = await self._presign(
                "upload_part", Key=path, UploadId=upload_id, PartNumber=seq + 1
            )
            return UploadConfig(provider=S3_MULTIPART_PROVIDER, config={"url": url})
        if action == "CompleteMultipartUpload":
            etags = [t for t in str(config.get("parts", "")).split(";") if t]
            await self._call(
                self.client.complete_multipart_upload,
                Key=path,
                UploadId=upload_id,
                MultipartUpload={
                    "Parts": [{"PartNumber": i + 1, "ETag": etag} for i, etag in enumerate(etags)]
                },
            )
            return None
        if action == "AbortMultipartUpload":
            await self._call(self.client.abort_multipart_upload, Key=path, UploadId=upload_id)
            return None
        if action == "CompletePutObject":
            return None
        if action:
            raise NotAllowedError(f"Unknown upload action: {action}")

        if not override and await self._exists(path):
            raise NotAllowedError(f"Already exists: {path}")
        if self.proxy_upload or size == 0:
            return use_local_provider(size, self.chunk_threshold)
        if size <= self.chunk_threshold:
            url = await self._presign("put_object", Key=path)
            return UploadConfig(provider=S3_PROVIDER, config={"url": url})
        resp = await self._call(self.client.create_multipart_upload, Key=path)
        logger.debug("Started multipart upload of %s (%d bytes)", path, size)
        return UploadConfig(
            provider=S3_MULTIPART_PROVIDER,
            config={"uploadId": resp["UploadId"], "partSize": self.chunk_threshold},
        )

    async def dispose(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await asyncio.to_thread(close)

