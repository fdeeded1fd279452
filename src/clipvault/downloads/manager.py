import asyncio
import base64
import itertools
import uuid
from pathlib import Path, PurePosixPath
from urllib.parse import unquote_to_bytes, urlparse

import aiohttp
from aiohttp import ClientError

from clipvault.config.schema import LocalDownloadConfig
from clipvault.constants import DEFAULT_MAX_CONNECTIONS, SUPPORTED_URL_SCHEMES
from clipvault.downloads.events import EventStream
from clipvault.downloads.types import (
    DeltaField,
    DownloadDelta,
    DownloadItem,
    DownloadOptions,
)
from clipvault.log_config import logger
from clipvault.utils.paths import is_safe

BLOB_PREFIX = "blob:clipvault/"


def decode_data_url(url: str) -> bytes:
    """
    Decode an RFC 2397 data url: data:[<mediatype>][;base64],<data>
    """
    header, sep, data = url.partition(",")
    if not header.startswith("data:") or not sep:
        raise ValueError("Malformed data url")
    if header.endswith(";base64"):
        return base64.b64decode(data)
    return unquote_to_bytes(data)


def uniquify(path: Path) -> Path:
    """article.md -> article (1).md -> article (2).md ..."""
    if not path.exists():
        return path
    for counter in itertools.count(1):
        candidate = path.with_name(f"{path.stem} ({counter}){path.suffix}")
        if not candidate.exists():
            return candidate
    raise RuntimeError("Unreachable state in uniquify")


class LocalDownloadManager:
    """
    Download host writing into a local downloads folder.

    Behaves like a browser download subsystem: download() hands back an id right
    away, the transfer runs in a background task, and progress is only visible
    through on_created / on_changed events or search().
    """

    def __init__(self, config: LocalDownloadConfig, session: aiohttp.ClientSession | None = None):
        self.config = config
        self.root = Path(config.root_dir)
        self.on_created: EventStream[DownloadItem] = EventStream("on_created")
        self.on_changed: EventStream[DownloadDelta] = EventStream("on_changed")

        self._session = session
        self._owns_session = session is None
        self._items: dict[int, DownloadItem] = {}
        self._blobs: dict[str, bytes] = {}
        self._ids = itertools.count(1)
        self._transfers: set[asyncio.Task] = set()

    async def __aenter__(self) -> "LocalDownloadManager":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def create_object_url(self, data: bytes, mime: str = "application/octet-stream") -> str:
        url = f"{BLOB_PREFIX}{uuid.uuid4()}"
        self._blobs[url] = data
        return url

    def revoke_object_url(self, url: str) -> None:
        self._blobs.pop(url, None)

    async def download(self, options: DownloadOptions) -> int:
        scheme = urlparse(options.url).scheme.lower()
        if scheme not in SUPPORTED_URL_SCHEMES:
            raise ValueError(f"Unsupported download url scheme: {scheme or '(none)'}")

        filename = options.filename or self._filename_from_url(options.url)
        if not self._is_contained(filename):
            raise ValueError(f"Invalid filename: {filename}")

        download_id = next(self._ids)
        item = DownloadItem(id=download_id, url=options.url)
        self._items[download_id] = item

        # the source is captured now so revoking a blob url right after start is harmless
        source = self._blobs.get(options.url) if scheme == "blob" else None

        task = asyncio.create_task(self._transfer(item, options, filename, source))
        self._transfers.add(task)
        task.add_done_callback(self._transfers.discard)

        self.on_created.emit(item.model_copy())
        return download_id

    async def search(self, download_id: int) -> list[DownloadItem]:
        item = self._items.get(download_id)
        return [item.model_copy()] if item else []

    async def close(self) -> None:
        if self._transfers:
            await asyncio.gather(*self._transfers, return_exceptions=True)
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None

    async def _transfer(self, item: DownloadItem, options: DownloadOptions, filename: str, source: bytes | None) -> None:
        try:
            data = source if source is not None else await self._read_source(options.url)
            target = self._resolve_target(filename, options.conflict_action)
            await asyncio.to_thread(self._write, target, data)
        except Exception as e:
            reason = self._error_code(e)
            logger.warning("Download interrupted", extra={"download_id": item.id, "error": str(e), "reason": reason})
            item.state = "interrupted"
            item.error = reason
            self.on_changed.emit(DownloadDelta(
                id=item.id,
                state=DeltaField(current="interrupted", previous="in_progress"),
                error=DeltaField(current=reason),
            ))
            return

        previous = item.filename
        item.filename = str(target)
        self.on_changed.emit(DownloadDelta(id=item.id, filename=DeltaField(current=item.filename, previous=previous)))

        item.state = "complete"
        self.on_changed.emit(DownloadDelta(id=item.id, state=DeltaField(current="complete", previous="in_progress")))
        logger.debug("Download complete", extra={"download_id": item.id, "path": item.filename, "size": len(data)})

    async def _read_source(self, url: str) -> bytes:
        scheme = urlparse(url).scheme.lower()
        if scheme == "data":
            return decode_data_url(url)
        if scheme == "blob":
            raise FileNotFoundError(f"Object url is not registered: {url}")

        if self._session is None:
            connector = aiohttp.TCPConnector(limit=DEFAULT_MAX_CONNECTIONS)
            self._session = aiohttp.ClientSession(connector=connector)
        async with self._session.get(url) as resp:
            resp.raise_for_status()
            return await resp.read()

    def _resolve_target(self, filename: str, conflict_action: str) -> Path:
        target = self.root / filename
        if conflict_action == "overwrite":
            return target
        # no interactive prompt here, "prompt" falls back to uniquify
        return uniquify(target)

    @staticmethod
    def _write(target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    @staticmethod
    def _is_contained(filename: str) -> bool:
        # relative to the downloads root and never climbing out of it
        parts = PurePosixPath(filename).parts
        return is_safe(filename) and not filename.startswith("/") and ".." not in parts

    @staticmethod
    def _filename_from_url(url: str) -> str:
        name = Path(urlparse(url).path).name
        return name or "download"

    @staticmethod
    def _error_code(error: Exception) -> str:
        if isinstance(error, (ClientError, asyncio.TimeoutError)):
            return "NETWORK_FAILED"
        if isinstance(error, PermissionError):
            return "FILE_ACCESS_DENIED"
        return "FILE_FAILED"
