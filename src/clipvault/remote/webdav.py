import os
from urllib.parse import quote, urlparse

import aiohttp

from clipvault.config.schema import WebDAVConfig
from clipvault.errors import ConfigurationError, ErrorKind
from clipvault.log_config import logger
from clipvault.remote.types import RemoteObjectStore, UploadResult
from clipvault.utils.paths import directory_of, is_safe, sanitize_generated_path, sanitize_user_path

MULTI_STATUS = 207

PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:resourcetype/></d:prop></d:propfind>'
)


class WebDAVClient(RemoteObjectStore):
    """
    WebDAV client over aiohttp.

    Paths given to the public methods are relative to the configured base path.
    Only construction can raise (ConfigurationError); every request-level failure
    is reported through the return value.
    """

    def __init__(self, config: WebDAVConfig):
        self.config = config

        url = config.url.strip()
        if not url:
            raise ConfigurationError("WebDAV URL is required")
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(f"Invalid WebDAV URL: {url}")

        self.base_url = url.rstrip("/")
        self.base_path = sanitize_user_path(config.path)

        self.username = config.username or os.getenv("WEBDAV_USERNAME", "")
        self.password = config.password or os.getenv("WEBDAV_PASSWORD", "")
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> "WebDAVClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            kwargs: dict = {"timeout": aiohttp.ClientTimeout(total=self.config.timeout_s)}
            if self.username:
                # some servers only accept one of the two schemes
                if self.config.auth_type == "digest":
                    kwargs["middlewares"] = (aiohttp.DigestAuthMiddleware(self.username, self.password),)
                else:
                    kwargs["auth"] = aiohttp.BasicAuth(self.username, self.password)
            self._session = aiohttp.ClientSession(**kwargs)
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def server_path(self, path: str) -> str:
        """Absolute path on the server for a path relative to the base path."""
        parts = [part for part in (self.base_path, sanitize_generated_path(path)) if part]
        return "/" + "/".join(parts)

    def _url(self, path: str) -> str:
        return self.base_url + quote(self.server_path(path), safe="/")

    async def _propfind(self, path: str, depth: str = "0") -> int:
        session = self._get_session()
        headers = {"Depth": depth, "Content-Type": "application/xml"}
        async with session.request("PROPFIND", self._url(path), data=PROPFIND_BODY, headers=headers) as resp:
            return resp.status

    async def exists(self, path: str) -> bool:
        try:
            status = await self._propfind(path)
        except Exception as e:
            logger.debug("WebDAV existence check failed", extra={"path": path, "error": str(e)})
            return False
        return status in (200, MULTI_STATUS)

    async def test_connection(self) -> bool:
        try:
            status = await self._propfind("", depth="1")
        except Exception as e:
            logger.warning("WebDAV connection test failed", extra={"url": self.base_url, "error": str(e)})
            return False
        return status in (200, MULTI_STATUS)

    async def ensure_directory(self, path: str) -> bool:
        directory = sanitize_generated_path(path)
        if not directory and not self.base_path:
            return True

        if await self.exists(directory):
            return True

        # MKCOL is not recursive, walk down from the server root
        segments = [s for s in f"{self.base_path}/{directory}".split("/") if s]
        session = self._get_session()
        created = ""
        for segment in segments:
            created = f"{created}/{segment}" if created else segment
            url = self.base_url + quote("/" + created, safe="/")
            try:
                async with session.request("PROPFIND", url, headers={"Depth": "0"}) as resp:
                    if resp.status in (200, MULTI_STATUS):
                        continue
                async with session.request("MKCOL", url) as resp:
                    # 405: created concurrently by someone else
                    if resp.status not in (200, 201, 405):
                        logger.error("Failed to create WebDAV directory", extra={"path": created, "status": resp.status})
                        return False
            except Exception as e:
                logger.error("Failed to create WebDAV directory", extra={"path": created, "error": str(e)})
                return False

        logger.debug("WebDAV directory ensured", extra={"path": directory})
        return True

    async def put(self, path: str, content: str | bytes, overwrite: bool = False) -> UploadResult:
        relative = sanitize_generated_path(path)
        if not is_safe(relative):
            return UploadResult(success=False, error=f"Unsafe path: {path}", error_kind=ErrorKind.VALIDATION)

        directory = directory_of(relative)
        if not await self.ensure_directory(directory):
            return UploadResult(
                success=False,
                error=f"Failed to create directory: {directory}",
                error_kind=ErrorKind.PERMISSION,
            )

        final_path = self.server_path(relative)
        if not overwrite and await self.exists(relative):
            logger.info("WebDAV file already exists", extra={"path": final_path})
            return UploadResult(success=False, final_path=final_path, file_exists=True)

        data = content.encode("utf-8") if isinstance(content, str) else content
        headers = {} if overwrite else {"If-None-Match": "*"}
        try:
            session = self._get_session()
            async with session.put(self._url(relative), data=data, headers=headers) as resp:
                if resp.status == 412 and not overwrite:
                    return UploadResult(success=False, final_path=final_path, file_exists=True)
                if resp.status < 200 or resp.status >= 300:
                    return UploadResult(
                        success=False,
                        error=f"HTTP {resp.status} {resp.reason or ''}".strip(),
                        error_kind=ErrorKind.NETWORK,
                    )
        except Exception as e:
            logger.warning("WebDAV upload failed", extra={"path": final_path, "error": str(e)})
            return UploadResult(success=False, error=str(e) or type(e).__name__, error_kind=ErrorKind.NETWORK)

        logger.debug("WebDAV upload complete", extra={"path": final_path, "size": len(data)})
        return UploadResult(success=True, final_path=final_path)
