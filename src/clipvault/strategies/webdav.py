import asyncio
from typing import Callable
from urllib.parse import urlparse

from clipvault.assets.service import AssetFetchService
from clipvault.config.schema import SaveConfig, WebDAVConfig
from clipvault.constants import DOCUMENT_EXTENSION
from clipvault.errors import ErrorKind
from clipvault.log_config import logger
from clipvault.models import (
    AssetState,
    AssetTask,
    SaveContext,
    SaveResult,
    StrategyDescriptor,
    ValidationResult,
)
from clipvault.remote.types import RemoteObjectStore, UploadResult
from clipvault.remote.webdav import WebDAVClient
from clipvault.strategies.base import BaseSaveStrategy, ResolvedContent

StoreFactory = Callable[[WebDAVConfig], RemoteObjectStore]


def validate_webdav_config(config: WebDAVConfig | None) -> list[str]:
    if config is None:
        return ["WebDAV configuration is missing"]

    errors = []
    url = config.url.strip()
    if not url:
        errors.append("WebDAV URL is required")
    else:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors.append("WebDAV URL is malformed")

    if not config.username.strip() or not config.password.strip():
        errors.append("WebDAV credentials are required")

    if config.path and not config.path.startswith("/"):
        errors.append("WebDAV path must start with /")

    return errors


class WebDAVSaveStrategy(BaseSaveStrategy):
    """
    Uploads the Markdown file and its assets to a WebDAV server, keeping the
    directory layout of the destination name.
    """

    descriptor = StrategyDescriptor(name="webdav", display_name="WebDAV Upload", runs_privileged=True)

    def __init__(self, fetcher: AssetFetchService | None = None, store_factory: StoreFactory = WebDAVClient):
        super().__init__(fetcher)
        self.store_factory = store_factory

    def validate(self, config: SaveConfig) -> ValidationResult:
        errors = validate_webdav_config(config.webdav)
        return ValidationResult(valid=not errors, errors=errors)

    async def persist(self, context: SaveContext, resolved: ResolvedContent) -> SaveResult:
        store = self.store_factory(context.config.webdav)
        try:
            document_path = f"{context.destination_name}{DOCUMENT_EXTENSION}"
            result = await store.put(document_path, resolved.content, overwrite=False)

            if not result.success:
                self.release(resolved.assets)
                if result.file_exists:
                    return SaveResult.failure("File already exists", ErrorKind.VALIDATION)
                return SaveResult.failure(
                    result.error or "WebDAV upload failed",
                    result.error_kind or ErrorKind.NETWORK,
                )

            final_path = result.final_path or document_path
            logger.info("Markdown uploaded", extra={"path": final_path})

            saved, failed = 0, 0
            if resolved.assets:
                saved, failed = await self._upload_assets(store, resolved.assets)

            return SaveResult.success(final_path, 1 + saved, self.metrics(resolved.content, saved, failed))
        finally:
            await store.close()

    async def _upload_assets(self, store: RemoteObjectStore, assets: list[AssetTask]) -> tuple[int, int]:
        fetched = self.fetched(assets)
        fetch_failed = sum(1 for task in assets if task.state == AssetState.FAILED)

        if not fetched:
            logger.info("No assets to upload", extra={"failed": fetch_failed})
            return 0, fetch_failed

        async def upload(task: AssetTask) -> UploadResult:
            try:
                # the document upload above already ruled out a collision for this save
                return await store.put(task.remote_relative_path, task.payload, overwrite=True)
            finally:
                task.release()

        results = await asyncio.gather(*(upload(task) for task in fetched), return_exceptions=True)

        saved = 0
        upload_failed = 0
        for task, result in zip(fetched, results):
            if isinstance(result, BaseException):
                upload_failed += 1
                logger.error("Asset upload error", extra={"asset": task.bare_filename, "error": str(result)})
            elif result.success:
                saved += 1
            else:
                upload_failed += 1
                logger.warning("Asset upload failed", extra={"asset": task.bare_filename, "error": result.error})

        logger.info("Asset upload complete", extra={
            "total": len(assets),
            "saved": saved,
            "failed": fetch_failed + upload_failed,
        })
        return saved, fetch_failed + upload_failed
