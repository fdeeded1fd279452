import asyncio
from urllib.parse import quote

from clipvault.assets.service import AssetFetchService
from clipvault.config.schema import SaveConfig
from clipvault.constants import DOCUMENT_EXTENSION
from clipvault.downloads.tracker import DownloadCompletionTracker
from clipvault.downloads.types import DownloadHost, DownloadOptions, DownloadResult
from clipvault.errors import DownloadError, ErrorKind
from clipvault.log_config import logger
from clipvault.models import (
    AssetState,
    AssetTask,
    SaveContext,
    SaveResult,
    StrategyDescriptor,
    ValidationResult,
)
from clipvault.strategies.base import BaseSaveStrategy, ResolvedContent
from clipvault.utils.paths import combine, is_safe


def download_base(config: SaveConfig) -> str:
    if config.download_directory == "custom" and config.custom_download_path:
        return config.custom_download_path.strip()
    return ""


class LocalSaveStrategy(BaseSaveStrategy):
    """
    Saves through the host download subsystem: the Markdown file first, then every
    fetched image into an assets folder next to it.
    """

    descriptor = StrategyDescriptor(name="local", display_name="Local Download", runs_privileged=True)

    def __init__(self, host: DownloadHost | None = None, fetcher: AssetFetchService | None = None):
        super().__init__(fetcher)
        self.host = host

    def validate(self, config: SaveConfig) -> ValidationResult:
        errors = []
        if config.download_directory == "custom" and not config.custom_download_path.strip():
            errors.append("Custom download path is required")
        return ValidationResult(valid=not errors, errors=errors)

    async def persist(self, context: SaveContext, resolved: ResolvedContent) -> SaveResult:
        if self.host is None:
            raise RuntimeError("LocalSaveStrategy has no download host, it must run in the privileged context")

        base = download_base(context.config)
        document_path = combine(base, f"{context.destination_name}{DOCUMENT_EXTENSION}")
        if not is_safe(document_path):
            self.release(resolved.assets)
            return SaveResult.failure(f"Unsafe destination path: {document_path}", ErrorKind.VALIDATION)

        try:
            document = await self._download_document(context, resolved.content, document_path)
        except DownloadError as e:
            logger.error("Markdown download failed", extra={"path": document_path, "error": str(e)})
            self.release(resolved.assets)
            return SaveResult.failure(str(e), ErrorKind.PERMISSION)

        saved_path = document.resolved_path or document_path
        logger.info("Markdown saved", extra={"path": saved_path, "download_id": document.id})

        if not resolved.assets:
            return SaveResult.success(saved_path, 1, self.metrics(resolved.content, 0, 0))

        fetched = self.fetched(resolved.assets)
        fetch_failed = sum(1 for task in resolved.assets if task.state == AssetState.FAILED)

        results = await asyncio.gather(
            *(self._download_asset(context, task, base) for task in fetched),
            return_exceptions=True,
        )

        saved = 0
        persist_failed = 0
        for task, result in zip(fetched, results):
            if isinstance(result, BaseException):
                persist_failed += 1
                logger.error("Asset download failed", extra={"asset": task.bare_filename, "error": str(result)})
            else:
                saved += 1

        logger.info("Local save complete", extra={
            "path": saved_path,
            "assets_saved": saved,
            "assets_failed": fetch_failed + persist_failed,
        })
        return SaveResult.success(
            saved_path,
            1 + saved,
            self.metrics(resolved.content, saved, fetch_failed + persist_failed),
        )

    async def _download_document(self, context: SaveContext, content: str, path: str) -> DownloadResult:
        downloads = context.config.downloads
        tracker = DownloadCompletionTracker(
            self.host,
            DownloadOptions(
                url=f"data:text/markdown;charset=utf-8,{quote(content, safe='')}",
                filename=path,
                conflict_action=downloads.conflict_action,
            ),
            timeout_ms=downloads.timeout_ms,
        )
        return await tracker.start()

    async def _download_asset(self, context: SaveContext, task: AssetTask, base: str) -> DownloadResult:
        # the path prepare() derived, which is where the rewritten reference points
        path = combine(base, task.remote_relative_path)
        if not is_safe(path):
            task.release()
            raise ValueError(f"Unsafe asset path: {path}")

        url = self.host.create_object_url(task.payload)

        def cleanup() -> None:
            self.host.revoke_object_url(url)
            task.release()

        downloads = context.config.downloads
        tracker = DownloadCompletionTracker(
            self.host,
            DownloadOptions(url=url, filename=path, conflict_action=downloads.conflict_action),
            on_cleanup=cleanup,
            timeout_ms=downloads.timeout_ms,
        )
        return await tracker.start()
