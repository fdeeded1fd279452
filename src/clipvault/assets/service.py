import asyncio
from typing import Callable, NamedTuple

import aiohttp
from tqdm.asyncio import tqdm_asyncio as tqdm

from clipvault.assets.markdown import extract_image_urls, guess_extension, replace_image_target
from clipvault.config.schema import AssetConfig
from clipvault.constants import DEFAULT_ASSETS_DIR
from clipvault.log_config import logger
from clipvault.models import AssetState, AssetTask
from clipvault.utils.paths import directory_of, sanitize_generated_path

ProgressCallback = Callable[[int, int], None]


class PreparedContent(NamedTuple):
    content: str
    tasks: list[AssetTask]


class FetchResult(NamedTuple):
    content: str
    tasks: list[AssetTask]


class AssetFetchService:
    """
    Discovers embedded images, rewrites them to local references and fetches their bytes.

    prepare() is synchronous and offline so a preview can show final paths right away;
    fetch_all() only runs once a save is committed.
    """

    def __init__(
        self,
        config: AssetConfig | None = None,
        session: aiohttp.ClientSession | None = None,
        show_progress: bool = False,
    ):
        self.config = config or AssetConfig()
        self.session = session
        self.show_progress = show_progress

    def prepare(
        self,
        content: str,
        destination_name: str,
        assets_dir_name: str = DEFAULT_ASSETS_DIR,
    ) -> PreparedContent:
        urls = extract_image_urls(content)
        base_dir = directory_of(sanitize_generated_path(destination_name))
        assets_dir = sanitize_generated_path(assets_dir_name) or DEFAULT_ASSETS_DIR

        tasks: list[AssetTask] = []
        for index, url in enumerate(urls):
            filename = f"img_{index}.{guess_extension(url)}"
            remote_path = f"{base_dir}/{assets_dir}/{filename}" if base_dir else f"{assets_dir}/{filename}"
            tasks.append(AssetTask(
                original_locator=url,
                rewritten_local_ref=f"./{assets_dir}/{filename}",
                bare_filename=filename,
                remote_relative_path=remote_path,
            ))

        rewritten = content
        for task in tasks:
            rewritten = replace_image_target(rewritten, task.original_locator, task.rewritten_local_ref)

        logger.info("Prepared assets", extra={"count": len(tasks), "base_dir": base_dir or "(root)"})
        return PreparedContent(content=rewritten, tasks=tasks)

    async def fetch_all(
        self,
        tasks: list[AssetTask],
        content: str,
        on_progress: ProgressCallback | None = None,
    ) -> FetchResult:
        if not tasks:
            return FetchResult(content=content, tasks=tasks)

        logger.info("Fetching assets", extra={"count": len(tasks)})

        if self.session is not None:
            await self._fetch_with(self.session, tasks, on_progress)
        else:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_s)
            connector = aiohttp.TCPConnector(limit=self.config.max_connections)
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                await self._fetch_with(session, tasks, on_progress)

        failed = [task for task in tasks if task.state == AssetState.FAILED]
        reconciled = content
        for task in failed:
            reconciled = replace_image_target(reconciled, task.rewritten_local_ref, task.original_locator)

        logger.info("Assets fetched", extra={"fetched": len(tasks) - len(failed), "failed": len(failed)})
        return FetchResult(content=reconciled, tasks=tasks)

    async def _fetch_with(
        self,
        session: aiohttp.ClientSession,
        tasks: list[AssetTask],
        on_progress: ProgressCallback | None,
    ) -> None:
        total = len(tasks)
        iterator = asyncio.as_completed([self._fetch_one(session, task) for task in tasks])
        if self.show_progress:
            iterator = tqdm(iterator, total=total, desc="Fetching assets")

        done = 0
        for coro in iterator:
            await coro
            done += 1
            if on_progress:
                on_progress(done, total)

    async def _fetch_one(self, session: aiohttp.ClientSession, task: AssetTask) -> AssetTask:
        task.state = AssetState.FETCHING
        task.error_detail = None
        logger.debug("Fetching asset", extra={"url": task.original_locator})
        try:
            async with session.get(task.original_locator) as resp:
                if resp.status < 200 or resp.status >= 300:
                    raise ValueError(f"HTTP {resp.status}")
                task.payload = await resp.read()
            task.state = AssetState.FETCHED
            logger.debug("Fetched asset", extra={"asset": task.bare_filename, "size": len(task.payload)})
        except Exception as e:
            task.state = AssetState.FAILED
            task.payload = None
            task.error_detail = str(e) or type(e).__name__
            logger.warning("Failed to fetch asset", extra={"url": task.original_locator, "error": task.error_detail})
        return task
