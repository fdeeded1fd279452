import asyncio
from typing import Callable

from clipvault.constants import DEFAULT_DOWNLOAD_TIMEOUT_MS, POLL_INTERVAL_S
from clipvault.downloads.types import (
    DownloadDelta,
    DownloadHost,
    DownloadItem,
    DownloadOptions,
    DownloadResult,
)
from clipvault.errors import DownloadInterrupted, DownloadStartFailed, DownloadTimeout
from clipvault.log_config import logger

CleanupCallback = Callable[[], None]


class DownloadCompletionTracker:
    """
    Turns a fire-and-forget host download into one awaitable call.

    The id comes either from the start call or from an on_created event whose url
    matches ours. The event stream and a status poll race to report a terminal
    state; the outcome future accepts the first writer only, so whichever path
    loses becomes a no-op. Deltas seen before the id is known are buffered and
    replayed once it is bound.

    Whatever the outcome, listeners are removed, polling stops and on_cleanup
    runs exactly once.
    """

    def __init__(
        self,
        host: DownloadHost,
        options: DownloadOptions,
        on_cleanup: CleanupCallback | None = None,
        timeout_ms: int = DEFAULT_DOWNLOAD_TIMEOUT_MS,
        poll_interval: float = POLL_INTERVAL_S,
    ):
        self.host = host
        self.options = options
        self.on_cleanup = on_cleanup
        self.timeout_ms = timeout_ms
        self.poll_interval = poll_interval

        self.download_id: int | None = None
        self._latest_filename: str | None = None
        self._pending_deltas: list[DownloadDelta] = []
        self._outcome: asyncio.Future[DownloadResult] | None = None
        self._poll_task: asyncio.Task | None = None
        self._start_task: asyncio.Task | None = None
        self._started = False

    @property
    def settled(self) -> bool:
        return self._outcome is not None and self._outcome.done()

    async def start(self) -> DownloadResult:
        if self._started:
            raise RuntimeError("DownloadCompletionTracker.start() can only be called once")
        self._started = True
        self._outcome = asyncio.get_running_loop().create_future()

        self.host.on_created.add_listener(self._handle_created)
        self.host.on_changed.add_listener(self._handle_changed)

        timeout = self.timeout_ms / 1000 if self.timeout_ms > 0 else None
        try:
            return await asyncio.wait_for(self._run(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Download timed out", extra={"url": self._short_url(), "timeout_ms": self.timeout_ms})
            raise DownloadTimeout(self.timeout_ms) from None
        finally:
            self._teardown()

    async def _run(self) -> DownloadResult:
        # the start call may resolve after the events, so it must not gate the outcome
        self._start_task = asyncio.create_task(self._start_download())
        return await self._outcome

    async def _start_download(self) -> None:
        try:
            download_id = await self.host.download(self.options)
        except Exception as e:
            logger.warning("Download start failed", extra={"url": self._short_url(), "error": str(e)})
            self._settle(error=DownloadStartFailed(str(e) or type(e).__name__))
            return
        self._bind(download_id)

    def _bind(self, download_id: int) -> None:
        if self.download_id is None:
            self.download_id = download_id
            logger.debug("Download started", extra={"download_id": download_id, "url": self._short_url()})
        self._flush_pending_deltas()
        self._start_polling()

    def _settle(self, result: DownloadResult | None = None, error: BaseException | None = None) -> None:
        if self._outcome is None or self._outcome.done():
            return
        if error is not None:
            self._outcome.set_exception(error)
        else:
            self._outcome.set_result(result)

    def _succeed(self) -> None:
        filename = self._latest_filename or self.options.filename or ""
        self._settle(result=DownloadResult(id=self.download_id, resolved_path=filename))

    def _fail(self, reason: str | None) -> None:
        self._settle(error=DownloadInterrupted(reason))

    def _handle_created(self, item: DownloadItem) -> None:
        if self.settled:
            return

        if self.download_id is None:
            # bind by url only, an unrelated download must never be adopted
            if item.url != self.options.url:
                return
            self._bind(item.id)

        if item.id != self.download_id:
            return

        if item.filename:
            self._latest_filename = item.filename

    def _handle_changed(self, delta: DownloadDelta) -> None:
        if self.settled:
            return
        if self.download_id is None:
            self._pending_deltas.append(delta)
            return
        if delta.id != self.download_id:
            return

        if delta.filename and delta.filename.current:
            self._latest_filename = delta.filename.current

        state = delta.state.current if delta.state else None
        if state == "complete":
            self._succeed()
        elif state == "interrupted":
            self._fail(delta.error.current if delta.error else None)

    def _flush_pending_deltas(self) -> None:
        if self.download_id is None or not self._pending_deltas:
            return
        queued, self._pending_deltas = self._pending_deltas, []
        for delta in queued:
            self._handle_changed(delta)

    def _start_polling(self) -> None:
        if self.download_id is None or self._poll_task is not None or self.settled:
            return
        self._poll_task = asyncio.create_task(self._poll())

    async def _poll(self) -> None:
        while not self.settled:
            await asyncio.sleep(self.poll_interval)
            if self.settled:
                return
            try:
                items = await self.host.search(self.download_id)
            except Exception as e:
                logger.warning("Download status poll failed", extra={"download_id": self.download_id, "error": str(e)})
                continue

            if not items:
                continue
            item = items[0]

            if item.filename:
                self._latest_filename = item.filename

            if item.state == "complete":
                self._succeed()
            elif item.state == "interrupted":
                self._fail(item.error)

    def _teardown(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None
        if self._start_task is not None and not self._start_task.done():
            self._start_task.cancel()

        self.host.on_created.remove_listener(self._handle_created)
        self.host.on_changed.remove_listener(self._handle_changed)

        if self.on_cleanup is not None:
            callback, self.on_cleanup = self.on_cleanup, None
            try:
                callback()
            except Exception as e:
                logger.warning("Download cleanup failed", extra={"download_id": self.download_id, "error": str(e)})

    def _short_url(self) -> str:
        url = self.options.url
        return url if len(url) <= 80 else f"{url[:77]}..."
