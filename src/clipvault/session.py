from datetime import datetime, timezone

from pydantic import BaseModel, Field

from clipvault.assets.service import AssetFetchService, PreparedContent
from clipvault.config.schema import SaveConfig
from clipvault.dispatch.dispatcher import SaveDispatcher
from clipvault.log_config import logger
from clipvault.models import AssetTask, SaveContext, SaveResult
from clipvault.utils.paths import with_timestamp_suffix


class ClipSource(BaseModel):
    """Extracted page content, already converted and templated by the caller."""

    content: str
    title: str = ""
    url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SaveSession:
    """
    State of one save, from preview to final result.

    Each open preview gets its own session, so concurrent saves never see each
    other's content or asset tasks.
    """

    def __init__(
        self,
        source: ClipSource,
        destination_name: str,
        config: SaveConfig,
        fetcher: AssetFetchService | None = None,
    ):
        self.source = source
        self.destination_name = destination_name
        self.config = config
        self.fetcher = fetcher or AssetFetchService(config.assets)
        self.last_result: SaveResult | None = None
        self._prepared: PreparedContent | None = None

    def prepare(self) -> PreparedContent:
        if self._prepared is None:
            if self.config.assets.enabled:
                self._prepared = self.fetcher.prepare(
                    self.source.content,
                    self.destination_name,
                    self.config.assets.dir_name,
                )
            else:
                self._prepared = PreparedContent(content=self.source.content, tasks=[])
        return self._prepared

    @property
    def preview(self) -> str:
        return self.prepare().content

    @property
    def tasks(self) -> list[AssetTask]:
        return self.prepare().tasks

    def rename(self, destination_name: str) -> None:
        # asset paths hang off the destination folder, so they are derived again
        self.destination_name = destination_name
        self._prepared = None

    def rename_with_timestamp(self, now: datetime | None = None) -> str:
        self.rename(with_timestamp_suffix(self.destination_name, now))
        return self.destination_name

    def build_context(self) -> SaveContext:
        prepared = self.prepare()
        return SaveContext(
            content=prepared.content,
            destination_name=self.destination_name,
            # fresh copies keep this session's tasks pending for a retry
            assets=[task.model_copy() for task in prepared.tasks],
            assets_dir_name=self.config.assets.dir_name,
            title=self.source.title,
            source_url=self.source.url,
            timestamp=self.source.timestamp,
            config=self.config,
        )

    async def save(self, dispatcher: SaveDispatcher, strategy_name: str | None = None) -> SaveResult:
        name = strategy_name or self.config.save_method
        context = self.build_context()
        logger.info("Saving clip", extra={
            "strategy": name,
            "destination": self.destination_name,
            "assets": len(context.assets),
        })
        self.last_result = await dispatcher.dispatch(context, name)
        if not self.last_result.succeeded:
            logger.warning("Clip not saved", extra={
                "strategy": name,
                "destination": self.destination_name,
                "kind": self.last_result.failure_kind,
                "hint": self.last_result.user_message,
            })
        return self.last_result
