from typing import NamedTuple

from clipvault.assets.service import AssetFetchService
from clipvault.config.schema import SaveConfig
from clipvault.errors import ErrorKind
from clipvault.log_config import logger
from clipvault.models import (
    AssetState,
    AssetTask,
    SaveContext,
    SaveMetrics,
    SaveResult,
    StrategyDescriptor,
    ValidationResult,
)
from clipvault.strategies.types import SaveStrategy
from clipvault.utils.timing import log_duration


class ResolvedContent(NamedTuple):
    content: str
    assets: list[AssetTask]


class BaseSaveStrategy(SaveStrategy):
    """
    Shared flow for concrete strategies: resolve assets, persist, and turn any
    unexpected exception into an UNKNOWN SaveResult.
    """

    descriptor: StrategyDescriptor

    def __init__(self, fetcher: AssetFetchService | None = None):
        self.fetcher = fetcher or AssetFetchService()

    @property
    def name(self) -> str:
        return self.descriptor.name

    def validate(self, config: SaveConfig) -> ValidationResult:
        return ValidationResult(valid=True)

    async def save(self, context: SaveContext) -> SaveResult:
        try:
            async with log_duration("save", strategy=self.name, destination=context.destination_name):
                resolved = await self.resolve_assets(context)
                return await self.persist(context, resolved)
        except Exception as e:
            logger.exception("Save failed", extra={"strategy": self.name, "destination": context.destination_name})
            return SaveResult.failure(str(e) or "Unknown error occurred", ErrorKind.UNKNOWN)

    async def persist(self, context: SaveContext, resolved: ResolvedContent) -> SaveResult:
        raise NotImplementedError

    async def resolve_assets(self, context: SaveContext) -> ResolvedContent:
        """
        Fetch every asset that has no bytes at hand. Content comes back with
        failed references reverted to their original urls.

        Payloads are never serialized, so a task fetched on the other side of the
        relay arrives as FETCHED without a payload and is fetched again here.
        """
        if not context.assets:
            return ResolvedContent(context.content, [])

        for task in context.assets:
            if task.state in (AssetState.FETCHING, AssetState.FETCHED) and task.payload is None:
                task.state = AssetState.PENDING

        pending = [task for task in context.assets if task.state == AssetState.PENDING]
        if not pending:
            return ResolvedContent(context.content, context.assets)

        result = await self.fetcher.fetch_all(pending, context.content)
        return ResolvedContent(result.content, context.assets)

    @staticmethod
    def fetched(assets: list[AssetTask]) -> list[AssetTask]:
        return [task for task in assets if task.is_fetched]

    @staticmethod
    def metrics(content: str, succeeded: int, failed: int) -> SaveMetrics:
        return SaveMetrics(
            byte_size=len(content.encode("utf-8")),
            assets_succeeded=succeeded,
            assets_failed=failed,
        )

    @staticmethod
    def release(assets: list[AssetTask]) -> None:
        for task in assets:
            task.release()
