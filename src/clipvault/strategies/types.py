from typing import Protocol

from clipvault.config.schema import SaveConfig
from clipvault.models import SaveContext, SaveResult, StrategyDescriptor, ValidationResult


class SaveStrategy(Protocol):
    """
    Interface every save destination implements.
    """

    @property
    def descriptor(self) -> StrategyDescriptor:
        ...

    @property
    def name(self) -> str:
        ...

    def validate(self, config: SaveConfig) -> ValidationResult:
        """Check the configuration this strategy needs before anything is persisted."""
        ...

    async def save(self, context: SaveContext) -> SaveResult:
        """
        Persist the document and its assets.

        Never raises: every failure is reported as an unsuccessful SaveResult.
        """
        ...
