from clipvault.log_config import logger
from clipvault.models import StrategyDescriptor
from clipvault.strategies.types import SaveStrategy


class StrategyRegistry:
    """
    Registry that maps strategy names to strategy instances.
    Filled once at startup, read-only afterwards.
    """

    def __init__(self):
        self._strategies: dict[str, SaveStrategy] = {}

    def register(self, strategy: SaveStrategy) -> None:
        if strategy.name in self._strategies:
            logger.warning("Replacing registered strategy", extra={"strategy": strategy.name})
        self._strategies[strategy.name] = strategy
        logger.debug("Registered strategy", extra={"strategy": strategy.name})

    def get(self, name: str) -> SaveStrategy | None:
        return self._strategies.get(name)

    def list(self) -> list[StrategyDescriptor]:
        return [strategy.descriptor for strategy in self._strategies.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)
