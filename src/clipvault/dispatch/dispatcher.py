from clipvault.config.schema import WebDAVConfig
from clipvault.dispatch.messages import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    SaveRequest,
    SaveResponse,
)
from clipvault.dispatch.relay import RelayChannel
from clipvault.errors import ConfigurationError, ErrorKind
from clipvault.log_config import logger
from clipvault.models import SaveContext, SaveResult
from clipvault.remote.webdav import WebDAVClient
from clipvault.strategies.registry import StrategyRegistry


class SaveDispatcher:
    """
    Single entry point for saving: look the strategy up, validate its
    configuration, then run it here or relay it to the privileged context.
    """

    def __init__(self, registry: StrategyRegistry, relay: RelayChannel | None = None):
        self.registry = registry
        self.relay = relay

    async def dispatch(self, context: SaveContext, name: str) -> SaveResult:
        strategy = self.registry.get(name)
        if strategy is None:
            logger.warning("Unknown save strategy", extra={"strategy": name})
            return SaveResult.failure(f"Unknown save strategy: {name}", ErrorKind.VALIDATION)

        validation = strategy.validate(context.config)
        if not validation.valid:
            logger.warning("Strategy configuration invalid", extra={"strategy": name, "errors": validation.errors})
            return SaveResult.failure(
                "; ".join(validation.errors) or "Configuration validation failed",
                ErrorKind.VALIDATION,
            )

        if strategy.descriptor.runs_privileged and self.relay is not None:
            return await self._relay_save(context, name)

        try:
            return await strategy.save(context)
        except Exception as e:
            logger.exception("Strategy raised", extra={"strategy": name})
            return SaveResult.failure(str(e) or "Unknown error occurred", ErrorKind.UNKNOWN)

    async def _relay_save(self, context: SaveContext, name: str) -> SaveResult:
        logger.info("Relaying save", extra={"strategy": name, "destination": context.destination_name})
        try:
            response = await self.relay.request(SaveRequest(context=context, strategy=name))
        except Exception:
            logger.exception("Relay request failed", extra={"strategy": name})
            response = None

        match response:
            case SaveResponse(result=result):
                return result
            case None:
                return SaveResult.failure("No response from privileged context", ErrorKind.UNKNOWN)
            case _:
                return SaveResult.failure(f"Unexpected relay response: {response.type}", ErrorKind.UNKNOWN)

    async def test_connection(self, config: WebDAVConfig) -> bool:
        if self.relay is not None:
            response = await self.relay.request(ConnectionTestRequest(webdav=config))
            return isinstance(response, ConnectionTestResponse) and response.reachable

        try:
            store = WebDAVClient(config)
        except ConfigurationError:
            return False
        async with store:
            return await store.test_connection()
