import asyncio
from typing import Protocol, assert_never

from pydantic import ValidationError

from clipvault.config.schema import WebDAVConfig
from clipvault.dispatch.messages import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    RelayRequest,
    RelayResponse,
    SaveRequest,
    SaveResponse,
    request_adapter,
    response_adapter,
)
from clipvault.errors import ConfigurationError
from clipvault.log_config import logger
from clipvault.remote.webdav import WebDAVClient

Envelope = tuple[bytes, asyncio.Future]


class RelayChannel(Protocol):
    """
    One request, at most one response. None means nothing came back.
    """

    async def request(self, message: RelayRequest) -> RelayResponse | None:
        ...


class InProcessRelay(RelayChannel):
    """
    Request/response channel between the caller and the privileged context.

    Messages cross as JSON, so nothing but serializable data is shared. A request
    made while nobody serves the channel, or one that outlives the timeout or the
    serving side, resolves to None.
    """

    def __init__(self, timeout_s: float = 300.0):
        self.timeout_s = timeout_s
        self._queue: asyncio.Queue[Envelope] | None = None

    @property
    def serving(self) -> bool:
        return self._queue is not None

    def open(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()

    def close(self) -> None:
        queue, self._queue = self._queue, None
        while queue is not None and not queue.empty():
            _, reply = queue.get_nowait()
            if not reply.done():
                reply.set_result(None)

    async def receive(self) -> Envelope:
        if self._queue is None:
            raise RuntimeError("Relay is not open")
        return await self._queue.get()

    async def request(self, message: RelayRequest) -> RelayResponse | None:
        if self._queue is None:
            logger.warning("Relay request without a receiving side", extra={"type": message.type})
            return None

        reply: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((request_adapter.dump_json(message), reply))

        try:
            raw = await asyncio.wait_for(reply, timeout=self.timeout_s)
        except asyncio.TimeoutError:
            logger.warning("Relay response timed out", extra={"type": message.type, "timeout": self.timeout_s})
            return None

        if not raw:
            return None
        try:
            return response_adapter.validate_json(raw)
        except ValidationError as e:
            logger.warning("Malformed relay response", extra={"type": message.type, "error": str(e)})
            return None


class PrivilegedWorker:
    """
    Serves relay requests inside the privileged context.

    Saves run on the worker's own dispatcher, which executes strategies in-process.
    """

    def __init__(self, relay: InProcessRelay, dispatcher, store_factory=WebDAVClient):
        self.relay = relay
        self.dispatcher = dispatcher
        self.store_factory = store_factory
        self._server: asyncio.Task | None = None
        self._handlers: dict[asyncio.Task, asyncio.Future] = {}

    async def __aenter__(self) -> "PrivilegedWorker":
        await self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    async def start(self) -> None:
        if self._server is not None:
            return
        self.relay.open()
        self._server = asyncio.create_task(self._serve())
        logger.info("Privileged worker started")

    async def stop(self) -> None:
        self.relay.close()
        replies = list(self._handlers.values())
        tasks = [t for t in (self._server, *self._handlers) if t is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for reply in replies:
            if not reply.done():
                reply.set_result(None)
        self._server = None
        self._handlers.clear()
        logger.info("Privileged worker stopped")

    async def _serve(self) -> None:
        while True:
            raw, reply = await self.relay.receive()
            task = asyncio.create_task(self._respond(raw, reply))
            self._handlers[task] = reply
            task.add_done_callback(lambda t: self._handlers.pop(t, None))

    async def _respond(self, raw: bytes, reply: asyncio.Future) -> None:
        payload: bytes | None = None
        try:
            request = request_adapter.validate_json(raw)
            response = await self.handle(request)
            payload = response_adapter.dump_json(response)
        except ValidationError as e:
            logger.error("Malformed relay request", extra={"error": str(e)})
        except Exception:
            logger.exception("Relay request failed")
        finally:
            if not reply.done():
                reply.set_result(payload)

    async def handle(self, request: RelayRequest) -> RelayResponse:
        match request:
            case SaveRequest(context=context, strategy=strategy):
                result = await self.dispatcher.dispatch(context, strategy)
                return SaveResponse(result=result)
            case ConnectionTestRequest(webdav=config):
                return ConnectionTestResponse(reachable=await self.test_connection(config))
            case _:
                assert_never(request)

    async def test_connection(self, config: WebDAVConfig) -> bool:
        try:
            store = self.store_factory(config)
        except ConfigurationError as e:
            logger.warning("WebDAV connection test skipped", extra={"error": str(e)})
            return False
        async with store:
            return await store.test_connection()
