import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from clipvault.assets.service import AssetFetchService
from clipvault.config.factory import create_registry
from clipvault.config.schema import SaveConfig, WebDAVConfig
from clipvault.dispatch.dispatcher import SaveDispatcher
from clipvault.dispatch.messages import (
    ConnectionTestRequest,
    ConnectionTestResponse,
    SaveRequest,
    SaveResponse,
    request_adapter,
    response_adapter,
)
from clipvault.dispatch.relay import InProcessRelay, PrivilegedWorker
from clipvault.downloads.manager import LocalDownloadManager
from clipvault.errors import ErrorKind
from clipvault.models import AssetTask, SaveContext, SaveResult, StrategyDescriptor
from clipvault.strategies.base import BaseSaveStrategy
from clipvault.strategies.registry import StrategyRegistry
from tests.fakes import JPG_BYTES


class ExplodingStrategy(BaseSaveStrategy):
    descriptor = StrategyDescriptor(name="exploding", display_name="Exploding", runs_privileged=False)

    async def save(self, context):
        raise RuntimeError("disk on fire")


class StalledDispatcher:
    async def dispatch(self, context, name):
        await asyncio.Event().wait()


@pytest_asyncio.fixture
async def host(save_config):
    async with LocalDownloadManager(save_config.downloads) as manager:
        yield manager


@pytest_asyncio.fixture
async def relayed(host):
    """Caller-side dispatcher whose privileged strategies run behind a relay worker."""
    relay = InProcessRelay(timeout_s=5)
    privileged = SaveDispatcher(create_registry(host=host))
    async with PrivilegedWorker(relay, privileged):
        yield SaveDispatcher(create_registry(), relay=relay)


@pytest.mark.asyncio
async def test_unknown_strategy(save_config):
    dispatcher = SaveDispatcher(create_registry())
    result = await dispatcher.dispatch(SaveContext(content="x", destination_name="a", config=save_config), "s3")

    assert result.failure_kind == ErrorKind.VALIDATION
    assert result.failure_reason == "Unknown save strategy: s3"


@pytest.mark.asyncio
async def test_invalid_configuration_joins_errors(save_config):
    dispatcher = SaveDispatcher(create_registry())
    result = await dispatcher.dispatch(SaveContext(content="x", destination_name="a", config=save_config), "webdav")

    assert result.failure_kind == ErrorKind.VALIDATION
    assert result.failure_reason == "WebDAV URL is required; WebDAV credentials are required"


@pytest.mark.asyncio
async def test_strategy_exception_becomes_unknown_failure(save_config):
    registry = StrategyRegistry()
    registry.register(ExplodingStrategy())
    result = await SaveDispatcher(registry).dispatch(
        SaveContext(content="x", destination_name="a", config=save_config), "exploding"
    )

    assert result.failure_kind == ErrorKind.UNKNOWN
    assert result.failure_reason == "disk on fire"


@pytest.mark.asyncio
async def test_in_process_save_without_relay(host, save_config):
    dispatcher = SaveDispatcher(create_registry(host=host))
    result = await dispatcher.dispatch(SaveContext(content="# A", destination_name="a", config=save_config), "local")

    assert result.succeeded
    assert Path(result.destination_path).read_text() == "# A"


@pytest.mark.asyncio
async def test_save_through_relay(relayed, save_config, image_server):
    url = image_server.make_url("/img/photo.png")
    context = SaveContext(
        content="![p](./assets/img_0.png)",
        destination_name="notes/relayed",
        assets=[AssetTask(
            original_locator=str(url),
            rewritten_local_ref="./assets/img_0.png",
            bare_filename="img_0.png",
            remote_relative_path="notes/assets/img_0.png",
        )],
        config=save_config,
    )

    result = await relayed.dispatch(context, "local")

    root = Path(save_config.downloads.root_dir)
    assert result.succeeded, result.failure_reason
    assert result.asset_count == 2
    assert (root / "notes" / "relayed.md").read_text() == "![p](./assets/img_0.png)"
    assert (root / "notes" / "assets" / "img_0.png").exists()
    assert result.completed_at is not None


@pytest.mark.asyncio
async def test_assets_fetched_before_relay_are_saved(relayed, save_config, image_server):
    service = AssetFetchService()
    prepared = service.prepare(f"![c]({image_server.make_url('/img/cover.jpg')})", "notes/fetched")
    fetched = await service.fetch_all(prepared.tasks, prepared.content)
    assert fetched.content == "![c](./assets/img_0.jpg)"

    context = SaveContext(
        content=fetched.content,
        destination_name="notes/fetched",
        assets=prepared.tasks,
        config=save_config,
    )
    result = await relayed.dispatch(context, "local")

    root = Path(save_config.downloads.root_dir)
    assert result.succeeded, result.failure_reason
    assert result.asset_count == 2
    assert result.metrics.assets_succeeded == 1
    assert result.metrics.assets_failed == 0
    assert (root / "notes" / "fetched.md").read_text() == "![c](./assets/img_0.jpg)"
    assert (root / "notes" / "assets" / "img_0.jpg").read_bytes() == JPG_BYTES


@pytest.mark.asyncio
async def test_relay_without_worker_reports_no_response(save_config):
    dispatcher = SaveDispatcher(create_registry(), relay=InProcessRelay())
    result = await dispatcher.dispatch(SaveContext(content="x", destination_name="a", config=save_config), "local")

    assert result.failure_kind == ErrorKind.UNKNOWN
    assert result.failure_reason == "No response from privileged context"


@pytest.mark.asyncio
async def test_relay_timeout_reports_no_response(save_config):
    relay = InProcessRelay(timeout_s=0.05)
    async with PrivilegedWorker(relay, StalledDispatcher()):
        result = await SaveDispatcher(create_registry(), relay=relay).dispatch(
            SaveContext(content="x", destination_name="a", config=save_config), "local"
        )

    assert result.failure_reason == "No response from privileged context"


@pytest.mark.asyncio
async def test_stopping_worker_answers_pending_requests(save_config):
    relay = InProcessRelay(timeout_s=30)
    worker = PrivilegedWorker(relay, StalledDispatcher())
    await worker.start()

    dispatcher = SaveDispatcher(create_registry(), relay=relay)
    pending = asyncio.create_task(
        dispatcher.dispatch(SaveContext(content="x", destination_name="a", config=save_config), "local")
    )
    await asyncio.sleep(0.05)
    await worker.stop()

    result = await asyncio.wait_for(pending, timeout=1)
    assert result.failure_kind == ErrorKind.UNKNOWN
    assert not relay.serving


@pytest.mark.asyncio
async def test_worker_rejects_malformed_request():
    relay = InProcessRelay(timeout_s=1)
    async with PrivilegedWorker(relay, StalledDispatcher()):
        reply = asyncio.get_running_loop().create_future()
        relay._queue.put_nowait((b'{"type": "format_disk"}', reply))
        assert await asyncio.wait_for(reply, timeout=1) is None


@pytest.mark.asyncio
async def test_connection_test_through_relay(relayed, webdav_config):
    assert await relayed.test_connection(webdav_config)
    assert not await relayed.test_connection(WebDAVConfig(url=""))
    assert not await relayed.test_connection(webdav_config.model_copy(update={"password": "wrong"}))


@pytest.mark.asyncio
async def test_connection_test_in_process(webdav_config):
    dispatcher = SaveDispatcher(create_registry())
    assert await dispatcher.test_connection(webdav_config)
    assert not await dispatcher.test_connection(WebDAVConfig(url="ftp://nope"))


def test_messages_keep_payloads_out_of_json(save_config):
    task = AssetTask(
        original_locator="https://e.com/a.png",
        rewritten_local_ref="./assets/img_0.png",
        bare_filename="img_0.png",
        remote_relative_path="assets/img_0.png",
        payload=b"\x89PNG",
    )
    request = SaveRequest(
        context=SaveContext(content="x", destination_name="a", assets=[task], config=save_config),
        strategy="local",
    )

    raw = request_adapter.dump_json(request)
    assert b"payload" not in raw

    decoded = request_adapter.validate_json(raw)
    assert isinstance(decoded, SaveRequest)
    assert decoded.context.assets[0].payload is None
    assert decoded.context.config == save_config


def test_message_discriminator():
    assert isinstance(
        request_adapter.validate_python({"type": "test_connection", "webdav": {"url": "https://d"}}),
        ConnectionTestRequest,
    )
    response = response_adapter.validate_json(
        response_adapter.dump_json(SaveResponse(result=SaveResult.failure("nope", ErrorKind.NETWORK)))
    )
    assert isinstance(response, SaveResponse)
    assert response.result.failure_kind == ErrorKind.NETWORK
    assert isinstance(
        response_adapter.validate_python({"type": "test_connection", "reachable": True}),
        ConnectionTestResponse,
    )


def test_default_save_method_matches_registry():
    assert SaveConfig().save_method in create_registry()
