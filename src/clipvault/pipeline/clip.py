from clipvault.config.schema import SaveConfig
from clipvault.config.factory import (
    create_download_host,
    create_fetcher,
    create_registry,
)
from clipvault.dispatch.dispatcher import SaveDispatcher
from clipvault.dispatch.relay import InProcessRelay, PrivilegedWorker
from clipvault.models import SaveResult
from clipvault.session import ClipSource, SaveSession
from clipvault.utils.timing import log_duration


async def run_save_pipeline(
    source: ClipSource,
    destination_name: str,
    config: SaveConfig,
    strategy_name: str | None = None,
    show_progress: bool = False,
) -> SaveResult:
    fetcher = create_fetcher(config.assets, show_progress=show_progress)
    host = create_download_host(config.downloads)

    privileged = SaveDispatcher(create_registry(fetcher=fetcher, host=host))

    worker = None
    dispatcher = privileged
    if config.relay.enabled:
        relay = InProcessRelay(timeout_s=config.relay.timeout_s)
        worker = PrivilegedWorker(relay, privileged)
        # the caller side only validates, execution happens behind the relay
        dispatcher = SaveDispatcher(create_registry(fetcher=fetcher), relay=relay)

    session = SaveSession(source, destination_name, config, fetcher)

    try:
        if worker:
            await worker.start()

        async with log_duration("prepare_content"):
            prepared = session.prepare()

        async with log_duration("save_content", assets=len(prepared.tasks)):
            return await session.save(dispatcher, strategy_name)

    finally:
        if worker:
            await worker.stop()
        await host.close()
