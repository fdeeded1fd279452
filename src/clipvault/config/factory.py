import importlib.util
import sys

from typing import Callable, Any

from clipvault.config.schema import AssetConfig, LocalDownloadConfig
from clipvault.assets.service import AssetFetchService
from clipvault.downloads.manager import LocalDownloadManager
from clipvault.downloads.types import DownloadHost
from clipvault.strategies.registry import StrategyRegistry
from clipvault.strategies.types import SaveStrategy


class Registry:
    def __init__(self, lazy: bool = True):
        self.lazy = lazy

    def factory(self, module_path: str, class_name: str) -> Callable[[], Any]:
        if self.lazy:
            return lambda: self._import_lazy(module_path, class_name)
        else:
            cls = self._import_eager(module_path, class_name)
            return lambda: cls

    def _import_lazy(self, module_path: str, class_name: str) -> Any:
        if module_path in sys.modules:
            module = sys.modules[module_path]
        else:
            spec = importlib.util.find_spec(module_path)
            if spec is None:
                raise ImportError(f"Module '{module_path}' not found")
            loader = importlib.util.LazyLoader(spec.loader)
            spec.loader = loader
            module = importlib.util.module_from_spec(spec)
            sys.modules[module_path] = module
            loader.exec_module(module)
        return getattr(module, class_name)

    def _import_eager(self, module_path: str, class_name: str) -> Any:
        module = importlib.import_module(module_path)
        return getattr(module, class_name)


USE_LAZY = False
registry = Registry(lazy=USE_LAZY)

STRATEGY_MAPPING = {
    "local": registry.factory("clipvault.strategies.local", "LocalSaveStrategy"),
    "webdav": registry.factory("clipvault.strategies.webdav", "WebDAVSaveStrategy"),
}


def create_strategy(
    name: str,
    fetcher: AssetFetchService | None = None,
    host: DownloadHost | None = None,
) -> SaveStrategy:
    cls = STRATEGY_MAPPING.get(name)
    if not cls:
        raise ValueError(f"Unknown save strategy type: {name}")
    if name == "local":
        return cls()(host=host, fetcher=fetcher)
    return cls()(fetcher=fetcher)


def create_registry(
    fetcher: AssetFetchService | None = None,
    host: DownloadHost | None = None,
    names: list[str] | None = None,
) -> StrategyRegistry:
    strategies = StrategyRegistry()
    for name in names or STRATEGY_MAPPING:
        strategies.register(create_strategy(name, fetcher=fetcher, host=host))
    return strategies


def create_fetcher(config: AssetConfig, show_progress: bool = False) -> AssetFetchService:
    return AssetFetchService(config=config, show_progress=show_progress)


def create_download_host(config: LocalDownloadConfig) -> LocalDownloadManager:
    return LocalDownloadManager(config)
