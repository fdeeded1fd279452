from pydantic import BaseModel, Field
from typing import Literal

from clipvault.constants import (
    DEFAULT_ASSETS_DIR,
    DEFAULT_DOWNLOAD_TIMEOUT_MS,
    DEFAULT_MAX_CONNECTIONS,
)


class WebDAVConfig(BaseModel):
    url: str = ""
    username: str = ""
    password: str = Field(default="", repr=False)
    path: str = "/"
    auth_type: Literal["basic", "digest"] = "basic"
    timeout_s: float = 30.0


class LocalDownloadConfig(BaseModel):
    root_dir: str = "downloads"
    conflict_action: Literal["uniquify", "overwrite", "prompt"] = "uniquify"
    timeout_ms: int = DEFAULT_DOWNLOAD_TIMEOUT_MS


class AssetConfig(BaseModel):
    enabled: bool = False
    dir_name: str = Field(default=DEFAULT_ASSETS_DIR, min_length=1)
    max_connections: int = DEFAULT_MAX_CONNECTIONS
    timeout_s: float = 30.0


class RelayConfig(BaseModel):
    enabled: bool = True
    timeout_s: float = 300.0


class SaveConfig(BaseModel):
    save_method: Literal["local", "webdav"] = "local"
    download_directory: Literal["default", "custom"] = "default"
    custom_download_path: str = ""
    downloads: LocalDownloadConfig = Field(default_factory=LocalDownloadConfig)
    webdav: WebDAVConfig = Field(default_factory=WebDAVConfig)
    assets: AssetConfig = Field(default_factory=AssetConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
