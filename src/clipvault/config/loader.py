import os
import yaml
from pathlib import Path

from clipvault.config.schema import SaveConfig
from clipvault.log_config import logger

WEBDAV_ENV = {
    "WEBDAV_USERNAME": "username",
    "WEBDAV_PASSWORD": "password",
    "WEBDAV_PATH": "path",
    "WEBDAV_AUTH_TYPE": "auth_type",
}


def apply_env_overrides(data: dict) -> dict:
    """
    Overlay WebDAV and download settings from the environment.

    WEBDAV_URL enables the WebDAV block; the remaining WEBDAV_* variables are only
    read together with it. DOWNLOAD_DIRECTORY and CUSTOM_DOWNLOAD_PATH apply on their own.
    """
    data = dict(data)

    url = os.getenv("WEBDAV_URL")
    if url:
        webdav = dict(data.get("webdav") or {})
        webdav["url"] = url
        for env_name, field in WEBDAV_ENV.items():
            value = os.getenv(env_name)
            if value:
                webdav[field] = value
        data["webdav"] = webdav
        logger.debug("WebDAV config loaded from environment", extra={"url": url})

    download_directory = os.getenv("DOWNLOAD_DIRECTORY")
    if download_directory:
        data["download_directory"] = download_directory

    custom_path = os.getenv("CUSTOM_DOWNLOAD_PATH")
    if custom_path:
        data["custom_download_path"] = custom_path

    return data


def load_config(path: Path | str | None = None) -> SaveConfig:
    """
    Load a SaveConfig from a YAML (or JSON) file, then apply environment overrides.
    Raises pydantic.ValidationError on an invalid document.
    """
    data: dict = {}
    if path is not None:
        raw = yaml.safe_load(Path(path).read_text())
        if raw is not None and not isinstance(raw, dict):
            raise ValueError(f"Config root must be a mapping: {path}")
        data = raw or {}

    return SaveConfig.model_validate(apply_env_overrides(data))
