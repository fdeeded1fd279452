MAX_PATH_DEPTH = 10

DEFAULT_ASSETS_DIR = "assets"
DEFAULT_ASSET_EXTENSION = "png"
DOCUMENT_EXTENSION = ".md"

DEFAULT_DOWNLOAD_TIMEOUT_MS = 120_000
POLL_INTERVAL_S = 0.2

DEFAULT_MAX_CONNECTIONS = 8

SUPPORTED_URL_SCHEMES = {"data", "blob", "http", "https"}

__all__ = [
    "MAX_PATH_DEPTH",
    "DEFAULT_ASSETS_DIR",
    "DEFAULT_ASSET_EXTENSION",
    "DOCUMENT_EXTENSION",
    "DEFAULT_DOWNLOAD_TIMEOUT_MS",
    "POLL_INTERVAL_S",
    "DEFAULT_MAX_CONNECTIONS",
    "SUPPORTED_URL_SCHEMES",
]
