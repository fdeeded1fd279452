from enum import Enum


class ErrorKind(str, Enum):
    NETWORK = "network"
    PERMISSION = "permission"
    VALIDATION = "validation"
    UNKNOWN = "unknown"


HINTS: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "Check the server address and your network connection",
    ErrorKind.PERMISSION: "Check that the destination is writable",
    ErrorKind.VALIDATION: "Check the configuration or choose another file name",
    ErrorKind.UNKNOWN: "Operation failed, please retry",
}


def describe(kind: ErrorKind, reason: str | None = None) -> str:
    """
    Human-readable message for a failure kind, with the raw reason appended when present.
    """
    hint = HINTS[kind]
    return f"{hint}: {reason}" if reason else hint


class ClipvaultError(Exception):
    """Base class for errors raised by clipvault components."""


class ConfigurationError(ClipvaultError):
    pass


class DownloadError(ClipvaultError):
    pass


class DownloadTimeout(DownloadError):
    def __init__(self, timeout_ms: int):
        super().__init__(f"Download timeout after {timeout_ms}ms")
        self.timeout_ms = timeout_ms


class DownloadInterrupted(DownloadError):
    def __init__(self, reason: str | None = None):
        super().__init__(reason or "Download interrupted")
        self.reason = reason or "Download interrupted"


class DownloadStartFailed(DownloadError):
    pass
