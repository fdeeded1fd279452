from typing import Protocol

from pydantic import BaseModel

from clipvault.errors import ErrorKind


class UploadResult(BaseModel):
    success: bool
    final_path: str | None = None
    file_exists: bool = False
    error: str | None = None
    error_kind: ErrorKind | None = None


class RemoteObjectStore(Protocol):
    """
    Path-addressed document store. Every method reports failures in its return value.
    """

    async def exists(self, path: str) -> bool:
        ...

    async def ensure_directory(self, path: str) -> bool:
        ...

    async def put(self, path: str, content: str | bytes, overwrite: bool = False) -> UploadResult:
        ...

    async def close(self) -> None:
        ...
