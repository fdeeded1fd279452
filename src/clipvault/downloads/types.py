from typing import Literal, NamedTuple, Protocol

from pydantic import BaseModel

from clipvault.downloads.events import EventStream

DownloadState = Literal["in_progress", "complete", "interrupted"]


class DownloadOptions(BaseModel):
    url: str
    filename: str | None = None
    save_as: bool = False
    conflict_action: Literal["uniquify", "overwrite", "prompt"] = "uniquify"


class DownloadItem(BaseModel):
    id: int
    url: str
    filename: str | None = None
    state: DownloadState = "in_progress"
    error: str | None = None


class DeltaField(BaseModel):
    current: str | None = None
    previous: str | None = None


class DownloadDelta(BaseModel):
    id: int
    state: DeltaField | None = None
    filename: DeltaField | None = None
    error: DeltaField | None = None


class DownloadResult(NamedTuple):
    id: int
    resolved_path: str


class DownloadHost(Protocol):
    """
    Interface of a fire-and-forget download subsystem.

    download() returns an id as soon as the transfer is scheduled; progress is
    reported through on_created / on_changed and can be polled with search().
    """

    on_created: EventStream[DownloadItem]
    on_changed: EventStream[DownloadDelta]

    async def download(self, options: DownloadOptions) -> int:
        ...

    async def search(self, download_id: int) -> list[DownloadItem]:
        ...

    def create_object_url(self, data: bytes, mime: str = "application/octet-stream") -> str:
        """Register an in-memory payload and return a url download() accepts."""
        ...

    def revoke_object_url(self, url: str) -> None:
        ...
