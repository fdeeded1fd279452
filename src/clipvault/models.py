from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from clipvault.config.schema import SaveConfig
from clipvault.constants import DEFAULT_ASSETS_DIR
from clipvault.errors import ErrorKind, describe


class AssetState(str, Enum):
    PENDING = "pending"
    FETCHING = "fetching"
    FETCHED = "fetched"
    FAILED = "failed"


class AssetTask(BaseModel):
    """
    One embedded image reference and its fetch/persist lifecycle.

    The payload never crosses a serialization boundary and must be released
    once the persistence call that took it over has finished.
    """

    original_locator: str
    rewritten_local_ref: str      # ./assets/img_0.png
    bare_filename: str            # img_0.png
    remote_relative_path: str     # notes/2024/assets/img_0.png
    payload: bytes | None = Field(default=None, exclude=True, repr=False)
    state: AssetState = AssetState.PENDING
    error_detail: str | None = None

    @property
    def is_fetched(self) -> bool:
        return self.state == AssetState.FETCHED and self.payload is not None

    def release(self) -> None:
        self.payload = None


class SaveContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    destination_name: str
    assets: list[AssetTask] = Field(default_factory=list)
    assets_dir_name: str = DEFAULT_ASSETS_DIR
    title: str = ""
    source_url: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    config: SaveConfig = Field(default_factory=SaveConfig)


class SaveMetrics(BaseModel):
    byte_size: int = 0
    assets_succeeded: int = 0
    assets_failed: int = 0


class SaveResult(BaseModel):
    succeeded: bool
    destination_path: str | None = None
    asset_count: int | None = None
    completed_at: datetime | None = None
    failure_reason: str | None = None
    failure_kind: ErrorKind | None = None
    metrics: SaveMetrics | None = None

    @property
    def user_message(self) -> str | None:
        """Hint for the person saving, with the raw reason appended."""
        if self.succeeded or self.failure_kind is None:
            return None
        return describe(self.failure_kind, self.failure_reason)

    @classmethod
    def failure(cls, reason: str, kind: ErrorKind = ErrorKind.UNKNOWN) -> "SaveResult":
        return cls(succeeded=False, failure_reason=reason, failure_kind=kind)

    @classmethod
    def success(
        cls,
        destination_path: str,
        asset_count: int = 1,
        metrics: SaveMetrics | None = None,
    ) -> "SaveResult":
        return cls(
            succeeded=True,
            destination_path=destination_path,
            asset_count=asset_count,
            completed_at=datetime.now(timezone.utc),
            metrics=metrics,
        )


class StrategyDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    runs_privileged: bool


class ValidationResult(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)
