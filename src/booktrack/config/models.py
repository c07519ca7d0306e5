from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator


class LogModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False
    sample_every: int = 1


class TrackingModel(BaseModel):
    """Product policy constants for booking creation and arrival detection."""

    model_config = ConfigDict(extra="forbid")
    dispatch_delay_minutes: float = 5.0
    default_service_duration_minutes: float = 120.0
    arrival_threshold_km: float = 0.1
    default_speed_kmh: float = 30.0
    history_limit: int = 0  # accepted samples kept per provider; 0 disables

    @field_validator("default_service_duration_minutes", "arrival_threshold_km", "default_speed_kmh")
    @classmethod
    def _positive(cls, v: float, info: ValidationInfo) -> float:
        if v <= 0:
            raise ValueError(f"{info.field_name} must be > 0")
        return v

    @field_validator("dispatch_delay_minutes", "history_limit")
    @classmethod
    def _nonneg(cls, v, info: ValidationInfo):
        if v < 0:
            raise ValueError(f"{info.field_name} must be >= 0")
        return v


# ----------------- DELIVERY ---------------------


class SyncDeliveryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["sync"] = "sync"


class QueuedDeliveryModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["queued"] = "queued"
    maxsize: int = 64  # per subscriber; oldest update dropped on overflow

    @field_validator("maxsize")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("maxsize must be >= 1")
        return v


DeliveryUnion = Annotated[SyncDeliveryModel | QueuedDeliveryModel, Field(discriminator="kind")]


# ----------------- NOTIFIER ---------------------


class LoggingNotifierModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    kind: Literal["logging"] = "logging"
    async_queue: bool = True
    queue_size: int = 1000


class MemoryNotifierModel(BaseModel):
    """Test stub that keeps every notification in memory."""

    model_config = ConfigDict(extra="forbid")
    kind: Literal["memory"] = "memory"
    async_queue: bool = False
    queue_size: int = 1000


NotifierUnion = Annotated[
    LoggingNotifierModel | MemoryNotifierModel, Field(discriminator="kind")
]


# ----------------- FEED SIMULATOR ---------------------


class FeedModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    seed: int = 123
    interval_s: float = 5.0
    speed_kmh: float = 30.0
    speed_jitter: float = 0.1  # relative std-dev of reported speed
    position_jitter_m: float = 0.0
    duplicate_p: float = 0.0
    reorder_p: float = 0.0

    @field_validator("duplicate_p", "reorder_p")
    @classmethod
    def _probability(cls, v: float, info: ValidationInfo) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"{info.field_name} must be in [0, 1]")
        return v

    @model_validator(mode="after")
    def _check_motion(self):
        if self.interval_s <= 0 or self.speed_kmh <= 0:
            raise ValueError("interval_s and speed_kmh must be positive")
        if self.speed_jitter < 0 or self.position_jitter_m < 0:
            raise ValueError("jitter must be >= 0")
        return self


# ------------------------------------------------------------------


class ServiceModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    name: str = "booktrack"
    run_id: str = "local"
    log: LogModel = LogModel()
    tracking: TrackingModel = TrackingModel()
    delivery: DeliveryUnion = Field(default_factory=SyncDeliveryModel)
    notifier: NotifierUnion = Field(default_factory=LoggingNotifierModel)
    feed: FeedModel = FeedModel()
