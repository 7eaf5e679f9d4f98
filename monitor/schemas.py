"""
monitor/schemas.py

Pydantic data models for the sync core.
- Inbound payloads: DataUpdatePayload, RetroUpdatePayload, Notify
- Derived state: Entry, DeviceStatus, RetroDataset, TimeWindow, AlarmRecord
- Outbound messages: AuthorizePayload, AckMessage, LoadRetroRequest
"""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Optional

import structlog
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
)

logger = structlog.get_logger(__name__)


class EntryType(str, Enum):
    SGV = "sgv"
    MBG = "mbg"
    RAWBG = "rawbg"


class Level(IntEnum):
    """Alarm severity levels shared with the server."""

    URGENT = 2
    WARN = 1
    INFO = 0
    LOW = -1
    LOWEST = -2
    NONE = -3

    @classmethod
    def to_display(cls, level: int) -> str:
        names = {
            cls.URGENT: "Urgent",
            cls.WARN: "Warning",
            cls.INFO: "Info",
            cls.LOW: "Low",
            cls.LOWEST: "Lowest",
            cls.NONE: "None",
        }
        return names.get(level, "Unknown")


class AudioClass(str, Enum):
    """Alert sound class; warning for regular alarms, urgent for urgent ones."""

    WARNING = "warning"
    URGENT = "urgent"

    @property
    def file(self) -> str:
        return "alarm2.mp3" if self is AudioClass.URGENT else "alarm.mp3"


def mills_to_datetime(mills: int) -> datetime:
    return datetime.fromtimestamp(mills / 1000, tz=timezone.utc)


def datetime_to_mills(value: datetime) -> int:
    return int(round(value.timestamp() * 1000))


# ── Raw inbound records ──────────────────────────────────────


class SensorRecord(BaseModel):
    """One sgv or mbg record as delivered by the server."""

    model_config = ConfigDict(extra="allow")

    mills: int
    mgdl: float = Field(validation_alias=AliasChoices("mgdl", "sgv"))
    direction: Optional[str] = None
    noise: Optional[int] = None
    filtered: Optional[float] = None
    unfiltered: Optional[float] = None
    device: Optional[str] = None


class CalibrationRecord(BaseModel):
    """Sensor calibration used for raw BG reconstruction."""

    model_config = ConfigDict(extra="allow")

    mills: int
    slope: float = 0
    intercept: float = 0
    scale: float = 1


class DeviceStatus(BaseModel):
    """Device status record; device-specific fields are kept as extras."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(alias="_id")
    mills: int

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        # Mongo ids may arrive as non-string scalars
        return str(value) if value is not None else value

    def as_dict(self) -> dict:
        return self.model_dump(by_alias=True)


def _as_list(value: Any, info: ValidationInfo) -> list[Any]:
    """Absent collections are empty; a collection of the wrong shape is dropped."""
    if value is None:
        return []
    if not isinstance(value, list):
        logger.warning(
            "collection_malformed",
            collection=info.field_name,
            received=type(value).__name__,
        )
        return []
    return value


class DataUpdatePayload(BaseModel):
    """Body of a `dataUpdate` event. Every collection is optional."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    sgvs: list[Any] = []
    mbgs: list[Any] = []
    cal: list[Any] = []
    devicestatus: list[Any] = []
    profiles: Optional[list[Any]] = None
    profile_treatments: list[Any] = Field(default=[], alias="profileTreatments")
    tempbasal_treatments: list[Any] = Field(default=[], alias="tempbasalTreatments")
    combobolus_treatments: list[Any] = Field(default=[], alias="combobolusTreatments")

    @field_validator(
        "sgvs",
        "mbgs",
        "cal",
        "devicestatus",
        "profile_treatments",
        "tempbasal_treatments",
        "combobolus_treatments",
        mode="before",
    )
    @classmethod
    def _absent_is_empty(cls, value: Any, info: ValidationInfo) -> list[Any]:
        return _as_list(value, info)

    @field_validator("profiles", mode="before")
    @classmethod
    def _profiles_or_none(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return None
        return _as_list(value, info) or None


class RetroUpdatePayload(BaseModel):
    """Body of a `retroUpdate` event."""

    model_config = ConfigDict(extra="allow")

    devicestatus: list[Any] = []

    @field_validator("devicestatus", mode="before")
    @classmethod
    def _absent_is_empty(cls, value: Any, info: ValidationInfo) -> list[Any]:
        return _as_list(value, info)


class Notify(BaseModel):
    """One alarm, announcement or notification event from the server."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    title: str = ""
    message: str = ""
    level: Optional[int] = None
    group: Optional[str] = None
    is_announcement: bool = Field(default=False, alias="isAnnouncement")
    timestamp: Optional[int] = None


# ── Derived state ────────────────────────────────────────────


class Entry(BaseModel):
    """Unified, display-ready glucose entry. Identity is (mills, type)."""

    model_config = ConfigDict(frozen=True)

    mills: int
    mgdl: float
    type: EntryType
    direction: Optional[str] = None
    noise: Optional[int] = None
    filtered: Optional[float] = None
    unfiltered: Optional[float] = None
    color: str = "grey"
    device: Optional[str] = None

    @property
    def identity(self) -> tuple[int, EntryType]:
        return (self.mills, self.type)

    @property
    def date(self) -> datetime:
        return mills_to_datetime(self.mills)


class RetroData(BaseModel):
    devicestatus: list[DeviceStatus] = []


class RetroDataset(BaseModel):
    """Lazily fetched backfill. Zero stamps mean never loaded / not loading."""

    loaded_mills: int = 0
    load_started_mills: int = 0
    data: Optional[RetroData] = None

    @property
    def is_loaded(self) -> bool:
        return self.loaded_mills > 0 and self.data is not None


class TimeWindow(BaseModel):
    """Focus interval shown by the chart."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @property
    def width_ms(self) -> int:
        return datetime_to_mills(self.end) - datetime_to_mills(self.start)

    @property
    def start_mills(self) -> int:
        return datetime_to_mills(self.start)

    @property
    def end_mills(self) -> int:
        return datetime_to_mills(self.end)

    @classmethod
    def from_mills(cls, start: int, end: int) -> "TimeWindow":
        return cls(start=mills_to_datetime(start), end=mills_to_datetime(end))


class AlarmRecord(BaseModel):
    """Per (level, group) acknowledgement bookkeeping."""

    level: Optional[int]
    group: Optional[str]
    last_ack_time: Optional[int] = None
    silence_time: Optional[int] = None

    @property
    def key(self) -> str:
        return f"{self.level}-{self.group}"

    def is_acknowledged(self, now: int) -> bool:
        """True while the snooze taken at last_ack_time is still running."""
        return now < (self.last_ack_time or 0) + (self.silence_time or 0)


class AlarmSessionState(BaseModel):
    """The single currently active alarm, if any."""

    in_progress: bool = False
    current_notify: Optional[Notify] = None
    message: Optional[str] = None
    audio_class: Optional[AudioClass] = None


class Announcement(BaseModel):
    notify: Notify
    received: int

    @property
    def text(self) -> str:
        message = self.notify.message
        return message if len(message) > 1 else self.notify.title


class Authorization(BaseModel):
    """Token grant returned by the server's authorization endpoint."""

    model_config = ConfigDict(extra="allow")

    token: str
    exp: int = 0
    iat: int = 0
    lat: int = 0  # local acquisition time (ms)


# ── Outbound messages ────────────────────────────────────────


class AuthorizePayload(BaseModel):
    client: str = "web"
    secret: Optional[str] = None
    token: Optional[str] = None
    history: int


class AckMessage(BaseModel):
    level: Optional[int]
    group: Optional[str]
    silence_time: int


class LoadRetroRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    loaded_mills: int = Field(alias="loadedMills")
