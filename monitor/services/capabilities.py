"""
monitor/services/capabilities.py

Typed capability registry for the derived readings the core needs:
- RawBGCapability: reconstruct a pre-calibration glucose estimate
- DeltaCapability: change over the last 5-minute bucket
- StalenessCapability: classify time since the last reading
- DirectionCapability: trend arrow for a reading
- ErrorCodeCapability: display text for CGM error codes

Each interface has one canonical implementation; lookups go through the
interface type, never through free-form names.
"""

from typing import Optional, Protocol, TypeVar, cast

import numpy as np
import structlog
from pydantic import BaseModel

from config import Settings
from monitor.constants import (
    DELTA_BUCKET_MS,
    DELTA_BUCKET_OFFSET_MS,
    DELTA_INTERPOLATE_GAP_MS,
    HOUR_MS,
    LOW_LIMIT_MGDL,
    MIN_MEANINGFUL_MGDL,
    MINUTE_MS,
    RAWBG_NOISE_THRESHOLD,
)
from monitor.schemas import CalibrationRecord, SensorRecord
from monitor.services.display import scale_bg

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ── Value objects ────────────────────────────────────────────


class DeltaInfo(BaseModel):
    mgdl: float
    scaled: float
    display: str
    interpolated: bool
    elapsed_mins: float


class TimeAgoDisplay(BaseModel):
    value: Optional[int] = None
    label: str


class DirectionInfo(BaseModel):
    value: Optional[str] = None
    label: str = ""


# ── Interfaces ───────────────────────────────────────────────


class RawBGCapability(Protocol):
    def is_enabled(self) -> bool: ...

    def show_raw_bgs(
        self, mgdl: float, noise: Optional[int], cal: Optional[CalibrationRecord]
    ) -> bool: ...

    def calc(self, record: SensorRecord, cal: CalibrationRecord) -> int: ...


class DeltaCapability(Protocol):
    def calc(self, sgvs: list[SensorRecord]) -> Optional[DeltaInfo]: ...


class StalenessCapability(Protocol):
    def check_status(self, last_mills: Optional[int], now: int) -> str: ...

    def calc_display(self, last_mills: Optional[int], now: int) -> TimeAgoDisplay: ...


class DirectionCapability(Protocol):
    def info(self, record: Optional[SensorRecord]) -> DirectionInfo: ...


class ErrorCodeCapability(Protocol):
    def to_display(self, code: float) -> str: ...


# ── Canonical implementations ────────────────────────────────


class RawBG:
    """Raw BG from unfiltered/filtered sensor counts and a calibration."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def is_enabled(self) -> bool:
        return self._settings.show_rawbg != "never"

    def show_raw_bgs(
        self, mgdl: float, noise: Optional[int], cal: Optional[CalibrationRecord]
    ) -> bool:
        if cal is None:
            return False
        display = self._settings.show_rawbg
        noisy = (noise or 0) >= RAWBG_NOISE_THRESHOLD or mgdl < LOW_LIMIT_MGDL
        return display == "always" or (display == "noise" and noisy)

    def calc(self, record: SensorRecord, cal: CalibrationRecord) -> int:
        unfiltered = record.unfiltered or 0
        filtered = record.filtered or 0
        if cal.slope == 0 or unfiltered == 0 or cal.scale == 0:
            return 0

        unscaled = cal.scale * (unfiltered - cal.intercept) / cal.slope
        if filtered == 0 or record.mgdl < LOW_LIMIT_MGDL:
            return int(round(unscaled))

        ratio = cal.scale * (filtered - cal.intercept) / cal.slope / record.mgdl
        if ratio == 0:
            return 0
        return int(round(unscaled / ratio))


class BucketDelta:
    """Difference between the mean of the newest bucket and the one before it."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def calc(self, sgvs: list[SensorRecord]) -> Optional[DeltaInfo]:
        if not sgvs:
            return None

        latest = sgvs[-1]
        cutoff = latest.mills - DELTA_BUCKET_OFFSET_MS
        recent = [r for r in sgvs if r.mills > cutoff]
        earlier = [r for r in sgvs if r.mills <= cutoff]
        if not earlier:
            return None

        anchor = earlier[-1]
        previous = [
            r for r in earlier if r.mills > anchor.mills - DELTA_BUCKET_OFFSET_MS
        ]
        if any(r.mgdl < MIN_MEANINGFUL_MGDL for r in recent + previous):
            return None

        mgdl = float(np.mean([r.mgdl for r in recent])) - float(
            np.mean([r.mgdl for r in previous])
        )
        elapsed = latest.mills - anchor.mills
        interpolated = elapsed > DELTA_INTERPOLATE_GAP_MS
        if interpolated:
            # Normalize to a 5-minute change over the gap
            mgdl = mgdl * DELTA_BUCKET_MS / elapsed

        scaled = scale_bg(mgdl, self._settings.units)
        if self._settings.units == "mmol":
            display = f"{scaled:+.1f}"
        else:
            display = f"{int(round(scaled)):+d}"

        return DeltaInfo(
            mgdl=mgdl,
            scaled=scaled,
            display=display,
            interpolated=interpolated,
            elapsed_mins=elapsed / MINUTE_MS,
        )


class TimeAgo:
    """Staleness classification against the configured warn/urgent minutes."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    def check_status(self, last_mills: Optional[int], now: int) -> str:
        if last_mills is None:
            return "current"

        age = now - last_mills
        if (
            self._settings.alarm_timeago_urgent
            and age > self._settings.alarm_timeago_urgent_mins * MINUTE_MS
        ):
            return "urgent"
        if (
            self._settings.alarm_timeago_warn
            and age > self._settings.alarm_timeago_warn_mins * MINUTE_MS
        ):
            return "warn"
        return "current"

    def calc_display(self, last_mills: Optional[int], now: int) -> TimeAgoDisplay:
        if last_mills is None:
            return TimeAgoDisplay(label="time ago")

        offset = now - last_mills
        if offset < -5 * MINUTE_MS:
            return TimeAgoDisplay(label="in the future")

        mins = max(offset, 0) // MINUTE_MS
        if mins < 2:
            return TimeAgoDisplay(value=1, label="min ago")
        if mins < 60:
            return TimeAgoDisplay(value=mins, label="mins ago")

        hours = offset // HOUR_MS
        if hours < 2:
            return TimeAgoDisplay(value=1, label="hour ago")
        if hours < 24:
            return TimeAgoDisplay(value=hours, label="hours ago")

        days = hours // 24
        if days < 2:
            return TimeAgoDisplay(value=1, label="day ago")
        return TimeAgoDisplay(value=days, label="days ago")


DIRECTION_ARROWS: dict[str, str] = {
    "NONE": "⇼",
    "DoubleUp": "⇈",
    "SingleUp": "↑",
    "FortyFiveUp": "↗",
    "Flat": "→",
    "FortyFiveDown": "↘",
    "SingleDown": "↓",
    "DoubleDown": "⇊",
    "NOT COMPUTABLE": "-",
    "RATE OUT OF RANGE": "⇕",
}


class Direction:
    def info(self, record: Optional[SensorRecord]) -> DirectionInfo:
        if record is None:
            return DirectionInfo()
        value = record.direction or "NONE"
        return DirectionInfo(value=value, label=DIRECTION_ARROWS.get(value, "-"))


# Dexcom-style error codes reported in place of a glucose value
ERROR_CODES: dict[int, str] = {
    0: "??0",
    1: "?SN",
    2: "??2",
    3: "?NA",
    5: "?NC",
    6: "?CD",
    9: "⌛",
    10: "???",
    12: "?RF",
}


class ErrorCodes:
    def to_display(self, code: float) -> str:
        return ERROR_CODES.get(int(code), "???")


# ── Registry ─────────────────────────────────────────────────


class CapabilityRegistry:
    """Maps a capability interface to its implementation."""

    def __init__(self) -> None:
        self._impls: dict[type, object] = {}

    def register(self, interface: type[T], impl: T) -> None:
        self._impls[interface] = impl
        logger.debug(
            "capability_registered",
            interface=interface.__name__,
            impl=type(impl).__name__,
        )

    def get(self, interface: type[T]) -> T:
        try:
            return cast(T, self._impls[interface])
        except KeyError:
            raise LookupError(f"no implementation for {interface.__name__}") from None


def build_default_registry(settings: Settings) -> CapabilityRegistry:
    """Register the canonical implementation of every capability."""
    registry = CapabilityRegistry()
    registry.register(RawBGCapability, RawBG(settings))
    registry.register(DeltaCapability, BucketDelta(settings))
    registry.register(StalenessCapability, TimeAgo(settings))
    registry.register(DirectionCapability, Direction())
    registry.register(ErrorCodeCapability, ErrorCodes())
    return registry
