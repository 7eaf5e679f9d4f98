"""
monitor/events.py

Event types delivered through the single dispatch mailbox.
Transport messages, clock ticks and user interactions all arrive as one of
these and are handled strictly one at a time.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from monitor.schemas import Authorization


class TickKind(str, Enum):
    MINUTE = "minute"
    STALE_CHECK = "stale_check"


# ── Inbound transport events ─────────────────────────────────


@dataclass(frozen=True)
class DataUpdate:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetroUpdate:
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NotificationReceived:
    notify: dict[str, Any]


@dataclass(frozen=True)
class AnnouncementReceived:
    notify: dict[str, Any]


@dataclass(frozen=True)
class AlarmReceived:
    notify: dict[str, Any]
    urgent: bool = False


@dataclass(frozen=True)
class ClearAlarm:
    notify: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Connected:
    pass


@dataclass(frozen=True)
class Disconnected:
    pass


@dataclass(frozen=True)
class AuthorizeResult:
    """Server's answer to `authorize`; None when the server never answered."""

    response: Optional[dict[str, Any]]


@dataclass(frozen=True)
class AuthorizationRefreshed:
    authorization: Optional[Authorization]


# ── Clock ────────────────────────────────────────────────────


@dataclass(frozen=True)
class Tick:
    kind: TickKind


# ── User interaction ─────────────────────────────────────────


@dataclass(frozen=True)
class SilenceAlarm:
    silence_ms: Optional[int] = None


@dataclass(frozen=True)
class FocusRangeChanged:
    hours: int


@dataclass(frozen=True)
class WindowDragged:
    start_mills: int
    end_mills: int


@dataclass(frozen=True)
class ResetToNow:
    pass


@dataclass(frozen=True)
class ForecastToggled:
    forecast_type: str
    checked: bool


Event = (
    DataUpdate
    | RetroUpdate
    | NotificationReceived
    | AnnouncementReceived
    | AlarmReceived
    | ClearAlarm
    | Connected
    | Disconnected
    | AuthorizeResult
    | AuthorizationRefreshed
    | Tick
    | SilenceAlarm
    | FocusRangeChanged
    | WindowDragged
    | ResetToNow
    | ForecastToggled
)
