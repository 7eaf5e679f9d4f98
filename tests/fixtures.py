"""
tests/fixtures.py

Shared test data and helper functions for constructing test payloads.
All tests must use these fixtures instead of hardcoding test values.
"""

from typing import Any, Optional
from unittest.mock import AsyncMock

from config import Settings
from monitor.constants import MINUTE_MS
from monitor.schemas import AudioClass, Notify
from monitor.services.capabilities import build_default_registry
from monitor.services.reconciler import DataStore

# 2024-06-15 13:30:00 UTC
NOW_MILLS: int = 1_718_458_200_000
READING_INTERVAL_MS: int = 5 * MINUTE_MS


def build_settings(**overrides: Any) -> Settings:
    """Build Settings with defaults, ignoring any local .env file."""
    return Settings(_env_file=None, **overrides)


def build_sgv(
    mills: int = NOW_MILLS,
    mgdl: float = 120,
    direction: str = "Flat",
    **extra: Any,
) -> dict[str, Any]:
    """Build one raw sgv record as the server sends it."""
    return {"mills": mills, "mgdl": mgdl, "direction": direction, **extra}


def build_sgv_series(
    values: list[float],
    end: int = NOW_MILLS,
    interval: int = READING_INTERVAL_MS,
) -> list[dict[str, Any]]:
    """Readings spaced `interval` apart, the last one at `end`."""
    count = len(values)
    return [
        build_sgv(mills=end - (count - 1 - i) * interval, mgdl=value)
        for i, value in enumerate(values)
    ]


def build_mbg(mills: int = NOW_MILLS, mgdl: float = 110) -> dict[str, Any]:
    return {"mills": mills, "mgdl": mgdl, "device": "meter"}


def build_cal(
    mills: int = NOW_MILLS, slope: float = 1000, intercept: float = 0, scale: float = 1
) -> dict[str, Any]:
    return {"mills": mills, "slope": slope, "intercept": intercept, "scale": scale}


def build_devicestatus(
    status_id: str = "ds_001", mills: int = NOW_MILLS, **extra: Any
) -> dict[str, Any]:
    return {"_id": status_id, "mills": mills, **extra}


def build_data_update(
    sgvs: Optional[list[dict[str, Any]]] = None,
    mbgs: Optional[list[dict[str, Any]]] = None,
    cal: Optional[list[dict[str, Any]]] = None,
    devicestatus: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """Build a dataUpdate payload; omitted collections are left out entirely."""
    payload: dict[str, Any] = {}
    if sgvs is not None:
        payload["sgvs"] = sgvs
    if mbgs is not None:
        payload["mbgs"] = mbgs
    if cal is not None:
        payload["cal"] = cal
    if devicestatus is not None:
        payload["devicestatus"] = devicestatus
    return payload


def build_notify(
    title: str = "Warning, LOW",
    level: Optional[int] = 1,
    group: Optional[str] = "default",
    message: str = "BG Now: 70 mg/dl",
    timestamp: Optional[int] = None,
    is_announcement: bool = False,
) -> dict[str, Any]:
    """Build a raw alarm / notification body."""
    return {
        "title": title,
        "level": level,
        "group": group,
        "message": message,
        "timestamp": timestamp,
        "isAnnouncement": is_announcement,
    }


def build_store(settings: Optional[Settings] = None) -> DataStore:
    settings = settings or build_settings()
    return DataStore(settings, build_default_registry(settings))


def build_store_with_latest(
    mgdl: float, settings: Optional[Settings] = None, now: int = NOW_MILLS
) -> DataStore:
    """DataStore holding a short series whose latest reading is `mgdl`."""
    store = build_store(settings)
    store.apply_live_update(
        build_data_update(sgvs=build_sgv_series([mgdl + 5, mgdl + 2, mgdl], end=now)),
        now,
    )
    return store


def build_transport(authorize_response: Optional[dict] = None) -> AsyncMock:
    """Transport double; every outbound call is an AsyncMock."""
    transport = AsyncMock()
    transport.authorize.return_value = authorize_response
    return transport


class RecordingSink:
    """AlarmSink that records what the engine asked it to do."""

    def __init__(self) -> None:
        self.played: list[tuple[AudioClass, str]] = []
        self.visualized: list[str] = []
        self.stops: int = 0

    def play(self, audio: AudioClass, notify: Notify, message: str) -> None:
        self.played.append((audio, message))

    def stop(self) -> None:
        self.stops += 1

    def visualize(self, notify: Notify, message: str) -> None:
        self.visualized.append(message)


class RecordingRenderer:
    def __init__(self) -> None:
        self.moves: list[Any] = []

    def move_brush(self, window: Any) -> None:
        self.moves.append(window)
