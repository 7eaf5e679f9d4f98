"""
monitor/services/title.py

Pure derivation of the user-visible status text.
Priority: active alarm message, then active announcement, then the generated
status (staleness or value/delta/trend), then the configured custom title.
"""

from typing import Optional

from pydantic import BaseModel

from config import Settings
from monitor.constants import MIN_MEANINGFUL_MGDL
from monitor.schemas import SensorRecord
from monitor.services.capabilities import DeltaInfo, DirectionInfo, TimeAgoDisplay
from monitor.services.display import format_bg


class Title(BaseModel):
    banner: str
    window: str
    announcing: bool = False


def _word(value: Optional[object], sep: str = "") -> str:
    return f"{value} " if value else sep


def generate_status(
    staleness: str,
    time_ago: TimeAgoDisplay,
    latest: Optional[SensorRecord],
    delta: Optional[DeltaInfo],
    direction: DirectionInfo,
    error_text: str,
    units: str,
) -> str:
    """Status line: how stale the data is, or the current value with trend."""
    title = ""
    if staleness != "current":
        title = _word(time_ago.value) + _word(time_ago.label, " - ")
    elif latest is not None:
        if latest.mgdl < MIN_MEANINGFUL_MGDL:
            title = _word(error_text, " - ")
        elif delta is not None:
            title = (
                _word(format_bg(latest.mgdl, units))
                + _word(delta.display)
                + _word(direction.label)
            )
    return title.strip()


def compose_title(
    settings: Settings,
    status: str,
    alarm_message: Optional[str] = None,
    alarm_in_progress: bool = False,
    time_ago_alarm: bool = False,
    announcement_message: Optional[str] = None,
    announcement_in_progress: bool = False,
) -> Title:
    """Choose the banner and window title for the current state."""
    custom = settings.custom_title or "Nightscout"
    window: Optional[str] = None

    if alarm_message and alarm_in_progress:
        banner = alarm_message
        if not time_ago_alarm:
            window = f"{alarm_message}: {status}"
    elif announcement_in_progress and announcement_message:
        banner = announcement_message
        window = f"{announcement_message}: {status}"
    else:
        banner = custom

    return Title(
        banner=banner,
        window=window or status or custom,
        announcing=announcement_in_progress,
    )
