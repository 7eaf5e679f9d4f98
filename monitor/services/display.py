"""
monitor/services/display.py

Glucose value presentation helpers.
- sgv_to_color / sgv_to_colored_range: band classification from thresholds
- scale_bg: mg/dL to the configured display unit
- current_reading: text and band for the focused reading
"""

from typing import Optional

from pydantic import BaseModel

from config import Settings
from monitor.constants import (
    HIGH_LIMIT_MGDL,
    HOURGLASS_CODE,
    LOW_LIMIT_MGDL,
    MGDL_PER_MMOL,
    MIN_MEANINGFUL_MGDL,
)


class CurrentReading(BaseModel):
    """What the status header shows for the focused reading."""

    text: str
    band: str = ""
    is_current: bool = False
    hourglass: bool = False
    error_code: bool = False
    at_limit: bool = False


def scale_bg(mgdl: float, units: str) -> float:
    """Convert mg/dL to mmol/L (one decimal) when the user prefers mmol."""
    if units == "mmol":
        return round(mgdl / MGDL_PER_MMOL, 1)
    return mgdl


def format_bg(mgdl: float, units: str) -> str:
    scaled = scale_bg(mgdl, units)
    if units == "mmol":
        return f"{scaled:.1f}"
    return str(int(round(scaled)))


def sgv_to_color(sgv: float, settings: Settings) -> str:
    thresholds = settings.thresholds
    if settings.theme == "default":
        return "grey"

    if sgv > thresholds.bg_high:
        return "red"
    if sgv > thresholds.bg_target_top:
        return "yellow"
    if (
        thresholds.bg_target_bottom <= sgv <= thresholds.bg_target_top
        and settings.theme == "colors"
    ):
        return "#4cff00"
    if sgv < thresholds.bg_low:
        return "red"
    if sgv < thresholds.bg_target_bottom:
        return "yellow"
    return "grey"


def sgv_to_colored_range(sgv: float, settings: Settings) -> str:
    """Band class for a reading: urgent, warning, inrange or empty."""
    thresholds = settings.thresholds
    if settings.theme == "default":
        return ""

    if sgv > thresholds.bg_high:
        return "urgent"
    if sgv > thresholds.bg_target_top:
        return "warning"
    if (
        thresholds.bg_target_bottom <= sgv <= thresholds.bg_target_top
        and settings.theme == "colors"
    ):
        return "inrange"
    if sgv < thresholds.bg_low:
        return "urgent"
    if sgv < thresholds.bg_target_bottom:
        return "warning"
    return ""


def current_reading(
    mgdl: Optional[float],
    settings: Settings,
    is_current: bool,
    in_retro_mode: bool,
    alarming: bool,
    error_text: str = "",
) -> CurrentReading:
    """
    Build the header reading for the focus point.

    A missing focus point renders as '---'. The band is only assigned to a
    live, current, non-alarming reading; alarms keep their own band.
    """
    if mgdl is None:
        return CurrentReading(text="---")

    if mgdl == HOURGLASS_CODE:
        text = ""
    elif mgdl < MIN_MEANINGFUL_MGDL:
        text = error_text
    elif mgdl < LOW_LIMIT_MGDL:
        text = "LOW"
    elif mgdl > HIGH_LIMIT_MGDL:
        text = "HIGH"
    else:
        text = format_bg(mgdl, settings.units)

    really_current = is_current and not in_retro_mode and not alarming
    band = sgv_to_colored_range(mgdl, settings) if really_current else ""

    return CurrentReading(
        text=text,
        band=band,
        is_current=alarming or really_current,
        hourglass=mgdl == HOURGLASS_CODE,
        error_code=mgdl < MIN_MEANINGFUL_MGDL,
        at_limit=mgdl == MIN_MEANINGFUL_MGDL or mgdl > HIGH_LIMIT_MGDL,
    )
