"""
tests/test_display.py

Unit tests for monitor/services/display.py.
"""

from monitor.services.display import (
    current_reading,
    format_bg,
    scale_bg,
    sgv_to_color,
    sgv_to_colored_range,
)
from tests.fixtures import build_settings


def test_reading_above_high_threshold_is_urgent() -> None:
    settings = build_settings(bg_high=180, theme="colors")
    assert sgv_to_colored_range(250, settings) == "urgent"


def test_default_theme_has_no_band() -> None:
    settings = build_settings(bg_high=180, theme="default")
    assert sgv_to_colored_range(250, settings) == ""
    assert sgv_to_color(250, settings) == "grey"


def test_band_boundaries() -> None:
    settings = build_settings(theme="colors")
    assert sgv_to_colored_range(200, settings) == "warning"
    assert sgv_to_colored_range(120, settings) == "inrange"
    assert sgv_to_colored_range(70, settings) == "warning"
    assert sgv_to_colored_range(50, settings) == "urgent"


def test_in_range_is_only_highlighted_with_colors_theme() -> None:
    settings = build_settings(theme="bw")
    assert sgv_to_colored_range(120, settings) == ""
    assert sgv_to_color(120, settings) == "grey"


def test_mmol_scaling() -> None:
    assert scale_bg(180, "mmol") == 10.0
    assert scale_bg(180, "mg/dl") == 180
    assert format_bg(99, "mmol") == "5.5"
    assert format_bg(99.4, "mg/dl") == "99"


def test_current_reading_in_live_mode_gets_band() -> None:
    settings = build_settings(theme="colors", bg_high=180)
    reading = current_reading(
        250, settings, is_current=True, in_retro_mode=False, alarming=False
    )

    assert reading.text == "250"
    assert reading.band == "urgent"
    assert reading.is_current is True


def test_current_reading_in_retro_mode_has_no_band() -> None:
    settings = build_settings(theme="colors")
    reading = current_reading(
        250, settings, is_current=True, in_retro_mode=True, alarming=False
    )

    assert reading.band == ""
    assert reading.is_current is False


def test_current_reading_special_values() -> None:
    settings = build_settings()

    assert current_reading(None, settings, True, False, False).text == "---"
    assert current_reading(39, settings, True, False, False).text == "LOW"
    assert current_reading(420, settings, True, False, False).text == "HIGH"

    hourglass = current_reading(9, settings, True, False, False, error_text="⌛")
    assert hourglass.hourglass is True
    assert hourglass.text == ""

    error = current_reading(5, settings, True, False, False, error_text="?CD")
    assert error.text == "?CD"
    assert error.error_code is True
