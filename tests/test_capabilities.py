"""
tests/test_capabilities.py

Unit tests for monitor/services/capabilities.py.
Covers registry lookups and each canonical implementation.
"""

import pytest

from monitor.constants import HOUR_MS, MINUTE_MS
from monitor.schemas import CalibrationRecord, SensorRecord
from monitor.services.capabilities import (
    BucketDelta,
    CapabilityRegistry,
    DeltaCapability,
    Direction,
    ErrorCodes,
    RawBG,
    StalenessCapability,
    TimeAgo,
    build_default_registry,
)
from tests.fixtures import NOW_MILLS, build_settings, build_sgv, build_sgv_series


def _records(raw: list[dict]) -> list[SensorRecord]:
    return [SensorRecord.model_validate(r) for r in raw]


def test_registry_returns_registered_implementation() -> None:
    registry = build_default_registry(build_settings())
    assert isinstance(registry.get(StalenessCapability), TimeAgo)
    assert isinstance(registry.get(DeltaCapability), BucketDelta)


def test_registry_lookup_of_missing_capability_fails() -> None:
    with pytest.raises(LookupError):
        CapabilityRegistry().get(DeltaCapability)


# ── Staleness ────────────────────────────────────────────────


def test_staleness_levels() -> None:
    time_ago = TimeAgo(build_settings())
    assert time_ago.check_status(NOW_MILLS - 10 * MINUTE_MS, NOW_MILLS) == "current"
    assert time_ago.check_status(NOW_MILLS - 16 * MINUTE_MS, NOW_MILLS) == "warn"
    assert time_ago.check_status(NOW_MILLS - 31 * MINUTE_MS, NOW_MILLS) == "urgent"
    assert time_ago.check_status(None, NOW_MILLS) == "current"


def test_staleness_ignores_disabled_levels() -> None:
    time_ago = TimeAgo(build_settings(alarm_timeago_urgent=False))
    assert time_ago.check_status(NOW_MILLS - 31 * MINUTE_MS, NOW_MILLS) == "warn"


def test_time_ago_display_labels() -> None:
    time_ago = TimeAgo(build_settings())
    cases = [
        (30 * 1000, (1, "min ago")),
        (16 * MINUTE_MS, (16, "mins ago")),
        (90 * MINUTE_MS, (1, "hour ago")),
        (5 * HOUR_MS, (5, "hours ago")),
        (30 * HOUR_MS, (1, "day ago")),
        (72 * HOUR_MS, (3, "days ago")),
        (-10 * MINUTE_MS, (None, "in the future")),
    ]
    for age, (value, label) in cases:
        display = time_ago.calc_display(NOW_MILLS - age, NOW_MILLS)
        assert (display.value, display.label) == (value, label)


# ── Delta ────────────────────────────────────────────────────


def test_delta_between_consecutive_readings() -> None:
    delta = BucketDelta(build_settings()).calc(
        _records(build_sgv_series([100, 110]))
    )

    assert delta is not None
    assert delta.mgdl == 10
    assert delta.display == "+10"
    assert delta.interpolated is False


def test_delta_is_normalized_over_a_gap() -> None:
    delta = BucketDelta(build_settings()).calc(
        _records(
            [
                build_sgv(mills=NOW_MILLS - 10 * MINUTE_MS, mgdl=100),
                build_sgv(mills=NOW_MILLS, mgdl=120),
            ]
        )
    )

    assert delta is not None
    assert delta.interpolated is True
    assert delta.mgdl == 10
    assert delta.elapsed_mins == 10


def test_delta_in_mmol_has_one_decimal() -> None:
    delta = BucketDelta(build_settings(units="mmol")).calc(
        _records(build_sgv_series([108, 99]))
    )

    assert delta is not None
    assert delta.display == "-0.5"


def test_delta_needs_two_buckets_of_meaningful_values() -> None:
    calc = BucketDelta(build_settings()).calc
    assert calc([]) is None
    assert calc(_records(build_sgv_series([120]))) is None
    assert calc(_records(build_sgv_series([5, 120]))) is None


# ── Raw BG, direction, error codes ───────────────────────────


def test_raw_bg_visibility() -> None:
    cal = CalibrationRecord(mills=NOW_MILLS, slope=1000, intercept=0, scale=1)
    noise_only = RawBG(build_settings(show_rawbg="noise"))

    assert noise_only.show_raw_bgs(120, 3, cal) is True
    assert noise_only.show_raw_bgs(120, 1, cal) is False
    assert noise_only.show_raw_bgs(35, 1, cal) is True
    assert noise_only.show_raw_bgs(120, 3, None) is False
    assert RawBG(build_settings(show_rawbg="never")).is_enabled() is False


def test_raw_bg_without_filtered_value_is_unscaled() -> None:
    raw = RawBG(build_settings(show_rawbg="always"))
    record = SensorRecord.model_validate(build_sgv(mgdl=120, unfiltered=130000))
    cal = CalibrationRecord(mills=NOW_MILLS, slope=1000, intercept=0, scale=1)

    assert raw.calc(record, cal) == 130


def test_raw_bg_with_zero_slope_is_zero() -> None:
    raw = RawBG(build_settings(show_rawbg="always"))
    record = SensorRecord.model_validate(build_sgv(unfiltered=130000))
    assert raw.calc(record, CalibrationRecord(mills=NOW_MILLS, slope=0)) == 0


def test_direction_and_error_codes() -> None:
    record = SensorRecord.model_validate(build_sgv(direction="SingleUp"))
    assert Direction().info(record).label == "↑"
    assert Direction().info(None).label == ""
    assert ErrorCodes().to_display(6) == "?CD"
    assert ErrorCodes().to_display(4) == "???"
