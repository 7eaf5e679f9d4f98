"""
tests/test_interaction.py

Tests for monitor/routers/interaction.py using FastAPI's TestClient.
The dispatcher is a mock so each route is checked for the event it posts.
"""

from unittest.mock import MagicMock

from fastapi import FastAPI
from fastapi.testclient import TestClient

from monitor.constants import MINUTE_MS
from monitor.events import (
    FocusRangeChanged,
    ForecastToggled,
    ResetToNow,
    SilenceAlarm,
    WindowDragged,
)
from monitor.routers.interaction import router
from monitor.session import MonitorSession
from tests.fixtures import NOW_MILLS, build_settings, build_transport


def _client(with_session: bool = True) -> tuple[TestClient, MagicMock]:
    app = FastAPI()
    app.include_router(router)
    dispatcher = MagicMock()
    if with_session:
        app.state.session = MonitorSession(
            build_settings(custom_title="CGM"), build_transport(), dispatcher.post
        )
        app.state.dispatcher = dispatcher
    return TestClient(app), dispatcher


def test_status_returns_snapshot() -> None:
    client, _ = _client()

    response = client.get("/status")

    assert response.status_code == 200
    body = response.json()
    assert body["connection"] == "connecting"
    assert body["title"]["banner"] == "CGM"
    assert body["reading"]["text"] == "---"
    assert body["in_retro_mode"] is False


def test_status_before_startup_is_unavailable() -> None:
    client, _ = _client(with_session=False)
    assert client.get("/status").status_code == 503


def test_silence_posts_event() -> None:
    client, dispatcher = _client()

    response = client.post("/alarm/silence", json={"silence_ms": 30 * MINUTE_MS})

    assert response.status_code == 202
    dispatcher.post.assert_called_once_with(SilenceAlarm(30 * MINUTE_MS))


def test_focus_range_is_validated() -> None:
    client, dispatcher = _client()

    assert client.post("/focus-range", json={"hours": 0}).status_code == 422
    assert client.post("/focus-range", json={"hours": 6}).status_code == 202
    dispatcher.post.assert_called_once_with(FocusRangeChanged(6))


def test_window_drag_requires_ordered_bounds() -> None:
    client, dispatcher = _client()
    start, end = NOW_MILLS - MINUTE_MS, NOW_MILLS

    bad = client.post("/window", json={"start_mills": end, "end_mills": start})
    good = client.post("/window", json={"start_mills": start, "end_mills": end})

    assert bad.status_code == 422
    assert good.status_code == 202
    dispatcher.post.assert_called_once_with(WindowDragged(start, end))


def test_reset_and_forecast_post_events() -> None:
    client, dispatcher = _client()

    client.post("/window/now")
    client.post("/forecast", json={"forecast_type": "cone", "checked": True})

    assert [c.args[0] for c in dispatcher.post.call_args_list] == [
        ResetToNow(),
        ForecastToggled("cone", True),
    ]
