"""
monitor/routers/interaction.py

Local interaction surface.
GET /status returns the current session snapshot; every POST is turned into
a mailbox event so user actions are handled in order with server events.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field, model_validator

from monitor.dispatch import Dispatcher
from monitor.events import (
    FocusRangeChanged,
    ForecastToggled,
    ResetToNow,
    SilenceAlarm,
    WindowDragged,
)
from monitor.session import MonitorSession, StatusSnapshot

logger = structlog.get_logger(__name__)

router = APIRouter()


class SilenceRequest(BaseModel):
    silence_ms: Optional[int] = Field(default=None, gt=0)


class FocusRangeRequest(BaseModel):
    hours: int = Field(ge=1, le=48)


class WindowRequest(BaseModel):
    start_mills: int
    end_mills: int

    @model_validator(mode="after")
    def _end_after_start(self) -> "WindowRequest":
        if self.end_mills <= self.start_mills:
            raise ValueError("end_mills must be after start_mills")
        return self


class ForecastRequest(BaseModel):
    forecast_type: str = Field(min_length=1)
    checked: bool


def _session(request: Request) -> MonitorSession:
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="session not started")
    return session


def _dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="session not started")
    return dispatcher


@router.get("/status")
async def get_status(request: Request) -> StatusSnapshot:
    return _session(request).snapshot()


@router.post("/alarm/silence", status_code=202)
async def silence_alarm(request: Request, body: SilenceRequest) -> dict[str, str]:
    """Acknowledge the active alarm for the chosen snooze duration."""
    session = _session(request)
    notify = session.alarms.state.current_notify
    if notify is not None and body.silence_ms is not None:
        options = session.alarms.snooze_options(notify)
        if body.silence_ms not in options:
            logger.warning(
                "silence_option_unlisted", silence_ms=body.silence_ms, options=options
            )
    _dispatcher(request).post(SilenceAlarm(body.silence_ms))
    return {"status": "queued"}


@router.post("/focus-range", status_code=202)
async def change_focus_range(
    request: Request, body: FocusRangeRequest
) -> dict[str, str]:
    _dispatcher(request).post(FocusRangeChanged(body.hours))
    return {"status": "queued"}


@router.post("/window", status_code=202)
async def drag_window(request: Request, body: WindowRequest) -> dict[str, str]:
    _dispatcher(request).post(WindowDragged(body.start_mills, body.end_mills))
    return {"status": "queued"}


@router.post("/window/now", status_code=202)
async def reset_window(request: Request) -> dict[str, str]:
    _dispatcher(request).post(ResetToNow())
    return {"status": "queued"}


@router.post("/forecast", status_code=202)
async def toggle_forecast(request: Request, body: ForecastRequest) -> dict[str, str]:
    _dispatcher(request).post(ForecastToggled(body.forecast_type, body.checked))
    return {"status": "queued"}
