"""
monitor/services/time_window.py

Focus window ("brush") controller.
Keeps the observation window exactly focus_range_ms wide after every
automatic adjustment and tracks the LIVE / RETRO display mode as an
explicit state machine.
"""

from enum import Enum
from typing import Optional, Protocol

import structlog
from pydantic import BaseModel

from config import Settings
from monitor.constants import FOCUS_POINT_MAX_AGE_MS, HOUR_MS
from monitor.schemas import Entry, TimeWindow, datetime_to_mills
from monitor.services.preferences import FOCUS_HOURS_KEY, PreferenceStore
from monitor.services.reconciler import DataStore

logger = structlog.get_logger(__name__)


class WindowMode(str, Enum):
    LIVE = "live"
    RETRO = "retro"


class WindowTransition(str, Enum):
    DRAG_AWAY = "drag_away"
    DRAG_TO_LIVE_EDGE = "drag_to_live_edge"
    RESET_TO_NOW = "reset_to_now"
    RETRO_INVALIDATED = "retro_invalidated"


_TRANSITIONS: dict[tuple[WindowMode, WindowTransition], WindowMode] = {
    (WindowMode.LIVE, WindowTransition.DRAG_AWAY): WindowMode.RETRO,
    (WindowMode.LIVE, WindowTransition.DRAG_TO_LIVE_EDGE): WindowMode.LIVE,
    (WindowMode.LIVE, WindowTransition.RESET_TO_NOW): WindowMode.LIVE,
    (WindowMode.LIVE, WindowTransition.RETRO_INVALIDATED): WindowMode.LIVE,
    (WindowMode.RETRO, WindowTransition.DRAG_AWAY): WindowMode.RETRO,
    (WindowMode.RETRO, WindowTransition.DRAG_TO_LIVE_EDGE): WindowMode.LIVE,
    (WindowMode.RETRO, WindowTransition.RESET_TO_NOW): WindowMode.LIVE,
    (WindowMode.RETRO, WindowTransition.RETRO_INVALIDATED): WindowMode.LIVE,
}


class WindowRenderer(Protocol):
    """Rendering collaborator that displays the brush selection."""

    def move_brush(self, window: TimeWindow) -> None: ...


class HeaderState(BaseModel):
    """Header values derived from the window after a brush pass."""

    window: TimeWindow
    display_mills: int
    focus_entry: Optional[Entry] = None
    in_retro_mode: bool = False


class TimeWindowController:
    """Owns the focus window and the LIVE / RETRO mode."""

    def __init__(
        self,
        store: DataStore,
        settings: Settings,
        preferences: PreferenceStore,
        renderer: Optional[WindowRenderer] = None,
    ) -> None:
        self._store = store
        self._preferences = preferences
        self._renderer = renderer
        hours = preferences.get(FOCUS_HOURS_KEY, settings.focus_hours)
        self.focus_range_ms: int = int(hours * HOUR_MS)
        self.mode = WindowMode.LIVE
        self.window: Optional[TimeWindow] = None

    def in_retro_mode(self) -> bool:
        return self.mode is WindowMode.RETRO

    def _transition(self, transition: WindowTransition) -> WindowMode:
        previous = self.mode
        self.mode = _TRANSITIONS[(previous, transition)]
        if self.mode is not previous:
            logger.info(
                "window_mode_changed",
                transition=transition.value,
                previous=previous.value,
                mode=self.mode.value,
            )
        return self.mode

    def _move(self, window: TimeWindow) -> None:
        self.window = window
        if self._renderer is not None:
            self._renderer.move_brush(window)

    def _live_window(self, now: int) -> TimeWindow:
        end = datetime_to_mills(self._store.data_extent(now)[1])
        return TimeWindow.from_mills(end - self.focus_range_ms, end)

    # ── Operations ───────────────────────────────────────────

    def update_to_now(self, now: int, skip_brushing: bool = False) -> TimeWindow:
        """Anchor the window on the newest data and hand it to the renderer."""
        window = self._live_window(now)
        self._move(window)
        if not skip_brushing:
            self.brushed(now)
        return window

    def brushed(
        self, now: int, user_extent: Optional[TimeWindow] = None
    ) -> HeaderState:
        """
        Normalize the window and derive the header state.

        Without a user extent the window follows the newest data in LIVE mode
        and stays where it is in RETRO mode. A window that is not exactly
        focus_range_ms wide is re-anchored: on its end when extending the start
        would pass the end of the data, otherwise on its start.
        """
        extent_end = datetime_to_mills(self._store.data_extent(now)[1])

        if user_extent is not None:
            window = user_extent
        elif self.in_retro_mode() and self.window is not None:
            window = self.window
        else:
            window = self._live_window(now)

        if user_extent is None or window.width_ms != self.focus_range_ms:
            start, end = window.start_mills, window.end_mills
            if start + self.focus_range_ms > extent_end:
                end = min(end, extent_end)
                start = end - self.focus_range_ms
            else:
                end = start + self.focus_range_ms
            window = TimeWindow.from_mills(start, end)

        self._move(window)

        display_mills = window.end_mills if self.in_retro_mode() else now
        focus = self._store.last_sgv_before(window.end_mills)
        if focus is not None:
            if window.end_mills - focus.mills > FOCUS_POINT_MAX_AGE_MS:
                focus = None

        return HeaderState(
            window=window,
            display_mills=display_mills,
            focus_entry=focus,
            in_retro_mode=self.in_retro_mode(),
        )

    def drag(self, extent: TimeWindow, now: int) -> HeaderState:
        """Apply a user drag; leaving the live edge enters RETRO mode."""
        extent_end = datetime_to_mills(self._store.data_extent(now)[1])
        if extent.end_mills >= extent_end:
            self._transition(WindowTransition.DRAG_TO_LIVE_EDGE)
        else:
            self._transition(WindowTransition.DRAG_AWAY)
        return self.brushed(now, user_extent=extent)

    def reset_to_now(self, now: int) -> HeaderState:
        self._transition(WindowTransition.RESET_TO_NOW)
        self.update_to_now(now, skip_brushing=True)
        return self.brushed(now)

    def on_retro_invalidated(self) -> None:
        self._transition(WindowTransition.RETRO_INVALIDATED)

    def set_focus_range_ms(self, ms: int) -> None:
        """Change the window width and persist it; callers re-brush."""
        self.focus_range_ms = ms
        self._preferences.set(FOCUS_HOURS_KEY, ms / HOUR_MS)
        logger.info("focus_range_changed", focus_range_ms=ms)
