"""
monitor/session.py

Explicit session context for the sync core.
Builds each component with the slice of state it owns and handles every
mailbox event: transport messages, clock ticks and user interactions.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Coroutine, Optional

import structlog
from pydantic import BaseModel, ValidationError

from config import Settings
from monitor.constants import HOUR_MS
from monitor.dispatch import Dispatcher
from monitor.events import (
    AlarmReceived,
    AnnouncementReceived,
    AuthorizationRefreshed,
    AuthorizeResult,
    ClearAlarm,
    Connected,
    DataUpdate,
    Disconnected,
    Event,
    FocusRangeChanged,
    ForecastToggled,
    NotificationReceived,
    ResetToNow,
    RetroUpdate,
    SilenceAlarm,
    Tick,
    TickKind,
    WindowDragged,
)
from monitor.schemas import AlarmSessionState, Authorization, TimeWindow
from monitor.services.alarms import AlarmEngine, AlarmSink
from monitor.services.auth import (
    build_authorize_payload,
    fetch_server_settings,
    needs_refresh,
    request_authorization,
)
from monitor.services.capabilities import (
    DeltaCapability,
    DirectionCapability,
    ErrorCodeCapability,
    StalenessCapability,
    build_default_registry,
)
from monitor.services.clock import Ticker, now_ms
from monitor.services.display import CurrentReading, current_reading
from monitor.services.preferences import (
    SHOW_FORECAST_KEY,
    InMemoryPreferenceStore,
    PreferenceStore,
    toggle_forecast,
)
from monitor.services.reconciler import DataStore
from monitor.services.retro import RetroLoader
from monitor.services.time_window import (
    HeaderState,
    TimeWindowController,
    WindowRenderer,
)
from monitor.services.title import Title, compose_title, generate_status
from monitor.services.transport import Transport

logger = structlog.get_logger(__name__)


class ConnectionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    AUTHORIZED = "authorized"
    AUTH_REQUIRED = "auth_required"
    CRASHED = "crashed"


class StatusSnapshot(BaseModel):
    """Read-only view of the session for presentation layers."""

    connection: ConnectionStatus
    title: Title
    reading: CurrentReading
    staleness: str
    window: Optional[TimeWindow] = None
    in_retro_mode: bool = False
    display_mills: Optional[int] = None
    focus_range_ms: int
    alarm: AlarmSessionState
    snooze_options: list[int] = []
    retro_loaded_mills: int = 0
    devicestatus: list[dict[str, Any]] = []
    show_forecast: str = ""


class MonitorSession:
    """Owns the components and reacts to one event at a time."""

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        post: Callable[[Event], None],
        preferences: Optional[PreferenceStore] = None,
        sink: Optional[AlarmSink] = None,
        renderer: Optional[WindowRenderer] = None,
        clock: Callable[[], int] = now_ms,
        ticker: Optional[Ticker] = None,
        reauthenticate: Optional[Callable[[], None]] = None,
    ) -> None:
        self.settings = settings
        self._transport = transport
        self._post = post
        self._clock = clock
        self._ticker = ticker
        self._reauthenticate = reauthenticate
        self.preferences = preferences or InMemoryPreferenceStore()

        self.capabilities = build_default_registry(settings)
        self.store = DataStore(settings, self.capabilities)
        self.retro = RetroLoader(transport)
        self.window = TimeWindowController(
            self.store, settings, self.preferences, renderer
        )
        self.alarms = AlarmEngine(settings, self.store, transport, sink)

        self.connection = ConnectionStatus.CONNECTING
        self.authorization: Optional[Authorization] = None
        self.header: Optional[HeaderState] = None
        self.reading = CurrentReading(text="---")
        self.staleness = "current"
        self.title = Title(banner=settings.custom_title, window=settings.custom_title)
        self._initial_data = False
        self._tasks: set[asyncio.Task] = set()

    def register(self, dispatcher: Dispatcher) -> None:
        handlers: dict[type, Callable[[Any], Coroutine[Any, Any, None]]] = {
            DataUpdate: self.on_data_update,
            RetroUpdate: self.on_retro_update,
            NotificationReceived: self.on_notification,
            AnnouncementReceived: self.on_announcement,
            AlarmReceived: self.on_alarm,
            ClearAlarm: self.on_clear_alarm,
            Connected: self.on_connected,
            Disconnected: self.on_disconnected,
            AuthorizeResult: self.on_authorize_result,
            AuthorizationRefreshed: self.on_authorization_refreshed,
            Tick: self.on_tick,
            SilenceAlarm: self.on_silence,
            FocusRangeChanged: self.on_focus_range_changed,
            WindowDragged: self.on_window_dragged,
            ResetToNow: self.on_reset_to_now,
            ForecastToggled: self.on_forecast_toggled,
        }
        for event_type, handler in handlers.items():
            dispatcher.register(event_type, handler)

    async def bootstrap(self) -> Optional[dict]:
        """Fetch the server status and adopt any authorization it carries."""
        now = self._clock()
        status = await fetch_server_settings(self.settings, now)
        if status is None:
            return None

        authorized = status.get("authorized")
        if authorized:
            try:
                grant = Authorization.model_validate(authorized)
            except ValidationError as exc:
                logger.warning("authorization_malformed", error=str(exc))
            else:
                self.authorization = grant.model_copy(update={"lat": now})
        logger.info(
            "server_status_loaded",
            name=status.get("name"),
            version=status.get("version"),
            authorized=self.authorization is not None,
        )
        return status

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        """Run remote I/O off the mailbox; its result is posted back as an event."""
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "background_task_failed",
                task=task.get_coro().__qualname__,
                error=str(exc),
                exc_info=exc,
            )

    # ── Derived state ────────────────────────────────────────

    def _last_sgv_mills(self) -> Optional[int]:
        latest = self.store.latest_sgv
        return latest.mills if latest is not None else None

    def update_title(self, now: int) -> Title:
        staleness = self.capabilities.get(StalenessCapability)
        errors = self.capabilities.get(ErrorCodeCapability)
        latest = self.store.latest_sgv

        status = generate_status(
            staleness=staleness.check_status(self._last_sgv_mills(), now),
            time_ago=staleness.calc_display(self._last_sgv_mills(), now),
            latest=latest,
            delta=self.capabilities.get(DeltaCapability).calc(self.store.sgvs),
            direction=self.capabilities.get(DirectionCapability).info(latest),
            error_text=errors.to_display(latest.mgdl) if latest else "",
            units=self.settings.units,
        )
        announcement = self.alarms.check_announcement(now)
        self.title = compose_title(
            self.settings,
            status,
            alarm_message=self.alarms.state.message,
            alarm_in_progress=self.alarms.state.in_progress,
            time_ago_alarm=self.alarms.is_time_ago_alarm(),
            announcement_message=announcement.message,
            announcement_in_progress=announcement.in_progress,
        )
        return self.title

    async def update_time_ago(self, now: int) -> str:
        staleness = self.capabilities.get(StalenessCapability)
        last = self._last_sgv_mills()
        self.staleness = staleness.check_status(last, now)
        if self.staleness != "current":
            self.update_title(now)
        await self.alarms.check_time_ago(
            self.staleness, staleness.calc_display(last, now), now
        )
        return self.staleness

    def _update_reading(self, now: int) -> None:
        errors = self.capabilities.get(ErrorCodeCapability)
        header = self.header
        focus = header.focus_entry if header is not None else None
        if focus is None:
            self.reading = CurrentReading(text="---")
            return
        is_current = (
            self.capabilities.get(StalenessCapability).check_status(
                self._last_sgv_mills(), now
            )
            == "current"
        )
        self.reading = current_reading(
            focus.mgdl,
            self.settings,
            is_current=is_current,
            in_retro_mode=self.window.in_retro_mode(),
            alarming=self.alarms.alarming_now(),
            error_text=errors.to_display(focus.mgdl),
        )

    async def refresh(self, now: int, user_extent: Optional[TimeWindow] = None) -> None:
        """Brush pass followed by header, staleness and title recompute."""
        if user_extent is not None:
            self.header = self.window.drag(user_extent, now)
        else:
            self.header = self.window.brushed(now)
        self._update_reading(now)
        await self.update_time_ago(now)
        self.update_title(now)

    # ── Transport events ─────────────────────────────────────

    async def on_data_update(self, event: DataUpdate) -> None:
        now = self._clock()
        previous_latest = self._last_sgv_mills()
        self.store.apply_live_update(event.payload, now)

        if not self._initial_data:
            self._initial_data = True
            self.window.update_to_now(now, skip_brushing=True)
            await self.refresh(now)
        elif not self.window.in_retro_mode():
            await self.refresh(now)
        else:
            self.update_title(now)

        if self._ticker is not None and self._last_sgv_mills() != previous_latest:
            self._ticker.schedule_stale_check()

    async def on_retro_update(self, event: RetroUpdate) -> None:
        now = self._clock()
        self.retro.on_retro_update(event.payload, now)
        self.update_title(now)

    async def on_notification(self, event: NotificationReceived) -> None:
        self.alarms.on_notification(event.notify)

    async def on_announcement(self, event: AnnouncementReceived) -> None:
        now = self._clock()
        self.alarms.on_announcement(event.notify, now)
        self.update_title(now)

    async def on_alarm(self, event: AlarmReceived) -> None:
        now = self._clock()
        if self.alarms.on_alarm(event.notify, urgent=event.urgent):
            self._update_reading(now)
            self.update_title(now)

    async def on_clear_alarm(self, event: ClearAlarm) -> None:
        now = self._clock()
        if await self.alarms.on_clear_alarm(event.notify, now):
            await self.refresh(now)

    async def on_connected(self, event: Connected) -> None:
        self.connection = ConnectionStatus.CONNECTED
        payload = build_authorize_payload(self.settings, self.authorization)

        async def authorize() -> None:
            response = await self._transport.authorize(payload)
            self._post(AuthorizeResult(response))

        self._spawn(authorize())

    async def on_disconnected(self, event: Disconnected) -> None:
        self.connection = ConnectionStatus.CONNECTING

    async def on_authorize_result(self, event: AuthorizeResult) -> None:
        response = event.response
        if response is None:
            self.connection = ConnectionStatus.CRASHED
            logger.error("authorize_no_response")
            return
        if not response.get("read"):
            self.connection = ConnectionStatus.AUTH_REQUIRED
            logger.warning("authorize_denied", response=response)
            if self._reauthenticate is not None:
                self._reauthenticate()
            return
        self.connection = ConnectionStatus.AUTHORIZED
        logger.info("authorize_granted")

    async def on_authorization_refreshed(self, event: AuthorizationRefreshed) -> None:
        if event.authorization is not None:
            self.authorization = event.authorization
            logger.info("authorization_refreshed")

    # ── Clock ────────────────────────────────────────────────

    async def on_tick(self, event: Tick) -> None:
        now = self._clock()
        if event.kind is TickKind.STALE_CHECK:
            await self.update_time_ago(now)
            return

        if self._ticker is not None:
            self._ticker.schedule_minute_tick()

        if self.retro.reset_if_needed(now):
            self.window.on_retro_invalidated()

        await self.refresh(now)
        self._refresh_auth_if_needed(now)

    def _refresh_auth_if_needed(self, now: int) -> None:
        token = self.settings.token
        if not token or not needs_refresh(self.authorization, now):
            return
        logger.info("authorization_refreshing")

        async def refresh() -> None:
            authorization = await request_authorization(self.settings, token, now)
            self._post(AuthorizationRefreshed(authorization))

        self._spawn(refresh())

    # ── User interaction ─────────────────────────────────────

    async def on_silence(self, event: SilenceAlarm) -> None:
        now = self._clock()
        if await self.alarms.silence(now, event.silence_ms) is not None:
            await self.refresh(now)

    async def on_focus_range_changed(self, event: FocusRangeChanged) -> None:
        now = self._clock()
        self.window.set_focus_range_ms(event.hours * HOUR_MS)
        await self.refresh(now)

    async def on_window_dragged(self, event: WindowDragged) -> None:
        now = self._clock()
        extent = TimeWindow.from_mills(event.start_mills, event.end_mills)
        await self.refresh(now, user_extent=extent)
        if self.window.in_retro_mode():
            await self.retro.load_if_needed(now)

    async def on_reset_to_now(self, event: ResetToNow) -> None:
        now = self._clock()
        self.window.reset_to_now(now)
        await self.refresh(now)

    async def on_forecast_toggled(self, event: ForecastToggled) -> None:
        current = self.preferences.get(SHOW_FORECAST_KEY, self.settings.show_forecast)
        updated = toggle_forecast(current, event.forecast_type, event.checked)
        self.preferences.set(SHOW_FORECAST_KEY, updated)
        await self.refresh(self._clock())

    # ── Snapshot ─────────────────────────────────────────────

    def snapshot(self) -> StatusSnapshot:
        notify = self.alarms.state.current_notify
        return StatusSnapshot(
            connection=self.connection,
            title=self.title,
            reading=self.reading,
            staleness=self.staleness,
            window=self.window.window,
            in_retro_mode=self.window.in_retro_mode(),
            display_mills=self.header.display_mills if self.header else None,
            focus_range_ms=self.window.focus_range_ms,
            alarm=self.alarms.state,
            snooze_options=self.alarms.snooze_options(notify) if notify else [],
            retro_loaded_mills=self.retro.dataset.loaded_mills,
            devicestatus=[
                status.as_dict()
                for status in self.store.merged_device_statuses(self.retro.dataset)
            ],
            show_forecast=self.preferences.get(
                SHOW_FORECAST_KEY, self.settings.show_forecast
            ),
        )
