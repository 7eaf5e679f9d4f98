"""
monitor/services/alarms.py

Alarm lifecycle state machine.
- on_alarm: IDLE -> ALARM_ACTIVE for locally enabled alarm / urgent_alarm events
- stop_alarm: ALARM_ACTIVE -> IDLE on local silence or remote clear_alarm
- check_time_ago: staleness sub-machine raising and auto-clearing "Time Ago" alarms
- announcements and notifications run beside the alarm, not through it

Acknowledgements are recorded per (level, group) and only local ones are
sent back to the server.
"""

from typing import Any, Optional, Protocol

import structlog
from pydantic import BaseModel, ValidationError

from config import Settings
from monitor.constants import (
    ANNOUNCEMENT_WINDOW_MS,
    DEFAULT_SILENCE_MS,
    MINUTE_MS,
    TIME_AGO_GROUP,
    TIMEAGO_AUTOCLEAR_SILENCE_MS,
)
from monitor.schemas import (
    AckMessage,
    AlarmRecord,
    AlarmSessionState,
    Announcement,
    AudioClass,
    Level,
    Notify,
)
from monitor.services.capabilities import TimeAgoDisplay
from monitor.services.reconciler import DataStore
from monitor.services.transport import Transport

logger = structlog.get_logger(__name__)


class AlarmSink(Protocol):
    """Audio / visual collaborator driven by the engine."""

    def play(self, audio: AudioClass, notify: Notify, message: str) -> None: ...

    def stop(self) -> None: ...

    def visualize(self, notify: Notify, message: str) -> None: ...


class LoggingAlarmSink:
    """Sink used when no presentation layer is attached."""

    def play(self, audio: AudioClass, notify: Notify, message: str) -> None:
        logger.info("alarm_audio_started", audio=audio.file, message=message)

    def stop(self) -> None:
        logger.info("alarm_audio_stopped")

    def visualize(self, notify: Notify, message: str) -> None:
        logger.info("alarm_visualized", level=notify.level, message=message)


class AnnouncementStatus(BaseModel):
    in_progress: bool = False
    message: Optional[str] = None


def format_alarm_message(notify: Optional[Notify]) -> Optional[str]:
    if notify is None:
        return None
    if notify.is_announcement and len(notify.message) > 1:
        return f"{Level.to_display(notify.level)}: {notify.message}"
    return notify.title


def _parse_notify(raw: Notify | dict[str, Any] | None) -> Notify:
    if isinstance(raw, Notify):
        return raw
    try:
        return Notify.model_validate(raw or {})
    except ValidationError as exc:
        logger.warning("notify_malformed", error=str(exc))
        return Notify()


class AlarmEngine:
    """Owns the active alarm, the ack records and the announcement."""

    def __init__(
        self,
        settings: Settings,
        store: DataStore,
        transport: Transport,
        sink: Optional[AlarmSink] = None,
    ) -> None:
        self._settings = settings
        self._store = store
        self._transport = transport
        self._sink = sink or LoggingAlarmSink()
        self.records: dict[str, AlarmRecord] = {}
        self.state = AlarmSessionState()
        self.announcement: Optional[Announcement] = None
        self._previous_notify_timestamp: Optional[int] = None

    # ── Queries ──────────────────────────────────────────────

    def alarming_now(self) -> bool:
        return self.state.in_progress

    def get_record(self, level: Optional[int], group: Optional[str]) -> AlarmRecord:
        """Return the ack record for (level, group), creating it on first use."""
        key = f"{level}-{group}"
        record = self.records.get(key)
        if record is None:
            record = AlarmRecord(level=level, group=group)
            self.records[key] = record
        return record

    def is_time_ago_alarm(self) -> bool:
        notify = self.state.current_notify
        return notify is not None and notify.group == TIME_AGO_GROUP

    # With predicted alarms the latest reading may still be in range, so the
    # high/low side is judged against the opposite target boundary.
    def is_alarm_for_high(self) -> bool:
        latest = self._store.latest_sgv
        return latest is not None and latest.mgdl >= self._settings.bg_target_bottom

    def is_alarm_for_low(self) -> bool:
        latest = self._store.latest_sgv
        return latest is not None and latest.mgdl <= self._settings.bg_target_top

    def snooze_options(self, notify: Notify) -> list[int]:
        """Silence durations (ms) offered for this alarm."""
        urgent = notify.level == Level.URGENT
        if notify.group == TIME_AGO_GROUP:
            mins = (
                self._settings.alarm_timeago_urgent_snooze_mins
                if urgent
                else self._settings.alarm_timeago_warn_snooze_mins
            )
        else:
            mins = (
                self._settings.alarm_urgent_mins
                if urgent
                else self._settings.alarm_warn_mins
            )
        return [m * MINUTE_MS for m in mins]

    # ── Transitions ──────────────────────────────────────────

    def on_alarm(self, raw: Notify | dict[str, Any], urgent: bool = False) -> bool:
        """
        Handle an alarm or urgent_alarm event.

        Returns True if the alarm was raised; locally disabled alarms are
        dropped without any state change.
        """
        notify = _parse_notify(raw)
        settings = self._settings
        if urgent:
            enabled = (self.is_alarm_for_high() and settings.alarm_urgent_high) or (
                self.is_alarm_for_low() and settings.alarm_urgent_low
            )
            audio = AudioClass.URGENT
        else:
            enabled = (self.is_alarm_for_high() and settings.alarm_high) or (
                self.is_alarm_for_low() and settings.alarm_low
            )
            audio = AudioClass.WARNING

        if not enabled:
            latest = self._store.latest_sgv
            logger.info(
                "alarm_disabled_locally",
                urgent=urgent,
                latest_mgdl=latest.mgdl if latest else None,
                group=notify.group,
            )
            return False

        logger.info(
            "alarm_raised", urgent=urgent, level=notify.level, group=notify.group
        )
        self.generate_alarm(audio, notify)
        return True

    def generate_alarm(self, audio: AudioClass, notify: Notify) -> None:
        """
        Make notify the active alarm.

        Audio only starts when nothing is sounding yet. A re-trigger replaces
        the message but keeps the audio class already playing.
        """
        was_alarming = self.alarming_now()
        message = format_alarm_message(notify)

        if was_alarming:
            logger.info(
                "alarm_message_replaced",
                audio=self.state.audio_class.value if self.state.audio_class else None,
                incoming_audio=audio.value,
                group=notify.group,
            )
            audio = self.state.audio_class or audio

        self.state = AlarmSessionState(
            in_progress=True,
            current_notify=notify,
            message=message,
            audio_class=audio,
        )

        if not was_alarming:
            if self._settings.mute:
                logger.info("alarm_muted", message=message)
            else:
                self._sink.play(audio, notify, message or "")
            self._sink.visualize(notify, message or "")

    async def stop_alarm(
        self,
        is_client: bool,
        now: int,
        silence_time: Optional[int] = None,
        notify: Optional[Notify] = None,
    ) -> Optional[AckMessage]:
        """
        Clear the active alarm and record the acknowledgement.

        The ack record is chosen from the clearing notify when it names a level
        or group, else from the active alarm. Only client-initiated stops are
        acknowledged to the server.
        """
        silence = silence_time or DEFAULT_SILENCE_MS
        current = self.state.current_notify

        record: Optional[AlarmRecord] = None
        if notify is not None:
            if notify.level:
                record = self.get_record(notify.level, notify.group)
            elif notify.group:
                level = current.level if current is not None else notify.level
                record = self.get_record(level, notify.group)
            elif current is not None:
                record = self.get_record(current.level, current.group)
        elif current is not None:
            record = self.get_record(current.level, current.group)

        self.state = AlarmSessionState()
        self._sink.stop()

        if record is not None:
            record.last_ack_time = now
            record.silence_time = silence
            logger.info("alarm_acked", key=record.key, silence_time=silence)
        else:
            logger.info("no_alarm_to_ack", group=notify.group if notify else None)

        ack: Optional[AckMessage] = None
        if is_client and current is not None:
            ack = AckMessage(
                level=current.level, group=current.group, silence_time=silence
            )
            await self._transport.ack(ack)
        return ack

    async def on_clear_alarm(self, raw: Notify | dict[str, Any], now: int) -> bool:
        """Remote clear; a no-op while idle."""
        if not self.alarming_now():
            logger.debug("clear_alarm_ignored_idle")
            return False
        await self.stop_alarm(False, now, None, _parse_notify(raw))
        return True

    async def silence(
        self, now: int, silence_time: Optional[int] = None
    ) -> Optional[AckMessage]:
        """Local acknowledgement from the user's snooze choice."""
        if not self.alarming_now():
            return None
        return await self.stop_alarm(True, now, silence_time)

    # ── Staleness sub-machine ────────────────────────────────

    def _is_stale(self, status: str) -> bool:
        return (self._settings.alarm_timeago_warn and status == "warn") or (
            self._settings.alarm_timeago_urgent and status == "urgent"
        )

    async def check_time_ago(
        self, status: str, display: TimeAgoDisplay, now: int
    ) -> None:
        """Raise a stale-data alarm unless snoozed; clear it once data is current."""
        level = Level.URGENT if status == "urgent" else Level.WARN
        record = self.get_record(int(level), TIME_AGO_GROUP)

        if self._is_stale(status) and not record.is_acknowledged(now):
            value = str(display.value) if display.value else ""
            parts = ["Last data received", value, display.label]
            notify = Notify(
                title=" ".join(p for p in parts if p),
                level=int(level),
                group=TIME_AGO_GROUP,
            )
            audio = AudioClass.WARNING if status == "warn" else AudioClass.URGENT
            logger.info("time_ago_alarm_generated", status=status, key=record.key)
            self.generate_alarm(audio, notify)

        if self.alarming_now() and status == "current" and self.is_time_ago_alarm():
            logger.info("time_ago_alarm_auto_cleared")
            await self.stop_alarm(True, now, TIMEAGO_AUTOCLEAR_SILENCE_MS)

    # ── Announcements and notifications ──────────────────────

    def on_announcement(self, raw: Notify | dict[str, Any], now: int) -> None:
        self.announcement = Announcement(notify=_parse_notify(raw), received=now)
        logger.info("announcement_received", title=self.announcement.notify.title)

    def check_announcement(self, now: int) -> AnnouncementStatus:
        announcement = self.announcement
        if announcement is None:
            return AnnouncementStatus()

        if now - announcement.received < ANNOUNCEMENT_WINDOW_MS:
            return AnnouncementStatus(in_progress=True, message=announcement.text)

        self.announcement = None
        logger.info("announcement_cleared")
        return AnnouncementStatus()

    def on_notification(self, raw: Notify | dict[str, Any]) -> bool:
        """Forward a notification once per timestamp."""
        notify = _parse_notify(raw)
        if notify.timestamp and notify.timestamp != self._previous_notify_timestamp:
            self._previous_notify_timestamp = notify.timestamp
            self._sink.visualize(notify, f"{notify.title} {notify.message}")
            return True
        logger.info("notification_not_forwarded", timestamp=notify.timestamp)
        return False
