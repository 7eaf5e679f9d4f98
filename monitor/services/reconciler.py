"""
monitor/services/reconciler.py

In-memory data store for the live stream and its reconciliation with the
retrospective backfill.
- apply_live_update: idempotent merge of a dataUpdate batch
- merge_device_status: union of retro and live device statuses by _id
- derive_entries: unified, colour-banded, time-ordered Entry projection
- data_extent: [earliest, latest] of the current entries
"""

from datetime import datetime
from typing import Any, Iterable, Optional, TypeVar

import structlog
from pydantic import BaseModel, ValidationError

from config import Settings
from monitor.constants import MIN_MEANINGFUL_MGDL, RAWBG_OFFSET_MS, RETENTION_MS
from monitor.schemas import (
    CalibrationRecord,
    DataUpdatePayload,
    DeviceStatus,
    Entry,
    EntryType,
    RetroDataset,
    SensorRecord,
    mills_to_datetime,
)
from monitor.services.capabilities import CapabilityRegistry, RawBGCapability
from monitor.services.display import sgv_to_color

logger = structlog.get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def merge_device_status(
    retro: Optional[Iterable[DeviceStatus]],
    live: Iterable[DeviceStatus],
) -> list[DeviceStatus]:
    """
    Merge retro and live device statuses by _id.

    Shared ids get the live fields overlaid on the retro record; ids present
    on one side only are kept as they are. Inputs are not mutated.
    """
    live_list = list(live)
    if retro is None:
        return live_list

    live_by_id = {status.id: status for status in live_list}
    result: list[DeviceStatus] = []
    seen: set[str] = set()

    for status in retro:
        if status.id in seen:
            continue
        seen.add(status.id)
        match = live_by_id.get(status.id)
        if match is None:
            result.append(status)
        else:
            result.append(
                DeviceStatus.model_validate(status.as_dict() | match.as_dict())
            )

    for status in live_list:
        if status.id not in seen:
            seen.add(status.id)
            result.append(status)

    return result


def _parse_records(
    model: type[M], records: list[Any], collection: str
) -> list[M]:
    """Validate records one by one, skipping the malformed ones."""
    parsed: list[M] = []
    for raw in records:
        try:
            parsed.append(model.model_validate(raw))
        except ValidationError as exc:
            logger.warning(
                "record_skipped",
                collection=collection,
                error_count=exc.error_count(),
                error=str(exc),
            )
    return parsed


class DataStore:
    """Owns the live collections, the derived entries and the latest SGV."""

    def __init__(self, settings: Settings, capabilities: CapabilityRegistry) -> None:
        self._settings = settings
        self._capabilities = capabilities
        self._sgvs: dict[int, SensorRecord] = {}
        self._mbgs: dict[int, SensorRecord] = {}
        self._devicestatus: dict[str, DeviceStatus] = {}
        self.cal: Optional[CalibrationRecord] = None
        self.profiles: list[Any] = []
        self.profile_treatments: list[Any] = []
        self.tempbasal_treatments: list[Any] = []
        self.combobolus_treatments: list[Any] = []
        self.entries: list[Entry] = []
        self.latest_sgv: Optional[SensorRecord] = None
        self.last_updated: Optional[int] = None

    # ── Queries ──────────────────────────────────────────────

    @property
    def sgvs(self) -> list[SensorRecord]:
        return [self._sgvs[mills] for mills in sorted(self._sgvs)]

    @property
    def mbgs(self) -> list[SensorRecord]:
        return [self._mbgs[mills] for mills in sorted(self._mbgs)]

    @property
    def devicestatus(self) -> list[DeviceStatus]:
        return list(self._devicestatus.values())

    def merged_device_statuses(self, retro: RetroDataset) -> list[DeviceStatus]:
        """Device statuses handed to collaborators: live merged over retro."""
        if retro.data is None:
            return self.devicestatus
        return merge_device_status(retro.data.devicestatus, self.devicestatus)

    def data_extent(self, now: int) -> tuple[datetime, datetime]:
        if self.entries:
            return (self.entries[0].date, self.entries[-1].date)
        return (mills_to_datetime(now - RETENTION_MS), mills_to_datetime(now))

    def last_sgv_before(self, mills: int) -> Optional[Entry]:
        """Most recent sgv entry at or before the given time."""
        focus = None
        for entry in self.entries:
            if entry.type is EntryType.SGV and entry.mills <= mills:
                focus = entry
        return focus

    # ── Mutation ─────────────────────────────────────────────

    def apply_live_update(
        self, payload: DataUpdatePayload | dict, now: int
    ) -> None:
        """
        Merge a dataUpdate batch into the store.

        Records are keyed by identity so a redelivered batch is a no-op.
        Absent collections are treated as empty. Records older than the
        retention window are evicted, device statuses included.
        """
        if not isinstance(payload, DataUpdatePayload):
            try:
                payload = DataUpdatePayload.model_validate(payload or {})
            except ValidationError as exc:
                logger.warning("data_update_malformed", error=str(exc))
                payload = DataUpdatePayload()

        sgvs = _parse_records(SensorRecord, payload.sgvs, "sgvs")
        mbgs = _parse_records(SensorRecord, payload.mbgs, "mbgs")
        cals = _parse_records(CalibrationRecord, payload.cal, "cal")
        statuses = _parse_records(DeviceStatus, payload.devicestatus, "devicestatus")

        for record in sgvs:
            self._sgvs[record.mills] = record
        for record in mbgs:
            self._mbgs[record.mills] = record
        for status in statuses:
            self._devicestatus[status.id] = status
        if cals:
            self.cal = max(cals, key=lambda c: c.mills)

        if payload.profiles:
            self.profiles = list(payload.profiles)
        if payload.profile_treatments:
            self.profile_treatments = list(payload.profile_treatments)
        if payload.tempbasal_treatments:
            self.tempbasal_treatments = list(payload.tempbasal_treatments)
        if payload.combobolus_treatments:
            self.combobolus_treatments = list(payload.combobolus_treatments)

        self._evict(now)

        if self._sgvs:
            self.latest_sgv = self._sgvs[max(self._sgvs)]
            if sgvs:
                self.last_updated = now
        else:
            self.latest_sgv = None

        self.entries = self.derive_entries(now)

        logger.info(
            "data_update_applied",
            sgvs=len(sgvs),
            mbgs=len(mbgs),
            devicestatus=len(statuses),
            entries=len(self.entries),
            latest_mgdl=self.latest_sgv.mgdl if self.latest_sgv else None,
        )

    def _evict(self, now: int) -> None:
        too_old = now - RETENTION_MS
        self._sgvs = {m: r for m, r in self._sgvs.items() if m > too_old}
        self._mbgs = {m: r for m, r in self._mbgs.items() if m > too_old}
        self._devicestatus = {
            i: s for i, s in self._devicestatus.items() if s.mills > too_old
        }

    def derive_entries(self, now: int) -> list[Entry]:
        """Project sgv, mbg and optional raw BG records into sorted entries."""
        rawbg = self._capabilities.get(RawBGCapability)
        sgvs = self.sgvs

        raw_entries: list[Entry] = []
        if self.cal is not None and rawbg.is_enabled():
            for record in sgvs:
                if not rawbg.show_raw_bgs(record.mgdl, record.noise, self.cal):
                    continue
                value = rawbg.calc(record, self.cal)
                if value > 0:
                    raw_entries.append(
                        Entry(
                            mills=record.mills - RAWBG_OFFSET_MS,
                            mgdl=value,
                            color="white",
                            type=EntryType.RAWBG,
                        )
                    )

        sgv_entries = [
            Entry(
                mills=record.mills,
                mgdl=record.mgdl,
                direction=record.direction,
                color=sgv_to_color(record.mgdl, self._settings),
                type=EntryType.SGV,
                noise=record.noise,
                filtered=record.filtered,
                unfiltered=record.unfiltered,
            )
            for record in sgvs
        ]
        mbg_entries = [
            Entry(
                mills=record.mills,
                mgdl=record.mgdl,
                color="red",
                type=EntryType.MBG,
                device=record.device,
            )
            for record in self.mbgs
        ]

        too_old = now - RETENTION_MS
        entries = [
            entry.model_copy(update={"color": "transparent"})
            if entry.mgdl < MIN_MEANINGFUL_MGDL
            else entry
            for entry in raw_entries + sgv_entries + mbg_entries
            if entry.mills > too_old
        ]
        entries.sort(key=lambda entry: entry.mills)
        return entries
