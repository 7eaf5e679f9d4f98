"""
monitor/services/retro.py

Lifecycle of the retrospective backfill dataset.
Loads are rate-limited and only issued when the held dataset is old;
the dataset is dropped once it exceeds its freshness horizon.
"""

from typing import Any

import structlog
from pydantic import ValidationError

from monitor.constants import (
    RETRO_FRESHNESS_MS,
    RETRO_LOAD_DEBOUNCE_MS,
    RETRO_RELOAD_AGE_MS,
)
from monitor.schemas import (
    DeviceStatus,
    LoadRetroRequest,
    RetroData,
    RetroDataset,
    RetroUpdatePayload,
)
from monitor.services.transport import Transport

logger = structlog.get_logger(__name__)


class RetroLoader:
    """Owns the RetroDataset and issues loadRetro requests."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport
        self.dataset = RetroDataset()

    def reset(self) -> None:
        self.dataset = RetroDataset()

    async def load_if_needed(self, now: int) -> bool:
        """
        Request a backfill when the held dataset is stale.

        Returns True if a loadRetro request was sent. A request started in the
        last 30 seconds suppresses a new one.
        """
        started = self.dataset.load_started_mills
        if now - started < RETRO_LOAD_DEBOUNCE_MS:
            logger.info("retro_already_loading", load_started_mills=started)
            return False

        if now - self.dataset.loaded_mills <= RETRO_RELOAD_AGE_MS:
            return False

        self.dataset = self.dataset.model_copy(update={"load_started_mills": now})
        logger.info(
            "retro_load_started",
            loaded_mills=self.dataset.loaded_mills,
            load_started_mills=now,
        )
        await self._transport.load_retro(
            LoadRetroRequest(loaded_mills=self.dataset.loaded_mills)
        )
        return True

    def on_retro_update(
        self, payload: RetroUpdatePayload | dict[str, Any], now: int
    ) -> None:
        if not isinstance(payload, RetroUpdatePayload):
            try:
                payload = RetroUpdatePayload.model_validate(payload or {})
            except ValidationError as exc:
                logger.warning("retro_update_malformed", error=str(exc))
                payload = RetroUpdatePayload()

        statuses: list[DeviceStatus] = []
        for raw in payload.devicestatus:
            try:
                statuses.append(DeviceStatus.model_validate(raw))
            except ValidationError as exc:
                logger.warning(
                    "record_skipped",
                    collection="retro_devicestatus",
                    error=str(exc),
                )

        self.dataset = RetroDataset(
            loaded_mills=now,
            load_started_mills=0,
            data=RetroData(devicestatus=statuses),
        )
        logger.info("retro_update_received", devicestatus=len(statuses))

    def reset_if_needed(self, now: int) -> bool:
        """
        Drop the dataset once it is older than the freshness horizon.

        A load that was requested but never answered within the same horizon
        is abandoned too, so RETRO mode never outlives its data request.
        """
        started = self.dataset.load_started_mills
        if started > 0 and now - started > RETRO_FRESHNESS_MS:
            self.reset()
            logger.warning("retro_load_abandoned", load_started_mills=started)
            return True

        loaded = self.dataset.loaded_mills
        if loaded > 0 and now - loaded > RETRO_FRESHNESS_MS:
            self.reset()
            logger.info("retro_cleared", loaded_mills=loaded)
            return True
        return False
