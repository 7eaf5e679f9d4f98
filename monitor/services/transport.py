"""
monitor/services/transport.py

Socket.IO transport adapter.
Inbound server events are converted into mailbox events; outbound messages
(authorize, ack, loadRetro) are emitted with the server's argument shapes.
"""

from typing import Any, Callable, Optional, Protocol

import socketio
import structlog
from socketio import exceptions as sio_errors

from monitor.events import (
    AlarmReceived,
    AnnouncementReceived,
    ClearAlarm,
    Connected,
    DataUpdate,
    Disconnected,
    Event,
    NotificationReceived,
    RetroUpdate,
)
from monitor.schemas import AckMessage, AuthorizePayload, LoadRetroRequest

logger = structlog.get_logger(__name__)

# Seconds to wait for the server's authorize callback
_AUTHORIZE_TIMEOUT_S: float = 10.0


class Transport(Protocol):
    """Outbound half of the sync transport."""

    async def authorize(self, payload: AuthorizePayload) -> Optional[dict]: ...

    async def ack(self, message: AckMessage) -> None: ...

    async def load_retro(self, request: LoadRetroRequest) -> None: ...


def _as_dict(data: Any) -> dict:
    return data if isinstance(data, dict) else {}


class SocketIOTransport:
    """Transport over a python-socketio AsyncClient."""

    def __init__(
        self,
        url: str,
        post: Callable[[Event], None],
        client: Optional[socketio.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._post = post
        self._sio = client or socketio.AsyncClient(reconnection=True)
        self._register_handlers()

    def _register_handlers(self) -> None:
        sio = self._sio
        sio.on("connect", self._on_connect)
        sio.on("disconnect", self._on_disconnect)
        sio.on("dataUpdate", lambda data: self._post(DataUpdate(_as_dict(data))))
        sio.on("retroUpdate", lambda data: self._post(RetroUpdate(_as_dict(data))))
        sio.on(
            "notification",
            lambda notify: self._post(NotificationReceived(_as_dict(notify))),
        )
        sio.on(
            "announcement",
            lambda notify: self._post(AnnouncementReceived(_as_dict(notify))),
        )
        sio.on(
            "alarm",
            lambda notify: self._post(AlarmReceived(_as_dict(notify), urgent=False)),
        )
        sio.on(
            "urgent_alarm",
            lambda notify: self._post(AlarmReceived(_as_dict(notify), urgent=True)),
        )
        sio.on(
            "clear_alarm",
            lambda notify=None: self._post(ClearAlarm(_as_dict(notify))),
        )

    def _on_connect(self) -> None:
        logger.info("transport_connected", url=self._url)
        self._post(Connected())

    def _on_disconnect(self, *args: Any) -> None:
        logger.warning("transport_disconnected", url=self._url)
        self._post(Disconnected())

    async def connect(self) -> None:
        try:
            await self._sio.connect(self._url)
        except sio_errors.ConnectionError as exc:
            # Reconnection is left to the client; the display stays "connecting"
            logger.error("transport_connect_failed", url=self._url, error=str(exc))

    async def disconnect(self) -> None:
        await self._sio.disconnect()

    async def authorize(self, payload: AuthorizePayload) -> Optional[dict]:
        logger.info(
            "transport_authorizing", client=payload.client, history=payload.history
        )
        try:
            response = await self._sio.call(
                "authorize",
                payload.model_dump(),
                timeout=_AUTHORIZE_TIMEOUT_S,
            )
        except sio_errors.TimeoutError:
            logger.warning("transport_authorize_timeout", url=self._url)
            return None
        except sio_errors.SocketIOError as exc:
            logger.error("transport_authorize_failed", url=self._url, error=str(exc))
            return None
        return response if isinstance(response, dict) else None

    async def ack(self, message: AckMessage) -> None:
        try:
            await self._sio.emit(
                "ack", (message.level, message.group, message.silence_time)
            )
        except sio_errors.SocketIOError as exc:
            logger.warning("ack_send_failed", group=message.group, error=str(exc))
            return
        logger.info(
            "ack_sent",
            level=message.level,
            group=message.group,
            silence_time=message.silence_time,
        )

    async def load_retro(self, request: LoadRetroRequest) -> None:
        try:
            await self._sio.emit("loadRetro", request.model_dump(by_alias=True))
        except sio_errors.SocketIOError as exc:
            logger.warning("load_retro_send_failed", error=str(exc))
