"""
monitor/main.py

FastAPI application entry point for the monitor client.
Builds the sync session, connects the Socket.IO transport and starts the
mailbox and clock ticks for the lifetime of the app.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI

from config import settings
from monitor.dispatch import Dispatcher
from monitor.routers.interaction import router as interaction_router
from monitor.services.clock import Ticker
from monitor.services.transport import SocketIOTransport
from monitor.session import MonitorSession

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application lifecycle: startup and shutdown."""
    logger.info("monitor_starting", server_url=settings.server_url)

    dispatcher = Dispatcher()
    ticker = Ticker(dispatcher.post)
    transport = SocketIOTransport(settings.server_url, dispatcher.post)
    session = MonitorSession(
        settings,
        transport,
        dispatcher.post,
        ticker=ticker,
        reauthenticate=lambda: logger.warning(
            "reauthentication_requested", server_url=settings.server_url
        ),
    )
    session.register(dispatcher)

    app.state.dispatcher = dispatcher
    app.state.session = session

    await session.bootstrap()
    dispatcher.start()
    ticker.schedule_minute_tick()
    await transport.connect()

    yield

    logger.info("monitor_shutting_down")
    ticker.cancel_all()
    await transport.disconnect()
    await dispatcher.stop()


app = FastAPI(
    title="Glucose Monitor Client",
    description="Real-time CGM sync core: data, focus window and alarms",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(interaction_router)
