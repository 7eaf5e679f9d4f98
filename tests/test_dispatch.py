"""
tests/test_dispatch.py

Unit tests for monitor/dispatch.py.
"""

import asyncio

import pytest

from monitor.dispatch import Dispatcher
from monitor.events import Connected, Disconnected, ResetToNow


@pytest.mark.asyncio
async def test_events_are_handled_in_arrival_order() -> None:
    dispatcher = Dispatcher()
    seen: list[str] = []

    async def on_connected(event: Connected) -> None:
        seen.append("connected")

    async def on_disconnected(event: Disconnected) -> None:
        seen.append("disconnected")

    dispatcher.register(Connected, on_connected)
    dispatcher.register(Disconnected, on_disconnected)
    dispatcher.post(Disconnected())
    dispatcher.post(Connected())
    dispatcher.post(Disconnected())

    await dispatcher.drain()

    assert seen == ["disconnected", "connected", "disconnected"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_the_mailbox() -> None:
    dispatcher = Dispatcher()
    seen: list[str] = []

    async def broken(event: Connected) -> None:
        raise RuntimeError("boom")

    async def on_disconnected(event: Disconnected) -> None:
        seen.append("disconnected")

    dispatcher.register(Connected, broken)
    dispatcher.register(Disconnected, on_disconnected)
    dispatcher.post(Connected())
    dispatcher.post(ResetToNow())
    dispatcher.post(Disconnected())

    await dispatcher.drain()

    assert seen == ["disconnected"]


@pytest.mark.asyncio
async def test_run_loop_consumes_posted_events() -> None:
    dispatcher = Dispatcher()
    handled = asyncio.Event()

    async def on_connected(event: Connected) -> None:
        handled.set()

    dispatcher.register(Connected, on_connected)
    dispatcher.start()
    dispatcher.post(Connected())

    await asyncio.wait_for(handled.wait(), timeout=1)
    await dispatcher.stop()


@pytest.mark.asyncio
async def test_run_loop_survives_failing_and_unhandled_events() -> None:
    dispatcher = Dispatcher()
    handled = asyncio.Event()

    async def broken(event: Connected) -> None:
        raise RuntimeError("boom")

    async def on_disconnected(event: Disconnected) -> None:
        handled.set()

    dispatcher.register(Connected, broken)
    dispatcher.register(Disconnected, on_disconnected)
    task = dispatcher.start()
    dispatcher.post(Connected())
    dispatcher.post(ResetToNow())
    dispatcher.post(Disconnected())

    await asyncio.wait_for(handled.wait(), timeout=1)
    assert not task.done()
    await dispatcher.stop()
