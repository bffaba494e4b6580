"""Shared runtime context for the bridge components.

:class:`AppContext` bundles the process-wide collaborators that the
session manager, poll loop and command service all need: settings,
lifecycle state, clock, state store and the error publisher.  It is
built once by :class:`~millbridge._app.BridgeApp` and passed in
explicitly; no component reaches for module-level globals.
"""

from __future__ import annotations

import asyncio
import contextlib

from millbridge._clock import ClockPort
from millbridge._errors import ErrorPublisher
from millbridge._lifecycle import Lifecycle
from millbridge._settings import Settings
from millbridge._state import StatePort


class AppContext:
    """Process-wide context handed to every bridge component.

    Args:
        settings: Application settings instance.
        lifecycle: Lifecycle state shared by all components.
        clock: Clock for expiry checks and uptime.
        store: Durable storage for credential and inventory.
        errors: Publisher for high-severity error events.
        topic_prefix: Root prefix for MQTT topics.
        shutdown_event: Shared event that signals graceful shutdown.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        lifecycle: Lifecycle,
        clock: ClockPort,
        store: StatePort,
        errors: ErrorPublisher,
        topic_prefix: str,
        shutdown_event: asyncio.Event | None = None,
    ) -> None:
        self._settings = settings
        self._lifecycle = lifecycle
        self._clock = clock
        self._store = store
        self._errors = errors
        self._topic_prefix = topic_prefix
        self._shutdown_event = (
            shutdown_event if shutdown_event is not None else asyncio.Event()
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def lifecycle(self) -> Lifecycle:
        return self._lifecycle

    @property
    def clock(self) -> ClockPort:
        return self._clock

    @property
    def store(self) -> StatePort:
        return self._store

    @property
    def errors(self) -> ErrorPublisher:
        return self._errors

    @property
    def topic_prefix(self) -> str:
        return self._topic_prefix

    @property
    def shutdown_event(self) -> asyncio.Event:
        return self._shutdown_event

    @property
    def shutdown_requested(self) -> bool:
        """True once graceful shutdown has been signalled."""
        return self._shutdown_event.is_set()

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*, returning early once shutdown is requested."""
        sleep_task = asyncio.ensure_future(asyncio.sleep(seconds))
        shutdown_task = asyncio.ensure_future(self._shutdown_event.wait())
        tasks = {sleep_task, shutdown_task}
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task
