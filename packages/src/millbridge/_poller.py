"""Poll loop: the process-lifetime driver of fetch → derive → publish.

States::

    PAUSED ──(app RUNNING)──────────────▶ POLLING
    POLLING ─(app leaves RUNNING)───────▶ PAUSED

While ``POLLING`` the loop runs one tick immediately and then one per
``mill.poll_minutes``.  A tick:

1. ``SessionManager.ensure_fresh``; persist the credential if it changed.
2. Stop here unless the credential is usable.
3. ``InventoryFetcher.fetch_all``; a :class:`FetchError` is published
   and ends the tick with nothing derived.
4. Derive facts, publish facts, availability and inventory.
5. Persist the inventory snapshot.

Any other exception escaping a tick is logged and published as an
``error`` event; the loop carries on with the next interval.

Polling runs as a task that is cancelled as soon as the app state
leaves ``RUNNING``, so a de-authorization stops network traffic at once
even when a vendor call is hanging.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from millbridge._context import AppContext
from millbridge._errors import FetchError, MillBridgeError
from millbridge._facts import derive_facts
from millbridge._inventory import BranchFailure, InventoryFetcher
from millbridge._lifecycle import AppState, ConnectionState
from millbridge._models import InventorySnapshot
from millbridge._publisher import FactPublisher
from millbridge._session import FreshnessOutcome, SessionManager

logger = logging.getLogger(__name__)

SECONDS_PER_MINUTE = 60


class PollState(StrEnum):
    PAUSED = "paused"
    POLLING = "polling"


@dataclass(frozen=True, slots=True)
class TickReport:
    """What one poll tick did."""

    freshness: FreshnessOutcome
    fetched: bool = False
    facts_published: int = 0
    failures: tuple[BranchFailure, ...] = field(default=())
    error: MillBridgeError | None = None


type TickCallback = Callable[[TickReport], Awaitable[None]]


class PollLoop:
    """Drives periodic polling for as long as the app is ``RUNNING``.

    Args:
        ctx: Shared application context.
        session: Session manager (token freshness).
        fetcher: Inventory fetcher.
        publisher: Fact publisher.
        on_tick: Optional coroutine called with every :class:`TickReport`.
    """

    def __init__(
        self,
        ctx: AppContext,
        session: SessionManager,
        fetcher: InventoryFetcher,
        publisher: FactPublisher,
        *,
        on_tick: TickCallback | None = None,
    ) -> None:
        self._ctx = ctx
        self._session = session
        self._fetcher = fetcher
        self._publisher = publisher
        self._on_tick = on_tick
        self._state = PollState.PAUSED
        self._wake = asyncio.Event()
        previous = ctx.store.load_inventory()
        self._snapshot = previous
        self._online: frozenset[int] = (
            previous.device_ids if previous is not None else frozenset()
        )

    @property
    def state(self) -> PollState:
        return self._state

    @property
    def snapshot(self) -> InventorySnapshot | None:
        """The most recent inventory (restored or fetched)."""
        return self._snapshot

    @property
    def online_device_ids(self) -> frozenset[int]:
        """Devices last published as online."""
        return self._online

    @property
    def interval(self) -> float:
        return self._ctx.settings.mill.poll_minutes * SECONDS_PER_MINUTE

    def request_sync(self) -> None:
        """Cut the current wait short and poll now (if polling)."""
        logger.info("Sync requested")
        self._wake.set()

    # -- Driver -------------------------------------------------------------

    async def run(self) -> None:
        """Alternate between ``PAUSED`` and ``POLLING`` until shutdown."""
        lifecycle = self._ctx.lifecycle
        while not self._ctx.shutdown_requested:
            if lifecycle.app_state is not AppState.RUNNING:
                logger.info("Polling paused (app state %s)", lifecycle.app_state)
                await _first_of(
                    lifecycle.wait_for_app_state(AppState.RUNNING),
                    self._ctx.shutdown_event.wait(),
                )
                continue

            self._state = PollState.POLLING
            logger.info("Polling every %.0f s", self.interval)
            try:
                await _first_of(
                    self._poll_forever(),
                    lifecycle.wait_while_app_state(AppState.RUNNING),
                    self._ctx.shutdown_event.wait(),
                )
            finally:
                self._state = PollState.PAUSED
        logger.info("Poll loop stopped")

    async def _poll_forever(self) -> None:
        while True:
            self._wake.clear()
            try:
                report = await self.tick()
                if self._on_tick is not None:
                    await self._on_tick(report)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Poll tick failed; retrying next interval")
                await self._ctx.errors.publish(exc, level=logging.ERROR)
            await _first_of(self._ctx.sleep(self.interval), self._wake.wait())

    # -- One tick -----------------------------------------------------------

    async def tick(self) -> TickReport:
        """Run one fetch → derive → publish cycle."""
        ctx = self._ctx
        freshness = await self._session.ensure_fresh()
        if freshness.changed:
            ctx.store.save_credential(freshness.credential)

        error = freshness.error
        match freshness.outcome:
            case FreshnessOutcome.REFRESH_WINDOW_EXPIRED:
                if error is not None:
                    await ctx.errors.publish(error, level=logging.CRITICAL)
                if ctx.lifecycle.app_state is AppState.RUNNING:
                    ctx.lifecycle.mark_not_configured()
                return TickReport(freshness.outcome, error=error)
            case FreshnessOutcome.REFRESH_FAILED:
                if error is not None:
                    await ctx.errors.publish(error)
                return TickReport(freshness.outcome, error=error)
            case FreshnessOutcome.EXPIRED:
                logger.warning("No session; skipping tick until a login")
                return TickReport(freshness.outcome)

        try:
            result = await self._fetcher.fetch_all(freshness.credential.access_token)
        except FetchError as exc:
            await ctx.errors.publish(exc)
            return TickReport(freshness.outcome, error=exc)

        ctx.lifecycle.set_connection_state(ConnectionState.CONNECTED)
        snapshot = result.snapshot
        sent = await self._publisher.publish_facts(derive_facts(snapshot.devices))
        self._online = await self._publisher.publish_availability(
            snapshot, self._online
        )
        await self._publisher.publish_inventory(snapshot)
        self._snapshot = snapshot
        ctx.store.save_inventory(snapshot)
        return TickReport(
            freshness.outcome,
            fetched=True,
            facts_published=sent,
            failures=result.failures,
        )


async def _first_of(*coros: Coroutine[Any, Any, Any]) -> None:
    """Await *coros* concurrently; return when the first finishes.

    The rest are cancelled.  An exception from the finished coroutine
    propagates.
    """
    tasks = [asyncio.ensure_future(coro) for coro in coros]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
    for task in done:
        task.result()
