"""Application lifecycle state.

Four independent dimensions are tracked, each as an enum:

* :class:`AppState` — drives the poll loop (``RUNNING`` polls,
  anything else pauses it).
* :class:`ConnectionState` — whether the last vendor session operation
  succeeded.
* :class:`AuthState` — whether the bridge holds a usable session.
* :class:`ConfigState` — whether account credentials are configured.

Only :class:`AppState` has transition rules; the other dimensions are
plain status flags.  Transitions are synchronous so they can be made
from any coroutine; waiters are woken through a per-change
:class:`asyncio.Event`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum

logger = logging.getLogger(__name__)


class AppState(StrEnum):
    STARTING = "starting"
    NOT_CONFIGURED = "not_configured"
    RUNNING = "running"
    STOPPING = "stopping"


class ConnectionState(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class AuthState(StrEnum):
    AUTHENTICATED = "authenticated"
    NOT_AUTHENTICATED = "not_authenticated"


class ConfigState(StrEnum):
    CONFIGURED = "configured"
    NOT_CONFIGURED = "not_configured"


_ALLOWED: dict[AppState, frozenset[AppState]] = {
    AppState.STARTING: frozenset(
        {AppState.RUNNING, AppState.NOT_CONFIGURED, AppState.STOPPING}
    ),
    AppState.NOT_CONFIGURED: frozenset({AppState.RUNNING, AppState.STOPPING}),
    AppState.RUNNING: frozenset({AppState.NOT_CONFIGURED, AppState.STOPPING}),
    AppState.STOPPING: frozenset(),
}


@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    """Point-in-time view of all lifecycle dimensions."""

    app: AppState
    connection: ConnectionState
    auth: AuthState
    config: ConfigState

    def to_dict(self) -> dict[str, str]:
        return {
            "app": self.app.value,
            "connection": self.connection.value,
            "auth": self.auth.value,
            "config": self.config.value,
        }


class Lifecycle:
    """Process-wide lifecycle state with awaitable transitions."""

    def __init__(self) -> None:
        self._app = AppState.STARTING
        self._connection = ConnectionState.DISCONNECTED
        self._auth = AuthState.NOT_AUTHENTICATED
        self._config = ConfigState.NOT_CONFIGURED
        self._changed = asyncio.Event()

    # -- Read access --------------------------------------------------------

    @property
    def app_state(self) -> AppState:
        return self._app

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection

    @property
    def auth_state(self) -> AuthState:
        return self._auth

    @property
    def config_state(self) -> ConfigState:
        return self._config

    def snapshot(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(
            app=self._app,
            connection=self._connection,
            auth=self._auth,
            config=self._config,
        )

    # -- App state transitions ---------------------------------------------

    def mark_running(self) -> None:
        """Enter ``RUNNING``; the poll loop resumes."""
        self._transition(AppState.RUNNING)

    def mark_not_configured(self) -> None:
        """Enter ``NOT_CONFIGURED``; the poll loop pauses."""
        self._transition(AppState.NOT_CONFIGURED)

    def mark_stopping(self) -> None:
        """Enter the terminal ``STOPPING`` state."""
        self._transition(AppState.STOPPING)

    def _transition(self, target: AppState) -> None:
        if target is self._app:
            return
        if target not in _ALLOWED[self._app]:
            msg = f"Invalid app state transition {self._app} -> {target}"
            raise ValueError(msg)
        logger.info("App state %s -> %s", self._app, target)
        self._app = target
        self._notify()

    # -- Status flags -------------------------------------------------------

    def set_connection_state(self, state: ConnectionState) -> None:
        if state is not self._connection:
            logger.info("Connection state -> %s", state)
            self._connection = state
            self._notify()

    def set_auth_state(self, state: AuthState) -> None:
        if state is not self._auth:
            logger.info("Auth state -> %s", state)
            self._auth = state
            self._notify()

    def set_config_state(self, state: ConfigState) -> None:
        if state is not self._config:
            self._config = state
            self._notify()

    # -- Waiting ------------------------------------------------------------

    async def wait_for_app_state(self, state: AppState) -> None:
        """Return once the app state equals *state*."""
        while self._app is not state:
            await self._changed.wait()

    async def wait_while_app_state(self, state: AppState) -> None:
        """Return once the app state differs from *state*."""
        while self._app is state:
            await self._changed.wait()

    def _notify(self) -> None:
        # Wake current waiters, then arm a fresh event for the next change.
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()
