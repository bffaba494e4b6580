"""Command service: inbound requests that reach the vendor or the lifecycle.

Operations
----------

- :meth:`CommandService.set_device_temperature` pushes a setpoint with
  the session's *current* access token and returns ``True`` only when
  the vendor reports no error.  No retries, and no refresh: an expired
  or refresh-failed token fails the command without a vendor call.
- :meth:`CommandService.login` authorizes a new session (obtaining an
  authorization code from the partner proxy when none is supplied) and
  resumes polling.
- :meth:`CommandService.logout` forgets the session and pauses polling.
- :meth:`CommandService.sync` triggers an immediate poll tick.

MQTT payloads
-------------

``{prefix}/auth/set``::

    {"action": "login", "username": "...", "password": "...", "auth_code": "..."}
    {"action": "logout"}

``{prefix}/thermostat/set``::

    {"device_id": 123, "temp": 21}

``{prefix}/system/set``::

    sync
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from millbridge._api import MillApiPort
from millbridge._context import AppContext
from millbridge._errors import (
    ApiError,
    AuthError,
    ControlError,
    InvalidCommandError,
)
from millbridge._facts import setpoint_report
from millbridge._lifecycle import AppState, ConfigState
from millbridge._models import Credential, CredentialStatus
from millbridge._mqtt import MessageCallback
from millbridge._poller import PollLoop
from millbridge._publisher import FactPublisher
from millbridge._session import SessionManager

logger = logging.getLogger(__name__)

AUTH_CHANNEL = "auth"
THERMOSTAT_CHANNEL = "thermostat"
SYSTEM_CHANNEL = "system"

# -------------------------------------------------------------------
# Payload schemas
# -------------------------------------------------------------------


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class LoginCommand(_Command):
    action: Literal["login"]
    username: str | None = None
    password: str | None = None
    auth_code: str | None = None


class LogoutCommand(_Command):
    action: Literal["logout"]


class SetpointCommand(_Command):
    device_id: int
    temp: Annotated[int, Field(ge=0)]


AuthCommand = Annotated[LoginCommand | LogoutCommand, Field(discriminator="action")]

_AUTH_ADAPTER: TypeAdapter[LoginCommand | LogoutCommand] = TypeAdapter(AuthCommand)


def parse_auth_command(payload: str) -> LoginCommand | LogoutCommand:
    try:
        return _AUTH_ADAPTER.validate_json(payload)
    except ValidationError as exc:
        msg = f"Invalid auth command: {exc.error_count()} validation error(s)"
        raise InvalidCommandError(msg) from exc


def parse_setpoint_command(payload: str) -> SetpointCommand:
    try:
        return SetpointCommand.model_validate_json(payload)
    except ValidationError as exc:
        msg = f"Invalid thermostat command: {exc.error_count()} validation error(s)"
        raise InvalidCommandError(msg) from exc


# -------------------------------------------------------------------
# Service
# -------------------------------------------------------------------


class CommandService:
    """Executes bus commands against the session, vendor and lifecycle.

    Args:
        ctx: Shared application context.
        session: Session manager; only its current credential is read
            for control calls.
        api: Vendor API port.
        poller: Poll loop (for sync requests).
        publisher: Publisher used to confirm accepted setpoints.
    """

    def __init__(
        self,
        ctx: AppContext,
        session: SessionManager,
        api: MillApiPort,
        poller: PollLoop,
        publisher: FactPublisher,
    ) -> None:
        self._ctx = ctx
        self._session = session
        self._api = api
        self._poller = poller
        self._publisher = publisher

    # -- Operations ---------------------------------------------------------

    async def set_device_temperature(self, device_id: int, new_temp: int) -> bool:
        """Push *new_temp* as the hold temperature of *device_id*.

        Returns:
            ``True`` only when the vendor accepted the change.  Failures
            are published as ``control_error`` and reported as ``False``.
        """
        credential = self._session.credential
        device = str(device_id)
        reason = self._unusable_reason(credential)
        if reason is not None:
            await self._ctx.errors.publish(
                ControlError(f"Cannot control device {device_id}: {reason}"),
                device=device,
            )
            return False

        try:
            await self._api.control_device(
                credential.access_token, device_id, new_temp
            )
        except ApiError as exc:
            msg = f"Setting device {device_id} to {new_temp} failed: {exc}"
            error = ControlError(msg)
            await self._ctx.errors.publish(error, device=device)
            return False

        logger.info("Device %d setpoint set to %d", device_id, new_temp)
        report = setpoint_report(device_id, new_temp)
        if report is not None:
            await self._publisher.publish_facts([report])
        return True

    async def login(
        self,
        *,
        username: str | None = None,
        password: str | None = None,
        auth_code: str | None = None,
    ) -> bool:
        """Authorize a new session and resume polling.

        Missing arguments fall back to the configured account.  When no
        authorization code is available, one is requested from the
        partner proxy.

        Returns:
            ``True`` once a session is established.  Authorization
            failures are published at ``CRITICAL`` and return ``False``.

        Raises:
            InvalidCommandError: No username or password is available.
        """
        mill = self._ctx.settings.mill
        user = username or mill.username
        secret = password or (
            mill.password.get_secret_value() if mill.password is not None else None
        )
        if not user or not secret:
            msg = "Login requires a username and password"
            raise InvalidCommandError(msg)

        try:
            code = auth_code or await self._resolve_auth_code()
            credential = await self._session.authorize(code, user, secret)
        except AuthError as exc:
            await self._ctx.errors.publish(exc, level=logging.CRITICAL)
            return False

        lifecycle = self._ctx.lifecycle
        self._ctx.store.save_credential(credential)
        lifecycle.set_config_state(ConfigState.CONFIGURED)
        if lifecycle.app_state in (AppState.STARTING, AppState.NOT_CONFIGURED):
            lifecycle.mark_running()
        return True

    async def logout(self) -> None:
        """Forget the session and pause polling."""
        self._session.logout()
        self._ctx.store.clear_credential()
        lifecycle = self._ctx.lifecycle
        lifecycle.set_config_state(ConfigState.NOT_CONFIGURED)
        if lifecycle.app_state is AppState.RUNNING:
            lifecycle.mark_not_configured()

    def sync(self) -> None:
        """Poll now instead of at the next interval."""
        self._poller.request_sync()

    # -- MQTT handlers ------------------------------------------------------

    async def handle_auth(self, topic: str, payload: str) -> None:
        command = parse_auth_command(payload)
        match command:
            case LoginCommand():
                await self.login(
                    username=command.username,
                    password=command.password,
                    auth_code=command.auth_code,
                )
            case LogoutCommand():
                await self.logout()

    async def handle_thermostat(self, topic: str, payload: str) -> None:
        command = parse_setpoint_command(payload)
        await self.set_device_temperature(command.device_id, command.temp)

    async def handle_system(self, topic: str, payload: str) -> None:
        if payload.strip().strip('"') != "sync":
            msg = f"Unknown system command {payload!r}"
            raise InvalidCommandError(msg)
        self.sync()

    def handlers(self) -> dict[str, MessageCallback]:
        """Command handlers keyed by topic channel."""
        return {
            AUTH_CHANNEL: self.handle_auth,
            THERMOSTAT_CHANNEL: self.handle_thermostat,
            SYSTEM_CHANNEL: self.handle_system,
        }

    # -- Internal -----------------------------------------------------------

    async def _resolve_auth_code(self) -> str:
        mill = self._ctx.settings.mill
        if mill.auth_code is not None:
            return mill.auth_code.get_secret_value()
        if not mill.partner_auth_url or mill.hub_token is None:
            msg = "No authorization code configured and no partner proxy to ask"
            raise AuthError(msg)
        try:
            return await self._api.request_auth_code(
                mill.partner_auth_url, mill.hub_token.get_secret_value()
            )
        except ApiError as exc:
            msg = f"Partner authorization-code request failed: {exc}"
            raise AuthError(msg) from exc

    def _unusable_reason(self, credential: Credential) -> str | None:
        """Why *credential* cannot authorize a control call, if it cannot."""
        if not credential.is_authenticated:
            return "no session"
        if credential.status is CredentialStatus.REFRESH_FAILED:
            return "token refresh failed"
        if self._ctx.clock.epoch_ms() > credential.expire_time:
            return "access token expired"
        return None
