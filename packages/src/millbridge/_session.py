"""Session manager: token acquisition, expiry tracking and refresh.

The manager is the single writer of the session :class:`Credential`.
Readers (poll loop, command service) take :attr:`SessionManager.credential`
once per operation; because credentials are immutable and replaced
wholesale, a reader never observes a half-updated token pair.

Freshness policy (:meth:`SessionManager.ensure_fresh`), rules in order:

1. Never authenticated → ``EXPIRED``, no network call.
2. Access token expired (or a previous refresh failed) while the
   refresh window is open → exactly one refresh.  Success installs the
   new credential (``REFRESHED``, connection ``connected``); failure
   flags the credential ``REFRESH_FAILED`` (connection
   ``disconnected``) and the next tick tries again.
3. Refresh window lapsed → ``REFRESH_WINDOW_EXPIRED``: terminal, auth
   state ``not_authenticated``; only a new authorization recovers.
4. Otherwise → ``UNCHANGED``.

Timestamps are vendor epoch milliseconds.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from millbridge._api import MillApiPort
from millbridge._context import AppContext
from millbridge._errors import (
    ApiError,
    AuthError,
    MillBridgeError,
    RefreshError,
    RefreshWindowExpired,
)
from millbridge._lifecycle import AuthState, ConnectionState
from millbridge._models import Credential, CredentialStatus

logger = logging.getLogger(__name__)


class FreshnessOutcome(StrEnum):
    UNCHANGED = "unchanged"
    REFRESHED = "refreshed"
    EXPIRED = "expired"
    REFRESH_FAILED = "refresh_failed"
    REFRESH_WINDOW_EXPIRED = "refresh_window_expired"


_USABLE = frozenset({FreshnessOutcome.UNCHANGED, FreshnessOutcome.REFRESHED})
_STATE_CHANGING = frozenset(
    {
        FreshnessOutcome.REFRESHED,
        FreshnessOutcome.REFRESH_FAILED,
        FreshnessOutcome.REFRESH_WINDOW_EXPIRED,
    }
)


@dataclass(frozen=True, slots=True)
class FreshnessResult:
    """Outcome of one :meth:`SessionManager.ensure_fresh` call.

    ``credential`` is the credential the caller must use for the rest
    of the tick.  ``error`` carries the refresh or window-expiry error
    when there was one.
    """

    outcome: FreshnessOutcome
    credential: Credential
    error: MillBridgeError | None = None

    @property
    def usable(self) -> bool:
        """True when ``credential.access_token`` may be used for API calls."""
        return self.outcome in _USABLE

    @property
    def changed(self) -> bool:
        """True when the session state changed and must be persisted."""
        return self.outcome in _STATE_CHANGING


class SessionManager:
    """Owns the session credential and its lifecycle.

    Args:
        api: Vendor API port.
        ctx: Shared application context (lifecycle, clock).
        credential: Credential restored from storage, if any.
    """

    def __init__(
        self,
        api: MillApiPort,
        ctx: AppContext,
        credential: Credential | None = None,
    ) -> None:
        self._api = api
        self._ctx = ctx
        self._credential = credential if credential is not None else Credential()

    @property
    def credential(self) -> Credential:
        """The current credential (immutable; re-read per operation)."""
        return self._credential

    async def authorize(
        self, auth_code: str, username: str, password: str
    ) -> Credential:
        """Exchange an authorization code and account credentials for a session.

        Raises:
            AuthError: The vendor rejected the request or the response
                could not be decoded.
        """
        lifecycle = self._ctx.lifecycle
        try:
            token = await self._api.exchange_auth_code(auth_code, username, password)
        except ApiError as exc:
            lifecycle.set_auth_state(AuthState.NOT_AUTHENTICATED)
            lifecycle.set_connection_state(ConnectionState.DISCONNECTED)
            msg = f"Authorization failed: {exc}"
            raise AuthError(msg) from exc

        self._credential = token.to_credential()
        lifecycle.set_auth_state(AuthState.AUTHENTICATED)
        lifecycle.set_connection_state(ConnectionState.CONNECTED)
        logger.info(
            "Authorized; access token valid until %d, refresh window until %d",
            self._credential.expire_time,
            self._credential.refresh_expire_time,
        )
        return self._credential

    async def refresh(self, refresh_token: str) -> Credential:
        """Exchange *refresh_token* for a new credential.

        Does not install the result; :meth:`ensure_fresh` does.

        Raises:
            RefreshError: The vendor rejected the refresh.
        """
        try:
            token = await self._api.refresh_token(refresh_token)
        except ApiError as exc:
            msg = f"Token refresh failed: {exc}"
            raise RefreshError(msg) from exc
        return token.to_credential()

    async def ensure_fresh(
        self,
        credential: Credential | None = None,
        now: int | None = None,
    ) -> FreshnessResult:
        """Apply the freshness policy to *credential* at time *now*.

        Args:
            credential: Credential to check; defaults to the current one.
            now: Epoch milliseconds; defaults to the context clock.
        """
        cred = credential if credential is not None else self._credential
        now_ms = now if now is not None else self._ctx.clock.epoch_ms()
        lifecycle = self._ctx.lifecycle

        if cred.expire_time == 0 or cred.status is CredentialStatus.NEVER_AUTHENTICATED:
            logger.debug("No session established; skipping freshness check")
            return FreshnessResult(FreshnessOutcome.EXPIRED, cred)

        needs_refresh = (
            now_ms > cred.expire_time or cred.status is CredentialStatus.REFRESH_FAILED
        )
        if needs_refresh and now_ms >= cred.refresh_expire_time:
            return self._window_expired(cred, now_ms)

        if not needs_refresh:
            logger.debug(
                "Access token valid for another %d ms", cred.expire_time - now_ms
            )
            return FreshnessResult(FreshnessOutcome.UNCHANGED, cred)

        logger.info("Access token expired; refreshing")
        try:
            fresh = await self.refresh(cred.refresh_token)
        except RefreshError as exc:
            logger.error("%s", exc)
            self._credential = cred.mark_refresh_failed()
            lifecycle.set_connection_state(ConnectionState.DISCONNECTED)
            return FreshnessResult(
                FreshnessOutcome.REFRESH_FAILED, self._credential, error=exc
            )

        self._credential = fresh
        lifecycle.set_connection_state(ConnectionState.CONNECTED)
        lifecycle.set_auth_state(AuthState.AUTHENTICATED)
        logger.info("Token refreshed; access token valid until %d", fresh.expire_time)
        return FreshnessResult(FreshnessOutcome.REFRESHED, fresh)

    def logout(self) -> None:
        """Forget the session entirely."""
        self._credential = Credential()
        self._ctx.lifecycle.set_auth_state(AuthState.NOT_AUTHENTICATED)
        self._ctx.lifecycle.set_connection_state(ConnectionState.DISCONNECTED)
        logger.info("Session cleared")

    def _window_expired(self, cred: Credential, now_ms: int) -> FreshnessResult:
        lifecycle = self._ctx.lifecycle
        lifecycle.set_auth_state(AuthState.NOT_AUTHENTICATED)
        lifecycle.set_connection_state(ConnectionState.DISCONNECTED)
        error = RefreshWindowExpired(
            "Refresh token expired "
            f"{now_ms - cred.refresh_expire_time} ms ago; a new login is required"
        )
        logger.critical("%s", error)
        return FreshnessResult(
            FreshnessOutcome.REFRESH_WINDOW_EXPIRED, cred, error=error
        )
