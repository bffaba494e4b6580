"""Error taxonomy and structured error publication.

Exceptions
----------

All bridge errors derive from :class:`MillBridgeError`::

    MillBridgeError
    ├── ApiError               ← one vendor call failed (HTTP / decode / errorCode)
    ├── AuthError              ← authorization-code exchange rejected
    ├── RefreshError           ← refresh call rejected
    ├── RefreshWindowExpired   ← refresh token itself lapsed (terminal)
    ├── FetchError             ← top-level home listing failed (aborts a tick)
    ├── ControlError           ← setpoint push rejected or network failure
    └── InvalidCommandError    ← malformed inbound bus command

Partial failures of the inventory walk are *not* exceptions; they are
recorded as :class:`~millbridge._inventory.BranchFailure` values.

Publication
-----------

:class:`ErrorPublisher` converts exceptions into structured JSON
payloads on ``{prefix}/error``::

    {
        "error_type": "refresh_window_expired",
        "message": "Human-readable error description",
        "device": "123456" | null,
        "timestamp": "2026-02-14T12:34:56+00:00",
        "details": {}
    }

Errors are events, not state: **not retained**, QoS 1, and
fire-and-forget (publication failures are logged, never propagated).
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime

from millbridge._mqtt import MqttPort

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class MillBridgeError(Exception):
    """Base class for all bridge errors."""


class ApiError(MillBridgeError):
    """A single vendor API call failed.

    Attributes:
        status_code: HTTP status when the server answered, else ``None``.
        error_code: Vendor ``errorCode`` from the envelope, when decoded.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class AuthError(MillBridgeError):
    """The vendor rejected the authorization code or account credentials."""


class RefreshError(MillBridgeError):
    """The vendor rejected a token refresh."""


class RefreshWindowExpired(MillBridgeError):
    """The refresh token has lapsed; only a new login can recover."""


class FetchError(MillBridgeError):
    """The inventory walk could not start (home listing failed)."""


class ControlError(MillBridgeError):
    """A device control request failed."""


class InvalidCommandError(MillBridgeError):
    """An inbound command payload could not be interpreted."""


DEFAULT_ERROR_TYPES: dict[type[Exception], str] = {
    ApiError: "api_error",
    AuthError: "auth_error",
    RefreshError: "refresh_error",
    RefreshWindowExpired: "refresh_window_expired",
    FetchError: "fetch_error",
    ControlError: "control_error",
    InvalidCommandError: "invalid_command",
}

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ErrorPayload:
    """Immutable structured error payload."""

    error_type: str
    message: str
    device: str | None
    timestamp: str
    details: dict[str, object] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise to a JSON string."""
        return json.dumps(asdict(self))


def build_error_payload(
    error: Exception,
    *,
    error_type_map: dict[type[Exception], str] | None = None,
    device: str | None = None,
    details: dict[str, object] | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ErrorPayload:
    """Convert an exception into a structured :class:`ErrorPayload`.

    Looks up the exact class of the exception; subclasses are not
    matched.  Unmapped types fall back to ``"error"``.
    """
    resolved_map = error_type_map if error_type_map is not None else DEFAULT_ERROR_TYPES
    error_type = resolved_map.get(type(error), "error")
    now = clock() if clock is not None else datetime.now(UTC)
    return ErrorPayload(
        error_type=error_type,
        message=str(error),
        device=device,
        timestamp=now.isoformat(),
        details=details or {},
    )


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@dataclass
class ErrorPublisher:
    """Publishes structured error payloads to MQTT.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for error topics.
        error_type_map: Mapping from exception types to machine-readable
            type strings.
        clock: Optional callable returning a :class:`~datetime.datetime`
            for deterministic testing.
    """

    mqtt: MqttPort
    topic_prefix: str
    error_type_map: dict[type[Exception], str] = field(
        default_factory=lambda: dict(DEFAULT_ERROR_TYPES),
    )
    clock: Callable[[], datetime] | None = field(default=None, repr=False)

    async def publish(
        self,
        error: Exception,
        *,
        device: str | None = None,
        details: dict[str, object] | None = None,
        level: int = logging.WARNING,
    ) -> None:
        """Build an error payload and publish it to ``{prefix}/error``.

        The event is also logged at *level*; callers raise it to
        ``CRITICAL`` for conditions that need operator action.
        """
        try:
            payload = build_error_payload(
                error,
                error_type_map=self.error_type_map,
                device=device,
                details=details,
                clock=self.clock,
            )
            payload_json = payload.to_json()
        except Exception:
            logger.exception(
                "Failed to build error payload for %r (device=%s)",
                error,
                device,
            )
            return

        logger.log(
            level,
            "Publishing error: %s (type=%s, device=%s)",
            payload.message,
            payload.error_type,
            device,
        )
        topic = f"{self.topic_prefix}/error"
        try:
            await self.mqtt.publish(topic, payload_json, retain=False, qos=1)
        except Exception:
            logger.exception("Failed to publish error to %s", topic)
