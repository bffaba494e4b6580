"""MQTT command topic routing.

Inbound commands arrive on ``{prefix}/{channel}/set``; the router
extracts the channel and dispatches to the handler registered for it::

    {prefix}/auth/set         → login / logout
    {prefix}/thermostat/set   → setpoint change
    {prefix}/system/set       → sync

Handler exceptions never reach the MQTT client: they are logged and,
when an :class:`~millbridge._errors.ErrorPublisher` is attached,
published to ``{prefix}/error``.
"""

from __future__ import annotations

import asyncio
import logging

from millbridge._errors import ErrorPublisher
from millbridge._mqtt import MessageCallback

logger = logging.getLogger(__name__)

COMMAND_SUFFIX = "/set"


class TopicRouter:
    """Routes ``{prefix}/{channel}/set`` messages to channel handlers."""

    def __init__(
        self,
        *,
        topic_prefix: str,
        errors: ErrorPublisher | None = None,
    ) -> None:
        self._topic_prefix = topic_prefix
        self._errors = errors
        self._handlers: dict[str, MessageCallback] = {}

    def register(self, channel: str, handler: MessageCallback) -> None:
        """Register *handler* for ``{prefix}/{channel}/set``.

        Raises:
            ValueError: *channel* is empty, contains ``/`` or already
                has a handler.
        """
        if not channel or "/" in channel:
            msg = f"Invalid command channel {channel!r}"
            raise ValueError(msg)
        if channel in self._handlers:
            msg = f"Handler already registered for channel '{channel}'"
            raise ValueError(msg)
        self._handlers[channel] = handler

    @property
    def subscriptions(self) -> list[str]:
        """Command topics to subscribe to."""
        return [
            f"{self._topic_prefix}/{channel}{COMMAND_SUFFIX}"
            for channel in self._handlers
        ]

    async def route(self, topic: str, payload: str) -> None:
        """Dispatch one inbound message.

        Topics that are not command topics are ignored; command topics
        without a handler are logged at WARNING.
        """
        channel = self._extract_channel(topic)
        if channel is None:
            return
        handler = self._handlers.get(channel)
        if handler is None:
            logger.warning("No handler for channel '%s' (topic: %s)", channel, topic)
            return

        try:
            await handler(topic, payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("Command on '%s' failed: %s", topic, exc)
            if self._errors is not None:
                await self._errors.publish(exc, details={"topic": topic})

    def _extract_channel(self, topic: str) -> str | None:
        prefix = f"{self._topic_prefix}/"
        if not (topic.startswith(prefix) and topic.endswith(COMMAND_SUFFIX)):
            return None
        channel = topic[len(prefix) : -len(COMMAND_SUFFIX)]
        if not channel or "/" in channel:
            return None
        return channel
