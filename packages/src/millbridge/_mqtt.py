"""Bus access for heater facts, inventory, health and commands.

Everything the bridge sends or receives goes through :class:`MqttPort`.
:class:`MqttClient` talks to a broker via aiomqtt and keeps the three
command subscriptions alive across reconnects.  :class:`MockMqttClient`
records traffic for tests and can inject command payloads;
:class:`NullMqttClient` drops everything.

Inbound payloads arrive as text and are handed to every registered
:data:`MessageCallback`; :class:`~millbridge._router.TopicRouter` picks
the command handler.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from millbridge._settings import MqttSettings

logger = logging.getLogger(__name__)

MessageCallback = Callable[[str, str], Awaitable[None]]
"""Async callback receiving (topic, payload) for each inbound message."""

# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WillConfig:
    """Last-Will-and-Testament configuration.

    Keeps aiomqtt types out of callers; the real client translates this
    into ``aiomqtt.Will`` when connecting.
    """

    topic: str
    payload: str = "offline"
    qos: int = 1
    retain: bool = True


# ---------------------------------------------------------------------------
# Ports (Protocols)
# ---------------------------------------------------------------------------


@runtime_checkable
class MqttPort(Protocol):
    """Port contract for MQTT publish/subscribe."""

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None: ...

    async def subscribe(self, topic: str) -> None: ...


@runtime_checkable
class MqttLifecycle(Protocol):
    """Adapters that own a broker connection."""

    async def start(self) -> None: ...

    async def wait_connected(self, timeout: float) -> bool: ...

    async def stop(self) -> None: ...


@runtime_checkable
class MqttMessageHandler(Protocol):
    """Adapters that deliver inbound messages to callbacks."""

    def on_message(self, callback: MessageCallback) -> None: ...


# ---------------------------------------------------------------------------
# Null adapter
# ---------------------------------------------------------------------------


@dataclass
class NullMqttClient:
    """Bus that drops every publish and subscription.

    Lets the poll loop run against the Mill API with no broker.
    """

    async def publish(
        self,
        topic: str,
        payload: str,  # noqa: ARG002
        *,
        retain: bool = False,  # noqa: ARG002
        qos: int = 1,  # noqa: ARG002
    ) -> None:
        """Silently discard a publish request."""
        logger.debug("NullMqttClient.publish(%s) discarded", topic)

    async def subscribe(self, topic: str) -> None:
        """Silently discard a subscribe request."""
        logger.debug("NullMqttClient.subscribe(%s) discarded", topic)


# ---------------------------------------------------------------------------
# Mock / test-double adapter
# ---------------------------------------------------------------------------


@dataclass
class MockMqttClient:
    """Records bus traffic; :meth:`deliver` injects inbound commands."""

    published: list[tuple[str, str, bool, int]] = field(
        default_factory=list,
    )
    subscriptions: list[str] = field(default_factory=list)
    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Record a publish call."""
        self.published.append((topic, payload, retain, qos))

    async def subscribe(self, topic: str) -> None:
        """Record a subscribe call."""
        self.subscriptions.append(topic)

    def on_message(self, callback: MessageCallback) -> None:
        """Register an inbound-message callback."""
        self._callbacks.append(callback)

    async def deliver(self, topic: str, payload: str) -> None:
        """Simulate an inbound message by invoking all callbacks."""
        for cb in self._callbacks:
            await cb(topic, payload)

    def get_messages_for(
        self,
        topic: str,
    ) -> list[tuple[str, bool, int]]:
        """Return ``(payload, retain, qos)`` tuples for *topic*."""
        return [
            (payload, retain, qos)
            for t, payload, retain, qos in self.published
            if t == topic
        ]

    def get_json_for(self, topic: str) -> list[Any]:
        """Return the decoded JSON payloads published to *topic*."""
        return [json.loads(payload) for payload, _, _ in self.get_messages_for(topic)]

    def topics_ending_with(self, suffix: str) -> list[str]:
        """Return published topics (in order, with repeats) ending in *suffix*."""
        return [t for t, _, _, _ in self.published if t.endswith(suffix)]


# ---------------------------------------------------------------------------
# Real adapter
# ---------------------------------------------------------------------------


@dataclass
class MqttClient:
    """Broker connection backed by aiomqtt.

    A background task connects, restores the command subscriptions,
    feeds inbound messages to the callbacks and reconnects after
    ``reconnect_interval`` when the broker drops.  The LWT marks the
    bridge ``offline`` if the process dies without a clean shutdown.
    aiomqtt is imported on first connect, so tests that only use the
    doubles never load it.
    """

    settings: MqttSettings
    will: WillConfig | None = None

    _callbacks: list[MessageCallback] = field(
        default_factory=list,
        init=False,
        repr=False,
    )
    _subscriptions: set[str] = field(
        default_factory=set,
        init=False,
        repr=False,
    )
    _client: Any = field(default=None, init=False, repr=False)
    _listen_task: asyncio.Task[None] | None = field(
        default=None,
        init=False,
        repr=False,
    )
    _connected: asyncio.Event = field(
        default_factory=asyncio.Event,
        init=False,
        repr=False,
    )
    _stopping: bool = field(default=False, init=False, repr=False)

    async def publish(
        self,
        topic: str,
        payload: str,
        *,
        retain: bool = False,
        qos: int = 1,
    ) -> None:
        """Publish a message to the broker.

        Raises:
            RuntimeError: If the client is not connected.
        """
        if self._client is None:
            msg = "MqttClient is not connected"
            raise RuntimeError(msg)
        await self._client.publish(topic, payload, retain=retain, qos=qos)
        logger.debug("Published to %s (qos=%d, retain=%s)", topic, qos, retain)

    async def subscribe(self, topic: str) -> None:
        """Subscribe to *topic*, tracking it for reconnects."""
        self._subscriptions.add(topic)
        if self._client is not None:
            await self._client.subscribe(topic, qos=self.settings.qos)

    def on_message(self, callback: MessageCallback) -> None:
        """Register a callback for inbound messages."""
        self._callbacks.append(callback)

    async def start(self) -> None:
        """Start the background connection loop."""
        if self._listen_task is not None and not self._listen_task.done():
            logger.debug("MqttClient.start() called while already running")
            return
        self._stopping = False
        self._listen_task = asyncio.create_task(self._connection_loop())

    async def wait_connected(self, timeout: float) -> bool:
        """Wait up to *timeout* seconds for the first connection."""
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._connected.wait(), timeout)
        return self._connected.is_set()

    async def stop(self) -> None:
        """Stop the connection loop.  Idempotent."""
        self._stopping = True
        if self._listen_task is not None:
            self._listen_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listen_task
            self._listen_task = None
        self._client = None
        self._connected.clear()

    async def _connection_loop(self) -> None:
        try:
            import aiomqtt  # noqa: PLC0415
        except ModuleNotFoundError as exc:
            msg = "aiomqtt is required to use MqttClient"
            raise RuntimeError(msg) from exc

        while not self._stopping:
            try:
                password: str | None = None
                if self.settings.password is not None:
                    password = self.settings.password.get_secret_value()

                will: aiomqtt.Will | None = None
                if self.will is not None:
                    will = aiomqtt.Will(
                        topic=self.will.topic,
                        payload=self.will.payload,
                        qos=self.will.qos,
                        retain=self.will.retain,
                    )

                async with aiomqtt.Client(
                    hostname=self.settings.host,
                    port=self.settings.port,
                    username=self.settings.username,
                    password=password,
                    identifier=self.settings.client_id or None,
                    will=will,
                ) as client:
                    self._client = client
                    try:
                        for topic in list(self._subscriptions):
                            await client.subscribe(topic, qos=self.settings.qos)

                        self._connected.set()
                        logger.info(
                            "MQTT connected to %s:%d",
                            self.settings.host,
                            self.settings.port,
                        )

                        async for message in client.messages:
                            await self._dispatch(message)
                    finally:
                        self._connected.clear()
                        self._client = None

            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning(
                    "MQTT connection lost, reconnecting in %.1fs",
                    self.settings.reconnect_interval,
                    exc_info=True,
                )
                await asyncio.sleep(self.settings.reconnect_interval)

    async def _dispatch(self, message: Any) -> None:
        """Decode and fan-out an inbound message to callbacks."""
        topic = str(message.topic)

        if message.payload is None:
            logger.debug("Skipping message with None payload on %s", topic)
            return

        payload = (
            message.payload.decode("utf-8")
            if isinstance(message.payload, (bytes, bytearray))
            else str(message.payload)
        )

        for cb in self._callbacks:
            try:
                await cb(topic, payload)
            except Exception:
                logger.exception("Error in message callback for %s", topic)
