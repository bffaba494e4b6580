"""Bridge heartbeat and LWT.

Topic::

    {prefix}/status   ← heartbeat JSON (retained); "offline" via LWT

Heartbeat payload::

    {
        "status": "online",
        "uptime_s": 3600.0,
        "version": "0.1.0",
        "lifecycle": {"app": "running", "connection": "connected",
                      "auth": "authenticated", "config": "configured"},
        "devices": 3,
        "last_poll": "refreshed"
    }

Publication is retained, QoS 1 and fire-and-forget.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field

from millbridge._clock import ClockPort
from millbridge._lifecycle import Lifecycle
from millbridge._mqtt import MqttPort, WillConfig
from millbridge._poller import TickReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HeartbeatPayload:
    status: str
    uptime_s: float
    version: str
    lifecycle: dict[str, str]
    devices: int = 0
    last_poll: str | None = None

    def to_json(self) -> str:
        return json.dumps(asdict(self))


def build_will_config(topic_prefix: str) -> WillConfig:
    """LWT publishing retained ``"offline"`` to ``{topic_prefix}/status``."""
    return WillConfig(
        topic=f"{topic_prefix}/status",
        payload="offline",
        qos=1,
        retain=True,
    )


@dataclass
class HealthReporter:
    """Publishes the bridge heartbeat.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for the status topic.
        version: Version string included in heartbeats.
        clock: Monotonic clock for uptime.
        lifecycle: Lifecycle whose snapshot is reported.
    """

    mqtt: MqttPort
    topic_prefix: str
    version: str
    clock: ClockPort
    lifecycle: Lifecycle
    _start_time: float = field(init=False, repr=False)
    _devices: int = field(init=False, default=0, repr=False)
    _last_poll: str | None = field(init=False, default=None, repr=False)

    def __post_init__(self) -> None:
        self._start_time = self.clock.now()

    @property
    def status_topic(self) -> str:
        return f"{self.topic_prefix}/status"

    def record_tick(self, report: TickReport, device_count: int) -> None:
        """Remember the outcome of the latest poll tick."""
        self._last_poll = report.freshness.value
        if report.fetched:
            self._devices = device_count

    def build_heartbeat(self) -> HeartbeatPayload:
        return HeartbeatPayload(
            status="online",
            uptime_s=self.clock.now() - self._start_time,
            version=self.version,
            lifecycle=self.lifecycle.snapshot().to_dict(),
            devices=self._devices,
            last_poll=self._last_poll,
        )

    async def publish_heartbeat(self) -> None:
        logger.debug("Publishing heartbeat to %s", self.status_topic)
        await self._safe_publish(self.build_heartbeat().to_json())

    async def shutdown(self) -> None:
        """Publish ``"offline"`` to the status topic."""
        logger.info("Publishing offline status")
        await self._safe_publish("offline")

    async def _safe_publish(self, payload: str) -> None:
        try:
            await self.mqtt.publish(self.status_topic, payload, retain=True, qos=1)
        except Exception:
            logger.exception("Failed to publish health to %s", self.status_topic)
