"""Publishes derived facts and inventory state to MQTT.

Topic layout::

    {prefix}/{device_id}/sensor_temp    ← temperature report (retained)
    {prefix}/{device_id}/thermostat     ← setpoint report (retained)
    {prefix}/{device_id}/availability   ← "online" / "offline" (retained)
    {prefix}/inventory                  ← inventory summary (retained)

Availability is diffed against the previous snapshot: devices that
disappeared get ``"offline"``; devices present get ``"online"``.

All publication is fire-and-forget; failures are logged and never
propagated into the poll loop.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass

from millbridge._facts import Fact, fact_topic
from millbridge._models import InventorySnapshot
from millbridge._mqtt import MqttPort

logger = logging.getLogger(__name__)


@dataclass
class FactPublisher:
    """Emits facts, availability and inventory for one topic prefix.

    Args:
        mqtt: MQTT port used for publishing.
        topic_prefix: Base prefix for all topics.
        qos: QoS level for every publish.
    """

    mqtt: MqttPort
    topic_prefix: str
    qos: int = 1

    async def publish_facts(self, facts: Iterable[Fact]) -> int:
        """Publish each fact to its device topic; return the count sent."""
        sent = 0
        for fact in facts:
            topic = fact_topic(self.topic_prefix, fact)
            if await self._safe_publish(topic, fact.to_json()):
                sent += 1
        logger.debug("Published %d facts", sent)
        return sent

    async def publish_inventory(self, snapshot: InventorySnapshot) -> None:
        await self._safe_publish(
            f"{self.topic_prefix}/inventory", json.dumps(snapshot.summary())
        )

    async def publish_availability(
        self,
        snapshot: InventorySnapshot,
        previous_ids: Iterable[int] = (),
    ) -> frozenset[int]:
        """Mark vanished devices offline and current ones online.

        Returns the device ids now considered online.
        """
        current = snapshot.device_ids
        for device_id in sorted(set(previous_ids) - current):
            logger.info("Device %d no longer listed; marking offline", device_id)
            await self._safe_publish(self._availability_topic(device_id), "offline")
        for device in snapshot.devices:
            await self._safe_publish(self._availability_topic(device.id), "online")
        return current

    async def publish_offline(self, device_ids: Iterable[int]) -> None:
        """Mark every device in *device_ids* offline (graceful shutdown)."""
        for device_id in sorted(device_ids):
            await self._safe_publish(self._availability_topic(device_id), "offline")

    def _availability_topic(self, device_id: int) -> str:
        return f"{self.topic_prefix}/{device_id}/availability"

    async def _safe_publish(self, topic: str, payload: str) -> bool:
        try:
            await self.mqtt.publish(topic, payload, retain=True, qos=self.qos)
        except Exception:
            logger.exception("Failed to publish to %s", topic)
            return False
        return True
