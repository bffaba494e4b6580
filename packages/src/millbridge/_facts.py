"""Publishable facts derived from devices.

Each device yields a temperature report unconditionally and a setpoint
report only when its setpoint is non-zero (zero means no hold or
schedule is active).  The setpoint value is the vendor integer rendered
as a decimal string, unconverted.

Payload shapes::

    {prefix}/{device_id}/sensor_temp
        {"type": "evt.sensor.report", "value": 21.5, "unit": "C"}

    {prefix}/{device_id}/thermostat
        {"type": "evt.setpoint.report",
         "value": {"type": "heat", "temp": "22", "unit": "C"}}
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass

from millbridge._models import Device

TEMPERATURE_UNIT = "C"
SENSOR_SERVICE = "sensor_temp"
THERMOSTAT_SERVICE = "thermostat"


@dataclass(frozen=True, slots=True)
class TemperatureReport:
    device_id: int
    value: float
    unit: str = TEMPERATURE_UNIT

    event_type = "evt.sensor.report"
    service = SENSOR_SERVICE

    def to_json(self) -> str:
        return json.dumps(
            {"type": self.event_type, "value": self.value, "unit": self.unit}
        )


@dataclass(frozen=True, slots=True)
class SetpointReport:
    device_id: int
    temp: str
    setpoint_type: str = "heat"
    unit: str = TEMPERATURE_UNIT

    event_type = "evt.setpoint.report"
    service = THERMOSTAT_SERVICE

    def to_json(self) -> str:
        return json.dumps(
            {
                "type": self.event_type,
                "value": {
                    "type": self.setpoint_type,
                    "temp": self.temp,
                    "unit": self.unit,
                },
            }
        )


type Fact = TemperatureReport | SetpointReport


def setpoint_report(device_id: int, setpoint: int) -> SetpointReport | None:
    """Return a setpoint report, or ``None`` for the inactive value ``0``."""
    if setpoint == 0:
        return None
    return SetpointReport(device_id=device_id, temp=str(setpoint))


def device_to_facts(device: Device) -> list[Fact]:
    """Map one device to its publishable facts."""
    facts: list[Fact] = [TemperatureReport(device.id, device.current_temp)]
    setpoint = setpoint_report(device.id, device.setpoint_temp)
    if setpoint is not None:
        facts.append(setpoint)
    return facts


def derive_facts(devices: Iterable[Device]) -> list[Fact]:
    """Facts for every device, in device order."""
    return [fact for device in devices for fact in device_to_facts(device)]


def fact_topic(topic_prefix: str, fact: Fact) -> str:
    return f"{topic_prefix}/{fact.device_id}/{fact.service}"
