"""Test-support utilities for millbridge.

- :class:`AppHarness` — BridgeApp with pre-wired doubles.
- :class:`FakeMillApi` — in-memory vendor API with failure injection.
- :class:`FakeClock` — deterministic clock.
- :class:`MockMqttClient` / :class:`NullMqttClient` — MQTT doubles.
- :class:`MemoryStateStore` — in-memory persistence.
- :func:`make_settings` — ``Settings`` without ``.env`` or environment.
"""

from millbridge._mqtt import MockMqttClient, NullMqttClient
from millbridge._state import MemoryStateStore
from millbridge.testing._api import FakeMillApi
from millbridge.testing._clock import FakeClock
from millbridge.testing._harness import AppHarness
from millbridge.testing._settings import make_settings

__all__ = [
    "AppHarness",
    "FakeClock",
    "FakeMillApi",
    "MemoryStateStore",
    "MockMqttClient",
    "NullMqttClient",
    "make_settings",
]
