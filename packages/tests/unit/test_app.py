"""Tests for millbridge._app — BridgeApp wiring and startup paths.

Test Techniques Used:
    - Scenario Testing: full app runs through AppHarness
    - State Transition Testing: initial app state per startup path
    - Fixture Isolation: root logger restored after each run
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field, replace

import pytest

from millbridge._app import BridgeApp
from millbridge._lifecycle import AppState
from millbridge._models import Credential, CredentialStatus, Device
from millbridge._settings import MillSettings, MqttSettings, Settings
from millbridge.testing import AppHarness, MockMqttClient

DAY_MS = 24 * 60 * 60 * 1000


@pytest.fixture(autouse=True)
def _restore_root_logger() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)


async def _wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


async def _run_until(harness: AppHarness, predicate: Callable[[], bool]) -> None:
    task = asyncio.create_task(harness.run())
    try:
        await _wait_for(lambda: predicate() or task.done())
    finally:
        harness.trigger_shutdown()
        await task


def _status_payloads(harness: AppHarness) -> list[str]:
    return [p for p, _, _ in harness.mqtt.get_messages_for("testbridge/status")]


def _stored_session(harness: AppHarness) -> Credential:
    now = harness.clock.epoch_ms()
    return Credential(
        access_token="stored-access",
        refresh_token="stored-refresh",
        expire_time=now + 60 * 60 * 1000,
        refresh_expire_time=now + DAY_MS,
        status=CredentialStatus.VALID,
    )


class TestProperties:
    def test_defaults(self) -> None:
        app = BridgeApp()

        assert app.name == "millbridge"
        assert app.settings_class is Settings
        assert "MQTT" in app.description


class TestStartupPaths:
    async def test_unconfigured_waits_for_login(self) -> None:
        harness = AppHarness.create()

        await _run_until(
            harness, lambda: bool(harness.mqtt.get_messages_for("testbridge/status"))
        )

        heartbeat = harness.mqtt.get_json_for("testbridge/status")[0]
        assert heartbeat["lifecycle"]["app"] == AppState.NOT_CONFIGURED
        assert harness.api.calls == []

    async def test_subscribes_command_topics(self) -> None:
        harness = AppHarness.create()

        await _run_until(harness, lambda: bool(harness.mqtt.subscriptions))

        assert sorted(harness.mqtt.subscriptions) == [
            "testbridge/auth/set",
            "testbridge/system/set",
            "testbridge/thermostat/set",
        ]

    async def test_topic_prefix_setting_wins(self) -> None:
        harness = AppHarness.create(mqtt=MqttSettings(topic_prefix="heat"))

        await _run_until(harness, lambda: bool(harness.mqtt.subscriptions))

        assert "heat/auth/set" in harness.mqtt.subscriptions

    async def test_stored_session_polls_immediately(self) -> None:
        harness = AppHarness.create()
        harness.store.credential = _stored_session(harness)
        harness.api.add_home(1)
        harness.api.add_room(1, 10)
        harness.api.add_device(10, Device(id=100, current_temp=20.5))

        await _run_until(
            harness,
            lambda: bool(harness.mqtt.get_messages_for("testbridge/100/sensor_temp")),
        )

        assert harness.api.calls_to("get_homes") == [("stored-access",)]
        assert harness.api.calls_to("exchange_auth_code") == []

    async def test_configured_auth_code_logs_in(self) -> None:
        harness = AppHarness.create(
            mill=MillSettings(username="me", password="pw", auth_code="code-1")
        )

        await _run_until(harness, lambda: bool(harness.api.calls_to("get_homes")))

        assert harness.api.calls_to("exchange_auth_code") == [("code-1", "me", "pw")]
        assert harness.store.credential is not None
        assert harness.store.credential.access_token == "access-1"

    async def test_rejected_startup_login_waits(self) -> None:
        harness = AppHarness.create(
            mill=MillSettings(username="me", password="pw", auth_code="bad")
        )
        harness.api.fail("exchange_auth_code")

        await _run_until(
            harness, lambda: bool(harness.mqtt.get_messages_for("testbridge/status"))
        )

        (error,) = harness.mqtt.get_json_for("testbridge/error")
        assert error["error_type"] == "auth_error"
        heartbeat = harness.mqtt.get_json_for("testbridge/status")[0]
        assert heartbeat["lifecycle"]["app"] == AppState.NOT_CONFIGURED


@dataclass
class _UnreachableBroker(MockMqttClient):
    """Owns a connection that never comes up."""

    lifecycle_calls: list[str] = field(default_factory=list)

    async def start(self) -> None:
        self.lifecycle_calls.append("start")

    async def wait_connected(self, timeout: float) -> bool:
        self.lifecycle_calls.append(f"wait {timeout:g}")
        return False

    async def stop(self) -> None:
        self.lifecycle_calls.append("stop")


class TestBrokerConnection:
    async def test_unreachable_broker_does_not_block_startup(self) -> None:
        broker = _UnreachableBroker()
        harness = replace(AppHarness.create(), mqtt=broker)

        await _run_until(
            harness, lambda: bool(broker.get_messages_for("testbridge/status"))
        )

        assert broker.lifecycle_calls == ["start", "wait 10", "stop"]
        assert sorted(broker.subscriptions) == [
            "testbridge/auth/set",
            "testbridge/system/set",
            "testbridge/thermostat/set",
        ]


class TestShutdown:
    async def test_marks_devices_and_bridge_offline(self) -> None:
        harness = AppHarness.create()
        harness.store.credential = _stored_session(harness)
        harness.api.add_home(1)
        harness.api.add_independent_device(1, Device(id=7))

        await _run_until(
            harness,
            lambda: bool(harness.mqtt.get_messages_for("testbridge/7/availability")),
        )

        assert harness.mqtt.get_messages_for("testbridge/7/availability")[-1] == (
            "offline",
            True,
            1,
        )
        assert harness.mqtt.get_messages_for("testbridge/status")[-1][0] == "offline"

    async def test_periodic_heartbeats(self) -> None:
        harness = AppHarness.create(heartbeat_interval=0.01)

        await _run_until(
            harness,
            lambda: len(harness.mqtt.get_messages_for("testbridge/status")) >= 3,
        )

        payloads = _status_payloads(harness)
        assert payloads[-1] == "offline"
        assert all(p != "offline" for p in payloads[:-1])

    async def test_heartbeat_can_be_disabled(self) -> None:
        harness = AppHarness.create(heartbeat_interval=None)

        await _run_until(harness, lambda: bool(harness.mqtt.subscriptions))

        payloads = _status_payloads(harness)
        assert len(payloads) == 2
        assert payloads[-1] == "offline"


class TestLoginOverMqtt:
    async def test_login_command_resumes_polling(self) -> None:
        harness = AppHarness.create(mill=MillSettings(username="me", password="pw"))
        harness.api.add_home(1)
        task = asyncio.create_task(harness.run())
        try:
            await _wait_for(lambda: bool(harness.mqtt.subscriptions))

            await harness.mqtt.deliver(
                "testbridge/auth/set", '{"action": "login", "auth_code": "abc"}'
            )

            await _wait_for(lambda: bool(harness.api.calls_to("get_homes")))
        finally:
            harness.trigger_shutdown()
            await task

        assert harness.api.calls_to("get_homes") == [("access-1",)]

