"""Composition root for the Mill-to-MQTT bridge.

:class:`BridgeApp` wires settings, logging, MQTT, the vendor client,
persistence and the bridge components together, then runs until a
shutdown signal arrives::

    from millbridge import BridgeApp

    BridgeApp(version="0.1.0").run()

Orchestration order (:meth:`BridgeApp._run_async`):

1. Bootstrap: settings, logging, clock, MQTT (with LWT), API client,
   state store, lifecycle, error publisher.
2. Wire: session (restored credential), fetcher, publisher, poll loop,
   command service, topic router and subscriptions.
3. Start the session: a restored credential goes straight to
   ``RUNNING``; a configured account with an authorization source logs
   in; otherwise the bridge waits in ``NOT_CONFIGURED`` for a login
   command.
4. Run heartbeat and poll loop until shutdown.
5. Tear down: stop polling, mark devices and bridge offline, close
   MQTT and the HTTP client.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import uuid

from millbridge._api import MillApiClient, MillApiPort
from millbridge._clock import ClockPort, SystemClock
from millbridge._commands import CommandService
from millbridge._context import AppContext
from millbridge._errors import ErrorPublisher
from millbridge._health import HealthReporter, build_will_config
from millbridge._inventory import InventoryFetcher
from millbridge._lifecycle import AuthState, ConfigState, Lifecycle
from millbridge._logging import configure_logging
from millbridge._mqtt import MqttClient, MqttLifecycle, MqttMessageHandler, MqttPort
from millbridge._poller import PollLoop, TickReport
from millbridge._publisher import FactPublisher
from millbridge._router import TopicRouter
from millbridge._session import SessionManager
from millbridge._settings import Settings
from millbridge._state import JsonStateStore, StatePort

logger = logging.getLogger(__name__)

DEFAULT_NAME = "millbridge"
BROKER_CONNECT_TIMEOUT = 10.0


class BridgeApp:
    """Mill cloud to MQTT bridge application.

    Args:
        name: Application name; default MQTT topic prefix and client id.
        version: Version string reported in heartbeats and ``--version``.
        settings_class: Settings class instantiated at startup.
    """

    def __init__(
        self,
        name: str = DEFAULT_NAME,
        version: str = "0.0.0",
        *,
        description: str = "Mill heater cloud to MQTT bridge",
        settings_class: type[Settings] = Settings,
    ) -> None:
        self._name = name
        self._version = version
        self._description = description
        self._settings_class = settings_class

    @property
    def name(self) -> str:
        return self._name

    @property
    def version(self) -> str:
        return self._version

    @property
    def description(self) -> str:
        return self._description

    @property
    def settings_class(self) -> type[Settings]:
        return self._settings_class

    # --- Entrypoints -------------------------------------------------------

    def run(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
        api: MillApiPort | None = None,
        store: StatePort | None = None,
    ) -> None:
        """Run the bridge until SIGTERM/SIGINT (blocking).

        All arguments are overrides for programmatic and test use.
        """
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(
                self._run_async(
                    mqtt=mqtt,
                    settings=settings,
                    shutdown_event=shutdown_event,
                    clock=clock,
                    api=api,
                    store=store,
                ),
            )

    def cli(self) -> None:
        """Run the bridge behind the Typer command line."""
        from millbridge._cli import build_cli

        cli = build_cli(self)
        cli(standalone_mode=True)

    async def _run_async(
        self,
        *,
        mqtt: MqttPort | None = None,
        settings: Settings | None = None,
        shutdown_event: asyncio.Event | None = None,
        clock: ClockPort | None = None,
        api: MillApiPort | None = None,
        store: StatePort | None = None,
    ) -> None:
        # --- Phase 1: Bootstrap ---
        resolved_settings = settings if settings is not None else self._settings_class()
        prefix = resolved_settings.mqtt.topic_prefix or self._name
        configure_logging(
            resolved_settings.logging,
            service=self._name,
            version=self._version,
        )
        resolved_clock = clock if clock is not None else SystemClock()
        mqtt = self._create_mqtt(mqtt, resolved_settings, prefix)
        owned_api: MillApiClient | None = None
        if api is None:
            owned_api = MillApiClient(base_url=resolved_settings.mill.api_base_url)
            api = owned_api
        resolved_api: MillApiPort = api
        resolved_store = store
        if resolved_store is None:
            resolved_store = JsonStateStore(resolved_settings.mill.state_dir)

        if isinstance(mqtt, MqttLifecycle):
            await mqtt.start()
            if not await mqtt.wait_connected(BROKER_CONNECT_TIMEOUT):
                logger.warning(
                    "Broker not reachable after %.0f s; still retrying",
                    BROKER_CONNECT_TIMEOUT,
                )

        shutdown_event = self._install_signal_handlers(shutdown_event)
        lifecycle = Lifecycle()
        ctx = AppContext(
            settings=resolved_settings,
            lifecycle=lifecycle,
            clock=resolved_clock,
            store=resolved_store,
            errors=ErrorPublisher(mqtt=mqtt, topic_prefix=prefix),
            topic_prefix=prefix,
            shutdown_event=shutdown_event,
        )

        # --- Phase 2: Wire components ---
        session = SessionManager(resolved_api, ctx, resolved_store.load_credential())
        publisher = FactPublisher(mqtt=mqtt, topic_prefix=prefix)
        health = HealthReporter(
            mqtt=mqtt,
            topic_prefix=prefix,
            version=self._version,
            clock=resolved_clock,
            lifecycle=lifecycle,
        )

        async def _record_tick(report: TickReport) -> None:
            snapshot = poller.snapshot
            health.record_tick(report, len(snapshot.devices) if snapshot else 0)

        poller = PollLoop(
            ctx,
            session,
            InventoryFetcher(resolved_api),
            publisher,
            on_tick=_record_tick,
        )
        commands = CommandService(ctx, session, resolved_api, poller, publisher)
        router = TopicRouter(topic_prefix=prefix, errors=ctx.errors)
        for channel, handler in commands.handlers().items():
            router.register(channel, handler)
        await self._subscribe(mqtt, router)

        # --- Phase 3: Session start ---
        await self._start_session(ctx, session, commands)

        # --- Phase 4: Run ---
        await health.publish_heartbeat()
        heartbeat_task = self._start_heartbeat_task(health, resolved_settings)
        poll_task = asyncio.create_task(poller.run())
        try:
            await shutdown_event.wait()
        finally:
            # --- Phase 5: Tear down ---
            lifecycle.mark_stopping()
            tasks = [poll_task]
            if heartbeat_task is not None:
                tasks.append(heartbeat_task)
            await self._cancel_tasks(tasks)
            await publisher.publish_offline(poller.online_device_ids)
            await health.shutdown()
            if isinstance(mqtt, MqttLifecycle):
                await mqtt.stop()
            if owned_api is not None:
                await owned_api.aclose()
        logger.info("Shutdown complete")

    # --- _run_async helpers ------------------------------------------------

    def _create_mqtt(
        self,
        mqtt: MqttPort | None,
        settings: Settings,
        prefix: str,
    ) -> MqttPort:
        """Return the injected client, or build one with an LWT."""
        if mqtt is not None:
            return mqtt
        mqtt_settings = settings.mqtt
        if not mqtt_settings.client_id:
            mqtt_settings = mqtt_settings.model_copy(
                update={"client_id": f"{self._name}-{uuid.uuid4().hex[:8]}"},
            )
        return MqttClient(settings=mqtt_settings, will=build_will_config(prefix))

    @staticmethod
    def _install_signal_handlers(
        shutdown_event: asyncio.Event | None,
    ) -> asyncio.Event:
        if shutdown_event is not None:
            return shutdown_event
        event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, event.set)
        return event

    @staticmethod
    async def _subscribe(mqtt: MqttPort, router: TopicRouter) -> None:
        for topic in router.subscriptions:
            await mqtt.subscribe(topic)
        if isinstance(mqtt, MqttMessageHandler):
            mqtt.on_message(router.route)

    @staticmethod
    async def _start_session(
        ctx: AppContext,
        session: SessionManager,
        commands: CommandService,
    ) -> None:
        """Decide the initial app state.

        A restored credential resumes polling without a login; the
        first tick refreshes it or reports the lapsed refresh window.
        """
        lifecycle = ctx.lifecycle
        mill = ctx.settings.mill
        if mill.is_configured:
            lifecycle.set_config_state(ConfigState.CONFIGURED)

        if session.credential.is_authenticated:
            logger.info("Restored stored session")
            lifecycle.set_auth_state(AuthState.AUTHENTICATED)
            lifecycle.set_config_state(ConfigState.CONFIGURED)
            lifecycle.mark_running()
            return

        can_login = mill.auth_code is not None or (
            mill.partner_auth_url is not None and mill.hub_token is not None
        )
        if mill.is_configured and can_login:
            logger.info("No stored session; logging in as %s", mill.username)
            if await commands.login():
                return

        logger.warning(
            "Not authenticated; waiting for a login on %s/auth/set", ctx.topic_prefix
        )
        lifecycle.mark_not_configured()

    @staticmethod
    def _start_heartbeat_task(
        health: HealthReporter,
        settings: Settings,
    ) -> asyncio.Task[None] | None:
        interval = settings.heartbeat_interval
        if interval is None:
            return None
        return asyncio.create_task(BridgeApp._heartbeat_loop(health, interval))

    @staticmethod
    async def _heartbeat_loop(health: HealthReporter, interval: float) -> None:
        """Publish heartbeats every *interval* seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await health.publish_heartbeat()

    @staticmethod
    async def _cancel_tasks(tasks: list[asyncio.Task[None]]) -> None:
        for task in tasks:
            task.cancel()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception) and not isinstance(
                result,
                asyncio.CancelledError,
            ):
                logger.error("Task error during shutdown: %s", result)
