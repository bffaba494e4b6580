"""millbridge.

Bridges Mill heaters from the Mill cloud API onto an MQTT bus: keeps a
vendor session alive, polls the home/room/device inventory and
publishes temperature and setpoint reports, and accepts setpoint
changes back.
"""

from importlib.metadata import PackageNotFoundError, version

from millbridge._api import MillApiClient, MillApiPort
from millbridge._app import BridgeApp
from millbridge._clock import ClockPort, SystemClock
from millbridge._commands import CommandService
from millbridge._context import AppContext
from millbridge._errors import (
    ApiError,
    AuthError,
    ControlError,
    ErrorPayload,
    ErrorPublisher,
    FetchError,
    InvalidCommandError,
    MillBridgeError,
    RefreshError,
    RefreshWindowExpired,
    build_error_payload,
)
from millbridge._facts import (
    SetpointReport,
    TemperatureReport,
    derive_facts,
    device_to_facts,
)
from millbridge._health import HealthReporter, HeartbeatPayload, build_will_config
from millbridge._inventory import BranchFailure, FetchResult, InventoryFetcher
from millbridge._lifecycle import (
    AppState,
    AuthState,
    ConfigState,
    ConnectionState,
    Lifecycle,
)
from millbridge._logging import JsonFormatter, configure_logging
from millbridge._models import (
    Credential,
    CredentialStatus,
    Device,
    Home,
    InventorySnapshot,
    Room,
)
from millbridge._mqtt import (
    MessageCallback,
    MockMqttClient,
    MqttClient,
    MqttPort,
    NullMqttClient,
    WillConfig,
)
from millbridge._poller import PollLoop, PollState, TickReport
from millbridge._publisher import FactPublisher
from millbridge._session import FreshnessOutcome, FreshnessResult, SessionManager
from millbridge._settings import LoggingSettings, MillSettings, MqttSettings, Settings
from millbridge._state import JsonStateStore, MemoryStateStore, StatePort

try:
    __version__ = version("millbridge")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

__all__ = [
    "__version__",
    # App
    "AppContext",
    "BridgeApp",
    # Vendor API
    "MillApiClient",
    "MillApiPort",
    # Core
    "BranchFailure",
    "CommandService",
    "FetchResult",
    "FreshnessOutcome",
    "FreshnessResult",
    "InventoryFetcher",
    "PollLoop",
    "PollState",
    "SessionManager",
    "TickReport",
    # Facts and publishing
    "FactPublisher",
    "SetpointReport",
    "TemperatureReport",
    "derive_facts",
    "device_to_facts",
    # Models
    "Credential",
    "CredentialStatus",
    "Device",
    "Home",
    "InventorySnapshot",
    "Room",
    # Lifecycle
    "AppState",
    "AuthState",
    "ConfigState",
    "ConnectionState",
    "Lifecycle",
    # State
    "JsonStateStore",
    "MemoryStateStore",
    "StatePort",
    # Clock
    "ClockPort",
    "SystemClock",
    # Logging
    "JsonFormatter",
    "configure_logging",
    # MQTT
    "MessageCallback",
    "MockMqttClient",
    "MqttClient",
    "MqttPort",
    "NullMqttClient",
    "WillConfig",
    # Errors
    "ApiError",
    "AuthError",
    "ControlError",
    "ErrorPayload",
    "ErrorPublisher",
    "FetchError",
    "InvalidCommandError",
    "MillBridgeError",
    "RefreshError",
    "RefreshWindowExpired",
    "build_error_payload",
    # Health
    "HealthReporter",
    "HeartbeatPayload",
    "build_will_config",
    # Settings
    "LoggingSettings",
    "MillSettings",
    "MqttSettings",
    "Settings",
]
