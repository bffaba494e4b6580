"""Application configuration via pydantic-settings.

Configuration is loaded from environment variables and/or ``.env``
files.  All variables carry the ``MILLBRIDGE_`` prefix and nested
models use ``__`` as the delimiter, e.g.
``MILLBRIDGE_MQTT__HOST=broker.local`` or
``MILLBRIDGE_MILL__POLL_MINUTES=2``.

The schema covers three concerns:

* **MQTT** — broker connection and topic layout.
* **Logging** — level, format, optional file sink, rotation.
* **Mill** — vendor account, polling interval and state directory.

Durations are in **seconds** unless the field name says otherwise
(``poll_minutes``).
"""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import (
    BaseModel,
    Field,
    SecretStr,
)
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE_URL = "https://api.millheat.com/"

# -------------------------------------------------------------------
# Sub-models (BaseModel, NOT BaseSettings — nested via composition)
# -------------------------------------------------------------------


class MqttSettings(BaseModel):
    """MQTT broker connection and topic configuration.

    Environment variables (with ``__`` nesting)::

        MILLBRIDGE_MQTT__HOST=broker.local
        MILLBRIDGE_MQTT__PORT=1883
        MILLBRIDGE_MQTT__USERNAME=user
        MILLBRIDGE_MQTT__PASSWORD=secret
        MILLBRIDGE_MQTT__TOPIC_PREFIX=mill
    """

    host: str = Field(
        default="localhost",
        description="MQTT broker hostname or IP address.",
    )
    port: Annotated[int, Field(ge=1, le=65535)] = Field(
        default=1883,
        description="MQTT broker port.",
    )
    username: str | None = Field(
        default=None,
        description="MQTT authentication username (optional).",
    )
    password: SecretStr | None = Field(
        default=None,
        description="MQTT authentication password (optional).",
    )
    client_id: str = Field(
        default="",
        description=(
            "MQTT client identifier. When empty, the bridge generates "
            "'{name}-{hex8}' at startup."
        ),
    )
    qos: Annotated[int, Field(ge=0, le=2)] = Field(
        default=1,
        description="QoS used for command subscriptions.",
    )
    reconnect_interval: Annotated[float, Field(gt=0)] = Field(
        default=5.0,
        description="Seconds to wait before reconnecting after connection loss.",
    )
    topic_prefix: str = Field(
        default="",
        description=(
            "Root prefix for all MQTT topics. "
            "When empty, falls back to the application name."
        ),
    )


class LoggingSettings(BaseModel):
    """Logging configuration.

    When ``file`` is set, logs are also written to a rotating file
    (size-based rotation, ``backup_count`` generations kept).  When
    ``None``, logs go to stderr only.

    ``format`` selects ``"json"`` (structured lines for log
    aggregators) or ``"text"`` (human-readable, for terminals).
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level.",
    )
    format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format.",
    )
    file: str | None = Field(
        default=None,
        description="Optional log file path. ``None`` means stderr only.",
    )
    max_file_size_mb: Annotated[int, Field(ge=1)] = Field(
        default=10,
        description="Maximum log file size in megabytes before rotation.",
    )
    backup_count: Annotated[int, Field(ge=0)] = Field(
        default=3,
        description="Number of rotated log files to keep.",
    )


class MillSettings(BaseModel):
    """Mill cloud account and polling configuration.

    Environment variables::

        MILLBRIDGE_MILL__USERNAME=me@example.com
        MILLBRIDGE_MILL__PASSWORD=secret
        MILLBRIDGE_MILL__AUTH_CODE=abc123
        MILLBRIDGE_MILL__POLL_MINUTES=5
    """

    username: str | None = Field(
        default=None,
        description="Mill app account username.",
    )
    password: SecretStr | None = Field(
        default=None,
        description="Mill app account password.",
    )
    auth_code: SecretStr | None = Field(
        default=None,
        description=(
            "Pre-issued authorization code.  When set together with "
            "username and password and no stored credential exists, the "
            "bridge authorizes at startup."
        ),
    )
    poll_minutes: Annotated[int, Field(ge=1)] = Field(
        default=5,
        description="Minutes between inventory polls.",
    )
    api_base_url: str = Field(
        default=DEFAULT_API_BASE_URL,
        description="Base URL of the Mill open API.",
    )
    partner_auth_url: str | None = Field(
        default=None,
        description="Partner proxy endpoint issuing authorization codes.",
    )
    hub_token: SecretStr | None = Field(
        default=None,
        description="Bearer token presented to the partner proxy.",
    )
    state_dir: str = Field(
        default="./data",
        description="Directory holding the persisted credential and inventory.",
    )

    @property
    def is_configured(self) -> bool:
        """True when account credentials are present."""
        return bool(self.username) and self.password is not None


# -------------------------------------------------------------------
# Root settings
# -------------------------------------------------------------------


class Settings(BaseSettings):
    """Root settings for the bridge.

    Example ``.env``::

        MILLBRIDGE_MQTT__HOST=broker.local
        MILLBRIDGE_MILL__USERNAME=me@example.com
        MILLBRIDGE_MILL__PASSWORD=secret
        MILLBRIDGE_LOGGING__LEVEL=DEBUG
        MILLBRIDGE_LOGGING__FORMAT=text
    """

    model_config = SettingsConfigDict(
        env_prefix="MILLBRIDGE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    mqtt: MqttSettings = Field(
        default_factory=MqttSettings,
        description="MQTT broker connection settings.",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration.",
    )
    mill: MillSettings = Field(
        default_factory=MillSettings,
        description="Mill cloud account and polling settings.",
    )
    heartbeat_interval: Annotated[float, Field(gt=0)] | None = Field(
        default=60.0,
        description=(
            "Seconds between heartbeats published to ``{prefix}/status``. "
            "``None`` disables periodic heartbeats."
        ),
    )
