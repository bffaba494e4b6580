"""Domain models for the Mill cloud inventory and session.

Vendor payloads are decoded with pydantic.  Field aliases carry the
vendor's camelCase names (``deviceId``, ``holidayTemp``, ...) while the
Python attributes use the bridge's vocabulary; ``populate_by_name``
lets tests and the state store construct models either way.

Every model is frozen: a poll tick produces a new
:class:`InventorySnapshot` and a refresh produces a new
:class:`Credential`; nothing is mutated in place.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _VendorModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------


class Home(_VendorModel):
    """A home as returned by ``uds/selectHomeList``."""

    id: int = Field(alias="homeId")
    name: str = Field(default="", alias="homeName")
    timezone: str | None = Field(default=None, alias="timeZone")
    current_mode: int | None = Field(default=None, alias="currentMode")
    is_holiday: int | None = Field(default=None, alias="isHoliday")
    holiday_temp: int | None = Field(default=None, alias="holidayTemp")
    holiday_start_time: int | None = Field(default=None, alias="holidayStartTime")
    holiday_end_time: int | None = Field(default=None, alias="holidayEndTime")


class Room(_VendorModel):
    """A room as returned by ``uds/selectRoombyHome``.

    The vendor payload does not name the owning home; ``home_id`` is
    filled in from the fetch path.
    """

    id: int = Field(alias="roomId")
    name: str = Field(default="", alias="roomName")
    home_id: int | None = Field(default=None, alias="homeId")
    avg_temp: int | None = Field(default=None, alias="avgTemp")
    comfort_temp: int | None = Field(default=None, alias="comfortTemp")
    away_temp: int | None = Field(default=None, alias="awayTemp")
    sleep_temp: int | None = Field(default=None, alias="sleepTemp")
    heat_status: int | None = Field(default=None, alias="heatStatus")


class Device(_VendorModel):
    """A heater as returned by the device listing endpoints.

    ``setpoint_temp`` is the vendor's ``holidayTemp`` field.  A value of
    zero means no hold/schedule setpoint is active.  ``room_id`` is
    ``None`` for independent devices.
    """

    id: int = Field(alias="deviceId")
    mac: str = ""
    name: str = Field(default="", alias="deviceName")
    current_temp: float = Field(default=0.0, alias="currentTemp")
    setpoint_temp: int = Field(default=0, alias="holidayTemp")
    device_status: int | None = Field(default=None, alias="deviceStatus")
    heater_flag: int | None = Field(default=None, alias="heaterFlag")
    can_change_temp: int | None = Field(default=None, alias="canChangeTemp")
    max_temperature: int | None = Field(default=None, alias="maxTemperature")
    room_id: int | None = Field(default=None, alias="roomId")

    @field_validator("current_temp", "setpoint_temp", mode="before")
    @classmethod
    def _null_as_zero(cls, value: Any) -> Any:
        """The vendor sends ``null`` for heaters that have not reported yet."""
        return 0 if value is None else value


class InventorySnapshot(BaseModel):
    """Result of one full inventory walk.

    ``devices`` holds every device (room-scoped first, in walk order,
    then each home's independent devices); ``independent_devices`` is
    the subset without a room.
    """

    model_config = ConfigDict(frozen=True)

    homes: tuple[Home, ...] = ()
    rooms: tuple[Room, ...] = ()
    devices: tuple[Device, ...] = ()
    independent_devices: tuple[Device, ...] = ()

    @property
    def device_ids(self) -> frozenset[int]:
        """Identities of all devices in the snapshot."""
        return frozenset(device.id for device in self.devices)

    def find_device(self, device_id: int) -> Device | None:
        """Return the device with *device_id*, or ``None``."""
        for device in self.devices:
            if device.id == device_id:
                return device
        return None

    def summary(self) -> dict[str, object]:
        """Compact JSON-ready description published as the inventory."""
        return {
            "homes": [{"id": h.id, "name": h.name} for h in self.homes],
            "rooms": [
                {"id": r.id, "name": r.name, "home_id": r.home_id} for r in self.rooms
            ],
            "devices": [
                {
                    "id": d.id,
                    "name": d.name,
                    "mac": d.mac,
                    "room_id": d.room_id,
                }
                for d in self.devices
            ],
        }


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class CredentialStatus(StrEnum):
    """Explicit state of a :class:`Credential`."""

    NEVER_AUTHENTICATED = "never_authenticated"
    VALID = "valid"
    REFRESH_FAILED = "refresh_failed"


class Credential(BaseModel):
    """Access/refresh token pair with expiry timestamps in epoch ms.

    Owned by :class:`~millbridge._session.SessionManager`; every change
    produces a new instance.  Tokens are excluded from ``repr`` so the
    model can be logged safely.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str = Field(default="", repr=False)
    refresh_token: str = Field(default="", repr=False)
    expire_time: int = 0
    refresh_expire_time: int = 0
    status: CredentialStatus = CredentialStatus.NEVER_AUTHENTICATED

    @property
    def is_authenticated(self) -> bool:
        """True once the vendor has issued tokens for this session."""
        return (
            self.status is not CredentialStatus.NEVER_AUTHENTICATED
            and self.expire_time != 0
        )

    def mark_refresh_failed(self) -> Credential:
        """Return a copy flagged as refresh-failed."""
        return self.model_copy(update={"status": CredentialStatus.REFRESH_FAILED})


# ---------------------------------------------------------------------------
# Vendor response envelope
# ---------------------------------------------------------------------------


class ApiEnvelope(_VendorModel):
    """Common response wrapper of every Mill endpoint."""

    error_code: int | None = Field(default=None, alias="errorCode")
    message: str | None = None
    status_code: int | None = Field(default=None, alias="statusCode")
    success: bool | None = None
    data: dict[str, Any] | None = None


class TokenData(_VendorModel):
    """``data`` of the access-token and refresh endpoints."""

    access_token: str
    refresh_token: str
    expire_time: int = Field(alias="expireTime")
    refresh_expire_time: int = Field(alias="refresh_expireTime")

    def to_credential(self) -> Credential:
        return Credential(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            expire_time=self.expire_time,
            refresh_expire_time=self.refresh_expire_time,
            status=CredentialStatus.VALID,
        )


class AuthCodeData(_VendorModel):
    authorization_code: str


class _ListData(_VendorModel):
    """Listing payloads; the vendor sends ``null`` instead of ``[]``."""

    @field_validator("*", mode="before")
    @classmethod
    def _null_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class HomeListData(_ListData):
    homes: list[Home] = Field(default_factory=list, alias="homeList")


class RoomListData(_ListData):
    rooms: list[Room] = Field(default_factory=list, alias="roomList")


class DeviceListData(_ListData):
    devices: list[Device] = Field(default_factory=list, alias="deviceList")


class IndependentDeviceListData(_ListData):
    devices: list[Device] = Field(default_factory=list, alias="deviceInfoList")
