"""In-memory Mill API double.

:class:`FakeMillApi` satisfies :class:`~millbridge._api.MillApiPort`
with a configurable inventory, token issuance and failure injection,
and records every call for assertions.

Example::

    api = FakeMillApi(clock=clock)
    api.add_home(1)
    api.add_room(1, 10)
    api.add_device(10, Device(id=100, current_temp=21.5))
    api.fail("get_rooms", 2)
"""

from __future__ import annotations

from dataclasses import dataclass, field

from millbridge._errors import ApiError
from millbridge._models import Device, Home, Room, TokenData
from millbridge.testing._clock import FakeClock

ONE_HOUR_MS = 60 * 60 * 1000
THIRTY_DAYS_MS = 30 * 24 * ONE_HOUR_MS


@dataclass
class FakeMillApi:
    """Test double for the vendor API.

    Attributes:
        clock: Clock used to stamp issued tokens; fixed stamps when ``None``.
        calls: ``(operation, arguments)`` for every call, in order.
        issued: Number of token pairs issued so far.
        setpoints: Accepted ``(device_id, hold_temp)`` control calls.
    """

    clock: FakeClock | None = None
    access_ttl_ms: int = 2 * ONE_HOUR_MS
    refresh_ttl_ms: int = THIRTY_DAYS_MS
    partner_auth_code: str = "partner-code"
    homes: list[Home] = field(default_factory=list)
    rooms: dict[int, list[Room]] = field(default_factory=dict)
    devices: dict[int, list[Device]] = field(default_factory=dict)
    independent: dict[int, list[Device]] = field(default_factory=dict)
    calls: list[tuple[str, tuple[object, ...]]] = field(default_factory=list)
    issued: int = 0
    setpoints: list[tuple[int, int]] = field(default_factory=list)
    _failures: dict[tuple[str, int | None], ApiError] = field(
        default_factory=dict, repr=False
    )

    # -- Inventory builders -------------------------------------------------

    def add_home(self, home_id: int, name: str = "") -> Home:
        home = Home(id=home_id, name=name or f"home-{home_id}")
        self.homes.append(home)
        self.rooms.setdefault(home_id, [])
        self.independent.setdefault(home_id, [])
        return home

    def add_room(self, home_id: int, room_id: int, name: str = "") -> Room:
        room = Room(id=room_id, name=name or f"room-{room_id}")
        self.rooms.setdefault(home_id, []).append(room)
        self.devices.setdefault(room_id, [])
        return room

    def add_device(self, room_id: int, device: Device) -> Device:
        self.devices.setdefault(room_id, []).append(device)
        return device

    def add_independent_device(self, home_id: int, device: Device) -> Device:
        self.independent.setdefault(home_id, []).append(device)
        return device

    # -- Failure injection --------------------------------------------------

    def fail(
        self,
        operation: str,
        key: int | None = None,
        error: ApiError | None = None,
    ) -> None:
        """Make *operation* raise; *key* narrows it to one home/room/device id."""
        self._failures[(operation, key)] = error or ApiError(
            f"{operation}: injected failure", error_code=1
        )

    def recover(self, operation: str, key: int | None = None) -> None:
        self._failures.pop((operation, key), None)

    def calls_to(self, operation: str) -> list[tuple[object, ...]]:
        return [args for op, args in self.calls if op == operation]

    # -- MillApiPort --------------------------------------------------------

    async def exchange_auth_code(
        self, auth_code: str, username: str, password: str
    ) -> TokenData:
        self._record("exchange_auth_code", auth_code, username, password)
        return self._issue()

    async def refresh_token(self, refresh_token: str) -> TokenData:
        self._record("refresh_token", refresh_token)
        return self._issue()

    async def get_homes(self, access_token: str) -> list[Home]:
        self._record("get_homes", access_token)
        return list(self.homes)

    async def get_rooms(self, access_token: str, home_id: int) -> list[Room]:
        self._record("get_rooms", access_token, home_id, key=home_id)
        return [
            room.model_copy(update={"home_id": home_id})
            for room in self.rooms.get(home_id, [])
        ]

    async def get_devices(self, access_token: str, room_id: int) -> list[Device]:
        self._record("get_devices", access_token, room_id, key=room_id)
        return [
            device.model_copy(update={"room_id": room_id})
            for device in self.devices.get(room_id, [])
        ]

    async def get_independent_devices(
        self, access_token: str, home_id: int
    ) -> list[Device]:
        self._record("get_independent_devices", access_token, home_id, key=home_id)
        return [
            device.model_copy(update={"room_id": None})
            for device in self.independent.get(home_id, [])
        ]

    async def control_device(
        self, access_token: str, device_id: int, hold_temp: int
    ) -> None:
        self._record(
            "control_device", access_token, device_id, hold_temp, key=device_id
        )
        self.setpoints.append((device_id, hold_temp))

    async def request_auth_code(self, partner_url: str, hub_token: str) -> str:
        self._record("request_auth_code", partner_url, hub_token)
        return self.partner_auth_code

    # -- Internal -----------------------------------------------------------

    def _record(self, operation: str, *args: object, key: int | None = None) -> None:
        self.calls.append((operation, args))
        for failure_key in ((operation, key), (operation, None)):
            error = self._failures.get(failure_key)
            if error is not None:
                raise error

    def _issue(self) -> TokenData:
        self.issued += 1
        now = self.clock.epoch_ms() if self.clock is not None else 0
        return TokenData(
            access_token=f"access-{self.issued}",
            refresh_token=f"refresh-{self.issued}",
            expire_time=now + self.access_ttl_ms,
            refresh_expire_time=now + self.refresh_ttl_ms,
        )
