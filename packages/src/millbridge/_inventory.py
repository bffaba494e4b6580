"""Inventory fetcher: walks the vendor home → room → device tree.

The walk is strictly sequential because every listing needs the parent
id from the previous step:

1. ``get_homes``
2. per home: ``get_rooms``, then ``get_devices`` per room
3. per home: ``get_independent_devices``

Only a failed home listing aborts the walk (:class:`FetchError`).  Any
other failed call is recorded as a :class:`BranchFailure` and its
branch contributes nothing; siblings are still walked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum

from millbridge._api import MillApiPort
from millbridge._errors import ApiError, FetchError
from millbridge._models import Device, Home, InventorySnapshot, Room

logger = logging.getLogger(__name__)


class BranchKind(StrEnum):
    ROOMS = "rooms"
    DEVICES = "devices"
    INDEPENDENT_DEVICES = "independent_devices"


@dataclass(frozen=True, slots=True)
class BranchFailure:
    """One skipped branch of the inventory walk.

    ``parent_id`` is the home id for ``ROOMS`` and
    ``INDEPENDENT_DEVICES``, the room id for ``DEVICES``.
    """

    kind: BranchKind
    parent_id: int
    error: ApiError


@dataclass(frozen=True, slots=True)
class FetchResult:
    """A snapshot plus the branches that could not be walked."""

    snapshot: InventorySnapshot
    failures: tuple[BranchFailure, ...] = field(default=())

    @property
    def degraded(self) -> bool:
        """True when at least one branch was skipped."""
        return bool(self.failures)


class InventoryFetcher:
    """Builds an :class:`InventorySnapshot` from the vendor API."""

    def __init__(self, api: MillApiPort) -> None:
        self._api = api

    async def fetch_all(self, access_token: str) -> FetchResult:
        """Walk the full tree with *access_token*.

        Raises:
            FetchError: The home listing failed; no partial result.
        """
        try:
            homes = await self._api.get_homes(access_token)
        except ApiError as exc:
            msg = f"Home listing failed: {exc}"
            raise FetchError(msg) from exc

        walk = _Walk()
        for home in homes:
            await self._walk_home(access_token, home, walk)

        snapshot = InventorySnapshot(
            homes=tuple(homes),
            rooms=tuple(walk.rooms),
            devices=tuple(walk.devices),
            independent_devices=tuple(walk.independent),
        )
        logger.info(
            "Fetched %d homes, %d rooms, %d devices (%d skipped branches)",
            len(snapshot.homes),
            len(snapshot.rooms),
            len(snapshot.devices),
            len(walk.failures),
        )
        return FetchResult(snapshot=snapshot, failures=tuple(walk.failures))

    async def _walk_home(self, token: str, home: Home, walk: _Walk) -> None:
        try:
            rooms = await self._api.get_rooms(token, home.id)
        except ApiError as exc:
            walk.skip(BranchKind.ROOMS, home.id, exc)
            rooms = []

        for room in rooms:
            walk.rooms.append(room)
            try:
                devices = await self._api.get_devices(token, room.id)
            except ApiError as exc:
                walk.skip(BranchKind.DEVICES, room.id, exc)
                continue
            walk.devices.extend(devices)

        try:
            independent = await self._api.get_independent_devices(token, home.id)
        except ApiError as exc:
            walk.skip(BranchKind.INDEPENDENT_DEVICES, home.id, exc)
            return
        walk.devices.extend(independent)
        walk.independent.extend(independent)


@dataclass
class _Walk:
    """Accumulator for one :meth:`InventoryFetcher.fetch_all` call."""

    rooms: list[Room] = field(default_factory=list)
    devices: list[Device] = field(default_factory=list)
    independent: list[Device] = field(default_factory=list)
    failures: list[BranchFailure] = field(default_factory=list)

    def skip(self, kind: BranchKind, parent_id: int, error: ApiError) -> None:
        logger.warning("Skipping %s of %d: %s", kind, parent_id, error)
        self.failures.append(BranchFailure(kind, parent_id, error))
