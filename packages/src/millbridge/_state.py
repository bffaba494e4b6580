"""Persistence of the session credential and the last inventory.

The bridge survives restarts without a new login as long as the
refresh window has not lapsed: the credential is written after every
change and the inventory after every successful poll tick.

Two adapters satisfy :class:`StatePort`:

- :class:`JsonStateStore` — JSON files in a state directory, written
  atomically (temp file + ``os.replace``).
- :class:`MemoryStateStore` — in-process double for tests.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from millbridge._models import Credential, InventorySnapshot

logger = logging.getLogger(__name__)

CREDENTIAL_FILE = "credential.json"
INVENTORY_FILE = "inventory.json"


@runtime_checkable
class StatePort(Protocol):
    """Durable storage for the credential and inventory."""

    def load_credential(self) -> Credential | None: ...

    def save_credential(self, credential: Credential) -> None: ...

    def clear_credential(self) -> None: ...

    def load_inventory(self) -> InventorySnapshot | None: ...

    def save_inventory(self, snapshot: InventorySnapshot) -> None: ...


class JsonStateStore:
    """File-backed :class:`StatePort`.

    Args:
        state_dir: Directory for the state files; created on first write.
    """

    def __init__(self, state_dir: str | Path) -> None:
        self._dir = Path(state_dir)

    @property
    def state_dir(self) -> Path:
        return self._dir

    def load_credential(self) -> Credential | None:
        return self._load(CREDENTIAL_FILE, Credential)

    def save_credential(self, credential: Credential) -> None:
        self._write(CREDENTIAL_FILE, credential)

    def clear_credential(self) -> None:
        (self._dir / CREDENTIAL_FILE).unlink(missing_ok=True)

    def load_inventory(self) -> InventorySnapshot | None:
        return self._load(INVENTORY_FILE, InventorySnapshot)

    def save_inventory(self, snapshot: InventorySnapshot) -> None:
        self._write(INVENTORY_FILE, snapshot)

    def _load[M: BaseModel](self, name: str, model: type[M]) -> M | None:
        path = self._dir / name
        try:
            raw = path.read_bytes()
        except FileNotFoundError:
            return None
        try:
            return model.model_validate_json(raw)
        except ValidationError:
            logger.warning("Ignoring unreadable state file %s", path, exc_info=True)
            return None

    def _write(self, name: str, model: BaseModel) -> None:
        self._dir.mkdir(parents=True, exist_ok=True)
        target = self._dir / name
        fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=f".{name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(model.model_dump_json(by_alias=False, indent=2))
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug("Saved %s", target)


@dataclass
class MemoryStateStore:
    """In-memory :class:`StatePort` that records writes."""

    credential: Credential | None = None
    inventory: InventorySnapshot | None = None
    credential_writes: int = 0
    inventory_writes: int = 0

    def load_credential(self) -> Credential | None:
        return self.credential

    def save_credential(self, credential: Credential) -> None:
        self.credential = credential
        self.credential_writes += 1

    def clear_credential(self) -> None:
        self.credential = None
        self.credential_writes += 1

    def load_inventory(self) -> InventorySnapshot | None:
        return self.inventory

    def save_inventory(self, snapshot: InventorySnapshot) -> None:
        self.inventory = snapshot
        self.inventory_writes += 1
