"""Paired device directory persisted as JSON."""

import json
import logging
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from config import CONFIG_DIR
from discovery.models import RemoteEndpoint

logger = logging.getLogger(__name__)


class DeviceDirectory(Protocol):
    """Anything that can enumerate already-paired endpoints."""

    def list_paired_endpoints(self) -> tuple[RemoteEndpoint, ...]:
        ...


class PairedDeviceStore:
    """Persists devices paired out-of-band, in the order they were added."""

    def __init__(self, store_path: Path | None = None):
        self._store_path = store_path or CONFIG_DIR / "paired_devices.json"
        self._devices: dict[str, RemoteEndpoint] = {}
        self._load()

    def _load(self) -> None:
        if not self._store_path.exists():
            return

        try:
            data = json.loads(self._store_path.read_text())
            for entry in data:
                device = RemoteEndpoint(**entry)
                self._devices[device.address] = device
            logger.info(f"Loaded {len(self._devices)} paired devices.")
        except (OSError, ValueError, TypeError, ValidationError) as e:
            logger.error(f"Failed to load paired devices: {e}")
            self._devices.clear()

    def _save(self) -> None:
        try:
            self._store_path.parent.mkdir(parents=True, exist_ok=True)
            data = [device.model_dump() for device in self._devices.values()]
            self._store_path.write_text(json.dumps(data, indent=2))
        except OSError as e:
            logger.error(f"Failed to save paired devices: {e}")

    def add(self, name: str, address: str) -> RemoteEndpoint:
        """Record a paired device; re-adding an address updates its name in place."""
        device = RemoteEndpoint(name=name, address=address.upper())
        self._devices[device.address] = device
        self._save()
        logger.info(f"Added paired device: {device}")
        return device

    def remove(self, address: str) -> bool:
        device = self._devices.pop(address.upper(), None)
        if device is None:
            return False
        self._save()
        logger.info(f"Removed paired device: {device}")
        return True

    def list_paired_endpoints(self) -> tuple[RemoteEndpoint, ...]:
        return tuple(self._devices.values())
