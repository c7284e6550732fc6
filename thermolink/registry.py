"""Ordered registry of discovered sensors for one session."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, Optional, Tuple

from thermolink.errors import DuplicateDevice, UnknownDevice
from thermolink.models.device import Device

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Insertion-ordered collection of :class:`Device` keyed by id.

    Display order is discovery order. The registry is not thread-safe; the
    owning :class:`~thermolink.state_machine.ConnectionStateMachine` serialises
    every mutation.
    """

    def __init__(self, devices: Optional[Iterable[Device]] = None) -> None:
        self._devices: Dict[str, Device] = {}
        for device in devices or ():
            self.upsert(device)

    def upsert(self, device: Device) -> Device:
        if device.id in self._devices:
            raise DuplicateDevice(f"Device id '{device.id}' is already registered")
        address = device.address.lower()
        for existing in self._devices.values():
            if existing.address.lower() == address:
                raise DuplicateDevice(
                    f"Address {device.address} is already registered as '{existing.id}'"
                )
        self._devices[device.id] = device
        logger.debug("registry upsert %s (%s)", device.id, device.address)
        return device

    def mark_connected(self, device_id: str) -> Device:
        current = self._devices.get(device_id)
        if current is None:
            raise UnknownDevice(device_id)
        updated = current.with_connected(True)
        # plain dict assignment keeps the key's original position
        self._devices[device_id] = updated
        return updated

    def get(self, device_id: str) -> Optional[Device]:
        return self._devices.get(device_id)

    def snapshot(self) -> Tuple[Device, ...]:
        return tuple(self._devices.values())

    def clear(self) -> None:
        self._devices.clear()

    def retain_connected(self) -> int:
        """Drop every device that is not connected; return how many were dropped."""
        stale = [key for key, device in self._devices.items() if not device.is_connected]
        for key in stale:
            del self._devices[key]
        if stale:
            logger.debug("registry dropped %d stale devices", len(stale))
        return len(stale)

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._devices

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(self.snapshot())


__all__ = ["DeviceRegistry"]
