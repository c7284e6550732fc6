from __future__ import annotations
from dataclasses import dataclass, replace
from typing import Any, Dict
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Device:
    """A discovered temperature sensor.

    Identity fields never change after discovery. ``is_connected`` is the only
    mutable aspect and is updated by building a new instance.
    """
    id: str
    name: str
    address: str
    is_connected: bool = False

    def with_connected(self, connected: bool = True) -> "Device":
        logger.debug("Device %s connected=%s", self.id, connected)
        return replace(self, is_connected=connected)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "address": self.address,
            "is_connected": self.is_connected,
        }
