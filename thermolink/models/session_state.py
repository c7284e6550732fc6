from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from .device import Device


class ConnectionState(Enum):
    """Lifecycle of a sensor session."""

    DISABLED = "disabled"
    SEARCHING = "searching"
    CONNECTED = "connected"
    READY = "ready"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Point-in-time view of a session handed to observers."""

    state: ConnectionState
    devices: Tuple[Device, ...] = ()
    is_scanning: bool = False
    last_error: Optional[str] = None
    timestamp: datetime = field(default_factory=_utc_now)

    def device(self, device_id: str) -> Optional[Device]:
        for item in self.devices:
            if item.id == device_id:
                return item
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "devices": [item.to_dict() for item in self.devices],
            "is_scanning": self.is_scanning,
            "last_error": self.last_error,
            "timestamp": self.timestamp.isoformat(timespec="milliseconds"),
        }
