from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional

from thermolink.errors import InvalidTransition, PermissionDenied, ThermolinkError

from .session_state import SessionSnapshot

ACCEPTED = "accepted"
REJECTED = "rejected"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a single session command."""
    command: str
    status: str
    snapshot: SessionSnapshot
    error: Optional[ThermolinkError] = None

    @classmethod
    def accepted(cls, command: str, snapshot: SessionSnapshot) -> "CommandResult":
        return cls(command=command, status=ACCEPTED, snapshot=snapshot)

    @classmethod
    def from_error(cls, command: str, error: ThermolinkError, snapshot: SessionSnapshot) -> "CommandResult":
        # a command that was never attempted is a rejection; one that was attempted and broke is a failure
        status = REJECTED if isinstance(error, (InvalidTransition, PermissionDenied)) else FAILED
        return cls(command=command, status=status, snapshot=snapshot, error=error)

    @property
    def ok(self) -> bool:
        return self.status == ACCEPTED

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "command": self.command,
            "status": self.status,
            "snapshot": self.snapshot.to_dict(),
        }
        if self.error is not None:
            payload["error"] = {"code": self.error.code, "message": str(self.error)}
        return payload
