"""Domain-specific errors for thermolink.

Every command on a session reports failures through one of these types. They
are recoverable at the caller boundary and carry a stable ``code`` that the
HTTP adapter and the event journal use verbatim.
"""
from __future__ import annotations


class ThermolinkError(Exception):
    """Base error for thermolink."""

    code = "error"


class PermissionDenied(ThermolinkError):
    """Raised when a transport operation needs a permission that is not granted."""

    code = "permission_denied"


class UnknownDevice(ThermolinkError):
    """Raised when a command references a device id absent from the registry."""

    code = "unknown_device"

    def __init__(self, device_id: str) -> None:
        super().__init__(f"Unknown device '{device_id}'")
        self.device_id = device_id


class InvalidTransition(ThermolinkError):
    """Raised when a command is not valid from the current state."""

    code = "invalid_transition"

    def __init__(self, command: str, state: object) -> None:
        label = getattr(state, "value", state)
        super().__init__(f"Command '{command}' is not valid while {label}")
        self.command = command
        self.state = state


class DuplicateDevice(ThermolinkError):
    """Raised when a registry insertion conflicts with an existing entry."""

    code = "duplicate_device"


class TransportFailure(ThermolinkError):
    """Raised when the discovery or connect primitive fails."""

    code = "transport_failure"


__all__ = [
    "ThermolinkError",
    "PermissionDenied",
    "UnknownDevice",
    "InvalidTransition",
    "DuplicateDevice",
    "TransportFailure",
]
