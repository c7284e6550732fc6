"""Value types shared by the registry, the state machine, and the HTTP adapter.

Everything here is immutable so that snapshots can be handed to observers
without copying.
"""
from .device import Device
from .session_state import ConnectionState, SessionSnapshot
from .command_result import ACCEPTED, FAILED, REJECTED, CommandResult

__all__ = [
    "Device",
    "ConnectionState",
    "SessionSnapshot",
    "CommandResult",
    "ACCEPTED",
    "REJECTED",
    "FAILED",
]
