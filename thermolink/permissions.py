"""Permission gate consumed by the session before any radio operation."""
from __future__ import annotations

import logging
from typing import Callable, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class PermissionGate(Protocol):
    def has_permission(self) -> bool:
        ...

    def request_permission(self) -> None:
        ...


class StaticPermissionGate:
    """In-process gate whose answer is set by the host application.

    ``request_permission`` only records the request; the host decides later
    whether to :meth:`grant`. After :meth:`deny_permanently` further requests
    are pointless and :attr:`needs_settings_redirect` tells the UI to send the
    user to the system settings instead.
    """

    def __init__(self, granted: bool = False) -> None:
        self._granted = granted
        self._permanently_denied = False
        self.requests = 0

    def has_permission(self) -> bool:
        return self._granted

    def request_permission(self) -> None:
        self.requests += 1
        logger.debug("permission requested (count=%d)", self.requests)

    def grant(self) -> None:
        self._granted = True
        self._permanently_denied = False

    def revoke(self) -> None:
        self._granted = False

    def deny_permanently(self) -> None:
        self._granted = False
        self._permanently_denied = True

    @property
    def needs_settings_redirect(self) -> bool:
        return self._permanently_denied


class CallablePermissionGate:
    """Adapt a pair of host callbacks to :class:`PermissionGate`."""

    def __init__(
        self,
        check: Callable[[], bool],
        request: Optional[Callable[[], None]] = None,
    ) -> None:
        self._check = check
        self._request = request

    def has_permission(self) -> bool:
        return bool(self._check())

    def request_permission(self) -> None:
        if self._request is None:
            return
        try:
            self._request()
        except Exception:  # pragma: no cover - host callback failure
            logger.exception("permission request callback raised")


__all__ = [
    "PermissionGate",
    "StaticPermissionGate",
    "CallablePermissionGate",
]
