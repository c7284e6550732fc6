"""Bounded retry for the connect primitive."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from thermolink.connector import Connector
from thermolink.errors import TransportFailure
from thermolink.journal import EventJournal

logger = logging.getLogger(__name__)


class ConnectRetry:
    """Call ``open_connection`` up to ``attempts`` times with exponential backoff.

    A ``False`` return and a :class:`TransportFailure` both count as a failed
    attempt. The last failure is raised as :class:`TransportFailure` once the
    attempts are exhausted.
    """

    def __init__(
        self,
        *,
        attempts: int = 1,
        base_backoff: float = 0.5,
        max_backoff: float = 4.0,
        journal: Optional[EventJournal] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.attempts = max(1, attempts)
        self.base_backoff = max(0.0, base_backoff)
        self.max_backoff = max(self.base_backoff, max_backoff)
        self.journal = journal
        self._sleep = sleep

    async def run(self, connector: Connector, address: str) -> None:
        backoff = self.base_backoff
        last_error: Optional[TransportFailure] = None

        for attempt in range(1, self.attempts + 1):
            try:
                if await connector.open_connection(address):
                    await self._log(address, attempt, status="ok")
                    return
                last_error = TransportFailure(f"connection to {address} was refused")
            except TransportFailure as exc:
                last_error = exc
            except (OSError, RuntimeError) as exc:
                last_error = TransportFailure(f"connect to {address} failed: {exc}")
                last_error.__cause__ = exc

            await self._log(address, attempt, status="error", message=str(last_error))
            logger.warning(
                "Connect attempt %d/%d for %s failed: %s",
                attempt,
                self.attempts,
                address,
                last_error,
            )
            if attempt < self.attempts and backoff > 0:
                await self._sleep(backoff)
                backoff = min(backoff * 2, self.max_backoff)

        assert last_error is not None
        raise last_error

    async def _log(self, address: str, attempt: int, *, status: str, message: Optional[str] = None) -> None:
        if not self.journal:
            return
        try:
            await self.journal.record(
                "connect_attempt",
                device=address,
                status=status,
                message=message,
                detail={"attempt": attempt},
            )
        except OSError:  # pragma: no cover - I/O failure safeguard
            logger.debug("Journal write failed for connect_attempt", exc_info=True)


__all__ = ["ConnectRetry"]
