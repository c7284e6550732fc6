"""Connection primitive built on top of bleak."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, TYPE_CHECKING, TypeAlias

from bleak import BleakClient
from bleak.exc import BleakError

from thermolink.errors import TransportFailure
from thermolink.journal import EventJournal

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing hints
	from bleak import BleakClient as _BleakClientType
else:  # pragma: no cover
	_BleakClientType = Any

BleakClientType: TypeAlias = _BleakClientType


class Connector(Protocol):
	"""Opens and tears down transport links for a session."""

	async def open_connection(self, address: str) -> bool:
		...

	async def close_all(self) -> None:
		...


@dataclass(slots=True)
class SessionConfig:
	"""Configuration bundle for :class:`DeviceSession`."""

	address: str
	adapter: Optional[str] = None
	timeout: float = 10.0
	journal: Optional[EventJournal] = None


class DeviceSession:
	"""Thin wrapper around :class:`bleak.BleakClient` for one sensor."""

	def __init__(self, config: SessionConfig) -> None:
		self.config = config
		self._client: Optional[BleakClientType] = None
		self._lock = asyncio.Lock()

	async def connect(self) -> bool:
		async with self._lock:
			if self._client is not None and self._client.is_connected:
				return True

			kwargs: Dict[str, Any] = {"timeout": self.config.timeout}
			if self.config.adapter:
				kwargs["adapter"] = self.config.adapter
			client = BleakClient(self.config.address, **kwargs)
			self._client = client

			try:
				await client.connect()
			except (BleakError, OSError, asyncio.TimeoutError) as exc:
				self._client = None
				await self._journal("connect", status="error", message=str(exc))
				logger.warning("Connection attempt failed for %s: %s", self.config.address, exc)
				raise TransportFailure(f"connect to {self.config.address} failed: {exc}") from exc

			if not client.is_connected:
				self._client = None
				await self._journal("connect", status="failed")
				return False

			await self._journal("connect", status="ok")
			return True

	async def disconnect(self) -> None:
		async with self._lock:
			if not self._client:
				return
			try:
				await self._client.disconnect()
				await self._journal("disconnect", status="ok")
			except (BleakError, OSError) as exc:
				await self._journal("disconnect", status="error", message=str(exc))
				logger.warning("Disconnect encountered error for %s: %s", self.config.address, exc)
			finally:
				self._client = None

	async def _journal(self, event: str, *, status: str, message: Optional[str] = None) -> None:
		if not self.config.journal:
			return
		try:
			await self.config.journal.record(event, device=self.config.address, status=status, message=message)
		except OSError:  # pragma: no cover - journal must not break the link
			logger.debug("Journal write failed for %s", event, exc_info=True)


class BleakConnector:
	"""Keeps one :class:`DeviceSession` per connected address."""

	def __init__(
		self,
		*,
		adapter: Optional[str] = None,
		timeout: float = 10.0,
		journal: Optional[EventJournal] = None,
	) -> None:
		self.adapter = adapter
		self.timeout = timeout
		self.journal = journal
		self._sessions: Dict[str, DeviceSession] = {}

	async def open_connection(self, address: str) -> bool:
		session = self._sessions.get(address)
		if session is None:
			session = DeviceSession(
				SessionConfig(
					address=address,
					adapter=self.adapter,
					timeout=self.timeout,
					journal=self.journal,
				)
			)
		connected = await session.connect()
		if connected:
			self._sessions[address] = session
		else:
			self._sessions.pop(address, None)
		return connected

	async def close_all(self) -> None:
		sessions = list(self._sessions.values())
		self._sessions.clear()
		for session in sessions:
			with contextlib.suppress(TransportFailure):
				await session.disconnect()


__all__ = [
	"Connector",
	"SessionConfig",
	"DeviceSession",
	"BleakConnector",
]
