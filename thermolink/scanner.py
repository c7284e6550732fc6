"""Discovery primitives driven by the session's scan cycle."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, TYPE_CHECKING, TypeAlias

from bleak import BleakScanner
from bleak.exc import BleakError

from thermolink.errors import TransportFailure
from thermolink.models.device import Device

logger = logging.getLogger(__name__)

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:  # pragma: no cover
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData

DeviceCallback = Callable[[Device], None]
UNKNOWN_NAME = "Unknown sensor"


def device_id_for(address: str) -> str:
	"""Stable registry id for a transport address."""
	return address.replace(":", "").replace("-", "").lower()


class Discovery(Protocol):
	"""Runs until it has nothing more to report or its task is cancelled.

	The asyncio task running :meth:`discover` is the cancellable handle;
	cancelling it must stop the radio scan.
	"""

	async def discover(self, on_found: DeviceCallback) -> None:
		...


@dataclass(slots=True)
class ScanResult:
	"""The parts of one advertisement the filters and the registry need."""

	address: str
	name: Optional[str]
	uuids: tuple[str, ...] = ()

	@classmethod
	def from_bleak(
		cls,
		device: BLEDevice,
		advertisement: AdvertisementData | None = None,
	) -> "ScanResult":
		name = device.name or None
		uuids: Sequence[str] = ()
		if advertisement is not None:
			name = getattr(advertisement, "local_name", None) or name
			uuids = advertisement.service_uuids or ()
		return cls(
			address=device.address,
			name=name,
			uuids=tuple(str(uuid) for uuid in uuids),
		)

	def to_device(self) -> Device:
		return Device(
			id=device_id_for(self.address),
			name=self.name or UNKNOWN_NAME,
			address=self.address,
		)


@dataclass(slots=True)
class ScannerConfig:
	"""Filters and backend options used by :class:`BleakDiscovery`."""

	service_uuids: Sequence[str] | None = None
	address_allowlist: Sequence[str] | None = None
	name_prefixes: Sequence[str] | None = None
	max_devices: int | None = None
	scanning_mode: Optional[str] = None
	adapter: Optional[str] = None
	detection_kwargs: Dict[str, Any] = field(default_factory=dict)
	_address_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)
	_service_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)

	def __post_init__(self) -> None:
		if self.max_devices is not None and self.max_devices <= 0:
			raise ValueError("max_devices must be positive when provided")
		if self.address_allowlist:
			self._address_index = frozenset(addr.lower() for addr in self.address_allowlist)
		if self.service_uuids:
			self._service_index = frozenset(uuid.lower() for uuid in self.service_uuids)

	def allows(self, result: ScanResult) -> bool:
		if self._address_index and result.address.lower() not in self._address_index:
			return False

		if self.name_prefixes:
			if not result.name or not any(result.name.startswith(prefix) for prefix in self.name_prefixes):
				return False

		if self._service_index:
			observed = {uuid.lower() for uuid in result.uuids}
			if not observed.issuperset(self._service_index):
				return False

		return True

	def bleak_kwargs(self) -> Dict[str, Any]:
		kwargs = dict(self.detection_kwargs)
		if self.service_uuids and "service_uuids" not in kwargs:
			kwargs["service_uuids"] = list(self.service_uuids)
		if self.adapter and "adapter" not in kwargs:
			kwargs["adapter"] = self.adapter
		if self.scanning_mode and "scanning_mode" not in kwargs:
			kwargs["scanning_mode"] = self.scanning_mode
		return kwargs


class BleakDiscovery:
	"""Discovery backed by :class:`bleak.BleakScanner`.

	Each distinct address is reported once per :meth:`discover` call. The
	scan stops early when ``max_devices`` addresses have been reported.
	"""

	def __init__(self, config: ScannerConfig | None = None) -> None:
		self.config = config or ScannerConfig()
		self._seen: set[str] = set()
		self._on_found: Optional[DeviceCallback] = None
		self._stop_event: Optional[asyncio.Event] = None

	async def discover(self, on_found: DeviceCallback) -> None:
		self._seen.clear()
		self._on_found = on_found
		self._stop_event = asyncio.Event()

		try:
			scanner = BleakScanner(detection_callback=self._on_detection, **self.config.bleak_kwargs())
			async with scanner:
				await self._stop_event.wait()
		except (BleakError, OSError) as exc:
			logger.warning("BLE scan failed: %s", exc)
			raise TransportFailure(f"BLE scan failed: {exc}") from exc
		finally:
			self._on_found = None

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		result = ScanResult.from_bleak(device, advertisement)
		if result.address in self._seen or not self.config.allows(result):
			return

		self._seen.add(result.address)
		if self._on_found is not None:
			try:
				self._on_found(result.to_device())
			except Exception:  # pragma: no cover - diagnostic path
				logger.exception("discovery callback raised an exception")

		if (
			self.config.max_devices is not None
			and len(self._seen) >= self.config.max_devices
			and self._stop_event is not None
			and not self._stop_event.is_set()
		):
			self._stop_event.set()


class SimulatedDiscovery:
	"""Replays a fixed list of devices instead of touching the radio.

	With ``hold=True`` the call idles after the replay until the scan cycle
	times out or is cancelled, which is what a real scanner does. With
	``hold=False`` it returns straight away.
	"""

	def __init__(
		self,
		devices: Sequence[Device] = (),
		*,
		interval: float = 0.0,
		hold: bool = True,
	) -> None:
		self.devices = tuple(devices)
		self.interval = max(0.0, interval)
		self.hold = hold
		self.calls = 0
		self.cancelled = 0

	async def discover(self, on_found: DeviceCallback) -> None:
		self.calls += 1
		try:
			for device in self.devices:
				if self.interval:
					await asyncio.sleep(self.interval)
				on_found(device)
			if self.hold:
				await asyncio.Event().wait()
		except asyncio.CancelledError:
			self.cancelled += 1
			raise


__all__ = [
	"Discovery",
	"DeviceCallback",
	"ScanResult",
	"ScannerConfig",
	"BleakDiscovery",
	"SimulatedDiscovery",
	"device_id_for",
]
