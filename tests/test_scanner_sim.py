"""Simulation tests for the BLE discovery primitive."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, List, Optional, Tuple
from unittest import IsolatedAsyncioTestCase
from unittest.mock import patch

from bleak.exc import BleakError

from thermolink.errors import TransportFailure
from thermolink.models import Device
from thermolink.scanner import BleakDiscovery, ScanResult, ScannerConfig, SimulatedDiscovery, device_id_for


def _adv(local_name: Optional[str] = None, rssi: int = -60, uuids: Optional[List[str]] = None) -> SimpleNamespace:
	return SimpleNamespace(
		local_name=local_name,
		rssi=rssi,
		service_uuids=uuids,
		manufacturer_data={0x0059: b"\x01\x02"},
		is_connectable=True,
	)


class FakeBleakScanner:
	"""Minimal async context manager that replays predetermined events."""

	events: List[Tuple[Any, Any]] = []
	fail_with: Optional[Exception] = None
	last_kwargs: dict = {}

	def __init__(self, detection_callback=None, **kwargs: Any) -> None:
		self._callback = detection_callback
		self._task: Optional[asyncio.Task[None]] = None
		FakeBleakScanner.last_kwargs = kwargs

	async def __aenter__(self):
		if self.fail_with is not None:
			raise self.fail_with
		self._task = asyncio.create_task(self._emit())
		return self

	async def __aexit__(self, exc_type, exc, tb):
		if self._task:
			self._task.cancel()
			await asyncio.gather(self._task, return_exceptions=True)
		return False

	async def _emit(self) -> None:
		await asyncio.sleep(0)
		for device, advertisement in list(self.events):
			self._callback(device, advertisement)
			await asyncio.sleep(0)


class BleakDiscoverySimulationTest(IsolatedAsyncioTestCase):
	def setUp(self) -> None:
		FakeBleakScanner.events = []
		FakeBleakScanner.fail_with = None
		FakeBleakScanner.last_kwargs = {}

	async def test_discover_reports_filtered_devices_until_limit(self) -> None:
		sensor_one = SimpleNamespace(address="AA:BB:CC:DD:EE:01", name="Thermo-1", rssi=-52)
		headphones = SimpleNamespace(address="AA:BB:CC:DD:EE:09", name="Headphones", rssi=-40)
		sensor_two = SimpleNamespace(address="AA:BB:CC:DD:EE:02", name=None, rssi=-58)
		FakeBleakScanner.events = [
			(sensor_one, _adv()),
			(headphones, _adv()),
			(sensor_two, _adv(local_name="Thermo-2")),
		]
		found: List[Device] = []
		discovery = BleakDiscovery(ScannerConfig(name_prefixes=("Thermo",), max_devices=2, adapter="hci1"))

		with patch("thermolink.scanner.BleakScanner", FakeBleakScanner):
			await asyncio.wait_for(discovery.discover(found.append), timeout=1.0)

		self.assertEqual([device.name for device in found], ["Thermo-1", "Thermo-2"])
		self.assertEqual(found[1].address, "AA:BB:CC:DD:EE:02")
		self.assertEqual(found[0].id, "aabbccddee01")
		self.assertFalse(found[0].is_connected)
		self.assertEqual(FakeBleakScanner.last_kwargs, {"adapter": "hci1"})

	async def test_repeated_advertisements_are_reported_once(self) -> None:
		sensor = SimpleNamespace(address="AA:BB:CC:DD:EE:03", name="Thermo-3", rssi=-70)
		FakeBleakScanner.events = [(sensor, _adv(rssi=-70)), (sensor, _adv(rssi=-71))]
		found: List[Device] = []
		discovery = BleakDiscovery()

		with patch("thermolink.scanner.BleakScanner", FakeBleakScanner):
			task = asyncio.create_task(discovery.discover(found.append))
			await asyncio.sleep(0.05)
			task.cancel()
			await asyncio.gather(task, return_exceptions=True)

		self.assertTrue(task.cancelled())
		self.assertEqual(len(found), 1)
		self.assertEqual(found[0].address, "AA:BB:CC:DD:EE:03")

	async def test_scanner_errors_surface_as_transport_failure(self) -> None:
		FakeBleakScanner.fail_with = BleakError("No Bluetooth adapters found.")

		with patch("thermolink.scanner.BleakScanner", FakeBleakScanner):
			with self.assertRaises(TransportFailure) as ctx:
				await BleakDiscovery().discover(lambda device: None)

		self.assertIsInstance(ctx.exception.__cause__, BleakError)

	async def test_service_filter_requires_all_uuids(self) -> None:
		wanted = "0000181a-0000-1000-8000-00805f9b34fb"
		matching = SimpleNamespace(address="AA:BB:CC:DD:EE:04", name="Thermo-4", rssi=-50)
		other = SimpleNamespace(address="AA:BB:CC:DD:EE:05", name="Thermo-5", rssi=-50)
		FakeBleakScanner.events = [(other, _adv(uuids=["180f"])), (matching, _adv(uuids=[wanted.upper()]))]
		found: List[Device] = []
		discovery = BleakDiscovery(ScannerConfig(service_uuids=[wanted], max_devices=1))

		with patch("thermolink.scanner.BleakScanner", FakeBleakScanner):
			await asyncio.wait_for(discovery.discover(found.append), timeout=1.0)

		self.assertEqual([device.id for device in found], ["aabbccddee04"])
		self.assertEqual(FakeBleakScanner.last_kwargs["service_uuids"], [wanted])

	def test_scan_result_prefers_advertised_name(self) -> None:
		device = SimpleNamespace(address="11-22-33-44-55-66", name=None, rssi=-80)

		unnamed = ScanResult.from_bleak(device, None)
		named = ScanResult.from_bleak(device, _adv(local_name="Thermo-6", rssi=-61))

		self.assertEqual(unnamed.to_device().name, "Unknown sensor")
		self.assertEqual(named.to_device().name, "Thermo-6")
		self.assertEqual(device_id_for(device.address), "112233445566")

	def test_scanner_config_rejects_non_positive_limit(self) -> None:
		with self.assertRaises(ValueError):
			ScannerConfig(max_devices=0)


class SimulatedDiscoveryTest(IsolatedAsyncioTestCase):
	async def test_replay_without_hold_returns_immediately(self) -> None:
		devices = [Device(id="a", name="A", address="AA:00:00:00:00:01")]
		found: List[Device] = []
		discovery = SimulatedDiscovery(devices, hold=False)

		await asyncio.wait_for(discovery.discover(found.append), timeout=1.0)

		self.assertEqual(found, devices)
		self.assertEqual(discovery.calls, 1)
		self.assertEqual(discovery.cancelled, 0)

	async def test_hold_idles_until_cancelled(self) -> None:
		discovery = SimulatedDiscovery(hold=True)

		with self.assertRaises(asyncio.TimeoutError):
			await asyncio.wait_for(discovery.discover(lambda device: None), timeout=0.05)

		self.assertEqual(discovery.cancelled, 1)


if __name__ == "__main__":
	import unittest

	unittest.main()
