"""Connection state machine for a temperature-sensor session.

One :class:`ConnectionStateMachine` owns the lifecycle state of a session,
its :class:`~thermolink.registry.DeviceRegistry`, and the single scan-cycle
task. Commands are serialised with an :class:`asyncio.Lock` and always answer
with a :class:`~thermolink.models.CommandResult`; every transition publishes
an immutable :class:`~thermolink.models.SessionSnapshot` to subscribers.

Transitions::

    DISABLED --enable--> READY --> SEARCHING --(scan elapses)--> READY
    READY/SEARCHING/CONNECTED --start_scan--> SEARCHING
    READY/SEARCHING/CONNECTED --connect(id)--> CONNECTED
    READY/SEARCHING/CONNECTED --disable--> DISABLED
"""
from __future__ import annotations

import asyncio
import functools
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Set, Tuple, Union

from thermolink.config import MachineConfig
from thermolink.connector import BleakConnector, Connector
from thermolink.errors import (
    DuplicateDevice,
    InvalidTransition,
    PermissionDenied,
    ThermolinkError,
    TransportFailure,
    UnknownDevice,
)
from thermolink.journal import EventJournal
from thermolink.models import CommandResult, ConnectionState, Device, SessionSnapshot
from thermolink.permissions import PermissionGate, StaticPermissionGate
from thermolink.registry import DeviceRegistry
from thermolink.retry import ConnectRetry
from thermolink.scanner import BleakDiscovery, Discovery, ScannerConfig

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[SessionSnapshot], Union[None, Awaitable[None]]]


class ConnectionStateMachine:
    """Discovery and connection lifecycle for one sensor session."""

    def __init__(
        self,
        discovery: Discovery,
        connector: Connector,
        permissions: PermissionGate,
        *,
        config: Optional[MachineConfig] = None,
        registry: Optional[DeviceRegistry] = None,
        journal: Optional[EventJournal] = None,
        retry: Optional[ConnectRetry] = None,
    ) -> None:
        self.config = config or MachineConfig()
        self.discovery = discovery
        self.connector = connector
        self.permissions = permissions
        self.registry = registry if registry is not None else DeviceRegistry()
        if journal is None and self.config.journal_path is not None:
            journal = EventJournal(self.config.journal_path)
        self.journal = journal
        self.retry = retry or ConnectRetry(
            attempts=self.config.connect_attempts,
            base_backoff=self.config.base_backoff,
            max_backoff=self.config.max_backoff,
            journal=self.journal,
        )

        self._state = ConnectionState.DISABLED
        self._is_scanning = False
        self._last_error: Optional[str] = None
        self._lock = asyncio.Lock()
        self._scan_task: Optional[asyncio.Task[None]] = None
        self._scan_generation = 0
        self._subscribers: List[SnapshotCallback] = []
        self._callback_tasks: Set[asyncio.Task[None]] = set()
        self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def devices(self) -> Tuple[Device, ...]:
        return self._snapshot.devices

    @property
    def is_scanning(self) -> bool:
        return self._is_scanning

    def snapshot(self) -> SessionSnapshot:
        return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register ``callback`` for every published snapshot.

        Returns a callable that removes the subscription; calling it twice is
        harmless.
        """
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def stream(self) -> AsyncIterator[SessionSnapshot]:
        """Yield the current snapshot, then every later one as it is published."""
        queue: asyncio.Queue[SessionSnapshot] = asyncio.Queue()
        unsubscribe = self.subscribe(queue.put_nowait)
        try:
            yield self._snapshot
            while True:
                yield await queue.get()
        finally:
            unsubscribe()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------
    async def enable(self) -> CommandResult:
        async with self._lock:
            if self._state is not ConnectionState.DISABLED:
                return await self._fail("enable", InvalidTransition("enable", self._state))
            if not self._permission_granted():
                return await self._fail("enable", PermissionDenied("Bluetooth permission is required to scan"))
            self._last_error = None
            await self._transition(ConnectionState.READY)
            await self._begin_scan()
            return await self._accept("enable")

    async def disable(self) -> CommandResult:
        async with self._lock:
            if self._state is ConnectionState.DISABLED:
                return await self._fail("disable", InvalidTransition("disable", self._state))
            await self._cancel_scan()
            await self._close_connections()
            self.registry.clear()
            await self._transition(ConnectionState.DISABLED)
            return await self._accept("disable")

    async def start_scan(self) -> CommandResult:
        async with self._lock:
            if self._state is ConnectionState.DISABLED:
                return await self._fail("start_scan", InvalidTransition("start_scan", self._state))
            if not self._permission_granted():
                return await self._fail("start_scan", PermissionDenied("Bluetooth permission is required to scan"))
            await self._cancel_scan()
            self._last_error = None
            await self._begin_scan()
            return await self._accept("start_scan")

    async def connect(self, device_id: str) -> CommandResult:
        command = "connect"
        async with self._lock:
            device = self.registry.get(device_id)
            if device is None:
                return await self._fail(command, UnknownDevice(device_id))
            if self._state is ConnectionState.DISABLED:
                return await self._fail(command, InvalidTransition(command, self._state))
            if not self._permission_granted():
                return await self._fail(command, PermissionDenied("Bluetooth permission is required to connect"))

            try:
                await self.retry.run(self.connector, device.address)
            except TransportFailure as exc:
                return await self._fail(command, exc, device=device)

            # no scan cycle may complete once CONNECTED
            await self._cancel_scan()
            self.registry.mark_connected(device_id)
            await self._transition(ConnectionState.CONNECTED, device=device)
            return await self._accept(command, device=device)

    async def wait_until_idle(self) -> None:
        """Wait until no scan cycle is outstanding."""
        while True:
            task = self._scan_task
            if task is None or task.done():
                return
            await asyncio.wait({task})

    async def close(self) -> None:
        """Tear the session down without publishing a transition."""
        async with self._lock:
            await self._cancel_scan()
            await self._close_connections()
            pending = list(self._callback_tasks)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.wait(pending)
            # readers still see the scan stop, subscribers are not notified
            self._snapshot = self._build_snapshot()

    # ------------------------------------------------------------------
    # Scan cycle
    # ------------------------------------------------------------------
    async def _begin_scan(self) -> None:
        self._scan_generation += 1
        generation = self._scan_generation
        self.registry.retain_connected()
        self._is_scanning = True
        # the task cannot run before SEARCHING is published below
        self._scan_task = asyncio.create_task(
            self._run_scan(generation),
            name=f"thermolink-scan-{generation}",
        )
        await self._transition(ConnectionState.SEARCHING)

    async def _run_scan(self, generation: int) -> None:
        error: Optional[TransportFailure] = None
        on_found = functools.partial(self._on_found, generation)
        try:
            await asyncio.wait_for(self.discovery.discover(on_found), timeout=self.config.scan_duration)
        except asyncio.TimeoutError:
            pass
        except TransportFailure as exc:
            error = exc
        except Exception as exc:
            error = TransportFailure(f"discovery failed: {exc}")
            error.__cause__ = exc

        async with self._lock:
            if generation != self._scan_generation:
                return
            self._scan_task = None
            self._is_scanning = False
            if error is not None:
                self._last_error = str(error)
                logger.warning("Scan cycle %d failed: %s", generation, error)
                await self._journal("scan", status="error", message=str(error))
            else:
                await self._journal("scan", status="ok", detail={"devices": len(self.registry)})
            await self._transition(ConnectionState.READY)

    def _on_found(self, generation: int, device: Device) -> None:
        if generation != self._scan_generation:
            return
        try:
            self.registry.upsert(device)
        except DuplicateDevice as exc:
            logger.debug("Ignoring repeated advertisement: %s", exc)
            return
        logger.debug("Discovered %s (%s)", device.name, device.address)
        self._publish()

    async def _cancel_scan(self) -> None:
        task = self._scan_task
        self._scan_task = None
        self._scan_generation += 1
        self._is_scanning = False
        if task is None or task.done():
            return
        task.cancel()
        await asyncio.wait({task})
        logger.debug("Scan cycle cancelled")

    async def _close_connections(self) -> None:
        try:
            await self.connector.close_all()
        except (TransportFailure, OSError) as exc:
            logger.warning("Closing transport connections failed: %s", exc)
            await self._journal("close", status="error", message=str(exc))

    # ------------------------------------------------------------------
    # Publication helpers
    # ------------------------------------------------------------------
    def _permission_granted(self) -> bool:
        if self.permissions.has_permission():
            return True
        self.permissions.request_permission()
        return False

    async def _transition(self, new_state: ConnectionState, *, device: Optional[Device] = None) -> None:
        old_state = self._state
        self._state = new_state
        logger.debug("State transition: %s -> %s", old_state.value, new_state.value)
        self._publish()
        await self._journal(
            "state_change",
            device=device,
            status="ok",
            detail={"from": old_state.value},
        )

    def _build_snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            devices=self.registry.snapshot(),
            is_scanning=self._is_scanning,
            last_error=self._last_error,
        )

    def _publish(self) -> None:
        snapshot = self._build_snapshot()
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                outcome = callback(snapshot)
                if asyncio.iscoroutine(outcome):
                    task = asyncio.get_running_loop().create_task(outcome)
                    self._callback_tasks.add(task)
                    task.add_done_callback(self._callback_finished)
            except Exception:
                logger.exception("snapshot subscriber raised an exception")

    def _callback_finished(self, task: asyncio.Task[None]) -> None:
        self._callback_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("snapshot subscriber raised an exception", exc_info=exc)

    async def _accept(self, command: str, *, device: Optional[Device] = None) -> CommandResult:
        logger.info("%s accepted (state=%s)", command, self._state.value)
        await self._journal(command, device=device, status="accepted")
        return CommandResult.accepted(command, self._snapshot)

    async def _fail(
        self,
        command: str,
        error: ThermolinkError,
        *,
        device: Optional[Device] = None,
    ) -> CommandResult:
        result = CommandResult.from_error(command, error, self._snapshot)
        logger.warning("%s %s: %s", command, result.status, error)
        await self._journal(command, device=device, status=result.status, message=str(error))
        return result

    async def _journal(
        self,
        event: str,
        *,
        device: Optional[Device] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
        detail: Optional[dict] = None,
    ) -> None:
        if not self.journal:
            return
        try:
            await self.journal.record(
                event,
                state=self._state.value,
                device=device.id if device is not None else None,
                status=status,
                message=message,
                detail=detail,
            )
        except OSError:  # pragma: no cover - I/O failure safeguard
            logger.debug("Journal write failed for %s", event, exc_info=True)


def create_session(
    config: Optional[MachineConfig] = None,
    *,
    permissions: Optional[PermissionGate] = None,
    scanner_config: Optional[ScannerConfig] = None,
) -> ConnectionStateMachine:
    """Build a session wired to the bleak discovery and connect primitives."""
    config = config or MachineConfig()
    journal = EventJournal(config.journal_path) if config.journal_path is not None else None
    scanner_config = scanner_config or ScannerConfig(adapter=config.adapter)
    return ConnectionStateMachine(
        BleakDiscovery(scanner_config),
        BleakConnector(adapter=config.adapter, timeout=config.connect_timeout, journal=journal),
        permissions or StaticPermissionGate(granted=True),
        config=config,
        journal=journal,
    )


__all__ = ["ConnectionStateMachine", "SnapshotCallback", "create_session"]
