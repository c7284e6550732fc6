"""HTTP and WebSocket surface for one sensor session.

The rendering layer drives the session through the command endpoints and
re-renders from the snapshots pushed on ``/events``.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from thermolink.config import MachineConfig
from thermolink.errors import (
    DuplicateDevice,
    InvalidTransition,
    PermissionDenied,
    TransportFailure,
    UnknownDevice,
)
from thermolink.models import CommandResult
from thermolink.state_machine import ConnectionStateMachine, create_session

logger = logging.getLogger(__name__)

_STATUS_CODES = {
    PermissionDenied: 403,
    UnknownDevice: 404,
    InvalidTransition: 409,
    DuplicateDevice: 409,
    TransportFailure: 502,
}


def _respond(result: CommandResult) -> JSONResponse:
    status_code = 200
    if result.error is not None:
        status_code = _STATUS_CODES.get(type(result.error), 400)
    return JSONResponse(result.to_dict(), status_code=status_code)


def _session(request: Request) -> ConnectionStateMachine:
    return request.app.state.session


def create_app(
    session: Optional[ConnectionStateMachine] = None,
    *,
    session_factory: Optional[Callable[[], ConnectionStateMachine]] = None,
) -> FastAPI:
    """Build an app bound to exactly one session.

    ``session`` wins over ``session_factory``; with neither, a bleak-backed
    session is configured from the ``THERMOLINK_*`` environment.
    """
    if session is None:
        factory = session_factory or (lambda: create_session(MachineConfig.from_env()))
        session = factory()

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.session.close()

    app = FastAPI(title="thermolink API", version="0.1.0", lifespan=lifespan)
    app.state.session = session

    @app.get("/health")
    async def health():
        return {"status": "ok", "time": time.time()}

    @app.get("/session")
    async def current(request: Request):
        return _session(request).snapshot().to_dict()

    @app.post("/session/enable")
    async def enable(request: Request):
        return _respond(await _session(request).enable())

    @app.post("/session/disable")
    async def disable(request: Request):
        return _respond(await _session(request).disable())

    @app.post("/session/scan")
    async def scan(request: Request):
        return _respond(await _session(request).start_scan())

    @app.post("/devices/{device_id}/connect")
    async def connect(device_id: str, request: Request):
        return _respond(await _session(request).connect(device_id))

    @app.websocket("/events")
    async def events(ws: WebSocket):
        await ws.accept()
        stream = ws.app.state.session.stream()

        async def _forward() -> None:
            async for snapshot in stream:
                await ws.send_json(snapshot.to_dict())

        async def _watch() -> None:
            # an idle session publishes nothing, so listen for the close frame
            while (await ws.receive())["type"] != "websocket.disconnect":
                pass

        forward = asyncio.create_task(_forward())
        watch = asyncio.create_task(_watch())
        try:
            await asyncio.wait({forward, watch}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            forward.cancel()
            watch.cancel()
            outcomes = await asyncio.gather(forward, watch, return_exceptions=True)
            await stream.aclose()
        for outcome in outcomes:
            if isinstance(outcome, WebSocketDisconnect):
                logger.debug("events subscriber disconnected")
            elif isinstance(outcome, Exception):
                logger.warning("events stream ended with an error: %s", outcome)

    return app


__all__ = ["create_app"]
