"""
Lightweight sidecar health endpoint.

``/healthz`` is pure liveness, ``/readyz`` requires the compositor socket and
a reachable streaming endpoint, ``/streamz`` reports whether any client is
connected and ``/status`` returns the full picture.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from .health import HealthProbe

LOG = logging.getLogger(__name__)


def create_health_app(
    probe: HealthProbe,
    socket_path: Callable[[], Optional[Path]],
    details: Optional[Callable[[], Dict[str, object]]] = None,
) -> FastAPI:
    app = FastAPI(title="Streaming sidecar health")

    def socket_ready() -> bool:
        path = socket_path()
        return path is not None and path.exists()

    @app.get("/healthz")
    async def healthz() -> dict:
        return {"status": "ok"}

    @app.get("/readyz")
    async def readyz() -> JSONResponse:
        ready_socket = socket_ready()
        endpoint_ok = await probe.reachable()
        if ready_socket and endpoint_ok:
            return JSONResponse({"ready": True})
        return JSONResponse(
            {"ready": False, "socketReady": ready_socket, "endpointOk": endpoint_ok},
            status_code=503,
        )

    @app.get("/streamz")
    async def streamz() -> JSONResponse:
        clients = await probe.connected_clients()
        if clients:
            return JSONResponse({"streaming": True, "clientCount": len(clients)})
        return JSONResponse({"streaming": False, "clientCount": 0}, status_code=503)

    @app.get("/status")
    async def status() -> dict:
        path = socket_path()
        payload: Dict[str, object] = dict(details() if details is not None else {})
        payload.update(
            {
                "compositor": {"running": socket_ready(), "socketPath": str(path) if path else None},
                "endpoint": {"running": await probe.reachable(), "status": await probe.status()},
                "clients": await probe.connected_clients(),
            }
        )
        return payload

    return app


class HealthServer:
    """Runs :func:`create_health_app` under uvicorn inside the current loop."""

    def __init__(self, app: FastAPI, *, host: str = "0.0.0.0", port: int = 9999) -> None:
        self.app = app
        self.host = host
        self.port = port
        self._server = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        import uvicorn

        if self.running:
            return
        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_config=None,
            log_level="warning",
        )
        self._server = uvicorn.Server(config=config)
        self._task = asyncio.create_task(self._server.serve())
        LOG.info("Health endpoint listening on %s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=5.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await self._task
            self._task = None
        self._server = None


__all__ = ["HealthServer", "create_health_app"]
