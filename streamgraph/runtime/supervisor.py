"""
Session supervision.

A :class:`SessionSupervisor` owns one streaming session: it writes the compiled
sidecar configuration, starts the compositor, waits for its Wayland socket,
starts the streaming endpoint and the health endpoint, and finally asks the
orchestrator for the runner container.  While the session runs a handful of
background loops watch it:

* the endpoint loop relaunches the streaming endpoint after a fixed backoff
  whenever it exits (the only sub-process that is ever restarted);
* the compositor loop ends the session when the compositor dies;
* the health loop records readiness and client counts and ends the session
  when the runner container disappears;
* the idle loop (game mode only) stops the session after the configured
  number of minutes without connected clients.

Every loop is bound to the session's :class:`SessionToken`, so loops from a
previous session can never act on a newer one.  :class:`SessionManager`
enforces that only one session exists at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .. import ServiceConfig
from ..compiler.config import SidecarConfig, write_sidecar_config
from ..utils.devices import render_nodes
from .errors import LaunchError, ResourceBusyError, SocketTimeoutError
from .health import HealthProbe
from .health_server import HealthServer, create_health_app
from .orchestrator import ContainerOrchestrator, ContainerSpec, DockerCliOrchestrator
from .pairing import PairingClient
from .processes import ManagedProcess, Spawner, render_command

LOG = logging.getLogger(__name__)

CONTAINER_RUNTIME_DIR = "/run/streamgraph"
TEST_PATTERNS = ("smpte", "bar", "checkerboard", "ball", "snow")


class SessionMode(str, Enum):
    GAME = "game"
    TEST_STREAM = "test-stream"
    TEST_X11 = "test-x11"


class SessionStatus(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    IDLE_WARNING = "idle-warning"
    STOPPING = "stopping"
    STOPPED = "stopped"
    CRASHED = "crashed"


class IdleTracker:
    """
    Counts seconds without connected clients.

    Each observation with zero clients adds one poll interval; any client
    resets the counter.  A timeout of zero minutes disables the tracker.
    """

    def __init__(self, timeout_minutes: int, interval: float) -> None:
        self.timeout_seconds = max(0, int(timeout_minutes)) * 60
        self.interval = float(interval)
        self.elapsed = 0.0

    @property
    def enabled(self) -> bool:
        return self.timeout_seconds > 0

    @property
    def remaining(self) -> float:
        return max(0.0, self.timeout_seconds - self.elapsed)

    def observe(self, client_count: int) -> bool:
        """Record one poll; returns ``True`` once the timeout is reached."""

        if not self.enabled:
            return False
        if client_count > 0:
            self.elapsed = 0.0
            return False
        self.elapsed += self.interval
        return self.elapsed >= self.timeout_seconds


class SessionToken:
    def __init__(self, generation: int) -> None:
        self.generation = generation
        self._cancelled = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        self._cancelled.set()

    async def sleep(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; returns ``False`` if cancelled meanwhile."""

        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return True
        return False


@dataclass
class SessionRequest:
    mode: SessionMode
    sidecar: SidecarConfig
    idle_timeout_minutes: int = 0
    preset_id: Optional[str] = None
    profile_id: Optional[str] = None
    pattern: Optional[str] = None

    def __post_init__(self) -> None:
        self.mode = SessionMode(self.mode)
        if self.mode is not SessionMode.GAME:
            self.idle_timeout_minutes = 0
        if self.pattern is not None and self.pattern not in TEST_PATTERNS:
            raise ValueError(f"Unknown test pattern '{self.pattern}'")


@dataclass
class HealthSnapshot:
    ready: bool = False
    client_count: int = 0
    status: Any = None
    checked_at: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "ready": self.ready,
            "clientCount": self.client_count,
            "status": self.status,
            "checkedAt": self.checked_at,
        }


HealthServerFactory = Callable[[Any], HealthServer]


async def wait_for_socket(
    directory: Path,
    *,
    attempts: int,
    interval: float,
    alive: Optional[Callable[[], bool]] = None,
) -> Path:
    """
    Poll ``directory`` for a ``wayland-*`` socket.

    Lock files are ignored.  Raises :class:`SocketTimeoutError` after
    ``attempts`` polls, or :class:`LaunchError` as soon as ``alive`` reports
    that the compositor has exited.
    """

    for _ in range(max(1, attempts)):
        candidates = sorted(
            path for path in directory.glob("wayland-*") if not path.name.endswith(".lock")
        )
        if candidates:
            return candidates[0]
        if alive is not None and not alive():
            raise LaunchError("Compositor exited before creating its display socket")
        await asyncio.sleep(interval)
    raise SocketTimeoutError(f"No Wayland socket appeared in {directory} after {attempts} attempts")


class SessionSupervisor:
    def __init__(
        self,
        request: SessionRequest,
        config: ServiceConfig,
        *,
        generation: int,
        orchestrator: ContainerOrchestrator,
        probe: HealthProbe,
        spawner: Optional[Spawner] = None,
        health_server_factory: Optional[HealthServerFactory] = None,
    ) -> None:
        self.request = request
        self.config = config
        self.token = SessionToken(generation)
        self.orchestrator = orchestrator
        self.probe = probe
        self.spawner = spawner
        self.health_server_factory = health_server_factory
        self.log = LOG.getChild(f"session.{generation}")

        self.status = SessionStatus.STARTING
        self.runtime_dir = Path(config.runtime_dir) / f"session-{generation}"
        self.socket_path: Optional[Path] = None
        self.container_id: Optional[str] = None
        self.compositor: Optional[ManagedProcess] = None
        self.endpoint: Optional[ManagedProcess] = None
        self.health_server: Optional[HealthServer] = None
        self.health = HealthSnapshot()
        self.idle = IdleTracker(request.idle_timeout_minutes, config.idle_poll_interval)
        self.restarts = 0
        self.error: Optional[str] = None
        self.stop_reason: Optional[str] = None
        self.started_at = time.time()
        self.ended_at: Optional[float] = None

        self._tasks: List[asyncio.Task] = []
        self._resources: List[Tuple[str, Callable[[], Awaitable[Any]]]] = []
        self._launched = asyncio.Event()
        self._launched.set()
        self._shutdown_task: Optional[asyncio.Future] = None
        self._crashed = False
        self._finished_callbacks: List[Callable[[], None]] = []

    # ------------------------------------------------------------------ helpers

    @property
    def generation(self) -> int:
        return self.token.generation

    @property
    def finished(self) -> bool:
        """``True`` once shutdown has completed; an endpoint crash alone is not final."""

        return self.ended_at is not None

    def on_finished(self, callback: Callable[[], None]) -> None:
        self._finished_callbacks.append(callback)

    def _set_status(self, status: SessionStatus) -> None:
        if self.status is status or self.finished:
            return
        self.log.info("Session %s -> %s", self.status.value, status.value)
        self.status = status

    def _process_env(self) -> Dict[str, str]:
        env = self.request.sidecar.to_env()
        env["SIDECAR_MODE"] = self.request.mode.value
        env["XDG_RUNTIME_DIR"] = str(self.runtime_dir)
        if self.socket_path is not None:
            env["WAYLAND_DISPLAY"] = self.socket_path.name
        return env

    def _spawn(self, name: str, template: List[str], config_path: Path) -> ManagedProcess:
        argv = render_command(template, config=config_path, runtime_dir=self.runtime_dir)
        return ManagedProcess(name, argv, env=self._process_env(), spawner=self.spawner)

    def _runner_spec(self) -> ContainerSpec:
        runner = self.request.sidecar.runner
        env = {
            "XDG_RUNTIME_DIR": CONTAINER_RUNTIME_DIR,
            "GPU_TYPE": runner.gpu,
            "LAUNCH_MODE": runner.launch_mode,
            "WORKING_DIR": runner.working_dir,
        }
        if self.socket_path is not None:
            env["WAYLAND_DISPLAY"] = self.socket_path.name
        return ContainerSpec(
            name=f"streamgraph-runner-{self.generation}",
            image=runner.image,
            env=env,
            devices=render_nodes(),
            binds=[f"{self.runtime_dir}:{CONTAINER_RUNTIME_DIR}"],
            labels={"streamgraph.session": str(self.generation)},
            exclusive_gpu=self.request.mode is SessionMode.GAME,
        )

    def _spawn_loop(self, factory: Callable[[], Any], name: str) -> None:
        task = asyncio.create_task(factory(), name=f"session-{self.generation}-{name}")
        self._tasks.append(task)

    def _own(self, name: str, stop: Callable[[], Awaitable[Any]]) -> None:
        self._resources.append((name, stop))

    def _stopper(self, process: ManagedProcess) -> Callable[[], Awaitable[Any]]:
        return lambda: process.stop(self.config.grace_period)

    async def _release(self) -> None:
        """Stop owned resources, newest first."""

        while self._resources:
            name, stop = self._resources.pop()
            try:
                await stop()
            except Exception:  # pragma: no cover - defensive
                self.log.exception("Failed to stop %s", name)

    def _request_stop(self, reason: str, *, crashed: bool = False) -> None:
        """Begin shutdown from inside a background loop without awaiting it."""

        if self._shutdown_task is not None:
            return
        if crashed:
            self._crashed = True
            self.error = reason
        self.status = SessionStatus.STOPPING
        self._shutdown_task = asyncio.ensure_future(self._shutdown(reason))

    # ------------------------------------------------------------------ launch

    async def start(self) -> None:
        """
        Run the launch sequence.

        Any failure tears down whatever was already started and is re-raised
        as :class:`LaunchError`; launch is never retried automatically.
        """

        self._launched.clear()
        try:
            try:
                await self._launch()
            finally:
                self._launched.set()
        except Exception as exc:
            self.error = str(exc)
            self._crashed = False
            self.log.error("Launch failed: %s", exc)
            if self._shutdown_task is None:
                self._shutdown_task = asyncio.ensure_future(self._shutdown("launch-failed"))
            await asyncio.shield(self._shutdown_task)
            if isinstance(exc, LaunchError):
                raise
            raise LaunchError(f"Session launch failed: {exc}") from exc

    async def _launch(self) -> None:
        sidecar = self.request.sidecar
        self.log.info(
            "Launching %s session (%s %s)",
            self.request.mode.value,
            sidecar.source,
            sidecar.source_id,
        )
        self.runtime_dir.mkdir(parents=True, exist_ok=True)
        paths = await asyncio.to_thread(write_sidecar_config, self.request.sidecar, self.runtime_dir)

        self.compositor = self._spawn("compositor", self.config.compositor_command, paths["compositor"])
        self._own(self.compositor.name, self._stopper(self.compositor))
        await self.compositor.start()
        self.socket_path = await wait_for_socket(
            self.runtime_dir,
            attempts=self.config.socket_poll_attempts,
            interval=self.config.socket_poll_interval,
            alive=lambda: self.compositor is not None and self.compositor.running,
        )
        self.log.info("Compositor socket ready at %s", self.socket_path)

        self.endpoint = self._spawn("endpoint", self.config.sunshine_command, paths["sink"])
        self._own(self.endpoint.name, self._stopper(self.endpoint))
        await self.endpoint.start()

        if self.health_server_factory is not None:
            app = create_health_app(
                self.probe,
                lambda: self.socket_path,
                lambda: {"mode": self.request.mode.value, "resolution": self.request.sidecar.compositor.resolution},
            )
            self.health_server = server = self.health_server_factory(app)
            self._own("health endpoint", server.stop)
            await server.start()

        if self.request.mode is SessionMode.GAME:
            container_id = await self.orchestrator.start(self._runner_spec())
            self.container_id = container_id
            self._own(
                f"runner container {container_id}",
                lambda: self.orchestrator.stop(container_id, timeout=self.config.grace_period),
            )

        if self.token.cancelled:
            raise LaunchError("Session was stopped during launch")
        self._set_status(SessionStatus.RUNNING)
        token = self.token
        self._spawn_loop(lambda: self._endpoint_loop(token), "endpoint")
        self._spawn_loop(lambda: self._compositor_loop(token), "compositor")
        self._spawn_loop(lambda: self._health_loop(token), "health")
        if self.request.mode is SessionMode.GAME and self.idle.enabled:
            self._spawn_loop(lambda: self._idle_loop(token), "idle")

    # ------------------------------------------------------------------ loops

    async def _endpoint_loop(self, token: SessionToken) -> None:
        endpoint = self.endpoint
        while endpoint is not None and not token.cancelled:
            code = await endpoint.wait()
            if token.cancelled:
                return
            self.restarts += 1
            self.status = SessionStatus.CRASHED
            self.log.warning(
                "Streaming endpoint exited with %s; restart %d in %.1fs",
                code,
                self.restarts,
                self.config.restart_backoff,
            )
            if not await token.sleep(self.config.restart_backoff):
                return
            self.status = SessionStatus.STARTING
            try:
                await endpoint.start()
            except Exception:  # pragma: no cover - defensive
                self.log.exception("Failed to restart streaming endpoint")
                continue
            self.status = SessionStatus.RUNNING

    async def _compositor_loop(self, token: SessionToken) -> None:
        if self.compositor is None:
            return
        code = await self.compositor.wait()
        if not token.cancelled:
            self._request_stop(f"Compositor exited with {code}", crashed=True)

    async def _health_loop(self, token: SessionToken) -> None:
        while not token.cancelled:
            try:
                clients = await self.probe.connected_clients()
                self.health = HealthSnapshot(
                    ready=await self.probe.reachable(),
                    client_count=len(clients),
                    status=await self.probe.status(),
                    checked_at=time.time(),
                )
                if self.container_id and not await self.orchestrator.is_running(self.container_id):
                    if not token.cancelled:
                        self._request_stop("Runner container exited", crashed=True)
                    return
            except Exception:  # pragma: no cover - defensive
                self.log.exception("Health poll failed")
            if not await token.sleep(self.config.health_poll_interval):
                return

    async def _idle_loop(self, token: SessionToken) -> None:
        self.log.info("Idle timeout %d minute(s)", self.request.idle_timeout_minutes)
        while await token.sleep(self.idle.interval):
            try:
                clients = await self.probe.connected_clients()
            except Exception:  # pragma: no cover - defensive
                self.log.exception("Idle poll failed")
                continue
            if token.cancelled:
                return
            expired = self.idle.observe(len(clients))
            if expired:
                self.log.info("No clients for %d minute(s); stopping session", self.request.idle_timeout_minutes)
                self._request_stop("idle-timeout")
                return
            if clients:
                if self.status is SessionStatus.IDLE_WARNING:
                    self.log.info("Client connected; idle timer reset")
                    self._set_status(SessionStatus.RUNNING)
                continue
            if self.status is SessionStatus.RUNNING:
                self._set_status(SessionStatus.IDLE_WARNING)
            if int(self.idle.elapsed) % 60 < self.idle.interval:
                self.log.info("Idle for %ds; stopping in %ds", int(self.idle.elapsed), int(self.idle.remaining))

    # ------------------------------------------------------------------ shutdown

    async def stop(self, reason: str = "requested") -> None:
        if self._shutdown_task is None:
            self.status = SessionStatus.STOPPING
            self._shutdown_task = asyncio.ensure_future(self._shutdown(reason))
        await asyncio.shield(self._shutdown_task)

    async def wait_closed(self) -> None:
        while self._shutdown_task is None:
            await asyncio.sleep(0.05)
        await asyncio.shield(self._shutdown_task)

    async def _shutdown(self, reason: str) -> None:
        self.stop_reason = self.stop_reason or reason
        self.log.info("Stopping session (%s)", reason)
        self.token.cancel()
        try:
            tasks, self._tasks = self._tasks, []
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task

            await self._release()
            if not self._launched.is_set():
                # A launch step still in flight may hand back one more resource.
                self.log.info("Waiting for the launch sequence to settle")
                await self._launched.wait()
                await self._release()
            with contextlib.suppress(OSError):
                await asyncio.to_thread(shutil.rmtree, self.runtime_dir, True)
        finally:
            self.ended_at = time.time()
            self.status = SessionStatus.CRASHED if self._crashed else SessionStatus.STOPPED
            self.log.info("Session %s", self.status.value)
            callbacks, self._finished_callbacks = self._finished_callbacks, []
            for callback in callbacks:
                try:
                    callback()
                except Exception:  # pragma: no cover - defensive
                    self.log.exception("Session finished callback failed")

    # ------------------------------------------------------------------ status

    def snapshot(self) -> dict:
        sidecar = self.request.sidecar
        return {
            "generation": self.generation,
            "mode": self.request.mode.value,
            "status": self.status.value,
            "source": sidecar.source,
            "sourceId": sidecar.source_id,
            "presetId": self.request.preset_id,
            "profileId": self.request.profile_id,
            "pattern": self.request.pattern,
            "resolution": sidecar.compositor.resolution,
            "containerId": self.container_id,
            "restarts": self.restarts,
            "idleSecondsElapsed": int(self.idle.elapsed),
            "idleTimeoutMinutes": self.request.idle_timeout_minutes,
            "startedAt": self.started_at,
            "endedAt": self.ended_at,
            "stopReason": self.stop_reason,
            "error": self.error,
            "health": self.health.to_dict(),
        }


class SessionManager:
    """
    Owns the single active session.

    Launches are serialised; a new launch stops the current session before
    starting its own.  The exclusive slot is released by the session itself
    when it finishes, however it finishes.
    """

    def __init__(
        self,
        config: ServiceConfig,
        *,
        orchestrator: Optional[ContainerOrchestrator] = None,
        probe: Optional[HealthProbe] = None,
        spawner: Optional[Spawner] = None,
        health_server_factory: Optional[HealthServerFactory] = None,
    ) -> None:
        self.config = config
        self.orchestrator = orchestrator or DockerCliOrchestrator(config.docker_binary)
        auth = None
        if config.sunshine_username and config.sunshine_password:
            auth = (config.sunshine_username, config.sunshine_password)
        self.probe = probe or HealthProbe(config.health_urls, timeout=config.http_timeout, auth=auth)
        self.pairing = PairingClient(self.probe)
        self.spawner = spawner
        if health_server_factory is None and config.health_port:
            health_server_factory = lambda app: HealthServer(app, port=config.health_port)  # noqa: E731
        self.health_server_factory = health_server_factory
        self._launch_lock = asyncio.Lock()
        self._slot = asyncio.Lock()
        self._generation = 0
        self._active: Optional[SessionSupervisor] = None
        self._last: Optional[SessionSupervisor] = None

    @property
    def active(self) -> Optional[SessionSupervisor]:
        if self._active is not None and self._active.finished:
            return None
        return self._active

    async def launch(self, request: SessionRequest) -> SessionSupervisor:
        async with self._launch_lock:
            current = self.active
            if current is not None:
                LOG.info("Replacing active session %d", current.generation)
                await current.stop("replaced")
            try:
                await asyncio.wait_for(self._slot.acquire(), timeout=self.config.grace_period * 2)
            except asyncio.TimeoutError:
                raise ResourceBusyError("Previous session is still shutting down") from None

            self._generation += 1
            supervisor = SessionSupervisor(
                request,
                self.config,
                generation=self._generation,
                orchestrator=self.orchestrator,
                probe=self.probe,
                spawner=self.spawner,
                health_server_factory=self.health_server_factory,
            )
            supervisor.on_finished(self._slot.release)
            self._active = supervisor
            self._last = supervisor
            await supervisor.start()
            return supervisor

    async def stop(self, reason: str = "requested", *, mode: Optional[SessionMode] = None) -> bool:
        current = self.active
        if current is None:
            return False
        if mode is not None and current.request.mode is not mode:
            return False
        await current.stop(reason)
        return True

    async def shutdown(self) -> None:
        await self.stop("shutdown")

    def status(self) -> dict:
        session = self.active or self._last
        return {
            "active": self.active is not None,
            "session": session.snapshot() if session is not None else None,
            "pendingPin": self.pairing.pending_pin,
        }


__all__ = [
    "HealthSnapshot",
    "IdleTracker",
    "LaunchError",
    "ResourceBusyError",
    "SessionManager",
    "SessionMode",
    "SessionRequest",
    "SessionStatus",
    "SessionSupervisor",
    "SessionToken",
    "SocketTimeoutError",
    "TEST_PATTERNS",
    "wait_for_socket",
]
