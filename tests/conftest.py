from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from streamgraph import ServiceConfig
from streamgraph.graph import Graph, NodeType, make_node
from streamgraph.runtime.health import HealthProbe
from streamgraph.runtime.orchestrator import ContainerOrchestrator, ContainerSpec


def ultra_graph() -> Graph:
    """Minimal launchable graph: control chain plus a single video chain."""

    graph = Graph.build(
        [
            make_node(NodeType.SESSION_ROOT, "root"),
            make_node(NodeType.RUNNER_CONTAINER, "runner"),
            make_node(NodeType.GAME_LAUNCH, "launch"),
            make_node(NodeType.VIRTUAL_MONITOR, "monitor", width=2560, height=1440, refreshRate=120),
            make_node(NodeType.VIDEO_CAPTURE, "capture"),
            make_node(NodeType.VIDEO_ENCODER, "encoder", codec="h265", bitrateKbps=40000),
            make_node(NodeType.SUNSHINE_SINK, "sink"),
        ]
    )
    graph.connect("root", "control", "runner", "control", edge_id="e-root-runner")
    graph.connect("runner", "control", "launch", "control", edge_id="e-runner-launch")
    graph.connect("launch", "control", "monitor", "display", edge_id="e-launch-monitor")
    graph.connect("monitor", "video", "capture", "video", edge_id="e-monitor-capture")
    graph.connect("capture", "video", "encoder", "video", edge_id="e-capture-encoder")
    graph.connect("encoder", "video", "sink", "video", edge_id="e-encoder-sink")
    return graph


class FakeProcess:
    def __init__(self, pid: int) -> None:
        self.pid = pid
        self.returncode: Optional[int] = None
        self.signals: List[str] = []
        self._exited = asyncio.Event()

    async def wait(self) -> Optional[int]:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int) -> None:
        self.returncode = code
        self._exited.set()

    def terminate(self) -> None:
        self.signals.append("TERM")
        self.exit(-15)

    def kill(self) -> None:
        self.signals.append("KILL")
        self.exit(-9)


class FakeSpawner:
    """Stands in for ``asyncio.create_subprocess_exec``.

    A spawned compositor creates ``wayland-1`` in its ``XDG_RUNTIME_DIR``
    unless ``create_socket`` is false.
    """

    def __init__(self, *, create_socket: bool = True) -> None:
        self.create_socket = create_socket
        self.calls: List[List[str]] = []
        self.processes: Dict[str, List[FakeProcess]] = {}
        self.events: List[str] = []

    async def __call__(self, *argv: str, env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None):
        self.calls.append(list(argv))
        name = argv[0]
        process = FakeProcess(pid=1000 + len(self.calls))
        self.processes.setdefault(name, []).append(process)
        self.events.append(f"start:{name}")
        if name == "sway" and self.create_socket and env is not None:
            runtime_dir = Path(env["XDG_RUNTIME_DIR"])
            (runtime_dir / "wayland-1").touch()
            (runtime_dir / "wayland-1.lock").touch()
        original = process.terminate

        def terminate(name: str = name) -> None:
            self.events.append(f"stop:{name}")
            original()

        process.terminate = terminate  # type: ignore[method-assign]
        return process

    def latest(self, name: str) -> FakeProcess:
        return self.processes[name][-1]


class FakeOrchestrator(ContainerOrchestrator):
    def __init__(self, events: Optional[List[str]] = None) -> None:
        self.specs: List[ContainerSpec] = []
        self.running: Dict[str, bool] = {}
        self.stopped: List[str] = []
        self.events = events if events is not None else []

    async def start(self, spec: ContainerSpec) -> str:
        container_id = f"container-{len(self.specs) + 1}"
        self.specs.append(spec)
        self.running[container_id] = True
        self.events.append("start:runner")
        return container_id

    async def stop(self, container_id: str, timeout: float = 10.0) -> None:
        self.running[container_id] = False
        self.stopped.append(container_id)
        self.events.append("stop:runner")

    async def is_running(self, container_id: str) -> bool:
        return self.running.get(container_id, False)


class SunshineStub:
    """Mutable fake of the streaming endpoint's HTTP API."""

    def __init__(self) -> None:
        self.clients: List[dict] = []
        self.pin_response = httpx.Response(200, json={"status": True})
        self.requests: List[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/clients":
            return httpx.Response(200, json={"clients": list(self.clients)})
        if path == "/api/status":
            return httpx.Response(200, json={"state": "running"})
        if path == "/api/pin":
            return self.pin_response
        if path == "/api/clients/list":
            return httpx.Response(200, json={"named_certs": [{"name": "deck", "uuid": "abc"}]})
        if path == "/api/clients/unpair-all":
            return httpx.Response(200, json={"status": True})
        return httpx.Response(200, text="ok")

    def probe(self) -> HealthProbe:
        return HealthProbe(["http://sunshine.test"], transport=httpx.MockTransport(self.handler))


@pytest.fixture
def service_config(tmp_path: Path) -> ServiceConfig:
    return ServiceConfig(
        root=tmp_path / "data",
        runtime_dir=tmp_path / "run",
        health_port=0,
        socket_poll_attempts=5,
        socket_poll_interval=0.01,
        idle_poll_interval=0.01,
        health_poll_interval=0.01,
        grace_period=0.1,
        restart_backoff=0.01,
    )


@pytest.fixture
def sunshine() -> SunshineStub:
    return SunshineStub()


@pytest.fixture
def ultra() -> Graph:
    return ultra_graph()


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def orchestrator(spawner: FakeSpawner) -> FakeOrchestrator:
    return FakeOrchestrator(spawner.events)
