"""
Container orchestration boundary.

The supervisor only talks to :class:`ContainerOrchestrator`.  The Docker CLI
implementation shells out to ``docker`` and enforces that at most one
container holds the GPU render nodes at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from .errors import LaunchError, ResourceBusyError

LOG = logging.getLogger(__name__)

GPU_LABEL = "streamgraph.gpu-holder"
_BUSY_MARKERS = ("is already in use", "device or resource busy", "conflict")


@dataclass
class ContainerSpec:
    name: str
    image: str
    env: Dict[str, str] = field(default_factory=dict)
    devices: List[str] = field(default_factory=list)
    binds: List[str] = field(default_factory=list)
    labels: Dict[str, str] = field(default_factory=dict)
    network: str = "host"
    exclusive_gpu: bool = False


class ContainerOrchestrator:
    """Interface consumed by the session supervisor."""

    async def start(self, spec: ContainerSpec) -> str:
        raise NotImplementedError

    async def stop(self, container_id: str, timeout: float = 10.0) -> None:
        raise NotImplementedError

    async def is_running(self, container_id: str) -> bool:
        raise NotImplementedError


class DockerCliOrchestrator(ContainerOrchestrator):
    def __init__(self, binary: str = "docker") -> None:
        self.binary = binary

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        process = await asyncio.create_subprocess_exec(
            self.binary,
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate()
        return process.returncode, stdout.decode().strip(), stderr.decode().strip()

    async def gpu_holders(self) -> List[str]:
        code, out, err = await self._run("ps", "--filter", f"label={GPU_LABEL}", "--format", "{{.ID}}")
        if code != 0:
            raise LaunchError(f"docker ps failed: {err or out}")
        return [line for line in out.splitlines() if line.strip()]

    def run_arguments(self, spec: ContainerSpec) -> List[str]:
        args = ["run", "-d", "--rm", "--name", spec.name, "--network", spec.network]
        labels = dict(spec.labels)
        if spec.exclusive_gpu:
            labels[GPU_LABEL] = "true"
        for key, value in labels.items():
            args += ["--label", f"{key}={value}"]
        for key, value in spec.env.items():
            args += ["-e", f"{key}={value}"]
        for device in spec.devices:
            args += ["--device", f"{device}:{device}"]
        for bind in spec.binds:
            args += ["-v", bind]
        args.append(spec.image)
        return args

    async def start(self, spec: ContainerSpec) -> str:
        if spec.exclusive_gpu:
            holders = await self.gpu_holders()
            if holders:
                raise ResourceBusyError(f"GPU is held by container {holders[0]}")
        code, out, err = await self._run(*self.run_arguments(spec))
        if code != 0:
            message = err or out or f"exit status {code}"
            if any(marker in message.lower() for marker in _BUSY_MARKERS):
                raise ResourceBusyError(message)
            raise LaunchError(f"Failed to start container {spec.name}: {message}")
        container_id = out.splitlines()[-1] if out else spec.name
        LOG.info("Started container %s (%s)", spec.name, container_id[:12])
        return container_id

    async def stop(self, container_id: str, timeout: float = 10.0) -> None:
        code, out, err = await self._run("stop", "-t", str(int(timeout)), container_id)
        if code != 0 and "no such container" not in (err or out).lower():
            LOG.warning("docker stop %s failed: %s", container_id, err or out)

    async def is_running(self, container_id: str) -> bool:
        code, out, _ = await self._run("inspect", "-f", "{{.State.Running}}", container_id)
        return code == 0 and out.strip() == "true"


__all__ = [
    "ContainerOrchestrator",
    "ContainerSpec",
    "DockerCliOrchestrator",
    "GPU_LABEL",
]
