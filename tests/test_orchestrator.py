from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from streamgraph.runtime.errors import LaunchError, ResourceBusyError
from streamgraph.runtime.orchestrator import GPU_LABEL, ContainerSpec, DockerCliOrchestrator


class ScriptedDocker(DockerCliOrchestrator):
    """Answers docker subcommands from a table instead of spawning the CLI."""

    def __init__(self, replies: Dict[str, Tuple[int, str, str]]) -> None:
        super().__init__()
        self.replies = replies
        self.calls: List[Tuple[str, ...]] = []

    async def _run(self, *args: str) -> Tuple[int, str, str]:
        self.calls.append(args)
        return self.replies.get(args[0], (0, "", ""))


def _spec(**overrides) -> ContainerSpec:
    values = dict(
        name="runner-1",
        image="runner-base",
        env={"WAYLAND_DISPLAY": "wayland-1"},
        devices=["/dev/dri/renderD128"],
        binds=["/run/sg/1:/run/sg/1"],
        exclusive_gpu=True,
    )
    values.update(overrides)
    return ContainerSpec(**values)


def test_run_arguments_label_gpu_holder() -> None:
    args = DockerCliOrchestrator().run_arguments(_spec())

    assert args[:4] == ["run", "-d", "--rm", "--name"]
    assert args[args.index("--label") + 1] == f"{GPU_LABEL}=true"
    assert "WAYLAND_DISPLAY=wayland-1" in args
    assert "/dev/dri/renderD128:/dev/dri/renderD128" in args
    assert args[-1] == "runner-base"


@pytest.mark.asyncio
async def test_start_returns_container_id() -> None:
    docker = ScriptedDocker({"ps": (0, "", ""), "run": (0, "abcdef1234567890", "")})

    assert await docker.start(_spec()) == "abcdef1234567890"
    assert [call[0] for call in docker.calls] == ["ps", "run"]


@pytest.mark.asyncio
async def test_start_refuses_while_gpu_is_held() -> None:
    docker = ScriptedDocker({"ps": (0, "0123456789ab\n", "")})

    with pytest.raises(ResourceBusyError) as excinfo:
        await docker.start(_spec())

    assert excinfo.value.retryable is True
    assert [call[0] for call in docker.calls] == ["ps"]


@pytest.mark.asyncio
async def test_start_failures() -> None:
    busy = ScriptedDocker({"run": (125, "", "Conflict. The container name is already in use")})
    with pytest.raises(ResourceBusyError):
        await busy.start(_spec(exclusive_gpu=False))

    broken = ScriptedDocker({"run": (125, "", "pull access denied")})
    with pytest.raises(LaunchError, match="pull access denied"):
        await broken.start(_spec(exclusive_gpu=False))


@pytest.mark.asyncio
async def test_is_running_and_stop() -> None:
    docker = ScriptedDocker({"inspect": (0, "true\n", ""), "stop": (1, "", "No such container: x")})

    assert await docker.is_running("abc") is True
    await docker.stop("abc", timeout=3)
    assert docker.calls[-1] == ("stop", "-t", "3", "abc")
