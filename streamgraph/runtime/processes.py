"""
Child process handles for the compositor and the streaming endpoint.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

LOG = logging.getLogger(__name__)

# Signature of :func:`asyncio.create_subprocess_exec`; tests swap in fakes.
Spawner = Callable[..., Awaitable[Any]]


async def _default_spawner(*argv: str, env: Optional[Dict[str, str]] = None, cwd: Optional[str] = None) -> Any:
    return await asyncio.create_subprocess_exec(
        *argv,
        env=env,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
    )


def render_command(template: Sequence[str], **values: Any) -> List[str]:
    return [str(part).format(**values) for part in template]


class ManagedProcess:
    """
    Thin wrapper over an asyncio subprocess.

    ``stop`` sends SIGTERM, waits up to ``grace`` seconds and escalates to
    SIGKILL when the process has not exited.
    """

    def __init__(
        self,
        name: str,
        argv: Sequence[str],
        *,
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
        spawner: Optional[Spawner] = None,
    ) -> None:
        self.name = name
        self.argv = list(argv)
        self.env = dict(env) if env is not None else None
        self.cwd = cwd
        self._spawner = spawner or _default_spawner
        self._process: Optional[Any] = None
        self.starts = 0

    @property
    def pid(self) -> Optional[int]:
        return getattr(self._process, "pid", None)

    @property
    def returncode(self) -> Optional[int]:
        return None if self._process is None else self._process.returncode

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        if self.running:
            return
        env = None
        if self.env is not None:
            env = dict(os.environ)
            env.update(self.env)
        self._process = await self._spawner(*self.argv, env=env, cwd=self.cwd)
        self.starts += 1
        LOG.info("Started %s (pid %s): %s", self.name, self.pid, " ".join(self.argv))

    async def wait(self) -> Optional[int]:
        if self._process is None:
            return None
        return await self._process.wait()

    async def stop(self, grace: float) -> Optional[int]:
        process = self._process
        if process is None or process.returncode is not None:
            return self.returncode
        LOG.info("Stopping %s (pid %s)", self.name, self.pid)
        try:
            process.terminate()
        except ProcessLookupError:
            return await process.wait()
        try:
            return await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            LOG.warning("%s did not exit within %.1fs; killing", self.name, grace)
            try:
                process.kill()
            except ProcessLookupError:
                pass
            return await process.wait()


__all__ = ["ManagedProcess", "Spawner", "render_command"]
