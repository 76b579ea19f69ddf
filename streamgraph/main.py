"""
Service process entrypoint.

Resolves configuration, initialises logging and serves the control API.  Any
active session is shut down when the server exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from . import ServiceConfig
from .api.server import create_app
from .api.state import AppState
from .utils.logging import configure_logging

LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(state: AppState) -> AsyncIterator[None]:
    LOG.info("Service starting (store=%s)", state.config.store_path)
    try:
        yield
    finally:
        LOG.info("Service shutting down")
        try:
            await state.sessions.shutdown()
        except Exception:  # pragma: no cover - defensive
            LOG.exception("Failed to stop the active session cleanly.")


async def serve(config: ServiceConfig) -> None:
    """
    Run the control API inside an asyncio loop.

    Parameters
    ----------
    config:
        Service configuration; ``host`` and ``port`` give the bind address.
    """

    import uvicorn

    state = AppState.from_config(config)

    @asynccontextmanager
    async def app_lifespan(_app) -> AsyncIterator[None]:
        async with lifespan(state):
            yield

    app = create_app(state=state, config=config, lifespan=app_lifespan)
    server_config = uvicorn.Config(
        app=app,
        host=config.host,
        port=config.port,
        log_config=None,
        log_level="info",
        reload=False,
    )
    server = uvicorn.Server(config=server_config)

    def _handle_signal(signum: int, frame: Optional[object]) -> None:
        LOG.info("Received signal %s, shutting down server...", signum)
        server.should_exit = True

    for signame in ("SIGINT", "SIGTERM"):
        signal.signal(getattr(signal, signame), _handle_signal)

    await server.serve()


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Streaming pipeline graph service")
    parser.add_argument("--config", default=None, help="YAML configuration file")
    parser.add_argument("--host", default=None, help="bind host for the API server")
    parser.add_argument("--port", type=int, default=None, help="bind port for the API server")
    parser.add_argument("--log-level", default="info", help="root log level")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> ServiceConfig:
    config = ServiceConfig.load(args.config)
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    return config


def run(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    configure_logging(args.log_level)
    config = build_config(args)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        LOG.info("Service interrupted by user.")


if __name__ == "__main__":
    run()
