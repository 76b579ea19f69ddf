"""
FastAPI control surface for pipeline presets, streaming settings and sessions.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Iterator, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .. import ServiceConfig
from ..compiler import CompilationError
from ..graph.model import Graph, GraphError
from ..graph.store import (
    FactoryPresetError,
    InvariantViolation,
    PresetConflict,
    PresetNotFound,
    PresetStoreError,
    ValidationError,
)
from ..graph.validator import validate
from ..profiles import ProfileConflict, ProfileError, ProfileNotFound
from ..runtime.errors import LaunchError, ResourceBusyError
from ..runtime.pairing import PairingError, PinFormatError
from ..runtime.supervisor import SessionMode
from ..settings import SettingsError
from . import schemas
from .state import AppState

LOG = logging.getLogger(__name__)

TEST_MODES = (SessionMode.TEST_STREAM, SessionMode.TEST_X11)


@contextlib.contextmanager
def http_errors() -> Iterator[None]:
    """Translate domain exceptions raised inside a handler into HTTP responses."""

    try:
        yield
    except (PresetNotFound, ProfileNotFound) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (PresetConflict, ProfileConflict) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"message": str(exc), "validation": exc.report.to_dict()},
        ) from exc
    except (FactoryPresetError, InvariantViolation, PresetStoreError, GraphError, SettingsError, ProfileError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except CompilationError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc
    except ResourceBusyError as exc:
        raise HTTPException(status_code=409, detail={"message": str(exc), "retryable": True}) from exc
    except LaunchError as exc:
        raise HTTPException(status_code=503, detail={"message": str(exc), "retryable": False}) from exc
    except PinFormatError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PairingError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc


def _graph_from(model: schemas.GraphModel) -> Graph:
    return Graph.from_dict(model.to_payload())


def create_app(
    *,
    state: Optional[AppState] = None,
    config: Optional[ServiceConfig] = None,
    lifespan: Optional[Callable[..., object]] = None,
) -> FastAPI:
    app_state = state or AppState.from_config(config or ServiceConfig.load())

    if lifespan is None:

        @asynccontextmanager
        async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
            try:
                yield
            finally:
                await app_state.sessions.shutdown()

    app = FastAPI(title="Streaming Pipeline API", lifespan=lifespan)
    app.state.streamgraph = app_state
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = app_state.store
    sessions = app_state.sessions

    @app.get("/healthz")
    async def healthz() -> dict:
        active = sessions.active
        return {"status": "ok", "session": active.status.value if active is not None else None}

    # ------------------------------------------------------------------ graph

    @app.get("/graph")
    async def get_store() -> dict:
        with http_errors():
            document = await asyncio.to_thread(store.snapshot)
        return document.to_dict()

    @app.post("/graph")
    async def replace_store(payload: schemas.StoreReplaceRequest) -> dict:
        with http_errors():
            if payload.reset:
                document = await asyncio.to_thread(store.reset_to_factory)
            else:
                raw = payload.model_dump(by_alias=True, exclude={"reset"})
                try:
                    document = await asyncio.to_thread(store.replace, raw)
                except (KeyError, TypeError, ValueError) as exc:
                    raise HTTPException(status_code=400, detail=f"Invalid graph store: {exc}") from exc
        return {"ok": True, "store": document.to_dict()}

    @app.post("/graph/presets")
    async def create_preset(payload: schemas.PresetCreateRequest) -> dict:
        with http_errors():
            preset = await asyncio.to_thread(
                store.create,
                payload.id,
                payload.name,
                _graph_from(payload.graph),
                payload.description,
                require_valid=payload.require_valid,
            )
        return {"ok": True, "preset": preset.to_dict(), "validation": validate(preset.graph).to_dict()}

    @app.get("/graph/presets/{preset_id}")
    async def get_preset(preset_id: str) -> dict:
        with http_errors():
            preset = await asyncio.to_thread(store.get, preset_id)
        return {"preset": preset.to_dict(), "validation": validate(preset.graph).to_dict()}

    @app.put("/graph/presets/{preset_id}")
    async def update_preset(preset_id: str, payload: schemas.PresetUpdateRequest) -> dict:
        with http_errors():
            preset = await asyncio.to_thread(
                store.update,
                preset_id,
                name=payload.name,
                description=payload.description,
                graph=_graph_from(payload.graph) if payload.graph is not None else None,
                new_id=payload.id,
                require_valid=payload.require_valid,
            )
        return {"ok": True, "preset": preset.to_dict(), "validation": validate(preset.graph).to_dict()}

    @app.delete("/graph/presets/{preset_id}")
    async def delete_preset(preset_id: str) -> dict:
        with http_errors():
            await asyncio.to_thread(store.delete, preset_id)
        return {"ok": True}

    @app.post("/graph/presets/{preset_id}/clone")
    async def clone_preset(preset_id: str, payload: Optional[schemas.PresetCloneRequest] = None) -> dict:
        with http_errors():
            preset = await asyncio.to_thread(
                store.clone, preset_id, name=payload.name if payload is not None else None
            )
        return {"ok": True, "preset": preset.to_dict()}

    @app.post("/graph/validate")
    async def validate_default() -> dict:
        with http_errors():
            cache = await asyncio.to_thread(store.validate_default)
        return {"ok": True, "validation": cache.to_dict()}

    # --------------------------------------------------------------- settings

    @app.get("/settings/streaming")
    async def get_streaming_settings() -> dict:
        settings = await asyncio.to_thread(app_state.settings.load)
        return settings.to_dict()

    @app.post("/settings/streaming")
    async def update_streaming_settings(payload: schemas.StreamingSettingsUpdate) -> dict:
        with http_errors():
            settings = await asyncio.to_thread(app_state.settings.update, payload.to_payload())
        return {"ok": True, "settings": settings.to_dict()}

    # --------------------------------------------------------------- profiles

    profiles = app_state.profiles

    @app.get("/profiles")
    @app.get("/settings/streaming-profiles")
    async def list_profiles() -> dict:
        with http_errors():
            items = await asyncio.to_thread(profiles.list)
        return {"profiles": [profile.to_dict() for profile in items]}

    @app.post("/settings/streaming-profiles")
    async def create_profile(payload: schemas.ProfileCreateRequest) -> dict:
        with http_errors():
            profile = await asyncio.to_thread(profiles.create, payload.to_payload())
        return {"ok": True, "profile": profile.to_dict()}

    @app.get("/settings/streaming-profiles/{profile_id}")
    async def get_profile(profile_id: str) -> dict:
        with http_errors():
            profile = await asyncio.to_thread(profiles.get, profile_id)
        return {"profile": profile.to_dict()}

    @app.put("/settings/streaming-profiles/{profile_id}")
    async def update_profile(profile_id: str, payload: schemas.ProfileFields) -> dict:
        with http_errors():
            profile = await asyncio.to_thread(profiles.update, profile_id, payload.to_payload())
        return {"ok": True, "profile": profile.to_dict()}

    @app.delete("/settings/streaming-profiles/{profile_id}")
    async def delete_profile(profile_id: str) -> dict:
        with http_errors():
            await asyncio.to_thread(profiles.delete, profile_id)
        return {"ok": True}

    @app.post("/settings/streaming-profiles/{profile_id}/clone")
    async def clone_profile(profile_id: str, payload: schemas.ProfileCloneRequest) -> dict:
        with http_errors():
            profile = await asyncio.to_thread(profiles.clone, profile_id, payload.new_id, payload.new_name)
        return {"ok": True, "profile": profile.to_dict()}

    # ------------------------------------------------------------ test pattern

    def test_status() -> dict:
        active = sessions.active
        if active is None or active.request.mode not in TEST_MODES:
            return {"active": False, "session": None}
        return {"active": True, "session": active.snapshot()}

    @app.get("/test")
    async def get_test_session() -> dict:
        return test_status()

    @app.post("/test")
    async def start_test_session(payload: schemas.PatternSessionRequest) -> dict:
        with http_errors():
            request = await asyncio.to_thread(
                app_state.test_request,
                mode=payload.mode,
                pattern=payload.pattern,
                profile_id=payload.profile_id,
            )
            supervisor = await sessions.launch(request)
        return {"ok": True, "session": supervisor.snapshot()}

    @app.delete("/test")
    async def stop_test_session() -> dict:
        active = sessions.active
        stopped = False
        if active is not None and active.request.mode in TEST_MODES:
            stopped = await sessions.stop("test-stopped", mode=active.request.mode)
        return {"ok": True, "stopped": stopped}

    # ---------------------------------------------------------------- pairing

    @app.get("/pair")
    async def pairing_status() -> dict:
        status = await sessions.pairing.status()
        return status.to_dict()

    @app.post("/pair")
    async def pair(payload: schemas.PairRequest) -> dict:
        with http_errors():
            if payload.action == "pair":
                return await sessions.pairing.submit_pin(payload.pin, payload.name)
            if payload.action == "clear":
                return await sessions.pairing.clear()
        status = await sessions.pairing.status()
        return status.to_dict()

    # ---------------------------------------------------------------- session

    @app.get("/session")
    async def session_status() -> dict:
        return sessions.status()

    @app.post("/session")
    async def start_session(payload: Optional[schemas.SessionStartRequest] = None) -> dict:
        payload = payload or schemas.SessionStartRequest()
        with http_errors():
            request = await asyncio.to_thread(
                app_state.game_request,
                preset_id=payload.preset_id,
                profile_id=payload.profile_id,
            )
            supervisor = await sessions.launch(request)
        return {"ok": True, "session": supervisor.snapshot()}

    @app.delete("/session")
    async def stop_session() -> dict:
        stopped = await sessions.stop("requested")
        return {"ok": True, "stopped": stopped}

    return app


__all__ = ["create_app", "http_errors"]
