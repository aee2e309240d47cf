from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from pipemap.core.config import Settings
from pipemap.core.errors import EditStateError, VertexOperationError
from pipemap.core.logger import configure_logging, get_logger, get_session_id, session_context
from pipemap.models import (
    AddVertexRequest, ConnectivityRequest, EditSessionRequest, EditSessionResponse,
    HealthResponse, MoveVertexRequest, PendingSaveResponse,
)
from pipemap.services.connectivity import ConnectivityMonitor
from pipemap.services.editing import EditOutcome, MapEditingSession
from pipemap.services.store import SqliteFeatureStore

logger = get_logger(__name__)

API_PREFIX = "/api/v1"
SESSION_HEADER = "X-Session-ID"


def build_session(settings: Settings) -> MapEditingSession:
    store = SqliteFeatureStore(settings.db_path)
    connectivity = ConnectivityMonitor(health_url=settings.health_url)
    return MapEditingSession(store, connectivity=connectivity, bus=connectivity.bus, config=settings.autosave)


def create_app(session: Optional[MapEditingSession] = None) -> FastAPI:
    """
    Builds the API. Without an injected session one is created on startup
    from the environment and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.session is None
        if owned:
            configure_logging()
            settings = Settings.from_env()
            app.state.session = build_session(settings)
            logger.info("api_session_started", db_path=str(settings.db_path), health_url=settings.health_url)
        yield
        if owned:
            app.state.session.close()
            store = app.state.session.auto_saver.store
            if isinstance(store, SqliteFeatureStore):
                store.close()
            logger.info("api_session_closed")

    app = FastAPI(title="pipemap", lifespan=lifespan)
    app.state.session = session

    @app.middleware("http")
    async def _bind_session_id(request: Request, call_next):
        # Correlates the log lines of one client across requests
        with session_context(request.headers.get(SESSION_HEADER) or uuid.uuid4().hex):
            response = await call_next(request)
            response.headers[SESSION_HEADER] = get_session_id()
        return response

    def _session(request: Request) -> MapEditingSession:
        current = request.app.state.session
        if current is None:
            raise HTTPException(status_code=503, detail="Editing session not ready")
        return current

    @app.exception_handler(EditStateError)
    async def _edit_state_handler(request: Request, exc: EditStateError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(VertexOperationError)
    async def _vertex_op_handler(request: Request, exc: VertexOperationError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    def _outcome_response(s: MapEditingSession, feature_id: str, outcome: EditOutcome) -> EditSessionResponse:
        if not outcome.accepted:
            # The edit is reverted; the caller shows the messages
            raise HTTPException(status_code=422, detail={
                "messages": outcome.messages,
                "errors": [e.value for e in outcome.validation.errors],
            })
        response = s.describe(feature_id)
        response.warnings = outcome.validation.warnings
        return response

    @app.get(f"{API_PREFIX}/health", response_model=HealthResponse)
    def health(request: Request):
        s = _session(request)
        # Refreshes connectivity from the health URL when one is configured
        online = s.connectivity.probe()
        return HealthResponse(
            status="ok",
            online=online,
            pending_saves=len(s.auto_saver.get_pending_saves()),
        )

    @app.post(f"{API_PREFIX}/edits/{{feature_id}}", response_model=EditSessionResponse)
    def enter_edit(feature_id: str, req: EditSessionRequest, request: Request):
        s = _session(request)
        s.enter_edit(feature_id, req.feature_kind, req.geometry)
        return s.describe(feature_id)

    @app.get(f"{API_PREFIX}/edits/{{feature_id}}", response_model=EditSessionResponse)
    def get_edit(feature_id: str, request: Request):
        return _session(request).describe(feature_id)

    @app.post(f"{API_PREFIX}/edits/{{feature_id}}/vertices/move", response_model=EditSessionResponse)
    def move_vertex(feature_id: str, req: MoveVertexRequest, request: Request):
        s = _session(request)
        return _outcome_response(s, feature_id, s.move_vertex(feature_id, req.index, req.position))

    @app.post(f"{API_PREFIX}/edits/{{feature_id}}/vertices", response_model=EditSessionResponse)
    def add_vertex(feature_id: str, req: AddVertexRequest, request: Request):
        s = _session(request)
        return _outcome_response(s, feature_id, s.add_vertex(feature_id, req.position))

    @app.delete(f"{API_PREFIX}/edits/{{feature_id}}/vertices/{{index}}", response_model=EditSessionResponse)
    def remove_vertex(feature_id: str, index: int, request: Request):
        s = _session(request)
        return _outcome_response(s, feature_id, s.remove_vertex(feature_id, index))

    @app.post(f"{API_PREFIX}/edits/{{feature_id}}/commit")
    def commit_edit(feature_id: str, request: Request):
        geometry = _session(request).commit(feature_id)
        return {"feature_id": feature_id, "geometry": geometry.model_dump()}

    @app.post(f"{API_PREFIX}/edits/{{feature_id}}/cancel")
    def cancel_edit(feature_id: str, request: Request):
        geometry = _session(request).cancel(feature_id)
        return {"feature_id": feature_id, "geometry": geometry.model_dump()}

    @app.get(f"{API_PREFIX}/saves", response_model=List[PendingSaveResponse])
    def pending_saves(request: Request):
        return [
            PendingSaveResponse(
                feature_id=p.feature_id,
                feature_kind=p.feature_kind,
                retry_count=p.retry_count,
                created_at=p.created_at,
                geometry=p.geometry,
            )
            for p in _session(request).auto_saver.get_pending_saves()
        ]

    @app.post(f"{API_PREFIX}/saves/flush")
    def flush_saves(request: Request):
        s = _session(request)
        attempted = s.auto_saver.process_save_queue()
        return {"attempted": attempted, "pending": len(s.auto_saver.get_pending_saves())}

    @app.post(f"{API_PREFIX}/saves/{{feature_id}}/force")
    def force_save(feature_id: str, request: Request):
        s = _session(request)
        s.auto_saver.force_save(feature_id)
        return {"feature_id": feature_id, "pending": s.auto_saver.has_pending_changes(feature_id)}

    @app.delete(f"{API_PREFIX}/saves/{{feature_id}}")
    def cancel_save(feature_id: str, request: Request):
        s = _session(request)
        s.auto_saver.cancel_save(feature_id)
        return {"feature_id": feature_id, "pending": False}

    @app.post(f"{API_PREFIX}/connectivity")
    def set_connectivity(req: ConnectivityRequest, request: Request):
        s = _session(request)
        changed = s.connectivity.set_online(req.online)
        return {"online": s.connectivity.is_online(), "changed": changed}

    return app


app = create_app()
