"""
FastAPI application factory.

Serves:
- the chat WebSocket (`/ws`) that streams the Sage's replies
- REST routes for the session lifecycle
- a health check

Caller identity comes from the `X-User-Id` header (or the `user_id` query
parameter on the socket); authentication itself happens upstream.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .. import __version__
from ..agent import ChatOrchestrator, SessionStateMachine
from ..config import Settings, get_settings
from ..errors import ErrorKind, ServiceError, ServiceResult, TurnInProgressError
from ..llm import BaseLLM, create_llm
from ..store import SessionStore, SqlStore

logger = structlog.get_logger()


class CreateSessionRequest(BaseModel):
    """Session creation request."""
    title: str = ""


def _sqlite_path(database_url: str) -> Path | None:
    if database_url.startswith("sqlite") and ":///" in database_url:
        path = database_url.split(":///", 1)[1]
        if path and path != ":memory:":
            return Path(path)
    return None


def _raise_for(result: ServiceResult) -> Any:
    """Return the result data or raise the matching HTTP error."""
    if result.ok:
        return result.data
    error = result.error
    raise HTTPException(
        status_code=error.kind.http_status,
        detail={"code": error.kind.value, "message": error.message},
    )


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    """Caller identity from the X-User-Id header."""
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(
            status_code=ErrorKind.UNAUTHORIZED.http_status,
            detail={"code": ErrorKind.UNAUTHORIZED.value, "message": "Missing user identity"},
        )
    return x_user_id.strip()


def create_app(
    settings: Settings | None = None,
    store: SessionStore | None = None,
    llm: BaseLLM | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    A store or LLM passed in is used as-is and not closed on shutdown.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        owned_store = store is None

        if store is None:
            db_path = _sqlite_path(settings.database_url)
            if db_path is not None:
                db_path.parent.mkdir(parents=True, exist_ok=True)
            active_store: SessionStore = await SqlStore.connect(settings.database_url)
            logger.info("Database initialized")
        else:
            active_store = store

        app.state.store = active_store
        app.state.sessions = SessionStateMachine(active_store)
        app.state.orchestrator = ChatOrchestrator(
            llm=llm or create_llm(settings=settings),
            store=active_store,
            sessions=app.state.sessions,
            settings=settings,
        )

        yield

        if owned_store:
            await active_store.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        description="The Sage guides storytellers through building an adventure",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def sessions_of(request: Request) -> SessionStateMachine:
        return request.app.state.sessions

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": __version__,
            "llm_configured": bool(settings.anthropic_api_key or settings.openai_api_key),
            "provider": settings.default_provider,
        }

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    @app.post("/api/session", status_code=201)
    async def create_session(
        body: CreateSessionRequest,
        request: Request,
        user_id: str = Depends(get_user_id),
    ):
        """Start a new adventure session."""
        session = _raise_for(await sessions_of(request).create(user_id, body.title))
        return {"session": session.to_dict()}

    @app.get("/api/sessions")
    async def list_sessions(request: Request, user_id: str = Depends(get_user_id)):
        """List the caller's sessions, most recent first."""
        sessions = _raise_for(await sessions_of(request).list(user_id))
        return {"sessions": [s.to_dict() for s in sessions]}

    @app.get("/api/session/{session_id}")
    async def get_session(session_id: str, request: Request, user_id: str = Depends(get_user_id)):
        """Load a session with its adventure state and conversation."""
        loaded = _raise_for(await sessions_of(request).load(session_id, user_id))
        messages = await request.app.state.store.list_messages(session_id)
        return {
            "session": loaded.session.to_dict(),
            "state": loaded.state.to_dict(),
            "messages": [
                {
                    "id": m.id,
                    "role": m.role.value,
                    "content": m.content,
                    "createdAt": m.created_at.isoformat(),
                }
                for m in messages
            ],
        }

    @app.delete("/api/session/{session_id}")
    async def abandon_session(session_id: str, request: Request, user_id: str = Depends(get_user_id)):
        """Abandon a session."""
        session = _raise_for(await sessions_of(request).abandon(session_id, user_id))
        return {"session": session.to_dict()}

    @app.post("/api/session/{session_id}/advance")
    async def advance_session(session_id: str, request: Request, user_id: str = Depends(get_user_id)):
        """Move a session to its next stage."""
        session = _raise_for(await sessions_of(request).advance_stage(session_id, user_id))
        return {"session": session.to_dict()}

    @app.post("/api/session/{session_id}/complete")
    async def complete_session(session_id: str, request: Request, user_id: str = Depends(get_user_id)):
        """Complete a session at the final stage."""
        session = _raise_for(await sessions_of(request).complete_session(session_id, user_id))
        return {"session": session.to_dict()}

    # ------------------------------------------------------------------ #
    # Chat socket
    # ------------------------------------------------------------------ #
    @app.websocket("/ws")
    async def chat_socket(websocket: WebSocket, user_id: str | None = Query(None)):
        """Stream conversation turns for one client connection."""
        await websocket.accept()

        caller = (websocket.headers.get("x-user-id") or user_id or "").strip()
        if not caller:
            await websocket.send_json(
                ServiceError(ErrorKind.UNAUTHORIZED, "Missing user identity").to_frame()
            )
            await websocket.close(code=1008)
            return

        orchestrator: ChatOrchestrator = websocket.app.state.orchestrator
        turns: set[asyncio.Task] = set()
        closed = False

        async def emit(frame: dict[str, Any]) -> None:
            nonlocal closed
            if closed:
                return
            try:
                await websocket.send_json(frame)
            except (WebSocketDisconnect, RuntimeError) as e:
                closed = True
                logger.info("Client gone, dropping frames", user_id=caller, error=str(e))

        async def reject(kind: ErrorKind, message: str) -> None:
            await emit(ServiceError(kind, message).to_frame())

        await emit({"type": "connected", "message": "The Codex is open."})
        logger.info("Chat connected", user_id=caller)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    data = json.loads(raw)
                except json.JSONDecodeError:
                    await reject(ErrorKind.INVALID_INPUT, "Frames must be JSON")
                    continue
                if not isinstance(data, dict):
                    await reject(ErrorKind.INVALID_INPUT, "Frames must be JSON objects")
                    continue

                frame_type = data.get("type")
                session_id = data.get("sessionId")

                if frame_type == "ping":
                    await emit({"type": "pong"})
                    continue

                if frame_type not in ("chat:send", "chat:greet"):
                    await reject(ErrorKind.INVALID_INPUT, f"Unknown frame type: {frame_type}")
                    continue

                if not isinstance(session_id, str) or not session_id:
                    await reject(ErrorKind.INVALID_INPUT, "sessionId is required")
                    continue

                try:
                    if frame_type == "chat:send":
                        content = data.get("content")
                        if not isinstance(content, str) or not content.strip():
                            await reject(ErrorKind.INVALID_INPUT, "Message content is required")
                            continue
                        task = orchestrator.start_turn(session_id, caller, content, emit)
                    else:
                        task = orchestrator.start_greeting(session_id, caller, emit)
                except TurnInProgressError:
                    await reject(ErrorKind.CONFLICT, "A turn is already in progress for this session")
                    continue

                turns.add(task)
                task.add_done_callback(turns.discard)

        except WebSocketDisconnect:
            logger.info("Chat disconnected", user_id=caller)
        finally:
            closed = True
            # Let running turns finish so their replies are still stored
            if turns:
                await asyncio.gather(*turns, return_exceptions=True)

    return app
