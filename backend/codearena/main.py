import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from .config import Settings, get_settings
from .database import async_session_factory, engine, init_db
from .events.manager import EventBroadcaster
from .judge import HttpJudgeClient, JudgeService
from .models import User
from .routers import auth, challenges, match_settings, peer_reviews, submissions, users
from .security import decode_token
from .services.context import LifecycleContext
from .services.finalization import InFlightSubmissionTracker
from .services.scheduler import PhaseScheduler

logger = logging.getLogger(__name__)


def build_context(
    settings: Settings,
    *,
    session_factory: sessionmaker | None = None,
    judge: JudgeService | None = None,
    broadcaster: EventBroadcaster | None = None,
) -> LifecycleContext:
    context = LifecycleContext(
        session_factory=session_factory or async_session_factory,
        settings=settings,
        judge=judge or HttpJudgeClient(settings.judge_url, timeout=settings.judge_timeout_seconds),
        broadcaster=broadcaster or EventBroadcaster(),
        tracker=InFlightSubmissionTracker(),
    )
    PhaseScheduler(context)
    return context


def create_app(
    settings: Settings | None = None,
    *,
    session_factory: sessionmaker | None = None,
    judge: JudgeService | None = None,
    init_database: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    logging.getLogger("codearena").setLevel(settings.log_level.upper())
    context = build_context(settings, session_factory=session_factory, judge=judge)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if init_database:
            await init_db(context.session_factory.kw.get("bind") or engine, settings)
        if settings.restore_phase_timers:
            await context.scheduler.restore()
        yield
        await context.scheduler.shutdown()
        await context.broadcaster.drain()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.context = context
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.cors_origins],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix=settings.api_prefix)
    app.include_router(users.router, prefix=settings.api_prefix)
    app.include_router(match_settings.router, prefix=settings.api_prefix)
    app.include_router(challenges.router, prefix=settings.api_prefix)
    app.include_router(submissions.router, prefix=settings.api_prefix)
    app.include_router(peer_reviews.router, prefix=settings.api_prefix)

    @app.exception_handler(Exception)
    async def unhandled_exception(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal server error."},
        )

    @app.get("/healthz")
    async def healthcheck():
        return {"status": "ok"}

    async def _authenticate(websocket: WebSocket, token: str | None) -> User | None:
        if not token:
            return None
        try:
            decoded = decode_token(token)
        except ValueError:
            return None
        user_id = decoded.get("sub")
        if not user_id:
            return None
        async with context.session_factory() as session:
            return await session.get(User, user_id)

    @app.websocket("/ws/challenges/{challenge_id}")
    async def challenge_socket(websocket: WebSocket, challenge_id: str, token: str | None = Query(default=None)):
        if await _authenticate(websocket, token) is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await context.broadcaster.connect_challenge(challenge_id, websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            context.broadcaster.disconnect_challenge(challenge_id, websocket)

    @app.websocket("/ws/events")
    async def events_socket(websocket: WebSocket, token: str | None = Query(default=None)):
        if await _authenticate(websocket, token) is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return
        await context.broadcaster.connect_global(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            context.broadcaster.disconnect_global(websocket)

    return app


app = create_app()
