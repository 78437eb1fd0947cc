"""
Meditation Streak Engine - FastAPI Backend
Session recording, streaks, achievements and leaderboards
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import get_config_summary, get_streak_config
from database import db, ensure_tables, store as default_store
from dates import Clock
from errors import MeditationError, PersistenceUnavailable
from leaderboard import LeaderboardRanker
from logger import logger
from meditation import AchievementsOverview, Dashboard, MeditationService, SessionRecorded
from models import (
    AroundMe, HealthStatus, HistoryPage, LeaderboardPage, RankResult,
    SessionCreate, StreakInfo, StreakResetReport, Timeframe, UserAggregate,
    UserCreate, UserStats
)
from streaks import StreakResetService


VERSION = "1.0.0"


def create_app(store=None, clock: Optional[Clock] = None) -> FastAPI:
    """
    Build the API around a store.

    With no store the PostgreSQL store is used and the lifespan manages the
    connection pool and the background streak sweep.
    """
    managed = store is None
    store = store or default_store

    meditation = MeditationService(store, clock)
    ranker = LeaderboardRanker(store, clock)
    reset_service = StreakResetService(meditation.streaks)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        if managed:
            await db.connect()
            await ensure_tables()
            if get_streak_config().reset_enabled:
                await reset_service.start()
        logger.info(f"Server started (version {VERSION})")
        yield
        await reset_service.stop()
        if managed:
            await db.disconnect()
        logger.info("Server shutting down")

    app = FastAPI(
        title="Meditation Streak Engine",
        description="Streaks, achievements and leaderboards for meditation sessions",
        version=VERSION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MeditationError)
    async def meditation_error_handler(request: Request, exc: MeditationError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "message": exc.message,
                    "status": exc.status_code,
                    "path": request.url.path,
                }
            },
        )

    # ============================================
    # HEALTH & STATUS
    # ============================================

    @app.get("/health", response_model=HealthStatus)
    @app.get("/api/health", response_model=HealthStatus)
    async def health_check():
        """Check API and database health."""
        database = "connected"
        try:
            await store.count_users()
        except PersistenceUnavailable:
            database = "disconnected"
        return HealthStatus(
            status="healthy" if database == "connected" else "degraded",
            version=VERSION,
            database=database
        )

    @app.get("/api/config")
    async def config_summary():
        return get_config_summary()

    # ============================================
    # USERS
    # ============================================

    @app.post("/api/users", response_model=UserAggregate, status_code=201)
    async def create_user(payload: UserCreate):
        return await store.create_user(payload.username)

    @app.get("/api/users/{user_id}/stats", response_model=UserStats)
    async def user_stats(user_id: int):
        return await meditation.get_stats(user_id)

    # ============================================
    # MEDITATION SESSIONS
    # ============================================

    @app.post("/api/users/{user_id}/meditation/sessions", response_model=SessionRecorded, status_code=201)
    async def record_session(user_id: int, payload: SessionCreate):
        """Record a finished session and update streak, minutes and achievements."""
        return await meditation.record_meditation_session(
            user_id,
            payload.duration,
            payload.meditation_type,
            payload.notes
        )

    @app.get("/api/users/{user_id}/meditation/history", response_model=HistoryPage)
    async def meditation_history(
        user_id: int,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100)
    ):
        return await meditation.get_history(user_id, page, limit)

    @app.get("/api/users/{user_id}/meditation/streak", response_model=StreakInfo)
    async def meditation_streak(user_id: int):
        return await meditation.streaks.get_streak_info(user_id)

    @app.get("/api/users/{user_id}/meditation/achievements", response_model=AchievementsOverview)
    async def meditation_achievements(user_id: int):
        return await meditation.get_achievements(user_id)

    @app.get("/api/users/{user_id}/meditation/dashboard", response_model=Dashboard)
    async def meditation_dashboard(user_id: int):
        return await meditation.get_dashboard(user_id)

    # ============================================
    # LEADERBOARD
    # ============================================

    @app.get("/api/leaderboard", response_model=LeaderboardPage)
    async def leaderboard(
        timeframe: Timeframe = Timeframe.ALL,
        page: int = Query(default=1, ge=1),
        limit: Optional[int] = Query(default=None, ge=1),
        user_id: Optional[int] = None
    ):
        result = await ranker.page(timeframe, page, limit)
        if user_id is not None:
            result.current_user_rank = await ranker.rank(user_id, timeframe)
        return result

    @app.get("/api/leaderboard/users/{user_id}", response_model=RankResult)
    async def leaderboard_user(user_id: int, timeframe: Timeframe = Timeframe.ALL):
        return await ranker.rank(user_id, timeframe)

    @app.get("/api/leaderboard/around/{user_id}", response_model=AroundMe)
    async def leaderboard_around(
        user_id: int,
        timeframe: Timeframe = Timeframe.ALL,
        range: Optional[int] = Query(default=None, ge=1, le=50)
    ):
        return await ranker.around_me(user_id, timeframe, range)

    # ============================================
    # ADMIN
    # ============================================

    @app.post("/api/admin/streaks/reset", response_model=StreakResetReport)
    async def reset_streaks():
        """Run the inactive streak sweep now."""
        return await meditation.streaks.reset_inactive_streaks()

    app.state.meditation = meditation
    app.state.ranker = ranker
    app.state.reset_service = reset_service
    return app


app = create_app()


# ============================================
# RUN SERVER
# ============================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
