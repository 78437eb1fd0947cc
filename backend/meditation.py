"""
Meditation Streak Engine - Session Recording & Progress Views
Entry points that combine the streak, achievement and stats engines.
"""

import math
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel

from achievements import (
    DEFAULT_CATALOG, AchievementCatalog, AchievementDefinition,
    AchievementEvaluation, count_achieved, highlight
)
from dates import Clock, SystemClock, ensure_aware
from errors import UserNotFound
from logger import get_logger
from models import HistoryPage, MeditationSession, Pagination, UserAggregate, UserStats
from stats import achievement_snapshot, summarize
from streaks import StreakEngine

logger = get_logger("meditation")


# ============================================
# RESULT MODELS
# ============================================

class SessionRecorded(BaseModel):
    session: MeditationSession
    streak: int
    total_minutes: int
    today_completed: bool
    new_achievements: List[AchievementDefinition] = []
    # Set when unlock detection failed; the streak update still committed
    achievements_error: Optional[str] = None


class AchievementsOverview(BaseModel):
    achievements: List[AchievementEvaluation]
    stats: UserStats
    current_streak: int
    total_minutes: int


class Dashboard(BaseModel):
    streak_count: int
    total_minutes: int
    stats: UserStats
    highlighted_achievements: List[AchievementEvaluation]
    total_achievements_count: int
    total_possible_achievements: int


# ============================================
# SERVICE
# ============================================

class MeditationService:
    """Session recording and per-user progress views."""

    def __init__(
        self,
        store,
        clock: Clock = None,
        catalog: AchievementCatalog = DEFAULT_CATALOG,
        timezone_name: Optional[str] = None
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.catalog = catalog
        self.streaks = StreakEngine(store, self.clock, timezone_name)

    async def record_meditation_session(
        self,
        user_id: int,
        duration: int,
        meditation_type: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SessionRecorded:
        update = await self.streaks.record_session(user_id, duration, meditation_type, notes, now)

        new_achievements: List[AchievementDefinition] = []
        achievements_error = None
        try:
            new_achievements = self.catalog.newly_unlocked(update.before, update.after)
        except Exception as e:
            logger.exception(f"Achievement check failed for user {user_id}")
            achievements_error = str(e) or e.__class__.__name__

        if new_achievements:
            logger.info(f"User {user_id} unlocked {[a.id for a in new_achievements]}")

        return SessionRecorded(
            session=update.session,
            streak=update.streak,
            total_minutes=update.total_minutes,
            today_completed=update.today_completed,
            new_achievements=new_achievements,
            achievements_error=achievements_error,
        )

    async def _require_user(self, user_id: int) -> UserAggregate:
        user = await self.store.find_user_aggregate(user_id)
        if user is None:
            raise UserNotFound(user_id)
        return user

    async def get_stats(self, user_id: int, now: Optional[datetime] = None) -> UserStats:
        await self._require_user(user_id)
        sessions = await self.store.query_sessions(user_id)
        return summarize(sessions, ensure_aware(now or self.clock.now()), self.streaks.tz)

    async def get_history(
        self,
        user_id: int,
        page: int = 1,
        limit: int = 10,
        now: Optional[datetime] = None
    ) -> HistoryPage:
        await self._require_user(user_id)
        page = max(1, page)
        limit = max(1, limit)

        sessions = await self.store.list_sessions(user_id, (page - 1) * limit, limit)
        total = await self.store.count_sessions(user_id)
        streak = await self.streaks.get_streak_info(user_id, now)

        return HistoryPage(
            sessions=sessions,
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit),
            ),
            streak=streak,
        )

    async def _evaluate(self, user_id: int, now: Optional[datetime]):
        user = await self._require_user(user_id)
        stats = await self.get_stats(user_id, now)
        evaluations = self.catalog.evaluate(achievement_snapshot(user, stats))
        return user, stats, evaluations

    async def get_achievements(self, user_id: int, now: Optional[datetime] = None) -> AchievementsOverview:
        user, stats, evaluations = await self._evaluate(user_id, now)
        return AchievementsOverview(
            achievements=evaluations,
            stats=stats,
            current_streak=user.streak_count,
            total_minutes=user.total_minutes,
        )

    async def get_dashboard(self, user_id: int, now: Optional[datetime] = None) -> Dashboard:
        user, stats, evaluations = await self._evaluate(user_id, now)
        return Dashboard(
            streak_count=user.streak_count,
            total_minutes=user.total_minutes,
            stats=stats,
            highlighted_achievements=highlight(evaluations),
            total_achievements_count=count_achieved(evaluations),
            total_possible_achievements=len(self.catalog),
        )
