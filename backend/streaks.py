"""
Meditation Streak Engine - Streak Tracking
Daily-boundary streak transitions, longest streak and the inactive streak sweep.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from functools import wraps
from typing import Callable, Iterable, Optional

from achievements import AchievementSnapshot
from config import get_streak_config
from dates import Clock, SystemClock, day_window, ensure_aware, get_timezone, local_day
from errors import InvalidDuration, TransactionConflict, UserNotFound
from logger import get_logger
from models import MeditationSession, StreakInfo, StreakResetReport

logger = get_logger("streaks")


# ============================================
# RETRY DECORATOR
# ============================================

def retry_on_conflict(max_retries: Optional[int] = None, delay: Optional[float] = None):
    """
    Decorator to retry a whole transactional operation on TransactionConflict.

    Args:
        max_retries: Maximum number of attempts (defaults to STREAK_MAX_TRANSACTION_RETRIES)
        delay: Initial delay between attempts (exponential backoff)
    """
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            config = get_streak_config()
            attempts = max_retries or config.max_transaction_retries
            wait = config.retry_backoff_seconds if delay is None else delay
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except TransactionConflict:
                    if attempt + 1 >= attempts:
                        logger.error(f"{func.__name__} still conflicting after {attempts} attempts")
                        raise
                    wait_time = wait * (2 ** attempt)
                    logger.warning(f"Transaction conflict, retrying in {wait_time}s ({attempt + 1}/{attempts})")
                    await asyncio.sleep(wait_time)
        return wrapper
    return decorator


# ============================================
# PURE HELPERS
# ============================================

def next_streak(current: int, today_had_session: bool, had_yesterday: bool) -> int:
    """
    Streak after recording a session today.

    A session already logged today means today is already counted.
    """
    if today_had_session:
        return current
    if had_yesterday:
        return current + 1
    return 1


def longest_streak(instants: Iterable[datetime], tz) -> int:
    """Longest run of consecutive local days containing at least one instant."""
    days = sorted({local_day(i, tz) for i in instants})
    if not days:
        return 0

    longest = current = 1
    for previous, day in zip(days, days[1:]):
        if (day - previous).days == 1:
            current += 1
            longest = max(longest, current)
        else:
            current = 1
    return longest


@dataclass(frozen=True)
class StreakUpdate:
    session: MeditationSession
    streak: int
    total_minutes: int
    today_completed: bool
    before: AchievementSnapshot
    after: AchievementSnapshot


def _snapshot(streak_count: int, total_minutes: int, metrics: dict) -> AchievementSnapshot:
    return AchievementSnapshot(
        streak_count=streak_count,
        total_minutes=total_minutes,
        session_count=metrics["session_count"],
        variety_count=metrics["variety_count"],
        longest_session=metrics["longest_session"],
    )


# ============================================
# STREAK ENGINE
# ============================================

class StreakEngine:
    """Applies recorded sessions to a user's streak and lifetime minutes."""

    def __init__(self, store, clock: Clock = None, timezone_name: Optional[str] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.tz = get_timezone(timezone_name or get_streak_config().timezone)

    @retry_on_conflict()
    async def record_session(
        self,
        user_id: int,
        duration: int,
        meditation_type: Optional[str] = None,
        notes: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> StreakUpdate:
        if isinstance(duration, bool) or not isinstance(duration, int) or duration < 1:
            raise InvalidDuration(duration)

        now = ensure_aware(now or self.clock.now())
        window = day_window(now, self.tz)

        async with self.store.user_transaction(user_id) as txn:
            user = await txn.lock_user()
            if user is None:
                raise UserNotFound(user_id)

            before = _snapshot(user.streak_count, user.total_minutes, await txn.session_metrics())

            today_had_session = await txn.session_exists(window.today, window.tomorrow)
            had_yesterday = await txn.session_exists(window.yesterday, window.today)

            streak = next_streak(user.streak_count, today_had_session, had_yesterday)
            total_minutes = user.total_minutes + duration

            session = await txn.create_session(duration, now, meditation_type, notes)
            await txn.update_user_aggregate(streak, total_minutes, now)

            after = _snapshot(streak, total_minutes, await txn.session_metrics())

        logger.info(
            f"User {user_id} streak {user.streak_count} -> {streak}, "
            f"minutes {user.total_minutes} -> {total_minutes}"
        )
        return StreakUpdate(
            session=session,
            streak=streak,
            total_minutes=total_minutes,
            today_completed=True,
            before=before,
            after=after,
        )

    async def get_streak_info(self, user_id: int, now: Optional[datetime] = None) -> StreakInfo:
        user = await self.store.find_user_aggregate(user_id)
        if user is None:
            raise UserNotFound(user_id)

        now = ensure_aware(now or self.clock.now())
        window = day_window(now, self.tz)
        today_completed = await self.store.session_exists(user_id, window.today, window.tomorrow)
        sessions = await self.store.query_sessions(user_id)

        return StreakInfo(
            streak=user.streak_count,
            total_minutes=user.total_minutes,
            today_completed=today_completed,
            longest_streak=longest_streak((s.completed_at for s in sessions), self.tz),
        )

    async def reset_inactive_streaks(self, now: Optional[datetime] = None) -> StreakResetReport:
        """
        Zero the streak of every user who missed yesterday.

        A streak written at or after the start of today is left alone: the
        user recorded a session concurrently and that write already decided
        the streak.
        """
        now = ensure_aware(now or self.clock.now())
        window = day_window(now, self.tz)
        report = StreakResetReport(window_start=window.yesterday, window_end=window.today)

        users = await self.store.users_with_active_streak()
        logger.info(f"Streak sweep: {len(users)} users with active streaks")

        for user in users:
            report.checked += 1
            if await self.store.session_exists(user.id, window.yesterday, window.today):
                continue
            if await self.store.reset_streak_if_untouched(user.id, window.today, now):
                logger.info(f"User {user.id} missed yesterday, streak {user.streak_count} -> 0")
                report.reset += 1
            else:
                logger.debug(f"User {user.id} streak updated today, skipping reset")
                report.skipped += 1

        logger.info(f"Streak sweep complete: {report.reset} reset, {report.skipped} skipped")
        return report


# ============================================
# STREAK RESET SERVICE (Background Runner)
# ============================================

class StreakResetService:
    """Background service that runs the inactive streak sweep periodically."""

    def __init__(self, engine: StreakEngine, interval_seconds: Optional[int] = None):
        self.engine = engine
        self.interval = interval_seconds or get_streak_config().reset_interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the sweep loop."""
        if self.running:
            return

        self.running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info(f"Streak reset service started with {self.interval}s interval")

    async def stop(self):
        """Stop the sweep loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Streak reset service stopped")

    async def _run_loop(self):
        while self.running:
            try:
                await self.engine.reset_inactive_streaks()
            except Exception:
                # Next run retries; the sweep itself is idempotent
                logger.exception("Streak sweep failed")

            await asyncio.sleep(self.interval)
