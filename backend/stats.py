"""
Meditation Streak Engine - User Statistics
Read-only aggregates derived from a user's session history.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import List, Optional

from achievements import AchievementSnapshot
from dates import ensure_aware, local_day, midnight
from models import LongestSession, MeditationSession, UserAggregate, UserStats
from streaks import longest_streak


CONSISTENCY_WINDOW_DAYS = 30


def most_frequent_type(sessions: List[MeditationSession]) -> Optional[str]:
    """Mode of the labelled sessions; ties go to the first label seen."""
    counts = Counter(s.meditation_type for s in sessions if s.meditation_type)
    if not counts:
        return None
    # Counter keeps insertion order, and max() returns the first maximum
    return max(counts, key=counts.get)


def variety_count(sessions: List[MeditationSession]) -> int:
    return len({s.meditation_type for s in sessions if s.meditation_type})


def summarize(sessions: List[MeditationSession], now: datetime, tz) -> UserStats:
    """
    Compute statistics over a full session history.

    Args:
        sessions: Every session of the user, in the order the store returns them
        now: Reference instant; the recent window is the 30 local days ending today
        tz: Reference timezone for calendar days
    """
    if not sessions:
        return UserStats()

    now = ensure_aware(now)
    total_minutes = sum(s.duration for s in sessions)

    longest = sessions[0]
    for session in sessions[1:]:
        if session.duration > longest.duration:
            longest = session

    # Window covers the last 30 local calendar days, today included
    recent_start = midnight(local_day(now, tz) - timedelta(days=CONSISTENCY_WINDOW_DAYS - 1), tz)
    recent = [s for s in sessions if recent_start <= ensure_aware(s.completed_at) <= now]
    days_meditated = len({local_day(s.completed_at, tz) for s in recent})

    return UserStats(
        total_sessions=len(sessions),
        total_minutes=total_minutes,
        average_session_length=round(total_minutes / len(sessions), 1),
        longest_session=LongestSession(
            duration=longest.duration,
            date=longest.completed_at,
            type=longest.meditation_type,
        ),
        most_frequent_type=most_frequent_type(sessions),
        last_meditation_date=max(s.completed_at for s in sessions),
        longest_streak=longest_streak((s.completed_at for s in sessions), tz),
        variety_count=variety_count(sessions),
        recent_sessions=len(recent),
        recent_minutes=sum(s.duration for s in recent),
        days_meditated=days_meditated,
        consistency_rate=min(100, round(days_meditated / CONSISTENCY_WINDOW_DAYS * 100)),
    )


def achievement_snapshot(user: UserAggregate, stats: UserStats) -> AchievementSnapshot:
    """Snapshot combining the stored aggregate with history-derived metrics."""
    return AchievementSnapshot(
        streak_count=user.streak_count,
        total_minutes=user.total_minutes,
        session_count=stats.total_sessions,
        variety_count=stats.variety_count,
        longest_session=stats.longest_session.duration if stats.longest_session else 0,
    )
