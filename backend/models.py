"""
Meditation Streak Engine - Pydantic Models (v2 syntax)
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


# ============================================
# ENUMS
# ============================================

class Timeframe(str, Enum):
    ALL = "all"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


# ============================================
# PERSISTED MODELS
# ============================================

class UserAggregate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: Optional[str] = None
    streak_count: int = Field(default=0, ge=0)
    total_minutes: int = Field(default=0, ge=0)
    streak_updated_at: Optional[datetime] = None


class MeditationSession(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    user_id: int
    duration: int = Field(ge=1)
    completed_at: datetime
    meditation_type: Optional[str] = None
    notes: Optional[str] = None


class SessionCreate(BaseModel):
    duration: int = Field(ge=1, description="Session length in minutes")
    meditation_type: Optional[str] = Field(default=None, max_length=100)
    notes: Optional[str] = None


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=100)


# ============================================
# STREAK MODELS
# ============================================

class StreakInfo(BaseModel):
    streak: int
    total_minutes: int
    today_completed: bool
    longest_streak: int = 0


class StreakResetReport(BaseModel):
    checked: int = 0
    reset: int = 0
    skipped: int = 0
    window_start: datetime
    window_end: datetime


# ============================================
# LEADERBOARD MODELS
# ============================================

class RankResult(BaseModel):
    user_id: int
    rank: int
    minutes: int
    timeframe: Timeframe


class LeaderboardEntry(BaseModel):
    user_id: int
    username: Optional[str] = None
    minutes: int
    streak_count: int = 0
    rank: int


class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int


class LeaderboardPage(BaseModel):
    entries: List[LeaderboardEntry]
    pagination: Pagination
    timeframe: Timeframe
    current_user_rank: Optional[RankResult] = None


class AroundMe(BaseModel):
    entries: List[LeaderboardEntry]
    current_user_rank: RankResult
    timeframe: Timeframe


# ============================================
# STATISTICS MODELS
# ============================================

class LongestSession(BaseModel):
    duration: int
    date: datetime
    type: Optional[str] = None


class UserStats(BaseModel):
    total_sessions: int = 0
    total_minutes: int = 0
    average_session_length: float = 0
    longest_session: Optional[LongestSession] = None
    most_frequent_type: Optional[str] = None
    last_meditation_date: Optional[datetime] = None
    longest_streak: int = 0
    variety_count: int = 0
    recent_sessions: int = 0
    recent_minutes: int = 0
    days_meditated: int = 0
    consistency_rate: int = 0


# ============================================
# API RESPONSE MODELS
# ============================================

class HistoryPage(BaseModel):
    sessions: List[MeditationSession]
    pagination: Pagination
    streak: StreakInfo


class HealthStatus(BaseModel):
    status: str = "healthy"
    version: str = "1.0.0"
    database: str = "connected"
