"""
Meditation Streak Engine - Achievement Catalog & Differ
Milestone definitions, per-user evaluation and unlock detection.

Everything in this module is pure: no database access, no clock.
"""

import math
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field


# ============================================
# ENUMS
# ============================================

class AchievementType(str, Enum):
    STREAK = "streak"
    TOTAL_MINUTES = "total_minutes"
    SESSION_COUNT = "session_count"
    VARIETY = "variety"
    LONG_SESSION = "long_session"


PROGRESS_UNITS = {
    AchievementType.STREAK: "days",
    AchievementType.TOTAL_MINUTES: "minutes",
    AchievementType.SESSION_COUNT: "sessions",
    AchievementType.VARIETY: "types",
    AchievementType.LONG_SESSION: "minutes",
}


# ============================================
# PYDANTIC MODELS
# ============================================

class AchievementDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    type: AchievementType
    threshold: int = Field(gt=0)
    description: str
    icon: str = ""


class AchievementSnapshot(BaseModel):
    """Point-in-time metrics a user is judged on."""
    model_config = ConfigDict(frozen=True)

    streak_count: int = 0
    total_minutes: int = 0
    session_count: int = 0
    variety_count: int = 0
    longest_session: int = 0

    def metric(self, achievement_type: AchievementType) -> int:
        if achievement_type == AchievementType.STREAK:
            return self.streak_count
        if achievement_type == AchievementType.TOTAL_MINUTES:
            return self.total_minutes
        if achievement_type == AchievementType.SESSION_COUNT:
            return self.session_count
        if achievement_type == AchievementType.VARIETY:
            return self.variety_count
        return self.longest_session


class AchievementEvaluation(BaseModel):
    definition: AchievementDefinition
    achieved: bool
    progress: int = Field(ge=0, le=100)
    progress_text: str


# ============================================
# ACHIEVEMENT DEFINITIONS
# ============================================

def _streak(days: int, name: str, description: str, icon: str) -> AchievementDefinition:
    return AchievementDefinition(
        id=f"streak_{days}", name=name, type=AchievementType.STREAK,
        threshold=days, description=description, icon=icon
    )


def _minutes(minutes: int, name: str, description: str, icon: str) -> AchievementDefinition:
    return AchievementDefinition(
        id=f"total_time_{minutes}", name=name, type=AchievementType.TOTAL_MINUTES,
        threshold=minutes, description=description, icon=icon
    )


DEFAULT_DEFINITIONS: Tuple[AchievementDefinition, ...] = (
    # Streak milestones
    _streak(1, "First Step", "Completed your first meditation", "🌱"),
    _streak(3, "Budding Practice", "Meditated for 3 days in a row", "🔥"),
    _streak(7, "Weekly Warrior", "Maintained a 7-day meditation streak", "🔥🔥"),
    _streak(14, "Fortnight Focus", "Maintained a 14-day meditation streak", "🔥🔥🔥"),
    _streak(21, "Habit Formed", "21 days of consistent meditation", "🌿"),
    _streak(30, "Monthly Master", "Completed a month of daily meditation", "🏆"),
    _streak(60, "Disciplined Mind", "2 months of continuous practice", "🧠"),
    _streak(90, "Quarterly Commitment", "3 months of dedicated practice", "📅"),
    _streak(180, "Meditation Sage", "6 months of unwavering dedication", "🦉"),
    _streak(365, "Zen Master", "A full year of daily meditation", "👑"),
    # Accumulated time
    _minutes(60, "Hour Marker", "Accumulated 1 hour of meditation", "⌛"),
    _minutes(300, "5-Hour Focus", "Accumulated 5 hours of meditation", "⏳"),
    _minutes(600, "10-Hour Journey", "Accumulated 10 hours of meditation", "🕰️"),
    _minutes(1500, "25-Hour Devotion", "Accumulated 25 hours of meditation", "🌠"),
    _minutes(3000, "50-Hour Milestone", "Accumulated 50 hours of meditation", "🌄"),
    _minutes(6000, "100-Hour Achievement", "Accumulated 100 hours of meditation", "🏔️"),
    _minutes(18000, "300-Hour Mastery", "Accumulated 300 hours of meditation", "🧘"),
    _minutes(36000, "600-Hour Enlightenment", "Accumulated 600 hours of meditation", "☀️"),
    # Session counts
    AchievementDefinition(
        id="first_session", name="First Sit", type=AchievementType.SESSION_COUNT,
        threshold=1, description="Complete your first meditation session", icon="🪷"
    ),
    AchievementDefinition(
        id="five_sessions", name="Getting Started", type=AchievementType.SESSION_COUNT,
        threshold=5, description="Complete 5 meditation sessions", icon="🌿"
    ),
    AchievementDefinition(
        id="twenty_sessions", name="Consistent Practice", type=AchievementType.SESSION_COUNT,
        threshold=20, description="Complete 20 meditation sessions", icon="🌳"
    ),
    AchievementDefinition(
        id="fifty_sessions", name="Dedicated Meditator", type=AchievementType.SESSION_COUNT,
        threshold=50, description="Complete 50 meditation sessions", icon="🏞️"
    ),
    AchievementDefinition(
        id="hundred_sessions", name="Meditation Master", type=AchievementType.SESSION_COUNT,
        threshold=100, description="Complete 100 meditation sessions", icon="🌍"
    ),
    # Technique variety
    AchievementDefinition(
        id="variety_3", name="Technique Explorer", type=AchievementType.VARIETY,
        threshold=3, description="Try 3 different meditation types", icon="🔍"
    ),
    AchievementDefinition(
        id="variety_5", name="Meditation Adventurer", type=AchievementType.VARIETY,
        threshold=5, description="Try 5 different meditation types", icon="🧭"
    ),
    AchievementDefinition(
        id="variety_all", name="Complete Collection", type=AchievementType.VARIETY,
        threshold=10, description="Try all meditation types", icon="🌈"
    ),
    # Single long sessions
    AchievementDefinition(
        id="long_session_15", name="Deep Diver", type=AchievementType.LONG_SESSION,
        threshold=15, description="Complete a 15+ minute meditation session", icon="🐋"
    ),
    AchievementDefinition(
        id="long_session_30", name="Endurance Meditator", type=AchievementType.LONG_SESSION,
        threshold=30, description="Complete a 30+ minute meditation session", icon="🐳"
    ),
    AchievementDefinition(
        id="long_session_60", name="Meditation Marathon", type=AchievementType.LONG_SESSION,
        threshold=60, description="Complete a 60+ minute meditation session", icon="🏊"
    ),
)


# ============================================
# EVALUATION
# ============================================

def compute_progress(metric: int, threshold: int) -> int:
    """Percentage toward `threshold`, rounded half up and capped at 100."""
    return min(100, math.floor(metric * 100 / threshold + 0.5))


def evaluate_definition(definition: AchievementDefinition, snapshot: AchievementSnapshot) -> AchievementEvaluation:
    metric = snapshot.metric(definition.type)
    return AchievementEvaluation(
        definition=definition,
        achieved=metric >= definition.threshold,
        progress=max(0, compute_progress(metric, definition.threshold)),
        progress_text=f"{metric}/{definition.threshold} {PROGRESS_UNITS[definition.type]}",
    )


class AchievementCatalog:
    """Ordered, read-only set of milestone definitions."""

    def __init__(self, definitions: Iterable[AchievementDefinition]):
        self._definitions = tuple(definitions)
        self._positions: Dict[str, int] = {}
        for position, definition in enumerate(self._definitions):
            if definition.id in self._positions:
                raise ValueError(f"Duplicate achievement id: {definition.id}")
            self._positions[definition.id] = position

    @property
    def definitions(self) -> Tuple[AchievementDefinition, ...]:
        return self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def __iter__(self):
        return iter(self._definitions)

    def get(self, achievement_id: str) -> Optional[AchievementDefinition]:
        position = self._positions.get(achievement_id)
        return self._definitions[position] if position is not None else None

    def evaluate_in_order(self, snapshot: AchievementSnapshot) -> List[AchievementEvaluation]:
        """Evaluations in catalog order."""
        return [evaluate_definition(d, snapshot) for d in self._definitions]

    def evaluate(self, snapshot: AchievementSnapshot) -> List[AchievementEvaluation]:
        """
        Evaluate every milestone against a snapshot.

        Achieved items come first, then unachieved; each group by descending
        progress. Python's sort is stable so ties keep catalog order.
        """
        return sorted(
            self.evaluate_in_order(snapshot),
            key=lambda e: (not e.achieved, -e.progress)
        )

    def diff(
        self,
        before: Iterable[AchievementEvaluation],
        after: Iterable[AchievementEvaluation]
    ) -> List[AchievementDefinition]:
        """Definitions whose `achieved` flipped from False to True, in catalog order."""
        was_achieved = {e.definition.id: e.achieved for e in before}
        now_achieved = {e.definition.id: e.achieved for e in after}
        return [
            d for d in self._definitions
            if now_achieved.get(d.id, False) and not was_achieved.get(d.id, False)
        ]

    def newly_unlocked(
        self,
        before: AchievementSnapshot,
        after: AchievementSnapshot
    ) -> List[AchievementDefinition]:
        return self.diff(self.evaluate_in_order(before), self.evaluate_in_order(after))


DEFAULT_CATALOG = AchievementCatalog(DEFAULT_DEFINITIONS)


def evaluate(catalog: AchievementCatalog, snapshot: AchievementSnapshot) -> List[AchievementEvaluation]:
    return catalog.evaluate(snapshot)


def diff(
    before: List[AchievementEvaluation],
    after: List[AchievementEvaluation],
    catalog: AchievementCatalog = DEFAULT_CATALOG
) -> List[AchievementDefinition]:
    return catalog.diff(before, after)


# ============================================
# DASHBOARD HELPERS
# ============================================

def highlight(evaluations: List[AchievementEvaluation], limit: int = 3) -> List[AchievementEvaluation]:
    """
    Pick the achievements worth showing on the dashboard.

    Up to two close-to-done ones (80%+ but not achieved), then achieved
    ones until `limit` is reached. Expects `evaluate()` ordering.
    """
    upcoming = [e for e in evaluations if not e.achieved and e.progress >= 80][:2]
    achieved = [e for e in evaluations if e.achieved][:max(0, limit - len(upcoming))]
    return upcoming + achieved


def count_achieved(evaluations: List[AchievementEvaluation]) -> int:
    return sum(1 for e in evaluations if e.achieved)
