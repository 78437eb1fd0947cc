import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Dict, List, Optional

import pytest

from dates import ensure_aware
from errors import TransactionConflict
from helpers import FixedClock, utc
from models import MeditationSession, UserAggregate


class FakeTransaction:
    """Stages writes and applies them only when the block exits cleanly."""

    def __init__(self, store: "FakeStore", user_id: int):
        self.store = store
        self.user_id = user_id
        self.new_sessions: List[MeditationSession] = []
        self.aggregate: Optional[dict] = None

    def _sessions(self) -> List[MeditationSession]:
        return [s for s in self.store.sessions if s.user_id == self.user_id] + self.new_sessions

    async def lock_user(self) -> Optional[UserAggregate]:
        user = self.store.users.get(self.user_id)
        return user.model_copy() if user else None

    async def session_exists(self, start: datetime, end: datetime) -> bool:
        return any(start <= ensure_aware(s.completed_at) < end for s in self._sessions())

    async def session_metrics(self) -> dict:
        sessions = self._sessions()
        return {
            "session_count": len(sessions),
            "variety_count": len({s.meditation_type for s in sessions if s.meditation_type}),
            "longest_session": max((s.duration for s in sessions), default=0),
        }

    async def create_session(self, duration, completed_at, meditation_type=None, notes=None):
        if self.store.fail_on_insert:
            raise RuntimeError("insert failed")
        session = MeditationSession(
            id=self.store.next_session_id(),
            user_id=self.user_id,
            duration=duration,
            completed_at=completed_at,
            meditation_type=meditation_type,
            notes=notes,
        )
        self.new_sessions.append(session)
        # Yield so concurrent callers get a chance to interleave
        await asyncio.sleep(0)
        return session

    async def update_user_aggregate(self, streak_count, total_minutes, streak_updated_at):
        self.aggregate = {
            "streak_count": streak_count,
            "total_minutes": total_minutes,
            "streak_updated_at": streak_updated_at,
        }

    def commit(self):
        self.store.sessions.extend(self.new_sessions)
        if self.aggregate is not None:
            user = self.store.users[self.user_id]
            self.store.users[self.user_id] = user.model_copy(update=self.aggregate)


class FakeStore:
    """In-memory stand-in for MeditationStore."""

    def __init__(self):
        self.users: Dict[int, UserAggregate] = {}
        self.sessions: List[MeditationSession] = []
        self.locks = defaultdict(asyncio.Lock)
        self.conflicts_to_raise = 0
        self.transaction_attempts = 0
        self.fail_on_insert = False
        self._session_id = 0

    def next_session_id(self) -> int:
        self._session_id += 1
        return self._session_id

    def add_user(self, user_id: int, streak_count: int = 0, total_minutes: int = 0,
                 username: Optional[str] = None, streak_updated_at: Optional[datetime] = None) -> UserAggregate:
        user = UserAggregate(
            id=user_id,
            username=username or f"user{user_id}",
            streak_count=streak_count,
            total_minutes=total_minutes,
            streak_updated_at=streak_updated_at,
        )
        self.users[user_id] = user
        return user

    def add_session(self, user_id: int, duration: int, completed_at: datetime,
                    meditation_type: Optional[str] = None) -> MeditationSession:
        session = MeditationSession(
            id=self.next_session_id(),
            user_id=user_id,
            duration=duration,
            completed_at=completed_at,
            meditation_type=meditation_type,
        )
        self.sessions.append(session)
        return session

    @asynccontextmanager
    async def user_transaction(self, user_id: int):
        async with self.locks[user_id]:
            self.transaction_attempts += 1
            txn = FakeTransaction(self, user_id)
            yield txn
            if self.conflicts_to_raise:
                self.conflicts_to_raise -= 1
                raise TransactionConflict("simulated serialization failure")
            txn.commit()

    async def create_user(self, username: str) -> UserAggregate:
        return self.add_user(max(self.users, default=0) + 1, username=username)

    async def find_user_aggregate(self, user_id: int) -> Optional[UserAggregate]:
        return self.users.get(user_id)

    async def count_users(self) -> int:
        return len(self.users)

    def _user_sessions(self, user_id: int) -> List[MeditationSession]:
        return [s for s in self.sessions if s.user_id == user_id]

    async def query_sessions(self, user_id, since=None, until=None):
        sessions = [
            s for s in self._user_sessions(user_id)
            if (since is None or s.completed_at >= since) and (until is None or s.completed_at < until)
        ]
        return sorted(sessions, key=lambda s: (s.completed_at, s.id), reverse=True)

    async def session_exists(self, user_id, start, end):
        return any(start <= s.completed_at < end for s in self._user_sessions(user_id))

    async def count_sessions(self, user_id):
        return len(self._user_sessions(user_id))

    async def list_sessions(self, user_id, offset, limit):
        return (await self.query_sessions(user_id))[offset:offset + limit]

    async def windowed_minutes(self, user_id, since):
        return sum(s.duration for s in self._user_sessions(user_id) if s.completed_at >= since)

    def _board(self, since):
        if since is None:
            rows = [
                {"user_id": u.id, "username": u.username, "minutes": u.total_minutes,
                 "streak_count": u.streak_count}
                for u in self.users.values()
            ]
        else:
            sums = defaultdict(int)
            for s in self.sessions:
                if s.completed_at >= since:
                    sums[s.user_id] += s.duration
            rows = [
                {"user_id": uid, "username": self.users[uid].username, "minutes": total,
                 "streak_count": self.users[uid].streak_count}
                for uid, total in sums.items() if total > 0
            ]
        return sorted(rows, key=lambda r: (-r["minutes"], r["user_id"]))

    async def count_users_with_minutes_above(self, value, since=None):
        return sum(1 for row in self._board(since) if row["minutes"] > value)

    async def count_users_listed_before(self, value, user_id, since=None):
        return sum(
            1 for row in self._board(since)
            if row["minutes"] > value or (row["minutes"] == value and row["user_id"] < user_id)
        )

    async def count_leaderboard(self, since=None):
        return len(self._board(since))

    async def leaderboard_slice(self, since, offset, limit):
        return self._board(since)[offset:offset + limit]

    async def users_with_active_streak(self):
        return [u for u in sorted(self.users.values(), key=lambda u: u.id) if u.streak_count > 0]

    async def reset_streak_if_untouched(self, user_id, untouched_since, now):
        user = self.users[user_id]
        if user.streak_count == 0:
            return False
        if user.streak_updated_at is not None and user.streak_updated_at >= untouched_since:
            return False
        self.users[user_id] = user.model_copy(update={"streak_count": 0, "streak_updated_at": now})
        return True


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def now():
    return utc(2024, 3, 15, 12, 0)


@pytest.fixture
def clock(now):
    return FixedClock(now)
