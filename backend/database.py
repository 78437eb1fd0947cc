"""
Meditation Streak Engine - Database Connection
Async PostgreSQL with asyncpg
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from config import get_database_config
from errors import PersistenceUnavailable, TransactionConflict
from logger import get_logger
from models import MeditationSession, UserAggregate

logger = get_logger("database")


CONFLICT_ERRORS = (
    asyncpg.exceptions.SerializationError,
    asyncpg.exceptions.DeadlockDetectedError,
)

UNAVAILABLE_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
    asyncpg.exceptions.InterfaceError,
    asyncio.TimeoutError,
    OSError,
)


@asynccontextmanager
async def translate_errors(operation: str) -> AsyncIterator[None]:
    """Map driver errors onto the engine's error taxonomy."""
    try:
        yield
    except CONFLICT_ERRORS as e:
        logger.warning(f"Transaction conflict during {operation}: {e}")
        raise TransactionConflict(f"Concurrent modification during {operation}") from e
    except UNAVAILABLE_ERRORS as e:
        logger.error(f"Database unavailable during {operation}: {e}")
        raise PersistenceUnavailable(f"Database unavailable during {operation}") from e


class Database:
    """Async database connection manager."""

    def __init__(self):
        self._pool = None

    async def connect(self):
        """Create connection pool."""
        config = get_database_config()
        async with translate_errors("connect"):
            self._pool = await asyncpg.create_pool(
                config.url,
                min_size=config.pool_min_size,
                max_size=config.pool_max_size,
                command_timeout=config.command_timeout,
            )
        logger.info("Database connected")

    async def disconnect(self):
        """Close connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database disconnected")

    def _require_pool(self):
        if self._pool is None:
            raise PersistenceUnavailable("Database pool is not connected")
        return self._pool

    async def fetch(self, query: str, *args) -> List[dict]:
        """Fetch multiple rows."""
        async with translate_errors("fetch"):
            async with self._require_pool().acquire() as conn:
                rows = await conn.fetch(query, *args)
                return [dict(row) for row in rows]

    async def fetch_one(self, query: str, *args) -> Optional[dict]:
        """Fetch single row."""
        async with translate_errors("fetch_one"):
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None

    async def fetch_value(self, query: str, *args) -> Any:
        """Fetch the first column of the first row."""
        async with translate_errors("fetch_value"):
            async with self._require_pool().acquire() as conn:
                return await conn.fetchval(query, *args)

    async def execute(self, query: str, *args) -> str:
        """Execute query (INSERT, UPDATE, DELETE)."""
        async with translate_errors("execute"):
            async with self._require_pool().acquire() as conn:
                return await conn.execute(query, *args)

    async def execute_returning(self, query: str, *args) -> Optional[dict]:
        """Execute and return the affected row."""
        async with translate_errors("execute_returning"):
            async with self._require_pool().acquire() as conn:
                row = await conn.fetchrow(query, *args)
                return dict(row) if row else None

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Connection inside a transaction; rolled back on any exception."""
        async with translate_errors("transaction"):
            async with self._require_pool().acquire() as conn:
                async with conn.transaction():
                    yield conn


# Global database instance
db = Database()


# ============================================
# SCHEMA
# ============================================

async def ensure_tables(database: Database = db) -> None:
    """Create tables if they don't exist."""

    await database.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id SERIAL PRIMARY KEY,
            username VARCHAR(100) NOT NULL UNIQUE,
            streak_count INTEGER NOT NULL DEFAULT 0 CHECK (streak_count >= 0),
            total_minutes INTEGER NOT NULL DEFAULT 0 CHECK (total_minutes >= 0),
            streak_updated_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
            updated_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
        )
    """)

    await database.execute("""
        CREATE TABLE IF NOT EXISTS meditation_sessions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
            duration INTEGER NOT NULL CHECK (duration >= 1),
            completed_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
            meditation_type VARCHAR(100),
            notes TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
        )
    """)

    await database.execute("""
        CREATE INDEX IF NOT EXISTS idx_sessions_user_completed
        ON meditation_sessions(user_id, completed_at DESC)
    """)

    await database.execute("""
        CREATE INDEX IF NOT EXISTS idx_sessions_completed
        ON meditation_sessions(completed_at)
    """)

    await database.execute("""
        CREATE INDEX IF NOT EXISTS idx_users_total_minutes
        ON users(total_minutes DESC, id)
    """)


# ============================================
# IN-TRANSACTION OPERATIONS
# ============================================

class UserTransaction:
    """Read-modify-write operations for one user, inside one transaction."""

    def __init__(self, conn: asyncpg.Connection, user_id: int):
        self._conn = conn
        self.user_id = user_id

    async def lock_user(self) -> Optional[UserAggregate]:
        # Row lock serialises concurrent writers for this user only
        row = await self._conn.fetchrow(
            """SELECT id, username, streak_count, total_minutes, streak_updated_at
               FROM users WHERE id = $1 FOR UPDATE""",
            self.user_id
        )
        return UserAggregate(**dict(row)) if row else None

    async def session_exists(self, start: datetime, end: datetime) -> bool:
        return await self._conn.fetchval(
            """SELECT EXISTS (
                   SELECT 1 FROM meditation_sessions
                   WHERE user_id = $1 AND completed_at >= $2 AND completed_at < $3
               )""",
            self.user_id, start, end
        )

    async def session_metrics(self) -> Dict[str, int]:
        row = await self._conn.fetchrow(
            """SELECT COUNT(*) AS session_count,
                      COUNT(DISTINCT meditation_type) AS variety_count,
                      COALESCE(MAX(duration), 0) AS longest_session
               FROM meditation_sessions WHERE user_id = $1""",
            self.user_id
        )
        return dict(row)

    async def create_session(
        self,
        duration: int,
        completed_at: datetime,
        meditation_type: Optional[str] = None,
        notes: Optional[str] = None
    ) -> MeditationSession:
        row = await self._conn.fetchrow(
            """INSERT INTO meditation_sessions (user_id, duration, completed_at, meditation_type, notes)
               VALUES ($1, $2, $3, $4, $5)
               RETURNING id, user_id, duration, completed_at, meditation_type, notes""",
            self.user_id, duration, completed_at, meditation_type, notes
        )
        return MeditationSession(**dict(row))

    async def update_user_aggregate(
        self,
        streak_count: int,
        total_minutes: int,
        streak_updated_at: datetime
    ) -> None:
        await self._conn.execute(
            """UPDATE users
               SET streak_count = $1, total_minutes = $2,
                   streak_updated_at = $3, updated_at = NOW()
               WHERE id = $4""",
            streak_count, total_minutes, streak_updated_at, self.user_id
        )


# ============================================
# STORE
# ============================================

class MeditationStore:
    """Persistence operations used by the streak, leaderboard and stats engines."""

    def __init__(self, database: Database = db):
        self.db = database

    @asynccontextmanager
    async def user_transaction(self, user_id: int) -> AsyncIterator[UserTransaction]:
        async with self.db.transaction() as conn:
            # Driver errors raised by queries inside the block surface here
            async with translate_errors("user transaction"):
                yield UserTransaction(conn, user_id)

    # ---------- users ----------

    async def create_user(self, username: str) -> UserAggregate:
        row = await self.db.execute_returning(
            """INSERT INTO users (username) VALUES ($1)
               RETURNING id, username, streak_count, total_minutes, streak_updated_at""",
            username
        )
        return UserAggregate(**row)

    async def find_user_aggregate(self, user_id: int) -> Optional[UserAggregate]:
        row = await self.db.fetch_one(
            """SELECT id, username, streak_count, total_minutes, streak_updated_at
               FROM users WHERE id = $1""",
            user_id
        )
        return UserAggregate(**row) if row else None

    async def count_users(self) -> int:
        return await self.db.fetch_value("SELECT COUNT(*) FROM users")

    # ---------- sessions ----------

    async def query_sessions(
        self,
        user_id: int,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[MeditationSession]:
        """Sessions newest first, optionally limited to [since, until)."""
        rows = await self.db.fetch(
            """SELECT id, user_id, duration, completed_at, meditation_type, notes
               FROM meditation_sessions
               WHERE user_id = $1
                 AND ($2::timestamptz IS NULL OR completed_at >= $2)
                 AND ($3::timestamptz IS NULL OR completed_at < $3)
               ORDER BY completed_at DESC, id DESC""",
            user_id, since, until
        )
        return [MeditationSession(**row) for row in rows]

    async def session_exists(self, user_id: int, start: datetime, end: datetime) -> bool:
        return await self.db.fetch_value(
            """SELECT EXISTS (
                   SELECT 1 FROM meditation_sessions
                   WHERE user_id = $1 AND completed_at >= $2 AND completed_at < $3
               )""",
            user_id, start, end
        )

    async def count_sessions(self, user_id: int) -> int:
        return await self.db.fetch_value(
            "SELECT COUNT(*) FROM meditation_sessions WHERE user_id = $1", user_id
        )

    async def list_sessions(self, user_id: int, offset: int, limit: int) -> List[MeditationSession]:
        rows = await self.db.fetch(
            """SELECT id, user_id, duration, completed_at, meditation_type, notes
               FROM meditation_sessions
               WHERE user_id = $1
               ORDER BY completed_at DESC, id DESC
               OFFSET $2 LIMIT $3""",
            user_id, offset, limit
        )
        return [MeditationSession(**row) for row in rows]

    # ---------- leaderboard ----------

    async def windowed_minutes(self, user_id: int, since: datetime) -> int:
        return await self.db.fetch_value(
            """SELECT COALESCE(SUM(duration), 0) FROM meditation_sessions
               WHERE user_id = $1 AND completed_at >= $2""",
            user_id, since
        )

    async def count_users_with_minutes_above(self, value: int, since: Optional[datetime] = None) -> int:
        if since is None:
            return await self.db.fetch_value(
                "SELECT COUNT(*) FROM users WHERE total_minutes > $1", value
            )
        return await self.db.fetch_value(
            """SELECT COUNT(*) FROM (
                   SELECT user_id FROM meditation_sessions
                   WHERE completed_at >= $1
                   GROUP BY user_id
                   HAVING SUM(duration) > $2
               ) ranked""",
            since, value
        )

    async def count_users_listed_before(
        self,
        value: int,
        user_id: int,
        since: Optional[datetime] = None
    ) -> int:
        """Rows ahead of `user_id` in leaderboard order (minutes desc, id asc)."""
        if since is None:
            return await self.db.fetch_value(
                """SELECT COUNT(*) FROM users
                   WHERE total_minutes > $1 OR (total_minutes = $1 AND id < $2)""",
                value, user_id
            )
        return await self.db.fetch_value(
            """SELECT COUNT(*) FROM (
                   SELECT user_id, SUM(duration) AS minutes FROM meditation_sessions
                   WHERE completed_at >= $1
                   GROUP BY user_id
                   HAVING SUM(duration) > 0
               ) board
               WHERE minutes > $2 OR (minutes = $2 AND user_id < $3)""",
            since, value, user_id
        )

    async def count_leaderboard(self, since: Optional[datetime] = None) -> int:
        if since is None:
            return await self.count_users()
        return await self.db.fetch_value(
            """SELECT COUNT(DISTINCT user_id) FROM meditation_sessions
               WHERE completed_at >= $1""",
            since
        )

    async def leaderboard_slice(
        self,
        since: Optional[datetime],
        offset: int,
        limit: int
    ) -> List[dict]:
        """Ordered by minutes descending then user id; windowed boards skip inactive users."""
        if since is None:
            return await self.db.fetch(
                """SELECT id AS user_id, username, total_minutes AS minutes, streak_count
                   FROM users
                   ORDER BY total_minutes DESC, id ASC
                   OFFSET $1 LIMIT $2""",
                offset, limit
            )
        return await self.db.fetch(
            """SELECT u.id AS user_id, u.username, SUM(ms.duration)::INTEGER AS minutes, u.streak_count
               FROM users u
               JOIN meditation_sessions ms ON ms.user_id = u.id
               WHERE ms.completed_at >= $1
               GROUP BY u.id
               HAVING SUM(ms.duration) > 0
               ORDER BY minutes DESC, u.id ASC
               OFFSET $2 LIMIT $3""",
            since, offset, limit
        )

    # ---------- streak sweep ----------

    async def users_with_active_streak(self) -> List[UserAggregate]:
        rows = await self.db.fetch(
            """SELECT id, username, streak_count, total_minutes, streak_updated_at
               FROM users WHERE streak_count > 0 ORDER BY id"""
        )
        return [UserAggregate(**row) for row in rows]

    async def reset_streak_if_untouched(self, user_id: int, untouched_since: datetime, now: datetime) -> bool:
        """Zero the streak unless it was written at or after `untouched_since`."""
        result = await self.db.execute(
            """UPDATE users
               SET streak_count = 0, streak_updated_at = $3, updated_at = NOW()
               WHERE id = $1 AND streak_count > 0
                 AND (streak_updated_at IS NULL OR streak_updated_at < $2)""",
            user_id, untouched_since, now
        )
        return result == "UPDATE 1"


# Global store instance
store = MeditationStore(db)
