"""
Meditation Streak Engine - Leaderboard
Ranks users by lifetime minutes or by minutes inside a recent window.
"""

import math
from datetime import datetime
from typing import List, Optional

from config import get_leaderboard_config
from dates import Clock, SystemClock, ensure_aware, window_start
from errors import UserNotFound
from logger import get_logger
from models import AroundMe, LeaderboardEntry, LeaderboardPage, Pagination, RankResult, Timeframe

logger = get_logger("leaderboard")


def to_entries(rows: List[dict], offset: int) -> List[LeaderboardEntry]:
    """Attach positional 1-based ranks to an ordered slice."""
    return [
        LeaderboardEntry(
            user_id=row["user_id"],
            username=row.get("username"),
            minutes=row["minutes"] or 0,
            streak_count=row.get("streak_count") or 0,
            rank=offset + index + 1,
        )
        for index, row in enumerate(rows)
    ]


def around_bounds(position: int, range_: int):
    """(offset, limit) of the slice centred on a 1-based listing position, clipped at the top."""
    return max(0, position - range_ - 1), range_ * 2 + 1


class LeaderboardRanker:
    """
    Read-only ranking views.

    Ordering is minutes descending, then user id ascending. A user's own
    rank is 1 + the number of users with strictly more minutes, so tied
    users share a rank while the listing still shows them one per row.
    """

    def __init__(self, store, clock: Clock = None):
        self.store = store
        self.clock = clock or SystemClock()

    def _since(self, timeframe: Timeframe, now: Optional[datetime]) -> Optional[datetime]:
        now = ensure_aware(now or self.clock.now())
        return window_start(Timeframe(timeframe).value, now)

    async def rank(
        self,
        user_id: int,
        timeframe: Timeframe = Timeframe.ALL,
        now: Optional[datetime] = None
    ) -> RankResult:
        timeframe = Timeframe(timeframe)
        user = await self.store.find_user_aggregate(user_id)
        if user is None:
            raise UserNotFound(user_id)

        since = self._since(timeframe, now)
        if since is None:
            minutes = user.total_minutes
        else:
            minutes = await self.store.windowed_minutes(user_id, since)

        ahead = await self.store.count_users_with_minutes_above(minutes, since)
        return RankResult(user_id=user_id, rank=ahead + 1, minutes=minutes, timeframe=timeframe)

    async def page(
        self,
        timeframe: Timeframe = Timeframe.ALL,
        page: int = 1,
        limit: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> LeaderboardPage:
        config = get_leaderboard_config()
        timeframe = Timeframe(timeframe)
        page = max(1, page)
        limit = min(max(1, limit or config.default_limit), config.max_limit)
        offset = (page - 1) * limit

        since = self._since(timeframe, now)
        rows = await self.store.leaderboard_slice(since, offset, limit)
        total = await self.store.count_leaderboard(since)

        return LeaderboardPage(
            entries=to_entries(rows, offset),
            pagination=Pagination(
                total=total,
                page=page,
                limit=limit,
                total_pages=math.ceil(total / limit),
            ),
            timeframe=timeframe,
        )

    async def around_me(
        self,
        user_id: int,
        timeframe: Timeframe = Timeframe.ALL,
        range_: Optional[int] = None,
        now: Optional[datetime] = None
    ) -> AroundMe:
        timeframe = Timeframe(timeframe)
        range_ = max(1, range_ or get_leaderboard_config().default_range)
        # Pin the instant so rank and slice agree on the window
        now = ensure_aware(now or self.clock.now())

        since = self._since(timeframe, now)

        current = await self.rank(user_id, timeframe, now)
        # Tied users share a rank but are listed by id, so centre on the row itself
        position = await self.store.count_users_listed_before(current.minutes, user_id, since) + 1
        offset, limit = around_bounds(position, range_)
        rows = await self.store.leaderboard_slice(since, offset, limit)

        logger.debug(f"Around-me for user {user_id}: rank {current.rank}, slice {offset}+{limit}")
        return AroundMe(entries=to_entries(rows, offset), current_user_rank=current, timeframe=timeframe)
