# db.py
"""
Database Layer

Responsibilities:
- Async database engine & session lifecycle
- Player economy persistence (load / save by player id)
- Leaderboard rows per app scope
- Wrapping driver failures as ExternalServiceError

The game never blocks on these calls: settlement completes in memory first
and a failed save only degrades durability until the next one succeeds.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import (
    JSON,
    DateTime,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
    select,
)
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import DATABASE_URL, DB_ECHO
from .errors import ExternalServiceError
from .leaderboard import LeaderboardEntry, rank_key
from .models import PlayerEconomyState

logger = logging.getLogger("crashxp.db")


# =====================================================
# BASE
# =====================================================

class Base(DeclarativeBase):
    pass


# =====================================================
# MODELS
# =====================================================

class PlayerRecord(Base):
    __tablename__ = "players"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    player_id: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        index=True,
        nullable=False,
    )

    display_name: Mapped[str] = mapped_column(String(128), default="Player")
    role: Mapped[str] = mapped_column(String(16), default="user")

    xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_wagered: Mapped[int] = mapped_column(Integer, default=0)
    total_won: Mapped[int] = mapped_column(Integer, default=0)
    games_played: Mapped[int] = mapped_column(Integer, default=0)
    daily_games_played: Mapped[int] = mapped_column(Integer, default=0)
    biggest_win: Mapped[int] = mapped_column(Integer, default=0)

    # PRECISION: multipliers top out at 50.00x
    biggest_multiplier: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))

    win_streak: Mapped[int] = mapped_column(Integer, default=0)
    current_streak: Mapped[int] = mapped_column(Integer, default=0)
    daily_streak: Mapped[int] = mapped_column(Integer, default=0)
    last_play_date: Mapped[str | None] = mapped_column(String(10), nullable=True)

    unlocked_cosmetics: Mapped[list] = mapped_column(JSON, default=list)
    active_cosmetic: Mapped[str] = mapped_column(String(64), default="default")
    xp_history: Mapped[list] = mapped_column(JSON, default=list)

    referral_code: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    referral_earnings: Mapped[int] = mapped_column(Integer, default=0)
    referred_users: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    _STATE_FIELDS = (
        "display_name", "role", "xp", "total_wagered", "total_won",
        "games_played", "daily_games_played", "biggest_win", "biggest_multiplier",
        "win_streak", "current_streak", "daily_streak", "last_play_date",
        "unlocked_cosmetics", "active_cosmetic", "xp_history",
        "referral_code", "referral_earnings", "referred_users",
    )

    def apply(self, state: PlayerEconomyState) -> None:
        data = state.to_dict()
        for name in self._STATE_FIELDS:
            setattr(self, name, data[name])
        self.biggest_multiplier = state.biggest_multiplier

    def to_state(self) -> PlayerEconomyState:
        data: Dict[str, Any] = {name: getattr(self, name) for name in self._STATE_FIELDS}
        data["player_id"] = self.player_id
        return PlayerEconomyState.from_dict(data)


class LeaderboardRecord(Base):
    """Latest submitted summary per player and app scope."""

    __tablename__ = "leaderboard_entries"
    __table_args__ = (UniqueConstraint("app_scope", "player_id", name="uq_leaderboard_scope_player"),)

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    app_scope: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    display_name: Mapped[str] = mapped_column(String(128), default="Player")
    xp: Mapped[int] = mapped_column(Integer, default=0)
    biggest_multiplier: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    games_played: Mapped[int] = mapped_column(Integer, default=0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    def to_entry(self) -> LeaderboardEntry:
        return LeaderboardEntry(
            id=self.player_id,
            display_name=self.display_name,
            xp=self.xp,
            biggest_multiplier=Decimal(self.biggest_multiplier or 0),
            games_played=self.games_played,
        )


# =====================================================
# ENGINE & SESSION
# =====================================================

def make_session_factory(url: str = DATABASE_URL,
                         echo: bool = DB_ECHO) -> Tuple[AsyncEngine, async_sessionmaker]:
    db_engine = create_async_engine(
        url,
        echo=echo,
        # SSL is critical for Postgres in production
        connect_args={"ssl": "require"} if "postgresql" in url else {},
    )
    return db_engine, async_sessionmaker(bind=db_engine, expire_on_commit=False)


db_engine, AsyncSessionLocal = make_session_factory()


# =====================================================
# INIT
# =====================================================

async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """
    Creates all tables. Safe to run on every startup.
    """
    async with (target or db_engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


# =====================================================
# STORES
# =====================================================

class SqlPlayerStore:
    """Persistence contract backed by the `players` table."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None) -> None:
        self._sessions = session_factory or AsyncSessionLocal

    async def load_player_state(self, player_id: str) -> Optional[PlayerEconomyState]:
        try:
            async with self._sessions() as session:
                record = await self._find(session, player_id)
                return record.to_state() if record else None
        except SQLAlchemyError as exc:
            logger.error(f"Loading player {player_id} failed: {exc}")
            raise ExternalServiceError("Failed to load player data") from exc

    async def save_player_state(self, player_id: str, state: PlayerEconomyState,
                                _retry: bool = True) -> bool:
        try:
            async with self._sessions() as session:
                # Row lock on Postgres/MySQL, ignored on SQLite
                record = await self._find(session, player_id, for_update=True)
                if record is None:
                    record = PlayerRecord(player_id=player_id)
                    session.add(record)
                record.apply(state)
                await session.commit()
                return True
        except IntegrityError:
            # Row created in parallel by another session; update it instead
            if _retry:
                return await self.save_player_state(player_id, state, _retry=False)
            logger.error(f"Saving player {player_id} conflicted twice")
            raise ExternalServiceError("Failed to save player data")
        except SQLAlchemyError as exc:
            logger.error(f"Saving player {player_id} failed: {exc}")
            raise ExternalServiceError("Failed to save player data") from exc

    @staticmethod
    async def _find(session: AsyncSession, player_id: str,
                    for_update: bool = False) -> Optional[PlayerRecord]:
        query = select(PlayerRecord).where(PlayerRecord.player_id == player_id)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()


class SqlLeaderboardStore:
    """Leaderboard contract backed by `leaderboard_entries`."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None,
                 limit: int = 100) -> None:
        self._sessions = session_factory or AsyncSessionLocal
        self.limit = limit

    async def fetch_ranking(self, app_scope: str) -> List[LeaderboardEntry]:
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(LeaderboardRecord)
                    .where(LeaderboardRecord.app_scope == app_scope)
                    .order_by(LeaderboardRecord.xp.desc(), LeaderboardRecord.biggest_multiplier.desc())
                    .limit(self.limit)
                )
                entries = [row.to_entry() for row in result.scalars()]
        except SQLAlchemyError as exc:
            logger.error(f"Fetching leaderboard '{app_scope}' failed: {exc}")
            raise ExternalServiceError("Failed to load leaderboard") from exc
        # Same order the ranker uses, independent of the backend's collation
        return sorted(entries, key=rank_key)

    async def submit_entry(self, app_scope: str, player_id: str, summary: Dict[str, Any]) -> bool:
        entry = LeaderboardEntry.from_summary({**summary, "id": player_id})
        try:
            async with self._sessions() as session:
                result = await session.execute(
                    select(LeaderboardRecord).where(
                        LeaderboardRecord.app_scope == app_scope,
                        LeaderboardRecord.player_id == player_id,
                    )
                )
                row = result.scalar_one_or_none()
                if row is None:
                    row = LeaderboardRecord(app_scope=app_scope, player_id=player_id)
                    session.add(row)
                row.display_name = entry.display_name
                row.xp = entry.xp
                row.biggest_multiplier = entry.biggest_multiplier
                row.games_played = entry.games_played
                await session.commit()
                return True
        except SQLAlchemyError as exc:
            logger.error(f"Submitting leaderboard entry for {player_id} failed: {exc}")
            raise ExternalServiceError("Failed to update leaderboard") from exc
