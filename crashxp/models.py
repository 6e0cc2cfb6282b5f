# models.py
"""
Domain models shared by the engine, the economy and the stores.

The Round and PlayerEconomyState objects are plain state holders passed by
reference; only RoundEngine and RewardEconomy mutate them.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from .errors import InsufficientXPError, WagerError
from .utils import safe_decimal

ONE = Decimal("1.00")


# =========================
# ENUMS
# =========================

class RoundStatus(str, Enum):
    WAITING = "WAITING"         # Created, climb not started
    RUNNING = "RUNNING"         # Multiplier rising
    CASHED_OUT = "CASHED_OUT"   # Player locked in a payout
    CRASHED = "CRASHED"         # Crash point reached first

    @property
    def is_terminal(self) -> bool:
        return self in (RoundStatus.CASHED_OUT, RoundStatus.CRASHED)


class PlayerRole(str, Enum):
    USER = "user"
    CREATOR = "creator"


# =========================
# ROUND
# =========================

@dataclass
class Round:
    round_id: str
    wager: int
    crash_point: Decimal
    generation: int

    status: RoundStatus = RoundStatus.WAITING
    current_multiplier: Decimal = ONE
    cash_out_multiplier: Optional[Decimal] = None
    winnings: int = 0

    # Timing (engine clock, seconds)
    created_at: float = field(default_factory=time.monotonic)
    started_at: Optional[float] = None
    settled_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        settled = self.status.is_terminal
        return {
            "round_id": self.round_id,
            "status": self.status.value,
            "wager": self.wager,
            "multiplier": float(self.current_multiplier),
            # Secret until the round is over
            "crash_point": float(self.crash_point) if settled else None,
            "cash_out_multiplier": (
                float(self.cash_out_multiplier) if self.cash_out_multiplier else None
            ),
            "winnings": self.winnings,
        }


@dataclass(frozen=True)
class RoundOutcome:
    """Immutable settlement record published on `round.settled`."""

    round_id: str
    status: RoundStatus
    wager: int
    crash_point: Decimal
    final_multiplier: Decimal
    cash_out_multiplier: Optional[Decimal]
    winnings: int
    boost_multiplier: Decimal
    near_miss: bool = False

    @property
    def won(self) -> bool:
        return self.status is RoundStatus.CASHED_OUT

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_id": self.round_id,
            "status": self.status.value,
            "wager": self.wager,
            "crash_point": float(self.crash_point),
            "final_multiplier": float(self.final_multiplier),
            "cash_out_multiplier": (
                float(self.cash_out_multiplier) if self.cash_out_multiplier else None
            ),
            "winnings": self.winnings,
            "boost_multiplier": float(self.boost_multiplier),
            "near_miss": self.near_miss,
        }


# =========================
# PLAYER ECONOMY
# =========================

@dataclass
class PlayerEconomyState:
    player_id: str
    display_name: str = "Guest Player"
    role: PlayerRole = PlayerRole.USER

    xp: int = 1000
    total_wagered: int = 0
    total_won: int = 0
    games_played: int = 0
    daily_games_played: int = 0
    biggest_win: int = 0
    biggest_multiplier: Decimal = Decimal("0.00")

    win_streak: int = 0
    current_streak: int = 0
    daily_streak: int = 0
    last_play_date: Optional[str] = None

    unlocked_cosmetics: Set[str] = field(default_factory=lambda: {"default"})
    active_cosmetic: str = "default"
    xp_boost_multiplier: Decimal = Decimal("1.0")

    xp_history: List[Dict[str, Any]] = field(default_factory=list)
    referral_code: Optional[str] = None
    referral_earnings: int = 0
    referred_users: int = 0

    # ---- balance ----

    def debit(self, amount: int) -> None:
        """Remove XP; rejected before mutation if it would go negative."""
        if amount < 0:
            raise WagerError("Debit amount must be positive")
        if amount > self.xp:
            raise InsufficientXPError(f"Insufficient XP ({self.xp} < {amount})")
        self.xp -= amount

    def credit(self, amount: int) -> None:
        if amount < 0:
            raise WagerError("Credit amount must be positive")
        self.xp += amount

    # ---- serialization (field names as stored by collaborators) ----

    def summary(self) -> Dict[str, Any]:
        """Leaderboard projection."""
        return {
            "id": self.player_id,
            "display_name": self.display_name,
            "xp": self.xp,
            "biggest_multiplier": float(self.biggest_multiplier),
            "games_played": self.games_played,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "display_name": self.display_name,
            "role": self.role.value,
            "xp": self.xp,
            "total_wagered": self.total_wagered,
            "total_won": self.total_won,
            "games_played": self.games_played,
            "daily_games_played": self.daily_games_played,
            "biggest_win": self.biggest_win,
            "biggest_multiplier": float(self.biggest_multiplier),
            "win_streak": self.win_streak,
            "current_streak": self.current_streak,
            "daily_streak": self.daily_streak,
            "last_play_date": self.last_play_date,
            "unlocked_cosmetics": sorted(self.unlocked_cosmetics),
            "active_cosmetic": self.active_cosmetic,
            "xp_boost_multiplier": float(self.xp_boost_multiplier),
            "xp_history": list(self.xp_history),
            "referral_code": self.referral_code,
            "referral_earnings": self.referral_earnings,
            "referred_users": self.referred_users,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlayerEconomyState":
        return cls(
            player_id=data["player_id"],
            display_name=data.get("display_name") or "Player",
            role=PlayerRole(data.get("role") or PlayerRole.USER.value),
            xp=max(0, int(data.get("xp", 0))),
            total_wagered=int(data.get("total_wagered", 0)),
            total_won=int(data.get("total_won", 0)),
            games_played=int(data.get("games_played", 0)),
            daily_games_played=int(data.get("daily_games_played", 0)),
            biggest_win=int(data.get("biggest_win", 0)),
            biggest_multiplier=safe_decimal(data.get("biggest_multiplier", 0)),
            win_streak=int(data.get("win_streak", 0)),
            current_streak=int(data.get("current_streak", 0)),
            daily_streak=int(data.get("daily_streak", 0)),
            last_play_date=data.get("last_play_date"),
            unlocked_cosmetics=set(data.get("unlocked_cosmetics") or ["default"]),
            active_cosmetic=data.get("active_cosmetic") or "default",
            # Boost timers do not survive a reload
            xp_boost_multiplier=Decimal("1.0"),
            xp_history=list(data.get("xp_history") or []),
            referral_code=data.get("referral_code"),
            referral_earnings=int(data.get("referral_earnings", 0)),
            referred_users=int(data.get("referred_users", 0)),
        )
