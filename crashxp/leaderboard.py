# leaderboard.py
"""
Leaderboard Ranker

Merges the local player's summary into a ranking fetched from the
leaderboard store. Ordering: xp descending, then biggest multiplier
descending; Python's stable sort keeps input order for full ties.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from .models import PlayerEconomyState
from .utils import safe_decimal


@dataclass(frozen=True)
class LeaderboardEntry:
    id: str
    display_name: str
    xp: int
    biggest_multiplier: Decimal
    games_played: int
    is_current_user: bool = False

    @classmethod
    def from_summary(cls, summary: Dict[str, Any]) -> "LeaderboardEntry":
        return cls(
            id=str(summary["id"]),
            display_name=summary.get("display_name") or "Player",
            xp=int(summary.get("xp", 0)),
            biggest_multiplier=safe_decimal(summary.get("biggest_multiplier", 0)),
            games_played=int(summary.get("games_played", 0)),
        )

    @classmethod
    def from_player(cls, player: PlayerEconomyState) -> "LeaderboardEntry":
        return cls.from_summary(player.summary())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "xp": self.xp,
            "biggest_multiplier": f"{self.biggest_multiplier:.2f}",
            "games_played": self.games_played,
            "is_current_user": self.is_current_user,
        }


def rank_key(entry: LeaderboardEntry):
    return (-entry.xp, -entry.biggest_multiplier)


def merge_ranking(ranking: Iterable[LeaderboardEntry],
                  player: LeaderboardEntry) -> List[LeaderboardEntry]:
    """
    Flag the player's own row if the ranking already has it; otherwise
    append the player and re-sort the whole list.
    """
    merged: List[LeaderboardEntry] = []
    found = False
    for entry in ranking:
        is_current = entry.id == player.id
        found = found or is_current
        merged.append(replace(entry, is_current_user=is_current))

    if not found:
        merged.append(replace(player, is_current_user=True))
        merged.sort(key=rank_key)
    return merged
