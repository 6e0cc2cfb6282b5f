"""Test doubles shared across the suite."""

from __future__ import annotations

import asyncio
import math
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional

from crashxp.config import GameConfig
from crashxp.errors import ExternalServiceError
from crashxp.leaderboard import LeaderboardEntry, rank_key
from crashxp.models import PlayerEconomyState, RoundOutcome, RoundStatus


class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SteppingClock:
    """Moves forward by `step` on every read, so rounds play out on their own."""

    def __init__(self, step: float = 0.05, start: float = 0.0) -> None:
        self.step = step
        self.now = start

    def __call__(self) -> float:
        self.now += self.step
        return self.now


def ms_to_reach(multiplier: float) -> float:
    """Inverse of the climb curve: milliseconds until `multiplier` is reached."""
    if multiplier <= 1:
        return 0.0
    return 1000 * math.sqrt((multiplier - 1) / GameConfig.CLIMB_RATE)


class FakeRng:
    """Replays a fixed list of rolls, then repeats the last one."""

    def __init__(self, rolls: Iterable[float]) -> None:
        self.rolls = list(rolls)
        self.calls = 0

    def random(self) -> float:
        idx = min(self.calls, len(self.rolls) - 1)
        self.calls += 1
        return self.rolls[idx]

    def choice(self, seq):
        return seq[0]


class InMemoryPlayerStore:
    def __init__(self, fail_load: bool = False, fail_save: bool = False) -> None:
        self.saved: Dict[str, Dict[str, Any]] = {}
        self.fail_load = fail_load
        self.fail_save = fail_save
        self.save_calls = 0

    async def load_player_state(self, player_id: str) -> Optional[PlayerEconomyState]:
        if self.fail_load:
            raise ExternalServiceError("load failed")
        data = self.saved.get(player_id)
        return PlayerEconomyState.from_dict(data) if data else None

    async def save_player_state(self, player_id: str, state: PlayerEconomyState) -> bool:
        self.save_calls += 1
        if self.fail_save:
            raise ExternalServiceError("save failed")
        self.saved[player_id] = state.to_dict()
        return True


class InMemoryLeaderboardStore:
    def __init__(self, entries: Iterable[LeaderboardEntry] = (), fail: bool = False) -> None:
        self.entries: Dict[str, LeaderboardEntry] = {e.id: e for e in entries}
        self.fail = fail
        self.submitted: List[Dict[str, Any]] = []

    async def fetch_ranking(self, app_scope: str) -> List[LeaderboardEntry]:
        if self.fail:
            raise ExternalServiceError("leaderboard down")
        return sorted(self.entries.values(), key=rank_key)

    async def submit_entry(self, app_scope: str, player_id: str, summary: Dict[str, Any]) -> bool:
        if self.fail:
            raise ExternalServiceError("leaderboard down")
        self.submitted.append(summary)
        self.entries[player_id] = LeaderboardEntry.from_summary({**summary, "id": player_id})
        return True


def make_outcome(won: bool, wager: int = 100, winnings: int = 0,
                 multiplier: str = "2.00", crash: str = "3.00") -> RoundOutcome:
    return RoundOutcome(
        round_id="r1",
        status=RoundStatus.CASHED_OUT if won else RoundStatus.CRASHED,
        wager=wager,
        crash_point=Decimal(crash),
        final_multiplier=Decimal(multiplier) if won else Decimal(crash),
        cash_out_multiplier=Decimal(multiplier) if won else None,
        winnings=winnings,
        boost_multiplier=Decimal("1.0"),
    )


async def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)
