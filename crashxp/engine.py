# engine.py
"""
CrashXP Round Engine

Responsibilities:
- Tiered crash point generation
- Strict State Machine (WAITING -> RUNNING -> CASHED_OUT | CRASHED)
- Serialized tick / cash-out handling (one asyncio lock)
- Escrowed wagers and settlement bookkeeping
- Bounded multiplier history
"""

from __future__ import annotations

import asyncio
import logging
import random
import secrets
import time
from collections import deque
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from .config import GameConfig
from .errors import InsufficientXPError, StateError, WagerError
from .events import ROUND_SETTLED, EventBus, NoticeLevel
from .models import ONE, PlayerEconomyState, Round, RoundOutcome, RoundStatus
from .scheduler import Scheduler, Timer
from .utils import floor_xp, format_multiplier, format_xp, generate_unique_id, truncate_multiplier

logger = logging.getLogger("crashxp.engine")

Clock = Callable[[], float]


# =====================================================
# MATH & PROBABILITY (CORE LOGIC)
# =====================================================

def generate_crash_point(rng: Optional[random.Random] = None) -> Decimal:
    """
    One roll picks the tier, a second independent roll places the result
    inside it:

        [0.00, 0.50) -> 1.01 .. 1.51
        [0.50, 0.80) -> 1.50 .. 3.00
        [0.80, 0.95) -> 3.00 .. 10.00
        [0.95, 1.00) -> 10.00 .. 50.00

    Roughly half of all rounds crash below 1.51x.
    """
    rng = rng or secrets.SystemRandom()
    tier_roll = rng.random()

    for upper, base, span in GameConfig.CRASH_TIERS:
        if tier_roll < upper:
            break
    offset = Decimal(str(rng.random()))
    return truncate_multiplier(base + offset * span)


def multiplier_at_ms(ms: float) -> Decimal:
    """
    Pure function: time -> multiplier.
    Formula: 1 + CLIMB_RATE * (ms / 1000)^2
    """
    if ms <= 0:
        return ONE
    growth = 1 + GameConfig.CLIMB_RATE * (ms / 1000) ** 2
    return truncate_multiplier(growth)


# =====================================================
# ENGINE CLASS
# =====================================================

class RoundEngine:
    """
    One player's round lifecycle.

    Ticks and cash-outs both take `_lock`, so a cash-out always sees the
    climb advanced to its own instant and the crash clamp can never
    interleave with it.
    """

    def __init__(
        self,
        player: PlayerEconomyState,
        bus: Optional[EventBus] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Clock = time.monotonic,
        crash_point_fn: Callable[[], Decimal] = generate_crash_point,
        tick_interval: float = GameConfig.TICK_INTERVAL_MS / 1000,
    ) -> None:
        self.player = player
        self.bus = bus or EventBus()
        self.scheduler = scheduler or Scheduler("engine")
        self._clock = clock
        self._crash_point_fn = crash_point_fn
        self._tick_interval = tick_interval

        self._lock = asyncio.Lock()
        self._round: Optional[Round] = None
        self._generation = 0
        self._closed = False
        self._climb: Optional[Timer] = None
        self._history: Deque[Decimal] = deque(maxlen=GameConfig.HISTORY_SIZE)
        self._last_outcome: Optional[RoundOutcome] = None

    # ---- read-only views ----

    @property
    def current_round(self) -> Optional[Round]:
        return self._round

    @property
    def last_outcome(self) -> Optional[RoundOutcome]:
        return self._last_outcome

    @property
    def is_running(self) -> bool:
        return self._round is not None and self._round.status is RoundStatus.RUNNING

    @property
    def history(self) -> List[Decimal]:
        """Final multipliers, most recent first."""
        return list(self._history)

    # =====================================================
    # LIFECYCLE METHODS (ASYNC & LOCKED)
    # =====================================================

    async def place_wager(self, amount: int) -> Round:
        """
        Escrow the wager and launch a fresh round.
        State: (none | settled) -> WAITING -> RUNNING.
        """
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise WagerError("Wager must be a whole number of XP")
        if amount < GameConfig.MIN_WAGER:
            raise WagerError(f"Wager must be at least {GameConfig.MIN_WAGER} XP")
        if amount % GameConfig.WAGER_STEP:
            raise WagerError(f"Wager must be a multiple of {GameConfig.WAGER_STEP} XP")

        async with self._lock:
            if self._closed:
                raise StateError("Engine is closed")
            if self.is_running:
                raise StateError("A round is already in progress")
            if amount > self.player.xp:
                raise InsufficientXPError("Insufficient XP")

            self.player.debit(amount)
            self._generation += 1

            rnd = Round(
                round_id=generate_unique_id(8),
                wager=amount,
                crash_point=self._crash_point_fn(),
                generation=self._generation,
                created_at=self._clock(),
            )
            self._round = rnd
            self._start_climb(rnd)

        logger.info(f"Round {rnd.round_id}: wager {amount} XP, player {self.player.player_id}")
        await self.bus.notify(f"Wagered {format_xp(amount)}. Good luck!", NoticeLevel.INFO)
        return rnd

    def _start_climb(self, rnd: Round) -> None:
        # Caller holds the lock
        rnd.current_multiplier = ONE
        rnd.started_at = self._clock()
        rnd.status = RoundStatus.RUNNING
        self._climb = self.scheduler.call_every(
            self._tick_interval,
            self.tick,
            rnd.generation,
            name=f"climb-{rnd.round_id}",
        )

    async def tick(self, generation: Optional[int] = None) -> Optional[RoundOutcome]:
        """
        The heartbeat. Recomputes the multiplier and auto-settles on crash.
        Ticks from an older round (stale generation) do nothing.
        """
        async with self._lock:
            outcome = self._advance(generation)
        if outcome is not None:
            await asyncio.shield(self._publish(outcome))
        return outcome

    async def cash_out(self) -> Optional[RoundOutcome]:
        """
        Lock in the multiplier at this instant.
        No-op (None) unless a round is RUNNING. If the crash point was
        reached by now the returned outcome is the crash instead.
        """
        async with self._lock:
            rnd = self._round
            if self._closed or rnd is None or rnd.status is not RoundStatus.RUNNING:
                return None

            outcome = self._advance(rnd.generation)
            if outcome is None:
                outcome = self._settle_cash_out(rnd)

        await asyncio.shield(self._publish(outcome))
        return outcome

    async def snapshot(self) -> Dict[str, Any]:
        """Current view for polling clients. Also drives the crash check."""
        outcome = await self.tick()
        rnd = self._round
        state: Dict[str, Any] = {
            "status": rnd.status.value if rnd else RoundStatus.WAITING.value,
            "round": rnd.to_dict() if rnd else None,
            "history": [float(m) for m in self._history],
            "boost_multiplier": float(self.player.xp_boost_multiplier),
            "xp": self.player.xp,
        }
        if rnd is not None and rnd.started_at is not None:
            end = rnd.settled_at if rnd.settled_at is not None else self._clock()
            state["elapsed_ms"] = int((end - rnd.started_at) * 1000)
        if outcome is not None:
            state["settled"] = outcome.to_dict()
        return state

    def close(self) -> None:
        """
        Cancel the climb and freeze the round. Any tick already queued
        becomes a no-op.
        """
        self._closed = True
        if self._climb is not None:
            self._climb.cancel()
            self._climb = None

    # =====================================================
    # SETTLEMENT (caller holds the lock)
    # =====================================================

    def _advance(self, generation: Optional[int]) -> Optional[RoundOutcome]:
        rnd = self._round
        if self._closed or rnd is None or rnd.status is not RoundStatus.RUNNING:
            return None
        if generation is not None and generation != rnd.generation:
            return None

        elapsed_ms = (self._clock() - rnd.started_at) * 1000
        mult = multiplier_at_ms(elapsed_ms)

        if mult >= rnd.crash_point:
            # Clamp final result to the actual crash point
            rnd.current_multiplier = rnd.crash_point
            return self._settle_crash(rnd)

        if mult > rnd.current_multiplier:
            rnd.current_multiplier = mult
        return None

    def _settle_cash_out(self, rnd: Round) -> RoundOutcome:
        player = self.player
        mult = rnd.current_multiplier
        boost = player.xp_boost_multiplier
        winnings = floor_xp(Decimal(rnd.wager) * mult * boost)

        rnd.cash_out_multiplier = mult
        rnd.winnings = winnings
        rnd.status = RoundStatus.CASHED_OUT

        player.credit(winnings)
        player.total_won += winnings
        player.total_wagered += rnd.wager
        player.games_played += 1
        player.daily_games_played += 1
        player.biggest_win = max(player.biggest_win, winnings)
        player.biggest_multiplier = max(player.biggest_multiplier, mult)

        near_miss = abs(mult - rnd.crash_point) < GameConfig.NEAR_MISS_THRESHOLD
        logger.info(
            f"Round {rnd.round_id}: cashed out at {format_multiplier(mult)} "
            f"(crash {format_multiplier(rnd.crash_point)}), won {winnings}"
        )
        return self._finish(rnd, mult, near_miss)

    def _settle_crash(self, rnd: Round) -> RoundOutcome:
        player = self.player
        rnd.status = RoundStatus.CRASHED
        rnd.winnings = 0

        # Wager already left the balance at placement
        player.total_wagered += rnd.wager
        player.games_played += 1
        player.daily_games_played += 1

        logger.info(f"Round {rnd.round_id}: crashed at {format_multiplier(rnd.crash_point)}")
        return self._finish(rnd, rnd.crash_point, False)

    def _finish(self, rnd: Round, final: Decimal, near_miss: bool) -> RoundOutcome:
        rnd.settled_at = self._clock()
        if self._climb is not None:
            self._climb.cancel()
            self._climb = None
        self._history.appendleft(final)

        outcome = RoundOutcome(
            round_id=rnd.round_id,
            status=rnd.status,
            wager=rnd.wager,
            crash_point=rnd.crash_point,
            final_multiplier=final,
            cash_out_multiplier=rnd.cash_out_multiplier,
            winnings=rnd.winnings,
            boost_multiplier=self.player.xp_boost_multiplier,
            near_miss=near_miss,
        )
        self._last_outcome = outcome
        return outcome

    async def _publish(self, outcome: RoundOutcome) -> None:
        if outcome.won:
            await self.bus.notify(
                f"Cashed out at {format_multiplier(outcome.cash_out_multiplier)}! "
                f"Won {format_xp(outcome.winnings)}!",
                NoticeLevel.SUCCESS,
            )
            if outcome.near_miss:
                await self.bus.notify(
                    f"SO CLOSE! You cashed out at {format_multiplier(outcome.cash_out_multiplier)}, "
                    f"it crashed at {format_multiplier(outcome.crash_point)}!",
                    NoticeLevel.WARNING,
                )
        else:
            await self.bus.notify(
                f"CRASHED at {format_multiplier(outcome.crash_point)}! "
                f"You lost {format_xp(outcome.wager)}.",
                NoticeLevel.ERROR,
            )
        await self.bus.publish(ROUND_SETTLED, outcome)
