# autoplay.py
"""
Auto-Play Controller

Plays rounds unattended: wager, wait for the target multiplier, cash out,
repeat after a short pause until a stop condition is met.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .config import AutoPlayConfig, GameConfig
from .engine import RoundEngine
from .errors import StateError, ValidationError, WagerError
from .events import EventBus, NoticeLevel
from .models import Round, RoundStatus
from .scheduler import Scheduler, Timer

logger = logging.getLogger("crashxp.autoplay")


@dataclass
class AutoPlaySession:
    wager_amount: int = AutoPlayConfig.DEFAULT_WAGER
    cash_out_at: float = AutoPlayConfig.DEFAULT_CASH_OUT_AT
    stop_on_win: bool = False
    stop_on_loss: bool = False
    max_rounds: int = AutoPlayConfig.DEFAULT_MAX_ROUNDS
    auto_cash_out: bool = True

    enabled: bool = False
    current_round: int = 0
    wins: int = 0
    losses: int = 0

    def validate(self) -> None:
        if self.wager_amount < GameConfig.MIN_WAGER or self.wager_amount % GameConfig.WAGER_STEP:
            raise WagerError(
                f"Auto-play wager must be a multiple of {GameConfig.WAGER_STEP}, "
                f"at least {GameConfig.MIN_WAGER}"
            )
        if self.cash_out_at <= 1.0:
            raise ValidationError("Auto cash-out target must be above 1.00x")
        if self.max_rounds < 1:
            raise ValidationError("Auto-play needs at least one round")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "wager_amount": self.wager_amount,
            "cash_out_at": self.cash_out_at,
            "stop_on_win": self.stop_on_win,
            "stop_on_loss": self.stop_on_loss,
            "max_rounds": self.max_rounds,
            "auto_cash_out": self.auto_cash_out,
            "current_round": self.current_round,
            "wins": self.wins,
            "losses": self.losses,
        }


class AutoPlayController:
    def __init__(
        self,
        engine: RoundEngine,
        bus: EventBus,
        scheduler: Optional[Scheduler] = None,
        inter_round_delay: float = AutoPlayConfig.INTER_ROUND_DELAY_SEC,
        poll_interval: float = AutoPlayConfig.POLL_INTERVAL_SEC,
    ) -> None:
        self.engine = engine
        self.bus = bus
        self.scheduler = scheduler or Scheduler("autoplay")
        self.inter_round_delay = inter_round_delay
        self.poll_interval = poll_interval

        self.session: Optional[AutoPlaySession] = None
        self.last_stop_reason: Optional[str] = None
        self._runner: Optional[Timer] = None

    @property
    def enabled(self) -> bool:
        return self.session is not None and self.session.enabled

    async def start(self, session: AutoPlaySession) -> AutoPlaySession:
        if self.enabled:
            raise StateError("Auto-play is already running.")
        session.validate()
        session.enabled = True
        session.current_round = 0
        self.session = session
        self.last_stop_reason = None

        self._runner = self.scheduler.call_later(0, self._run, session, name="autoplay")
        logger.info(f"Auto-play started: {session.to_dict()}")
        await self.bus.notify("Auto-play started!", NoticeLevel.INFO)
        return session

    async def stop(self, reason: str = "Auto-play stopped.") -> None:
        """Idempotent; cancels the pending round loop."""
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.cancel()
        await self._finish(reason)

    async def _finish(self, reason: str) -> None:
        session = self.session
        if session is None or not session.enabled:
            return
        session.enabled = False
        session.current_round = 0
        self.last_stop_reason = reason
        logger.info(f"Auto-play finished: {reason} (wins={session.wins}, losses={session.losses})")
        await self.bus.notify(reason, NoticeLevel.INFO)

    # =====================================================
    # ROUND LOOP
    # =====================================================

    def _precheck(self, session: AutoPlaySession) -> Optional[str]:
        if not session.enabled:
            return "Auto-play stopped."
        if session.current_round >= session.max_rounds:
            return f"Auto-play finished {session.max_rounds} rounds."
        if self.engine.player.xp < session.wager_amount:
            return "Not enough XP for auto-play wager! Auto-play stopped."
        return None

    async def _run(self, session: AutoPlaySession) -> None:
        reason: Optional[str] = None
        while reason is None:
            # Never overlap a round that is still in flight
            while self.engine.is_running:
                await asyncio.sleep(self.poll_interval)

            reason = self._precheck(session)
            if reason is not None:
                break

            session.current_round += 1
            try:
                rnd = await self.engine.place_wager(session.wager_amount)
            except ValidationError as exc:
                reason = f"Auto-play failed to start round: {exc}"
                break

            await self._play_out(rnd, session)

            if rnd.status is RoundStatus.CASHED_OUT:
                session.wins += 1
                if session.stop_on_win:
                    reason = "Auto-play stopped: Won a round!"
            else:
                session.losses += 1
                if session.stop_on_loss:
                    reason = "Auto-play stopped: Lost a round!"

            if reason is None and session.current_round < session.max_rounds:
                await asyncio.sleep(self.inter_round_delay)

        if session is self.session:
            self._runner = None
            await self._finish(reason)

    async def _play_out(self, rnd: Round, session: AutoPlaySession) -> None:
        target = session.cash_out_at
        while rnd.status is RoundStatus.RUNNING:
            if session.auto_cash_out and float(rnd.current_multiplier) >= target:
                await self.engine.cash_out()
                break
            await asyncio.sleep(self.poll_interval)
