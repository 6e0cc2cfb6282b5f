# session.py
"""
Game Session

Wires one player's engine, economy, auto-play controller and external
collaborators together:

- resolves identity (or guest mode) and loads saved state
- subscribes persistence and the leaderboard to settlements
- owns the session-level timers (daily refresh, streak reminder, events)
- turns collaborator failures into notices instead of errors
"""

from __future__ import annotations

import logging
import random
import time
from collections import deque
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Deque, Dict, List, Optional

from .autoplay import AutoPlayController, AutoPlaySession
from .config import APP_SCOPE, STARTING_XP, AutoPlayConfig, EconomyConfig, GameConfig
from .economy import RewardEconomy
from .engine import RoundEngine, generate_crash_point
from .errors import ExternalServiceError
from .events import ECONOMY_CHANGED, NOTICE, ROUND_SETTLED, EventBus, Notice, NoticeLevel
from .leaderboard import LeaderboardEntry, merge_ranking
from .models import PlayerEconomyState, PlayerRole, RoundOutcome
from .scheduler import Scheduler, create_job_scheduler, shutdown_jobs
from .services import (
    IdentityProvider,
    LeaderboardStore,
    PaymentProcessor,
    PersistenceStore,
    PlayerIdentity,
)
from .utils import generate_referral_code, log

logger = logging.getLogger("crashxp.session")

GUEST_ID = "guest_user"


class GameSession:
    def __init__(
        self,
        identity: IdentityProvider,
        persistence: Optional[PersistenceStore] = None,
        leaderboard: Optional[LeaderboardStore] = None,
        payments: Optional[PaymentProcessor] = None,
        app_scope: str = APP_SCOPE,
        clock: Callable[[], float] = time.monotonic,
        crash_point_fn: Callable[[], Decimal] = generate_crash_point,
        rng: Optional[random.Random] = None,
        tick_interval: float = GameConfig.TICK_INTERVAL_MS / 1000,
        inter_round_delay: float = AutoPlayConfig.INTER_ROUND_DELAY_SEC,
        poll_interval: float = AutoPlayConfig.POLL_INTERVAL_SEC,
        background_timers: bool = True,
    ) -> None:
        self.identity = identity
        self.persistence = persistence
        self.leaderboard_store = leaderboard
        self.payments = payments
        self.app_scope = app_scope
        self.background_timers = background_timers

        self._engine_options = dict(clock=clock, crash_point_fn=crash_point_fn, tick_interval=tick_interval)
        self._autoplay_options = dict(inter_round_delay=inter_round_delay, poll_interval=poll_interval)
        self._rng = rng

        self.bus = EventBus()
        # Wall-clock jobs: event roll, daily refresh, streak reminder, expiries
        self.jobs = create_job_scheduler()
        self.notices: Deque[Notice] = deque(maxlen=EconomyConfig.NOTICE_BACKLOG)
        self.ranking: List[LeaderboardEntry] = []

        self.player_identity: Optional[PlayerIdentity] = None
        self.player: Optional[PlayerEconomyState] = None
        self.engine: Optional[RoundEngine] = None
        self.economy: Optional[RewardEconomy] = None
        self.autoplay: Optional[AutoPlayController] = None
        self.last_save_ok: Optional[bool] = None
        self.closed = False

    @property
    def is_guest(self) -> bool:
        return self.player_identity is None

    # =====================================================
    # LIFECYCLE
    # =====================================================

    async def open(self) -> PlayerEconomyState:
        """Resolve the player, load saved state and start session timers."""
        self.bus.subscribe(NOTICE, self._on_notice)

        self.player_identity = await self.identity.get_current_player()
        if self.player_identity is None:
            self.player = PlayerEconomyState(player_id=GUEST_ID, xp=STARTING_XP)
        else:
            self.player = await self._load_or_create(self.player_identity)

        # Subscription order matters: streaks update before the save
        self.economy = RewardEconomy(
            self.player,
            self.bus,
            jobs=self.jobs,
            guest=self.is_guest,
            rng=self._rng,
            payments=self.payments,
        )
        self.engine = RoundEngine(self.player, self.bus, Scheduler("engine"), **self._engine_options)
        self.autoplay = AutoPlayController(self.engine, self.bus, Scheduler("autoplay"), **self._autoplay_options)
        self.bus.subscribe(ROUND_SETTLED, self._on_settled)
        self.bus.subscribe(ECONOMY_CHANGED, self._on_economy_changed)

        if self.is_guest:
            await self.bus.notify(
                "Playing as guest - progress won't be saved. Sign in to save progress!",
                NoticeLevel.INFO,
            )
        else:
            await self.economy.update_daily_streak()
            await self.economy.streak_warning()
            await self.refresh_leaderboard()
            await self.bus.notify(
                f"Welcome, {self.player.display_name}! Your progress is now saved.",
                NoticeLevel.SUCCESS,
            )

        if not self.jobs.running:
            self.jobs.start()
        if self.background_timers:
            self._start_timers()
        return self.player

    def _start_timers(self) -> None:
        economy = self.economy
        self.jobs.add_job(economy.maybe_start_event, "interval", seconds=EconomyConfig.FOMO_CHECK_INTERVAL,
                          id="fomo-events", next_run_time=datetime.now(timezone.utc))
        if not self.is_guest:
            self.jobs.add_job(economy.update_daily_streak, "interval",
                              seconds=EconomyConfig.DAILY_REFRESH_INTERVAL, id="daily-streak")
            self.jobs.add_job(economy.streak_warning, "interval",
                              seconds=EconomyConfig.STREAK_WARNING_INTERVAL, id="streak-warning")

    async def close(self) -> None:
        """Stop auto-play and cancel every timer; nothing mutates afterwards."""
        if self.closed:
            return
        self.closed = True
        if self.autoplay is not None:
            await self.autoplay.stop("Auto-play stopped.")
            self.autoplay.scheduler.cancel_all()
        if self.engine is not None:
            self.engine.close()
            self.engine.scheduler.cancel_all()
        if self.economy is not None:
            self.economy.close()
        shutdown_jobs(self.jobs)
        logger.info(f"Session closed for {self.player.player_id if self.player else '?'}")

    async def _load_or_create(self, identity: PlayerIdentity) -> PlayerEconomyState:
        state: Optional[PlayerEconomyState] = None
        if self.persistence is not None:
            try:
                state = await self.persistence.load_player_state(identity.id)
            except ExternalServiceError as exc:
                logger.error(f"Falling back to a fresh profile for {identity.id}: {exc}")
                await self.bus.notify("Failed to load your progress.", NoticeLevel.ERROR)

        if state is None:
            state = PlayerEconomyState(
                player_id=identity.id,
                display_name=identity.display_name,
                role=identity.role,
                xp=STARTING_XP,
                referral_code=generate_referral_code(EconomyConfig.REFERRAL_CODE_LENGTH),
            )
            logger.info(f"New player profile {identity.id}")
        else:
            state.display_name = identity.display_name or state.display_name
            state.role = PlayerRole(identity.role)
        return state

    # =====================================================
    # PLAYER ACTIONS
    # =====================================================

    async def place_wager(self, amount: int):
        return await self.engine.place_wager(amount)

    async def cash_out(self) -> Optional[RoundOutcome]:
        return await self.engine.cash_out()

    async def start_autoplay(self, settings: AutoPlaySession) -> AutoPlaySession:
        return await self.autoplay.start(settings)

    async def stop_autoplay(self) -> None:
        await self.autoplay.stop()

    async def state(self) -> Dict[str, Any]:
        snapshot = await self.engine.snapshot()
        economy = self.economy
        snapshot.update(
            player=self.player.to_dict(),
            guest=self.is_guest,
            autoplay=self.autoplay.session.to_dict() if self.autoplay.session else None,
            active_event=economy.active_event.message if economy.active_event else None,
            second_chance=economy.pending_second_chance is not None,
            achievements=[
                {"id": a.achievement_id, "kind": a.kind, "text": a.share_text}
                for a in economy.pending_achievements()
            ],
        )
        return snapshot

    # =====================================================
    # SUBSCRIBERS
    # =====================================================

    def _on_notice(self, notice: Notice) -> None:
        self.notices.append(notice)
        log(f"[{self.player.player_id if self.player else GUEST_ID}] {notice.message}", "debug")

    async def _on_settled(self, outcome: RoundOutcome) -> None:
        if self.is_guest:
            return
        await self.save()
        await self.submit_score()

    async def _on_economy_changed(self, reason: str) -> None:
        if self.is_guest:
            return
        logger.debug(f"Economy changed ({reason}), saving")
        await self.save()

    # =====================================================
    # COLLABORATORS
    # =====================================================

    async def save(self) -> bool:
        """
        Persist the in-memory state. A failure is reported, never rolled
        back; the next successful save catches up.
        """
        if self.is_guest or self.persistence is None:
            return False
        self.economy.record_xp_history()
        try:
            ok = await self.persistence.save_player_state(self.player.player_id, self.player)
        except ExternalServiceError as exc:
            logger.error(f"Save failed for {self.player.player_id}: {exc}")
            ok = False
        if not ok:
            await self.bus.notify("Failed to save user data.", NoticeLevel.ERROR)
        self.last_save_ok = ok
        return ok

    async def submit_score(self) -> bool:
        if self.is_guest or self.leaderboard_store is None:
            return False
        try:
            ok = await self.leaderboard_store.submit_entry(
                self.app_scope, self.player.player_id, self.player.summary()
            )
        except ExternalServiceError as exc:
            logger.error(f"Leaderboard update failed for {self.player.player_id}: {exc}")
            ok = False
        if not ok:
            await self.bus.notify("Failed to update leaderboard.", NoticeLevel.ERROR)
        return ok

    async def refresh_leaderboard(self) -> List[LeaderboardEntry]:
        fetched: List[LeaderboardEntry] = []
        if self.leaderboard_store is not None:
            try:
                fetched = await self.leaderboard_store.fetch_ranking(self.app_scope)
            except ExternalServiceError as exc:
                logger.error(f"Leaderboard fetch failed: {exc}")
                await self.bus.notify("Failed to load leaderboard.", NoticeLevel.ERROR)
                return self.ranking

        # Guests are not ranked
        if self.is_guest:
            self.ranking = list(fetched)
        else:
            self.ranking = merge_ranking(fetched, LeaderboardEntry.from_player(self.player))
        return self.ranking
