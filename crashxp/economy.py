# economy.py
"""
Reward Economy

Responsibilities:
- Win streaks and the every-5th-win mystery box
- Weighted mystery box draws and reward application
- Time-limited XP boosts (purchased, rewarded, event-driven) with expiry
- Daily streak bookkeeping and milestone bonuses
- Referral credits, cosmetic shop, second-chance offers, achievements

Signed-out (guest) players still play rounds, but nothing here writes to
their state.
"""

from __future__ import annotations

import logging
import random
import secrets
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import EconomyConfig, GameConfig
from .errors import ConfigurationError, InsufficientXPError, StateError
from .events import ECONOMY_CHANGED, ROUND_SETTLED, EventBus, NoticeLevel
from .models import PlayerEconomyState, RoundOutcome
from .rewards import (
    LIMITED_TIME_EVENTS,
    MYSTERY_BOX,
    BoostReward,
    CosmeticReward,
    LimitedTimeEvent,
    Reward,
    XPReward,
    draw_reward,
    lookup_boost,
    lookup_cosmetic,
)
from .scheduler import cancel_job, create_job_scheduler, run_once_after, shutdown_jobs
from .services import PaymentProcessor, PaymentStatus
from .utils import date_key, days_between, format_multiplier, format_xp, generate_unique_id, hours_left_in_day

logger = logging.getLogger("crashxp.economy")

NO_BOOST = Decimal("1.0")

BOOST_EXPIRY_JOB = "boost-expiry"
EVENT_END_JOB = "event-end"


@dataclass
class Achievement:
    kind: str
    share_text: str
    achievement_id: str = field(default_factory=lambda: generate_unique_id(6))
    shared: bool = False


ACHIEVEMENT_TEMPLATES = {
    "big_win": "🚀 Just won {amount:,} XP at {multiplier}x in CrashXP! Can you beat that?",
    "win_streak": "🔥 On a {streak}-game win streak in CrashXP! I'm unstoppable!",
}


class RewardEconomy:
    def __init__(
        self,
        player: PlayerEconomyState,
        bus: EventBus,
        jobs: Optional[AsyncIOScheduler] = None,
        guest: bool = False,
        rng: Optional[random.Random] = None,
        mystery_box: Sequence[Reward] = MYSTERY_BOX,
        payments: Optional[PaymentProcessor] = None,
        second_chance_probability: float = GameConfig.SECOND_CHANCE_PROBABILITY,
    ) -> None:
        self.player = player
        self.bus = bus
        # A scheduler passed in belongs to the caller, who shuts it down
        self._owns_jobs = jobs is None
        self.jobs = jobs if jobs is not None else create_job_scheduler()
        self.closed = False
        self.guest = guest
        self.rng = rng or secrets.SystemRandom()
        self.mystery_box = mystery_box
        self.payments = payments
        self.second_chance_probability = second_chance_probability

        self.pending_second_chance: Optional[RoundOutcome] = None
        self.achievements: Dict[str, Achievement] = {}

        self.active_event: Optional[LimitedTimeEvent] = None
        self.event_ends_at: Optional[float] = None

        self.boost_ends_at: Optional[float] = None
        self.boost_source: Optional[str] = None

        bus.subscribe(ROUND_SETTLED, self.on_settled)

    async def _changed(self, reason: str) -> None:
        await self.bus.publish(ECONOMY_CHANGED, reason)

    # =====================================================
    # SETTLEMENT HOOK
    # =====================================================

    async def on_settled(self, outcome: RoundOutcome) -> None:
        if self.guest:
            return
        self.pending_second_chance = None

        if outcome.won:
            await self.record_win()
            if outcome.winnings > EconomyConfig.BIG_WIN_THRESHOLD:
                self._unlock(
                    "big_win",
                    amount=outcome.winnings,
                    multiplier=f"{outcome.cash_out_multiplier:.2f}",
                )
        else:
            self.record_loss()
            if self.rng.random() < self.second_chance_probability:
                await self.offer_second_chance(outcome)

    # =====================================================
    # STREAKS
    # =====================================================

    async def record_win(self) -> int:
        player = self.player
        player.current_streak += 1
        player.win_streak = max(player.win_streak, player.current_streak)

        streak = player.current_streak
        if streak % EconomyConfig.STREAK_BOX_INTERVAL == 0:
            logger.info(f"Player {player.player_id} hit a {streak}-win streak")
            self._unlock("win_streak", streak=streak)
            await self.open_mystery_box()
        return streak

    def record_loss(self) -> None:
        self.player.current_streak = 0

    # =====================================================
    # MYSTERY BOX
    # =====================================================

    async def open_mystery_box(self) -> Optional[Reward]:
        if self.guest:
            await self.bus.notify("Sign in to unlock Mystery Boxes!", NoticeLevel.INFO)
            return None

        reward = draw_reward(self.mystery_box, self.rng)
        try:
            message = await self.apply_reward(reward)
        except ConfigurationError as exc:
            logger.warning(f"Mystery box reward skipped: {exc}")
            await self.bus.notify("Mystery Box could not be opened.", NoticeLevel.ERROR)
            return None

        await self.bus.notify(f"Mystery Box: {message}", NoticeLevel.SUCCESS)
        await self._changed("mystery_box")
        return reward

    async def apply_reward(self, reward: Reward) -> str:
        """Apply one reward variant; returns the message to show."""
        player = self.player

        if isinstance(reward, XPReward):
            player.credit(reward.amount)
            return reward.message

        if isinstance(reward, CosmeticReward):
            if reward.cosmetic_id in player.unlocked_cosmetics:
                bonus = EconomyConfig.DUPLICATE_COSMETIC_XP
                player.credit(bonus)
                return f"You already owned that! Here's {bonus} XP instead."
            player.unlocked_cosmetics.add(reward.cosmetic_id)
            player.active_cosmetic = reward.cosmetic_id
            return reward.message

        if isinstance(reward, BoostReward):
            await self.activate_boost(reward.value, reward.duration_seconds)
            return reward.message

        raise ConfigurationError(f"Unknown reward type: {type(reward).__name__}")

    # =====================================================
    # BOOSTS
    # =====================================================

    async def activate_boost(self, multiplier: Decimal, duration_seconds: float,
                             name: Optional[str] = None, source: Optional[str] = None) -> None:
        """
        Apply an XP payout multiplier for `duration_seconds`.
        A newer boost replaces the current one and its expiry job.
        `source` tags event-driven boosts so the event can end them.
        """
        if self.closed:
            return
        self.player.xp_boost_multiplier = Decimal(multiplier)
        self.boost_ends_at = time.time() + duration_seconds
        self.boost_source = source
        run_once_after(self.jobs, BOOST_EXPIRY_JOB, duration_seconds, self.expire_boost)

        label = name or "XP Boost"
        logger.info(f"{label} {format_multiplier(multiplier)} for {duration_seconds}s")
        await self.bus.notify(
            f"{label} activated: {format_multiplier(multiplier)} for {int(duration_seconds // 60)} minutes!",
            NoticeLevel.SUCCESS,
        )

    async def expire_boost(self) -> None:
        if self.closed:
            return
        cancel_job(self.jobs, BOOST_EXPIRY_JOB)
        self.player.xp_boost_multiplier = NO_BOOST
        self.boost_ends_at = None
        self.boost_source = None
        await self.bus.notify("XP Boost expired!", NoticeLevel.INFO)
        await self._changed("boost_expired")

    async def purchase_boost(self, boost_id: str) -> bool:
        if self.guest:
            raise StateError("Sign in to purchase XP boosts!")
        try:
            offer = lookup_boost(boost_id)
        except ConfigurationError as exc:
            logger.error(str(exc))
            await self.bus.notify("Error: Unknown boost type.", NoticeLevel.ERROR)
            return False

        if await self._charge(offer.price_cents, offer.name) is not PaymentStatus.SUCCEEDED:
            await self.bus.notify("Payment failed. Please try again.", NoticeLevel.ERROR)
            return False

        await self.activate_boost(offer.multiplier, offer.duration_seconds, name=offer.name)
        return True

    async def _charge(self, amount_cents: int, description: str) -> PaymentStatus:
        if self.payments is None:
            logger.warning("No payment processor configured")
            return PaymentStatus.FAILED
        try:
            return await self.payments.charge(amount_cents, description)
        except Exception:
            logger.exception(f"Payment for '{description}' failed")
            return PaymentStatus.FAILED

    # =====================================================
    # LIMITED-TIME EVENTS
    # =====================================================

    async def maybe_start_event(self) -> Optional[LimitedTimeEvent]:
        """Hourly roll; at most one event runs at a time."""
        if self.closed or self.active_event is not None:
            return None
        if self.rng.random() >= EconomyConfig.FOMO_EVENT_PROBABILITY:
            return None
        event = self.rng.choice(list(LIMITED_TIME_EVENTS))
        await self.activate_event(event.event_type)
        return event

    async def activate_event(self, event_type: str) -> LimitedTimeEvent:
        event = next((e for e in LIMITED_TIME_EVENTS if e.event_type == event_type), None)
        if event is None:
            raise ConfigurationError(f"Unknown event type: {event_type}")

        self.active_event = event
        self.event_ends_at = time.time() + event.duration_seconds
        run_once_after(self.jobs, EVENT_END_JOB, event.duration_seconds, self.end_event)

        await self.bus.notify(f"{event.icon} Limited-time event: {event.message}", NoticeLevel.WARNING)
        if event.multiplier is not None:
            await self.activate_boost(event.multiplier, event.duration_seconds,
                                      name=event.message, source=event.event_type)
        return event

    async def end_event(self) -> None:
        """Close the running event; a boost it granted ends with it."""
        event = self.active_event
        if self.closed or event is None:
            return
        cancel_job(self.jobs, EVENT_END_JOB)
        self.active_event = None
        self.event_ends_at = None
        await self.bus.notify("Limited-time event ended!", NoticeLevel.INFO)
        if self.boost_source == event.event_type:
            await self.expire_boost()

    # =====================================================
    # DAILY STREAK
    # =====================================================

    async def update_daily_streak(self, today: Optional[date] = None) -> int:
        """
        Same day: no change. Next day: +1. Longer gap or unreadable date:
        back to 1. Every 3rd day pays 100 XP per streak day.
        """
        player = self.player
        if self.guest or self.closed:
            return player.daily_streak

        today = today or date.today()
        today_str = date_key(today)

        if player.last_play_date is None:
            player.daily_streak = 1
            player.last_play_date = today_str
            await self._changed("daily_streak")
            return player.daily_streak

        gap = days_between(player.last_play_date, today)
        if gap is not None and gap <= 0:
            return player.daily_streak

        if gap == 1:
            player.daily_streak += 1
            await self.bus.notify(f"Daily streak: {player.daily_streak} days!", NoticeLevel.SUCCESS)
        else:
            player.daily_streak = 1
            await self.bus.notify("New daily streak started!", NoticeLevel.INFO)

        player.last_play_date = today_str
        player.daily_games_played = 0

        streak = player.daily_streak
        if streak % EconomyConfig.DAILY_MILESTONE_INTERVAL == 0:
            bonus = EconomyConfig.DAILY_BONUS_PER_DAY * streak
            player.credit(bonus)
            await self.bus.notify(f"Awesome! {streak}-day streak bonus: +{format_xp(bonus)}!", NoticeLevel.SUCCESS)

        await self._changed("daily_streak")
        return streak

    async def streak_warning(self, now: Optional[datetime] = None) -> bool:
        if self.guest or self.closed or self.player.daily_streak <= 0:
            return False
        hours = hours_left_in_day(now)
        if hours > EconomyConfig.STREAK_WARNING_HOURS:
            return False
        await self.bus.notify(
            f"⚠️ {hours}h left to keep your {self.player.daily_streak}-day streak!",
            NoticeLevel.WARNING,
        )
        return True

    # =====================================================
    # REFERRALS
    # =====================================================

    async def track_referral(self, referrer_code: str, new_user_id: str) -> bool:
        """
        Credits the referrer on a coin flip per tracked event (stands in
        for "friend played enough games"). Not fit for real money.
        """
        player = self.player
        if self.guest or not player.referral_code:
            return False
        if referrer_code != player.referral_code or new_user_id == player.player_id:
            return False
        if self.rng.random() >= EconomyConfig.REFERRAL_SUCCESS_PROBABILITY:
            logger.debug(f"Referral {new_user_id} tracked, not yet credited")
            return False

        bonus = EconomyConfig.REFERRAL_BONUS
        player.credit(bonus)
        player.referral_earnings += bonus
        player.referred_users += 1
        await self.bus.notify(f"Referral bonus: +{format_xp(bonus)} from a friend! 🎉", NoticeLevel.SUCCESS)
        await self._changed("referral")
        return True

    # =====================================================
    # COSMETICS
    # =====================================================

    async def buy_cosmetic(self, cosmetic_id: str) -> bool:
        """
        XP items are paid from the balance; premium items go through the
        payment processor. Buying equips the item.
        """
        player = self.player
        if self.guest:
            raise StateError("Sign in to buy cosmetics!")
        try:
            offer = lookup_cosmetic(cosmetic_id)
        except ConfigurationError as exc:
            logger.error(str(exc))
            await self.bus.notify("Error: Unknown cosmetic.", NoticeLevel.ERROR)
            return False
        if cosmetic_id in player.unlocked_cosmetics:
            raise StateError("You already own this item!")

        if offer.premium:
            status = await self._charge(offer.price_cents, f"Premium cosmetic {cosmetic_id}")
            if status is not PaymentStatus.SUCCEEDED:
                await self.bus.notify("Payment failed. Please try again.", NoticeLevel.ERROR)
                return False
        else:
            if player.xp < offer.price_xp:
                raise InsufficientXPError("Not enough XP to buy this!")
            player.debit(offer.price_xp)

        player.unlocked_cosmetics.add(cosmetic_id)
        player.active_cosmetic = cosmetic_id
        await self.bus.notify(f"Purchased & Equipped: {cosmetic_id}!", NoticeLevel.SUCCESS)
        await self._changed("cosmetic")
        return True

    async def equip_cosmetic(self, cosmetic_id: str) -> None:
        if cosmetic_id not in self.player.unlocked_cosmetics:
            raise StateError(f"Cosmetic {cosmetic_id} is locked")
        self.player.active_cosmetic = cosmetic_id
        await self._changed("cosmetic")

    # =====================================================
    # SECOND CHANCE
    # =====================================================

    async def offer_second_chance(self, outcome: RoundOutcome) -> None:
        self.pending_second_chance = outcome
        await self.bus.notify(
            f"Second Chance! You lost {format_xp(outcome.wager)}. "
            f"Revive your bet for {GameConfig.SECOND_CHANCE_COST} XP?",
            NoticeLevel.WARNING,
        )

    async def accept_second_chance(self) -> None:
        """
        Pay the revive cost and strike the lost round from the stats.
        The forfeited wager stays forfeited.
        """
        outcome = self.pending_second_chance
        if outcome is None:
            raise StateError("No second chance on offer")
        self.pending_second_chance = None

        player = self.player
        cost = GameConfig.SECOND_CHANCE_COST
        if player.xp < cost:
            raise InsufficientXPError("Not enough XP for a second chance!")

        player.debit(cost)
        player.total_wagered = max(0, player.total_wagered - outcome.wager)
        player.games_played = max(0, player.games_played - 1)
        player.daily_games_played = max(0, player.daily_games_played - 1)
        await self.bus.notify("Bet revived! Play again.", NoticeLevel.SUCCESS)
        await self._changed("second_chance")

    async def decline_second_chance(self) -> None:
        if self.pending_second_chance is None:
            return
        self.pending_second_chance = None
        await self.bus.notify("No second chance. Better luck next time!", NoticeLevel.INFO)

    # =====================================================
    # ACHIEVEMENTS & HISTORY
    # =====================================================

    def _unlock(self, kind: str, **data) -> Achievement:
        achievement = Achievement(kind=kind, share_text=ACHIEVEMENT_TEMPLATES[kind].format(**data))
        self.achievements[achievement.achievement_id] = achievement
        return achievement

    def pending_achievements(self) -> List[Achievement]:
        return [a for a in self.achievements.values() if not a.shared]

    async def share_achievement(self, achievement_id: str) -> str:
        """Sharing pays a one-time bonus; returns the text to share."""
        if self.guest:
            raise StateError("Sign in to share achievements!")
        achievement = self.achievements.get(achievement_id)
        if achievement is None:
            raise ConfigurationError(f"Unknown achievement: {achievement_id}")
        if not achievement.shared:
            achievement.shared = True
            self.player.credit(EconomyConfig.SHARE_BONUS_XP)
            await self.bus.notify("Achievement copied! Share it everywhere! 🚀", NoticeLevel.SUCCESS)
            await self._changed("achievement")
        return achievement.share_text

    def record_xp_history(self, today: Optional[date] = None) -> None:
        """One {date, xp} point per day; today's point tracks the latest balance."""
        key = date_key(today)
        history = self.player.xp_history
        if history and history[-1].get("date") == key:
            history[-1]["xp"] = self.player.xp
        else:
            history.append({"date": key, "xp": self.player.xp})

    def close(self) -> None:
        """Drop pending expiries; nothing here mutates the player afterwards."""
        if self.closed:
            return
        self.closed = True
        cancel_job(self.jobs, BOOST_EXPIRY_JOB)
        cancel_job(self.jobs, EVENT_END_JOB)
        if self._owns_jobs:
            shutdown_jobs(self.jobs)
