# config.py
"""
CrashXP Configuration

Responsibilities:
- Round engine tuning (curve, tick rate, crash tiers)
- Economy constants (streak rewards, daily bonuses, referrals)
- Auto-play defaults
- Environment-driven deployment settings
"""

from __future__ import annotations

import os
from decimal import Decimal

# =========================
# ENVIRONMENT
# =========================

def env_flag(name: str, default: bool = False) -> bool:
    """Boolean env var: 1/true/yes/on (any case) enable it, anything else disables it."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite+aiosqlite:///./crashxp.db"
)

# XP granted to a freshly created player record
STARTING_XP = int(os.getenv("STARTING_XP", "1000"))

# Leaderboard namespace shared by every session of this deployment
APP_SCOPE = os.getenv("APP_SCOPE", "crashxp")

DB_ECHO = env_flag("DB_ECHO")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


# =========================
# ROUND ENGINE
# =========================

class GameConfig:
    # --- WAGERS ---
    MIN_WAGER = 10
    WAGER_STEP = 10

    # --- CRASH DISTRIBUTION ---
    # (upper bound of tier roll, base multiplier, span)
    # output = base + offset_roll * span
    CRASH_TIERS = (
        (0.50, Decimal("1.01"), Decimal("0.50")),
        (0.80, Decimal("1.50"), Decimal("1.50")),
        (0.95, Decimal("3.00"), Decimal("7.00")),
        (1.00, Decimal("10.00"), Decimal("40.00")),
    )

    # --- GAMEPLAY SPEED ---
    # multiplier(t) = 1 + CLIMB_RATE * (t / 1000)^2, t in ms
    # 0.1 reaches 2.00x after ~3.16 seconds
    CLIMB_RATE = 0.1

    # 10ms keeps the visual climb smooth; settlement math does not depend on it
    TICK_INTERVAL_MS = 10

    # Multipliers are tracked with two decimals, truncated
    PRECISION = Decimal("0.01")

    # --- HISTORY ---
    HISTORY_SIZE = 10

    # --- RETENTION MECHANICS ---
    NEAR_MISS_THRESHOLD = Decimal("0.10")
    SECOND_CHANCE_PROBABILITY = 0.3
    SECOND_CHANCE_COST = 200


# =========================
# ECONOMY
# =========================

class EconomyConfig:
    # Every Nth consecutive win opens a mystery box
    STREAK_BOX_INTERVAL = 5

    # Paid out instead of a cosmetic the player already owns
    DUPLICATE_COSMETIC_XP = 200

    # Daily streak milestones (3, 6, 9, ...) pay DAILY_BONUS_PER_DAY * streak
    DAILY_MILESTONE_INTERVAL = 3
    DAILY_BONUS_PER_DAY = 100

    REFERRAL_BONUS = 100
    REFERRAL_SUCCESS_PROBABILITY = 0.5
    REFERRAL_CODE_LENGTH = 6

    SHARE_BONUS_XP = 50
    BIG_WIN_THRESHOLD = 1000

    # Streak reminder fires when fewer hours than this remain in the day
    STREAK_WARNING_HOURS = 2

    FOMO_EVENT_PROBABILITY = 0.15

    # --- TIMERS (seconds) ---
    FOMO_CHECK_INTERVAL = 60 * 60
    DAILY_REFRESH_INTERVAL = 24 * 60 * 60
    STREAK_WARNING_INTERVAL = 60 * 60

    # Notices kept per session for display
    NOTICE_BACKLOG = 50


# =========================
# AUTO-PLAY
# =========================

class AutoPlayConfig:
    DEFAULT_WAGER = 50
    DEFAULT_CASH_OUT_AT = 2.0
    DEFAULT_MAX_ROUNDS = 10

    INTER_ROUND_DELAY_SEC = 3.0
    POLL_INTERVAL_SEC = 0.05
