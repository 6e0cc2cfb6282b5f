# utils.py
"""
Utility functions for CrashXP

Includes:
- Identifier & referral code generation
- Robust number formatting (Decimal/Float agnostic)
- Calendar helpers for daily streaks
- Production-grade Logging
"""

from __future__ import annotations

import logging
import math
import secrets
import string
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Union

from .config import GameConfig, LOG_LEVEL

# =========================
# LOGGING CONFIG
# =========================

logger = logging.getLogger("crashxp.utils")


def configure_logging(level: Optional[str] = None) -> None:
    """
    Root logging setup for entry points (HTTP app, scripts).
    Library modules only create named loggers.
    """
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =========================
# IDENTIFIERS
# =========================

def generate_unique_id(length: int = 8) -> str:
    """
    Generate a short, URL-safe unique ID (hex).
    Used for Round IDs and notice IDs.
    """
    return secrets.token_hex(length)


def generate_referral_code(length: int = 6) -> str:
    """Uppercase alphanumeric code shared in referral links."""
    alphabet = string.ascii_uppercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


# =========================
# NUMBERS
# =========================

NumberType = Union[float, Decimal, int, str]


def to_decimal(value: NumberType) -> Decimal:
    """Exact conversion; floats go through str() to avoid binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def truncate_multiplier(value: NumberType) -> Decimal:
    """Cut a multiplier down to engine precision (never rounds up)."""
    return to_decimal(value).quantize(GameConfig.PRECISION, rounding=ROUND_DOWN)


def floor_xp(value: Decimal) -> int:
    """XP is integral; payouts are always floored."""
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def normalize_wager(amount: NumberType) -> int:
    """
    Snap an arbitrary amount onto the wager grid:
    multiples of WAGER_STEP, never below MIN_WAGER.
    """
    step = GameConfig.WAGER_STEP
    try:
        stepped = math.floor(float(amount) / step) * step
    except (ValueError, TypeError, OverflowError):
        logger.warning(f"Invalid wager input: {amount}")
        return GameConfig.MIN_WAGER
    return max(GameConfig.MIN_WAGER, int(stepped))


def safe_decimal(value: NumberType, default: str = "0.00") -> Decimal:
    """
    Safely convert input to Decimal.
    Useful for parsing stored records before handing them to the engine.
    """
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        logger.warning(f"Failed to convert {value} to Decimal, using default {default}")
        return Decimal(default)


# =========================
# FORMATTING
# =========================

def format_xp(amount: NumberType) -> str:
    """Thousands-separated XP amount, e.g. '1,250 XP'."""
    try:
        return f"{int(amount):,} XP"
    except (ValueError, TypeError):
        logger.warning(f"Invalid XP format input: {amount}")
        return "0 XP"


def format_multiplier(mult: NumberType) -> str:
    """
    Format multiplier with 2 decimals (e.g., '1.00x').
    """
    try:
        val = float(mult)
        return f"{val:.2f}x"
    except (ValueError, TypeError, InvalidOperation):
        return "1.00x"


def format_timestamp(ts: Optional[float] = None) -> str:
    """
    Return ISO formatted timestamp.
    Defaults to now if no timestamp provided.
    """
    if ts is not None:
        dt = datetime.fromtimestamp(ts)
    else:
        dt = datetime.now()
    return dt.isoformat(timespec="seconds")


# =========================
# CALENDAR
# =========================

def date_key(day: Optional[date] = None) -> str:
    """ISO day string used for lastPlayDate and xpHistory."""
    return (day or date.today()).isoformat()


def days_between(earlier: str, later: date) -> Optional[int]:
    """Whole calendar days from an ISO date string to `later`; None if unparsable."""
    try:
        start = date.fromisoformat(earlier)
    except (TypeError, ValueError):
        return None
    return (later - start).days


def hours_left_in_day(now: Optional[datetime] = None) -> int:
    now = now or datetime.now()
    midnight = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
    return int((midnight - now).total_seconds() // 3600)


# =========================
# LOGGING / DEBUGGING
# =========================

def log(msg: str, level: str = "info") -> None:
    """
    Unified logging wrapper.
    Replaces print() with standard logging.

    Args:
        msg: Message to log
        level: 'info', 'warning', 'error', 'debug'
    """
    lvl = level.lower()
    timestamped_msg = f"[{format_timestamp()}] {msg}"

    if lvl == "error":
        logger.error(timestamped_msg)
    elif lvl == "warning":
        logger.warning(timestamped_msg)
    elif lvl == "debug":
        logger.debug(timestamped_msg)
    else:
        logger.info(timestamped_msg)
