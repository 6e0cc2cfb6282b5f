# rewards.py
"""
Reward tables and weighted sampling.

Rewards form a closed set of variants (XP, cosmetic, multiplier boost).
Consumers dispatch on the concrete class; anything else is a
ConfigurationError.
"""

from __future__ import annotations

import random
import secrets
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Sequence, Union

from .errors import ConfigurationError


class Rarity(str, Enum):
    """Display label only."""

    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"


# =========================
# REWARD VARIANTS
# =========================

@dataclass(frozen=True)
class XPReward:
    amount: int
    weight: float
    rarity: Rarity
    message: str


@dataclass(frozen=True)
class CosmeticReward:
    cosmetic_id: str
    weight: float
    rarity: Rarity
    message: str


@dataclass(frozen=True)
class BoostReward:
    value: Decimal
    duration_seconds: int
    weight: float
    rarity: Rarity
    message: str


Reward = Union[XPReward, CosmeticReward, BoostReward]


MYSTERY_BOX: Sequence[Reward] = (
    XPReward(500, 5, Rarity.COMMON, "Bonus 500 XP!"),
    XPReward(1000, 2, Rarity.RARE, "Big 1000 XP Boost!"),
    CosmeticReward("golden_ring", 1, Rarity.EPIC, "Golden Ring Cosmetic!"),
    BoostReward(Decimal("1.1"), 600, 2, Rarity.RARE, "1.1x XP for 10 min!"),
)


def draw_reward(table: Sequence[Reward], rng: Optional[random.Random] = None) -> Reward:
    """
    Weighted pick: walk the table accumulating weight until the roll falls
    inside an entry's span. First match wins; the first entry is the
    fallback for float edge cases.
    """
    if not table:
        raise ConfigurationError("Reward table is empty")
    rng = rng or secrets.SystemRandom()
    total = sum(r.weight for r in table)
    roll = rng.random() * total

    upto = 0.0
    for reward in table:
        upto += reward.weight
        if roll < upto:
            return reward
    return table[0]


# =========================
# SHOP CATALOGS
# =========================

@dataclass(frozen=True)
class BoostOffer:
    boost_id: str
    name: str
    multiplier: Decimal
    duration_seconds: int
    price_cents: int


BOOST_CATALOG: Dict[str, BoostOffer] = {
    offer.boost_id: offer
    for offer in (
        BoostOffer("2x_weekend", "2x Weekend Boost", Decimal("2"), 48 * 3600, 299),
        BoostOffer("3x_hour", "3x Power Hour", Decimal("3"), 3600, 199),
        BoostOffer("5x_lucky", "5x Lucky Strike", Decimal("5"), 1800, 499),
    )
}


@dataclass(frozen=True)
class CosmeticOffer:
    cosmetic_id: str
    price_xp: int = 0
    # Premium items go through the payment processor instead of XP
    price_cents: int = 0

    @property
    def premium(self) -> bool:
        return self.price_cents > 0


COSMETIC_CATALOG: Dict[str, CosmeticOffer] = {
    offer.cosmetic_id: offer
    for offer in (
        CosmeticOffer("golden_ring", price_xp=500),
        CosmeticOffer("rainbow_aura", price_xp=1500),
        CosmeticOffer("fire_explosion", price_xp=750),
        CosmeticOffer("electric_shock", price_xp=1000),
        CosmeticOffer("diamond_ring", price_cents=299),
    )
}


@dataclass(frozen=True)
class LimitedTimeEvent:
    event_type: str
    duration_seconds: int
    message: str
    icon: str
    multiplier: Optional[Decimal] = None


LIMITED_TIME_EVENTS: Sequence[LimitedTimeEvent] = (
    LimitedTimeEvent("2x_xp_boost", 600, "2x XP for 10 minutes!", "🔥", Decimal("2.0")),
    LimitedTimeEvent("lucky_hour", 1200, "Lucky Hour! Higher multipliers more often!", "🍀"),
)


def lookup_boost(boost_id: str) -> BoostOffer:
    try:
        return BOOST_CATALOG[boost_id]
    except KeyError:
        raise ConfigurationError(f"Unknown boost type: {boost_id}") from None


def lookup_cosmetic(cosmetic_id: str) -> CosmeticOffer:
    try:
        return COSMETIC_CATALOG[cosmetic_id]
    except KeyError:
        raise ConfigurationError(f"Unknown cosmetic: {cosmetic_id}") from None
