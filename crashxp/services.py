# services.py
"""
Contracts for the collaborators the game consumes but does not own:
identity, persistence, leaderboard storage and payments.

SQLAlchemy-backed stores live in db.py; the simple providers below cover
demo deployments where no external platform is wired in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Protocol

from .models import PlayerEconomyState, PlayerRole

if TYPE_CHECKING:
    from .leaderboard import LeaderboardEntry

logger = logging.getLogger("crashxp.services")


@dataclass(frozen=True)
class PlayerIdentity:
    id: str
    display_name: str
    role: PlayerRole = PlayerRole.USER


class PaymentStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    PENDING = "pending"


# =========================
# CONTRACTS
# =========================

class IdentityProvider(Protocol):
    async def get_current_player(self) -> Optional[PlayerIdentity]: ...


class PersistenceStore(Protocol):
    async def load_player_state(self, player_id: str) -> Optional[PlayerEconomyState]: ...

    async def save_player_state(self, player_id: str, state: PlayerEconomyState) -> bool: ...


class LeaderboardStore(Protocol):
    async def fetch_ranking(self, app_scope: str) -> List["LeaderboardEntry"]: ...

    async def submit_entry(self, app_scope: str, player_id: str, summary: Dict[str, Any]) -> bool: ...


class PaymentProcessor(Protocol):
    async def charge(self, amount_cents: int, description: str) -> PaymentStatus: ...


# =========================
# SIMPLE PROVIDERS
# =========================

class StaticIdentityProvider:
    """Identity resolved up front (e.g. from an init request). None means guest."""

    def __init__(self, identity: Optional[PlayerIdentity] = None) -> None:
        self._identity = identity

    async def get_current_player(self) -> Optional[PlayerIdentity]:
        return self._identity


class SimulatedPaymentProcessor:
    """
    Stand-in checkout used when no payment platform is configured.
    Answers every charge with a fixed status; no money moves.
    """

    def __init__(self, status: PaymentStatus = PaymentStatus.SUCCEEDED) -> None:
        self.status = status
        self.charges: List[Dict[str, Any]] = []

    async def charge(self, amount_cents: int, description: str) -> PaymentStatus:
        logger.info(f"Simulated charge of {amount_cents}c for '{description}': {self.status.value}")
        self.charges.append({"amount_cents": amount_cents, "description": description})
        return self.status
