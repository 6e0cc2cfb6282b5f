# errors.py
"""
Error taxonomy shared by the engine, economy and HTTP layer.

- ValidationError: rejected before any mutation, shown to the player
- ExternalServiceError: persistence / leaderboard / payment failure
- ConfigurationError: unknown reward, boost or cosmetic identifier
"""


class EngineError(Exception):
    """Base engine error"""


class ValidationError(EngineError):
    """Action rejected; no state was changed"""


class StateError(ValidationError):
    """Action performed in invalid state"""


class WagerError(ValidationError):
    """Invalid wager parameters"""


class InsufficientXPError(WagerError):
    """Balance too low for the requested debit"""


class ExternalServiceError(EngineError):
    """A collaborator (database, leaderboard, payments) failed"""


class ConfigurationError(EngineError):
    """Unknown boost / reward / cosmetic identifier"""
