"""
Loyalty Rules Engine

Turns purchase events into earned points, keeps each loyalty card on the
tier its balance qualifies for, and processes reward redemptions against
the points ledger.
"""

__version__ = "1.0.0"
__author__ = "Loyalty Engine Team"

from .core import LoyaltyEngine, configure_logging
from .data_access import DataAccessPort, InMemoryRecordStore
from .ledger import LoyaltyLedger
from .models import RecordType, TierTransition, PurchaseResult, RedemptionResult, TierEvaluation
from .exceptions import (
    LoyaltyEngineError,
    InvalidConfigurationError,
    InsufficientBalanceError,
    InsufficientPointsError,
    LoyaltyCardNotFoundError,
    LedgerConflictError,
)

__all__ = [
    "LoyaltyEngine",
    "configure_logging",
    "DataAccessPort",
    "InMemoryRecordStore",
    "LoyaltyLedger",
    "RecordType",
    "TierTransition",
    "PurchaseResult",
    "RedemptionResult",
    "TierEvaluation",
    "LoyaltyEngineError",
    "InvalidConfigurationError",
    "InsufficientBalanceError",
    "InsufficientPointsError",
    "LoyaltyCardNotFoundError",
    "LedgerConflictError",
]
