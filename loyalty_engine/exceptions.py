"""
Custom exceptions for the Loyalty Engine
"""


class LoyaltyEngineError(Exception):
    """Base exception for all loyalty engine errors"""
    pass


class InvalidConfigurationError(LoyaltyEngineError):
    """Raised when a program configuration cannot be used for earning (e.g. zero min spend)"""
    pass


class InvalidTierConfigurationError(LoyaltyEngineError):
    """Raised when the loaded tier set is malformed"""
    pass


class InsufficientBalanceError(LoyaltyEngineError):
    """Raised when a ledger deduction exceeds the card balance"""
    pass


class InsufficientPointsError(LoyaltyEngineError):
    """Raised when a redemption requires more points than the card holds"""
    pass


class LoyaltyCardNotFoundError(LoyaltyEngineError):
    """Raised when a customer has no active loyalty card for a hard-fail operation"""
    pass


class LedgerConflictError(LoyaltyEngineError):
    """Raised when a ledger mutation keeps conflicting after all retries"""
    pass


class DataAccessError(LoyaltyEngineError):
    """Base exception for data store failures"""
    pass


class RecordNotFoundError(DataAccessError):
    """Raised when a record does not exist"""

    def __init__(self, record_type: str, record_id: str):
        self.record_type = str(getattr(record_type, "value", record_type))
        self.record_id = record_id
        super().__init__(f"{self.record_type} record {record_id} not found")


class ConcurrencyConflictError(DataAccessError):
    """Raised when a write carries a stale version token"""
    pass


class TransientDataAccessError(DataAccessError):
    """Raised for retryable store failures (timeouts, busy store)"""
    pass


class PermanentDataAccessError(DataAccessError):
    """Raised for non-retryable store failures (schema or data errors)"""
    pass
