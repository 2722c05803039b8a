"""
Core Loyalty Engine: host-facing event dispatch
"""

import sys
from typing import Optional, Union
from loguru import logger

from .config import EngineConfig, get_config
from .data_access import DataAccessPort, RecordTypeLike, record_type_name
from .ledger import LoyaltyLedger
from .models import PurchaseResult, RecordType, RedemptionResult, TierEvaluation
from .purchase import PurchaseProcessor
from .redemption import RedemptionProcessor

EventResult = Union[PurchaseResult, RedemptionResult, TierEvaluation, None]


def configure_logging(config: Optional[EngineConfig] = None) -> None:
    """
    Replace loguru handlers with a console sink, plus a rotating file sink
    when log_file is configured.
    """
    config = config or get_config()
    logger.remove()
    logger.add(
        sys.stderr,
        level=config.log_level.upper(),
        format="<green>{time:HH:mm:ss}</green> | <level>{level}</level> | {message}"
    )
    if config.log_file:
        logger.add(
            config.log_file,
            level=config.log_level.upper(),
            rotation=config.log_rotation,
            retention=config.log_retention,
        )


class LoyaltyEngine:
    """
    Entry point invoked by the host when a record is created or updated.

    Each call builds fresh processors over the supplied data-access port;
    nothing is shared between invocations except the store itself.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None):
        """
        Initialize the Loyalty Engine

        Args:
            store: Data access port supplied by the host
            config: Engine configuration (global configuration when omitted)
            diagnostics: Optional loguru-compatible logger used instead of the global one
        """
        self.store = store
        self.config = config or get_config()
        self.diagnostics = diagnostics
        self.logger = diagnostics or logger

    def handle_record_event(self, record_type: RecordTypeLike, record_id: str) -> EventResult:
        """
        Route a record created/updated event to its processor

        Args:
            record_type: Type of the record that was written
            record_id: Identifier of the record that was written

        Returns:
            The processor's result; None for skipped events and unrelated record types

        Raises:
            LoyaltyEngineError: the host should reject the triggering write
        """
        type_name = record_type_name(record_type)
        self.logger.debug(f"Record event: {type_name} {record_id}")

        if type_name == RecordType.PURCHASE_ENTRY.value:
            return self.purchase_processor().process(record_id)
        if type_name == RecordType.LOYALTY_CARD.value:
            return self.ledger().reevaluate_tier(record_id)
        if type_name == RecordType.REDEMPTION_REQUEST.value:
            return self.redemption_processor().process(record_id)

        self.logger.trace(f"Ignoring event for record type {type_name}")
        return None

    def ledger(self) -> LoyaltyLedger:
        return LoyaltyLedger(self.store, self.config, self.diagnostics)

    def purchase_processor(self) -> PurchaseProcessor:
        return PurchaseProcessor(self.store, self.config, self.diagnostics, ledger=self.ledger())

    def redemption_processor(self) -> RedemptionProcessor:
        return RedemptionProcessor(self.store, self.config, self.diagnostics, ledger=self.ledger())
