"""
Loyalty ledger: the only writer of a card's points balance and tier
"""

import random
import time
from decimal import Decimal
from typing import Callable, List, Optional, TypeVar
from loguru import logger
from pydantic import BaseModel

from .audit import AuditRecorder
from .config import EngineConfig, get_config
from .data_access import DataAccessPort
from .exceptions import (
    ConcurrencyConflictError,
    InsufficientBalanceError,
    LedgerConflictError,
    RecordNotFoundError,
    TransientDataAccessError,
)
from .models import LoyaltyCard, LoyaltyCardType, RecordType, TierEvaluation
from .tier_evaluator import TierEvaluator

T = TypeVar("T")


class BalanceChange(BaseModel):
    """Balance before and after one committed ledger mutation"""

    card_id: str
    balance_before: Decimal
    balance_after: Decimal
    version: int


class LoyaltyLedger:
    """
    Owns the authoritative points balance and tier of loyalty cards.

    Every mutation is a read-modify-write guarded by the card's version token:
    the write only lands if nobody else changed the card since it was read,
    otherwise the whole step is re-read and retried.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None,
                 diagnostics=None, audit_recorder: Optional[AuditRecorder] = None,
                 tier_evaluator: Optional[TierEvaluator] = None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger
        self.audit_recorder = audit_recorder or AuditRecorder(store, self.config, diagnostics)
        self.tier_evaluator = tier_evaluator or TierEvaluator(
            validate=self.config.validate_tier_thresholds, diagnostics=diagnostics
        )

    def get_card(self, card_id: str) -> LoyaltyCard:
        record = self.store.get_record(RecordType.LOYALTY_CARD, card_id, timeout=self.config.store_timeout)
        return LoyaltyCard.from_record(record)

    def find_active_card(self, customer_id: str) -> Optional[LoyaltyCard]:
        """Return the customer's active card, newest first if the store holds several"""
        records = self.store.query(
            RecordType.LOYALTY_CARD,
            filters={"customer_id": customer_id, "status": self.config.active_card_status},
            order_by=["-created_on", "id"],
            limit=1,
            timeout=self.config.store_timeout,
        )
        if not records:
            return None
        return LoyaltyCard.from_record(records[0])

    def apply_earned_points(self, card_id: str, delta: Decimal) -> BalanceChange:
        """
        Add earned points to a card

        Args:
            card_id: Loyalty card identifier
            delta: Points to add (may be fractional, must not be negative)

        Returns:
            BalanceChange for the committed write
        """
        delta = Decimal(delta)
        if delta < 0:
            raise ValueError(f"Earned points must not be negative, got {delta}")

        change = self._update_balance(card_id, lambda card: card.total_points + delta)
        self.logger.info(
            f"Card {card_id}: +{delta} points ({change.balance_before} -> {change.balance_after})"
        )
        return change

    def deduct_points(self, card_id: str, amount: Decimal) -> BalanceChange:
        """
        Remove points from a card

        Raises:
            InsufficientBalanceError: when amount exceeds the balance at write time
        """
        amount = Decimal(amount)
        if amount < 0:
            raise ValueError(f"Deducted points must not be negative, got {amount}")

        def compute(card: LoyaltyCard) -> Decimal:
            if amount > card.total_points:
                raise InsufficientBalanceError(
                    f"Cannot deduct {amount} points from card {card_id}: balance is {card.total_points}"
                )
            return card.total_points - amount

        change = self._update_balance(card_id, compute)
        self.logger.info(
            f"Card {card_id}: -{amount} points ({change.balance_before} -> {change.balance_after})"
        )
        return change

    def reevaluate_tier(self, card_id: str) -> TierEvaluation:
        """
        Re-evaluate the card's tier against the current tier set and persist
        any upgrade or downgrade. Unchanged evaluations write nothing.
        """
        tiers = self._load_tiers()

        def attempt() -> TierEvaluation:
            card = self.get_card(card_id)
            current = self._current_tier(card, tiers)
            evaluation = self.tier_evaluator.evaluate(current, card.total_points, tiers)
            if evaluation.changed:
                self.store.update_record(
                    RecordType.LOYALTY_CARD,
                    card_id,
                    {"tier_id": evaluation.eligible_tier.id},
                    expected_version=card.version,
                    timeout=self.config.store_timeout,
                )
            return evaluation

        evaluation = self.retry_on_conflict(f"tier re-evaluation of card {card_id}", attempt)

        if not evaluation.changed:
            self.logger.debug(f"Card {card_id}: card level is unchanged")
            return evaluation

        from_name = evaluation.current_tier.name if evaluation.current_tier else None
        self.logger.info(
            f"Card {card_id}: {evaluation.transition.value.lower()} from {from_name} "
            f"to {evaluation.eligible_tier.name}"
        )
        self.audit_recorder.record(
            card_id, evaluation.transition, from_name, evaluation.eligible_tier.name
        )
        return evaluation

    def _load_tiers(self) -> List[LoyaltyCardType]:
        records = self.store.query(
            RecordType.LOYALTY_CARD_TYPE, order_by=["card_level"], timeout=self.config.store_timeout
        )
        return [LoyaltyCardType.from_record(r) for r in records]

    def _current_tier(self, card: LoyaltyCard, tiers: List[LoyaltyCardType]) -> Optional[LoyaltyCardType]:
        if card.tier_id is None:
            return None
        for tier in tiers:
            if tier.id == card.tier_id:
                return tier
        try:
            record = self.store.get_record(
                RecordType.LOYALTY_CARD_TYPE, card.tier_id, timeout=self.config.store_timeout
            )
        except RecordNotFoundError:
            self.logger.warning(f"Card {card.id} references missing tier {card.tier_id}")
            return None
        return LoyaltyCardType.from_record(record)

    def _update_balance(self, card_id: str, compute: Callable[[LoyaltyCard], Decimal]) -> BalanceChange:
        def attempt() -> BalanceChange:
            card = self.get_card(card_id)
            new_total = compute(card)
            version = self.store.update_record(
                RecordType.LOYALTY_CARD,
                card_id,
                {"total_points": new_total},
                expected_version=card.version,
                timeout=self.config.store_timeout,
            )
            return BalanceChange(
                card_id=card_id,
                balance_before=card.total_points,
                balance_after=new_total,
                version=version,
            )

        return self.retry_on_conflict(f"balance update of card {card_id}", attempt)

    def retry_on_conflict(self, operation: str, attempt: Callable[[], T]) -> T:
        """
        Run a read-modify-write step, re-running it from a fresh read on
        version conflicts and transient store failures

        Raises:
            LedgerConflictError: when every attempt failed
        """
        max_retries = self.config.ledger_max_retries
        last_error = None
        for attempt_number in range(1, max_retries + 1):
            try:
                return attempt()
            except ConcurrencyConflictError as e:
                last_error = e
                self.logger.debug(f"Write conflict on {operation} (attempt {attempt_number}/{max_retries}): {e}")
            except TransientDataAccessError as e:
                last_error = e
                self.logger.warning(f"Transient store failure on {operation} (attempt {attempt_number}/{max_retries}): {e}")
            if attempt_number < max_retries:
                self._backoff(attempt_number)

        raise LedgerConflictError(f"Gave up on {operation} after {max_retries} attempts: {last_error}") from last_error

    def _backoff(self, attempt_number: int) -> None:
        base = self.config.ledger_retry_backoff_ms / 1000.0
        if base > 0:
            time.sleep(base * attempt_number * random.uniform(0.5, 1.5))
