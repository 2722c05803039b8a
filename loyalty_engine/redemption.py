"""
Reward redemption against a loyalty card balance
"""

from decimal import Decimal
from typing import Optional
from loguru import logger

from .config import EngineConfig, get_config
from .data_access import DataAccessPort
from .exceptions import (
    DataAccessError,
    InsufficientBalanceError,
    InsufficientPointsError,
    LoyaltyCardNotFoundError,
    LoyaltyEngineError,
)
from .ledger import LoyaltyLedger
from .models import RecordType, RedemptionRequest, RedemptionResult, Reward


class RedemptionProcessor:
    """
    Validates and applies a point-based redemption.

    Unlike purchases, a redemption that cannot be honored is a hard failure:
    the error propagates so the host rejects the triggering write.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None,
                 ledger: Optional[LoyaltyLedger] = None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger
        self.ledger = ledger or LoyaltyLedger(store, self.config, diagnostics)

    def process(self, redemption_id: str) -> Optional[RedemptionResult]:
        """
        Process a redemption request

        The request is approved with a version-checked write before any points
        leave the card, so a request is only ever redeemed once. If the
        deduction then fails the approval is withdrawn again.

        Args:
            redemption_id: Redemption request identifier

        Returns:
            RedemptionResult once approved, or None when the request does not
            reference both a reward and a customer or was already approved

        Raises:
            LoyaltyCardNotFoundError: customer has no active card
            InsufficientPointsError: balance below the reward's requirement
        """
        self.logger.debug(f"Start redemption {redemption_id}")

        try:
            return self.ledger.retry_on_conflict(
                f"redemption {redemption_id}", lambda: self._redeem_once(redemption_id)
            )
        except LoyaltyEngineError as e:
            self.logger.error(f"Error in redemption {redemption_id}: {e}")
            raise

    def _redeem_once(self, redemption_id: str) -> Optional[RedemptionResult]:
        record = self.store.get_record(RecordType.REDEMPTION_REQUEST, redemption_id, timeout=self.config.store_timeout)
        request = RedemptionRequest.from_record(record)
        if not request.reward_id or not request.customer_id:
            self.logger.debug(f"Redemption {redemption_id} lacks a reward or customer reference")
            return None
        if request.is_approved:
            self.logger.debug(f"Redemption {redemption_id} is already approved")
            return None

        self.logger.debug(f"Reward ID: {request.reward_id}, Customer ID: {request.customer_id}")

        # Step 1: Loyalty card for the customer
        card = self.ledger.find_active_card(request.customer_id)
        if card is None:
            raise LoyaltyCardNotFoundError(f"No loyalty card found for customer {request.customer_id}.")

        # Step 2: Reward requirement
        reward = Reward.from_record(
            self.store.get_record(RecordType.REWARD, request.reward_id, timeout=self.config.store_timeout)
        )
        points_required = Decimal(reward.points_required)
        self.logger.debug(f"Current Points: {card.total_points}, Points Required: {points_required}")

        # Step 3: Balance check
        if card.total_points < points_required:
            raise InsufficientPointsError(
                f"Not enough points to redeem this reward: {points_required} required, "
                f"{card.total_points} available."
            )

        # Step 4: Approve; a conflict means another event is redeeming this request
        claimed_version = self.store.update_record(
            RecordType.REDEMPTION_REQUEST,
            redemption_id,
            {"is_approved": True, "points_at_redemption": card.total_points},
            expected_version=record.version,
            timeout=self.config.store_timeout,
        )

        # Step 5: Deduct
        try:
            change = self.ledger.deduct_points(card.id, points_required)
        except LoyaltyEngineError as e:
            self._withdraw_approval(redemption_id, claimed_version)
            if isinstance(e, InsufficientBalanceError):
                # Balance dropped between the check and the write
                raise InsufficientPointsError(f"Not enough points to redeem this reward: {e}") from e
            raise

        if change.balance_before != card.total_points:
            # Card moved between the check and the deduction
            self.store.update_record(
                RecordType.REDEMPTION_REQUEST,
                redemption_id,
                {"points_at_redemption": change.balance_before},
                timeout=self.config.store_timeout,
            )
        self.logger.info(f"Redemption {redemption_id} approved; card {card.id} now at {change.balance_after}")

        evaluation = None
        if self.config.reevaluate_tier_after_mutation:
            evaluation = self.ledger.reevaluate_tier(card.id)

        return RedemptionResult(
            redemption_id=redemption_id,
            card_id=card.id,
            points_required=reward.points_required,
            points_at_redemption=change.balance_before,
            total_points=change.balance_after,
            tier_evaluation=evaluation,
        )

    def _withdraw_approval(self, redemption_id: str, claimed_version: int) -> None:
        try:
            self.store.update_record(
                RecordType.REDEMPTION_REQUEST,
                redemption_id,
                {"is_approved": False, "points_at_redemption": None},
                expected_version=claimed_version,
                timeout=self.config.store_timeout,
            )
        except DataAccessError as e:
            self.logger.error(f"Could not withdraw approval of redemption {redemption_id}: {e}")
