"""
Tier evaluation: picks the tier a points balance qualifies for
"""

from decimal import Decimal
from typing import List, Optional, Sequence
from loguru import logger

from .models import LoyaltyCardType, TierEvaluation, TierTransition
from .exceptions import InvalidTierConfigurationError


def validate_tiers(tiers: Sequence[LoyaltyCardType]) -> None:
    """
    Reject malformed tier sets

    Args:
        tiers: Tier definitions in any order

    Raises:
        InvalidTierConfigurationError: when two tiers share a level, or a
            higher level has a lower minimum than a lower level
    """
    ordered = sorted(tiers, key=lambda t: t.card_level)
    for lower, higher in zip(ordered, ordered[1:]):
        if lower.card_level == higher.card_level:
            raise InvalidTierConfigurationError(
                f"Tiers '{lower.name}' and '{higher.name}' share card level {lower.card_level}"
            )
        if higher.minimum_points < lower.minimum_points:
            raise InvalidTierConfigurationError(
                f"Tier '{higher.name}' (level {higher.card_level}) requires {higher.minimum_points} points, "
                f"less than '{lower.name}' (level {lower.card_level}) at {lower.minimum_points}"
            )


class TierEvaluator:
    """
    Determines the eligible tier for a balance and classifies the transition
    from the card's current tier. Pure: never touches the data store.
    """

    def __init__(self, validate: bool = True, diagnostics=None):
        self.validate = validate
        self.logger = diagnostics or logger

    def eligible_tier(self, total_points: Decimal, tiers: Sequence[LoyaltyCardType]) -> Optional[LoyaltyCardType]:
        """
        Walk tiers in ascending level order, keeping the last one whose
        minimum is met and stopping at the first one that is not.
        """
        eligible = None
        for tier in sorted(tiers, key=lambda t: t.card_level):
            self.logger.trace(f"threshold = {tier.minimum_points}, total points = {total_points}")
            if total_points >= tier.minimum_points:
                eligible = tier
            else:
                break
        return eligible

    def evaluate(self, current_tier: Optional[LoyaltyCardType], total_points: Decimal,
                 tiers: List[LoyaltyCardType]) -> TierEvaluation:
        """
        Evaluate a balance against the tier set

        Args:
            current_tier: Tier currently on the card (None if unassigned)
            total_points: Card balance
            tiers: Full set of tier definitions

        Returns:
            TierEvaluation with the eligible tier and the transition kind
        """
        if self.validate:
            validate_tiers(tiers)

        eligible = self.eligible_tier(total_points, tiers)

        if eligible is None:
            # Balance below every threshold: keep whatever the card has
            self.logger.debug(f"No tier threshold met by {total_points} points")
            return TierEvaluation(
                current_tier=current_tier,
                eligible_tier=current_tier,
                total_points=total_points,
                transition=TierTransition.UNCHANGED,
            )

        if current_tier is None or eligible.card_level > current_tier.card_level:
            transition = TierTransition.UPGRADE
        elif eligible.card_level < current_tier.card_level:
            transition = TierTransition.DOWNGRADE
        else:
            transition = TierTransition.UNCHANGED

        current_level = current_tier.card_level if current_tier else None
        self.logger.debug(
            f"Tier evaluation at {total_points} points: level {current_level} -> "
            f"{eligible.card_level} ({transition.value})"
        )
        return TierEvaluation(
            current_tier=current_tier,
            eligible_tier=eligible,
            total_points=total_points,
            transition=transition,
        )
