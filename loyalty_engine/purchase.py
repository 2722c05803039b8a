"""
Purchase processing: price -> earning rule -> points -> ledger
"""

from decimal import Decimal
from typing import Optional
from loguru import logger

from .calculator import PointsCalculator
from .config import EngineConfig, get_config
from .data_access import DataAccessPort
from .exceptions import DataAccessError, LoyaltyEngineError
from .ledger import LoyaltyLedger
from .models import LoyaltyCard, Product, PurchaseEntry, PurchaseResult, RecordType
from .resolvers import PriceResolver, ProgramConfigResolver


class PurchaseProcessor:
    """
    Orchestrates points earning for one purchase entry.

    Purchases that lack the information needed to earn (no active card, no
    category, no price, no matching rule, non-positive price) are skipped
    silently: process() returns None and nothing is written.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None,
                 ledger: Optional[LoyaltyLedger] = None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger
        self.price_resolver = PriceResolver(store, self.config, diagnostics)
        self.config_resolver = ProgramConfigResolver(store, self.config, diagnostics)
        self.calculator = PointsCalculator(self.config, diagnostics)
        self.ledger = ledger or LoyaltyLedger(store, self.config, diagnostics)

    def process(self, purchase_id: str) -> Optional[PurchaseResult]:
        """
        Process a created or updated purchase entry

        The purchase is claimed first with a version-checked write of its new
        points, so concurrent events for one purchase credit the card once. A
        failed ledger credit restores the purchase to its previous values.

        Args:
            purchase_id: Purchase entry identifier

        Returns:
            PurchaseResult, or None when the purchase cannot earn points
        """
        self.logger.debug(f"Processing purchase entry {purchase_id}")

        try:
            return self.ledger.retry_on_conflict(
                f"processing of purchase entry {purchase_id}", lambda: self._process_once(purchase_id)
            )
        except LoyaltyEngineError as e:
            self.logger.error(f"Error processing purchase entry {purchase_id}: {e}")
            raise

    def _process_once(self, purchase_id: str) -> Optional[PurchaseResult]:
        record = self.store.get_record(RecordType.PURCHASE_ENTRY, purchase_id, timeout=self.config.store_timeout)
        purchase = PurchaseEntry.from_record(record)
        if not purchase.product_id or not purchase.currency_id:
            return self._skip(purchase_id, "missing product or currency")

        # Step 1: Resolve the active loyalty card and its tier
        card = self._resolve_card(purchase)
        if card is None:
            return self._skip(purchase_id, "no active loyalty card")
        if card.tier_id is None:
            return self._skip(purchase_id, f"card {card.id} has no tier")

        # Step 2: Product category
        product = Product.from_record(
            self.store.get_record(RecordType.PRODUCT, purchase.product_id, timeout=self.config.store_timeout)
        )
        if product.category_id is None:
            return self._skip(purchase_id, f"product {product.id} has no category")

        # Step 3: Price and earning rule
        price = self.price_resolver.resolve(purchase.product_id, purchase.currency_id)
        if price is None:
            return self._skip(purchase_id, "no price list entry")
        if price <= 0:
            return self._skip(purchase_id, f"non-positive price {price}")

        configuration = self.config_resolver.resolve(card.tier_id, product.category_id, purchase.currency_id)
        if configuration is None:
            return self._skip(purchase_id, "no program configuration")

        # Step 4: Points earned
        points = self.calculator.quantize(self.calculator.calculate(price, configuration))

        if purchase.points_earned == points and purchase.purchase_price == price:
            self.logger.debug(f"Purchase {purchase_id} already credited with {points} points")
            return PurchaseResult(
                purchase_id=purchase_id,
                card_id=card.id,
                purchase_price=price,
                points_earned=points,
                points_applied=Decimal('0'),
                total_points=card.total_points,
            )

        previous = purchase.points_earned or Decimal('0')
        delta = points - previous

        # Step 5: Claim the purchase; a conflict means another event got here first
        claimed_version = self.store.update_record(
            RecordType.PURCHASE_ENTRY,
            purchase_id,
            {"purchase_price": price, "points_earned": points},
            expected_version=record.version,
            timeout=self.config.store_timeout,
        )

        # Step 6: Credit the card through the ledger
        total_points = card.total_points
        try:
            if delta > 0:
                total_points = self.ledger.apply_earned_points(card.id, delta).balance_after
            elif delta < 0:
                # Price or rule went down since the last pass: take back the difference
                total_points = self.ledger.deduct_points(card.id, -delta).balance_after
        except LoyaltyEngineError:
            self._release_claim(purchase, claimed_version)
            raise

        evaluation = None
        if delta != 0 and self.config.reevaluate_tier_after_mutation:
            evaluation = self.ledger.reevaluate_tier(card.id)

        self.logger.info(f"Purchase {purchase_id}: {points} points earned, {delta} applied to card {card.id}")
        return PurchaseResult(
            purchase_id=purchase_id,
            card_id=card.id,
            purchase_price=price,
            points_earned=points,
            points_applied=delta,
            total_points=total_points,
            tier_evaluation=evaluation,
        )

    def _release_claim(self, purchase: PurchaseEntry, claimed_version: int) -> None:
        """Put back the purchase values that were current before the claim"""
        try:
            self.store.update_record(
                RecordType.PURCHASE_ENTRY,
                purchase.id,
                {"purchase_price": purchase.purchase_price, "points_earned": purchase.points_earned},
                expected_version=claimed_version,
                timeout=self.config.store_timeout,
            )
        except DataAccessError as e:
            self.logger.error(f"Could not restore purchase entry {purchase.id} after a failed credit: {e}")

    def _resolve_card(self, purchase: PurchaseEntry) -> Optional[LoyaltyCard]:
        if purchase.card_id:
            card = self.ledger.get_card(purchase.card_id)
            if card.status != self.config.active_card_status:
                self.logger.debug(f"Card {card.id} is {card.status}")
                return None
            return card
        if purchase.customer_id:
            return self.ledger.find_active_card(purchase.customer_id)
        return None

    def _skip(self, purchase_id: str, reason: str) -> None:
        self.logger.debug(f"Skipping purchase entry {purchase_id}: {reason}")
        return None
