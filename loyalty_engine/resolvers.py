"""
Price and earning-rule lookups against the host data store
"""

from decimal import Decimal
from typing import Optional
from loguru import logger

from .config import EngineConfig, get_config
from .data_access import DataAccessPort
from .exceptions import RecordNotFoundError
from .models import (
    RecordType,
    PriceListEntry,
    Product,
    ProgramConfiguration,
    ProductLookup,
)

# Most recently created record wins; id breaks ties between records created together
NEWEST_FIRST = ["-created_on", "id"]


class PriceResolver:
    """
    Resolves the unit price for a (product, currency) pair from the price list
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger

    def resolve(self, product_id: str, currency_id: str) -> Optional[Decimal]:
        """
        Look up the authoritative price-list amount

        Args:
            product_id: Product identifier
            currency_id: Currency identifier (matching key only, never converted)

        Returns:
            Unit amount, or None when no price-list entry exists
        """
        entries = self.store.query(
            RecordType.PRICE_LIST_ITEM,
            filters={"product_id": product_id, "currency_id": currency_id},
            order_by=NEWEST_FIRST,
            timeout=self.config.store_timeout,
        )
        if not entries:
            self.logger.debug(f"No price for product {product_id} in currency {currency_id}")
            return None

        if len(entries) > 1:
            self.logger.warning(
                f"{len(entries)} price list entries for product {product_id}/{currency_id}; "
                f"using most recent {entries[0].id}"
            )

        entry = PriceListEntry.from_record(entries[0])
        self.logger.debug(f"Resolved price {entry.amount} for product {product_id}")
        return entry.amount

    def lookup_product(self, product_id: Optional[str], currency_id: Optional[str]) -> ProductLookup:
        """
        Derive the dependent purchase fields for a product selection.

        A cleared product clears every field. A missing currency leaves the
        price unresolved but still reports the category.
        """
        if not product_id:
            return ProductLookup()

        try:
            record = self.store.get_record(
                RecordType.PRODUCT, product_id, fields=["name", "category_id"],
                timeout=self.config.store_timeout,
            )
        except RecordNotFoundError:
            self.logger.debug(f"Product {product_id} not found")
            return ProductLookup()

        product = Product.from_record(record)
        price = self.resolve(product_id, currency_id) if currency_id else None
        return ProductLookup(category_id=product.category_id, purchase_price=price)


class ProgramConfigResolver:
    """
    Resolves the earning rule for a (tier, category, currency) triple.

    Matching is exact on all three keys; there is no fallback to a default
    tier or category.
    """

    def __init__(self, store: DataAccessPort, config: Optional[EngineConfig] = None, diagnostics=None):
        self.store = store
        self.config = config or get_config()
        self.logger = diagnostics or logger

    def resolve(self, tier_id: str, category_id: str, currency_id: str) -> Optional[ProgramConfiguration]:
        configurations = self.store.query(
            RecordType.PROGRAM_CONFIGURATION,
            filters={"tier_id": tier_id, "category_id": category_id, "currency_id": currency_id},
            order_by=NEWEST_FIRST,
            timeout=self.config.store_timeout,
        )
        if not configurations:
            self.logger.debug(
                f"No program configuration for tier {tier_id}, category {category_id}, currency {currency_id}"
            )
            return None

        if len(configurations) > 1:
            self.logger.warning(
                f"{len(configurations)} program configurations match tier {tier_id}, "
                f"category {category_id}, currency {currency_id}; using most recent {configurations[0].id}"
            )

        return ProgramConfiguration.from_record(configurations[0])
