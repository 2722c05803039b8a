"""
Shared fixtures: a small loyalty program seeded into an in-memory store
"""

import threading
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from loyalty_engine.config import EngineConfig
from loyalty_engine.data_access import InMemoryRecordStore
from loyalty_engine.exceptions import ConcurrencyConflictError
from loyalty_engine.models import RecordType

USD = "usd"
EUR = "eur"


def ts(day: int) -> datetime:
    return datetime(2025, 1, day, tzinfo=timezone.utc)


@pytest.fixture
def config():
    return EngineConfig(ledger_max_retries=50, ledger_retry_backoff_ms=1)


@pytest.fixture
def store():
    store = InMemoryRecordStore()

    # Tiers
    store.create_record(RecordType.LOYALTY_CARD_TYPE, {"id": "silver", "name": "Silver", "card_level": 1, "minimum_points": 0, "created_on": ts(1)})
    store.create_record(RecordType.LOYALTY_CARD_TYPE, {"id": "gold", "name": "Gold", "card_level": 2, "minimum_points": 100, "created_on": ts(1)})
    store.create_record(RecordType.LOYALTY_CARD_TYPE, {"id": "platinum", "name": "Platinum", "card_level": 3, "minimum_points": 500, "created_on": ts(1)})

    # Catalog
    store.create_record(RecordType.PRODUCT, {"id": "category-shoes", "name": "Shoes", "category_id": None, "created_on": ts(1)})
    store.create_record(RecordType.PRODUCT, {"id": "sneaker", "name": "Sneaker", "category_id": "category-shoes", "created_on": ts(1)})
    store.create_record(RecordType.PRODUCT, {"id": "gift-card", "name": "Gift card", "category_id": None, "created_on": ts(1)})
    store.create_record(RecordType.PRICE_LIST_ITEM, {"product_id": "sneaker", "currency_id": USD, "amount": Decimal("500"), "created_on": ts(1)})
    store.create_record(RecordType.PRICE_LIST_ITEM, {"product_id": "gift-card", "currency_id": USD, "amount": Decimal("50"), "created_on": ts(1)})

    # Earning rules
    store.create_record(RecordType.PROGRAM_CONFIGURATION, {
        "id": "silver-shoes-usd", "tier_id": "silver", "category_id": "category-shoes", "currency_id": USD,
        "min_spend_amount": 100, "points_per_unit": Decimal("2"), "created_on": ts(1),
    })
    store.create_record(RecordType.PROGRAM_CONFIGURATION, {
        "id": "gold-shoes-usd", "tier_id": "gold", "category_id": "category-shoes", "currency_id": USD,
        "min_spend_amount": 100, "points_per_unit": Decimal("3"), "created_on": ts(1),
    })

    # Customers and cards
    store.create_record(RecordType.LOYALTY_CARD, {
        "id": "card-alice", "customer_id": "alice", "tier_id": "silver",
        "total_points": Decimal("0"), "status": "active", "created_on": ts(2),
    })
    store.create_record(RecordType.LOYALTY_CARD, {
        "id": "card-bob", "customer_id": "bob", "tier_id": "gold",
        "total_points": Decimal("150"), "status": "active", "created_on": ts(2),
    })
    store.create_record(RecordType.LOYALTY_CARD, {
        "id": "card-carol-old", "customer_id": "carol", "tier_id": "silver",
        "total_points": Decimal("40"), "status": "inactive", "created_on": ts(2),
    })

    # Rewards
    store.create_record(RecordType.REWARD, {"id": "reward-200", "name": "Weekend stay", "points_required": 200, "created_on": ts(1)})
    store.create_record(RecordType.REWARD, {"id": "reward-50", "name": "Coffee", "points_required": 50, "created_on": ts(1)})

    return store


def add_purchase(store, purchase_id, customer_id="alice", product_id="sneaker", currency_id=USD, **extra):
    fields = {"id": purchase_id, "customer_id": customer_id, "product_id": product_id, "currency_id": currency_id}
    fields.update(extra)
    return store.create_record(RecordType.PURCHASE_ENTRY, fields)


def add_redemption(store, redemption_id, customer_id="bob", reward_id="reward-50", **extra):
    fields = {"id": redemption_id, "customer_id": customer_id, "reward_id": reward_id, "is_approved": False}
    fields.update(extra)
    return store.create_record(RecordType.REDEMPTION_REQUEST, fields)


def card_points(store, card_id) -> Decimal:
    return store.get_record(RecordType.LOYALTY_CARD, card_id).fields["total_points"]


def card_tier(store, card_id) -> str:
    return store.get_record(RecordType.LOYALTY_CARD, card_id).fields["tier_id"]


def copy_into(source, target):
    for record_type in RecordType:
        for record in source.query(record_type):
            target.create_record(record_type, {"id": record.id, **record.fields})
    return target


class CardConflictingStore(InMemoryRecordStore):
    """Rejects every versioned card write as stale until healed"""

    def __init__(self):
        super().__init__()
        self.healed = False

    def update_record(self, record_type, record_id, fields, expected_version=None, timeout=None):
        if record_type == RecordType.LOYALTY_CARD and expected_version is not None and not self.healed:
            raise ConcurrencyConflictError("stale card")
        return super().update_record(record_type, record_id, fields, expected_version=expected_version, timeout=timeout)


class LockstepReadStore(InMemoryRecordStore):
    """Holds the first two reads of one record type until both readers have the same version"""

    def __init__(self, record_type):
        super().__init__()
        self.record_type = record_type
        self.barrier = threading.Barrier(2, timeout=5)
        self.held_reads = 2
        self.held_reads_lock = threading.Lock()

    def get_record(self, record_type, record_id, fields=None, timeout=None):
        record = super().get_record(record_type, record_id, fields=fields, timeout=timeout)
        if record_type == self.record_type:
            with self.held_reads_lock:
                hold = self.held_reads > 0
                self.held_reads -= 1
            if hold:
                self.barrier.wait()
        return record


def run_together(*calls):
    """Run callables on separate threads; return their results and errors"""
    results, errors = [], []

    def run(call):
        try:
            results.append(call())
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run, args=(call,)) for call in calls]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors
