"""
Tests for reward redemption
"""

from decimal import Decimal

import pytest

from conftest import (
    CardConflictingStore,
    LockstepReadStore,
    add_redemption,
    card_points,
    card_tier,
    copy_into,
    run_together,
)
from loyalty_engine.data_access import InMemoryRecordStore
from loyalty_engine.exceptions import (
    InsufficientPointsError,
    LedgerConflictError,
    LoyaltyCardNotFoundError,
    PermanentDataAccessError,
    RecordNotFoundError,
)
from loyalty_engine.models import RecordType, TierTransition
from loyalty_engine.redemption import RedemptionProcessor


class FlakyApprovalStore(InMemoryRecordStore):
    """Fails the first write to a redemption request"""

    def __init__(self):
        super().__init__()
        self.failures_left = 1

    def update_record(self, record_type, record_id, fields, expected_version=None, timeout=None):
        if record_type == RecordType.REDEMPTION_REQUEST and self.failures_left:
            self.failures_left -= 1
            raise PermanentDataAccessError("redemption request is locked by another process")
        return super().update_record(record_type, record_id, fields, expected_version=expected_version, timeout=timeout)


def request_fields(store, redemption_id):
    return store.get_record(RecordType.REDEMPTION_REQUEST, redemption_id).fields


def test_redemption_requiring_200_against_150_fails(store, config):
    add_redemption(store, "r1", reward_id="reward-200")

    with pytest.raises(InsufficientPointsError, match="Not enough points"):
        RedemptionProcessor(store, config).process("r1")

    assert card_points(store, "card-bob") == Decimal("150")
    assert request_fields(store, "r1")["is_approved"] is False


def test_redemption_deducts_approves_and_snapshots(store, config):
    add_redemption(store, "r1", reward_id="reward-50")

    result = RedemptionProcessor(store, config).process("r1")

    assert result.points_at_redemption == Decimal("150")
    assert result.total_points == Decimal("100")
    assert card_points(store, "card-bob") == Decimal("100")
    fields = request_fields(store, "r1")
    assert fields["is_approved"] is True
    assert fields["points_at_redemption"] == Decimal("150")


def test_redemption_can_spend_entire_balance(store, config):
    store.update_record(RecordType.LOYALTY_CARD, "card-bob", {"total_points": Decimal("200")})
    add_redemption(store, "r1", reward_id="reward-200")

    result = RedemptionProcessor(store, config).process("r1")

    assert result.total_points == Decimal("0")
    assert result.tier_evaluation.transition == TierTransition.DOWNGRADE
    assert card_tier(store, "card-bob") == "silver"


def test_redemption_without_active_card_is_an_error(store, config):
    add_redemption(store, "r1", customer_id="carol")

    with pytest.raises(LoyaltyCardNotFoundError, match="No loyalty card found"):
        RedemptionProcessor(store, config).process("r1")
    assert card_points(store, "card-carol-old") == Decimal("40")


def test_redemption_of_unknown_reward_is_an_error(store, config):
    add_redemption(store, "r1", reward_id="reward-missing")

    with pytest.raises(RecordNotFoundError):
        RedemptionProcessor(store, config).process("r1")
    assert card_points(store, "card-bob") == Decimal("150")


def test_request_without_reward_is_skipped(store, config):
    add_redemption(store, "r1", reward_id=None)

    assert RedemptionProcessor(store, config).process("r1") is None
    assert card_points(store, "card-bob") == Decimal("150")


def test_approved_request_is_not_redeemed_twice(store, config):
    add_redemption(store, "r1")
    processor = RedemptionProcessor(store, config)

    processor.process("r1")
    assert processor.process("r1") is None
    assert card_points(store, "card-bob") == Decimal("100")


def test_failed_approval_leaves_points_on_card(store, config):
    flaky = copy_into(store, FlakyApprovalStore())
    add_redemption(flaky, "r1")
    processor = RedemptionProcessor(flaky, config)

    with pytest.raises(PermanentDataAccessError):
        processor.process("r1")
    assert card_points(flaky, "card-bob") == Decimal("150")
    assert request_fields(flaky, "r1")["is_approved"] is False

    result = processor.process("r1")

    assert result.total_points == Decimal("100")
    assert card_points(flaky, "card-bob") == Decimal("100")
    assert request_fields(flaky, "r1")["is_approved"] is True


def test_failed_deduction_withdraws_approval(store, config):
    conflicting = copy_into(store, CardConflictingStore())
    add_redemption(conflicting, "r1")
    processor = RedemptionProcessor(conflicting, config.model_copy(update={"ledger_max_retries": 3, "ledger_retry_backoff_ms": 0}))

    with pytest.raises(LedgerConflictError):
        processor.process("r1")

    fields = request_fields(conflicting, "r1")
    assert fields["is_approved"] is False
    assert fields["points_at_redemption"] is None
    assert card_points(conflicting, "card-bob") == Decimal("150")

    conflicting.healed = True
    assert processor.process("r1").total_points == Decimal("100")


def test_simultaneous_events_for_one_request_redeem_once(store, config):
    lockstep = copy_into(store, LockstepReadStore(RecordType.REDEMPTION_REQUEST))
    add_redemption(lockstep, "r1")
    processor = RedemptionProcessor(lockstep, config)

    results, errors = run_together(lambda: processor.process("r1"), lambda: processor.process("r1"))

    assert not errors, f"Unexpected errors: {errors}"
    approved = [r for r in results if r is not None]
    assert len(approved) == 1
    assert approved[0].points_at_redemption == Decimal("150")
    assert card_points(lockstep, "card-bob") == Decimal("100")
