"""
Data models for the Loyalty Engine
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, Optional, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


class RecordType(str, Enum):
    """Record types exchanged with the host data store"""

    PRODUCT = "product"
    PRICE_LIST_ITEM = "price_list_item"
    LOYALTY_CARD_TYPE = "loyalty_card_type"
    LOYALTY_CARD = "loyalty_card"
    PROGRAM_CONFIGURATION = "loyalty_program_configuration"
    PURCHASE_ENTRY = "purchase_entry"
    REWARD = "reward"
    REDEMPTION_REQUEST = "redemption_request"
    ANNOTATION = "annotation"


class TierTransition(str, Enum):
    """Outcome of a tier evaluation"""

    UPGRADE = "UPGRADE"
    DOWNGRADE = "DOWNGRADE"
    UNCHANGED = "UNCHANGED"


def to_decimal(v: Any) -> Decimal:
    """Convert store values (int, float, str, Decimal) to Decimal; blanks become 0"""
    if v is None or v == "":
        return Decimal('0')
    if isinstance(v, Decimal):
        return v
    if isinstance(v, float) and v != v:
        # NaN coming out of a CSV cell
        return Decimal('0')
    try:
        return Decimal(str(v))
    except InvalidOperation:
        raise ValueError(f"Invalid decimal value: {v!r}")


class Record(BaseModel):
    """Generic record as returned by a DataAccessPort"""

    record_type: str
    id: str
    version: int = 1
    fields: Dict[str, Any] = Field(default_factory=dict)


class _RecordModel(BaseModel):
    """Base for domain models hydrated from store records"""

    model_config = ConfigDict(frozen=True)

    id: str
    created_on: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: Record):
        data = dict(record.fields)
        data["id"] = record.id
        if "version" in cls.model_fields:
            data["version"] = record.version
        # Blank store values fall back to model defaults
        known = {k: v for k, v in data.items() if k in cls.model_fields and v is not None}
        return cls(**known)


class Product(_RecordModel):
    """Product; products without a category never earn points"""

    name: str = ""
    category_id: Optional[str] = None


class PriceListEntry(_RecordModel):
    product_id: str
    currency_id: str
    amount: Decimal = Decimal('0')

    @field_validator('amount', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        return to_decimal(v)


class LoyaltyCardType(_RecordModel):
    """A tier: ranked by card_level, entered at minimum_points"""

    name: str = ""
    card_level: int
    minimum_points: Decimal = Decimal('0')

    @field_validator('minimum_points', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        return to_decimal(v)


class LoyaltyCard(_RecordModel):
    customer_id: str
    tier_id: Optional[str] = None
    total_points: Decimal = Decimal('0')
    status: str = "active"
    version: int = 1

    @field_validator('total_points', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        return to_decimal(v)


class ProgramConfiguration(_RecordModel):
    """Earning rule for a (tier, category, currency) triple"""

    tier_id: str
    category_id: str
    currency_id: str
    min_spend_amount: int
    points_per_unit: Decimal = Decimal('0')

    @field_validator('min_spend_amount', mode='before')
    @classmethod
    def parse_int(cls, v):
        if v is None or v == "":
            return 0
        return int(to_decimal(v))

    @field_validator('points_per_unit', mode='before')
    @classmethod
    def parse_decimal(cls, v):
        return to_decimal(v)


class PurchaseEntry(_RecordModel):
    customer_id: Optional[str] = None
    card_id: Optional[str] = None
    product_id: Optional[str] = None
    currency_id: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    points_earned: Optional[Decimal] = None

    @field_validator('purchase_price', 'points_earned', mode='before')
    @classmethod
    def parse_optional_decimal(cls, v):
        if v is None or v == "":
            return None
        return to_decimal(v)


class Reward(_RecordModel):
    name: str = ""
    points_required: int

    @field_validator('points_required', mode='before')
    @classmethod
    def parse_int(cls, v):
        return int(to_decimal(v))


class RedemptionRequest(_RecordModel):
    reward_id: Optional[str] = None
    customer_id: Optional[str] = None
    is_approved: bool = False
    points_at_redemption: Optional[Decimal] = None


class AuditNote(BaseModel):
    """Immutable description of a tier transition attached to a card"""

    model_config = ConfigDict(frozen=True)

    card_id: str
    transition: TierTransition
    from_tier_name: Optional[str] = None
    to_tier_name: str
    timestamp: datetime

    @property
    def subject(self) -> str:
        verb = "Upgraded" if self.transition == TierTransition.UPGRADE else "Downgraded"
        return f"Loyalty Card {verb}"

    @property
    def note_text(self) -> str:
        verb = "upgraded" if self.transition == TierTransition.UPGRADE else "downgraded"
        return f"Card {verb} to: {self.to_tier_name} on {self.timestamp.date().isoformat()}"

    def to_fields(self) -> Dict[str, Any]:
        return {
            "subject": self.subject,
            "note_text": self.note_text,
            "object_id": self.card_id,
            "object_type": RecordType.LOYALTY_CARD.value,
            "transition": self.transition.value,
            "from_tier_name": self.from_tier_name,
            "to_tier_name": self.to_tier_name,
            "created_on": self.timestamp,
        }


class TierEvaluation(BaseModel):
    """Result of evaluating a balance against the tier set"""

    current_tier: Optional[LoyaltyCardType] = None
    eligible_tier: Optional[LoyaltyCardType] = None
    total_points: Decimal
    transition: TierTransition = TierTransition.UNCHANGED

    @property
    def changed(self) -> bool:
        return self.transition != TierTransition.UNCHANGED


class PurchaseResult(BaseModel):
    """Outcome of a processed purchase"""

    purchase_id: str
    card_id: str
    purchase_price: Decimal
    points_earned: Decimal
    points_applied: Decimal
    total_points: Decimal
    tier_evaluation: Optional[TierEvaluation] = None


class RedemptionResult(BaseModel):
    """Outcome of an approved redemption"""

    redemption_id: str
    card_id: str
    points_required: int
    points_at_redemption: Decimal
    total_points: Decimal
    tier_evaluation: Optional[TierEvaluation] = None


class ProductLookup(BaseModel):
    """Dependent purchase fields derived from a product selection"""

    category_id: Optional[str] = None
    purchase_price: Optional[Decimal] = None
    points_earned: Optional[Decimal] = None
