"""
Tests for points calculation
"""

from decimal import Decimal, localcontext

import pytest

from loyalty_engine.calculator import PointsCalculator
from loyalty_engine.config import EngineConfig
from loyalty_engine.exceptions import InvalidConfigurationError
from loyalty_engine.models import ProgramConfiguration


def make_rule(min_spend, points_per_unit):
    return ProgramConfiguration(
        id="rule", tier_id="silver", category_id="shoes", currency_id="usd",
        min_spend_amount=min_spend, points_per_unit=points_per_unit,
    )


def test_price_500_min_spend_100_rate_2_earns_10():
    calculator = PointsCalculator(EngineConfig())
    points = calculator.calculate(Decimal("500"), make_rule(100, Decimal("2")))
    assert points == Decimal("10"), f"Expected 10 points, got {points}"


def test_calculation_is_not_rounded_midway():
    calculator = PointsCalculator(EngineConfig())
    # 250 / 100 = 2.5, * 1.5 = 3.75; rounding 2.5 first would lose the half
    points = calculator.calculate(Decimal("250"), make_rule(100, Decimal("1.5")))
    assert points == Decimal("3.75")


def test_matches_formula_for_assorted_inputs():
    calculator = PointsCalculator(EngineConfig())
    cases = [
        (Decimal("99.99"), 10, Decimal("0.5")),
        (Decimal("1"), 1, Decimal("1")),
        (Decimal("1234.56"), 7, Decimal("3.25")),
    ]
    for price, min_spend, rate in cases:
        with localcontext() as ctx:
            ctx.prec = PointsCalculator.PRECISION
            expected = (price / Decimal(min_spend)) * rate
        assert calculator.calculate(price, make_rule(min_spend, rate)) == expected


def test_zero_min_spend_is_invalid_configuration():
    calculator = PointsCalculator(EngineConfig())
    with pytest.raises(InvalidConfigurationError, match="min spend"):
        calculator.calculate(Decimal("500"), make_rule(0, Decimal("2")))


def test_negative_min_spend_is_invalid_configuration():
    calculator = PointsCalculator(EngineConfig())
    with pytest.raises(InvalidConfigurationError):
        calculator.calculate(Decimal("500"), make_rule(-10, Decimal("2")))


def test_quantize_rounds_half_up_to_configured_precision():
    assert PointsCalculator(EngineConfig(points_precision=2)).quantize(Decimal("3.335")) == Decimal("3.34")
    assert PointsCalculator(EngineConfig(points_precision=4)).quantize(Decimal("10")) == Decimal("10.0000")
    assert PointsCalculator(EngineConfig(points_precision=0)).quantize(Decimal("2.5")) == Decimal("3")
