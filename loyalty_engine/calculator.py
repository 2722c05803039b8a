"""
Points calculation for purchases
"""

from decimal import Decimal, ROUND_HALF_UP, localcontext
from typing import Optional
from loguru import logger

from .config import EngineConfig, get_config
from .models import ProgramConfiguration
from .exceptions import InvalidConfigurationError


class PointsCalculator:
    """
    Derives points earned from a purchase price and an earning rule:

        points = (purchase_price / min_spend_amount) * points_per_unit

    The calculation is carried out without intermediate rounding. Stored values
    are rounded once, by quantize(), to the configured points precision.
    """

    # Working precision for the unrounded calculation
    PRECISION = 38

    def __init__(self, config: Optional[EngineConfig] = None, diagnostics=None):
        self.config = config or get_config()
        self.logger = diagnostics or logger

    def calculate(self, purchase_price: Decimal, configuration: ProgramConfiguration) -> Decimal:
        """
        Compute points earned

        Args:
            purchase_price: Positive purchase price
            configuration: Earning rule matched for the purchase

        Returns:
            Unrounded points earned
        """
        if configuration.min_spend_amount <= 0:
            raise InvalidConfigurationError(
                f"Program configuration {configuration.id} has min spend amount "
                f"{configuration.min_spend_amount}; it must be positive"
            )

        with localcontext() as ctx:
            ctx.prec = self.PRECISION
            points = (Decimal(purchase_price) / Decimal(configuration.min_spend_amount)) * configuration.points_per_unit

        self.logger.debug(
            f"Points earned = ({purchase_price} / {configuration.min_spend_amount}) "
            f"* {configuration.points_per_unit} = {points}"
        )
        return points

    def quantize(self, points: Decimal) -> Decimal:
        """Round points for storage (ROUND_HALF_UP at points_precision places)"""
        exponent = Decimal(1).scaleb(-self.config.points_precision)
        return points.quantize(exponent, rounding=ROUND_HALF_UP)
