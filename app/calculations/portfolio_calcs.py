"""Pure calculation functions for portfolio metrics."""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from app.models import PortfolioPosition

# Matches the Numeric(20, 6) storage columns
METRIC_PRECISION = Decimal("0.000001")


@dataclass(frozen=True)
class PortfolioMetricsSnapshot:
    """Derived totals for one portfolio."""

    total_value: Decimal
    total_cost_basis: Decimal
    unrealized_gain: Decimal
    position_count: int
    positions_missing_quotes: int


def to_decimal(value) -> Decimal:
    """Convert a numeric value to Decimal, treating None and garbage as zero."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        result = Decimal(str(value))
    except ArithmeticError:
        return Decimal("0")
    return result if result.is_finite() else Decimal("0")


def round_metric(value: Decimal) -> Decimal:
    """Round to 6 fractional digits."""
    return value.quantize(METRIC_PRECISION, rounding=ROUND_HALF_UP)


def calculate_portfolio_metrics(
    positions: Iterable["PortfolioPosition"],
    prices: Mapping[str, Decimal | None],
) -> PortfolioMetricsSnapshot:
    """
    Compute value, cost and unrealized gain for a set of positions.

    A position without a price contributes nothing to total value and
    is counted in positions_missing_quotes; its cost basis still counts
    toward total cost. A missing per-share cost basis counts as zero.
    """
    price_map = {ticker.upper(): price for ticker, price in prices.items()}

    total_value = Decimal("0")
    total_cost = Decimal("0")
    missing_quotes = 0
    count = 0

    for position in positions:
        count += 1
        quantity = to_decimal(position.quantity)
        cost_per_share = to_decimal(position.cost_basis)

        price = price_map.get(position.ticker.upper())
        if price is None:
            missing_quotes += 1
        else:
            total_value += quantity * to_decimal(price)
        total_cost += quantity * cost_per_share

    return PortfolioMetricsSnapshot(
        total_value=round_metric(total_value),
        total_cost_basis=round_metric(total_cost),
        unrealized_gain=round_metric(total_value - total_cost),
        position_count=count,
        positions_missing_quotes=missing_quotes,
    )
