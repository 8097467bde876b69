"""Calculation modules for portfolio metrics."""

from app.calculations.portfolio_calcs import (
    PortfolioMetricsSnapshot,
    calculate_portfolio_metrics,
    round_metric,
)

__all__ = [
    "PortfolioMetricsSnapshot",
    "calculate_portfolio_metrics",
    "round_metric",
]
