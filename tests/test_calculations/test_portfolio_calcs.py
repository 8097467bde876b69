"""Tests for portfolio metric calculations."""

from decimal import Decimal
from unittest.mock import MagicMock

from app.calculations import portfolio_calcs


def make_position(ticker, quantity, cost_basis):
    pos = MagicMock()
    pos.ticker = ticker
    pos.quantity = Decimal(str(quantity))
    pos.cost_basis = None if cost_basis is None else Decimal(str(cost_basis))
    return pos


class TestCalculatePortfolioMetrics:
    def test_mixed_positions_with_missing_quote(self):
        positions = [
            make_position("AAPL", 2, 100),
            make_position("MSFT", 3, 150),
            make_position("GOOG", 1, None),
        ]
        prices = {"AAPL": Decimal("200"), "MSFT": Decimal("120")}

        result = portfolio_calcs.calculate_portfolio_metrics(positions, prices)

        assert result.total_value == Decimal("760.000000")
        assert result.total_cost_basis == Decimal("650.000000")
        assert result.unrealized_gain == Decimal("110.000000")
        assert result.position_count == 3
        assert result.positions_missing_quotes == 1

    def test_missing_quote_still_counts_cost(self):
        positions = [make_position("TSLA", 4, 50)]

        result = portfolio_calcs.calculate_portfolio_metrics(positions, {})

        assert result.total_value == Decimal("0")
        assert result.total_cost_basis == Decimal("200")
        assert result.unrealized_gain == Decimal("-200")
        assert result.positions_missing_quotes == 1

    def test_null_price_counts_as_missing(self):
        positions = [make_position("AAPL", 1, 10)]

        result = portfolio_calcs.calculate_portfolio_metrics(positions, {"AAPL": None})

        assert result.positions_missing_quotes == 1
        assert result.total_value == Decimal("0")

    def test_price_lookup_is_case_insensitive(self):
        positions = [make_position("aapl", 1, 10)]

        result = portfolio_calcs.calculate_portfolio_metrics(
            positions, {"AAPL": Decimal("12")}
        )

        assert result.total_value == Decimal("12")
        assert result.positions_missing_quotes == 0

    def test_no_positions(self):
        result = portfolio_calcs.calculate_portfolio_metrics([], {})

        assert result.total_value == Decimal("0")
        assert result.position_count == 0
        assert result.positions_missing_quotes == 0

    def test_totals_rounded_to_six_places(self):
        positions = [make_position("FRAC", "0.3333333", "1.0000001")]

        result = portfolio_calcs.calculate_portfolio_metrics(
            positions, {"FRAC": Decimal("3")}
        )

        # 0.3333333 * 3 = 0.9999999 -> 1.000000
        assert result.total_value == Decimal("1.000000")
        assert result.total_value.as_tuple().exponent == -6
        assert result.total_cost_basis.as_tuple().exponent == -6


class TestRoundMetric:
    def test_rounds_half_up(self):
        assert portfolio_calcs.round_metric(Decimal("1.0000005")) == Decimal("1.000001")

    def test_keeps_exact_values(self):
        assert portfolio_calcs.round_metric(Decimal("760")) == Decimal("760.000000")
