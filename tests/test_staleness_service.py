"""Tests for staleness propagation across the write paths."""

from datetime import timedelta
from decimal import Decimal

from app.models import PortfolioMetrics
from app.services import metrics_service, position_service, staleness_service
from app.services.metrics_service import MetricsBatchConfig


def metrics_for(db, portfolio):
    return db.get(PortfolioMetrics, portfolio.id)


class TestMarkPortfolioStale:
    def test_marks_fresh_row(self, db_session, clock):
        portfolio = position_service.create_portfolio(db_session, "u", "P", now=clock.now)
        row = metrics_for(db_session, portfolio)
        row.stale = False
        row.stale_reason = None
        db_session.commit()
        later = clock.now + timedelta(hours=1)

        changed = staleness_service.mark_portfolio_stale(
            db_session, portfolio.id, staleness_service.PRICES_UPDATED, later
        )

        assert changed is True
        row = metrics_for(db_session, portfolio)
        assert row.stale is True
        assert row.stale_reason == staleness_service.PRICES_UPDATED
        assert row.updated_at == later

    def test_already_stale_row_is_unchanged(self, db_session, clock):
        portfolio = position_service.create_portfolio(db_session, "u", "P", now=clock.now)

        changed = staleness_service.mark_portfolio_stale(
            db_session,
            portfolio.id,
            staleness_service.PRICES_UPDATED,
            clock.now + timedelta(hours=1),
        )

        assert changed is False
        row = metrics_for(db_session, portfolio)
        assert row.stale_reason == staleness_service.PORTFOLIO_INITIALIZED
        assert row.updated_at == clock.now

    def test_creates_missing_row(self, db_session, clock):
        portfolio = position_service.create_portfolio(db_session, "u", "P", now=clock.now)
        db_session.delete(metrics_for(db_session, portfolio))
        db_session.commit()

        changed = staleness_service.mark_portfolio_stale(
            db_session, portfolio.id, staleness_service.POSITIONS_CHANGED, clock.now
        )

        assert changed is True
        assert metrics_for(db_session, portfolio).stale is True


class TestPortfoliosHolding:
    def test_distinct_case_insensitive(self, db_session, clock):
        a = position_service.create_portfolio(db_session, "u", "A", now=clock.now)
        b = position_service.create_portfolio(db_session, "u", "B", now=clock.now)
        position_service.create_portfolio(db_session, "u", "C", now=clock.now)
        for portfolio, ticker in [(a, "AAPL"), (a, "MSFT"), (b, "MSFT")]:
            position_service.upsert_position(
                db_session, portfolio.id, ticker, Decimal("1"), now=clock.now
            )

        ids = staleness_service.portfolios_holding(db_session, ["aapl", "msft"])

        assert ids == [a.id, b.id]

    def test_no_tickers(self, db_session):
        assert staleness_service.portfolios_holding(db_session, []) == []


def test_metrics_lifecycle(db_session, clock):
    """Creation, recompute, holdings change and price change drive the stale flag."""
    config = MetricsBatchConfig(batch_size=50)
    portfolio = position_service.create_portfolio(db_session, "u", "Main", now=clock.now)
    row = metrics_for(db_session, portfolio)
    assert row.stale is True
    assert row.stale_reason == staleness_service.PORTFOLIO_INITIALIZED

    metrics_service.recalculate_stale_metrics(db_session, config=config, clock=clock)
    assert metrics_for(db_session, portfolio).stale is False

    position_service.upsert_position(
        db_session, portfolio.id, "AAPL", Decimal("2"), Decimal("100"), now=clock.now
    )
    row = metrics_for(db_session, portfolio)
    assert row.stale is True
    assert row.stale_reason == staleness_service.POSITIONS_CHANGED

    metrics_service.recalculate_stale_metrics(db_session, config=config, clock=clock)
    assert metrics_for(db_session, portfolio).position_count == 1

    result = staleness_service.mark_portfolios_stale_for_tickers(
        db_session, ["AAPL"], clock.now
    )
    db_session.commit()
    assert result.affected_portfolios == 1
    assert result.newly_stale == 1
    assert metrics_for(db_session, portfolio).stale_reason == (
        staleness_service.PRICES_UPDATED
    )

    metrics_service.recalculate_stale_metrics(db_session, config=config, clock=clock)
    position_service.delete_position(db_session, portfolio.id, "aapl", now=clock.now)
    row = metrics_for(db_session, portfolio)
    assert row.stale is True
    assert row.stale_reason == staleness_service.POSITIONS_CHANGED

    metrics_service.recalculate_stale_metrics(db_session, config=config, clock=clock)
    assert metrics_for(db_session, portfolio).position_count == 0
