"""Metrics recomputation batch job for stale portfolios."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.orm import Session

from app.calculations import PortfolioMetricsSnapshot, calculate_portfolio_metrics
from app.clock import Clock, utc_now
from app.config import Settings, get_settings
from app.models import AssetQuote, PortfolioMetrics, PortfolioPosition
from app.services.job_lease_service import job_lease

logger = logging.getLogger(__name__)

JOB_NAME = "recalc-metrics-batch"


@dataclass(frozen=True)
class MetricsBatchConfig:
    batch_size: int
    lease_ttl_minutes: int = 15


def resolve_metrics_batch_config(settings: Settings | None = None) -> MetricsBatchConfig:
    settings = settings or get_settings()
    return MetricsBatchConfig(
        batch_size=settings.metrics_batch_size,
        lease_ttl_minutes=settings.job_lease_ttl_minutes,
    )


@dataclass
class MetricsRecalcResult:
    """Counts reported by one run of the metrics job."""

    processed_portfolios: int = 0
    recalculated: int = 0
    failed: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        if self.skipped:
            return {"skipped": True, "reason": "Job already running"}
        if self.processed_portfolios == 0:
            return {"processed_portfolios": 0, "message": "No stale portfolios"}
        return {
            "processed_portfolios": self.processed_portfolios,
            "recalculated": self.recalculated,
            "failed": self.failed,
        }


def select_stale_portfolios(db: Session, batch_size: int) -> list[int]:
    """Stale portfolio ids, least recently updated first."""
    rows = (
        db.query(PortfolioMetrics.portfolio_id)
        .filter(PortfolioMetrics.stale.is_(True))
        .order_by(
            PortfolioMetrics.updated_at.asc().nulls_first(),
            PortfolioMetrics.portfolio_id,
        )
        .limit(batch_size)
        .all()
    )
    return [r[0] for r in rows]


def load_quote_prices(db: Session, tickers: list[str]) -> dict[str, Decimal | None]:
    """Latest price per ticker for the given tickers."""
    if not tickers:
        return {}
    rows = (
        db.query(AssetQuote.ticker, AssetQuote.last_price)
        .filter(AssetQuote.ticker.in_(tickers))
        .all()
    )
    return {ticker.upper(): price for ticker, price in rows}


def persist_metrics(
    db: Session,
    portfolio_id: int,
    metrics: PortfolioMetricsSnapshot,
    as_of: datetime,
) -> PortfolioMetrics:
    """Upsert the portfolio's metrics row and clear its staleness."""
    row = db.get(PortfolioMetrics, portfolio_id)
    if row is None:
        row = PortfolioMetrics(portfolio_id=portfolio_id)
        db.add(row)
    row.total_value = metrics.total_value
    row.total_cost_basis = metrics.total_cost_basis
    row.unrealized_gain = metrics.unrealized_gain
    row.position_count = metrics.position_count
    row.positions_missing_quotes = metrics.positions_missing_quotes
    row.as_of = as_of
    row.stale = False
    row.stale_reason = None
    row.updated_at = as_of
    return row


def recompute_portfolio(
    db: Session, portfolio_id: int, as_of: datetime
) -> PortfolioMetricsSnapshot:
    """Recompute and stage one portfolio's metrics. Caller commits."""
    positions = (
        db.query(PortfolioPosition)
        .filter(PortfolioPosition.portfolio_id == portfolio_id)
        .all()
    )
    tickers = sorted({p.ticker.upper() for p in positions})
    prices = load_quote_prices(db, tickers)
    metrics = calculate_portfolio_metrics(positions, prices)
    persist_metrics(db, portfolio_id, metrics, as_of)
    return metrics


def recalculate_stale_metrics(
    db: Session,
    config: MetricsBatchConfig | None = None,
    clock: Clock = utc_now,
) -> MetricsRecalcResult:
    """
    Run one metrics batch.

    Each portfolio is committed on its own. A portfolio that fails is
    rolled back and stays stale, so the next run picks it up again.
    """
    config = config or resolve_metrics_batch_config()
    as_of = clock()

    with job_lease(
        db, JOB_NAME, as_of, timedelta(minutes=config.lease_ttl_minutes)
    ) as acquired:
        if not acquired:
            return MetricsRecalcResult(skipped=True)

        batch = select_stale_portfolios(db, config.batch_size)
        if not batch:
            return MetricsRecalcResult()

        result = MetricsRecalcResult(processed_portfolios=len(batch))
        for portfolio_id in batch:
            try:
                recompute_portfolio(db, portfolio_id, as_of)
                db.commit()
                result.recalculated += 1
            except Exception:
                db.rollback()
                result.failed += 1
                logger.exception("%s: portfolio %s failed", JOB_NAME, portfolio_id)

        logger.info(
            "%s processed=%d successes=%d failures=%d",
            JOB_NAME,
            result.processed_portfolios,
            result.recalculated,
            result.failed,
        )
        return result
