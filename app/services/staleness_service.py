"""Staleness propagation for portfolio metrics.

Every write path that changes a metrics input calls into this module
explicitly; nothing is marked stale behind the caller's back. Functions
here add/modify rows but never commit.
"""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from app.models import PortfolioMetrics, PortfolioPosition

PORTFOLIO_INITIALIZED = "portfolio_initialized"
POSITIONS_CHANGED = "positions_changed"
PRICES_UPDATED = "prices_updated"


@dataclass
class StalenessResult:
    """Outcome of a staleness propagation pass."""

    affected_portfolios: int
    newly_stale: int


def ensure_metrics_row(db: Session, portfolio_id: int, now: datetime) -> PortfolioMetrics:
    """Create the portfolio's metrics row (stale) if it does not exist yet."""
    row = db.get(PortfolioMetrics, portfolio_id)
    if row is None:
        row = PortfolioMetrics(
            portfolio_id=portfolio_id,
            stale=True,
            stale_reason=PORTFOLIO_INITIALIZED,
            updated_at=now,
        )
        db.add(row)
        db.flush()
    return row


def mark_portfolio_stale(
    db: Session, portfolio_id: int, reason: str, now: datetime
) -> bool:
    """
    Flag a portfolio's metrics for recomputation.

    A row that is already stale is left untouched so its place in the
    recompute queue (ordered by updated_at) is kept.

    Returns:
        True if the row went from fresh (or absent) to stale
    """
    row = db.get(PortfolioMetrics, portfolio_id)
    if row is None:
        db.add(
            PortfolioMetrics(
                portfolio_id=portfolio_id,
                stale=True,
                stale_reason=reason,
                updated_at=now,
            )
        )
        db.flush()
        return True
    if row.stale:
        return False
    row.stale = True
    row.stale_reason = reason
    row.updated_at = now
    return True


def portfolios_holding(db: Session, tickers: list[str]) -> list[int]:
    """Distinct ids of portfolios with a position in any of the tickers."""
    if not tickers:
        return []
    normalized = sorted({t.upper() for t in tickers})
    rows = (
        db.query(PortfolioPosition.portfolio_id)
        .filter(PortfolioPosition.ticker.in_(normalized))
        .distinct()
        .order_by(PortfolioPosition.portfolio_id)
        .all()
    )
    return [r[0] for r in rows]


def mark_portfolios_stale_for_tickers(
    db: Session,
    tickers: list[str],
    now: datetime,
    reason: str = PRICES_UPDATED,
) -> StalenessResult:
    """Mark every portfolio holding one of the tickers as stale."""
    portfolio_ids = portfolios_holding(db, tickers)
    newly_stale = 0
    for portfolio_id in portfolio_ids:
        if mark_portfolio_stale(db, portfolio_id, reason, now):
            newly_stale += 1
    return StalenessResult(
        affected_portfolios=len(portfolio_ids), newly_stale=newly_stale
    )
