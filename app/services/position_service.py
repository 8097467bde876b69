"""Holdings write path: portfolios, positions and their staleness side effects."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy.orm import Session

from app.clock import utc_now
from app.exceptions import NotFoundError, ValidationError
from app.models import AssetTicker, Portfolio, PortfolioPosition
from app.services import staleness_service


def normalize_ticker(ticker: str) -> str:
    """Uppercase and strip a ticker symbol, rejecting empty input."""
    symbol = (ticker or "").strip().upper()
    if not symbol:
        raise ValidationError("Ticker is required", field="ticker")
    return symbol


def get_portfolio_by_id(db: Session, portfolio_id: int) -> Portfolio | None:
    """Get a single portfolio by ID."""
    return db.query(Portfolio).filter(Portfolio.id == portfolio_id).first()


def get_positions(db: Session, portfolio_id: int) -> list[PortfolioPosition]:
    """Get all positions for a portfolio, ordered by ticker."""
    return (
        db.query(PortfolioPosition)
        .filter(PortfolioPosition.portfolio_id == portfolio_id)
        .order_by(PortfolioPosition.ticker)
        .all()
    )


def ensure_asset_ticker(db: Session, ticker: str) -> AssetTicker:
    """Get the ticker's bookkeeping row, creating an active one on first reference."""
    row = db.get(AssetTicker, ticker)
    if row is None:
        row = AssetTicker(ticker=ticker)
        db.add(row)
        db.flush()
    return row


def create_portfolio(
    db: Session,
    owner_id: str,
    name: str,
    benchmark_ticker: str | None = None,
    now: datetime | None = None,
) -> Portfolio:
    """Create a portfolio together with its (stale) metrics row."""
    if not name or not name.strip():
        raise ValidationError("Portfolio name is required", field="name")
    portfolio = Portfolio(
        owner_id=owner_id,
        name=name.strip(),
        benchmark_ticker=benchmark_ticker.upper() if benchmark_ticker else None,
    )
    db.add(portfolio)
    db.flush()
    staleness_service.ensure_metrics_row(db, portfolio.id, now or utc_now())
    db.commit()
    db.refresh(portfolio)
    return portfolio


def upsert_position(
    db: Session,
    portfolio_id: int,
    ticker: str,
    quantity: Decimal,
    cost_basis: Decimal | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> PortfolioPosition:
    """
    Insert or update the portfolio's position in ticker.

    The ticker is created implicitly and the portfolio's metrics are
    marked stale (positions_changed).
    """
    symbol = normalize_ticker(ticker)
    if quantity is None or quantity <= 0:
        raise ValidationError("Quantity must be greater than zero", field="quantity")
    if cost_basis is not None and cost_basis < 0:
        raise ValidationError("Cost basis cannot be negative", field="cost_basis")
    if get_portfolio_by_id(db, portfolio_id) is None:
        raise NotFoundError("Portfolio", portfolio_id)

    ensure_asset_ticker(db, symbol)

    position = (
        db.query(PortfolioPosition)
        .filter(
            PortfolioPosition.portfolio_id == portfolio_id,
            PortfolioPosition.ticker == symbol,
        )
        .first()
    )
    if not position:
        position = PortfolioPosition(portfolio_id=portfolio_id, ticker=symbol)
        db.add(position)
    position.quantity = quantity
    position.cost_basis = cost_basis
    position.notes = notes

    staleness_service.mark_portfolio_stale(
        db, portfolio_id, staleness_service.POSITIONS_CHANGED, now or utc_now()
    )
    db.commit()
    db.refresh(position)
    return position


def delete_position(
    db: Session, portfolio_id: int, ticker: str, now: datetime | None = None
) -> None:
    """Remove a position and mark the portfolio's metrics stale."""
    symbol = normalize_ticker(ticker)
    position = (
        db.query(PortfolioPosition)
        .filter(
            PortfolioPosition.portfolio_id == portfolio_id,
            PortfolioPosition.ticker == symbol,
        )
        .first()
    )
    if not position:
        raise NotFoundError("Position", f"{portfolio_id}:{symbol}")
    db.delete(position)
    staleness_service.mark_portfolio_stale(
        db, portfolio_id, staleness_service.POSITIONS_CHANGED, now or utc_now()
    )
    db.commit()
