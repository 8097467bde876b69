from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class AssetQuote(Base, TimestampMixin):
    """Latest known price for a ticker. One row per ticker, overwritten on refresh."""

    __tablename__ = "asset_quotes"

    ticker: Mapped[str] = mapped_column(
        String(20), ForeignKey("asset_tickers.ticker"), primary_key=True
    )
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    last_price: Mapped[Decimal] = mapped_column(Numeric(20, 6))
    price_source: Mapped[str] = mapped_column(String(50), default="yahoo_finance")
    last_price_at: Mapped[datetime] = mapped_column(DateTime)
    fetched_at: Mapped[datetime] = mapped_column(DateTime)

    # Exchange, market state, ... as reported by the source
    source_metadata: Mapped[dict | None] = mapped_column(JSON, nullable=True)
