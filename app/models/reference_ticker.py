from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class ReferenceTicker(Base, TimestampMixin):
    """Catalog entry from the exchange symbol directories."""

    __tablename__ = "reference_tickers"

    ticker: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    exchange: Mapped[str] = mapped_column(String(50), index=True)
    asset_type: Mapped[str | None] = mapped_column(String(20))  # ETF, EQUITY
    is_etf: Mapped[bool] = mapped_column(Boolean, default=False)
    source: Mapped[str] = mapped_column(String(50), default="nasdaq_directory")

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    last_seen_at: Mapped[datetime] = mapped_column(DateTime, index=True)
