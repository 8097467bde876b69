from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin

TICKER_STATUS_ACTIVE = "active"


class AssetTicker(Base, TimestampMixin):
    """Fetch bookkeeping for a symbol referenced by at least one holding."""

    __tablename__ = "asset_tickers"

    ticker: Mapped[str] = mapped_column(String(20), primary_key=True)
    status: Mapped[str] = mapped_column(
        String(20), default=TICKER_STATUS_ACTIVE, index=True
    )

    last_fetched_at: Mapped[datetime | None] = mapped_column(DateTime, index=True)
    last_fetch_error: Mapped[str | None] = mapped_column(Text)
    retry_after: Mapped[datetime | None] = mapped_column(DateTime)
