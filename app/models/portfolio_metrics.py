from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.portfolio import Portfolio


class PortfolioMetrics(Base, TimestampMixin):
    """Derived analytics for a portfolio, with a staleness marker."""

    __tablename__ = "portfolio_metrics"

    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), primary_key=True
    )

    total_value: Mapped[Decimal] = mapped_column(Numeric(20, 6), default=Decimal("0"))
    total_cost_basis: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), default=Decimal("0")
    )
    unrealized_gain: Mapped[Decimal] = mapped_column(
        Numeric(20, 6), default=Decimal("0")
    )
    position_count: Mapped[int] = mapped_column(Integer, default=0)
    positions_missing_quotes: Mapped[int] = mapped_column(Integer, default=0)
    as_of: Mapped[datetime | None] = mapped_column(DateTime)

    # Staleness queue
    stale: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    stale_reason: Mapped[str | None] = mapped_column(String(50))

    # Relationships
    portfolio: Mapped["Portfolio"] = relationship(back_populates="metrics")
