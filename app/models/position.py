from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.portfolio import Portfolio


class PortfolioPosition(Base, TimestampMixin):
    """Current holding of one ticker in a portfolio."""

    __tablename__ = "portfolio_positions"
    __table_args__ = (
        UniqueConstraint("portfolio_id", "ticker"),
        CheckConstraint("quantity > 0", name="ck_portfolio_positions_quantity_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(
        ForeignKey("portfolios.id", ondelete="CASCADE"), index=True
    )
    ticker: Mapped[str] = mapped_column(
        String(20), ForeignKey("asset_tickers.ticker"), index=True
    )

    quantity: Mapped[Decimal] = mapped_column(Numeric(20, 6))
    cost_basis: Mapped[Decimal | None] = mapped_column(Numeric(20, 6))  # per share
    notes: Mapped[str | None] = mapped_column(Text)

    # Relationships
    portfolio: Mapped["Portfolio"] = relationship(back_populates="positions")
