from typing import TYPE_CHECKING

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from app.models.portfolio_metrics import PortfolioMetrics
    from app.models.position import PortfolioPosition


class Portfolio(Base, TimestampMixin):
    """A named collection of holdings owned by a user."""

    __tablename__ = "portfolios"

    id: Mapped[int] = mapped_column(primary_key=True)
    # Identity lives in the external auth provider
    owner_id: Mapped[str] = mapped_column(String(64), index=True)
    name: Mapped[str] = mapped_column(String(255))
    benchmark_ticker: Mapped[str | None] = mapped_column(String(20))

    # Relationships
    positions: Mapped[list["PortfolioPosition"]] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )
    metrics: Mapped["PortfolioMetrics | None"] = relationship(
        back_populates="portfolio", cascade="all, delete-orphan"
    )
