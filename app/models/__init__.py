from app.models.base import Base
from app.models.job_lease import JobLease
from app.models.portfolio import Portfolio
from app.models.portfolio_metrics import PortfolioMetrics
from app.models.position import PortfolioPosition
from app.models.quote import AssetQuote
from app.models.reference_ticker import ReferenceTicker
from app.models.service_credential import ServiceCredential
from app.models.ticker import TICKER_STATUS_ACTIVE, AssetTicker

__all__ = [
    "Base",
    "Portfolio",
    "PortfolioPosition",
    "PortfolioMetrics",
    "AssetTicker",
    "AssetQuote",
    "ReferenceTicker",
    "ServiceCredential",
    "JobLease",
    "TICKER_STATUS_ACTIVE",
]
