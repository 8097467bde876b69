"""Price ingestion batch job: refresh quotes for due tickers via Yahoo Finance."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.clock import Clock, utc_now
from app.config import Settings, get_settings
from app.exceptions import ExternalAPIError
from app.models import TICKER_STATUS_ACTIVE, AssetQuote, AssetTicker
from app.services import staleness_service
from app.services.job_lease_service import job_lease
from app.services.yahoo_finance_client import QuoteProvider, RemoteQuote

logger = logging.getLogger(__name__)

JOB_NAME = "fetch-prices-batch"
PRICE_SOURCE = "yahoo_finance"
QUOTE_NOT_RETURNED = "Quote not returned"
QUOTE_NOT_PERSISTED = "Failed to persist quote"
QUOTE_REFRESH_FAILED = "Quote refresh failed"


@dataclass(frozen=True)
class FetchBatchConfig:
    batch_size: int
    min_fetch_interval_minutes: int
    error_backoff_minutes: int
    lease_ttl_minutes: int = 15


def resolve_fetch_batch_config(settings: Settings | None = None) -> FetchBatchConfig:
    """Build the job config from (already clamped) settings."""
    settings = settings or get_settings()
    return FetchBatchConfig(
        batch_size=settings.fetch_batch_size,
        min_fetch_interval_minutes=settings.fetch_min_fetch_interval_minutes,
        error_backoff_minutes=settings.fetch_error_backoff_minutes,
        lease_ttl_minutes=settings.job_lease_ttl_minutes,
    )


@dataclass
class PriceIngestionResult:
    """Counts reported by one run of the price ingestion job."""

    processed_tickers: int = 0
    updated_tickers: int = 0
    missing_tickers: int = 0
    failed_tickers: int = 0
    stale_portfolios: int = 0
    newly_stale_portfolios: int = 0
    upstream_error: str | None = None
    skipped: bool = False

    @property
    def upstream_failed(self) -> bool:
        return self.upstream_error is not None

    def as_dict(self) -> dict:
        if self.skipped:
            return {"skipped": True, "reason": "Job already running"}
        if self.upstream_failed:
            return {
                "error": self.upstream_error,
                "processed_tickers": self.processed_tickers,
            }
        return {
            "processed_tickers": self.processed_tickers,
            "updated_tickers": self.updated_tickers,
            "missing_tickers": self.missing_tickers,
            "failed_tickers": self.failed_tickers,
            "stale_portfolios": self.stale_portfolios,
            "newly_stale_portfolios": self.newly_stale_portfolios,
        }


def select_due_tickers(
    db: Session, config: FetchBatchConfig, now: datetime
) -> list[str]:
    """
    Pick the next tickers to refresh.

    Active, not backing off, and never fetched or fetched longer ago
    than the minimum interval. Oldest fetch first (never-fetched first)
    so every ticker gets its turn.
    """
    fetched_before = now - timedelta(minutes=config.min_fetch_interval_minutes)
    rows = (
        db.query(AssetTicker.ticker)
        .filter(
            AssetTicker.status == TICKER_STATUS_ACTIVE,
            or_(AssetTicker.retry_after.is_(None), AssetTicker.retry_after <= now),
            or_(
                AssetTicker.last_fetched_at.is_(None),
                AssetTicker.last_fetched_at < fetched_before,
            ),
        )
        .order_by(AssetTicker.last_fetched_at.asc().nulls_first(), AssetTicker.ticker)
        .limit(config.batch_size)
        .all()
    )
    return [r[0] for r in rows]


def partition_tickers(
    tickers: Iterable[str], quotes: Iterable[RemoteQuote]
) -> tuple[list[str], list[str]]:
    """Split tickers into (succeeded, missing) by case-insensitive symbol match."""
    returned = {quote.ticker.upper() for quote in quotes}
    succeeded: list[str] = []
    missing: list[str] = []
    for ticker in tickers:
        (succeeded if ticker.upper() in returned else missing).append(ticker)
    return succeeded, missing


def upsert_quote(db: Session, quote: RemoteQuote, fetched_at: datetime) -> AssetQuote:
    """Overwrite the single quote row for the ticker."""
    ticker = quote.ticker.upper()
    row = db.get(AssetQuote, ticker)
    if row is None:
        row = AssetQuote(ticker=ticker)
        db.add(row)
    row.currency = quote.currency
    row.last_price = quote.price
    row.price_source = PRICE_SOURCE
    row.last_price_at = quote.price_time
    row.fetched_at = fetched_at
    row.source_metadata = quote.metadata
    return row


def _update_tickers(db: Session, tickers: list[str], values: dict) -> None:
    if not tickers:
        return
    db.query(AssetTicker).filter(AssetTicker.ticker.in_(tickers)).update(
        values, synchronize_session=False
    )


def mark_tickers_fetched(db: Session, tickers: list[str], now: datetime) -> None:
    _update_tickers(
        db,
        tickers,
        {
            AssetTicker.last_fetched_at: now,
            AssetTicker.last_fetch_error: None,
            AssetTicker.retry_after: None,
            AssetTicker.updated_at: now,
        },
    )


def mark_tickers_errored(
    db: Session,
    tickers: list[str],
    now: datetime,
    backoff_minutes: int,
    reason: str,
) -> None:
    """Record a fetch failure and push the tickers' next attempt out."""
    _update_tickers(
        db,
        tickers,
        {
            AssetTicker.last_fetch_error: reason,
            AssetTicker.retry_after: now + timedelta(minutes=backoff_minutes),
            AssetTicker.updated_at: now,
        },
    )


def _persist_quotes(
    db: Session, quotes: list[RemoteQuote], fetched_at: datetime
) -> list[str]:
    """Upsert each quote in its own savepoint. Returns tickers that failed."""
    failed: list[str] = []
    seen: set[str] = set()
    for quote in quotes:
        ticker = quote.ticker.upper()
        if ticker in seen:
            continue
        seen.add(ticker)
        try:
            with db.begin_nested():
                upsert_quote(db, quote, fetched_at)
        except SQLAlchemyError:
            logger.exception("Failed to persist quote for %s", ticker)
            failed.append(ticker)
    return failed


def refresh_prices(
    db: Session,
    quote_provider: QuoteProvider,
    config: FetchBatchConfig | None = None,
    clock: Clock = utc_now,
) -> PriceIngestionResult:
    """
    Run one price ingestion batch.

    Partial failures are reported as counts. Only an outright failure of
    the quote fetch is reported as an upstream failure, after every
    selected ticker has been put into backoff.
    """
    config = config or resolve_fetch_batch_config()
    now = clock()

    with job_lease(
        db, JOB_NAME, now, timedelta(minutes=config.lease_ttl_minutes)
    ) as acquired:
        if not acquired:
            return PriceIngestionResult(skipped=True)
        return _run_batch(db, quote_provider, config, now)


def _back_off_batch(
    db: Session,
    tickers: list[str],
    config: FetchBatchConfig,
    now: datetime,
    reason: str,
) -> PriceIngestionResult:
    """Put the whole batch into backoff after the quote fetch failed outright."""
    mark_tickers_errored(db, tickers, now, config.error_backoff_minutes, reason)
    db.commit()
    return PriceIngestionResult(processed_tickers=len(tickers), upstream_error=reason)


def _run_batch(
    db: Session,
    quote_provider: QuoteProvider,
    config: FetchBatchConfig,
    now: datetime,
) -> PriceIngestionResult:
    tickers = select_due_tickers(db, config, now)
    if not tickers:
        return PriceIngestionResult()

    try:
        quotes = quote_provider.fetch_quotes(tickers).quotes
    except ExternalAPIError as e:
        reason = str(e) or QUOTE_REFRESH_FAILED
        logger.error("%s: quote provider failed: %s", JOB_NAME, reason)
        return _back_off_batch(db, tickers, config, now, reason)
    except Exception as e:
        reason = str(e) or QUOTE_REFRESH_FAILED
        logger.exception("%s: unexpected quote provider failure", JOB_NAME)
        return _back_off_batch(db, tickers, config, now, reason)

    requested = {t.upper() for t in tickers}
    quotes = [q for q in quotes if q.ticker.upper() in requested]
    succeeded, missing = partition_tickers(tickers, quotes)

    not_persisted = set(_persist_quotes(db, quotes, now))
    failed = [t for t in succeeded if t.upper() in not_persisted]
    succeeded = [t for t in succeeded if t.upper() not in not_persisted]

    mark_tickers_fetched(db, succeeded, now)
    mark_tickers_errored(
        db, missing, now, config.error_backoff_minutes, QUOTE_NOT_RETURNED
    )
    mark_tickers_errored(
        db, failed, now, config.error_backoff_minutes, QUOTE_NOT_PERSISTED
    )

    staleness = staleness_service.mark_portfolios_stale_for_tickers(
        db, succeeded, now, reason=staleness_service.PRICES_UPDATED
    )
    db.commit()

    result = PriceIngestionResult(
        processed_tickers=len(tickers),
        updated_tickers=len(succeeded),
        missing_tickers=len(missing),
        failed_tickers=len(failed),
        stale_portfolios=staleness.affected_portfolios,
        newly_stale_portfolios=staleness.newly_stale,
    )
    logger.info(
        "%s processed=%d updated=%d missing=%d failed=%d portfolios=%d",
        JOB_NAME,
        result.processed_tickers,
        result.updated_tickers,
        result.missing_tickers,
        result.failed_tickers,
        result.stale_portfolios,
    )
    return result
