"""Batch job endpoints invoked by the external scheduler."""

import logging
from collections.abc import Generator
from datetime import timedelta

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.clock import Clock, utc_now
from app.config import Settings, get_settings
from app.database import get_db
from app.exceptions import ExternalAPIError
from app.services import market_data_service, metrics_service, reference_sync_service
from app.services.credential_cache import DatabaseCredentialCache
from app.services.yahoo_finance_client import QuoteProvider, YahooFinanceQuoteClient

logger = logging.getLogger(__name__)

router = APIRouter()

JOB_METHODS = ["GET", "POST"]


def get_clock() -> Clock:
    return utc_now


def get_http_client(
    settings: Settings = Depends(get_settings),
) -> Generator[httpx.Client, None, None]:
    """Per-request HTTP client for upstream calls."""
    client = httpx.Client(timeout=settings.http_timeout_seconds)
    try:
        yield client
    finally:
        client.close()


def get_quote_provider(
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> QuoteProvider:
    return YahooFinanceQuoteClient(
        DatabaseCredentialCache(db),
        http_client=http,
        clock=clock,
        credential_ttl=timedelta(days=settings.quote_credential_ttl_days),
    )


def _json(status_code: int, payload: dict) -> JSONResponse:
    return JSONResponse(content=payload, status_code=status_code)


def _server_error() -> JSONResponse:
    return _json(500, {"error": "Unexpected server error"})


@router.api_route("/fetch-prices-batch", methods=JOB_METHODS)
def fetch_prices_batch(
    db: Session = Depends(get_db),
    quote_provider: QuoteProvider = Depends(get_quote_provider),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> JSONResponse:
    """Refresh quotes for the next batch of due tickers."""
    try:
        result = market_data_service.refresh_prices(
            db,
            quote_provider,
            config=market_data_service.resolve_fetch_batch_config(settings),
            clock=clock,
        )
    except Exception:
        logger.exception("%s: unexpected error", market_data_service.JOB_NAME)
        return _server_error()

    if result.skipped:
        return _json(409, result.as_dict())
    if result.upstream_failed:
        return _json(502, result.as_dict())
    return _json(200, result.as_dict())


@router.api_route("/recalc-metrics-batch", methods=JOB_METHODS)
def recalc_metrics_batch(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> JSONResponse:
    """Recompute metrics for the next batch of stale portfolios."""
    try:
        result = metrics_service.recalculate_stale_metrics(
            db,
            config=metrics_service.resolve_metrics_batch_config(settings),
            clock=clock,
        )
    except Exception:
        logger.exception("%s: unexpected error", metrics_service.JOB_NAME)
        return _server_error()

    if result.skipped:
        return _json(409, result.as_dict())
    return _json(200, result.as_dict())


@router.api_route("/sync-reference-tickers", methods=JOB_METHODS)
def sync_reference_tickers(
    db: Session = Depends(get_db),
    http: httpx.Client = Depends(get_http_client),
    settings: Settings = Depends(get_settings),
    clock: Clock = Depends(get_clock),
) -> JSONResponse:
    """Refresh the NASDAQ/NYSE reference ticker catalog."""
    try:
        result = reference_sync_service.sync_reference_tickers(
            db, http, settings=settings, clock=clock
        )
    except ExternalAPIError as e:
        logger.error("%s: download failed: %s", reference_sync_service.JOB_NAME, e)
        return _json(502, {"error": str(e)})
    except Exception:
        logger.exception("%s: unexpected error", reference_sync_service.JOB_NAME)
        return _server_error()

    if result.skipped:
        return _json(409, result.as_dict())
    return _json(200, result.as_dict())
