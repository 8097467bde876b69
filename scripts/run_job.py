#!/usr/bin/env python
"""Run one batch job against the configured database and print its result."""

import json
import sys
from datetime import timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import httpx

from app.config import get_settings
from app.database import SessionLocal
from app.logging_config import configure_logging
from app.services import market_data_service, metrics_service, reference_sync_service
from app.services.credential_cache import DatabaseCredentialCache
from app.services.yahoo_finance_client import YahooFinanceQuoteClient

JOBS = {
    market_data_service.JOB_NAME: "Refresh asset quotes in batches",
    metrics_service.JOB_NAME: "Recompute metrics for stale portfolios",
    reference_sync_service.JOB_NAME: "Refresh NASDAQ/NYSE ticker catalog",
}


def usage() -> None:
    names = "\n".join(f"  - {name}: {desc}" for name, desc in JOBS.items())
    print(f"Usage: python scripts/run_job.py <job-name>\n\nAvailable jobs:\n{names}")


def run_job(name: str) -> dict:
    settings = get_settings()
    db = SessionLocal()
    try:
        with httpx.Client(timeout=settings.http_timeout_seconds) as http:
            if name == market_data_service.JOB_NAME:
                client = YahooFinanceQuoteClient(
                    DatabaseCredentialCache(db),
                    http_client=http,
                    credential_ttl=timedelta(days=settings.quote_credential_ttl_days),
                )
                result = market_data_service.refresh_prices(
                    db,
                    client,
                    config=market_data_service.resolve_fetch_batch_config(settings),
                )
            elif name == metrics_service.JOB_NAME:
                result = metrics_service.recalculate_stale_metrics(
                    db, config=metrics_service.resolve_metrics_batch_config(settings)
                )
            else:
                result = reference_sync_service.sync_reference_tickers(
                    db, http, settings=settings
                )
        return result.as_dict()
    finally:
        db.close()


if __name__ == "__main__":
    if len(sys.argv) != 2 or sys.argv[1] not in JOBS:
        usage()
        sys.exit(1)

    configure_logging()
    print(json.dumps(run_job(sys.argv[1]), indent=2))
