"""Reference catalog sync from the NASDAQ Trader symbol directories."""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from app.clock import Clock, utc_now
from app.config import Settings, get_settings
from app.exceptions import ExternalAPIError
from app.models import ReferenceTicker
from app.services.job_lease_service import job_lease

logger = logging.getLogger(__name__)

JOB_NAME = "sync-reference-tickers"
API_NAME = "NASDAQ Trader"
UPSERT_BATCH_SIZE = 500

NASDAQ_SOURCE = "nasdaq_directory"
OTHERLISTED_SOURCE = "otherlisted_directory"

OTHER_EXCHANGE_MAP = {
    "A": "NYSE MKT",
    "B": "NASDAQ BX",
    "N": "NYSE",
    "P": "NYSE ARCA",
    "Z": "Cboe BZX",
    "V": "IEX",
}


@dataclass(frozen=True)
class DirectoryEntry:
    """One parsed directory line."""

    ticker: str
    name: str
    exchange: str
    asset_type: str | None
    is_etf: bool
    source: str


@dataclass
class ReferenceSyncResult:
    nasdaq_entries: int = 0
    other_entries: int = 0
    upserts: int = 0
    deactivated: int = 0
    skipped: bool = False

    def as_dict(self) -> dict:
        if self.skipped:
            return {"skipped": True, "reason": "Job already running"}
        return {
            "fetched": {"nasdaq": self.nasdaq_entries, "other": self.other_entries},
            "upserts": self.upserts,
            "deactivated": self.deactivated,
        }


def parse_pipe_file(text: str) -> list[list[str]]:
    """Split a pipe-delimited directory into rows, dropping blanks and the footer."""
    rows = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("File Creation Time"):
            continue
        rows.append(line.split("|"))
    return rows


def _column(row: list[str], index: int) -> str:
    return row[index].strip() if index < len(row) else ""


def _asset_type(etf_flag: str) -> str:
    return "ETF" if etf_flag == "Y" else "EQUITY"


def parse_nasdaq_directory(text: str) -> list[DirectoryEntry]:
    """
    Parse nasdaqlisted.txt.

    Columns: Symbol|Security Name|Market Category|Test Issue|
    Financial Status|Round Lot Size|ETF|NextShares
    """
    entries = []
    for row in parse_pipe_file(text):
        symbol = _column(row, 0)
        if not symbol or symbol == "Symbol":
            continue
        if _column(row, 3) == "Y" or _column(row, 7) == "Y":
            continue

        ticker = symbol.upper()
        etf_flag = _column(row, 6)
        entries.append(
            DirectoryEntry(
                ticker=ticker,
                name=_column(row, 1) or ticker,
                exchange="NASDAQ",
                asset_type=_asset_type(etf_flag),
                is_etf=etf_flag == "Y",
                source=NASDAQ_SOURCE,
            )
        )
    return entries


def map_other_exchange(code: str | None) -> str:
    """Map a one-letter exchange code to its name; unknown codes pass through."""
    if not code:
        return "UNKNOWN"
    return OTHER_EXCHANGE_MAP.get(code, code)


def parse_other_listed_directory(text: str) -> list[DirectoryEntry]:
    """
    Parse otherlisted.txt.

    Columns: ACT Symbol|Security Name|Exchange|CQS Symbol|ETF|
    Round Lot Size|Test Issue|NASDAQ Symbol
    """
    entries = []
    for row in parse_pipe_file(text):
        act_symbol = _column(row, 0)
        if act_symbol == "ACT Symbol":
            continue
        if _column(row, 6) == "Y":
            continue

        ticker = (act_symbol or _column(row, 3) or _column(row, 7)).upper()
        if not ticker:
            continue

        etf_flag = _column(row, 4)
        entries.append(
            DirectoryEntry(
                ticker=ticker,
                name=_column(row, 1) or ticker,
                exchange=map_other_exchange(_column(row, 2)),
                asset_type=_asset_type(etf_flag),
                is_etf=etf_flag == "Y",
                source=OTHERLISTED_SOURCE,
            )
        )
    return entries


def merge_directory_entries(*lists: list[DirectoryEntry]) -> list[DirectoryEntry]:
    """Merge lists in priority order; the first occurrence of a ticker wins."""
    merged: dict[str, DirectoryEntry] = {}
    for entries in lists:
        for entry in entries:
            merged.setdefault(entry.ticker, entry)
    return list(merged.values())


def download_directory(http: httpx.Client, url: str) -> str:
    try:
        response = http.get(url)
    except httpx.HTTPError as e:
        raise ExternalAPIError(f"failed to download {url}: {e}", API_NAME) from e
    if not response.is_success:
        raise ExternalAPIError(
            f"failed to download {url} (status {response.status_code})",
            API_NAME,
            status_code=response.status_code,
        )
    return response.text


def upsert_reference_tickers(
    db: Session, entries: list[DirectoryEntry], seen_at: datetime
) -> int:
    """Upsert entries in chunks, marking each active and seen at seen_at."""
    for start in range(0, len(entries), UPSERT_BATCH_SIZE):
        chunk = entries[start : start + UPSERT_BATCH_SIZE]
        existing = {
            row.ticker: row
            for row in db.query(ReferenceTicker)
            .filter(ReferenceTicker.ticker.in_([e.ticker for e in chunk]))
            .all()
        }
        for entry in chunk:
            row = existing.get(entry.ticker)
            if row is None:
                row = ReferenceTicker(ticker=entry.ticker)
                db.add(row)
            for key, value in asdict(entry).items():
                setattr(row, key, value)
            row.is_active = True
            row.last_seen_at = seen_at
        db.flush()
    return len(entries)


def deactivate_unseen(db: Session, run_started: datetime) -> int:
    """Deactivate every active entry not seen in the run that started at run_started."""
    return (
        db.query(ReferenceTicker)
        .filter(
            ReferenceTicker.is_active.is_(True),
            ReferenceTicker.last_seen_at < run_started,
        )
        .update({ReferenceTicker.is_active: False}, synchronize_session=False)
    )


def sync_reference_tickers(
    db: Session,
    http: httpx.Client,
    settings: Settings | None = None,
    clock: Clock = utc_now,
) -> ReferenceSyncResult:
    """Download both directories, upsert the merged catalog and retire missing entries."""
    settings = settings or get_settings()
    run_started = clock()

    with job_lease(
        db, JOB_NAME, run_started, timedelta(minutes=settings.job_lease_ttl_minutes)
    ) as acquired:
        if not acquired:
            return ReferenceSyncResult(skipped=True)

        nasdaq_raw = download_directory(http, settings.nasdaq_directory_url)
        other_raw = download_directory(http, settings.otherlisted_directory_url)

        nasdaq_entries = parse_nasdaq_directory(nasdaq_raw)
        other_entries = parse_other_listed_directory(other_raw)
        merged = merge_directory_entries(nasdaq_entries, other_entries)

        upserts = upsert_reference_tickers(db, merged, run_started)
        deactivated = deactivate_unseen(db, run_started)
        db.commit()

    result = ReferenceSyncResult(
        nasdaq_entries=len(nasdaq_entries),
        other_entries=len(other_entries),
        upserts=upserts,
        deactivated=deactivated,
    )
    logger.info(
        "%s nasdaq=%d other=%d upserts=%d deactivated=%d",
        JOB_NAME,
        result.nasdaq_entries,
        result.other_entries,
        result.upserts,
        result.deactivated,
    )
    return result
