"""Tests for the reference ticker catalog sync."""

from datetime import timedelta

import httpx
import pytest

from app.config import Settings
from app.exceptions import ExternalAPIError
from app.models import ReferenceTicker
from app.services import reference_sync_service
from app.services.reference_sync_service import DirectoryEntry

NASDAQ_LISTED = """Symbol|Security Name|Market Category|Test Issue|Financial Status|Round Lot Size|ETF|NextShares
AAPL|Apple Inc. - Common Stock|Q|N|N|100|N|N
QQQ|Invesco QQQ Trust, Series 1|G|N|N|100|Y|N
ZXZZT|NASDAQ TEST STOCK|G|Y|N|100|N|N
NXTF|NextShares Fund|G|N|N|100|N|Y
File Creation Time: 1112202515:30|||||||
"""

OTHER_LISTED = """ACT Symbol|Security Name|Exchange|CQS Symbol|ETF|Round Lot Size|Test Issue|NASDAQ Symbol
IBM|International Business Machines Corporation Common Stock|N|IBM|N|100|N|IBM
SPY|SPDR S&P 500 ETF Trust|P|SPY|Y|100|N|SPY
ZTST|NYSE Test Issue|N|ZTST|N|100|Y|ZTST
AAPL|Apple duplicate|N|AAPL|N|100|N|AAPL
|Fallback Corp|Z|FBC|N|100|N|FBC
ODD|Odd Exchange Corp|Q|ODD|N|100|N|ODD
File Creation Time: 1112202515:30|||||||
"""


@pytest.fixture
def settings():
    return Settings(_env_file=None)


def directory_client(settings, nasdaq=NASDAQ_LISTED, other=OTHER_LISTED, other_status=200):
    def handler(request):
        url = str(request.url)
        if url == settings.nasdaq_directory_url:
            return httpx.Response(200, text=nasdaq)
        if url == settings.otherlisted_directory_url:
            return httpx.Response(other_status, text=other)
        return httpx.Response(404)

    return httpx.Client(transport=httpx.MockTransport(handler))


class TestParseNasdaqDirectory:
    def test_skips_header_test_issues_and_nextshares(self):
        entries = reference_sync_service.parse_nasdaq_directory(NASDAQ_LISTED)

        assert [e.ticker for e in entries] == ["AAPL", "QQQ"]

    def test_etf_flag(self):
        entries = {
            e.ticker: e for e in reference_sync_service.parse_nasdaq_directory(NASDAQ_LISTED)
        }

        assert entries["QQQ"].is_etf is True
        assert entries["QQQ"].asset_type == "ETF"
        assert entries["AAPL"].asset_type == "EQUITY"
        assert entries["AAPL"].exchange == "NASDAQ"
        assert entries["AAPL"].source == reference_sync_service.NASDAQ_SOURCE

    def test_missing_name_falls_back_to_ticker(self):
        entries = reference_sync_service.parse_nasdaq_directory("abcd||Q|N|N|100|N|N\n")

        assert entries[0].ticker == "ABCD"
        assert entries[0].name == "ABCD"


class TestParseOtherListedDirectory:
    def test_skips_header_and_test_issues(self):
        entries = reference_sync_service.parse_other_listed_directory(OTHER_LISTED)

        assert [e.ticker for e in entries] == ["IBM", "SPY", "AAPL", "FBC", "ODD"]

    def test_symbol_falls_back_to_cqs(self):
        entries = reference_sync_service.parse_other_listed_directory(OTHER_LISTED)

        fallback = next(e for e in entries if e.name == "Fallback Corp")
        assert fallback.ticker == "FBC"
        assert fallback.exchange == "Cboe BZX"

    def test_exchange_names(self):
        entries = {
            e.ticker: e
            for e in reference_sync_service.parse_other_listed_directory(OTHER_LISTED)
        }

        assert entries["IBM"].exchange == "NYSE"
        assert entries["SPY"].exchange == "NYSE ARCA"
        assert entries["SPY"].is_etf is True
        assert entries["ODD"].exchange == "Q"


@pytest.mark.parametrize(
    "code,expected",
    [
        ("A", "NYSE MKT"),
        ("B", "NASDAQ BX"),
        ("N", "NYSE"),
        ("P", "NYSE ARCA"),
        ("Z", "Cboe BZX"),
        ("V", "IEX"),
        ("X", "X"),
        ("", "UNKNOWN"),
        (None, "UNKNOWN"),
    ],
)
def test_map_other_exchange(code, expected):
    assert reference_sync_service.map_other_exchange(code) == expected


def test_merge_keeps_first_occurrence():
    """Earlier lists take priority on duplicate tickers."""
    nasdaq = DirectoryEntry("AAPL", "Apple", "NASDAQ", "EQUITY", False, "nasdaq_directory")
    other = DirectoryEntry("AAPL", "Apple dup", "NYSE", "EQUITY", False, "otherlisted_directory")
    ibm = DirectoryEntry("IBM", "IBM", "NYSE", "EQUITY", False, "otherlisted_directory")

    merged = reference_sync_service.merge_directory_entries([nasdaq], [other, ibm])

    assert merged == [nasdaq, ibm]


class TestSyncReferenceTickers:
    def test_upserts_merged_catalog(self, db_session, clock, settings):
        http = directory_client(settings)

        result = reference_sync_service.sync_reference_tickers(
            db_session, http, settings=settings, clock=clock
        )

        assert result.as_dict() == {
            "fetched": {"nasdaq": 2, "other": 5},
            "upserts": 6,
            "deactivated": 0,
        }
        aapl = db_session.get(ReferenceTicker, "AAPL")
        assert aapl.exchange == "NASDAQ"
        assert aapl.source == reference_sync_service.NASDAQ_SOURCE
        assert aapl.is_active is True
        assert aapl.last_seen_at == clock.now
        assert db_session.query(ReferenceTicker).count() == 6

    def test_deactivates_unseen_and_reactivates_returning(
        self, db_session, clock, settings
    ):
        earlier = clock.now - timedelta(days=1)
        db_session.add_all(
            [
                ReferenceTicker(
                    ticker="GONE", name="Gone Inc", exchange="NYSE", last_seen_at=earlier
                ),
                ReferenceTicker(
                    ticker="IBM",
                    name="IBM",
                    exchange="NYSE",
                    is_active=False,
                    last_seen_at=earlier,
                ),
                ReferenceTicker(
                    ticker="OLD",
                    name="Old Inc",
                    exchange="NYSE",
                    is_active=False,
                    last_seen_at=earlier,
                ),
            ]
        )
        db_session.commit()

        result = reference_sync_service.sync_reference_tickers(
            db_session, directory_client(settings), settings=settings, clock=clock
        )

        assert result.deactivated == 1
        assert db_session.get(ReferenceTicker, "GONE").is_active is False
        assert db_session.get(ReferenceTicker, "IBM").is_active is True
        assert db_session.get(ReferenceTicker, "OLD").is_active is False

    def test_download_failure_writes_nothing(self, db_session, clock, settings):
        http = directory_client(settings, other_status=503)

        with pytest.raises(ExternalAPIError):
            reference_sync_service.sync_reference_tickers(
                db_session, http, settings=settings, clock=clock
            )

        assert db_session.query(ReferenceTicker).count() == 0

    def test_transport_error_raises(self, settings):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        http = httpx.Client(transport=httpx.MockTransport(handler))

        with pytest.raises(ExternalAPIError):
            reference_sync_service.download_directory(http, settings.nasdaq_directory_url)
