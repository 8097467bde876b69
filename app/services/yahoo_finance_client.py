"""Yahoo Finance quote client with database-backed cookie/crumb caching."""

import logging
import math
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Protocol

import httpx

from app.clock import Clock, utc_now
from app.exceptions import (
    CredentialCacheError,
    ExternalAPIError,
    QuoteAuthorizationError,
)
from app.services.credential_cache import CredentialCache, CredentialRecord

logger = logging.getLogger(__name__)

API_NAME = "Yahoo Finance"

MAX_SYMBOLS_PER_REQUEST = 10
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
COOKIE_URL = "https://fc.yahoo.com"
CRUMB_URL = "https://query1.finance.yahoo.com/v1/test/getcrumb"
QUOTE_URL = "https://query1.finance.yahoo.com/v7/finance/quote"
DEFAULT_CREDENTIAL_TTL = timedelta(days=30)

AUTH_REJECTED_STATUSES = frozenset({401})

# Price selection policy: first numeric field wins, in this order.
PRICE_FIELDS = ("regularMarketPrice", "postMarketPrice", "preMarketPrice")
PRICE_TIME_FIELDS = ("regularMarketTime", "postMarketTime", "preMarketTime")

_COOKIE_PATTERN = re.compile(r"A3=([^;]+)")


@dataclass(frozen=True)
class RemoteQuote:
    """A single quote as returned by the upstream source."""

    ticker: str
    price: Decimal
    currency: str
    price_time: datetime
    metadata: dict[str, Any] | None


@dataclass(frozen=True)
class QuoteFetchResult:
    """Quotes from one fetch plus the credentials that were used to get them."""

    quotes: list[RemoteQuote]
    credentials: CredentialRecord | None


class QuoteProvider(Protocol):
    def fetch_quotes(
        self, tickers: Iterable[str], credentials: CredentialRecord | None = None
    ) -> QuoteFetchResult: ...


def normalize_symbols(tickers: Iterable[str]) -> list[str]:
    """Uppercase and de-duplicate symbols, keeping first-seen order."""
    seen: dict[str, None] = {}
    for ticker in tickers:
        symbol = ticker.strip().upper()
        if symbol:
            seen.setdefault(symbol, None)
    return list(seen)


def chunk_symbols(symbols: list[str], size: int = MAX_SYMBOLS_PER_REQUEST) -> list[list[str]]:
    return [symbols[i : i + size] for i in range(0, len(symbols), size)]


def extract_cookie(header_values: Iterable[str]) -> str | None:
    """Pull the A3 session cookie out of Set-Cookie headers."""
    for value in header_values:
        match = _COOKIE_PATTERN.search(value)
        if match:
            return f"A3={match.group(1)}"
    return None


def _first_number(entry: dict, fields: tuple[str, ...]) -> float | int | None:
    for field in fields:
        value = entry.get(field)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
    return None


def _price_time(ts_seconds: float | int | None, fetched_at: datetime) -> datetime:
    """Epoch seconds as naive UTC, or fetched_at when missing or out of range."""
    if not ts_seconds or not math.isfinite(ts_seconds):
        return fetched_at
    try:
        return datetime.fromtimestamp(ts_seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return fetched_at


def parse_quote_response(
    payload: Any, expected_symbols: Iterable[str], fetched_at: datetime
) -> list[RemoteQuote]:
    """
    Convert a /v7/finance/quote payload into RemoteQuotes.

    Entries for symbols that were not requested are ignored. Entries
    without a usable price (missing, non-numeric or NaN) are dropped
    and therefore surface as missing tickers to the caller.
    """
    expected = set(expected_symbols)
    quote_response = payload.get("quoteResponse") if isinstance(payload, dict) else None
    if not isinstance(quote_response, dict):
        return []
    entries = quote_response.get("result")
    if not isinstance(entries, list):
        return []

    results: list[RemoteQuote] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        symbol = entry.get("symbol")
        ticker = symbol.upper() if isinstance(symbol, str) else None
        if not ticker or ticker not in expected:
            continue

        price = _first_number(entry, PRICE_FIELDS)
        if price is None or not math.isfinite(price):
            continue

        price_time = _price_time(_first_number(entry, PRICE_TIME_FIELDS), fetched_at)

        currency = entry.get("currency")
        if not isinstance(currency, str) or not currency:
            currency = "USD"

        results.append(
            RemoteQuote(
                ticker=ticker,
                price=Decimal(str(price)),
                currency=currency,
                price_time=price_time,
                metadata={
                    "exchange": entry.get("fullExchangeName") or entry.get("exchange"),
                    "marketState": entry.get("marketState"),
                },
            )
        )

    return results


class YahooFinanceQuoteClient:
    """
    Fetches quotes in batches of MAX_SYMBOLS_PER_REQUEST.

    Credentials are never stored on the client: each operation takes the
    current credential state (or None) and returns the state it ended
    with, so a caller can reuse it for the next call.
    """

    def __init__(
        self,
        cache: CredentialCache,
        http_client: httpx.Client | None = None,
        clock: Clock = utc_now,
        credential_ttl: timedelta = DEFAULT_CREDENTIAL_TTL,
        timeout: float = 10.0,
    ):
        self.cache = cache
        self.http = http_client or httpx.Client(timeout=timeout)
        self.clock = clock
        self.credential_ttl = credential_ttl

    def close(self) -> None:
        self.http.close()

    def fetch_quotes(
        self, tickers: Iterable[str], credentials: CredentialRecord | None = None
    ) -> QuoteFetchResult:
        """
        Fetch quotes for tickers. Any failing batch aborts the whole call.

        Raises:
            ExternalAPIError: upstream unreachable or non-success status
            QuoteAuthorizationError: credentials rejected twice in a row
        """
        symbols = normalize_symbols(tickers)
        if not symbols:
            return QuoteFetchResult(quotes=[], credentials=credentials)

        quotes: list[RemoteQuote] = []
        for batch in chunk_symbols(symbols):
            batch_quotes, credentials = self._fetch_batch(batch, credentials)
            quotes.extend(batch_quotes)

        return QuoteFetchResult(quotes=quotes, credentials=credentials)

    def _fetch_batch(
        self,
        symbols: list[str],
        credentials: CredentialRecord | None,
        is_retry: bool = False,
    ) -> tuple[list[RemoteQuote], CredentialRecord]:
        credentials = self.ensure_credentials(credentials)

        response = self._get(
            QUOTE_URL,
            "quote request",
            params={
                "symbols": ",".join(symbols),
                "formatted": "false",
                "crumb": credentials.crumb,
            },
            headers={
                "Cookie": credentials.cookie,
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            },
        )

        if response.status_code in AUTH_REJECTED_STATUSES:
            if is_retry:
                raise QuoteAuthorizationError(
                    "authentication failed after retry",
                    API_NAME,
                    status_code=response.status_code,
                    response_body=response.text,
                )
            logger.info(
                "Quote request rejected (%s), refreshing credentials",
                response.status_code,
            )
            self.invalidate_credentials()
            return self._fetch_batch(symbols, None, is_retry=True)

        if not response.is_success:
            raise ExternalAPIError(
                f"request failed with status {response.status_code}",
                API_NAME,
                status_code=response.status_code,
                response_body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ExternalAPIError(
                f"invalid JSON in quote response: {e}",
                API_NAME,
                status_code=response.status_code,
            ) from e

        return parse_quote_response(payload, symbols, self.clock()), credentials

    def ensure_credentials(
        self, credentials: CredentialRecord | None
    ) -> CredentialRecord:
        """Return usable credentials: the given ones, the cached ones, or a fresh handshake."""
        now = self.clock()
        if credentials is not None and credentials.is_valid(now):
            return credentials

        cached = self._load_cached(now)
        if cached is not None:
            return cached

        return self.refresh_credentials()

    def _load_cached(self, now: datetime) -> CredentialRecord | None:
        try:
            cached = self.cache.load()
        except CredentialCacheError as e:
            logger.error("Unable to load cached quote credentials: %s", e)
            return None
        if cached is None:
            return None
        if not cached.is_valid(now):
            logger.info("Cached quote credentials expired or malformed, discarding")
            return None
        return cached

    def refresh_credentials(self) -> CredentialRecord:
        """Run the cookie -> crumb handshake and persist the result."""
        cookie, crumb = self._fetch_remote_credentials()
        record = CredentialRecord(
            cookie=cookie,
            crumb=crumb,
            expires_at=self.clock() + self.credential_ttl,
        )
        try:
            self.cache.save(record)
        except CredentialCacheError as e:
            # The fresh pair is still good for this run
            logger.error("Failed to persist quote credentials: %s", e)
        return record

    def invalidate_credentials(self) -> None:
        try:
            self.cache.invalidate()
        except CredentialCacheError as e:
            logger.error("Failed to invalidate cached quote credentials: %s", e)

    def _fetch_remote_credentials(self) -> tuple[str, str]:
        cookie_response = self._get(
            COOKIE_URL, "cookie request", headers={"User-Agent": USER_AGENT}
        )
        set_cookie = cookie_response.headers.get_list("set-cookie")
        cookie = extract_cookie(set_cookie)
        if not cookie:
            raise ExternalAPIError(
                "failed to obtain session cookie "
                f"(status={cookie_response.status_code}, "
                f"set-cookie={'; '.join(set_cookie) or '<missing>'})",
                API_NAME,
                status_code=cookie_response.status_code,
            )

        crumb_response = self._get(
            CRUMB_URL,
            "crumb request",
            headers={"Cookie": cookie, "User-Agent": USER_AGENT},
        )
        if not crumb_response.is_success:
            raise ExternalAPIError(
                f"crumb request failed with status {crumb_response.status_code}",
                API_NAME,
                status_code=crumb_response.status_code,
                response_body=crumb_response.text,
            )

        crumb = crumb_response.text.strip().replace('"', "")
        if not crumb:
            raise ExternalAPIError(
                f"received empty crumb (status={crumb_response.status_code})",
                API_NAME,
                status_code=crumb_response.status_code,
            )

        return cookie, crumb

    def _get(self, url: str, label: str, **kwargs) -> httpx.Response:
        try:
            return self.http.get(url, **kwargs)
        except httpx.HTTPError as e:
            raise ExternalAPIError(f"{label} failed: {e}", API_NAME) from e
