"""Database-backed cache for the quote source's cookie/crumb pair."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.exceptions import CredentialCacheError
from app.models import ServiceCredential

logger = logging.getLogger(__name__)

YAHOO_CREDENTIAL_SERVICE_KEY = "yahoo_finance_quote_provider"


@dataclass(frozen=True)
class CredentialRecord:
    """Cached cookie/crumb pair and the absolute time it stops being usable."""

    cookie: str
    crumb: str
    expires_at: datetime

    def is_valid(self, now: datetime) -> bool:
        """True while the record is well-formed and now < expires_at."""
        if not self.cookie or not self.crumb:
            return False
        if not isinstance(self.expires_at, datetime):
            return False
        return now < self.expires_at


class CredentialCache(Protocol):
    def load(self) -> CredentialRecord | None: ...

    def save(self, record: CredentialRecord) -> None: ...

    def invalidate(self) -> None: ...


class DatabaseCredentialCache:
    """
    Single credential slot per service, stored in service_credentials.

    load() does not check expiry; callers compare expires_at against
    their own clock. Every call commits its own change so the cache
    survives independently of the caller's later writes.
    """

    def __init__(self, db: Session, service_key: str = YAHOO_CREDENTIAL_SERVICE_KEY):
        self.db = db
        self.service_key = service_key

    def load(self) -> CredentialRecord | None:
        try:
            row = self.db.get(ServiceCredential, self.service_key)
        except SQLAlchemyError as e:
            raise CredentialCacheError("Failed to load cached credentials", e) from e
        if row is None:
            return None
        return CredentialRecord(
            cookie=row.cookie, crumb=row.crumb, expires_at=row.expires_at
        )

    def save(self, record: CredentialRecord) -> None:
        try:
            row = self.db.get(ServiceCredential, self.service_key)
            if row is None:
                row = ServiceCredential(service=self.service_key)
                self.db.add(row)
            row.cookie = record.cookie
            row.crumb = record.crumb
            row.expires_at = record.expires_at
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise CredentialCacheError("Failed to persist cached credentials", e) from e

    def invalidate(self) -> None:
        try:
            self.db.query(ServiceCredential).filter(
                ServiceCredential.service == self.service_key
            ).delete()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise CredentialCacheError(
                "Failed to invalidate cached credentials", e
            ) from e
