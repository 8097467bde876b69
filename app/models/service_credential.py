from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class ServiceCredential(Base, TimestampMixin):
    """Cached session material for an external service (one row per service)."""

    __tablename__ = "service_credentials"

    service: Mapped[str] = mapped_column(String(100), primary_key=True)
    cookie: Mapped[str] = mapped_column(Text)
    crumb: Mapped[str] = mapped_column(String(255))
    expires_at: Mapped[datetime] = mapped_column(DateTime)
