from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class JobLease(Base, TimestampMixin):
    """Time-bounded claim that lets only one run of a batch job proceed."""

    __tablename__ = "job_leases"

    job_name: Mapped[str] = mapped_column(String(100), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64))
    leased_until: Mapped[datetime] = mapped_column(DateTime)
