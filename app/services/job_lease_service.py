"""Run-level mutual exclusion for batch jobs.

A job claims a lease row named after itself with a conditional update
that only succeeds once the previous lease has expired, so at most one
overlapping scheduler firing does any work.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.models import JobLease

logger = logging.getLogger(__name__)


def claim_lease(
    db: Session, job_name: str, owner: str, now: datetime, ttl: timedelta
) -> bool:
    """Try to take the lease for job_name. Returns True if this owner won it."""
    leased_until = now + ttl
    result = db.execute(
        update(JobLease)
        .where(JobLease.job_name == job_name, JobLease.leased_until <= now)
        .values(owner=owner, leased_until=leased_until, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        db.commit()
        return True

    if db.get(JobLease, job_name) is not None:
        db.rollback()
        return False

    # First run ever for this job
    try:
        db.add(JobLease(job_name=job_name, owner=owner, leased_until=leased_until))
        db.commit()
    except IntegrityError:
        db.rollback()
        return False
    return True


def release_lease(db: Session, job_name: str, owner: str, now: datetime) -> None:
    """Expire the lease if this owner still holds it."""
    try:
        db.execute(
            update(JobLease)
            .where(JobLease.job_name == job_name, JobLease.owner == owner)
            .values(leased_until=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning("Failed to release lease for %s, it will expire: %s", job_name, e)


@contextmanager
def job_lease(
    db: Session, job_name: str, now: datetime, ttl: timedelta
) -> Iterator[bool]:
    """
    Hold the job's lease for the duration of the block.

    Yields whether the lease was acquired; the block must do nothing
    when it was not.
    """
    owner = uuid.uuid4().hex
    acquired = claim_lease(db, job_name, owner, now, ttl)
    if not acquired:
        logger.info("%s: lease held by another run, skipping", job_name)
    try:
        yield acquired
    except Exception:
        db.rollback()
        raise
    finally:
        if acquired:
            release_lease(db, job_name, owner, now)
