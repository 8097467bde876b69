"""Tests for batch job leases."""

from datetime import timedelta

import pytest

from app.models import JobLease
from app.services import job_lease_service

TTL = timedelta(minutes=15)


class TestClaimLease:
    def test_first_claim_creates_row(self, db_session, clock):
        assert job_lease_service.claim_lease(db_session, "job", "a", clock.now, TTL)

        lease = db_session.get(JobLease, "job")
        assert lease.owner == "a"
        assert lease.leased_until == clock.now + TTL

    def test_unexpired_lease_cannot_be_claimed(self, db_session, clock):
        job_lease_service.claim_lease(db_session, "job", "a", clock.now, TTL)

        claimed = job_lease_service.claim_lease(
            db_session, "job", "b", clock.now + timedelta(minutes=5), TTL
        )

        assert claimed is False
        assert db_session.get(JobLease, "job").owner == "a"

    def test_expired_lease_can_be_claimed(self, db_session, clock):
        job_lease_service.claim_lease(db_session, "job", "a", clock.now, TTL)

        claimed = job_lease_service.claim_lease(db_session, "job", "b", clock.now + TTL, TTL)

        assert claimed is True
        assert db_session.get(JobLease, "job").owner == "b"

    def test_leases_are_per_job(self, db_session, clock):
        job_lease_service.claim_lease(db_session, "one", "a", clock.now, TTL)

        assert job_lease_service.claim_lease(db_session, "two", "b", clock.now, TTL)


class TestReleaseLease:
    def test_release_by_owner(self, db_session, clock):
        job_lease_service.claim_lease(db_session, "job", "a", clock.now, TTL)

        job_lease_service.release_lease(db_session, "job", "a", clock.now)

        assert job_lease_service.claim_lease(db_session, "job", "b", clock.now, TTL)

    def test_release_by_other_owner_is_ignored(self, db_session, clock):
        job_lease_service.claim_lease(db_session, "job", "a", clock.now, TTL)

        job_lease_service.release_lease(db_session, "job", "b", clock.now)

        assert not job_lease_service.claim_lease(db_session, "job", "c", clock.now, TTL)


class TestJobLeaseContext:
    def test_releases_after_block(self, db_session, clock):
        with job_lease_service.job_lease(db_session, "job", clock.now, TTL) as acquired:
            assert acquired
            with job_lease_service.job_lease(
                db_session, "job", clock.now, TTL
            ) as nested:
                assert not nested

        assert db_session.get(JobLease, "job").leased_until == clock.now

    def test_releases_and_reraises_on_error(self, db_session, clock):
        with pytest.raises(RuntimeError):
            with job_lease_service.job_lease(db_session, "job", clock.now, TTL):
                raise RuntimeError("boom")

        assert job_lease_service.claim_lease(db_session, "job", "b", clock.now, TTL)
