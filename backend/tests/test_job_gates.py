import threading
import unittest
from datetime import timedelta
from unittest import mock

from sqlalchemy.exc import IntegrityError

from ledger_fixtures import DESCRIPTION, LedgerTestCase, job_draft

from jobcredits.core.errors import (
    AddonAlreadyApplied,
    GrantUnavailable,
    InsufficientCredits,
    InvalidJobDraft,
    JobNotActive,
    JobStillActive,
    OwnershipMismatch,
)
from jobcredits.models.add_on import AddOnApplication
from jobcredits.models.credit_unit import CreditType, CreditUnit
from jobcredits.models.job import Job, JobStatus
from jobcredits.models.promotion_task import PromotionTask
from jobcredits.services import job_gates
from jobcredits.services.credits_engine import as_utc, available_credits
from jobcredits.services.job_gates import apply_add_on, feature_job, publish_job, repost_job
from jobcredits.services.work_queue import FEATURED_JOB_FOLLOWUP, queue_featured_job_followup


DRAFT = job_draft()


class TestPublish(LedgerTestCase):
    def test_publish_consumes_one_credit_and_binds_it(self):
        self.seed_units("user-1", 2, expires_at=self.now + timedelta(days=10))

        job = publish_job(self.db, "user-1", DRAFT, now=self.now)

        self.assertEqual(job.status, JobStatus.ACTIVE)
        self.assertEqual(as_utc(job.expires_at), self.now + timedelta(days=30))
        used = self.db.query(CreditUnit).filter(CreditUnit.is_used.is_(True)).one()
        self.assertEqual(used.used_for_job_id, job.id)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["job_post"], 1)

    def test_publish_without_credit_creates_no_job(self):
        with self.assertRaises(InsufficientCredits) as ctx:
            publish_job(self.db, "user-1", DRAFT, now=self.now)
        self.assertEqual(ctx.exception.status_code, 402)
        self.assertEqual(self.db.query(Job).count(), 0)

    def test_failure_after_consume_rolls_credit_back(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))

        with mock.patch.object(job_gates, "_build_job", side_effect=RuntimeError("boom")):
            with self.assertRaises(RuntimeError):
                publish_job(self.db, "user-1", DRAFT, now=self.now)

        self.assertEqual(self.db.query(Job).count(), 0)
        self.assertEqual(self.db.query(CreditUnit).filter(CreditUnit.is_used.is_(True)).count(), 0)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["job_post"], 1)

    def test_expired_credit_cannot_publish(self):
        self.seed_units("user-1", 1, expires_at=self.now - timedelta(minutes=1))
        with self.assertRaises(InsufficientCredits):
            publish_job(self.db, "user-1", DRAFT, now=self.now)

    def test_blank_or_thin_draft_spends_nothing(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        drafts = [
            job_draft(title="   ", company="  "),
            job_draft(location=""),
            {"title": "Data Engineer", "company": "Acme", "description": DESCRIPTION},
            job_draft(description="  Short blurb.  "),
        ]

        for draft in drafts:
            with self.assertRaises(InvalidJobDraft) as ctx:
                publish_job(self.db, "user-1", draft, now=self.now)
            self.assertEqual(ctx.exception.status_code, 400)

        self.assertEqual(self.db.query(Job).count(), 0)
        self.assertEqual(self.db.query(CreditUnit).filter(CreditUnit.is_used.is_(True)).count(), 0)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["job_post"], 1)

    def test_published_fields_are_stripped(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        job = publish_job(self.db, "user-1", job_draft(title="  SRE  ", location=" Berlin "), now=self.now)
        self.assertEqual((job.title, job.location), ("SRE", "Berlin"))

    def test_concurrent_publishes_never_exceed_credits(self):
        self.seed_units("user-1", 2, expires_at=self.now + timedelta(days=10))
        self.release()

        outcomes: list[str] = []
        lock = threading.Lock()
        start = threading.Barrier(5)

        def attempt(i: int) -> None:
            db = self.SessionLocal()
            try:
                start.wait()
                publish_job(db, "user-1", job_draft(title=f"Role {i}"), now=self.now)
                outcome = "ok"
            except InsufficientCredits:
                outcome = "insufficient"
            finally:
                db.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(outcomes.count("ok"), 2)
        self.assertEqual(outcomes.count("insufficient"), 3)
        self.assertEqual(self.db.query(Job).count(), 2)


class TestRepost(LedgerTestCase):
    def test_live_job_cannot_be_reposted(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        job = self.seed_job()
        with self.assertRaises(JobStillActive):
            repost_job(self.db, "user-1", job.id, now=self.now)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["job_post"], 1)

    def test_paid_listing_repost_extends_thirty_days(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        job = self.seed_job(expires_at=self.now - timedelta(days=2))

        reposted = repost_job(self.db, "user-1", job.id, now=self.now)

        self.assertEqual(reposted.status, JobStatus.ACTIVE)
        self.assertEqual(as_utc(reposted.expires_at), self.now + timedelta(days=30))
        self.assertEqual(reposted.repost_count, 1)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["job_post"], 0)

    def test_free_listing_repost_uses_short_window(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        job = self.seed_job(source="free_basic_post", status=JobStatus.EXPIRED, expires_at=self.now - timedelta(days=1))

        reposted = repost_job(self.db, "user-1", job.id, now=self.now)

        self.assertEqual(as_utc(reposted.expires_at), self.now + timedelta(days=7))

    def test_closed_job_with_future_expiry_extends_from_expiry(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10))
        job = self.seed_job(status=JobStatus.CLOSED, expires_at=self.now + timedelta(days=5))

        reposted = repost_job(self.db, "user-1", job.id, now=self.now)

        self.assertEqual(as_utc(reposted.expires_at), self.now + timedelta(days=35))

    def test_every_repost_costs_a_credit(self):
        job = self.seed_job(expires_at=self.now - timedelta(days=1))
        with self.assertRaises(InsufficientCredits):
            repost_job(self.db, "user-1", job.id, now=self.now)
        self.assertEqual(self.db.query(Job).one().repost_count, 0)

    def test_repost_does_not_spend_reserved_repost_credits(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10), credit_type=CreditType.REPOST)
        job = self.seed_job(expires_at=self.now - timedelta(days=1))
        with self.assertRaises(InsufficientCredits):
            repost_job(self.db, "user-1", job.id, now=self.now)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["repost"], 1)

    def test_repost_requires_ownership(self):
        self.seed_units("user-2", 1, expires_at=self.now + timedelta(days=10))
        job = self.seed_job(expires_at=self.now - timedelta(days=1))
        with self.assertRaises(OwnershipMismatch):
            repost_job(self.db, "user-2", job.id, now=self.now)


class TestFeature(LedgerTestCase):
    def test_feature_consumes_featured_credit_once(self):
        self.seed_units("user-1", 2, expires_at=self.now + timedelta(days=10), credit_type=CreditType.FEATURED_POST)
        job = self.seed_job()

        first = feature_job(self.db, "user-1", job.id, now=self.now)
        second = feature_job(self.db, "user-1", job.id, now=self.now)

        self.assertTrue(first.newly_featured)
        self.assertIsNotNone(first.credit_unit_id)
        self.assertTrue(first.job.is_featured)
        self.assertFalse(second.newly_featured)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["featured_post"], 1)

    def test_expired_job_cannot_be_featured(self):
        self.seed_units("user-1", 1, expires_at=self.now + timedelta(days=10), credit_type=CreditType.FEATURED_POST)
        job = self.seed_job(expires_at=self.now - timedelta(hours=1))
        with self.assertRaises(JobNotActive):
            feature_job(self.db, "user-1", job.id, now=self.now)
        self.assertEqual(available_credits(self.db, "user-1", now=self.now)["featured_post"], 1)

    def test_feature_without_credit(self):
        job = self.seed_job()
        with self.assertRaises(InsufficientCredits):
            feature_job(self.db, "user-1", job.id, now=self.now)
        self.assertFalse(self.db.query(Job).one().is_featured)

    def test_followup_task_runs_in_its_own_session(self):
        job_id = self.seed_job().id
        self.release()

        queue_featured_job_followup(job_id, session_factory=self.SessionLocal)

        task = self.db.query(PromotionTask).one()
        self.assertEqual(task.kind, FEATURED_JOB_FOLLOWUP)
        self.assertEqual(task.job_id, job_id)

    def test_followup_task_swallows_missing_job(self):
        queue_featured_job_followup(12345, session_factory=self.SessionLocal)
        self.assertEqual(self.db.query(PromotionTask).count(), 0)


class TestApplyAddOn(LedgerTestCase):
    def test_second_apply_to_same_job_is_rejected(self):
        grant = self.seed_grant(add_on_key="feature_and_social_bundle")
        job = self.seed_job()

        apply_add_on(self.db, "user-1", grant.id, job.id, now=self.now)
        with self.assertRaises(AddonAlreadyApplied):
            apply_add_on(self.db, "user-1", grant.id, job.id, now=self.now)

        journal = self.db.query(AddOnApplication).filter(AddOnApplication.grant_id == grant.id).all()
        self.assertEqual([a.job_id for a in journal], [job.id])
        refreshed = self.db.query(Job).one()
        self.assertTrue(refreshed.is_featured)
        self.assertTrue(refreshed.placement_bump)
        self.assertTrue(refreshed.social_media_shoutout)
        self.assertEqual(self.db.query(PromotionTask).filter(PromotionTask.kind == "social_post").count(), 1)

    def test_grant_can_cover_different_jobs(self):
        grant = self.seed_grant(add_on_key="featured_post")
        first = self.seed_job(title="One")
        second = self.seed_job(title="Two")

        apply_add_on(self.db, "user-1", grant.id, first.id, now=self.now)
        apply_add_on(self.db, "user-1", grant.id, second.id, now=self.now)

        self.db.refresh(grant)
        self.assertEqual(sorted(grant.applied_job_ids), sorted([first.id, second.id]))
        self.assertEqual(self.db.query(PromotionTask).count(), 0)

    def test_inactive_or_expired_grant(self):
        job = self.seed_job()
        inactive = self.seed_grant(is_active=False)
        expired = self.seed_grant(expires_at=self.now - timedelta(days=1))
        with self.assertRaises(GrantUnavailable):
            apply_add_on(self.db, "user-1", inactive.id, job.id, now=self.now)
        with self.assertRaises(GrantUnavailable):
            apply_add_on(self.db, "user-1", expired.id, job.id, now=self.now)
        with self.assertRaises(GrantUnavailable):
            apply_add_on(self.db, "user-1", 999, job.id, now=self.now)
        self.assertEqual(self.db.query(AddOnApplication).count(), 0)

    def test_grant_of_another_user(self):
        grant = self.seed_grant(user_id="user-2")
        job = self.seed_job()
        with self.assertRaises(OwnershipMismatch):
            apply_add_on(self.db, "user-1", grant.id, job.id, now=self.now)

    def test_concurrent_applies_journal_once(self):
        grant_id = self.seed_grant(add_on_key="featured_post").id
        job_id = self.seed_job().id
        self.release()

        outcomes: list[str] = []
        lock = threading.Lock()
        start = threading.Barrier(4)

        def attempt() -> None:
            db = self.SessionLocal()
            try:
                start.wait()
                apply_add_on(db, "user-1", grant_id, job_id, now=self.now)
                outcome = "ok"
            except AddonAlreadyApplied:
                outcome = "dup"
            finally:
                db.close()
            with lock:
                outcomes.append(outcome)

        threads = [threading.Thread(target=attempt) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(sorted(outcomes), ["dup", "dup", "dup", "ok"])
        self.assertEqual(self.db.query(AddOnApplication).filter(AddOnApplication.grant_id == grant_id).count(), 1)

    def test_unrelated_integrity_errors_propagate(self):
        other = IntegrityError("INSERT", {}, Exception("NOT NULL constraint failed: jobs.title"))
        journal = IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed: add_on_applications.grant_id, add_on_applications.job_id"))
        self.assertFalse(job_gates._is_journal_conflict(other))
        self.assertTrue(job_gates._is_journal_conflict(journal))


if __name__ == "__main__":
    unittest.main()
