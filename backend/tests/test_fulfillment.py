import threading
import unittest
from datetime import timedelta

from ledger_fixtures import LedgerTestCase

from jobcredits.core.errors import UnknownPurchase
from jobcredits.models.add_on import UserAddOnGrant
from jobcredits.models.credit_unit import CreditType, CreditUnit
from jobcredits.models.job import Job
from jobcredits.models.promotion_task import PromotionTask
from jobcredits.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from jobcredits.models.subscription import Subscription
from jobcredits.models.upsell_purchase import UpsellPurchase, UpsellStatus
from jobcredits.services.credits_engine import as_utc
from jobcredits.services.fulfillment import (
    ALREADY_FULFILLED,
    FULFILLED,
    fulfill_checkout_session,
    mark_checkout_failed,
    sweep_stale_pending,
    sync_subscription,
)


class TestPurchaseFulfillment(LedgerTestCase):
    def test_mints_recorded_credits_once(self):
        self.seed_purchase(session_id="cs_1", job_post=5, featured=1)

        first = fulfill_checkout_session(self.db, "cs_1", metadata={"userId": "user-1"}, now=self.now)
        second = fulfill_checkout_session(self.db, "cs_1", metadata={"userId": "user-1"}, now=self.now)

        self.assertEqual(first.status, FULFILLED)
        self.assertEqual(first.credits_issued, {"job_post": 5, "featured_post": 1})
        self.assertEqual(second.status, ALREADY_FULFILLED)
        self.assertEqual(self.db.query(CreditUnit).count(), 6)

        purchase = self.db.query(Purchase).filter(Purchase.external_session_id == "cs_1").one()
        self.assertEqual(purchase.status, PurchaseStatus.COMPLETED)
        self.assertEqual(as_utc(purchase.completed_at), self.now)
        self.assertEqual(as_utc(purchase.expires_at), self.now + timedelta(days=30))
        units = self.db.query(CreditUnit).all()
        self.assertTrue(all(as_utc(u.expires_at) == self.now + timedelta(days=30) for u in units))
        self.assertTrue(all(u.user_id == "user-1" and not u.is_used for u in units))

    def test_concurrent_deliveries_fulfil_once(self):
        self.seed_purchase(session_id="cs_race", job_post=5)
        self.release()

        statuses: list[str] = []
        errors: list[BaseException] = []
        lock = threading.Lock()
        start = threading.Barrier(6)

        def deliver() -> None:
            db = self.SessionLocal()
            try:
                start.wait()
                result = fulfill_checkout_session(db, "cs_race", metadata={"userId": "user-1"}, now=self.now)
                with lock:
                    statuses.append(result.status)
            except BaseException as exc:
                with lock:
                    errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=deliver) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(statuses.count(FULFILLED), 1)
        self.assertEqual(statuses.count(ALREADY_FULFILLED), 5)
        self.assertEqual(self.db.query(CreditUnit).count(), 5)

    def test_unknown_session(self):
        with self.assertRaises(UnknownPurchase):
            fulfill_checkout_session(self.db, "cs_missing", now=self.now)
        self.assertEqual(self.db.query(CreditUnit).count(), 0)

    def test_metadata_owner_mismatch_is_rejected(self):
        self.seed_purchase(session_id="cs_2", user_id="user-1")
        with self.assertRaises(UnknownPurchase):
            fulfill_checkout_session(self.db, "cs_2", metadata={"userId": "user-2"}, now=self.now)
        purchase = self.db.query(Purchase).one()
        self.assertEqual(purchase.status, PurchaseStatus.PENDING)
        self.assertEqual(self.db.query(CreditUnit).count(), 0)

    def test_add_on_purchase_creates_grant(self):
        self.seed_purchase(
            session_id="cs_addon",
            kind=PurchaseKind.ADDON,
            selection_key="feature_and_social_bundle",
            job_post=0,
            total_cents=5000,
            expiration_days=365,
        )

        result = fulfill_checkout_session(self.db, "cs_addon", now=self.now)

        self.assertEqual(result.status, FULFILLED)
        grant = self.db.query(UserAddOnGrant).one()
        self.assertEqual(grant.id, result.grant_id)
        self.assertEqual(grant.add_on_key, "feature_and_social_bundle")
        self.assertTrue(grant.is_active)
        self.assertEqual(grant.price_paid_cents, 5000)
        self.assertEqual(as_utc(grant.expires_at), self.now + timedelta(days=365))
        self.assertEqual(self.db.query(CreditUnit).count(), 0)

    def test_failed_purchase_still_fulfils_on_late_confirmation(self):
        self.seed_purchase(session_id="cs_old", created_at=self.now - timedelta(days=10))
        self.assertEqual(sweep_stale_pending(self.db, 7, now=self.now), 1)

        result = fulfill_checkout_session(self.db, "cs_old", now=self.now)

        self.assertEqual(result.status, FULFILLED)
        self.assertEqual(self.db.query(CreditUnit).count(), 5)

    def test_mark_failed_only_touches_pending(self):
        self.seed_purchase(session_id="cs_pending")
        self.seed_purchase(session_id="cs_done", status=PurchaseStatus.COMPLETED)

        self.assertTrue(mark_checkout_failed(self.db, "cs_pending"))
        self.assertFalse(mark_checkout_failed(self.db, "cs_done"))

        statuses = {p.external_session_id: p.status for p in self.db.query(Purchase).all()}
        self.assertEqual(statuses["cs_pending"], PurchaseStatus.FAILED)
        self.assertEqual(statuses["cs_done"], PurchaseStatus.COMPLETED)

    def test_sweep_leaves_recent_pending(self):
        self.seed_purchase(session_id="cs_recent", created_at=self.now - timedelta(days=1))
        self.assertEqual(sweep_stale_pending(self.db, 7, now=self.now), 0)


class TestUpsellFulfillment(LedgerTestCase):
    def test_upsell_sets_flags_and_queues_social_post_once(self):
        job = self.seed_job()
        self.seed_upsell(job.id, session_id="cs_up", social_media_shoutout=True, placement_bump=True, upsell_bundle=True)

        first = fulfill_checkout_session(self.db, "cs_up", metadata={"userId": "user-1"}, now=self.now)
        second = fulfill_checkout_session(self.db, "cs_up", metadata={"userId": "user-1"}, now=self.now)

        self.assertEqual(first.status, FULFILLED)
        self.assertEqual(first.job_id, job.id)
        self.assertEqual(second.status, ALREADY_FULFILLED)
        refreshed = self.db.query(Job).filter(Job.id == job.id).one()
        self.assertTrue(refreshed.placement_bump)
        self.assertTrue(refreshed.social_media_shoutout)
        self.assertTrue(refreshed.upsell_bundle)
        self.assertEqual(self.db.query(PromotionTask).filter(PromotionTask.kind == "social_post").count(), 1)
        upsell = self.db.query(UpsellPurchase).one()
        self.assertEqual(upsell.status, UpsellStatus.PAID)
        self.assertEqual(as_utc(upsell.paid_at), self.now)

    def test_upsell_without_social_queues_nothing(self):
        job = self.seed_job()
        self.seed_upsell(job.id, session_id="cs_bump", placement_bump=True)

        fulfill_checkout_session(self.db, "cs_bump", now=self.now)

        self.assertEqual(self.db.query(PromotionTask).count(), 0)
        self.assertTrue(self.db.query(Job).one().placement_bump)

    def test_expired_upsell_checkout_marked_failed(self):
        job = self.seed_job()
        self.seed_upsell(job.id, session_id="cs_gone", placement_bump=True)
        self.assertTrue(mark_checkout_failed(self.db, "cs_gone"))
        self.assertEqual(self.db.query(UpsellPurchase).one().status, UpsellStatus.FAILED)


class TestSubscriptionSync(LedgerTestCase):
    def test_created_then_deleted(self):
        obj = {
            "id": "sub_1",
            "customer": "cus_1",
            "status": "trialing",
            "current_period_end": int((self.now + timedelta(days=14)).timestamp()),
            "metadata": {"userId": "user-1", "tier": "Pro"},
        }
        sub = sync_subscription(self.db, "customer.subscription.created", obj)
        self.assertEqual(sub.user_id, "user-1")
        self.assertEqual(sub.status, "trial")
        self.assertEqual(sub.tier, "pro")
        self.assertEqual(sub.stripe_customer_id, "cus_1")
        self.assertEqual(as_utc(sub.current_period_end), self.now + timedelta(days=14))

        sync_subscription(self.db, "customer.subscription.deleted", {"id": "sub_1", "metadata": {}})
        self.assertEqual(self.db.query(Subscription).one().status, "cancelled")

    def test_invoice_failure_marks_past_due(self):
        self.seed_subscription()
        sub = self.db.query(Subscription).one()
        sub.stripe_subscription_id = "sub_9"
        self.db.commit()

        sync_subscription(self.db, "invoice.payment_failed", {"subscription": "sub_9"})
        self.assertEqual(self.db.query(Subscription).one().status, "past_due")

    def test_unknown_subscription_without_user_is_ignored(self):
        self.assertIsNone(sync_subscription(self.db, "customer.subscription.updated", {"id": "sub_x"}))
        self.assertEqual(self.db.query(Subscription).count(), 0)


if __name__ == "__main__":
    unittest.main()
