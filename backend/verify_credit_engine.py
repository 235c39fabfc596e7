from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import sessionmaker

from jobcredits.core.database import Base, create_db_engine
from jobcredits.core.errors import InsufficientCredits
from jobcredits.models import add_on, credit_unit, job, profile, promotion_task, subscription, upsell_purchase  # noqa: F401
from jobcredits.models.credit_unit import CreditUnit
from jobcredits.models.purchase import Purchase, PurchaseKind, PurchaseStatus
from jobcredits.services.credits_engine import available_credits
from jobcredits.services.fulfillment import fulfill_checkout_session
from jobcredits.services.job_gates import publish_job


DRAFT = {
    "title": "Backend Engineer",
    "company": "Acme",
    "location": "Remote",
    "description": "Build and run the APIs behind our job board, from billing webhooks to search.",
}


def main() -> None:
    engine = create_db_engine("sqlite:///:memory:")
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        user_id = "user-1"
        now = datetime.now(timezone.utc)
        db.add(
            Purchase(
                user_id=user_id,
                kind=PurchaseKind.CREDIT_PACK,
                selection_key="five_credits",
                external_session_id="cs_verify_1",
                status=PurchaseStatus.PENDING,
                job_post_credits=5,
                total_amount_cents=24900,
                expiration_days=30,
            )
        )
        db.commit()

        first = fulfill_checkout_session(db, "cs_verify_1", metadata={"userId": user_id}, now=now)
        assert first.status == "fulfilled", first
        again = fulfill_checkout_session(db, "cs_verify_1", metadata={"userId": user_id}, now=now)
        assert again.status == "already_fulfilled", again
        assert available_credits(db, user_id, now=now)["job_post"] == 5

        job = publish_job(db, user_id, DRAFT, now=now)
        assert available_credits(db, user_id, now=now)["job_post"] == 4
        used = db.query(CreditUnit).filter(CreditUnit.is_used.is_(True)).one()
        assert used.used_for_job_id == job.id, used.used_for_job_id

        later = now + timedelta(days=31)
        assert available_credits(db, user_id, now=later)["job_post"] == 0
        try:
            publish_job(db, user_id, dict(DRAFT, title="Late"), now=later)
        except InsufficientCredits:
            pass
        else:
            raise AssertionError("expired credits must not publish")
    finally:
        db.close()


if __name__ == "__main__":
    main()
    print("OK")
