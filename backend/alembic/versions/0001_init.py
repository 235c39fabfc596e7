"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


# SQLAlchemy's Enum type persists member names, so the migration lists names too.
JOB_STATUS = ("ACTIVE", "PAUSED", "CLOSED", "EXPIRED")
PURCHASE_KIND = ("TIER", "CREDIT_PACK", "ADDON", "ADMIN_GRANT")
PURCHASE_STATUS = ("PENDING", "COMPLETED", "FAILED")
CREDIT_TYPE = ("JOB_POST", "FEATURED_POST", "SOCIAL_GRAPHIC", "REPOST")
UPSELL_STATUS = ("PENDING", "PAID", "FAILED")


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    # Alembic creates alembic_version with version_num VARCHAR(32) by default. Widen it early.
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("ALTER TABLE alembic_version ALTER COLUMN version_num TYPE VARCHAR(64)"))

    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    def ensure_indexes(table: str, specs: list[tuple[str, list[str], bool]]) -> None:
        idxs = existing_indexes(table)
        for name, cols, unique in specs:
            if name not in idxs:
                op.create_index(name, table, cols, unique=unique)

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("company_name", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("last_seen_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    ensure_indexes(
        "profiles",
        [
            ("ix_profiles_id", ["id"], False),
            ("ix_profiles_email", ["email"], False),
            ("ix_profiles_role", ["role"], False),
        ],
    )

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("tier", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("stripe_customer_id", sa.String(), nullable=True),
            sa.Column("stripe_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    ensure_indexes(
        "subscriptions",
        [
            ("ix_subscriptions_id", ["id"], False),
            ("ix_subscriptions_user_id", ["user_id"], True),
            ("ix_subscriptions_tier", ["tier"], False),
            ("ix_subscriptions_status", ["status"], False),
            ("ix_subscriptions_stripe_customer_id", ["stripe_customer_id"], False),
            ("ix_subscriptions_stripe_subscription_id", ["stripe_subscription_id"], True),
        ],
    )

    if "jobs" not in existing_tables:
        op.create_table(
            "jobs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("employer_id", sa.String(), nullable=False),
            sa.Column("title", sa.String(), nullable=False),
            sa.Column("company", sa.String(), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("location", sa.String(), nullable=True),
            sa.Column("job_type", sa.String(), nullable=True),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("status", sa.Enum(*JOB_STATUS, name="jobstatus"), nullable=True),
            sa.Column("posted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("is_featured", sa.Boolean(), nullable=True),
            sa.Column("featured_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("placement_bump", sa.Boolean(), nullable=True),
            sa.Column("is_pinned", sa.Boolean(), nullable=True),
            sa.Column("social_media_shoutout", sa.Boolean(), nullable=True),
            sa.Column("upsell_bundle", sa.Boolean(), nullable=True),
            sa.Column("repost_count", sa.Integer(), nullable=True),
            sa.Column("last_reposted_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
    ensure_indexes(
        "jobs",
        [
            ("ix_jobs_id", ["id"], False),
            ("ix_jobs_employer_id", ["employer_id"], False),
            ("ix_jobs_source", ["source"], False),
            ("ix_jobs_status", ["status"], False),
        ],
    )

    if "purchases" not in existing_tables:
        op.create_table(
            "purchases",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("kind", sa.Enum(*PURCHASE_KIND, name="purchasekind"), nullable=False),
            sa.Column("selection_key", sa.String(), nullable=True),
            sa.Column("add_on_keys", sa.JSON(), nullable=True),
            sa.Column("external_session_id", sa.String(), nullable=False),
            sa.Column("status", sa.Enum(*PURCHASE_STATUS, name="purchasestatus"), nullable=False),
            sa.Column("job_post_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("featured_post_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("social_graphic_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("repost_credits", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("expiration_days", sa.Integer(), nullable=False, server_default="30"),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    ensure_indexes(
        "purchases",
        [
            ("ix_purchases_id", ["id"], False),
            ("ix_purchases_user_id", ["user_id"], False),
            ("ix_purchases_selection_key", ["selection_key"], False),
            ("ix_purchases_external_session_id", ["external_session_id"], True),
            ("ix_purchases_status", ["status"], False),
        ],
    )

    if "credit_units" not in existing_tables:
        op.create_table(
            "credit_units",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("credit_type", sa.Enum(*CREDIT_TYPE, name="credittype"), nullable=False),
            sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id"), nullable=False),
            sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("used_for_job_id", sa.Integer(), nullable=True),
            sa.Column("issued_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        )
    ensure_indexes(
        "credit_units",
        [
            ("ix_credit_units_id", ["id"], False),
            ("ix_credit_units_user_id", ["user_id"], False),
            ("ix_credit_units_purchase_id", ["purchase_id"], False),
            ("ix_credit_units_used_for_job_id", ["used_for_job_id"], False),
            ("ix_credit_units_eligible", ["user_id", "credit_type", "is_used", "expires_at"], False),
        ],
    )

    if "user_add_on_grants" not in existing_tables:
        op.create_table(
            "user_add_on_grants",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("add_on_key", sa.String(), nullable=False),
            sa.Column("purchase_id", sa.Integer(), sa.ForeignKey("purchases.id"), nullable=True, unique=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("price_paid_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("purchased_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        )
    ensure_indexes(
        "user_add_on_grants",
        [
            ("ix_user_add_on_grants_id", ["id"], False),
            ("ix_user_add_on_grants_user_id", ["user_id"], False),
            ("ix_user_add_on_grants_add_on_key", ["add_on_key"], False),
        ],
    )

    if "add_on_applications" not in existing_tables:
        op.create_table(
            "add_on_applications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("grant_id", sa.Integer(), sa.ForeignKey("user_add_on_grants.id"), nullable=False),
            sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
            sa.Column("applied_at", sa.DateTime(timezone=True), nullable=False),
            sa.UniqueConstraint("grant_id", "job_id", name="uq_add_on_applications_grant_job"),
        )
    ensure_indexes(
        "add_on_applications",
        [
            ("ix_add_on_applications_id", ["id"], False),
            ("ix_add_on_applications_grant_id", ["grant_id"], False),
            ("ix_add_on_applications_job_id", ["job_id"], False),
        ],
    )

    if "upsell_purchases" not in existing_tables:
        op.create_table(
            "upsell_purchases",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
            sa.Column("external_session_id", sa.String(), nullable=False),
            sa.Column("social_media_shoutout", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("placement_bump", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("upsell_bundle", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("status", sa.Enum(*UPSELL_STATUS, name="upsellstatus"), nullable=False),
            sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("metadata", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    ensure_indexes(
        "upsell_purchases",
        [
            ("ix_upsell_purchases_id", ["id"], False),
            ("ix_upsell_purchases_user_id", ["user_id"], False),
            ("ix_upsell_purchases_job_id", ["job_id"], False),
            ("ix_upsell_purchases_external_session_id", ["external_session_id"], True),
            ("ix_upsell_purchases_status", ["status"], False),
        ],
    )

    if "promotion_tasks" not in existing_tables:
        op.create_table(
            "promotion_tasks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("job_id", sa.Integer(), sa.ForeignKey("jobs.id"), nullable=False),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("kind", sa.String(), nullable=False),
            sa.Column("source", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    ensure_indexes(
        "promotion_tasks",
        [
            ("ix_promotion_tasks_id", ["id"], False),
            ("ix_promotion_tasks_job_id", ["job_id"], False),
            ("ix_promotion_tasks_user_id", ["user_id"], False),
            ("ix_promotion_tasks_kind", ["kind"], False),
            ("ix_promotion_tasks_status", ["status"], False),
        ],
    )


def downgrade() -> None:
    op.drop_table("promotion_tasks")
    op.drop_table("upsell_purchases")
    sa.Enum(name="upsellstatus").drop(op.get_bind(), checkfirst=True)

    op.drop_table("add_on_applications")
    op.drop_table("user_add_on_grants")

    op.drop_table("credit_units")
    sa.Enum(name="credittype").drop(op.get_bind(), checkfirst=True)

    op.drop_table("purchases")
    sa.Enum(name="purchasestatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="purchasekind").drop(op.get_bind(), checkfirst=True)

    op.drop_table("jobs")
    sa.Enum(name="jobstatus").drop(op.get_bind(), checkfirst=True)

    op.drop_table("subscriptions")
    op.drop_table("profiles")
