"""initial schema

Revision ID: 3b7e5c21a9d4
Revises:
Create Date: 2026-03-01 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "3b7e5c21a9d4"
down_revision = None
branch_labels = None
depends_on = None


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def _billing():
    return [
        sa.Column("billing_address", sa.String(length=255), nullable=True),
        sa.Column("billing_city", sa.String(length=120), nullable=True),
        sa.Column("billing_postcode", sa.String(length=20), nullable=True),
        sa.Column("billing_country", sa.String(length=80), nullable=True),
    ]


def _project_donation_columns():
    return [
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("donor_id", sa.Integer(), sa.ForeignKey("donors.id"), nullable=False),
        sa.Column("order_number", sa.String(length=32), nullable=True),
        sa.Column(
            "order_item_id",
            sa.Integer(),
            sa.ForeignKey("order_items.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("donation_type", sa.String(length=10), nullable=False),
        sa.Column("payment_method", sa.String(length=40), nullable=False),
        sa.Column("collected_via", sa.String(length=40), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("gift_aid", sa.Boolean(), nullable=False),
        *_billing(),
        sa.Column("email_sent", sa.Boolean(), nullable=False),
        sa.Column("report_sent", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    ]


def _project_donation_indexes(table: str) -> None:
    with op.batch_alter_table(table) as batch_op:
        batch_op.create_index(batch_op.f(f"ix_{table}_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f(f"ix_{table}_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(batch_op.f(f"ix_{table}_order_number"), ["order_number"], unique=False)
        batch_op.create_index(batch_op.f(f"ix_{table}_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f(f"ix_{table}_transaction_id"), ["transaction_id"], unique=False)


def _project_tables(prefix: str) -> None:
    op.create_table(
        f"{prefix}_projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_type", sa.String(length=40), nullable=False),
        sa.Column("location", sa.String(length=200), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table(f"{prefix}_projects") as batch_op:
        batch_op.create_index(batch_op.f(f"ix_{prefix}_projects_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f(f"ix_{prefix}_projects_project_type"), ["project_type"], unique=False)

    op.create_table(
        f"{prefix}_project_countries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_type", sa.String(length=40), nullable=False),
        sa.Column("country", sa.String(length=80), nullable=False),
        sa.Column("price_pence", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("price_pence > 0", name=f"ck_{prefix}_country_price_pos"),
    )
    with op.batch_alter_table(f"{prefix}_project_countries") as batch_op:
        batch_op.create_index(
            batch_op.f(f"ix_{prefix}_project_countries_created_at"), ["created_at"], unique=False
        )
        batch_op.create_index(f"ix_{prefix}_country_type", ["project_type", "country"], unique=False)


def upgrade():
    # --- donors ---
    op.create_table(
        "donors",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("title", sa.String(length=20), nullable=True),
        sa.Column("first_name", sa.String(length=120), nullable=False),
        sa.Column("last_name", sa.String(length=120), nullable=False),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("postcode", sa.String(length=20), nullable=True),
        sa.Column("country", sa.String(length=80), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("donors") as batch_op:
        batch_op.create_index(batch_op.f("ix_donors_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_donors_email"), ["email"], unique=True)

    # --- appeals / fundraisers ---
    op.create_table(
        "appeals",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table("appeals") as batch_op:
        batch_op.create_index(batch_op.f("ix_appeals_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_appeals_slug"), ["slug"], unique=True)

    op.create_table(
        "fundraisers",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("appeal_id", sa.Integer(), sa.ForeignKey("appeals.id"), nullable=False),
        sa.Column("slug", sa.String(length=120), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("fundraiser_name", sa.String(length=160), nullable=False),
        sa.Column("email", sa.String(length=254), nullable=False),
        sa.Column("target_pence", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table("fundraisers") as batch_op:
        batch_op.create_index(batch_op.f("ix_fundraisers_appeal_id"), ["appeal_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_fundraisers_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_fundraisers_slug"), ["slug"], unique=True)

    # --- water + sponsorship catalogue ---
    _project_tables("water")
    _project_tables("sponsorship")

    # --- orders ---
    op.create_table(
        "orders",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_number", sa.String(length=32), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("subtotal_pence", sa.Integer(), nullable=False),
        sa.Column("fees_pence", sa.Integer(), nullable=False),
        sa.Column("total_pence", sa.Integer(), nullable=False),
        sa.Column("cover_fees", sa.Boolean(), nullable=False),
        sa.Column("gift_aid", sa.Boolean(), nullable=False),
        sa.Column("marketing_email", sa.Boolean(), nullable=False),
        sa.Column("marketing_sms", sa.Boolean(), nullable=False),
        sa.Column("donor_first_name", sa.String(length=120), nullable=False),
        sa.Column("donor_last_name", sa.String(length=120), nullable=False),
        sa.Column("donor_email", sa.String(length=254), nullable=False),
        sa.Column("donor_phone", sa.String(length=40), nullable=True),
        sa.Column("donor_address", sa.String(length=255), nullable=True),
        sa.Column("donor_city", sa.String(length=120), nullable=True),
        sa.Column("donor_postcode", sa.String(length=20), nullable=True),
        sa.Column("donor_country", sa.String(length=80), nullable=True),
        *_billing(),
        sa.Column("abandoned_email_2_sent_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("total_pence >= 0", name="ck_orders_total_nonneg"),
    )
    with op.batch_alter_table("orders") as batch_op:
        batch_op.create_index(batch_op.f("ix_orders_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_donor_email"), ["donor_email"], unique=False)
        batch_op.create_index(batch_op.f("ix_orders_order_number"), ["order_number"], unique=True)
        batch_op.create_index("ix_orders_status_created", ["status", "created_at"], unique=False)

    op.create_table(
        "order_items",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("order_id", sa.Integer(), sa.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False),
        sa.Column("appeal_id", sa.Integer(), sa.ForeignKey("appeals.id"), nullable=True),
        sa.Column("fundraiser_id", sa.Integer(), sa.ForeignKey("fundraisers.id"), nullable=True),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("water_project_id", sa.Integer(), sa.ForeignKey("water_projects.id"), nullable=True),
        sa.Column(
            "water_project_country_id",
            sa.Integer(),
            sa.ForeignKey("water_project_countries.id"),
            nullable=True,
        ),
        sa.Column("plaque_name", sa.String(length=160), nullable=True),
        sa.Column(
            "sponsorship_project_id", sa.Integer(), sa.ForeignKey("sponsorship_projects.id"), nullable=True
        ),
        sa.Column(
            "sponsorship_country_id",
            sa.Integer(),
            sa.ForeignKey("sponsorship_project_countries.id"),
            nullable=True,
        ),
        sa.Column("sponsorship_project_type", sa.String(length=40), nullable=True),
        sa.Column("appeal_title", sa.String(length=200), nullable=False),
        sa.Column("product_name", sa.String(length=200), nullable=True),
        sa.Column("frequency", sa.String(length=10), nullable=False),
        sa.Column("donation_type", sa.String(length=10), nullable=False),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount_pence > 0", name="ck_order_items_amount_pos"),
    )
    with op.batch_alter_table("order_items") as batch_op:
        batch_op.create_index(batch_op.f("ix_order_items_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_order_items_order_id"), ["order_id"], unique=False)

    # --- appeal donations ---
    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("donor_id", sa.Integer(), sa.ForeignKey("donors.id"), nullable=False),
        sa.Column("appeal_id", sa.Integer(), sa.ForeignKey("appeals.id"), nullable=True),
        sa.Column("fundraiser_id", sa.Integer(), sa.ForeignKey("fundraisers.id", ondelete="SET NULL"), nullable=True),
        sa.Column("product_id", sa.String(length=64), nullable=True),
        sa.Column("order_number", sa.String(length=32), nullable=True),
        sa.Column(
            "order_item_id",
            sa.Integer(),
            sa.ForeignKey("order_items.id", ondelete="SET NULL"),
            nullable=True,
            unique=True,
        ),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("donation_type", sa.String(length=10), nullable=False),
        sa.Column("frequency", sa.String(length=10), nullable=False),
        sa.Column("payment_method", sa.String(length=40), nullable=False),
        sa.Column("collected_via", sa.String(length=40), nullable=False),
        sa.Column("is_anonymous", sa.Boolean(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("transaction_id", sa.String(length=120), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("gift_aid", sa.Boolean(), nullable=False),
        *_billing(),
        *_timestamps(),
        sa.CheckConstraint("amount_pence >= 0", name="ck_donations_amount_nonneg"),
    )
    with op.batch_alter_table("donations") as batch_op:
        batch_op.create_index(batch_op.f("ix_donations_appeal_id"), ["appeal_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_fundraiser_id"), ["fundraiser_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_order_number"), ["order_number"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_status"), ["status"], unique=False)
        batch_op.create_index(batch_op.f("ix_donations_transaction_id"), ["transaction_id"], unique=False)
        batch_op.create_index("ix_donations_order_status", ["order_number", "status"], unique=False)

    # --- recurring ---
    op.create_table(
        "recurring_donations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("donor_id", sa.Integer(), sa.ForeignKey("donors.id"), nullable=False),
        sa.Column("appeal_id", sa.Integer(), sa.ForeignKey("appeals.id"), nullable=True),
        sa.Column("water_project_id", sa.Integer(), sa.ForeignKey("water_projects.id"), nullable=True),
        sa.Column(
            "sponsorship_project_id", sa.Integer(), sa.ForeignKey("sponsorship_projects.id"), nullable=True
        ),
        sa.Column("order_item_id", sa.Integer(), sa.ForeignKey("order_items.id", ondelete="SET NULL"), nullable=True),
        sa.Column("order_number", sa.String(length=32), nullable=True),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("donation_type", sa.String(length=10), nullable=False),
        sa.Column("frequency", sa.String(length=10), nullable=False),
        sa.Column("payment_method", sa.String(length=40), nullable=False),
        sa.Column("subscription_id", sa.String(length=120), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("last_payment_date", sa.DateTime(), nullable=True),
        sa.Column("next_payment_date", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("subscription_id", "order_item_id", name="uq_recurring_sub_item"),
    )
    with op.batch_alter_table("recurring_donations") as batch_op:
        batch_op.create_index(batch_op.f("ix_recurring_donations_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_recurring_donations_donor_id"), ["donor_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_recurring_donations_order_number"), ["order_number"], unique=False)
        batch_op.create_index(batch_op.f("ix_recurring_donations_status"), ["status"], unique=False)
        batch_op.create_index(
            batch_op.f("ix_recurring_donations_subscription_id"), ["subscription_id"], unique=False
        )

    # --- water / sponsorship donations ---
    op.create_table(
        "water_project_donations",
        *_project_donation_columns(),
        sa.Column("water_project_id", sa.Integer(), sa.ForeignKey("water_projects.id"), nullable=False),
        sa.Column("country_id", sa.Integer(), sa.ForeignKey("water_project_countries.id"), nullable=False),
        sa.Column("plaque_name", sa.String(length=160), nullable=True),
    )
    _project_donation_indexes("water_project_donations")
    with op.batch_alter_table("water_project_donations") as batch_op:
        batch_op.create_index(
            batch_op.f("ix_water_project_donations_water_project_id"), ["water_project_id"], unique=False
        )

    op.create_table(
        "sponsorship_donations",
        *_project_donation_columns(),
        sa.Column(
            "sponsorship_project_id", sa.Integer(), sa.ForeignKey("sponsorship_projects.id"), nullable=False
        ),
        sa.Column(
            "country_id", sa.Integer(), sa.ForeignKey("sponsorship_project_countries.id"), nullable=False
        ),
    )
    _project_donation_indexes("sponsorship_donations")
    with op.batch_alter_table("sponsorship_donations") as batch_op:
        batch_op.create_index(
            batch_op.f("ix_sponsorship_donations_sponsorship_project_id"), ["sponsorship_project_id"], unique=False
        )

    # --- report pool ---
    op.create_table(
        "sponsorship_report_pool",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "sponsorship_project_id",
            sa.Integer(),
            sa.ForeignKey("sponsorship_projects.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("pdf_url", sa.String(length=500), nullable=False),
        sa.Column(
            "assigned_donation_id",
            sa.Integer(),
            sa.ForeignKey("sponsorship_donations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_recurring_ref", sa.String(length=200), nullable=True),
        sa.Column("assigned_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    with op.batch_alter_table("sponsorship_report_pool") as batch_op:
        batch_op.create_index(batch_op.f("ix_sponsorship_report_pool_created_at"), ["created_at"], unique=False)
        batch_op.create_index(
            batch_op.f("ix_sponsorship_report_pool_sponsorship_project_id"), ["sponsorship_project_id"], unique=False
        )
        batch_op.create_index(
            "ix_report_pool_available",
            ["sponsorship_project_id", "assigned_recurring_ref", "created_at"],
            unique=False,
        )

    # --- webhook ledger + idempotency claims ---
    op.create_table(
        "stripe_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("event_id", sa.String(length=120), nullable=False),
        sa.Column("type", sa.String(length=120), nullable=False),
        sa.Column("livemode", sa.Boolean(), nullable=False),
        sa.Column("object_id", sa.String(length=120), nullable=True),
        sa.Column("processed_at", sa.DateTime(), nullable=False),
        *_timestamps(),
    )
    with op.batch_alter_table("stripe_events") as batch_op:
        batch_op.create_index(batch_op.f("ix_stripe_events_created_at"), ["created_at"], unique=False)
        batch_op.create_index(batch_op.f("ix_stripe_events_event_id"), ["event_id"], unique=True)
        batch_op.create_index(batch_op.f("ix_stripe_events_object_id"), ["object_id"], unique=False)
        batch_op.create_index(batch_op.f("ix_stripe_events_type"), ["type"], unique=False)
        batch_op.create_index("ix_stripe_events_type_created", ["type", "created_at"], unique=False)

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("scope", sa.String(length=60), nullable=False),
        sa.Column("key", sa.String(length=200), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("scope", "key", name="uq_idempotency_scope_key"),
    )
    with op.batch_alter_table("idempotency_keys") as batch_op:
        batch_op.create_index(batch_op.f("ix_idempotency_keys_created_at"), ["created_at"], unique=False)


def downgrade():
    for table in (
        "idempotency_keys",
        "stripe_events",
        "sponsorship_report_pool",
        "sponsorship_donations",
        "water_project_donations",
        "recurring_donations",
        "donations",
        "order_items",
        "orders",
        "sponsorship_project_countries",
        "sponsorship_projects",
        "water_project_countries",
        "water_projects",
        "fundraisers",
        "appeals",
        "donors",
    ):
        op.drop_table(table)
