"""Initial schema: accounts, listings, bookings, points ledger, availability, subscriptions.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users: points_balance has no CHECK >= 0, penalties may drive it negative
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("points_balance", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_host", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_guest", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("ledger_frozen", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("deactivated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("locality", sa.String(255), nullable=True),
        sa.Column("province", sa.String(100), nullable=True),
        sa.Column("max_guests", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("cancellation_policy", sa.String(20), nullable=False, server_default="moderate"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("max_guests > 0", name="check_property_max_guests_positive"),
        sa.CheckConstraint(
            "cancellation_policy IN ('flexible', 'moderate', 'strict')",
            name="check_property_cancellation_policy",
        ),
    )
    op.create_index("ix_properties_id", "properties", ["id"])
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "races",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("race_date", sa.Date(), nullable=False),
        sa.Column("province", sa.String(100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_available_for_booking", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_races_id", "races", ["id"])
    op.create_index("ix_races_host_id", "races", ["host_id"])
    op.create_index("ix_races_property_id", "races", ["property_id"])
    # Discovery: "bookable races, soonest first"
    op.create_index("ix_races_bookable_date", "races", ["is_active", "is_available_for_booking", "race_date"])

    op.create_table(
        "province_rates",
        sa.Column("province", sa.String(100), primary_key=True),
        sa.Column("points_per_night", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("points_per_night > 0", name="check_province_rate_positive"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("race_id", sa.Integer(), sa.ForeignKey("races.id"), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("guest_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("check_in", sa.Date(), nullable=False),
        sa.Column("check_out", sa.Date(), nullable=False),
        sa.Column("guests_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("request_message", sa.Text(), nullable=True),
        sa.Column("points_cost", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("host_response_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("host_response_message", sa.Text(), nullable=True),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(10), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("refund_amount", sa.Integer(), nullable=True),
        sa.Column("penalty_amount", sa.Integer(), nullable=True),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_prompt_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("guests_count > 0", name="check_booking_guests_positive"),
        sa.CheckConstraint("points_cost >= 0", name="check_booking_cost_non_negative"),
        sa.CheckConstraint("check_out > check_in", name="check_booking_dates_ordered"),
        sa.CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired', "
            "'confirmed', 'completed', 'cancelled')",
            name="check_booking_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_race_id", "bookings", ["race_id"])
    op.create_index("ix_bookings_property_id", "bookings", ["property_id"])
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"])
    op.create_index("ix_bookings_guest_id", "bookings", ["guest_id"])
    # Scheduler sweeps: WHERE status = ? AND <deadline|check_in|check_out> <= ?
    op.create_index("ix_bookings_status_deadline", "bookings", ["status", "host_response_deadline"])
    op.create_index("ix_bookings_status_check_in", "bookings", ["status", "check_in"])
    op.create_index("ix_bookings_status_check_out", "bookings", ["status", "check_out"])

    op.create_table(
        "points_transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(30), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_points_transactions_id", "points_transactions", ["id"])
    op.create_index("ix_points_transactions_user_id", "points_transactions", ["user_id"])
    op.create_index("ix_points_transactions_booking_id", "points_transactions", ["booking_id"])
    op.create_index("ix_points_transactions_user_created", "points_transactions", ["user_id", "created_at"])

    op.create_table(
        "property_availability",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        # One row per night: concurrent reservations of the same night collide here
        sa.UniqueConstraint("property_id", "date", name="uq_property_availability_date"),
        sa.CheckConstraint(
            "status IN ('available', 'reserved', 'blocked')",
            name="check_availability_status",
        ),
    )
    op.create_index("ix_property_availability_id", "property_availability", ["id"])
    op.create_index("ix_property_availability_property_id", "property_availability", ["property_id"])
    op.create_index("ix_property_availability_booking_id", "property_availability", ["booking_id"])

    op.create_table(
        "booking_conversations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False, unique=True),
        sa.Column("guest_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("host_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_blocked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("blocked_reason", sa.String(255), nullable=True),
        sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_booking_conversations_id", "booking_conversations", ["id"])
    op.create_index("ix_booking_conversations_guest_id", "booking_conversations", ["guest_id"])
    op.create_index("ix_booking_conversations_host_id", "booking_conversations", ["host_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
    op.create_index("ix_notifications_created", "notifications", ["created_at"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False, unique=True),
        sa.Column("external_subscription_id", sa.String(255), nullable=True),
        sa.Column("external_customer_id", sa.String(255), nullable=True),
        sa.Column("plan_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("cancellation_effective_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_payment_amount", sa.Integer(), nullable=True),
        sa.Column("last_payment_currency", sa.String(3), nullable=True),
        sa.Column("last_payment_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    op.create_index("ix_subscriptions_external_subscription_id", "subscriptions", ["external_subscription_id"])
    op.create_index("ix_subscriptions_external_customer_id", "subscriptions", ["external_customer_id"])

    op.create_table(
        "subscription_payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("subscription_id", sa.Integer(), sa.ForeignKey("subscriptions.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("kind", sa.String(20), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("external_invoice_id", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("kind IN ('initial', 'renewal')", name="check_subscription_payment_kind"),
    )
    op.create_index("ix_subscription_payments_id", "subscription_payments", ["id"])
    op.create_index("ix_subscription_payments_subscription_id", "subscription_payments", ["subscription_id"])
    op.create_index("ix_subscription_payments_user_id", "subscription_payments", ["user_id"])

    op.create_table(
        "processed_webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("dedup_key", sa.String(255), nullable=False, unique=True),
        sa.Column("kind", sa.String(50), nullable=False),
        sa.Column("external_subscription_id", sa.String(255), nullable=True),
        sa.Column("external_event_id", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_processed_webhook_events_id", "processed_webhook_events", ["id"])
    op.create_index(
        "ix_processed_webhook_events_external_subscription_id",
        "processed_webhook_events",
        ["external_subscription_id"],
    )

    op.create_table(
        "account_activation_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("actor", sa.String(20), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_account_activation_log_id", "account_activation_log", ["id"])
    op.create_index("ix_account_activation_log_user_id", "account_activation_log", ["user_id"])


def downgrade() -> None:
    op.drop_table("account_activation_log")
    op.drop_table("processed_webhook_events")
    op.drop_table("subscription_payments")
    op.drop_table("subscriptions")
    op.drop_table("notifications")
    op.drop_table("booking_conversations")
    op.drop_table("property_availability")
    op.drop_table("points_transactions")
    op.drop_table("bookings")
    op.drop_table("province_rates")
    op.drop_table("races")
    op.drop_table("properties")
    op.drop_table("users")
