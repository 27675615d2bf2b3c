"""Initial schema — locations, receipts, rides, payments, monitoring logs"""
from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "locations",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "receipt_units",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total", sa.Numeric(12, 2), nullable=False, server_default="0"),
    )

    op.create_table(
        "receipts",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("standard_id", sa.String, sa.ForeignKey("receipt_units.id"), nullable=False),
        sa.Column("per_minute_id", sa.String, sa.ForeignKey("receipt_units.id"), nullable=False),
        sa.Column("surcharge_id", sa.String, sa.ForeignKey("receipt_units.id"), nullable=False),
        sa.Column("is_nightly", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("price", sa.Numeric(12, 2), nullable=False),
        sa.Column("discount", sa.Numeric(12, 2), nullable=False),
        sa.Column("total", sa.Numeric(12, 2), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "rides",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("device_code", sa.String(16), nullable=False),
        sa.Column("user_id", sa.String, nullable=False),
        sa.Column("realname", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(20), nullable=False),
        sa.Column("birthday", sa.Date, nullable=False),
        sa.Column("platform_id", sa.String, nullable=False),
        sa.Column("franchise_id", sa.String, nullable=False),
        sa.Column("region_id", sa.String, nullable=False),
        sa.Column("discount_group_id", sa.String, nullable=True),
        sa.Column("discount_id", sa.String, nullable=True),
        sa.Column("insurance_id", sa.String, nullable=True),
        sa.Column("started_phone_location_id", sa.String, sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("started_device_location_id", sa.String, sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("terminated_phone_location_id", sa.String, sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("terminated_device_location_id", sa.String, sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("terminated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("terminated_type", sa.String(30), nullable=True),
        sa.Column("monitoring_status", sa.String(30), nullable=False, server_default="BEFORE_CONFIRM"),
        sa.Column("photo", sa.String(2048), nullable=True),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("receipt_id", sa.String, sa.ForeignKey("receipts.id"), unique=True, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_rides_device", "rides", ["device_code"])
    op.create_index("idx_rides_user", "rides", ["user_id"])
    op.create_index("idx_rides_platform", "rides", ["platform_id"])
    op.create_index("idx_rides_franchise", "rides", ["franchise_id"])
    op.create_index("idx_rides_region", "rides", ["region_id"])
    op.create_index("idx_rides_started", "rides", ["started_at"])
    op.create_index("idx_rides_terminated", "rides", ["terminated_at"])
    op.create_index("idx_rides_monitoring", "rides", ["monitoring_status"])
    op.create_index("idx_rides_created", "rides", ["created_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_id", sa.String, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("platform_id", sa.String, nullable=False),
        sa.Column("franchise_id", sa.String, nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("initial_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(255), nullable=True),
        sa.Column("refund_reason", sa.String(255), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("amount >= 0 AND amount <= initial_amount", name="ck_payments_amount"),
    )
    op.create_index("idx_payments_ride", "payments", ["ride_id"])
    op.create_index("idx_payments_platform", "payments", ["platform_id"])
    op.create_index("idx_payments_franchise", "payments", ["franchise_id"])
    op.create_index("idx_payments_type", "payments", ["payment_type"])
    op.create_index("idx_payments_refunded", "payments", ["refunded_at"])
    op.create_index("idx_payments_created", "payments", ["created_at"])

    op.create_table(
        "monitoring_logs",
        sa.Column("id", sa.String, primary_key=True),
        sa.Column("ride_id", sa.String, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("monitoring_status", sa.String(30), nullable=False),
        sa.Column("log_type", sa.String(20), nullable=False),
        sa.Column("message", sa.String(500), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_monitoring_logs_ride", "monitoring_logs", ["ride_id"])
    op.create_index("idx_monitoring_logs_created", "monitoring_logs", ["created_at"])


def downgrade() -> None:
    op.drop_table("monitoring_logs")
    op.drop_table("payments")
    op.drop_table("rides")
    op.drop_table("receipts")
    op.drop_table("receipt_units")
    op.drop_table("locations")
