"""coupon engine schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    user_role = sa.Enum("customer", "admin", name="userrole", native_enum=False)
    discount_type = sa.Enum("fixed", "percentage", name="discounttype", native_enum=False)
    usage_type = sa.Enum("single_use", "multi_use", name="couponusagetype", native_enum=False)
    issued_status = sa.Enum("available", "active", "fully_used", "expired", name="issuedcouponstatus", native_enum=False)
    assignment_method = sa.Enum("auto", "manual", name="assignmentmethod", native_enum=False)

    op.create_table(
        "users",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False, server_default="customer"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_users_email"), "users", ["email"], unique=True)

    op.create_table(
        "coupon_templates",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("discount_type", discount_type, nullable=False),
        sa.Column("discount_value", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("usage_type", usage_type, nullable=False),
        sa.Column("max_issuance", sa.Integer(), nullable=True),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redemption_methods", sa.JSON(), nullable=False),
        sa.Column("merchant_pin", sa.String(length=6), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(op.f("ix_coupon_templates_code"), "coupon_templates", ["code"], unique=True)
    op.create_index(op.f("ix_coupon_templates_valid_from"), "coupon_templates", ["valid_from"])
    op.create_index(op.f("ix_coupon_templates_expires_at"), "coupon_templates", ["expires_at"])

    op.create_table(
        "issued_coupons",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("unique_code", sa.String(length=12), nullable=False),
        sa.Column("template_id", sa.UUID(as_uuid=True), sa.ForeignKey("coupon_templates.id"), nullable=False),
        sa.Column("user_id", sa.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", issued_status, nullable=False),
        sa.Column("times_can_be_used", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("times_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("assigned_by", sa.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("assignment_method", assignment_method, nullable=False),
        sa.Column("assignment_reason", sa.String(length=500), nullable=True),
        sa.Column("assignment_notes", sa.String(length=1000), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("template_id", "user_id", "assigned_by", name="uq_issued_coupons_template_user_assigner"),
        sa.CheckConstraint("times_used >= 0 AND times_used <= times_can_be_used", name="ck_issued_coupons_times_used"),
    )
    op.create_index(op.f("ix_issued_coupons_unique_code"), "issued_coupons", ["unique_code"], unique=True)
    op.create_index(op.f("ix_issued_coupons_template_id"), "issued_coupons", ["template_id"])
    op.create_index(op.f("ix_issued_coupons_expires_at"), "issued_coupons", ["expires_at"])
    op.create_index("ix_issued_coupons_user_status", "issued_coupons", ["user_id", "status"])

    op.create_table(
        "coupon_usage_logs",
        sa.Column("id", sa.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("issued_coupon_id", sa.UUID(as_uuid=True), sa.ForeignKey("issued_coupons.id"), nullable=False),
        sa.Column("redeemed_by_user_id", sa.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
    )
    op.create_index(op.f("ix_coupon_usage_logs_redeemed_by_user_id"), "coupon_usage_logs", ["redeemed_by_user_id"])
    op.create_index("ix_coupon_usage_logs_coupon_used_at", "coupon_usage_logs", ["issued_coupon_id", "used_at"])


def downgrade() -> None:
    op.drop_index("ix_coupon_usage_logs_coupon_used_at", table_name="coupon_usage_logs")
    op.drop_index(op.f("ix_coupon_usage_logs_redeemed_by_user_id"), table_name="coupon_usage_logs")
    op.drop_table("coupon_usage_logs")

    op.drop_index("ix_issued_coupons_user_status", table_name="issued_coupons")
    op.drop_index(op.f("ix_issued_coupons_expires_at"), table_name="issued_coupons")
    op.drop_index(op.f("ix_issued_coupons_template_id"), table_name="issued_coupons")
    op.drop_index(op.f("ix_issued_coupons_unique_code"), table_name="issued_coupons")
    op.drop_table("issued_coupons")

    op.drop_index(op.f("ix_coupon_templates_expires_at"), table_name="coupon_templates")
    op.drop_index(op.f("ix_coupon_templates_valid_from"), table_name="coupon_templates")
    op.drop_index(op.f("ix_coupon_templates_code"), table_name="coupon_templates")
    op.drop_table("coupon_templates")

    op.drop_index(op.f("ix_users_email"), table_name="users")
    op.drop_table("users")
