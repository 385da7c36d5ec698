"""Initial database schema

Revision ID: 000_initial_schema
Revises:
Create Date: 2026-10-17

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "000_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


RULE_TYPES = ("margin_percentage", "revenue_percentage", "fixed_amount", "tiered")

AUDIT_ACTIONS = (
    "commission.created",
    "commission.updated",
    "commission.approved",
    "commission.paid",
    "commission.cancelled",
    "commission.recalculated",
    "commission.deleted",
    "commission.restored",
    "commissions.auto_approved",
    "commission_rule.created",
    "commission_rule.updated",
    "commission_rule.activated",
    "commission_rule.deactivated",
    "commission_rule.deleted",
)


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), onupdate=sa.func.now()),
    ]


def _soft_delete() -> list:
    return [
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    ]


def upgrade() -> None:
    """Create all initial tables."""

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(100), nullable=False),
        sa.Column("display_name", sa.String(100), nullable=False),
        sa.Column("role", sa.Enum("admin", "manager", "employee", name="userrole"), nullable=False),
        sa.Column("permissions", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), default=True, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_username", "users", ["username"], unique=True)

    # Employees table
    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("employee_number", sa.String(50), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), default=True, nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_employees_employee_number", "employees", ["employee_number"], unique=True)

    # Commission rules table
    op.create_table(
        "commission_rules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.String(40), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.Enum(*RULE_TYPES, name="ruletype"), nullable=False),
        sa.Column("rate", sa.Numeric(12, 2), nullable=True),
        sa.Column("tiers", sa.JSON(), nullable=True),
        sa.Column("min_margin_percentage", sa.Numeric(7, 2), nullable=True),
        sa.Column("min_order_value", sa.Numeric(12, 2), nullable=True),
        sa.Column("min_commission_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("auto_approve", sa.Boolean(), default=False, nullable=False),
        sa.Column("priority", sa.Integer(), default=0, nullable=False),
        sa.Column("is_active", sa.Boolean(), default=True, nullable=False),
        sa.Column("effective_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("effective_to", sa.DateTime(timezone=True), nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )
    op.create_index("ix_commission_rules_public_id", "commission_rules", ["public_id"], unique=True)
    op.create_index("ix_commission_rules_owner_id", "commission_rules", ["owner_id"])
    op.create_index("ix_commission_rules_employee_id", "commission_rules", ["employee_id"])
    op.create_index("ix_commission_rules_is_active", "commission_rules", ["is_active"])
    op.create_index("ix_commission_rules_deleted_at", "commission_rules", ["deleted_at"])

    # Commissions table
    op.create_table(
        "commissions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("public_id", sa.String(40), nullable=False),
        sa.Column("code", sa.String(40), nullable=False, unique=True),
        sa.Column("code_year", sa.Integer(), nullable=False),
        sa.Column("period", sa.String(7), nullable=False),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("employee_id", sa.Integer(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("shipment_id", sa.Integer(), nullable=True),
        sa.Column("quote_id", sa.Integer(), nullable=True),
        sa.Column("invoice_id", sa.Integer(), nullable=True),
        sa.Column("related_shipment_ids", sa.JSON(), nullable=True),
        sa.Column("related_quote_ids", sa.JSON(), nullable=True),
        sa.Column("rule_id", sa.Integer(), sa.ForeignKey("commission_rules.id"), nullable=True),
        sa.Column("rule_type", postgresql.ENUM(*RULE_TYPES, name="ruletype", create_type=False), nullable=True),
        sa.Column("revenue", sa.Numeric(12, 2), nullable=True),
        sa.Column("cost", sa.Numeric(12, 2), nullable=True),
        sa.Column("base_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("margin", sa.Numeric(12, 2), nullable=True),
        sa.Column("margin_percentage", sa.Numeric(9, 2), nullable=True),
        sa.Column("commission_percentage", sa.Numeric(9, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("applied_tier", sa.JSON(), nullable=True),
        sa.Column("calculation_breakdown", sa.JSON(), nullable=True),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("invoice_payment_status", sa.Enum("unpaid", "partial", "paid", name="invoicepaymentstatus"), nullable=True),
        sa.Column("invoice_paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.Enum("pending", "approved", "paid", "cancelled", name="commissionstatus"), nullable=False),
        sa.Column("approved_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.Text(), nullable=True),
        sa.Column("paid_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_reference", sa.String(200), nullable=True),
        sa.Column("payment_method", sa.Enum("bank_transfer", "cash", "check", "payroll", "other", name="paymentmethod"), nullable=True),
        sa.Column("payment_notes", sa.Text(), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("cancelled_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("description", sa.String(500), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("updated_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_soft_delete(),
        *_timestamps(),
    )
    op.create_index("ix_commissions_public_id", "commissions", ["public_id"], unique=True)
    op.create_index("ix_commissions_code_year", "commissions", ["code_year"])
    op.create_index("ix_commissions_period", "commissions", ["period"])
    op.create_index("ix_commissions_owner_id", "commissions", ["owner_id"])
    op.create_index("ix_commissions_employee_id", "commissions", ["employee_id"])
    op.create_index("ix_commissions_invoice_id", "commissions", ["invoice_id"])
    op.create_index("ix_commissions_rule_id", "commissions", ["rule_id"])
    op.create_index("ix_commissions_status", "commissions", ["status"])
    op.create_index("ix_commissions_deleted_at", "commissions", ["deleted_at"])

    # Audit logs table
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("action", sa.Enum(*AUDIT_ACTIONS, name="auditaction"), nullable=False),
        sa.Column("target_type", sa.String(50), nullable=True),
        sa.Column("target_id", sa.Integer(), nullable=True),
        sa.Column("summary", sa.String(500), nullable=True),
        sa.Column("action_metadata", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_audit_logs_user_id", "audit_logs", ["user_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("audit_logs")
    op.drop_table("commissions")
    op.drop_table("commission_rules")
    op.drop_table("employees")
    op.drop_table("users")

    # Drop enums
    op.execute("DROP TYPE IF EXISTS auditaction")
    op.execute("DROP TYPE IF EXISTS paymentmethod")
    op.execute("DROP TYPE IF EXISTS commissionstatus")
    op.execute("DROP TYPE IF EXISTS invoicepaymentstatus")
    op.execute("DROP TYPE IF EXISTS ruletype")
    op.execute("DROP TYPE IF EXISTS userrole")
