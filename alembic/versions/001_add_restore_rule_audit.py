"""Add commission_rule.restored to auditaction enum

Revision ID: 001_add_restore_rule_audit
Revises: 000_initial_schema
Create Date: 2026-10-17

"""

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_add_restore_rule_audit"
down_revision: Union[str, None] = "000_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add commission_rule.restored to auditaction enum."""
    op.execute("ALTER TYPE auditaction ADD VALUE IF NOT EXISTS 'commission_rule.restored'")


def downgrade() -> None:
    """Cannot remove enum values in PostgreSQL."""
    pass
