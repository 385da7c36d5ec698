"""
AuditLog model for tracking user actions.
"""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, JSON, String, func
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import Base

if TYPE_CHECKING:
    from commission_engine.models.user import User


class AuditAction(str, Enum):
    """Types of auditable actions."""
    CREATE_COMMISSION = "commission.created"
    UPDATE_COMMISSION = "commission.updated"
    APPROVE_COMMISSION = "commission.approved"
    PAY_COMMISSION = "commission.paid"
    CANCEL_COMMISSION = "commission.cancelled"
    RECALCULATE_COMMISSION = "commission.recalculated"
    DELETE_COMMISSION = "commission.deleted"
    RESTORE_COMMISSION = "commission.restored"
    AUTO_APPROVE_COMMISSIONS = "commissions.auto_approved"
    CREATE_RULE = "commission_rule.created"
    UPDATE_RULE = "commission_rule.updated"
    ACTIVATE_RULE = "commission_rule.activated"
    DEACTIVATE_RULE = "commission_rule.deactivated"
    DELETE_RULE = "commission_rule.deleted"
    RESTORE_RULE = "commission_rule.restored"


class AuditLog(Base):
    """
    Append-only audit entry.

    Every state-changing commission or rule operation writes one row in
    the same transaction as the change itself.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    action: Mapped[AuditAction] = mapped_column(
        SQLAlchemyEnum(
            AuditAction,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        index=True,
    )
    target_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Type of entity affected (commission, commission_rule)",
    )
    target_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        comment="ID of the affected entity",
    )
    summary: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        comment="Human-readable description of the action",
    )
    action_metadata: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Field-level changes",
    )
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),
        nullable=True,
        comment="IPv4 or IPv6 address",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    # Relationships
    user: Mapped["User"] = relationship(
        "User",
        back_populates="audit_logs",
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action})>"
