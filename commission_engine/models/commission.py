"""
Commission model: money owed to one employee for one transaction.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from commission_engine.models.base import BaseModel, SoftDeleteMixin
from commission_engine.models.rule import RuleType

if TYPE_CHECKING:
    from commission_engine.models.employee import Employee
    from commission_engine.models.rule import CommissionRule


class CommissionStatus(str, Enum):
    """Lifecycle status. PAID and CANCELLED are terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How a commission was disbursed."""
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    PAYROLL = "payroll"
    OTHER = "other"


class InvoicePaymentStatus(str, Enum):
    """Payment state of the linked invoice."""
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class Commission(BaseModel, SoftDeleteMixin):
    """
    Computed commission record.

    The approval, payment, cancellation and deletion stamps form the
    record's own audit trail; they are written once and never cleared,
    except deleted_at/deleted_by_id which restore resets.
    """

    __tablename__ = "commissions"

    # Identity
    public_id: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        index=True,
        nullable=False,
    )
    code: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        nullable=False,
        comment="Human-readable code, e.g. COMM-2026-0007",
    )
    code_year: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    period: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        index=True,
        comment="Reporting bucket YYYY-MM",
    )

    # Ownership
    owner_id: Mapped[int] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id"),
        nullable=False,
        index=True,
    )

    # Source transactions (external systems, opaque ids)
    shipment_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    quote_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    invoice_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )
    related_shipment_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    related_quote_ids: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    rule_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("commission_rules.id"),
        nullable=True,
        index=True,
    )
    rule_type: Mapped[Optional[RuleType]] = mapped_column(
        SQLAlchemyEnum(
            RuleType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

    # Financial data
    revenue: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    base_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    margin: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    margin_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(9, 2),
        nullable=True,
    )
    commission_percentage: Mapped[Decimal] = mapped_column(
        Numeric(9, 2),
        nullable=False,
    )
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )
    currency: Mapped[str] = mapped_column(
        String(3),
        nullable=False,
    )
    applied_tier: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    calculation_breakdown: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment="Snapshot of how total_amount was derived, frozen at approval",
    )
    calculated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Linked invoice
    invoice_payment_status: Mapped[Optional[InvoicePaymentStatus]] = mapped_column(
        SQLAlchemyEnum(
            InvoicePaymentStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    invoice_paid_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Status
    status: Mapped[CommissionStatus] = mapped_column(
        SQLAlchemyEnum(
            CommissionStatus,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=CommissionStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Approval
    approved_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    approved_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Payment
    paid_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    paid_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    payment_method: Mapped[Optional[PaymentMethod]] = mapped_column(
        SQLAlchemyEnum(
            PaymentMethod,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )
    payment_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Cancellation
    cancelled_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )
    cancelled_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_by_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("users.id"),
        nullable=True,
    )

    # Relationships
    employee: Mapped["Employee"] = relationship("Employee")
    rule: Mapped[Optional["CommissionRule"]] = relationship("CommissionRule")

    def __repr__(self) -> str:
        return f"<Commission(id={self.id}, code='{self.code}', status={self.status})>"
