"""
CommissionRule model: a reusable policy turning transaction figures into
a commission amount.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import BaseModel, SoftDeleteMixin


class RuleType(str, Enum):
    """Computation strategy of a commission rule."""
    MARGIN_PERCENTAGE = "margin_percentage"      # % of revenue - cost
    REVENUE_PERCENTAGE = "revenue_percentage"    # % of revenue
    FIXED_AMOUNT = "fixed_amount"                # flat amount per transaction
    TIERED = "tiered"                            # % picked from amount bands


# Fields that determine the computed amount; frozen once a commission uses the rule
FINANCIAL_FIELDS = (
    "type",
    "rate",
    "tiers",
    "min_margin_percentage",
    "min_order_value",
    "min_commission_amount",
)


class CommissionRule(BaseModel, SoftDeleteMixin):
    """
    Commission policy assigned to an employee.

    Tiers are stored as a JSON list of
    {"min_amount", "max_amount", "rate", "description"} dicts, sorted by
    min_amount ascending. Amounts inside the JSON are strings so Decimal
    precision survives the round trip.
    """

    __tablename__ = "commission_rules"

    public_id: Mapped[str] = mapped_column(
        String(40),
        unique=True,
        index=True,
        nullable=False,
    )
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

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    type: Mapped[RuleType] = mapped_column(
        SQLAlchemyEnum(
            RuleType,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Percentage, or flat amount for fixed_amount rules",
    )
    tiers: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
    )

    # Gating thresholds
    min_margin_percentage: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(7, 2),
        nullable=True,
    )
    min_order_value: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )
    min_commission_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
    )

    auto_approve: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    priority: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
        index=True,
    )
    effective_from: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    effective_to: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<CommissionRule(id={self.id}, name='{self.name}', type={self.type})>"
