"""
Database models for the commission engine.

All models are exported here for convenient imports:
    from commission_engine.models import Commission, CommissionRule, etc.
"""

from commission_engine.models.audit import AuditAction, AuditLog
from commission_engine.models.base import Base, BaseModel, SoftDeleteMixin, TimestampMixin
from commission_engine.models.commission import (
    Commission,
    CommissionStatus,
    InvoicePaymentStatus,
    PaymentMethod,
)
from commission_engine.models.employee import Employee
from commission_engine.models.rule import FINANCIAL_FIELDS, CommissionRule, RuleType
from commission_engine.models.user import User, UserRole

__all__ = [
    # Base
    "Base",
    "BaseModel",
    "SoftDeleteMixin",
    "TimestampMixin",
    # User
    "User",
    "UserRole",
    # Employee
    "Employee",
    # Rule
    "CommissionRule",
    "RuleType",
    "FINANCIAL_FIELDS",
    # Commission
    "Commission",
    "CommissionStatus",
    "InvoicePaymentStatus",
    "PaymentMethod",
    # Audit
    "AuditLog",
    "AuditAction",
]
