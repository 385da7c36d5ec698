"""Commission request and response schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from commission_engine.models.commission import (
    CommissionStatus,
    InvoicePaymentStatus,
    PaymentMethod,
)
from commission_engine.models.rule import RuleType


class CommissionCreate(BaseModel):
    """Create a commission from transaction figures."""

    employee_id: int
    revenue: Decimal
    cost: Optional[Decimal] = None
    rule_id: Optional[int] = None
    shipment_id: Optional[int] = None
    quote_id: Optional[int] = None
    invoice_id: Optional[int] = None
    invoice_payment_status: Optional[InvoicePaymentStatus] = None
    invoice_paid_date: Optional[datetime] = None
    related_shipment_ids: Optional[List[int]] = None
    related_quote_ids: Optional[List[int]] = None
    currency: Optional[str] = None
    period: Optional[str] = Field(None, pattern=r"^\d{4}-(0[1-9]|1[0-2])$")
    description: Optional[str] = None
    notes: Optional[str] = None


class CommissionUpdate(BaseModel):
    """Manual adjustment of amounts or text. Status is never changed here."""

    total_amount: Optional[Decimal] = None
    commission_percentage: Optional[Decimal] = None
    description: Optional[str] = None
    notes: Optional[str] = None


class CommissionApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=2000)


class CommissionPayRequest(BaseModel):
    payment_reference: str
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=2000)


class CommissionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class CommissionRecalculateRequest(BaseModel):
    revenue: Decimal
    cost: Optional[Decimal] = None


class CommissionResponse(BaseModel):
    """Full commission record."""

    id: int
    public_id: str
    code: str
    period: str
    owner_id: int
    employee_id: int

    shipment_id: Optional[int]
    quote_id: Optional[int]
    invoice_id: Optional[int]
    related_shipment_ids: Optional[List[int]]
    related_quote_ids: Optional[List[int]]
    rule_id: Optional[int]
    rule_type: Optional[RuleType]

    # Financials
    revenue: Optional[Decimal]
    cost: Optional[Decimal]
    base_amount: Decimal
    margin: Optional[Decimal]
    margin_percentage: Optional[Decimal]
    commission_percentage: Decimal
    total_amount: Decimal
    currency: str
    applied_tier: Optional[dict]
    calculation_breakdown: Optional[dict]
    calculated_at: Optional[datetime]

    invoice_payment_status: Optional[InvoicePaymentStatus]
    invoice_paid_date: Optional[datetime]

    # Status and stamps
    status: CommissionStatus
    approved_by_id: Optional[int]
    approved_date: Optional[datetime]
    approval_notes: Optional[str]
    paid_by_id: Optional[int]
    paid_date: Optional[datetime]
    payment_reference: Optional[str]
    payment_method: Optional[PaymentMethod]
    payment_notes: Optional[str]
    cancelled_by_id: Optional[int]
    cancelled_date: Optional[datetime]
    cancellation_reason: Optional[str]

    description: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class CommissionListResponse(BaseModel):
    items: List[CommissionResponse]
    total: int


class RecalculationResponse(BaseModel):
    commission: CommissionResponse
    old_amount: Decimal
    new_amount: Decimal


class AutoApproveResponse(BaseModel):
    approved: int
    total: int


class CommissionSummaryResponse(BaseModel):
    """Totals over a set of commissions (period or employee)."""

    period: Optional[str] = None
    employee_id: Optional[int] = None
    count: int
    total_amount: Decimal
    pending_amount: Decimal
    approved_amount: Decimal
    paid_amount: Decimal
    cancelled_amount: Decimal
    average_amount: Decimal
    count_by_status: Dict[str, int]
    currency: str
