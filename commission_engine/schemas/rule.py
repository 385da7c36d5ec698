"""Commission rule schemas and evaluator result types."""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from commission_engine.models.rule import RuleType


class CommissionTier(BaseModel):
    """One amount band of a tiered rule. max_amount None means unbounded."""

    min_amount: Decimal
    max_amount: Optional[Decimal] = None
    rate: Decimal
    description: Optional[str] = Field(None, max_length=200)

    def contains(self, amount: Decimal) -> bool:
        if amount < self.min_amount:
            return False
        return self.max_amount is None or amount <= self.max_amount


class CommissionRuleDefinition(BaseModel):
    """
    The financial part of a rule, enough to evaluate it.

    `type` is a plain string so unknown values reach the evaluator and
    fail there with UnsupportedRuleType instead of a schema error.
    """

    type: Optional[str] = None
    rate: Optional[Decimal] = None
    tiers: Optional[List[CommissionTier]] = None
    min_margin_percentage: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    min_commission_amount: Optional[Decimal] = None


class CommissionRuleCreate(CommissionRuleDefinition):
    """Request to create a commission rule."""

    employee_id: int
    name: str = Field(..., max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    auto_approve: bool = False
    priority: int = 0
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None


class CommissionRuleUpdate(BaseModel):
    """Partial rule update. Only fields that are set are applied."""

    name: Optional[str] = Field(None, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    type: Optional[str] = None
    rate: Optional[Decimal] = None
    tiers: Optional[List[CommissionTier]] = None
    min_margin_percentage: Optional[Decimal] = None
    min_order_value: Optional[Decimal] = None
    min_commission_amount: Optional[Decimal] = None
    auto_approve: Optional[bool] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    effective_from: Optional[datetime] = None
    effective_to: Optional[datetime] = None


class CommissionRuleResponse(BaseModel):
    """Commission rule as returned by the API."""

    id: int
    public_id: str
    owner_id: int
    employee_id: int
    name: str
    description: Optional[str]
    type: RuleType
    rate: Optional[Decimal]
    tiers: Optional[List[CommissionTier]]
    min_margin_percentage: Optional[Decimal]
    min_order_value: Optional[Decimal]
    min_commission_amount: Optional[Decimal]
    auto_approve: bool
    priority: int
    is_active: bool
    effective_from: Optional[datetime]
    effective_to: Optional[datetime]
    created_at: datetime
    updated_at: Optional[datetime]

    model_config = {"from_attributes": True}


class CommissionCalculation(BaseModel):
    """Result of evaluating a rule against transaction figures."""

    base_amount: Decimal
    margin: Optional[Decimal] = None
    margin_percentage: Optional[Decimal] = None
    commission_rate: Decimal
    commission_amount: Decimal
    applied_tier: Optional[CommissionTier] = None
    suppressed_by: Optional[str] = Field(
        None,
        description="Threshold that zeroed the commission, if any",
    )


class RuleValidationResult(BaseModel):
    """Outcome of validate_commission_rule. Never raised, always returned."""

    valid: bool
    errors: List[str] = []


class CommissionPreviewRequest(BaseModel):
    """Evaluate a rule for an employee without persisting anything."""

    employee_id: int
    revenue: Decimal = Field(..., ge=0)
    cost: Optional[Decimal] = Field(None, ge=0)
    rule_id: Optional[int] = None


class CommissionPreviewResponse(CommissionCalculation):
    rule_id: int
    rule_name: str
    rule_type: RuleType
