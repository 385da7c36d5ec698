"""Pydantic schemas for requests, responses and evaluator results."""

from commission_engine.schemas.commission import (
    AutoApproveResponse,
    CommissionApproveRequest,
    CommissionCancelRequest,
    CommissionCreate,
    CommissionListResponse,
    CommissionPayRequest,
    CommissionRecalculateRequest,
    CommissionResponse,
    CommissionSummaryResponse,
    CommissionUpdate,
    RecalculationResponse,
)
from commission_engine.schemas.rule import (
    CommissionCalculation,
    CommissionPreviewRequest,
    CommissionPreviewResponse,
    CommissionRuleCreate,
    CommissionRuleDefinition,
    CommissionRuleResponse,
    CommissionRuleUpdate,
    CommissionTier,
    RuleValidationResult,
)

__all__ = [
    # Commission
    "AutoApproveResponse",
    "CommissionApproveRequest",
    "CommissionCancelRequest",
    "CommissionCreate",
    "CommissionListResponse",
    "CommissionPayRequest",
    "CommissionRecalculateRequest",
    "CommissionResponse",
    "CommissionSummaryResponse",
    "CommissionUpdate",
    "RecalculationResponse",
    # Rule
    "CommissionCalculation",
    "CommissionPreviewRequest",
    "CommissionPreviewResponse",
    "CommissionRuleCreate",
    "CommissionRuleDefinition",
    "CommissionRuleResponse",
    "CommissionRuleUpdate",
    "CommissionTier",
    "RuleValidationResult",
]
