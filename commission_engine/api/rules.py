"""Commission rule API endpoints."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.dependencies import get_current_user
from commission_engine.auth.permissions import Permission, require_permission
from commission_engine.db import get_db
from commission_engine.models import RuleType, User
from commission_engine.schemas.rule import (
    CommissionPreviewRequest,
    CommissionPreviewResponse,
    CommissionRuleCreate,
    CommissionRuleDefinition,
    CommissionRuleResponse,
    CommissionRuleUpdate,
    RuleValidationResult,
)
from commission_engine.services.rule_evaluator import validate_commission_rule
from commission_engine.services.rules import (
    DEFAULT_SEARCH_LIMIT,
    MAX_SEARCH_LIMIT,
    CommissionRuleManager,
    RuleSearchFilters,
)
from commission_engine.utils.audit import get_client_ip

router = APIRouter(prefix="/commission-rules", tags=["Commission rules"])


def _manager(request: Request, db: AsyncSession) -> CommissionRuleManager:
    return CommissionRuleManager(db, ip_address=get_client_ip(request))


@router.post("", response_model=CommissionRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    data: CommissionRuleCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await _manager(request, db).create_rule(current_user, data)


@router.get("", response_model=list[CommissionRuleResponse])
async def search_rules(
    request: Request,
    employee_id: Optional[int] = Query(None),
    owner_id: Optional[int] = Query(None),
    type: Optional[RuleType] = Query(None),
    is_active: Optional[bool] = Query(None),
    effective_at: Optional[datetime] = Query(None),
    limit: int = Query(DEFAULT_SEARCH_LIMIT, ge=1, le=MAX_SEARCH_LIMIT),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Search rules, newest first."""
    filters = RuleSearchFilters(
        employee_id=employee_id,
        owner_id=owner_id,
        type=type,
        is_active=is_active,
        effective_at=effective_at,
        limit=limit,
    )
    return await _manager(request, db).search_rules(current_user, filters)


@router.post("/validate", response_model=RuleValidationResult)
async def validate_rule(
    data: CommissionRuleDefinition,
    current_user: User = Depends(get_current_user),
):
    """Check a rule definition without saving it. Always 200; see `valid`."""
    require_permission(current_user, Permission.VIEW)
    return validate_commission_rule(data)


@router.post("/preview", response_model=CommissionPreviewResponse)
async def preview_commission(
    data: CommissionPreviewRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """What the employee would earn on this transaction, without saving."""
    rule, calculation = await _manager(request, db).preview_commission(current_user, data)
    return CommissionPreviewResponse(
        **calculation.model_dump(),
        rule_id=rule.id,
        rule_name=rule.name,
        rule_type=rule.type,
    )


@router.get("/employee/{employee_id}", response_model=list[CommissionRuleResponse])
async def list_employee_rules(
    employee_id: int,
    request: Request,
    include_inactive: bool = Query(False),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_permission(current_user, Permission.VIEW)
    return await _manager(request, db).list_rules_for_employee(employee_id, include_inactive)


@router.get("/by-public-id/{public_id}", response_model=CommissionRuleResponse)
async def get_rule_by_public_id(
    public_id: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_permission(current_user, Permission.VIEW)
    return await _manager(request, db).get_rule_by_public_id(public_id)


@router.get("/{rule_id}", response_model=CommissionRuleResponse)
async def get_rule(
    rule_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    require_permission(current_user, Permission.VIEW)
    return await _manager(request, db).get_rule(rule_id)


@router.patch("/{rule_id}", response_model=CommissionRuleResponse)
async def update_rule(
    rule_id: int,
    data: CommissionRuleUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Partial update. Financial fields are frozen once the rule has commissions."""
    return await _manager(request, db).update_rule(current_user, rule_id, data)


@router.post("/{rule_id}/activate", response_model=CommissionRuleResponse)
async def activate_rule(
    rule_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await _manager(request, db).activate_rule(current_user, rule_id)


@router.post("/{rule_id}/deactivate", response_model=CommissionRuleResponse)
async def deactivate_rule(
    rule_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await _manager(request, db).deactivate_rule(current_user, rule_id)


@router.delete("/{rule_id}")
async def delete_rule(
    rule_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    rule = await _manager(request, db).delete_rule(current_user, rule_id)
    return {"status": "ok", "id": rule.id}


@router.post("/{rule_id}/restore", response_model=CommissionRuleResponse)
async def restore_rule(
    rule_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await _manager(request, db).restore_rule(current_user, rule_id)
