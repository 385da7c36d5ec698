"""Commission API endpoints."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.dependencies import get_current_user
from commission_engine.db import get_db
from commission_engine.models import CommissionStatus, User
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
from commission_engine.services import reports
from commission_engine.services.lifecycle import CommissionLifecycleManager
from commission_engine.utils.audit import get_client_ip

router = APIRouter(prefix="/commissions", tags=["Commissions"])

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def _manager(request: Request, db: AsyncSession) -> CommissionLifecycleManager:
    return CommissionLifecycleManager(db, ip_address=get_client_ip(request))


@router.post("", response_model=CommissionResponse, status_code=status.HTTP_201_CREATED)
async def create_commission(
    data: CommissionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Calculate and store a commission for a transaction."""
    return await _manager(request, db).create_commission(current_user, data)


@router.get("", response_model=CommissionListResponse)
async def list_commissions(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    employee_id: Optional[int] = Query(None),
    owner_id: Optional[int] = Query(None),
    status_filter: Optional[CommissionStatus] = Query(None, alias="status"),
    period: Optional[str] = Query(None, pattern=PERIOD_PATTERN),
    created_from: Optional[datetime] = Query(None),
    created_to: Optional[datetime] = Query(None),
    min_amount: Optional[Decimal] = Query(None, ge=0),
    max_amount: Optional[Decimal] = Query(None, ge=0),
    limit: int = Query(reports.DEFAULT_LIMIT, ge=1, le=reports.MAX_LIMIT),
):
    """List commissions, newest first."""
    items, total = await reports.list_commissions(
        db,
        current_user,
        reports.CommissionFilters(
            employee_id=employee_id,
            owner_id=owner_id,
            status=status_filter,
            period=period,
            created_from=created_from,
            created_to=created_to,
            min_amount=min_amount,
            max_amount=max_amount,
            limit=limit,
        ),
    )
    return {"items": items, "total": total}


@router.get("/summary/period/{period}", response_model=CommissionSummaryResponse)
async def get_period_summary(
    period: str = Path(..., pattern=PERIOD_PATTERN),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Totals per status for a YYYY-MM period."""
    return await reports.period_summary(db, current_user, period)


@router.get("/summary/employee/{employee_id}", response_model=CommissionSummaryResponse)
async def get_employee_summary(
    employee_id: int,
    period: Optional[str] = Query(None, pattern=PERIOD_PATTERN),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Totals per status for an employee."""
    return await reports.employee_summary(db, current_user, employee_id, period)


@router.get("/by-public-id/{public_id}", response_model=CommissionResponse)
async def get_commission_by_public_id(
    public_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await reports.get_commission_by_public_id(db, current_user, public_id)


@router.post("/invoices/{invoice_id}/auto-approve", response_model=AutoApproveResponse)
async def auto_approve_for_invoice(
    invoice_id: int,
    request: Request,
    invoice_paid_date: Optional[datetime] = Query(None),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Called when an invoice is paid: approves its auto-approvable commissions."""
    approved, total = await _manager(request, db).auto_approve_for_invoice(
        current_user, invoice_id, invoice_paid_date
    )
    return AutoApproveResponse(approved=approved, total=total)


@router.get("/{commission_id}", response_model=CommissionResponse)
async def get_commission(
    commission_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await reports.get_commission(db, current_user, commission_id)


@router.patch("/{commission_id}", response_model=CommissionResponse)
async def update_commission(
    commission_id: int,
    data: CommissionUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Adjust amounts, description or notes of an open commission."""
    return await _manager(request, db).update_commission(current_user, commission_id, data)


@router.post("/{commission_id}/approve", response_model=CommissionResponse)
async def approve_commission(
    commission_id: int,
    request: Request,
    data: Optional[CommissionApproveRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    notes = data.notes if data else None
    return await _manager(request, db).approve_commission(current_user, commission_id, notes)


@router.post("/{commission_id}/pay", response_model=CommissionResponse)
async def pay_commission(
    commission_id: int,
    data: CommissionPayRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return await _manager(request, db).pay_commission(
        current_user,
        commission_id,
        data.payment_reference,
        data.payment_method,
        data.notes,
    )


@router.post("/{commission_id}/cancel", response_model=CommissionResponse)
async def cancel_commission(
    commission_id: int,
    request: Request,
    data: Optional[CommissionCancelRequest] = None,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    reason = data.reason if data else None
    return await _manager(request, db).cancel_commission(current_user, commission_id, reason)


@router.post("/{commission_id}/recalculate", response_model=RecalculationResponse)
async def recalculate_commission(
    commission_id: int,
    data: CommissionRecalculateRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Re-run the commission's rule on corrected revenue/cost."""
    commission, old_amount, new_amount = await _manager(request, db).recalculate_commission(
        current_user, commission_id, data.revenue, data.cost
    )
    return RecalculationResponse(
        commission=CommissionResponse.model_validate(commission),
        old_amount=old_amount,
        new_amount=new_amount,
    )


@router.delete("/{commission_id}")
async def delete_commission(
    commission_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    commission = await _manager(request, db).delete_commission(current_user, commission_id)
    return {"status": "ok", "id": commission.id, "code": commission.code}


@router.post("/{commission_id}/restore", response_model=CommissionResponse)
async def restore_commission(
    commission_id: int,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Undo a soft delete (owner or admin only)."""
    return await _manager(request, db).restore_commission(current_user, commission_id)
