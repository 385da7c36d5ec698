"""
Read-side queries: single records, filtered listings and totals.

Soft-deleted commissions never appear here.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.permissions import Permission, require_permission
from commission_engine.config import settings
from commission_engine.errors import NotFoundError, ValidationError
from commission_engine.models import Commission, CommissionStatus, User
from commission_engine.schemas.commission import CommissionSummaryResponse

DEFAULT_LIMIT = 50
MAX_LIMIT = 500
TWO_PLACES = Decimal("0.01")


@dataclass
class CommissionFilters:
    """Optional listing filters; None means no constraint."""

    employee_id: Optional[int] = None
    owner_id: Optional[int] = None
    status: Optional[CommissionStatus] = None
    period: Optional[str] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    limit: int = DEFAULT_LIMIT


def _active():
    return Commission.deleted_at.is_(None)


async def get_commission(db: AsyncSession, actor: Optional[User], commission_id: int) -> Commission:
    require_permission(actor, Permission.VIEW)
    commission = await db.get(Commission, commission_id)
    if commission is None or commission.is_deleted:
        raise NotFoundError(f"Commission {commission_id} not found")
    return commission


async def get_commission_by_public_id(
    db: AsyncSession,
    actor: Optional[User],
    public_id: str,
) -> Commission:
    require_permission(actor, Permission.VIEW)
    commission = await db.scalar(
        select(Commission).where(Commission.public_id == public_id, _active())
    )
    if commission is None:
        raise NotFoundError(f"Commission {public_id} not found")
    return commission


async def list_commissions(
    db: AsyncSession,
    actor: Optional[User],
    filters: Optional[CommissionFilters] = None,
) -> tuple[list[Commission], int]:
    """
    Filtered commissions, newest first.

    Returns:
        (items up to filters.limit, total matching count)
    """
    require_permission(actor, Permission.VIEW)
    filters = filters or CommissionFilters()
    if not 1 <= filters.limit <= MAX_LIMIT:
        raise ValidationError(f"Limit must be between 1 and {MAX_LIMIT}")

    query = select(Commission).where(_active())

    if filters.employee_id is not None:
        query = query.where(Commission.employee_id == filters.employee_id)
    if filters.owner_id is not None:
        query = query.where(Commission.owner_id == filters.owner_id)
    if filters.status is not None:
        query = query.where(Commission.status == filters.status)
    if filters.period:
        query = query.where(Commission.period == filters.period)
    if filters.created_from:
        query = query.where(Commission.created_at >= filters.created_from)
    if filters.created_to:
        query = query.where(Commission.created_at <= filters.created_to)
    if filters.min_amount is not None:
        query = query.where(Commission.total_amount >= filters.min_amount)
    if filters.max_amount is not None:
        query = query.where(Commission.total_amount <= filters.max_amount)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))

    query = query.order_by(Commission.created_at.desc(), Commission.id.desc()).limit(filters.limit)
    result = await db.execute(query)
    return list(result.scalars().all()), total or 0


async def _summarize(db: AsyncSession, *conditions) -> dict:
    result = await db.execute(
        select(
            Commission.status,
            func.count().label("count"),
            func.coalesce(func.sum(Commission.total_amount), Decimal("0")).label("amount"),
        )
        .where(_active(), *conditions)
        .group_by(Commission.status)
    )

    counts = {status.value: 0 for status in CommissionStatus}
    amounts = {status: Decimal("0") for status in CommissionStatus}
    for row in result.all():
        counts[row.status.value] = row.count
        amounts[row.status] = Decimal(str(row.amount))

    count = sum(counts.values())
    total = sum(amounts.values(), Decimal("0"))
    average = (total / count).quantize(TWO_PLACES) if count else Decimal("0.00")

    return {
        "count": count,
        "total_amount": total.quantize(TWO_PLACES),
        "pending_amount": amounts[CommissionStatus.PENDING].quantize(TWO_PLACES),
        "approved_amount": amounts[CommissionStatus.APPROVED].quantize(TWO_PLACES),
        "paid_amount": amounts[CommissionStatus.PAID].quantize(TWO_PLACES),
        "cancelled_amount": amounts[CommissionStatus.CANCELLED].quantize(TWO_PLACES),
        "average_amount": average,
        "count_by_status": counts,
        "currency": settings.default_currency,
    }


async def period_summary(
    db: AsyncSession,
    actor: Optional[User],
    period: str,
) -> CommissionSummaryResponse:
    """Totals per status for one YYYY-MM period."""
    require_permission(actor, Permission.VIEW)
    summary = await _summarize(db, Commission.period == period)
    return CommissionSummaryResponse(period=period, **summary)


async def employee_summary(
    db: AsyncSession,
    actor: Optional[User],
    employee_id: int,
    period: Optional[str] = None,
) -> CommissionSummaryResponse:
    """Totals per status for one employee, optionally within a period."""
    require_permission(actor, Permission.VIEW)
    conditions = [Commission.employee_id == employee_id]
    if period:
        conditions.append(Commission.period == period)
    summary = await _summarize(db, *conditions)
    return CommissionSummaryResponse(period=period, employee_id=employee_id, **summary)
