"""
Tests for commission listings and summaries.
"""

from decimal import Decimal

import pytest

from commission_engine.errors import NotFoundError, ValidationError
from commission_engine.models import CommissionStatus, PaymentMethod
from commission_engine.schemas.commission import CommissionCreate
from commission_engine.services import reports
from commission_engine.services.lifecycle import CommissionLifecycleManager


@pytest.fixture
def lifecycle(db_session):
    return CommissionLifecycleManager(db_session)


async def _create(lifecycle, actor, employee, revenue, cost, period="2026-03"):
    return await lifecycle.create_commission(
        actor,
        CommissionCreate(
            employee_id=employee.id,
            revenue=Decimal(revenue),
            cost=Decimal(cost),
            period=period,
        ),
    )


class TestGetCommission:
    @pytest.mark.asyncio
    async def test_by_id_and_public_id(self, db_session, lifecycle, manager, viewer, employee, margin_rule):
        commission = await _create(lifecycle, manager, employee, "1000", "600")

        assert (await reports.get_commission(db_session, viewer, commission.id)).id == commission.id
        found = await reports.get_commission_by_public_id(db_session, viewer, commission.public_id)
        assert found.id == commission.id

    @pytest.mark.asyncio
    async def test_deleted_is_not_found(self, db_session, lifecycle, manager, employee, margin_rule):
        commission = await _create(lifecycle, manager, employee, "1000", "600")
        await lifecycle.delete_commission(manager, commission.id)

        with pytest.raises(NotFoundError):
            await reports.get_commission(db_session, manager, commission.id)
        with pytest.raises(NotFoundError):
            await reports.get_commission_by_public_id(db_session, manager, commission.public_id)


class TestListCommissions:
    @pytest.mark.asyncio
    async def test_filters(self, db_session, lifecycle, manager, employee, margin_rule):
        small = await _create(lifecycle, manager, employee, "1000", "900")
        large = await _create(lifecycle, manager, employee, "5000", "1000")
        other_period = await _create(lifecycle, manager, employee, "1000", "600", period="2026-04")
        await lifecycle.approve_commission(manager, large.id)

        items, total = await reports.list_commissions(
            db_session, manager, reports.CommissionFilters(period="2026-03")
        )
        assert total == 2
        assert {c.id for c in items} == {small.id, large.id}

        items, _ = await reports.list_commissions(
            db_session, manager, reports.CommissionFilters(status=CommissionStatus.APPROVED)
        )
        assert [c.id for c in items] == [large.id]

        items, _ = await reports.list_commissions(
            db_session, manager, reports.CommissionFilters(min_amount=Decimal("20"), max_amount=Decimal("100"))
        )
        assert [c.id for c in items] == [other_period.id]

    @pytest.mark.asyncio
    async def test_newest_first_and_limit(self, db_session, lifecycle, manager, employee, margin_rule):
        created = [await _create(lifecycle, manager, employee, "1000", "600") for _ in range(3)]

        items, total = await reports.list_commissions(
            db_session, manager, reports.CommissionFilters(employee_id=employee.id, limit=2)
        )
        assert total == 3
        assert [c.id for c in items] == [created[2].id, created[1].id]

    @pytest.mark.asyncio
    async def test_excludes_deleted(self, db_session, lifecycle, manager, employee, margin_rule):
        kept = await _create(lifecycle, manager, employee, "1000", "600")
        dropped = await _create(lifecycle, manager, employee, "1000", "600")
        await lifecycle.delete_commission(manager, dropped.id)

        items, total = await reports.list_commissions(db_session, manager)
        assert total == 1
        assert items[0].id == kept.id

    @pytest.mark.asyncio
    async def test_limit_bounds(self, db_session, manager):
        with pytest.raises(ValidationError):
            await reports.list_commissions(db_session, manager, reports.CommissionFilters(limit=0))


class TestSummaries:
    @pytest.mark.asyncio
    async def test_period_summary_totals(self, db_session, lifecycle, manager, employee, margin_rule):
        pending = await _create(lifecycle, manager, employee, "1000", "600")      # 40
        approved = await _create(lifecycle, manager, employee, "2000", "1000")   # 100
        paid = await _create(lifecycle, manager, employee, "3000", "1000")       # 200
        deleted = await _create(lifecycle, manager, employee, "9000", "0")       # 900, excluded
        await _create(lifecycle, manager, employee, "1000", "0", period="2026-04")

        await lifecycle.approve_commission(manager, approved.id)
        await lifecycle.approve_commission(manager, paid.id)
        await lifecycle.pay_commission(manager, paid.id, "TX-9", PaymentMethod.BANK_TRANSFER)
        await lifecycle.delete_commission(manager, deleted.id)

        summary = await reports.period_summary(db_session, manager, "2026-03")

        assert summary.count == 3
        assert summary.total_amount == Decimal("340")
        assert summary.pending_amount == Decimal("40")
        assert summary.approved_amount == Decimal("100")
        assert summary.paid_amount == Decimal("200")
        assert summary.cancelled_amount == Decimal("0")
        assert summary.average_amount == Decimal("113.33")
        assert summary.count_by_status == {"pending": 1, "approved": 1, "paid": 1, "cancelled": 0}
        assert summary.currency == "EUR"
        assert pending.period == summary.period

    @pytest.mark.asyncio
    async def test_employee_summary(self, db_session, lifecycle, manager, employee, other_employee, margin_rule):
        await _create(lifecycle, manager, employee, "1000", "600")
        await _create(lifecycle, manager, employee, "1000", "600", period="2026-04")

        summary = await reports.employee_summary(db_session, manager, employee.id)
        assert summary.count == 2
        assert summary.total_amount == Decimal("80")

        summary = await reports.employee_summary(db_session, manager, employee.id, period="2026-04")
        assert summary.count == 1

        empty = await reports.employee_summary(db_session, manager, other_employee.id)
        assert empty.count == 0
        assert empty.average_amount == Decimal("0")
