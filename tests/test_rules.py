"""
Tests for commission rule management.

Covers:
- rule creation and validation
- freeze of financial fields once commissions use a rule
- delete/deactivate/restore, rule resolution and preview
- lookup by public id and filtered search
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from commission_engine.errors import (
    ForbiddenError,
    InvalidStateTransition,
    NotFoundError,
    RuleFrozenError,
    UnauthorizedError,
    ValidationError,
)
from commission_engine.models import AuditAction, AuditLog, RuleType
from commission_engine.schemas.commission import CommissionCreate
from commission_engine.schemas.rule import (
    CommissionPreviewRequest,
    CommissionRuleCreate,
    CommissionRuleUpdate,
)
from commission_engine.services.lifecycle import CommissionLifecycleManager
from commission_engine.services.rules import CommissionRuleManager, RuleSearchFilters


class TestCreateRule:
    @pytest.mark.asyncio
    async def test_creates_rule_with_public_id(self, db_session, margin_rule):
        assert margin_rule.id is not None
        assert margin_rule.public_id.startswith("rule_")
        assert margin_rule.type == RuleType.MARGIN_PERCENTAGE
        assert margin_rule.is_active is True

    @pytest.mark.asyncio
    async def test_tiers_stored_sorted(self, db_session, admin, employee):
        rule = await CommissionRuleManager(db_session).create_rule(
            admin,
            CommissionRuleCreate(
                employee_id=employee.id,
                name="Tiered",
                type="tiered",
                tiers=[
                    {"min_amount": "1000", "rate": "8"},
                    {"min_amount": "0", "max_amount": "999", "rate": "5"},
                ],
            ),
        )
        assert [tier["min_amount"] for tier in rule.tiers] == ["0", "1000"]

    @pytest.mark.asyncio
    async def test_invalid_rule_reports_every_error(self, db_session, admin, employee):
        with pytest.raises(ValidationError) as exc_info:
            await CommissionRuleManager(db_session).create_rule(
                admin,
                CommissionRuleCreate(
                    employee_id=employee.id,
                    name="Broken",
                    type="fixed_amount",
                    rate=Decimal("-1"),
                    min_order_value=Decimal("-1"),
                ),
            )
        assert len(exc_info.value.errors) == 2

    @pytest.mark.asyncio
    async def test_rate_beyond_stored_precision(self, db_session, admin, employee):
        with pytest.raises(ValidationError) as exc_info:
            await CommissionRuleManager(db_session).create_rule(
                admin,
                CommissionRuleCreate(
                    employee_id=employee.id,
                    name="Huge",
                    type="fixed_amount",
                    rate=Decimal("1e12"),
                ),
            )
        assert exc_info.value.errors == ["Rate must be at most 9999999999.99"]

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, db_session, admin, employee):
        with pytest.raises(ValidationError):
            await CommissionRuleManager(db_session).create_rule(
                admin,
                CommissionRuleCreate(employee_id=employee.id, name="   ", type="fixed_amount", rate=1),
            )

    @pytest.mark.asyncio
    async def test_unknown_employee(self, db_session, admin):
        with pytest.raises(NotFoundError):
            await CommissionRuleManager(db_session).create_rule(
                admin,
                CommissionRuleCreate(employee_id=999, name="Nobody", type="fixed_amount", rate=1),
            )

    @pytest.mark.asyncio
    async def test_requires_create_permission(self, db_session, viewer, employee):
        with pytest.raises(ForbiddenError):
            await CommissionRuleManager(db_session).create_rule(
                viewer,
                CommissionRuleCreate(employee_id=employee.id, name="X", type="fixed_amount", rate=1),
            )

    @pytest.mark.asyncio
    async def test_writes_audit_entry(self, db_session, margin_rule):
        await db_session.flush()
        entries = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.CREATE_RULE)
        )).scalars().all()
        assert [e.target_id for e in entries] == [margin_rule.id]


class TestFreezeOnFirstUse:
    async def _use(self, db_session, actor, employee, rule):
        await CommissionLifecycleManager(db_session).create_commission(
            actor,
            CommissionCreate(employee_id=employee.id, revenue=Decimal("1000"), cost=Decimal("600"), rule_id=rule.id),
        )

    @pytest.mark.asyncio
    async def test_unused_rule_rate_is_editable(self, db_session, admin, margin_rule):
        rule = await CommissionRuleManager(db_session).update_rule(
            admin, margin_rule.id, CommissionRuleUpdate(rate=Decimal("12"))
        )
        assert rule.rate == Decimal("12")

    @pytest.mark.asyncio
    async def test_rate_change_on_used_rule_is_refused(self, db_session, admin, employee, margin_rule):
        await self._use(db_session, admin, employee, margin_rule)
        with pytest.raises(RuleFrozenError):
            await CommissionRuleManager(db_session).update_rule(
                admin, margin_rule.id, CommissionRuleUpdate(rate=Decimal("12"))
            )

    @pytest.mark.asyncio
    async def test_rename_of_used_rule_is_allowed(self, db_session, admin, employee, margin_rule):
        await self._use(db_session, admin, employee, margin_rule)
        rule = await CommissionRuleManager(db_session).update_rule(
            admin, margin_rule.id, CommissionRuleUpdate(name="Legacy margin", priority=5)
        )
        assert rule.name == "Legacy margin"
        assert rule.priority == 5

    @pytest.mark.asyncio
    async def test_same_rate_is_not_a_change(self, db_session, admin, employee, margin_rule):
        await self._use(db_session, admin, employee, margin_rule)
        rule = await CommissionRuleManager(db_session).update_rule(
            admin, margin_rule.id, CommissionRuleUpdate(rate=Decimal("10.00"))
        )
        assert rule.rate == Decimal("10")

    @pytest.mark.asyncio
    async def test_update_revalidates_merged_rule(self, db_session, admin, margin_rule):
        with pytest.raises(ValidationError):
            await CommissionRuleManager(db_session).update_rule(
                admin, margin_rule.id, CommissionRuleUpdate(type="tiered")
            )


class TestDeleteAndDeactivate:
    @pytest.mark.asyncio
    async def test_delete_unused_rule(self, db_session, admin, margin_rule):
        manager = CommissionRuleManager(db_session)
        await manager.delete_rule(admin, margin_rule.id)
        with pytest.raises(NotFoundError):
            await manager.get_rule(margin_rule.id)

    @pytest.mark.asyncio
    async def test_delete_used_rule_is_refused(self, db_session, admin, employee, margin_rule):
        await CommissionLifecycleManager(db_session).create_commission(
            admin,
            CommissionCreate(employee_id=employee.id, revenue=Decimal("1000"), cost=Decimal("600")),
        )
        with pytest.raises(InvalidStateTransition):
            await CommissionRuleManager(db_session).delete_rule(admin, margin_rule.id)

    @pytest.mark.asyncio
    async def test_deactivated_rule_no_longer_resolves(self, db_session, admin, employee, margin_rule):
        manager = CommissionRuleManager(db_session)
        await manager.deactivate_rule(admin, margin_rule.id)
        assert await manager.find_active_rule(employee.id) is None
        assert await manager.list_rules_for_employee(employee.id) == []
        assert len(await manager.list_rules_for_employee(employee.id, include_inactive=True)) == 1

        await manager.activate_rule(admin, margin_rule.id)
        assert (await manager.find_active_rule(employee.id)).id == margin_rule.id


class TestResolveRule:
    @pytest.mark.asyncio
    async def test_highest_priority_wins(self, db_session, admin, employee, margin_rule):
        manager = CommissionRuleManager(db_session)
        preferred = await manager.create_rule(
            admin,
            CommissionRuleCreate(
                employee_id=employee.id, name="Preferred", type="fixed_amount", rate=50, priority=10,
            ),
        )
        assert (await manager.resolve_rule(employee.id)).id == preferred.id

    @pytest.mark.asyncio
    async def test_rule_of_other_employee_rejected(self, db_session, other_employee, margin_rule):
        with pytest.raises(ValidationError):
            await CommissionRuleManager(db_session).resolve_rule(other_employee.id, margin_rule.id)

    @pytest.mark.asyncio
    async def test_employee_without_rule(self, db_session, other_employee):
        with pytest.raises(NotFoundError):
            await CommissionRuleManager(db_session).resolve_rule(other_employee.id)

    @pytest.mark.asyncio
    async def test_preview_does_not_persist(self, db_session, viewer, employee, margin_rule):
        rule, calculation = await CommissionRuleManager(db_session).preview_commission(
            viewer,
            CommissionPreviewRequest(employee_id=employee.id, revenue=Decimal("1000"), cost=Decimal("600")),
        )
        assert rule.id == margin_rule.id
        assert calculation.commission_amount == Decimal("40")
        assert not await CommissionRuleManager(db_session).is_referenced(margin_rule.id)


class TestClearingRequiredFields:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["is_active", "auto_approve", "priority"])
    async def test_null_is_rejected(self, db_session, admin, margin_rule, field):
        with pytest.raises(ValidationError) as exc_info:
            await CommissionRuleManager(db_session).update_rule(
                admin, margin_rule.id, CommissionRuleUpdate(**{field: None})
            )
        assert exc_info.value.message == f"{field} cannot be cleared"

    @pytest.mark.asyncio
    async def test_rule_is_left_untouched(self, db_session, admin, margin_rule):
        manager = CommissionRuleManager(db_session)
        with pytest.raises(ValidationError):
            await manager.update_rule(
                admin, margin_rule.id, CommissionRuleUpdate(name="Renamed", is_active=None)
            )
        rule = await manager.get_rule(margin_rule.id)
        assert rule.name == "Standard margin"
        assert rule.is_active is True


# ── restore, lookup by public id, search ──────────────────


class TestRestoreRule:
    @pytest.mark.asyncio
    async def test_delete_then_restore(self, db_session, admin, margin_rule):
        manager = CommissionRuleManager(db_session)
        await manager.delete_rule(admin, margin_rule.id)

        rule = await manager.restore_rule(admin, margin_rule.id)

        assert rule.deleted_at is None
        assert rule.deleted_by_id is None
        assert (await manager.get_rule(margin_rule.id)).id == margin_rule.id

    @pytest.mark.asyncio
    async def test_restore_writes_audit_entry(self, db_session, admin, margin_rule):
        manager = CommissionRuleManager(db_session)
        await manager.delete_rule(admin, margin_rule.id)
        await manager.restore_rule(admin, margin_rule.id)
        await db_session.flush()

        entries = (await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.RESTORE_RULE)
        )).scalars().all()
        assert [e.target_id for e in entries] == [margin_rule.id]

    @pytest.mark.asyncio
    async def test_restore_not_deleted_fails(self, db_session, admin, margin_rule):
        with pytest.raises(InvalidStateTransition):
            await CommissionRuleManager(db_session).restore_rule(admin, margin_rule.id)

    @pytest.mark.asyncio
    async def test_restore_by_stranger_forbidden(self, db_session, admin, manager, margin_rule):
        rules = CommissionRuleManager(db_session)
        await rules.delete_rule(admin, margin_rule.id)
        with pytest.raises(ForbiddenError):
            await rules.restore_rule(manager, margin_rule.id)

    @pytest.mark.asyncio
    async def test_restore_unknown_rule(self, db_session, admin):
        with pytest.raises(NotFoundError):
            await CommissionRuleManager(db_session).restore_rule(admin, 999)


class TestGetRuleByPublicId:
    @pytest.mark.asyncio
    async def test_found(self, db_session, margin_rule):
        rule = await CommissionRuleManager(db_session).get_rule_by_public_id(margin_rule.public_id)
        assert rule.id == margin_rule.id

    @pytest.mark.asyncio
    async def test_deleted_is_not_found(self, db_session, admin, margin_rule):
        manager = CommissionRuleManager(db_session)
        await manager.delete_rule(admin, margin_rule.id)
        with pytest.raises(NotFoundError):
            await manager.get_rule_by_public_id(margin_rule.public_id)


class TestSearchRules:
    async def _seed(self, db_session, admin, employee, other_employee):
        manager = CommissionRuleManager(db_session)
        fixed = await manager.create_rule(
            admin,
            CommissionRuleCreate(employee_id=employee.id, name="Flat", type="fixed_amount", rate=25),
        )
        expired = await manager.create_rule(
            admin,
            CommissionRuleCreate(
                employee_id=other_employee.id,
                name="Last year",
                type="revenue_percentage",
                rate=3,
                effective_from=datetime(2025, 1, 1, tzinfo=timezone.utc),
                effective_to=datetime(2025, 12, 31, tzinfo=timezone.utc),
            ),
        )
        await manager.deactivate_rule(admin, fixed.id)
        return fixed, expired

    @pytest.mark.asyncio
    async def test_by_type(self, db_session, admin, employee, other_employee, margin_rule):
        fixed, _ = await self._seed(db_session, admin, employee, other_employee)
        rules = await CommissionRuleManager(db_session).search_rules(
            admin, RuleSearchFilters(type=RuleType.FIXED_AMOUNT)
        )
        assert [r.id for r in rules] == [fixed.id]

    @pytest.mark.asyncio
    async def test_by_active_flag(self, db_session, admin, employee, other_employee, margin_rule):
        fixed, _ = await self._seed(db_session, admin, employee, other_employee)
        rules = await CommissionRuleManager(db_session).search_rules(
            admin, RuleSearchFilters(is_active=False)
        )
        assert [r.id for r in rules] == [fixed.id]

    @pytest.mark.asyncio
    async def test_by_effective_date(self, db_session, admin, employee, other_employee, margin_rule):
        _, expired = await self._seed(db_session, admin, employee, other_employee)
        rules = await CommissionRuleManager(db_session).search_rules(
            admin, RuleSearchFilters(effective_at=datetime(2025, 6, 1, tzinfo=timezone.utc))
        )
        assert [r.id for r in rules] == [expired.id]

    @pytest.mark.asyncio
    async def test_by_employee_excludes_deleted(
        self, db_session, admin, employee, other_employee, margin_rule
    ):
        fixed, _ = await self._seed(db_session, admin, employee, other_employee)
        manager = CommissionRuleManager(db_session)
        await manager.delete_rule(admin, fixed.id)

        rules = await manager.search_rules(admin, RuleSearchFilters(employee_id=employee.id))
        assert [r.id for r in rules] == [margin_rule.id]

    @pytest.mark.asyncio
    async def test_limit_bounds(self, db_session, admin):
        with pytest.raises(ValidationError):
            await CommissionRuleManager(db_session).search_rules(admin, RuleSearchFilters(limit=0))

    @pytest.mark.asyncio
    async def test_requires_view_permission(self, db_session):
        with pytest.raises(UnauthorizedError):
            await CommissionRuleManager(db_session).search_rules(None)
