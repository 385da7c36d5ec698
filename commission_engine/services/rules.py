"""
Commission rule management.

Rules are validated before they are saved, and tiers are stored sorted so
evaluation can rely on "first matching tier wins". Once a commission
references a rule, the rule's financial fields are frozen: change them by
creating a new rule and deactivating the old one.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from commission_engine.auth.permissions import Permission, require_owner_or_admin, require_permission
from commission_engine.errors import (
    InvalidStateTransition,
    NotFoundError,
    RuleFrozenError,
    ValidationError,
)
from commission_engine.models import (
    FINANCIAL_FIELDS,
    AuditAction,
    Commission,
    CommissionRule,
    Employee,
    RuleType,
    User,
)
from commission_engine.schemas.rule import (
    CommissionCalculation,
    CommissionPreviewRequest,
    CommissionRuleCreate,
    CommissionRuleDefinition,
    CommissionRuleUpdate,
    CommissionTier,
)
from commission_engine.services.rule_evaluator import (
    apply_commission_rule,
    normalize_tiers,
    sort_tiers,
    validate_commission_rule,
)
from commission_engine.utils.audit import field_changes, log_action
from commission_engine.utils.public_id import generate_public_id

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 200

# NOT NULL columns a partial update may set but never clear
REQUIRED_FLAGS = ("is_active", "auto_approve", "priority")

DEFAULT_SEARCH_LIMIT = 100
MAX_SEARCH_LIMIT = 500


@dataclass
class RuleSearchFilters:
    """Optional rule search filters; None means no constraint."""

    employee_id: Optional[int] = None
    owner_id: Optional[int] = None
    type: Optional[RuleType] = None
    is_active: Optional[bool] = None
    effective_at: Optional[datetime] = None
    limit: int = DEFAULT_SEARCH_LIMIT


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _tiers_to_json(tiers: Optional[list[CommissionTier]]) -> Optional[list[dict]]:
    if tiers is None:
        return None
    return [tier.model_dump(mode="json") for tier in sort_tiers(tiers)]


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Rule name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Rule name must be at most {MAX_NAME_LENGTH} characters")
    return name


def _check_effective_window(start: Optional[datetime], end: Optional[datetime]) -> None:
    if start and end and end < start:
        raise ValidationError("Effective end date cannot be before the start date")


def _rule_definition(rule: CommissionRule, changes: dict[str, Any]) -> CommissionRuleDefinition:
    """Merge pending changes over the stored financial fields."""
    current = {
        "type": rule.type.value,
        "rate": rule.rate,
        "tiers": rule.tiers,
        "min_margin_percentage": rule.min_margin_percentage,
        "min_order_value": rule.min_order_value,
        "min_commission_amount": rule.min_commission_amount,
    }
    for field in FINANCIAL_FIELDS:
        if field in changes:
            current[field] = changes[field]
    return CommissionRuleDefinition.model_validate(current)


def _financial_value_changed(rule: CommissionRule, field: str, new_value: Any) -> bool:
    old_value = getattr(rule, field)
    if field == "type":
        try:
            return RuleType(new_value) != old_value
        except ValueError:
            # unknown type; validation reports it
            return True
    if field == "tiers":
        old = sort_tiers(normalize_tiers(old_value)) if old_value else []
        new = sort_tiers(normalize_tiers(new_value)) if new_value else []
        return old != new
    if old_value is None or new_value is None:
        return old_value is not new_value
    return Decimal(old_value) != Decimal(new_value)


class CommissionRuleManager:
    """
    Create, edit and resolve commission rules.

    Usage:
        rules = CommissionRuleManager(db)
        rule = await rules.create_rule(actor, CommissionRuleCreate(...))
    """

    def __init__(self, db: AsyncSession, ip_address: Optional[str] = None) -> None:
        self.db = db
        self.ip_address = ip_address

    async def get_rule(self, rule_id: int) -> CommissionRule:
        rule = await self.db.get(CommissionRule, rule_id)
        if rule is None or rule.is_deleted:
            raise NotFoundError(f"Commission rule {rule_id} not found")
        return rule

    async def get_rule_by_public_id(self, public_id: str) -> CommissionRule:
        rule = await self.db.scalar(
            select(CommissionRule).where(
                CommissionRule.public_id == public_id,
                CommissionRule.deleted_at.is_(None),
            )
        )
        if rule is None:
            raise NotFoundError(f"Commission rule {public_id} not found")
        return rule

    async def is_referenced(self, rule_id: int) -> bool:
        """True if any commission, deleted or not, was produced by the rule."""
        found = await self.db.scalar(
            select(Commission.id).where(Commission.rule_id == rule_id).limit(1)
        )
        return found is not None

    async def create_rule(self, actor: Optional[User], data: CommissionRuleCreate) -> CommissionRule:
        """
        Create a validated rule.

        Raises:
            NotFoundError: employee does not exist
            ValidationError: name, window or rule definition invalid
        """
        actor = require_permission(actor, Permission.CREATE)

        employee = await self.db.get(Employee, data.employee_id)
        if employee is None:
            raise NotFoundError(f"Employee {data.employee_id} not found")

        name = _clean_name(data.name)
        _check_effective_window(data.effective_from, data.effective_to)

        validation = validate_commission_rule(data)
        if not validation.valid:
            raise ValidationError("Invalid commission rule", validation.errors)

        rule = CommissionRule(
            public_id=generate_public_id("commission_rule"),
            owner_id=actor.id,
            employee_id=employee.id,
            name=name,
            description=data.description.strip() if data.description else None,
            type=RuleType(data.type),
            rate=data.rate,
            tiers=_tiers_to_json(data.tiers),
            min_margin_percentage=data.min_margin_percentage,
            min_order_value=data.min_order_value,
            min_commission_amount=data.min_commission_amount,
            auto_approve=data.auto_approve,
            priority=data.priority,
            is_active=True,
            effective_from=data.effective_from or _utcnow(),
            effective_to=data.effective_to,
        )
        self.db.add(rule)
        await self.db.flush()

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.CREATE_RULE,
            target_type="commission_rule",
            target_id=rule.id,
            summary=f"Created commission rule '{rule.name}' for employee {employee.employee_number}",
            action_metadata={"type": rule.type, "rate": rule.rate, "tiers": rule.tiers},
        )
        logger.info(f"Commission rule {rule.id} ({rule.type.value}) created by user {actor.id}")
        return rule

    async def update_rule(
        self,
        actor: Optional[User],
        rule_id: int,
        data: CommissionRuleUpdate,
    ) -> CommissionRule:
        """
        Apply a partial update.

        Raises:
            NotFoundError: rule missing or deleted
            RuleFrozenError: financial field change on a rule already used
            ValidationError: resulting rule invalid
        """
        actor = require_permission(actor, Permission.EDIT)
        rule = await self.get_rule(rule_id)
        changes = data.model_dump(exclude_unset=True)
        for key in REQUIRED_FLAGS:
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be cleared")

        financial = [
            field for field in FINANCIAL_FIELDS
            if field in changes and _financial_value_changed(rule, field, changes[field])
        ]
        if financial and await self.is_referenced(rule.id):
            raise RuleFrozenError(
                f"Rule '{rule.name}' is used by existing commissions; "
                f"cannot change {', '.join(financial)}. Create a new rule and deactivate this one."
            )

        if "name" in changes:
            changes["name"] = _clean_name(changes["name"])
        if changes.get("description"):
            changes["description"] = changes["description"].strip()
        _check_effective_window(
            changes.get("effective_from", rule.effective_from),
            changes.get("effective_to", rule.effective_to),
        )

        if financial:
            validation = validate_commission_rule(_rule_definition(rule, changes))
            if not validation.valid:
                raise ValidationError("Invalid commission rule", validation.errors)
            if "type" in changes:
                changes["type"] = RuleType(changes["type"])
            if "tiers" in changes:
                changes["tiers"] = _tiers_to_json(data.tiers)

        before = {key: getattr(rule, key) for key in changes}
        for key, value in changes.items():
            setattr(rule, key, value)
        await self.db.flush()

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.UPDATE_RULE,
            target_type="commission_rule",
            target_id=rule.id,
            summary=f"Updated commission rule '{rule.name}'",
            action_metadata={"changes": field_changes(before, changes)},
        )
        logger.info(f"Commission rule {rule.id} updated by user {actor.id}: {sorted(changes)}")
        return rule

    async def set_active(self, actor: Optional[User], rule_id: int, is_active: bool) -> CommissionRule:
        actor = require_permission(actor, Permission.EDIT)
        rule = await self.get_rule(rule_id)
        if rule.is_active == is_active:
            return rule

        rule.is_active = is_active
        await self.db.flush()

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.ACTIVATE_RULE if is_active else AuditAction.DEACTIVATE_RULE,
            target_type="commission_rule",
            target_id=rule.id,
            summary=f"{'Activated' if is_active else 'Deactivated'} commission rule '{rule.name}'",
            action_metadata={"is_active": {"from": not is_active, "to": is_active}},
        )
        return rule

    async def activate_rule(self, actor: Optional[User], rule_id: int) -> CommissionRule:
        return await self.set_active(actor, rule_id, True)

    async def deactivate_rule(self, actor: Optional[User], rule_id: int) -> CommissionRule:
        return await self.set_active(actor, rule_id, False)

    async def delete_rule(self, actor: Optional[User], rule_id: int) -> CommissionRule:
        """
        Soft-delete a rule that no commission references.

        Raises:
            InvalidStateTransition: rule has associated commissions
        """
        actor = require_permission(actor, Permission.DELETE)
        rule = await self.get_rule(rule_id)

        if await self.is_referenced(rule.id):
            raise InvalidStateTransition(
                "Cannot delete rule that has associated commissions. Deactivate instead."
            )

        rule.deleted_at = _utcnow()
        rule.deleted_by_id = actor.id
        await self.db.flush()

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.DELETE_RULE,
            target_type="commission_rule",
            target_id=rule.id,
            summary=f"Deleted commission rule '{rule.name}'",
        )
        logger.info(f"Commission rule {rule.id} deleted by user {actor.id}")
        return rule

    async def restore_rule(self, actor: Optional[User], rule_id: int) -> CommissionRule:
        """
        Undo a soft delete. Only the owner or an administrator may restore.

        The rule comes back with the active flag it had when it was deleted.

        Raises:
            ForbiddenError: neither owner nor admin
            InvalidStateTransition: rule is not deleted
        """
        rule = await self.db.get(CommissionRule, rule_id)
        if rule is None:
            raise NotFoundError(f"Commission rule {rule_id} not found")
        actor = require_owner_or_admin(actor, rule.owner_id)
        if not rule.is_deleted:
            raise InvalidStateTransition(f"Commission rule '{rule.name}' is not deleted")

        deleted_at = rule.deleted_at
        rule.deleted_at = None
        rule.deleted_by_id = None
        await self.db.flush()

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.RESTORE_RULE,
            target_type="commission_rule",
            target_id=rule.id,
            summary=f"Restored commission rule '{rule.name}'",
            action_metadata={"deleted_at": {"from": deleted_at, "to": None}},
        )
        logger.info(f"Commission rule {rule.id} restored by user {actor.id}")
        return rule

    async def search_rules(
        self,
        actor: Optional[User],
        filters: Optional[RuleSearchFilters] = None,
    ) -> list[CommissionRule]:
        """
        Non-deleted rules matching the filters, newest first.

        effective_at keeps rules whose effective window contains that moment.
        """
        require_permission(actor, Permission.VIEW)
        filters = filters or RuleSearchFilters()
        if not 1 <= filters.limit <= MAX_SEARCH_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_SEARCH_LIMIT}")

        query = select(CommissionRule).where(CommissionRule.deleted_at.is_(None))

        if filters.employee_id is not None:
            query = query.where(CommissionRule.employee_id == filters.employee_id)
        if filters.owner_id is not None:
            query = query.where(CommissionRule.owner_id == filters.owner_id)
        if filters.type is not None:
            query = query.where(CommissionRule.type == RuleType(filters.type))
        if filters.is_active is not None:
            query = query.where(CommissionRule.is_active.is_(filters.is_active))
        if filters.effective_at is not None:
            query = query.where(
                or_(
                    CommissionRule.effective_from.is_(None),
                    CommissionRule.effective_from <= filters.effective_at,
                ),
                or_(
                    CommissionRule.effective_to.is_(None),
                    CommissionRule.effective_to >= filters.effective_at,
                ),
            )

        query = query.order_by(CommissionRule.created_at.desc(), CommissionRule.id.desc())
        result = await self.db.execute(query.limit(filters.limit))
        return list(result.scalars().all())

    async def list_rules_for_employee(
        self,
        employee_id: int,
        include_inactive: bool = False,
    ) -> list[CommissionRule]:
        """Rules for an employee, highest priority first."""
        query = select(CommissionRule).where(
            CommissionRule.employee_id == employee_id,
            CommissionRule.deleted_at.is_(None),
        )
        if not include_inactive:
            query = query.where(CommissionRule.is_active.is_(True))
        query = query.order_by(CommissionRule.priority.desc(), CommissionRule.id.asc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def find_active_rule(
        self,
        employee_id: int,
        at: Optional[datetime] = None,
    ) -> Optional[CommissionRule]:
        """Highest-priority active rule whose effective window contains `at`."""
        at = at or _utcnow()
        result = await self.db.execute(
            select(CommissionRule)
            .where(
                CommissionRule.employee_id == employee_id,
                CommissionRule.is_active.is_(True),
                CommissionRule.deleted_at.is_(None),
                or_(CommissionRule.effective_from.is_(None), CommissionRule.effective_from <= at),
                or_(CommissionRule.effective_to.is_(None), CommissionRule.effective_to >= at),
            )
            .order_by(CommissionRule.priority.desc(), CommissionRule.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def resolve_rule(
        self,
        employee_id: int,
        rule_id: Optional[int] = None,
    ) -> CommissionRule:
        """
        The explicitly requested rule, or the employee's active rule.

        Raises:
            NotFoundError: no usable rule
            ValidationError: requested rule belongs to another employee
        """
        if rule_id is not None:
            rule = await self.get_rule(rule_id)
            if rule.employee_id != employee_id:
                raise ValidationError(
                    f"Commission rule {rule_id} does not apply to employee {employee_id}"
                )
            return rule

        rule = await self.find_active_rule(employee_id)
        if rule is None:
            raise NotFoundError(f"No commission rule found for employee {employee_id}")
        return rule

    async def preview_commission(
        self,
        actor: Optional[User],
        data: CommissionPreviewRequest,
    ) -> tuple[CommissionRule, CommissionCalculation]:
        """Evaluate the applicable rule without persisting anything."""
        require_permission(actor, Permission.VIEW)
        rule = await self.resolve_rule(data.employee_id, data.rule_id)
        return rule, apply_commission_rule(rule, data.revenue, data.cost)
