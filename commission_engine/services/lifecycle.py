"""
Commission lifecycle: create, approve, pay, cancel, edit, delete, restore.

Every write is a conditional UPDATE guarded by the state the check was made
against (status and soft-delete flag). If another request changed the row
in between, the UPDATE matches nothing and the operation fails with the
precise reason instead of overwriting the other change. Rows of different
commissions never contend.
"""

import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from commission_engine.auth.permissions import (
    Permission,
    require_owner_or_admin,
    require_permission,
)
from commission_engine.config import settings
from commission_engine.errors import (
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from commission_engine.models import (
    AuditAction,
    Commission,
    CommissionRule,
    CommissionStatus,
    Employee,
    InvoicePaymentStatus,
    PaymentMethod,
    RuleType,
    User,
)
from commission_engine.schemas.commission import CommissionCreate, CommissionUpdate
from commission_engine.schemas.rule import CommissionCalculation
from commission_engine.services.rule_evaluator import MAX_STORED_AMOUNT, apply_commission_rule
from commission_engine.services.rules import CommissionRuleManager
from commission_engine.services.state_machine import (
    ANNOTATABLE_STATES,
    EDITABLE_STATES,
    CommissionTransition,
    allowed_sources,
    next_status,
)
from commission_engine.utils.audit import field_changes, log_action
from commission_engine.utils.public_id import generate_public_id

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500
MAX_NOTES_LENGTH = 2000
CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
AUTO_APPROVE_NOTE = "Auto-approved on invoice payment"
CODE_ATTEMPTS = 3
AMOUNT_FIELDS = ("total_amount", "commission_percentage")

# Largest value the Numeric(9, 2) percentage columns hold
MAX_STORED_PERCENTAGE = Decimal("9999999.99")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clean(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    return text.strip() or None


def validate_financials(
    revenue: Optional[Decimal] = None,
    cost: Optional[Decimal] = None,
    commission_percentage: Optional[Decimal] = None,
    total_amount: Optional[Decimal] = None,
    margin_percentage: Optional[Decimal] = None,
    currency: Optional[str] = None,
    description: Optional[str] = None,
    notes: Optional[str] = None,
) -> None:
    """
    Range-check a commission payload. Only fields that are given are checked.

    Raises:
        ValidationError: with every problem found
    """
    errors = []
    if revenue is not None and not (0 <= revenue <= MAX_STORED_AMOUNT):
        errors.append(f"Revenue must be between 0 and {MAX_STORED_AMOUNT}")
    if cost is not None and not (0 <= cost <= MAX_STORED_AMOUNT):
        errors.append(f"Cost must be between 0 and {MAX_STORED_AMOUNT}")
    if commission_percentage is not None and not (
        0 <= commission_percentage <= settings.max_commission_percentage
    ):
        errors.append(
            f"Commission percentage must be between 0 and {settings.max_commission_percentage}"
        )
    if total_amount is not None and not (0 <= total_amount <= settings.max_commission_amount):
        errors.append(f"Commission amount must be between 0 and {settings.max_commission_amount}")
    if margin_percentage is not None and abs(margin_percentage) > MAX_STORED_PERCENTAGE:
        errors.append(
            f"Margin percentage must be between -{MAX_STORED_PERCENTAGE} and {MAX_STORED_PERCENTAGE}"
        )
    if currency is not None and not CURRENCY_PATTERN.match(currency):
        errors.append("Currency must be a 3-letter ISO code")
    if description is not None and len(description) > MAX_DESCRIPTION_LENGTH:
        errors.append(f"Description must be at most {MAX_DESCRIPTION_LENGTH} characters")
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        errors.append(f"Notes must be at most {MAX_NOTES_LENGTH} characters")

    if errors:
        raise ValidationError("Invalid commission data", errors)


def build_breakdown(calculation: CommissionCalculation, rule_type: RuleType) -> dict[str, Any]:
    """Snapshot of how an amount was derived: base × rate, then adjustments."""
    base = calculation.margin if rule_type == RuleType.MARGIN_PERCENTAGE else calculation.base_amount
    adjustments = []
    if calculation.suppressed_by:
        adjustments.append({
            "type": "threshold",
            "reason": calculation.suppressed_by,
            "amount": "0.00",
        })
    return {
        "base_amount": str(base),
        "rate": str(calculation.commission_rate),
        "adjustments": adjustments,
        "final_amount": str(calculation.commission_amount),
        "frozen_at": None,
    }


def validate_calculation(calculation: CommissionCalculation, rule_type: RuleType) -> None:
    """
    Range-check evaluator output before it is stored.

    A fixed_amount rule reports its flat amount as the rate, so only the
    amount bound applies to it.
    """
    validate_financials(
        commission_percentage=(
            None if rule_type == RuleType.FIXED_AMOUNT else calculation.commission_rate
        ),
        total_amount=calculation.commission_amount,
        margin_percentage=calculation.margin_percentage,
    )


def _calculation_values(calculation: CommissionCalculation, rule: CommissionRule) -> dict[str, Any]:
    return {
        "rule_type": rule.type,
        "base_amount": calculation.base_amount,
        "margin": calculation.margin,
        "margin_percentage": calculation.margin_percentage,
        "commission_percentage": calculation.commission_rate,
        "total_amount": calculation.commission_amount,
        "applied_tier": (
            calculation.applied_tier.model_dump(mode="json") if calculation.applied_tier else None
        ),
        "calculation_breakdown": build_breakdown(calculation, rule.type),
    }


class CommissionLifecycleManager:
    """
    Owns every state change of a commission record.

    Usage:
        manager = CommissionLifecycleManager(db)
        commission = await manager.create_commission(actor, CommissionCreate(...))
        await manager.approve_commission(approver, commission.id)
        await manager.pay_commission(payer, commission.id, "TX-1", PaymentMethod.BANK_TRANSFER)

    Mutations flush but do not commit; the caller's session scope decides.
    """

    def __init__(self, db: AsyncSession, ip_address: Optional[str] = None) -> None:
        self.db = db
        self.ip_address = ip_address
        self.rules = CommissionRuleManager(db, ip_address)

    # ── lookups ───────────────────────────────────────────

    async def _get_any(self, commission_id: int) -> Commission:
        commission = await self.db.get(Commission, commission_id)
        if commission is None:
            raise NotFoundError(f"Commission {commission_id} not found")
        return commission

    async def _get_active(self, commission_id: int) -> Commission:
        commission = await self._get_any(commission_id)
        if commission.is_deleted:
            raise NotFoundError(f"Commission {commission_id} not found")
        return commission

    async def _next_code(self, year: int) -> str:
        """Next COMM-<year>-<n> code; deleted records still hold their number."""
        count = await self.db.scalar(
            select(func.count()).select_from(Commission).where(Commission.code_year == year)
        )
        return f"{settings.commission_code_prefix}-{year}-{(count or 0) + 1:04d}"

    async def _insert_numbered(self, code_year: int, **fields: Any) -> Commission:
        """
        Insert a commission under the next free code of its year.

        A concurrent create can take the same number between the count and
        the insert; the insert then runs again with a fresh count.

        Raises:
            InvalidStateTransition: no free code after CODE_ATTEMPTS tries
        """
        for _ in range(CODE_ATTEMPTS):
            code = await self._next_code(code_year)
            commission = Commission(
                public_id=generate_public_id("commission"),
                code=code,
                code_year=code_year,
                **fields,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(commission)
            except IntegrityError:
                taken = await self.db.scalar(select(Commission.id).where(Commission.code == code))
                if taken is None:
                    raise
                logger.warning(f"Commission code {code} taken concurrently, renumbering")
                continue
            return commission

        raise InvalidStateTransition(
            f"Could not assign a commission code for {code_year}, retry the request"
        )

    # ── guarded writes ────────────────────────────────────

    async def _guarded_update(
        self,
        commission: Commission,
        allowed_states: Iterable[CommissionStatus],
        values: dict[str, Any],
        deleted: bool = False,
    ) -> bool:
        """
        UPDATE the row only if it is still in the state we checked.

        Returns False when a concurrent change got there first.
        """
        states = list(allowed_states)
        query = update(Commission).where(
            Commission.id == commission.id,
            Commission.status.in_(states),
            Commission.deleted_at.is_not(None) if deleted else Commission.deleted_at.is_(None),
        )
        result = await self.db.execute(
            query.values(**values).execution_options(synchronize_session=False)
        )
        await self.db.refresh(commission)
        return result.rowcount == 1

    async def _transition(
        self,
        commission: Commission,
        transition: CommissionTransition,
        values: dict[str, Any],
    ) -> Commission:
        """
        Move the commission along the state machine.

        Raises:
            InvalidStateTransition: not allowed from the current status
            NotFoundError: record deleted in the meantime
        """
        target = next_status(commission.status, transition)
        applied = await self._guarded_update(
            commission,
            [commission.status],
            {"status": target, **values},
        )
        if not applied:
            # Lost a race: report against the state that won
            if commission.is_deleted:
                raise NotFoundError(f"Commission {commission.id} not found")
            next_status(commission.status, transition)
            raise InvalidStateTransition(
                f"Commission {commission.code} was modified concurrently, retry the {transition.value}"
            )
        return commission

    def _require_editable(
        self,
        commission: Commission,
        action: str,
        states: frozenset[CommissionStatus] = EDITABLE_STATES,
    ) -> None:
        if commission.status not in states:
            logger.warning(f"Rejected {action} of {commission.status.value} commission {commission.code}")
            raise InvalidStateTransition(
                f"Cannot {action} a {commission.status.value} commission"
            )

    # ── create ────────────────────────────────────────────

    async def create_commission(self, actor: Optional[User], data: CommissionCreate) -> Commission:
        """
        Compute and store a new commission.

        The rule is data.rule_id or the employee's active rule. A commission
        whose invoice is already paid and whose rule auto-approves starts
        out approved.

        Raises:
            NotFoundError: employee or rule missing
            ValidationError: payload out of range
            ConfigurationError / UnsupportedRuleType / InvalidInputError:
                from rule evaluation
        """
        actor = require_permission(actor, Permission.CREATE)

        employee = await self.db.get(Employee, data.employee_id)
        if employee is None:
            raise NotFoundError(f"Employee {data.employee_id} not found")

        currency = (data.currency or settings.default_currency).upper()
        description = _clean(data.description)
        notes = _clean(data.notes)
        validate_financials(
            revenue=data.revenue,
            cost=data.cost,
            currency=currency,
            description=description,
            notes=notes,
        )

        rule = await self.rules.resolve_rule(employee.id, data.rule_id)
        calculation = apply_commission_rule(rule, data.revenue, data.cost)
        validate_calculation(calculation, rule.type)

        now = _utcnow()
        period = data.period or now.strftime("%Y-%m")
        code_year = int(period[:4])
        values = _calculation_values(calculation, rule)

        status = CommissionStatus.PENDING
        approval: dict[str, Any] = {}
        if data.invoice_payment_status == InvoicePaymentStatus.PAID and rule.auto_approve:
            status = CommissionStatus.APPROVED
            values["calculation_breakdown"]["frozen_at"] = now.isoformat()
            approval = {
                "approved_by_id": actor.id,
                "approved_date": now,
                "approval_notes": AUTO_APPROVE_NOTE,
            }

        commission = await self._insert_numbered(
            code_year,
            period=period,
            owner_id=actor.id,
            employee_id=employee.id,
            shipment_id=data.shipment_id,
            quote_id=data.quote_id,
            invoice_id=data.invoice_id,
            related_shipment_ids=data.related_shipment_ids,
            related_quote_ids=data.related_quote_ids,
            rule_id=rule.id,
            revenue=data.revenue,
            cost=data.cost,
            currency=currency,
            calculated_at=now,
            invoice_payment_status=data.invoice_payment_status,
            invoice_paid_date=data.invoice_paid_date,
            status=status,
            description=description,
            notes=notes,
            updated_by_id=actor.id,
            **values,
            **approval,
        )

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.CREATE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=(
                f"Created commission {commission.code} of {commission.total_amount} "
                f"{commission.currency} for employee {employee.employee_number}"
            ),
            action_metadata={
                "rule_id": rule.id,
                "revenue": data.revenue,
                "cost": data.cost,
                "total_amount": commission.total_amount,
                "status": status,
            },
        )
        logger.info(
            f"Commission {commission.code} created by user {actor.id}: "
            f"{commission.total_amount} {commission.currency} ({status.value})"
        )
        return commission

    # ── transitions ───────────────────────────────────────

    async def approve_commission(
        self,
        actor: Optional[User],
        commission_id: int,
        notes: Optional[str] = None,
    ) -> Commission:
        """
        pending → approved. Freezes the calculation breakdown.
        """
        actor = require_permission(actor, Permission.APPROVE)
        commission = await self._get_active(commission_id)
        next_status(commission.status, CommissionTransition.APPROVE)

        now = _utcnow()
        breakdown = dict(commission.calculation_breakdown or {
            "base_amount": str(commission.base_amount),
            "rate": str(commission.commission_percentage),
            "adjustments": [],
            "final_amount": str(commission.total_amount),
        })
        breakdown["frozen_at"] = now.isoformat()

        await self._transition(commission, CommissionTransition.APPROVE, {
            "approved_by_id": actor.id,
            "approved_date": now,
            "approval_notes": _clean(notes),
            "calculation_breakdown": breakdown,
            "updated_by_id": actor.id,
        })

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.APPROVE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=f"Approved commission {commission.code} of {commission.total_amount} {commission.currency}",
            action_metadata={"status": {"from": "pending", "to": "approved"}, "notes": _clean(notes)},
        )
        logger.info(f"Commission {commission.code} approved by user {actor.id}")
        return commission

    async def pay_commission(
        self,
        actor: Optional[User],
        commission_id: int,
        payment_reference: Optional[str],
        payment_method: Optional[PaymentMethod | str],
        notes: Optional[str] = None,
    ) -> Commission:
        """
        approved → paid. Terminal.

        Raises:
            ValidationError: reference empty or method missing/unknown
        """
        actor = require_permission(actor, Permission.PAY)

        reference = _clean(payment_reference)
        errors = []
        if not reference:
            errors.append("Payment reference is required")
        method = None
        if payment_method is None:
            errors.append("Payment method is required")
        else:
            try:
                method = PaymentMethod(payment_method)
            except ValueError:
                errors.append(f"Unknown payment method: {payment_method}")
        if errors:
            raise ValidationError("Invalid payment data", errors)

        commission = await self._get_active(commission_id)
        next_status(commission.status, CommissionTransition.PAY)

        await self._transition(commission, CommissionTransition.PAY, {
            "paid_by_id": actor.id,
            "paid_date": _utcnow(),
            "payment_reference": reference,
            "payment_method": method,
            "payment_notes": _clean(notes),
            "updated_by_id": actor.id,
        })

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.PAY_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=(
                f"Paid commission {commission.code} of {commission.total_amount} "
                f"{commission.currency} via {method.value}"
            ),
            action_metadata={
                "status": {"from": "approved", "to": "paid"},
                "payment_reference": reference,
                "payment_method": method,
            },
        )
        logger.info(f"Commission {commission.code} paid by user {actor.id} ({reference})")
        return commission

    async def cancel_commission(
        self,
        actor: Optional[User],
        commission_id: int,
        reason: Optional[str] = None,
    ) -> Commission:
        """
        pending/approved → cancelled. Paid commissions need a financial
        reversal instead, which this engine does not perform.
        """
        actor = require_permission(actor, Permission.EDIT)
        commission = await self._get_active(commission_id)
        previous = commission.status
        next_status(previous, CommissionTransition.CANCEL)

        await self._transition(commission, CommissionTransition.CANCEL, {
            "cancelled_by_id": actor.id,
            "cancelled_date": _utcnow(),
            "cancellation_reason": _clean(reason),
            "updated_by_id": actor.id,
        })

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.CANCEL_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=f"Cancelled commission {commission.code}" + (f": {_clean(reason)}" if _clean(reason) else ""),
            action_metadata={"status": {"from": previous, "to": "cancelled"}},
        )
        logger.info(f"Commission {commission.code} cancelled by user {actor.id}")
        return commission

    # ── edits ─────────────────────────────────────────────

    async def update_commission(
        self,
        actor: Optional[User],
        commission_id: int,
        data: CommissionUpdate,
    ) -> Commission:
        """
        Adjust amounts or text of a commission.

        Amounts change only while pending or approved; description and notes
        stay editable on cancelled records too. A changed total is recorded as
        a manual adjustment in the breakdown.
        """
        actor = require_permission(actor, Permission.EDIT)
        commission = await self._get_active(commission_id)

        changes = data.model_dump(exclude_unset=True)
        amounts_changed = any(key in changes for key in AMOUNT_FIELDS)
        self._require_editable(
            commission,
            "update",
            EDITABLE_STATES if amounts_changed else ANNOTATABLE_STATES,
        )
        for key in ("description", "notes"):
            if key in changes:
                changes[key] = _clean(changes[key])
        for key in AMOUNT_FIELDS:
            if key in changes and changes[key] is None:
                raise ValidationError(f"{key} cannot be cleared")

        validate_financials(
            commission_percentage=changes.get("commission_percentage"),
            total_amount=changes.get("total_amount"),
            description=changes.get("description"),
            notes=changes.get("notes"),
        )
        if not changes:
            return commission

        before = {key: getattr(commission, key) for key in changes}
        values = dict(changes)
        new_total = changes.get("total_amount")
        if new_total is not None and new_total != commission.total_amount:
            breakdown = dict(commission.calculation_breakdown or {})
            breakdown["adjustments"] = list(breakdown.get("adjustments", [])) + [{
                "type": "manual_adjustment",
                "from": str(commission.total_amount),
                "to": str(new_total),
                "by": actor.id,
                "at": _utcnow().isoformat(),
            }]
            breakdown["final_amount"] = str(new_total)
            values["calculation_breakdown"] = breakdown
        values["updated_by_id"] = actor.id

        if not await self._guarded_update(commission, [commission.status], values):
            raise InvalidStateTransition(
                f"Commission {commission_id} was modified concurrently, retry the update"
            )

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.UPDATE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=f"Updated commission {commission.code}",
            action_metadata={"changes": field_changes(before, changes)},
        )
        logger.info(f"Commission {commission.code} updated by user {actor.id}: {sorted(changes)}")
        return commission

    async def recalculate_commission(
        self,
        actor: Optional[User],
        commission_id: int,
        revenue: Decimal,
        cost: Optional[Decimal] = None,
    ) -> tuple[Commission, Decimal, Decimal]:
        """
        Re-run the commission's rule on corrected transaction figures.

        Returns:
            (commission, old_amount, new_amount)
        """
        actor = require_permission(actor, Permission.EDIT)
        commission = await self._get_active(commission_id)
        self._require_editable(commission, "recalculate")

        if commission.rule_id is None:
            raise ValidationError("Commission has no associated rule")
        rule = await self.db.get(CommissionRule, commission.rule_id)
        if rule is None:
            raise NotFoundError(f"Commission rule {commission.rule_id} not found")

        validate_financials(revenue=revenue, cost=cost)
        calculation = apply_commission_rule(rule, revenue, cost)
        validate_calculation(calculation, rule.type)

        old_amount = commission.total_amount
        values = _calculation_values(calculation, rule)
        if commission.status == CommissionStatus.APPROVED:
            # already approved: the new snapshot is frozen immediately
            values["calculation_breakdown"]["frozen_at"] = _utcnow().isoformat()
        values.update({
            "revenue": revenue,
            "cost": cost,
            "calculated_at": _utcnow(),
            "updated_by_id": actor.id,
        })

        if not await self._guarded_update(commission, [commission.status], values):
            raise InvalidStateTransition(
                f"Commission {commission_id} was modified concurrently, retry the recalculation"
            )

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.RECALCULATE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=(
                f"Recalculated commission {commission.code} from {old_amount} "
                f"to {commission.total_amount}"
            ),
            action_metadata={
                "total_amount": {"from": old_amount, "to": commission.total_amount},
                "revenue": revenue,
                "cost": cost,
            },
        )
        logger.info(
            f"Commission {commission.code} recalculated by user {actor.id}: "
            f"{old_amount} -> {commission.total_amount}"
        )
        return commission, old_amount, commission.total_amount

    # ── soft delete ───────────────────────────────────────

    async def delete_commission(self, actor: Optional[User], commission_id: int) -> Commission:
        """
        Soft-delete. Paid commissions are kept visible.

        Raises:
            InvalidStateTransition: already deleted, or paid
        """
        actor = require_permission(actor, Permission.DELETE)
        commission = await self._get_any(commission_id)
        if commission.is_deleted:
            raise InvalidStateTransition(f"Commission {commission.code} is already deleted")
        if commission.status == CommissionStatus.PAID:
            raise InvalidStateTransition("Cannot delete a paid commission")

        now = _utcnow()
        deletable = [s for s in CommissionStatus if s != CommissionStatus.PAID]
        if not await self._guarded_update(commission, deletable, {
            "deleted_at": now,
            "deleted_by_id": actor.id,
            "updated_by_id": actor.id,
        }):
            raise InvalidStateTransition(
                f"Commission {commission.code} was modified concurrently, retry the delete"
            )

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.DELETE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=f"Deleted commission {commission.code}",
            action_metadata={"deleted_at": now},
        )
        logger.info(f"Commission {commission.code} deleted by user {actor.id}")
        return commission

    async def restore_commission(self, actor: Optional[User], commission_id: int) -> Commission:
        """
        Undo a soft delete. Only the owner or an administrator may restore.

        Raises:
            ForbiddenError: neither owner nor admin
            InvalidStateTransition: commission is not deleted
        """
        commission = await self._get_any(commission_id)
        actor = require_owner_or_admin(actor, commission.owner_id)
        if not commission.is_deleted:
            raise InvalidStateTransition(f"Commission {commission.code} is not deleted")

        deleted_at = commission.deleted_at
        if not await self._guarded_update(
            commission,
            list(CommissionStatus),
            {"deleted_at": None, "deleted_by_id": None, "updated_by_id": actor.id},
            deleted=True,
        ):
            raise InvalidStateTransition(f"Commission {commission.code} is not deleted")

        await log_action(
            self.db,
            ip_address=self.ip_address,
            user_id=actor.id,
            action=AuditAction.RESTORE_COMMISSION,
            target_type="commission",
            target_id=commission.id,
            summary=f"Restored commission {commission.code}",
            action_metadata={"deleted_at": {"from": deleted_at, "to": None}},
        )
        logger.info(f"Commission {commission.code} restored by user {actor.id}")
        return commission

    # ── invoice hook ──────────────────────────────────────

    async def auto_approve_for_invoice(
        self,
        actor: Optional[User],
        invoice_id: int,
        invoice_paid_date: Optional[datetime] = None,
    ) -> tuple[int, int]:
        """
        Mark an invoice's pending commissions as invoice-paid and approve
        those whose rule has auto_approve.

        Returns:
            (approved_count, total_pending_count)
        """
        actor = require_permission(actor, Permission.APPROVE)
        paid_date = invoice_paid_date or _utcnow()

        result = await self.db.execute(
            select(Commission)
            .options(selectinload(Commission.rule))
            .where(
                Commission.invoice_id == invoice_id,
                Commission.status == CommissionStatus.PENDING,
                Commission.deleted_at.is_(None),
            )
            .order_by(Commission.id)
        )
        commissions = list(result.scalars().all())

        approved = []
        invoice_values = {
            "invoice_payment_status": InvoicePaymentStatus.PAID,
            "invoice_paid_date": paid_date,
            "updated_by_id": actor.id,
        }
        pending_only = allowed_sources(CommissionTransition.APPROVE)
        for commission in commissions:
            rule = commission.rule
            if rule is not None and rule.auto_approve and not rule.is_deleted:
                now = _utcnow()
                breakdown = dict(commission.calculation_breakdown or {})
                breakdown["frozen_at"] = now.isoformat()
                if await self._guarded_update(commission, pending_only, {
                    **invoice_values,
                    "status": CommissionStatus.APPROVED,
                    "approved_by_id": actor.id,
                    "approved_date": now,
                    "approval_notes": AUTO_APPROVE_NOTE,
                    "calculation_breakdown": breakdown,
                }):
                    approved.append(commission)
            else:
                await self._guarded_update(commission, pending_only, invoice_values)

        if approved:
            await log_action(
                self.db,
                ip_address=self.ip_address,
                user_id=actor.id,
                action=AuditAction.AUTO_APPROVE_COMMISSIONS,
                target_type="invoice",
                target_id=invoice_id,
                summary=f"Auto-approved {len(approved)} commissions for invoice {invoice_id} payment",
                action_metadata={"commission_ids": [c.id for c in approved]},
            )
        logger.info(
            f"Invoice {invoice_id} paid: {len(approved)}/{len(commissions)} pending commissions auto-approved"
        )
        return len(approved), len(commissions)
