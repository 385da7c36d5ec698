"""
Commission rule evaluation.

Pure functions turning (rule, revenue, cost) into a CommissionCalculation:

- margin_percentage:  (revenue - cost) × rate / 100
- revenue_percentage: revenue × rate / 100
- fixed_amount:       rate, as a flat amount
- tiered:             base × tier.rate / 100, first tier containing base

Amounts never go below zero. Gating thresholds run after the amount is
computed and compare unrounded values: if one fails, the commission and its
rate collapse to zero and `suppressed_by` names the threshold. Only the
reported figures are rounded to cents. Nothing here touches the database.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Optional, Union

from pydantic import ValidationError as SchemaValidationError

from commission_engine.errors import ConfigurationError, InvalidInputError, UnsupportedRuleType
from commission_engine.models.rule import RuleType
from commission_engine.schemas.rule import CommissionCalculation, CommissionTier, RuleValidationResult

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")
TWO_PLACES = Decimal("0.01")

# Threshold names, reported in CommissionCalculation.suppressed_by
GATE_MIN_MARGIN_PERCENTAGE = "min_margin_percentage"
GATE_MIN_ORDER_VALUE = "min_order_value"
GATE_MIN_COMMISSION_AMOUNT = "min_commission_amount"

# Largest values the Numeric(12, 2) money and Numeric(7, 2) gate percentage columns hold
MAX_STORED_AMOUNT = Decimal("9999999999.99")
MAX_GATE_PERCENTAGE = Decimal("99999.99")


def _to_decimal(value: Optional[Number]) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    # str() keeps floats like 0.1 from dragging binary noise into the result
    return Decimal(str(value))


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _field(rule: Any, name: str) -> Any:
    """Read a rule field from an ORM row, a schema, or a plain dict."""
    if isinstance(rule, dict):
        return rule.get(name)
    return getattr(rule, name, None)


def _first_failed_gate(*checks: tuple[str, Optional[Decimal], Decimal]) -> Optional[str]:
    """Return the first (name, threshold, observed) check with observed < threshold."""
    for gate, threshold, observed in checks:
        if threshold is not None and observed < threshold:
            return gate
    return None


def _margin_percentage(revenue: Decimal, margin: Decimal) -> Decimal:
    """Unrounded margin / revenue × 100; zero when there is no revenue."""
    if revenue == ZERO:
        return ZERO
    return margin / revenue * HUNDRED


def normalize_tiers(tiers: Optional[Iterable[Any]]) -> list[CommissionTier]:
    """Coerce stored tiers (dicts or objects) into CommissionTier models."""
    result = []
    for tier in tiers or []:
        if isinstance(tier, CommissionTier):
            result.append(tier)
        elif isinstance(tier, dict):
            result.append(CommissionTier.model_validate(tier))
        else:
            result.append(CommissionTier.model_validate(tier, from_attributes=True))
    return result


def sort_tiers(tiers: Iterable[CommissionTier]) -> list[CommissionTier]:
    return sorted(tiers, key=lambda t: t.min_amount)


def find_applicable_tier(
    tiers: Iterable[CommissionTier],
    amount: Decimal,
) -> Optional[CommissionTier]:
    """
    First tier, in configured order, whose range contains amount.

    Tiers are expected sorted and non-overlapping (validated when the rule
    is saved), so at most one tier can match.
    """
    for tier in tiers:
        if tier.contains(amount):
            return tier
    return None


def calculate_margin_commission(
    revenue: Number,
    cost: Optional[Number],
    rate: Number,
    min_margin_percentage: Optional[Number] = None,
    min_order_value: Optional[Number] = None,
    min_commission_amount: Optional[Number] = None,
) -> CommissionCalculation:
    """
    Commission as a percentage of margin (revenue - cost).

    Raises:
        InvalidInputError: cost is missing
    """
    if cost is None:
        raise InvalidInputError("Cost is required for margin-based commission")

    revenue = _to_decimal(revenue)
    rate = _to_decimal(rate)
    margin = revenue - _to_decimal(cost)
    margin_percentage = _margin_percentage(revenue, margin)

    # A negative margin never produces a negative commission
    amount = max(margin * rate / HUNDRED, ZERO)

    gate = _first_failed_gate(
        (GATE_MIN_MARGIN_PERCENTAGE, _to_decimal(min_margin_percentage), margin_percentage),
        (GATE_MIN_ORDER_VALUE, _to_decimal(min_order_value), revenue),
        (GATE_MIN_COMMISSION_AMOUNT, _to_decimal(min_commission_amount), amount),
    )
    if gate:
        rate, amount = ZERO, ZERO

    return CommissionCalculation(
        base_amount=_quantize(revenue),
        margin=_quantize(margin),
        margin_percentage=_quantize(margin_percentage),
        commission_rate=rate,
        commission_amount=_quantize(amount),
        suppressed_by=gate,
    )


def calculate_revenue_commission(
    revenue: Number,
    rate: Number,
    min_order_value: Optional[Number] = None,
    min_commission_amount: Optional[Number] = None,
) -> CommissionCalculation:
    """Commission as a percentage of revenue."""
    revenue = _to_decimal(revenue)
    rate = _to_decimal(rate)
    amount = max(revenue * rate / HUNDRED, ZERO)

    gate = _first_failed_gate(
        (GATE_MIN_ORDER_VALUE, _to_decimal(min_order_value), revenue),
        (GATE_MIN_COMMISSION_AMOUNT, _to_decimal(min_commission_amount), amount),
    )
    if gate:
        rate, amount = ZERO, ZERO

    return CommissionCalculation(
        base_amount=_quantize(revenue),
        commission_rate=rate,
        commission_amount=_quantize(amount),
        suppressed_by=gate,
    )


def calculate_fixed_commission(
    revenue: Number,
    amount: Number,
    min_order_value: Optional[Number] = None,
) -> CommissionCalculation:
    """Flat commission, paid only when revenue reaches min_order_value."""
    revenue = _to_decimal(revenue)
    rate = _to_decimal(amount)
    commission = max(_quantize(rate), ZERO)

    gate = _first_failed_gate(
        (GATE_MIN_ORDER_VALUE, _to_decimal(min_order_value), revenue),
    )
    if gate:
        rate, commission = ZERO, ZERO

    return CommissionCalculation(
        base_amount=_quantize(revenue),
        commission_rate=rate,
        commission_amount=commission,
        suppressed_by=gate,
    )


def calculate_tiered_commission(
    revenue: Number,
    tiers: Iterable[Any],
    cost: Optional[Number] = None,
    min_order_value: Optional[Number] = None,
    min_commission_amount: Optional[Number] = None,
) -> CommissionCalculation:
    """
    Commission from the tier containing the base amount.

    The base is the margin when cost is known, revenue otherwise.

    Raises:
        ConfigurationError: no tiers defined
    """
    tiers = normalize_tiers(tiers)
    if not tiers:
        raise ConfigurationError("Tiered commission rule has no tiers defined")

    revenue = _to_decimal(revenue)
    margin = None
    margin_percentage = None
    if cost is not None:
        raw_margin = revenue - _to_decimal(cost)
        margin = _quantize(raw_margin)
        margin_percentage = _quantize(_margin_percentage(revenue, raw_margin))
        base = raw_margin
    else:
        base = revenue
    base_amount = _quantize(base)

    tier = find_applicable_tier(tiers, base)
    if tier is None:
        return CommissionCalculation(
            base_amount=base_amount,
            margin=margin,
            margin_percentage=margin_percentage,
            commission_rate=ZERO,
            commission_amount=ZERO,
        )

    rate = tier.rate
    amount = max(base * rate / HUNDRED, ZERO)

    gate = _first_failed_gate(
        (GATE_MIN_ORDER_VALUE, _to_decimal(min_order_value), revenue),
        (GATE_MIN_COMMISSION_AMOUNT, _to_decimal(min_commission_amount), amount),
    )
    if gate:
        rate, amount = ZERO, ZERO

    return CommissionCalculation(
        base_amount=base_amount,
        margin=margin,
        margin_percentage=margin_percentage,
        commission_rate=rate,
        commission_amount=_quantize(amount),
        applied_tier=tier,
        suppressed_by=gate,
    )


def _rule_rate(rule: Any, rule_type: RuleType) -> Decimal:
    rate = _to_decimal(_field(rule, "rate"))
    if rate is None:
        raise ConfigurationError(f"Commission rule of type {rule_type.value} has no rate configured")
    return rate


def _apply_margin(rule: Any, revenue: Number, cost: Optional[Number]) -> CommissionCalculation:
    return calculate_margin_commission(
        revenue,
        cost,
        _rule_rate(rule, RuleType.MARGIN_PERCENTAGE),
        min_margin_percentage=_field(rule, "min_margin_percentage"),
        min_order_value=_field(rule, "min_order_value"),
        min_commission_amount=_field(rule, "min_commission_amount"),
    )


def _apply_revenue(rule: Any, revenue: Number, cost: Optional[Number]) -> CommissionCalculation:
    return calculate_revenue_commission(
        revenue,
        _rule_rate(rule, RuleType.REVENUE_PERCENTAGE),
        min_order_value=_field(rule, "min_order_value"),
        min_commission_amount=_field(rule, "min_commission_amount"),
    )


def _apply_fixed(rule: Any, revenue: Number, cost: Optional[Number]) -> CommissionCalculation:
    return calculate_fixed_commission(
        revenue,
        _rule_rate(rule, RuleType.FIXED_AMOUNT),
        min_order_value=_field(rule, "min_order_value"),
    )


def _apply_tiered(rule: Any, revenue: Number, cost: Optional[Number]) -> CommissionCalculation:
    return calculate_tiered_commission(
        revenue,
        _field(rule, "tiers"),
        cost=cost,
        min_order_value=_field(rule, "min_order_value"),
        min_commission_amount=_field(rule, "min_commission_amount"),
    )


_EVALUATORS: dict[RuleType, Callable[[Any, Number, Optional[Number]], CommissionCalculation]] = {
    RuleType.MARGIN_PERCENTAGE: _apply_margin,
    RuleType.REVENUE_PERCENTAGE: _apply_revenue,
    RuleType.FIXED_AMOUNT: _apply_fixed,
    RuleType.TIERED: _apply_tiered,
}

# Every rule type must have exactly one strategy
assert set(_EVALUATORS) == set(RuleType), "rule evaluator table out of sync with RuleType"


def resolve_rule_type(value: Any) -> RuleType:
    """
    Map a stored/requested type value onto RuleType.

    Raises:
        UnsupportedRuleType: value is not a known rule type
    """
    try:
        return RuleType(value)
    except ValueError:
        raise UnsupportedRuleType(f"Unsupported commission rule type: {value!r}")


def apply_commission_rule(
    rule: Any,
    revenue: Number,
    cost: Optional[Number] = None,
) -> CommissionCalculation:
    """
    Evaluate a rule against transaction figures.

    Args:
        rule: Anything exposing type, rate, tiers and the three thresholds
              (CommissionRule row, CommissionRuleDefinition, dict)
        revenue: Transaction revenue
        cost: Transaction cost, required for margin_percentage rules

    Raises:
        UnsupportedRuleType: unknown rule type
        ConfigurationError: rule missing its rate or tiers
        InvalidInputError: cost missing for a margin rule
    """
    rule_type = resolve_rule_type(_field(rule, "type"))
    calculation = _EVALUATORS[rule_type](rule, revenue, cost)
    logger.debug(
        f"Evaluated {rule_type.value} rule: revenue={revenue} cost={cost} "
        f"-> {calculation.commission_amount} (suppressed_by={calculation.suppressed_by})"
    )
    return calculation


def _check_non_negative(
    errors: list[str], label: str, value: Any, maximum: Decimal = MAX_STORED_AMOUNT
) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        number = _to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        errors.append(f"{label} must be a number")
        return None
    if not number.is_finite():
        errors.append(f"{label} must be a finite number")
        return None
    if number < ZERO:
        errors.append(f"{label} must be greater than or equal to 0")
    elif number > maximum:
        errors.append(f"{label} must be at most {maximum}")
    return number


def validate_commission_rule(rule: Any) -> RuleValidationResult:
    """
    Structural check of a rule before it is trusted.

    Tiers are checked after sorting by min_amount; one error is reported
    per overlapping adjacent pair, using 1-based positions in sorted order.
    A tier without max_amount overlaps whatever follows it.
    """
    errors: list[str] = []
    raw_type = _field(rule, "type")

    rule_type = None
    if raw_type is None or raw_type == "":
        errors.append("Rule type is required")
    else:
        try:
            rule_type = resolve_rule_type(raw_type)
        except UnsupportedRuleType as exc:
            errors.append(exc.message)

    if rule_type == RuleType.TIERED:
        try:
            tiers = sort_tiers(normalize_tiers(_field(rule, "tiers")))
        except (SchemaValidationError, TypeError, ValueError):
            errors.append("Tiers are malformed: each tier needs a numeric min_amount and rate")
            tiers = None

        if tiers is not None and not tiers:
            errors.append("Tiered rules require at least one tier")
        elif tiers:
            for position, tier in enumerate(tiers, start=1):
                if tier.rate < ZERO:
                    errors.append(f"Tier {position}: rate must be greater than or equal to 0")
                if tier.min_amount < ZERO:
                    errors.append(f"Tier {position}: min_amount must be greater than or equal to 0")
                if tier.max_amount is not None and tier.max_amount < tier.min_amount:
                    errors.append(
                        f"Tier {position}: max_amount must be greater than or equal to min_amount"
                    )

            for position, (current, following) in enumerate(zip(tiers, tiers[1:]), start=1):
                if current.max_amount is None or current.max_amount >= following.min_amount:
                    errors.append(
                        f"Tiers {position} and {position + 1} overlap: tier {position} ends at "
                        f"{current.max_amount if current.max_amount is not None else 'no limit'}, "
                        f"tier {position + 1} starts at {following.min_amount}"
                    )
    elif rule_type is not None:
        if _field(rule, "rate") is None:
            errors.append(f"Rate is required for {rule_type.value} rules")
        else:
            _check_non_negative(errors, "Rate", _field(rule, "rate"))

    _check_non_negative(
        errors,
        GATE_MIN_MARGIN_PERCENTAGE,
        _field(rule, GATE_MIN_MARGIN_PERCENTAGE),
        maximum=MAX_GATE_PERCENTAGE,
    )
    for gate in (GATE_MIN_ORDER_VALUE, GATE_MIN_COMMISSION_AMOUNT):
        _check_non_negative(errors, gate, _field(rule, gate))

    return RuleValidationResult(valid=not errors, errors=errors)
