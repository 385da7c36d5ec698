"""Business logic services."""

from commission_engine.services.lifecycle import CommissionLifecycleManager
from commission_engine.services.rule_evaluator import (
    apply_commission_rule,
    validate_commission_rule,
)
from commission_engine.services.rules import CommissionRuleManager

__all__ = [
    "apply_commission_rule",
    "validate_commission_rule",
    "CommissionLifecycleManager",
    "CommissionRuleManager",
]
