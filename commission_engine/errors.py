"""
Domain errors for commission calculation and lifecycle.

Every error carries a human-readable message; ValidationError also carries
the full list of problems found so callers can fix them in one pass.
The HTTP layer maps each class to a status code (see main.py).
"""

from typing import Optional


class CommissionError(Exception):
    """Base class for all commission engine errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CommissionError):
    """Malformed or out-of-range input."""

    status_code = 422

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class InvalidInputError(ValidationError):
    """Evaluator input missing or unusable (e.g. no cost for a margin rule)."""


class NotFoundError(CommissionError):
    """Referenced record does not exist or is soft-deleted."""

    status_code = 404


class InvalidStateTransition(CommissionError):
    """Transition not allowed from the record's current state."""

    status_code = 409


class RuleFrozenError(CommissionError):
    """Financial fields of a rule already used by commissions cannot change."""

    status_code = 409


class UnauthorizedError(CommissionError):
    """No authenticated actor."""

    status_code = 401


class ForbiddenError(CommissionError):
    """Actor lacks the permission or ownership required."""

    status_code = 403


class ConfigurationError(CommissionError):
    """A commission rule is structurally unusable at evaluation time."""

    status_code = 422


class UnsupportedRuleType(ConfigurationError):
    """Rule type has no evaluation strategy."""
