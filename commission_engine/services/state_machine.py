"""
Commission status transitions.

    PENDING ──approve──▶ APPROVED ──pay──▶ PAID
       │                    │
       └──────cancel────────┴──▶ CANCELLED

PAID and CANCELLED are terminal. Anything not listed in TRANSITIONS is
rejected with InvalidStateTransition. Soft delete is a separate flag and
does not appear here.
"""

import logging
from enum import Enum

from commission_engine.errors import InvalidStateTransition
from commission_engine.models.commission import CommissionStatus

logger = logging.getLogger(__name__)


class CommissionTransition(str, Enum):
    """Named status-changing operations."""
    APPROVE = "approve"
    PAY = "pay"
    CANCEL = "cancel"


# {transition: {allowed_from_state: to_state}}
TRANSITIONS: dict[CommissionTransition, dict[CommissionStatus, CommissionStatus]] = {
    CommissionTransition.APPROVE: {
        CommissionStatus.PENDING: CommissionStatus.APPROVED,
    },
    CommissionTransition.PAY: {
        CommissionStatus.APPROVED: CommissionStatus.PAID,
    },
    CommissionTransition.CANCEL: {
        CommissionStatus.PENDING: CommissionStatus.CANCELLED,
        CommissionStatus.APPROVED: CommissionStatus.CANCELLED,
    },
}

TERMINAL_STATES = frozenset({CommissionStatus.PAID, CommissionStatus.CANCELLED})

# States in which amounts may still be edited or recalculated
EDITABLE_STATES = frozenset({CommissionStatus.PENDING, CommissionStatus.APPROVED})

# States in which description and notes may still be edited
ANNOTATABLE_STATES = EDITABLE_STATES | {CommissionStatus.CANCELLED}


def allowed_sources(transition: CommissionTransition) -> frozenset[CommissionStatus]:
    return frozenset(TRANSITIONS[transition])


def next_status(current: CommissionStatus, transition: CommissionTransition) -> CommissionStatus:
    """
    Target status of applying transition to current.

    Raises:
        InvalidStateTransition: transition not allowed from current
    """
    targets = TRANSITIONS[transition]
    if current not in targets:
        allowed = ", ".join(sorted(s.value for s in targets))
        logger.warning(f"Rejected {transition.value} of a {current.value} commission")
        raise InvalidStateTransition(
            f"Cannot {transition.value} a {current.value} commission "
            f"(allowed from: {allowed})"
        )
    return targets[current]


def is_terminal(status: CommissionStatus) -> bool:
    return status in TERMINAL_STATES
