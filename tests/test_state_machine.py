"""
Tests for the commission status transition table.
"""

import pytest

from commission_engine.errors import InvalidStateTransition
from commission_engine.models import CommissionStatus
from commission_engine.services.state_machine import (
    EDITABLE_STATES,
    TRANSITIONS,
    CommissionTransition,
    allowed_sources,
    is_terminal,
    next_status,
)


class TestNextStatus:
    def test_approve_pending(self):
        assert next_status(CommissionStatus.PENDING, CommissionTransition.APPROVE) == CommissionStatus.APPROVED

    def test_pay_approved(self):
        assert next_status(CommissionStatus.APPROVED, CommissionTransition.PAY) == CommissionStatus.PAID

    @pytest.mark.parametrize("status", [CommissionStatus.PENDING, CommissionStatus.APPROVED])
    def test_cancel_open_commission(self, status):
        assert next_status(status, CommissionTransition.CANCEL) == CommissionStatus.CANCELLED

    def test_pay_pending_skipping_approval_fails(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            next_status(CommissionStatus.PENDING, CommissionTransition.PAY)
        assert "allowed from: approved" in exc_info.value.message

    def test_approve_paid_fails(self):
        with pytest.raises(InvalidStateTransition):
            next_status(CommissionStatus.PAID, CommissionTransition.APPROVE)

    @pytest.mark.parametrize("transition", list(CommissionTransition))
    @pytest.mark.parametrize("status", [CommissionStatus.PAID, CommissionStatus.CANCELLED])
    def test_terminal_states_have_no_exit(self, status, transition):
        with pytest.raises(InvalidStateTransition):
            next_status(status, transition)


class TestTable:
    def test_every_transition_is_listed(self):
        assert set(TRANSITIONS) == set(CommissionTransition)

    def test_allowed_sources(self):
        assert allowed_sources(CommissionTransition.CANCEL) == EDITABLE_STATES

    def test_terminal(self):
        assert is_terminal(CommissionStatus.PAID)
        assert is_terminal(CommissionStatus.CANCELLED)
        assert not is_terminal(CommissionStatus.APPROVED)
