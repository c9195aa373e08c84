"""Tests for the change request state machine and outcome variants."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from threshold_kernel.domain.change_request import (
    CHANGE_TRANSITIONS,
    REQUEST_TTL,
    Approved,
    ChangeRequestStatus,
    Expired,
    Rejected,
    ThresholdChangeRequest,
    can_transition,
    compute_expiry,
    is_past_deadline,
)
from threshold_kernel.domain.threshold import ThresholdCategory

T0 = datetime(2024, 1, 1, 12, tzinfo=timezone.utc)


def _request(**overrides) -> ThresholdChangeRequest:
    fields = dict(
        request_id=uuid4(),
        tenant_id="t1",
        category=ThresholdCategory.CRYPTO_BUY,
        currency_or_asset="BTC",
        current_amount=Decimal("5000"),
        new_amount=Decimal("20000"),
        magnitude_percent=Decimal("300"),
        requires_approval=True,
        requested_by="ops-admin-1",
        requested_at=T0,
        expires_at=compute_expiry(T0),
    )
    fields.update(overrides)
    return ThresholdChangeRequest(**fields)


class TestTransitions:
    @pytest.mark.parametrize("target", [
        ChangeRequestStatus.APPROVED,
        ChangeRequestStatus.REJECTED,
        ChangeRequestStatus.EXPIRED,
    ])
    def test_pending_can_reach_every_terminal_state(self, target):
        assert can_transition(ChangeRequestStatus.PENDING, target)

    @pytest.mark.parametrize("terminal", [
        ChangeRequestStatus.APPROVED,
        ChangeRequestStatus.REJECTED,
        ChangeRequestStatus.EXPIRED,
    ])
    def test_terminal_states_have_no_exits(self, terminal):
        assert CHANGE_TRANSITIONS[terminal] == frozenset()
        for target in ChangeRequestStatus:
            assert not can_transition(terminal, target)


class TestOutcomes:
    def test_new_request_is_pending(self):
        request = _request()
        assert request.status is ChangeRequestStatus.PENDING
        assert not request.is_terminal
        assert request.approved_by is None
        assert request.rejected_by is None

    def test_approved_outcome(self):
        request = _request(outcome=Approved(approved_by="supervisor-1", approved_at=T0))
        assert request.status is ChangeRequestStatus.APPROVED
        assert request.approved_by == "supervisor-1"
        assert request.rejection_reason is None

    def test_rejected_outcome(self):
        request = _request(
            outcome=Rejected(rejected_by="supervisor-1", rejected_at=T0, reason="too high"),
        )
        assert request.status is ChangeRequestStatus.REJECTED
        assert request.rejection_reason == "too high"
        assert request.approved_by is None

    def test_expired_outcome(self):
        request = _request(outcome=Expired(expired_at=T0))
        assert request.status is ChangeRequestStatus.EXPIRED
        assert request.expired_at == T0
        assert request.is_terminal


class TestDeadline:
    def test_ttl_is_24_hours(self):
        assert REQUEST_TTL == timedelta(hours=24)
        assert compute_expiry(T0) == T0 + timedelta(hours=24)

    def test_deadline_is_inclusive(self):
        expires_at = compute_expiry(T0)
        assert not is_past_deadline(expires_at, expires_at - timedelta(microseconds=1))
        assert is_past_deadline(expires_at, expires_at)
        assert is_past_deadline(expires_at, expires_at + timedelta(seconds=1))

    def test_request_delegates_to_shared_rule(self):
        request = _request()
        assert request.is_past_deadline(request.expires_at)
