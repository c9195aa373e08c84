"""
Threshold change request domain types (``threshold_kernel.domain.change_request``).

Responsibility
--------------
Pure value objects for the dual-control change lifecycle: the status
state machine, the outcome variants attached to a request, and the
request snapshot itself.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  May import
only from ``domain/threshold``.

Invariants enforced
-------------------
* ``CHANGE_TRANSITIONS`` defines the only valid status transitions.
  Terminal states have no outgoing edges.
* "Who did what" is a tagged union (``Requested | Approved | Rejected |
  Expired``) so a request can never carry both an approver and a
  rejecter.  ``status`` is derived from the outcome, never stored beside it.
* A request is expired iff ``now >= expires_at``.  The lazy check inside
  approve/reject and the sweep both use ``is_past_deadline``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Union
from uuid import UUID

from threshold_kernel.domain.threshold import ThresholdCategory

REQUEST_TTL = timedelta(hours=24)


class ChangeRequestStatus(str, Enum):
    """Threshold change request lifecycle states."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


CHANGE_TRANSITIONS: dict[ChangeRequestStatus, frozenset[ChangeRequestStatus]] = {
    ChangeRequestStatus.PENDING: frozenset({
        ChangeRequestStatus.APPROVED,
        ChangeRequestStatus.REJECTED,
        ChangeRequestStatus.EXPIRED,
    }),
    ChangeRequestStatus.APPROVED: frozenset(),
    ChangeRequestStatus.REJECTED: frozenset(),
    ChangeRequestStatus.EXPIRED: frozenset(),
}

TERMINAL_CHANGE_STATUSES: frozenset[ChangeRequestStatus] = frozenset({
    ChangeRequestStatus.APPROVED,
    ChangeRequestStatus.REJECTED,
    ChangeRequestStatus.EXPIRED,
})


def can_transition(current: ChangeRequestStatus, target: ChangeRequestStatus) -> bool:
    return target in CHANGE_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Outcome variants
# =========================================================================


@dataclass(frozen=True)
class Requested:
    """Awaiting a second actor."""

    status = ChangeRequestStatus.PENDING


@dataclass(frozen=True)
class Approved:
    approved_by: str
    approved_at: datetime
    comment: str | None = None

    status = ChangeRequestStatus.APPROVED


@dataclass(frozen=True)
class Rejected:
    rejected_by: str
    rejected_at: datetime
    reason: str

    status = ChangeRequestStatus.REJECTED


@dataclass(frozen=True)
class Expired:
    expired_at: datetime

    status = ChangeRequestStatus.EXPIRED


ChangeOutcome = Union[Requested, Approved, Rejected, Expired]


# =========================================================================
# Request snapshot
# =========================================================================


@dataclass(frozen=True)
class ThresholdChangeRequest:
    """Immutable snapshot of a threshold change request.

    ``current_amount`` is the effective threshold at request time.  It is
    a snapshot and is not refreshed if the store changes later.
    """

    request_id: UUID
    tenant_id: str
    category: ThresholdCategory
    currency_or_asset: str
    current_amount: Decimal
    new_amount: Decimal
    magnitude_percent: Decimal
    requires_approval: bool
    requested_by: str
    requested_at: datetime
    expires_at: datetime
    outcome: ChangeOutcome = Requested()
    justification: str | None = None
    original_request_hash: str | None = None

    @property
    def status(self) -> ChangeRequestStatus:
        return self.outcome.status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CHANGE_STATUSES

    @property
    def approved_by(self) -> str | None:
        return self.outcome.approved_by if isinstance(self.outcome, Approved) else None

    @property
    def approved_at(self) -> datetime | None:
        return self.outcome.approved_at if isinstance(self.outcome, Approved) else None

    @property
    def rejected_by(self) -> str | None:
        return self.outcome.rejected_by if isinstance(self.outcome, Rejected) else None

    @property
    def rejected_at(self) -> datetime | None:
        return self.outcome.rejected_at if isinstance(self.outcome, Rejected) else None

    @property
    def rejection_reason(self) -> str | None:
        return self.outcome.reason if isinstance(self.outcome, Rejected) else None

    @property
    def expired_at(self) -> datetime | None:
        return self.outcome.expired_at if isinstance(self.outcome, Expired) else None

    def is_past_deadline(self, now: datetime) -> bool:
        return is_past_deadline(self.expires_at, now)


def is_past_deadline(expires_at: datetime, now: datetime) -> bool:
    """Single definition of "expired" shared by the lazy check and the sweep."""
    return now >= expires_at


def compute_expiry(requested_at: datetime) -> datetime:
    return requested_at + REQUEST_TTL
