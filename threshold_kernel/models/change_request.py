"""
Module: threshold_kernel.models.change_request
Responsibility: ORM persistence for threshold change requests.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Lifecycle: DB check constraint limits status values; status and the
      outcome columns must agree (an APPROVED row has an approver and no
      rejecter, and so on).
    - Terminal states are write-once: ApprovalWorkflow moves rows with a
      conditional UPDATE (``WHERE status = 'PENDING'``) and the ORM listener
      in db/immutability.py refuses changes to a terminal row.
    - Request tamper evidence: ``original_request_hash`` is written at
      creation and verified on every load through the workflow.

Failure modes:
    - IntegrityError when status and outcome columns disagree.
    - ImmutabilityViolationError on UPDATE of a terminal row or DELETE.

Audit relevance:
    The request row is the authoritative state of the dual-control
    workflow.  Every transition is also recorded as an audit event.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from threshold_kernel.db.base import Base, UUIDString
from threshold_kernel.domain.change_request import (
    Approved,
    ChangeOutcome,
    ChangeRequestStatus,
    Expired,
    Rejected,
    Requested,
    ThresholdChangeRequest,
)
from threshold_kernel.domain.threshold import ThresholdCategory


class ThresholdChangeRequestModel(Base):
    """Persistent threshold change request.

    Contract:
        Rows are created PENDING (or APPROVED for in-bounds changes).  A
        PENDING row moves to exactly one terminal status, once.

    Guarantees:
        - Outcome columns are consistent with ``status`` (check constraints).
        - ``original_request_hash`` is write-once.
    """

    __tablename__ = "threshold_change_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'APPROVED', 'REJECTED', 'EXPIRED')",
            name="ck_threshold_change_requests_valid_status",
        ),
        CheckConstraint(
            "(status = 'APPROVED' AND approved_by IS NOT NULL AND approved_at IS NOT NULL)"
            " OR (status <> 'APPROVED' AND approved_by IS NULL AND approved_at IS NULL)",
            name="ck_threshold_change_requests_approved_outcome",
        ),
        CheckConstraint(
            "(status = 'REJECTED' AND rejected_by IS NOT NULL AND rejected_at IS NOT NULL"
            " AND rejection_reason IS NOT NULL)"
            " OR (status <> 'REJECTED' AND rejected_by IS NULL AND rejected_at IS NULL"
            " AND rejection_reason IS NULL)",
            name="ck_threshold_change_requests_rejected_outcome",
        ),
        CheckConstraint(
            "(status = 'EXPIRED' AND expired_at IS NOT NULL)"
            " OR (status <> 'EXPIRED' AND expired_at IS NULL)",
            name="ck_threshold_change_requests_expired_outcome",
        ),
        # Pending list and expiry sweep
        Index(
            "ix_threshold_change_requests_status_expiry",
            "tenant_id", "status", "expires_at",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    currency_or_asset: Mapped[str] = mapped_column(String(10), nullable=False)
    current_amount: Mapped[Decimal] = mapped_column(nullable=False)
    new_amount: Mapped[Decimal] = mapped_column(nullable=False)
    magnitude_percent: Mapped[Decimal] = mapped_column(nullable=False)
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False)
    requested_by: Mapped[str] = mapped_column(String(100), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)
    justification: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ChangeRequestStatus.PENDING.value,
    )

    approved_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    approval_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(nullable=True)

    original_request_hash: Mapped[str | None] = mapped_column(
        String(64), nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<ThresholdChangeRequest {self.request_id} "
            f"{self.category}/{self.currency_or_asset} status={self.status}>"
        )

    def outcome(self) -> ChangeOutcome:
        status = ChangeRequestStatus(self.status)
        if status is ChangeRequestStatus.APPROVED:
            return Approved(
                approved_by=self.approved_by,
                approved_at=self.approved_at,
                comment=self.approval_comment,
            )
        if status is ChangeRequestStatus.REJECTED:
            return Rejected(
                rejected_by=self.rejected_by,
                rejected_at=self.rejected_at,
                reason=self.rejection_reason,
            )
        if status is ChangeRequestStatus.EXPIRED:
            return Expired(expired_at=self.expired_at)
        return Requested()

    def to_dto(self) -> ThresholdChangeRequest:
        """Convert ORM model to frozen domain DTO."""
        return ThresholdChangeRequest(
            request_id=self.request_id,
            tenant_id=self.tenant_id,
            category=ThresholdCategory(self.category),
            currency_or_asset=self.currency_or_asset,
            current_amount=self.current_amount,
            new_amount=self.new_amount,
            magnitude_percent=self.magnitude_percent,
            requires_approval=self.requires_approval,
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            expires_at=self.expires_at,
            outcome=self.outcome(),
            justification=self.justification,
            original_request_hash=self.original_request_hash,
        )

    @classmethod
    def from_dto(cls, dto: ThresholdChangeRequest) -> ThresholdChangeRequestModel:
        """Create ORM model from domain DTO, including its outcome columns."""
        model = cls(
            request_id=dto.request_id,
            tenant_id=dto.tenant_id,
            category=dto.category.value,
            currency_or_asset=dto.currency_or_asset,
            current_amount=dto.current_amount,
            new_amount=dto.new_amount,
            magnitude_percent=dto.magnitude_percent,
            requires_approval=dto.requires_approval,
            requested_by=dto.requested_by,
            requested_at=dto.requested_at,
            expires_at=dto.expires_at,
            justification=dto.justification,
            status=dto.status.value,
            original_request_hash=dto.original_request_hash,
        )
        outcome = dto.outcome
        if isinstance(outcome, Approved):
            model.approved_by = outcome.approved_by
            model.approved_at = outcome.approved_at
            model.approval_comment = outcome.comment
        elif isinstance(outcome, Rejected):
            model.rejected_by = outcome.rejected_by
            model.rejected_at = outcome.rejected_at
            model.rejection_reason = outcome.reason
        elif isinstance(outcome, Expired):
            model.expired_at = outcome.expired_at
        return model
