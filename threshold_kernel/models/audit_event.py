"""
Module: threshold_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident threshold change
    audit trail.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listener).
    - Hash chain integrity: hash = H(event_type | request_id | seq |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.
    - idempotency_key is unique: one event per (request, transition).

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    This table IS the audit trail of threshold governance.  Every change,
    request, approval, rejection and expiry produces exactly one row.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from threshold_kernel.db.base import Base, UUIDString
from threshold_kernel.domain.events import (
    ExecutionMode,
    ThresholdChangeEvent,
    ThresholdEventType,
)
from threshold_kernel.domain.threshold import ThresholdCategory


class ThresholdChangeEventModel(Base):
    """
    Threshold change audit event with hash chain.

    Contract:
        Rows are append-only, never updated or deleted.  Each row's hash
        includes the previous row's hash.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT enforce hash correctness at INSERT time;
          that is the responsibility of AuditorService.
    """

    __tablename__ = "threshold_change_events"

    __table_args__ = (
        Index("idx_threshold_events_request", "request_id"),
        Index("idx_threshold_events_tenant_seq", "tenant_id", "seq"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    threshold_id: Mapped[str] = mapped_column(String(100), nullable=False)
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    currency_or_asset: Mapped[str] = mapped_column(String(10), nullable=False)
    previous_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    new_amount: Mapped[Decimal] = mapped_column(nullable=False)
    magnitude_percent: Mapped[Decimal | None] = mapped_column(nullable=True)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_authorities: Mapped[list] = mapped_column(JSON, nullable=False)
    execution_mode: Mapped[str] = mapped_column(String(8), nullable=False)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    idempotency_key: Mapped[str] = mapped_column(
        String(200), nullable=False, unique=True,
    )

    # Canonical (JSON-safe) form of the event fields; hashed into payload_hash
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<ThresholdChangeEvent #{self.seq} {self.event_type} {self.threshold_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def to_dto(self) -> ThresholdChangeEvent:
        return ThresholdChangeEvent(
            seq=self.seq,
            event_type=ThresholdEventType(self.event_type),
            tenant_id=self.tenant_id,
            threshold_id=self.threshold_id,
            request_id=self.request_id,
            category=ThresholdCategory(self.category),
            currency_or_asset=self.currency_or_asset,
            previous_amount=self.previous_amount,
            new_amount=self.new_amount,
            magnitude_percent=self.magnitude_percent,
            actor=self.actor,
            actor_authorities=tuple(self.actor_authorities),
            execution_mode=ExecutionMode(self.execution_mode),
            occurred_at=self.occurred_at,
            idempotency_key=self.idempotency_key,
            hash=self.hash,
            rejection_reason=self.rejection_reason,
        )
