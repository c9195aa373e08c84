"""
AuditorService -- tamper-evident audit trail for threshold governance.

Responsibility:
    Creates immutable, hash-chained audit events for every threshold
    change lifecycle transition (direct change, request, approval,
    rejection, expiry).  Provides chain validation for tamper detection
    and queries for review.

Architecture position:
    Kernel > Services -- imperative shell, called by ApprovalWorkflow.

Invariants enforced:
    - Sequence monotonicity via SequenceService (never raw SQL max+1).
    - Audit chain integrity: ``hash = H(event_type | request_id | seq |
      payload_hash | prev_hash)``.  Every event links to its predecessor.
    - Append-only: events are never modified or deleted (ORM listener).
    - Exactly-once per transition: ``idempotency_key`` is unique and a
      repeated emit returns the existing event instead of a duplicate.

Failure modes:
    - AuditChainBrokenError: recomputed hash does not match the stored
      hash, or prev_hash does not match the predecessor's hash.

Audit relevance:
    This IS the audit service.  Every event is emitted inside the same
    transaction as the state change it records, so the trail can never
    show a transition that did not happen, or miss one that did.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from threshold_kernel.domain.change_request import ThresholdChangeRequest
from threshold_kernel.domain.clock import Clock, SystemClock
from threshold_kernel.domain.events import (
    ExecutionMode,
    ThresholdChangeEvent,
    ThresholdEventType,
)
from threshold_kernel.domain.threshold import make_threshold_id
from threshold_kernel.exceptions import AuditChainBrokenError
from threshold_kernel.logging_config import get_logger
from threshold_kernel.models.audit_event import ThresholdChangeEventModel
from threshold_kernel.services.sequence_service import SequenceService
from threshold_kernel.utils.hashing import (
    GENESIS_HASH,
    canonicalize_json,
    hash_audit_event,
    hash_payload,
)
from threshold_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.auditor")


class AuditorService:
    """
    Emits and validates threshold change audit events.

    Contract:
        ``emit`` appends one event per (request, event type).  The caller's
        transaction owns commit; this service only flushes.

    Guarantees:
        - ``seq`` strictly increases in emission order.
        - A second ``emit`` with the same idempotency key returns the
          existing event unchanged.

    Non-goals:
        - No update or delete API exists.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        execution_mode: ExecutionMode = ExecutionMode.LIVE,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._execution_mode = execution_mode
        self._sequence_service = SequenceService(session)

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(ThresholdChangeEventModel.hash)
            .order_by(ThresholdChangeEventModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _find_by_key(self, idempotency_key: str) -> ThresholdChangeEventModel | None:
        return self._session.execute(
            select(ThresholdChangeEventModel)
            .where(ThresholdChangeEventModel.idempotency_key == idempotency_key)
        ).scalar_one_or_none()

    def emit(
        self,
        event_type: ThresholdEventType,
        request: ThresholdChangeRequest,
        actor: str,
        actor_authorities: Iterable[str] = (),
        previous_amount: Decimal | None = None,
        rejection_reason: str | None = None,
    ) -> ThresholdChangeEvent:
        """
        Append the audit event for one lifecycle transition of ``request``.

        Postconditions:
            - Exactly one event exists for
              ``(request.request_id, event_type)``.
            - The new event links to the previous chain head.

        Args:
            event_type: Transition being recorded.
            request: The change request (snapshot after the transition).
            actor: Who performed the transition (``"system"`` for expiry).
            actor_authorities: Actor's capability set at the time.
            previous_amount: Store amount replaced by this transition,
                or the amount in force when nothing was applied.
            rejection_reason: Set for rejections only.
        """
        idempotency_key = generate_idempotency_key(request.request_id, event_type.value)
        existing = self._find_by_key(idempotency_key)
        if existing is not None:
            logger.info(
                "audit_event_duplicate_ignored",
                extra={
                    "idempotency_key": idempotency_key,
                    "seq": existing.seq,
                },
            )
            return existing.to_dto()

        seq = self._sequence_service.next_value(SequenceService.THRESHOLD_EVENT)
        prev_hash = self._get_last_hash()
        occurred_at = self._clock.now()

        fields: dict[str, Any] = {
            "event_type": event_type.value,
            "tenant_id": request.tenant_id,
            "threshold_id": make_threshold_id(request.category, request.currency_or_asset),
            "request_id": request.request_id,
            "category": request.category.value,
            "currency_or_asset": request.currency_or_asset,
            "previous_amount": previous_amount,
            "new_amount": request.new_amount,
            "magnitude_percent": request.magnitude_percent,
            "actor": actor,
            "actor_authorities": sorted(actor_authorities),
            "execution_mode": self._execution_mode.value,
            "rejection_reason": rejection_reason,
            "occurred_at": occurred_at,
            "idempotency_key": idempotency_key,
        }
        # Store the canonical JSON form so the payload hash can be recomputed
        # exactly, independent of column precision.
        payload = json.loads(canonicalize_json(fields))
        computed_payload_hash = hash_payload(payload)
        event_hash = hash_audit_event(
            event_type=event_type.value,
            request_id=str(request.request_id),
            seq=seq,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
        )

        model = ThresholdChangeEventModel(
            seq=seq,
            event_type=event_type.value,
            tenant_id=request.tenant_id,
            threshold_id=fields["threshold_id"],
            request_id=request.request_id,
            category=request.category.value,
            currency_or_asset=request.currency_or_asset,
            previous_amount=previous_amount,
            new_amount=request.new_amount,
            magnitude_percent=request.magnitude_percent,
            actor=actor,
            actor_authorities=fields["actor_authorities"],
            execution_mode=self._execution_mode.value,
            rejection_reason=rejection_reason,
            occurred_at=occurred_at,
            idempotency_key=idempotency_key,
            payload=payload,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "event_type": event_type.value,
                "request_id": str(request.request_id),
                "threshold_id": fields["threshold_id"],
                "seq": seq,
            },
        )
        return model.to_dto()

    # Queries

    def list_events(self, tenant_id: str | None = None) -> list[ThresholdChangeEvent]:
        """All events in ``seq`` order, optionally for one tenant."""
        stmt = select(ThresholdChangeEventModel).order_by(ThresholdChangeEventModel.seq)
        if tenant_id is not None:
            stmt = stmt.where(ThresholdChangeEventModel.tenant_id == tenant_id)
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def events_for_request(self, request_id: UUID) -> list[ThresholdChangeEvent]:
        stmt = (
            select(ThresholdChangeEventModel)
            .where(ThresholdChangeEventModel.request_id == request_id)
            .order_by(ThresholdChangeEventModel.seq)
        )
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(ThresholdChangeEventModel).order_by(ThresholdChangeEventModel.seq)
        ).scalars().all()

        previous: ThresholdChangeEventModel | None = None
        for event in events:
            expected_prev = previous.hash if previous is not None else None
            if event.prev_hash != expected_prev:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(
                    event.seq,
                    expected_prev or GENESIS_HASH,
                    event.prev_hash or GENESIS_HASH,
                )

            recomputed_payload_hash = hash_payload(event.payload)
            expected_hash = hash_audit_event(
                event_type=event.event_type,
                request_id=str(event.request_id),
                seq=event.seq,
                payload_hash=recomputed_payload_hash,
                prev_hash=event.prev_hash,
            )
            if event.hash != expected_hash or event.payload_hash != recomputed_payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(event.seq, expected_hash, event.hash)

            previous = event

        logger.info("audit_chain_valid", extra={"event_count": len(events)})
        return True
