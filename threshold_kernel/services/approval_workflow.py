"""
ApprovalWorkflow -- dual-control lifecycle for threshold changes.

Responsibility:
    Orchestrates the change request lifecycle: propose (apply immediately
    or open a PENDING request), approve, reject and expire.  Every
    transition persists the request, updates the store where the change
    takes effect, emits one audit event and routes one notification, all
    inside the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Calls threshold_engines.magnitude (pure) for the approval decision and
    ThresholdStore / AuditorService / NotificationRouter for effects.

Invariants enforced:
    - State machine: PENDING -> {APPROVED, REJECTED, EXPIRED}; terminal
      states never change.  Transitions are conditional UPDATEs
      (``WHERE status = 'PENDING'``), so of two racing deciders exactly one
      succeeds and the store is written exactly once.
    - Separation of duties: the requester can never approve or reject
      their own request.  Checked before capabilities so the stronger
      reason is reported.
    - Lazy expiry: approve/reject on a request past ``expires_at`` records
      the EXPIRED transition first and then fails with
      RequestExpiredError; get_request records it and returns the EXPIRED
      request.  "Past" means ``now >= expires_at``, the same
      test the sweep uses.
    - Tamper evidence: ``original_request_hash`` is computed at creation
      and verified on every load.

Failure modes:
    - RequestNotFoundError, InvalidStateError, RequestExpiredError.
    - SelfApprovalError, InsufficientAuthorityError.
    - InvalidAmountError, InvalidCategoryError, InvalidCurrencyOrAssetError,
      MissingReasonError.
    - TamperDetectedError when a stored request no longer matches its hash.

Audit relevance:
    Each transition produces exactly one audit event and one notification.
    Expiry is recorded with actor ``system``.
"""

from __future__ import annotations

from dataclasses import replace as dc_replace
from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from threshold_engines.magnitude import evaluate_change
from threshold_kernel.domain.authority import (
    DECIDE_CAPABILITIES,
    PROPOSE_CAPABILITIES,
    CapabilityOracle,
    held_capabilities,
    missing_capabilities,
)
from threshold_kernel.domain.change_request import (
    Approved,
    ChangeRequestStatus,
    Rejected,
    ThresholdChangeRequest,
    compute_expiry,
    is_past_deadline,
)
from threshold_kernel.domain.clock import Clock, SystemClock
from threshold_kernel.domain.events import ExecutionMode, ThresholdEventType
from threshold_kernel.domain.threshold import (
    SYSTEM_ACTOR,
    ThresholdCategory,
    ThresholdConfig,
    make_threshold_id,
    normalize_currency_or_asset,
    parse_category,
    to_amount,
)
from threshold_kernel.exceptions import (
    InsufficientAuthorityError,
    InvalidAmountError,
    InvalidStateError,
    MissingReasonError,
    RequestExpiredError,
    RequestNotFoundError,
    SelfApprovalError,
    TamperDetectedError,
)
from threshold_kernel.logging_config import get_logger
from threshold_kernel.models.change_request import ThresholdChangeRequestModel
from threshold_kernel.services.auditor_service import AuditorService
from threshold_kernel.services.notification_router import NotificationRouter
from threshold_kernel.services.threshold_store import ThresholdStore
from threshold_kernel.utils.hashing import hash_payload

logger = get_logger("services.approval_workflow")

AUTO_APPROVAL_COMMENT = "within magnitude limit"

# Column scale of stored amounts (Numeric(38, 9)).
AMOUNT_SCALE = 9

_PENDING = ChangeRequestStatus.PENDING.value


def compute_request_hash(request: ThresholdChangeRequest) -> str:
    """Hash of the fields fixed at creation."""
    return hash_payload({
        "request_id": request.request_id,
        "tenant_id": request.tenant_id,
        "category": request.category.value,
        "currency_or_asset": request.currency_or_asset,
        "current_amount": request.current_amount,
        "new_amount": request.new_amount,
        "requires_approval": request.requires_approval,
        "requested_by": request.requested_by,
        "requested_at": request.requested_at,
        "expires_at": request.expires_at,
        "justification": request.justification,
    })


class ApprovalWorkflow:
    """
    Dual-control workflow for threshold changes.

    Contract:
        All methods run in the caller's session and flush; the caller owns
        commit.  A method that raises leaves nothing behind except the
        lazy EXPIRED transition, which the caller is expected to commit.

    Guarantees:
        - The store is written only by an in-bounds propose or an approve.
        - At most one terminal transition per request.

    Non-goals:
        - In-process serialization.  Callers running concurrent deciders
          hold per-request locks (see threshold_services); the conditional
          UPDATE is the database-level guarantee beneath them.
        - Duplicate-pending prevention: several PENDING requests may exist
          for the same slot; each is decided on its own.
    """

    def __init__(
        self,
        session: Session,
        oracle: CapabilityOracle,
        clock: Clock | None = None,
        execution_mode: ExecutionMode = ExecutionMode.LIVE,
        store: ThresholdStore | None = None,
        auditor: AuditorService | None = None,
        router: NotificationRouter | None = None,
    ):
        self._session = session
        self._oracle = oracle
        self._clock = clock or SystemClock()
        self._store = store or ThresholdStore(session)
        self._auditor = auditor or AuditorService(session, self._clock, execution_mode)
        self._router = router or NotificationRouter(session, self._clock)

    # ------------------------------------------------------------------
    # Propose
    # ------------------------------------------------------------------

    def propose(
        self,
        tenant_id: str,
        category: ThresholdCategory | str,
        currency_or_asset: str,
        new_amount,
        actor: str,
        justification: str | None = None,
    ) -> ThresholdChangeRequest:
        """
        Propose a new threshold for a (category, currency/asset) pair.

        In-bounds changes (magnitude < 25%) are applied immediately and the
        request is returned APPROVED.  Larger changes return a PENDING
        request and leave the store untouched.

        Raises:
            InsufficientAuthorityError: actor lacks SYSTEM_ADMIN.
            InvalidAmountError: ``new_amount`` is not a finite number > 0.
        """
        self._require(actor, PROPOSE_CAPABILITIES, "propose a threshold change")
        category = parse_category(category)
        tag = normalize_currency_or_asset(currency_or_asset)
        amount = to_amount(new_amount)
        if not amount.is_finite():
            raise InvalidAmountError(str(amount), "amount must be finite")
        if amount <= 0:
            raise InvalidAmountError(str(amount), "amount must be greater than zero")
        if amount.as_tuple().exponent < -AMOUNT_SCALE:
            raise InvalidAmountError(str(amount), f"at most {AMOUNT_SCALE} decimal places")

        current = self._store.get_active(tenant_id, category, tag)
        evaluation = evaluate_change(current.amount, amount)
        now = self._clock.now()

        request = ThresholdChangeRequest(
            request_id=uuid4(),
            tenant_id=tenant_id,
            category=category,
            currency_or_asset=tag,
            current_amount=current.amount,
            new_amount=amount,
            magnitude_percent=evaluation.magnitude_percent,
            requires_approval=evaluation.requires_approval,
            requested_by=actor,
            requested_at=now,
            expires_at=compute_expiry(now),
            justification=justification,
        )
        request = dc_replace(request, original_request_hash=compute_request_hash(request))
        authorities = held_capabilities(self._oracle, actor)

        if evaluation.requires_approval:
            self._session.add(ThresholdChangeRequestModel.from_dto(request))
            self._session.flush()
            event = self._auditor.emit(
                ThresholdEventType.THRESHOLD_CHANGE_REQUESTED,
                request,
                actor,
                authorities,
                previous_amount=current.amount,
            )
        else:
            request = dc_replace(
                request,
                outcome=Approved(
                    approved_by=actor,
                    approved_at=now,
                    comment=AUTO_APPROVAL_COMMENT,
                ),
            )
            self._session.add(ThresholdChangeRequestModel.from_dto(request))
            self._session.flush()
            self._apply(request, effective_from=now)
            event = self._auditor.emit(
                ThresholdEventType.THRESHOLD_CHANGED,
                request,
                actor,
                authorities,
                previous_amount=current.amount,
            )
        self._router.route(event)

        logger.info(
            "threshold_change_proposed",
            extra={
                "request_id": str(request.request_id),
                "tenant_id": tenant_id,
                "category": category.value,
                "currency_or_asset": tag,
                "current_amount": current.amount,
                "new_amount": amount,
                "magnitude_percent": evaluation.magnitude_percent,
                "status": request.status.value,
            },
        )
        return request

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def approve(
        self,
        request_id: UUID,
        actor: str,
        comment: str | None = None,
    ) -> ThresholdChangeRequest:
        """
        Approve a PENDING request and apply its new amount.

        Raises:
            RequestNotFoundError, RequestExpiredError, InvalidStateError,
            SelfApprovalError, InsufficientAuthorityError.
        """
        model = self._load_pending_for_decision(request_id, actor, "approve")
        now = self._clock.now()
        outcome = Approved(approved_by=actor, approved_at=now, comment=comment)
        self._transition(
            model,
            "approve",
            status=ChangeRequestStatus.APPROVED.value,
            approved_by=actor,
            approved_at=now,
            approval_comment=comment,
        )

        request = dc_replace(self._to_verified_dto(model), outcome=outcome)
        previous = self._apply(request, effective_from=now)
        event = self._auditor.emit(
            ThresholdEventType.THRESHOLD_CHANGE_APPROVED,
            request,
            actor,
            held_capabilities(self._oracle, actor),
            previous_amount=previous,
        )
        self._router.route(event)

        logger.info(
            "threshold_change_approved",
            extra={
                "request_id": str(request_id),
                "approved_by": actor,
                "new_amount": request.new_amount,
            },
        )
        return request

    def reject(
        self,
        request_id: UUID,
        actor: str,
        reason: str,
    ) -> ThresholdChangeRequest:
        """
        Reject a PENDING request.  The store is not touched.

        Raises:
            RequestNotFoundError, RequestExpiredError, InvalidStateError,
            SelfApprovalError, InsufficientAuthorityError, MissingReasonError.
        """
        model = self._load_pending_for_decision(request_id, actor, "reject")
        reason = (reason or "").strip()
        if not reason:
            raise MissingReasonError(str(request_id))

        now = self._clock.now()
        outcome = Rejected(rejected_by=actor, rejected_at=now, reason=reason)
        self._transition(
            model,
            "reject",
            status=ChangeRequestStatus.REJECTED.value,
            rejected_by=actor,
            rejected_at=now,
            rejection_reason=reason,
        )

        request = dc_replace(self._to_verified_dto(model), outcome=outcome)
        in_force = self._store.get_active(
            request.tenant_id, request.category, request.currency_or_asset,
        )
        event = self._auditor.emit(
            ThresholdEventType.THRESHOLD_CHANGE_REJECTED,
            request,
            actor,
            held_capabilities(self._oracle, actor),
            previous_amount=in_force.amount,
            rejection_reason=reason,
        )
        self._router.route(event)

        logger.info(
            "threshold_change_rejected",
            extra={"request_id": str(request_id), "rejected_by": actor},
        )
        return request

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def expire(self, request_id: UUID, now: datetime | None = None) -> bool:
        """
        Expire one request if it is PENDING and past its deadline.

        Returns:
            True if this call recorded the EXPIRED transition.
        """
        now = now or self._clock.now()
        model = self._load(request_id)
        if model.status != _PENDING or not is_past_deadline(model.expires_at, now):
            return False
        return self._expire_model(model, now)

    def sweep_expired(self, now: datetime | None = None) -> list[UUID]:
        """Expire every PENDING request whose deadline has passed.

        Returns:
            Request ids expired by this call, oldest deadline first.
        """
        now = now or self._clock.now()
        candidates = self._session.execute(
            select(ThresholdChangeRequestModel)
            .where(
                ThresholdChangeRequestModel.status == _PENDING,
                ThresholdChangeRequestModel.expires_at <= now,
            )
            .order_by(ThresholdChangeRequestModel.expires_at)
        ).scalars().all()

        expired = [m.request_id for m in candidates if self._expire_model(m, now)]
        if expired:
            logger.info(
                "threshold_change_sweep_completed",
                extra={"expired_count": len(expired)},
            )
        return expired

    def _expire_model(self, model: ThresholdChangeRequestModel, now: datetime) -> bool:
        result = self._session.execute(
            update(ThresholdChangeRequestModel)
            .where(
                ThresholdChangeRequestModel.request_id == model.request_id,
                ThresholdChangeRequestModel.status == _PENDING,
            )
            .values(status=ChangeRequestStatus.EXPIRED.value, expired_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        self._session.refresh(model)

        request = self._to_verified_dto(model)
        in_force = self._store.get_active(
            request.tenant_id, request.category, request.currency_or_asset,
        )
        event = self._auditor.emit(
            ThresholdEventType.THRESHOLD_CHANGE_EXPIRED,
            request,
            SYSTEM_ACTOR,
            (),
            previous_amount=in_force.amount,
        )
        self._router.route(event)

        logger.info(
            "threshold_change_expired",
            extra={
                "request_id": str(model.request_id),
                "expires_at": model.expires_at,
                "expired_at": now,
            },
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ThresholdChangeRequest:
        """
        Load a request.  A PENDING request past its deadline is expired
        first, so the caller never sees it as PENDING.

        Raises:
            RequestNotFoundError, TamperDetectedError.
        """
        model = self._load(request_id)
        request = self._to_verified_dto(model)
        now = self._clock.now()
        if model.status == _PENDING and is_past_deadline(model.expires_at, now):
            self._expire_model(model, now)
            request = self._to_verified_dto(self._load(request_id))
        return request

    def list_pending(
        self,
        tenant_id: str,
        now: datetime | None = None,
    ) -> list[ThresholdChangeRequest]:
        """PENDING requests still inside their window, oldest first."""
        now = now or self._clock.now()
        rows = self._session.execute(
            select(ThresholdChangeRequestModel)
            .where(
                ThresholdChangeRequestModel.tenant_id == tenant_id,
                ThresholdChangeRequestModel.status == _PENDING,
                ThresholdChangeRequestModel.expires_at > now,
            )
            .order_by(ThresholdChangeRequestModel.requested_at)
        ).scalars()
        return [self._to_verified_dto(m) for m in rows]

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, actor: str, capabilities, action: str) -> None:
        missing = missing_capabilities(self._oracle, actor, capabilities)
        if missing:
            logger.warning(
                "threshold_authority_denied",
                extra={"actor": actor, "action": action, "missing": missing},
            )
            raise InsufficientAuthorityError(actor, action, missing)

    def _load(self, request_id: UUID) -> ThresholdChangeRequestModel:
        model = self._session.execute(
            select(ThresholdChangeRequestModel)
            .where(ThresholdChangeRequestModel.request_id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def _to_verified_dto(self, model: ThresholdChangeRequestModel) -> ThresholdChangeRequest:
        request = model.to_dto()
        if request.original_request_hash != compute_request_hash(request):
            logger.critical(
                "threshold_request_tamper_detected",
                extra={"request_id": str(model.request_id)},
            )
            raise TamperDetectedError(str(model.request_id))
        return request

    def _load_pending_for_decision(
        self,
        request_id: UUID,
        actor: str,
        attempted: str,
    ) -> ThresholdChangeRequestModel:
        model = self._load(request_id)
        self._to_verified_dto(model)
        now = self._clock.now()

        if model.status == _PENDING and is_past_deadline(model.expires_at, now):
            self._expire_model(model, now)
            raise RequestExpiredError(str(request_id), attempted)

        if model.status != _PENDING:
            raise InvalidStateError(str(request_id), model.status, attempted)

        if actor == model.requested_by:
            logger.warning(
                "threshold_self_approval_blocked",
                extra={"request_id": str(request_id), "actor": actor},
            )
            raise SelfApprovalError(str(request_id), actor)

        self._require(actor, DECIDE_CAPABILITIES, f"{attempted} a threshold change")
        return model

    def _transition(self, model: ThresholdChangeRequestModel, attempted: str, **values) -> None:
        """Compare-and-swap PENDING -> terminal.  Losing the race raises."""
        result = self._session.execute(
            update(ThresholdChangeRequestModel)
            .where(
                ThresholdChangeRequestModel.request_id == model.request_id,
                ThresholdChangeRequestModel.status == _PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self._session.refresh(model)
        if result.rowcount != 1:
            raise InvalidStateError(str(model.request_id), model.status, attempted)

    def _apply(self, request: ThresholdChangeRequest, effective_from: datetime):
        """Write the request's amount to the store.  Returns the amount it
        replaced (the effective threshold at apply time)."""
        previous = self._store.get_active(
            request.tenant_id, request.category, request.currency_or_asset,
        )
        self._store.replace(
            ThresholdConfig(
                threshold_id=make_threshold_id(request.category, request.currency_or_asset),
                tenant_id=request.tenant_id,
                category=request.category,
                currency_or_asset=request.currency_or_asset,
                amount=request.new_amount,
                effective_from=effective_from,
                set_by=request.requested_by,
                set_at=effective_from,
            ),
            superseded_by_request_id=request.request_id,
        )
        return previous.amount
