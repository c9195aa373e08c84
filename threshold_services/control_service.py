"""
ThresholdControlService -- caller-facing facade over the threshold kernel.

Responsibility:
    Exposes the threshold operations to the caller layer (UI, API) as
    typed results.  Each operation runs as one unit of work: open a
    session, call the kernel services, commit on success, roll back on a
    business error, and return ``ControlResult`` either way.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  The only
    layer that owns transaction boundaries and in-process locking.

Invariants enforced:
    - Business errors never raise out of this facade; they come back as
      ``ControlError`` with the exception's ``code`` and structured fields.
      Anything else (bugs, unrecoverable infrastructure failures) propagates.
    - Per-key mutual exclusion: workflow transitions hold the request key,
      store writes hold the (tenant, category, currency/asset) key.  Both
      are held across commit, acquired in a fixed order.
    - The lazy EXPIRED transition is committed even though the approve or
      reject that discovered it fails.
    - Business errors are never retried.  ``OperationalError`` (lock
      timeouts, dropped connections) is retried a bounded number of times;
      audit emission is idempotent per transition, so a retried unit of
      work cannot duplicate an event.

Failure modes:
    - ``OperationalError`` after ``max_transient_retries`` attempts.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace as dc_replace
from datetime import datetime
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from threshold_config import get_active_config
from threshold_config.schema import EngineSettings
from threshold_engines.dual_control import DualControlCheck, ThresholdProximity, approach_check
from threshold_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url
from threshold_kernel.db.immutability import register_immutability_listeners
from threshold_kernel.domain.authority import CapabilityOracle
from threshold_kernel.domain.change_request import ThresholdChangeRequest
from threshold_kernel.domain.clock import Clock, SystemClock
from threshold_kernel.domain.events import (
    ExecutionMode,
    NotificationFilter,
    NotificationType,
    ThresholdChangeEvent,
    ThresholdNotification,
)
from threshold_kernel.domain.threshold import (
    ThresholdCategory,
    ThresholdConfig,
    ThresholdHistoryEntry,
    normalize_currency_or_asset,
    parse_category,
)
from threshold_kernel.exceptions import (
    NotificationNotFoundError,
    RequestExpiredError,
    RequestNotFoundError,
    ThresholdKernelError,
)
from threshold_kernel.logging_config import LogContext, configure_logging, get_logger
from threshold_kernel.models.change_request import ThresholdChangeRequestModel
from threshold_kernel.services.approval_workflow import ApprovalWorkflow
from threshold_kernel.services.auditor_service import AuditorService
from threshold_kernel.services.notification_router import NotificationRouter
from threshold_kernel.services.threshold_store import ThresholdStore
from threshold_kernel.utils.locking import KeyedLocks, request_key, slot_key

logger = get_logger("services.control")

T = TypeVar("T")

DEFAULT_TENANT = "default"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControlError:
    """Machine-readable failure: ``code`` from the kernel exception, plus
    its structured attributes in ``details``."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: ThresholdKernelError) -> ControlError:
        details = {k: v for k, v in vars(exc).items() if not k.startswith("_")}
        return cls(code=exc.code, message=str(exc), details=details)


@dataclass(frozen=True)
class ControlResult(Generic[T]):
    """Either ``data`` (success) or ``error`` (business failure)."""

    data: T | None = None
    error: ControlError | None = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @classmethod
    def ok(cls, data: T) -> ControlResult[T]:
        return cls(data=data)

    @classmethod
    def fail(cls, error: ControlError) -> ControlResult[T]:
        return cls(error=error)


@dataclass(frozen=True)
class SetThresholdResponse:
    """Outcome of ``set_threshold``: applied now, or waiting for approval."""

    request: ThresholdChangeRequest
    threshold: ThresholdConfig

    @property
    def applied(self) -> bool:
        return not self.request.requires_approval

    @property
    def requires_approval(self) -> bool:
        return self.request.requires_approval


@dataclass(frozen=True)
class TransactionEvaluation:
    """A transaction amount measured against its effective threshold."""

    threshold: ThresholdConfig
    check: DualControlCheck
    notification: ThresholdNotification | None = None

    @property
    def requires_dual_control(self) -> bool:
        return self.check.requires_dual_control


# ---------------------------------------------------------------------------
# Facade
# ---------------------------------------------------------------------------


class ThresholdControlService:
    """
    Facade for the threshold dual-control engine.

    Contract:
        Every public method returns ``ControlResult``.  Writes commit
        before the method returns; reads see committed state.

    Guarantees:
        - Two concurrent approvals of one request: exactly one succeeds,
          the other returns ``INVALID_STATE``; the store is written once.

    Non-goals:
        - Authentication.  ``actor`` is trusted as given; authority comes
          from the injected ``CapabilityOracle``.
        - Cross-process locking.  Multiple processes rely on the database
          guards (conditional UPDATE, row locks, unique keys) alone.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        oracle: CapabilityOracle,
        clock: Clock | None = None,
        execution_mode: ExecutionMode = ExecutionMode.LIVE,
        default_tenant: str = DEFAULT_TENANT,
        locks: KeyedLocks | None = None,
        max_transient_retries: int = 3,
    ):
        self._session_factory = session_factory
        self._oracle = oracle
        self._clock = clock or SystemClock()
        self._execution_mode = execution_mode
        self._default_tenant = default_tenant
        self._locks = locks or KeyedLocks()
        self._max_transient_retries = max_transient_retries

    @property
    def default_tenant(self) -> str:
        return self._default_tenant

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    def _workflow(self, session: Session) -> ApprovalWorkflow:
        return ApprovalWorkflow(
            session,
            self._oracle,
            clock=self._clock,
            execution_mode=self._execution_mode,
        )

    def _execute(
        self,
        operation: str,
        work: Callable[[Session], T],
        lock_keys: tuple = (),
    ) -> ControlResult[T]:
        keys = tuple(k for k in lock_keys if k is not None)
        with self._locks.hold(*keys):
            attempt = 0
            while True:
                attempt += 1
                session = self._session_factory()
                try:
                    data = work(session)
                    session.commit()
                    return ControlResult.ok(data)
                except RequestExpiredError as exc:
                    # The EXPIRED transition is the one write a failed
                    # decision keeps.
                    session.commit()
                    return self._failure(operation, exc)
                except ThresholdKernelError as exc:
                    session.rollback()
                    return self._failure(operation, exc)
                except OperationalError:
                    session.rollback()
                    if attempt >= self._max_transient_retries:
                        logger.error(
                            "threshold_operation_failed",
                            extra={"operation": operation, "attempts": attempt},
                        )
                        raise
                    logger.warning(
                        "transient_db_error_retry",
                        extra={"operation": operation, "attempt": attempt},
                    )
                    time.sleep(0.05 * attempt)
                except Exception:
                    session.rollback()
                    raise
                finally:
                    session.close()

    def _failure(self, operation: str, exc: ThresholdKernelError) -> ControlResult:
        logger.info(
            "threshold_operation_rejected",
            extra={"operation": operation, "code": exc.code, "reason": str(exc)},
        )
        return ControlResult.fail(ControlError.from_exception(exc))

    def _tenant(self, tenant_id: str | None) -> str:
        return tenant_id or self._default_tenant

    @staticmethod
    def _slot_key(tenant_id: str, category, currency_or_asset: str):
        """Lock key for a slot, or None when the input is malformed (the
        unit of work then reports the validation error)."""
        try:
            return slot_key(
                tenant_id,
                parse_category(category),
                normalize_currency_or_asset(currency_or_asset),
            )
        except ThresholdKernelError:
            return None

    def _request_slot_key(self, request_id: UUID):
        session = self._session_factory()
        try:
            row = session.execute(
                select(
                    ThresholdChangeRequestModel.tenant_id,
                    ThresholdChangeRequestModel.category,
                    ThresholdChangeRequestModel.currency_or_asset,
                ).where(ThresholdChangeRequestModel.request_id == request_id)
            ).one_or_none()
            session.rollback()
        finally:
            session.close()
        if row is None:
            return None
        return slot_key(row.tenant_id, row.category, row.currency_or_asset)

    @staticmethod
    def _parse_uuid(value: UUID | str, not_found: type[ThresholdKernelError]) -> UUID:
        if isinstance(value, UUID):
            return value
        try:
            return UUID(str(value))
        except ValueError as exc:
            raise not_found(str(value)) from exc

    # ------------------------------------------------------------------
    # Thresholds
    # ------------------------------------------------------------------

    def list_thresholds(self, tenant_id: str | None = None) -> ControlResult[list[ThresholdConfig]]:
        """Active configs plus the hardcoded default of every category
        without a category-wide config."""
        tenant = self._tenant(tenant_id)
        return self._execute(
            "list_thresholds",
            lambda session: ThresholdStore(session).list_effective(tenant),
        )

    def get_threshold(
        self,
        threshold_id: str,
        tenant_id: str | None = None,
    ) -> ControlResult[ThresholdConfig]:
        tenant = self._tenant(tenant_id)
        return self._execute(
            "get_threshold",
            lambda session: ThresholdStore(session).get_by_threshold_id(tenant, threshold_id),
        )

    def set_threshold(
        self,
        category: ThresholdCategory | str,
        currency_or_asset: str,
        amount,
        actor: str,
        tenant_id: str | None = None,
    ) -> ControlResult[SetThresholdResponse]:
        """Apply-or-request: in-bounds changes take effect now, larger ones
        open a PENDING request."""
        tenant = self._tenant(tenant_id)

        def work(session: Session) -> SetThresholdResponse:
            request = self._workflow(session).propose(
                tenant, category, currency_or_asset, amount, actor,
            )
            threshold = ThresholdStore(session).get_active(
                tenant, request.category, request.currency_or_asset,
            )
            return SetThresholdResponse(request=request, threshold=threshold)

        with LogContext.bind(actor_id=actor, tenant_id=tenant):
            return self._execute(
                "set_threshold",
                work,
                lock_keys=(self._slot_key(tenant, category, currency_or_asset),),
            )

    def request_threshold_change(
        self,
        category: ThresholdCategory | str,
        currency_or_asset: str,
        new_amount,
        actor: str,
        justification: str | None = None,
        tenant_id: str | None = None,
    ) -> ControlResult[ThresholdChangeRequest]:
        tenant = self._tenant(tenant_id)
        with LogContext.bind(actor_id=actor, tenant_id=tenant):
            return self._execute(
                "request_threshold_change",
                lambda session: self._workflow(session).propose(
                    tenant, category, currency_or_asset, new_amount, actor,
                    justification=justification,
                ),
                lock_keys=(self._slot_key(tenant, category, currency_or_asset),),
            )

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def _decide(
        self,
        operation: str,
        request_id: UUID | str,
        actor: str,
        decide: Callable[[ApprovalWorkflow, UUID], ThresholdChangeRequest],
    ) -> ControlResult[ThresholdChangeRequest]:
        try:
            rid = self._parse_uuid(request_id, RequestNotFoundError)
        except ThresholdKernelError as exc:
            return self._failure(operation, exc)

        with LogContext.bind(actor_id=actor, request_id=str(rid)):
            return self._execute(
                operation,
                lambda session: decide(self._workflow(session), rid),
                lock_keys=(request_key(rid), self._request_slot_key(rid)),
            )

    def approve_threshold_change(
        self,
        request_id: UUID | str,
        actor: str,
        comment: str | None = None,
    ) -> ControlResult[ThresholdChangeRequest]:
        return self._decide(
            "approve_threshold_change",
            request_id,
            actor,
            lambda workflow, rid: workflow.approve(rid, actor, comment=comment),
        )

    def reject_threshold_change(
        self,
        request_id: UUID | str,
        actor: str,
        reason: str,
    ) -> ControlResult[ThresholdChangeRequest]:
        return self._decide(
            "reject_threshold_change",
            request_id,
            actor,
            lambda workflow, rid: workflow.reject(rid, actor, reason),
        )

    def get_threshold_change(self, request_id: UUID | str) -> ControlResult[ThresholdChangeRequest]:
        try:
            rid = self._parse_uuid(request_id, RequestNotFoundError)
        except ThresholdKernelError as exc:
            return self._failure("get_threshold_change", exc)
        return self._execute(
            "get_threshold_change",
            lambda session: self._workflow(session).get_request(rid),
            lock_keys=(request_key(rid), self._request_slot_key(rid)),
        )

    def list_pending_threshold_changes(
        self,
        tenant_id: str | None = None,
    ) -> ControlResult[list[ThresholdChangeRequest]]:
        tenant = self._tenant(tenant_id)
        return self._execute(
            "list_pending_threshold_changes",
            lambda session: self._workflow(session).list_pending(tenant),
        )

    def sweep_expired(self, now: datetime | None = None) -> ControlResult[list[UUID]]:
        """Expire every overdue PENDING request, one unit of work each."""
        at = now or self._clock.now()
        candidates = self._execute(
            "sweep_expired",
            lambda session: list(
                session.execute(
                    select(ThresholdChangeRequestModel.request_id)
                    .where(
                        ThresholdChangeRequestModel.status == "PENDING",
                        ThresholdChangeRequestModel.expires_at <= at,
                    )
                    .order_by(ThresholdChangeRequestModel.expires_at)
                ).scalars()
            ),
        )
        if not candidates.is_success:
            return candidates

        expired: list[UUID] = []
        for rid in candidates.data:
            result = self._execute(
                "expire_threshold_change",
                lambda session, rid=rid: self._workflow(session).expire(rid, now=at),
                lock_keys=(request_key(rid), self._request_slot_key(rid)),
            )
            if result.is_success and result.data:
                expired.append(rid)
        return ControlResult.ok(expired)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def list_threshold_notifications(
        self,
        notification_filter: NotificationFilter | None = None,
    ) -> ControlResult[list[ThresholdNotification]]:
        f = notification_filter or NotificationFilter()
        if f.tenant_id is None:
            f = dc_replace(f, tenant_id=self._default_tenant)
        return self._execute(
            "list_threshold_notifications",
            lambda session: NotificationRouter(session, self._clock).list(f),
        )

    def mark_notification_read(
        self,
        notification_id: UUID | str,
    ) -> ControlResult[ThresholdNotification]:
        try:
            nid = self._parse_uuid(notification_id, NotificationNotFoundError)
        except ThresholdKernelError as exc:
            return self._failure("mark_notification_read", exc)
        return self._execute(
            "mark_notification_read",
            lambda session: NotificationRouter(session, self._clock).mark_read(nid),
        )

    def unread_notification_count(self, tenant_id: str | None = None) -> ControlResult[int]:
        tenant = self._tenant(tenant_id)
        return self._execute(
            "unread_notification_count",
            lambda session: NotificationRouter(session, self._clock).unread_count(tenant),
        )

    # ------------------------------------------------------------------
    # History and audit
    # ------------------------------------------------------------------

    def list_threshold_history(
        self,
        category: ThresholdCategory | str | None = None,
        tenant_id: str | None = None,
    ) -> ControlResult[list[ThresholdHistoryEntry]]:
        tenant = self._tenant(tenant_id)

        def work(session: Session) -> list[ThresholdHistoryEntry]:
            parsed = parse_category(category) if category is not None else None
            return ThresholdStore(session).list_history(tenant, parsed)

        return self._execute("list_threshold_history", work)

    def list_threshold_change_events(
        self,
        tenant_id: str | None = None,
    ) -> ControlResult[list[ThresholdChangeEvent]]:
        tenant = self._tenant(tenant_id)
        return self._execute(
            "list_threshold_change_events",
            lambda session: AuditorService(
                session, self._clock, self._execution_mode,
            ).list_events(tenant),
        )

    def validate_audit_chain(self) -> ControlResult[bool]:
        return self._execute(
            "validate_audit_chain",
            lambda session: AuditorService(
                session, self._clock, self._execution_mode,
            ).validate_chain(),
        )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def evaluate_transaction(
        self,
        category: ThresholdCategory | str,
        currency_or_asset: str,
        amount,
        actor: str,
        tenant_id: str | None = None,
        transaction_ref: str | None = None,
    ) -> ControlResult[TransactionEvaluation]:
        """Measure a transaction against its effective threshold and raise
        an approaching/exceeded alert when warranted."""
        tenant = self._tenant(tenant_id)

        def work(session: Session) -> TransactionEvaluation:
            parsed = parse_category(category)
            tag = normalize_currency_or_asset(currency_or_asset)
            threshold = ThresholdStore(session).get_active(tenant, parsed, tag)
            check = approach_check(amount, threshold.amount)

            notification = None
            if check.proximity in (ThresholdProximity.EXCEEDED, ThresholdProximity.APPROACHING):
                notification_type = (
                    NotificationType.THRESHOLD_EXCEEDED
                    if check.requires_dual_control
                    else NotificationType.THRESHOLD_APPROACHING
                )
                notification = NotificationRouter(session, self._clock).signal_transaction(
                    threshold,
                    tag,
                    notification_type,
                    check.amount,
                    check.percent_of_threshold,
                    actor,
                    transaction_ref=transaction_ref,
                )
            return TransactionEvaluation(
                threshold=threshold, check=check, notification=notification,
            )

        with LogContext.bind(actor_id=actor, tenant_id=tenant):
            return self._execute("evaluate_transaction", work)


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_control_service(
    oracle: CapabilityOracle,
    settings: EngineSettings | None = None,
    clock: Clock | None = None,
) -> ThresholdControlService:
    """
    Wire a ready-to-use facade from engine settings.

    Initializes logging, the module-level engine, the schema and the ORM
    immutability listeners.  ``settings`` defaults to ``get_active_config()``.
    """
    settings = settings or get_active_config()
    configure_logging(level=settings.log_level)
    init_engine_from_url(settings.database_url, echo=settings.echo_sql)
    create_tables()
    register_immutability_listeners()

    logger.info(
        "control_service_built",
        extra={
            "config_id": settings.config_id,
            "execution_mode": settings.execution_mode.value,
            "default_tenant": settings.default_tenant,
        },
    )
    return ThresholdControlService(
        get_session_factory(),
        oracle,
        clock=clock,
        execution_mode=settings.execution_mode,
        default_tenant=settings.default_tenant,
    )
