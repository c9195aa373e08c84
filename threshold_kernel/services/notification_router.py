"""
NotificationRouter -- user-facing signals derived from threshold activity.

Responsibility:
    Turns each audit event into exactly one notification addressed to the
    dual-control audience, raises approaching/exceeded alerts for
    transactions measured against their threshold, and serves the
    read/mark-read side of the notification inbox.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ApprovalWorkflow
    (inside the transaction that emits the audit event) and by the
    caller-facing services for reads.

Invariants enforced:
    - One notification per source: ``source_key`` is the audit event's
      idempotency key (or the transaction signal key) and is unique.
      Routing the same event twice returns the first notification.
    - Only ``is_read`` changes after creation; ``mark_read`` is idempotent.
    - Target roles describe visibility only.  They never grant authority.

Failure modes:
    - NotificationNotFoundError from ``mark_read`` for unknown ids.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from threshold_kernel.domain.clock import Clock, SystemClock
from threshold_kernel.domain.events import (
    DUAL_CONTROL_AUDIENCE,
    EVENT_NOTIFICATION_TYPES,
    NotificationFilter,
    NotificationType,
    TargetRole,
    ThresholdChangeEvent,
    ThresholdEventType,
    ThresholdNotification,
)
from threshold_kernel.domain.threshold import (
    CATEGORY_LABELS,
    ThresholdConfig,
)
from threshold_kernel.exceptions import NotificationNotFoundError
from threshold_kernel.logging_config import get_logger
from threshold_kernel.models.notification import ThresholdNotificationModel
from threshold_kernel.services.sequence_service import SequenceService

logger = get_logger("services.notification_router")

NOTIFICATION_SEQUENCE = "threshold_notification"

_EVENT_MESSAGES = {
    ThresholdEventType.THRESHOLD_CHANGED: "{label} threshold for {tag} changed to {amount}",
    ThresholdEventType.THRESHOLD_CHANGE_REQUESTED: (
        "{label} threshold change for {tag} to {amount} awaits a second approver"
    ),
    ThresholdEventType.THRESHOLD_CHANGE_APPROVED: (
        "{label} threshold change for {tag} to {amount} was approved"
    ),
    ThresholdEventType.THRESHOLD_CHANGE_REJECTED: (
        "{label} threshold change for {tag} to {amount} was rejected"
    ),
    ThresholdEventType.THRESHOLD_CHANGE_EXPIRED: (
        "{label} threshold change for {tag} to {amount} expired without a decision"
    ),
}


def _display_amount(amount) -> str:
    return format(amount.normalize(), "f")


class NotificationRouter:
    """
    Creates and serves threshold notifications.

    Contract:
        Writes flush but never commit; the caller's transaction owns the
        boundary, so a notification exists iff its source transition does.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)

    def _find_by_source(self, source_key: str) -> ThresholdNotificationModel | None:
        return self._session.execute(
            select(ThresholdNotificationModel)
            .where(ThresholdNotificationModel.source_key == source_key)
        ).scalar_one_or_none()

    def _create(self, source_key: str, **fields) -> ThresholdNotification:
        existing = self._find_by_source(source_key)
        if existing is not None:
            return existing.to_dto()

        model = ThresholdNotificationModel(
            notification_id=uuid4(),
            seq=self._sequence_service.next_value(NOTIFICATION_SEQUENCE),
            created_at=self._clock.now(),
            target_roles=sorted(role.value for role in DUAL_CONTROL_AUDIENCE),
            is_read=False,
            source_key=source_key,
            **fields,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "notification_created",
            extra={
                "notification_id": str(model.notification_id),
                "notification_type": model.notification_type,
                "source_key": source_key,
            },
        )
        return model.to_dto()

    def route(self, event: ThresholdChangeEvent) -> ThresholdNotification:
        """One notification for one audit event."""
        notification_type = EVENT_NOTIFICATION_TYPES[event.event_type]
        message = _EVENT_MESSAGES[event.event_type].format(
            label=CATEGORY_LABELS[event.category],
            tag=event.currency_or_asset,
            amount=_display_amount(event.new_amount),
        )
        if event.rejection_reason:
            message = f"{message}: {event.rejection_reason}"

        return self._create(
            event.idempotency_key,
            notification_type=notification_type.value,
            tenant_id=event.tenant_id,
            category=event.category.value,
            currency_or_asset=event.currency_or_asset,
            threshold=event.new_amount,
            request_id=event.request_id,
            actor=event.actor,
            message=message,
        )

    def signal_transaction(
        self,
        threshold: ThresholdConfig,
        currency_or_asset: str,
        notification_type: NotificationType,
        transaction_amount,
        percent_of_threshold,
        actor: str,
        transaction_ref: str | None = None,
    ) -> ThresholdNotification:
        """
        Raise an approaching/exceeded alert for a transaction.

        ``transaction_ref`` makes the alert idempotent per transaction;
        without it every call creates a new alert.
        """
        if notification_type not in (
            NotificationType.THRESHOLD_APPROACHING,
            NotificationType.THRESHOLD_EXCEEDED,
        ):
            raise ValueError(f"{notification_type} is not a transaction alert")

        ref = transaction_ref or str(uuid4())
        verb = (
            "exceeds"
            if notification_type is NotificationType.THRESHOLD_EXCEEDED
            else "is approaching"
        )
        message = (
            f"{CATEGORY_LABELS[threshold.category]} of {_display_amount(transaction_amount)} "
            f"{threshold.unit} ({currency_or_asset}) {verb} the "
            f"{_display_amount(threshold.amount)} {threshold.unit} threshold"
        )
        return self._create(
            f"txn:{ref}:{notification_type.value}",
            notification_type=notification_type.value,
            tenant_id=threshold.tenant_id,
            category=threshold.category.value,
            currency_or_asset=currency_or_asset,
            threshold=threshold.amount,
            transaction_amount=transaction_amount,
            percent_of_threshold=percent_of_threshold,
            actor=actor,
            message=message,
        )

    def mark_read(self, notification_id: UUID) -> ThresholdNotification:
        """
        Mark a notification read.  Marking an already-read notification is
        a no-op.

        Raises:
            NotificationNotFoundError: if the id is unknown.
        """
        model = self._session.execute(
            select(ThresholdNotificationModel)
            .where(ThresholdNotificationModel.notification_id == notification_id)
        ).scalar_one_or_none()
        if model is None:
            raise NotificationNotFoundError(str(notification_id))

        if not model.is_read:
            model.is_read = True
            self._session.flush()
            logger.info(
                "notification_marked_read",
                extra={"notification_id": str(notification_id)},
            )
        return model.to_dto()

    def list(self, notification_filter: NotificationFilter | None = None) -> list[ThresholdNotification]:
        """Notifications newest first, narrowed by ``notification_filter``."""
        f = notification_filter or NotificationFilter()
        stmt = select(ThresholdNotificationModel).order_by(
            ThresholdNotificationModel.seq.desc()
        )
        if f.tenant_id is not None:
            stmt = stmt.where(ThresholdNotificationModel.tenant_id == f.tenant_id)
        if f.unread_only:
            stmt = stmt.where(ThresholdNotificationModel.is_read.is_(False))
        if f.types:
            stmt = stmt.where(
                ThresholdNotificationModel.notification_type.in_(
                    [NotificationType(t).value for t in f.types]
                )
            )

        notifications = [m.to_dto() for m in self._session.execute(stmt).scalars()]
        if f.target_role is not None:
            role = TargetRole(f.target_role)
            notifications = [n for n in notifications if role in n.target_roles]
        if f.limit:
            notifications = notifications[: f.limit]
        return notifications

    def unread_count(self, tenant_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(ThresholdNotificationModel).where(
            ThresholdNotificationModel.is_read.is_(False)
        )
        if tenant_id is not None:
            stmt = stmt.where(ThresholdNotificationModel.tenant_id == tenant_id)
        return self._session.execute(stmt).scalar_one()
