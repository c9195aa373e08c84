"""
ORM-level immutability enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Threshold governance records must be tamper-proof.  A superseded threshold,
an audit event, or a decided change request is evidence; once written it may
only be read.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events and check our invariants:

    session.flush()
         |
         v
    [before_update event] --> _check_*_update() --> ImmutabilityViolationError
         |
         v
    [before_delete event] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

The workflow's own status transitions are conditional Core UPDATE statements
(``WHERE status = 'PENDING'``); they never pass through these listeners, and
the condition itself prevents a second transition.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                    | Rule
--------------------------|-----------------------------------------------
ThresholdChangeEvent      | ALWAYS immutable (audit trail)
ThresholdHistory          | ALWAYS immutable (supersede record)
ThresholdConfig           | Only is_active True -> False; never deleted
ThresholdChangeRequest    | Terminal rows frozen; request fields never change
ThresholdNotification     | Only is_read may change; never deleted

===============================================================================
USAGE
===============================================================================

    from threshold_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

Registration is idempotent.
"""

from sqlalchemy import event, inspect

from threshold_kernel.exceptions import ImmutabilityViolationError
from threshold_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_REQUEST_FIELDS = (
    "request_id",
    "tenant_id",
    "category",
    "currency_or_asset",
    "current_amount",
    "new_amount",
    "magnitude_percent",
    "requires_approval",
    "requested_by",
    "requested_at",
    "expires_at",
    "justification",
    "original_request_hash",
)

_TERMINAL_STATUSES = frozenset({"APPROVED", "REJECTED", "EXPIRED"})


def _changed_fields(target) -> list[str]:
    state = inspect(target)
    return [
        attr.key
        for attr in state.attrs
        if attr.history.has_changes()
    ]


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_event_update(mapper, connection, target):
    raise _blocked(
        "ThresholdChangeEvent", target.id, "UPDATE",
        "Audit events are immutable and cannot be modified",
    )


def _check_event_delete(mapper, connection, target):
    raise _blocked(
        "ThresholdChangeEvent", target.id, "DELETE",
        "Audit events cannot be deleted",
    )


def _check_history_update(mapper, connection, target):
    raise _blocked(
        "ThresholdHistory", target.id, "UPDATE",
        "Threshold history entries are append-only",
    )


def _check_history_delete(mapper, connection, target):
    raise _blocked(
        "ThresholdHistory", target.id, "DELETE",
        "Threshold history entries cannot be deleted",
    )


def _check_config_update(mapper, connection, target):
    changed = _changed_fields(target)
    if any(field != "is_active" for field in changed):
        raise _blocked(
            "ThresholdConfig", target.threshold_id, "UPDATE",
            f"Threshold configs are replaced, never edited (changed: {', '.join(changed)})",
        )
    if "is_active" in changed and target.is_active:
        raise _blocked(
            "ThresholdConfig", target.threshold_id, "UPDATE",
            "A deactivated threshold config cannot be reactivated",
        )


def _check_config_delete(mapper, connection, target):
    raise _blocked(
        "ThresholdConfig", target.threshold_id, "DELETE",
        "Threshold configs cannot be deleted",
    )


def _check_request_update(mapper, connection, target):
    if not _changed_fields(target):
        return
    state = inspect(target)
    status_history = state.attrs.status.history
    original_status = (
        status_history.deleted[0] if status_history.deleted else target.status
    )
    if original_status in _TERMINAL_STATUSES:
        raise _blocked(
            "ThresholdChangeRequest", target.request_id, "UPDATE",
            f"Request is {original_status} and cannot be modified",
        )
    changed = [f for f in _changed_fields(target) if f in _REQUEST_FIELDS]
    if changed:
        raise _blocked(
            "ThresholdChangeRequest", target.request_id, "UPDATE",
            f"Request fields are write-once (changed: {', '.join(changed)})",
        )


def _check_request_delete(mapper, connection, target):
    raise _blocked(
        "ThresholdChangeRequest", target.request_id, "DELETE",
        "Threshold change requests cannot be deleted",
    )


def _check_notification_update(mapper, connection, target):
    changed = [f for f in _changed_fields(target) if f != "is_read"]
    if changed:
        raise _blocked(
            "ThresholdNotification", target.notification_id, "UPDATE",
            f"Only is_read may change on a notification (changed: {', '.join(changed)})",
        )


def _check_notification_delete(mapper, connection, target):
    raise _blocked(
        "ThresholdNotification", target.notification_id, "DELETE",
        "Notifications cannot be deleted",
    )


def _listeners():
    from threshold_kernel.models import (
        ThresholdChangeEventModel,
        ThresholdChangeRequestModel,
        ThresholdConfigModel,
        ThresholdHistoryModel,
        ThresholdNotificationModel,
    )

    return [
        (ThresholdChangeEventModel, "before_update", _check_event_update),
        (ThresholdChangeEventModel, "before_delete", _check_event_delete),
        (ThresholdHistoryModel, "before_update", _check_history_update),
        (ThresholdHistoryModel, "before_delete", _check_history_delete),
        (ThresholdConfigModel, "before_update", _check_config_update),
        (ThresholdConfigModel, "before_delete", _check_config_delete),
        (ThresholdChangeRequestModel, "before_update", _check_request_update),
        (ThresholdChangeRequestModel, "before_delete", _check_request_delete),
        (ThresholdNotificationModel, "before_update", _check_notification_update),
        (ThresholdNotificationModel, "before_delete", _check_notification_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners.

    Call this after all models are imported but before any database
    operations begin.
    """
    for target, identifier, fn in _listeners():
        if not event.contains(target, identifier, fn):
            event.listen(target, identifier, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. FOR TESTING ONLY."""
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
