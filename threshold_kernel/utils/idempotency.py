"""
Idempotency key generation utilities.

Idempotency keys ensure that one lifecycle transition produces exactly one
audit event, even when the persistence layer retries a transaction after a
transient failure.
"""

from uuid import UUID


def generate_idempotency_key(request_id: UUID | str, event_type: str) -> str:
    """
    Generate the idempotency key for a transition's audit event.

    Format: request_id:event_type

    Each request moves through a given transition at most once, so the
    pair is unique.  The key is stored on the audit event with a unique
    constraint.

    Example:
        >>> generate_idempotency_key(uuid, "THRESHOLD_CHANGE_APPROVED")
        "550e8400-e29b-41d4-a716-446655440000:THRESHOLD_CHANGE_APPROVED"
    """
    return f"{request_id}:{event_type}"


def parse_idempotency_key(key: str) -> tuple[str, str]:
    """
    Parse an idempotency key into (request_id, event_type).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 1)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1]
