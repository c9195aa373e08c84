"""Utility modules for the threshold kernel."""

from threshold_kernel.utils.hashing import (
    canonicalize_json,
    hash_audit_event,
    hash_payload,
)
from threshold_kernel.utils.idempotency import generate_idempotency_key
from threshold_kernel.utils.locking import KeyedLocks

__all__ = [
    "hash_payload",
    "hash_audit_event",
    "canonicalize_json",
    "generate_idempotency_key",
    "KeyedLocks",
]
