"""
Typed Exception Hierarchy for the Threshold Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected operation must tell the caller exactly which business rule
stopped it.  Callers branch on the exception TYPE or its ``code``, never on
message text, and read structured attributes instead of parsing strings:

    try:
        workflow.approve(request_id, actor="supervisor-7")
    except InvalidStateError as e:
        show(f"Request is already {e.current_status}")   # structured data
        api_response(code=e.code)                          # machine-readable

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ThresholdKernelError (base)
    |
    +-- NotFoundError
    |   +-- RequestNotFoundError
    |   +-- ThresholdNotFoundError
    |   +-- NotificationNotFoundError
    |
    +-- InvalidStateError
    |   +-- RequestExpiredError
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidCategoryError
    |   +-- InvalidCurrencyOrAssetError
    |   +-- MissingReasonError
    |
    +-- AuthorityError
    |   +-- SelfApprovalError
    |   +-- InsufficientAuthorityError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentThresholdUpdateError
    |
    +-- IntegrityError
        +-- TamperDetectedError
        +-- AuditChainBrokenError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Kind            | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Not found       | NOT_FOUND                   | Unknown request, threshold or notification
State           | INVALID_STATE               | Transition from a terminal state
Validation      | INVALID_AMOUNT              | Non-positive / non-finite amount
                | INVALID_CATEGORY            | Unknown threshold category
                | INVALID_CURRENCY_OR_ASSET   | Malformed currency or asset tag
                | MISSING_REASON              | Rejection without a reason
Authority       | SELF_APPROVAL               | Requester acting on own request
                | INSUFFICIENT_AUTHORITY      | Capability oracle denied the actor
Concurrency     | CONCURRENT_UPDATE           | Active slot changed under a CAS replace
Integrity       | TAMPER_DETECTED             | Request hash mismatch on load
                | AUDIT_CHAIN_BROKEN          | Audit hash chain validation failed
                | IMMUTABILITY_VIOLATION      | Modifying an append-only record

``code`` is a class attribute so it can be read without instantiation.
Several classes deliberately share a code (all NotFound subclasses report
``NOT_FOUND``): the caller layer distinguishes error KINDS, the class names
stay available for finer handling inside the kernel.
"""


class ThresholdKernelError(Exception):
    """
    Base exception for all threshold kernel errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification.
    """

    code: str = "THRESHOLD_KERNEL_ERROR"


# Not-found errors


class NotFoundError(ThresholdKernelError):
    """Base exception for lookups of unknown identifiers."""

    code: str = "NOT_FOUND"


class RequestNotFoundError(NotFoundError):
    """Threshold change request with given ID was not found."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Threshold change request not found: {request_id}")


class ThresholdNotFoundError(NotFoundError):
    """No active threshold configuration carries the given ID."""

    def __init__(self, threshold_id: str):
        self.threshold_id = threshold_id
        super().__init__(f"Threshold not found: {threshold_id}")


class NotificationNotFoundError(NotFoundError):
    """Notification with given ID was not found."""

    def __init__(self, notification_id: str):
        self.notification_id = notification_id
        super().__init__(f"Notification not found: {notification_id}")


# State errors


class InvalidStateError(ThresholdKernelError):
    """
    Transition attempted on a request that is no longer PENDING.

    ``current_status`` is the actual (terminal) status so the caller can
    explain "already APPROVED/REJECTED/EXPIRED".
    """

    code: str = "INVALID_STATE"

    def __init__(self, request_id: str, current_status: str, attempted: str):
        self.request_id = request_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} threshold change request {request_id}: "
            f"request is already {current_status}"
        )


class RequestExpiredError(InvalidStateError):
    """
    The request passed its deadline before this transition was attempted.

    Raised after the lazy expiry has been recorded, so the EXPIRED status
    is durable even though the attempted transition failed.
    """

    def __init__(self, request_id: str, attempted: str):
        super().__init__(request_id, "EXPIRED", attempted)


# Validation errors


class ValidationError(ThresholdKernelError):
    """Base exception for rejected input values."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Threshold amount is negative, zero where forbidden, or not finite."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount: str, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid threshold amount {amount}: {reason}")


class InvalidCategoryError(ValidationError):
    """Threshold category is not one of the known categories."""

    code: str = "INVALID_CATEGORY"

    def __init__(self, category: str):
        self.category = category
        super().__init__(f"Unknown threshold category: {category!r}")


class InvalidCurrencyOrAssetError(ValidationError):
    """Currency code / asset symbol is not a well-formed tag."""

    code: str = "INVALID_CURRENCY_OR_ASSET"

    def __init__(self, currency_or_asset: str):
        self.currency_or_asset = currency_or_asset
        super().__init__(f"Invalid currency or asset tag: {currency_or_asset!r}")


class MissingReasonError(ValidationError):
    """A rejection was attempted without a non-empty reason."""

    code: str = "MISSING_REASON"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Rejecting threshold change request {request_id} requires a reason"
        )


# Authority errors


class AuthorityError(ThresholdKernelError):
    """Base exception for actor authority failures."""

    code: str = "AUTHORITY_ERROR"


class SelfApprovalError(AuthorityError):
    """The requester attempted to approve or reject their own request."""

    code: str = "SELF_APPROVAL"

    def __init__(self, request_id: str, actor: str):
        self.request_id = request_id
        self.actor = actor
        super().__init__(
            f"Actor {actor} requested change {request_id} and cannot act on it"
        )


class InsufficientAuthorityError(AuthorityError):
    """The capability oracle denied one or more required capabilities."""

    code: str = "INSUFFICIENT_AUTHORITY"

    def __init__(self, actor: str, action: str, missing: list[str]):
        self.actor = actor
        self.action = action
        self.missing = missing
        super().__init__(
            f"Actor {actor} lacks {', '.join(missing)} required to {action}"
        )


# Concurrency errors


class ConcurrencyError(ThresholdKernelError):
    """Base exception for concurrency conflicts."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentThresholdUpdateError(ConcurrencyError):
    """The active slot no longer holds the amount a CAS replace expected."""

    code: str = "CONCURRENT_UPDATE"

    def __init__(self, threshold_id: str, expected_amount: str, actual_amount: str):
        self.threshold_id = threshold_id
        self.expected_amount = expected_amount
        self.actual_amount = actual_amount
        super().__init__(
            f"Threshold {threshold_id} changed concurrently: "
            f"expected {expected_amount}, found {actual_amount}"
        )


# Integrity errors


class IntegrityError(ThresholdKernelError):
    """Base exception for data integrity failures."""

    code: str = "INTEGRITY_ERROR"


class TamperDetectedError(IntegrityError):
    """Stored request fields no longer match their creation-time hash."""

    code: str = "TAMPER_DETECTED"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(
            f"Threshold change request {request_id} failed tamper verification"
        )


class AuditChainBrokenError(IntegrityError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, seq: int, expected_hash: str, actual_hash: str):
        self.seq = seq
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at seq {seq}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


class ImmutabilityViolationError(IntegrityError):
    """Attempted to modify or delete an append-only or write-once record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
