"""
threshold_engines.dual_control -- Pure transaction-vs-threshold evaluation.

Responsibility:
    Given a transaction amount and the effective threshold for its
    (category, currency/asset), decide whether the transaction needs dual
    control and whether it is close enough to the limit to warn.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Dual control applies strictly above the threshold; a transaction
      exactly at the limit does not need a second approver.
    - "Approaching" means 80% <= amount / threshold < 100%.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from threshold_engines.tracer import traced_engine
from threshold_kernel.domain.threshold import to_amount
from threshold_kernel.exceptions import InvalidAmountError

APPROACHING_PERCENT = Decimal("80")

_HUNDRED = Decimal("100")


class ThresholdProximity(str, Enum):
    BELOW = "BELOW"
    APPROACHING = "APPROACHING"
    AT_LIMIT = "AT_LIMIT"
    EXCEEDED = "EXCEEDED"


@dataclass(frozen=True)
class DualControlCheck:
    """Outcome of checking one transaction amount against its threshold."""

    amount: Decimal
    threshold: Decimal
    percent_of_threshold: Decimal
    proximity: ThresholdProximity

    @property
    def requires_dual_control(self) -> bool:
        return self.proximity is ThresholdProximity.EXCEEDED

    @property
    def is_approaching(self) -> bool:
        return self.proximity is ThresholdProximity.APPROACHING


def requires_dual_control(amount, threshold) -> bool:
    return to_amount(amount) > to_amount(threshold)


def percent_of_threshold(amount, threshold) -> Decimal:
    amount = to_amount(amount)
    threshold = to_amount(threshold)
    if threshold == 0:
        return _HUNDRED
    return amount / threshold * _HUNDRED


@traced_engine("dual_control", "1.0", fingerprint_fields=("amount", "threshold"))
def approach_check(amount, threshold) -> DualControlCheck:
    """Classify a transaction amount relative to its threshold.

    Raises:
        InvalidAmountError: if the amount is negative or not finite.
    """
    amount = to_amount(amount)
    threshold = to_amount(threshold)
    if not amount.is_finite() or amount < 0:
        raise InvalidAmountError(str(amount), "transaction amount must be finite and non-negative")

    percent = percent_of_threshold(amount, threshold)
    if amount > threshold:
        proximity = ThresholdProximity.EXCEEDED
    elif amount == threshold:
        proximity = ThresholdProximity.AT_LIMIT
    elif percent >= APPROACHING_PERCENT:
        proximity = ThresholdProximity.APPROACHING
    else:
        proximity = ThresholdProximity.BELOW

    return DualControlCheck(
        amount=amount,
        threshold=threshold,
        percent_of_threshold=percent,
        proximity=proximity,
    )
