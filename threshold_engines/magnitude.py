"""
threshold_engines.magnitude -- Pure magnitude policy for threshold changes.

Responsibility:
    Decide whether a proposed threshold change is small enough to apply
    immediately or large enough to require a second approver.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import threshold_kernel/domain/ types.

Invariants enforced:
    - Magnitude is the absolute relative change against the current
      effective threshold, in percent.  Increases and decreases are
      treated symmetrically.
    - A zero baseline always yields 100%, including a proposed value of
      zero, so any change from an unset/zero limit needs approval.
    - The boundary is inclusive: exactly 25% requires approval.
    - Decimal-only arithmetic; floats are never produced.

Failure modes:
    - InvalidAmountError for negative or non-finite inputs.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from threshold_engines.tracer import traced_engine
from threshold_kernel.domain.threshold import to_amount
from threshold_kernel.exceptions import InvalidAmountError

MAGNITUDE_LIMIT_PERCENT = Decimal("25")

_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class MagnitudeEvaluation:
    """Result of evaluating a proposed change against the current threshold."""

    current: Decimal
    proposed: Decimal
    magnitude_percent: Decimal
    requires_approval: bool

    @property
    def is_increase(self) -> bool:
        return self.proposed > self.current

    @property
    def is_no_op(self) -> bool:
        return self.proposed == self.current


def _checked(value, name: str) -> Decimal:
    amount = to_amount(value)
    if not amount.is_finite():
        raise InvalidAmountError(str(amount), f"{name} must be finite")
    if amount < 0:
        raise InvalidAmountError(str(amount), f"{name} must be non-negative")
    return amount


def magnitude_percent(current, proposed) -> Decimal:
    """``|proposed - current| / current * 100``; 100 when ``current`` is zero."""
    current = _checked(current, "current")
    proposed = _checked(proposed, "proposed")
    if current == 0:
        return _HUNDRED
    return abs(proposed - current) / current * _HUNDRED


def requires_approval(current, proposed) -> bool:
    return magnitude_percent(current, proposed) >= MAGNITUDE_LIMIT_PERCENT


@traced_engine("magnitude", "1.0", fingerprint_fields=("current", "proposed"))
def evaluate_change(current, proposed) -> MagnitudeEvaluation:
    """Evaluate a proposed change.

    Args:
        current: Effective threshold at request time.
        proposed: Requested new threshold.

    Returns:
        MagnitudeEvaluation with the magnitude and the approval decision.
    """
    current_amount = _checked(current, "current")
    proposed_amount = _checked(proposed, "proposed")
    magnitude = magnitude_percent(current_amount, proposed_amount)
    return MagnitudeEvaluation(
        current=current_amount,
        proposed=proposed_amount,
        magnitude_percent=magnitude,
        requires_approval=magnitude >= MAGNITUDE_LIMIT_PERCENT,
    )
