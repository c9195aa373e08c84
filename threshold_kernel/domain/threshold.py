"""
Threshold domain types (``threshold_kernel.domain.threshold``).

Responsibility
--------------
Pure value objects for dual-control thresholds: categories, the hardcoded
default floor, active configurations, supersede history, and the
effective-threshold resolution shared by decisioning and read paths.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.

Invariants enforced
-------------------
* Effective resolution order is fixed: exact (category, currency/asset)
  pair, then the category-wide slot, then ``DEFAULT_THRESHOLDS``.  There
  is exactly one implementation of it: ``resolve_effective_threshold``.
* Absence of configuration never means "no dual control": every category
  has a hardcoded floor.
* Amounts are ``Decimal`` and finite; configured amounts are >= 0.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable
from uuid import UUID

from threshold_kernel.exceptions import (
    InvalidAmountError,
    InvalidCategoryError,
    InvalidCurrencyOrAssetError,
)


class ThresholdCategory(str, Enum):
    """Categories of transactions that carry a dual-control threshold."""

    FX_CONVERSION = "FX_CONVERSION"
    CRYPTO_BUY = "CRYPTO_BUY"
    CRYPTO_SELL = "CRYPTO_SELL"
    CRYPTO_TRANSFER = "CRYPTO_TRANSFER"


# Hardcoded floor, in the reporting unit.  Intentionally conservative.
DEFAULT_THRESHOLDS: dict[ThresholdCategory, Decimal] = {
    ThresholdCategory.FX_CONVERSION: Decimal("10000"),
    ThresholdCategory.CRYPTO_BUY: Decimal("5000"),
    ThresholdCategory.CRYPTO_SELL: Decimal("5000"),
    ThresholdCategory.CRYPTO_TRANSFER: Decimal("2500"),
}

CATEGORY_LABELS: dict[ThresholdCategory, str] = {
    ThresholdCategory.FX_CONVERSION: "FX Conversion",
    ThresholdCategory.CRYPTO_BUY: "Crypto Buy",
    ThresholdCategory.CRYPTO_SELL: "Crypto Sell",
    ThresholdCategory.CRYPTO_TRANSFER: "Crypto Transfer",
}

REPORTING_UNIT = "AUD"

# Pair-agnostic slot: applies to every currency/asset in the category.
CATEGORY_WIDE = "*"

SYSTEM_ACTOR = "system"

_TAG_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")


def parse_category(value: ThresholdCategory | str) -> ThresholdCategory:
    """
    Raises:
        InvalidCategoryError: if ``value`` names no known category.
    """
    try:
        return ThresholdCategory(value)
    except ValueError as exc:
        raise InvalidCategoryError(str(value)) from exc


def normalize_currency_or_asset(value: str) -> str:
    """Upper-case and validate a currency code / asset symbol.

    ``"*"`` (the category-wide slot) is accepted as-is.

    Raises:
        InvalidCurrencyOrAssetError: if the tag is empty or malformed.
    """
    if not isinstance(value, str):
        raise InvalidCurrencyOrAssetError(repr(value))
    tag = value.strip().upper()
    if tag == CATEGORY_WIDE:
        return tag
    if not _TAG_PATTERN.match(tag):
        raise InvalidCurrencyOrAssetError(value)
    return tag


def to_amount(value: Decimal | int | float | str) -> Decimal:
    """Convert caller input to ``Decimal`` without float artefacts.

    Raises:
        InvalidAmountError: if the value is not a number.
    """
    if isinstance(value, bool):
        raise InvalidAmountError(repr(value), "not a number")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (ArithmeticError, ValueError) as exc:
        raise InvalidAmountError(repr(value), "not a number") from exc


def validate_configured_amount(amount: Decimal) -> Decimal:
    """A stored threshold must be finite and non-negative."""
    if not amount.is_finite():
        raise InvalidAmountError(str(amount), "amount must be finite")
    if amount < 0:
        raise InvalidAmountError(str(amount), "amount must be non-negative")
    return amount


def make_threshold_id(category: ThresholdCategory, currency_or_asset: str) -> str:
    """Deterministic slot identifier derived from category + currency/asset."""
    suffix = "all" if currency_or_asset == CATEGORY_WIDE else currency_or_asset.lower()
    return f"threshold-{category.value.lower()}-{suffix}"


def default_threshold_id(category: ThresholdCategory) -> str:
    return f"threshold-{category.value.lower()}-default"


@dataclass(frozen=True)
class ThresholdConfig:
    """The effective limit for a (category, currency/asset) pair.

    ``effective_from`` and ``set_at`` are ``None`` only for synthesized
    hardcoded defaults.
    """

    threshold_id: str
    tenant_id: str
    category: ThresholdCategory
    currency_or_asset: str
    amount: Decimal
    unit: str = REPORTING_UNIT
    effective_from: datetime | None = None
    set_by: str = SYSTEM_ACTOR
    set_at: datetime | None = None
    is_active: bool = True

    @property
    def is_hardcoded_default(self) -> bool:
        return self.effective_from is None

    @property
    def is_category_wide(self) -> bool:
        return self.currency_or_asset == CATEGORY_WIDE


@dataclass(frozen=True)
class ThresholdHistoryEntry:
    """A superseded configuration. Append-only, never mutated."""

    threshold_id: str
    tenant_id: str
    category: ThresholdCategory
    currency_or_asset: str
    amount: Decimal
    set_by: str
    set_at: datetime
    effective_from: datetime
    superseded_at: datetime
    superseded_by_request_id: UUID | None = None


def default_config(tenant_id: str, category: ThresholdCategory) -> ThresholdConfig:
    """Synthesize the hardcoded floor for a category."""
    return ThresholdConfig(
        threshold_id=default_threshold_id(category),
        tenant_id=tenant_id,
        category=category,
        currency_or_asset=CATEGORY_WIDE,
        amount=DEFAULT_THRESHOLDS[category],
    )


def resolve_effective_threshold(
    tenant_id: str,
    category: ThresholdCategory,
    currency_or_asset: str,
    active_configs: Iterable[ThresholdConfig],
) -> ThresholdConfig:
    """Effective threshold resolution.

    Order: exact pair -> category-wide slot -> hardcoded default.  Configs
    for other tenants/categories and inactive configs are ignored, so the
    caller may pass any superset of candidates.
    """
    specific: ThresholdConfig | None = None
    category_wide: ThresholdConfig | None = None
    for config in active_configs:
        if not config.is_active:
            continue
        if config.tenant_id != tenant_id or config.category != category:
            continue
        if config.currency_or_asset == currency_or_asset:
            specific = config
        elif config.currency_or_asset == CATEGORY_WIDE:
            category_wide = config

    if specific is not None:
        return specific
    if category_wide is not None:
        return category_wide
    return default_config(tenant_id, category)
