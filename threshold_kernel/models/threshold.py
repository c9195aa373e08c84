"""
Module: threshold_kernel.models.threshold
Responsibility: ORM persistence for active threshold configurations and
    their supersede history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - At most one active row per (tenant_id, category, currency_or_asset):
      partial unique index ``WHERE is_active``.
    - An active row may only be deactivated; amount, slot and provenance
      are never rewritten (ORM listener, see db/immutability.py).
    - History rows are append-only (ORM listener).

Failure modes:
    - IntegrityError if two transactions try to activate the same slot.
    - ImmutabilityViolationError on forbidden UPDATE/DELETE.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from threshold_kernel.db.base import Base, UUIDString
from threshold_kernel.domain.threshold import (
    REPORTING_UNIT,
    ThresholdCategory,
    ThresholdConfig,
    ThresholdHistoryEntry,
)


class ThresholdConfigModel(Base):
    """Persistent threshold configuration.

    Contract:
        Rows are inserted active.  ``ThresholdStore.replace`` is the only
        writer that flips ``is_active`` to False.

    Guarantees:
        - One active row per slot (partial unique index).
    """

    __tablename__ = "threshold_configs"

    __table_args__ = (
        Index(
            "ix_threshold_configs_active_slot",
            "tenant_id", "category", "currency_or_asset",
            unique=True,
            sqlite_where=text("is_active = 1"),
            postgresql_where=text("is_active"),
        ),
        Index("ix_threshold_configs_threshold_id", "tenant_id", "threshold_id"),
    )

    threshold_id: Mapped[str] = mapped_column(String(100), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    currency_or_asset: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(8), nullable=False, default=REPORTING_UNIT)
    effective_from: Mapped[datetime] = mapped_column(nullable=False)
    set_by: Mapped[str] = mapped_column(String(100), nullable=False)
    set_at: Mapped[datetime] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    source_request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ThresholdConfig {self.threshold_id} {self.amount} "
            f"active={self.is_active}>"
        )

    def to_dto(self) -> ThresholdConfig:
        """Convert ORM model to frozen domain DTO."""
        return ThresholdConfig(
            threshold_id=self.threshold_id,
            tenant_id=self.tenant_id,
            category=ThresholdCategory(self.category),
            currency_or_asset=self.currency_or_asset,
            amount=self.amount,
            unit=self.unit,
            effective_from=self.effective_from,
            set_by=self.set_by,
            set_at=self.set_at,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(
        cls,
        dto: ThresholdConfig,
        source_request_id: UUID | None = None,
    ) -> ThresholdConfigModel:
        """Create an active ORM row from a domain DTO."""
        return cls(
            threshold_id=dto.threshold_id,
            tenant_id=dto.tenant_id,
            category=dto.category.value,
            currency_or_asset=dto.currency_or_asset,
            amount=dto.amount,
            unit=dto.unit,
            effective_from=dto.effective_from,
            set_by=dto.set_by,
            set_at=dto.set_at,
            is_active=True,
            source_request_id=source_request_id,
        )


class ThresholdHistoryModel(Base):
    """Superseded threshold configuration.

    Contract:
        Append-only.  Written exactly once per supersede, in the same
        transaction that deactivates the config it describes.
    """

    __tablename__ = "threshold_history"

    __table_args__ = (
        Index("ix_threshold_history_slot", "tenant_id", "category", "superseded_at"),
    )

    threshold_id: Mapped[str] = mapped_column(String(100), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    currency_or_asset: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    set_by: Mapped[str] = mapped_column(String(100), nullable=False)
    set_at: Mapped[datetime] = mapped_column(nullable=False)
    effective_from: Mapped[datetime] = mapped_column(nullable=False)
    superseded_at: Mapped[datetime] = mapped_column(nullable=False)
    superseded_by_request_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), nullable=True,
    )

    def __repr__(self) -> str:
        return f"<ThresholdHistory {self.threshold_id} {self.amount} @ {self.superseded_at}>"

    def to_dto(self) -> ThresholdHistoryEntry:
        return ThresholdHistoryEntry(
            threshold_id=self.threshold_id,
            tenant_id=self.tenant_id,
            category=ThresholdCategory(self.category),
            currency_or_asset=self.currency_or_asset,
            amount=self.amount,
            set_by=self.set_by,
            set_at=self.set_at,
            effective_from=self.effective_from,
            superseded_at=self.superseded_at,
            superseded_by_request_id=self.superseded_by_request_id,
        )

    @classmethod
    def from_superseded(
        cls,
        active: ThresholdConfigModel,
        superseded_at: datetime,
        superseded_by_request_id: UUID | None,
    ) -> ThresholdHistoryModel:
        return cls(
            threshold_id=active.threshold_id,
            tenant_id=active.tenant_id,
            category=active.category,
            currency_or_asset=active.currency_or_asset,
            amount=active.amount,
            set_by=active.set_by,
            set_at=active.set_at,
            effective_from=active.effective_from,
            superseded_at=superseded_at,
            superseded_by_request_id=superseded_by_request_id,
        )
