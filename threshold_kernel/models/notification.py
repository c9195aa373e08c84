"""
Module: threshold_kernel.models.notification
Responsibility: ORM persistence for user-facing threshold notifications.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - One notification per source (audit event idempotency key, or
      transaction signal key): ``source_key`` is unique.
    - Only ``is_read`` may change after creation (ORM listener).
    - ``seq`` orders notifications by creation, newest first on read.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import JSON, BigInteger, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from threshold_kernel.db.base import Base, UUIDString
from threshold_kernel.domain.events import (
    NotificationType,
    TargetRole,
    ThresholdNotification,
)
from threshold_kernel.domain.threshold import ThresholdCategory


class ThresholdNotificationModel(Base):
    """Persistent notification.

    Non-goals:
        - Delivery.  Rows are read by polling ``NotificationRouter.list``.
    """

    __tablename__ = "threshold_notifications"

    __table_args__ = (
        Index("ix_threshold_notifications_tenant_created", "tenant_id", "created_at"),
    )

    notification_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True, default=uuid4,
    )
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    notification_type: Mapped[str] = mapped_column(String(40), nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    currency_or_asset: Mapped[str] = mapped_column(String(10), nullable=False)
    threshold: Mapped[Decimal] = mapped_column(nullable=False)
    transaction_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    percent_of_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    request_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    target_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)

    def __repr__(self) -> str:
        return (
            f"<ThresholdNotification {self.notification_id} "
            f"{self.notification_type} read={self.is_read}>"
        )

    def to_dto(self) -> ThresholdNotification:
        return ThresholdNotification(
            notification_id=self.notification_id,
            notification_type=NotificationType(self.notification_type),
            tenant_id=self.tenant_id,
            category=ThresholdCategory(self.category),
            currency_or_asset=self.currency_or_asset,
            threshold=self.threshold,
            actor=self.actor,
            created_at=self.created_at,
            target_roles=frozenset(TargetRole(r) for r in self.target_roles),
            is_read=self.is_read,
            request_id=self.request_id,
            transaction_amount=self.transaction_amount,
            percent_of_threshold=self.percent_of_threshold,
            message=self.message,
        )
