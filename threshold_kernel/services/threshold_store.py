"""
ThresholdStore -- active threshold configurations and their history.

Responsibility:
    Holds the currently active configuration per (tenant, category,
    currency/asset) slot, resolves the effective threshold for any pair,
    and atomically supersedes a slot's configuration while recording the
    superseded one in history.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ApprovalWorkflow (the
    only writer) and by the caller-facing services for reads.

Invariants enforced:
    - At most one active config per slot: the previous row is locked
      (``SELECT ... FOR UPDATE``), deactivated and flushed before the new
      row is inserted, all in the caller's transaction; a partial unique
      index backs this up.
    - Every supersede appends exactly one history entry with
      ``superseded_at == new_config.effective_from``.
    - Resolution never returns "no threshold": the hardcoded default is
      the floor (``resolve_effective_threshold``).

Failure modes:
    - InvalidAmountError / InvalidCurrencyOrAssetError on malformed configs.
    - ConcurrentThresholdUpdateError from ``compare_and_replace`` when the
      slot no longer holds the expected amount.
    - ThresholdNotFoundError from ``get_by_threshold_id``.

Audit relevance:
    History entries carry ``superseded_by_request_id`` so every superseded
    value links to the change request (and audit events) that replaced it.
"""

from __future__ import annotations

from dataclasses import replace as dc_replace
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from threshold_kernel.domain.threshold import (
    CATEGORY_WIDE,
    ThresholdCategory,
    ThresholdConfig,
    ThresholdHistoryEntry,
    default_config,
    make_threshold_id,
    normalize_currency_or_asset,
    resolve_effective_threshold,
    validate_configured_amount,
)
from threshold_kernel.exceptions import (
    ConcurrentThresholdUpdateError,
    ThresholdNotFoundError,
)
from threshold_kernel.logging_config import get_logger
from threshold_kernel.models.threshold import (
    ThresholdConfigModel,
    ThresholdHistoryModel,
)

logger = get_logger("services.threshold_store")


class ThresholdStore:
    """
    Active threshold configurations for the engine.

    Contract:
        Reads return frozen ``ThresholdConfig`` DTOs.  ``replace`` and
        ``compare_and_replace`` flush but never commit.

    Guarantees:
        - ``get_active`` uses the shared three-level resolution.
        - ``replace`` is atomic with respect to the caller's transaction.

    Non-goals:
        - Does NOT decide whether a change is allowed; that is the
          workflow's job.  Callers that bypass the workflow bypass dual
          control.
    """

    def __init__(self, session: Session):
        self._session = session

    # Reads

    def _active_rows_for(
        self,
        tenant_id: str,
        category: ThresholdCategory,
        currency_or_asset: str,
    ) -> list[ThresholdConfigModel]:
        slots = {currency_or_asset, CATEGORY_WIDE}
        return list(
            self._session.execute(
                select(ThresholdConfigModel).where(
                    ThresholdConfigModel.tenant_id == tenant_id,
                    ThresholdConfigModel.category == category.value,
                    ThresholdConfigModel.currency_or_asset.in_(slots),
                    ThresholdConfigModel.is_active.is_(True),
                )
            ).scalars()
        )

    def get_active(
        self,
        tenant_id: str,
        category: ThresholdCategory,
        currency_or_asset: str,
    ) -> ThresholdConfig:
        """Effective threshold: exact pair, then category-wide, then default."""
        category = ThresholdCategory(category)
        tag = normalize_currency_or_asset(currency_or_asset)
        rows = self._active_rows_for(tenant_id, category, tag)
        return resolve_effective_threshold(
            tenant_id, category, tag, [r.to_dto() for r in rows],
        )

    def list_active(self, tenant_id: str) -> list[ThresholdConfig]:
        """Explicitly configured active rows, ordered by category then tag."""
        rows = self._session.execute(
            select(ThresholdConfigModel)
            .where(
                ThresholdConfigModel.tenant_id == tenant_id,
                ThresholdConfigModel.is_active.is_(True),
            )
            .order_by(ThresholdConfigModel.category, ThresholdConfigModel.currency_or_asset)
        ).scalars()
        return [r.to_dto() for r in rows]

    def list_effective(self, tenant_id: str) -> list[ThresholdConfig]:
        """Active rows plus a synthesized default for every category without
        a category-wide row."""
        configs = self.list_active(tenant_id)
        covered = {c.category for c in configs if c.is_category_wide}
        defaults = [
            default_config(tenant_id, category)
            for category in ThresholdCategory
            if category not in covered
        ]
        return defaults + configs

    def get_by_threshold_id(self, tenant_id: str, threshold_id: str) -> ThresholdConfig:
        """
        Look up an active config (or a synthesized default) by its id.

        Raises:
            ThresholdNotFoundError: if no such threshold is in force.
        """
        for config in self.list_effective(tenant_id):
            if config.threshold_id == threshold_id:
                return config
        raise ThresholdNotFoundError(threshold_id)

    def list_history(
        self,
        tenant_id: str,
        category: ThresholdCategory | None = None,
    ) -> list[ThresholdHistoryEntry]:
        """Superseded configs, most recently superseded first."""
        stmt = select(ThresholdHistoryModel).where(
            ThresholdHistoryModel.tenant_id == tenant_id,
        )
        if category is not None:
            stmt = stmt.where(
                ThresholdHistoryModel.category == ThresholdCategory(category).value
            )
        stmt = stmt.order_by(
            ThresholdHistoryModel.superseded_at.desc(),
            ThresholdHistoryModel.effective_from.desc(),
        )
        return [r.to_dto() for r in self._session.execute(stmt).scalars()]

    # Writes

    def _validated(self, config: ThresholdConfig) -> ThresholdConfig:
        tag = normalize_currency_or_asset(config.currency_or_asset)
        validate_configured_amount(config.amount)
        if config.effective_from is None or config.set_at is None:
            raise ValueError("a stored threshold config needs effective_from and set_at")
        return dc_replace(
            config,
            category=ThresholdCategory(config.category),
            currency_or_asset=tag,
            threshold_id=make_threshold_id(ThresholdCategory(config.category), tag),
            is_active=True,
        )

    def _lock_slot(self, config: ThresholdConfig) -> ThresholdConfigModel | None:
        return self._session.execute(
            select(ThresholdConfigModel)
            .where(
                ThresholdConfigModel.tenant_id == config.tenant_id,
                ThresholdConfigModel.category == config.category.value,
                ThresholdConfigModel.currency_or_asset == config.currency_or_asset,
                ThresholdConfigModel.is_active.is_(True),
            )
            .with_for_update()
        ).scalar_one_or_none()

    def _supersede(
        self,
        previous: ThresholdConfigModel | None,
        config: ThresholdConfig,
        superseded_by_request_id: UUID | None,
    ) -> ThresholdHistoryEntry | None:
        if superseded_by_request_id is not None and not isinstance(superseded_by_request_id, UUID):
            raise TypeError(
                "superseded_by_request_id must be a UUID, "
                f"got {type(superseded_by_request_id).__name__}"
            )
        entry: ThresholdHistoryEntry | None = None
        if previous is not None:
            previous.is_active = False
            self._session.flush()
            history = ThresholdHistoryModel.from_superseded(
                previous,
                superseded_at=config.effective_from,
                superseded_by_request_id=superseded_by_request_id,
            )
            self._session.add(history)
            entry = history.to_dto()

        self._session.add(
            ThresholdConfigModel.from_dto(
                config,
                source_request_id=superseded_by_request_id,
            )
        )
        self._session.flush()

        logger.info(
            "threshold_replaced",
            extra={
                "tenant_id": config.tenant_id,
                "threshold_id": config.threshold_id,
                "previous_amount": previous.amount if previous is not None else None,
                "new_amount": config.amount,
                "superseded_by_request_id": superseded_by_request_id,
            },
        )
        return entry

    def replace(
        self,
        config: ThresholdConfig,
        superseded_by_request_id: UUID | None = None,
    ) -> ThresholdHistoryEntry | None:
        """
        Make ``config`` the active config of its slot.

        Postconditions:
            - ``get_active`` for the slot returns ``config`` (active).
            - The previously active config of the same slot, if any, is
              in history with ``superseded_at == config.effective_from``.

        Returns:
            The history entry written, or None when the slot was empty.
        """
        config = self._validated(config)
        previous = self._lock_slot(config)
        return self._supersede(previous, config, superseded_by_request_id)

    def compare_and_replace(
        self,
        expected_threshold_amount: Decimal,
        config: ThresholdConfig,
        superseded_by_request_id: UUID | None = None,
    ) -> ThresholdHistoryEntry | None:
        """
        ``replace`` guarded by the amount currently in force for the slot.

        The expected amount is compared against the slot's effective
        threshold (which may be a category-wide row or the default when the
        slot has no row of its own).

        Raises:
            ConcurrentThresholdUpdateError: if the effective amount differs.
        """
        config = self._validated(config)
        previous = self._lock_slot(config)
        actual = (
            previous.amount
            if previous is not None
            else self.get_active(config.tenant_id, config.category, config.currency_or_asset).amount
        )
        if actual != expected_threshold_amount:
            logger.warning(
                "threshold_concurrent_update",
                extra={
                    "threshold_id": config.threshold_id,
                    "expected_amount": expected_threshold_amount,
                    "actual_amount": actual,
                },
            )
            raise ConcurrentThresholdUpdateError(
                config.threshold_id,
                str(expected_threshold_amount),
                str(actual),
            )
        return self._supersede(previous, config, superseded_by_request_id)
