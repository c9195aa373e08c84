"""Tests for ThresholdStore: resolution, atomic supersede and history."""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from threshold_kernel.domain.threshold import CATEGORY_WIDE, ThresholdCategory
from threshold_kernel.exceptions import (
    ConcurrentThresholdUpdateError,
    ImmutabilityViolationError,
    InvalidAmountError,
    InvalidCurrencyOrAssetError,
    ThresholdNotFoundError,
)
from threshold_kernel.models.threshold import ThresholdConfigModel, ThresholdHistoryModel
from tests.conftest import OTHER_TENANT, TENANT


class TestGetActive:
    def test_empty_store_returns_hardcoded_default(self, store):
        config = store.get_active(TENANT, ThresholdCategory.CRYPTO_TRANSFER, "ETH")
        assert config.amount == Decimal("2500")
        assert config.is_hardcoded_default

    def test_exact_pair_wins(self, store, make_config):
        store.replace(make_config(currency_or_asset=CATEGORY_WIDE, amount="9000"))
        store.replace(make_config(currency_or_asset="AUD", amount="4000"))

        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("4000")
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "USD").amount == Decimal("9000")

    def test_tag_is_normalized_on_lookup(self, store, make_config):
        store.replace(make_config(currency_or_asset="AUD", amount="4000"))
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "aud").amount == Decimal("4000")

    def test_tenants_are_isolated(self, store, make_config):
        store.replace(make_config(amount="4000", tenant_id=OTHER_TENANT))
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").is_hardcoded_default


class TestReplace:
    def test_first_replace_writes_no_history(self, store, make_config):
        assert store.replace(make_config()) is None
        assert store.list_history(TENANT) == []

    def test_replace_supersedes_previous(self, store, make_config, clock):
        store.replace(make_config(amount="10000"))
        clock.advance(hours=1)
        request_id = uuid4()
        entry = store.replace(make_config(amount="12000"), superseded_by_request_id=request_id)

        assert entry is not None
        assert entry.amount == Decimal("10000")
        assert entry.superseded_at == clock.now()
        assert entry.superseded_by_request_id == request_id
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("12000")
        assert store.list_history(TENANT)[0].superseded_by_request_id == request_id

    def test_non_uuid_request_reference_is_refused(self, store, make_config):
        store.replace(make_config(amount="10000"))
        with pytest.raises(TypeError):
            store.replace(make_config(amount="12000"), superseded_by_request_id="req-1")

        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("10000")
        assert store.list_history(TENANT) == []

    def test_at_most_one_active_row_per_slot(self, session, store, make_config):
        for amount in ("100", "200", "300"):
            store.replace(make_config(amount=amount))

        active = session.execute(
            select(func.count()).select_from(ThresholdConfigModel).where(
                ThresholdConfigModel.tenant_id == TENANT,
                ThresholdConfigModel.is_active.is_(True),
            )
        ).scalar_one()
        history = session.execute(
            select(func.count()).select_from(ThresholdHistoryModel)
        ).scalar_one()
        assert active == 1
        assert history == 2

    def test_list_history_most_recent_first(self, store, make_config, clock):
        store.replace(make_config(amount="100"))
        clock.advance(hours=1)
        store.replace(make_config(amount="200"))
        clock.advance(hours=1)
        store.replace(make_config(amount="300"))

        amounts = [e.amount for e in store.list_history(TENANT)]
        assert amounts == [Decimal("200"), Decimal("100")]

    def test_list_history_filters_by_category(self, store, make_config, clock):
        store.replace(make_config(amount="100"))
        store.replace(make_config(category=ThresholdCategory.CRYPTO_BUY, currency_or_asset="BTC", amount="1"))
        clock.advance(hours=1)
        store.replace(make_config(amount="200"))
        store.replace(make_config(category=ThresholdCategory.CRYPTO_BUY, currency_or_asset="BTC", amount="2"))

        entries = store.list_history(TENANT, ThresholdCategory.CRYPTO_BUY)
        assert [e.amount for e in entries] == [Decimal("1")]

    def test_negative_amount_rejected(self, store, make_config):
        with pytest.raises(InvalidAmountError):
            store.replace(make_config(amount="-5"))

    def test_malformed_tag_rejected(self, store, make_config):
        with pytest.raises(InvalidCurrencyOrAssetError):
            store.replace(make_config(currency_or_asset="A-B"))


class TestCompareAndReplace:
    def test_matching_expected_amount_replaces(self, store, make_config):
        store.replace(make_config(amount="10000"))
        store.compare_and_replace(Decimal("10000"), make_config(amount="11000"))
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("11000")

    def test_expected_amount_checked_against_default_for_empty_slot(self, store, make_config):
        store.compare_and_replace(Decimal("10000"), make_config(amount="11000"))
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("11000")

    def test_stale_expected_amount_fails(self, store, make_config):
        store.replace(make_config(amount="10000"))
        with pytest.raises(ConcurrentThresholdUpdateError) as exc_info:
            store.compare_and_replace(Decimal("9000"), make_config(amount="11000"))
        assert exc_info.value.code == "CONCURRENT_UPDATE"
        assert store.get_active(TENANT, ThresholdCategory.FX_CONVERSION, "AUD").amount == Decimal("10000")


class TestListing:
    def test_list_effective_includes_defaults_for_uncovered_categories(self, store, make_config):
        store.replace(make_config(currency_or_asset="AUD", amount="4000"))
        store.replace(make_config(category=ThresholdCategory.CRYPTO_BUY, currency_or_asset=CATEGORY_WIDE, amount="6000"))

        effective = store.list_effective(TENANT)
        defaults = {c.category for c in effective if c.is_hardcoded_default}
        assert defaults == {
            ThresholdCategory.FX_CONVERSION,
            ThresholdCategory.CRYPTO_SELL,
            ThresholdCategory.CRYPTO_TRANSFER,
        }
        assert len(effective) == 5

    def test_get_by_threshold_id(self, store, make_config):
        store.replace(make_config(currency_or_asset="AUD", amount="4000"))
        assert store.get_by_threshold_id(TENANT, "threshold-fx_conversion-aud").amount == Decimal("4000")
        assert store.get_by_threshold_id(TENANT, "threshold-crypto_sell-default").amount == Decimal("5000")

    def test_unknown_threshold_id(self, store):
        with pytest.raises(ThresholdNotFoundError):
            store.get_by_threshold_id(TENANT, "threshold-fx_conversion-xyz")


class TestImmutability:
    def test_config_amount_cannot_be_edited(self, session, store, make_config):
        store.replace(make_config(amount="10000"))
        row = session.execute(select(ThresholdConfigModel)).scalar_one()
        row.amount = Decimal("1")
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_history_cannot_be_deleted(self, session, store, make_config):
        store.replace(make_config(amount="10000"))
        store.replace(make_config(amount="11000"))
        entry = session.execute(select(ThresholdHistoryModel)).scalar_one()
        session.delete(entry)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
