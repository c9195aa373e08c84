"""Tests for threshold value objects and effective-threshold resolution."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from threshold_kernel.domain.threshold import (
    CATEGORY_WIDE,
    DEFAULT_THRESHOLDS,
    ThresholdCategory,
    ThresholdConfig,
    default_config,
    make_threshold_id,
    normalize_currency_or_asset,
    parse_category,
    resolve_effective_threshold,
    to_amount,
    validate_configured_amount,
)
from threshold_kernel.exceptions import (
    InvalidAmountError,
    InvalidCategoryError,
    InvalidCurrencyOrAssetError,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _config(category, tag, amount, tenant="t1", active=True) -> ThresholdConfig:
    return ThresholdConfig(
        threshold_id=make_threshold_id(category, tag),
        tenant_id=tenant,
        category=category,
        currency_or_asset=tag,
        amount=Decimal(amount),
        effective_from=T0,
        set_at=T0,
        is_active=active,
    )


class TestDefaults:
    def test_every_category_has_a_floor(self):
        assert set(DEFAULT_THRESHOLDS) == set(ThresholdCategory)

    def test_default_values(self):
        assert DEFAULT_THRESHOLDS[ThresholdCategory.FX_CONVERSION] == Decimal("10000")
        assert DEFAULT_THRESHOLDS[ThresholdCategory.CRYPTO_BUY] == Decimal("5000")
        assert DEFAULT_THRESHOLDS[ThresholdCategory.CRYPTO_SELL] == Decimal("5000")
        assert DEFAULT_THRESHOLDS[ThresholdCategory.CRYPTO_TRANSFER] == Decimal("2500")

    def test_default_config_is_category_wide_and_synthesized(self):
        config = default_config("t1", ThresholdCategory.CRYPTO_BUY)
        assert config.is_category_wide
        assert config.is_hardcoded_default
        assert config.threshold_id == "threshold-crypto_buy-default"


class TestResolution:
    """Exact pair, then category-wide, then the hardcoded default."""

    def test_no_configs_falls_back_to_default(self):
        result = resolve_effective_threshold("t1", ThresholdCategory.CRYPTO_SELL, "BTC", [])
        assert result.amount == Decimal("5000")
        assert result.is_hardcoded_default

    def test_category_wide_beats_default(self):
        configs = [_config(ThresholdCategory.CRYPTO_SELL, CATEGORY_WIDE, "7000")]
        result = resolve_effective_threshold("t1", ThresholdCategory.CRYPTO_SELL, "BTC", configs)
        assert result.amount == Decimal("7000")

    def test_exact_pair_beats_category_wide(self):
        configs = [
            _config(ThresholdCategory.CRYPTO_SELL, CATEGORY_WIDE, "7000"),
            _config(ThresholdCategory.CRYPTO_SELL, "BTC", "3000"),
        ]
        result = resolve_effective_threshold("t1", ThresholdCategory.CRYPTO_SELL, "BTC", configs)
        assert result.amount == Decimal("3000")

    def test_ignores_inactive_other_tenant_and_other_category(self):
        configs = [
            _config(ThresholdCategory.CRYPTO_SELL, "BTC", "1", active=False),
            _config(ThresholdCategory.CRYPTO_SELL, "BTC", "2", tenant="t2"),
            _config(ThresholdCategory.CRYPTO_BUY, "BTC", "3"),
        ]
        result = resolve_effective_threshold("t1", ThresholdCategory.CRYPTO_SELL, "BTC", configs)
        assert result.is_hardcoded_default

    def test_other_pair_does_not_apply(self):
        configs = [_config(ThresholdCategory.FX_CONVERSION, "USD", "500")]
        result = resolve_effective_threshold("t1", ThresholdCategory.FX_CONVERSION, "EUR", configs)
        assert result.amount == Decimal("10000")


class TestInputNormalization:
    @pytest.mark.parametrize("raw,expected", [("aud", "AUD"), (" btc ", "BTC"), ("*", "*"), ("USDT", "USDT")])
    def test_tags_are_upper_cased(self, raw, expected):
        assert normalize_currency_or_asset(raw) == expected

    @pytest.mark.parametrize("raw", ["", "A", "US-D", "TOOLONGASSET1", None])
    def test_malformed_tags_rejected(self, raw):
        with pytest.raises(InvalidCurrencyOrAssetError):
            normalize_currency_or_asset(raw)

    def test_parse_category_accepts_value_strings(self):
        assert parse_category("CRYPTO_TRANSFER") is ThresholdCategory.CRYPTO_TRANSFER

    def test_parse_category_rejects_unknown(self):
        with pytest.raises(InvalidCategoryError) as exc_info:
            parse_category("WIRE_TRANSFER")
        assert exc_info.value.code == "INVALID_CATEGORY"

    def test_to_amount_avoids_float_artefacts(self):
        assert to_amount(0.1) == Decimal("0.1")
        assert to_amount("12500.50") == Decimal("12500.50")

    @pytest.mark.parametrize("raw", ["abc", True, None])
    def test_to_amount_rejects_non_numbers(self, raw):
        with pytest.raises(InvalidAmountError):
            to_amount(raw)

    @pytest.mark.parametrize("raw", [Decimal("-1"), Decimal("NaN"), Decimal("Infinity")])
    def test_configured_amount_must_be_finite_and_non_negative(self, raw):
        with pytest.raises(InvalidAmountError):
            validate_configured_amount(raw)

    def test_zero_is_a_valid_configured_amount(self):
        assert validate_configured_amount(Decimal("0")) == Decimal("0")


class TestThresholdIds:
    def test_pair_id(self):
        assert make_threshold_id(ThresholdCategory.FX_CONVERSION, "AUD") == "threshold-fx_conversion-aud"

    def test_category_wide_id(self):
        assert make_threshold_id(ThresholdCategory.CRYPTO_BUY, CATEGORY_WIDE) == "threshold-crypto_buy-all"
