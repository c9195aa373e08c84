"""Tests for engine configuration loading and service wiring."""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from threshold_config import get_active_config
from threshold_config.loader import compute_checksum, load_settings, parse_settings
from threshold_kernel.db.engine import get_engine, get_session_factory, reset_engine
from threshold_kernel.domain.authority import Capability, StaticCapabilityOracle
from threshold_kernel.domain.events import ExecutionMode
from threshold_kernel.domain.threshold import ThresholdCategory
from threshold_services.control_service import build_control_service


def _settings_dict(**overrides) -> dict:
    data = {
        "config_id": "test-config",
        "version": 3,
        "execution_mode": "LIVE",
        "database": {"url": "sqlite:///:memory:", "echo": False},
        "tenancy": {"default_tenant": "tenant-a"},
        "expiry_sweeper": {"interval_seconds": 5},
        "logging": {"level": "debug"},
    }
    data.update(overrides)
    return data


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultConfig:
    def test_bundled_default_loads(self):
        settings = get_active_config()
        assert settings.config_id == "threshold-engine-default"
        assert settings.execution_mode is ExecutionMode.DEMO
        assert settings.default_tenant == "default"
        assert settings.database_url.startswith("sqlite:///")
        assert len(settings.checksum) == 64

    def test_config_trace_logged(self, captured_logs):
        get_active_config()
        traces = [r for r in captured_logs() if r["message"] == "THRESHOLD_CONFIG_TRACE"]
        assert len(traces) == 1
        assert traces[0]["config_id"] == "threshold-engine-default"
        assert traces[0]["execution_mode"] == "DEMO"


class TestParseSettings:
    def test_values_parsed(self, tmp_path):
        settings = load_settings(_write(tmp_path, _settings_dict()))
        assert settings.version == 3
        assert settings.execution_mode is ExecutionMode.LIVE
        assert settings.sweep_interval_seconds == 5.0
        assert settings.log_level == "DEBUG"

    def test_execution_mode_defaults_to_live(self):
        data = _settings_dict()
        del data["execution_mode"]
        assert parse_settings(data).execution_mode is ExecutionMode.LIVE

    def test_missing_database_url(self):
        with pytest.raises(KeyError):
            parse_settings(_settings_dict(database={}))

    def test_missing_default_tenant(self):
        with pytest.raises(KeyError):
            parse_settings(_settings_dict(tenancy={}))

    @pytest.mark.parametrize("overrides", [
        {"execution_mode": "SIMULATION"},
        {"expiry_sweeper": {"interval_seconds": 0}},
        {"logging": {"level": "LOUD"}},
        {"tenancy": {"default_tenant": "  "}},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ValueError):
            parse_settings(_settings_dict(**overrides))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_checksum_is_deterministic_and_content_sensitive(self):
        assert compute_checksum(_settings_dict()) == compute_checksum(_settings_dict())
        assert compute_checksum(_settings_dict()) != compute_checksum(_settings_dict(version=4))


class TestBuildControlService:
    def test_wires_a_working_service(self, tmp_path):
        data = _settings_dict(
            execution_mode="DEMO",
            database={"url": f"sqlite:///{tmp_path / 'wired.db'}"},
        )
        settings = get_active_config(_write(tmp_path, data))
        oracle = StaticCapabilityOracle({"admin": [Capability.SYSTEM_ADMIN]})
        try:
            service = build_control_service(oracle, settings)
            assert service.default_tenant == "tenant-a"

            result = service.set_threshold(ThresholdCategory.FX_CONVERSION, "AUD", Decimal("11000"), "admin")
            assert result.is_success
            assert result.data.applied

            events = service.list_threshold_change_events().data
            assert events[0].execution_mode is ExecutionMode.DEMO
        finally:
            reset_engine()

    def test_engine_accessors_follow_initialization(self, tmp_path):
        reset_engine()
        with pytest.raises(RuntimeError):
            get_engine()
        with pytest.raises(RuntimeError):
            get_session_factory()

        settings = get_active_config(_write(
            tmp_path, _settings_dict(database={"url": f"sqlite:///{tmp_path / 'acc.db'}"}),
        ))
        try:
            build_control_service(StaticCapabilityOracle({}), settings)
            assert get_engine().url.database == str(tmp_path / "acc.db")
            assert get_session_factory().kw["bind"] is get_engine()
        finally:
            reset_engine()


def test_db_package_exports_only_wired_helpers():
    import threshold_kernel.db as db

    assert sorted(db.__all__) == sorted([
        "Base",
        "UTCDateTime",
        "UUID",
        "UUIDString",
        "create_engine_for_url",
        "create_tables",
        "get_engine",
        "get_session_factory",
        "init_engine_from_url",
        "reset_engine",
    ])
    for name in ("session_scope", "get_session", "drop_tables", "is_postgres"):
        assert not hasattr(db, name)
