"""Tests for configuration loading and validation."""

from dataclasses import replace

import pytest

from receptionist.config import (
    AppConfig,
    BusinessConfig,
    LatencyConfig,
    PolicyConfig,
    TimerConfig,
    _safe_bool,
    _safe_float,
    _safe_int,
    _validate_config,
    settings,
)
from receptionist.schemas.organization import default_organization


class TestConfigValidation:
    def test_default_config_passes_validation(self):
        config = AppConfig()
        _validate_config(config)  # should not raise

    def test_settings_singleton_loaded(self):
        assert isinstance(settings, AppConfig)
        assert settings.policy.confirmation_threshold >= 1

    def test_zero_confirmation_threshold_rejected(self):
        config = replace(AppConfig(), policy=replace(PolicyConfig(), confirmation_threshold=0))
        with pytest.raises(ValueError, match="CONFIRMATION_THRESHOLD"):
            _validate_config(config)

    def test_zero_session_ceiling_rejected(self):
        config = replace(AppConfig(), policy=replace(PolicyConfig(), session_retry_ceiling=0))
        with pytest.raises(ValueError, match="SESSION_RETRY_CEILING"):
            _validate_config(config)

    def test_low_confidence_threshold_above_one(self):
        config = replace(AppConfig(), policy=replace(PolicyConfig(), low_confidence_threshold=1.5))
        with pytest.raises(ValueError, match="LOW_CONFIDENCE_THRESHOLD"):
            _validate_config(config)

    def test_negative_integration_timeout(self):
        config = replace(
            AppConfig(), latency=replace(LatencyConfig(), integration_timeout_sec=-1.0)
        )
        with pytest.raises(ValueError, match="INTEGRATION_TIMEOUT"):
            _validate_config(config)

    def test_intent_timeout_cannot_exceed_turn_budget(self):
        config = replace(
            AppConfig(),
            latency=LatencyConfig(intent_timeout_sec=2.0, integration_timeout_sec=1.0, turn_budget_sec=1.5),
        )
        with pytest.raises(ValueError, match="cannot exceed"):
            _validate_config(config)

    def test_negative_timer_rejected(self):
        config = replace(AppConfig(), timers=replace(TimerConfig(), success_return_sec=-1.0))
        with pytest.raises(ValueError, match="SUCCESS_RETURN_DELAY"):
            _validate_config(config)

    def test_empty_service_list_rejected(self):
        config = replace(AppConfig(), business=replace(BusinessConfig(), services="  "))
        with pytest.raises(ValueError, match="BUSINESS_SERVICES"):
            _validate_config(config)

    def test_zero_silence_limit_rejected(self):
        config = replace(AppConfig(), policy=replace(PolicyConfig(), silence_limit=0))
        with pytest.raises(ValueError, match="SILENCE_LIMIT"):
            _validate_config(config)


class TestDefaults:
    def test_latency_budget_defaults(self):
        latency = LatencyConfig()
        assert latency.intent_timeout_sec <= latency.turn_budget_sec

    def test_catalog_prices_and_durations(self):
        business = replace(
            BusinessConfig(), services="Haircut:45, Consultation", default_duration_minutes=50
        )
        organization = default_organization(replace(AppConfig(), business=business))
        haircut, consultation = organization.services
        assert (haircut.name, haircut.price) == ("Haircut", 45.0)
        assert (consultation.name, consultation.price) == ("Consultation", None)
        assert organization.duration_for("consultation", 15) == 50
        assert organization.duration_for("massage", 15) == 15


class TestEnvParsing:
    def test_safe_int_parsing(self):
        assert _safe_int("NONEXISTENT_VAR_12345", "42") == 42

    def test_safe_int_invalid(self, monkeypatch):
        monkeypatch.setenv("TEST_BAD_INT", "three")
        with pytest.raises(ValueError, match="TEST_BAD_INT"):
            _safe_int("TEST_BAD_INT", "3")

    def test_safe_float_parsing(self):
        assert _safe_float("NONEXISTENT_VAR_12345", "3.14") == pytest.approx(3.14)

    def test_safe_float_invalid(self, monkeypatch):
        monkeypatch.setenv("TEST_BAD_FLOAT", "fast")
        with pytest.raises(ValueError, match="TEST_BAD_FLOAT"):
            _safe_float("TEST_BAD_FLOAT", "0.8")

    @pytest.mark.parametrize("raw,expected", [
        ("true", True), ("1", True), ("Yes", True), ("on", True),
        ("false", False), ("0", False), ("no", False), ("OFF", False),
    ])
    def test_safe_bool_values(self, monkeypatch, raw, expected):
        monkeypatch.setenv("TEST_FLAG", raw)
        assert _safe_bool("TEST_FLAG", "true") is expected

    def test_safe_bool_invalid(self, monkeypatch):
        monkeypatch.setenv("TEST_FLAG", "maybe")
        with pytest.raises(ValueError, match="TEST_FLAG"):
            _safe_bool("TEST_FLAG", "true")
