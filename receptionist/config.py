"""
Centralized configuration with environment variable overrides.

Business defaults, confirmation thresholds, latency budgets and
auto-return timers all live here. Nothing is hardcoded in the state
machine or session logic.
"""

import logging
import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from receptionist.logging_context import configure_logging

load_dotenv()

logger = logging.getLogger(__name__)

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _safe_int(env_var: str, default: str) -> int:
    """Parse an integer from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return int(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid integer for {env_var}: {raw!r}"
        ) from None


def _safe_float(env_var: str, default: str) -> float:
    """Parse a float from an env var with a clear error on bad values."""
    raw = os.getenv(env_var, default)
    try:
        return float(raw)
    except (ValueError, TypeError):
        raise ValueError(
            f"Invalid float for {env_var}: {raw!r}"
        ) from None


def _safe_bool(env_var: str, default: str) -> bool:
    """Parse a boolean flag from an env var."""
    raw = os.getenv(env_var, default).strip().lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean for {env_var}: {raw!r}")


@dataclass(frozen=True)
class BusinessConfig:
    """Default organization used when a call arrives without its own context."""

    organization_id: str = os.getenv(
        "DEFAULT_ORG_ID", "00000000-0000-0000-0000-000000000001"
    )
    name: str = os.getenv("BUSINESS_NAME", "Riverside Studio")
    address: str = os.getenv("BUSINESS_ADDRESS", "120 Main Street, Springfield")
    services: str = os.getenv(
        "BUSINESS_SERVICES", "Haircut:45,Hair Styling:60,Consultation,Color Treatment:120"
    )
    timezone: str = os.getenv("BUSINESS_TIMEZONE", "America/New_York")
    location_mode: str = os.getenv("BUSINESS_LOCATION_MODE", "none")
    default_duration_minutes: int = _safe_int("DEFAULT_SERVICE_DURATION", "60")


@dataclass(frozen=True)
class PolicyConfig:
    """Confirmation and escalation thresholds."""

    confirmation_threshold: int = _safe_int("CONFIRMATION_THRESHOLD", "3")
    service_retry_limit: int = _safe_int("SERVICE_RETRY_LIMIT", "3")
    session_retry_ceiling: int = _safe_int("SESSION_RETRY_CEILING", "5")
    low_confidence_threshold: float = _safe_float("LOW_CONFIDENCE_THRESHOLD", "0.3")
    max_digression_depth: int = _safe_int("MAX_DIGRESSION_DEPTH", "5")
    silence_limit: int = _safe_int("SILENCE_LIMIT", "3")


@dataclass(frozen=True)
class LatencyConfig:
    """Per-call timeouts and the end-to-end turn budget."""

    intent_timeout_sec: float = _safe_float("INTENT_TIMEOUT", "0.8")
    integration_timeout_sec: float = _safe_float("INTEGRATION_TIMEOUT", "1.0")
    turn_budget_sec: float = _safe_float("TURN_BUDGET", "1.5")


@dataclass(frozen=True)
class TimerConfig:
    """Delays before resting states return on their own."""

    success_return_sec: float = _safe_float("SUCCESS_RETURN_DELAY", "5.0")
    callback_return_sec: float = _safe_float("CALLBACK_RETURN_DELAY", "5.0")
    fallback_return_sec: float = _safe_float("FALLBACK_RETURN_DELAY", "3.0")
    respond_return_sec: float = _safe_float("RESPOND_RETURN_DELAY", "0.1")
    digression_return_sec: float = _safe_float("DIGRESSION_RETURN_DELAY", "1.0")


@dataclass(frozen=True)
class FeatureConfig:
    """Enhanced conversation features that can be switched off per deployment."""

    digression_handling: bool = _safe_bool("FEATURE_DIGRESSION_HANDLING", "true")
    location_capture: bool = _safe_bool("FEATURE_LOCATION_CAPTURE", "true")


@dataclass(frozen=True)
class AppConfig:
    """Root configuration aggregating all sub-configs."""

    business: BusinessConfig = field(default_factory=BusinessConfig)
    policy: PolicyConfig = field(default_factory=PolicyConfig)
    latency: LatencyConfig = field(default_factory=LatencyConfig)
    timers: TimerConfig = field(default_factory=TimerConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")


def _validate_config(config: AppConfig) -> None:
    """Validate configuration values are within acceptable ranges."""
    policy = config.policy
    for name, value in [
        ("CONFIRMATION_THRESHOLD", policy.confirmation_threshold),
        ("SERVICE_RETRY_LIMIT", policy.service_retry_limit),
        ("SESSION_RETRY_CEILING", policy.session_retry_ceiling),
        ("MAX_DIGRESSION_DEPTH", policy.max_digression_depth),
        ("SILENCE_LIMIT", policy.silence_limit),
    ]:
        if value < 1:
            raise ValueError(f"{name} must be >= 1, got {value}")

    if not 0.0 <= policy.low_confidence_threshold <= 1.0:
        raise ValueError(
            "LOW_CONFIDENCE_THRESHOLD must be between 0.0 and 1.0, "
            f"got {policy.low_confidence_threshold}"
        )

    latency = config.latency
    for name, value in [
        ("INTENT_TIMEOUT", latency.intent_timeout_sec),
        ("INTEGRATION_TIMEOUT", latency.integration_timeout_sec),
        ("TURN_BUDGET", latency.turn_budget_sec),
    ]:
        if value <= 0:
            raise ValueError(f"{name} must be > 0, got {value}")
    if latency.intent_timeout_sec > latency.turn_budget_sec:
        raise ValueError(
            f"INTENT_TIMEOUT ({latency.intent_timeout_sec}) cannot exceed "
            f"TURN_BUDGET ({latency.turn_budget_sec})"
        )

    timers = config.timers
    for name, value in [
        ("SUCCESS_RETURN_DELAY", timers.success_return_sec),
        ("CALLBACK_RETURN_DELAY", timers.callback_return_sec),
        ("FALLBACK_RETURN_DELAY", timers.fallback_return_sec),
        ("RESPOND_RETURN_DELAY", timers.respond_return_sec),
        ("DIGRESSION_RETURN_DELAY", timers.digression_return_sec),
    ]:
        if value < 0:
            raise ValueError(f"{name} must be >= 0, got {value}")

    if config.business.default_duration_minutes < 1:
        raise ValueError(
            "DEFAULT_SERVICE_DURATION must be >= 1, "
            f"got {config.business.default_duration_minutes}"
        )
    if not config.business.services.strip():
        raise ValueError("BUSINESS_SERVICES must list at least one service")


def load_config() -> AppConfig:
    """Load and validate application configuration."""
    config = AppConfig()
    _validate_config(config)
    configure_logging(config.log_level)
    logger.info("Configuration loaded for '%s'", config.business.name)
    return config


# Singleton instance
settings = load_config()
