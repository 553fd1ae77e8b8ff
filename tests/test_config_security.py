from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.modules.booking.policy import BookingPolicy


def test_default_secret_key_allowed_in_development() -> None:
    settings = Settings(_env_file=None, app_env="development", secret_key="change-me")
    assert settings.secret_key == "change-me"


def test_default_secret_key_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, app_env="production", secret_key="change-me")


def test_placeholder_secret_key_prefix_rejected_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(
            _env_file=None,
            app_env="production",
            secret_key="change-me-in-production",
            job_lock_allow_in_memory_in_production=True,
        )


def test_in_memory_job_lock_requires_explicit_ack_in_production() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, app_env="production", secret_key="super-secure-value")


def test_custom_secret_key_allowed_in_production_with_explicit_ack() -> None:
    settings = Settings(
        _env_file=None,
        app_env="production",
        secret_key="super-secure-value",
        job_lock_allow_in_memory_in_production=True,
    )
    assert settings.secret_key == "super-secure-value"


def test_redis_backends_require_url() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, job_lock_backend="REDIS")
    with pytest.raises(ValidationError):
        Settings(_env_file=None, cache_backend="redis")

    settings = Settings(_env_file=None, job_lock_backend=" Redis ", redis_url="redis://localhost:6379/0")
    assert settings.job_lock_backend == "redis"


def test_reminder_leads_and_horizons_are_consistent() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, reminder_1h_lead_minutes=24 * 60)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, default_publish_horizon_days=400)
    with pytest.raises(ValidationError):
        Settings(_env_file=None, late_cancel_refund_percent=120)


def test_booking_policy_reads_settings() -> None:
    settings = Settings(
        _env_file=None,
        no_show_policy="ANY_ABSENT",
        mentor_decision_window_hours=12,
        late_cancel_refund_percent=50,
        default_currency="usd",
    )

    policy = BookingPolicy.from_settings(settings)

    assert policy.no_show_policy == "any_absent"
    assert policy.mentor_decision_window.total_seconds() == 12 * 3600
    assert policy.late_cancel_refund_percent == 50
    assert settings.default_currency == "USD"
