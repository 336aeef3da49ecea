"""
Tests for KAIWA_* settings validation.
"""

import pytest
from pydantic import ValidationError

from kaiwa.settings import Settings, clear_settings_cache, get_settings


def test_local_defaults():
    settings = Settings()

    assert settings.env == "local"
    assert settings.recommendation_limit == 10
    assert settings.recommendation_history_window == 20
    assert 0 <= settings.assessment_temperature <= settings.reply_temperature <= 1


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("KAIWA_RECOMMENDATION_LIMIT", "3")
    monkeypatch.setenv("KAIWA_EVALUATOR_MODEL", "claude-test")
    clear_settings_cache()

    settings = get_settings()

    assert settings.recommendation_limit == 3
    assert settings.evaluator_model == "claude-test"
    assert get_settings() is settings


def test_deployed_env_collects_every_error():
    with pytest.raises(ValidationError) as exc_info:
        Settings(env="staging", database_url="postgresql+asyncpg://u:p@localhost/kaiwa")

    message = str(exc_info.value)
    assert "KAIWA_DATABASE_URL must not point to localhost" in message
    assert "KAIWA_ANTHROPIC_API_KEY is required" in message


def test_prod_rejects_debug():
    with pytest.raises(ValidationError, match="KAIWA_DEBUG must be false in prod"):
        Settings(
            env="prod",
            database_url="postgresql+asyncpg://u:p@db.internal/kaiwa",
            anthropic_api_key="sk-test",
            debug=True,
        )


def test_prod_accepts_complete_config():
    settings = Settings(
        env="prod",
        database_url="postgresql+asyncpg://u:p@db.internal/kaiwa",
        anthropic_api_key="sk-test",
    )

    assert settings.env == "prod"


@pytest.mark.parametrize(
    "field,value,error",
    [
        ("reply_temperature", 1.5, "KAIWA_REPLY_TEMPERATURE"),
        ("assessment_temperature", -0.1, "KAIWA_ASSESSMENT_TEMPERATURE"),
        ("recommendation_limit", 0, "KAIWA_RECOMMENDATION_LIMIT"),
    ],
)
def test_out_of_range_values(field, value, error):
    with pytest.raises(ValidationError, match=error):
        Settings(**{field: value})
