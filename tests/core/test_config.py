# tests/core/test_config.py
from uiflow.core.config import Settings

def test_defaults():
    settings = Settings(_env_file=None)
    assert settings.APP_ENV == "production"
    assert settings.is_development is False
    assert settings.EXPRESSION_CACHE_SIZE == 512
    assert settings.DIVISION_BY_ZERO_SENTINEL is None
    assert settings.FOREACH_MAX_CONCURRENCY == 10
    assert settings.ACTION_DEFAULT_TIMEOUT_MS is None
    assert settings.RETRY_MAX_DELAY_MS == 30000
    assert settings.RETRY_JITTER_RATIO == 0.0

def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("APP_ENV", "development")
    monkeypatch.setenv("FOREACH_MAX_CONCURRENCY", "4")
    monkeypatch.setenv("VALIDATION_DEBOUNCE_MS", "250")

    settings = Settings(_env_file=None)

    assert settings.is_development is True
    assert settings.FOREACH_MAX_CONCURRENCY == 4
    assert settings.VALIDATION_DEBOUNCE_MS == 250
