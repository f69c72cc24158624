import pytest

from agentsmith.config import get_settings, validate_settings_for_env


def _base_prod_env() -> dict[str, str]:
    return {
        "APP_ENV": "prod",
        "APP_DB": "/srv/agentsmith/app.db",
        "PLANNER_BASE_URL": "https://api.openai.com/v1",
        "PLANNER_API_KEY": "sk-prod",
        "PLANNER_MODEL": "gpt-4o",
        "CLARIFIER_MODEL": "gpt-4o-mini",
        "WEB_AUTH_SETUP_PASSWORD": "prod-password",
        "CAPABILITY_VOCABULARY": "google-gmail,slack",
    }


def test_validate_settings_prod_missing_required(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(_base_prod_env()):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("APP_ENV", "prod")

    get_settings.cache_clear()
    try:
        settings = get_settings()
        with pytest.raises(ValueError, match="PLANNER_API_KEY"):
            validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_validate_settings_prod_accepts_full_required_set(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for key, value in _base_prod_env().items():
        monkeypatch.setenv(key, value)

    get_settings.cache_clear()
    try:
        settings = get_settings()
        validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_validate_settings_prod_requires_absolute_db_path(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    for key, value in _base_prod_env().items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("APP_DB", "relative/app.db")

    get_settings.cache_clear()
    try:
        settings = get_settings()
        with pytest.raises(ValueError, match="APP_DB"):
            validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_validate_settings_dev_skips_strict_checks(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("APP_ENV", "dev")
    monkeypatch.delenv("PLANNER_API_KEY", raising=False)

    get_settings.cache_clear()
    try:
        settings = get_settings()
        validate_settings_for_env(settings)
    finally:
        get_settings.cache_clear()


def test_capability_names_are_trimmed(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CAPABILITY_VOCABULARY", " google-gmail , ,slack ")

    get_settings.cache_clear()
    try:
        assert get_settings().capability_names() == ["google-gmail", "slack"]
    finally:
        get_settings.cache_clear()
