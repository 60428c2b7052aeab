import pytest

from core import config as config_module


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    config_module.get_settings.cache_clear()
    yield
    config_module.get_settings.cache_clear()


def test_defaults_load():
    settings = config_module.get_settings()
    assert settings.app_name == "MarketCast"
    assert settings.forecast_lookback_observations == 4
    assert settings.oracle_time_budget_seconds == 2.0
    assert settings.oracle_excluded_markets == []


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("ORACLE_TOP_N", "5")
    monkeypatch.setenv("ORACLE_EXCLUDED_MARKETS", '["Mor Lam"]')

    settings = config_module.get_settings()
    assert settings.oracle_top_n == 5
    assert settings.oracle_excluded_markets == ["Mor Lam"]


def test_non_positive_time_budget_is_blocked(monkeypatch):
    monkeypatch.setenv("ORACLE_TIME_BUDGET_SECONDS", "0")

    with pytest.raises(ValueError, match="oracle_time_budget_seconds"):
        config_module.get_settings()


def test_inverted_confidence_bounds_are_blocked(monkeypatch):
    monkeypatch.setenv("FORECAST_CONFIDENCE_FLOOR", "90")
    monkeypatch.setenv("FORECAST_CONFIDENCE_CEILING", "60")

    with pytest.raises(ValueError, match="confidence bounds"):
        config_module.get_settings()


def test_drop_threshold_must_be_a_fraction(monkeypatch):
    monkeypatch.setenv("CANNIBAL_DROP_THRESHOLD", "20")

    with pytest.raises(ValueError, match="cannibal_drop_threshold"):
        config_module.get_settings()


def test_ewma_alpha_must_be_a_fraction(monkeypatch):
    monkeypatch.setenv("LEARNING_EWMA_ALPHA", "0")

    with pytest.raises(ValueError, match="learning_ewma_alpha"):
        config_module.get_settings()


def test_seasonality_window_covers_minimum(monkeypatch):
    monkeypatch.setenv("SEASONALITY_WINDOW_DAYS", "3")

    with pytest.raises(ValueError, match="seasonality_window_days"):
        config_module.get_settings()
