"""
MarketCast Engine Configuration

Uses pydantic-settings for type-safe environment variable loading.
Every analytics threshold lives here so operators can tune the engine
per shop without touching code.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

# Find .env file: check CWD first, then parent (project root)
_env_file = Path(".env")
if not _env_file.exists():
    _parent_env = Path(__file__).resolve().parent.parent.parent / ".env"
    if _parent_env.exists():
        _env_file = _parent_env


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # App
    app_name: str = "MarketCast"
    app_version: str = "1.0.0"
    app_env: str = "local"

    # ── Forecast Generator ───────────────────────────────────────────
    forecast_lookback_observations: int = 4
    forecast_safety_buffer: float = 0.05
    forecast_weekend_multiplier: float = 1.25
    forecast_default_weather: str = "Sunny"
    forecast_confidence_floor: int = 50
    forecast_confidence_ceiling: int = 95

    # ── Pattern Miner ────────────────────────────────────────────────
    oracle_time_budget_seconds: float = 2.0
    oracle_min_history: int = 10
    oracle_min_occurrence: int = 3
    oracle_min_abs_lift: float = 0.25
    oracle_min_confidence: float = 50.0
    oracle_top_n: int = 3
    # Non-recurring event markets (festivals, fairs) skew the baseline
    oracle_excluded_markets: list[str] = []

    # ── Combo / Cannibalism ──────────────────────────────────────────
    combo_min_overlap_days: int = 5
    combo_min_abs_correlation: float = 0.5
    cannibal_min_days_before: int = 7
    cannibal_min_days_after: int = 5
    cannibal_drop_threshold: float = 0.20
    affinity_top_n: int = 3

    # ── Accuracy Reconciliation ──────────────────────────────────────
    accuracy_alert_threshold: float = 60.0
    accuracy_bias_alert_pct: float = 20.0
    accuracy_high_priority_bias_pct: float = 30.0
    accuracy_min_samples: int = 2

    # ── Self-Learning Bias Correction ────────────────────────────────
    learning_min_errors: int = 3
    learning_ewma_alpha: float = 0.3
    # Sold-out days hide demand: assume this share went unserved
    learning_stockout_uplift: float = 0.25
    learning_min_bias_confidence: int = 20

    # ── Auto-Seasonality ─────────────────────────────────────────────
    seasonality_window_days: int = 30
    seasonality_min_history: int = 10
    seasonality_min_window_days: int = 5

    # ── Calendar Events ──────────────────────────────────────────────
    calendar_near_event_days: int = 2
    calendar_near_event_share: float = 0.3
    calendar_payday_factor: float = 1.20

    model_config = {
        "env_file": str(_env_file),
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    settings = Settings()
    _enforce_engine_guardrails(settings)
    return settings


def _enforce_engine_guardrails(settings: Settings) -> None:
    if settings.oracle_time_budget_seconds <= 0:
        raise ValueError("oracle_time_budget_seconds must be positive")
    if settings.forecast_lookback_observations < 1:
        raise ValueError("forecast_lookback_observations must be at least 1")
    if settings.forecast_safety_buffer < 0:
        raise ValueError("forecast_safety_buffer cannot be negative")
    if not 0 <= settings.forecast_confidence_floor <= settings.forecast_confidence_ceiling <= 100:
        raise ValueError("Forecast confidence bounds must satisfy 0 <= floor <= ceiling <= 100")
    if settings.oracle_min_occurrence < 1 or settings.oracle_min_history < 1:
        raise ValueError("Oracle minimum history and occurrence must be at least 1")
    if not 0 < settings.cannibal_drop_threshold < 1:
        raise ValueError("cannibal_drop_threshold must be between 0 and 1")
    if not 0 < settings.learning_ewma_alpha <= 1:
        raise ValueError("learning_ewma_alpha must be in (0, 1]")
    if settings.seasonality_window_days < settings.seasonality_min_window_days:
        raise ValueError("seasonality_window_days cannot be shorter than seasonality_min_window_days")
