"""
Tests for Self-Learning bias correction.

Covers:
  - ForecastError extraction from reconciled records
  - EWMA bias, adaptive gain, weekday bias, uncensored sell-outs
  - Error patterns: mid-month, rainy weekends, weekdays
  - Smart adjustment combining bias, momentum and patterns
"""

from datetime import date

import pytest

from business.reconciliation import reconcile
from ml.self_learning import (
    CONDITION_MID_MONTH,
    CONDITION_RAIN_WEEKEND,
    CONDITION_WEEKDAY,
    ForecastError,
    apply_bias_correction,
    calculate_bias_correction,
    calculate_learning_stats,
    detect_error_patterns,
    forecast_errors,
    get_smart_adjustment,
)


def _error(day: date, forecast: int, actual: int, product_id="croissant", market_id="mkt-central", weather=None):
    return ForecastError(
        product_id=product_id,
        market_id=market_id,
        forecast_date=day,
        weekday=day.weekday(),
        day_of_month=day.day,
        forecast_qty=forecast,
        actual_qty=actual,
        error=forecast - actual,
        error_percent=(forecast - actual) / actual * 100 if actual else 0.0,
        is_payday=False,
        sold_out=actual >= forecast * 0.95,
        weather=weather,
    )


@pytest.fixture
def steady_over_production():
    """Tue-Fri, 12 made and 10 sold every day."""
    return [_error(date(2026, 1, d), 12, 10) for d in (6, 7, 8, 9)]


@pytest.fixture
def rising_demand():
    """Mon-Fri, 20 made while sales climb 10 → 18."""
    return [_error(date(2026, 1, 5 + i), 20, 10 + 2 * i) for i in range(5)]


@pytest.fixture
def rainy_weekend():
    """Sunny weekdays sell 10, the rainy weekend sells 5."""
    weekdays = [_error(date(2026, 1, d), 12, 10, weather="Sunny") for d in (5, 6, 7)]
    weekend = [_error(date(2026, 1, d), 12, 5, weather="Rain") for d in (10, 11)]
    return weekdays + weekend


# ── Errors ─────────────────────────────────────────────────────────────


class TestForecastErrors:
    def test_errors_from_reconciled_records(self, catalog, make_forecast, make_sale):
        forecasts = [
            make_forecast(date(2026, 1, 5), 12),
            make_forecast(date(2026, 1, 6), 10),
            make_forecast(date(2026, 1, 7), 10),
        ]
        sales = [make_sale(date(2026, 1, 5), 10), make_sale(date(2026, 1, 6), 10)]
        records = reconcile(forecasts, sales, catalog).records

        errors = forecast_errors(records, {date(2026, 1, 5): "Rain"})

        assert len(errors) == 2  # Jan 7 is still pending
        first, second = errors
        assert first.error == 2
        assert first.error_percent == pytest.approx(20.0)
        assert first.is_payday is True
        assert first.sold_out is False
        assert first.weather == "Rain"
        assert second.sold_out is True
        assert second.weather is None


# ── Bias Correction ────────────────────────────────────────────────────


class TestBiasCorrection:
    def test_needs_three_errors(self, steady_over_production):
        assert calculate_bias_correction(steady_over_production[:2], "croissant") is None

    def test_steady_bias(self, steady_over_production):
        bias = calculate_bias_correction(steady_over_production, "croissant")
        assert bias.avg_bias == pytest.approx(2.0)
        assert bias.exponential_bias == pytest.approx(2.0)
        # Three errors in a row on the same side
        assert bias.adaptive_gain == pytest.approx(1.3)
        assert bias.momentum_slope == pytest.approx(0.0, abs=1e-9)
        assert bias.weekday_bias == {}
        assert bias.volatility == 0.0
        assert bias.confidence == 40

    def test_apply_steady_bias(self, steady_over_production):
        """12 - (2 + 2) / 2 × 1.3 = 9.4."""
        bias = calculate_bias_correction(steady_over_production, "croissant")
        result = apply_bias_correction(12, bias, weekday=0)
        assert result.corrected_forecast == 9
        assert result.correction == pytest.approx(2.6)
        assert result.source == "adaptive-1.3x"

    def test_sold_out_days_are_uncensored(self):
        """Selling all 10 implies demand of ceil(12.5) = 13."""
        errors = [_error(date(2026, 1, d), 10, 10) for d in (6, 7, 8)]
        bias = calculate_bias_correction(errors, "croissant")
        assert bias.exponential_bias == pytest.approx(-3.0)
        result = apply_bias_correction(10, bias)
        assert result.corrected_forecast == 14

    def test_weekday_bias(self):
        """Mondays over by 4, Tuesdays over by 1."""
        errors = [
            _error(date(2026, 1, 5), 14, 10),
            _error(date(2026, 1, 6), 11, 10),
            _error(date(2026, 1, 12), 14, 10),
            _error(date(2026, 1, 13), 11, 10),
        ]
        bias = calculate_bias_correction(errors, "croissant")
        assert bias.weekday_bias == {0: pytest.approx(4.0), 1: pytest.approx(1.0)}
        assert bias.exponential_bias == pytest.approx(2.659)
        # (4 + 2.659) / 2 × 1.3 = 4.33
        assert apply_bias_correction(14, bias, weekday=0).corrected_forecast == 10
        # No Thursday history: EWMA only, 2.659 × 1.3 = 3.46
        assert apply_bias_correction(14, bias, weekday=3).corrected_forecast == 11

    def test_market_filter(self, steady_over_production):
        other = [_error(date(2026, 1, d), 30, 10, market_id="mkt-night") for d in (6, 7, 8)]
        bias = calculate_bias_correction(steady_over_production + other, "croissant", "mkt-central")
        assert bias.avg_bias == pytest.approx(2.0)
        assert calculate_bias_correction(steady_over_production, "croissant", "mkt-night") is None

    def test_no_profile_rounds_raw(self):
        result = apply_bias_correction(7.5, None)
        assert result.corrected_forecast == 8
        assert result.source == "none"


# ── Error Patterns ─────────────────────────────────────────────────────


class TestErrorPatterns:
    def test_needs_five_errors(self, steady_over_production):
        assert detect_error_patterns(steady_over_production, "croissant") == []

    def test_mid_month_bump(self):
        errors = [_error(date(2026, 1, d), 25, 10) for d in (5, 6, 7)]
        errors += [_error(date(2026, 1, d), 25, 20) for d in (14, 15)]
        patterns = detect_error_patterns(errors, "croissant")
        assert [p.condition for p in patterns] == [CONDITION_MID_MONTH]
        # 20 / 14
        assert patterns[0].factor == pytest.approx(1.4286, rel=1e-3)
        assert patterns[0].description == "Mid-month (14th-16th) sales up 43%"

    def test_rainy_weekend(self, rainy_weekend):
        patterns = detect_error_patterns(rainy_weekend, "croissant")
        assert [p.condition for p in patterns] == [CONDITION_RAIN_WEEKEND]
        assert patterns[0].factor == pytest.approx(0.625)
        assert patterns[0].confidence == 90

    def test_most_confident_first(self):
        """Three Mondays at 20, mid-month days at 30: overall 24."""
        errors = [_error(date(2026, 1, d), 25, 20) for d in (5, 12, 19)]
        errors += [_error(date(2026, 1, d), 35, 30) for d in (14, 15)]
        patterns = detect_error_patterns(errors, "croissant")
        assert [p.condition for p in patterns] == [CONDITION_MID_MONTH, CONDITION_WEEKDAY]
        monday = patterns[1]
        assert monday.weekday == 0
        assert monday.factor == pytest.approx(20 / 24)
        assert monday.confidence == 45
        assert monday.description == "Monday sells less (17%)"


# ── Stats / Smart Adjustment ───────────────────────────────────────────


class TestLearningStats:
    def test_stats(self, steady_over_production):
        stats = calculate_learning_stats(steady_over_production, "croissant")
        assert stats.total_forecasts == 4
        assert stats.avg_accuracy == pytest.approx(80.0)
        assert stats.avg_bias == pytest.approx(2.0)
        assert stats.improvement_trend == pytest.approx(0.0)
        assert stats.top_patterns == []

    def test_empty(self):
        assert calculate_learning_stats([]).total_forecasts == 0


class TestSmartAdjustment:
    def test_no_history_keeps_raw(self):
        result = get_smart_adjustment(12.4, "croissant", date(2026, 2, 2), [])
        assert result.adjusted_forecast == 12
        assert result.adjustments == []
        assert result.confidence == 0.0

    def test_bias_and_momentum(self, rising_demand):
        """EWMA 5.55 × 1.4 takes 20 down to 12; a +2/day trend adds 2 back."""
        result = get_smart_adjustment(20, "croissant", date(2026, 1, 12), rising_demand)
        assert result.adjusted_forecast == 14
        assert [a.source for a in result.adjustments] == [
            "bias-correction (adaptive-1.4x)",
            "momentum (upward)",
        ]
        assert result.adjustments[0].delta == pytest.approx(-7.7647, rel=1e-3)
        assert result.adjustments[1].delta == 2
        assert result.confidence == pytest.approx(65.0)

    def test_rain_weekend_pattern_applies_on_rainy_weekend(self, rainy_weekend):
        saturday = date(2026, 1, 17)
        rainy = get_smart_adjustment(8, "croissant", saturday, rainy_weekend, weather="Rain")
        sunny = get_smart_adjustment(8, "croissant", saturday, rainy_weekend, weather="Sunny")

        assert [a.source for a in rainy.adjustments][-1] == "Rainy weekends sell less than usual"
        assert len(sunny.adjustments) == 2
        # 8 → 2 after bias, → 1 after momentum, 1 × 0.625 rounds back to 1
        assert rainy.adjusted_forecast == 1
        assert sunny.adjusted_forecast == 1
