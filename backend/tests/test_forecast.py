"""
Tests for the Forecast Generator.

Covers:
  - Same-weekday observation selection (lookback, cut-off, market filter)
  - Quantity arithmetic with each multiplier
  - Confidence penalties and clamping
  - Insight tags
  - No-history soft failure and determinism
  - Opt-in calendar factors and newsvendor breakdown
"""

from datetime import date, timedelta

import pytest

from ml.forecast import ForecastInsight, generate_forecast, to_forecast_record

MONDAYS = [date(2026, 1, 5), date(2026, 1, 12), date(2026, 1, 19), date(2026, 1, 26)]
TARGET_MONDAY = date(2026, 2, 2)


@pytest.fixture
def flat_mondays(make_sale):
    return [make_sale(d, 10) for d in MONDAYS]


# ── Observation Selection ──────────────────────────────────────────────


class TestObservationSelection:
    def test_uses_four_most_recent(self, make_sale, flat_mondays):
        older = make_sale(date(2025, 12, 29), 100)
        result = generate_forecast("croissant", TARGET_MONDAY, [older, *flat_mondays], weather="Cloudy")
        assert result.breakdown["observations"] == 4
        assert result.breakdown["base_average"] == 10
        assert result.quantity == 11

    def test_ignores_other_weekdays_and_later_dates(self, make_sale, flat_mondays):
        noise = [
            make_sale(date(2026, 1, 27), 500),  # Tuesday
            make_sale(TARGET_MONDAY, 500),  # target day itself
            make_sale(TARGET_MONDAY + timedelta(days=7), 500),  # future Monday
        ]
        result = generate_forecast("croissant", TARGET_MONDAY, [*noise, *flat_mondays], weather="Cloudy")
        assert result.quantity == 11

    def test_ignores_other_products(self, make_sale, flat_mondays):
        other = [make_sale(d, 99, product_id="baguette") for d in MONDAYS]
        result = generate_forecast("croissant", TARGET_MONDAY, [*other, *flat_mondays], weather="Cloudy")
        assert result.quantity == 11

    def test_matches_variant_id(self, make_sale):
        logs = [make_sale(d, 10, variant_id="croissant-choc", variant_name="Chocolate") for d in MONDAYS]
        result = generate_forecast("croissant-choc", TARGET_MONDAY, logs, weather="Cloudy")
        assert result.quantity == 11

    def test_market_filter(self, make_sale, daily_reports):
        night = [make_sale(d, 10, market_id="mkt-night", market_name="Night Market") for d in MONDAYS[1:]]
        central = [make_sale(d, 100) for d in MONDAYS]
        result = generate_forecast(
            "croissant",
            TARGET_MONDAY,
            [*central, *night],
            weather="Cloudy",
            market_id="mkt-night",
            daily_reports=daily_reports,
        )
        # 10 × 1.5 market × 1.05 = 15.75
        assert result.quantity == 16
        assert result.breakdown["market_multiplier"] == 1.5
        assert ForecastInsight.STRONG_MARKET in result.insights


# ── Quantity ───────────────────────────────────────────────────────────


class TestQuantity:
    def test_default_weather_is_sunny(self, flat_mondays):
        """10 × 1.15 × 1.05 = 12.075 → 13."""
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays)
        assert result.breakdown["weather_multiplier"] == 1.15
        assert result.quantity == 13

    def test_upward_trend(self, make_sale):
        logs = [make_sale(d, qty) for d, qty in zip(MONDAYS, [10, 20, 30, 40])]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Cloudy")
        # 25 × 1.10 × 1.05 = 28.875
        assert result.quantity == 29
        assert result.insights == [ForecastInsight.TREND_UP]

    def test_downward_trend(self, make_sale):
        logs = [make_sale(d, qty) for d, qty in zip(MONDAYS, [40, 30, 20, 10])]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Cloudy")
        assert result.breakdown["trend_multiplier"] == 0.90
        assert ForecastInsight.TREND_DOWN in result.insights

    def test_weekend_lift(self, make_sale):
        saturdays = [date(2026, 1, 10), date(2026, 1, 17), date(2026, 1, 24)]
        logs = [make_sale(d, 20) for d in saturdays]
        result = generate_forecast("croissant", date(2026, 1, 31), logs, weather="Cloudy")
        # 20 × 1.25 × 1.05 = 26.25
        assert result.quantity == 27
        assert result.insights == [ForecastInsight.WEEKEND]

    def test_market_without_reports_is_neutral(self, make_sale):
        logs = [make_sale(d, 10) for d in MONDAYS]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Cloudy", market_id="mkt-central")
        assert result.breakdown["market_multiplier"] == 1.0
        assert result.quantity == 11

    def test_zero_sales_history(self, make_sale):
        logs = [make_sale(d, 0) for d in MONDAYS]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Cloudy")
        assert result.quantity == 0
        # CV is 1 for a zero mean
        assert result.confidence == 80


# ── Confidence ─────────────────────────────────────────────────────────


class TestConfidence:
    def test_clamped_to_ceiling(self, flat_mondays):
        assert generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy").confidence == 95

    def test_sparse_data_and_storm(self, make_sale):
        logs = [make_sale(d, 10) for d in MONDAYS[-2:]]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Storm")
        assert result.confidence == 55
        assert result.quantity == 5
        assert set(result.insights) == {ForecastInsight.ADVERSE_WEATHER, ForecastInsight.SPARSE_DATA}

    def test_clamped_to_floor(self, make_sale):
        logs = [make_sale(MONDAYS[2], 2), make_sale(MONDAYS[3], 20)]
        result = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Rainy")
        assert result.confidence == 50

    def test_windy_is_not_penalized(self, flat_mondays):
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Windy")
        assert result.confidence == 95
        assert ForecastInsight.ADVERSE_WEATHER not in result.insights


# ── No History / Determinism ───────────────────────────────────────────


class TestSoftFailure:
    def test_no_history(self):
        result = generate_forecast("croissant", TARGET_MONDAY, [])
        assert result.quantity == 0
        assert result.confidence == 0
        assert result.insights == [ForecastInsight.NO_HISTORY]

    def test_deterministic(self, make_sale):
        logs = [make_sale(d, qty) for d, qty in zip(MONDAYS, [12, 7, 15, 9])]
        first = generate_forecast("croissant", TARGET_MONDAY, logs, weather="Rain")
        second = generate_forecast("croissant", TARGET_MONDAY, list(reversed(logs)), weather="Rain")
        assert first == second
        assert isinstance(first.quantity, int)
        assert first.quantity >= 0
        assert 50 <= first.confidence <= 95


class TestForecastRecord:
    def test_freezes_result(self, flat_mondays):
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy")
        record = to_forecast_record(
            "croissant", TARGET_MONDAY, result, product_name="Croissant", market_id="mkt-central"
        )
        assert record.optimal_quantity == 11
        assert record.confidence_level == 95
        assert record.forecast_for_date == TARGET_MONDAY
        assert record.item_key == "croissant"


# ── Calendar Events / Newsvendor ───────────────────────────────────────


class TestCalendarEvents:
    def test_off_by_default(self, flat_mondays):
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy")
        assert result.quantity == 11
        assert result.breakdown["calendar_multiplier"] == 1.0
        assert ForecastInsight.CALENDAR_EVENT not in result.insights

    def test_payday_window(self, flat_mondays):
        """Feb 2 is in the payday window: 10 × 1.2 × 1.05 → 13."""
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy", calendar_events=True)
        assert result.breakdown["calendar_multiplier"] == pytest.approx(1.2)
        assert result.quantity == 13
        assert ForecastInsight.CALENDAR_EVENT in result.insights

    def test_festival_day(self, make_sale):
        """Songkran Monday: 10 × 0.4 × 1.05 → 5."""
        songkran = date(2026, 4, 13)
        logs = [make_sale(songkran - timedelta(weeks=w), 10) for w in range(1, 5)]
        result = generate_forecast("croissant", songkran, logs, weather="Cloudy", calendar_events=True)
        assert result.breakdown["calendar_multiplier"] == pytest.approx(0.4)
        assert result.quantity == 5


class TestNewsvendorBreakdown:
    def test_added_with_price_and_cost(self, flat_mondays):
        """Critical ratio 25 / 40; Poisson(10) CDF passes 0.625 at 11."""
        result = generate_forecast(
            "croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy", unit_price=40.0, unit_cost=15.0
        )
        assert result.breakdown["critical_ratio"] == pytest.approx(0.625)
        assert result.breakdown["newsvendor_quantity"] == 11
        assert result.quantity == 11

    def test_absent_without_economics(self, flat_mondays):
        result = generate_forecast("croissant", TARGET_MONDAY, flat_mondays, weather="Cloudy", unit_price=40.0)
        assert "newsvendor_quantity" not in result.breakdown
        assert "critical_ratio" not in result.breakdown
