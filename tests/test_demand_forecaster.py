"""Demand Forecaster unit tests."""

from datetime import date, timedelta

import pytest

from inventory_network.exceptions import EmptyHistoryError, ForecastError, InsufficientDataError
from inventory_network.models import DemandPoint, ForecastAlgorithm, ForecastPeriod, Trend
from inventory_network.services import DemandForecaster
from inventory_network.services.demand_forecaster import (
    analyze_trend,
    calculate_mae,
    calculate_mape,
    calculate_r2,
    calculate_rmse,
    compare_algorithms,
    detect_seasonality,
)

from conftest import NOW

START = date(2024, 1, 1)
WEEKLY = ([10] * 5 + [30] * 2) * 4


def series(*quantities):
    return [DemandPoint(START + timedelta(days=i), q) for i, q in enumerate(quantities)]


@pytest.fixture
def forecaster():
    return DemandForecaster(clock=lambda: NOW)


class TestMovingAverage:
    """Windowed mean with a 95% band."""

    def test_flat_history(self, forecaster):
        """Seven days of 20: prediction 20, zero-width band."""
        points = forecaster.moving_average(series(*[20] * 7))
        assert len(points) == 7
        for point in points:
            assert point.predicted_demand == 20
            assert point.upper_bound == point.lower_bound == 20
            assert point.confidence == 0.70

    def test_uses_latest_window(self, forecaster):
        points = forecaster.moving_average(series(100, 100, 2, 4), horizon=1, window_size=2)
        assert points[0].predicted_demand == 3
        assert points[0].upper_bound == pytest.approx(3 + 1.96, abs=0.01)
        assert points[0].lower_bound == pytest.approx(3 - 1.96, abs=0.01)

    def test_lower_bound_clamped(self, forecaster):
        points = forecaster.moving_average(series(0, 10, 0, 10), horizon=1, window_size=4)
        assert points[0].lower_bound == 0

    def test_dates_follow_today(self, forecaster):
        points = forecaster.moving_average(series(*[5] * 7), horizon=3)
        assert [p.date for p in points] == [NOW.date() + timedelta(days=i) for i in (1, 2, 3)]

    def test_insufficient_data(self, forecaster):
        with pytest.raises(InsufficientDataError):
            forecaster.moving_average(series(1, 2, 3), window_size=7)

    def test_bad_horizon(self, forecaster):
        with pytest.raises(ValueError):
            forecaster.moving_average(series(*[5] * 7), horizon=0)


class TestExponentialSmoothing:
    """Smoothing seeded with the first observation."""

    def test_recursion(self, forecaster):
        points = forecaster.exponential_smoothing(series(10, 20), horizon=1, alpha=0.5)
        # S = 0.5*20 + 0.5*10 = 15; one-step error |20 - 10| = 10
        assert points[0].predicted_demand == 15
        assert points[0].upper_bound == 30
        assert points[0].lower_bound == 0
        assert points[0].confidence == 0.75

    def test_single_point(self, forecaster):
        points = forecaster.exponential_smoothing(series(12), horizon=2)
        assert [(p.predicted_demand, p.lower_bound, p.upper_bound) for p in points] == [(12, 12, 12)] * 2

    def test_empty_history(self, forecaster):
        with pytest.raises(EmptyHistoryError):
            forecaster.exponential_smoothing([])

    @pytest.mark.parametrize("alpha", [0, -0.1, 1.5])
    def test_bad_alpha(self, forecaster, alpha):
        with pytest.raises(ValueError):
            forecaster.exponential_smoothing(series(1, 2), alpha=alpha)


class TestHoltSmoothing:
    """Level plus trend."""

    def test_follows_linear_trend(self, forecaster):
        points = forecaster.holt_smoothing(series(10, 12, 14, 16, 18), horizon=3)
        assert [p.predicted_demand for p in points] == [20, 22, 24]
        assert points[0].confidence == 0.95

    def test_band_from_history_spread(self, forecaster):
        points = forecaster.holt_smoothing(series(10, 12, 14, 16, 18), horizon=1)
        # Population std-dev of the history is sqrt(8)
        margin = 1.96 * 8 ** 0.5
        assert points[0].upper_bound == pytest.approx(20 + margin, abs=0.01)
        assert points[0].lower_bound == pytest.approx(20 - margin, abs=0.01)

    def test_single_point_is_flat(self, forecaster):
        points = forecaster.holt_smoothing(series(7), horizon=2)
        assert [(p.predicted_demand, p.lower_bound, p.upper_bound) for p in points] == [(7, 7, 7)] * 2

    def test_falling_demand_stops_at_zero(self, forecaster):
        points = forecaster.holt_smoothing(series(30, 20, 10), horizon=4)
        assert points[-1].predicted_demand == 0

    @pytest.mark.parametrize("beta", [0, 1.2])
    def test_bad_beta(self, forecaster, beta):
        with pytest.raises(ValueError):
            forecaster.holt_smoothing(series(1, 2), beta=beta)

    def test_empty_history(self, forecaster):
        with pytest.raises(EmptyHistoryError):
            forecaster.holt_smoothing([])


class TestLinearRegression:
    """Least-squares line extended past the history."""

    def test_extends_the_line(self, forecaster):
        points = forecaster.linear_regression(series(2, 4, 6, 8), horizon=2)
        assert [p.predicted_demand for p in points] == [10, 12]

    def test_falling_line_clamped(self, forecaster):
        points = forecaster.linear_regression(series(9, 6, 3), horizon=2)
        assert [(p.predicted_demand, p.lower_bound) for p in points] == [(0, 0), (0, 0)]

    def test_single_point(self, forecaster):
        points = forecaster.linear_regression(series(5), horizon=3)
        assert [p.predicted_demand for p in points] == [5, 5, 5]

    def test_empty_history(self, forecaster):
        with pytest.raises(EmptyHistoryError):
            forecaster.linear_regression([])


class TestSeasonality:
    """Cycle detection and seasonal forecasts."""

    def test_weekly_cycle_detected(self):
        seasonality = detect_seasonality(series(*WEEKLY))
        assert seasonality.detected is True
        assert seasonality.period == 7
        assert seasonality.strength == pytest.approx(0.75)
        assert seasonality.factors[0] == pytest.approx(10 / (110 / 7))
        assert seasonality.factors[6] == pytest.approx(30 / (110 / 7))

    def test_flat_history_has_no_cycle(self):
        assert detect_seasonality(series(*[8] * 28)).detected is False

    def test_short_history_has_no_cycle(self):
        assert detect_seasonality(series(*WEEKLY[:13])).detected is False

    def test_forecast_repeats_the_cycle(self, forecaster):
        points = forecaster.seasonal_decomposition(series(*WEEKLY), horizon=7)
        assert [p.predicted_demand for p in points] == [10, 10, 10, 10, 10, 30, 30]

    def test_given_season_length(self, forecaster):
        points = forecaster.seasonal_decomposition(series(*WEEKLY), horizon=7, season_length=7)
        assert [p.predicted_demand for p in points] == [10, 10, 10, 10, 10, 30, 30]

    def test_short_history_uses_last_week_mean(self, forecaster):
        points = forecaster.seasonal_decomposition(series(*([4] * 6 + [11])), horizon=2)
        assert [p.predicted_demand for p in points] == [5, 5]

    def test_bad_season_length(self, forecaster):
        with pytest.raises(ValueError):
            forecaster.seasonal_decomposition(series(*WEEKLY), season_length=1)


class TestCompareAlgorithms:
    """Hold-out scoring of every model."""

    def test_linear_series(self):
        comparisons = compare_algorithms(series(*range(2, 21, 2)))
        by_algorithm = {c.algorithm: c for c in comparisons}

        assert list(by_algorithm) == [
            ForecastAlgorithm.MOVING_AVERAGE,
            ForecastAlgorithm.EXPONENTIAL_SMOOTHING,
            ForecastAlgorithm.HOLT,
            ForecastAlgorithm.LINEAR_REGRESSION,
            ForecastAlgorithm.SEASONAL,
        ]
        assert by_algorithm[ForecastAlgorithm.LINEAR_REGRESSION].mape == 0
        assert by_algorithm[ForecastAlgorithm.LINEAR_REGRESSION].r2 == 1.0
        assert by_algorithm[ForecastAlgorithm.MOVING_AVERAGE].mape > 0
        # Holt and the line tie on a straight series; the first listed wins
        assert [c.algorithm for c in comparisons if c.recommended] == [ForecastAlgorithm.HOLT]

    def test_short_history(self):
        assert compare_algorithms(series(1, 2, 3, 4, 5, 6)) == []


class TestBounds:
    """lower <= predicted <= upper and lower >= 0 for every point."""

    @pytest.mark.parametrize("history", [
        [0, 0, 0, 0, 0, 0, 0],
        [1, 50, 3, 80, 2, 0, 40, 7],
        [5.5, 6.25, 5.75, 6.0, 5.9, 6.1, 6.3],
        [1000, 1, 1000, 1, 1000, 1, 1000],
    ])
    def test_bounds_hold(self, forecaster, history):
        h = series(*history)
        points = (
            forecaster.moving_average(h) + forecaster.exponential_smoothing(h) + forecaster.holt_smoothing(h)
            + forecaster.linear_regression(h) + forecaster.seasonal_decomposition(h)
        )
        for point in points:
            assert 0 <= point.lower_bound <= point.predicted_demand <= point.upper_bound

    def test_negative_history_rejected(self, forecaster):
        with pytest.raises(ValueError):
            forecaster.exponential_smoothing(series(5, -1))


class TestForecast:
    """Full forecast records."""

    def test_from_provider(self):
        history = series(*[10] * 14)
        forecaster = DemandForecaster(history_provider=lambda p, w: history, clock=lambda: NOW)
        forecast = forecaster.forecast("P1", warehouse_id="W1", horizon=5)

        assert forecast.algorithm == ForecastAlgorithm.EXPONENTIAL_SMOOTHING
        assert forecast.total_demand == 50
        assert forecast.accuracy == 1.0
        assert forecast.trend == Trend.STABLE

    def test_weekly_period_spaces_dates(self, forecaster):
        forecast = forecaster.forecast(
            "P1", history=series(*[4] * 7), algorithm="moving_average", horizon=2, period=ForecastPeriod.WEEKLY
        )
        assert [p.date for p in forecast.forecasts] == [NOW.date() + timedelta(days=7), NOW.date() + timedelta(days=14)]
        assert forecast.accuracy is None

    def test_accuracy_reflects_errors(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(10, 20, 10, 20), alpha=1.0)
        # Each one-step prediction misses by 100% or 50%
        assert 0 <= forecast.accuracy < 0.5

    def test_linear_forecast_reports_fit(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(*range(2, 21, 2)), algorithm="linear_regression", horizon=2)
        assert [p.predicted_demand for p in forecast.forecasts] == [22, 24]
        assert forecast.r2 == 1.0
        assert forecast.accuracy == 1.0
        assert forecast.trend == Trend.UP

    def test_holt_accuracy_needs_holdout(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(1, 2, 3), algorithm=ForecastAlgorithm.HOLT, horizon=1)
        assert forecast.forecasts[0].predicted_demand > 3
        assert forecast.accuracy is None

    def test_seasonal_forecast_carries_cycle(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(*WEEKLY), algorithm="seasonal", horizon=7)
        assert forecast.seasonality.detected is True
        assert forecast.seasonality.period == 7
        assert forecast.forecasts[5].predicted_demand == 30

    def test_hybrid_refits_the_winner(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(*range(2, 21, 2)), algorithm="hybrid", horizon=2)
        assert forecast.algorithm == ForecastAlgorithm.HYBRID
        assert forecast.selected_algorithm == ForecastAlgorithm.HOLT
        assert len(forecast.comparisons) == 5
        assert forecast.accuracy == 1.0
        assert [p.predicted_demand for p in forecast.forecasts] == [22, 24]
        assert forecaster.get_decisions("demand_forecast")[-1].output_data["selected_algorithm"] == "holt"

    def test_hybrid_short_history_averages(self, forecaster):
        forecast = forecaster.forecast("P1", history=series(3, 5), algorithm="hybrid", horizon=1)
        assert forecast.selected_algorithm == ForecastAlgorithm.MOVING_AVERAGE
        assert forecast.forecasts[0].predicted_demand == 4
        assert forecast.comparisons == []
        assert forecast.accuracy is None

    def test_hybrid_empty_history(self, forecaster):
        with pytest.raises(EmptyHistoryError):
            forecaster.forecast("P1", history=[], algorithm="hybrid")

    def test_without_provider(self, forecaster):
        with pytest.raises(ForecastError):
            forecaster.forecast("P1")

    def test_decision_logged(self, forecaster):
        forecaster.forecast("P1", history=series(1, 2, 3))
        assert forecaster.get_decisions("demand_forecast")


class TestMetrics:
    """Error metrics."""

    def test_mae_and_rmse(self):
        assert calculate_mae([1, 2, 3], [2, 2, 5]) == 1
        assert calculate_rmse([0, 0], [3, 4]) == pytest.approx(12.5 ** 0.5)

    def test_mape_skips_zero_actuals(self):
        assert calculate_mape([0, 10, 20], [5, 11, 18]) == pytest.approx(10.0)
        assert calculate_mape([0, 0], [1, 2]) == 100.0

    def test_r2(self):
        assert calculate_r2([1, 2, 3], [1, 2, 3]) == 1.0
        assert calculate_r2([1, 2, 3], [2, 2, 2]) == 0.0
        assert calculate_r2([4, 4], [1, 7]) == 0.0
        assert calculate_r2([], []) == 0.0

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            calculate_mae([1, 2], [1])


class TestTrend:
    """Last week against the week before."""

    def test_up_down_stable(self):
        assert analyze_trend(series(*([10] * 7 + [12] * 7))) == Trend.UP
        assert analyze_trend(series(*([10] * 7 + [8] * 7))) == Trend.DOWN
        assert analyze_trend(series(*([10] * 7 + [10.5] * 7))) == Trend.STABLE

    def test_short_history_is_stable(self):
        assert analyze_trend(series(1, 100)) == Trend.STABLE
        assert analyze_trend(series(*[5] * 7)) == Trend.STABLE

    def test_from_zero(self):
        assert analyze_trend(series(*([0] * 7 + [3] * 7))) == Trend.UP
