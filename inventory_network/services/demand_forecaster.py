"""Demand Forecaster - point forecasts with bounds from sales history.

Moving average and simple exponential smoothing are flat: the same estimate
and interval are emitted for every step of the horizon. Holt smoothing,
linear regression and seasonal decomposition project a trend, so each step
gets its own estimate inside a 95% band of the history's spread.
"""

from __future__ import annotations

import logging
import math
import statistics
from datetime import date, timedelta
from statistics import fmean, pstdev
from typing import Any, Callable, Optional, Union

from inventory_network.exceptions import (
    EmptyHistoryError,
    ForecastError,
    InsufficientDataError,
)
from inventory_network.models.forecast import (
    AlgorithmComparison,
    DemandForecast,
    DemandPoint,
    ForecastAlgorithm,
    ForecastPeriod,
    ForecastPoint,
    Seasonality,
    Trend,
)
from inventory_network.services.base_service import BaseService

logger = logging.getLogger(__name__)

HistoryProvider = Callable[[str, Optional[str]], list[DemandPoint]]

MOVING_AVERAGE_CONFIDENCE = 0.70
SMOOTHING_CONFIDENCE = 0.75
INTERVAL_CONFIDENCE = 0.95
Z_95 = 1.96
SMOOTHING_ERROR_BAND = 1.5

TREND_WINDOW = 7
TREND_THRESHOLD_PCT = 10.0

SEASONAL_MIN_HISTORY = 14
SEASONALITY_THRESHOLD = 0.3
MIN_SEASON = 7
MAX_SEASON = 365

# Hold-out validation: train on the first 80%, score on the rest
HOLDOUT_SPLIT = 0.8
HOLDOUT_MIN_HISTORY = 7
HOLDOUT_MIN_TRAIN = 5
HOLDOUT_MIN_TEST = 2

COMPARED_ALGORITHMS = (
    ForecastAlgorithm.MOVING_AVERAGE,
    ForecastAlgorithm.EXPONENTIAL_SMOOTHING,
    ForecastAlgorithm.HOLT,
    ForecastAlgorithm.LINEAR_REGRESSION,
    ForecastAlgorithm.SEASONAL,
)

PERIOD_STEP_DAYS = {
    ForecastPeriod.DAILY: 1,
    ForecastPeriod.WEEKLY: 7,
    ForecastPeriod.MONTHLY: 30,
}


def calculate_mae(actual: list[float], predicted: list[float]) -> float:
    """Mean absolute error; 0 for empty input."""
    _check_pairs(actual, predicted)
    if not actual:
        return 0.0
    return fmean(abs(a - p) for a, p in zip(actual, predicted))


def calculate_mape(actual: list[float], predicted: list[float]) -> float:
    """Mean absolute percentage error over the non-zero actuals.

    Returns 100 when there is no non-zero actual to compare against.
    """
    _check_pairs(actual, predicted)
    ratios = [abs((a - p) / a) for a, p in zip(actual, predicted) if a != 0]
    if not ratios:
        return 100.0
    return fmean(ratios) * 100


def calculate_rmse(actual: list[float], predicted: list[float]) -> float:
    _check_pairs(actual, predicted)
    if not actual:
        return 0.0
    return math.sqrt(fmean((a - p) ** 2 for a, p in zip(actual, predicted)))


def calculate_r2(actual: list[float], predicted: list[float]) -> float:
    """Coefficient of determination; 0 for empty input or a constant series."""
    _check_pairs(actual, predicted)
    if not actual:
        return 0.0
    mean = fmean(actual)
    total = sum((a - mean) ** 2 for a in actual)
    if total == 0:
        return 0.0
    residual = sum((a - p) ** 2 for a, p in zip(actual, predicted))
    return 1 - residual / total


def _check_pairs(actual: list[float], predicted: list[float]) -> None:
    if len(actual) != len(predicted):
        raise ValueError(f"Length mismatch: {len(actual)} actual vs {len(predicted)} predicted")


def analyze_trend(history: list[DemandPoint]) -> Trend:
    """Last week against the week before: more than 10% either way is a trend."""
    recent = [p.quantity for p in history[-TREND_WINDOW:]]
    previous = [p.quantity for p in history[-2 * TREND_WINDOW:-TREND_WINDOW]]
    if len(history) < 2 or not recent or not previous:
        return Trend.STABLE

    recent_avg = fmean(recent)
    previous_avg = fmean(previous)
    if previous_avg == 0:
        return Trend.UP if recent_avg > 0 else Trend.STABLE

    change_pct = (recent_avg - previous_avg) / previous_avg * 100
    if change_pct > TREND_THRESHOLD_PCT:
        return Trend.UP
    if change_pct < -TREND_THRESHOLD_PCT:
        return Trend.DOWN
    return Trend.STABLE


def detect_seasonality(
    history: list[DemandPoint], min_period: int = MIN_SEASON, max_period: int = MAX_SEASON
) -> Seasonality:
    """Strongest repeating cycle by autocorrelation.

    A cycle counts when its autocorrelation exceeds 0.3 and the history
    covers it at least twice.
    """
    return _seasonality(_quantities(history), min_period, max_period)


def compare_algorithms(
    history: list[DemandPoint],
    window_size: int = 7,
    alpha: float = 0.3,
    beta: float = 0.1,
) -> list[AlgorithmComparison]:
    """Score every model on the last 20% of the history after fitting the rest.

    The model with the lowest MAPE is marked ``recommended`` (first one wins
    a tie). Returns an empty list when the history is too short to split.
    """
    if window_size < 1:
        raise ValueError("window_size must be at least 1")
    split = _holdout_split(_quantities(history))
    if split is None:
        return []
    train, test = split

    comparisons = []
    for algorithm in COMPARED_ALGORITHMS:
        predicted = _predict(algorithm, train, len(test), window_size, alpha, beta)
        comparisons.append(AlgorithmComparison(
            algorithm=algorithm,
            mape=round(calculate_mape(test, predicted), 2),
            mae=round(calculate_mae(test, predicted), 2),
            rmse=round(calculate_rmse(test, predicted), 2),
            r2=round(calculate_r2(test, predicted), 4),
        ))
    min(comparisons, key=lambda c: c.mape).recommended = True
    return comparisons


def _quantities(history: list[DemandPoint]) -> list[float]:
    values = [float(p.quantity) for p in history]
    if any(v < 0 for v in values):
        raise ValueError("Demand history cannot contain negative quantities")
    return values


def _holdout_split(values: list[float]) -> Optional[tuple[list[float], list[float]]]:
    if len(values) < HOLDOUT_MIN_HISTORY:
        return None
    cut = int(len(values) * HOLDOUT_SPLIT)
    train, test = values[:cut], values[cut:]
    if len(train) < HOLDOUT_MIN_TRAIN or len(test) < HOLDOUT_MIN_TEST:
        return None
    return train, test


def _smoothed_level(values: list[float], alpha: float) -> float:
    level = values[0]
    for x in values[1:]:
        level = alpha * x + (1 - alpha) * level
    return level


def _holt(values: list[float], horizon: int, alpha: float, beta: float) -> list[float]:
    """Level plus trend, seeded with the first value and the first difference."""
    if len(values) < 2:
        return [values[0]] * horizon
    level, trend = values[0], values[1] - values[0]
    for x in values[1:]:
        previous = level
        level = alpha * x + (1 - alpha) * (level + trend)
        trend = beta * (level - previous) + (1 - beta) * trend
    return [max(0.0, level + step * trend) for step in range(1, horizon + 1)]


def _linear_fit(values: list[float]) -> tuple[float, float]:
    """Least-squares slope and intercept over x = 0..n-1."""
    if len(values) < 2:
        return 0.0, values[0]
    fit = statistics.linear_regression(list(range(len(values))), values)
    return fit.slope, fit.intercept


def _linear(values: list[float], horizon: int) -> list[float]:
    slope, intercept = _linear_fit(values)
    n = len(values)
    return [max(0.0, slope * (n + i) + intercept) for i in range(horizon)]


def _seasonality(values: list[float], min_period: int = MIN_SEASON, max_period: int = MAX_SEASON) -> Seasonality:
    if min_period < 2:
        raise ValueError("min_period must be at least 2")
    if len(values) < 2 * min_period:
        return Seasonality()
    mean = fmean(values)
    variance = sum((v - mean) ** 2 for v in values)
    if variance == 0:
        return Seasonality()

    best_period, best_strength = 0, 0.0
    for period in range(min_period, min(max_period, len(values) // 2) + 1):
        covariance = sum(
            (values[i] - mean) * (values[i + period] - mean) for i in range(len(values) - period)
        )
        strength = covariance / variance
        if strength > best_strength:
            best_period, best_strength = period, strength

    if best_strength <= SEASONALITY_THRESHOLD:
        return Seasonality(period=best_period, strength=round(best_strength, 4))
    return Seasonality(
        detected=True,
        period=best_period,
        strength=round(best_strength, 4),
        factors=_seasonal_factors(values, best_period),
    )


def _seasonal_factors(values: list[float], period: int) -> list[float]:
    """Average of each cycle position over the overall position average."""
    positions = [fmean(values[i::period]) for i in range(period)]
    overall = fmean(positions)
    if overall == 0:
        return [1.0] * period
    return [p / overall for p in positions]


def _seasonal(
    values: list[float],
    horizon: int,
    alpha: float,
    beta: float,
    season_length: Optional[int] = None,
) -> tuple[list[float], Seasonality]:
    """Holt on the deseasonalized history, with the cycle laid back on top.

    Short histories get the mean of the last week; histories without a
    detectable cycle get plain Holt.
    """
    if season_length is not None and season_length < 2:
        raise ValueError("season_length must be at least 2")
    if len(values) < SEASONAL_MIN_HISTORY:
        return [fmean(values[-TREND_WINDOW:])] * horizon, Seasonality()

    if season_length is None:
        seasonality = _seasonality(values)
    else:
        seasonality = Seasonality(
            detected=True, period=season_length, strength=1.0,
            factors=_seasonal_factors(values, season_length),
        )
    if not seasonality.detected:
        return _holt(values, horizon, alpha, beta), seasonality

    factors, period = seasonality.factors, seasonality.period
    adjusted = [v / factors[i % period] if factors[i % period] else 0.0 for i, v in enumerate(values)]
    n = len(values)
    predictions = [
        max(0.0, t * factors[(n + i) % period])
        for i, t in enumerate(_holt(adjusted, horizon, alpha, beta))
    ]
    return predictions, seasonality


def _predict(
    algorithm: ForecastAlgorithm,
    values: list[float],
    horizon: int,
    window_size: int,
    alpha: float,
    beta: float,
) -> list[float]:
    if algorithm == ForecastAlgorithm.MOVING_AVERAGE:
        return [fmean(values[-window_size:])] * horizon
    if algorithm == ForecastAlgorithm.EXPONENTIAL_SMOOTHING:
        return [_smoothed_level(values, alpha)] * horizon
    if algorithm == ForecastAlgorithm.HOLT:
        return _holt(values, horizon, alpha, beta)
    if algorithm == ForecastAlgorithm.LINEAR_REGRESSION:
        return _linear(values, horizon)
    if algorithm == ForecastAlgorithm.SEASONAL:
        return _seasonal(values, horizon, alpha, beta)[0]
    raise ForecastError(f"No single model behind {algorithm.value}")


def _check_smoothing(value: float, name: str) -> None:
    if not 0 < value <= 1:
        raise ValueError(f"{name} must be in (0, 1]: {value}")


def _accuracy(mape: float) -> float:
    return round(min(1.0, max(0.0, 1 - mape / 100)), 4)


class DemandForecaster(BaseService):
    """Demand forecasts from sales history, one model per call or the best on hold-out."""

    def __init__(self, history_provider: Optional[HistoryProvider] = None, **kwargs: Any):
        super().__init__(service_name="DemandForecaster", **kwargs)
        self.history_provider = history_provider

    calculate_mae = staticmethod(calculate_mae)
    calculate_mape = staticmethod(calculate_mape)
    calculate_rmse = staticmethod(calculate_rmse)
    calculate_r2 = staticmethod(calculate_r2)
    analyze_trend = staticmethod(analyze_trend)
    detect_seasonality = staticmethod(detect_seasonality)
    compare_algorithms = staticmethod(compare_algorithms)

    # --- Models ---

    def moving_average(
        self,
        history: list[DemandPoint],
        horizon: int = 7,
        window_size: int = 7,
        start_date: Optional[date] = None,
        step_days: int = 1,
    ) -> list[ForecastPoint]:
        """Mean of the last ``window_size`` points with a 95% band."""
        if window_size < 1:
            raise ValueError("window_size must be at least 1")
        values = _quantities(history)
        if len(values) < window_size:
            raise InsufficientDataError(
                f"Moving average needs {window_size} points, history has {len(values)}"
            )

        window = values[-window_size:]
        predicted = fmean(window)
        spread = Z_95 * pstdev(window)
        return self._points(
            predicted, predicted + spread, max(0.0, predicted - spread),
            MOVING_AVERAGE_CONFIDENCE, horizon, start_date, step_days,
        )

    def exponential_smoothing(
        self,
        history: list[DemandPoint],
        horizon: int = 7,
        alpha: float = 0.3,
        start_date: Optional[date] = None,
        step_days: int = 1,
    ) -> list[ForecastPoint]:
        """Simple exponential smoothing seeded with the first observation.

        The band is 1.5 times the mean absolute one-step error of the same
        recursion; a single observation gives a zero-width band.
        """
        _check_smoothing(alpha, "alpha")
        values = self._require(history, "Exponential smoothing")

        one_step = self._smoothing_one_step(values, alpha)
        smoothed = _smoothed_level(values, alpha)
        avg_error = calculate_mae(values[1:], one_step) if one_step else 0.0

        band = SMOOTHING_ERROR_BAND * avg_error
        return self._points(
            smoothed, smoothed + band, max(0.0, smoothed - band),
            SMOOTHING_CONFIDENCE, horizon, start_date, step_days,
        )

    def holt_smoothing(
        self,
        history: list[DemandPoint],
        horizon: int = 7,
        alpha: float = 0.3,
        beta: float = 0.1,
        start_date: Optional[date] = None,
        step_days: int = 1,
    ) -> list[ForecastPoint]:
        """Double exponential smoothing: a smoothed level and a smoothed trend.

        A single observation has no trend and forecasts flat.
        """
        _check_smoothing(alpha, "alpha")
        _check_smoothing(beta, "beta")
        values = self._require(history, "Holt smoothing")
        return self._series(_holt(values, horizon, alpha, beta), values, horizon, start_date, step_days)

    def linear_regression(
        self,
        history: list[DemandPoint],
        horizon: int = 7,
        start_date: Optional[date] = None,
        step_days: int = 1,
    ) -> list[ForecastPoint]:
        """Least-squares line through the history, extended past its end."""
        values = self._require(history, "Linear regression")
        return self._series(_linear(values, horizon), values, horizon, start_date, step_days)

    def seasonal_decomposition(
        self,
        history: list[DemandPoint],
        horizon: int = 7,
        season_length: Optional[int] = None,
        alpha: float = 0.3,
        beta: float = 0.1,
        start_date: Optional[date] = None,
        step_days: int = 1,
    ) -> list[ForecastPoint]:
        """Holt forecast scaled by the detected (or given) cycle."""
        _check_smoothing(alpha, "alpha")
        _check_smoothing(beta, "beta")
        values = self._require(history, "Seasonal decomposition")
        predictions, _ = _seasonal(values, horizon, alpha, beta, season_length)
        return self._series(predictions, values, horizon, start_date, step_days)

    @staticmethod
    def _smoothing_one_step(values: list[float], alpha: float) -> list[float]:
        """Prediction made for values[1:], each from everything before it."""
        predictions = []
        level = values[0]
        for x in values[1:]:
            predictions.append(level)
            level = alpha * x + (1 - alpha) * level
        return predictions

    @staticmethod
    def _moving_average_one_step(values: list[float], window_size: int) -> list[float]:
        return [fmean(values[i - window_size:i]) for i in range(window_size, len(values))]

    @staticmethod
    def _require(history: list[DemandPoint], model: str) -> list[float]:
        values = _quantities(history)
        if not values:
            raise EmptyHistoryError(f"{model} needs at least one observation")
        return values

    def _points(
        self,
        predicted: float,
        upper: float,
        lower: float,
        confidence: float,
        horizon: int,
        start_date: Optional[date],
        step_days: int,
    ) -> list[ForecastPoint]:
        return self._dated(
            [(predicted, upper, lower)] * max(horizon, 0), confidence, horizon, start_date, step_days
        )

    def _series(
        self,
        predictions: list[float],
        values: list[float],
        horizon: int,
        start_date: Optional[date],
        step_days: int,
    ) -> list[ForecastPoint]:
        """One point per prediction, banded by 1.96 standard deviations of the history."""
        margin = Z_95 * pstdev(values)
        rows = [(p, p + margin, max(0.0, p - margin)) for p in predictions]
        return self._dated(rows, INTERVAL_CONFIDENCE, horizon, start_date, step_days)

    def _dated(
        self,
        rows: list[tuple[float, float, float]],
        confidence: float,
        horizon: int,
        start_date: Optional[date],
        step_days: int,
    ) -> list[ForecastPoint]:
        if horizon < 1:
            raise ValueError("horizon must be at least 1")
        start = start_date or self.now().date()
        return [
            ForecastPoint(
                date=start + timedelta(days=i * step_days),
                predicted_demand=round(predicted, 2),
                confidence=confidence,
                upper_bound=round(upper, 2),
                lower_bound=round(lower, 2),
            )
            for i, (predicted, upper, lower) in enumerate(rows, 1)
        ]

    # --- Forecast ---

    def get_history(self, product_id: str, warehouse_id: Optional[str] = None) -> list[DemandPoint]:
        if self.history_provider is None:
            raise ForecastError("No historical sales provider configured")
        return sorted(self.history_provider(product_id, warehouse_id), key=lambda p: p.date)

    def forecast(
        self,
        product_id: str,
        history: Optional[list[DemandPoint]] = None,
        warehouse_id: Optional[str] = None,
        algorithm: Union[ForecastAlgorithm, str] = ForecastAlgorithm.EXPONENTIAL_SMOOTHING,
        horizon: int = 30,
        period: Union[ForecastPeriod, str] = ForecastPeriod.DAILY,
        window_size: int = 7,
        alpha: float = 0.3,
        beta: float = 0.1,
    ) -> DemandForecast:
        """Forecast for one product, with accuracy and trend.

        Moving average and simple smoothing score their one-step in-sample
        predictions. The trending models and ``hybrid`` score the last 20%
        of the history after fitting the first 80%; ``accuracy`` stays
        ``None`` when the history is too short for either.
        """
        algorithm = ForecastAlgorithm(algorithm)
        period = ForecastPeriod(period)
        if history is None:
            history = self.get_history(product_id, warehouse_id)
        step = PERIOD_STEP_DAYS[period]

        values = _quantities(history)
        result = DemandForecast(
            product_id=product_id,
            warehouse_id=warehouse_id,
            horizon=horizon,
            algorithm=algorithm,
            period=period,
            trend=analyze_trend(history),
        )

        if algorithm == ForecastAlgorithm.MOVING_AVERAGE:
            result.forecasts = self.moving_average(history, horizon, window_size, step_days=step)
            actual = values[window_size:]
            if actual:
                predicted = self._moving_average_one_step(values, window_size)
                result.accuracy = _accuracy(calculate_mape(actual, predicted))
        elif algorithm == ForecastAlgorithm.EXPONENTIAL_SMOOTHING:
            result.forecasts = self.exponential_smoothing(history, horizon, alpha, step_days=step)
            if len(values) > 1:
                predicted = self._smoothing_one_step(values, alpha)
                result.accuracy = _accuracy(calculate_mape(values[1:], predicted))
        elif algorithm == ForecastAlgorithm.HYBRID:
            self._hybrid(result, values, history, step, window_size, alpha, beta)
        else:
            self._trending(result, algorithm, values, history, step, window_size, alpha, beta)

        self.log_decision(
            decision_type="demand_forecast",
            input_data={
                "product_id": product_id,
                "warehouse_id": warehouse_id,
                "algorithm": algorithm.value,
                "history_points": len(history),
            },
            output_data={
                "predicted_demand": result.forecasts[0].predicted_demand,
                "accuracy": result.accuracy,
                "trend": result.trend.value,
                "selected_algorithm": result.selected_algorithm.value if result.selected_algorithm else None,
            },
            reasoning=f"{algorithm.value} over {len(history)} points, trend {result.trend.value}.",
        )
        return result

    def _trending(
        self,
        result: DemandForecast,
        algorithm: ForecastAlgorithm,
        values: list[float],
        history: list[DemandPoint],
        step: int,
        window_size: int,
        alpha: float,
        beta: float,
    ) -> None:
        if algorithm == ForecastAlgorithm.HOLT:
            result.forecasts = self.holt_smoothing(history, result.horizon, alpha, beta, step_days=step)
        elif algorithm == ForecastAlgorithm.LINEAR_REGRESSION:
            result.forecasts = self.linear_regression(history, result.horizon, step_days=step)
            slope, intercept = _linear_fit(values)
            fitted = [slope * x + intercept for x in range(len(values))]
            result.r2 = round(calculate_r2(values, fitted), 4)
        else:
            _check_smoothing(alpha, "alpha")
            _check_smoothing(beta, "beta")
            values = self._require(history, "Seasonal decomposition")
            predictions, result.seasonality = _seasonal(values, result.horizon, alpha, beta)
            result.forecasts = self._series(predictions, values, result.horizon, None, step)

        split = _holdout_split(values)
        if split is not None:
            train, test = split
            predicted = _predict(algorithm, train, len(test), window_size, alpha, beta)
            result.accuracy = _accuracy(calculate_mape(test, predicted))

    def _hybrid(
        self,
        result: DemandForecast,
        values: list[float],
        history: list[DemandPoint],
        step: int,
        window_size: int,
        alpha: float,
        beta: float,
    ) -> None:
        """Refit the hold-out winner on the full history.

        A history too short to validate is averaged.
        """
        _check_smoothing(alpha, "alpha")
        _check_smoothing(beta, "beta")
        values = self._require(history, "Hybrid forecast")
        result.comparisons = compare_algorithms(history, window_size, alpha, beta)
        best = next((c for c in result.comparisons if c.recommended), None)
        if best is not None:
            chosen = best.algorithm
            result.accuracy = _accuracy(best.mape)
        else:
            chosen = ForecastAlgorithm.MOVING_AVERAGE

        result.selected_algorithm = chosen
        if chosen == ForecastAlgorithm.SEASONAL:
            predictions, result.seasonality = _seasonal(values, result.horizon, alpha, beta)
        else:
            predictions = _predict(chosen, values, result.horizon, window_size, alpha, beta)
        result.forecasts = self._series(predictions, values, result.horizon, None, step)
        logger.info("Hybrid forecast for %s: %s selected", result.product_id, chosen.value)
