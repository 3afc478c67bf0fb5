"""Demand history and forecast records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class ForecastAlgorithm(str, Enum):
    MOVING_AVERAGE = "moving_average"
    EXPONENTIAL_SMOOTHING = "exponential_smoothing"
    HOLT = "holt"
    LINEAR_REGRESSION = "linear_regression"
    SEASONAL = "seasonal"
    # Picks whichever of the above scores best on held-out history
    HYBRID = "hybrid"


class ForecastPeriod(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Trend(str, Enum):
    UP = "up"
    DOWN = "down"
    STABLE = "stable"


@dataclass
class DemandPoint:
    date: date
    quantity: float


@dataclass
class ForecastPoint:
    date: date
    predicted_demand: float
    confidence: float
    upper_bound: float
    lower_bound: float


@dataclass
class Seasonality:
    detected: bool = False
    period: int = 0
    strength: float = 0.0
    # Multiplier per position in the cycle, averaging 1.0
    factors: list[float] = field(default_factory=list)


@dataclass
class AlgorithmComparison:
    algorithm: ForecastAlgorithm
    mape: float
    mae: float
    rmse: float
    r2: float
    recommended: bool = False


@dataclass
class DemandForecast:
    product_id: str
    horizon: int
    algorithm: ForecastAlgorithm
    forecasts: list[ForecastPoint] = field(default_factory=list)
    warehouse_id: Optional[str] = None
    period: ForecastPeriod = ForecastPeriod.DAILY
    accuracy: Optional[float] = None
    trend: Trend = Trend.STABLE
    selected_algorithm: Optional[ForecastAlgorithm] = None
    r2: Optional[float] = None
    seasonality: Optional[Seasonality] = None
    comparisons: list[AlgorithmComparison] = field(default_factory=list)

    @property
    def total_demand(self) -> float:
        return sum(p.predicted_demand for p in self.forecasts)
