"""Multi-warehouse inventory allocation, transfers, forecasting and rebalancing."""

__version__ = "0.1.0"
