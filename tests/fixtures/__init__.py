"""Test fixtures for health-analytics-server."""

from tests.fixtures.health_seed import seed_health_data, seed_weight_series

__all__ = [
    "seed_health_data",
    "seed_weight_series",
]
