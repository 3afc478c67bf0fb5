"""Shared fixtures: an in-memory service graph with a fixed clock."""

from datetime import datetime

import pytest

from inventory_network.config import Settings
from inventory_network.models import Address, Coordinates, Warehouse
from inventory_network.services import build_services
from inventory_network.storage import in_memory_repositories

NOW = datetime(2024, 3, 1, 12, 0, 0)

# Customer reference point and two warehouses ~10 km and ~100 km north of it
CUSTOMER = Coordinates(40.0, -75.0)
NEAR = Coordinates(40.0899, -75.0)
FAR = Coordinates(40.8993, -75.0)


def make_warehouse(code, coordinates=None, **kwargs):
    return Warehouse(
        code=code,
        name=f"{code} Warehouse",
        address=Address(city=code, coordinates=coordinates),
        **kwargs,
    )


@pytest.fixture
def repos():
    return in_memory_repositories()


@pytest.fixture
def services(repos):
    return build_services(Settings(lock_timeout=1.0), repositories=repos, clock=lambda: NOW)


@pytest.fixture
def registry(services):
    return services.registry


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def two_warehouses(registry):
    """W1 ~10 km from the customer, W2 ~100 km."""
    w1 = registry.register(make_warehouse("W1", NEAR))
    w2 = registry.register(make_warehouse("W2", FAR))
    return w1, w2
