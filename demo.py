"""
Inventory network demo against the in-memory store.

Seeds a sample network, then walks through allocation, reservation,
a transfer, a forecast and a rebalancing plan.

Usage:
    python demo.py
    INVENTORY_LOG_LEVEL=DEBUG python demo.py
"""

import sys

from inventory_network.config import configure_logging, get_settings
from inventory_network.exceptions import InventoryNetworkError
from inventory_network.models import (
    AllocationAlgorithm,
    Coordinates,
    ForecastAlgorithm,
    Order,
    OrderItem,
    TransferItem,
    TransferStatus,
)
from inventory_network.services import build_services
from inventory_network.simulation import PRODUCTS, generate_sales_history, seed_network
from inventory_network.storage import in_memory_repositories


def show_stock(services, product_id):
    for level in services.ledger.list_by_product(product_id):
        warehouse = services.registry.require(level.warehouse_id)
        print(
            f"   {warehouse.code}: total={level.total_quantity} reserved={level.reserved} "
            f"in_transit={level.in_transit} available={level.available}"
        )


def demo_allocation(services, warehouses):
    print("\n--- Allocation ---")
    order = Order(
        id="ORDER-1001",
        customer_id="CUST-42",
        customer_location=Coordinates(45.52, -122.68),  # Portland
        items=[OrderItem(PRODUCTS[0], 20), OrderItem(PRODUCTS[1], 5)],
    )
    for algorithm in AllocationAlgorithm:
        result = services.allocation.allocate(order, warehouses, algorithm)
        sources = ", ".join(f"{a.warehouse_name} ({a.total_units})" for a in result.allocations)
        print(f"   {algorithm.value:<10} {result.status.value:<8} {sources}")

    result = services.allocation.allocate(order, warehouses)
    services.ledger.commit_allocation(result)
    print(f"✅ Reserved order {order.id}")
    show_stock(services, PRODUCTS[0])


def demo_transfer(services, warehouses):
    print("\n--- Transfer ---")
    hub, target = warehouses[0], warehouses[-1]
    transfer = services.transfers.create_transfer(
        hub.id, target.id, [TransferItem(PRODUCTS[2], 10)], notes="demo"
    )
    print(f"   Created {transfer.id}: cost={transfer.cost} eta={transfer.estimated_delivery}")
    services.transfers.update_transfer_status(transfer.id, TransferStatus.IN_TRANSIT)
    services.transfers.update_transfer_status(transfer.id, TransferStatus.RECEIVED)
    print("✅ Received")
    show_stock(services, PRODUCTS[2])


def demo_forecast(services, warehouses):
    print("\n--- Forecast ---")
    for algorithm in ForecastAlgorithm:
        forecast = services.forecaster.forecast(
            PRODUCTS[0], warehouse_id=warehouses[1].id, algorithm=algorithm, horizon=7
        )
        point = forecast.forecasts[0]
        print(
            f"   {algorithm.value:<22} {point.predicted_demand:>7} "
            f"[{point.lower_bound}, {point.upper_bound}] accuracy={forecast.accuracy} trend={forecast.trend.value}"
        )
        if forecast.selected_algorithm:
            print(f"   {'':<22} picked {forecast.selected_algorithm.value}")


def demo_rebalancing(services):
    print("\n--- Rebalancing ---")
    plan = services.planner.generate_rebalancing_plan()
    print(f"   Plan {plan.id}: {len(plan.transfers)} transfer(s), estimated cost {plan.estimated_cost}")
    submission = services.transfers.submit_plan(plan)
    print(f"✅ Submitted {len(submission.created)}, rejected {len(submission.failed)}")

    before = services.ledger.snapshot()
    for transfer in submission.created:
        services.transfers.update_transfer_status(transfer.id, TransferStatus.IN_TRANSIT)
        services.transfers.update_transfer_status(transfer.id, TransferStatus.RECEIVED)
    after = services.ledger.snapshot()

    for product_id in PRODUCTS:
        check = services.validator.verify_stock_conservation(product_id, before, after)
        if not check.is_valid:
            print(f"❌ {check.errors}")
            return
    print("✅ Stock conserved across every product")


def main():
    settings = get_settings()
    configure_logging(settings)

    repos = in_memory_repositories()
    services = build_services(settings, repositories=repos)

    print("=" * 60)
    print("Inventory network demo")
    print("=" * 60)

    warehouses = seed_network(services)
    services.forecaster.history_provider = generate_sales_history([w.id for w in warehouses])
    print(f"✅ {len(warehouses)} warehouses, {len(PRODUCTS)} products seeded")

    try:
        demo_allocation(services, warehouses)
        demo_transfer(services, warehouses)
        demo_forecast(services, warehouses)
        demo_rebalancing(services)
    except InventoryNetworkError as e:
        print(f"❌ {type(e).__name__}: {e}")
        return 1

    negatives = services.validator.check_no_negative_stock(services.ledger.list_levels())
    print(f"\nAudit entries: {len(services.validator.get_audit_log())}, negative stock: {not negatives.is_valid}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
