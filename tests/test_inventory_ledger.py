"""Inventory Ledger unit tests."""

import threading
import time

import pytest

from inventory_network.exceptions import (
    ConcurrentModificationError,
    InsufficientInventoryError,
    LockTimeoutError,
    NotFoundError,
    UnknownLocationError,
    UnknownWarehouseError,
    ValidationError,
)
from inventory_network.models import (
    AllocatedItem,
    AllocationResult,
    AllocationStatus,
    CountStatus,
    WarehouseAllocation,
    inventory_key,
)
from inventory_network.services import StockChange
from inventory_network.storage import InMemoryRepository

from conftest import NOW, make_warehouse


@pytest.fixture
def warehouse(registry):
    return registry.register(make_warehouse("A"))


class TestWritePath:
    """Derived availability, versioning and rollback."""

    def test_receive_creates_row(self, ledger, warehouse):
        level = ledger.receive_stock("P1", warehouse.id, 30)
        assert (level.total_quantity, level.available, level.version) == (30, 30, 1)
        assert level.next_count_schedule is not None

    def test_available_is_derived(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 30)
        ledger.reserve("P1", warehouse.id, 5)
        level = ledger.apply_changes([StockChange("P1", warehouse.id, in_transit_delta=10)])[0]
        assert level.available == 30 - 5 - 10
        assert level.version == 3

    def test_negative_available_rejected_without_change(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        with pytest.raises(InsufficientInventoryError):
            ledger.reserve("P1", warehouse.id, 11)
        level = ledger.get_level("P1", warehouse.id)
        assert (level.reserved, level.available, level.version) == (0, 10, 1)

    def test_multi_row_change_is_atomic(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        with pytest.raises(InsufficientInventoryError):
            ledger.apply_changes([
                StockChange("P1", warehouse.id, total_delta=5),
                StockChange("P2", warehouse.id, total_delta=-1),
            ])
        assert ledger.get_level("P1", warehouse.id).total_quantity == 10
        assert ledger.get_level("P2", warehouse.id) is None

    def test_unknown_warehouse(self, ledger):
        with pytest.raises(UnknownWarehouseError):
            ledger.receive_stock("P1", "missing", 10)

    def test_non_positive_quantity(self, ledger, warehouse):
        with pytest.raises(ValidationError):
            ledger.receive_stock("P1", warehouse.id, 0)

    def test_version_conflict_restores_earlier_rows(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        ledger.receive_stock("P2", warehouse.id, 10)

        class RacingRepository(InMemoryRepository):
            """Loses the race on P2 after P1 was already written."""

            def upsert(self, key, record, expected_version=None):
                if key == inventory_key("P2", warehouse.id) and expected_version:
                    raise ConcurrentModificationError("someone else wrote P2")
                return super().upsert(key, record, expected_version)

        racing = RacingRepository()
        for level in ledger.list_levels():
            racing.upsert(level.key, level)
        ledger.repository = racing

        with pytest.raises(ConcurrentModificationError):
            ledger.apply_changes([
                StockChange("P1", warehouse.id, total_delta=1),
                StockChange("P2", warehouse.id, total_delta=1),
            ])
        assert ledger.get_level("P1", warehouse.id).total_quantity == 10
        assert ledger.get_level("P1", warehouse.id).version == 1

    def test_every_write_is_audited(self, ledger, services, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        ledger.adjust_stock("P1", warehouse.id, -3, reason="damage")
        entries = services.validator.get_audit_log(product_id="P1")
        assert [e.operation_type for e in entries] == ["receipt", "damage"]
        assert entries[1].quantity_before == 10
        assert entries[1].change_amount == -3


class TestLocking:
    """Row locks around read-modify-write."""

    def test_lock_timeout(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        key = inventory_key("P1", warehouse.id)
        held = threading.Event()
        done = threading.Event()

        def hold_lock():
            with ledger.locked([key]):
                held.set()
                done.wait(5)

        worker = threading.Thread(target=hold_lock)
        worker.start()
        held.wait(5)
        try:
            with pytest.raises(LockTimeoutError):
                ledger.reserve("P1", warehouse.id, 1)
        finally:
            done.set()
            worker.join()
        assert ledger.get_level("P1", warehouse.id).reserved == 0

    def test_concurrent_reservations_never_oversell(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 50)
        failures = []

        def reserve():
            for _ in range(10):
                try:
                    ledger.reserve("P1", warehouse.id, 1)
                except InsufficientInventoryError:
                    failures.append(1)

        workers = [threading.Thread(target=reserve) for _ in range(8)]
        for w in workers:
            w.start()
        for w in workers:
            w.join()

        level = ledger.get_level("P1", warehouse.id)
        assert level.reserved == 50
        assert level.available == 0
        assert len(failures) == 30

    def test_snapshot_returns_copies(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 10)
        snapshot = ledger.snapshot()
        snapshot[0].total_quantity = 999
        assert ledger.get_level("P1", warehouse.id).total_quantity == 10


class TestReservations:
    """Reserve, release, ship and commit."""

    def test_reserve_release_fulfill(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 20)
        ledger.reserve("P1", warehouse.id, 8, order_id="O1")
        ledger.release_reservation("P1", warehouse.id, 3, order_id="O1")
        level = ledger.fulfill_reservation("P1", warehouse.id, 5, order_id="O1")
        assert (level.total_quantity, level.reserved, level.available) == (15, 0, 15)

    def test_release_more_than_reserved(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 20)
        with pytest.raises(InsufficientInventoryError):
            ledger.release_reservation("P1", warehouse.id, 1)

    def test_commit_allocation(self, ledger, registry, warehouse):
        other = registry.register(make_warehouse("B"))
        ledger.receive_stock("P1", warehouse.id, 10)
        ledger.receive_stock("P1", other.id, 10)
        result = AllocationResult(
            order_id="O1",
            status=AllocationStatus.FULL,
            allocations=[
                WarehouseAllocation(warehouse.id, "A", [AllocatedItem("P1", 10)]),
                WarehouseAllocation(other.id, "B", [AllocatedItem("P1", 4)]),
            ],
        )
        ledger.commit_allocation(result)
        assert ledger.get_level("P1", warehouse.id).available == 0
        assert ledger.get_level("P1", other.id).reserved == 4

    def test_stale_allocation_leaves_ledger_untouched(self, ledger, registry, warehouse):
        other = registry.register(make_warehouse("B"))
        ledger.receive_stock("P1", warehouse.id, 10)
        ledger.receive_stock("P1", other.id, 10)
        result = AllocationResult(
            order_id="O1",
            allocations=[
                WarehouseAllocation(warehouse.id, "A", [AllocatedItem("P1", 5)]),
                WarehouseAllocation(other.id, "B", [AllocatedItem("P1", 8)]),
            ],
        )
        ledger.adjust_stock("P1", other.id, -5)  # stock moved since the allocation

        with pytest.raises(InsufficientInventoryError):
            ledger.commit_allocation(result)
        assert ledger.get_level("P1", warehouse.id).reserved == 0
        assert ledger.get_level("P1", other.id).reserved == 0


class TestLocationStock:
    """Bin stock stays in step with the row breakdown."""

    def test_add_and_remove(self, ledger, registry, warehouse):
        location = registry.create_location(warehouse.id, "A", 1, 1, 1)
        ledger.add_stock_to_location(location.id, "P1", 12)
        level = ledger.remove_stock_from_location(location.id, "P1", 4)

        assert level.total_quantity == 8
        assert [(l.location_id, l.quantity) for l in level.by_location] == [(location.id, 8)]
        assert registry.get_location(location.id).quantity_of("P1") == 8

    def test_remove_more_than_bin_holds(self, ledger, registry, warehouse):
        location = registry.create_location(warehouse.id, "A", 1, 1, 1)
        ledger.add_stock_to_location(location.id, "P1", 2)
        with pytest.raises(InsufficientInventoryError):
            ledger.remove_stock_from_location(location.id, "P1", 3)

    def test_remove_reserved_stock(self, ledger, registry, warehouse):
        location = registry.create_location(warehouse.id, "A", 1, 1, 1)
        ledger.add_stock_to_location(location.id, "P1", 5)
        ledger.reserve("P1", warehouse.id, 5)
        with pytest.raises(InsufficientInventoryError):
            ledger.remove_stock_from_location(location.id, "P1", 1)
        assert registry.get_location(location.id).quantity_of("P1") == 5

    def test_unknown_location(self, ledger):
        with pytest.raises(UnknownLocationError):
            ledger.add_stock_to_location("missing", "P1", 1)

    def test_move_between_locations(self, ledger, registry, warehouse):
        source = registry.create_location(warehouse.id, "A", 1, 1, 1)
        target = registry.create_location(warehouse.id, "A", 1, 1, 2)
        ledger.add_stock_to_location(source.id, "P1", 10)

        level = ledger.move_stock_between_locations(source.id, target.id, "P1", 10)
        assert level.total_quantity == 10
        assert level.location_ids == [target.id]
        assert registry.get_location(source.id).current_stock == []
        assert registry.get(warehouse.id).capacity.used_slots == 1

    def test_move_across_warehouses(self, ledger, registry, warehouse):
        other = registry.register(make_warehouse("B"))
        source = registry.create_location(warehouse.id, "A", 1, 1, 1)
        target = registry.create_location(other.id, "A", 1, 1, 1)
        ledger.add_stock_to_location(source.id, "P1", 10)
        with pytest.raises(ValidationError):
            ledger.move_stock_between_locations(source.id, target.id, "P1", 1)

    def test_breakdown_matches_bins(self, ledger, registry, warehouse):
        bins = [registry.create_location(warehouse.id, "A", 1, 1, b) for b in (1, 2, 3)]
        ledger.add_stock_to_location(bins[0].id, "P1", 7)
        ledger.add_stock_to_location(bins[1].id, "P1", 3)
        ledger.move_stock_between_locations(bins[0].id, bins[2].id, "P1", 2)
        ledger.remove_stock_from_location(bins[1].id, "P1", 3)

        level = ledger.get_level("P1", warehouse.id)
        from_bins = {b.id: registry.get_location(b.id).quantity_of("P1") for b in bins}
        assert {l.location_id: l.quantity for l in level.by_location} == {
            k: v for k, v in from_bins.items() if v
        }
        assert sum(from_bins.values()) == level.total_quantity

    def test_shipping_draws_from_smallest_bin_first(self, ledger, registry, warehouse):
        big = registry.create_location(warehouse.id, "A", 1, 1, 1)
        small = registry.create_location(warehouse.id, "A", 1, 1, 2)
        ledger.add_stock_to_location(big.id, "P1", 7)
        ledger.add_stock_to_location(small.id, "P1", 3)
        ledger.receive_stock("P1", warehouse.id, 2)  # unbinned
        ledger.reserve("P1", warehouse.id, 5)

        level = ledger.fulfill_reservation("P1", warehouse.id, 5, order_id="O1")
        # Two units leave the unbinned stock, three the smaller bin
        assert level.total_quantity == 7
        assert [(l.location_id, l.quantity) for l in level.by_location] == [(big.id, 7)]
        assert registry.get_location(small.id).current_stock == []
        assert registry.get_location(big.id).quantity_of("P1") == 7

    def test_failed_bin_write_restores_row(self, ledger, registry, warehouse, monkeypatch):
        location = registry.create_location(warehouse.id, "A", 1, 1, 1)
        ledger.add_stock_to_location(location.id, "P1", 10)

        def offline(location):
            raise RuntimeError("location store offline")

        monkeypatch.setattr(registry, "save_location", offline)
        with pytest.raises(RuntimeError):
            ledger.adjust_stock("P1", warehouse.id, -4)
        assert ledger.get_level("P1", warehouse.id).total_quantity == 10
        assert registry.get_location(location.id).quantity_of("P1") == 10


class TestThresholds:
    """Reorder point and max stock."""

    def test_low_and_over_stock(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 5)
        ledger.receive_stock("P2", warehouse.id, 500)
        ledger.set_stock_policy("P1", warehouse.id, reorder_point=10)
        ledger.set_stock_policy("P2", warehouse.id, max_stock=100)

        assert [l.product_id for l in ledger.get_low_stock_items(warehouse.id)] == ["P1"]
        assert [l.product_id for l in ledger.get_overstock_items(warehouse.id)] == ["P2"]

    def test_policy_update_keeps_other_field(self, ledger, warehouse):
        ledger.set_stock_policy("P1", warehouse.id, reorder_point=10, max_stock=50)
        level = ledger.set_stock_policy("P1", warehouse.id, reorder_point=20)
        assert (level.reorder_point, level.max_stock) == (20, 50)

    def test_negative_reorder_point(self, ledger, warehouse):
        with pytest.raises(ValueError):
            ledger.set_stock_policy("P1", warehouse.id, reorder_point=-1)


class TestCounts:
    """Cycle counts."""

    def test_complete_count_applies_variance(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 20)
        ledger.receive_stock("P2", warehouse.id, 5)
        count = ledger.create_count(warehouse.id, {"P1": 18, "P2": 5}, conducted_by="alice")
        assert [i.variance for i in count.items] == [-2, 0]

        completed = ledger.complete_count(count.id)
        assert completed.status == CountStatus.COMPLETED
        assert ledger.get_level("P1", warehouse.id).total_quantity == 18
        assert ledger.get_level("P2", warehouse.id).last_count_date == NOW

    def test_cancelled_count_cannot_complete(self, ledger, warehouse):
        count = ledger.create_count(warehouse.id, {"P1": 3})
        ledger.cancel_count(count.id)
        with pytest.raises(ValidationError):
            ledger.complete_count(count.id)

    def test_concurrent_completion_applies_once(self, ledger, warehouse):
        ledger.receive_stock("P1", warehouse.id, 20)
        count = ledger.create_count(warehouse.id, {"P1": 18})

        class SlowCounts(InMemoryRepository):
            def get(self, key):
                time.sleep(0.05)
                return super().get(key)

        slow = SlowCounts()
        slow.upsert(count.id, count)
        ledger.count_repository = slow
        errors = []

        def worker():
            try:
                ledger.complete_count(count.id)
            except ValidationError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(errors) == 1
        assert ledger.get_level("P1", warehouse.id).total_quantity == 18

    def test_unknown_count(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.complete_count("missing")
