"""
FulfillmentEngine: atomic multi-line stock operations.

Every operation is checked for:
- the movements it writes (action, sign, one per variant)
- the resulting balances
- all-or-nothing behavior on failure
- ledger consistency afterwards
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from stock_kernel.domain.dtos import (
    AdjustmentDirection,
    AdjustmentLine,
    OrderLine,
    OutputLine,
    PurchaseLine,
)
from stock_kernel.models.catalog import ProductCategory
from stock_kernel.models.inventory import InventoryBalance, InventoryMovement, MovementAction
from stock_kernel.models.order import Order, OrderStatus
from stock_kernel.services.fulfillment_service import FulfillmentStatus
from stock_kernel.services.ledger_service import LedgerService
from tests.conftest import assert_ledger_consistent


def _movement_count(session) -> int:
    return session.execute(select(func.count()).select_from(InventoryMovement)).scalar_one()


def _movements(session, action=None) -> list[InventoryMovement]:
    stmt = select(InventoryMovement)
    if action is not None:
        stmt = stmt.where(InventoryMovement.action == action)
    return list(session.execute(stmt).scalars())


@pytest.fixture
def raw(make_item):
    return make_item("Steel Rod", ProductCategory.RAW, sku="RAW-STEEL")


@pytest.fixture
def final(make_item):
    return make_item("Pole", ProductCategory.FINAL, sku="FIN-POLE")


# =============================================================================
# Purchase
# =============================================================================


class TestPurchase:

    def test_single_line(self, session, engine_service, ledger, raw):
        result = engine_service.purchase([PurchaseLine(raw.product_id, 100)], created_by="bob")

        assert result.status == FulfillmentStatus.APPLIED
        assert result.is_success
        assert len(result.movements) == 1
        assert result.movements[0].action == MovementAction.PURCHASE.value
        assert ledger.get_balance(raw.id) == Decimal("100")
        assert _movements(session)[0].created_by == "bob"
        assert_ledger_consistent(session)

    def test_lines_for_same_variant_are_aggregated(self, session, engine_service, ledger, raw):
        result = engine_service.purchase([
            PurchaseLine(raw.product_id, 3),
            PurchaseLine(raw.product_id, 5, variant_id=raw.id),
        ])

        assert result.is_success
        assert len(_movements(session)) == 1
        assert ledger.get_balance(raw.id) == Decimal("8")

    def test_rejects_non_raw_product(self, session, engine_service, raw, final):
        result = engine_service.purchase([
            PurchaseLine(raw.product_id, 1),
            PurchaseLine(final.product_id, 1),
        ])

        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "WRONG_CATEGORY"
        assert _movement_count(session) == 0

    def test_empty_request(self, engine_service):
        result = engine_service.purchase([])
        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "EMPTY_ORDER"

    @pytest.mark.parametrize("quantity", [0, -2])
    def test_non_positive_quantity(self, session, engine_service, raw, quantity):
        result = engine_service.purchase([PurchaseLine(raw.product_id, quantity)])

        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_QUANTITY"
        assert _movement_count(session) == 0

    @pytest.mark.parametrize("quantity", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_quantity(self, session, engine_service, ledger, raw, quantity):
        result = engine_service.purchase([
            PurchaseLine(raw.product_id, 1),
            PurchaseLine(raw.product_id, Decimal(quantity)),
        ])

        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "INVALID_QUANTITY"
        assert _movement_count(session) == 0
        assert ledger.get_balance(raw.id) == Decimal("0")


# =============================================================================
# Variant resolution
# =============================================================================


class TestVariantResolution:

    def test_unknown_product(self, engine_service):
        result = engine_service.purchase([PurchaseLine(uuid4(), 1)])
        assert result.error_code == "PRODUCT_NOT_FOUND"

    def test_unknown_variant(self, engine_service, raw):
        result = engine_service.purchase([PurchaseLine(raw.product_id, 1, variant_id=uuid4())])
        assert result.error_code == "VARIANT_NOT_FOUND"

    def test_variant_of_other_product(self, engine_service, make_item, raw):
        other = make_item("Copper", ProductCategory.RAW)
        result = engine_service.purchase([PurchaseLine(raw.product_id, 1, variant_id=other.id)])
        assert result.error_code == "VARIANT_PRODUCT_MISMATCH"

    def test_product_without_variants(self, engine_service, create_product):
        product = create_product("Empty", ProductCategory.RAW)
        result = engine_service.purchase([PurchaseLine(product.id, 1)])
        assert result.error_code == "VARIANT_NOT_FOUND"

    def test_ambiguous_variant(self, engine_service, create_product, create_variant):
        product = create_product("Paint", ProductCategory.RAW)
        create_variant(product, "PAINT-RED", {"Farbe": "Rot"})
        create_variant(product, "PAINT-PINK", {"Farbe": "Pink"})

        result = engine_service.purchase([PurchaseLine(product.id, 1)])

        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "AMBIGUOUS_VARIANT"

    def test_explicit_variant_of_multi_variant_product(
        self, engine_service, ledger, create_product, create_variant,
    ):
        product = create_product("Paint", ProductCategory.RAW)
        red = create_variant(product, "PAINT-RED", {"Farbe": "Rot"})
        create_variant(product, "PAINT-PINK", {"Farbe": "Pink"})

        result = engine_service.purchase([PurchaseLine(product.id, 2, variant_id=red.id)])

        assert result.is_success
        assert ledger.get_balance(red.id) == Decimal("2")


# =============================================================================
# Manufacturing output
# =============================================================================


class TestManufacturingOutput:

    def test_bom_scaling(self, session, engine_service, ledger, raw, final, add_bom_entry):
        add_bom_entry(final.id, raw.id, "2.5")

        result = engine_service.manufacturing_output([OutputLine(final.product_id, 4)])

        assert result.is_success
        consumption = _movements(session, MovementAction.CONSUMPTION)
        assert len(consumption) == 1
        assert consumption[0].quantity == Decimal("-10")
        assert ledger.get_balance(final.id) == Decimal("4")
        assert ledger.get_balance(raw.id) == Decimal("-10")
        assert_ledger_consistent(session)

    def test_output_before_consumption(self, engine_service, raw, final, add_bom_entry):
        add_bom_entry(final.id, raw.id, 1)

        result = engine_service.manufacturing_output([OutputLine(final.product_id, 1)])

        assert [m.action for m in result.movements] == ["OUTPUT", "CONSUMPTION"]

    def test_shared_component_consumed_once(
        self, session, engine_service, ledger, make_item, raw, add_bom_entry,
    ):
        pole_a = make_item("Pole A", ProductCategory.FINAL)
        pole_b = make_item("Pole B", ProductCategory.FINAL)
        add_bom_entry(pole_a.id, raw.id, 2)
        add_bom_entry(pole_b.id, raw.id, 3)

        result = engine_service.manufacturing_output([
            OutputLine(pole_a.product_id, 1),
            OutputLine(pole_b.product_id, 2),
        ])

        assert result.is_success
        consumption = _movements(session, MovementAction.CONSUMPTION)
        assert len(consumption) == 1
        assert consumption[0].quantity == Decimal("-8")
        assert len(_movements(session, MovementAction.OUTPUT)) == 2

    def test_variant_without_bom_only_outputs(self, session, engine_service, final):
        result = engine_service.manufacturing_output([OutputLine(final.product_id, 3)])

        assert result.is_success
        assert [m.action for m in result.movements] == ["OUTPUT"]

    def test_missing_component_aborts_every_line(
        self, session, engine_service, ledger, make_item, raw, add_bom_entry,
    ):
        good = make_item("Good Pole", ProductCategory.FINAL)
        broken = make_item("Broken Pole", ProductCategory.FINAL)
        add_bom_entry(good.id, raw.id, 1)
        add_bom_entry(broken.id, uuid4(), 1)

        result = engine_service.manufacturing_output([
            OutputLine(good.product_id, 5),
            OutputLine(broken.product_id, 5),
        ])

        assert result.status == FulfillmentStatus.DATA_INTEGRITY_FAILED
        assert result.error_code == "COMPONENT_NOT_FOUND"
        assert _movement_count(session) == 0
        assert ledger.get_balance(good.id) == Decimal("0")
        assert ledger.get_balance(raw.id) == Decimal("0")

    def test_intermediate_output(self, engine_service, ledger, make_item, raw, add_bom_entry):
        magnet = make_item("Magnet", ProductCategory.INTERMEDIATE)
        add_bom_entry(magnet.id, raw.id, 1)

        result = engine_service.manufacturing_output([OutputLine(magnet.product_id, 2)])

        assert result.is_success
        assert ledger.get_balance(magnet.id) == Decimal("2")


# =============================================================================
# Adjustment
# =============================================================================


class TestAdjustment:

    def test_signed_by_direction(self, session, engine_service, ledger, raw):
        result = engine_service.adjustment([
            AdjustmentLine(raw.product_id, 10, AdjustmentDirection.INCREASE, "Inventur"),
            AdjustmentLine(raw.product_id, 3, AdjustmentDirection.DECREASE, "Bruch"),
        ])

        assert result.is_success
        movements = _movements(session, MovementAction.ADJUSTMENT)
        assert sorted(m.quantity for m in movements) == [Decimal("-3"), Decimal("10")]
        assert sorted(m.reason for m in movements) == ["Bruch", "Inventur"]
        assert ledger.get_balance(raw.id) == Decimal("7")
        assert_ledger_consistent(session)

    def test_reason_kept_verbatim(self, session, engine_service, raw):
        reason = "  Zählfehler: 2x gezählt  "
        engine_service.adjustment([
            AdjustmentLine(raw.product_id, 1, AdjustmentDirection.INCREASE, reason),
        ])
        assert _movements(session)[0].reason == reason

    def test_any_category_may_be_adjusted(self, engine_service, final):
        result = engine_service.adjustment([
            AdjustmentLine(final.product_id, 1, AdjustmentDirection.INCREASE),
        ])
        assert result.is_success


# =============================================================================
# Order fulfillment
# =============================================================================


class TestFulfillOrder:

    def test_lines_aggregated_into_one_sale(
        self, session, engine_service, order_service, ledger, final,
    ):
        order = order_service.create_order(
            "A-1", [OrderLine(final.id, 3), OrderLine(final.id, 5)],
        )

        result = engine_service.fulfill_order(order.id)

        assert result.is_success
        assert result.order_id == order.id
        sales = _movements(session, MovementAction.SALE)
        assert len(sales) == 1
        assert sales[0].quantity == Decimal("-8")
        assert sales[0].order_id == order.id
        assert sales[0].reason == "Order A-1"
        assert ledger.get_balance(final.id) == Decimal("-8")

    def test_marks_order_fulfilled(
        self, session, engine_service, order_service, final, deterministic_clock,
    ):
        order = order_service.create_order("A-2", [OrderLine(final.id, 1)])
        deterministic_clock.advance(60)

        engine_service.fulfill_order(order.id)

        session.expire_all()
        stored = session.get(Order, order.id)
        assert stored.status == OrderStatus.FULFILLED
        assert stored.processed_at is not None
        assert stored.is_fulfilled

    def test_second_fulfillment_is_rejected(
        self, session, engine_service, order_service, ledger, final,
    ):
        order = order_service.create_order("A-3", [OrderLine(final.id, 4)])
        engine_service.fulfill_order(order.id)

        second = engine_service.fulfill_order(order.id)

        assert second.status == FulfillmentStatus.ALREADY_FULFILLED
        assert second.error_code == "ALREADY_FULFILLED"
        assert "A-3" in second.message
        assert len(_movements(session, MovementAction.SALE)) == 1
        assert ledger.get_balance(final.id) == Decimal("-4")

    def test_unknown_order(self, engine_service):
        result = engine_service.fulfill_order(uuid4())
        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "ORDER_NOT_FOUND"

    def test_order_without_lines(self, session, engine_service, deterministic_clock):
        now = deterministic_clock.now()
        order = Order(
            order_number="EMPTY-1", status=OrderStatus.OPEN,
            source="manual", created_at=now, updated_at=now,
        )
        session.add(order)
        session.commit()

        result = engine_service.fulfill_order(order.id)

        assert result.error_code == "EMPTY_ORDER"
        session.expire_all()
        assert session.get(Order, order.id).status == OrderStatus.OPEN

    def test_line_with_vanished_variant(self, session, engine_service, order_service, final):
        order = order_service.create_order("A-4", [OrderLine(final.id, 1)])
        order.lines[0].variant_id = uuid4()
        session.commit()

        result = engine_service.fulfill_order(order.id)

        assert result.error_code == "VARIANT_NOT_FOUND"
        assert _movement_count(session) == 0
        session.expire_all()
        assert session.get(Order, order.id).status == OrderStatus.OPEN


# =============================================================================
# Stock policy
# =============================================================================


class TestStockPolicy:

    def test_negative_stock_is_allowed_and_reported(
        self, engine_service, order_service, ledger, final, captured_logs,
    ):
        order = order_service.create_order("N-1", [OrderLine(final.id, 2)])

        result = engine_service.fulfill_order(order.id)

        assert result.is_success
        assert ledger.get_balance(final.id) == Decimal("-2")
        assert len(result.warnings) == 1
        assert result.warnings[0].sku == "FIN-POLE"
        assert result.warnings[0].quantity == Decimal("-2")
        assert any(r["message"] == "negative_stock" for r in captured_logs())

    def test_no_warning_when_stock_suffices(self, engine_service, order_service, final):
        engine_service.adjustment([
            AdjustmentLine(final.product_id, 5, AdjustmentDirection.INCREASE),
        ])
        order = order_service.create_order("N-2", [OrderLine(final.id, 5)])

        result = engine_service.fulfill_order(order.id)

        assert result.warnings == ()

    def test_strict_policy_rejects_oversell(
        self, session, strict_engine, order_service, ledger, final,
    ):
        order = order_service.create_order("N-3", [OrderLine(final.id, 2)])

        result = strict_engine.fulfill_order(order.id)

        assert result.status == FulfillmentStatus.VALIDATION_FAILED
        assert result.error_code == "INSUFFICIENT_STOCK"
        assert _movement_count(session) == 0
        session.expire_all()
        assert session.get(Order, order.id).status == OrderStatus.OPEN

    def test_strict_policy_rejects_consumption_below_zero(
        self, session, strict_engine, raw, final, add_bom_entry,
    ):
        add_bom_entry(final.id, raw.id, 1)

        result = strict_engine.manufacturing_output([OutputLine(final.product_id, 1)])

        assert result.error_code == "INSUFFICIENT_STOCK"
        assert _movement_count(session) == 0


# =============================================================================
# Logging
# =============================================================================

# =============================================================================
# Storage failures
# =============================================================================


def _fail_on_movement(monkeypatch, call_number: int) -> None:
    """Make the n-th LedgerService.apply_movement call hit a database error."""
    original = LedgerService.apply_movement
    calls = {"n": 0}

    def flaky(self, *args, **kwargs):
        calls["n"] += 1
        if calls["n"] == call_number:
            raise OperationalError("UPDATE inventory_balances", {}, Exception("connection lost"))
        return original(self, *args, **kwargs)

    monkeypatch.setattr(LedgerService, "apply_movement", flaky)


class TestStorageFailure:

    def test_database_error_rolls_back_every_line(
        self, session, engine_service, ledger, raw, make_item, monkeypatch,
    ):
        copper = make_item("Copper Wire", ProductCategory.RAW, sku="RAW-COPPER")
        _fail_on_movement(monkeypatch, 2)

        result = engine_service.purchase([
            PurchaseLine(raw.product_id, 10),
            PurchaseLine(copper.product_id, 5),
        ])

        assert result.status == FulfillmentStatus.STORAGE_FAILED
        assert result.error_code == "STORAGE_ERROR"
        assert not result.is_success
        assert result.movements == ()
        assert _movement_count(session) == 0
        assert session.execute(
            select(func.count()).select_from(InventoryBalance)
        ).scalar_one() == 0

    def test_retry_after_storage_failure_applies_once(
        self, session, engine_service, ledger, raw, monkeypatch,
    ):
        _fail_on_movement(monkeypatch, 1)
        assert engine_service.purchase([PurchaseLine(raw.product_id, 4)]).status == (
            FulfillmentStatus.STORAGE_FAILED
        )

        monkeypatch.undo()
        assert engine_service.purchase([PurchaseLine(raw.product_id, 4)]).is_success

        assert ledger.get_balance(raw.id) == Decimal("4")
        assert _movement_count(session) == 1
        assert_ledger_consistent(session)

    def test_storage_failure_logged_as_error(self, engine_service, raw, monkeypatch, captured_logs):
        _fail_on_movement(monkeypatch, 1)
        engine_service.purchase([PurchaseLine(raw.product_id, 1)])

        rejected = next(r for r in captured_logs() if r["message"] == "operation_rejected")
        assert rejected["level"] == "ERROR"
        assert rejected["status"] == "storage_failed"
        assert rejected["error_code"] == "STORAGE_ERROR"



class TestOperationLogging:

    def test_success_lifecycle(self, engine_service, raw, captured_logs):
        engine_service.purchase([PurchaseLine(raw.product_id, 1)], created_by="carol")

        records = captured_logs()
        messages = [r["message"] for r in records]
        assert "operation_started" in messages
        assert "operation_completed" in messages
        completed = next(r for r in records if r["message"] == "operation_completed")
        assert completed["operation"] == "purchase"
        assert completed["actor_id"] == "carol"
        assert completed["movement_count"] == 1
        assert "correlation_id" in completed

    def test_failure_logs_rollback(self, engine_service, captured_logs):
        engine_service.purchase([])

        records = captured_logs()
        rejected = next(r for r in records if r["message"] == "operation_rejected")
        assert rejected["status"] == "validation_failed"
        assert rejected["error_code"] == "EMPTY_ORDER"
        assert any(r["message"] == "transaction_rolled_back" for r in records)


# =============================================================================
# End-to-end scenario
# =============================================================================


class TestScenario:

    def test_purchase_produce_sell(
        self, session, engine_service, order_service, ledger, raw, final, add_bom_entry,
    ):
        add_bom_entry(final.id, raw.id, 3)

        assert engine_service.purchase([PurchaseLine(raw.product_id, 100)]).is_success
        assert ledger.get_balance(raw.id) == Decimal("100")
        assert_ledger_consistent(session)

        assert engine_service.manufacturing_output([OutputLine(final.product_id, 10)]).is_success
        assert ledger.get_balance(final.id) == Decimal("10")
        assert ledger.get_balance(raw.id) == Decimal("70")
        assert_ledger_consistent(session)

        order = order_service.create_order("S-1", [OrderLine(final.id, 4)])
        result = engine_service.fulfill_order(order.id)

        assert result.is_success
        assert result.warnings == ()
        assert ledger.get_balance(final.id) == Decimal("6")
        sales = _movements(session, MovementAction.SALE)
        assert [s.quantity for s in sales] == [Decimal("-4")]
        assert_ledger_consistent(session)
