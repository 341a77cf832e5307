"""
Service tests for the stock ledger tables and purchase orders.

Every operation runs against the in-memory database and is checked through
the rows it leaves behind: outlet_stock, stock_movements and audit_events.
"""

import pytest

from backoffice.domain.identifiers import IdentifierError, is_valid_identifier
from backoffice.domain.purchase_orders import PurchaseOrderItemInput, ReceivedItem
from backoffice.models import AuditEvent, PurchaseOrder, StockMovement
from backoffice.services import purchase_order_service, stock_service
from backoffice.services.purchase_order_service import PurchaseOrderError, PurchaseOrderNotFoundError
from backoffice.services.stock_service import ProductNotFoundError, StockError


ACTOR = "user-1"


# =============================================================================
# STOCK
# =============================================================================

def test_set_stock_writes_adjustment_movement(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 5)

    row = stock_service.set_stock("A", product.id, 12, ACTOR, notes="Cycle count")

    assert row.quantity == 12
    movements = stock_service.list_movements(outlet_id="A", product_id=product.id)
    assert [(m.movement_type, m.quantity, m.notes) for m in movements] == [("adjustment", 7, "Cycle count")]
    events = db_session.query(AuditEvent).filter_by(event_type="stock.adjusted").all()
    assert events[0].details["delta"] == 7


def test_set_stock_same_quantity_writes_nothing(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 5)
    stock_service.set_stock("A", product.id, 5, ACTOR)
    assert stock_service.list_movements() == []


def test_set_stock_rejects_negative_and_unknown_product(db_session, make_product):
    product = make_product()
    with pytest.raises(StockError) as exc:
        stock_service.set_stock("A", product.id, -1, ACTOR)
    assert "cannot be negative" in str(exc.value)
    db_session.rollback()

    with pytest.raises(ProductNotFoundError):
        stock_service.set_stock("A", "missing", 3, ACTOR)
    db_session.rollback()


def test_product_breakdown(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 5)
    put_stock("B", product.id, 7)
    breakdown = stock_service.product_breakdown(product.id)
    assert breakdown["total"] == 12
    assert {o["outlet_id"]: o["quantity"] for o in breakdown["outlets"]} == {"A": 5, "B": 7}


# =============================================================================
# PURCHASE ORDERS
# =============================================================================

def _create_order(product, quantity=10, unit_price=1500, outlet_id="A"):
    return purchase_order_service.create_purchase_order(
        supplier_id="sup-1",
        outlet_id=outlet_id,
        items=[PurchaseOrderItemInput(product.id, quantity, unit_price)],
        user_id=ACTOR,
    )


def test_create_purchase_order_assigns_number_and_total(db_session, make_product):
    product = make_product()
    first = _create_order(product)
    second = _create_order(product, quantity=1)

    assert first.status == "pending"
    assert first.total_amount == 15000
    assert is_valid_identifier(first.order_number, "PO")
    assert first.order_number.endswith("-0001")
    assert second.order_number.endswith("-0002")
    assert [i.product_id for i in first.items] == [product.id]
    created = db_session.query(AuditEvent).filter_by(event_type="purchase_order.created").count()
    assert created == 2


def test_number_taken_concurrently_is_redrawn(db_session, make_product, monkeypatch):
    product = make_product()
    taken = _create_order(product).order_number
    allocate = purchase_order_service.next_identifier
    draws = []

    def stale_first(column, prefix, **kwargs):
        draws.append(prefix)
        return taken if len(draws) == 1 else allocate(column, prefix, **kwargs)

    monkeypatch.setattr(purchase_order_service, "next_identifier", stale_first)
    second = _create_order(product)

    assert len(draws) == 2
    assert second.order_number != taken
    assert second.order_number.endswith("-0002")
    assert db_session.query(PurchaseOrder).count() == 2


def test_number_always_taken_raises_identifier_error(db_session, make_product, monkeypatch):
    product = make_product()
    taken = _create_order(product).order_number
    monkeypatch.setattr(purchase_order_service, "next_identifier", lambda column, prefix, **kwargs: taken)

    with pytest.raises(IdentifierError):
        _create_order(product)
    db_session.rollback()
    assert db_session.query(PurchaseOrder).count() == 1


def test_create_purchase_order_lists_all_problems(db_session):
    with pytest.raises(PurchaseOrderError) as exc:
        purchase_order_service.create_purchase_order(
            supplier_id="",
            outlet_id="A",
            items=[PurchaseOrderItemInput("missing", 0, 100)],
            user_id=ACTOR,
        )
    db_session.rollback()
    messages = exc.value.messages
    assert "Supplier is required" in messages
    assert "Item 1: Quantity must be greater than 0" in messages
    assert "Product missing not found" in messages
    assert db_session.query(PurchaseOrder).count() == 0


def test_short_receipt_increases_stock_by_received_quantity(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 4)
    order = _create_order(product)
    purchase_order_service.approve_purchase_order(order.id, "manager")

    received = purchase_order_service.receive_purchase_order(
        order.id, [ReceivedItem(product.id, 7)], ACTOR,
    )

    assert received.status == "received"
    assert received.received_date is not None
    assert received.items[0].received_quantity == 7
    assert "Discrepancy" in received.notes
    assert "10" in received.notes and "7" in received.notes
    assert stock_service.get_quantity("A", product.id) == 11

    movements = stock_service.list_movements(reference_id=order.id)
    assert [(m.movement_type, m.quantity) for m in movements] == [("in", 7)]

    report = purchase_order_service.discrepancy_report(received, [ReceivedItem(product.id, 7)])
    assert report.discrepancies[0].difference == -3


def test_pending_order_cannot_be_received(db_session, make_product):
    product = make_product()
    order = _create_order(product)
    with pytest.raises(PurchaseOrderError):
        purchase_order_service.receive_purchase_order(order.id, [ReceivedItem(product.id, 10)], ACTOR)
    db_session.rollback()
    assert stock_service.get_quantity("A", product.id) == 0
    assert db_session.query(StockMovement).count() == 0


def test_cancelled_order_cannot_be_received(db_session, make_product):
    product = make_product()
    order = _create_order(product)
    purchase_order_service.cancel_purchase_order(order.id, ACTOR)

    with pytest.raises(PurchaseOrderError) as exc:
        purchase_order_service.receive_purchase_order(order.id, [ReceivedItem(product.id, 10)], ACTOR)
    db_session.rollback()

    assert exc.value.kind == "terminal_state"
    assert str(exc.value) == "Cannot change status of cancelled purchase order"
    assert stock_service.get_quantity("A", product.id) == 0
    assert purchase_order_service.get_purchase_order(order.id).status == "cancelled"


def test_same_product_twice_is_rejected_at_creation(db_session, make_product):
    product = make_product()
    with pytest.raises(PurchaseOrderError) as exc:
        purchase_order_service.create_purchase_order(
            supplier_id="sup-1",
            outlet_id="A",
            items=[
                PurchaseOrderItemInput(product.id, 5, 100),
                PurchaseOrderItemInput(product.id, 5, 100),
            ],
            user_id=ACTOR,
        )
    db_session.rollback()
    assert exc.value.messages == [f"Item 2: Product {product.id} is listed more than once"]
    assert db_session.query(PurchaseOrder).count() == 0


def test_cancelled_order_is_terminal(db_session, make_product):
    product = make_product()
    order = _create_order(product)
    purchase_order_service.cancel_purchase_order(order.id, ACTOR)
    with pytest.raises(PurchaseOrderError) as exc:
        purchase_order_service.approve_purchase_order(order.id, ACTOR)
    db_session.rollback()
    assert exc.value.kind == "terminal_state"


def test_unknown_order(db_session):
    with pytest.raises(PurchaseOrderNotFoundError):
        purchase_order_service.approve_purchase_order("nope", ACTOR)
    db_session.rollback()


def test_list_purchase_orders_filters(db_session, make_product):
    product = make_product()
    first = _create_order(product, outlet_id="A")
    second = _create_order(product, outlet_id="B")
    purchase_order_service.approve_purchase_order(second.id, ACTOR)

    assert [o.id for o in purchase_order_service.list_purchase_orders(status="approved")] == [second.id]
    assert [o.id for o in purchase_order_service.list_purchase_orders(outlet_id="A")] == [first.id]
    assert len(purchase_order_service.list_purchase_orders(search=first.order_number)) == 1
