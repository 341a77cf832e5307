"""
Service tests for stock transfers, returns and the return policy.
"""

import pytest

from backoffice.domain.returns import ReturnItemInput
from backoffice.domain.transfers import TransferItemInput
from backoffice.models import AuditEvent, ReturnPolicy, StockMovement, TransactionItem
from backoffice.services import audit_service, policy_service, return_service, stock_service, transfer_service
from backoffice.services.policy_service import ReturnPolicyError
from backoffice.services.return_service import ReturnError, TransactionNotFoundError
from backoffice.services.transfer_service import TransferError


ACTOR = "user-1"


# =============================================================================
# TRANSFERS
# =============================================================================

def _transfer(product, quantity=30):
    return transfer_service.create_transfer("A", "B", [TransferItemInput(product.id, quantity)], ACTOR)


def test_transfer_moves_stock_on_completion_only(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 100)

    transfer = _transfer(product)
    assert transfer.status == "pending"
    assert transfer.transfer_number.startswith("TRF-")
    transfer_service.approve_transfer(transfer.id, "manager")
    assert stock_service.get_quantity("A", product.id) == 100

    completed = transfer_service.complete_transfer(transfer.id, ACTOR)

    assert completed.status == "completed"
    assert completed.approved_by == "manager"
    assert stock_service.get_quantity("A", product.id) == 70
    assert stock_service.get_quantity("B", product.id) == 30
    movements = stock_service.list_movements(reference_type="stock_transfer", reference_id=transfer.id)
    assert sorted((m.outlet_id, m.movement_type, m.quantity) for m in movements) == [
        ("A", "transfer_out", -30),
        ("B", "transfer_in", 30),
    ]
    events = audit_service.list_events(entity_type="stock_transfer", entity_id=transfer.id)
    assert sorted(e.event_type for e in events) == ["transfer.approved", "transfer.completed", "transfer.created"]


def test_transfer_rejected_when_source_short(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 10)
    with pytest.raises(TransferError) as exc:
        _transfer(product, quantity=11)
    db_session.rollback()
    assert exc.value.kind == "insufficient_stock"
    assert exc.value.errors[0].details == {
        "outlet_id": "A", "product_id": product.id, "available": 10, "requested": 11,
    }


def test_completion_rechecks_source_stock(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 30)
    transfer = _transfer(product)
    transfer_service.approve_transfer(transfer.id, "manager")
    stock_service.set_stock("A", product.id, 20, ACTOR)

    with pytest.raises(TransferError):
        transfer_service.complete_transfer(transfer.id, ACTOR)
    db_session.rollback()

    assert transfer_service.get_transfer(transfer.id).status == "approved"
    assert stock_service.get_quantity("A", product.id) == 20
    assert stock_service.get_quantity("B", product.id) == 0


def test_completed_transfer_cannot_be_cancelled(db_session, make_product, put_stock):
    product = make_product()
    put_stock("A", product.id, 30)
    transfer = _transfer(product)
    transfer_service.approve_transfer(transfer.id, "manager")
    transfer_service.complete_transfer(transfer.id, ACTOR)

    with pytest.raises(TransferError) as exc:
        transfer_service.cancel_transfer(transfer.id, ACTOR)
    db_session.rollback()
    assert str(exc.value) == "Transfer is already completed"


# =============================================================================
# RETURNS
# =============================================================================

def test_return_within_window_completes_with_restock(db_session, make_product, make_sale, put_stock, policy):
    product = make_product(category_id="cat-shoes")
    sale = make_sale([(product, 3, 9000, 1000, 10000)], outlet_id="A", days_ago=2)
    put_stock("A", product.id, 1)
    line = sale.items[0]

    ret = return_service.create_return(sale.id, [ReturnItemInput(line.id, 2)], ACTOR)
    assert ret.status == "approved"
    assert ret.total_refund == 18000
    assert ret.return_number.startswith("RTN-")

    completed = return_service.complete_return(ret.id, "cash", ACTOR)

    assert completed.status == "completed"
    assert completed.refund_method == "cash"
    assert stock_service.get_quantity("A", product.id) == 3
    assert db_session.get(TransactionItem, line.id).returned_quantity == 2
    refund_events = db_session.query(AuditEvent).filter_by(event_type="refund").all()
    assert refund_events[0].details["total_refund"] == 18000
    assert refund_events[0].details["refund_method"] == "cash"


def test_damaged_items_are_not_restocked(db_session, make_product, make_sale, put_stock):
    product = make_product()
    sale = make_sale([(product, 2, 500)], outlet_id="A")
    ret = return_service.create_return(
        sale.id, [ReturnItemInput(sale.items[0].id, 2, reason="damaged", is_damaged=True)], ACTOR,
    )
    return_service.complete_return(ret.id, "card", ACTOR)
    assert stock_service.get_quantity("A", product.id) == 0
    assert db_session.query(StockMovement).count() == 0


def test_return_past_window_needs_approval(db_session, make_product, make_sale, policy):
    product = make_product()
    sale = make_sale([(product, 1, 500)], days_ago=30)
    ret = return_service.create_return(sale.id, [ReturnItemInput(sale.items[0].id, 1)], ACTOR)

    assert ret.status == "pending_approval"
    assert [r.id for r in return_service.list_pending_approvals()] == [ret.id]
    with pytest.raises(ReturnError) as exc:
        return_service.complete_return(ret.id, "cash", ACTOR)
    db_session.rollback()
    assert str(exc.value) == "Return is still awaiting approval"

    approved = return_service.approve_return(ret.id, "manager", "Receipt checked")
    assert approved.status == "approved"
    assert approved.approved_by == "manager"
    assert return_service.list_pending_approvals() == []


def test_blocked_category_rejects_return(db_session, make_product, make_sale, policy):
    product = make_product(category_id="cat-hygiene")
    sale = make_sale([(product, 1, 500)])
    with pytest.raises(ReturnError) as exc:
        return_service.create_return(sale.id, [ReturnItemInput(sale.items[0].id, 1)], ACTOR)
    db_session.rollback()
    assert exc.value.kind == "policy_blocked"


def test_returned_quantity_is_held_until_released(db_session, make_product, make_sale):
    product = make_product()
    sale = make_sale([(product, 3, 500)])
    line_id = sale.items[0].id

    first = return_service.create_return(sale.id, [ReturnItemInput(line_id, 2)], ACTOR)
    with pytest.raises(ReturnError) as exc:
        return_service.create_return(sale.id, [ReturnItemInput(line_id, 2)], ACTOR)
    db_session.rollback()
    assert exc.value.errors[0].details["available"] == 1

    return_service.cancel_return(first.id, ACTOR)
    items = return_service.get_returnable_items(sale.id)
    assert items[0]["available_quantity"] == 3


def test_refund_details_and_eligibility(db_session, make_product, make_sale, policy):
    product = make_product()
    sale = make_sale([(product, 2, 10000, 1000)], days_ago=10)
    ret = return_service.create_return(sale.id, [ReturnItemInput(sale.items[0].id, 2)], ACTOR)

    details = return_service.get_refund_details(ret.id)
    assert details["total_refund"] == 18000
    assert details["total_discount"] == 2000
    assert details["consistent"] is True

    eligibility = return_service.check_eligibility(sale.id)
    assert eligibility["allowed"] is True
    assert eligibility["requires_approval"] is True


def test_eligibility_reports_each_line(db_session, make_product, make_sale, policy):
    shoes = make_product(name="Runner", category_id="cat-shoes")
    brush = make_product(name="Toothbrush", category_id="cat-hygiene")
    sale = make_sale([(shoes, 1, 5000), (brush, 1, 400)])

    eligibility = return_service.check_eligibility(sale.id)

    assert eligibility["allowed"] is True
    assert eligibility["requires_approval"] is False
    verdicts = {line["product_id"]: line["allowed"] for line in eligibility["lines"]}
    assert verdicts == {shoes.id: True, brush.id: False}
    blocked = [line for line in eligibility["lines"] if not line["allowed"]][0]
    brush_line = next(item for item in sale.items if item.product_id == brush.id)
    assert blocked["transaction_item_id"] == brush_line.id
    assert blocked["reason"]


def test_eligibility_blocked_when_every_line_is_blocked(db_session, make_product, make_sale, policy):
    brush = make_product(name="Toothbrush", category_id="cat-hygiene")
    sale = make_sale([(brush, 1, 400)])

    eligibility = return_service.check_eligibility(sale.id)

    assert eligibility["allowed"] is False
    assert eligibility["requires_approval"] is False
    assert eligibility["reason"] == eligibility["lines"][0]["reason"]


def test_unknown_transaction(db_session):
    with pytest.raises(TransactionNotFoundError):
        return_service.create_return("nope", [ReturnItemInput("x", 1)], ACTOR)
    db_session.rollback()


# =============================================================================
# POLICY
# =============================================================================

def test_update_policy_creates_default_then_updates(db_session):
    assert policy_service.get_active_policy() is None

    policy = policy_service.update_policy(ACTOR, non_returnable_categories=["cat-a", " cat-a ", "cat-b"])
    assert policy.max_return_days == 7
    assert policy.non_returnable_categories == ["cat-a", "cat-b"]

    updated = policy_service.update_policy(ACTOR, max_return_days=30)
    assert updated.id == policy.id
    assert updated.max_return_days == 30
    assert db_session.query(ReturnPolicy).count() == 1
    assert db_session.query(AuditEvent).filter_by(event_type="return_policy.updated").count() == 2


def test_update_policy_rejects_invalid_values(db_session):
    with pytest.raises(ReturnPolicyError) as exc:
        policy_service.update_policy(ACTOR, max_return_days=0, require_receipt="no")
    db_session.rollback()
    assert exc.value.messages == ["Max return days must be at least 1", "require_receipt must be a boolean"]
