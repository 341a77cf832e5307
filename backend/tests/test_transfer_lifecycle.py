from dataclasses import replace
from datetime import datetime

from backoffice.domain import transfers as tr
from backoffice.domain.ledger import MOVEMENT_TRANSFER_IN, MOVEMENT_TRANSFER_OUT, StockLedger
from backoffice.domain.results import (
    KIND_INSUFFICIENT_STOCK,
    KIND_INVALID_TRANSITION,
    KIND_TERMINAL_STATE,
)


NOW = datetime(2024, 3, 5, 9, 30)
NUMBER = "TRF-20240305-0001"
STOCK = StockLedger.from_rows([("A", "p1", 100), ("B", "p1", 0), ("A", "p2", 5)])


def _create(items=(tr.TransferItemInput("p1", 30),), source="A", destination="B", ledger=STOCK):
    data = tr.TransferInput(source_outlet_id=source, destination_outlet_id=destination, items=items)
    return tr.create_transfer(data, ledger, transfer_number=NUMBER, created_by="u1", transfer_id="t-1", now=NOW)


def _approved():
    transfer = _create().resource
    return tr.approve_transfer(transfer, "manager", now=NOW).resource


def test_create_is_pending_and_does_not_touch_stock():
    result = _create()
    assert result.success
    assert result.resource.status == tr.TRANSFER_STATUS_PENDING
    assert result.ledger is None
    assert STOCK.quantity("A", "p1") == 100


def test_same_outlet_rejected():
    result = _create(destination="A")
    assert "Destination outlet must differ from source outlet" in result.messages


def test_empty_and_non_positive_items_rejected():
    assert "Transfer must contain at least one item" in _create(items=()).messages
    result = _create(items=(tr.TransferItemInput("p1", 0),))
    assert "Transfer quantity must be greater than 0 for product p1" in result.messages


def test_insufficient_stock_is_checked_per_product():
    items = (tr.TransferItemInput("p1", 60), tr.TransferItemInput("p1", 50), tr.TransferItemInput("p2", 5))
    result = _create(items=items)
    assert not result.success
    assert len(result.errors) == 1
    error = result.error
    assert error.kind == KIND_INSUFFICIENT_STOCK
    assert error.details["available"] == 100
    assert error.details["requested"] == 110


def test_complete_moves_stock_and_conserves_total():
    result = tr.complete_transfer(STOCK, _approved(), now=NOW)

    assert result.success
    assert result.ledger.quantity("A", "p1") == 70
    assert result.ledger.quantity("B", "p1") == 30
    assert result.ledger.total("p1") == STOCK.total("p1")
    assert [(m.outlet_id, m.movement_type, m.quantity) for m in result.movements] == [
        ("A", MOVEMENT_TRANSFER_OUT, -30),
        ("B", MOVEMENT_TRANSFER_IN, 30),
    ]
    assert all(m.reference_id == "t-1" for m in result.movements)
    assert result.resource.status == tr.TRANSFER_STATUS_COMPLETED
    assert result.resource.completed_at == NOW


def test_complete_rechecks_stock():
    drained = STOCK.set("A", "p1", 10)
    result = tr.complete_transfer(drained, _approved())
    assert result.error.kind == KIND_INSUFFICIENT_STOCK
    assert result.ledger is None


def test_pending_transfer_cannot_complete():
    pending = _create().resource
    result = tr.complete_transfer(STOCK, pending)
    assert result.error.kind == KIND_INVALID_TRANSITION
    assert "Only approved transfers can be completed" in result.error.message


def test_approve_only_from_pending():
    result = tr.approve_transfer(_approved(), "manager")
    assert result.error.message == "Only pending transfers can be approved (current status: approved)"


def test_cancel_rules():
    assert tr.cancel_transfer(_approved()).resource.status == tr.TRANSFER_STATUS_CANCELLED
    completed = tr.complete_transfer(STOCK, _approved()).resource
    result = tr.cancel_transfer(completed)
    assert result.error.kind == KIND_TERMINAL_STATE
    assert result.error.message == "Transfer is already completed"
    cancelled = replace(completed, status=tr.TRANSFER_STATUS_CANCELLED)
    assert tr.cancel_transfer(cancelled).error.message == "Transfer is already cancelled"


def test_calculate_stock_change():
    transfer = _create().resource
    assert tr.calculate_stock_change(transfer, "A", "p1") == -30
    assert tr.calculate_stock_change(transfer, "B", "p1") == 30
    assert tr.calculate_stock_change(transfer, "C", "p1") == 0
    assert tr.calculate_stock_change(transfer, "A", "p2") == 0


def test_filter_transfers():
    first = _create().resource
    second = replace(first, id="t-2", source_outlet_id="B", destination_outlet_id="A",
                     status=tr.TRANSFER_STATUS_APPROVED, created_at=datetime(2024, 3, 7))
    transfers = [first, second]
    assert tr.filter_transfers(transfers, status=tr.TRANSFER_STATUS_APPROVED) == [second]
    assert tr.filter_transfers(transfers, source_outlet_id="A") == [first]
    assert tr.filter_transfers(transfers, start_date=datetime(2024, 3, 6)) == [second]
