from dataclasses import replace
from datetime import datetime, timedelta

from backoffice.domain import returns as rt
from backoffice.domain.ledger import MOVEMENT_RETURN, StockLedger
from backoffice.domain.policies import ReturnPolicy
from backoffice.domain.results import (
    KIND_INVALID_TRANSITION,
    KIND_POLICY_BLOCKED,
    KIND_TERMINAL_STATE,
    KIND_VALIDATION,
)


NOW = datetime(2024, 3, 20, 12, 0)
NUMBER = "RTN-20240320-0001"
POLICY = ReturnPolicy(max_return_days=7, non_returnable_categories=frozenset({"cat-hygiene"}))


def _sale(days_ago=1):
    return rt.Sale(
        id="txn-1",
        outlet_id="A",
        sale_date=NOW - timedelta(days=days_ago),
        lines=(
            rt.SaleLine(id="l1", product_id="p1", quantity=3, unit_price=9000, discount_amount=1000,
                        original_price=10000, category_id="cat-shoes", product_name="Runner"),
            rt.SaleLine(id="l2", product_id="p2", quantity=1, unit_price=400, category_id="cat-hygiene",
                        product_name="Toothbrush"),
        ),
    )


def _create(items, sale=None, already_returned=None, policy=POLICY):
    data = rt.ReturnInput(transaction_id="txn-1", items=tuple(items))
    return rt.create_return(
        data, sale or _sale(),
        return_number=NUMBER, created_by="u1", already_returned=already_returned,
        policy=policy, return_id="r-1", now=NOW,
    )


def test_create_inside_window_is_approved_and_priced():
    result = _create([rt.ReturnItemInput("l1", 2, reason=rt.REASON_CHANGED_MIND)])
    assert result.success
    ret = result.resource
    assert ret.status == rt.RETURN_STATUS_APPROVED
    assert not ret.requires_approval
    assert ret.total_refund == 18000
    assert ret.outlet_id == "A"
    assert ret.items[0].original_price == 10000


def test_create_past_window_waits_for_approval():
    result = _create([rt.ReturnItemInput("l1", 1)], sale=_sale(days_ago=10))
    assert result.resource.status == rt.RETURN_STATUS_PENDING_APPROVAL
    assert result.resource.requires_approval


def test_non_returnable_category_blocks_whole_return():
    result = _create([rt.ReturnItemInput("l1", 1), rt.ReturnItemInput("l2", 1)])
    assert not result.success
    assert result.error.kind == KIND_POLICY_BLOCKED
    assert result.error.details["product_id"] == "p2"


def test_no_policy_means_no_gate():
    result = _create([rt.ReturnItemInput("l2", 1)], sale=_sale(days_ago=90), policy=None)
    assert result.resource.status == rt.RETURN_STATUS_APPROVED


def test_quantity_limited_by_earlier_returns():
    result = _create([rt.ReturnItemInput("l1", 2)], already_returned={"l1": 2})
    assert not result.success
    error = result.error
    assert error.kind == KIND_VALIDATION
    assert error.details["available"] == 1
    assert error.details["requested"] == 2
    assert error.details["product_name"] == "Runner"


def test_repeated_line_checked_on_combined_quantity():
    result = _create([rt.ReturnItemInput("l1", 2), rt.ReturnItemInput("l1", 2)])
    assert "Available: 3, requested: 4" in result.error.message


def test_unknown_line_reason_and_zero_quantity_rejected():
    result = _create([
        rt.ReturnItemInput("l9", 1),
        rt.ReturnItemInput("l1", 0),
        rt.ReturnItemInput("l1", 1, reason="boredom"),
    ])
    messages = " | ".join(result.messages)
    assert "Invalid return reason 'boredom'" in messages
    assert "Sale line l9 not found" in messages
    assert "Return quantity must be greater than 0 for product p1" in messages


def test_returned_quantities_ignore_released_returns():
    live = _create([rt.ReturnItemInput("l1", 1)]).resource
    rejected = replace(live, id="r-2", status=rt.RETURN_STATUS_REJECTED)
    assert rt.returned_quantities([live, rejected]) == {"l1": 1}


def _pending():
    return _create([rt.ReturnItemInput("l1", 1)], sale=_sale(days_ago=10)).resource


def test_approve_requires_approver_and_reason():
    result = rt.approve_return(_pending(), "", " ")
    assert result.messages == ["Approver is required", "Reason is required"]


def test_approve_and_reject_only_from_pending():
    approved = rt.approve_return(_pending(), "mgr", "Loyal customer", now=NOW).resource
    assert approved.status == rt.RETURN_STATUS_APPROVED
    assert approved.approved_by == "mgr"
    assert approved.approval_reason == "Loyal customer"

    again = rt.approve_return(approved, "mgr", "again")
    assert again.error.message == "Return is already approved"
    assert again.error.kind == KIND_INVALID_TRANSITION

    rejected = rt.reject_return(_pending(), "Worn", now=NOW).resource
    assert rejected.rejected_reason == "Worn"
    assert rt.approve_return(rejected, "mgr", "x").error.kind == KIND_TERMINAL_STATE


UNCHANGED_FIELDS = ("id", "return_number", "transaction_id", "total_refund", "created_by", "items", "outlet_id")


def test_decisions_leave_other_fields_alone():
    pending = _pending()
    approved = rt.approve_return(pending, "mgr", "Receipt checked", now=NOW).resource
    rejected = rt.reject_return(pending, "Worn", now=NOW).resource

    for decided in (approved, rejected):
        assert {f: getattr(decided, f) for f in UNCHANGED_FIELDS} == {f: getattr(pending, f) for f in UNCHANGED_FIELDS}
    assert approved.rejected_reason is None
    assert rejected.approved_by is None
    assert pending.status == rt.RETURN_STATUS_PENDING_APPROVAL


def test_complete_restocks_only_resellable_items():
    ret = _create([
        rt.ReturnItemInput("l1", 2, reason=rt.REASON_DAMAGED, is_damaged=True),
        rt.ReturnItemInput("l1", 1),
    ]).resource
    ledger = StockLedger.from_rows([("A", "p1", 5)])

    result = rt.complete_return(ret, ledger, rt.REFUND_METHOD_CARD, now=NOW)

    assert result.success
    assert result.ledger.quantity("A", "p1") == 6
    assert [(m.movement_type, m.quantity) for m in result.movements] == [(MOVEMENT_RETURN, 1)]
    assert result.resource.status == rt.RETURN_STATUS_COMPLETED
    assert result.resource.refund_method == rt.REFUND_METHOD_CARD
    assert rt.sale_line_increments(result.resource) == {"l1": 3}


def test_complete_guards():
    pending = _pending()
    assert rt.complete_return(pending, StockLedger(), "cash").error.message == "Return is still awaiting approval"

    approved = _create([rt.ReturnItemInput("l1", 1)]).resource
    bad_method = rt.complete_return(approved, StockLedger(), "cheque")
    assert "Invalid refund method 'cheque'" in bad_method.error.message

    completed = rt.complete_return(approved, StockLedger(), "cash").resource
    assert rt.complete_return(completed, StockLedger(), "cash").error.message == "Return is already completed"
    cancelled = replace(approved, status=rt.RETURN_STATUS_CANCELLED)
    assert rt.complete_return(cancelled, StockLedger(), "cash").error.message == "Return has been cancelled or rejected"


def test_cancel_rules():
    approved = _create([rt.ReturnItemInput("l1", 1)]).resource
    assert rt.cancel_return(approved).resource.status == rt.RETURN_STATUS_CANCELLED
    assert rt.cancel_return(_pending()).resource.status == rt.RETURN_STATUS_CANCELLED

    completed = rt.complete_return(approved, StockLedger(), "cash").resource
    assert rt.cancel_return(completed).error.message == "Completed returns cannot be cancelled"
    rejected = rt.reject_return(_pending(), "no").resource
    assert rt.cancel_return(rejected).error.message == "Return is already rejected"


def test_pending_approval_filter():
    approved = _create([rt.ReturnItemInput("l1", 1)]).resource
    pending = _pending()
    assert rt.filter_pending_approvals([approved, pending]) == [pending]
    assert rt.filter_returns([approved, pending], status=rt.RETURN_STATUS_APPROVED) == [approved]
