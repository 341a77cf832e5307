from datetime import datetime, timedelta

import pytest

from backoffice.domain.policies import (
    NON_RETURNABLE_MESSAGE,
    ReturnPolicy,
    check_category,
    check_full_eligibility,
    check_return_eligibility,
    check_return_window,
    validate_policy,
)
from backoffice.domain.refunds import (
    calculate_item_refund,
    calculate_refund,
    calculate_refund_from_return,
    verify_refund_total,
)
from backoffice.domain.returns import ReturnItem, ReturnItemInput, SaleLine


NOW = datetime(2024, 3, 20, 12, 0)
POLICY = ReturnPolicy(max_return_days=7, non_returnable_categories=frozenset({"cat-hygiene"}))


# -----------------------------------------------------------------------------
# Refunds
# -----------------------------------------------------------------------------

def test_item_refund_keeps_discount():
    assert calculate_item_refund(10000, 1000, 2) == 18000


def test_item_refund_zero_quantity():
    assert calculate_item_refund(10000, 1000, 0) == 0


@pytest.mark.parametrize("price, discount, quantity", [(-1, 0, 1), (100, -1, 1), (100, 0, -1), (100, 101, 1)])
def test_item_refund_rejects_bad_input(price, discount, quantity):
    with pytest.raises(ValueError):
        calculate_item_refund(price, discount, quantity)


def test_refund_uses_original_price_and_skips_unknown_lines():
    lines = {
        "l1": SaleLine(id="l1", product_id="p1", quantity=3, unit_price=9000, discount_amount=1000,
                       original_price=10000),
        "l2": SaleLine(id="l2", product_id="p2", quantity=1, unit_price=500),
    }
    requested = [ReturnItemInput("l1", 2), ReturnItemInput("l2", 1), ReturnItemInput("nope", 4)]

    calculation = calculate_refund(requested, lines)

    assert calculation.subtotal == 2 * 10000 + 500
    assert calculation.total_discount == 2 * 1000
    assert calculation.total_refund == 18000 + 500
    assert calculation.skipped_item_ids == ("nope",)
    assert calculation.to_dict()["items"][0]["refund_amount"] == 18000


def test_verify_refund_total():
    items = [
        ReturnItem(transaction_item_id="l1", product_id="p1", quantity=2, original_price=10000,
                   discount_amount=1000, refund_amount=18000, reason="other"),
    ]
    assert calculate_refund_from_return(items).total_refund == 18000
    assert verify_refund_total(items, 18000)
    assert not verify_refund_total(items, 20000)


# -----------------------------------------------------------------------------
# Policies
# -----------------------------------------------------------------------------

def test_inside_window_needs_no_approval():
    check = check_return_window(NOW - timedelta(days=7), POLICY, now=NOW)
    assert check.allowed and not check.requires_approval


def test_past_window_needs_approval():
    check = check_return_window(NOW - timedelta(days=8), POLICY, now=NOW)
    assert check.allowed
    assert check.requires_approval
    assert "7-day" in check.reason


def test_category_block():
    assert check_category("cat-hygiene", POLICY).reason == NON_RETURNABLE_MESSAGE
    assert check_category(None, POLICY).allowed


def test_category_checked_before_window():
    check = check_full_eligibility(NOW - timedelta(days=30), "cat-hygiene", POLICY, now=NOW)
    assert not check.allowed
    assert not check.requires_approval


def test_missing_or_inactive_policy_allows_everything():
    old = NOW - timedelta(days=365)
    assert check_return_eligibility(old, ["cat-hygiene"], None, now=NOW).allowed
    inactive = ReturnPolicy(max_return_days=1, non_returnable_categories=frozenset({"cat-hygiene"}), is_active=False)
    check = check_return_eligibility(old, ["cat-hygiene"], inactive, now=NOW)
    assert check.allowed and not check.requires_approval


def test_whole_return_eligibility():
    check = check_return_eligibility(NOW - timedelta(days=9), ["cat-food", None], POLICY, now=NOW)
    assert check.allowed and check.requires_approval
    assert not check_return_eligibility(NOW, ["cat-food", "cat-hygiene"], POLICY, now=NOW).allowed


def test_validate_policy():
    assert validate_policy(max_return_days=14, non_returnable_categories=["a"], require_receipt=False).valid
    result = validate_policy(max_return_days=0, non_returnable_categories="cat", is_active="yes")
    assert result.messages == [
        "Max return days must be at least 1",
        "Non-returnable categories must be a list of category ids",
        "is_active must be a boolean",
    ]
    assert not validate_policy(max_return_days=True).valid
