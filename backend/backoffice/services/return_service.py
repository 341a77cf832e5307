# backend/backoffice/services/return_service.py
"""
Return and refund service.

WHY: A customer return touches three things that must agree: the return
document, the original sale lines (how much of each is still returnable)
and outlet stock (resellable units go back on the shelf). Each operation
locks what it changes and writes all of it in one transaction.

LIFECYCLE:
1. approved / pending_approval: created; past the policy window the return
   waits for a manager
2. approved: manager approved (only from pending_approval)
3. completed: refund paid, resellable units restocked, sale lines updated
4. rejected / cancelled: released; its quantities become returnable again
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Sequence

from ..domain import returns as return_domain
from ..domain.identifiers import PREFIX_RETURN
from ..domain.policies import check_return_eligibility
from ..domain.refunds import calculate_refund, verify_refund_total
from ..extensions import db
from ..models import Return, ReturnItem, Transaction, TransactionItem
from ..models.inventory import new_id
from ..time_utils import utcnow
from .audit_service import record_event
from .concurrency import lock_for_update, run_with_retry
from .errors import LifecycleServiceError, RecordNotFoundError
from .identifier_service import flush_numbered, next_identifier
from .policy_service import get_active_policy_rules
from .stock_service import apply_ledger, load_ledger


logger = logging.getLogger(__name__)


class ReturnError(LifecycleServiceError):
    """Raised when return operations fail."""
    pass


class ReturnNotFoundError(RecordNotFoundError):
    def __init__(self, return_id):
        super().__init__("Return", return_id)


class TransactionNotFoundError(RecordNotFoundError):
    def __init__(self, transaction_id):
        super().__init__("Transaction", transaction_id)


def _lock_return(return_id: str) -> Return:
    ret = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if not ret:
        raise ReturnNotFoundError(return_id)
    return ret


def _get_transaction(transaction_id: str) -> Transaction:
    transaction = db.session.get(Transaction, transaction_id) if transaction_id else None
    if not transaction:
        raise TransactionNotFoundError(transaction_id)
    return transaction


def _write_back(ret: Return, updated: return_domain.Return) -> None:
    ret.status = updated.status
    ret.refund_method = updated.refund_method
    ret.approved_by = updated.approved_by
    ret.approval_reason = updated.approval_reason
    ret.rejected_reason = updated.rejected_reason
    ret.completed_at = updated.completed_at
    ret.updated_at = updated.updated_at


def already_returned(transaction_id: str, exclude_return_id: str | None = None) -> dict[str, int]:
    """Quantity per sale line held by the transaction's live and completed returns."""
    query = db.session.query(Return).filter(Return.transaction_id == transaction_id)
    if exclude_return_id:
        query = query.filter(Return.id != exclude_return_id)
    return return_domain.returned_quantities(ret.to_domain() for ret in query.all())


def create_return(
    transaction_id: str,
    items: Sequence[return_domain.ReturnItemInput],
    user_id: str,
    notes: str | None = None,
) -> Return:
    """
    Create a return against a sale.

    Quantities are checked against what other returns of the same sale
    already hold. The active policy decides whether the return starts
    approved or waits for a manager; a non-returnable category rejects it.

    Args:
        transaction_id: The original sale
        items: Sale line, quantity, reason and damage flag per item
        user_id: User creating the return
        notes: Optional free text

    Returns:
        Return: The created return

    Raises:
        TransactionNotFoundError: If the sale does not exist
        ReturnError: Validation failure or policy block (all problems listed)
        IdentifierError: If no return number can be allocated
    """
    data = return_domain.ReturnInput(transaction_id=transaction_id, items=tuple(items), notes=notes)

    def _op():
        transaction = _get_transaction(transaction_id)
        # Lock the sale lines so two returns cannot both claim the last unit
        lock_for_update(
            db.session.query(TransactionItem).filter(TransactionItem.transaction_id == transaction.id)
        ).all()

        return_number = next_identifier(Return.return_number, PREFIX_RETURN)
        result = return_domain.create_return(
            data,
            transaction.to_domain(),
            return_number=return_number,
            created_by=user_id,
            already_returned=already_returned(transaction.id),
            policy=get_active_policy_rules(),
            return_id=new_id(),
        )
        if not result.success:
            logger.warning("Return for transaction %s rejected: %s", transaction_id, result.error.message)
            raise ReturnError(result.errors)

        created = result.resource
        ret = Return(
            id=created.id,
            return_number=created.return_number,
            transaction_id=created.transaction_id,
            outlet_id=created.outlet_id,
            status=created.status,
            total_refund=created.total_refund,
            requires_approval=created.requires_approval,
            notes=created.notes,
            created_by=created.created_by,
            created_at=created.created_at,
            updated_at=created.updated_at,
        )
        for position, item in enumerate(created.items):
            ret.items.append(ReturnItem(
                transaction_item_id=item.transaction_item_id,
                product_id=item.product_id,
                position=position,
                quantity=item.quantity,
                original_price=item.original_price,
                discount_amount=item.discount_amount,
                refund_amount=item.refund_amount,
                reason=item.reason,
                reason_detail=item.reason_detail,
                is_damaged=item.is_damaged,
                is_resellable=item.is_resellable,
                created_at=created.created_at,
            ))
        db.session.add(ret)
        flush_numbered(Return.return_number, ret.return_number)

        record_event(
            "return.created",
            "return",
            ret.id,
            {
                "return_number": ret.return_number,
                "transaction_id": ret.transaction_id,
                "status": ret.status,
                "requires_approval": ret.requires_approval,
                "total_refund": ret.total_refund,
                "items_count": len(created.items),
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Return %s created by %s (%s)", ret.return_number, user_id, ret.status)
        return ret

    return run_with_retry(_op)


def get_return(return_id: str) -> Return:
    ret = db.session.get(Return, return_id)
    if not ret:
        raise ReturnNotFoundError(return_id)
    return ret


def list_returns(
    status: str | None = None,
    outlet_id: str | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> list[Return]:
    """Returns newest first, filtered by status, outlet and created-at range."""
    query = db.session.query(Return)
    if status:
        query = query.filter(Return.status == status)
    if outlet_id:
        query = query.filter(Return.outlet_id == outlet_id)
    if start_date:
        query = query.filter(Return.created_at >= start_date)
    if end_date:
        query = query.filter(Return.created_at <= end_date)
    return query.order_by(Return.created_at.desc(), Return.return_number.desc()).all()


def list_pending_approvals(outlet_id: str | None = None) -> list[Return]:
    """Returns waiting for a manager, oldest first."""
    query = db.session.query(Return).filter(
        Return.status == return_domain.RETURN_STATUS_PENDING_APPROVAL,
        Return.requires_approval.is_(True),
    )
    if outlet_id:
        query = query.filter(Return.outlet_id == outlet_id)
    return query.order_by(Return.created_at.asc()).all()


def _decide(return_id: str, target: str, user_id: str, reason: str, event_type: str) -> Return:
    def _op():
        ret = _lock_return(return_id)
        current = ret.to_domain()
        if target == return_domain.RETURN_STATUS_APPROVED:
            result = return_domain.approve_return(current, user_id, reason)
        else:
            result = return_domain.reject_return(current, reason)
        if not result.success:
            logger.warning("Return %s: %s", ret.return_number, result.error.message)
            raise ReturnError(result.errors)

        _write_back(ret, result.resource)
        record_event(
            event_type,
            "return",
            ret.id,
            {"return_number": ret.return_number, "reason": (reason or "").strip()},
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Return %s %s by %s", ret.return_number, ret.status, user_id)
        return ret

    return run_with_retry(_op)


def approve_return(return_id: str, approver_id: str, reason: str) -> Return:
    """
    pending_approval -> approved.

    Raises:
        ReturnNotFoundError: If the return does not exist
        ReturnError: Missing approver/reason or the return is not awaiting approval
    """
    return _decide(return_id, return_domain.RETURN_STATUS_APPROVED, approver_id, reason, "return.approved")


def reject_return(return_id: str, user_id: str, reason: str) -> Return:
    """pending_approval -> rejected. Its quantities become returnable again."""
    return _decide(return_id, return_domain.RETURN_STATUS_REJECTED, user_id, reason, "return.rejected")


def complete_return(return_id: str, refund_method: str, user_id: str) -> Return:
    """
    Complete an approved return: record the refund and restock.

    Resellable units go back into the return's outlet with a `return`
    movement each; damaged units do not. The sale lines' returned quantity
    grows by the returned quantity.

    Args:
        return_id: Return to complete
        refund_method: cash, card or e-wallet
        user_id: User paying out the refund

    Raises:
        ReturnNotFoundError: If the return does not exist
        ReturnError: Not approved, or invalid refund method
    """
    def _op():
        ret = _lock_return(return_id)
        current = ret.to_domain()
        keys = [
            (current.outlet_id, item.product_id)
            for item in current.items
            if item.is_resellable and current.outlet_id
        ]
        before = load_ledger(keys)

        result = return_domain.complete_return(current, before, refund_method)
        if not result.success:
            logger.warning("Return %s completion rejected: %s", ret.return_number, result.error.message)
            raise ReturnError(result.errors)

        _write_back(ret, result.resource)
        apply_ledger(before, result.ledger, result.movements, actor_id=user_id)

        increments = return_domain.sale_line_increments(result.resource)
        if increments:
            lines = lock_for_update(
                db.session.query(TransactionItem).filter(TransactionItem.id.in_(list(increments)))
            ).all()
            for line in lines:
                line.returned_quantity = (line.returned_quantity or 0) + increments[line.id]

        record_event(
            "return.completed",
            "return",
            ret.id,
            {
                "return_number": ret.return_number,
                "movements": [m.to_dict() for m in result.movements],
            },
            actor_id=user_id,
        )
        record_event(
            "refund",
            "return",
            ret.id,
            {
                "return_number": ret.return_number,
                "transaction_id": ret.transaction_id,
                "refund_method": ret.refund_method,
                "total_refund": ret.total_refund,
                "items_count": len(current.items),
            },
            actor_id=user_id,
        )
        db.session.commit()
        logger.info(
            "Return %s completed by %s: refund %d via %s",
            ret.return_number, user_id, ret.total_refund, ret.refund_method,
        )
        return ret

    return run_with_retry(_op)


def cancel_return(return_id: str, user_id: str) -> Return:
    """
    Cancel a return that has not completed. No stock effect.

    Raises:
        ReturnNotFoundError: If the return does not exist
        ReturnError: If the return is completed, rejected or already cancelled
    """
    def _op():
        ret = _lock_return(return_id)
        previous = ret.status
        result = return_domain.cancel_return(ret.to_domain())
        if not result.success:
            logger.warning("Return %s: %s", ret.return_number, result.error.message)
            raise ReturnError(result.errors)

        _write_back(ret, result.resource)
        record_event(
            "return.cancelled",
            "return",
            ret.id,
            {"return_number": ret.return_number, "from_status": previous},
            actor_id=user_id,
        )
        db.session.commit()
        logger.info("Return %s cancelled by %s", ret.return_number, user_id)
        return ret

    return run_with_retry(_op)


def transition_return(
    return_id: str,
    target: str,
    user_id: str,
    reason: str | None = None,
    refund_method: str | None = None,
) -> Return:
    """Move a return to `target` (approved, rejected, completed or cancelled)."""
    if target == return_domain.RETURN_STATUS_APPROVED:
        return approve_return(return_id, user_id, reason)
    if target == return_domain.RETURN_STATUS_REJECTED:
        return reject_return(return_id, user_id, reason)
    if target == return_domain.RETURN_STATUS_COMPLETED:
        return complete_return(return_id, refund_method, user_id)
    if target == return_domain.RETURN_STATUS_CANCELLED:
        return cancel_return(return_id, user_id)

    ret = get_return(return_id)
    result = return_domain.transition_return(ret.to_domain(), target, actor_id=user_id)
    raise ReturnError(result.errors)


# =============================================================================
# REFUNDS AND ELIGIBILITY
# =============================================================================

def get_refund_details(return_id: str) -> dict:
    """
    Refund breakdown of a return, priced from the original sale lines.

    `consistent` is False when the stored total no longer matches the
    stored items.
    """
    ret = get_return(return_id)
    sale_lines = {line.id: line.to_domain() for line in ret.transaction.items}
    calculation = calculate_refund(ret.items, sale_lines)
    data = calculation.to_dict()
    data.update({
        "return_id": ret.id,
        "return_number": ret.return_number,
        "stored_total_refund": ret.total_refund,
        "consistent": verify_refund_total(ret.items, ret.total_refund),
        "refund_method": ret.refund_method,
    })
    return data


def check_eligibility(transaction_id: str) -> dict:
    """
    Whether the sale can be returned today under the active policy.

    `lines` carries the verdict for each sale line. The top-level `allowed`
    is True while at least one line can still be returned; a non-returnable
    product only blocks returns that include it.
    """
    transaction = _get_transaction(transaction_id)
    sale = transaction.to_domain()
    policy = get_active_policy_rules()
    now = utcnow()

    lines = []
    for line in sale.lines:
        check = check_return_eligibility(sale.sale_date, [line.category_id], policy, now=now)
        lines.append({
            "transaction_item_id": line.id,
            "product_id": line.product_id,
            "category_id": line.category_id,
            **check.to_dict(),
        })

    window = check_return_eligibility(sale.sale_date, (), policy, now=now)
    blocked = [line for line in lines if not line["allowed"]]
    allowed = len(blocked) < len(lines)
    if allowed:
        reason = window.reason
    elif blocked:
        reason = blocked[0]["reason"]
    else:
        reason = "Sale has no items"

    return {
        "transaction_id": transaction.id,
        "allowed": allowed,
        "requires_approval": allowed and window.requires_approval,
        "reason": reason,
        "lines": lines,
    }


def get_returnable_items(transaction_id: str) -> list[dict]:
    """Each sale line with the quantity still available to return."""
    transaction = _get_transaction(transaction_id)
    held = already_returned(transaction.id)
    items = []
    for line in transaction.items:
        data = line.to_dict()
        data["available_quantity"] = return_domain.calculate_available_quantity(
            line.quantity, held.get(line.id, 0),
        )
        items.append(data)
    return items
