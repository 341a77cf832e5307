# Overview: Discount-preserving refund arithmetic in integer minor units.

"""
Refund calculation.

A refund gives back what the customer actually paid for each unit, so the
per-unit discount of the original sale line is carried over:

    refund_amount  = (original_price - discount_amount) * quantity
    subtotal       = sum(original_price * quantity)
    total_discount = sum(discount_amount * quantity)
    total_refund   = sum(refund_amount) == subtotal - total_discount

All amounts are integers, so the identity holds exactly.

Requested lines whose transaction_item_id does not match a line of the
original sale are dropped from the calculation and listed in
`skipped_item_ids`. They contribute 0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping


@dataclass(frozen=True)
class RefundLine:
    transaction_item_id: str
    product_id: str
    quantity: int
    original_price: int
    discount_amount: int
    refund_amount: int

    def to_dict(self) -> dict:
        return {
            "transaction_item_id": self.transaction_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "original_price": self.original_price,
            "discount_amount": self.discount_amount,
            "refund_amount": self.refund_amount,
        }


@dataclass(frozen=True)
class RefundCalculation:
    lines: tuple[RefundLine, ...] = ()
    skipped_item_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def subtotal(self) -> int:
        return sum(line.original_price * line.quantity for line in self.lines)

    @property
    def total_discount(self) -> int:
        return sum(line.discount_amount * line.quantity for line in self.lines)

    @property
    def total_refund(self) -> int:
        return sum(line.refund_amount for line in self.lines)

    def to_dict(self) -> dict:
        return {
            "items": [line.to_dict() for line in self.lines],
            "subtotal": self.subtotal,
            "total_discount": self.total_discount,
            "total_refund": self.total_refund,
            "skipped_item_ids": list(self.skipped_item_ids),
        }


def calculate_item_refund(original_price: int, discount_amount: int, quantity: int) -> int:
    """
    Refund for one line.

    Raises:
        ValueError: On negative inputs or a discount above the unit price
    """
    if original_price < 0:
        raise ValueError(f"Original price cannot be negative ({original_price})")
    if discount_amount < 0:
        raise ValueError(f"Discount amount cannot be negative ({discount_amount})")
    if quantity < 0:
        raise ValueError(f"Quantity cannot be negative ({quantity})")
    if discount_amount > original_price:
        raise ValueError(
            f"Discount amount {discount_amount} exceeds original price {original_price}"
        )
    return (original_price - discount_amount) * quantity


def sale_line_price(sale_line) -> int:
    """Pre-discount unit price of a sale line (original_price, else unit_price)."""
    original = getattr(sale_line, "original_price", None)
    return sale_line.unit_price if original is None else original


def calculate_refund(requested: Iterable, sale_lines: Mapping[str, object]) -> RefundCalculation:
    """
    Price the requested return lines against the original sale lines.

    Args:
        requested: Objects with transaction_item_id and quantity
        sale_lines: Sale lines keyed by id, each with product_id, unit_price,
            optional original_price and discount_amount (per unit)

    Returns:
        RefundCalculation; unmatched transaction_item_ids are skipped
    """
    lines = []
    skipped = []
    for item in requested:
        sale_line = sale_lines.get(item.transaction_item_id)
        if sale_line is None:
            skipped.append(item.transaction_item_id)
            continue
        price = sale_line_price(sale_line)
        lines.append(RefundLine(
            transaction_item_id=item.transaction_item_id,
            product_id=sale_line.product_id,
            quantity=item.quantity,
            original_price=price,
            discount_amount=sale_line.discount_amount,
            refund_amount=calculate_item_refund(price, sale_line.discount_amount, item.quantity),
        ))
    return RefundCalculation(tuple(lines), tuple(skipped))


def calculate_refund_from_return(items: Iterable) -> RefundCalculation:
    """Rebuild the calculation from stored return items (each already carries its prices)."""
    lines = tuple(
        RefundLine(
            transaction_item_id=item.transaction_item_id,
            product_id=item.product_id,
            quantity=item.quantity,
            original_price=item.original_price,
            discount_amount=item.discount_amount,
            refund_amount=calculate_item_refund(item.original_price, item.discount_amount, item.quantity),
        )
        for item in items
    )
    return RefundCalculation(lines)


def verify_refund_total(items: Iterable, total_refund: int) -> bool:
    """True if `total_refund` equals the recomputed sum for the stored items."""
    return calculate_refund_from_return(items).total_refund == total_refund
