# Overview: Per-outlet, per-product stock ledger value and stock movement facts.

"""
Stock ledger.

The ledger maps (outlet_id, product_id) to an on-hand quantity and is the
single source of truth for availability. It is an immutable value: every
write returns a new ledger, so a lifecycle can compute the next state and
hand it back to the caller without touching the snapshot it was given.

Missing keys read as 0. A quantity is never stored negative.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping


# Movement types
MOVEMENT_IN = "in"
MOVEMENT_OUT = "out"
MOVEMENT_TRANSFER_IN = "transfer_in"
MOVEMENT_TRANSFER_OUT = "transfer_out"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"

MOVEMENT_TYPES = frozenset({
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_TRANSFER_IN,
    MOVEMENT_TRANSFER_OUT,
    MOVEMENT_RETURN,
    MOVEMENT_ADJUSTMENT,
})

# Reference types
REFERENCE_PURCHASE_ORDER = "purchase_order"
REFERENCE_STOCK_TRANSFER = "stock_transfer"
REFERENCE_RETURN = "return"
REFERENCE_ADJUSTMENT = "adjustment"


class NegativeStockError(ValueError):
    """Raised when a write would store a negative quantity."""
    pass


StockKey = tuple[str, str]


class StockLedger:
    __slots__ = ("_quantities",)

    def __init__(self, quantities: Mapping[StockKey, int] | None = None):
        cleaned: dict[StockKey, int] = {}
        for (outlet_id, product_id), quantity in (quantities or {}).items():
            if quantity < 0:
                raise NegativeStockError(
                    f"Stock for product {product_id} at outlet {outlet_id} cannot be negative ({quantity})"
                )
            cleaned[(outlet_id, product_id)] = int(quantity)
        self._quantities = cleaned

    @classmethod
    def from_rows(cls, rows: Iterable) -> "StockLedger":
        """Build a ledger from (outlet_id, product_id, quantity) triples."""
        return cls({(outlet_id, product_id): quantity for outlet_id, product_id, quantity in rows})

    def quantity(self, outlet_id: str, product_id: str) -> int:
        return self._quantities.get((outlet_id, product_id), 0)

    def set(self, outlet_id: str, product_id: str, quantity: int) -> "StockLedger":
        if quantity < 0:
            raise NegativeStockError(
                f"Stock for product {product_id} at outlet {outlet_id} cannot be negative ({quantity})"
            )
        quantities = dict(self._quantities)
        quantities[(outlet_id, product_id)] = int(quantity)
        new = StockLedger.__new__(StockLedger)
        new._quantities = quantities
        return new

    def adjust(self, outlet_id: str, product_id: str, delta: int) -> "StockLedger":
        return self.set(outlet_id, product_id, self.quantity(outlet_id, product_id) + delta)

    def total(self, product_id: str) -> int:
        """Total stock of a product across every outlet in this ledger."""
        return sum(q for (_, pid), q in self._quantities.items() if pid == product_id)

    def outlet(self, outlet_id: str) -> dict[str, int]:
        return {pid: q for (oid, pid), q in self._quantities.items() if oid == outlet_id}

    def changes_from(self, previous: "StockLedger") -> dict[StockKey, int]:
        """Keys whose quantity differs from `previous`, with their new quantity."""
        changed = {}
        for key in set(self._quantities) | set(previous._quantities):
            after = self._quantities.get(key, 0)
            if after != previous._quantities.get(key, 0):
                changed[key] = after
        return changed

    def rows(self) -> list[tuple[str, str, int]]:
        return [(o, p, q) for (o, p), q in sorted(self._quantities.items())]

    def __iter__(self) -> Iterator[StockKey]:
        return iter(self._quantities)

    def __len__(self) -> int:
        return len(self._quantities)

    def __eq__(self, other) -> bool:
        if not isinstance(other, StockLedger):
            return NotImplemented
        strip = lambda q: {k: v for k, v in q.items() if v != 0}  # noqa: E731
        return strip(self._quantities) == strip(other._quantities)

    def __repr__(self) -> str:
        return f"<StockLedger entries={len(self._quantities)}>"


@dataclass(frozen=True)
class StockMovement:
    """A stock movement fact emitted by a lifecycle transition."""
    outlet_id: str
    product_id: str
    movement_type: str
    quantity: int
    reference_type: str
    reference_id: str
    notes: str | None = None

    def __post_init__(self):
        if self.movement_type not in MOVEMENT_TYPES:
            raise ValueError(f"Invalid movement_type '{self.movement_type}'")

    def to_dict(self) -> dict:
        return {
            "outlet_id": self.outlet_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity": self.quantity,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "notes": self.notes,
        }
