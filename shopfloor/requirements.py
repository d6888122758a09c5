"""Raw material requirements for building a quantity of a stock item."""

from dataclasses import dataclass
from typing import List, Optional

from . import lookups

ASSIGNED = "assigned"
PARTIALLY_ASSIGNED = "partially_assigned"
UNAVAILABLE = "unavailable"


@dataclass
class Requirement:
    raw_item_id: str
    required_quantity: float
    available_quantity: float
    assigned_quantity: float
    deficit_quantity: float
    unit_cost: float
    status: str
    name: Optional[str] = None
    sku: Optional[str] = None
    unit: Optional[str] = None

    @property
    def total_cost(self) -> float:
        return self.required_quantity * self.unit_cost

    def to_dict(self) -> dict:
        return {
            "rawItemId": self.raw_item_id,
            "name": self.name,
            "sku": self.sku,
            "unit": self.unit,
            "requiredQuantity": self.required_quantity,
            "availableQuantity": self.available_quantity,
            "assignedQuantity": self.assigned_quantity,
            "deficitQuantity": self.deficit_quantity,
            "unitCost": self.unit_cost,
            "totalCost": self.total_cost,
            "status": self.status,
        }


def requirement_for(raw_item_id: str, qty_per_unit: float, build_quantity: float,
                    available: float, unit_cost: float = 0.0) -> Requirement:
    required = (qty_per_unit or 0) * build_quantity
    available = available or 0
    assigned = min(required, available)
    deficit = max(0, required - available)
    if available == 0:
        status = UNAVAILABLE
    elif deficit > 0:
        status = PARTIALLY_ASSIGNED
    else:
        status = ASSIGNED
    return Requirement(
        raw_item_id=raw_item_id,
        required_quantity=required,
        available_quantity=available,
        assigned_quantity=assigned,
        deficit_quantity=deficit,
        unit_cost=unit_cost or 0,
        status=status,
    )


def requirements(stock_item_id: str, build_quantity: float) -> List[Requirement]:
    """One requirement per bill-of-materials line; reads only."""
    out = []
    for line in lookups.get_bill_of_materials(stock_item_id):
        item = line.raw_item
        if item is None:
            continue
        available = lookups.get_available_quantity(item.id)
        req = requirement_for(item.id, line.quantity, build_quantity, available, line.unit_cost)
        req.name, req.sku, req.unit = item.name, item.sku, item.unit
        out.append(req)
    return out
