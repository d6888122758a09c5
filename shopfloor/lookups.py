"""Lookups into the records other parts of the back office own.

Tracking and planning only ever go through these functions to read machines,
operators, raw items, stock items and work orders, and to write the handful
of fields they are allowed to touch (raw item quantity, work order status and
planning link).
"""

from typing import List, Optional

from sqlalchemy import update

from . import db
from .errors import InsufficientStock, NotFound
from .models import (
    BomLine, Employee, Machine, RawItem, StockItem, StockItemOperation,
    StockTransaction, WorkOrder, utcnow,
)


def get_machine(machine_id: str) -> Machine:
    machine = db.session.get(Machine, machine_id) if machine_id else None
    if machine is None:
        raise NotFound("Machine not found", machineId=machine_id)
    return machine


def list_operational_machines(machine_type: Optional[str] = None) -> List[Machine]:
    q = Machine.query.filter_by(status="Operational")
    if machine_type:
        q = q.filter_by(type=machine_type)
    return q.order_by(Machine.name).all()


def get_active_operator(operator_id: str) -> Employee:
    operator = Employee.query.filter_by(
        id=operator_id, status="active", needs_to_operate=True
    ).first()
    if operator is None:
        raise NotFound(f"Operator {operator_id} not found or inactive")
    return operator


def employee_names(ids) -> dict:
    ids = {i for i in ids if i}
    if not ids:
        return {}
    rows = Employee.query.filter(Employee.id.in_(ids)).all()
    return {e.id: e.full_name for e in rows}


def get_raw_item(raw_item_id: str) -> RawItem:
    item = db.session.get(RawItem, raw_item_id) if raw_item_id else None
    if item is None:
        raise NotFound("Raw item not found", rawItemId=raw_item_id)
    return item


def get_available_quantity(raw_item_id: str) -> float:
    return get_raw_item(raw_item_id).quantity or 0


def deduct(raw_item_id: str, qty: float, reason: str = "", performed_by: Optional[str] = None) -> RawItem:
    """Take ``qty`` out of stock, or raise ``InsufficientStock``.

    The check and the decrement are one conditional UPDATE so two bookings
    racing for the same item cannot both pass.  Runs inside the caller's
    transaction; nothing is committed here.
    """
    item = get_raw_item(raw_item_id)
    previous = item.quantity or 0
    result = db.session.execute(
        update(RawItem)
        .where(RawItem.id == raw_item_id, RawItem.quantity >= qty)
        .values(quantity=RawItem.quantity - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientStock(
            f"Insufficient stock for {item.name}: need {qty:g}, have {previous:g}",
            rawItemId=raw_item_id,
        )
    db.session.refresh(item)
    item.refresh_status()
    db.session.add(StockTransaction(
        raw_item_id=raw_item_id,
        type="CONSUME",
        quantity=qty,
        previous_quantity=item.quantity + qty,
        new_quantity=item.quantity,
        reason=reason,
        performed_by=performed_by,
        created_at=utcnow(),
    ))
    return item


def get_stock_item(stock_item_id: str) -> StockItem:
    item = db.session.get(StockItem, stock_item_id) if stock_item_id else None
    if item is None:
        raise NotFound("Stock item not found", stockItemId=stock_item_id)
    return item


def get_bill_of_materials(stock_item_id: str) -> List[BomLine]:
    return get_stock_item(stock_item_id).bom_lines


def get_operations(stock_item_id: str) -> List[StockItemOperation]:
    return get_stock_item(stock_item_id).operations


def find_by_work_order_id(work_order_id: str) -> WorkOrder:
    wo = WorkOrder.query.filter_by(work_order_id=work_order_id).first() if work_order_id else None
    if wo is None:
        raise NotFound("Work order not found", workOrderId=work_order_id)
    return wo


def set_status(work_order_id: str, status: str) -> WorkOrder:
    wo = find_by_work_order_id(work_order_id)
    wo.status = status
    return wo


def set_planning_id(work_order_id: str, planning_id: Optional[int]) -> WorkOrder:
    wo = find_by_work_order_id(work_order_id)
    wo.planning_id = planning_id
    return wo
