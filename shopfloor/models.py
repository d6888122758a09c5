"""Database models for the shop-floor tracking and planning service.

Two groups live here.  The directory/inventory tables (employees, machines,
raw items, stock items, manufacturing and work orders) belong to other parts
of the back office; this service only reads them, and writes the few fields
named in ``lookups``.  The tracking ledger and planning tables are owned by
this service.

Timestamps are stored as naive UTC.
"""

import secrets
from datetime import datetime, timezone

from sqlalchemy import func

from . import db


def object_id() -> str:
    """24 hex characters, the same shape operator badges carry."""
    return secrets.token_hex(12)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Directory and inventory (read mostly)
# ---------------------------------------------------------------------------

class Employee(db.Model):
    __tablename__ = "employees"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    first_name = db.Column(db.String(120), nullable=False)
    last_name = db.Column(db.String(120), nullable=False, default="")
    department = db.Column(db.String(120))
    status = db.Column(db.String(20), nullable=False, default="active")
    needs_to_operate = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


class Machine(db.Model):
    __tablename__ = "machines"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    name = db.Column(db.String(120), nullable=False)
    type = db.Column(db.String(120), nullable=False)
    model = db.Column(db.String(120))
    serial_number = db.Column(db.String(120), unique=True)
    # Operational / Under Maintenance / Idle / Repair Needed
    status = db.Column(db.String(40), nullable=False, default="Operational")
    location = db.Column(db.String(120))


class RawItem(db.Model):
    __tablename__ = "raw_items"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    name = db.Column(db.String(200), nullable=False)
    sku = db.Column(db.String(120), unique=True)
    unit = db.Column(db.String(40))
    quantity = db.Column(db.Float, nullable=False, default=0)
    min_stock = db.Column(db.Float, nullable=False, default=0)
    # In Stock / Low Stock / Out of Stock
    status = db.Column(db.String(20), nullable=False, default="In Stock")

    transactions = db.relationship(
        "StockTransaction", backref="raw_item", lazy=True, order_by="StockTransaction.id"
    )

    def refresh_status(self):
        if self.quantity <= 0:
            self.status = "Out of Stock"
        elif self.quantity <= (self.min_stock or 0):
            self.status = "Low Stock"
        else:
            self.status = "In Stock"


class StockTransaction(db.Model):
    __tablename__ = "stock_transactions"
    id = db.Column(db.Integer, primary_key=True)
    raw_item_id = db.Column(db.String(24), db.ForeignKey("raw_items.id"), nullable=False, index=True)
    type = db.Column(db.String(20), nullable=False)  # ADD / REDUCE / CONSUME / ADJUST
    quantity = db.Column(db.Float, nullable=False)
    previous_quantity = db.Column(db.Float, nullable=False)
    new_quantity = db.Column(db.Float, nullable=False)
    reason = db.Column(db.String(255))
    performed_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=utcnow)


class StockItem(db.Model):
    __tablename__ = "stock_items"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    name = db.Column(db.String(200), nullable=False)
    reference = db.Column(db.String(120), unique=True)

    bom_lines = db.relationship(
        "BomLine", backref="stock_item", lazy=True, order_by="BomLine.position"
    )
    operations = db.relationship(
        "StockItemOperation", backref="stock_item", lazy=True,
        order_by="StockItemOperation.sequence",
    )


class BomLine(db.Model):
    """One raw item needed per unit of a stock item."""

    __tablename__ = "bom_lines"
    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.String(24), db.ForeignKey("stock_items.id"), nullable=False, index=True)
    raw_item_id = db.Column(db.String(24), db.ForeignKey("raw_items.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Float, nullable=False, default=0)
    unit_cost = db.Column(db.Float, nullable=False, default=0)

    raw_item = db.relationship("RawItem")


class StockItemOperation(db.Model):
    __tablename__ = "stock_item_operations"
    id = db.Column(db.Integer, primary_key=True)
    stock_item_id = db.Column(db.String(24), db.ForeignKey("stock_items.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False, default=0)
    type = db.Column(db.String(120), nullable=False)
    machine_type = db.Column(db.String(120))
    minutes = db.Column(db.Integer, default=0)
    seconds = db.Column(db.Integer, default=0)

    @property
    def total_seconds(self) -> int:
        return (self.minutes or 0) * 60 + (self.seconds or 0)

    def to_dict(self) -> dict:
        return {
            "sequence": self.sequence,
            "type": self.type,
            "machineType": self.machine_type,
            "minutes": self.minutes or 0,
            "seconds": self.seconds or 0,
            "totalSeconds": self.total_seconds,
        }


class ManufacturingOrder(db.Model):
    __tablename__ = "manufacturing_orders"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    mo_number = db.Column(db.String(120), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=func.now())

    work_orders = db.relationship("WorkOrder", backref="manufacturing_order", lazy=True)


class WorkOrder(db.Model):
    __tablename__ = "work_orders"
    id = db.Column(db.String(24), primary_key=True, default=object_id)
    work_order_id = db.Column(db.String(120), unique=True, nullable=False, index=True)
    manufacturing_order_id = db.Column(
        db.String(24), db.ForeignKey("manufacturing_orders.id"), nullable=False
    )
    stock_item_id = db.Column(db.String(24), db.ForeignKey("stock_items.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    # pending / planning / scheduled / in_progress / completed
    status = db.Column(db.String(30), nullable=False, default="pending")
    planning_id = db.Column(db.Integer, nullable=True)

    stock_item = db.relationship("StockItem")

    def to_dict(self) -> dict:
        return {
            "workOrderId": self.work_order_id,
            "manufacturingOrderId": self.manufacturing_order_id,
            "stockItemId": self.stock_item_id,
            "quantity": self.quantity,
            "status": self.status,
            "planningId": self.planning_id,
        }


# ---------------------------------------------------------------------------
# Tracking ledger
# ---------------------------------------------------------------------------

class TrackingDay(db.Model):
    """One ledger per calendar day.

    ``version_id`` is bumped on every scan so two requests that loaded the
    same ledger cannot both commit.
    """

    __tablename__ = "tracking_days"
    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, unique=True, nullable=False, index=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)

    machines = db.relationship(
        "MachineTrackingEntry", backref="day", lazy=True, order_by="MachineTrackingEntry.id"
    )

    __mapper_args__ = {"version_id_col": version_id}


class MachineTrackingEntry(db.Model):
    __tablename__ = "machine_tracking_entries"
    __table_args__ = (
        db.UniqueConstraint("day_id", "machine_id", name="uq_tracking_entry_day_machine"),
    )
    id = db.Column(db.Integer, primary_key=True)
    day_id = db.Column(db.Integer, db.ForeignKey("tracking_days.id"), nullable=False, index=True)
    machine_id = db.Column(db.String(24), db.ForeignKey("machines.id"), nullable=False)
    current_operator_id = db.Column(db.String(24), db.ForeignKey("employees.id"), nullable=True, index=True)

    machine = db.relationship("Machine")
    sessions = db.relationship(
        "OperatorSession", backref="entry", lazy=True, order_by="OperatorSession.seq"
    )


class OperatorSession(db.Model):
    """A sign-in to sign-out interval of one operator on one machine."""

    __tablename__ = "operator_sessions"
    __table_args__ = (
        db.UniqueConstraint("entry_id", "seq", name="uq_operator_session_entry_seq"),
        db.Index(
            "uq_open_session_per_machine", "entry_id", unique=True,
            sqlite_where=db.text("sign_out_time IS NULL"),
            postgresql_where=db.text("sign_out_time IS NULL"),
        ),
        db.Index(
            "uq_open_session_per_operator", "day_id", "operator_id", unique=True,
            sqlite_where=db.text("sign_out_time IS NULL"),
            postgresql_where=db.text("sign_out_time IS NULL"),
        ),
    )
    id = db.Column(db.Integer, primary_key=True)
    day_id = db.Column(db.Integer, db.ForeignKey("tracking_days.id"), nullable=False)
    entry_id = db.Column(db.Integer, db.ForeignKey("machine_tracking_entries.id"), nullable=False, index=True)
    operator_id = db.Column(db.String(24), db.ForeignKey("employees.id"), nullable=False, index=True)
    seq = db.Column(db.Integer, nullable=False)
    sign_in_time = db.Column(db.DateTime, nullable=False)
    sign_out_time = db.Column(db.DateTime, nullable=True)

    operator = db.relationship("Employee")
    barcode_scans = db.relationship(
        "BarcodeScan", backref="session", lazy=True, order_by="BarcodeScan.id"
    )

    @property
    def is_open(self) -> bool:
        return self.sign_out_time is None


class BarcodeScan(db.Model):
    __tablename__ = "barcode_scans"
    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("operator_sessions.id"), nullable=False, index=True)
    barcode_id = db.Column(db.String(255), nullable=False, index=True)
    time_stamp = db.Column(db.DateTime, nullable=False)


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

PLANNING_STEPS = ("raw_material_assignment", "machine_assignment", "timeline_set", "approved")


class PlanningRecord(db.Model):
    __tablename__ = "planning_records"
    id = db.Column(db.Integer, primary_key=True)
    work_order_id = db.Column(db.String(120), unique=True, nullable=False, index=True)
    manufacturing_order_id = db.Column(db.String(24), db.ForeignKey("manufacturing_orders.id"))
    stock_item_id = db.Column(db.String(24), db.ForeignKey("stock_items.id"))
    quantity = db.Column(db.Integer, nullable=False, default=0)
    # draft / raw_material_assigned / machine_assigned / approved
    status = db.Column(db.String(30), nullable=False, default="draft")
    timeline = db.Column(db.JSON, nullable=False, default=dict)
    notes = db.Column(db.Text)

    raw_material_assignment_completed = db.Column(db.Boolean, nullable=False, default=False)
    raw_material_assignment_completed_at = db.Column(db.DateTime)
    raw_material_assignment_completed_by = db.Column(db.String(64))
    machine_assignment_completed = db.Column(db.Boolean, nullable=False, default=False)
    machine_assignment_completed_at = db.Column(db.DateTime)
    machine_assignment_completed_by = db.Column(db.String(64))
    timeline_set_completed = db.Column(db.Boolean, nullable=False, default=False)
    timeline_set_completed_at = db.Column(db.DateTime)
    timeline_set_completed_by = db.Column(db.String(64))
    approved_completed = db.Column(db.Boolean, nullable=False, default=False)
    approved_completed_at = db.Column(db.DateTime)
    approved_completed_by = db.Column(db.String(64))

    created_by = db.Column(db.String(64))
    updated_by = db.Column(db.String(64))
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    raw_material_assignments = db.relationship(
        "RawMaterialAssignment", backref="planning", lazy=True,
        order_by="RawMaterialAssignment.position", cascade="all, delete-orphan",
    )
    machine_assignments = db.relationship(
        "MachineAssignment", backref="planning", lazy=True,
        order_by="MachineAssignment.position", cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def step_completed(self, step: str) -> bool:
        return bool(getattr(self, f"{step}_completed"))

    def complete_step(self, step: str, actor_id, when: datetime):
        setattr(self, f"{step}_completed", True)
        setattr(self, f"{step}_completed_at", when)
        setattr(self, f"{step}_completed_by", actor_id)

    @property
    def progress(self) -> dict:
        out = {}
        for step in PLANNING_STEPS:
            at = getattr(self, f"{step}_completed_at")
            out[_camel(step)] = {
                "completed": self.step_completed(step),
                "completedAt": at.isoformat() if at else None,
                "completedBy": getattr(self, f"{step}_completed_by"),
            }
        return out


class RawMaterialAssignment(db.Model):
    __tablename__ = "raw_material_assignments"
    id = db.Column(db.Integer, primary_key=True)
    planning_id = db.Column(db.Integer, db.ForeignKey("planning_records.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    raw_item_id = db.Column(db.String(24), db.ForeignKey("raw_items.id"), nullable=False)
    required_quantity = db.Column(db.Float, nullable=False, default=0)
    assigned_quantity = db.Column(db.Float, nullable=False, default=0)
    unit_cost = db.Column(db.Float, nullable=False, default=0)
    # assigned / partially_assigned / unavailable / booked
    status = db.Column(db.String(30), nullable=False, default="assigned")

    raw_item = db.relationship("RawItem")

    @property
    def deficit_quantity(self) -> float:
        return max(0.0, (self.required_quantity or 0) - (self.assigned_quantity or 0))

    def to_dict(self) -> dict:
        return {
            "rawItemId": self.raw_item_id,
            "name": self.raw_item.name if self.raw_item else None,
            "requiredQuantity": self.required_quantity,
            "assignedQuantity": self.assigned_quantity,
            "deficitQuantity": self.deficit_quantity,
            "unitCost": self.unit_cost,
            "status": self.status,
        }


class MachineAssignment(db.Model):
    """Binds one machine to one operation of the work order's routing."""

    __tablename__ = "machine_assignments"
    id = db.Column(db.Integer, primary_key=True)
    planning_id = db.Column(db.Integer, db.ForeignKey("planning_records.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    operation_sequence = db.Column(db.Integer, nullable=False, default=0)
    operation_type = db.Column(db.String(120))
    machine_id = db.Column(db.String(24), db.ForeignKey("machines.id"), nullable=False)
    estimated_minutes = db.Column(db.Float)

    machine = db.relationship("Machine")

    def to_dict(self) -> dict:
        return {
            "operationSequence": self.operation_sequence,
            "operationType": self.operation_type,
            "machineId": self.machine_id,
            "machineName": self.machine.name if self.machine else None,
            "estimatedMinutes": self.estimated_minutes,
        }


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)
