"""Manufacturing planning workflow.

A planning record belongs to one work order and collects three pieces of
planning, each of which is marked complete independently:

* raw material assignments,
* machine assignments (one machine per routing operation),
* a timeline with ``totalEstimatedTime``.

``approve`` is only possible once all three are complete.  It books the
assigned raw materials (all deductions or none) and moves the work order to
``scheduled``.  Nothing can be edited after approval, and only drafts can be
deleted.

The work order's ``status``/``planning_id`` are always written in the same
transaction as the planning change that implies them.
"""

import math
from collections import OrderedDict
from typing import Optional

from flask import current_app

from . import db, lookups
from .errors import Conflict, InvalidInput, NotFound, PreconditionFailed
from .models import MachineAssignment, PlanningRecord, RawMaterialAssignment, utcnow
from .requirements import requirements
from .store import ActorContext, run_in_transaction

DRAFT = "draft"
RAW_MATERIAL_ASSIGNED = "raw_material_assigned"
MACHINE_ASSIGNED = "machine_assigned"
APPROVED = "approved"

BOOKED = "booked"

WO_PENDING = "pending"
WO_PLANNING = "planning"
WO_SCHEDULED = "scheduled"


def derive_status(planning: PlanningRecord) -> str:
    if planning.step_completed("approved"):
        return APPROVED
    if planning.step_completed("machine_assignment"):
        return MACHINE_ASSIGNED
    if planning.step_completed("raw_material_assignment"):
        return RAW_MATERIAL_ASSIGNED
    return DRAFT


def _actor_id(actor: Optional[ActorContext]):
    return actor.actor_id if actor else None


def _touch(planning: PlanningRecord, actor: Optional[ActorContext]):
    planning.updated_by = _actor_id(actor)
    planning.updated_at = utcnow()
    planning.status = derive_status(planning)


def _ensure_editable(planning: PlanningRecord, what: str):
    if planning.step_completed("approved"):
        raise Conflict(f"Cannot update {what} after approval")


def _number(value, field: str, default=None) -> float:
    if value is None:
        if default is None:
            raise InvalidInput(f"{field} is required")
        return default
    if isinstance(value, bool):
        raise InvalidInput(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"{field} must be a number")
    if not math.isfinite(number):
        raise InvalidInput(f"{field} must be a finite number")
    if number < 0:
        raise InvalidInput(f"{field} must not be negative")
    return number


def _raw_material_rows(payload) -> list:
    if not isinstance(payload, list):
        raise InvalidInput("rawMaterialAssignments must be a list")
    rows = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict) or not item.get("rawItemId"):
            raise InvalidInput("Each raw material assignment needs a rawItemId")
        raw_item = lookups.get_raw_item(item["rawItemId"])
        assigned = _number(item.get("assignedQuantity"), "assignedQuantity")
        required = _number(item.get("requiredQuantity"), "requiredQuantity", default=assigned)
        rows.append(RawMaterialAssignment(
            position=position,
            raw_item_id=raw_item.id,
            required_quantity=required,
            assigned_quantity=assigned,
            unit_cost=_number(item.get("unitCost"), "unitCost", default=0.0),
            status=_assignment_status(required, assigned),
        ))
    return rows


def _assignment_status(required: float, assigned: float) -> str:
    if assigned <= 0 and required > 0:
        return "unavailable"
    if assigned < required:
        return "partially_assigned"
    return "assigned"


def _machine_rows(payload) -> list:
    if not isinstance(payload, list):
        raise InvalidInput("machineAssignments must be a list")
    rows = []
    for position, item in enumerate(payload):
        if not isinstance(item, dict) or not item.get("machineId"):
            raise InvalidInput("Each machine assignment needs a machineId")
        machine = lookups.get_machine(item["machineId"])
        estimated = item.get("estimatedMinutes")
        rows.append(MachineAssignment(
            position=position,
            operation_sequence=int(
                _number(item.get("operationSequence"), "operationSequence", default=position)
            ),
            operation_type=item.get("operationType"),
            machine_id=machine.id,
            estimated_minutes=_number(estimated, "estimatedMinutes") if estimated is not None else None,
        ))
    return rows


def _set_raw_materials(planning, rows, actor):
    planning.raw_material_assignments = rows
    if rows:
        planning.complete_step("raw_material_assignment", _actor_id(actor), utcnow())


def _set_machines(planning, rows, actor):
    planning.machine_assignments = rows
    if rows:
        planning.complete_step("machine_assignment", _actor_id(actor), utcnow())


def _set_timeline(planning, timeline, actor):
    if not isinstance(timeline, dict):
        raise InvalidInput("timeline must be an object")
    planning.timeline = dict(timeline)
    if timeline.get("totalEstimatedTime"):
        planning.complete_step("timeline_set", _actor_id(actor), utcnow())


def _seeded_rows(planning: PlanningRecord) -> list:
    return [
        RawMaterialAssignment(
            position=position,
            raw_item_id=req.raw_item_id,
            required_quantity=req.required_quantity,
            assigned_quantity=req.assigned_quantity,
            unit_cost=req.unit_cost,
            status=req.status,
        )
        for position, req in enumerate(requirements(planning.stock_item_id, planning.quantity))
    ]


def _load(planning_id) -> PlanningRecord:
    try:
        pk = int(planning_id)
    except (TypeError, ValueError):
        raise NotFound("Planning record not found")
    planning = db.session.get(PlanningRecord, pk)
    if planning is None:
        raise NotFound("Planning record not found")
    return planning


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def serialize(planning: PlanningRecord) -> dict:
    return {
        "id": planning.id,
        "workOrderId": planning.work_order_id,
        "manufacturingOrderId": planning.manufacturing_order_id,
        "stockItemId": planning.stock_item_id,
        "quantity": planning.quantity,
        "status": planning.status,
        "progress": planning.progress,
        "rawMaterialAssignments": [a.to_dict() for a in planning.raw_material_assignments],
        "machineAssignments": [a.to_dict() for a in planning.machine_assignments],
        "timeline": planning.timeline or {},
        "notes": planning.notes,
        "createdBy": planning.created_by,
        "updatedBy": planning.updated_by,
        "createdAt": planning.created_at.isoformat() if planning.created_at else None,
        "updatedAt": planning.updated_at.isoformat() if planning.updated_at else None,
    }


def get_planning(planning_id) -> dict:
    return serialize(_load(planning_id))


def get_planning_for_work_order(work_order_id: str) -> dict:
    planning = PlanningRecord.query.filter_by(work_order_id=work_order_id).first()
    if planning is None:
        raise NotFound("Planning not found for this work order")
    return serialize(planning)


def work_order_details(work_order_id: str) -> dict:
    wo = lookups.find_by_work_order_id(work_order_id)
    mo = wo.manufacturing_order
    return {
        "workOrder": wo.to_dict(),
        "rawMaterialRequirements": [r.to_dict() for r in requirements(wo.stock_item_id, wo.quantity)],
        "operations": [op.to_dict() for op in lookups.get_operations(wo.stock_item_id)],
        "manufacturingOrder": {"id": mo.id, "moNumber": mo.mo_number} if mo else None,
    }


def available_machines(machine_category: Optional[str] = None) -> list:
    return [
        {"id": m.id, "name": m.name, "type": m.type, "model": m.model,
         "status": m.status, "location": m.location}
        for m in lookups.list_operational_machines(machine_category)
    ]


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def _save(data: dict, actor: Optional[ActorContext]):
    work_order_id = data.get("workOrderId")
    if not work_order_id:
        raise InvalidInput("workOrderId is required")
    wo = lookups.find_by_work_order_id(work_order_id)

    raw = data.get("rawMaterialAssignments")
    machines = data.get("machineAssignments")
    timeline = data.get("timeline")

    planning = PlanningRecord.query.filter_by(work_order_id=work_order_id).first()
    created = planning is None
    if created:
        planning = PlanningRecord(
            work_order_id=wo.work_order_id,
            manufacturing_order_id=wo.manufacturing_order_id,
            stock_item_id=wo.stock_item_id,
            quantity=wo.quantity,
            timeline={},
            created_by=_actor_id(actor),
            created_at=utcnow(),
        )
        db.session.add(planning)
    else:
        _ensure_editable(planning, "planning")

    if raw:
        _set_raw_materials(planning, _raw_material_rows(raw), actor)
    elif created and data.get("seedFromRequirements"):
        _set_raw_materials(planning, _seeded_rows(planning), actor)
    if machines:
        _set_machines(planning, _machine_rows(machines), actor)
    if timeline:
        _set_timeline(planning, timeline, actor)
    if data.get("notes"):
        planning.notes = data["notes"]
    _touch(planning, actor)
    db.session.flush()

    lookups.set_status(wo.work_order_id, WO_PLANNING)
    lookups.set_planning_id(wo.work_order_id, planning.id)
    return planning, created


def save_planning(data: dict, actor: Optional[ActorContext] = None) -> dict:
    """Create the work order's planning record, or update the fields given."""
    if not isinstance(data, dict):
        raise InvalidInput("Request body must be a JSON object")
    planning, created = run_in_transaction(_save, data, actor, label="save planning")
    current_app.logger.info(
        "planning %s id=%s work_order=%s status=%s actor=%s",
        "created" if created else "updated", planning.id, planning.work_order_id,
        planning.status, _actor_id(actor),
    )
    return {"created": created, "planning": serialize(planning)}


def _update_raw_materials(planning_id, payload, actor):
    planning = _load(planning_id)
    _ensure_editable(planning, "raw materials")
    rows = _raw_material_rows(payload)
    if not rows:
        raise InvalidInput("rawMaterialAssignments must not be empty")
    _set_raw_materials(planning, rows, actor)
    _touch(planning, actor)
    return planning


def update_raw_materials(planning_id, payload, actor: Optional[ActorContext] = None) -> dict:
    planning = run_in_transaction(_update_raw_materials, planning_id, payload, actor,
                                  label="update raw materials")
    current_app.logger.info("planning %s raw materials set (%d lines)",
                            planning.id, len(planning.raw_material_assignments))
    return serialize(planning)


def _update_machines(planning_id, payload, actor):
    planning = _load(planning_id)
    _ensure_editable(planning, "machine assignments")
    rows = _machine_rows(payload)
    if not rows:
        raise InvalidInput("machineAssignments must not be empty")
    _set_machines(planning, rows, actor)
    _touch(planning, actor)
    return planning


def update_machines(planning_id, payload, actor: Optional[ActorContext] = None) -> dict:
    planning = run_in_transaction(_update_machines, planning_id, payload, actor,
                                  label="update machine assignments")
    current_app.logger.info("planning %s machines set (%d operations)",
                            planning.id, len(planning.machine_assignments))
    return serialize(planning)


def _update_timeline(planning_id, timeline, actor):
    planning = _load(planning_id)
    _ensure_editable(planning, "timeline")
    if not isinstance(timeline, dict) or not timeline.get("totalEstimatedTime"):
        raise InvalidInput("timeline.totalEstimatedTime is required")
    _set_timeline(planning, timeline, actor)
    _touch(planning, actor)
    return planning


def update_timeline(planning_id, timeline, actor: Optional[ActorContext] = None) -> dict:
    planning = run_in_transaction(_update_timeline, planning_id, timeline, actor,
                                  label="update timeline")
    current_app.logger.info("planning %s timeline set", planning.id)
    return serialize(planning)


def book_raw_materials(planning: PlanningRecord, actor: Optional[ActorContext] = None,
                       allow_partial: bool = True) -> dict:
    """Deduct every assigned quantity from stock.

    Quantities are summed per raw item first so two lines on the same item are
    checked against stock together.  Runs inside the caller's transaction; if
    any deduction fails the caller's rollback undoes the ones before it.
    """
    if not allow_partial:
        short = [a for a in planning.raw_material_assignments if a.deficit_quantity > 0]
        if short:
            raise PreconditionFailed(
                "Raw material deficit: partial booking is disabled",
                deficits=[a.to_dict() for a in short],
            )

    totals = OrderedDict()
    for assignment in planning.raw_material_assignments:
        if assignment.assigned_quantity > 0:
            totals[assignment.raw_item_id] = (
                totals.get(assignment.raw_item_id, 0) + assignment.assigned_quantity
            )

    reason = f"Planning {planning.id} / work order {planning.work_order_id}"
    for raw_item_id, qty in totals.items():
        lookups.deduct(raw_item_id, qty, reason=reason, performed_by=_actor_id(actor))
    for assignment in planning.raw_material_assignments:
        if assignment.assigned_quantity > 0:
            assignment.status = BOOKED
    return dict(totals)


def _approve(planning_id, actor):
    planning = _load(planning_id)
    if planning.step_completed("approved"):
        raise Conflict("Planning is already approved")
    missing = [
        step for step in ("raw_material_assignment", "machine_assignment", "timeline_set")
        if not planning.step_completed(step)
    ]
    if missing:
        raise PreconditionFailed(
            "Planning is not complete. All steps must be completed.", missing=missing
        )

    booked = book_raw_materials(
        planning, actor, current_app.config.get("PLANNING_ALLOW_PARTIAL_BOOKING", True)
    )
    planning.complete_step("approved", _actor_id(actor), utcnow())
    _touch(planning, actor)
    lookups.set_status(planning.work_order_id, WO_SCHEDULED)
    return planning, booked


def approve(planning_id, actor: Optional[ActorContext] = None) -> dict:
    planning, booked = run_in_transaction(_approve, planning_id, actor, label="approve planning")
    current_app.logger.info("planning %s approved, booked %s, work order %s scheduled",
                            planning.id, booked, planning.work_order_id)
    return serialize(planning)


def _delete(planning_id):
    planning = _load(planning_id)
    if planning.status != DRAFT:
        raise PreconditionFailed("Only draft planning can be deleted")
    work_order_id = planning.work_order_id
    try:
        wo = lookups.find_by_work_order_id(work_order_id)
    except NotFound:
        wo = None
    if wo is not None and wo.planning_id == planning.id:
        wo.status = WO_PENDING
        wo.planning_id = None
    db.session.delete(planning)
    return work_order_id


def delete_planning(planning_id, actor: Optional[ActorContext] = None):
    work_order_id = run_in_transaction(_delete, planning_id, label="delete planning")
    current_app.logger.info("planning %s deleted, work order %s reset to pending (actor=%s)",
                            planning_id, work_order_id, _actor_id(actor))
