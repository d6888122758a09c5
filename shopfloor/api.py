from flask import Blueprint, Response, jsonify, request

from . import planning, tracking
from .errors import InvalidInput
from .models import utcnow
from .qr_utils import make_label_png
from .scan_classifier import classify
from .store import ActorContext

api = Blueprint("api", __name__)


def actor_from_request() -> ActorContext:
    # identity is established by the auth gateway in front of us
    return ActorContext(actor_id=(request.headers.get("X-Actor-Id") or "").strip() or None)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

@api.post("/tracking/scan")
def scan():
    data = json_body()
    result = tracking.process_scan(
        data.get("scanId"), data.get("machineId"), data.get("timeStamp"), actor_from_request()
    )
    return jsonify({"success": True, **result})


@api.post("/tracking/bulk-scans")
def bulk_scans():
    scans = json_body().get("scans")
    if not isinstance(scans, list) or not scans:
        raise InvalidInput("Scans array is required")
    results = tracking.process_bulk_scans(scans, actor_from_request())
    return jsonify({
        "success": True,
        "message": f"Processed {results['successful']} of {results['total']} scans",
        "results": results,
    })


@api.get("/tracking/status/today")
def status_today():
    return jsonify({"success": True, **tracking.ledger_status(utcnow().date())})


@api.get("/tracking/status/<date>")
def status_for_date(date):
    return jsonify({"success": True, **tracking.ledger_status(tracking.parse_day(date))})


@api.get("/tracking/machine/<machine_id>/operations")
def machine_operations(machine_id):
    day = request.args.get("date")
    day = tracking.parse_day(day) if day else utcnow().date()
    return jsonify({"success": True, **tracking.machine_operations(machine_id, day)})


@api.get("/tracking/summary/<date>")
def operator_summary(date):
    day = tracking.parse_day(date)
    return jsonify({
        "success": True,
        "date": day.isoformat(),
        "operators": tracking.operator_summary(day),
    })


@api.get("/tracking/export/<date>")
def export(date):
    fmt = (request.args.get("format") or "csv").lower()
    payload, mimetype, filename = tracking.export_sessions(tracking.parse_day(date), fmt)
    return Response(
        payload, mimetype=mimetype,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@api.get("/tracking/labels/<token>")
def label(token):
    parsed = classify(token)
    if not (parsed.is_barcode or parsed.is_operator):
        raise InvalidInput("Invalid scan ID format")
    return Response(make_label_png(parsed.value), mimetype="image/png")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

@api.get("/planning/available-machines")
def available_machines():
    machines = planning.available_machines(request.args.get("machineCategory"))
    return jsonify({"success": True, "machines": machines})


@api.get("/planning/work-order/<work_order_id>")
def planning_for_work_order(work_order_id):
    return jsonify({"success": True, "planning": planning.get_planning_for_work_order(work_order_id)})


@api.get("/planning/work-order/<work_order_id>/details")
def work_order_details(work_order_id):
    return jsonify({"success": True, **planning.work_order_details(work_order_id)})


@api.get("/planning/<int:planning_id>")
def get_planning(planning_id):
    return jsonify({"success": True, "planning": planning.get_planning(planning_id)})


@api.post("/planning")
def save_planning():
    result = planning.save_planning(json_body(), actor_from_request())
    message = "Planning created successfully" if result["created"] else "Planning updated successfully"
    return jsonify({"success": True, "message": message, "planning": result["planning"]})


@api.post("/planning/<int:planning_id>/approve")
def approve_planning(planning_id):
    record = planning.approve(planning_id, actor_from_request())
    return jsonify({
        "success": True,
        "message": "Planning approved and raw materials booked successfully",
        "planning": record,
    })


@api.put("/planning/<int:planning_id>/raw-materials")
def update_raw_materials(planning_id):
    record = planning.update_raw_materials(
        planning_id, json_body().get("rawMaterialAssignments"), actor_from_request()
    )
    return jsonify({"success": True, "message": "Raw material assignments updated successfully",
                    "planning": record})


@api.put("/planning/<int:planning_id>/machines")
def update_machines(planning_id):
    record = planning.update_machines(
        planning_id, json_body().get("machineAssignments"), actor_from_request()
    )
    return jsonify({"success": True, "message": "Machine assignments updated successfully",
                    "planning": record})


@api.put("/planning/<int:planning_id>/timeline")
def update_timeline(planning_id):
    record = planning.update_timeline(planning_id, json_body().get("timeline"), actor_from_request())
    return jsonify({"success": True, "message": "Timeline updated successfully", "planning": record})


@api.delete("/planning/<int:planning_id>")
def delete_planning(planning_id):
    planning.delete_planning(planning_id, actor_from_request())
    return jsonify({"success": True, "message": "Planning deleted successfully"})
