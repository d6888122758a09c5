"""Live-update signals for dashboards.

Sent only after a scan has been committed, so a subscriber (a websocket
bridge, a cache) never sees a change that was rolled back.  The sender is the
Flask app, as with Flask's own signals::

    from shopfloor import events

    @events.operator_status_update.connect_via(app)
    def push(sender, **payload):
        ...
"""

from datetime import datetime

from blinker import Namespace
from flask import current_app

from .scan_classifier import parse_barcode

_signals = Namespace()

workorder_scan_update = _signals.signal("workorder-scan-update")
tracking_data_updated = _signals.signal("tracking-data-updated")
operator_status_update = _signals.signal("operator-status-update")


def publish_scan(result: dict, at: datetime):
    """Announce one committed scan.  Subscriber errors never fail the scan."""
    app = current_app._get_current_object()
    try:
        if result["action"] == "barcode_scan":
            barcode_id = result["barcodeData"]["barcodeId"]
            parsed = parse_barcode(barcode_id)
            if parsed is not None:
                workorder_scan_update.send(
                    app,
                    barcodeId=barcode_id,
                    machineId=result["machineId"],
                    machineName=result["machineName"],
                    employeeName=result["employeeName"],
                    scanCount=result["scanCount"],
                    timestamp=at.isoformat(),
                    **parsed.to_dict(),
                )
        else:
            operator_status_update.send(
                app,
                action=result["action"],
                machineId=result["machineId"],
                machineName=result["machineName"],
                employeeId=result["employeeId"],
                employeeName=result["employeeName"],
                message=result["message"],
                autoSignOuts=result.get("autoSignOuts", []),
                timestamp=at.isoformat(),
            )
        tracking_data_updated.send(
            app, date=at.date().isoformat(), action=result["action"],
            machineId=result["machineId"], timestamp=at.isoformat(),
        )
    except Exception:
        app.logger.exception("live update for %s scan on %s failed",
                             result.get("action"), result.get("machineId"))
