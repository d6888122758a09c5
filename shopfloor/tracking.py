"""Machine sign-in / sign-out tracking.

Each calendar day has one ledger (``TrackingDay``).  A machine that was
scanned that day has a ``MachineTrackingEntry`` whose ``current_operator_id``
points at the operator of its single open ``OperatorSession``.  Operator scans
toggle sessions; work-order barcode scans are attached to whichever session is
open on the machine.

Two rules are kept at all times:

* a machine has at most one open session;
* an operator has at most one open session per day, across all machines.

Before looking at the target machine, an operator scan closes that operator's
open sessions everywhere else (``auto_sign_out``).  Then the target machine is
resolved: nobody signed in -> ``sign_in``; same operator -> ``sign_out``;
someone else -> close theirs and ``sign_in_with_auto_signout``.

A scan is one transaction (see :mod:`shopfloor.store`), so a failure halfway
through leaves the ledger as it was.
"""

import io
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

import pandas as pd
from flask import current_app

from . import db, events, lookups
from .errors import Conflict, InvalidInput, PreconditionFailed, ShopfloorError
from .models import (
    BarcodeScan, MachineTrackingEntry, OperatorSession, TrackingDay, utcnow,
)
from .scan_classifier import ScanToken, classify, parse_barcode
from .store import ActorContext, run_in_transaction

BARCODE_SCAN = "barcode_scan"
SIGN_IN = "sign_in"
SIGN_OUT = "sign_out"
SIGN_IN_WITH_AUTO_SIGNOUT = "sign_in_with_auto_signout"
AUTO_SIGN_OUT = "auto_sign_out"


def parse_timestamp(value) -> datetime:
    """Return a naive UTC datetime or raise ``InvalidInput``.

    Strings are ISO 8601 (a trailing ``Z`` is accepted); numbers are epoch
    milliseconds, which is what the scanner firmware sends.
    """
    if isinstance(value, bool) or value is None or value == "":
        raise InvalidInput("Invalid timeStamp format")
    try:
        if isinstance(value, (int, float)):
            parsed = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        elif isinstance(value, str):
            text = value.strip()
            if text.endswith(("Z", "z")):
                text = text[:-1] + "+00:00"
            parsed = datetime.fromisoformat(text)
        else:
            raise InvalidInput("Invalid timeStamp format")
    except (ValueError, OverflowError, OSError):
        raise InvalidInput("Invalid timeStamp format")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_day(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return parse_timestamp(value).date()


# ---------------------------------------------------------------------------
# Ledger access
# ---------------------------------------------------------------------------

def _ledger_for(day: date, create: bool = False) -> Optional[TrackingDay]:
    ledger = TrackingDay.query.filter_by(date=day).first()
    if ledger is None and create:
        ledger = TrackingDay(date=day)
        db.session.add(ledger)
        db.session.flush()
    return ledger


def _entry_for(ledger: TrackingDay, machine_id: str) -> MachineTrackingEntry:
    for entry in ledger.machines:
        if entry.machine_id == machine_id:
            return entry
    entry = MachineTrackingEntry(machine_id=machine_id, current_operator_id=None)
    ledger.machines.append(entry)
    db.session.flush()
    return entry


def _open_session(entry: MachineTrackingEntry, operator_id: str) -> Optional[OperatorSession]:
    for session in entry.sessions:
        if session.operator_id == operator_id and session.is_open:
            return session
    return None


def _close(session: OperatorSession, at: datetime):
    # scanner clocks drift; never close before the sign-in
    session.sign_out_time = max(at, session.sign_in_time)


def _open(ledger: TrackingDay, entry: MachineTrackingEntry, operator_id: str, at: datetime) -> OperatorSession:
    seq = max((s.seq for s in entry.sessions), default=0) + 1
    session = OperatorSession(
        day_id=ledger.id, operator_id=operator_id, seq=seq, sign_in_time=at, sign_out_time=None
    )
    entry.sessions.append(session)
    entry.current_operator_id = operator_id
    return session


def _touch(ledger: TrackingDay):
    ledger.updated_at = utcnow()


def _lock(ledger: TrackingDay):
    # the versioned UPDATE takes the write lock before any entry or session is read
    _touch(ledger)
    db.session.flush()


# ---------------------------------------------------------------------------
# Scan processing
# ---------------------------------------------------------------------------

def _apply_barcode(ledger, entry, machine, token: ScanToken, at: datetime) -> dict:
    if not entry.current_operator_id:
        raise PreconditionFailed("No operator is signed in on this machine", action="error")
    session = _open_session(entry, entry.current_operator_id)
    if session is None:
        raise Conflict("Operator session not found")

    session.barcode_scans.append(BarcodeScan(barcode_id=token.value, time_stamp=at))
    _touch(ledger)

    parsed = parse_barcode(token.value)
    barcode_data = {"barcodeId": token.value}
    if parsed is not None:
        barcode_data.update(parsed.to_dict())
    return {
        "action": BARCODE_SCAN,
        "message": "Barcode scanned",
        "machineId": machine.id,
        "machineName": machine.name,
        "employeeId": session.operator_id,
        "employeeName": session.operator.full_name if session.operator else "Unknown",
        "scanCount": len(session.barcode_scans),
        "barcodeData": barcode_data,
    }


def _apply_operator(ledger, entry, machine, token: ScanToken, at: datetime) -> dict:
    operator = lookups.get_active_operator(token.value)
    name = operator.full_name
    auto_sign_outs = []

    # Close this operator everywhere else first.
    stray = (
        OperatorSession.query
        .filter(OperatorSession.day_id == ledger.id,
                OperatorSession.operator_id == operator.id,
                OperatorSession.sign_out_time.is_(None),
                OperatorSession.entry_id != entry.id)
        .all()
    )
    for session in stray:
        _close(session, at)
        other = session.entry
        if other.current_operator_id == operator.id:
            other.current_operator_id = None
        auto_sign_outs.append({
            "type": AUTO_SIGN_OUT,
            "machineId": other.machine_id,
            "operatorId": operator.id,
            "signOutTime": session.sign_out_time.isoformat(),
        })

    for other in ledger.machines:
        if other.id != entry.id and other.current_operator_id == operator.id:
            other.current_operator_id = None

    current = entry.current_operator_id
    if current == operator.id:
        session = _open_session(entry, operator.id)
        if session is None:
            raise Conflict("Operator session not found")
        _close(session, at)
        entry.current_operator_id = None
        _touch(ledger)
        return {
            "action": SIGN_OUT,
            "message": f"{name} signed out",
            "machineId": machine.id,
            "machineName": machine.name,
            "employeeId": operator.id,
            "employeeName": name,
            "scanCount": len(session.barcode_scans),
            "autoSignOuts": auto_sign_outs,
        }

    action = SIGN_IN
    if current is not None:
        previous = _open_session(entry, current)
        if previous is not None:
            _close(previous, at)
            auto_sign_outs.append({
                "type": AUTO_SIGN_OUT,
                "machineId": machine.id,
                "operatorId": current,
                "signOutTime": previous.sign_out_time.isoformat(),
            })
        entry.current_operator_id = None
        action = SIGN_IN_WITH_AUTO_SIGNOUT
    if _open_session(entry, operator.id) is not None:
        raise Conflict(f"{name} already has an open session on this machine")

    # closes must hit the table before the new open session does
    db.session.flush()
    _open(ledger, entry, operator.id, at)
    _touch(ledger)
    return {
        "action": action,
        "message": f"{name} signed in to {machine.name}",
        "machineId": machine.id,
        "machineName": machine.name,
        "employeeId": operator.id,
        "employeeName": name,
        "scanCount": 0,
        "autoSignOuts": auto_sign_outs,
    }


def _apply_scan(token: ScanToken, machine_id: str, at: datetime) -> dict:
    machine = lookups.get_machine(machine_id)
    ledger = _ledger_for(at.date(), create=True)
    _lock(ledger)
    entry = _entry_for(ledger, machine.id)
    if token.is_barcode:
        return _apply_barcode(ledger, entry, machine, token, at)
    return _apply_operator(ledger, entry, machine, token, at)


def process_scan(scan_id, machine_id, time_stamp, actor: Optional[ActorContext] = None) -> dict:
    """Validate, classify and apply one scan.  Returns the response payload."""
    if not scan_id or not machine_id or time_stamp in (None, ""):
        raise InvalidInput("scanId, machineId, and timeStamp are required")
    at = parse_timestamp(time_stamp)
    token = classify(scan_id)
    if not (token.is_barcode or token.is_operator):
        raise InvalidInput("Invalid scan ID format")

    result = run_in_transaction(_apply_scan, token, str(machine_id), at, label="scan")

    log = current_app.logger
    for auto in result.get("autoSignOuts", []):
        log.info("auto_sign_out operator=%s machine=%s at=%s",
                 auto["operatorId"], auto["machineId"], auto["signOutTime"])
    log.info("%s scan=%s machine=%s at=%s actor=%s", result["action"], token.value,
             result["machineId"], at.isoformat(), actor.actor_id if actor else None)
    result["timeStamp"] = at.isoformat()
    events.publish_scan(result, at)
    return result


def process_bulk_scans(scans, actor: Optional[ActorContext] = None) -> dict:
    """Replay a scanner's offline buffer.

    Scans are applied in timestamp order, each in its own transaction, so one
    bad scan does not discard the rest.
    """
    results = {"total": len(scans), "successful": 0, "failed": 0, "errors": []}
    ordered = []
    for index, scan in enumerate(scans):
        scan = scan if isinstance(scan, dict) else {}
        try:
            at = parse_timestamp(scan.get("timeStamp"))
        except InvalidInput as exc:
            results["failed"] += 1
            results["errors"].append({"scanId": scan.get("scanId"), "error": exc.message})
            continue
        ordered.append((at, index, scan))
    ordered.sort(key=lambda item: (item[0], item[1]))

    for _, _, scan in ordered:
        try:
            process_scan(scan.get("scanId"), scan.get("machineId"), scan.get("timeStamp"), actor)
            results["successful"] += 1
        except ShopfloorError as exc:
            results["failed"] += 1
            results["errors"].append({"scanId": scan.get("scanId"), "error": exc.message})
    return results


# ---------------------------------------------------------------------------
# Read side
# ---------------------------------------------------------------------------

def _iso(value: Optional[datetime]):
    return value.isoformat() if value else None


def ledger_status(day: date) -> dict:
    """The day's ledger with machine and operator names filled in."""
    ledger = _ledger_for(day)
    if ledger is None:
        return {
            "message": f"No tracking data for {day.isoformat()}",
            "date": day.isoformat(), "machines": [], "totalScans": 0, "totalMachines": 0,
        }

    operator_ids = set()
    for entry in ledger.machines:
        operator_ids.add(entry.current_operator_id)
        operator_ids.update(s.operator_id for s in entry.sessions)
    names = lookups.employee_names(operator_ids)

    total_scans = 0
    machines = []
    for entry in ledger.machines:
        machine_scans = 0
        operators = []
        for session in entry.sessions:
            count = len(session.barcode_scans)
            machine_scans += count
            operators.append({
                "operatorId": session.operator_id,
                "name": names.get(session.operator_id, "Unknown Operator"),
                "signInTime": _iso(session.sign_in_time),
                "signOutTime": _iso(session.sign_out_time),
                "barcodeScans": [
                    {"barcodeId": s.barcode_id, "timeStamp": _iso(s.time_stamp)}
                    for s in session.barcode_scans
                ],
                "scanCount": count,
                "isActive": session.is_open,
            })
        total_scans += machine_scans

        current = None
        if entry.current_operator_id:
            current = {
                "operatorId": entry.current_operator_id,
                "name": names.get(entry.current_operator_id, "Unknown Operator"),
            }
        machine = entry.machine
        machines.append({
            "machineId": entry.machine_id,
            "machineName": machine.name if machine else "Unknown Machine",
            "machineSerial": (machine.serial_number if machine else None) or "Unknown",
            "machineType": machine.type if machine else None,
            "currentOperator": current,
            "operators": operators,
            "machineScans": machine_scans,
        })

    return {
        "date": ledger.date.isoformat(),
        "totalMachines": len(ledger.machines),
        "totalScans": total_scans,
        "machines": machines,
    }


def machine_operations(machine_id: str, day: date) -> dict:
    """Work orders seen on a machine that day, derived from barcode scans."""
    machine = lookups.get_machine(machine_id)
    ledger = _ledger_for(day)
    entry = None
    if ledger is not None:
        entry = next((e for e in ledger.machines if e.machine_id == machine.id), None)
    if entry is None:
        return {
            "message": "No tracking data for this machine",
            "machineId": machine.id, "machineName": machine.name,
            "totalScans": 0, "isActive": False, "currentOperator": None, "operations": [],
        }

    by_work_order = {}
    total = 0
    for session in entry.sessions:
        total += len(session.barcode_scans)
        for scan in session.barcode_scans:
            parsed = parse_barcode(scan.barcode_id)
            if parsed is None:
                continue
            bucket = by_work_order.setdefault(
                parsed.work_order_short_id, {"scans": 0, "operators": set()}
            )
            bucket["scans"] += 1
            bucket["operators"].add(session.operator_id)

    active = entry.current_operator_id is not None
    return {
        "machineId": machine.id,
        "machineName": machine.name,
        "totalScans": total,
        "isActive": active,
        "currentOperator": entry.current_operator_id,
        "operations": [
            {
                "workOrderShortId": short,
                "scansCount": bucket["scans"],
                "operatorCount": len(bucket["operators"]),
                "isActive": active,
            }
            for short, bucket in by_work_order.items()
        ],
    }


SESSION_COLUMNS = [
    "date", "machineId", "machineName", "operatorId", "operatorName",
    "signInTime", "signOutTime", "minutes", "scanCount", "isActive",
]


def sessions_frame(day: date, as_of: Optional[datetime] = None) -> pd.DataFrame:
    """One row per session.  Open sessions are measured up to ``as_of``."""
    ledger = _ledger_for(day)
    if ledger is None:
        return pd.DataFrame(columns=SESSION_COLUMNS)

    day_end = datetime.combine(day, time.min) + timedelta(days=1)
    as_of = min(as_of or utcnow(), day_end)
    sessions = (
        OperatorSession.query.filter_by(day_id=ledger.id)
        .order_by(OperatorSession.sign_in_time, OperatorSession.id).all()
    )
    names = lookups.employee_names(s.operator_id for s in sessions)
    rows = []
    for s in sessions:
        end = s.sign_out_time or max(as_of, s.sign_in_time)
        rows.append({
            "date": day.isoformat(),
            "machineId": s.entry.machine_id,
            "machineName": s.entry.machine.name if s.entry.machine else None,
            "operatorId": s.operator_id,
            "operatorName": names.get(s.operator_id, "Unknown Operator"),
            "signInTime": s.sign_in_time,
            "signOutTime": s.sign_out_time,
            "minutes": round((end - s.sign_in_time).total_seconds() / 60.0, 2),
            "scanCount": len(s.barcode_scans),
            "isActive": s.is_open,
        })
    return pd.DataFrame(rows, columns=SESSION_COLUMNS)


def operator_summary(day: date, as_of: Optional[datetime] = None) -> List[dict]:
    df = sessions_frame(day, as_of)
    if df.empty:
        return []
    grouped = (
        df.groupby(["operatorId", "operatorName"], sort=True)
        .agg(sessions=("machineId", "size"),
             machines=("machineId", "nunique"),
             minutes=("minutes", "sum"),
             scans=("scanCount", "sum"),
             active=("isActive", "any"))
        .reset_index()
    )
    return [
        {
            "operatorId": row.operatorId,
            "operatorName": row.operatorName,
            "sessions": int(row.sessions),
            "machines": int(row.machines),
            "minutes": round(float(row.minutes), 2),
            "scans": int(row.scans),
            "isActive": bool(row.active),
        }
        for row in grouped.itertuples(index=False)
    ]


def export_sessions(day: date, fmt: str = "csv"):
    """Return ``(payload, mimetype, filename)`` for the day's session table."""
    df = sessions_frame(day)
    stem = f"tracking_{day.isoformat()}"
    if fmt == "xlsx":
        buf = io.BytesIO()
        with pd.ExcelWriter(buf, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="sessions", index=False)
        return (buf.getvalue(),
                "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
                f"{stem}.xlsx")
    if fmt != "csv":
        raise InvalidInput("format must be csv or xlsx")
    return df.to_csv(index=False).encode("utf-8"), "text/csv", f"{stem}.csv"

