from conftest import ALICE, BOB, FABRIC, M1, M2, THREAD, WO_ID
from shopfloor.models import utcnow

NOW = utcnow().isoformat() + "Z"


def scan(client, scan_id, machine_id, ts=NOW):
    return client.post("/api/tracking/scan", json={"scanId": scan_id, "machineId": machine_id, "timeStamp": ts})


def test_healthz(client):
    r = client.get("/healthz")
    assert r.status_code == 200 and r.json == {"ok": True}


def test_scan_sign_in_and_out(client):
    r = scan(client, ALICE, M1)
    assert r.status_code == 200 and r.json["success"] is True
    assert r.json["action"] == "sign_in" and r.json["machineName"] == "SNLS-01"
    r = scan(client, ALICE, M1)
    assert r.status_code == 200 and r.json["action"] == "sign_out"


def test_scan_takeover(client):
    scan(client, ALICE, M1)
    r = scan(client, BOB, M1)
    assert r.json["action"] == "sign_in_with_auto_signout"
    assert r.json["autoSignOuts"][0]["operatorId"] == ALICE


def test_scan_errors(client):
    r = client.post("/api/tracking/scan", json={"scanId": ALICE})
    assert r.status_code == 400 and r.json["success"] is False and r.json["error"] == "invalid_input"
    r = scan(client, "bogus", M1)
    assert r.status_code == 400 and r.json["message"] == "Invalid scan ID format"
    r = scan(client, ALICE, "nope")
    assert r.status_code == 404 and r.json["error"] == "not_found"
    r = scan(client, "WO-1a2b3c4d-1", M1)
    assert r.status_code == 400 and r.json["error"] == "precondition_failed"
    r = client.post("/api/tracking/scan", data="not json", content_type="text/plain")
    assert r.status_code == 400


def test_status_today(client):
    scan(client, ALICE, M1)
    scan(client, "WO-1a2b3c4d-1", M1)
    r = client.get("/api/tracking/status/today")
    assert r.status_code == 200
    assert r.json["totalMachines"] == 1 and r.json["totalScans"] == 1
    assert r.json["machines"][0]["currentOperator"]["name"] == "Alice Rao"

    r = client.get("/api/tracking/status/not-a-date")
    assert r.status_code == 400


def test_bulk_scans(client):
    r = client.post("/api/tracking/bulk-scans", json={"scans": [
        {"scanId": ALICE, "machineId": M1, "timeStamp": "2024-05-06T08:00:00Z"},
        {"scanId": BOB, "machineId": M2, "timeStamp": "2024-05-06T08:01:00Z"},
        {"scanId": "junk", "machineId": M2, "timeStamp": "2024-05-06T08:02:00Z"},
    ]})
    assert r.status_code == 200
    assert r.json["results"]["successful"] == 2 and r.json["results"]["failed"] == 1
    assert client.post("/api/tracking/bulk-scans", json={"scans": []}).status_code == 400


def test_machine_operations_and_summary(client):
    scan(client, ALICE, M1, "2024-05-06T08:00:00Z")
    scan(client, "WO-1a2b3c4d-1", M1, "2024-05-06T08:05:00Z")
    r = client.get(f"/api/tracking/machine/{M1}/operations?date=2024-05-06")
    assert r.status_code == 200 and r.json["operations"][0]["workOrderShortId"] == "1a2b3c4d"
    assert client.get("/api/tracking/machine/nope/operations").status_code == 404

    r = client.get("/api/tracking/summary/2024-05-06")
    assert r.json["operators"][0]["operatorId"] == ALICE


def test_export(client):
    scan(client, ALICE, M1, "2024-05-06T08:00:00Z")
    r = client.get("/api/tracking/export/2024-05-06")
    assert r.status_code == 200 and r.mimetype == "text/csv"
    assert "tracking_2024-05-06.csv" in r.headers["Content-Disposition"]
    r = client.get("/api/tracking/export/2024-05-06?format=xlsx")
    assert r.status_code == 200 and r.data[:2] == b"PK"
    assert client.get("/api/tracking/export/2024-05-06?format=pdf").status_code == 400


def test_labels(client):
    r = client.get(f"/api/tracking/labels/{ALICE}")
    assert r.status_code == 200 and r.mimetype == "image/png"
    assert r.data[:8] == b"\x89PNG\r\n\x1a\n"
    assert client.get("/api/tracking/labels/nonsense").status_code == 400


def test_unknown_route_is_json_404(client):
    r = client.get("/api/nothing-here")
    assert r.status_code == 404 and r.json["success"] is False


def test_planning_flow(client):
    headers = {"X-Actor-Id": "planner-7"}
    r = client.post("/api/planning", headers=headers, json={
        "workOrderId": WO_ID,
        "rawMaterialAssignments": [
            {"rawItemId": FABRIC, "requiredQuantity": 8, "assignedQuantity": 5},
            {"rawItemId": THREAD, "assignedQuantity": 2},
        ],
    })
    assert r.status_code == 200 and r.json["message"] == "Planning created successfully"
    pid = r.json["planning"]["id"]
    assert r.json["planning"]["createdBy"] == "planner-7"

    r = client.post(f"/api/planning/{pid}/approve", headers=headers)
    assert r.status_code == 400 and r.json["missing"] == ["machine_assignment", "timeline_set"]

    r = client.put(f"/api/planning/{pid}/machines", headers=headers,
                   json={"machineAssignments": [{"operationSequence": 1, "machineId": M1}]})
    assert r.status_code == 200 and r.json["planning"]["status"] == "machine_assigned"
    r = client.put(f"/api/planning/{pid}/timeline", headers=headers,
                   json={"timeline": {"totalEstimatedTime": 30}})
    assert r.status_code == 200

    r = client.post(f"/api/planning/{pid}/approve", headers=headers)
    assert r.status_code == 200 and r.json["planning"]["status"] == "approved"

    r = client.get(f"/api/planning/work-order/{WO_ID}/details")
    assert r.json["workOrder"]["status"] == "scheduled"
    assert [m["availableQuantity"] for m in r.json["rawMaterialRequirements"]] == [0, 98]

    r = client.put(f"/api/planning/{pid}/raw-materials",
                   json={"rawMaterialAssignments": [{"rawItemId": THREAD, "assignedQuantity": 1}]})
    assert r.status_code == 400 and r.json["error"] == "conflict"
    r = client.delete(f"/api/planning/{pid}")
    assert r.status_code == 400


def test_planning_reads(client):
    assert client.get("/api/planning/42").status_code == 404
    assert client.get(f"/api/planning/work-order/{WO_ID}").status_code == 404
    assert client.get("/api/planning/work-order/WO-missing/details").status_code == 404

    r = client.post("/api/planning", json={"workOrderId": WO_ID})
    pid = r.json["planning"]["id"]
    assert client.get(f"/api/planning/{pid}").json["planning"]["status"] == "draft"
    assert client.get(f"/api/planning/work-order/{WO_ID}").json["planning"]["id"] == pid

    r = client.get("/api/planning/available-machines?machineCategory=Single Needle")
    assert [m["name"] for m in r.json["machines"]] == ["SNLS-01", "SNLS-02"]

    r = client.delete(f"/api/planning/{pid}")
    assert r.status_code == 200 and r.json["message"] == "Planning deleted successfully"


def test_non_finite_quantities_are_bad_requests(client):
    for bad in ("nan", "inf"):
        r = client.post("/api/planning", json={
            "workOrderId": WO_ID,
            "rawMaterialAssignments": [{"rawItemId": FABRIC, "assignedQuantity": bad}],
        })
        assert r.status_code == 400 and r.json["error"] == "invalid_input"
    assert client.get(f"/api/planning/work-order/{WO_ID}").status_code == 404


def test_wrong_method_is_a_bad_request(client):
    r = client.get("/api/tracking/scan")
    assert r.status_code == 400 and r.json["success"] is False
    assert client.delete("/api/planning/available-machines").status_code == 400


def test_store_deadline_is_reported(app, client):
    app.config["STORE_DEADLINE_SECONDS"] = 0
    r = scan(client, ALICE, M1)
    assert r.status_code == 500 and r.json["error"] == "service_unavailable"
    assert client.get("/api/tracking/status/today").json["totalMachines"] == 0
