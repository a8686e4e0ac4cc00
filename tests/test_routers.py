"""
test_routers.py — Tests for the HTTP layer (routers/followups.py,
routers/access.py, routers/workflow.py, main.py /health)

Covers: request validation (422), service error mapping (404 / 409),
manual processing triggers, access code issue + validate (invalid codes
are a 200 with valid=false), SLA, auto-approval dry run, manual
escalation and the request audit trail.

Called by: pytest
Depends on: conftest.py (client, db_session, factories)
"""

from datetime import datetime, timedelta, timezone

from assistflow.models import AccessAttempt, FollowUpStatus, Priority, QuotationStatus


# ── /health ───────────────────────────────────────────────────────────


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["db"] is True


# ── Follow-ups ────────────────────────────────────────────────────────


def test_create_followup(client, test_request, test_supplier):
    resp = client.post(
        "/api/followups",
        json={
            "request_id": test_request.id,
            "supplier_id": test_supplier.id,
            "kind": "quotation_reminder",
            "scheduled_for": "2026-03-04T09:00:00+00:00",
        },
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "pending"
    assert body["priority"] == "normal"
    assert body["attempt_count"] == 0
    assert body["version"] == 1


def test_create_followup_naive_time_is_422(client, test_request, test_supplier):
    resp = client.post(
        "/api/followups",
        json={
            "request_id": test_request.id,
            "supplier_id": test_supplier.id,
            "kind": "quotation_reminder",
            "scheduled_for": "2026-03-04T09:00:00",
        },
    )
    assert resp.status_code == 422


def test_create_followup_unknown_kind_is_422(client, test_request, test_supplier):
    resp = client.post(
        "/api/followups",
        json={
            "request_id": test_request.id,
            "supplier_id": test_supplier.id,
            "kind": "carrier_pigeon",
            "scheduled_for": "2026-03-04T09:00:00+00:00",
        },
    )
    assert resp.status_code == 422


def test_create_followup_unknown_request_is_404(client, test_supplier):
    resp = client.post(
        "/api/followups",
        json={
            "request_id": 9999,
            "supplier_id": test_supplier.id,
            "kind": "work_reminder",
            "scheduled_for": "2026-03-04T09:00:00+00:00",
        },
    )
    assert resp.status_code == 404


def test_list_followups_with_filters(client, make_schedule):
    make_schedule(priority=Priority.CRITICAL)
    make_schedule(status=FollowUpStatus.SENT)

    assert len(client.get("/api/followups").json()) == 2
    pending = client.get("/api/followups", params={"status": "pending"}).json()
    assert len(pending) == 1
    assert pending[0]["priority"] == "critical"
    assert client.get("/api/followups", params={"priority": "loud"}).status_code == 422


def test_followup_stats(client, make_schedule):
    make_schedule()
    body = client.get("/api/followups/stats").json()
    assert body["total_pending"] == 1
    assert body["by_kind"]["quotation_reminder"] == 1


def test_process_due_endpoint_sends(client, make_schedule, db_session):
    schedule = make_schedule()

    resp = client.post("/api/followups/process-due")

    assert resp.status_code == 200
    body = resp.json()
    assert body["mode"] == "due"
    assert body["sent"] == 1
    db_session.refresh(schedule)
    assert schedule.status == FollowUpStatus.SENT


def test_process_all_endpoint_sends_future_schedule(client, make_schedule):
    make_schedule(scheduled_for=datetime.now(timezone.utc) + timedelta(days=3))

    assert client.post("/api/followups/process-due").json()["sent"] == 0
    body = client.post("/api/followups/process-all").json()
    assert body["mode"] == "all"
    assert body["sent"] == 1


def test_cancel_followup_and_conflict(client, make_schedule):
    schedule = make_schedule()

    first = client.post(f"/api/followups/{schedule.id}/cancel")
    second = client.post(f"/api/followups/{schedule.id}/cancel")

    assert first.status_code == 200
    assert first.json()["status"] == "cancelled"
    assert second.status_code == 409


def test_cancel_unknown_is_404(client):
    assert client.post("/api/followups/4242/cancel").status_code == 404


def test_reschedule_followup(client, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.FAILED, attempt_count=1)

    resp = client.post(
        f"/api/followups/{schedule.id}/reschedule", json={"new_time": "2026-03-05T10:00:00+01:00"}
    )

    assert resp.status_code == 200
    assert resp.json()["status"] == "pending"


def test_reschedule_sent_is_409(client, make_schedule):
    schedule = make_schedule(status=FollowUpStatus.SENT, attempt_count=1)
    resp = client.post(
        f"/api/followups/{schedule.id}/reschedule", json={"new_time": "2026-03-05T10:00:00+00:00"}
    )
    assert resp.status_code == 409


# ── Access codes ──────────────────────────────────────────────────────


def test_issue_and_validate_access_code(client, test_supplier, test_request, db_session):
    issued = client.post(
        "/api/access-codes", json={"supplier_id": test_supplier.id, "request_id": test_request.id, "ttl_days": 7}
    )
    assert issued.status_code == 201
    code = issued.json()["code"]
    assert len(code) == 8

    resp = client.post("/api/access-codes/validate", json={"code": code.lower()}, headers={"User-Agent": "portal/1.0"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["valid"] is True
    assert body["outcome"] == "valid"
    assert body["supplier_id"] == test_supplier.id
    attempt = db_session.query(AccessAttempt).one()
    assert attempt.user_agent == "portal/1.0"


def test_validate_unknown_code_is_200_invalid(client):
    resp = client.post("/api/access-codes/validate", json={"code": "NOPE1234"})
    assert resp.status_code == 200
    assert resp.json() == {
        "valid": False,
        "outcome": "not_found",
        "extended": False,
        "supplier_id": None,
        "request_id": None,
        "expires_at": None,
    }


def test_validate_malformed_code_is_200_invalid(client):
    resp = client.post("/api/access-codes/validate", json={"code": "<script>"})
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "malformed"


def test_issue_for_unknown_supplier_is_404(client):
    assert client.post("/api/access-codes", json={"supplier_id": 9999}).status_code == 404


# ── SLA ───────────────────────────────────────────────────────────────


def test_sla_endpoint(client, make_request):
    now = datetime.now(timezone.utc)
    make_request(created_at=now - timedelta(days=2), response_deadline=now - timedelta(days=1))
    make_request(created_at=now - timedelta(days=2), response_deadline=now + timedelta(days=1))

    body = client.get("/api/sla", params={"window_days": 7}).json()

    assert body["total"] == 2
    assert body["within_sla"] == 1
    assert body["breached_sla"] == 1
    assert body["compliance_rate"] == 50.0
    assert body["window_days"] == 7


def test_sla_window_out_of_range_is_422(client):
    assert client.get("/api/sla", params={"window_days": 0}).status_code == 422


# ── Auto-approval ─────────────────────────────────────────────────────


def test_auto_approval_evaluate_is_dry_run(client):
    resp = client.post(
        "/api/auto-approval/evaluate", json={"amount": "499.00", "priority": "normal", "threshold": "500"}
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["approve"] is True
    assert body["comparison"] == "499.00 < 500.00"


def test_auto_approval_evaluate_critical(client):
    body = client.post(
        "/api/auto-approval/evaluate", json={"amount": "10", "priority": "critical", "threshold": "500"}
    ).json()
    assert body["approve"] is False
    assert body["reason"] == "critical_priority"


def test_auto_approval_run(client, make_request, make_quotation, db_session):
    quotation = make_quotation(make_request(), amount="42.00")

    body = client.post("/api/auto-approval/run").json()

    assert body["approved"] == 1
    db_session.refresh(quotation)
    assert quotation.status == QuotationStatus.APPROVED


# ── Escalation ────────────────────────────────────────────────────────


def test_escalation_run(client, make_request):
    make_request(response_deadline=datetime.now(timezone.utc) - timedelta(days=4))
    body = client.post("/api/escalations/run").json()
    assert body["escalated"] == 1
    assert body["errors"] == 0


def test_manual_escalate_and_clear(client, make_request):
    req = make_request()

    resp = client.post(f"/api/requests/{req.id}/escalate", json={"reason": "Tenant without heating"})
    assert resp.status_code == 200
    assert resp.json()["escalation_level"] == 3
    assert resp.json()["priority"] == "critical"

    cleared = client.post(f"/api/requests/{req.id}/clear-escalation", json={"actor": "m.bernard"})
    assert cleared.status_code == 200
    assert cleared.json()["escalation_level"] == 0


def test_manual_escalate_blank_reason_is_422(client, make_request):
    req = make_request()
    assert client.post(f"/api/requests/{req.id}/escalate", json={"reason": "   "}).status_code == 422


def test_manual_escalate_unknown_request_is_404(client):
    assert client.post("/api/requests/9999/escalate", json={"reason": "x"}).status_code == 404


# ── Audit trail ───────────────────────────────────────────────────────


def test_request_activity_newest_first(client, make_request):
    req = make_request()
    client.post(f"/api/requests/{req.id}/escalate", json={"reason": "No answer from supplier", "actor": "ops"})
    client.post(f"/api/requests/{req.id}/clear-escalation", json={"actor": "ops"})

    resp = client.get(f"/api/requests/{req.id}/activity")

    assert resp.status_code == 200
    body = resp.json()
    assert [a["action"] for a in body] == ["escalation_cleared", "manual_escalated"]
    assert body[1]["metadata"]["escalation_reason"] == "No answer from supplier"
    assert body[1]["actor"] == "ops"


def test_request_activity_limit(client, make_request):
    req = make_request()
    client.post(f"/api/requests/{req.id}/escalate", json={"reason": "Urgent"})
    client.post(f"/api/requests/{req.id}/clear-escalation")

    assert len(client.get(f"/api/requests/{req.id}/activity", params={"limit": 1}).json()) == 1


def test_request_activity_unknown_request_is_404(client):
    assert client.get("/api/requests/9999/activity").status_code == 404
