"""
HTTP tests for the action plan and policy settings blueprints.

Plans use Dec 2099 so the wall-clock lock never interferes.  Focus is on
request parsing, caller resolution from headers and the mapping from
service exceptions to status codes / error codes.
"""

import logging

import pytest

from app.models.audit import AuditLog

BASE = "/api/v1/action-plans"
SETTINGS = f"{BASE}/settings"

ADMIN = {"X-User-Id": "u-admin", "X-User-Role": "admin"}
LEADER = {"X-User-Id": "u-leader", "X-User-Role": "leader", "X-Department": "FIN"}
STAFF = {"X-User-Id": "u-staff", "X-User-Role": "staff", "X-Department": "FIN"}
EXECUTIVE = {"X-User-Id": "u-exec", "X-User-Role": "executive"}

LINK = [{"type": "link", "url": "https://docs.example.com/report.pdf", "title": "Report"}]


@pytest.fixture()
def plan(client):
    """Create an Open draft plan for FIN via the API."""
    res = client.post(BASE, json={
        "month": "Dec", "year": 2099, "action_plan": "Roll out e-invoicing",
        "category": "High", "indicator": "80% of suppliers onboarded",
    }, headers=LEADER)
    assert res.status_code == 201
    return res.get_json()["plan"]


# ═════════════════════════════════════════════════════════════════════════════
# Plans
# ═════════════════════════════════════════════════════════════════════════════


class TestPlansApi:
    def test_health(self, client):
        assert client.get("/api/v1/health").status_code == 200
        assert client.get("/api/v1/health/live").get_json()["status"] == "ok"

    def test_create_and_get(self, client, plan):
        assert plan["department_code"] == "FIN"
        res = client.get(f"{BASE}/{plan['id']}", headers=STAFF)
        assert res.status_code == 200
        data = res.get_json()
        assert data["display_status"] == "Open"
        assert data["priority_bucket"] == "H"
        assert data["edit_mode"] == "submission"
        assert data["lock"]["locked"] is False
        assert "X-Request-ID" in res.headers

    def test_list(self, client, plan):
        res = client.get(f"{BASE}?department_code=FIN&month=Dec&year=2099", headers=LEADER)
        assert res.get_json()["total"] == 1

    def test_anonymous_cannot_create(self, client):
        res = client.post(BASE, json={"month": "Dec", "year": 2099, "action_plan": "x"})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_not_found(self, client):
        res = client.get(f"{BASE}/does-not-exist", headers=LEADER)
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_non_json_body_rejected(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", data="status=Blocked",
                          content_type="text/plain", headers=LEADER)
        assert res.status_code == 415

    def test_patch_planning_fields(self, client, plan):
        res = client.patch(f"{BASE}/{plan['id']}", json={
            "indicator": "90% of suppliers onboarded", "expected_version": plan["version"],
        }, headers=LEADER)
        assert res.status_code == 200
        assert res.get_json()["plan"]["indicator"] == "90% of suppliers onboarded"

    def test_staff_cannot_patch_planning(self, client, plan):
        res = client.patch(f"{BASE}/{plan['id']}", json={"indicator": "x"}, headers=STAFF)
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Lifecycle
# ═════════════════════════════════════════════════════════════════════════════


class TestLifecycleApi:
    def test_transition_validation_reports_threshold(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "Blocked", "blocker_category": "External", "blocker_reason": "Slow",
        }, headers=STAFF)
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"]["blocker_reason"]["min_length"] == 10

    def test_transition_requires_status(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", json={}, headers=STAFF)
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_transition_and_timeline(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "On Progress", "progress_note": "Supplier kick-off sent",
        }, headers=STAFF)
        assert res.status_code == 200
        assert res.get_json()["plan"]["status"] == "On Progress"

        timeline = client.get(f"{BASE}/{plan['id']}/timeline", headers=STAFF).get_json()
        assert timeline[0]["message"] == "Supplier kick-off sent"

    def test_stale_version_conflict(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "On Progress", "progress_note": "Supplier kick-off sent", "expected_version": 9,
        }, headers=STAFF)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_CONFLICT_STATE"
        assert body["details"]["refetch"] is True

    def test_not_achieved_without_failure_reasons(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "Not Achieved", "gap_category": "Vendor Delay",
            "gap_analysis": "Suppliers not ready for e-invoicing", "follow_up": "carry_over",
            "attachments": LINK,
        }, headers=LEADER)
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_POLICY_CONFIG"
        assert body["details"]["setting"] == "failure_reason_options"

    def test_grade_unsubmitted_plan_is_recalled(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/grade", json={"score": 80}, headers=ADMIN)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ITEM_RECALLED"

    def test_grade_score_must_be_integer(self, client, plan):
        res = client.post(f"{BASE}/{plan['id']}/grade", json={"score": "eighty"}, headers=ADMIN)
        assert res.status_code == 400
        assert "score must be an integer" in res.get_json()["error"]

    def test_finalize_grade_flow(self, client, plan):
        client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "Achieved", "attachments": LINK,
        }, headers=LEADER)

        res = client.post(f"{BASE}/finalize", json={
            "department_code": "FIN", "month": "Dec", "year": 2099,
        }, headers=LEADER)
        assert res.status_code == 200
        assert res.get_json()["submitted"] == [plan["id"]]

        view = client.get(f"{BASE}/{plan['id']}", headers=LEADER).get_json()
        assert view["display_status"] == "Waiting Approval"
        assert view["edit_mode"] == "read_only"

        res = client.post(f"{BASE}/{plan['id']}/grade", json={"score": 95, "verdict": "approve"},
                          headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["plan"]["quality_score"] == 95

        res = client.post(f"{BASE}/{plan['id']}/recall", json={}, headers=LEADER)
        assert res.status_code == 409

    def test_finalize_requires_period(self, client):
        res = client.post(f"{BASE}/finalize", json={"department_code": "FIN"}, headers=LEADER)
        assert res.status_code == 400

    def test_finalize_with_month_end_resolution(self, client, plan):
        res = client.post(f"{BASE}/finalize", json={
            "department_code": "FIN", "month": "Dec", "year": 2099,
        }, headers=LEADER)
        assert res.status_code == 400
        assert res.get_json()["details"]["unresolved"][0]["id"] == plan["id"]

        res = client.post(f"{BASE}/finalize", json={
            "department_code": "FIN", "month": "Dec", "year": 2099,
            "resolutions": [{"plan_id": plan["id"], "action": "carry_over"}],
        }, headers=LEADER)
        assert res.status_code == 200
        body = res.get_json()
        assert body["resolved"] == [{"plan_id": plan["id"], "action": "carry_over"}]
        assert body["auto_graded"] == [plan["id"]]

        successor = client.get(f"{BASE}/{body['successors'][0]['to']}", headers=LEADER).get_json()
        assert (successor["month"], successor["year"]) == ("Jan", 2100)
        assert successor["max_possible_score"] == 80

    def test_queues(self, client, plan):
        assert client.get(f"{BASE}/pending-drops", headers=EXECUTIVE).get_json()["total"] == 0
        client.post(f"{BASE}/{plan['id']}/transition", json={
            "status": "Blocked", "blocker_category": "Approval",
            "blocker_reason": "Board approval for the new ERP module is pending",
            "attention_level": "Management_BOD",
        }, headers=LEADER)
        items = client.get(f"{BASE}/escalations", headers=EXECUTIVE).get_json()["items"]
        assert [item["id"] for item in items] == [plan["id"]]

        res = client.post(f"{BASE}/{plan['id']}/escalation/resolve", json={
            "note": "Board approved in the March session",
        }, headers=EXECUTIVE)
        assert res.status_code == 200
        assert res.get_json()["plan"]["status"] == "On Progress"

    def test_lock_endpoint(self, client, plan):
        res = client.get(f"{BASE}/{plan['id']}/lock", headers=LEADER)
        body = res.get_json()
        assert body["edit_mode"] == "full"
        assert body["lock"]["message"].startswith("Editable for")


# ═════════════════════════════════════════════════════════════════════════════
# Settings
# ═════════════════════════════════════════════════════════════════════════════


class TestSettingsApi:
    def test_defaults_when_unconfigured(self, client):
        body = client.get(SETTINGS, headers=STAFF).get_json()
        assert body["lock_cutoff_day"] == 6
        assert body["thresholds"] == {"UH": 100, "H": 100, "M": 80, "L": 70}

    def test_admin_updates_policy(self, client):
        res = client.put(SETTINGS, json={"is_strict_grading_enabled": True, "threshold_m": 75},
                         headers=ADMIN)
        assert res.status_code == 200
        body = res.get_json()
        assert body["is_strict_grading_enabled"] is True
        assert body["thresholds"]["M"] == 75
        assert AuditLog.query.filter_by(action="settings.update").count() == 1

    def test_non_admin_cannot_update(self, client):
        res = client.put(SETTINGS, json={"lock_cutoff_day": 10}, headers=LEADER)
        assert res.status_code == 403

    def test_out_of_range_value(self, client):
        res = client.put(SETTINGS, json={"lock_cutoff_day": 40}, headers=ADMIN)
        assert res.status_code == 400
        assert res.get_json()["details"]["lock_cutoff_day"] == {"min": 1, "max": 28, "actual": 40}

    def test_lock_schedule_by_month_name(self, client):
        res = client.put(f"{SETTINGS}/lock-schedules", json={
            "month": "March", "year": 2026, "lock_date": "2026-04-10",
        }, headers=ADMIN)
        assert res.status_code == 200
        assert res.get_json()["month_index"] == 2

        rows = client.get(f"{SETTINGS}/lock-schedules?year=2026", headers=ADMIN).get_json()
        assert len(rows) == 1

    def test_lock_schedule_bad_date(self, client):
        res = client.put(f"{SETTINGS}/lock-schedules", json={
            "month": "Mar", "year": 2026, "lock_date": "next tuesday",
        }, headers=ADMIN)
        assert res.status_code == 400

    def test_failure_reasons(self, client):
        res = client.post(f"{SETTINGS}/failure-reasons", json={"label": "Scope Change"}, headers=ADMIN)
        assert res.status_code == 201
        labels = [r["label"] for r in client.get(f"{SETTINGS}/failure-reasons", headers=STAFF).get_json()]
        assert labels == ["Scope Change"]

        dup = client.post(f"{SETTINGS}/failure-reasons", json={"label": "Scope Change"}, headers=ADMIN)
        assert dup.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Request logging
# ═════════════════════════════════════════════════════════════════════════════


class TestRequestLogging:
    def test_request_log_carries_caller_and_plan(self, client, plan, caplog):
        with caplog.at_level(logging.DEBUG, logger="app.middleware.timing"):
            res = client.get(f"{BASE}/{plan['id']}", headers=STAFF)
        assert res.status_code == 200

        record = next(r for r in caplog.records if getattr(r, "path", None) == f"{BASE}/{plan['id']}")
        assert record.user_id == "u-staff"
        assert record.role == "staff"
        assert record.plan_id == plan["id"]
        assert record.request_id == res.headers["X-Request-ID"]

    def test_anonymous_request_logged_without_caller(self, client, caplog):
        with caplog.at_level(logging.DEBUG, logger="app.middleware.timing"):
            client.get(f"{BASE}?department_code=FIN")
        record = next(r for r in caplog.records if r.name == "app.middleware.timing")
        assert record.user_id is None
        assert record.plan_id is None
