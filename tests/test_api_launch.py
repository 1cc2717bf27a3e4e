"""
Tests — Clinic launch REST API.

Exercises the blueprint end to end through the Flask test client:
request parsing, status codes and the standard error body
``{"error", "code", "details"?}``.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from app.models import db
from app.models.launch import PHASE_NAMES

TODAY = date.today()
API = "/api/v1"


def _create_launch(client, **overrides):
    payload = {
        "clinic_id": "clinic-100",
        "launch_name": "Harbor Clinic",
        "launch_code": "LCH-100",
        "target_open_date": (TODAY + timedelta(days=90)).isoformat(),
    }
    payload.update(overrides)
    return client.post(f"{API}/launches", json=payload)


@pytest.fixture()
def launch_id(client):
    res = _create_launch(client)
    assert res.status_code == 201
    return res.get_json()["id"]


# ═════════════════════════════════════════════════════════════════════════════
# LAUNCHES
# ═════════════════════════════════════════════════════════════════════════════

class TestLaunchEndpoints:
    def test_create_returns_template(self, client):
        res = _create_launch(client)
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == "planning"
        assert data["current_phase"] == PHASE_NAMES[0]
        assert len(data["phases"]) == 6
        assert len(data["workstreams"]) == 6

    def test_create_missing_fields(self, client):
        res = client.post(f"{API}/launches", json={"launch_name": "Nope"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert "launch_code" in body["details"]

    def test_duplicate_code_is_409(self, client, launch_id):
        res = _create_launch(client)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_list_and_filter(self, client, launch_id):
        _create_launch(client, launch_code="LCH-101", clinic_id="clinic-200")
        res = client.get(f"{API}/launches")
        assert res.status_code == 200
        assert res.get_json()["total"] == 2
        res = client.get(f"{API}/launches?clinic_id=clinic-200")
        assert [l["launch_code"] for l in res.get_json()["items"]] == ["LCH-101"]

    def test_get_missing_is_404(self, client):
        res = client.get(f"{API}/launches/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_update_and_start(self, client, launch_id):
        res = client.put(f"{API}/launches/{launch_id}", json={"launch_owner_id": "ops-7"})
        assert res.status_code == 200
        assert res.get_json()["launch_owner_id"] == "ops-7"

        res = client.post(f"{API}/launches/{launch_id}/start")
        assert res.status_code == 200
        assert res.get_json()["status"] == "in_progress"

    def test_update_rejects_unknown_field(self, client, launch_id):
        res = client.put(f"{API}/launches/{launch_id}", json={"overall_completion_pct": 99})
        assert res.status_code == 422

    def test_non_object_body(self, client, launch_id):
        res = client.put(f"{API}/launches/{launch_id}", json=["status"])
        assert res.status_code == 422

    def test_non_json_body_is_415(self, client, launch_id):
        res = client.put(f"{API}/launches/{launch_id}", data="status=cancelled",
                         content_type="text/plain")
        assert res.status_code == 415

    def test_advance_requires_to_phase(self, client, launch_id):
        res = client.post(f"{API}/launches/{launch_id}/advance", json={})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_advance_blocked_by_unpassed_gate(self, client, launch_id):
        res = client.post(f"{API}/launches/{launch_id}/advance", json={"to_phase": PHASE_NAMES[1]})
        assert res.status_code == 422
        assert res.get_json()["details"]["unpassed_phases"] == [PHASE_NAMES[0]]

    def test_summary_blockers_insights_health(self, client, launch_id):
        assert client.get(f"{API}/launches/{launch_id}/summary").status_code == 200
        blockers = client.get(f"{API}/launches/{launch_id}/blockers").get_json()
        assert blockers == {"has_blockers": False, "blockers": []}
        insights = client.get(f"{API}/launches/{launch_id}/insights").get_json()
        assert insights["total"] == len(insights["items"])
        health = client.get(f"{API}/launches/{launch_id}/health").get_json()
        assert health["launch_id"] == launch_id
        assert health["thresholds"]["stale_risk_days"] == 14


# ═════════════════════════════════════════════════════════════════════════════
# PHASES & GATES
# ═════════════════════════════════════════════════════════════════════════════

class TestGateEndpoints:
    def _phase0(self, client, launch_id):
        return client.get(f"{API}/launches/{launch_id}/phases").get_json()[0]

    def test_gate_blocked_response(self, client, launch_id):
        client.post(f"{API}/launches/{launch_id}/start")
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "Sign lease", "phase_name": PHASE_NAMES[0], "is_gate_blocker": True,
        }).get_json()
        phase = self._phase0(client, launch_id)

        gate = client.get(f"{API}/launch-phases/{phase['id']}/gate").get_json()
        assert gate["passed"] is False
        assert gate["blocking_task_ids"] == [task["id"]]

        res = client.post(f"{API}/launch-phases/{phase['id']}/gate/pass", json={"notes": "try"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "GATE_BLOCKED"
        assert body["details"]["blocking_task_ids"] == [task["id"]]

    def test_gate_pass_then_advance(self, client, launch_id):
        client.post(f"{API}/launches/{launch_id}/start")
        phase = self._phase0(client, launch_id)
        res = client.post(f"{API}/launch-phases/{phase['id']}/gate/pass",
                          json={"passed_by": "ops-lead"})
        assert res.status_code == 200
        assert res.get_json()["gate_passed"] is True

        res = client.post(f"{API}/launches/{launch_id}/advance", json={"to_phase": PHASE_NAMES[1]})
        assert res.status_code == 200
        assert res.get_json()["current_phase"] == PHASE_NAMES[1]

    def test_reopening_blocker_after_pass_is_422(self, client, launch_id):
        client.post(f"{API}/launches/{launch_id}/start")
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "Sign lease", "phase_name": PHASE_NAMES[0],
            "is_gate_blocker": True, "status": "completed",
        }).get_json()
        phase = self._phase0(client, launch_id)
        assert client.post(f"{API}/launch-phases/{phase['id']}/gate/pass", json={}).status_code == 200

        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"status": "in_progress"})
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_RULE"
        assert body["details"]["reason"] == "gate_already_passed"

        gate = client.get(f"{API}/launch-phases/{phase['id']}/gate").get_json()
        assert gate["passed"] is True

    def test_phase_status_completed_rejected(self, client, launch_id):
        phase = self._phase0(client, launch_id)
        res = client.put(f"{API}/launch-phases/{phase['id']}/status", json={"status": "completed"})
        assert res.status_code == 422

    def test_phase_status_required(self, client, launch_id):
        phase = self._phase0(client, launch_id)
        res = client.put(f"{API}/launch-phases/{phase['id']}/status", json={})
        assert res.status_code == 400

    def test_missing_phase(self, client):
        assert client.get(f"{API}/launch-phases/4040/gate").status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# TASKS, WORKSTREAMS, RISKS
# ═════════════════════════════════════════════════════════════════════════════

class TestTaskEndpoints:
    def test_complete_task_updates_workstream(self, client, launch_id):
        ws = client.get(f"{API}/launches/{launch_id}/workstreams").get_json()[0]
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "Order chairs", "workstream_id": ws["id"], "assigned_to": "ana",
        }).get_json()

        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"status": "completed"})
        assert res.status_code == 200
        data = res.get_json()
        assert data["completion_pct"] == 100
        assert data["completed_date"] == TODAY.isoformat()

        ws_after = client.get(f"{API}/launches/{launch_id}/workstreams").get_json()[0]
        assert ws_after["completion_pct"] == 100.0

    def test_task_validation_error(self, client, launch_id):
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={"task_name": "X"}).get_json()
        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"completion_pct": 101})
        assert res.status_code == 422
        assert "completion_pct" in res.get_json()["details"]

    def test_null_clears_assignee(self, client, launch_id):
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "Order chairs", "assigned_to": "ana",
            "due_date": TODAY.isoformat(),
        }).get_json()
        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"assigned_to": None, "due_date": None})
        assert res.status_code == 200
        data = res.get_json()
        assert data["assigned_to"] is None
        assert data["due_date"] is None

    def test_null_status_is_422(self, client, launch_id):
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={"task_name": "X"}).get_json()
        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"status": None})
        assert res.status_code == 422
        assert res.get_json()["details"]["status"] == "status cannot be null"

    def test_list_overdue_and_mine(self, client, launch_id):
        client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "Late", "assigned_to": "ben",
            "due_date": (TODAY - timedelta(days=2)).isoformat(),
        })
        listing = client.get(f"{API}/launches/{launch_id}/tasks").get_json()
        assert listing["total"] == 1
        overdue = client.get(f"{API}/launches/{launch_id}/tasks/overdue").get_json()
        assert overdue["items"][0]["days_overdue"] == 2
        mine = client.get(f"{API}/launch-tasks/mine?assignee=ben").get_json()
        assert [t["task_name"] for t in mine] == ["Late"]

    def test_mine_requires_assignee(self, client):
        assert client.get(f"{API}/launch-tasks/mine").status_code == 400

    def test_dependency_violations(self, client, launch_id):
        b = client.post(f"{API}/launches/{launch_id}/tasks", json={"task_name": "B"}).get_json()
        client.post(f"{API}/launches/{launch_id}/tasks", json={
            "task_name": "A", "status": "in_progress", "depends_on_task_ids": [b["id"]],
        })
        res = client.get(f"{API}/launches/{launch_id}/tasks/dependency-violations").get_json()
        assert len(res) == 1
        assert res[0]["task"]["task_name"] == "A"

    def test_missing_task(self, client):
        assert client.get(f"{API}/launch-tasks/31337").status_code == 404


class TestRiskEndpoints:
    def test_create_resolve_and_critical_view(self, client, launch_id):
        res = client.post(f"{API}/launches/{launch_id}/risks", json={
            "risk_title": "Contractor delay", "severity": "critical",
        })
        assert res.status_code == 201
        risk = res.get_json()

        critical = client.get(f"{API}/launches/{launch_id}/risks/critical").get_json()
        assert [r["id"] for r in critical] == [risk["id"]]

        res = client.put(f"{API}/launch-risks/{risk['id']}", json={"status": "resolved"})
        assert res.get_json()["resolved_date"] == TODAY.isoformat()
        assert client.get(f"{API}/launches/{launch_id}/risks/critical").get_json() == []

    def test_bad_severity(self, client, launch_id):
        res = client.post(f"{API}/launches/{launch_id}/risks", json={
            "risk_title": "Unknown", "severity": "apocalyptic",
        })
        assert res.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# WEEKS, DELIVERABLES, METRICS
# ═════════════════════════════════════════════════════════════════════════════

class TestTrackerEndpoints:
    def test_weeks_and_current(self, client, launch_id):
        weeks = client.get(f"{API}/launches/{launch_id}/weeks").get_json()
        assert len(weeks) == 13
        current = client.get(f"{API}/launches/{launch_id}/weeks/current").get_json()
        assert current["week"]["week_number"] == 0

    def test_deliverable_flow(self, client, launch_id):
        week = client.get(f"{API}/launches/{launch_id}/weeks").get_json()[1]
        res = client.post(f"{API}/launches/{launch_id}/deliverables", json={
            "deliverable_name": "Signed lease", "week_id": week["id"], "is_critical": True,
        })
        assert res.status_code == 201
        deliverable = res.get_json()

        res = client.put(f"{API}/launch-deliverables/{deliverable['id']}", json={"status": "completed"})
        assert res.get_json()["completed_at"] is not None

        detail = client.get(f"{API}/launch-weeks/{week['id']}").get_json()
        assert detail["deliverable_completion_pct"] == 100.0

    def test_targets_and_metrics(self, client, launch_id):
        week = client.get(f"{API}/launches/{launch_id}/weeks").get_json()[0]
        res = client.post(f"{API}/launch-weeks/{week['id']}/targets", json={
            "metric_name": "patients_treated_today", "target_value": 4,
        })
        assert res.status_code == 201

        res = client.post(f"{API}/launches/{launch_id}/daily-metrics", json={
            "patients_treated_today": 6, "revenue_today": 600,
        })
        assert res.status_code == 201
        assert res.get_json()["revenue_per_patient"] == 100.0

        dup = client.post(f"{API}/launches/{launch_id}/daily-metrics", json={"patients_treated_today": 1})
        assert dup.status_code == 409

        evaluation = client.get(f"{API}/launch-weeks/{week['id']}/targets/evaluation").get_json()
        assert evaluation["met"] == 1

    def test_kpis(self, client, launch_id):
        res = client.post(f"{API}/launches/{launch_id}/kpis", json={
            "metric_name": "nps", "metric_value": 55, "target_value": 60,
        })
        assert res.status_code == 201
        assert res.get_json()["is_on_target"] is False
        assert len(client.get(f"{API}/launches/{launch_id}/kpis").get_json()) == 1


# ═════════════════════════════════════════════════════════════════════════════
# STORE FAILURES
# ═════════════════════════════════════════════════════════════════════════════

class TestStoreErrorHandling:
    def test_failed_commit_returns_500(self, client, launch_id, monkeypatch):
        task = client.post(f"{API}/launches/{launch_id}/tasks", json={"task_name": "Sign lease"}).get_json()

        def _boom(*args, **kwargs):
            raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db.session, "commit", _boom)
        res = client.put(f"{API}/launch-tasks/{task['id']}", json={"status": "completed"})
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "ERR_STORE"
        assert body["error"] == "Storage failure; the change was not saved"

        monkeypatch.undo()
        listing = client.get(f"{API}/launches/{launch_id}/tasks").get_json()
        assert listing["items"][0]["status"] == "not_started"


# ═════════════════════════════════════════════════════════════════════════════
# HEALTH
# ═════════════════════════════════════════════════════════════════════════════

class TestHealth:
    def test_ready(self, client):
        assert client.get(f"{API}/health/ready").get_json() == {"status": "ok"}

    def test_live(self, client, launch_id):
        res = client.get(f"{API}/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["launches"] == 1

    def test_unknown_route(self, client):
        assert client.get(f"{API}/nowhere").status_code == 404
