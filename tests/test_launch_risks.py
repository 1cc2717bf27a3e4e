"""
Tests — Launch risk register and blockers.

Covers:
    - Risk create/update with enum validation
    - resolved_date stamping / clearing and rejection outside "resolved"
    - Critical risk view: filter + severity-then-recency ordering
    - Launch blockers: severity per blocked task / deliverable / phase
"""

from datetime import date, timedelta

import pytest

from app.core.exceptions import NotFoundError, ValidationError
from app.services import launch_service as svc

TODAY = date.today()


def _days_ago(n):
    return (TODAY - timedelta(days=n)).isoformat()


class TestRiskCRUD:
    def test_create_defaults(self, make_risk):
        risk = make_risk(risk_title="Permit delay")
        assert risk.id is not None
        assert risk.status == "identified"
        assert risk.identified_date == TODAY
        assert risk.resolved_date is None
        assert risk.ai_detected is False

    def test_create_with_explicit_identified_date(self, make_risk):
        risk = make_risk(identified_date=_days_ago(10), identified_by="pm")
        assert risk.identified_date == TODAY - timedelta(days=10)
        assert risk.identified_by == "pm"

    def test_invalid_severity(self, make_risk):
        with pytest.raises(ValidationError):
            make_risk(severity="catastrophic")

    def test_ai_confidence_range(self, make_risk):
        with pytest.raises(ValidationError):
            make_risk(ai_detected=True, ai_confidence=1.5)

    def test_title_required(self, launch):
        with pytest.raises(ValidationError):
            svc.create_risk(launch.id, {"severity": "high"})

    def test_update_fields(self, make_risk):
        risk = make_risk()
        updated = svc.update_risk(risk.id, {
            "severity": "high",
            "mitigation_plan": "Engage second contractor",
            "mitigation_actions": ["call contractor", "revise schedule"],
        })
        assert updated.severity == "high"
        assert updated.mitigation_actions == ["call contractor", "revise schedule"]

    def test_update_missing(self):
        with pytest.raises(NotFoundError):
            svc.update_risk(777, {"status": "mitigating"})

    def test_null_clears_optional_fields(self, make_risk):
        risk = make_risk(
            phase_name="phase_0_deal_authorization",
            owner_id="pm",
            target_resolution_date=_days_ago(-7),
        )
        updated = svc.update_risk(risk.id, {
            "phase_name": None, "owner_id": None, "target_resolution_date": None,
        })
        assert updated.phase_name is None
        assert updated.owner_id is None
        assert updated.target_resolution_date is None
        assert updated.severity == "medium"

    def test_null_severity_rejected(self, make_risk):
        risk = make_risk(severity="high")
        with pytest.raises(ValidationError) as exc:
            svc.update_risk(risk.id, {"severity": None})
        assert "severity" in exc.value.details
        assert svc.get_risk(risk.id).severity == "high"


class TestRiskResolution:
    def test_resolving_stamps_today(self, make_risk):
        risk = make_risk()
        updated = svc.update_risk(risk.id, {"status": "resolved"})
        assert updated.resolved_date == TODAY

    def test_resolving_with_supplied_date(self, make_risk):
        risk = make_risk()
        updated = svc.update_risk(risk.id, {"status": "resolved", "resolved_date": _days_ago(2)})
        assert updated.resolved_date == TODAY - timedelta(days=2)

    def test_reopening_clears_date(self, make_risk):
        risk = make_risk(status="resolved")
        assert risk.resolved_date is not None
        updated = svc.update_risk(risk.id, {"status": "monitoring"})
        assert updated.resolved_date is None

    def test_resolved_date_without_resolved_status(self, make_risk):
        risk = make_risk(status="mitigating")
        with pytest.raises(ValidationError):
            svc.update_risk(risk.id, {"resolved_date": _days_ago(1)})

    def test_null_resolved_date_on_open_risk_is_accepted(self, make_risk):
        risk = make_risk(status="mitigating")
        updated = svc.update_risk(risk.id, {"resolved_date": None})
        assert updated.resolved_date is None
        assert updated.status == "mitigating"

    def test_accepted_has_no_resolved_date(self, make_risk):
        risk = make_risk()
        assert svc.update_risk(risk.id, {"status": "accepted"}).resolved_date is None


class TestCriticalRisks:
    def test_filter_and_order(self, launch, make_risk):
        high_old = make_risk(severity="high", identified_date=_days_ago(20))
        critical_old = make_risk(severity="critical", identified_date=_days_ago(30))
        high_new = make_risk(severity="high", identified_date=_days_ago(1))
        critical_new = make_risk(severity="critical", identified_date=_days_ago(3))
        make_risk(severity="medium")
        make_risk(severity="critical", status="resolved")
        make_risk(severity="high", status="accepted")

        ids = [r.id for r in svc.get_critical_risks(launch.id)]
        assert ids == [critical_new.id, critical_old.id, high_new.id, high_old.id]

    def test_get_risks_filters(self, launch, make_risk):
        make_risk(severity="low")
        make_risk(severity="high", status="mitigating")
        assert len(svc.get_risks(launch.id)) == 2
        assert len(svc.get_risks(launch.id, severity="low")) == 1
        assert len(svc.get_risks(launch.id, status="mitigating")) == 1

    def test_all_risks_ordered_by_severity(self, launch, make_risk):
        for sev in ("low", "critical", "medium", "high"):
            make_risk(severity=sev)
        assert [r.severity for r in svc.get_risks(launch.id)] == ["critical", "high", "medium", "low"]


class TestLaunchBlockers:
    def test_no_blockers(self, launch):
        assert svc.get_launch_blockers(launch.id) == {"has_blockers": False, "blockers": []}

    def test_severity_per_source(self, launch, phase0, make_task, make_deliverable):
        gate_task = make_task(status="blocked", is_gate_blocker=True)
        plain_task = make_task(status="blocked")
        critical_d = make_deliverable(status="blocked", is_critical=True)
        plain_d = make_deliverable(status="blocked")
        svc.update_phase_status(phase0.id, "blocked")

        result = svc.get_launch_blockers(launch.id)
        assert result["has_blockers"] is True
        by_key = {(b["type"], b["id"]): b["severity"] for b in result["blockers"]}
        assert by_key == {
            ("task", gate_task.id): "critical",
            ("task", plain_task.id): "high",
            ("deliverable", critical_d.id): "critical",
            ("deliverable", plain_d.id): "medium",
            ("phase", phase0.id): "critical",
        }
