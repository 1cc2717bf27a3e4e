"""
Phase/gate state-machine tests.

Covers ``PHASE_TRANSITIONS`` in ``app/models/launch.py``:

    not_started -> in_progress | skipped
    in_progress -> blocked | skipped
    blocked     -> in_progress | skipped
    completed   -> (terminal, reached only through gate pass)
    skipped     -> (terminal)

Plus:
    - validate_phase_gate lists every incomplete gate-blocking task and
      critical deliverable of the phase
    - pass_phase_gate re-validates and rejects while blockers remain
    - a passed gate cannot be reopened by task or deliverable writes
    - advance_phase is forward-only and requires earlier gates passed/skipped
    - template creation (6 phases, 6 workstreams, 13 weeks) and start_launch
"""

from datetime import date, timedelta

import pytest

from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.launch import PHASE_NAMES, PHASE_TRANSITIONS, PHASE_STATUSES, validate_phase_transition
from app.services import launch_service as svc

TODAY = date.today()


def _phase(launch, index):
    return svc.get_phases(launch.id)[index]


def _week_for_phase(launch, phase):
    return next(w for w in svc.get_weeks(launch.id) if w.phase_id == phase.id)


# ═════════════════════════════════════════════════════════════════════════════
# TEMPLATE & START
# ═════════════════════════════════════════════════════════════════════════════

class TestLaunchTemplate:
    def test_template_shape(self, launch):
        phases = svc.get_phases(launch.id)
        assert [p.phase_name for p in phases] == PHASE_NAMES
        assert [p.phase_order for p in phases] == list(range(6))
        assert len(svc.get_workstreams(launch.id)) == 6
        weeks = svc.get_weeks(launch.id)
        assert [w.week_number for w in weeks] == list(range(13))
        assert (weeks[3].start_day, weeks[3].end_day) == (21, 27)
        assert all(w.phase_id is not None for w in weeks)

    def test_planned_start_defaults_from_target(self, launch):
        assert launch.planned_start_date == launch.target_open_date - timedelta(days=90)

    def test_duplicate_code_conflicts(self, launch):
        with pytest.raises(ConflictError):
            svc.create_launch_from_template({
                "clinic_id": "c", "launch_name": "Dup", "launch_code": "LCH-001",
                "target_open_date": TODAY.isoformat(),
            })

    def test_missing_fields(self):
        with pytest.raises(ValidationError) as exc:
            svc.create_launch_from_template({"launch_name": "No code"})
        assert set(exc.value.details) == {"clinic_id", "launch_code", "target_open_date"}

    def test_start_launch_starts_phase_zero(self, launch, phase0):
        assert launch.status == "in_progress"
        assert launch.actual_start_date == TODAY - timedelta(days=30)
        assert phase0.status == "in_progress"
        assert phase0.actual_start_date is not None

    def test_cannot_start_cancelled(self, launch):
        svc.update_launch(launch.id, {"status": "cancelled"})
        with pytest.raises(ValidationError):
            svc.start_launch(launch.id)

    def test_current_phase_not_writable_via_update(self, launch):
        with pytest.raises(ValidationError):
            svc.update_launch(launch.id, {"current_phase": PHASE_NAMES[3]})

    def test_missing_launch(self):
        with pytest.raises(NotFoundError):
            svc.get_launch_by_id(12345)


# ═════════════════════════════════════════════════════════════════════════════
# TRANSITIONS
# ═════════════════════════════════════════════════════════════════════════════

_VALID = [(src, dst) for src, targets in PHASE_TRANSITIONS.items() for dst in targets]
_INVALID = [
    (src, dst) for src in PHASE_STATUSES for dst in PHASE_STATUSES
    if dst not in PHASE_TRANSITIONS[src] and dst != src
]


class TestPhaseTransitions:
    @pytest.mark.parametrize("src,dst", _VALID)
    def test_valid_edges(self, src, dst):
        assert validate_phase_transition(src, dst)

    @pytest.mark.parametrize("src,dst", _INVALID)
    def test_invalid_edges(self, src, dst):
        assert not validate_phase_transition(src, dst)

    def test_block_and_recover(self, phase0):
        assert svc.update_phase_status(phase0.id, "blocked").status == "blocked"
        assert svc.update_phase_status(phase0.id, "in_progress").status == "in_progress"

    def test_completed_only_via_gate(self, phase0):
        with pytest.raises(ValidationError):
            svc.update_phase_status(phase0.id, "completed")

    def test_skipped_is_terminal(self, launch):
        phase = _phase(launch, 2)
        svc.update_phase_status(phase.id, "skipped")
        with pytest.raises(ValidationError):
            svc.update_phase_status(phase.id, "in_progress")

    def test_entering_in_progress_stamps_start(self, launch):
        phase = _phase(launch, 1)
        assert phase.actual_start_date is None
        svc.update_phase_status(phase.id, "in_progress", today=TODAY)
        assert phase.actual_start_date == TODAY

    def test_unknown_status(self, phase0):
        with pytest.raises(ValidationError):
            svc.update_phase_status(phase0.id, "paused")


# ═════════════════════════════════════════════════════════════════════════════
# GATE VALIDATION & PASS
# ═════════════════════════════════════════════════════════════════════════════

class TestPhaseGate:
    def test_empty_phase_passes_validation(self, phase0):
        result = svc.validate_phase_gate(phase0.id)
        assert result.passed
        assert result.blocking_tasks == []
        assert result.blocking_deliverables == []

    def test_lists_every_incomplete_blocker(self, launch, phase0, make_task, make_deliverable):
        week = _week_for_phase(launch, phase0)
        t1 = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True)
        t2 = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True, status="in_progress")
        make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True, status="completed")
        make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=False)
        make_task(phase_name=PHASE_NAMES[1], is_gate_blocker=True)
        d1 = make_deliverable(week_id=week.id, is_critical=True)
        make_deliverable(week_id=week.id, is_critical=False)
        make_deliverable(week_id=week.id, is_critical=True, status="completed")

        result = svc.validate_phase_gate(phase0.id)
        assert not result.passed
        assert result.blocking_task_ids == [t1.id, t2.id]
        assert result.blocking_deliverable_ids == [d1.id]
        assert len(result.reasons) == 2

    def test_pass_rejected_with_incomplete_blocker(self, phase0, make_task):
        blocker = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True)
        with pytest.raises(ValidationError) as exc:
            svc.pass_phase_gate(phase0.id, notes="ship it", passed_by="ops-lead")
        assert exc.value.details["blocking_task_ids"] == [blocker.id]
        phase = svc.get_phase(phase0.id)
        assert not phase.gate_passed
        assert phase.status == "in_progress"

    def test_pass_rejected_with_critical_deliverable(self, launch, phase0, make_deliverable):
        week = _week_for_phase(launch, phase0)
        d = make_deliverable(week_id=week.id, is_critical=True, status="in_progress")
        with pytest.raises(ValidationError) as exc:
            svc.pass_phase_gate(phase0.id)
        assert exc.value.details["blocking_deliverable_ids"] == [d.id]

    def test_pass_succeeds_when_clear(self, phase0, make_task):
        blocker = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True)
        svc.update_task(blocker.id, {"status": "completed"})

        phase = svc.pass_phase_gate(phase0.id, notes="All clear", passed_by="ops-lead", today=TODAY)
        assert phase.gate_passed is True
        assert phase.status == "completed"
        assert phase.gate_passed_by == "ops-lead"
        assert phase.gate_notes == "All clear"
        assert phase.gate_passed_at is not None
        assert phase.actual_end_date == TODAY

    def test_double_pass_rejected(self, phase0):
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError):
            svc.pass_phase_gate(phase0.id)

    def test_blocked_phase_cannot_pass(self, phase0):
        svc.update_phase_status(phase0.id, "blocked")
        with pytest.raises(ValidationError):
            svc.pass_phase_gate(phase0.id)


class TestPassedGateStaysClear:
    """Once passed, a phase never regains an incomplete blocker."""

    def test_reopening_blocker_rejected(self, phase0, make_task):
        blocker = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True, status="completed")
        svc.pass_phase_gate(phase0.id)

        with pytest.raises(ValidationError) as exc:
            svc.update_task(blocker.id, {"status": "in_progress"})
        assert exc.value.details["reason"] == "gate_already_passed"
        assert exc.value.details["phase_id"] == phase0.id
        assert "blocking_task_ids" not in exc.value.details

        assert svc.get_task(blocker.id).status == "completed"
        assert svc.get_phase(phase0.id).gate_passed is True
        assert svc.validate_phase_gate(phase0.id).passed

    def test_new_blocker_in_passed_phase_rejected(self, launch, phase0, make_task):
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError):
            make_task(task_name="Late permit", phase_name=PHASE_NAMES[0], is_gate_blocker=True)
        assert svc.get_tasks(launch.id, phase_name=PHASE_NAMES[0]) == []
        assert svc.validate_phase_gate(phase0.id).passed

    def test_flagging_open_task_as_blocker_rejected(self, phase0, make_task):
        task = make_task(phase_name=PHASE_NAMES[0], status="skipped")
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError):
            svc.update_task(task.id, {"is_gate_blocker": True})
        assert svc.get_task(task.id).is_gate_blocker is False

    def test_moving_open_blocker_into_passed_phase_rejected(self, phase0, make_task):
        task = make_task(phase_name=PHASE_NAMES[1], is_gate_blocker=True)
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError):
            svc.update_task(task.id, {"phase_name": PHASE_NAMES[0]})
        assert svc.get_task(task.id).phase_name == PHASE_NAMES[1]

    def test_non_blocking_work_still_allowed(self, phase0, make_task):
        svc.pass_phase_gate(phase0.id)
        task = make_task(phase_name=PHASE_NAMES[0])
        assert svc.update_task(task.id, {"status": "in_progress"}).status == "in_progress"

    def test_completed_blocker_can_still_be_edited(self, phase0, make_task):
        blocker = make_task(phase_name=PHASE_NAMES[0], is_gate_blocker=True, status="completed")
        svc.pass_phase_gate(phase0.id)
        assert svc.update_task(blocker.id, {"notes": "lease filed"}).notes == "lease filed"

    def test_reopening_critical_deliverable_rejected(self, launch, phase0, make_deliverable):
        week = _week_for_phase(launch, phase0)
        d = make_deliverable(week_id=week.id, is_critical=True, status="completed")
        svc.pass_phase_gate(phase0.id)

        with pytest.raises(ValidationError) as exc:
            svc.update_deliverable(d.id, {"status": "in_progress"})
        assert exc.value.details["reason"] == "gate_already_passed"
        assert svc.get_deliverable(d.id).status == "completed"
        assert svc.validate_phase_gate(phase0.id).passed

    def test_new_critical_deliverable_in_passed_week_rejected(self, launch, phase0, make_deliverable):
        week = _week_for_phase(launch, phase0)
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError):
            make_deliverable(week_id=week.id, is_critical=True)
        assert make_deliverable(week_id=week.id, is_critical=False).week_id == week.id
        assert svc.validate_phase_gate(phase0.id).passed


# ═════════════════════════════════════════════════════════════════════════════
# PHASE ADVANCEMENT
# ═════════════════════════════════════════════════════════════════════════════

class TestAdvancePhase:
    def test_advance_requires_gate(self, launch):
        with pytest.raises(ValidationError) as exc:
            svc.advance_phase(launch.id, PHASE_NAMES[1])
        assert exc.value.details["unpassed_phases"] == [PHASE_NAMES[0]]
        assert svc.get_launch_by_id(launch.id).current_phase == PHASE_NAMES[0]

    def test_advance_after_gate_pass(self, launch, phase0):
        svc.pass_phase_gate(phase0.id)
        updated = svc.advance_phase(launch.id, PHASE_NAMES[1])
        assert updated.current_phase == PHASE_NAMES[1]
        assert _phase(launch, 1).status == "in_progress"

    def test_skipped_phase_does_not_block(self, launch, phase0):
        svc.pass_phase_gate(phase0.id)
        svc.update_phase_status(_phase(launch, 1).id, "skipped")
        assert svc.advance_phase(launch.id, PHASE_NAMES[2]).current_phase == PHASE_NAMES[2]

    def test_cannot_jump_over_unpassed_phase(self, launch, phase0):
        svc.pass_phase_gate(phase0.id)
        with pytest.raises(ValidationError) as exc:
            svc.advance_phase(launch.id, PHASE_NAMES[3])
        assert exc.value.details["unpassed_phases"] == [PHASE_NAMES[1], PHASE_NAMES[2]]

    def test_backward_rejected(self, launch, phase0):
        svc.pass_phase_gate(phase0.id)
        svc.advance_phase(launch.id, PHASE_NAMES[1])
        with pytest.raises(ValidationError):
            svc.advance_phase(launch.id, PHASE_NAMES[0])

    def test_unknown_phase(self, launch):
        with pytest.raises(ValidationError):
            svc.advance_phase(launch.id, "phase_9_party")
