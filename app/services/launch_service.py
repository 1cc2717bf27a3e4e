"""
Clinic Launch — Service Layer.

Business logic for:
    - Launch lifecycle:    template creation, start, forward-only phase advance
    - Phase gates:         transition guards, gate validation, atomic gate pass
    - Task graph:          CRUD with atomic completion stamping, overdue scan,
                           advisory dependency violations
    - Rollups:             workstream / phase / launch completion recompute
    - Risk register:       CRUD with resolved-date stamping, critical view
    - Blockers:            blocked tasks / deliverables / phases with severity
    - Weekly tracker:      weeks, deliverables, target metrics, daily metrics, KPIs
    - Insights:            snapshot assembly for the rule-based generator

Transaction policy: every public mutation ends with ``_commit(<operation>)``.
A store failure rolls the session back and raises ``StoreError``; nothing is
retried.
"""

import logging
import operator
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ConflictError, NotFoundError, StoreError, ValidationError
from app.models import db
from app.models.launch import (
    LAUNCH_STATUSES,
    PHASE_DISPLAY_NAMES,
    PHASE_NAMES,
    PHASE_STATUSES,
    RISK_CLOSED_STATUSES,
    SEVERITY_RANK,
    TARGET_OPERATORS,
    WORKSTREAM_DISPLAY_NAMES,
    WORKSTREAM_TYPES,
    ClinicLaunch,
    LaunchDailyMetric,
    LaunchDeliverable,
    LaunchKPI,
    LaunchPhase,
    LaunchRisk,
    LaunchTargetMetric,
    LaunchTask,
    LaunchWeek,
    LaunchWorkstream,
    validate_phase_transition,
)
from app.services import launch_insights, launch_progress
from app.services.launch_insights import Insight, LaunchSnapshot
from app.services.launch_payloads import (
    DeliverableUpdate,
    LaunchUpdate,
    RiskUpdate,
    TaskUpdate,
    WeekUpdate,
    WorkstreamUpdate,
)
from app.utils.helpers import parse_date, parse_date_input

logger = logging.getLogger(__name__)


# ── Templates ────────────────────────────────────────────────────────────────

DEFAULT_PLAN_DAYS = 90

# (week_number, label, objective, phase); days run week*7 .. week*7+6
WEEK_TEMPLATE = [
    (0, "Week 0: Kickoff", "Confirm deal terms, budget and launch team", PHASE_NAMES[0]),
    (1, "Week 1: Authorization", "Executive sign-off and lease execution", PHASE_NAMES[0]),
    (2, "Week 2: Site Assessment", "Site survey and build scope", PHASE_NAMES[1]),
    (3, "Week 3: Build-Out", "Construction and fit-out underway", PHASE_NAMES[1]),
    (4, "Week 4: Licensing", "Permits, inspections and regulatory filings", PHASE_NAMES[1]),
    (5, "Week 5: Hiring", "Offers out for clinical and front-desk roles", PHASE_NAMES[2]),
    (6, "Week 6: Credentialing", "Payer credentialing and onboarding", PHASE_NAMES[2]),
    (7, "Week 7: Systems Setup", "EMR, scheduling and billing configured", PHASE_NAMES[3]),
    (8, "Week 8: Dry Run", "Operational rehearsal and readiness review", PHASE_NAMES[3]),
    (9, "Week 9: Go-Live", "Doors open; first patients treated", PHASE_NAMES[4]),
    (10, "Week 10: Early Operations", "Daily huddles and issue triage", PHASE_NAMES[5]),
    (11, "Week 11: Ramp-Up", "Utilization and conversion ramp", PHASE_NAMES[5]),
    (12, "Week 12: Stabilization Review", "Hand-off to steady-state operations", PHASE_NAMES[5]),
]

TOTAL_WEEKS = len(WEEK_TEMPLATE)

# Daily metric columns a weekly target may reference.
DAILY_METRIC_FIELDS = {
    "patients_treated_today",
    "cumulative_patients",
    "new_conversions_today",
    "clinician_utilization_pct",
    "data_completeness_pct",
    "avg_intake_to_first_visit_days",
    "revenue_today",
    "cumulative_revenue",
    "revenue_per_patient",
}

_COMPARATORS = {
    ">=": operator.ge,
    "<=": operator.le,
    "=": operator.eq,
    ">": operator.gt,
    "<": operator.lt,
}

_TASK_CLOSED_STATUSES = ("completed", "skipped")


# ── Internal helpers ─────────────────────────────────────────────────────────


def _setting(name, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def _commit(operation: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Store failure during %s: %s", operation, exc, extra={"operation": operation})
        raise StoreError(operation, exc) from exc


def _get_or_raise(model, pk, resource=None):
    obj = db.session.get(model, pk)
    if obj is None:
        raise NotFoundError(resource=resource or model.__name__, resource_id=pk)
    return obj


def _validate_enum(value, allowed, field_name):
    if value is not None and value not in allowed:
        raise ValidationError(
            f"Invalid {field_name}: '{value}'. Allowed: {sorted(allowed)}",
            details={field_name: value},
        )


def _require(data: dict, *names):
    missing = [n for n in names if data.get(n) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            details={n: "required" for n in missing},
        )


def _check_workstream(launch_id, workstream_id):
    if workstream_id is None:
        return
    ws = db.session.get(LaunchWorkstream, workstream_id)
    if ws is None or ws.clinic_launch_id != launch_id:
        raise ValidationError(
            f"Workstream {workstream_id} does not belong to launch {launch_id}",
            details={"workstream_id": workstream_id},
        )


def _check_task_refs(launch_id, task_ids, self_id=None):
    if not task_ids:
        return
    if self_id is not None and self_id in task_ids:
        raise ValidationError("A task cannot depend on itself", details={"task_id": self_id})
    found = {
        row.id for row in LaunchTask.query.filter(
            LaunchTask.clinic_launch_id == launch_id,
            LaunchTask.id.in_(task_ids),
        )
    }
    unknown = sorted(set(task_ids) - found)
    if unknown:
        raise ValidationError(
            f"Unknown task id(s) for launch {launch_id}: {unknown}",
            details={"unknown_task_ids": unknown},
        )


def _severity_order():
    return case(SEVERITY_RANK, value=LaunchRisk.severity, else_=len(SEVERITY_RANK))


# ═════════════════════════════════════════════════════════════════════════════
# LAUNCH LIFECYCLE
# ═════════════════════════════════════════════════════════════════════════════


def create_launch_from_template(data: dict) -> ClinicLaunch:
    """Create a launch with its 6 phases, 6 workstreams and 13 planning weeks.

    ``planned_start_date`` defaults to ``target_open_date`` minus
    ``LAUNCH_DEFAULT_PLAN_DAYS``. Phase planned dates follow the weeks
    mapped to each phase.

    Raises:
        ValidationError: missing or malformed fields.
        ConflictError: ``launch_code`` already used.
    """
    _require(data, "clinic_id", "launch_name", "launch_code", "target_open_date")
    try:
        target_open = parse_date_input(data["target_open_date"])
        planned_start = parse_date_input(data.get("planned_start_date"))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"date": str(exc)}) from exc
    status = data.get("status", "planning")
    _validate_enum(status, LAUNCH_STATUSES, "status")

    code = str(data["launch_code"]).strip()
    if ClinicLaunch.query.filter_by(launch_code=code).first() is not None:
        raise ConflictError("ClinicLaunch", "launch_code", code)

    if planned_start is None:
        plan_days = _setting("LAUNCH_DEFAULT_PLAN_DAYS", DEFAULT_PLAN_DAYS)
        planned_start = target_open - timedelta(days=plan_days)

    launch = ClinicLaunch(
        clinic_id=str(data["clinic_id"]),
        launch_name=str(data["launch_name"]).strip(),
        launch_code=code,
        launch_owner_id=data.get("launch_owner_id"),
        executive_sponsor_id=data.get("executive_sponsor_id"),
        target_open_date=target_open,
        planned_start_date=planned_start,
        stabilization_target_date=parse_date(data.get("stabilization_target_date")),
        current_phase=PHASE_NAMES[0],
        status=status,
        overall_completion_pct=0.0,
        approved_budget=data.get("approved_budget"),
        is_partner_clinic=bool(data.get("is_partner_clinic", False)),
        extra=data.get("metadata") or {},
    )
    db.session.add(launch)
    db.session.flush()

    phases = {}
    for order, name in enumerate(PHASE_NAMES):
        weeks = [w for w in WEEK_TEMPLATE if w[3] == name]
        phase = LaunchPhase(
            clinic_launch_id=launch.id,
            phase_name=name,
            phase_order=order,
            status="not_started",
            planned_start_date=planned_start + timedelta(days=weeks[0][0] * 7),
            planned_end_date=planned_start + timedelta(days=weeks[-1][0] * 7 + 6),
        )
        db.session.add(phase)
        phases[name] = phase

    for ws_type in WORKSTREAM_TYPES:
        db.session.add(LaunchWorkstream(
            clinic_launch_id=launch.id,
            workstream_type=ws_type,
            workstream_name=WORKSTREAM_DISPLAY_NAMES[ws_type],
            status="not_started",
        ))
    db.session.flush()  # phase ids for week links

    for number, label, objective, phase_name in WEEK_TEMPLATE:
        db.session.add(LaunchWeek(
            clinic_launch_id=launch.id,
            phase_id=phases[phase_name].id,
            week_number=number,
            week_label=label,
            start_day=number * 7,
            end_day=number * 7 + 6,
            week_objective=objective,
            key_actions=[],
            status="not_started",
        ))

    _commit("create_launch")
    logger.info("Launch created id=%s code=%s clinic=%s", launch.id, code, launch.clinic_id)
    return launch


def get_launch_by_id(launch_id: int) -> ClinicLaunch:
    return _get_or_raise(ClinicLaunch, launch_id)


def list_launches(status=None, clinic_id=None):
    """Launches, newest first, optionally filtered."""
    q = ClinicLaunch.query
    if status:
        q = q.filter(ClinicLaunch.status == status)
    if clinic_id:
        q = q.filter(ClinicLaunch.clinic_id == clinic_id)
    return q.order_by(ClinicLaunch.created_at.desc(), ClinicLaunch.id.desc())


def update_launch(launch_id: int, payload) -> ClinicLaunch:
    """Apply a partial ``LaunchUpdate``. ``current_phase`` is not writable here."""
    if isinstance(payload, dict):
        payload = LaunchUpdate.from_dict(payload)
    payload.validate()
    launch = get_launch_by_id(launch_id)
    for key, value in payload.changes().items():
        setattr(launch, key, value)
    _commit("update_launch")
    logger.info("Launch updated id=%s", launch.id)
    return launch


def start_launch(launch_id: int, today: date | None = None) -> ClinicLaunch:
    """Stamp the actual start, move to ``in_progress`` and start phase 0."""
    launch = get_launch_by_id(launch_id)
    if launch.status in ("completed", "cancelled"):
        raise ValidationError(
            f"Cannot start a launch in status '{launch.status}'",
            details={"status": launch.status},
        )
    today = today or date.today()
    if launch.actual_start_date is None:
        launch.actual_start_date = today
    launch.status = "in_progress"

    first = launch.phases.filter_by(phase_name=PHASE_NAMES[0]).first()
    if first is not None and first.status == "not_started":
        first.status = "in_progress"
        first.actual_start_date = today

    _commit("start_launch")
    logger.info("Launch started id=%s on=%s", launch.id, launch.actual_start_date)
    return launch


def advance_phase(launch_id: int, to_phase: str, today: date | None = None) -> ClinicLaunch:
    """Move ``current_phase`` forward.

    Every phase before ``to_phase`` must have passed its gate or have been
    skipped. The target phase is started if it was not.

    Raises:
        ValidationError: unknown phase, backward/same move, or unpassed gates.
    """
    _validate_enum(to_phase, set(PHASE_NAMES), "phase_name")
    launch = get_launch_by_id(launch_id)
    target_order = PHASE_NAMES.index(to_phase)
    current_order = PHASE_NAMES.index(launch.current_phase)
    if target_order <= current_order:
        raise ValidationError(
            f"Phases only advance forward: {launch.current_phase} -> {to_phase}",
            details={"current_phase": launch.current_phase, "to_phase": to_phase},
        )

    phases = launch.phases.all()
    unpassed = [
        p.phase_name for p in phases
        if p.phase_order < target_order and not p.gate_passed and p.status != "skipped"
    ]
    if unpassed:
        raise ValidationError(
            f"Cannot advance to {to_phase}: gate(s) not passed for {', '.join(unpassed)}",
            details={"unpassed_phases": unpassed},
        )

    launch.current_phase = to_phase
    target = next((p for p in phases if p.phase_name == to_phase), None)
    if target is not None and target.status == "not_started":
        target.status = "in_progress"
        target.actual_start_date = today or date.today()

    _commit("advance_phase")
    logger.info("Launch id=%s advanced to phase=%s", launch.id, to_phase)
    return launch


# ═════════════════════════════════════════════════════════════════════════════
# PHASES & GATES
# ═════════════════════════════════════════════════════════════════════════════


@dataclass
class GateValidation:
    """Outcome of evaluating a phase gate."""
    phase_id: int
    passed: bool
    blocking_tasks: list[dict] = field(default_factory=list)
    blocking_deliverables: list[dict] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def blocking_task_ids(self) -> list[int]:
        return [t["id"] for t in self.blocking_tasks]

    @property
    def blocking_deliverable_ids(self) -> list[int]:
        return [d["id"] for d in self.blocking_deliverables]

    def to_dict(self) -> dict:
        return {
            "phase_id": self.phase_id,
            "passed": self.passed,
            "blocking_tasks": self.blocking_tasks,
            "blocking_deliverables": self.blocking_deliverables,
            "blocking_task_ids": self.blocking_task_ids,
            "blocking_deliverable_ids": self.blocking_deliverable_ids,
            "reasons": self.reasons,
        }


def get_phases(launch_id: int):
    get_launch_by_id(launch_id)
    return (
        LaunchPhase.query.filter_by(clinic_launch_id=launch_id)
        .order_by(LaunchPhase.phase_order).all()
    )


def get_phase(phase_id: int) -> LaunchPhase:
    return _get_or_raise(LaunchPhase, phase_id)


def update_phase_status(phase_id: int, status: str, today: date | None = None) -> LaunchPhase:
    """Apply a phase transition. ``completed`` is only reachable via gate pass."""
    _validate_enum(status, PHASE_STATUSES, "status")
    phase = get_phase(phase_id)
    if status == "completed":
        raise ValidationError(
            "A phase is completed by passing its gate",
            details={"phase_id": phase_id},
        )
    if not validate_phase_transition(phase.status, status):
        raise ValidationError(
            f"Invalid phase transition: {phase.status} -> {status}",
            details={"from": phase.status, "to": status},
        )
    phase.status = status
    if status == "in_progress" and phase.actual_start_date is None:
        phase.actual_start_date = today or date.today()

    _commit("update_phase_status")
    logger.info("Phase id=%s launch=%s status=%s", phase.id, phase.clinic_launch_id, status)
    return phase


def _evaluate_gate(phase: LaunchPhase) -> GateValidation:
    tasks = (
        LaunchTask.query.filter(
            LaunchTask.clinic_launch_id == phase.clinic_launch_id,
            LaunchTask.phase_name == phase.phase_name,
            LaunchTask.is_gate_blocker.is_(True),
            LaunchTask.status != "completed",
        )
        .order_by(LaunchTask.id).all()
    )
    deliverables = (
        LaunchDeliverable.query.join(LaunchWeek, LaunchDeliverable.week_id == LaunchWeek.id)
        .filter(
            LaunchWeek.phase_id == phase.id,
            LaunchDeliverable.is_critical.is_(True),
            LaunchDeliverable.status != "completed",
        )
        .order_by(LaunchDeliverable.id).all()
    )

    reasons = []
    if tasks:
        reasons.append(f"{len(tasks)} gate-blocking task(s) not completed")
    if deliverables:
        reasons.append(f"{len(deliverables)} critical deliverable(s) not completed")

    return GateValidation(
        phase_id=phase.id,
        passed=not tasks and not deliverables,
        blocking_tasks=[
            {"id": t.id, "task_name": t.task_name, "status": t.status} for t in tasks
        ],
        blocking_deliverables=[
            {"id": d.id, "deliverable_name": d.deliverable_name, "status": d.status}
            for d in deliverables
        ],
        reasons=reasons,
    )


def validate_phase_gate(phase_id: int) -> GateValidation:
    return _evaluate_gate(get_phase(phase_id))


def pass_phase_gate(phase_id: int, notes=None, passed_by=None, today: date | None = None) -> LaunchPhase:
    """Pass a phase gate after re-validating it in the same transaction.

    Raises:
        ValidationError: gate already passed, phase skipped/blocked, or
            blockers remain (``details`` carries the blocking ids).
    """
    phase = get_phase(phase_id)
    if phase.gate_passed:
        raise ValidationError("Phase gate already passed", details={"phase_id": phase_id})
    if phase.status in ("skipped", "blocked"):
        raise ValidationError(
            f"Cannot pass the gate of a {phase.status} phase",
            details={"phase_id": phase_id, "status": phase.status},
        )

    validation = _evaluate_gate(phase)
    if not validation.passed:
        logger.info(
            "Gate pass rejected phase=%s launch=%s blockers=%s",
            phase.id, phase.clinic_launch_id, validation.blocking_task_ids,
        )
        raise ValidationError(
            f"Phase gate blocked: {'; '.join(validation.reasons)}",
            details=validation.to_dict(),
        )

    phase.gate_passed = True
    phase.gate_passed_at = datetime.now(timezone.utc)
    phase.gate_passed_by = passed_by
    phase.gate_notes = notes
    phase.status = "completed"
    phase.actual_end_date = today or date.today()

    _commit("pass_phase_gate")
    logger.info("Gate passed phase=%s launch=%s by=%s", phase.id, phase.clinic_launch_id, passed_by)
    return phase


# ═════════════════════════════════════════════════════════════════════════════
# WORKSTREAMS & ROLLUPS
# ═════════════════════════════════════════════════════════════════════════════


def get_workstreams(launch_id: int):
    get_launch_by_id(launch_id)
    return (
        LaunchWorkstream.query.filter_by(clinic_launch_id=launch_id)
        .order_by(LaunchWorkstream.workstream_type).all()
    )


def get_workstream(workstream_id: int) -> LaunchWorkstream:
    return _get_or_raise(LaunchWorkstream, workstream_id)


def update_workstream(workstream_id: int, payload) -> LaunchWorkstream:
    """Edit descriptive fields; task counters stay derived."""
    if isinstance(payload, dict):
        payload = WorkstreamUpdate.from_dict(payload)
    payload.validate()
    ws = get_workstream(workstream_id)
    for key, value in payload.changes().items():
        setattr(ws, key, value)
    _commit("update_workstream")
    logger.info("Workstream updated id=%s launch=%s", ws.id, ws.clinic_launch_id)
    return ws


def _refresh_workstream(workstream_id):
    if workstream_id is None:
        return
    ws = db.session.get(LaunchWorkstream, workstream_id)
    if ws is None:
        return
    total, completed, pct = launch_progress.workstream_counts(ws.tasks.all())
    ws.total_tasks = total
    ws.completed_tasks = completed
    ws.completion_pct = pct


def _refresh_phase(launch_id, phase_name):
    if phase_name is None:
        return
    phase = LaunchPhase.query.filter_by(
        clinic_launch_id=launch_id, phase_name=phase_name,
    ).first()
    if phase is None:
        return
    tasks = LaunchTask.query.filter_by(clinic_launch_id=launch_id, phase_name=phase_name).all()
    phase.completion_pct = launch_progress.mean_completion_pct(tasks)


def _refresh_rollups(launch_id, workstream_ids=(), phase_names=()):
    db.session.flush()
    for ws_id in {w for w in workstream_ids if w is not None}:
        _refresh_workstream(ws_id)
    for name in {p for p in phase_names if p is not None}:
        _refresh_phase(launch_id, name)
    launch = db.session.get(ClinicLaunch, launch_id)
    launch.overall_completion_pct = launch_progress.mean_completion_pct(launch.tasks.all())


def get_launch_completion_pct(launch_id: int) -> float:
    """Overall completion recomputed from tasks (not the cached column)."""
    launch = get_launch_by_id(launch_id)
    return launch_progress.mean_completion_pct(launch.tasks.all())


# ═════════════════════════════════════════════════════════════════════════════
# TASKS
# ═════════════════════════════════════════════════════════════════════════════


def _check_gate_open(phase: LaunchPhase | None, item: str) -> None:
    """Refuse a write that would leave an incomplete blocker in a passed phase."""
    if phase is None or not phase.gate_passed:
        return
    raise ValidationError(
        f"Phase {phase.phase_name} gate already passed; an incomplete {item} cannot join it",
        details={
            "phase_id": phase.id,
            "phase_name": phase.phase_name,
            "reason": "gate_already_passed",
        },
    )


def _apply_task_changes(task: LaunchTask, changes: dict, today: date | None = None):
    if "workstream_id" in changes:
        _check_workstream(task.clinic_launch_id, changes["workstream_id"])
    for key in ("depends_on_task_ids", "blocks_task_ids"):
        if key in changes:
            _check_task_refs(task.clinic_launch_id, changes[key], self_id=task.id)
    if changes.keys() & {"status", "phase_name", "is_gate_blocker"}:
        phase_name = changes.get("phase_name", task.phase_name)
        if (
            phase_name is not None
            and changes.get("is_gate_blocker", task.is_gate_blocker)
            and changes.get("status", task.status) != "completed"
        ):
            phase = LaunchPhase.query.filter_by(
                clinic_launch_id=task.clinic_launch_id, phase_name=phase_name,
            ).first()
            _check_gate_open(phase, "gate-blocking task")

    previous_status = task.status
    for key, value in changes.items():
        setattr(task, key, value)

    if task.status == "completed":
        task.completion_pct = 100
        if task.completed_date is None or (
            previous_status != "completed" and "completed_date" not in changes
        ):
            task.completed_date = today or date.today()
    elif previous_status == "completed":
        task.completed_date = None


def create_task(launch_id: int, data: dict, today: date | None = None) -> LaunchTask:
    """Create a task and refresh its workstream, phase and launch rollups."""
    launch = get_launch_by_id(launch_id)
    _require(data, "task_name")
    payload = TaskUpdate.from_dict(data)
    changes = payload.changes()

    task = LaunchTask(
        clinic_launch_id=launch.id,
        task_name=changes.pop("task_name"),
        status="not_started",
        completion_pct=0,
        is_required=True,
        is_gate_blocker=False,
        depends_on_task_ids=[],
        blocks_task_ids=[],
    )
    _apply_task_changes(task, changes, today=today)
    db.session.add(task)
    _refresh_rollups(launch.id, [task.workstream_id], [task.phase_name])

    _commit("create_task")
    logger.info("Task created id=%s launch=%s", task.id, launch.id)
    return task


def get_task(task_id: int) -> LaunchTask:
    return _get_or_raise(LaunchTask, task_id)


def update_task(task_id: int, payload, today: date | None = None) -> LaunchTask:
    """Apply a partial ``TaskUpdate``.

    Completing a task forces ``completion_pct`` to 100 and stamps
    ``completed_date`` (supplied or today) in the same commit; leaving
    ``completed`` clears the date. Rollups follow old and new workstream/phase.
    """
    if isinstance(payload, dict):
        payload = TaskUpdate.from_dict(payload)
    payload.validate()
    task = get_task(task_id)

    old_ws, old_phase = task.workstream_id, task.phase_name
    _apply_task_changes(task, payload.changes(), today=today)
    _refresh_rollups(
        task.clinic_launch_id,
        [old_ws, task.workstream_id],
        [old_phase, task.phase_name],
    )

    _commit("update_task")
    logger.info("Task updated id=%s launch=%s status=%s", task.id, task.clinic_launch_id, task.status)
    return task


def get_tasks(launch_id: int, workstream_id=None, phase_name=None, assigned_to=None, status=None):
    """Tasks of a launch ordered by due date, undated last."""
    get_launch_by_id(launch_id)
    q = LaunchTask.query.filter(LaunchTask.clinic_launch_id == launch_id)
    if workstream_id is not None:
        q = q.filter(LaunchTask.workstream_id == workstream_id)
    if phase_name:
        q = q.filter(LaunchTask.phase_name == phase_name)
    if assigned_to:
        q = q.filter(LaunchTask.assigned_to == assigned_to)
    if status:
        q = q.filter(LaunchTask.status == status)
    return q.order_by(
        LaunchTask.due_date.is_(None), LaunchTask.due_date, LaunchTask.id,
    ).all()


def get_overdue_tasks(launch_id: int, today: date | None = None) -> list[dict]:
    """Open tasks past due, annotated with ``days_overdue``."""
    today = today or date.today()
    get_launch_by_id(launch_id)
    rows = (
        LaunchTask.query.filter(
            LaunchTask.clinic_launch_id == launch_id,
            LaunchTask.due_date.isnot(None),
            LaunchTask.due_date < today,
            LaunchTask.status.notin_(_TASK_CLOSED_STATUSES),
        )
        .order_by(LaunchTask.due_date, LaunchTask.id).all()
    )
    result = []
    for task in rows:
        item = task.to_dict()
        item["days_overdue"] = (today - task.due_date).days
        result.append(item)
    return result


def get_dependency_violations(launch_id: int) -> list[dict]:
    tasks = [t.to_dict() for t in get_tasks(launch_id)]
    return launch_insights.find_dependency_violations(tasks)


def get_my_tasks(assignee: str, include_closed: bool = False):
    """Tasks assigned to a person across all launches."""
    q = LaunchTask.query.filter(LaunchTask.assigned_to == assignee)
    if not include_closed:
        q = q.filter(LaunchTask.status.notin_(_TASK_CLOSED_STATUSES))
    return q.order_by(LaunchTask.due_date.is_(None), LaunchTask.due_date, LaunchTask.id).all()


# ═════════════════════════════════════════════════════════════════════════════
# RISKS
# ═════════════════════════════════════════════════════════════════════════════


def _apply_risk_changes(risk: LaunchRisk, changes: dict, today: date | None = None):
    if "workstream_id" in changes:
        _check_workstream(risk.clinic_launch_id, changes["workstream_id"])
    resulting_status = changes.get("status", risk.status)
    if changes.get("resolved_date") is not None and resulting_status != "resolved":
        raise ValidationError(
            "resolved_date may only be set when status is 'resolved'",
            details={"status": resulting_status},
        )

    for key, value in changes.items():
        setattr(risk, key, value)

    if risk.status == "resolved":
        if risk.resolved_date is None:
            risk.resolved_date = today or date.today()
    else:
        risk.resolved_date = None


def create_risk(launch_id: int, data: dict, today: date | None = None) -> LaunchRisk:
    launch = get_launch_by_id(launch_id)
    data = dict(data)
    _require(data, "risk_title")
    identified_by = data.pop("identified_by", None)
    try:
        identified = parse_date_input(data.pop("identified_date", None))
    except ValueError as exc:
        raise ValidationError(str(exc), details={"identified_date": str(exc)}) from exc
    changes = RiskUpdate.from_dict(data).changes()

    risk = LaunchRisk(
        clinic_launch_id=launch.id,
        risk_title=changes.pop("risk_title"),
        severity="medium",
        status="identified",
        identified_by=identified_by,
        identified_date=identified or today or date.today(),
        mitigation_actions=[],
        ai_detected=False,
    )
    _apply_risk_changes(risk, changes, today=today)
    db.session.add(risk)

    _commit("create_risk")
    logger.info("Risk created id=%s launch=%s severity=%s", risk.id, launch.id, risk.severity)
    return risk


def get_risk(risk_id: int) -> LaunchRisk:
    return _get_or_raise(LaunchRisk, risk_id)


def update_risk(risk_id: int, payload, today: date | None = None) -> LaunchRisk:
    """Apply a partial ``RiskUpdate`` with resolved-date stamping."""
    if isinstance(payload, dict):
        payload = RiskUpdate.from_dict(payload)
    payload.validate()
    risk = get_risk(risk_id)
    _apply_risk_changes(risk, payload.changes(), today=today)
    _commit("update_risk")
    logger.info("Risk updated id=%s launch=%s status=%s", risk.id, risk.clinic_launch_id, risk.status)
    return risk


def get_risks(launch_id: int, severity=None, status=None, phase_name=None):
    get_launch_by_id(launch_id)
    q = LaunchRisk.query.filter(LaunchRisk.clinic_launch_id == launch_id)
    if severity:
        q = q.filter(LaunchRisk.severity == severity)
    if status:
        q = q.filter(LaunchRisk.status == status)
    if phase_name:
        q = q.filter(LaunchRisk.phase_name == phase_name)
    return q.order_by(
        _severity_order(), LaunchRisk.identified_date.desc(), LaunchRisk.id.desc(),
    ).all()


def get_critical_risks(launch_id: int):
    """Unresolved high/critical risks, most severe then most recent first."""
    get_launch_by_id(launch_id)
    return (
        LaunchRisk.query.filter(
            LaunchRisk.clinic_launch_id == launch_id,
            LaunchRisk.severity.in_(("critical", "high")),
            LaunchRisk.status.notin_(RISK_CLOSED_STATUSES),
        )
        .order_by(_severity_order(), LaunchRisk.identified_date.desc(), LaunchRisk.id.desc())
        .all()
    )


# ═════════════════════════════════════════════════════════════════════════════
# BLOCKERS
# ═════════════════════════════════════════════════════════════════════════════


def get_launch_blockers(launch_id: int) -> dict:
    """Blocked tasks, deliverables and phases with a severity each."""
    get_launch_by_id(launch_id)
    blockers = []

    for task in LaunchTask.query.filter_by(clinic_launch_id=launch_id, status="blocked").order_by(LaunchTask.id):
        blockers.append({
            "type": "task",
            "id": task.id,
            "name": task.task_name,
            "severity": "critical" if task.is_gate_blocker else "high",
            "phase_name": task.phase_name,
        })

    deliverables = (
        LaunchDeliverable.query.filter_by(clinic_launch_id=launch_id, status="blocked")
        .order_by(LaunchDeliverable.id)
    )
    for d in deliverables:
        blockers.append({
            "type": "deliverable",
            "id": d.id,
            "name": d.deliverable_name,
            "severity": "critical" if d.is_critical else "medium",
            "week_id": d.week_id,
        })

    phases = (
        LaunchPhase.query.filter_by(clinic_launch_id=launch_id, status="blocked")
        .order_by(LaunchPhase.phase_order)
    )
    for p in phases:
        blockers.append({
            "type": "phase",
            "id": p.id,
            "name": PHASE_DISPLAY_NAMES.get(p.phase_name, p.phase_name),
            "severity": "critical",
            "phase_name": p.phase_name,
        })

    return {"has_blockers": bool(blockers), "blockers": blockers}


# ═════════════════════════════════════════════════════════════════════════════
# WEEKS & DELIVERABLES
# ═════════════════════════════════════════════════════════════════════════════


def get_weeks(launch_id: int):
    get_launch_by_id(launch_id)
    return LaunchWeek.query.filter_by(clinic_launch_id=launch_id).order_by(LaunchWeek.week_number).all()


def get_week(week_id: int) -> LaunchWeek:
    return _get_or_raise(LaunchWeek, week_id)


def update_week(week_id: int, payload, today: date | None = None) -> LaunchWeek:
    if isinstance(payload, dict):
        payload = WeekUpdate.from_dict(payload)
    payload.validate()
    week = get_week(week_id)
    changes = payload.changes()
    for key, value in changes.items():
        setattr(week, key, value)
    if changes.get("status") == "in_progress" and week.actual_start_date is None:
        week.actual_start_date = today or date.today()
    _commit("update_week")
    logger.info("Week updated id=%s launch=%s", week.id, week.clinic_launch_id)
    return week


def complete_week(week_id: int, today: date | None = None) -> LaunchWeek:
    week = get_week(week_id)
    today = today or date.today()
    week.status = "completed"
    week.completion_pct = 100.0
    if week.actual_start_date is None:
        week.actual_start_date = today
    week.actual_end_date = today
    _commit("complete_week")
    logger.info("Week completed id=%s launch=%s number=%s", week.id, week.clinic_launch_id, week.week_number)
    return week


def get_week_completion_pct(week_id: int) -> float:
    week = get_week(week_id)
    return launch_progress.week_completion_pct(week.deliverables.all())


def _refresh_week(week_id):
    if week_id is None:
        return
    week = db.session.get(LaunchWeek, week_id)
    if week is not None and week.status != "completed":
        week.completion_pct = launch_progress.week_completion_pct(week.deliverables.all())


def _check_week(launch_id, week_id):
    if week_id is None:
        return
    week = db.session.get(LaunchWeek, week_id)
    if week is None or week.clinic_launch_id != launch_id:
        raise ValidationError(
            f"Week {week_id} does not belong to launch {launch_id}",
            details={"week_id": week_id},
        )


def _apply_deliverable_changes(deliverable: LaunchDeliverable, changes: dict):
    if "week_id" in changes:
        _check_week(deliverable.clinic_launch_id, changes["week_id"])
    if changes.keys() & {"status", "week_id", "is_critical"}:
        week_id = changes.get("week_id", deliverable.week_id)
        if (
            week_id is not None
            and changes.get("is_critical", deliverable.is_critical)
            and changes.get("status", deliverable.status) != "completed"
        ):
            week = db.session.get(LaunchWeek, week_id)
            phase = db.session.get(LaunchPhase, week.phase_id) if week.phase_id else None
            _check_gate_open(phase, "critical deliverable")

    previous_status = deliverable.status
    for key, value in changes.items():
        setattr(deliverable, key, value)

    if deliverable.status == "completed":
        if deliverable.completed_at is None or (
            previous_status != "completed" and "completed_at" not in changes
        ):
            deliverable.completed_at = datetime.now(timezone.utc)
    elif previous_status == "completed":
        deliverable.completed_at = None
        deliverable.completed_by = None


def create_deliverable(launch_id: int, data: dict) -> LaunchDeliverable:
    launch = get_launch_by_id(launch_id)
    _require(data, "deliverable_name")
    changes = DeliverableUpdate.from_dict(data).changes()

    deliverable = LaunchDeliverable(
        clinic_launch_id=launch.id,
        deliverable_name=changes.pop("deliverable_name"),
        status="pending",
        is_critical=False,
    )
    _apply_deliverable_changes(deliverable, changes)
    db.session.add(deliverable)
    db.session.flush()
    _refresh_week(deliverable.week_id)

    _commit("create_deliverable")
    logger.info("Deliverable created id=%s launch=%s week=%s", deliverable.id, launch.id, deliverable.week_id)
    return deliverable


def get_deliverable(deliverable_id: int) -> LaunchDeliverable:
    return _get_or_raise(LaunchDeliverable, deliverable_id)


def get_deliverables(launch_id: int, week_id=None, status=None):
    get_launch_by_id(launch_id)
    q = LaunchDeliverable.query.filter(LaunchDeliverable.clinic_launch_id == launch_id)
    if week_id is not None:
        q = q.filter(LaunchDeliverable.week_id == week_id)
    if status:
        q = q.filter(LaunchDeliverable.status == status)
    return q.order_by(
        LaunchDeliverable.due_day.is_(None), LaunchDeliverable.due_day, LaunchDeliverable.id,
    ).all()


def update_deliverable(deliverable_id: int, payload) -> LaunchDeliverable:
    """Apply a partial ``DeliverableUpdate``; completion stamps ``completed_at``."""
    if isinstance(payload, dict):
        payload = DeliverableUpdate.from_dict(payload)
    payload.validate()
    deliverable = get_deliverable(deliverable_id)
    old_week = deliverable.week_id
    _apply_deliverable_changes(deliverable, payload.changes())
    db.session.flush()
    for week_id in {old_week, deliverable.week_id}:
        _refresh_week(week_id)

    _commit("update_deliverable")
    logger.info(
        "Deliverable updated id=%s launch=%s status=%s",
        deliverable.id, deliverable.clinic_launch_id, deliverable.status,
    )
    return deliverable


# ═════════════════════════════════════════════════════════════════════════════
# TARGET METRICS
# ═════════════════════════════════════════════════════════════════════════════


def create_target_metric(week_id: int, data: dict) -> LaunchTargetMetric:
    week = get_week(week_id)
    _require(data, "metric_name", "target_value")
    metric_name = data["metric_name"]
    _validate_enum(metric_name, DAILY_METRIC_FIELDS, "metric_name")
    op = data.get("target_operator", ">=")
    _validate_enum(op, TARGET_OPERATORS, "target_operator")
    try:
        target_value = float(data["target_value"])
    except (TypeError, ValueError) as exc:
        raise ValidationError("target_value must be a number", details={"target_value": data["target_value"]}) from exc

    target = LaunchTargetMetric(
        clinic_launch_id=week.clinic_launch_id,
        week_id=week.id,
        metric_name=metric_name,
        target_value=target_value,
        target_operator=op,
        unit=data.get("unit"),
        is_critical=bool(data.get("is_critical", False)),
    )
    db.session.add(target)
    _commit("create_target_metric")
    logger.info("Target metric created id=%s week=%s metric=%s", target.id, week.id, metric_name)
    return target


def get_target_metrics(week_id: int):
    get_week(week_id)
    return (
        LaunchTargetMetric.query.filter_by(week_id=week_id)
        .order_by(LaunchTargetMetric.is_critical.desc(), LaunchTargetMetric.id).all()
    )


def evaluate_week_targets(week_id: int) -> dict:
    """Compare the launch's latest daily metric against each weekly target.

    ``is_met`` is None when no metric (or no value for that column) exists.
    """
    week = get_week(week_id)
    latest = (
        LaunchDailyMetric.query.filter_by(clinic_launch_id=week.clinic_launch_id)
        .order_by(LaunchDailyMetric.metric_date.desc(), LaunchDailyMetric.id.desc())
        .first()
    )
    results = []
    for target in get_target_metrics(week_id):
        actual = getattr(latest, target.metric_name, None) if latest is not None else None
        is_met = None
        if actual is not None:
            is_met = _COMPARATORS[target.target_operator](actual, target.target_value)
        item = target.to_dict()
        item["actual_value"] = actual
        item["is_met"] = is_met
        results.append(item)

    return {
        "week_id": week.id,
        "metric_date": latest.metric_date.isoformat() if latest is not None else None,
        "results": results,
        "met": sum(1 for r in results if r["is_met"] is True),
        "missed": sum(1 for r in results if r["is_met"] is False),
        "critical_missed": sum(1 for r in results if r["is_met"] is False and r["is_critical"]),
    }


# ═════════════════════════════════════════════════════════════════════════════
# DAILY METRICS, KPIs & STATUS
# ═════════════════════════════════════════════════════════════════════════════


def get_launch_day_number(launch_id: int, today: date | None = None) -> int:
    """Days since the actual start; 0 before the launch starts."""
    launch = get_launch_by_id(launch_id)
    if launch.actual_start_date is None:
        return 0
    today = today or date.today()
    return max(0, (today - launch.actual_start_date).days)


def get_current_week(launch_id: int, today: date | None = None):
    """The planning week covering today, capped at the last week."""
    day = get_launch_day_number(launch_id, today=today)
    last_week = _setting("LAUNCH_TOTAL_WEEKS", TOTAL_WEEKS) - 1
    week_number = min(day // 7, last_week)
    return LaunchWeek.query.filter_by(clinic_launch_id=launch_id, week_number=week_number).first()


def _non_negative(data, name, cast):
    value = data.get(name)
    if value is None:
        return None
    try:
        value = cast(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{name} must be numeric", details={name: value}) from exc
    if value < 0:
        raise ValidationError(f"{name} cannot be negative", details={name: value})
    return value


def log_daily_metric(launch_id: int, data: dict, today: date | None = None) -> LaunchDailyMetric:
    """Append one day's operating metrics (one row per launch per date).

    Omitted ``day_number``, cumulative totals and ``revenue_per_patient`` are
    derived from the launch start and the previous entry.
    """
    launch = get_launch_by_id(launch_id)
    try:
        metric_date = parse_date_input(data.get("metric_date")) or today or date.today()
    except ValueError as exc:
        raise ValidationError(str(exc), details={"metric_date": str(exc)}) from exc

    if LaunchDailyMetric.query.filter_by(clinic_launch_id=launch.id, metric_date=metric_date).first():
        raise ConflictError("LaunchDailyMetric", "metric_date", metric_date.isoformat())

    patients = _non_negative(data, "patients_treated_today", int) or 0
    conversions = _non_negative(data, "new_conversions_today", int) or 0
    revenue = _non_negative(data, "revenue_today", float)
    for pct_field in ("clinician_utilization_pct", "data_completeness_pct"):
        value = _non_negative(data, pct_field, float)
        if value is not None and value > 100:
            raise ValidationError(f"{pct_field} must be between 0 and 100", details={pct_field: value})

    day_number = _non_negative(data, "day_number", int)
    if day_number is None:
        day_number = (
            max(0, (metric_date - launch.actual_start_date).days)
            if launch.actual_start_date else 0
        )

    previous = (
        LaunchDailyMetric.query.filter(
            LaunchDailyMetric.clinic_launch_id == launch.id,
            LaunchDailyMetric.metric_date < metric_date,
        )
        .order_by(LaunchDailyMetric.metric_date.desc()).first()
    )
    cumulative_patients = _non_negative(data, "cumulative_patients", int)
    if cumulative_patients is None:
        cumulative_patients = (previous.cumulative_patients if previous else 0) + patients
    cumulative_revenue = _non_negative(data, "cumulative_revenue", float)
    if cumulative_revenue is None and revenue is not None:
        cumulative_revenue = ((previous.cumulative_revenue or 0.0) if previous else 0.0) + revenue

    revenue_per_patient = _non_negative(data, "revenue_per_patient", float)
    if revenue_per_patient is None and revenue is not None and patients > 0:
        revenue_per_patient = round(revenue / patients, 2)

    metric = LaunchDailyMetric(
        clinic_launch_id=launch.id,
        partner_clinic_id=data.get("partner_clinic_id"),
        metric_date=metric_date,
        day_number=day_number,
        patients_treated_today=patients,
        cumulative_patients=cumulative_patients,
        new_conversions_today=conversions,
        clinician_utilization_pct=_non_negative(data, "clinician_utilization_pct", float),
        data_completeness_pct=_non_negative(data, "data_completeness_pct", float),
        avg_intake_to_first_visit_days=_non_negative(data, "avg_intake_to_first_visit_days", float),
        revenue_today=revenue,
        cumulative_revenue=cumulative_revenue,
        revenue_per_patient=revenue_per_patient,
        notes=data.get("notes"),
    )
    db.session.add(metric)
    _commit("log_daily_metric")
    logger.info("Daily metric logged id=%s launch=%s date=%s", metric.id, launch.id, metric_date)
    return metric


def get_daily_metrics(launch_id: int, start_date=None, end_date=None):
    """Daily metrics, newest first, optionally bounded by date."""
    get_launch_by_id(launch_id)
    q = LaunchDailyMetric.query.filter(LaunchDailyMetric.clinic_launch_id == launch_id)
    start, end = parse_date(start_date), parse_date(end_date)
    if start:
        q = q.filter(LaunchDailyMetric.metric_date >= start)
    if end:
        q = q.filter(LaunchDailyMetric.metric_date <= end)
    return q.order_by(LaunchDailyMetric.metric_date.desc()).all()


def record_kpi(launch_id: int, data: dict, today: date | None = None) -> LaunchKPI:
    launch = get_launch_by_id(launch_id)
    _require(data, "metric_name", "metric_value")
    phase_name = data.get("phase_name")
    _validate_enum(phase_name, set(PHASE_NAMES), "phase_name")
    try:
        value = float(data["metric_value"])
        target = float(data["target_value"]) if data.get("target_value") is not None else None
        measured = parse_date_input(data.get("measurement_date")) or today or date.today()
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid KPI value: {exc}", details={"kpi": str(exc)}) from exc

    kpi = LaunchKPI(
        clinic_launch_id=launch.id,
        metric_name=data["metric_name"],
        metric_category=data.get("metric_category"),
        metric_value=value,
        metric_unit=data.get("metric_unit"),
        measurement_date=measured,
        phase_name=phase_name,
        target_value=target,
        is_on_target=(value >= target) if target is not None else None,
        notes=data.get("notes"),
    )
    db.session.add(kpi)
    _commit("record_kpi")
    logger.info("KPI recorded id=%s launch=%s metric=%s", kpi.id, launch.id, kpi.metric_name)
    return kpi


def get_kpis(launch_id: int, metric_name=None):
    get_launch_by_id(launch_id)
    q = LaunchKPI.query.filter(LaunchKPI.clinic_launch_id == launch_id)
    if metric_name:
        q = q.filter(LaunchKPI.metric_name == metric_name)
    return q.order_by(LaunchKPI.measurement_date.desc(), LaunchKPI.id.desc()).all()


def get_launch_status_summary(launch_id: int, today: date | None = None) -> dict:
    """Headline numbers for the launch dashboard."""
    launch = get_launch_by_id(launch_id)
    weeks = get_weeks(launch_id)
    deliverables = launch.deliverables.all()
    current_week = get_current_week(launch_id, today=today)
    latest = (
        LaunchDailyMetric.query.filter_by(clinic_launch_id=launch_id)
        .order_by(LaunchDailyMetric.metric_date.desc()).first()
    )
    return {
        "launch_id": launch.id,
        "status": launch.status,
        "current_phase": launch.current_phase,
        "overall_completion_pct": launch_progress.mean_completion_pct(launch.tasks.all()),
        "current_day": get_launch_day_number(launch_id, today=today),
        "current_week": current_week.to_dict() if current_week else None,
        "total_weeks": len(weeks),
        "completed_weeks": sum(1 for w in weeks if w.status == "completed"),
        "total_deliverables": len(deliverables),
        "completed_deliverables": sum(1 for d in deliverables if d.status == "completed"),
        "blocked_deliverables": sum(1 for d in deliverables if d.status == "blocked"),
        "latest_metric": latest.to_dict() if latest else None,
    }


# ═════════════════════════════════════════════════════════════════════════════
# INSIGHTS
# ═════════════════════════════════════════════════════════════════════════════


def build_snapshot(launch_id: int, today: date | None = None) -> LaunchSnapshot:
    """Gather the independent reads the insight analyzers consume."""
    launch = get_launch_by_id(launch_id)
    launch_dict = launch.to_dict()
    tasks = [t.to_dict() for t in get_tasks(launch_id)]
    launch_dict["overall_completion_pct"] = launch_progress.mean_completion_pct(tasks)
    return LaunchSnapshot(
        launch=launch_dict,
        phases=[p.to_dict() for p in get_phases(launch_id)],
        tasks=tasks,
        overdue_tasks=get_overdue_tasks(launch_id, today=today),
        critical_risks=[r.to_dict() for r in get_critical_risks(launch_id)],
        blockers=get_launch_blockers(launch_id),
    )


def generate_launch_insights(launch_id: int, today: date | None = None) -> list[Insight]:
    snapshot = build_snapshot(launch_id, today=today)
    insights = launch_insights.generate_insights(snapshot, today=today)
    logger.info("Insights generated launch=%s count=%d", launch_id, len(insights))
    return insights


def get_launch_health(launch_id: int, today: date | None = None) -> dict:
    """Insights plus slippage flag and next-action suggestions."""
    snapshot = build_snapshot(launch_id, today=today)
    return {
        "launch_id": launch_id,
        "completion_pct": snapshot.completion_pct,
        "schedule_slipping": launch_insights.detect_schedule_slippage(snapshot, today=today),
        "next_actions": launch_insights.suggest_next_actions(snapshot, today=today),
        "insights": [i.to_dict() for i in launch_insights.generate_insights(snapshot, today=today)],
        "thresholds": launch_insights.get_all_thresholds(),
    }
