"""Clinic launch blueprint.

REST API over the launch service layer.

Endpoint groups:
  Launches        GET/POST       /api/v1/launches
                  GET/PUT        /api/v1/launches/<id>
                  POST           /api/v1/launches/<id>/start
                  POST           /api/v1/launches/<id>/advance
                  GET            /api/v1/launches/<id>/summary
                  GET            /api/v1/launches/<id>/blockers
                  GET            /api/v1/launches/<id>/insights
                  GET            /api/v1/launches/<id>/health
  Phases          GET            /api/v1/launches/<id>/phases
                  PUT            /api/v1/launch-phases/<id>/status
                  GET            /api/v1/launch-phases/<id>/gate
                  POST           /api/v1/launch-phases/<id>/gate/pass
  Workstreams     GET            /api/v1/launches/<id>/workstreams
                  PUT            /api/v1/launch-workstreams/<id>
  Tasks           GET/POST       /api/v1/launches/<id>/tasks
                  GET            /api/v1/launches/<id>/tasks/overdue
                  GET            /api/v1/launches/<id>/tasks/dependency-violations
                  GET/PUT        /api/v1/launch-tasks/<id>
                  GET            /api/v1/launch-tasks/mine?assignee=
  Risks           GET/POST       /api/v1/launches/<id>/risks
                  GET            /api/v1/launches/<id>/risks/critical
                  GET/PUT        /api/v1/launch-risks/<id>
  Weeks           GET            /api/v1/launches/<id>/weeks
                  GET            /api/v1/launches/<id>/weeks/current
                  GET/PUT        /api/v1/launch-weeks/<id>
                  POST           /api/v1/launch-weeks/<id>/complete
                  GET/POST       /api/v1/launch-weeks/<id>/targets
                  GET            /api/v1/launch-weeks/<id>/targets/evaluation
  Deliverables    GET/POST       /api/v1/launches/<id>/deliverables
                  PUT            /api/v1/launch-deliverables/<id>
  Metrics         GET/POST       /api/v1/launches/<id>/daily-metrics
                  GET/POST       /api/v1/launches/<id>/kpis

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import app.services.launch_service as svc
from app.blueprints import paginate_query
from app.core.exceptions import ConflictError, NotFoundError, StoreError, ValidationError
from app.services.launch_payloads import (
    DeliverableUpdate,
    LaunchUpdate,
    RiskUpdate,
    TaskUpdate,
    WeekUpdate,
    WorkstreamUpdate,
)
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

launch_bp = Blueprint("launch", __name__, url_prefix="/api/v1")


# ── Error handlers ────────────────────────────────────────────────────────────


@launch_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@launch_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    code = E.GATE_BLOCKED if "blocking_task_ids" in error.details else E.VALIDATION_RULE
    return api_error(code, str(error), details=error.details)


@launch_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})


@launch_bp.errorhandler(StoreError)
def _handle_store(error: StoreError):
    logger.error("Store error in launch_bp endpoint=%s: %s", request.endpoint, error)
    return api_error(E.STORE, "Storage failure; the change was not saved")


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ═════════════════════════════════════════════════════════════════════════
# Launches
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches", methods=["GET"])
def list_launches():
    """List launches. Query params: status, clinic_id, limit, offset."""
    query = svc.list_launches(
        status=request.args.get("status"),
        clinic_id=request.args.get("clinic_id"),
    )
    items, total = paginate_query(query)
    return jsonify({"items": [l.to_dict() for l in items], "total": total}), 200


@launch_bp.route("/launches", methods=["POST"])
def create_launch():
    """Create a launch from the standard template (phases, workstreams, weeks).

    Body: {clinic_id, launch_name, launch_code, target_open_date,
           planned_start_date?, launch_owner_id?, executive_sponsor_id?, ...}
    """
    launch = svc.create_launch_from_template(_body())
    return jsonify(launch.to_dict(include_children=True)), 201


@launch_bp.route("/launches/<int:launch_id>", methods=["GET"])
def get_launch(launch_id):
    launch = svc.get_launch_by_id(launch_id)
    return jsonify(launch.to_dict(include_children=True)), 200


@launch_bp.route("/launches/<int:launch_id>", methods=["PUT"])
def update_launch(launch_id):
    launch = svc.update_launch(launch_id, LaunchUpdate.from_dict(_body()))
    return jsonify(launch.to_dict()), 200


@launch_bp.route("/launches/<int:launch_id>/start", methods=["POST"])
def start_launch(launch_id):
    launch = svc.start_launch(launch_id)
    return jsonify(launch.to_dict()), 200


@launch_bp.route("/launches/<int:launch_id>/advance", methods=["POST"])
def advance_phase(launch_id):
    """Body: {to_phase}"""
    data = _body()
    if not data.get("to_phase"):
        return api_error(E.VALIDATION_REQUIRED, "to_phase is required")
    launch = svc.advance_phase(launch_id, data["to_phase"])
    return jsonify(launch.to_dict()), 200


@launch_bp.route("/launches/<int:launch_id>/summary", methods=["GET"])
def launch_summary(launch_id):
    return jsonify(svc.get_launch_status_summary(launch_id)), 200


@launch_bp.route("/launches/<int:launch_id>/blockers", methods=["GET"])
def launch_blockers(launch_id):
    return jsonify(svc.get_launch_blockers(launch_id)), 200


@launch_bp.route("/launches/<int:launch_id>/insights", methods=["GET"])
def launch_insights(launch_id):
    insights = svc.generate_launch_insights(launch_id)
    return jsonify({"items": [i.to_dict() for i in insights], "total": len(insights)}), 200


@launch_bp.route("/launches/<int:launch_id>/health", methods=["GET"])
def launch_health(launch_id):
    return jsonify(svc.get_launch_health(launch_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Phases & gates
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/phases", methods=["GET"])
def list_phases(launch_id):
    return jsonify([p.to_dict() for p in svc.get_phases(launch_id)]), 200


@launch_bp.route("/launch-phases/<int:phase_id>/status", methods=["PUT"])
def update_phase_status(phase_id):
    """Body: {status}. ``completed`` is rejected; pass the gate instead."""
    data = _body()
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    phase = svc.update_phase_status(phase_id, data["status"])
    return jsonify(phase.to_dict()), 200


@launch_bp.route("/launch-phases/<int:phase_id>/gate", methods=["GET"])
def validate_gate(phase_id):
    return jsonify(svc.validate_phase_gate(phase_id).to_dict()), 200


@launch_bp.route("/launch-phases/<int:phase_id>/gate/pass", methods=["POST"])
def pass_gate(phase_id):
    """Body: {notes?, passed_by?}. 422 GATE_BLOCKED with blocking ids on failure."""
    data = _body()
    phase = svc.pass_phase_gate(phase_id, notes=data.get("notes"), passed_by=data.get("passed_by"))
    return jsonify(phase.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Workstreams
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/workstreams", methods=["GET"])
def list_workstreams(launch_id):
    return jsonify([w.to_dict() for w in svc.get_workstreams(launch_id)]), 200


@launch_bp.route("/launch-workstreams/<int:workstream_id>", methods=["PUT"])
def update_workstream(workstream_id):
    ws = svc.update_workstream(workstream_id, WorkstreamUpdate.from_dict(_body()))
    return jsonify(ws.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Tasks
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/tasks", methods=["GET"])
def list_tasks(launch_id):
    """Query params: workstream_id, phase_name, assigned_to, status."""
    tasks = svc.get_tasks(
        launch_id,
        workstream_id=request.args.get("workstream_id", type=int),
        phase_name=request.args.get("phase_name"),
        assigned_to=request.args.get("assigned_to"),
        status=request.args.get("status"),
    )
    return jsonify({"items": [t.to_dict() for t in tasks], "total": len(tasks)}), 200


@launch_bp.route("/launches/<int:launch_id>/tasks", methods=["POST"])
def create_task(launch_id):
    task = svc.create_task(launch_id, _body())
    return jsonify(task.to_dict()), 201


@launch_bp.route("/launches/<int:launch_id>/tasks/overdue", methods=["GET"])
def overdue_tasks(launch_id):
    items = svc.get_overdue_tasks(launch_id)
    return jsonify({"items": items, "total": len(items)}), 200


@launch_bp.route("/launches/<int:launch_id>/tasks/dependency-violations", methods=["GET"])
def dependency_violations(launch_id):
    return jsonify(svc.get_dependency_violations(launch_id)), 200


@launch_bp.route("/launch-tasks/mine", methods=["GET"])
def my_tasks():
    assignee = request.args.get("assignee")
    if not assignee:
        return api_error(E.VALIDATION_REQUIRED, "assignee is required")
    tasks = svc.get_my_tasks(assignee)
    return jsonify([t.to_dict() for t in tasks]), 200


@launch_bp.route("/launch-tasks/<int:task_id>", methods=["GET"])
def get_task(task_id):
    return jsonify(svc.get_task(task_id).to_dict()), 200


@launch_bp.route("/launch-tasks/<int:task_id>", methods=["PUT"])
def update_task(task_id):
    task = svc.update_task(task_id, TaskUpdate.from_dict(_body()))
    return jsonify(task.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Risks
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/risks", methods=["GET"])
def list_risks(launch_id):
    risks = svc.get_risks(
        launch_id,
        severity=request.args.get("severity"),
        status=request.args.get("status"),
        phase_name=request.args.get("phase_name"),
    )
    return jsonify([r.to_dict() for r in risks]), 200


@launch_bp.route("/launches/<int:launch_id>/risks", methods=["POST"])
def create_risk(launch_id):
    risk = svc.create_risk(launch_id, _body())
    return jsonify(risk.to_dict()), 201


@launch_bp.route("/launches/<int:launch_id>/risks/critical", methods=["GET"])
def critical_risks(launch_id):
    return jsonify([r.to_dict() for r in svc.get_critical_risks(launch_id)]), 200


@launch_bp.route("/launch-risks/<int:risk_id>", methods=["GET"])
def get_risk(risk_id):
    return jsonify(svc.get_risk(risk_id).to_dict()), 200


@launch_bp.route("/launch-risks/<int:risk_id>", methods=["PUT"])
def update_risk(risk_id):
    risk = svc.update_risk(risk_id, RiskUpdate.from_dict(_body()))
    return jsonify(risk.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Weeks, targets & deliverables
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/weeks", methods=["GET"])
def list_weeks(launch_id):
    return jsonify([w.to_dict() for w in svc.get_weeks(launch_id)]), 200


@launch_bp.route("/launches/<int:launch_id>/weeks/current", methods=["GET"])
def current_week(launch_id):
    week = svc.get_current_week(launch_id)
    return jsonify({
        "day_number": svc.get_launch_day_number(launch_id),
        "week": week.to_dict() if week else None,
    }), 200


@launch_bp.route("/launch-weeks/<int:week_id>", methods=["GET"])
def get_week(week_id):
    week = svc.get_week(week_id)
    result = week.to_dict()
    result["deliverable_completion_pct"] = svc.get_week_completion_pct(week_id)
    return jsonify(result), 200


@launch_bp.route("/launch-weeks/<int:week_id>", methods=["PUT"])
def update_week(week_id):
    week = svc.update_week(week_id, WeekUpdate.from_dict(_body()))
    return jsonify(week.to_dict()), 200


@launch_bp.route("/launch-weeks/<int:week_id>/complete", methods=["POST"])
def complete_week(week_id):
    return jsonify(svc.complete_week(week_id).to_dict()), 200


@launch_bp.route("/launch-weeks/<int:week_id>/targets", methods=["GET"])
def list_targets(week_id):
    return jsonify([t.to_dict() for t in svc.get_target_metrics(week_id)]), 200


@launch_bp.route("/launch-weeks/<int:week_id>/targets", methods=["POST"])
def create_target(week_id):
    """Body: {metric_name, target_value, target_operator?, unit?, is_critical?}"""
    target = svc.create_target_metric(week_id, _body())
    return jsonify(target.to_dict()), 201


@launch_bp.route("/launch-weeks/<int:week_id>/targets/evaluation", methods=["GET"])
def evaluate_targets(week_id):
    return jsonify(svc.evaluate_week_targets(week_id)), 200


@launch_bp.route("/launches/<int:launch_id>/deliverables", methods=["GET"])
def list_deliverables(launch_id):
    items = svc.get_deliverables(
        launch_id,
        week_id=request.args.get("week_id", type=int),
        status=request.args.get("status"),
    )
    return jsonify([d.to_dict() for d in items]), 200


@launch_bp.route("/launches/<int:launch_id>/deliverables", methods=["POST"])
def create_deliverable(launch_id):
    deliverable = svc.create_deliverable(launch_id, _body())
    return jsonify(deliverable.to_dict()), 201


@launch_bp.route("/launch-deliverables/<int:deliverable_id>", methods=["PUT"])
def update_deliverable(deliverable_id):
    deliverable = svc.update_deliverable(deliverable_id, DeliverableUpdate.from_dict(_body()))
    return jsonify(deliverable.to_dict()), 200


# ═════════════════════════════════════════════════════════════════════════
# Daily metrics & KPIs
# ═════════════════════════════════════════════════════════════════════════


@launch_bp.route("/launches/<int:launch_id>/daily-metrics", methods=["GET"])
def list_daily_metrics(launch_id):
    """Query params: start_date, end_date (ISO)."""
    metrics = svc.get_daily_metrics(
        launch_id,
        start_date=request.args.get("start_date"),
        end_date=request.args.get("end_date"),
    )
    return jsonify([m.to_dict() for m in metrics]), 200


@launch_bp.route("/launches/<int:launch_id>/daily-metrics", methods=["POST"])
def log_daily_metric(launch_id):
    metric = svc.log_daily_metric(launch_id, _body())
    return jsonify(metric.to_dict()), 201


@launch_bp.route("/launches/<int:launch_id>/kpis", methods=["GET"])
def list_kpis(launch_id):
    kpis = svc.get_kpis(launch_id, metric_name=request.args.get("metric_name"))
    return jsonify([k.to_dict() for k in kpis]), 200


@launch_bp.route("/launches/<int:launch_id>/kpis", methods=["POST"])
def record_kpi(launch_id):
    kpi = svc.record_kpi(launch_id, _body())
    return jsonify(kpi.to_dict()), 201
