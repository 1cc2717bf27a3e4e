"""
Clinic Launch Orchestration Engine
Launch domain models.

Models:
    - ClinicLaunch:        aggregate root, one per clinic opening
    - LaunchPhase:         one of six fixed, ordered, gated phases
    - LaunchWorkstream:    functional track (build, compliance, staffing, ...)
    - LaunchTask:          unit of work with advisory dependency edges
    - LaunchRisk:          risk register entry
    - LaunchWeek:          planning week (day range) owning deliverables/targets
    - LaunchDeliverable:   due-day deliverable, optionally gate-critical
    - LaunchTargetMetric:  per-week operating target
    - LaunchDailyMetric:   append-only daily operating metrics once live
    - LaunchKPI:           free-form KPI measurement

Architecture chain:
    ClinicLaunch ──1:6──▶ LaunchPhase ──1:N──▶ LaunchWeek ──1:N──▶ LaunchDeliverable
    ClinicLaunch ──1:6──▶ LaunchWorkstream ──1:N──▶ LaunchTask
    ClinicLaunch ──1:N──▶ LaunchRisk / LaunchDailyMetric / LaunchKPI
    LaunchTask ──N:M──▶ LaunchTask  (depends_on_task_ids, advisory only)

Lifecycle states:
    LaunchPhase:   not_started → in_progress → blocked ↔ in_progress
                   → completed (gate pass only) | skipped
"""

from datetime import datetime, timezone

from app.models import db


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    return value.isoformat() if value else None


# ── Constants ────────────────────────────────────────────────────────────────

LAUNCH_STATUSES = {
    "planning", "approved", "in_progress", "delayed",
    "at_risk", "completed", "cancelled",
}

PHASE_NAMES = [
    "phase_0_deal_authorization",
    "phase_1_site_build_compliance",
    "phase_2_staffing_credentialing",
    "phase_3_systems_ops_readiness",
    "phase_4_go_live",
    "phase_5_stabilization",
]

PHASE_DISPLAY_NAMES = {
    "phase_0_deal_authorization": "Phase 0: Deal & Authorization",
    "phase_1_site_build_compliance": "Phase 1: Site, Build & Compliance",
    "phase_2_staffing_credentialing": "Phase 2: Staffing & Credentialing",
    "phase_3_systems_ops_readiness": "Phase 3: Systems & Ops Readiness",
    "phase_4_go_live": "Phase 4: Go-Live",
    "phase_5_stabilization": "Phase 5: Stabilization",
}

PHASE_STATUSES = {"not_started", "in_progress", "blocked", "completed", "skipped"}

# Task status values share the phase vocabulary.
TASK_STATUSES = PHASE_STATUSES

WORKSTREAM_TYPES = [
    "real_estate_build",
    "compliance_licensing",
    "staffing_credentials",
    "systems_it",
    "clinical_ops",
    "marketing_outreach",
]

WORKSTREAM_DISPLAY_NAMES = {
    "real_estate_build": "Real Estate & Build",
    "compliance_licensing": "Compliance & Licensing",
    "staffing_credentials": "Staffing & Credentials",
    "systems_it": "Systems & IT",
    "clinical_ops": "Clinical Operations",
    "marketing_outreach": "Marketing & Outreach",
}

RISK_SEVERITIES = {"low", "medium", "high", "critical"}
RISK_STATUSES = {"identified", "assessing", "mitigating", "monitoring", "resolved", "accepted"}
RISK_CLOSED_STATUSES = {"resolved", "accepted"}

# critical=0 … low=3 (lower rank = more severe)
SEVERITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

DELIVERABLE_STATUSES = {"pending", "in_progress", "completed", "blocked", "not_applicable"}

TARGET_OPERATORS = {">=", "<=", "=", ">", "<"}


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

# ``completed`` is intentionally absent: it is reached only by passing the gate.
PHASE_TRANSITIONS = {
    "not_started": ["in_progress", "skipped"],
    "in_progress": ["blocked", "skipped"],
    "blocked":     ["in_progress", "skipped"],
    "completed":   [],
    "skipped":     [],
}


def validate_phase_transition(current: str, target: str) -> bool:
    """Return True if a phase may move from *current* to *target*."""
    return target in PHASE_TRANSITIONS.get(current, [])


# ═══════════════════════════════════════════════════════════════════════════
#  CLINIC LAUNCH
# ═══════════════════════════════════════════════════════════════════════════

class ClinicLaunch(db.Model):
    """
    Aggregate root tracking one clinic's opening end-to-end.

    ``overall_completion_pct`` is derived from task progress and rewritten by
    the service layer on every task mutation.
    """

    __tablename__ = "clinic_launches"

    id = db.Column(db.Integer, primary_key=True)
    clinic_id = db.Column(db.String(64), nullable=False, index=True)
    launch_name = db.Column(db.String(200), nullable=False)
    launch_code = db.Column(db.String(30), unique=True, nullable=False)
    launch_owner_id = db.Column(db.String(64), nullable=True)
    executive_sponsor_id = db.Column(db.String(64), nullable=True)

    target_open_date = db.Column(db.Date, nullable=True)
    planned_start_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_open_date = db.Column(db.Date, nullable=True)
    stabilization_target_date = db.Column(db.Date, nullable=True)

    current_phase = db.Column(
        db.String(50), default=PHASE_NAMES[0], nullable=False,
        comment="phase_0_deal_authorization … phase_5_stabilization",
    )
    status = db.Column(
        db.String(30), default="planning", index=True,
        comment="planning | approved | in_progress | delayed | at_risk | completed | cancelled",
    )
    overall_completion_pct = db.Column(db.Float, default=0.0, comment="0-100, derived")
    approved_budget = db.Column(db.Numeric(14, 2), nullable=True)
    actual_cost = db.Column(db.Numeric(14, 2), default=0)
    is_partner_clinic = db.Column(db.Boolean, default=False)
    extra = db.Column("metadata", db.JSON, default=dict)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # ── Relationships ────────────────────────────────────────────────────
    phases = db.relationship(
        "LaunchPhase", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan", order_by="LaunchPhase.phase_order",
    )
    workstreams = db.relationship(
        "LaunchWorkstream", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    tasks = db.relationship(
        "LaunchTask", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    risks = db.relationship(
        "LaunchRisk", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    weeks = db.relationship(
        "LaunchWeek", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan", order_by="LaunchWeek.week_number",
    )
    deliverables = db.relationship(
        "LaunchDeliverable", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    daily_metrics = db.relationship(
        "LaunchDailyMetric", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )
    kpis = db.relationship(
        "LaunchKPI", backref="launch", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_children=False):
        """Serialize launch to dictionary."""
        result = {
            "id": self.id,
            "clinic_id": self.clinic_id,
            "launch_name": self.launch_name,
            "launch_code": self.launch_code,
            "launch_owner_id": self.launch_owner_id,
            "executive_sponsor_id": self.executive_sponsor_id,
            "target_open_date": _iso(self.target_open_date),
            "planned_start_date": _iso(self.planned_start_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_open_date": _iso(self.actual_open_date),
            "stabilization_target_date": _iso(self.stabilization_target_date),
            "current_phase": self.current_phase,
            "status": self.status,
            "overall_completion_pct": self.overall_completion_pct or 0.0,
            "approved_budget": float(self.approved_budget) if self.approved_budget is not None else None,
            "actual_cost": float(self.actual_cost or 0),
            "is_partner_clinic": bool(self.is_partner_clinic),
            "metadata": self.extra or {},
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_children:
            result["phases"] = [p.to_dict() for p in self.phases]
            result["workstreams"] = [w.to_dict() for w in self.workstreams]
        return result

    def __repr__(self):
        return f"<ClinicLaunch {self.launch_code}: {self.launch_name}>"


# ═══════════════════════════════════════════════════════════════════════════
#  PHASE
# ═══════════════════════════════════════════════════════════════════════════

class LaunchPhase(db.Model):
    """
    One of the six ordered launch phases.

    Invariant: ``gate_passed`` implies ``status == "completed"``.
    """

    __tablename__ = "launch_phases"
    __table_args__ = (
        db.UniqueConstraint("clinic_launch_id", "phase_name", name="uq_launch_phase_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_name = db.Column(db.String(50), nullable=False)
    phase_order = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(30), default="not_started")
    planned_start_date = db.Column(db.Date, nullable=True)
    planned_end_date = db.Column(db.Date, nullable=True)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    gate_passed = db.Column(db.Boolean, default=False, nullable=False)
    gate_passed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    gate_passed_by = db.Column(db.String(64), nullable=True)
    gate_notes = db.Column(db.Text, nullable=True)
    completion_pct = db.Column(db.Float, default=0.0, comment="mean of task completion_pct")

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    weeks = db.relationship("LaunchWeek", backref="phase", lazy="dynamic")

    @property
    def display_name(self):
        return PHASE_DISPLAY_NAMES.get(self.phase_name, self.phase_name)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "phase_name": self.phase_name,
            "display_name": self.display_name,
            "phase_order": self.phase_order,
            "status": self.status,
            "planned_start_date": _iso(self.planned_start_date),
            "planned_end_date": _iso(self.planned_end_date),
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "gate_passed": bool(self.gate_passed),
            "gate_passed_at": _iso(self.gate_passed_at),
            "gate_passed_by": self.gate_passed_by,
            "gate_notes": self.gate_notes,
            "completion_pct": self.completion_pct or 0.0,
        }

    def __repr__(self):
        return f"<LaunchPhase {self.id}: {self.phase_name} ({self.status})>"


# ═══════════════════════════════════════════════════════════════════════════
#  WORKSTREAM
# ═══════════════════════════════════════════════════════════════════════════

class LaunchWorkstream(db.Model):
    """Functional track of related tasks within a launch."""

    __tablename__ = "launch_workstreams"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    workstream_type = db.Column(db.String(40), nullable=False)
    workstream_name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    owner_id = db.Column(db.String(64), nullable=True)
    owner_role = db.Column(db.String(50), nullable=True)
    status = db.Column(db.String(30), default="not_started")
    total_tasks = db.Column(db.Integer, default=0, nullable=False)
    completed_tasks = db.Column(db.Integer, default=0, nullable=False)
    completion_pct = db.Column(db.Float, default=0.0, comment="completed/total × 100")
    start_date = db.Column(db.Date, nullable=True)
    target_end_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    tasks = db.relationship("LaunchTask", backref="workstream", lazy="dynamic")

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "workstream_type": self.workstream_type,
            "workstream_name": self.workstream_name,
            "description": self.description,
            "owner_id": self.owner_id,
            "owner_role": self.owner_role,
            "status": self.status,
            "total_tasks": self.total_tasks or 0,
            "completed_tasks": self.completed_tasks or 0,
            "completion_pct": self.completion_pct or 0.0,
            "start_date": _iso(self.start_date),
            "target_end_date": _iso(self.target_end_date),
            "actual_end_date": _iso(self.actual_end_date),
        }

    def __repr__(self):
        return f"<LaunchWorkstream {self.id}: {self.workstream_type}>"


# ═══════════════════════════════════════════════════════════════════════════
#  TASK
# ═══════════════════════════════════════════════════════════════════════════

class LaunchTask(db.Model):
    """
    Unit of launch work.

    ``depends_on_task_ids`` is advisory: starting a task whose predecessors
    are incomplete is allowed and surfaced as an insight, never blocked.
    """

    __tablename__ = "launch_tasks"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    workstream_id = db.Column(
        db.Integer, db.ForeignKey("launch_workstreams.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    phase_name = db.Column(db.String(50), nullable=True, index=True)
    task_name = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    is_gate_blocker = db.Column(db.Boolean, default=False, nullable=False)
    assigned_to = db.Column(db.String(64), nullable=True, index=True)
    assigned_role = db.Column(db.String(50), nullable=True)
    due_date = db.Column(db.Date, nullable=True)
    start_date = db.Column(db.Date, nullable=True)
    completed_date = db.Column(db.Date, nullable=True)
    status = db.Column(db.String(30), default="not_started", index=True)
    completion_pct = db.Column(db.Integer, default=0, comment="0-100")
    depends_on_task_ids = db.Column(db.JSON, default=list)
    blocks_task_ids = db.Column(db.JSON, default=list)
    estimated_hours = db.Column(db.Float, nullable=True)
    actual_hours = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "workstream_id": self.workstream_id,
            "phase_name": self.phase_name,
            "task_name": self.task_name,
            "description": self.description,
            "is_required": bool(self.is_required),
            "is_gate_blocker": bool(self.is_gate_blocker),
            "assigned_to": self.assigned_to,
            "assigned_role": self.assigned_role,
            "due_date": _iso(self.due_date),
            "start_date": _iso(self.start_date),
            "completed_date": _iso(self.completed_date),
            "status": self.status,
            "completion_pct": self.completion_pct or 0,
            "depends_on_task_ids": list(self.depends_on_task_ids or []),
            "blocks_task_ids": list(self.blocks_task_ids or []),
            "estimated_hours": self.estimated_hours,
            "actual_hours": self.actual_hours,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<LaunchTask {self.id}: {self.task_name[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  RISK
# ═══════════════════════════════════════════════════════════════════════════

class LaunchRisk(db.Model):
    """
    Risk tracked against a launch, optionally scoped to a phase/workstream.

    Severity is caller-asserted; there is no automatic rescoring.
    """

    __tablename__ = "launch_risks"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_name = db.Column(db.String(50), nullable=True)
    workstream_id = db.Column(
        db.Integer, db.ForeignKey("launch_workstreams.id", ondelete="SET NULL"),
        nullable=True,
    )
    risk_title = db.Column(db.String(300), nullable=False)
    risk_description = db.Column(db.Text, default="")
    severity = db.Column(db.String(20), default="medium", index=True)
    probability = db.Column(db.String(20), nullable=True)
    impact_description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), default="identified", index=True)
    identified_by = db.Column(db.String(64), nullable=True)
    owner_id = db.Column(db.String(64), nullable=True)
    mitigation_plan = db.Column(db.Text, nullable=True)
    mitigation_actions = db.Column(db.JSON, default=list)
    identified_date = db.Column(db.Date, nullable=False)
    target_resolution_date = db.Column(db.Date, nullable=True)
    resolved_date = db.Column(db.Date, nullable=True)
    ai_detected = db.Column(db.Boolean, default=False, nullable=False)
    ai_confidence = db.Column(db.Float, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "phase_name": self.phase_name,
            "workstream_id": self.workstream_id,
            "risk_title": self.risk_title,
            "risk_description": self.risk_description,
            "severity": self.severity,
            "probability": self.probability,
            "impact_description": self.impact_description,
            "status": self.status,
            "identified_by": self.identified_by,
            "owner_id": self.owner_id,
            "mitigation_plan": self.mitigation_plan,
            "mitigation_actions": list(self.mitigation_actions or []),
            "identified_date": _iso(self.identified_date),
            "target_resolution_date": _iso(self.target_resolution_date),
            "resolved_date": _iso(self.resolved_date),
            "ai_detected": bool(self.ai_detected),
            "ai_confidence": self.ai_confidence,
        }

    def __repr__(self):
        return f"<LaunchRisk {self.id}: {self.severity} {self.risk_title[:40]}>"


# ═══════════════════════════════════════════════════════════════════════════
#  WEEK / DELIVERABLE / TARGET METRIC
# ═══════════════════════════════════════════════════════════════════════════

class LaunchWeek(db.Model):
    """Planning week covering a day range counted from the actual start."""

    __tablename__ = "launch_weeks"
    __table_args__ = (
        db.UniqueConstraint("clinic_launch_id", "week_number", name="uq_launch_week_number"),
    )

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    phase_id = db.Column(
        db.Integer, db.ForeignKey("launch_phases.id", ondelete="SET NULL"), nullable=True,
    )
    week_number = db.Column(db.Integer, nullable=False)
    week_label = db.Column(db.String(100), nullable=False)
    start_day = db.Column(db.Integer, nullable=False)
    end_day = db.Column(db.Integer, nullable=False)
    week_objective = db.Column(db.Text, default="")
    key_actions = db.Column(db.JSON, default=list)
    status = db.Column(db.String(30), default="not_started")
    completion_pct = db.Column(db.Float, default=0.0)
    actual_start_date = db.Column(db.Date, nullable=True)
    actual_end_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    deliverables = db.relationship("LaunchDeliverable", backref="week", lazy="dynamic")
    target_metrics = db.relationship(
        "LaunchTargetMetric", backref="week", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "phase_id": self.phase_id,
            "week_number": self.week_number,
            "week_label": self.week_label,
            "start_day": self.start_day,
            "end_day": self.end_day,
            "week_objective": self.week_objective,
            "key_actions": list(self.key_actions or []),
            "status": self.status,
            "completion_pct": self.completion_pct or 0.0,
            "actual_start_date": _iso(self.actual_start_date),
            "actual_end_date": _iso(self.actual_end_date),
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<LaunchWeek {self.week_number}: {self.week_label}>"


class LaunchDeliverable(db.Model):
    """Week-scoped deliverable; critical ones block their phase gate."""

    __tablename__ = "launch_deliverables"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    week_id = db.Column(
        db.Integer, db.ForeignKey("launch_weeks.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    deliverable_name = db.Column(db.String(300), nullable=False)
    deliverable_description = db.Column(db.Text, nullable=True)
    is_critical = db.Column(db.Boolean, default=False, nullable=False)
    status = db.Column(db.String(30), default="pending", index=True)
    due_day = db.Column(db.Integer, nullable=True, comment="offset from actual start")
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_by = db.Column(db.String(64), nullable=True)
    evidence_url = db.Column(db.String(500), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "week_id": self.week_id,
            "deliverable_name": self.deliverable_name,
            "deliverable_description": self.deliverable_description,
            "is_critical": bool(self.is_critical),
            "status": self.status,
            "due_day": self.due_day,
            "completed_at": _iso(self.completed_at),
            "completed_by": self.completed_by,
            "evidence_url": self.evidence_url,
            "notes": self.notes,
        }

    def __repr__(self):
        return f"<LaunchDeliverable {self.id}: {self.deliverable_name[:40]}>"


class LaunchTargetMetric(db.Model):
    """Operating target for a planning week (e.g. utilization >= 70)."""

    __tablename__ = "launch_target_metrics"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    week_id = db.Column(
        db.Integer, db.ForeignKey("launch_weeks.id", ondelete="CASCADE"), nullable=False,
    )
    metric_name = db.Column(db.String(100), nullable=False)
    target_value = db.Column(db.Float, nullable=False)
    target_operator = db.Column(db.String(2), nullable=False, default=">=")
    unit = db.Column(db.String(30), nullable=True)
    is_critical = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "week_id": self.week_id,
            "metric_name": self.metric_name,
            "target_value": self.target_value,
            "target_operator": self.target_operator,
            "unit": self.unit,
            "is_critical": bool(self.is_critical),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  METRICS
# ═══════════════════════════════════════════════════════════════════════════

class LaunchDailyMetric(db.Model):
    """
    Daily operating metrics once the clinic is live.

    Append-only: the service layer exposes no update or delete.
    """

    __tablename__ = "launch_daily_metrics"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    partner_clinic_id = db.Column(db.String(64), nullable=True)
    metric_date = db.Column(db.Date, nullable=False, index=True)
    day_number = db.Column(db.Integer, nullable=False, default=0)
    patients_treated_today = db.Column(db.Integer, nullable=False, default=0)
    cumulative_patients = db.Column(db.Integer, nullable=False, default=0)
    new_conversions_today = db.Column(db.Integer, nullable=False, default=0)
    clinician_utilization_pct = db.Column(db.Float, nullable=True)
    data_completeness_pct = db.Column(db.Float, nullable=True)
    avg_intake_to_first_visit_days = db.Column(db.Float, nullable=True)
    revenue_today = db.Column(db.Float, nullable=True)
    cumulative_revenue = db.Column(db.Float, nullable=True)
    revenue_per_patient = db.Column(db.Float, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "partner_clinic_id": self.partner_clinic_id,
            "metric_date": _iso(self.metric_date),
            "day_number": self.day_number,
            "patients_treated_today": self.patients_treated_today,
            "cumulative_patients": self.cumulative_patients,
            "new_conversions_today": self.new_conversions_today,
            "clinician_utilization_pct": self.clinician_utilization_pct,
            "data_completeness_pct": self.data_completeness_pct,
            "avg_intake_to_first_visit_days": self.avg_intake_to_first_visit_days,
            "revenue_today": self.revenue_today,
            "cumulative_revenue": self.cumulative_revenue,
            "revenue_per_patient": self.revenue_per_patient,
            "notes": self.notes,
            "created_at": _iso(self.created_at),
        }


class LaunchKPI(db.Model):
    """Ad-hoc KPI measurement recorded against a launch."""

    __tablename__ = "launch_kpis"

    id = db.Column(db.Integer, primary_key=True)
    clinic_launch_id = db.Column(
        db.Integer, db.ForeignKey("clinic_launches.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    metric_name = db.Column(db.String(100), nullable=False, index=True)
    metric_category = db.Column(db.String(50), nullable=True)
    metric_value = db.Column(db.Float, nullable=False)
    metric_unit = db.Column(db.String(30), nullable=True)
    measurement_date = db.Column(db.Date, nullable=False)
    phase_name = db.Column(db.String(50), nullable=True)
    target_value = db.Column(db.Float, nullable=True)
    is_on_target = db.Column(db.Boolean, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    recorded_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "clinic_launch_id": self.clinic_launch_id,
            "metric_name": self.metric_name,
            "metric_category": self.metric_category,
            "metric_value": self.metric_value,
            "metric_unit": self.metric_unit,
            "measurement_date": _iso(self.measurement_date),
            "phase_name": self.phase_name,
            "target_value": self.target_value,
            "is_on_target": self.is_on_target,
            "notes": self.notes,
            "recorded_at": _iso(self.recorded_at),
        }
