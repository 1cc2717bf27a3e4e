"""
Launch Insight Generator

Deterministic, rule-based findings about launch health. Every analyzer is a
pure function ``(snapshot, today) -> list[Insight]`` over a read-only
``LaunchSnapshot`` of plain dicts; nothing here touches the database.

Pipeline:
    schedule → risk → blocker → dependency → historical → mitigation
    → staffing → phase progression

Outputs are concatenated in that order and stably sorted by severity
(critical → high → medium → low). An analyzer that raises is logged and
contributes no findings.

Usage:
    from app.services.launch_insights import generate_insights
    insights = generate_insights(snapshot)
    # -> [Insight(id="schedule-gate-blockers-7", severity="critical", ...), ...]
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable

from app.models.launch import PHASE_NAMES, SEVERITY_RANK
from app.utils.helpers import parse_date

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Data Classes
# ═════════════════════════════════════════════════════════════════════════════

INSIGHT_TYPES = {"risk", "warning", "suggestion", "opportunity"}


@dataclass
class Insight:
    """Single computed finding. Ephemeral; never persisted."""
    id: str
    type: str
    severity: str
    title: str
    message: str
    confidence: float
    metadata: dict = field(default_factory=dict)
    action: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "title": self.title,
            "message": self.message,
            "confidence": self.confidence,
            "metadata": self.metadata,
            "action": self.action,
        }


@dataclass
class LaunchSnapshot:
    """Read-only view of one launch assembled from independent reads.

    ``overdue_tasks`` entries carry ``days_overdue``; ``critical_risks`` are
    unresolved high/critical risks; ``blockers`` is the
    ``{"has_blockers": bool, "blockers": [...]}`` shape.
    """
    launch: dict
    phases: list[dict] = field(default_factory=list)
    tasks: list[dict] = field(default_factory=list)
    overdue_tasks: list[dict] = field(default_factory=list)
    critical_risks: list[dict] = field(default_factory=list)
    blockers: dict = field(default_factory=lambda: {"has_blockers": False, "blockers": []})

    @property
    def launch_id(self):
        return self.launch.get("id")

    @property
    def completion_pct(self) -> float:
        return float(self.launch.get("overall_completion_pct") or 0)


# ═════════════════════════════════════════════════════════════════════════════
# Threshold Configuration
# ═════════════════════════════════════════════════════════════════════════════

THRESHOLDS: dict[str, Any] = {
    # Schedule
    "overdue_high_count": 5,              # > 5 overdue non-blockers -> high
    "behind_schedule_days": 30,           # < 30 days to open ...
    "behind_schedule_min_pct": 80,        # ... and < 80% complete -> high
    "upcoming_window_days": 7,

    # Risk register
    "stale_risk_days": 14,

    # Historical comparison
    "historical_min_pct": 50,
    "historical_overrun_ratio": 1.2,

    # Mitigation suggestions
    "at_risk_low_pct": 50,
    "unlogged_overdue_count": 3,

    # Staffing gaps
    "staffing_gap_count": 5,

    # Slippage detector (linear expectation over the horizon)
    "slippage_horizon_days": 180,
    "slippage_tolerance_pct": 15,

    # Next-action suggestions
    "gate_focus_window_days": 14,
    "unassigned_required_count": 3,
}

DEFAULT_THRESHOLDS: dict[str, Any] = dict(THRESHOLDS)

_OPEN_TASK_EXCLUDED = {"completed", "skipped"}
_INACTIVE_LAUNCH_STATUSES = {"completed", "cancelled"}


def _days_until(value, today: date) -> int | None:
    parsed = parse_date(value)
    if parsed is None:
        return None
    return (parsed - today).days


# ═════════════════════════════════════════════════════════════════════════════
# Dependency graph (advisory, read-side only)
# ═════════════════════════════════════════════════════════════════════════════

def find_dependency_violations(tasks: list[dict]) -> list[dict]:
    """Tasks in progress while a declared predecessor is not completed.

    Dependency ids that do not resolve to a task in ``tasks`` are ignored.

    Returns:
        ``[{"task": <task dict>, "incomplete_dependencies": [<task dict>, ...]}]``
    """
    by_id = {t["id"]: t for t in tasks}
    violations = []
    for task in tasks:
        if task.get("status") != "in_progress":
            continue
        incomplete = [
            by_id[dep_id]
            for dep_id in task.get("depends_on_task_ids") or []
            if dep_id in by_id and by_id[dep_id].get("status") != "completed"
        ]
        if incomplete:
            violations.append({"task": task, "incomplete_dependencies": incomplete})
    return violations


# ═════════════════════════════════════════════════════════════════════════════
# Analyzers
# ═════════════════════════════════════════════════════════════════════════════

def analyze_schedule(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Overdue tasks, days-to-open pressure and the coming week's load."""
    insights = []
    lid = snap.launch_id
    overdue = snap.overdue_tasks

    gate_blockers = [t for t in overdue if t.get("is_gate_blocker")]
    if gate_blockers:
        insights.append(Insight(
            id=f"schedule-gate-blockers-{lid}",
            type="warning",
            severity="critical",
            title="Gate-Blocking Tasks Overdue",
            message=f"{len(gate_blockers)} gate-blocking tasks are overdue. "
                    "These will prevent phase advancement.",
            action="Review overdue tasks",
            confidence=1.0,
            metadata={"count": len(gate_blockers),
                      "task_ids": [t["id"] for t in gate_blockers]},
        ))

    non_blockers = [t for t in overdue if not t.get("is_gate_blocker")]
    if non_blockers:
        count = len(non_blockers)
        insights.append(Insight(
            id=f"schedule-overdue-{lid}",
            type="warning",
            severity="high" if count > THRESHOLDS["overdue_high_count"] else "medium",
            title="Tasks Overdue",
            message=f"{count} tasks are past their due date. Launch timeline may be at risk.",
            action="Review schedule",
            confidence=0.9,
            metadata={"count": count,
                      "max_days_overdue": max(t.get("days_overdue", 0) for t in non_blockers)},
        ))

    days_until_open = _days_until(snap.launch.get("target_open_date"), today)
    pct = snap.completion_pct
    if (
        days_until_open is not None
        and snap.launch.get("status") not in _INACTIVE_LAUNCH_STATUSES
        and days_until_open < THRESHOLDS["behind_schedule_days"]
        and pct < THRESHOLDS["behind_schedule_min_pct"]
    ):
        insights.append(Insight(
            id=f"schedule-behind-{lid}",
            type="risk",
            severity="high",
            title="Launch Behind Schedule",
            message=f"Only {days_until_open} days until target open date, but launch is "
                    f"{pct:.0f}% complete. Consider adjusting timeline or adding resources.",
            action="Review project plan",
            confidence=0.85,
            metadata={"days_until_open": days_until_open, "completion_pct": pct},
        ))

    window = THRESHOLDS["upcoming_window_days"]
    near_due = []
    for task in snap.tasks:
        if task.get("status") in _OPEN_TASK_EXCLUDED:
            continue
        days = _days_until(task.get("due_date"), today)
        if days is not None and 0 <= days <= window:
            near_due.append(task)
    if near_due:
        insights.append(Insight(
            id=f"schedule-upcoming-{lid}",
            type="suggestion",
            severity="low",
            title="Tasks Due This Week",
            message=f"{len(near_due)} tasks are due in the next {window} days. "
                    "Ensure resources are allocated.",
            confidence=0.95,
            metadata={"count": len(near_due), "task_ids": [t["id"] for t in near_due]},
        ))

    return insights


def analyze_risks(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Unresolved high/critical risks, and those left open too long."""
    risks = snap.critical_risks
    if not risks:
        return []

    lid = snap.launch_id
    insights = [Insight(
        id=f"risks-critical-{lid}",
        type="risk",
        severity="critical",
        title="Unresolved Critical Risks",
        message=f"{len(risks)} critical or high-severity risks require immediate attention.",
        action="Review risk register",
        confidence=1.0,
        metadata={"count": len(risks), "risk_ids": [r["id"] for r in risks]},
    )]

    stale_after = THRESHOLDS["stale_risk_days"]
    stale = []
    for risk in risks:
        identified = parse_date(risk.get("identified_date"))
        if identified is not None and (today - identified).days > stale_after:
            stale.append(risk)
    if stale:
        insights.append(Insight(
            id=f"risks-stale-{lid}",
            type="warning",
            severity="high",
            title="Stale Risk Mitigation",
            message=f"{len(stale)} critical risks have been open for over "
                    f"{stale_after} days without resolution.",
            action="Escalate risks",
            confidence=0.9,
            metadata={"count": len(stale), "risk_ids": [r["id"] for r in stale]},
        ))
    return insights


def analyze_blockers(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Critical-severity launch blockers."""
    if not snap.blockers.get("has_blockers"):
        return []
    critical = [b for b in snap.blockers.get("blockers", []) if b.get("severity") == "critical"]
    if not critical:
        return []
    return [Insight(
        id=f"blockers-critical-{snap.launch_id}",
        type="warning",
        severity="critical",
        title="Critical Launch Blockers",
        message=f"{len(critical)} critical blockers identified. "
                "Launch progression may be halted.",
        action="Address blockers",
        confidence=1.0,
        metadata={"count": len(critical), "blockers": critical},
    )]


def analyze_dependencies(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """One finding per in-progress task whose predecessors are incomplete."""
    insights = []
    for violation in find_dependency_violations(snap.tasks):
        task = violation["task"]
        deps = violation["incomplete_dependencies"]
        insights.append(Insight(
            id=f"dependency-{task['id']}",
            type="warning",
            severity="medium",
            title="Dependency Risk",
            message=f'Task "{task.get("task_name")}" is in progress but has '
                    f"{len(deps)} incomplete dependencies.",
            action="Review dependencies",
            confidence=0.8,
            metadata={"task_id": task["id"],
                      "dependency_ids": [d["id"] for d in deps]},
        ))
    return insights


def analyze_historical(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Elapsed time since start against the originally planned duration."""
    if snap.completion_pct <= THRESHOLDS["historical_min_pct"]:
        return []

    target = parse_date(snap.launch.get("target_open_date"))
    planned_start = parse_date(snap.launch.get("planned_start_date"))
    if target is None or planned_start is None:
        return []
    actual_start = parse_date(snap.launch.get("actual_start_date")) or planned_start

    planned_duration = (target - planned_start).days
    if planned_duration <= 0:
        return []
    elapsed = (today - actual_start).days
    if elapsed <= planned_duration * THRESHOLDS["historical_overrun_ratio"]:
        return []

    overrun_pct = round((elapsed / planned_duration - 1) * 100)
    return [Insight(
        id=f"historical-duration-{snap.launch_id}",
        type="suggestion",
        severity="medium",
        title="Extended Timeline",
        message=f"This launch has run {overrun_pct}% longer than originally planned. "
                "Consider if additional resources or scope adjustments are needed.",
        confidence=0.75,
        metadata={"planned_duration_days": planned_duration, "elapsed_days": elapsed},
    )]


def analyze_mitigations(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Resourcing and risk-logging suggestions."""
    insights = []
    lid = snap.launch_id

    if (
        snap.launch.get("status") == "at_risk"
        and snap.completion_pct < THRESHOLDS["at_risk_low_pct"]
    ):
        insights.append(Insight(
            id=f"mitigation-staffing-{lid}",
            type="suggestion",
            severity="high",
            title="Consider Additional Resources",
            message="Launch is at risk with low completion. Consider adding staff or "
                    "extending timeline to ensure quality execution.",
            action="Review resource plan",
            confidence=0.7,
        ))

    logged_critical = [r for r in snap.critical_risks if r.get("severity") == "critical"]
    if len(snap.overdue_tasks) > THRESHOLDS["unlogged_overdue_count"] and not logged_critical:
        insights.append(Insight(
            id=f"mitigation-risk-identification-{lid}",
            type="suggestion",
            severity="medium",
            title="Document Schedule Risks",
            message="Multiple overdue tasks detected but no critical risks logged. Consider "
                    "formally documenting schedule risks and mitigation plans.",
            action="Add risk to register",
            confidence=0.65,
            metadata={"overdue_count": len(snap.overdue_tasks)},
        ))
    return insights


def analyze_staffing(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Required work nobody has picked up."""
    unassigned = [
        t for t in snap.tasks
        if t.get("is_required") and not t.get("assigned_to") and t.get("status") == "not_started"
    ]
    if len(unassigned) <= THRESHOLDS["staffing_gap_count"]:
        return []
    return [Insight(
        id=f"staffing-gaps-{snap.launch_id}",
        type="warning",
        severity="medium",
        title="Staffing Gaps",
        message=f"{len(unassigned)} required tasks are unassigned. "
                "Staffing gaps may delay launch.",
        action="Assign task owners",
        confidence=0.7,
        metadata={"count": len(unassigned), "task_ids": [t["id"] for t in unassigned]},
    )]


def analyze_phase_progression(snap: LaunchSnapshot, today: date) -> list[Insight]:
    """Current phase ahead of an earlier phase whose gate never passed."""
    current = snap.launch.get("current_phase")
    if current not in PHASE_NAMES:
        return []
    current_order = PHASE_NAMES.index(current)
    unpassed = [
        p for p in snap.phases
        if p.get("phase_order", 0) < current_order
        and not p.get("gate_passed")
        and p.get("status") != "skipped"
    ]
    if not unpassed:
        return []
    return [Insight(
        id=f"phase-progression-{snap.launch_id}",
        type="warning",
        severity="high",
        title="Phase Advanced Without Gate",
        message=f"Launch is in {current} but {len(_phase_names(unpassed))} earlier "
                "phase gate(s) have not passed.",
        action="Review phase gates",
        confidence=1.0,
        metadata={"current_phase": current, "unpassed_phases": _phase_names(unpassed)},
    )]


def _phase_names(phases: list[dict]) -> list[str]:
    return [p.get("phase_name") for p in phases]


ANALYZERS: list[tuple[str, Callable[[LaunchSnapshot, date], list[Insight]]]] = [
    ("schedule", analyze_schedule),
    ("risk", analyze_risks),
    ("blocker", analyze_blockers),
    ("dependency", analyze_dependencies),
    ("historical", analyze_historical),
    ("mitigation", analyze_mitigations),
    ("staffing", analyze_staffing),
    ("phase_progression", analyze_phase_progression),
]


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def generate_insights(snapshot: LaunchSnapshot, today: date | None = None) -> list[Insight]:
    """Run every analyzer and return findings sorted critical-first.

    Ties keep analyzer order (the sort is stable).
    """
    today = today or date.today()
    insights: list[Insight] = []
    for name, analyzer in ANALYZERS:
        try:
            insights.extend(analyzer(snapshot, today))
        except Exception:
            logger.warning(
                "Insight analyzer %s failed for launch=%s; skipping",
                name, snapshot.launch_id, exc_info=True,
            )
    return sorted(insights, key=lambda i: SEVERITY_RANK.get(i.severity, len(SEVERITY_RANK)))


def detect_schedule_slippage(snapshot: LaunchSnapshot, today: date | None = None) -> bool:
    """True when completion trails a linear expectation by the tolerance.

    Expected completion ramps from 0% at ``slippage_horizon_days`` before the
    target open date to 100% on it.
    """
    today = today or date.today()
    days_until_open = _days_until(snapshot.launch.get("target_open_date"), today)
    if days_until_open is None:
        return False
    horizon = THRESHOLDS["slippage_horizon_days"]
    expected = max(0.0, min(100.0, 100 - (days_until_open / horizon) * 100))
    return snapshot.completion_pct < expected - THRESHOLDS["slippage_tolerance_pct"]


def suggest_next_actions(snapshot: LaunchSnapshot, today: date | None = None) -> list[str]:
    """Short, prioritised to-do lines for the launch owner."""
    today = today or date.today()
    suggestions = []

    if snapshot.overdue_tasks:
        suggestions.append(
            f"Address {len(snapshot.overdue_tasks)} overdue tasks to get back on schedule"
        )
    if snapshot.critical_risks:
        suggestions.append(
            f"Update mitigation plans for {len(snapshot.critical_risks)} critical risks"
        )

    window = THRESHOLDS["gate_focus_window_days"]
    upcoming_gate_blockers = []
    for task in snapshot.tasks:
        if not task.get("is_gate_blocker") or task.get("status") == "completed":
            continue
        days = _days_until(task.get("due_date"), today)
        if days is not None and 0 <= days <= window:
            upcoming_gate_blockers.append(task)
    if upcoming_gate_blockers:
        suggestions.append(
            f"Focus on {len(upcoming_gate_blockers)} gate-blocking tasks due in next 2 weeks"
        )

    unassigned_required = [
        t for t in snapshot.tasks
        if t.get("is_required") and not t.get("assigned_to")
        and t.get("status") not in _OPEN_TASK_EXCLUDED
    ]
    if len(unassigned_required) > THRESHOLDS["unassigned_required_count"]:
        suggestions.append(f"Assign owners to {len(unassigned_required)} required tasks")

    return suggestions


def get_threshold(key: str, default=None):
    """Read a single threshold value."""
    return THRESHOLDS.get(key, default)


def get_all_thresholds() -> dict:
    return dict(THRESHOLDS)


def update_threshold(key: str, value) -> bool:
    """Update a threshold at runtime (valid until restart)."""
    if key in THRESHOLDS:
        THRESHOLDS[key] = value
        return True
    return False


def reset_thresholds() -> None:
    """Restore every threshold to its shipped default."""
    THRESHOLDS.clear()
    THRESHOLDS.update(DEFAULT_THRESHOLDS)
