"""Partial-update payloads for launch entities.

Each mutable entity gets an explicit dataclass whose fields default to
``UNSET`` ("leave unchanged"). An explicit ``None`` clears the field, except
for fields listed in ``_non_nullable``, which reject it. Blueprints build them
with ``from_dict`` (unknown keys and malformed values are rejected up front);
services call ``validate()`` and apply ``changes()``.

Usage:
    from app.services.launch_payloads import TaskUpdate
    payload = TaskUpdate.from_dict({"status": "completed", "assigned_to": None})
    launch_service.update_task(task_id, payload)
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from typing import Any, Callable, ClassVar

from app.core.exceptions import ValidationError
from app.models.launch import (
    DELIVERABLE_STATUSES,
    LAUNCH_STATUSES,
    PHASE_NAMES,
    PHASE_STATUSES,
    RISK_SEVERITIES,
    RISK_STATUSES,
    TASK_STATUSES,
)
from app.utils.helpers import parse_date_input, parse_datetime_input


# ── Coercers ─────────────────────────────────────────────────────────────────

def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise TypeError("must be a boolean")


def _as_str(value: Any) -> str:
    if isinstance(value, str):
        return value.strip()
    raise TypeError("must be a string")


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        raise TypeError("must be an integer")
    return int(value)


def _as_float(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("must be a number")
    return float(value)


def _as_id_list(value: Any) -> list[int]:
    if not isinstance(value, (list, tuple)):
        raise TypeError("must be a list of ids")
    return [_as_int(v) for v in value]


def _as_list(value: Any) -> list:
    if not isinstance(value, (list, tuple)):
        raise TypeError("must be a list")
    return list(value)


class _Unset:
    """Marker for a payload field the caller did not supply."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()


def _supplied(value: Any) -> bool:
    return value is not UNSET and value is not None


def _check_enum(errors: dict, name: str, value: Any, allowed) -> None:
    if _supplied(value) and value not in allowed:
        errors[name] = f"Invalid {name}: '{value}'. Allowed: {sorted(allowed)}"


def _check_range(errors: dict, name: str, value: Any, low: float, high: float) -> None:
    if _supplied(value) and not (low <= value <= high):
        errors[name] = f"{name} must be between {low} and {high}"


# ── Base ─────────────────────────────────────────────────────────────────────

@dataclass
class _PartialUpdate:
    """Common ``from_dict`` / ``changes`` behaviour for update payloads."""

    _coercers: ClassVar[dict[str, Callable[[Any], Any]]] = {}
    _entity: ClassVar[str] = "entity"
    _non_nullable: ClassVar[frozenset[str]] = frozenset()

    @classmethod
    def from_dict(cls, data: dict | None):
        data = data or {}
        allowed = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - allowed)
        if unknown:
            raise ValidationError(
                f"Unknown or read-only {cls._entity} field(s): {', '.join(unknown)}",
                details={name: "unknown or read-only field" for name in unknown},
            )

        kwargs: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name, value in data.items():
            if value is None:
                kwargs[name] = None
                continue
            coerce = cls._coercers.get(name, lambda v: v)
            try:
                kwargs[name] = coerce(value)
            except (TypeError, ValueError) as exc:
                errors[name] = str(exc)
        if errors:
            raise ValidationError(f"Invalid {cls._entity} update", details=errors)

        payload = cls(**kwargs)
        payload.validate()
        return payload

    def validate(self) -> None:
        errors: dict[str, str] = {}
        for name in sorted(self._non_nullable):
            if getattr(self, name) is None:
                errors[name] = f"{name} cannot be null"
        self._collect_errors(errors)
        if errors:
            raise ValidationError(f"Invalid {self._entity} update", details=errors)

    def _collect_errors(self, errors: dict[str, str]) -> None:
        pass

    def changes(self) -> dict[str, Any]:
        """Return the supplied fields; ``None`` values are clears."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


# ── Entities ─────────────────────────────────────────────────────────────────

@dataclass
class TaskUpdate(_PartialUpdate):
    status: str | None = UNSET
    completion_pct: int | None = UNSET
    completed_date: date | None = UNSET
    task_name: str | None = UNSET
    description: str | None = UNSET
    is_required: bool | None = UNSET
    is_gate_blocker: bool | None = UNSET
    assigned_to: str | None = UNSET
    assigned_role: str | None = UNSET
    due_date: date | None = UNSET
    start_date: date | None = UNSET
    workstream_id: int | None = UNSET
    phase_name: str | None = UNSET
    depends_on_task_ids: list[int] | None = UNSET
    blocks_task_ids: list[int] | None = UNSET
    estimated_hours: float | None = UNSET
    actual_hours: float | None = UNSET
    notes: str | None = UNSET

    _entity: ClassVar[str] = "task"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "status", "completion_pct", "task_name", "is_required", "is_gate_blocker",
        "depends_on_task_ids", "blocks_task_ids",
    })
    _coercers: ClassVar[dict] = {
        "status": _as_str,
        "completion_pct": _as_int,
        "completed_date": parse_date_input,
        "task_name": _as_str,
        "description": _as_str,
        "is_required": _as_bool,
        "is_gate_blocker": _as_bool,
        "assigned_to": _as_str,
        "assigned_role": _as_str,
        "due_date": parse_date_input,
        "start_date": parse_date_input,
        "workstream_id": _as_int,
        "phase_name": _as_str,
        "depends_on_task_ids": _as_id_list,
        "blocks_task_ids": _as_id_list,
        "estimated_hours": _as_float,
        "actual_hours": _as_float,
        "notes": _as_str,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "status", self.status, TASK_STATUSES)
        _check_enum(errors, "phase_name", self.phase_name, PHASE_NAMES)
        _check_range(errors, "completion_pct", self.completion_pct, 0, 100)
        if self.task_name == "":
            errors["task_name"] = "task_name cannot be empty"


@dataclass
class RiskUpdate(_PartialUpdate):
    severity: str | None = UNSET
    status: str | None = UNSET
    risk_title: str | None = UNSET
    risk_description: str | None = UNSET
    probability: str | None = UNSET
    impact_description: str | None = UNSET
    owner_id: str | None = UNSET
    mitigation_plan: str | None = UNSET
    mitigation_actions: list | None = UNSET
    target_resolution_date: date | None = UNSET
    resolved_date: date | None = UNSET
    phase_name: str | None = UNSET
    workstream_id: int | None = UNSET
    ai_detected: bool | None = UNSET
    ai_confidence: float | None = UNSET

    _entity: ClassVar[str] = "risk"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "severity", "status", "risk_title", "mitigation_actions", "ai_detected",
    })
    _coercers: ClassVar[dict] = {
        "severity": _as_str,
        "status": _as_str,
        "risk_title": _as_str,
        "risk_description": _as_str,
        "probability": _as_str,
        "impact_description": _as_str,
        "owner_id": _as_str,
        "mitigation_plan": _as_str,
        "mitigation_actions": _as_list,
        "target_resolution_date": parse_date_input,
        "resolved_date": parse_date_input,
        "phase_name": _as_str,
        "workstream_id": _as_int,
        "ai_detected": _as_bool,
        "ai_confidence": _as_float,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "severity", self.severity, RISK_SEVERITIES)
        _check_enum(errors, "status", self.status, RISK_STATUSES)
        _check_enum(errors, "phase_name", self.phase_name, PHASE_NAMES)
        _check_range(errors, "ai_confidence", self.ai_confidence, 0.0, 1.0)
        if self.risk_title == "":
            errors["risk_title"] = "risk_title cannot be empty"


@dataclass
class DeliverableUpdate(_PartialUpdate):
    status: str | None = UNSET
    completed_at: datetime | None = UNSET
    completed_by: str | None = UNSET
    evidence_url: str | None = UNSET
    notes: str | None = UNSET
    is_critical: bool | None = UNSET
    due_day: int | None = UNSET
    deliverable_name: str | None = UNSET
    deliverable_description: str | None = UNSET
    week_id: int | None = UNSET

    _entity: ClassVar[str] = "deliverable"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "status", "is_critical", "deliverable_name",
    })
    _coercers: ClassVar[dict] = {
        "status": _as_str,
        "completed_at": parse_datetime_input,
        "completed_by": _as_str,
        "evidence_url": _as_str,
        "notes": _as_str,
        "is_critical": _as_bool,
        "due_day": _as_int,
        "deliverable_name": _as_str,
        "deliverable_description": _as_str,
        "week_id": _as_int,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "status", self.status, DELIVERABLE_STATUSES)
        if _supplied(self.due_day) and self.due_day < 0:
            errors["due_day"] = "due_day cannot be negative"


@dataclass
class LaunchUpdate(_PartialUpdate):
    launch_name: str | None = UNSET
    status: str | None = UNSET
    launch_owner_id: str | None = UNSET
    executive_sponsor_id: str | None = UNSET
    target_open_date: date | None = UNSET
    planned_start_date: date | None = UNSET
    actual_open_date: date | None = UNSET
    stabilization_target_date: date | None = UNSET
    approved_budget: float | None = UNSET
    actual_cost: float | None = UNSET
    is_partner_clinic: bool | None = UNSET

    _entity: ClassVar[str] = "launch"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "launch_name", "status", "target_open_date", "is_partner_clinic",
    })
    _coercers: ClassVar[dict] = {
        "launch_name": _as_str,
        "status": _as_str,
        "launch_owner_id": _as_str,
        "executive_sponsor_id": _as_str,
        "target_open_date": parse_date_input,
        "planned_start_date": parse_date_input,
        "actual_open_date": parse_date_input,
        "stabilization_target_date": parse_date_input,
        "approved_budget": _as_float,
        "actual_cost": _as_float,
        "is_partner_clinic": _as_bool,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "status", self.status, LAUNCH_STATUSES)
        if _supplied(self.actual_cost) and self.actual_cost < 0:
            errors["actual_cost"] = "actual_cost cannot be negative"
        if self.launch_name == "":
            errors["launch_name"] = "launch_name cannot be empty"


@dataclass
class WorkstreamUpdate(_PartialUpdate):
    workstream_name: str | None = UNSET
    description: str | None = UNSET
    owner_id: str | None = UNSET
    owner_role: str | None = UNSET
    status: str | None = UNSET
    start_date: date | None = UNSET
    target_end_date: date | None = UNSET
    actual_end_date: date | None = UNSET

    _entity: ClassVar[str] = "workstream"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "workstream_name", "status",
    })
    _coercers: ClassVar[dict] = {
        "workstream_name": _as_str,
        "description": _as_str,
        "owner_id": _as_str,
        "owner_role": _as_str,
        "status": _as_str,
        "start_date": parse_date_input,
        "target_end_date": parse_date_input,
        "actual_end_date": parse_date_input,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "status", self.status, PHASE_STATUSES)


@dataclass
class WeekUpdate(_PartialUpdate):
    week_label: str | None = UNSET
    week_objective: str | None = UNSET
    key_actions: list | None = UNSET
    status: str | None = UNSET
    notes: str | None = UNSET

    _entity: ClassVar[str] = "week"
    _non_nullable: ClassVar[frozenset[str]] = frozenset({
        "week_label", "status", "key_actions",
    })
    _coercers: ClassVar[dict] = {
        "week_label": _as_str,
        "week_objective": _as_str,
        "key_actions": _as_list,
        "status": _as_str,
        "notes": _as_str,
    }

    def _collect_errors(self, errors):
        _check_enum(errors, "status", self.status, PHASE_STATUSES)
