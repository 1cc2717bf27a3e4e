"""Launch rollup arithmetic.

Pure functions over task/deliverable collections; the service layer writes
the results back onto workstream, phase, week and launch rows.

Rules:
  - Workstream %: binary task completion ratio (completed / total × 100).
  - Phase %: simple mean of member tasks' ``completion_pct``.
  - Launch %: simple mean of every task's ``completion_pct``.
  - Week %: completed / applicable deliverables (``not_applicable`` excluded).
  - Every function returns 0.0 for an empty input, never NaN.
"""

from __future__ import annotations

from typing import Iterable

from app.utils.helpers import safe_pct


def _status(item) -> str:
    return item["status"] if isinstance(item, dict) else item.status


def _pct(item) -> int:
    value = item["completion_pct"] if isinstance(item, dict) else item.completion_pct
    return value or 0


def workstream_counts(tasks: Iterable) -> tuple[int, int, float]:
    """Return ``(total_tasks, completed_tasks, completion_pct)``."""
    tasks = list(tasks)
    total = len(tasks)
    completed = sum(1 for t in tasks if _status(t) == "completed")
    return total, completed, safe_pct(completed, total)


def mean_completion_pct(tasks: Iterable) -> float:
    """Mean of ``completion_pct`` across tasks (0.0 when there are none)."""
    values = [_pct(t) for t in tasks]
    if not values:
        return 0.0
    return round(sum(values) / len(values), 1)


def week_completion_pct(deliverables: Iterable) -> float:
    """Share of applicable deliverables that are completed."""
    applicable = [d for d in deliverables if _status(d) != "not_applicable"]
    completed = sum(1 for d in applicable if _status(d) == "completed")
    return safe_pct(completed, len(applicable))
