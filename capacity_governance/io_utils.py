from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import pandas as pd
from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta

from .lifecycle import LifecycleGraph
from .models import WORKFLOW_STATES, CapacityPlan, GovernanceConfig, WorkItem
from .projector import CHANGE_KINDS, ProposedChange

MONTH_FMT = "%Y-%m"

_ITEM_FIELDS = {
    "id",
    "title",
    "state",
    "history",
    "duration",
    "dependencies",
    "demand_by_skill",
    "priority",
    "start_period",
    "metadata",
}


def _read_json(path: str | Path, label: str) -> object:
    try:
        return json.loads(Path(path).read_text())
    except json.JSONDecodeError as exc:
        raise ValueError(f"{label} file is not valid JSON: {exc}") from exc


def _number(value: object, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    return float(value)


def _ratio(data: Mapping[str, object], key: str, default: float) -> float:
    value = _number(data.get(key, default), key)
    if not (0 < value <= 1):
        raise ValueError(f"{key} must be in (0, 1]")
    return value


def _state_list(data: Mapping[str, object], key: str, default: Sequence[str]) -> tuple:
    raw = data.get(key, list(default))
    if not isinstance(raw, list) or not all(isinstance(state, str) and state for state in raw):
        raise ValueError(f"{key} must be an array of state names")
    return tuple(raw)


def load_config(path: str | Path) -> GovernanceConfig:
    data = _read_json(path, "config")
    if not isinstance(data, dict):
        raise ValueError("config file must be a JSON object")
    near_capacity = _ratio(data, "near_capacity_threshold", 0.8)
    critical_ratio = _number(data.get("critical_overage_ratio", 0.5), "critical_overage_ratio")
    if critical_ratio < 0:
        raise ValueError("critical_overage_ratio must not be negative")
    high_utilization = _ratio(data, "high_utilization_threshold", 0.95)
    chain_length = data.get("tight_chain_length", 3)
    if isinstance(chain_length, bool) or not isinstance(chain_length, int) or chain_length < 2:
        raise ValueError("tight_chain_length must be an integer >= 2")
    period_months = data.get("period_months", 3)
    if isinstance(period_months, bool) or not isinstance(period_months, int) or period_months <= 0:
        raise ValueError("period_months must be a positive integer")
    planning_start_raw = data.get("planning_start")
    planning_start: Optional[date]
    if planning_start_raw is None:
        planning_start = None
    else:
        try:
            planning_start = dateparser.isoparse(planning_start_raw).date()
        except (ValueError, TypeError) as exc:
            raise ValueError("planning_start must be null or an ISO date string") from exc
    logging_level = data.get("logging_level", "INFO")
    if not isinstance(logging_level, str):
        raise ValueError("logging_level must be a string")
    return GovernanceConfig(
        near_capacity_threshold=near_capacity,
        critical_overage_ratio=critical_ratio,
        tight_chain_length=chain_length,
        high_utilization_threshold=high_utilization,
        ready_dependency_states=_state_list(data, "ready_dependency_states", ("done", "review")),
        work_starting_states=_state_list(data, "work_starting_states", ("in_progress",)),
        logging_level=logging_level,
        planning_start=planning_start,
        period_months=period_months,
    )


def load_capacity_plan(path: str | Path) -> CapacityPlan:
    data = _read_json(path, "capacity")
    if not isinstance(data, dict):
        raise ValueError("capacity file must be a JSON object")
    periods = data.get("periods")
    if isinstance(periods, bool) or not isinstance(periods, int) or periods <= 0:
        raise ValueError("periods must be a positive integer")
    capacity = data.get("capacity_by_skill")
    if not isinstance(capacity, dict) or not capacity:
        raise ValueError("capacity_by_skill must be a non-empty object")
    hours = {str(skill): _number(value, f"capacity_by_skill[{skill}]") for skill, value in capacity.items()}
    return CapacityPlan(periods=periods, capacity_by_skill=hours)


def _parse_item(entry: object, index: int) -> WorkItem:
    if not isinstance(entry, dict):
        raise ValueError(f"work item #{index + 1} must be an object")
    unknown = sorted(set(entry) - _ITEM_FIELDS)
    if unknown:
        raise ValueError(f"work item #{index + 1} has unsupported fields: {', '.join(unknown)}")
    item_id = entry.get("id")
    if not item_id or not isinstance(item_id, str):
        raise ValueError(f"work item #{index + 1} requires a string id")
    dependencies = entry.get("dependencies", [])
    if not isinstance(dependencies, list):
        raise ValueError(f"dependencies for {item_id} must be an array")
    demand = entry.get("demand_by_skill", {})
    if not isinstance(demand, dict):
        raise ValueError(f"demand_by_skill for {item_id} must be an object")
    history = entry.get("history", [])
    if not isinstance(history, list):
        raise ValueError(f"history for {item_id} must be an array")
    metadata = entry.get("metadata", {})
    if not isinstance(metadata, dict):
        raise ValueError(f"metadata for {item_id} must be an object")
    return WorkItem(
        id=item_id,
        title=str(entry.get("title", "") or ""),
        state=str(entry.get("state", "backlog")),
        history=tuple(str(state) for state in history),
        duration=entry.get("duration", 1),
        dependencies=tuple(str(dep) for dep in dependencies),
        demand_by_skill={str(skill): _number(value, f"demand_by_skill[{skill}]") for skill, value in demand.items()},
        priority=_number(entry.get("priority", 0), f"priority for {item_id}"),
        start_period=entry.get("start_period"),
        metadata=metadata,
    )


def parse_work_items(data: object) -> List[WorkItem]:
    if not isinstance(data, list):
        raise ValueError("items file must be a JSON array")
    items = [_parse_item(entry, index) for index, entry in enumerate(data)]
    seen = set()
    for item in items:
        if item.id in seen:
            raise ValueError(f"duplicate work item id '{item.id}'")
        seen.add(item.id)
    return items


def load_work_items(path: str | Path) -> List[WorkItem]:
    return parse_work_items(_read_json(path, "items"))


def _parse_change(entry: object, index: int) -> ProposedChange:
    if not isinstance(entry, dict):
        raise ValueError(f"change #{index + 1} must be an object")
    kind = entry.get("kind")
    if kind not in CHANGE_KINDS:
        raise ValueError(f"change #{index + 1} has unsupported kind '{kind}'")
    item = _parse_item(entry["item"], index) if entry.get("item") is not None else None
    delta = entry.get("capacity_delta", 0.0)
    return ProposedChange(
        kind=kind,
        item_id=entry.get("item_id") or (item.id if item else None),
        item=item,
        target_period=entry.get("target_period"),
        new_duration=entry.get("new_duration"),
        new_priority=entry.get("new_priority"),
        skill=entry.get("skill"),
        capacity_delta=_number(delta, f"capacity_delta for change #{index + 1}"),
    )


def load_changes(path: str | Path) -> List[ProposedChange]:
    data = _read_json(path, "changes")
    if not isinstance(data, list):
        raise ValueError("changes file must be a JSON array")
    return [_parse_change(entry, index) for index, entry in enumerate(data)]


def load_lifecycle(path: str | Path) -> LifecycleGraph:
    graph = LifecycleGraph(_read_json(path, "lifecycle"))
    result = graph.validate()
    if not result.valid:
        raise ValueError("invalid lifecycle definition: " + "; ".join(result.errors))
    return graph


def period_labels(config: GovernanceConfig, periods: int) -> List[str]:
    """Human label per period: the start month when a planning start is known."""
    if config.planning_start is None:
        return [f"P{index}" for index in range(periods)]
    start = date(config.planning_start.year, config.planning_start.month, 1)
    return [
        (start + relativedelta(months=index * config.period_months)).strftime(MONTH_FMT)
        for index in range(periods)
    ]


def unknown_states(items: Sequence[WorkItem], lifecycle: Optional[LifecycleGraph] = None) -> List[str]:
    known = lifecycle.states if lifecycle is not None else WORKFLOW_STATES
    return sorted({item.state for item in items if item.state not in known})


def ensure_directory(path: str | Path) -> Path:
    target = Path(path)
    target.mkdir(parents=True, exist_ok=True)
    return target


def write_json(payload: object, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_text(json.dumps(payload, indent=2, default=str) + "\n")


def write_csv(df: pd.DataFrame, path: str | Path) -> None:
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)
