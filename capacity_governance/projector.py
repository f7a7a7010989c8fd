"""Scenario projection: apply proposed changes and build the period/skill grid.

Projection never judges feasibility. Remaining capacity may go negative; the
constraint validator decides what that means.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .errors import ValidationError
from .models import CapacityPlan, Skill, WorkItem

ChangeKind = Literal[
    "ADD_ITEM",
    "REMOVE_ITEM",
    "MOVE_ITEM",
    "RESIZE_ITEM",
    "REPRIORITIZE",
    "ADD_CAPACITY",
    "REMOVE_CAPACITY",
]
ADD_ITEM: ChangeKind = "ADD_ITEM"
REMOVE_ITEM: ChangeKind = "REMOVE_ITEM"
MOVE_ITEM: ChangeKind = "MOVE_ITEM"
RESIZE_ITEM: ChangeKind = "RESIZE_ITEM"
REPRIORITIZE: ChangeKind = "REPRIORITIZE"
ADD_CAPACITY: ChangeKind = "ADD_CAPACITY"
REMOVE_CAPACITY: ChangeKind = "REMOVE_CAPACITY"
CHANGE_KINDS: Tuple[ChangeKind, ...] = (
    ADD_ITEM,
    REMOVE_ITEM,
    MOVE_ITEM,
    RESIZE_ITEM,
    REPRIORITIZE,
    ADD_CAPACITY,
    REMOVE_CAPACITY,
)

_REQUIRED_FIELDS: Dict[str, Tuple[str, ...]] = {
    ADD_ITEM: ("item",),
    REMOVE_ITEM: ("item_id",),
    MOVE_ITEM: ("item_id", "target_period"),
    RESIZE_ITEM: ("item_id", "new_duration"),
    REPRIORITIZE: ("item_id", "new_priority"),
    ADD_CAPACITY: ("skill",),
    REMOVE_CAPACITY: ("skill",),
}

GRID_COLUMNS = ["period", "label", "skill", "capacity", "allocated", "remaining", "utilization"]


@dataclass(frozen=True)
class ProposedChange:
    kind: ChangeKind
    item_id: Optional[str] = None
    item: Optional[WorkItem] = None
    target_period: Optional[int] = None
    new_duration: Optional[int] = None
    new_priority: Optional[float] = None
    skill: Optional[Skill] = None
    capacity_delta: float = 0.0

    def __post_init__(self) -> None:
        if self.kind not in CHANGE_KINDS:
            raise ValidationError(f"unsupported change kind '{self.kind}'")
        missing = [name for name in _REQUIRED_FIELDS[self.kind] if getattr(self, name) is None]
        if missing:
            raise ValidationError(f"{self.kind} change requires: {', '.join(missing)}")
        if self.new_duration is not None and (
            isinstance(self.new_duration, bool) or not isinstance(self.new_duration, int) or self.new_duration < 1
        ):
            raise ValidationError(f"new_duration must be a whole number of periods >= 1, got {self.new_duration!r}")
        if self.target_period is not None and (
            isinstance(self.target_period, bool) or not isinstance(self.target_period, int)
        ):
            raise ValidationError(f"target_period must be an integer, got {self.target_period!r}")
        if self.new_priority is not None and (
            isinstance(self.new_priority, bool) or not isinstance(self.new_priority, (int, float))
        ):
            raise ValidationError(f"new_priority must be a number, got {self.new_priority!r}")

    @classmethod
    def add_item(cls, item: WorkItem) -> "ProposedChange":
        return cls(kind=ADD_ITEM, item_id=item.id, item=item)

    @classmethod
    def remove_item(cls, item_id: str) -> "ProposedChange":
        return cls(kind=REMOVE_ITEM, item_id=item_id)

    @classmethod
    def move_item(cls, item_id: str, target_period: int) -> "ProposedChange":
        return cls(kind=MOVE_ITEM, item_id=item_id, target_period=target_period)

    @classmethod
    def resize_item(cls, item_id: str, new_duration: int) -> "ProposedChange":
        return cls(kind=RESIZE_ITEM, item_id=item_id, new_duration=new_duration)

    @classmethod
    def reprioritize(cls, item_id: str, new_priority: float) -> "ProposedChange":
        return cls(kind=REPRIORITIZE, item_id=item_id, new_priority=new_priority)

    @classmethod
    def add_capacity(cls, skill: Skill, hours: float) -> "ProposedChange":
        return cls(kind=ADD_CAPACITY, skill=skill, capacity_delta=float(hours))

    @classmethod
    def remove_capacity(cls, skill: Skill, hours: float) -> "ProposedChange":
        return cls(kind=REMOVE_CAPACITY, skill=skill, capacity_delta=float(hours))

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"kind": self.kind}
        for name in ("item_id", "target_period", "new_duration", "new_priority", "skill"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        if self.item is not None:
            payload["item"] = self.item.to_dict()
        if self.kind in (ADD_CAPACITY, REMOVE_CAPACITY):
            payload["capacity_delta"] = self.capacity_delta
        return payload


def capacity_adjustments(changes: Iterable[ProposedChange]) -> Dict[Skill, float]:
    """Net signed per-skill capacity delta expressed by a change list."""
    adjustments: Dict[Skill, float] = {}
    for change in changes:
        if change.kind == ADD_CAPACITY:
            adjustments[change.skill] = adjustments.get(change.skill, 0.0) + abs(change.capacity_delta)
        elif change.kind == REMOVE_CAPACITY:
            adjustments[change.skill] = adjustments.get(change.skill, 0.0) - abs(change.capacity_delta)
    return adjustments


def apply_changes(items: Iterable[WorkItem], changes: Sequence[ProposedChange]) -> List[WorkItem]:
    """Apply item changes in order to a copy of ``items``.

    Changes that name an item missing from the working set are skipped.
    Capacity changes do not touch items; see :func:`capacity_adjustments`.
    """
    working: Dict[str, WorkItem] = {item.id: replace(item) for item in items}
    for change in changes:
        if change.kind == ADD_ITEM:
            working[change.item.id] = replace(change.item)
        elif change.kind == REMOVE_ITEM:
            working.pop(change.item_id, None)
        elif change.item_id in working:
            existing = working[change.item_id]
            if change.kind == MOVE_ITEM:
                working[existing.id] = replace(existing, start_period=change.target_period)
            elif change.kind == RESIZE_ITEM:
                working[existing.id] = replace(existing, duration=change.new_duration)
            elif change.kind == REPRIORITIZE:
                working[existing.id] = replace(existing, priority=change.new_priority)
    return list(working.values())


@dataclass(frozen=True)
class PeriodCapacity:
    period: int
    capacity_by_skill: Dict[Skill, float]
    allocated_by_skill: Dict[Skill, float]
    remaining_by_skill: Dict[Skill, float]

    def skills(self) -> List[Skill]:
        return list(self.remaining_by_skill)

    def utilization(self, skill: Skill) -> float:
        capacity = self.capacity_by_skill.get(skill, 0.0)
        allocated = self.allocated_by_skill.get(skill, 0.0)
        if capacity > 0:
            return allocated / capacity
        return float("inf") if allocated > 0 else 0.0

    def to_dict(self) -> Dict[str, object]:
        return {
            "period": self.period,
            "capacity_by_skill": dict(self.capacity_by_skill),
            "allocated_by_skill": dict(self.allocated_by_skill),
            "remaining_by_skill": dict(self.remaining_by_skill),
        }


@dataclass(frozen=True)
class ProjectedItem:
    item_id: str
    start_period: Optional[int]
    end_period: Optional[int]
    dependencies_satisfied: bool

    def to_dict(self) -> Dict[str, object]:
        return {
            "item_id": self.item_id,
            "start_period": self.start_period,
            "end_period": self.end_period,
            "dependencies_satisfied": self.dependencies_satisfied,
        }


@dataclass(frozen=True)
class ProjectedScenario:
    items: Tuple[WorkItem, ...]
    periods: Tuple[PeriodCapacity, ...]
    total_demand: float
    total_capacity: float
    utilization: float
    projected_items: Tuple[ProjectedItem, ...] = ()
    capacity_adjustments: Dict[Skill, float] = field(default_factory=dict)

    def item(self, item_id: str) -> Optional[WorkItem]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def period(self, index: int) -> PeriodCapacity:
        return self.periods[index]

    def contention(self, index: int) -> List[Tuple[Skill, float]]:
        """Skills in a period ordered from most to least utilized."""
        cell = self.periods[index]
        ranked = [(skill, cell.utilization(skill)) for skill in cell.skills()]
        return sorted(ranked, key=lambda entry: entry[1], reverse=True)

    def to_frame(self, labels: Optional[Sequence[str]] = None) -> pd.DataFrame:
        rows = []
        for cell in self.periods:
            label = labels[cell.period] if labels and cell.period < len(labels) else f"P{cell.period}"
            for skill in cell.skills():
                rows.append(
                    {
                        "period": cell.period,
                        "label": label,
                        "skill": skill,
                        "capacity": round(cell.capacity_by_skill.get(skill, 0.0), 4),
                        "allocated": round(cell.allocated_by_skill.get(skill, 0.0), 4),
                        "remaining": round(cell.remaining_by_skill[skill], 4),
                        "utilization": round(cell.utilization(skill), 4),
                    }
                )
        return pd.DataFrame(rows, columns=GRID_COLUMNS)

    def to_dict(self) -> Dict[str, object]:
        return {
            "items": [item.to_dict() for item in self.items],
            "periods": [cell.to_dict() for cell in self.periods],
            "total_demand": self.total_demand,
            "total_capacity": self.total_capacity,
            "utilization": self.utilization,
            "projected_items": [entry.to_dict() for entry in self.projected_items],
            "capacity_adjustments": dict(self.capacity_adjustments),
        }


def _dependencies_satisfied(item: WorkItem, lookup: Mapping[str, WorkItem]) -> bool:
    if not item.dependencies:
        return True
    if item.start_period is None:
        return False
    for dep_id in item.dependencies:
        dep = lookup.get(dep_id)
        if dep is None or dep.finish_boundary is None or dep.finish_boundary > item.start_period:
            return False
    return True


class ScenarioProjector:
    """Builds projected scenarios against a fixed capacity plan."""

    def __init__(self, plan: CapacityPlan) -> None:
        self.plan = plan

    def project(
        self,
        items: Iterable[WorkItem],
        changes: Sequence[ProposedChange] = (),
        adjustments: Optional[Mapping[Skill, float]] = None,
    ) -> ProjectedScenario:
        working = apply_changes(items, changes)
        deltas = capacity_adjustments(changes)
        for skill, delta in (adjustments or {}).items():
            deltas[skill] = deltas.get(skill, 0.0) + float(delta)
        plan = self.plan.adjusted(deltas) if deltas else self.plan

        per_period_demand = {item.id: item.per_period_demand() for item in working}
        periods: List[PeriodCapacity] = []
        total_demand = 0.0
        total_capacity = 0.0
        for period in range(plan.periods):
            capacity = dict(plan.capacity_by_skill)
            allocated: Dict[Skill, float] = {}
            for item in working:
                if not item.is_active(period):
                    continue
                for skill, hours in per_period_demand[item.id].items():
                    allocated[skill] = allocated.get(skill, 0.0) + hours
                    capacity.setdefault(skill, 0.0)
            remaining = {skill: capacity[skill] - allocated.get(skill, 0.0) for skill in capacity}
            total_capacity += sum(capacity.values())
            total_demand += sum(allocated.values())
            periods.append(
                PeriodCapacity(
                    period=period,
                    capacity_by_skill=capacity,
                    allocated_by_skill=allocated,
                    remaining_by_skill=remaining,
                )
            )

        lookup = {item.id: item for item in working}
        projected_items = tuple(
            ProjectedItem(
                item_id=item.id,
                start_period=item.start_period,
                end_period=item.end_period,
                dependencies_satisfied=_dependencies_satisfied(item, lookup),
            )
            for item in working
        )
        return ProjectedScenario(
            items=tuple(working),
            periods=tuple(periods),
            total_demand=total_demand,
            total_capacity=total_capacity,
            utilization=total_demand / total_capacity if total_capacity > 0 else 0.0,
            projected_items=projected_items,
            capacity_adjustments=deltas,
        )
