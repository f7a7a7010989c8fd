from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, Literal, Mapping, Optional, Tuple

from .errors import CycleError, ValidationError


State = str
Skill = str

BACKLOG: State = "backlog"
READY: State = "ready"
PLANNED: State = "planned"
IN_PROGRESS: State = "in_progress"
REVIEW: State = "review"
BLOCKED: State = "blocked"
DONE: State = "done"

WORKFLOW_STATES: Tuple[State, ...] = (BACKLOG, READY, PLANNED, IN_PROGRESS, REVIEW, DONE, BLOCKED)

ViolationCode = Literal[
    "DEPENDENCY_CYCLE",
    "DEPENDENCY_NOT_SCHEDULED",
    "CAPACITY_EXCEEDED",
    "INVALID_STATE_TRANSITION",
]
WarningCode = Literal["NEAR_CAPACITY", "TIGHT_DEPENDENCY_CHAIN"]
Severity = Literal["critical", "high", "medium"]

DEPENDENCY_CYCLE: ViolationCode = "DEPENDENCY_CYCLE"
DEPENDENCY_NOT_SCHEDULED: ViolationCode = "DEPENDENCY_NOT_SCHEDULED"
CAPACITY_EXCEEDED: ViolationCode = "CAPACITY_EXCEEDED"
INVALID_STATE_TRANSITION: ViolationCode = "INVALID_STATE_TRANSITION"

NEAR_CAPACITY: WarningCode = "NEAR_CAPACITY"
TIGHT_DEPENDENCY_CHAIN: WarningCode = "TIGHT_DEPENDENCY_CHAIN"

CRITICAL: Severity = "critical"
HIGH: Severity = "high"
MEDIUM: Severity = "medium"


@dataclass(frozen=True)
class WorkItem:
    """A schedulable unit of work.

    ``demand_by_skill`` holds total hours over the full duration; projection
    spreads them evenly across the active periods. ``start_period`` is ``None``
    until the item is scheduled (negative values are read as unscheduled).
    """

    id: str
    title: str = ""
    state: State = BACKLOG
    history: Tuple[State, ...] = ()
    duration: int = 1
    dependencies: Tuple[str, ...] = ()
    demand_by_skill: Dict[Skill, float] = field(default_factory=dict)
    priority: float = 0
    start_period: Optional[int] = None
    metadata: Dict[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.id or not isinstance(self.id, str):
            raise ValidationError("work item id must be a non-empty string")
        if isinstance(self.duration, bool) or not isinstance(self.duration, int) or self.duration < 1:
            raise ValidationError(
                f"work item '{self.id}' duration must be a whole number of periods >= 1",
                {"item_id": self.id, "duration": self.duration},
            )
        if not isinstance(self.state, str) or not self.state:
            raise ValidationError(f"work item '{self.id}' state must be a non-empty string")
        if isinstance(self.dependencies, (str, bytes)) or not isinstance(self.dependencies, Iterable):
            raise ValidationError(
                f"work item '{self.id}' dependencies must be a list of item ids",
                {"item_id": self.id},
            )
        dependencies = tuple(str(dep) for dep in self.dependencies)
        if self.id in dependencies:
            raise CycleError(
                f"work item '{self.id}' cannot depend on itself",
                cycles=[[self.id, self.id]],
                items=[self.id],
            )
        if not isinstance(self.demand_by_skill, Mapping):
            raise ValidationError(
                f"work item '{self.id}' demand_by_skill must map skills to hours",
                {"item_id": self.id},
            )
        if not isinstance(self.metadata, Mapping):
            raise ValidationError(f"work item '{self.id}' metadata must be an object", {"item_id": self.id})
        demand: Dict[Skill, float] = {}
        for skill, hours in self.demand_by_skill.items():
            if isinstance(hours, bool) or not isinstance(hours, (int, float)):
                raise ValidationError(
                    f"work item '{self.id}' demand for skill '{skill}' must be a number of hours",
                    {"item_id": self.id, "skill": skill},
                )
            value = float(hours)
            if value < 0:
                raise ValidationError(
                    f"work item '{self.id}' has negative demand for skill '{skill}'",
                    {"item_id": self.id, "skill": skill},
                )
            demand[str(skill)] = value
        if isinstance(self.priority, bool) or not isinstance(self.priority, (int, float)):
            raise ValidationError(f"work item '{self.id}' priority must be a number")
        start = self.start_period
        if start is not None:
            if isinstance(start, bool) or not isinstance(start, int):
                raise ValidationError(f"work item '{self.id}' start_period must be an integer or None")
            if start < 0:
                start = None
        object.__setattr__(self, "dependencies", dependencies)
        object.__setattr__(self, "demand_by_skill", demand)
        object.__setattr__(self, "start_period", start)
        object.__setattr__(self, "history", tuple(self.history) or (self.state,))
        object.__setattr__(self, "metadata", dict(self.metadata))

    @property
    def is_scheduled(self) -> bool:
        return self.start_period is not None

    @property
    def end_period(self) -> Optional[int]:
        """Last period the item is active in (inclusive)."""
        if self.start_period is None:
            return None
        return self.start_period + self.duration - 1

    @property
    def finish_boundary(self) -> Optional[int]:
        """First period after the item completes."""
        if self.start_period is None:
            return None
        return self.start_period + self.duration

    def is_active(self, period: int) -> bool:
        if self.start_period is None:
            return False
        return self.start_period <= period < self.start_period + self.duration

    def per_period_demand(self) -> Dict[Skill, float]:
        return {skill: hours / self.duration for skill, hours in self.demand_by_skill.items()}

    def demands(self, skill: Skill) -> bool:
        return skill in self.demand_by_skill

    def visited(self, state: State) -> bool:
        return state in self.history

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "title": self.title,
            "state": self.state,
            "history": list(self.history),
            "duration": self.duration,
            "dependencies": list(self.dependencies),
            "demand_by_skill": dict(self.demand_by_skill),
            "priority": self.priority,
            "start_period": self.start_period,
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class CapacityPlan:
    """Hours available per skill in every period of the horizon."""

    periods: int
    capacity_by_skill: Dict[Skill, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if isinstance(self.periods, bool) or not isinstance(self.periods, int) or self.periods < 0:
            raise ValidationError("capacity plan periods must be a non-negative integer")
        capacity: Dict[Skill, float] = {}
        for skill, hours in dict(self.capacity_by_skill).items():
            value = float(hours)
            if value < 0:
                raise ValidationError(f"capacity for skill '{skill}' must not be negative")
            capacity[str(skill)] = value
        object.__setattr__(self, "capacity_by_skill", capacity)

    def capacity_for(self, skill: Skill) -> float:
        return self.capacity_by_skill.get(skill, 0.0)

    def skills(self) -> Iterable[Skill]:
        return self.capacity_by_skill.keys()

    def adjusted(self, deltas: Optional[Mapping[Skill, float]]) -> "CapacityPlan":
        """Return a copy with signed per-skill deltas applied, floored at zero."""
        capacity = dict(self.capacity_by_skill)
        for skill, delta in (deltas or {}).items():
            capacity[skill] = max(0.0, capacity.get(skill, 0.0) + float(delta))
        return CapacityPlan(periods=self.periods, capacity_by_skill=capacity)

    def to_dict(self) -> Dict[str, object]:
        return {"periods": self.periods, "capacity_by_skill": dict(self.capacity_by_skill)}


@dataclass(frozen=True)
class Violation:
    code: str
    severity: Severity
    message: str
    affected_items: Tuple[str, ...] = ()
    detail: Dict[str, object] = field(default_factory=dict)

    @property
    def identity(self) -> Tuple[str, str]:
        return (self.code, self.message)

    def to_dict(self) -> Dict[str, object]:
        return {
            "code": self.code,
            "severity": self.severity,
            "message": self.message,
            "affected_items": list(self.affected_items),
            "detail": dict(self.detail),
        }


@dataclass(frozen=True)
class ConstraintWarning:
    code: str
    message: str
    affected_items: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {"code": self.code, "message": self.message, "affected_items": list(self.affected_items)}


@dataclass(frozen=True)
class GovernanceConfig:
    near_capacity_threshold: float = 0.8
    critical_overage_ratio: float = 0.5
    tight_chain_length: int = 3
    high_utilization_threshold: float = 0.95
    ready_dependency_states: Tuple[State, ...] = (DONE, REVIEW)
    work_starting_states: Tuple[State, ...] = (IN_PROGRESS,)
    logging_level: str = "INFO"
    planning_start: Optional[date] = None
    period_months: int = 3

    def is_ready_state(self, state: State) -> bool:
        return state in self.ready_dependency_states

    def starts_work(self, state: State) -> bool:
        return state in self.work_starting_states
