from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .dependency_graph import DependencyGraph
from .models import CapacityPlan, Skill, WorkItem

EPSILON = 1e-6

logger = logging.getLogger(__name__)

SCHEDULE_COLUMNS = ["item_id", "title", "start_period", "end_period", "duration", "fallback", "assigned_capacity"]


@dataclass(frozen=True)
class ScheduledItem:
    """Placement of one item. ``end_period`` is the last active period and may
    lie past the horizon for fallback placements."""

    item_id: str
    start_period: int
    end_period: int
    assigned_capacity: Dict[Skill, float] = field(default_factory=dict)
    fallback: bool = False

    def to_dict(self) -> Dict[str, object]:
        return {
            "item_id": self.item_id,
            "start_period": self.start_period,
            "end_period": self.end_period,
            "assigned_capacity": dict(self.assigned_capacity),
            "fallback": self.fallback,
        }


@dataclass
class PeriodAllocation:
    capacity_by_skill: Dict[Skill, float]
    allocated_by_skill: Dict[Skill, float] = field(default_factory=dict)

    def remaining(self, skill: Skill) -> float:
        return self.capacity_by_skill.get(skill, 0.0) - self.allocated_by_skill.get(skill, 0.0)

    def fits(self, skill: Skill, hours: float) -> bool:
        return hours <= self.remaining(skill) + EPSILON

    def assign(self, skill: Skill, hours: float) -> None:
        if hours <= 0:
            return
        self.allocated_by_skill[skill] = self.allocated_by_skill.get(skill, 0.0) + hours


class AllocationTable:
    """Running per-period, per-skill allocation used while placing items."""

    def __init__(self, plan: CapacityPlan) -> None:
        self.plan = plan
        self.periods: List[PeriodAllocation] = [
            PeriodAllocation(capacity_by_skill=dict(plan.capacity_by_skill)) for _ in range(plan.periods)
        ]

    def seed(self, items: Iterable[WorkItem]) -> None:
        for item in items:
            if item.start_period is not None:
                self.assign(item, item.start_period)

    def fits(self, item: WorkItem, start: int) -> bool:
        if start < 0 or start + item.duration > self.plan.periods:
            return False
        demand = item.per_period_demand()
        for period in range(start, start + item.duration):
            cell = self.periods[period]
            for skill, hours in demand.items():
                if not cell.fits(skill, hours):
                    return False
        return True

    def assign(self, item: WorkItem, start: int) -> Dict[Skill, float]:
        """Consume the item's spread demand; periods past the horizon are dropped."""
        demand = item.per_period_demand()
        assigned: Dict[Skill, float] = {}
        for period in range(start, min(start + item.duration, self.plan.periods)):
            cell = self.periods[period]
            for skill, hours in demand.items():
                cell.assign(skill, hours)
                assigned[skill] = assigned.get(skill, 0.0) + hours
        return assigned


class GreedyScheduler:
    """First-fit forward placement in dependency order.

    Items are visited in topological order (priority, then insertion order, as
    tie-break). Each lands in the earliest window after its dependencies where
    every period has room for its spread demand; when no window fits inside the
    horizon it is placed at the dependency-earliest period regardless.
    """

    def __init__(self, plan: CapacityPlan) -> None:
        self.plan = plan

    def schedule(
        self,
        items: Sequence[WorkItem],
        committed: Sequence[WorkItem] = (),
    ) -> List[ScheduledItem]:
        """Place ``items`` around the already-committed items.

        ``committed`` items outside the batch keep their placement, consume
        capacity and count as dependencies. Raises ``CycleError`` or
        ``ValidationError`` when the combined set is not a valid graph.
        """
        batch_ids = {item.id for item in items}
        context = [item for item in committed if item.id not in batch_ids]
        graph = DependencyGraph([*context, *items])
        table = AllocationTable(self.plan)
        table.seed(context)

        ends: Dict[str, int] = {item.id: item.end_period for item in context if item.end_period is not None}
        placed: List[ScheduledItem] = []
        for item in graph.topological_items():
            if item.id not in batch_ids:
                continue
            earliest = self.earliest_start(item, ends)
            start = self._first_fit(table, item, earliest)
            fallback = start is None
            if start is None:
                start = earliest
                logger.warning(
                    "No feasible window for %s within %d periods; placing at period %d",
                    item.id,
                    self.plan.periods,
                    start,
                )
            assigned = table.assign(item, start)
            end = start + item.duration - 1
            ends[item.id] = end
            placed.append(
                ScheduledItem(
                    item_id=item.id,
                    start_period=start,
                    end_period=end,
                    assigned_capacity=assigned,
                    fallback=fallback,
                )
            )
            logger.debug("Placed %s at period %d (fallback=%s)", item.id, start, fallback)
        return placed

    @staticmethod
    def earliest_start(item: WorkItem, ends: Dict[str, int]) -> int:
        earliest = 0
        for dep_id in item.dependencies:
            if dep_id in ends:
                earliest = max(earliest, ends[dep_id] + 1)
        return earliest

    def _first_fit(self, table: AllocationTable, item: WorkItem, earliest: int) -> Optional[int]:
        for start in range(earliest, self.plan.periods - item.duration + 1):
            if table.fits(item, start):
                return start
        return None


def schedule_frame(schedule: Sequence[ScheduledItem], items: Dict[str, WorkItem]) -> pd.DataFrame:
    rows = []
    for entry in schedule:
        item = items.get(entry.item_id)
        rows.append(
            {
                "item_id": entry.item_id,
                "title": item.title if item else "",
                "start_period": entry.start_period,
                "end_period": entry.end_period,
                "duration": item.duration if item else entry.end_period - entry.start_period + 1,
                "fallback": entry.fallback,
                "assigned_capacity": ";".join(
                    f"{skill}={hours:.1f}" for skill, hours in sorted(entry.assigned_capacity.items())
                ),
            }
        )
    return pd.DataFrame(rows, columns=SCHEDULE_COLUMNS)
