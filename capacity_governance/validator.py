"""Constraint evaluation over a projected scenario."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .dependency_graph import DependencyGraph, dependency_depths
from .models import (
    CAPACITY_EXCEEDED,
    CRITICAL,
    DEPENDENCY_CYCLE,
    DEPENDENCY_NOT_SCHEDULED,
    HIGH,
    NEAR_CAPACITY,
    TIGHT_DEPENDENCY_CHAIN,
    ConstraintWarning,
    GovernanceConfig,
    Skill,
    Violation,
    WorkItem,
)
from .projector import PeriodCapacity, ProjectedScenario

EPSILON = 1e-6

Finding = Union[Violation, ConstraintWarning]
Evaluator = Callable[[Sequence[WorkItem], ProjectedScenario], Iterable[Finding]]


@dataclass(frozen=True)
class ValidationOutcome:
    violations: Tuple[Violation, ...] = ()
    warnings: Tuple[ConstraintWarning, ...] = ()

    @property
    def feasible(self) -> bool:
        return not self.violations

    def to_dict(self) -> Dict[str, object]:
        return {
            "feasible": self.feasible,
            "violations": [violation.to_dict() for violation in self.violations],
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


def _label(item: WorkItem) -> str:
    return item.title or item.id


def cycle_violation(cycle: Sequence[str], prefix: str = "Dependency cycle detected") -> Violation:
    return Violation(
        code=DEPENDENCY_CYCLE,
        severity=CRITICAL,
        message=f"{prefix}: {' -> '.join(cycle)}",
        affected_items=tuple(dict.fromkeys(cycle)),
        detail={"cycle": list(cycle)},
    )


def _active_demanding(items: Sequence[WorkItem], period: int, skill: Skill) -> Tuple[str, ...]:
    return tuple(item.id for item in items if item.is_active(period) and item.demands(skill))


@dataclass
class ConstraintValidator:
    """Turns a projected grid into violations and warnings.

    Built-in checks run first (cycles, capacity, dependency timing, then the
    two warning families); registered evaluators run afterwards in
    registration order and may return either violations or warnings.
    """

    config: GovernanceConfig = field(default_factory=GovernanceConfig)
    _evaluators: List[Evaluator] = field(default_factory=list, repr=False)

    def register(self, evaluator: Evaluator) -> None:
        self._evaluators.append(evaluator)

    def validate(self, items: Sequence[WorkItem], scenario: ProjectedScenario) -> ValidationOutcome:
        violations = self.cycle_violations(items)
        violations.extend(self.capacity_violations(items, scenario))
        violations.extend(self.dependency_violations(items))
        warnings = self.near_capacity_warnings(items, scenario)
        warnings.extend(self.chain_warnings(items))
        for evaluator in self._evaluators:
            for finding in evaluator(items, scenario):
                if isinstance(finding, Violation):
                    violations.append(finding)
                elif isinstance(finding, ConstraintWarning):
                    warnings.append(finding)
                else:
                    raise TypeError(f"evaluator returned unsupported finding {finding!r}")
        return ValidationOutcome(violations=tuple(violations), warnings=tuple(warnings))

    def cycle_violations(self, items: Sequence[WorkItem]) -> List[Violation]:
        """Cycles among the evaluated items; edges to unknown ids are ignored here."""
        if not any(item.dependencies for item in items):
            return []
        known = {item.id for item in items}
        trimmed = [
            replace(item, dependencies=tuple(dep for dep in item.dependencies if dep in known))
            for item in items
        ]
        return [cycle_violation(cycle) for cycle in DependencyGraph(trimmed).detect_cycles()]

    def capacity_violations(self, items: Sequence[WorkItem], scenario: ProjectedScenario) -> List[Violation]:
        violations: List[Violation] = []
        for cell in scenario.periods:
            for skill, remaining in cell.remaining_by_skill.items():
                if remaining >= -EPSILON:
                    continue
                violations.append(self._capacity_violation(items, cell, skill, remaining))
        return violations

    def _capacity_violation(
        self,
        items: Sequence[WorkItem],
        cell: PeriodCapacity,
        skill: Skill,
        remaining: float,
    ) -> Violation:
        over_by = -remaining
        capacity = cell.capacity_by_skill.get(skill, 0.0)
        demand = cell.allocated_by_skill.get(skill, 0.0)
        if capacity <= EPSILON or over_by > capacity * self.config.critical_overage_ratio:
            severity = CRITICAL
        else:
            severity = HIGH
        return Violation(
            code=CAPACITY_EXCEEDED,
            severity=severity,
            message=(
                f"{skill} capacity exceeded in period {cell.period}: demand {demand:.1f}h "
                f"vs capacity {capacity:g}h (over by {over_by:.1f}h)"
            ),
            affected_items=_active_demanding(items, cell.period, skill),
            detail={
                "skill": skill,
                "period": cell.period,
                "demand": demand,
                "capacity": capacity,
                "over_by": over_by,
            },
        )

    def dependency_violations(self, items: Sequence[WorkItem]) -> List[Violation]:
        """Ordering breaks among scheduled items, judged against the same item set."""
        lookup: Dict[str, WorkItem] = {item.id: item for item in items}
        violations: List[Violation] = []
        for item in items:
            if item.start_period is None:
                continue
            for dep_id in item.dependencies:
                dep = lookup.get(dep_id)
                violation = self._ordering_violation(item, dep_id, dep)
                if violation is not None:
                    violations.append(violation)
        return violations

    def _ordering_violation(self, item: WorkItem, dep_id: str, dep: Optional[WorkItem]) -> Optional[Violation]:
        if dep is None:
            return Violation(
                code=DEPENDENCY_NOT_SCHEDULED,
                severity=HIGH,
                message=f'Dependency "{dep_id}" is not in the portfolio',
                affected_items=(item.id, dep_id),
                detail={"missing_dependency": dep_id},
            )
        if dep.finish_boundary is None:
            return Violation(
                code=DEPENDENCY_NOT_SCHEDULED,
                severity=HIGH,
                message=(
                    f'"{_label(item)}" starts in period {item.start_period} '
                    f'but dependency "{_label(dep)}" is not scheduled'
                ),
                affected_items=(item.id, dep.id),
                detail={"item_start": item.start_period, "dep_end": None},
            )
        if dep.finish_boundary > item.start_period:
            return Violation(
                code=DEPENDENCY_NOT_SCHEDULED,
                severity=HIGH,
                message=(
                    f'"{_label(item)}" starts in period {item.start_period} '
                    f'but dependency "{_label(dep)}" doesn\'t finish until period {dep.finish_boundary}'
                ),
                affected_items=(item.id, dep.id),
                detail={"item_start": item.start_period, "dep_end": dep.finish_boundary},
            )
        return None

    def near_capacity_warnings(
        self, items: Sequence[WorkItem], scenario: ProjectedScenario
    ) -> List[ConstraintWarning]:
        threshold = self.config.near_capacity_threshold
        warnings: List[ConstraintWarning] = []
        for cell in scenario.periods:
            for skill, capacity in cell.capacity_by_skill.items():
                if capacity <= 0:
                    continue
                utilization = cell.allocated_by_skill.get(skill, 0.0) / capacity
                if threshold < utilization <= 1.0 + EPSILON:
                    warnings.append(
                        ConstraintWarning(
                            code=NEAR_CAPACITY,
                            message=f"{skill} at {utilization * 100:.0f}% utilization in period {cell.period}",
                            affected_items=_active_demanding(items, cell.period, skill),
                        )
                    )
        return warnings

    def chain_warnings(self, items: Sequence[WorkItem]) -> List[ConstraintWarning]:
        depths = dependency_depths({item.id: item for item in items})
        warnings: List[ConstraintWarning] = []
        for item in items:
            length = depths.get(item.id, 1)
            if length >= self.config.tight_chain_length:
                warnings.append(
                    ConstraintWarning(
                        code=TIGHT_DEPENDENCY_CHAIN,
                        message=(
                            f'"{_label(item)}" is at the end of a {length}-item dependency chain; '
                            "any slip cascades"
                        ),
                        affected_items=(item.id,),
                    )
                )
        return warnings
