"""Governance orchestrator.

Composes the dependency graph, lifecycle graph, projector, validator and
scheduler into four decision operations. Every operation appends exactly one
entry to the decision log and returns a result record; business outcomes such
as unknown ids, cycles or capacity overruns come back as violations, never as
exceptions.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .decision_log import (
    APPROVED,
    AUTO_SCHEDULE,
    REJECTED,
    REQUEST_TRANSITION,
    VALIDATE_PORTFOLIO,
    WHAT_IF,
    Action,
    DecisionLog,
)
from .dependency_graph import DependencyGraph, find_cycle_through
from .errors import CycleError, NotFoundError, ValidationError
from .gateway import ConstraintHook, TransitionGateway
from .lifecycle import LifecycleGraph
from .models import (
    CAPACITY_EXCEEDED,
    CRITICAL,
    DEPENDENCY_NOT_SCHEDULED,
    HIGH,
    INVALID_STATE_TRANSITION,
    CapacityPlan,
    ConstraintWarning,
    GovernanceConfig,
    Skill,
    Violation,
    WorkItem,
)
from .projector import PeriodCapacity, ProjectedScenario, ProposedChange, ScenarioProjector
from .recommendations import AlternativeSuggestion, find_alternative
from .scheduler import GreedyScheduler, ScheduledItem, schedule_frame
from .validator import ConstraintValidator, cycle_violation

logger = logging.getLogger(__name__)

PATCHABLE_FIELDS = (
    "title",
    "state",
    "duration",
    "dependencies",
    "demand_by_skill",
    "priority",
    "start_period",
    "metadata",
)

TIMELINE_COLUMNS = ["id", "title", "state", "start_period", "end_period", "duration", "priority", "dependencies"]


def _violations_dicts(violations: Iterable[Violation]) -> List[Dict[str, object]]:
    return [violation.to_dict() for violation in violations]


def _warnings_dicts(warnings: Iterable[ConstraintWarning]) -> List[Dict[str, object]]:
    return [warning.to_dict() for warning in warnings]


def timeline_frame(items: Iterable[WorkItem]) -> pd.DataFrame:
    rows = [
        {
            "id": item.id,
            "title": item.title,
            "state": item.state,
            "start_period": item.start_period,
            "end_period": item.end_period,
            "duration": item.duration,
            "priority": item.priority,
            "dependencies": ";".join(item.dependencies),
        }
        for item in items
    ]
    return pd.DataFrame(rows, columns=TIMELINE_COLUMNS)


@dataclass(frozen=True)
class GovernanceDecision:
    approved: bool
    scenario: ProjectedScenario
    violations: Tuple[Violation, ...] = ()
    warnings: Tuple[ConstraintWarning, ...] = ()
    alternative: Optional[AlternativeSuggestion] = None

    def to_dict(self, include_scenario: bool = False) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "approved": self.approved,
            "violations": _violations_dicts(self.violations),
            "warnings": _warnings_dicts(self.warnings),
            "alternative": self.alternative.to_dict() if self.alternative else None,
        }
        if include_scenario:
            payload["scenario"] = self.scenario.to_dict()
        return payload


@dataclass(frozen=True)
class PortfolioSummary:
    total_items: int
    scheduled_items: int
    total_demand_hours: float
    total_capacity_hours: float
    overall_utilization: float
    constrained_skills: Tuple[Skill, ...] = ()
    critical_violations: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_items": self.total_items,
            "scheduled_items": self.scheduled_items,
            "total_demand_hours": self.total_demand_hours,
            "total_capacity_hours": self.total_capacity_hours,
            "overall_utilization": self.overall_utilization,
            "constrained_skills": list(self.constrained_skills),
            "critical_violations": self.critical_violations,
        }


@dataclass(frozen=True)
class PortfolioHealthReport:
    healthy: bool
    score: int
    items: Tuple[WorkItem, ...]
    scenario: ProjectedScenario
    violations: Tuple[Violation, ...]
    warnings: Tuple[ConstraintWarning, ...]
    summary: PortfolioSummary

    @property
    def period_capacity(self) -> Tuple[PeriodCapacity, ...]:
        return self.scenario.periods

    def to_frame(self) -> pd.DataFrame:
        return timeline_frame(self.items)

    def to_dict(self, include_scenario: bool = False) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "healthy": self.healthy,
            "score": self.score,
            "items": [item.to_dict() for item in self.items],
            "period_capacity": [cell.to_dict() for cell in self.period_capacity],
            "violations": _violations_dicts(self.violations),
            "warnings": _warnings_dicts(self.warnings),
            "summary": self.summary.to_dict(),
        }
        if include_scenario:
            payload["scenario"] = self.scenario.to_dict()
        return payload


@dataclass(frozen=True)
class AutoScheduleResult:
    feasible: bool
    scenario: ProjectedScenario
    schedule: Tuple[ScheduledItem, ...]
    violations: Tuple[Violation, ...] = ()
    warnings: Tuple[ConstraintWarning, ...] = ()

    def placement(self, item_id: str) -> Optional[ScheduledItem]:
        for entry in self.schedule:
            if entry.item_id == item_id:
                return entry
        return None

    def to_frame(self) -> pd.DataFrame:
        return schedule_frame(self.schedule, {item.id: item for item in self.scenario.items})

    def to_dict(self, include_scenario: bool = False) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "feasible": self.feasible,
            "schedule": [entry.to_dict() for entry in self.schedule],
            "violations": _violations_dicts(self.violations),
            "warnings": _warnings_dicts(self.warnings),
        }
        if include_scenario:
            payload["scenario"] = self.scenario.to_dict()
        return payload


@dataclass(frozen=True)
class WhatIfDelta:
    utilization_change: float
    new_violations: Tuple[Violation, ...] = ()
    resolved_violations: Tuple[Violation, ...] = ()
    capacity_impact: Dict[Skill, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, object]:
        return {
            "utilization_change": self.utilization_change,
            "new_violations": _violations_dicts(self.new_violations),
            "resolved_violations": _violations_dicts(self.resolved_violations),
            "capacity_impact": dict(self.capacity_impact),
        }


@dataclass(frozen=True)
class WhatIfResult:
    baseline: ProjectedScenario
    projected: ProjectedScenario
    delta: WhatIfDelta
    violations: Tuple[Violation, ...] = ()
    warnings: Tuple[ConstraintWarning, ...] = ()

    @property
    def feasible(self) -> bool:
        return not self.violations

    def to_dict(self, include_scenario: bool = False) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "feasible": self.feasible,
            "baseline_utilization": self.baseline.utilization,
            "projected_utilization": self.projected.utilization,
            "delta": self.delta.to_dict(),
            "violations": _violations_dicts(self.violations),
            "warnings": _warnings_dicts(self.warnings),
        }
        if include_scenario:
            payload["baseline"] = self.baseline.to_dict()
            payload["projected"] = self.projected.to_dict()
        return payload


def compute_health_score(
    violations: Sequence[Violation],
    warnings: Sequence[ConstraintWarning],
    utilization: float,
    high_utilization_threshold: float = 0.95,
) -> int:
    score = 100
    for violation in violations:
        if violation.severity == CRITICAL:
            score -= 25
        elif violation.severity == HIGH:
            score -= 15
        else:
            score -= 5
    score -= 2 * len(warnings)
    if utilization > high_utilization_threshold:
        score -= 10
    return max(0, min(100, score))


def _structural_violation(
    message: str, item_id: str, detail: Optional[Mapping[str, object]] = None
) -> Violation:
    return Violation(
        code=INVALID_STATE_TRANSITION,
        severity=CRITICAL,
        message=message,
        affected_items=(item_id,) if item_id else (),
        detail={**(detail or {}), "item_id": item_id},
    )


def _missing_dependency(item_id: str, dep_id: str) -> Violation:
    return Violation(
        code=DEPENDENCY_NOT_SCHEDULED,
        severity=HIGH,
        message=f'Dependency "{dep_id}" is not in the portfolio',
        affected_items=(item_id, dep_id),
        detail={"missing_dependency": dep_id},
    )


class GovernanceEngine:
    """Owns the live work-item set and decides on every change to it.

    The live set is only written by approved transition requests and by
    successful ``auto_schedule`` calls. Callers serialize mutating calls per
    engine; the decision log itself is safe for concurrent readers.
    """

    def __init__(
        self,
        plan: CapacityPlan,
        config: Optional[GovernanceConfig] = None,
        lifecycle: Optional[LifecycleGraph] = None,
        decision_log: Optional[DecisionLog] = None,
        validator: Optional[ConstraintValidator] = None,
    ) -> None:
        self.plan = plan
        self.config = config or GovernanceConfig()
        self.lifecycle = lifecycle
        self.decision_log = decision_log if decision_log is not None else DecisionLog()
        self.validator = validator or ConstraintValidator(self.config)
        self.projector = ScenarioProjector(plan)
        self.scheduler = GreedyScheduler(plan)
        self._items: Dict[str, WorkItem] = {}

    # -- registration -----------------------------------------------------

    def add_item(self, item: WorkItem) -> None:
        self.add_items([item])

    def add_items(self, items: Iterable[WorkItem]) -> None:
        """Register items, replacing any with the same id.

        Raises ``ValidationError`` for dangling dependencies or duplicate ids in
        the batch and ``CycleError`` when the resulting set would be cyclic; the
        live set is left untouched in both cases.
        """
        batch = list(items)
        seen: Dict[str, WorkItem] = {}
        for item in batch:
            if item.id in seen:
                raise ValidationError(f"duplicate work item id '{item.id}'", {"item_id": item.id})
            seen[item.id] = item
        candidate = dict(self._items)
        candidate.update(seen)
        graph = DependencyGraph(candidate.values())
        graph.topological_sort()
        self._items = candidate

    def get_item(self, item_id: str) -> WorkItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise NotFoundError("work item", item_id) from None

    def items(self) -> List[WorkItem]:
        return list(self._items.values())

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def dependency_graph(self) -> DependencyGraph:
        return DependencyGraph(self._items.values())

    def transition_gateway(self, constraint_hook: Optional[ConstraintHook] = None) -> TransitionGateway:
        """Gateway bound to a snapshot of the live set."""
        return TransitionGateway(
            self.lifecycle or LifecycleGraph.default(),
            self.dependency_graph(),
            work_starting_states=self.config.work_starting_states,
            ready_states=self.config.ready_dependency_states,
            constraint_hook=constraint_hook,
        )

    # -- operations -------------------------------------------------------

    def request_transition(self, item_id: str, patch: Mapping[str, object]) -> GovernanceDecision:
        started = time.perf_counter()
        request = {"item_id": item_id, "patch": dict(patch)}
        current = list(self._items.values())

        item = self._items.get(item_id)
        if item is None:
            violation = _structural_violation(f'Item "{item_id}" not found in portfolio', item_id)
            return self._reject_structural(request, current, [violation], started)

        structural = self._check_structural_legality(item, patch)
        if structural:
            return self._reject_structural(request, current, structural, started)

        try:
            projected_item = self._apply_patch(item, patch)
        except ValidationError as exc:
            violation = _structural_violation(str(exc), item_id, exc.details)
            return self._reject_structural(request, current, [violation], started)

        projected_items = [projected_item if other.id == item_id else other for other in current]
        scenario = self.projector.project(projected_items)
        outcome = self.validator.validate(projected_items, scenario)
        approved = outcome.feasible

        alternative = None
        if not approved:
            alternative = find_alternative(projected_item, projected_items, self.plan.periods, self._violations_for)
        else:
            self._items[item_id] = projected_item

        decision = GovernanceDecision(
            approved=approved,
            scenario=scenario,
            violations=outcome.violations,
            warnings=outcome.warnings,
            alternative=alternative,
        )
        self._log(REQUEST_TRANSITION, request, scenario, approved, outcome.violations, outcome.warnings, started)
        return decision

    def validate_portfolio(self) -> PortfolioHealthReport:
        started = time.perf_counter()
        items = list(self._items.values())
        scenario = self.projector.project(items)
        outcome = self.validator.validate(items, scenario)

        constrained: List[Skill] = []
        for violation in outcome.violations:
            skill = violation.detail.get("skill") if violation.code == CAPACITY_EXCEEDED else None
            if skill and skill not in constrained:
                constrained.append(str(skill))

        summary = PortfolioSummary(
            total_items=len(items),
            scheduled_items=sum(1 for item in items if item.is_scheduled),
            total_demand_hours=scenario.total_demand,
            total_capacity_hours=scenario.total_capacity,
            overall_utilization=scenario.utilization,
            constrained_skills=tuple(constrained),
            critical_violations=sum(1 for v in outcome.violations if v.severity == CRITICAL),
        )
        report = PortfolioHealthReport(
            healthy=outcome.feasible,
            score=compute_health_score(
                outcome.violations,
                outcome.warnings,
                summary.overall_utilization,
                self.config.high_utilization_threshold,
            ),
            items=tuple(items),
            scenario=scenario,
            violations=outcome.violations,
            warnings=outcome.warnings,
            summary=summary,
        )
        self._log(
            VALIDATE_PORTFOLIO,
            {"item_count": len(items)},
            scenario,
            report.healthy,
            outcome.violations,
            outcome.warnings,
            started,
        )
        return report

    def auto_schedule(self, items: Iterable[WorkItem]) -> AutoScheduleResult:
        started = time.perf_counter()
        batch = list(items)
        request = {"item_ids": [item.id for item in batch]}

        try:
            schedule = self.scheduler.schedule(batch, committed=list(self._items.values()))
        except ValidationError as exc:
            violations = self._registration_violations(exc)
            scenario = self.projector.project(list(self._items.values()))
            self._log(AUTO_SCHEDULE, request, scenario, False, violations, (), started)
            return AutoScheduleResult(feasible=False, scenario=scenario, schedule=(), violations=tuple(violations))

        starts = {entry.item_id: entry.start_period for entry in schedule}
        for item in batch:
            self._items[item.id] = replace(item, start_period=starts[item.id])

        all_items = list(self._items.values())
        scenario = self.projector.project(all_items)
        outcome = self.validator.validate(all_items, scenario)
        result = AutoScheduleResult(
            feasible=outcome.feasible,
            scenario=scenario,
            schedule=tuple(schedule),
            violations=outcome.violations,
            warnings=outcome.warnings,
        )
        self._log(AUTO_SCHEDULE, request, scenario, result.feasible, outcome.violations, outcome.warnings, started)
        return result

    def what_if(self, changes: Sequence[ProposedChange]) -> WhatIfResult:
        started = time.perf_counter()
        current = list(self._items.values())
        baseline = self.projector.project(current)
        baseline_violations = self.validator.validate(current, baseline).violations

        projected = self.projector.project(current, changes)
        outcome = self.validator.validate(list(projected.items), projected)

        baseline_ids = {violation.identity for violation in baseline_violations}
        projected_ids = {violation.identity for violation in outcome.violations}
        delta = WhatIfDelta(
            utilization_change=projected.utilization - baseline.utilization,
            new_violations=tuple(v for v in outcome.violations if v.identity not in baseline_ids),
            resolved_violations=tuple(v for v in baseline_violations if v.identity not in projected_ids),
            capacity_impact=dict(projected.capacity_adjustments),
        )
        result = WhatIfResult(
            baseline=baseline,
            projected=projected,
            delta=delta,
            violations=outcome.violations,
            warnings=outcome.warnings,
        )
        self._log(
            WHAT_IF,
            {"changes": [change.to_dict() for change in changes]},
            projected,
            result.feasible,
            outcome.violations,
            outcome.warnings,
            started,
        )
        return result

    # -- internals --------------------------------------------------------

    def _check_structural_legality(self, item: WorkItem, patch: Mapping[str, object]) -> List[Violation]:
        unknown = sorted(key for key in patch if key not in PATCHABLE_FIELDS)
        if unknown:
            return [_structural_violation(f"Unknown fields in change: {', '.join(unknown)}", item.id)]

        target_state = patch.get("state")
        if self.lifecycle is not None and target_state is not None and target_state != item.state:
            result = self.lifecycle.can_transition(item, str(target_state))
            if not result.allowed:
                detail = {"current_state": item.state, "target_state": target_state}
                return [_structural_violation(result.reason, item.id, detail)]

        violations: List[Violation] = []
        if "dependencies" in patch:
            raw = patch.get("dependencies") or ()
            if isinstance(raw, (str, bytes)) or not isinstance(raw, (list, tuple)):
                return [_structural_violation("dependencies must be a list of item ids", item.id)]
            dependencies = [str(dep) for dep in raw]
            cycle = find_cycle_through(item.id, dependencies, self._items)
            if cycle:
                violations.append(cycle_violation(cycle, "Adding dependencies would create a cycle"))
        else:
            dependencies = list(item.dependencies)
        for dep_id in dict.fromkeys(dependencies):
            if dep_id != item.id and dep_id not in self._items:
                violations.append(_missing_dependency(item.id, dep_id))
        return violations

    def _apply_patch(self, item: WorkItem, patch: Mapping[str, object]) -> WorkItem:
        changes = dict(patch)
        if "dependencies" in changes:
            changes["dependencies"] = tuple(changes["dependencies"] or ())
        state = changes.get("state")
        if state is not None and state != item.state:
            changes["history"] = item.history + (str(state),)
        return replace(item, **changes)

    def _reject_structural(
        self,
        request: Dict[str, object],
        current: List[WorkItem],
        violations: List[Violation],
        started: float,
    ) -> GovernanceDecision:
        scenario = self.projector.project(current)
        logger.debug("Structural rejection for %s: %s", request.get("item_id"), violations[0].message)
        self._log(REQUEST_TRANSITION, request, scenario, False, violations, (), started)
        return GovernanceDecision(approved=False, scenario=scenario, violations=tuple(violations))

    def _registration_violations(self, exc: ValidationError) -> List[Violation]:
        if isinstance(exc, CycleError):
            if exc.cycles:
                return [cycle_violation(cycle) for cycle in exc.cycles]
            return [cycle_violation(exc.items)]
        dependency = exc.details.get("dependency")
        item_id = exc.details.get("item_id")
        if dependency and item_id:
            return [_missing_dependency(str(item_id), str(dependency))]
        return [_structural_violation(str(exc), str(item_id or ""))]

    def _violations_for(self, items: List[WorkItem]) -> Tuple[Violation, ...]:
        scenario = self.projector.project(items)
        return self.validator.validate(items, scenario).violations

    def _log(
        self,
        action: Action,
        request: Mapping[str, object],
        scenario: ProjectedScenario,
        approved: bool,
        violations: Sequence[Violation],
        warnings: Sequence[ConstraintWarning],
        started: float,
    ) -> None:
        duration_ms = (time.perf_counter() - started) * 1000.0
        entry = self.decision_log.record(
            action=action,
            request=request,
            scenario=scenario,
            result=APPROVED if approved else REJECTED,
            violations=violations,
            warnings=warnings,
            duration_ms=duration_ms,
        )
        logger.info(
            "%s %s %s: %d violation(s), %d warning(s) in %.1f ms",
            entry.id,
            action,
            entry.result,
            len(violations),
            len(warnings),
            duration_ms,
        )
        if violations and not approved:
            logger.debug("%s first violation: %s", entry.id, violations[0].message)
