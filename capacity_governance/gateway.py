from __future__ import annotations

import inspect
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from .dependency_graph import DependencyCheck, DependencyGraph
from .lifecycle import LifecycleGraph, TransitionResult
from .models import DONE, IN_PROGRESS, REVIEW, State


@dataclass(frozen=True)
class ConstraintResult:
    approved: bool
    violations: Tuple[str, ...] = ()

    @classmethod
    def coerce(cls, value: Union["ConstraintResult", Mapping[str, object]]) -> "ConstraintResult":
        if isinstance(value, ConstraintResult):
            return value
        if isinstance(value, Mapping):
            violations = value.get("violations") or ()
            return cls(approved=bool(value.get("approved")), violations=tuple(str(v) for v in violations))
        raise TypeError(f"constraint hook returned unsupported value {value!r}")

    def to_dict(self) -> Dict[str, object]:
        return {"approved": self.approved, "violations": list(self.violations)}


HookResult = Union[ConstraintResult, Mapping[str, object]]
ConstraintHook = Callable[[str, State, Optional[Mapping[str, object]]], Awaitable[HookResult]]


async def approve_all(
    item_id: str,
    target_state: State,
    context: Optional[Mapping[str, object]] = None,
) -> ConstraintResult:
    return ConstraintResult(approved=True)


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    structural_result: TransitionResult
    dependency_result: Optional[DependencyCheck]
    constraint_result: ConstraintResult
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "structural_result": self.structural_result.to_dict(),
            "dependency_result": self.dependency_result.to_dict() if self.dependency_result else None,
            "constraint_result": self.constraint_result.to_dict(),
            "reason": self.reason,
        }


class TransitionGateway:
    """Single entry point for lifecycle moves.

    Runs the structural lifecycle check, then the dependency readiness check
    (only when entering a work-starting state), then the external constraint
    hook. The first failing stage decides the reason; later stages are skipped.
    """

    def __init__(
        self,
        lifecycle: LifecycleGraph,
        resolver: DependencyGraph,
        work_starting_states: Sequence[State] = (IN_PROGRESS,),
        ready_states: Sequence[State] = (DONE, REVIEW),
        constraint_hook: Optional[ConstraintHook] = None,
    ) -> None:
        self.lifecycle = lifecycle
        self.resolver = resolver
        self.work_starting_states = frozenset(work_starting_states)
        self.ready_states = tuple(ready_states)
        self._constraint_hook: ConstraintHook = constraint_hook or approve_all

    def register_constraint_hook(self, hook: ConstraintHook) -> None:
        self._constraint_hook = hook

    async def request_transition(
        self,
        item_id: str,
        target_state: State,
        context: Optional[Mapping[str, object]] = None,
    ) -> TransitionDecision:
        item = self.resolver.get_item(item_id)
        untouched = ConstraintResult(approved=True)

        structural = self.lifecycle.can_transition(item, target_state)
        if not structural.allowed:
            return TransitionDecision(False, structural, None, untouched, structural.reason)

        dependency: Optional[DependencyCheck] = None
        if target_state in self.work_starting_states:
            dependency = self.resolver.can_start(item_id, self.ready_states)
            if not dependency.allowed:
                return TransitionDecision(False, structural, dependency, untouched, dependency.reason)

        outcome = self._constraint_hook(item_id, target_state, context)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        constraint = ConstraintResult.coerce(outcome)
        if not constraint.approved:
            reason = f"Constraint violation: {'; '.join(constraint.violations)}"
            return TransitionDecision(False, structural, dependency, constraint, reason)

        return TransitionDecision(True, structural, dependency, constraint, "Transition allowed")
