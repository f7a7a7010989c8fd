"""Declarative lifecycle graph: states, guarded transitions and structural checks."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import ValidationError, WorkflowError
from .guards import TransitionGuard, build_guard
from .models import BLOCKED, State, WorkItem

DEFAULT_LIFECYCLE: Dict[str, object] = {
    "id": "default",
    "name": "Default Lifecycle",
    "states": ["backlog", "ready", "planned", "in_progress", "review", "done", "blocked"],
    "start_states": ["backlog"],
    "transitions": [
        {"from": "backlog", "to": "ready", "guards": []},
        {"from": "ready", "to": "planned", "guards": []},
        {
            "from": "planned",
            "to": "in_progress",
            "guards": [{"type": "requires_prior_state", "params": {"state": "ready"}}],
        },
        {"from": "in_progress", "to": "review", "guards": []},
        {"from": "review", "to": "done", "guards": []},
        {"from": "review", "to": "in_progress", "guards": []},
        {"from": "backlog", "to": "blocked", "guards": [{"type": "not_blocked"}]},
        {"from": "ready", "to": "blocked", "guards": [{"type": "not_blocked"}]},
        {"from": "planned", "to": "blocked", "guards": [{"type": "not_blocked"}]},
        {"from": "in_progress", "to": "blocked", "guards": [{"type": "not_blocked"}]},
        {"from": "review", "to": "blocked", "guards": [{"type": "not_blocked"}]},
        {"from": "blocked", "to": "ready", "guards": [{"type": "not_blocked"}]},
    ],
}


@dataclass(frozen=True)
class Transition:
    source: State
    target: State
    guards: Tuple[TransitionGuard, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "from": self.source,
            "to": self.target,
            "guards": [guard.to_dict() for guard in self.guards],
        }


@dataclass(frozen=True)
class TransitionResult:
    allowed: bool
    reason: str

    def to_dict(self) -> Dict[str, object]:
        return {"allowed": self.allowed, "reason": self.reason}


@dataclass(frozen=True)
class LifecycleValidation:
    valid: bool
    errors: Tuple[str, ...] = ()


def _parse_transition(entry: object) -> Transition:
    if not isinstance(entry, Mapping):
        raise ValidationError(f"transition must be an object, got {entry!r}")
    source = entry.get("from")
    target = entry.get("to")
    if not isinstance(source, str) or not isinstance(target, str):
        raise ValidationError(f"transition requires string 'from' and 'to': {dict(entry)!r}")
    raw_guards = entry.get("guards") or []
    if not isinstance(raw_guards, Sequence) or isinstance(raw_guards, str):
        raise ValidationError(f"guards for {source} -> {target} must be an array")
    return Transition(source=source, target=target, guards=tuple(build_guard(g) for g in raw_guards))


class LifecycleGraph:
    """Directed graph of workflow states with guarded transitions.

    Shape errors (missing keys, unknown guard types) fail at construction.
    Semantic problems such as unreachable states or transitions to undeclared
    states are reported together by :meth:`validate`.
    """

    def __init__(self, definition: Mapping[str, object]) -> None:
        if not isinstance(definition, Mapping):
            raise ValidationError("lifecycle definition must be an object")
        states = definition.get("states")
        if not isinstance(states, Sequence) or isinstance(states, str):
            raise ValidationError("lifecycle definition requires a 'states' array")
        transitions = definition.get("transitions", [])
        if not isinstance(transitions, Sequence) or isinstance(transitions, str):
            raise ValidationError("lifecycle definition 'transitions' must be an array")
        self.id = str(definition.get("id", "custom"))
        self.name = str(definition.get("name", self.id))
        self._states: Tuple[State, ...] = tuple(dict.fromkeys(str(state) for state in states))
        start_states = definition.get("start_states")
        if start_states is None:
            self._start_states: Tuple[State, ...] = self._states[:1]
        elif isinstance(start_states, Sequence) and not isinstance(start_states, str):
            self._start_states = tuple(str(state) for state in start_states)
        else:
            raise ValidationError("lifecycle 'start_states' must be an array")
        self._transitions: Tuple[Transition, ...] = tuple(_parse_transition(t) for t in transitions)
        self._adjacency: Dict[State, List[Transition]] = {state: [] for state in self._states}
        for transition in self._transitions:
            self._adjacency.setdefault(transition.source, []).append(transition)

    @classmethod
    def default(cls) -> "LifecycleGraph":
        return cls(DEFAULT_LIFECYCLE)

    @property
    def states(self) -> Tuple[State, ...]:
        return self._states

    @property
    def start_states(self) -> Tuple[State, ...]:
        return self._start_states

    @property
    def transitions(self) -> Tuple[Transition, ...]:
        return self._transitions

    def has_state(self, state: State) -> bool:
        return state in self._states

    def get_outgoing(self, state: State) -> List[Transition]:
        return list(self._adjacency.get(state, []))

    def get_valid_transitions(self, state: State) -> List[Transition]:
        return self.get_outgoing(state)

    def valid_targets(self, state: State) -> List[State]:
        return [transition.target for transition in self.get_outgoing(state)]

    def validate(self) -> LifecycleValidation:
        errors: List[str] = []
        if not self._states:
            return LifecycleValidation(valid=False, errors=("Lifecycle must have at least one state",))

        for transition in self._transitions:
            if transition.source not in self._states:
                errors.append(f"Transition references undeclared source state '{transition.source}'")
            if transition.target not in self._states:
                errors.append(f"Transition references undeclared target state '{transition.target}'")
        for start in self._start_states:
            if start not in self._states:
                errors.append(f"Start state '{start}' is not declared")

        incoming = {t.target for t in self._transitions}
        outgoing = {t.source for t in self._transitions}
        for state in self._states:
            if state not in incoming and state not in outgoing:
                errors.append(f"State '{state}' is an orphan (no incoming or outgoing transitions)")

        reachable = {state for state in self._start_states if state in self._states}
        queue = deque(reachable)
        while queue:
            current = queue.popleft()
            for transition in self._adjacency.get(current, []):
                if transition.target in self._states and transition.target not in reachable:
                    reachable.add(transition.target)
                    queue.append(transition.target)
        for state in self._states:
            if state not in reachable:
                errors.append(f"State '{state}' is not reachable from any start state")

        return LifecycleValidation(valid=not errors, errors=tuple(errors))

    def can_transition(self, item: WorkItem, target_state: State) -> TransitionResult:
        if not self.has_state(target_state):
            return TransitionResult(False, f"Target state '{target_state}' is not defined in the lifecycle")
        if not self.has_state(item.state):
            return TransitionResult(False, f"Current state '{item.state}' is not defined in the lifecycle")
        transition = self._find(item.state, target_state)
        if transition is None:
            targets = self.valid_targets(item.state)
            return TransitionResult(
                False,
                f"No transition from '{item.state}' to '{target_state}'. "
                f"Valid targets: [{', '.join(targets)}]",
            )
        for guard in transition.guards:
            if not guard.passes(item):
                return TransitionResult(False, f"Guard failed: {guard.type} ({guard.description})")
        return TransitionResult(True, "Transition allowed")

    def apply_transition(self, item: WorkItem, target_state: State) -> WorkItem:
        result = self.can_transition(item, target_state)
        if not result.allowed:
            raise WorkflowError(result.reason, item.state, target_state)
        return replace(item, state=target_state, history=item.history + (target_state,))

    def unblock(self, item: WorkItem, target_state: Optional[State] = None) -> WorkItem:
        """Leave ``blocked`` explicitly, by default resuming the last state before it."""
        if item.state != BLOCKED:
            raise WorkflowError(f"Item '{item.id}' is not blocked", item.state, target_state)
        if target_state is None:
            prior = [state for state in item.history if state != BLOCKED]
            if not prior:
                raise WorkflowError(f"Item '{item.id}' has no state to resume", item.state, None)
            target_state = prior[-1]
        if not self.has_state(target_state) or target_state == BLOCKED:
            raise WorkflowError(
                f"Cannot unblock '{item.id}' into '{target_state}'", item.state, target_state
            )
        return replace(item, state=target_state, history=item.history + (target_state,))

    def to_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "states": list(self._states),
            "start_states": list(self._start_states),
            "transitions": [transition.to_dict() for transition in self._transitions],
        }

    def _find(self, source: State, target: State) -> Optional[Transition]:
        for transition in self._adjacency.get(source, []):
            if transition.target == target:
                return transition
        return None
