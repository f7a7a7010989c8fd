"""Transition guards and the registry used to build them from lifecycle definitions."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Mapping, Optional

from .errors import ValidationError
from .models import BLOCKED, State, WorkItem


@dataclass(frozen=True)
class TransitionGuard:
    type: str
    description: str
    check: Callable[[WorkItem], bool] = field(compare=False)
    params: Dict[str, object] = field(default_factory=dict)

    def passes(self, item: WorkItem) -> bool:
        return bool(self.check(item))

    def to_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"type": self.type, "description": self.description}
        if self.params:
            payload["params"] = dict(self.params)
        return payload


GuardFactory = Callable[[Mapping[str, object]], TransitionGuard]


def requires_prior_state(state: State) -> TransitionGuard:
    """The item must already have visited ``state`` somewhere in its history."""
    return TransitionGuard(
        type="requires_prior_state",
        description=f"Item must have previously been in '{state}'",
        check=lambda item: item.visited(state),
        params={"state": state},
    )


def not_blocked() -> TransitionGuard:
    """The item's current state must not be ``blocked``."""
    return TransitionGuard(
        type="not_blocked",
        description="Item must not be in blocked state",
        check=lambda item: item.state != BLOCKED,
    )


def _requires_prior_state_factory(params: Mapping[str, object]) -> TransitionGuard:
    state = params.get("state")
    if not state or not isinstance(state, str):
        raise ValidationError("requires_prior_state guard requires a 'state' param")
    return requires_prior_state(state)


_GUARD_FACTORIES: Dict[str, GuardFactory] = {
    "requires_prior_state": _requires_prior_state_factory,
    "not_blocked": lambda params: not_blocked(),
}


def register_guard(guard_type: str, factory: GuardFactory) -> None:
    if not guard_type:
        raise ValidationError("guard type must be a non-empty string")
    _GUARD_FACTORIES[guard_type] = factory


def registered_guards() -> List[str]:
    return sorted(_GUARD_FACTORIES)


def build_guard(spec: Mapping[str, object]) -> TransitionGuard:
    """Build a guard from its serialized ``{type, description?, params?}`` form."""
    if not isinstance(spec, Mapping):
        raise ValidationError(f"guard definition must be an object, got {spec!r}")
    guard_type = spec.get("type")
    factory = _GUARD_FACTORIES.get(str(guard_type)) if guard_type else None
    if factory is None:
        raise ValidationError(f"unknown guard type '{guard_type}'")
    params = spec.get("params") or {}
    if not isinstance(params, Mapping):
        raise ValidationError(f"params for guard '{guard_type}' must be an object")
    guard = factory(params)
    description: Optional[object] = spec.get("description")
    if description:
        guard = replace(guard, description=str(description))
    return guard
