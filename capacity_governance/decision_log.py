from __future__ import annotations

import copy
import threading
import types
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Literal, Mapping, Optional, Protocol, Sequence, Tuple

from .models import ConstraintWarning, Violation
from .projector import ProjectedScenario

Action = Literal["REQUEST_TRANSITION", "VALIDATE_PORTFOLIO", "AUTO_SCHEDULE", "WHAT_IF"]
Outcome = Literal["APPROVED", "REJECTED"]

REQUEST_TRANSITION: Action = "REQUEST_TRANSITION"
VALIDATE_PORTFOLIO: Action = "VALIDATE_PORTFOLIO"
AUTO_SCHEDULE: Action = "AUTO_SCHEDULE"
WHAT_IF: Action = "WHAT_IF"

APPROVED: Outcome = "APPROVED"
REJECTED: Outcome = "REJECTED"

CAPACITY_CHECK = "CAPACITY_CHECK"
DEPENDENCY_ORDER = "DEPENDENCY_ORDER"
SKILL_AVAILABILITY = "SKILL_AVAILABILITY"
STRUCTURAL_LEGALITY = "STRUCTURAL_LEGALITY"


def _now_iso() -> str:
    """Return current UTC timestamp as ISO string with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds")


def _freeze(value: object) -> object:
    """Read-only view of a request payload: mappings become proxies, sequences tuples."""
    if isinstance(value, Mapping):
        return types.MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: object) -> object:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_thaw(item) for item in value]
    return value


def constraints_for(action: Action) -> Tuple[str, ...]:
    evaluated = (CAPACITY_CHECK, DEPENDENCY_ORDER, SKILL_AVAILABILITY)
    if action == REQUEST_TRANSITION:
        return evaluated + (STRUCTURAL_LEGALITY,)
    return evaluated


@dataclass(frozen=True)
class DecisionLogEntry:
    id: str
    timestamp: str
    action: Action
    request: Mapping[str, object]
    projected_scenario: ProjectedScenario
    constraints_evaluated: Tuple[str, ...]
    result: Outcome
    violations: Tuple[Violation, ...] = ()
    warnings: Tuple[ConstraintWarning, ...] = ()
    duration_ms: float = 0.0

    @property
    def approved(self) -> bool:
        return self.result == APPROVED

    def to_dict(self, include_scenario: bool = False) -> Dict[str, object]:
        payload: Dict[str, object] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action,
            "request": _thaw(self.request),
            "constraints_evaluated": list(self.constraints_evaluated),
            "result": self.result,
            "violations": [violation.to_dict() for violation in self.violations],
            "warnings": [warning.to_dict() for warning in self.warnings],
            "duration_ms": round(self.duration_ms, 3),
        }
        if include_scenario:
            payload["projected_scenario"] = self.projected_scenario.to_dict()
        return payload


class DecisionSink(Protocol):
    def write(self, entry: DecisionLogEntry) -> None:
        ...


class DecisionLog:
    """Append-only, in-memory record of governance decisions.

    Entries are immutable once appended. Every appended entry is forwarded to
    the registered sinks in registration order.
    """

    def __init__(self, sinks: Sequence[DecisionSink] = ()) -> None:
        self._entries: List[DecisionLogEntry] = []
        self._sinks: List[DecisionSink] = list(sinks)
        self._counter = 0
        self._lock = threading.Lock()

    def add_sink(self, sink: DecisionSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def record(
        self,
        action: Action,
        request: Mapping[str, object],
        scenario: ProjectedScenario,
        result: Outcome,
        violations: Sequence[Violation] = (),
        warnings: Sequence[ConstraintWarning] = (),
        duration_ms: float = 0.0,
        constraints_evaluated: Optional[Sequence[str]] = None,
    ) -> DecisionLogEntry:
        with self._lock:
            self._counter += 1
            entry = DecisionLogEntry(
                id=f"decision-{self._counter}",
                timestamp=_now_iso(),
                action=action,
                request=_freeze(copy.deepcopy(dict(request))),
                projected_scenario=scenario,
                constraints_evaluated=tuple(
                    constraints_evaluated if constraints_evaluated is not None else constraints_for(action)
                ),
                result=result,
                violations=tuple(violations),
                warnings=tuple(warnings),
                duration_ms=duration_ms,
            )
            self._entries.append(entry)
            sinks = list(self._sinks)
        for sink in sinks:
            sink.write(entry)
        return entry

    def entries(self) -> List[DecisionLogEntry]:
        with self._lock:
            return list(self._entries)

    def get(self, entry_id: str) -> Optional[DecisionLogEntry]:
        with self._lock:
            for entry in self._entries:
                if entry.id == entry_id:
                    return entry
        return None

    def by_action(self, action: Action) -> List[DecisionLogEntry]:
        with self._lock:
            return [entry for entry in self._entries if entry.action == action]

    def latest(self) -> Optional[DecisionLogEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def to_list(self, include_scenario: bool = False) -> List[Dict[str, object]]:
        return [entry.to_dict(include_scenario=include_scenario) for entry in self.entries()]
