"""
Relocation search for rejected changes.

When a change is rejected the engine asks for the first later start period at
which the whole portfolio re-validates cleanly. Only the rejected item moves;
there is no search over other items.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence

from .models import Violation, WorkItem

ScenarioCheck = Callable[[List[WorkItem]], Sequence[Violation]]


@dataclass(frozen=True)
class AlternativeSuggestion:
    """Suggested start period with human-readable consequences."""
    start_period: int
    tradeoffs: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"start_period": self.start_period, "tradeoffs": list(self.tradeoffs)}


def describe_tradeoffs(item: WorkItem, start_period: int) -> List[str]:
    if item.start_period is None:
        tradeoffs = [f"Schedule start in period {start_period}"]
    else:
        tradeoffs = [f"Delay start from period {item.start_period} to period {start_period}"]
    tradeoffs.append(f"Completion shifts to period {start_period + item.duration - 1}")
    if item.dependencies:
        tradeoffs.append(
            f"Maintains dependency ordering with {len(item.dependencies)} upstream items"
        )
    return tradeoffs


def find_alternative(
    item: WorkItem,
    items: Sequence[WorkItem],
    periods: int,
    check: ScenarioCheck,
) -> Optional[AlternativeSuggestion]:
    """Scan start periods after the item's current start for a clean placement.

    ``items`` is the evaluated set (already containing ``item``); ``check``
    projects and validates a candidate set and returns its violations. The
    candidate window must fit inside the horizon.
    """
    first = 0 if item.start_period is None else item.start_period + 1
    for start in range(first, periods - item.duration + 1):
        candidate = replace(item, start_period=start)
        trial = [candidate if other.id == item.id else other for other in items]
        if not check(trial):
            return AlternativeSuggestion(start_period=start, tradeoffs=describe_tradeoffs(item, start))
    return None
