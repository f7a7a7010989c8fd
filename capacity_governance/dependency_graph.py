"""Dependency graph over work items: ordering, cycles, critical path, readiness."""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .errors import CycleError, NotFoundError, ValidationError
from .models import DONE, REVIEW, State, WorkItem

WHITE, GRAY, BLACK = 0, 1, 2


@dataclass(frozen=True)
class DependencyCheck:
    allowed: bool
    reason: str
    pending_dependencies: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "pending_dependencies": list(self.pending_dependencies),
        }


def dependency_depths(items: Mapping[str, WorkItem]) -> Dict[str, int]:
    """Length of the longest dependency chain ending at each item.

    An item without dependencies has depth 1. Unknown dependency ids are
    ignored and an edge back into the chain being walked contributes 0, so the
    walk terminates on graphs that were never validated for cycles.
    """
    depths: Dict[str, int] = {}
    open_nodes: set = set()
    for root in items:
        if root in depths:
            continue
        stack: List[Tuple[str, bool]] = [(root, False)]
        while stack:
            node, expanded = stack.pop()
            if node in depths:
                continue
            deps = [dep for dep in items[node].dependencies if dep in items]
            if expanded:
                open_nodes.discard(node)
                depths[node] = 1 + max((depths.get(dep, 0) for dep in deps), default=0)
                continue
            if node in open_nodes:
                continue
            open_nodes.add(node)
            stack.append((node, True))
            for dep in reversed(deps):
                if dep not in depths and dep not in open_nodes:
                    stack.append((dep, False))
    return depths


def find_cycle_through(
    item_id: str,
    dependencies: Sequence[str],
    lookup: Mapping[str, WorkItem],
) -> Optional[List[str]]:
    """Return the cycle created by giving ``item_id`` these dependencies, if any.

    The returned path starts and ends with ``item_id``. Dependency lists are
    visited in declaration order so the first cycle found is deterministic.
    """
    for start in dependencies:
        if start == item_id:
            return [item_id, item_id]
        parents: Dict[str, Optional[str]] = {start: None}
        stack = [start]
        while stack:
            node = stack.pop()
            item = lookup.get(node)
            if item is None:
                continue
            for dep in item.dependencies:
                if dep == item_id:
                    path = [node]
                    parent = parents[node]
                    while parent is not None:
                        path.append(parent)
                        parent = parents[parent]
                    path.reverse()
                    return [item_id, *path, item_id]
                if dep not in parents:
                    parents[dep] = node
                    stack.append(dep)
    return None


class DependencyGraph:
    """Validated, immutable view of the dependency edges of a work-item set.

    Construction fails fast on duplicate ids or dependencies on unknown items.
    Cycles are allowed at construction time so that they can be reported by
    :meth:`detect_cycles`; ordering operations raise :class:`CycleError`.
    """

    def __init__(self, items: Iterable[WorkItem]) -> None:
        self._items: Dict[str, WorkItem] = {}
        self._index: Dict[str, int] = {}
        for item in items:
            if item.id in self._items:
                raise ValidationError(f"duplicate work item id '{item.id}'", {"item_id": item.id})
            self._index[item.id] = len(self._items)
            self._items[item.id] = item

        # reverse edges: item -> items it depends on; forward edges: item -> dependents
        self._dependencies: Dict[str, List[str]] = {}
        self._dependents: Dict[str, List[str]] = {item_id: [] for item_id in self._items}
        for item in self._items.values():
            deps = list(dict.fromkeys(item.dependencies))
            for dep_id in deps:
                if dep_id not in self._items:
                    raise ValidationError(
                        f"work item '{item.id}' depends on unknown item '{dep_id}'",
                        {"item_id": item.id, "dependency": dep_id},
                    )
                self._dependents[dep_id].append(item.id)
            self._dependencies[item.id] = deps
        self._depths: Optional[Dict[str, int]] = None

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def get_item(self, item_id: str) -> WorkItem:
        try:
            return self._items[item_id]
        except KeyError:
            raise NotFoundError("work item", item_id) from None

    def items(self) -> List[WorkItem]:
        return list(self._items.values())

    def dependencies_of(self, item_id: str) -> List[str]:
        self.get_item(item_id)
        return list(self._dependencies[item_id])

    def dependents(self, item_id: str) -> List[str]:
        self.get_item(item_id)
        return list(self._dependents[item_id])

    def topological_sort(self) -> List[str]:
        """Order ids so every item follows its dependencies.

        Ready items are released by ascending priority, then insertion order.
        """
        in_degree = {item_id: len(deps) for item_id, deps in self._dependencies.items()}
        heap: List[Tuple[float, int, str]] = []
        for item_id, degree in in_degree.items():
            if degree == 0:
                heapq.heappush(heap, self._sort_key(item_id))
        order: List[str] = []
        while heap:
            _, _, current = heapq.heappop(heap)
            order.append(current)
            for dependent in self._dependents[current]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(heap, self._sort_key(dependent))
        if len(order) != len(self._items):
            placed = set(order)
            stuck = [item_id for item_id in self._items if item_id not in placed]
            raise self._cycle_error(stuck)
        return order

    def topological_items(self) -> List[WorkItem]:
        return [self._items[item_id] for item_id in self.topological_sort()]

    def can_start(
        self,
        item_id: str,
        ready_states: Sequence[State] = (DONE, REVIEW),
    ) -> DependencyCheck:
        self.get_item(item_id)
        pending = sorted(
            dep_id
            for dep_id in self._dependencies[item_id]
            if self._items[dep_id].state not in ready_states
        )
        if pending:
            return DependencyCheck(
                allowed=False,
                reason=f"Blocked by pending dependencies: {', '.join(pending)}",
                pending_dependencies=tuple(pending),
            )
        return DependencyCheck(allowed=True, reason="All dependencies satisfied")

    def detect_cycles(self) -> List[List[str]]:
        """Every cycle reachable by a colour-marking DFS, as closed id paths."""
        color = {item_id: WHITE for item_id in self._items}
        cycles: List[List[str]] = []
        for root in self._items:
            if color[root] != WHITE:
                continue
            color[root] = GRAY
            path = [root]
            stack = [iter(self._dependencies[root])]
            while stack:
                advanced = False
                for dep in stack[-1]:
                    if color[dep] == GRAY:
                        cycles.append(path[path.index(dep):] + [dep])
                    elif color[dep] == WHITE:
                        color[dep] = GRAY
                        path.append(dep)
                        stack.append(iter(self._dependencies[dep]))
                        advanced = True
                        break
                if not advanced:
                    stack.pop()
                    color[path.pop()] = BLACK
        return cycles

    def critical_path(self) -> List[str]:
        """Longest dependency chain, listed from the first prerequisite onward."""
        order = self.topological_sort()
        if not order:
            return []
        depth: Dict[str, int] = {}
        previous: Dict[str, Optional[str]] = {}
        for item_id in order:
            depth[item_id] = 1
            previous[item_id] = None
            for dep_id in self._dependencies[item_id]:
                if depth[dep_id] + 1 > depth[item_id]:
                    depth[item_id] = depth[dep_id] + 1
                    previous[item_id] = dep_id
        end = order[0]
        for item_id in order:
            if depth[item_id] > depth[end]:
                end = item_id
        path: List[str] = []
        cursor: Optional[str] = end
        while cursor is not None:
            path.append(cursor)
            cursor = previous[cursor]
        path.reverse()
        return path

    def chain_length(self, item_id: str) -> int:
        self.get_item(item_id)
        if self._depths is None:
            self._depths = dependency_depths(self._items)
        return self._depths[item_id]

    def _sort_key(self, item_id: str) -> Tuple[float, int, str]:
        return (self._items[item_id].priority, self._index[item_id], item_id)

    def _cycle_error(self, stuck: List[str]) -> CycleError:
        cycles = self.detect_cycles()
        involved = list(dict.fromkeys(item_id for cycle in cycles for item_id in cycle)) or stuck
        skills = sorted({skill for item_id in involved for skill in self._items[item_id].demand_by_skill})
        cycle_label = "; ".join(" -> ".join(cycle) for cycle in cycles) or ", ".join(stuck)
        message = f"Dependency cycle detected: {cycle_label} (items: {', '.join(involved)}"
        if skills:
            message += f"; skills: {', '.join(skills)}"
        message += ")"
        return CycleError(message, cycles=cycles, items=involved)
