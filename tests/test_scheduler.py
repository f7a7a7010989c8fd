"""Tests for the greedy scheduler."""

import logging

import pytest

from capacity_governance.errors import CycleError, ValidationError
from capacity_governance.models import CapacityPlan
from capacity_governance.scheduler import (
    SCHEDULE_COLUMNS,
    AllocationTable,
    GreedyScheduler,
    schedule_frame,
)

from conftest import make_item


def _starts(schedule):
    return {entry.item_id: entry.start_period for entry in schedule}


class TestPlacement:
    def test_second_item_pushed_to_next_period(self, backend_plan):
        items = [
            make_item("a", demand_by_skill={"backend": 80}),
            make_item("b", demand_by_skill={"backend": 80}),
        ]
        schedule = GreedyScheduler(backend_plan).schedule(items)
        assert _starts(schedule) == {"a": 0, "b": 1}
        assert not any(entry.fallback for entry in schedule)

    def test_portfolio_layout(self, portfolio_plan, portfolio_items):
        schedule = GreedyScheduler(portfolio_plan).schedule(portfolio_items)
        assert [entry.item_id for entry in schedule] == ["item-1", "item-2", "item-3", "item-4", "item-5"]
        assert _starts(schedule) == {"item-1": 0, "item-2": 1, "item-3": 1, "item-4": 3, "item-5": 3}
        by_id = {entry.item_id: entry for entry in schedule}
        assert by_id["item-2"].end_period == 2
        assert by_id["item-2"].assigned_capacity == {"backend": 60.0, "frontend": 20.0}

    def test_dependencies_finish_first(self, portfolio_plan, portfolio_items):
        starts = _starts(GreedyScheduler(portfolio_plan).schedule(portfolio_items))
        for item in portfolio_items:
            for dep in item.dependencies:
                dep_item = next(other for other in portfolio_items if other.id == dep)
                assert starts[dep] + dep_item.duration <= starts[item.id]

    def test_priority_goes_first(self, backend_plan):
        items = [
            make_item("later", priority=5, demand_by_skill={"backend": 80}),
            make_item("sooner", priority=1, demand_by_skill={"backend": 80}),
        ]
        assert _starts(GreedyScheduler(backend_plan).schedule(items)) == {"sooner": 0, "later": 1}

    def test_committed_items_hold_capacity(self, backend_plan):
        committed = [make_item("fixed", start_period=0, demand_by_skill={"backend": 80})]
        batch = [make_item("new", demand_by_skill={"backend": 80})]
        schedule = GreedyScheduler(backend_plan).schedule(batch, committed)
        assert _starts(schedule) == {"new": 1}

    def test_committed_dependency_sets_earliest(self, backend_plan):
        committed = [make_item("base", duration=2, start_period=0)]
        batch = [make_item("next", dependencies=("base",))]
        assert _starts(GreedyScheduler(backend_plan).schedule(batch, committed)) == {"next": 2}

    def test_batch_entries_override_committed_copies(self, backend_plan):
        stale = make_item("a", start_period=0, demand_by_skill={"backend": 100})
        batch = [make_item("a", demand_by_skill={"backend": 100})]
        assert _starts(GreedyScheduler(backend_plan).schedule(batch, [stale])) == {"a": 0}


class TestFallback:
    def test_oversized_item_falls_back(self, caplog):
        plan = CapacityPlan(periods=2, capacity_by_skill={"backend": 50})
        item = make_item("big", demand_by_skill={"backend": 80})
        with caplog.at_level(logging.WARNING, logger="capacity_governance.scheduler"):
            (entry,) = GreedyScheduler(plan).schedule([item])
        assert entry.fallback
        assert entry.start_period == 0
        assert "No feasible window for big" in caplog.text

    def test_window_past_horizon_falls_back(self, backend_plan):
        items = [
            make_item("a", duration=2, demand_by_skill={"backend": 10}),
            make_item("b", duration=2, dependencies=("a",)),
        ]
        by_id = {entry.item_id: entry for entry in GreedyScheduler(backend_plan).schedule(items)}
        assert by_id["b"].fallback
        assert by_id["b"].start_period == 2
        assert by_id["b"].end_period == 3

    def test_start_past_horizon_keeps_end_after_start(self):
        plan = CapacityPlan(periods=2, capacity_by_skill={"backend": 50})
        items = [make_item("a", duration=2), make_item("b", dependencies=("a",))]
        by_id = {entry.item_id: entry for entry in GreedyScheduler(plan).schedule(items)}
        assert by_id["b"].fallback
        assert by_id["b"].start_period == 2
        assert by_id["b"].end_period == 2
        assert by_id["b"].assigned_capacity == {}


class TestErrors:
    def test_cycle(self, backend_plan):
        items = [make_item("a", dependencies=("b",)), make_item("b", dependencies=("a",))]
        with pytest.raises(CycleError):
            GreedyScheduler(backend_plan).schedule(items)

    def test_dangling_dependency(self, backend_plan):
        with pytest.raises(ValidationError):
            GreedyScheduler(backend_plan).schedule([make_item("a", dependencies=("ghost",))])


class TestAllocationTable:
    def test_fits_respects_horizon(self, backend_plan):
        table = AllocationTable(backend_plan)
        item = make_item("a", duration=2)
        assert table.fits(item, 1)
        assert not table.fits(item, 2)
        assert not table.fits(item, -1)

    def test_seed_consumes_capacity(self, backend_plan):
        table = AllocationTable(backend_plan)
        table.seed([make_item("a", start_period=1, demand_by_skill={"backend": 60})])
        assert table.periods[1].remaining("backend") == 40.0
        assert not table.fits(make_item("b", demand_by_skill={"backend": 50}), 1)
        assert table.fits(make_item("c", demand_by_skill={"backend": 40}), 1)


class TestFrame:
    def test_schedule_frame(self, portfolio_plan, portfolio_items):
        schedule = GreedyScheduler(portfolio_plan).schedule(portfolio_items)
        frame = schedule_frame(schedule, {item.id: item for item in portfolio_items})
        assert list(frame.columns) == SCHEDULE_COLUMNS
        first = frame.iloc[0]
        assert first["title"] == "Platform Setup"
        assert first["assigned_capacity"] == "backend=40.0;devops=20.0"
