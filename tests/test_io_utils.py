"""Tests for JSON loading and output helpers."""

import json
from datetime import date

import pytest

from capacity_governance.io_utils import (
    load_capacity_plan,
    load_changes,
    load_config,
    load_lifecycle,
    load_work_items,
    parse_work_items,
    period_labels,
    unknown_states,
    write_csv,
    write_json,
)
from capacity_governance.lifecycle import LifecycleGraph
from capacity_governance.models import GovernanceConfig
from capacity_governance.projector import ADD_CAPACITY, MOVE_ITEM, REMOVE_CAPACITY, ScenarioProjector

from conftest import FIXTURES, make_item


def _write(tmp_path, name, payload):
    path = tmp_path / name
    path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload)
    return path


class TestConfig:
    def test_fixture(self):
        cfg = load_config(FIXTURES / "config.json")
        assert cfg.planning_start == date(2025, 1, 15)
        assert cfg.period_months == 3
        assert cfg.logging_level == "WARNING"
        assert cfg.ready_dependency_states == ("done", "review")

    def test_defaults(self, tmp_path):
        assert load_config(_write(tmp_path, "config.json", {})) == GovernanceConfig()

    @pytest.mark.parametrize(
        "payload,message",
        [
            ({"near_capacity_threshold": 1.5}, "near_capacity_threshold"),
            ({"critical_overage_ratio": -1}, "critical_overage_ratio"),
            ({"tight_chain_length": 1}, "tight_chain_length"),
            ({"period_months": 0}, "period_months"),
            ({"planning_start": "not a date"}, "planning_start"),
            ({"work_starting_states": "in_progress"}, "work_starting_states"),
        ],
    )
    def test_invalid_values(self, tmp_path, payload, message):
        with pytest.raises(ValueError, match=message):
            load_config(_write(tmp_path, "config.json", payload))

    def test_invalid_json(self, tmp_path):
        with pytest.raises(ValueError, match="not valid JSON"):
            load_config(_write(tmp_path, "config.json", "{oops"))


class TestCapacityPlan:
    def test_fixture(self, portfolio_plan):
        assert portfolio_plan.periods == 6
        assert portfolio_plan.capacity_for("frontend") == 50.0
        assert portfolio_plan.capacity_for("qa") == 0.0

    @pytest.mark.parametrize(
        "payload",
        [
            {"periods": 0, "capacity_by_skill": {"backend": 10}},
            {"periods": 3, "capacity_by_skill": {}},
            {"periods": 3, "capacity_by_skill": {"backend": "lots"}},
        ],
    )
    def test_invalid(self, tmp_path, payload):
        with pytest.raises(ValueError):
            load_capacity_plan(_write(tmp_path, "capacity.json", payload))


class TestWorkItems:
    def test_fixture(self, portfolio_items):
        assert [item.id for item in portfolio_items] == ["item-1", "item-2", "item-3", "item-4", "item-5"]
        assert portfolio_items[1].dependencies == ("item-1",)
        assert portfolio_items[0].demand_by_skill == {"backend": 40.0, "devops": 20.0}
        assert all(item.start_period is None for item in portfolio_items)

    def test_negative_start_reads_as_unscheduled(self):
        (item,) = parse_work_items([{"id": "a", "start_period": -1}])
        assert item.start_period is None

    def test_unsupported_fields(self):
        with pytest.raises(ValueError, match="unsupported fields: owner"):
            parse_work_items([{"id": "a", "owner": "x"}])

    def test_duplicates(self):
        with pytest.raises(ValueError, match="duplicate"):
            parse_work_items([{"id": "a"}, {"id": "a"}])

    def test_bad_duration(self):
        with pytest.raises(ValueError, match="duration"):
            parse_work_items([{"id": "a", "duration": 0}])

    def test_loads_serialized_items(self, tmp_path):
        path = _write(tmp_path, "items.json", [make_item("a", duration=2).to_dict()])
        (item,) = load_work_items(path)
        assert item.duration == 2
        assert item.history == ("backlog",)


class TestChanges:
    def test_fixture(self):
        changes = load_changes(FIXTURES / "changes.json")
        assert [change.kind for change in changes] == [ADD_CAPACITY, MOVE_ITEM, REMOVE_CAPACITY]
        assert changes[1].target_period == 4
        assert changes[2].capacity_delta == 10.0

    def test_add_item_takes_item_id(self, tmp_path):
        path = _write(tmp_path, "changes.json", [{"kind": "ADD_ITEM", "item": {"id": "new", "duration": 2}}])
        (change,) = load_changes(path)
        assert change.item_id == "new"
        assert change.item.duration == 2

    def test_unknown_kind(self, tmp_path):
        with pytest.raises(ValueError, match="unsupported kind"):
            load_changes(_write(tmp_path, "changes.json", [{"kind": "SPLIT"}]))

    def test_missing_fields(self, tmp_path):
        with pytest.raises(ValueError, match="target_period"):
            load_changes(_write(tmp_path, "changes.json", [{"kind": "MOVE_ITEM", "item_id": "a"}]))


class TestLifecycle:
    def test_fixture(self):
        graph = load_lifecycle(FIXTURES / "lifecycle-minimal.json")
        assert graph.states == ("backlog", "ready", "done")

    def test_invalid_definition(self, tmp_path):
        path = _write(tmp_path, "lifecycle.json", {"states": ["a", "b"], "transitions": []})
        with pytest.raises(ValueError, match="invalid lifecycle definition"):
            load_lifecycle(path)

    def test_unknown_states(self):
        items = [make_item("a", state="ready"), make_item("b", state="triage"), make_item("c", state="planned")]
        assert unknown_states(items) == ["triage"]
        minimal = LifecycleGraph({"states": ["backlog", "ready", "done"]})
        assert unknown_states(items, minimal) == ["planned", "triage"]


class TestPeriodLabels:
    def test_quarters_from_planning_start(self):
        cfg = load_config(FIXTURES / "config.json")
        assert period_labels(cfg, 6) == ["2025-01", "2025-04", "2025-07", "2025-10", "2026-01", "2026-04"]

    def test_monthly(self):
        cfg = GovernanceConfig(planning_start=date(2024, 11, 30), period_months=1)
        assert period_labels(cfg, 3) == ["2024-11", "2024-12", "2025-01"]

    def test_without_start(self):
        assert period_labels(GovernanceConfig(), 3) == ["P0", "P1", "P2"]


class TestWriters:
    def test_write_json_creates_parents(self, tmp_path):
        path = tmp_path / "nested" / "out.json"
        write_json({"when": date(2025, 1, 1)}, path)
        assert json.loads(path.read_text()) == {"when": "2025-01-01"}

    def test_write_csv(self, tmp_path, backend_plan):
        path = tmp_path / "out" / "grid.csv"
        write_csv(ScenarioProjector(backend_plan).project([]).to_frame(), path)
        lines = path.read_text().splitlines()
        assert lines[0] == "period,label,skill,capacity,allocated,remaining,utilization"
        assert len(lines) == 4
