"""Tests for lifecycle graphs and transition guards."""

import json

import pytest

from capacity_governance.errors import ValidationError, WorkflowError
from capacity_governance.guards import TransitionGuard, build_guard, register_guard, registered_guards
from capacity_governance.lifecycle import LifecycleGraph
from capacity_governance.models import BACKLOG, BLOCKED, DONE, IN_PROGRESS, PLANNED, READY

from conftest import FIXTURES, make_item


@pytest.fixture
def minimal():
    return LifecycleGraph(json.loads((FIXTURES / "lifecycle-minimal.json").read_text()))


@pytest.fixture
def default():
    return LifecycleGraph.default()


class TestStructure:
    def test_default_is_valid(self, default):
        result = default.validate()
        assert result.valid
        assert result.errors == ()

    def test_minimal_is_valid(self, minimal):
        assert minimal.validate().valid
        assert minimal.start_states == (BACKLOG,)
        assert minimal.valid_targets(BACKLOG) == [READY]

    def test_reports_every_problem(self):
        graph = LifecycleGraph(
            {
                "states": ["a", "b", "c", "lonely"],
                "start_states": ["a", "ghost"],
                "transitions": [
                    {"from": "a", "to": "b"},
                    {"from": "c", "to": "b"},
                    {"from": "b", "to": "nowhere"},
                ],
            }
        )
        result = graph.validate()
        assert not result.valid
        assert "Transition references undeclared target state 'nowhere'" in result.errors
        assert "Start state 'ghost' is not declared" in result.errors
        assert "State 'lonely' is an orphan (no incoming or outgoing transitions)" in result.errors
        assert "State 'c' is not reachable from any start state" in result.errors

    def test_empty_states(self):
        result = LifecycleGraph({"states": []}).validate()
        assert not result.valid
        assert result.errors == ("Lifecycle must have at least one state",)

    def test_start_state_defaults_to_first(self):
        graph = LifecycleGraph({"states": ["open", "closed"], "transitions": [{"from": "open", "to": "closed"}]})
        assert graph.start_states == ("open",)

    def test_shape_errors_fail_fast(self):
        with pytest.raises(ValidationError, match="states"):
            LifecycleGraph({"transitions": []})
        with pytest.raises(ValidationError, match="unknown guard type"):
            LifecycleGraph(
                {
                    "states": ["a", "b"],
                    "transitions": [{"from": "a", "to": "b", "guards": [{"type": "telepathy"}]}],
                }
            )

    def test_serialization_round_trip(self, default):
        assert LifecycleGraph(default.to_dict()).to_dict() == default.to_dict()


class TestCanTransition:
    def test_missing_edge_lists_valid_targets(self, minimal):
        result = minimal.can_transition(make_item("x"), DONE)
        assert not result.allowed
        assert result.reason == "No transition from 'backlog' to 'done'. Valid targets: [ready]"

    def test_allowed_edge(self, minimal):
        result = minimal.can_transition(make_item("x"), READY)
        assert result.allowed
        assert result.reason == "Transition allowed"

    def test_undefined_target(self, minimal):
        result = minimal.can_transition(make_item("x"), "archived")
        assert not result.allowed
        assert "'archived' is not defined" in result.reason

    def test_undefined_current_state(self, minimal):
        result = minimal.can_transition(make_item("x", state="limbo"), READY)
        assert not result.allowed
        assert "Current state 'limbo'" in result.reason

    def test_requires_prior_state_guard(self, default):
        skipped_ready = make_item("x", state=PLANNED, history=(BACKLOG, PLANNED))
        result = default.can_transition(skipped_ready, IN_PROGRESS)
        assert not result.allowed
        assert result.reason == (
            "Guard failed: requires_prior_state (Item must have previously been in 'ready')"
        )

        went_through_ready = make_item("y", state=PLANNED, history=(BACKLOG, READY, PLANNED))
        assert default.can_transition(went_through_ready, IN_PROGRESS).allowed

    def test_leaving_blocked_needs_unblock(self, default):
        blocked = make_item("x", state=BLOCKED, history=(BACKLOG, READY, BLOCKED))
        result = default.can_transition(blocked, READY)
        assert not result.allowed
        assert result.reason.startswith("Guard failed: not_blocked")


class TestApplyTransition:
    def test_appends_history(self, default):
        item = make_item("x")
        moved = default.apply_transition(item, READY)
        assert moved.state == READY
        assert moved.history == (BACKLOG, READY)
        assert item.state == BACKLOG

    def test_illegal_transition_raises(self, default):
        with pytest.raises(WorkflowError) as excinfo:
            default.apply_transition(make_item("x"), DONE)
        assert excinfo.value.current_state == BACKLOG
        assert excinfo.value.attempted_state == DONE

    def test_unblock_resumes_prior_state(self, default):
        item = default.apply_transition(make_item("x", state=READY, history=(BACKLOG, READY)), BLOCKED)
        resumed = default.unblock(item)
        assert resumed.state == READY
        assert resumed.history == (BACKLOG, READY, BLOCKED, READY)

    def test_unblock_explicit_target(self, default):
        item = make_item("x", state=BLOCKED, history=(BACKLOG, BLOCKED))
        assert default.unblock(item, PLANNED).state == PLANNED

    def test_unblock_rejects_unblocked_items(self, default):
        with pytest.raises(WorkflowError, match="not blocked"):
            default.unblock(make_item("x"))

    def test_unblock_rejects_unknown_target(self, default):
        item = make_item("x", state=BLOCKED, history=(BACKLOG, BLOCKED))
        with pytest.raises(WorkflowError):
            default.unblock(item, "archived")


class TestGuards:
    def test_build_with_description_override(self):
        guard = build_guard(
            {"type": "requires_prior_state", "description": "Must be groomed", "params": {"state": "ready"}}
        )
        assert guard.description == "Must be groomed"
        assert guard.to_dict() == {
            "type": "requires_prior_state",
            "description": "Must be groomed",
            "params": {"state": "ready"},
        }

    def test_missing_param(self):
        with pytest.raises(ValidationError, match="'state' param"):
            build_guard({"type": "requires_prior_state"})

    def test_custom_guard(self):
        def has_owner(params):
            return TransitionGuard(
                type="has_owner",
                description="Item must have an owner",
                check=lambda item: bool(item.metadata.get("owner")),
            )

        register_guard("has_owner", has_owner)
        assert "has_owner" in registered_guards()
        graph = LifecycleGraph(
            {
                "states": ["open", "assigned"],
                "transitions": [{"from": "open", "to": "assigned", "guards": [{"type": "has_owner"}]}],
            }
        )
        orphan = make_item("x", state="open")
        owned = make_item("y", state="open", metadata={"owner": "dana"})
        assert not graph.can_transition(orphan, "assigned").allowed
        assert graph.can_transition(owned, "assigned").allowed
