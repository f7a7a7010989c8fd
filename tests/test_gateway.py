"""Tests for the transition gateway."""

import asyncio

import pytest

from capacity_governance.dependency_graph import DependencyGraph
from capacity_governance.errors import NotFoundError
from capacity_governance.gateway import ConstraintResult, TransitionGateway
from capacity_governance.lifecycle import LifecycleGraph
from capacity_governance.models import BACKLOG, BLOCKED, DONE, IN_PROGRESS, PLANNED, READY

from conftest import make_item


def _gateway(dep_state=DONE, hook=None):
    items = [
        make_item("base", state=dep_state),
        make_item(
            "feature",
            state=PLANNED,
            history=(BACKLOG, READY, PLANNED),
            dependencies=("base",),
        ),
    ]
    return TransitionGateway(LifecycleGraph.default(), DependencyGraph(items), constraint_hook=hook)


def _request(gateway, item_id, target, context=None):
    return asyncio.run(gateway.request_transition(item_id, target, context))


class TestStructuralStage:
    def test_structural_failure_short_circuits(self):
        calls = []

        async def hook(item_id, target, context):
            calls.append(item_id)
            return ConstraintResult(approved=True)

        decision = _request(_gateway(hook=hook), "feature", DONE)
        assert not decision.allowed
        assert decision.reason.startswith("No transition from 'planned' to 'done'")
        assert decision.dependency_result is None
        assert decision.constraint_result.approved
        assert calls == []


class TestDependencyStage:
    def test_pending_dependency_blocks_work_start(self):
        decision = _request(_gateway(dep_state=IN_PROGRESS), "feature", IN_PROGRESS)
        assert not decision.allowed
        assert decision.structural_result.allowed
        assert decision.dependency_result.pending_dependencies == ("base",)
        assert decision.reason == "Blocked by pending dependencies: base"

    def test_dependency_check_skipped_for_other_targets(self):
        decision = _request(_gateway(dep_state=IN_PROGRESS), "feature", BLOCKED)
        assert decision.allowed
        assert decision.dependency_result is None

    def test_satisfied_dependencies(self):
        decision = _request(_gateway(), "feature", IN_PROGRESS)
        assert decision.allowed
        assert decision.dependency_result.allowed
        assert decision.reason == "Transition allowed"


class TestConstraintStage:
    def test_hook_rejection_joins_violations(self):
        async def hook(item_id, target, context):
            return {"approved": False, "violations": ["budget frozen", "needs sign-off"]}

        decision = _request(_gateway(hook=hook), "feature", IN_PROGRESS)
        assert not decision.allowed
        assert decision.reason == "Constraint violation: budget frozen; needs sign-off"
        assert decision.constraint_result.violations == ("budget frozen", "needs sign-off")

    def test_hook_receives_context_verbatim(self):
        seen = []

        async def hook(item_id, target, context):
            seen.append((item_id, target, context))
            return ConstraintResult(approved=True)

        context = {"requested_by": "pm", "ticket": 42}
        _request(_gateway(hook=hook), "feature", IN_PROGRESS, context)
        assert seen == [("feature", IN_PROGRESS, context)]

    def test_registered_hook_replaces_default(self):
        gateway = _gateway()

        def sync_hook(item_id, target, context):
            return ConstraintResult(approved=False, violations=("freeze",))

        gateway.register_constraint_hook(sync_hook)
        decision = _request(gateway, "feature", IN_PROGRESS)
        assert decision.reason == "Constraint violation: freeze"

    def test_unsupported_hook_result(self):
        async def hook(item_id, target, context):
            return "yes"

        with pytest.raises(TypeError):
            _request(_gateway(hook=hook), "feature", IN_PROGRESS)


class TestUnknownItem:
    def test_raises_not_found(self):
        with pytest.raises(NotFoundError):
            _request(_gateway(), "ghost", READY)

    def test_decision_serializes(self):
        payload = _request(_gateway(), "feature", IN_PROGRESS).to_dict()
        assert payload["allowed"] is True
        assert payload["dependency_result"]["pending_dependencies"] == []
        assert payload["constraint_result"] == {"approved": True, "violations": []}
