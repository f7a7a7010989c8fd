"""Shared test fixtures for capacity-governance."""

from pathlib import Path

import pytest

from capacity_governance.governance import GovernanceEngine
from capacity_governance.io_utils import load_capacity_plan, load_work_items
from capacity_governance.models import CapacityPlan, WorkItem

FIXTURES = Path(__file__).parent / "fixtures"


def make_item(item_id, **overrides):
    fields = {"title": item_id.upper(), "demand_by_skill": {}}
    fields.update(overrides)
    return WorkItem(id=item_id, **fields)


@pytest.fixture
def portfolio_items():
    return load_work_items(FIXTURES / "items.json")


@pytest.fixture
def portfolio_plan():
    return load_capacity_plan(FIXTURES / "capacity.json")


@pytest.fixture
def backend_plan():
    return CapacityPlan(periods=3, capacity_by_skill={"backend": 100})


@pytest.fixture
def engine(portfolio_plan, portfolio_items):
    engine = GovernanceEngine(portfolio_plan)
    engine.add_items(portfolio_items)
    return engine


@pytest.fixture
def scheduled_engine(engine, portfolio_items):
    engine.auto_schedule(portfolio_items)
    return engine
