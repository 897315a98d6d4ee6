"""Pytest configuration and fixtures."""

import json
from collections.abc import Iterator
from pathlib import Path

import pytest

from cpamm.amm.pool import PoolEngine
from cpamm.custody import InMemoryAssetLedger
from cpamm.models.scenario import Scenario
from tests.helpers import BOB, CAROL, make_pool, make_seeded_pool

FIXTURES_DIR = Path(__file__).parent / "fixtures"
SCENARIOS_DIR = FIXTURES_DIR / "scenarios"


def load_scenario_fixture(name: str) -> tuple[Scenario, dict]:
    """Load a scenario fixture by name.

    Args:
        name: Fixture name (e.g., "basic_swap")

    Returns:
        Parsed Scenario and the fixture's "expected" block
    """
    path = SCENARIOS_DIR / f"{name}.json"
    with open(path) as f:
        data = json.load(f)
    return Scenario.model_validate(data), data.get("expected", {})


def iter_scenario_fixtures() -> Iterator[tuple[str, Scenario, dict]]:
    """Iterate over scenario fixtures.

    Yields:
        Tuples of (fixture_name, Scenario, expected)
    """
    if not SCENARIOS_DIR.exists():
        return

    for path in sorted(SCENARIOS_DIR.glob("*.json")):
        scenario, expected = load_scenario_fixture(path.stem)
        yield path.stem, scenario, expected


@pytest.fixture
def empty_pool() -> tuple[PoolEngine, InMemoryAssetLedger]:
    """An empty pool with BOB and CAROL funded."""
    return make_pool(funded=(BOB, CAROL))


@pytest.fixture
def seeded_pool() -> tuple[PoolEngine, InMemoryAssetLedger]:
    """A (1000, 4000) pool bootstrapped by ALICE, with BOB and CAROL funded."""
    return make_seeded_pool(funded=(BOB, CAROL))
