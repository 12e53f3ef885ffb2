"""
Test configuration and fixtures for the MazeLang test suite.
"""
import sys
import pytest
from pathlib import Path
from typing import Any, Dict, List

# Add project root to Python path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mazelang.config import ExecutionLimits
from mazelang.evaluator import Evaluator
from mazelang.outcome import TallyOutcomeEvaluator
from mazelang.scheduling import ManualScheduler
from mazelang.world import Battery, GridWorld


def make_program(*actions: Dict[str, Any], functions: List[Dict[str, Any]] = None,
                 name: str = "test") -> Dict[str, Any]:
    """Wrap raw action nodes in a program document."""
    return {
        "version": "1.0",
        "programName": name,
        "functions": functions or [],
        "actions": list(actions),
    }


def make_world(**overrides) -> GridWorld:
    """8x5 corridor. The robot starts at (0, 2) facing east.

    Tile (2, 2) holds 2 green batteries, tile (4, 2) holds 3 green, and tile
    (6, 2) holds one red and one yellow. The warehouse at (0, 3), just south of
    the start, stocks 2 boxes. Tile (3, 0) is a hole.
    """
    params = dict(
        width=8,
        height=5,
        robot=(0, 2),
        direction="east",
        batteries=[
            Battery(2, 2, "green"), Battery(2, 2, "green"),
            Battery(4, 2, "green"), Battery(4, 2, "green"), Battery(4, 2, "green"),
            Battery(6, 2, "red"), Battery(6, 2, "yellow"),
        ],
        boxes={(0, 3): 2},
        blocked={(3, 0)},
        warehouse=(0, 3),
    )
    params.update(overrides)
    return GridWorld(**params)


@pytest.fixture
def grid_world() -> GridWorld:
    return make_world()


@pytest.fixture
def evaluator(grid_world) -> Evaluator:
    return Evaluator(grid_world)


@pytest.fixture
def limits() -> ExecutionLimits:
    """Small caps so runaway programs fail fast."""
    return ExecutionLimits(max_operations=200, max_range_iterations=50, max_repeat=50,
                           step_delay=0.01, move_delay=0.01)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def two_green() -> TallyOutcomeEvaluator:
    """Level target: exactly two green batteries."""
    return TallyOutcomeEvaluator(required_batteries={"green": 2})
