"""
Execution limits and timings for MazeLang executors.
"""
import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


@dataclass(frozen=True)
class ExecutionLimits:
    # Total primitive units plus control expansions allowed in one run
    max_operations: int = 10000
    # Iterations a single repeatRange activation may unroll
    max_range_iterations: int = 1000
    # Declared count ceiling for load-time repeat unrolling
    max_repeat: int = 1000
    # Seconds between interactive steps
    step_delay: float = 0.5
    move_delay: float = 0.4

    @classmethod
    def from_env(cls) -> "ExecutionLimits":
        return cls(
            max_operations=_env_int("MAZELANG_MAX_OPERATIONS", cls.max_operations),
            max_range_iterations=_env_int("MAZELANG_MAX_RANGE_ITERATIONS", cls.max_range_iterations),
            max_repeat=_env_int("MAZELANG_MAX_REPEAT", cls.max_repeat),
            step_delay=_env_float("MAZELANG_STEP_DELAY", cls.step_delay),
            move_delay=_env_float("MAZELANG_MOVE_DELAY", cls.move_delay),
        )
