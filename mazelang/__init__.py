from .parser import load, ProgramLoader
from .runtime import InteractiveExecutor
from .simulator import Simulator, simulate
from .world import GridWorld
from .outcome import TallyOutcomeEvaluator

__all__ = [
    "load",
    "ProgramLoader",
    "InteractiveExecutor",
    "Simulator",
    "simulate",
    "GridWorld",
    "TallyOutcomeEvaluator",
]
