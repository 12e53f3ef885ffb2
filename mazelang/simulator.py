"""Headless simulation of MazeLang programs.

Runs the same Machine as the interactive executor, synchronously and without
callbacks, inside a world transaction: the world is snapshotted first and
restored on every exit path, so a simulate() call leaves no trace on it.
"""
from __future__ import annotations
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from opentelemetry import trace

from .ast import Program
from .config import ExecutionLimits
from .errors import MazeLangError, RunawayError
from .evaluator import Evaluator
from .machine import Machine
from .outcome import OutcomeEvaluator
from .parser import load as load_program
from .persistence import world_transaction
from .types import Outcome, PrimitiveAction, SimulationResult
from .world import acquire_world, release_world

_tracer = trace.get_tracer(__name__)


class Simulator:
    def __init__(self, world: Any, outcome_evaluator: OutcomeEvaluator,
                 limits: Optional[ExecutionLimits] = None,
                 query: Optional[Callable[..., Any]] = None):
        self.world = world
        self.outcome_evaluator = outcome_evaluator
        self.limits = limits or ExecutionLimits.from_env()
        self.query = query

    def simulate(self, source: Any) -> SimulationResult:
        try:
            program = source if isinstance(source, Program) else load_program(source, self.limits)
        except RunawayError as e:
            logger.warning("Program rejected before simulation: {}", e)
            return SimulationResult(primitive_actions=[], outcome=Outcome(False, str(e)))
        owner = object()
        acquire_world(self.world, owner)
        try:
            with _tracer.start_as_current_span(f"simulate:{program.name}"):
                with world_transaction(self.world):
                    return self._run(program)
        finally:
            release_world(self.world, owner)

    def simulate_actions(self, actions: List[Dict[str, Any]]) -> SimulationResult:
        """Replay a flat list of primitive action dicts (e.g. reported by a physical robot)."""
        return self.simulate({"version": "replay", "programName": "replay", "actions": list(actions)})

    def _run(self, program: Program) -> SimulationResult:
        machine = Machine(program, self.world, Evaluator(self.world, self.query), self.limits)
        actions: List[PrimitiveAction] = []
        try:
            machine.run_to_end(actions.append)
        except MazeLangError as e:
            return self._result(actions, machine, Outcome(False, str(e)))
        except Exception as e:  # world collaborator error
            logger.exception("Unexpected error during simulation")
            return self._result(actions, machine, Outcome(False, f"Execution error: {e}"))

        if machine.failure is not None:
            failed = actions[-1] if actions else None
            where = f" at step {len(actions)}" if failed is not None else ""
            return self._result(actions, machine, Outcome(False, f"{machine.failure}{where}",
                                                          {"failedAction": failed.to_dict() if failed else None}))
        try:
            outcome = self.outcome_evaluator.evaluate(self.world, set(machine.used_statements))
        except Exception as e:
            logger.exception("Outcome evaluation failed")
            outcome = Outcome(False, f"Outcome evaluation failed: {e}")
        return self._result(actions, machine, outcome)

    @staticmethod
    def _result(actions: List[PrimitiveAction], machine: Machine, outcome: Outcome) -> SimulationResult:
        logger.debug("Simulation finished: {} actions, won={}", len(actions), outcome.won)
        return SimulationResult(
            primitive_actions=actions,
            outcome=outcome,
            used_statements=set(machine.used_statements),
            operations=machine.operations,
        )


def simulate(program: Any, world: Any, outcome_evaluator: OutcomeEvaluator,
             limits: Optional[ExecutionLimits] = None) -> SimulationResult:
    return Simulator(world, outcome_evaluator, limits).simulate(program)
