from __future__ import annotations
from typing import Any, Callable, List, Optional, Set

from loguru import logger
from opentelemetry import trace

from .ast import Program
from .config import ExecutionLimits
from .errors import ExecutorStateError, MazeLangError
from .evaluator import Evaluator
from .machine import Machine
from .outcome import OutcomeEvaluator
from .parser import load as load_program
from .scheduling import AsyncioScheduler, Scheduler
from .types import ExecutorEvent, ExecutorState, ExecutorStatus, Outcome, PrimitiveAction
from .world import acquire_world, release_world

_tracer = trace.get_tracer(__name__)


class InteractiveExecutor:
    """Drives the live world one unit step at a time.

    Each step runs, then the executor suspends until the scheduler calls back
    (a timer or an animation-completed signal from the host). Only one callback
    is ever pending; pause() and stop() cancel it.
    """

    def __init__(self, world: Any, outcome_evaluator: OutcomeEvaluator,
                 scheduler: Optional[Scheduler] = None, limits: Optional[ExecutionLimits] = None,
                 on_event: Optional[Callable[[ExecutorEvent], None]] = None,
                 is_game_over: Optional[Callable[[], bool]] = None,
                 query: Optional[Callable[..., Any]] = None):
        self.world = world
        self.outcome_evaluator = outcome_evaluator
        self.scheduler = scheduler or AsyncioScheduler()
        self.limits = limits or ExecutionLimits.from_env()
        self.on_event = on_event
        self.is_game_over = is_game_over
        self.query = query
        self.program: Optional[Program] = None
        self.machine: Optional[Machine] = None
        self.state = ExecutorState.Idle
        self.outcome: Optional[Outcome] = None
        self.actions: List[PrimitiveAction] = []
        self.console: List[str] = []
        self._handle: Any = None
        self._span = None

    def log(self, msg: str):
        self.console.append(msg)
        logger.info(msg)

    # ---------- Lifecycle ----------
    def load(self, source: Any) -> Program:
        if self.state in (ExecutorState.Running, ExecutorState.Paused):
            self.stop()
        self.program = source if isinstance(source, Program) else load_program(source, self.limits)
        self.machine = None
        self.state = ExecutorState.Idle
        self.outcome = None
        self.log(f"[load] {self.program.name}: {len(self.program.actions)} actions")
        return self.program

    def start(self) -> bool:
        if self.program is None:
            raise ExecutorStateError("No program loaded")
        if self.state in (ExecutorState.Running, ExecutorState.Paused):
            logger.warning("Program already running")
            return False
        if self.state.terminal:
            logger.warning("Program already finished ({}); stop() before restarting", self.state.value)
            return False
        if self.is_game_over is not None and self.is_game_over():
            logger.warning("Game already ended; not starting")
            return False
        acquire_world(self.world, self)
        self.machine = Machine(self.program, self.world, Evaluator(self.world, self.query), self.limits)
        self.state = ExecutorState.Running
        self.outcome = None
        self.actions = []
        self._span = _tracer.start_span(f"program:{self.program.name}")
        self.log(f"[start] {self.program.name}")
        self._emit("started")
        self._tick()
        return True

    def pause(self) -> None:
        if self.state is not ExecutorState.Running:
            return
        self._cancel_pending()
        self.state = ExecutorState.Paused
        self.log(f"[pause] at step {self._step_index()}")
        self._emit("paused")

    def resume(self) -> None:
        if self.state is not ExecutorState.Paused:
            return
        self.state = ExecutorState.Running
        self.log(f"[resume] from step {self._step_index()}")
        self._emit("resumed")
        self._tick()

    def stop(self) -> None:
        self._cancel_pending()
        was = self.state
        if self.machine is not None:
            release_world(self.world, self)
        self.machine = None
        self.state = ExecutorState.Idle
        self.outcome = None
        self._end_span()
        if was is not ExecutorState.Idle:
            self.log("[stop]")
            self._emit("stopped")

    def status(self) -> ExecutorStatus:
        return ExecutorStatus(
            state=self.state,
            running=self.state in (ExecutorState.Running, ExecutorState.Paused),
            paused=self.state is ExecutorState.Paused,
            step_index=self._step_index(),
            total_steps=self.machine.total_steps if self.machine else (len(self.program.actions) if self.program else 0),
            program_name=self.program.name if self.program else None,
            outcome=self.outcome,
        )

    @property
    def used_statements(self) -> Set[str]:
        return set(self.machine.used_statements) if self.machine else set()

    # ---------- Stepping ----------
    def _tick(self) -> None:
        self._handle = None
        if self.state is not ExecutorState.Running or self.machine is None:
            return
        try:
            action = self.machine.step()
        except MazeLangError as e:
            self._fail(str(e))
            return
        except Exception as e:  # world collaborator error; never escapes into the host loop
            logger.exception("Unexpected error while executing step")
            self._fail(f"Execution error: {e}")
            return

        if action is None:
            self._complete()
            return
        self.actions.append(action)
        self.log(f"[step {self._step_index()}/{self.machine.total_steps}] {action.type}"
                 + (f" ({action.color})" if action.color else ""))
        self._emit("step", action)
        if not action.success:
            self._fail(action.message or f"{action.type} failed")
            return
        delay = self.limits.move_delay if action.type == "forward" else self.limits.step_delay
        self._handle = self.scheduler.call_later(delay, self._tick)

    def _complete(self) -> None:
        try:
            outcome = self.outcome_evaluator.evaluate(self.world, self.used_statements)
        except Exception as e:
            logger.exception("Outcome evaluation failed")
            self._fail(f"Outcome evaluation failed: {e}")
            return
        self.outcome = outcome
        self.state = ExecutorState.Completed
        release_world(self.world, self)
        self.log(f"[done] {'won' if outcome.won else 'lost'}: {outcome.message}")
        self._end_span()
        self._emit("completed", message=outcome.message)

    def _fail(self, reason: str) -> None:
        self._cancel_pending()
        self.outcome = Outcome(False, reason)
        self.state = ExecutorState.Failed
        release_world(self.world, self)
        logger.error("Program failed at step {}: {}", self._step_index(), reason)
        self.console.append(f"[fail] {reason}")
        self._end_span()
        self._emit("failed", message=reason)

    # ---------- Helpers ----------
    def _cancel_pending(self) -> None:
        if self._handle is not None:
            self.scheduler.cancel(self._handle)
            self._handle = None

    def _step_index(self) -> int:
        return self.machine.position if self.machine else 0

    def _end_span(self) -> None:
        if self._span is not None:
            self._span.end()
            self._span = None

    def _emit(self, kind: str, action: Optional[PrimitiveAction] = None, message: Optional[str] = None) -> None:
        if self.on_event is not None:
            self.on_event(ExecutorEvent(kind, self.status(), action, message))
