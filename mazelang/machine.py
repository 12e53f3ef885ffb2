from __future__ import annotations
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Deque, List, Optional, Set

from loguru import logger

from .ast import (
    ActionNode, CallFunction, Collect, Forward, If, Program, PutBox, Repeat, TakeBox,
    TurnBack, TurnLeft, TurnRight, While, is_primitive,
)
from .config import ExecutionLimits
from .errors import MazeLangError, PreconditionError, ResolutionError, RunawayError
from .evaluator import ExecutionContext, Evaluator
from .types import PrimitiveAction

BOX_ACTIONS = ("putBox", "takeBox")


@dataclass
class Instruction:
    node: ActionNode
    context: ExecutionContext


@dataclass
class _Unit:
    type: str
    color: Optional[str] = None


class Machine:
    """Self-modifying instruction queue shared by both executors.

    Control nodes are never recursed into: their resolved children are spliced
    into the queue right after the current position, so expansion is depth-first
    and left-to-right. Primitive nodes become `count` unit operations, and each
    call to step() applies exactly one unit to the world.
    """

    def __init__(self, program: Program, world: Any, evaluator: Optional[Evaluator] = None,
                 limits: Optional[ExecutionLimits] = None):
        self.program = program
        self.world = world
        self.evaluator = evaluator or Evaluator(world)
        self.limits = limits or ExecutionLimits.from_env()
        root = ExecutionContext()
        self.queue: List[Instruction] = [Instruction(node, root) for node in program.actions]
        self.position = 0
        self.operations = 0
        self.used_statements: Set[str] = set(program.load_time_statements)
        self.last_primitive: Optional[str] = None
        self.failure: Optional[str] = None
        self._pending: Deque[_Unit] = deque()

    @property
    def total_steps(self) -> int:
        return len(self.queue)

    @property
    def halted(self) -> bool:
        return self.failure is not None

    @property
    def finished(self) -> bool:
        return self.halted or (not self._pending and self.position >= len(self.queue))

    # ---------- Stepping ----------
    def step(self) -> Optional[PrimitiveAction]:
        """Apply the next unit operation to the world.

        Returns the PrimitiveAction applied (success=False when it failed), or None
        when the queue is exhausted. Control-flow failures raise MazeLangError.
        """
        if self.halted:
            return None
        try:
            while True:
                if self._pending:
                    return self._run_unit(self._pending.popleft())
                if self.position >= len(self.queue):
                    return None
                instr = self.queue[self.position]
                if is_primitive(instr.node):
                    self.position += 1
                    failed = self._activate(instr)
                    if failed is not None:
                        return failed
                else:
                    self._count_operation()
                    children = self.expand(instr)
                    self.splice(children)
        except MazeLangError as e:
            self.failure = str(e)
            raise

    def run_to_end(self, on_action=None) -> None:
        """Step until the queue is exhausted or an action fails."""
        while True:
            action = self.step()
            if action is None:
                return
            if on_action is not None:
                on_action(action)
            if not action.success:
                return

    def splice(self, children: List[Instruction]) -> None:
        at = self.position + 1
        self.queue[at:at] = children
        self.position += 1

    # ---------- Control expansion ----------
    def expand(self, instr: Instruction) -> List[Instruction]:
        node, ctx = instr.node, instr.context
        self.used_statements.add(node.kind)
        if isinstance(node, If):
            return self._expand_if(node, ctx)
        if isinstance(node, While):
            if not self.evaluator.evaluate_condition(node.condition, ctx):
                return []
            if not node.body_actions:
                raise PreconditionError("While loop has an empty body but its condition is true")
            return [Instruction(n, ctx) for n in node.body_actions] + [Instruction(node, ctx)]
        if isinstance(node, Repeat):
            return self._expand_repeat(node, ctx)
        if isinstance(node, CallFunction):
            fn = self.program.functions.get(node.function_name)
            if fn is None:
                raise ResolutionError(f"Function '{node.function_name}' is not defined")
            return [Instruction(n, ctx) for n in fn.body]
        raise ResolutionError(f"Unsupported action node: {node!r}")

    def _expand_if(self, node: If, ctx: ExecutionContext) -> List[Instruction]:
        if self.evaluator.evaluate_condition(node.condition, ctx):
            branch = node.then_actions
        else:
            branch = node.else_actions
            for clause in node.else_if_clauses:
                if self.evaluator.evaluate_condition(clause.condition, ctx):
                    branch = clause.then_actions
                    break
        return [Instruction(n, ctx) for n in branch]

    def _expand_repeat(self, node: Repeat, ctx: ExecutionContext) -> List[Instruction]:
        ev = self.evaluator
        start, end, step = (ev.resolve_numeric(e, ctx) for e in (node.start, node.end, node.step))
        if start is None or end is None or step is None:
            logger.warning("{} bounds could not be resolved; skipping", node.kind)
            return []
        if step == 0:
            raise RunawayError(f"{node.kind} step must not be 0")
        values = []
        v = start
        while (v <= end) if step > 0 else (v >= end):
            values.append(v)
            if len(values) > self.limits.max_range_iterations:
                raise RunawayError(
                    f"{node.kind} exceeded {self.limits.max_range_iterations} iterations"
                )
            v = v + step
        out: List[Instruction] = []
        for value in values:
            child = ctx.child(**{node.variable: value}) if node.variable else ctx
            out.extend(Instruction(n, child) for n in node.body)
        return out

    # ---------- Primitives ----------
    def _activate(self, instr: Instruction) -> Optional[PrimitiveAction]:
        node = instr.node
        self.used_statements.add(node.kind)
        if isinstance(node, (TurnLeft, TurnRight, TurnBack)):
            self._pending.append(_Unit(node.kind))
            return None
        count = self._resolve_count(node, instr.context)
        if count is None:
            return None
        try:
            if isinstance(node, Forward):
                self._pending.extend(_Unit("forward") for _ in range(count))
            elif isinstance(node, Collect):
                colors = [node.colors[i] if i < len(node.colors) else node.colors[-1] for i in range(count)]
                self._check_collect(colors)
                self._pending.extend(_Unit("collect", c) for c in colors)
            elif isinstance(node, (PutBox, TakeBox)):
                if count != 1:
                    raise PreconditionError(f"Can only {node.kind} 1 box at a time, requested {count}")
                self._pending.append(_Unit(node.kind))
        except PreconditionError as e:
            color = node.colors[0] if isinstance(node, Collect) else None
            return self._failed(_Unit(node.kind, color), str(e))
        return None

    def _resolve_count(self, node: ActionNode, ctx: ExecutionContext) -> Optional[int]:
        value = self.evaluator.resolve_numeric(node.count, ctx)
        if value is None:
            logger.warning("{}: count could not be resolved; skipping", node.kind)
            return None
        count = int(value)
        if count <= 0:
            logger.warning("{}: count {} is not positive; skipping", node.kind, count)
            return None
        if count > self.limits.max_operations:
            raise RunawayError(f"{node.kind} count {count} exceeds {self.limits.max_operations} operations")
        return count

    def _check_collect(self, colors: List[str]) -> None:
        tile = self.world.get_collectibles_at_current_tile()
        x, y = self.world.position
        if tile.count == 0:
            raise PreconditionError(f"No batteries at current tile ({x}, {y})")
        for color, requested in Counter(colors).items():
            available = tile.color_counts.get(color, 0)
            if available < requested:
                raise PreconditionError(
                    f"Not enough {color} batteries: requested {requested}, available {available}"
                )

    def _run_unit(self, unit: _Unit) -> PrimitiveAction:
        self._count_operation()
        if unit.type in BOX_ACTIONS and self.last_primitive == unit.type:
            return self._failed(unit, f"Cannot {unit.type} twice in a row")
        self.last_primitive = unit.type
        world = self.world
        success, message = True, None
        if unit.type == "forward":
            result = world.move_forward()
            success, message = result.success, result.error
        elif unit.type == "turnLeft":
            world.turn_left()
        elif unit.type == "turnRight":
            world.turn_right()
        elif unit.type == "turnBack":
            world.turn_back()
        elif unit.type == "collect":
            result = world.collect(unit.color)
            success, message = result.success, result.message
        elif unit.type == "putBox":
            result = world.put_box()
            success, message = result.success, result.message
        elif unit.type == "takeBox":
            result = world.take_box()
            success, message = result.success, result.message
        if not success:
            return self._failed(unit, message or f"{unit.type} failed")
        return self._record(unit, True, None)

    def _failed(self, unit: _Unit, message: str) -> PrimitiveAction:
        self.failure = message
        self._pending.clear()
        logger.debug("Step failed: {} ({})", unit.type, message)
        return self._record(unit, False, message)

    def _record(self, unit: _Unit, success: bool, message: Optional[str]) -> PrimitiveAction:
        direction = getattr(self.world, "direction", None)
        position = getattr(self.world, "position", None)
        return PrimitiveAction(
            type=unit.type,
            color=unit.color,
            success=success,
            message=message,
            position=tuple(position) if position is not None else None,
            direction=getattr(direction, "name", direction),
        )

    def _count_operation(self) -> None:
        self.operations += 1
        if self.operations > self.limits.max_operations:
            raise RunawayError(
                f"Program exceeded {self.limits.max_operations} operations (infinite loop?)"
            )
