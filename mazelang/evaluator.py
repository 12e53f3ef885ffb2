from __future__ import annotations
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .ast import (
    And, Arithmetic, Condition, Expression, FunctionRef, Literal, NeverTrue, Or,
    SensorCheck, VariableComparison, VariableRef,
)
from .expressions import normalize_number, parse_expression_text

Number = float | int
QueryFn = Callable[..., Any]


@dataclass
class ExecutionContext:
    """Loop-variable bindings visible to one queued instruction."""
    variables: Dict[str, Number] = field(default_factory=dict)

    def child(self, **bindings: Number) -> "ExecutionContext":
        merged = dict(self.variables)
        merged.update(bindings)
        return ExecutionContext(merged)

    def __contains__(self, name: str) -> bool:
        return name in self.variables


def _tile(world):
    return world.get_collectibles_at_current_tile()

def _color_count(color: str):
    return lambda world: _tile(world).color_counts.get(color, 0)

def _boxes_ahead(world):
    query = getattr(world, "query", None)
    return query("boxesAhead") if query else None

# Values computed on demand at the robot's current tile
SENSOR_VARIABLES: Dict[str, Callable[[Any], Any]] = {
    "batteryCount": lambda world: _tile(world).count,
    "redBatteryCount": _color_count("red"),
    "yellowBatteryCount": _color_count("yellow"),
    "greenBatteryCount": _color_count("green"),
    "boxCount": _boxes_ahead,
    "carriedBoxes": lambda world: world.inventory.boxes,
}

SENSOR_PREDICATES: Dict[str, Callable[[Any], bool]] = {
    "isRed": lambda world: _color_count("red")(world) > 0,
    "isYellow": lambda world: _color_count("yellow")(world) > 0,
    "isGreen": lambda world: _color_count("green")(world) > 0,
    "hasBattery": lambda world: _tile(world).count > 0,
    "hasBox": lambda world: (_boxes_ahead(world) or 0) > 0,
    "isCarryingBox": lambda world: world.inventory.boxes > 0,
}


class Evaluator:
    """Resolves expressions and evaluates conditions against a world.

    Unresolvable values come back as None; comparisons involving None are False.
    """

    def __init__(self, world: Any, query: Optional[QueryFn] = None):
        self.world = world
        self.query = query if query is not None else getattr(world, "query", None)

    # ---------- Variables ----------
    def resolve_variable(self, name: str, ctx: Optional[ExecutionContext] = None) -> Any:
        if ctx is not None and name in ctx:
            return ctx.variables[name]
        sensor = SENSOR_VARIABLES.get(name)
        if sensor is not None:
            return sensor(self.world)
        logger.debug("Unresolved variable '{}'", name)
        return None

    def resolve_function(self, ref: FunctionRef) -> Any:
        if self.query is None:
            logger.debug("No query callback for function-style variable '{}'", ref.name)
            return None
        return self.query(ref.name, **ref.kwargs())

    # ---------- Expressions ----------
    def resolve_numeric(self, expr: Any, ctx: Optional[ExecutionContext] = None) -> Optional[Number]:
        if isinstance(expr, str):
            parsed = parse_expression_text(expr)
            if parsed is None:
                return None
            expr = parsed
        if isinstance(expr, bool):
            return int(expr)
        if isinstance(expr, (int, float)):
            return _finite(expr)
        if isinstance(expr, Literal):
            if isinstance(expr.value, str):
                return self.resolve_numeric(expr.value, ctx)
            return self.resolve_numeric(expr.value, ctx) if expr.value is not None else None
        if isinstance(expr, VariableRef):
            value = self.resolve_variable(expr.name, ctx)
            return self.resolve_numeric(value, ctx) if value is not None and not isinstance(value, str) else None
        if isinstance(expr, FunctionRef):
            value = self.resolve_function(expr)
            if value is None or isinstance(value, str):
                return None
            return self.resolve_numeric(value, ctx)
        if isinstance(expr, Arithmetic):
            return self._arithmetic(expr, ctx)
        return None

    def _arithmetic(self, expr: Arithmetic, ctx: Optional[ExecutionContext]) -> Optional[Number]:
        left = self.resolve_numeric(expr.left, ctx)
        right = self.resolve_numeric(expr.right, ctx)
        if left is None or right is None:
            return None
        try:
            if expr.op == "+":
                result = left + right
            elif expr.op == "-":
                result = left - right
            elif expr.op == "*":
                result = left * right
            elif expr.op == "/":
                if right == 0:
                    return None
                result = left / right
            elif expr.op == "^":
                # float power overflows instead of growing an unbounded int
                result = float(left) ** right
            else:
                return None
        except (OverflowError, ZeroDivisionError, ValueError):
            return None
        if isinstance(result, complex):
            return None
        return _finite(result)

    # ---------- Conditions ----------
    def evaluate_condition(self, cond: Condition, ctx: Optional[ExecutionContext] = None) -> bool:
        if isinstance(cond, VariableComparison):
            return self._compare(cond, ctx)
        if isinstance(cond, And):
            return all(self.evaluate_condition(c, ctx) for c in cond.conditions)
        if isinstance(cond, Or):
            return any(self.evaluate_condition(c, ctx) for c in cond.conditions)
        if isinstance(cond, SensorCheck):
            result = self._sensor(cond.function_name)
            return result if cond.check else not result
        if isinstance(cond, NeverTrue):
            return False
        logger.warning("Unsupported condition: {}", cond)
        return False

    def _sensor(self, name: str) -> bool:
        predicate = SENSOR_PREDICATES.get(name)
        if predicate is not None:
            return bool(predicate(self.world))
        if self.query is not None:
            value = self.query(name)
            if value is not None:
                return bool(value)
        logger.warning("Unknown sensor check '{}'", name)
        return False

    def _operand(self, expr: Expression, ctx: Optional[ExecutionContext], allow_text: bool) -> Any:
        value = self.resolve_numeric(expr, ctx)
        if value is not None:
            return value
        if isinstance(expr, VariableRef):
            raw = self.resolve_variable(expr.name, ctx)
            if isinstance(raw, str):
                return raw
            # a bare word on the value side is a string literal, e.g. "red"
            return expr.name if allow_text else None
        if isinstance(expr, Literal) and isinstance(expr.value, str):
            return expr.value
        return None

    def _compare(self, cond: VariableComparison, ctx: Optional[ExecutionContext]) -> bool:
        left = self._operand(cond.variable, ctx, allow_text=False)
        right = self._operand(cond.value, ctx, allow_text=True)
        if left is None or right is None:
            return False
        op = cond.operator
        if op == "==":
            return left == right
        if op == "!=":
            return left != right
        try:
            if op == "<":
                return left < right
            if op == ">":
                return left > right
            if op == "<=":
                return left <= right
            if op == ">=":
                return left >= right
        except TypeError:
            return False
        return False


def _finite(value: Number) -> Optional[Number]:
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    return normalize_number(value)
