from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set, Tuple

from loguru import logger

from .ast import (
    And, CallFunction, Collect, Condition, ElseIf, Forward, Function, If, Literal,
    NeverTrue, Or, Program, PutBox, Repeat, SensorCheck, TakeBox, TurnBack, TurnLeft,
    TurnRight, VariableComparison, While, ActionNode,
)
from .config import ExecutionLimits
from .errors import ProgramStructureError, RunawayError
from .expressions import parse_expression
from .schemas import first_key, raw_type, validate_program
from .semantic import analyze

COMPARISON_OPERATORS = ("==", "!=", "<", ">", "<=", ">=")

# Alias groups holding nested action lists; the loader reads the first present key of each
_NESTED_ACTION_KEYS = (("body", "bodyActions"), ("then", "thenActions"), ("else", "elseActions"))
_ELSE_IF_KEYS = ("elseIf", "elseIfs", "elseIfClauses")


def count_blocks(actions: Any) -> int:
    """Number of type-tagged nodes in a raw action list, nested lists included."""
    if not isinstance(actions, list):
        return 0
    total = 0
    for node in actions:
        if not isinstance(node, dict):
            continue
        if raw_type(node) is not None:
            total += 1
        for keys in _NESTED_ACTION_KEYS:
            total += count_blocks(first_key(node, *keys))
        clauses = first_key(node, *_ELSE_IF_KEYS)
        if isinstance(clauses, list):
            for clause in clauses:
                if isinstance(clause, dict):
                    total += count_blocks(first_key(clause, "then", "thenActions", "actions"))
    return total


def _static_count(raw: Any) -> Optional[int]:
    """parseInt-style reading of a static count; None when missing or not numeric."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, (int, float)):
        return int(raw)
    if isinstance(raw, str):
        try:
            return int(float(raw.strip()))
        except ValueError:
            return None
    return None


class ProgramLoader:
    """Turns a validated program document into a typed Program.

    - the function table is parsed before top-level actions
    - `repeat` bodies are unrolled here; `repeatRange` stays structural
    - unknown action types are dropped with a warning
    """

    def __init__(self, limits: Optional[ExecutionLimits] = None):
        self.limits = limits or ExecutionLimits.from_env()
        self.warnings: List[str] = []
        self.load_time_statements: Set[str] = set()
        # nodes added by static unrolling so far, across the whole program
        self.unrolled = 0

    def load(self, source: Any) -> Program:
        data = _decode(source)
        doc = validate_program(data)
        self.warnings = []
        self.load_time_statements = set()
        self.unrolled = 0

        functions: Dict[str, Function] = {}
        for fdoc in doc.functions:
            if fdoc.name in functions:
                self._warn(f"Function '{fdoc.name}' defined more than once; last definition wins")
            body = self.parse_actions(fdoc.body, f"function {fdoc.name}")
            functions[fdoc.name] = Function(fdoc.name, body)

        actions = self.parse_actions(doc.actions, "actions")
        block_count = count_blocks(doc.actions) + sum(count_blocks(f.body) for f in doc.functions)

        program = Program(
            name=doc.program_name or "unnamed",
            version=doc.version,
            functions=functions,
            actions=actions,
            block_count=block_count,
            warnings=list(self.warnings),
            load_time_statements=frozenset(self.load_time_statements),
        )
        analyze(program)
        logger.info(
            "Program loaded: {} (version {}, {} actions, {} functions, {} blocks)",
            program.name, program.version, len(program.actions), len(functions), block_count,
        )
        return program

    # ---------- Actions ----------
    def parse_actions(self, raw_actions: Any, where: str = "actions") -> Tuple[ActionNode, ...]:
        if not isinstance(raw_actions, list):
            if raw_actions is not None:
                self._warn(f"{where}: expected a list of actions, got {type(raw_actions).__name__}")
            return ()
        parsed: List[ActionNode] = []
        for i, raw in enumerate(raw_actions):
            node = self.parse_action(raw, f"{where}[{i}]")
            if node is None:
                continue
            if isinstance(node, tuple):
                # unrolled static repeat
                parsed.extend(node)
            else:
                parsed.append(node)
        return tuple(parsed)

    def parse_action(self, raw: Any, where: str):
        kind = raw_type(raw)
        if kind is None:
            self._warn(f"{where}: missing type")
            return None

        match kind:
            case "forward":
                return Forward(count=self._count(raw))
            case "turnLeft":
                return TurnLeft()
            case "turnRight":
                return TurnRight()
            case "turnBack":
                return TurnBack()
            case "collect":
                return Collect(count=self._count(raw), colors=self._colors(raw))
            case "putBox":
                return PutBox(count=self._count(raw))
            case "takeBox":
                return TakeBox(count=self._count(raw))
            case "repeat":
                return self._parse_repeat(raw, where)
            case "repeatRange":
                return Repeat(
                    body=self.parse_actions(first_key(raw, "body", "bodyActions", default=[]), f"{where}.body"),
                    start=parse_expression(first_key(raw, "from", "start", default=1), self.warnings),
                    end=parse_expression(first_key(raw, "to", "end", default=1), self.warnings),
                    step=parse_expression(first_key(raw, "step", default=1), self.warnings),
                    variable=str(first_key(raw, "variable", default="i")),
                    is_static=False,
                )
            case "if":
                return self._parse_if(raw, where)
            case "while":
                return While(
                    condition=self.parse_condition(first_key(raw, "cond", "condition"), where),
                    body_actions=self.parse_actions(first_key(raw, "body", "bodyActions", default=[]), f"{where}.body"),
                )
            case "callFunction":
                name = first_key(raw, "functionName", "name")
                if not name:
                    self._warn(f"{where}: callFunction without a function name")
                    return None
                return CallFunction(str(name))
            case _:
                self._warn(f"{where}: unknown action type '{kind}'")
                return None

    def _parse_repeat(self, raw: Dict[str, Any], where: str) -> Tuple[ActionNode, ...]:
        count = _static_count(raw.get("count"))
        if count is None:
            count = 1
        count = max(count, 0)
        if count > self.limits.max_repeat:
            raise RunawayError(
                f"{where}: repeat count {count} exceeds limit {self.limits.max_repeat}"
            )
        body = self.parse_actions(first_key(raw, "body", "bodyActions", default=[]), f"{where}.body")
        # budget spans the whole program, nested levels included
        self.unrolled += count * len(body) - len(body)
        if self.unrolled > self.limits.max_operations:
            raise RunawayError(
                f"{where}: unrolled repeat blocks exceed {self.limits.max_operations} actions"
            )
        loop = Repeat(body=body, start=Literal(1), end=Literal(count), is_static=True)
        self.load_time_statements.add(loop.kind)
        return self.unroll_static(loop, count)

    @staticmethod
    def unroll_static(loop: Repeat, count: int) -> Tuple[ActionNode, ...]:
        # nodes are frozen, so sharing them across iterations cannot leak state
        unrolled: List[ActionNode] = []
        for _ in range(count):
            unrolled.extend(loop.body)
        return tuple(unrolled)

    def _parse_if(self, raw: Dict[str, Any], where: str) -> If:
        clauses: List[ElseIf] = []
        raw_clauses = first_key(raw, *_ELSE_IF_KEYS, default=[])
        if isinstance(raw_clauses, list):
            for j, clause in enumerate(raw_clauses):
                if not isinstance(clause, dict):
                    self._warn(f"{where}.elseIf[{j}]: expected an object")
                    continue
                clauses.append(ElseIf(
                    condition=self.parse_condition(first_key(clause, "cond", "condition"), f"{where}.elseIf[{j}]"),
                    then_actions=self.parse_actions(first_key(clause, "then", "thenActions", "actions", default=[]),
                                                    f"{where}.elseIf[{j}].then"),
                ))
        return If(
            condition=self.parse_condition(first_key(raw, "cond", "condition"), where),
            then_actions=self.parse_actions(first_key(raw, "then", "thenActions", default=[]), f"{where}.then"),
            else_if_clauses=tuple(clauses),
            else_actions=self.parse_actions(first_key(raw, "else", "elseActions", default=[]), f"{where}.else"),
        )

    def _count(self, raw: Dict[str, Any]):
        value = raw.get("count")
        if value is None:
            return Literal(1)
        static = _static_count(value)
        if static is not None:
            return Literal(static)
        return parse_expression(value, self.warnings)

    @staticmethod
    def _colors(raw: Dict[str, Any]) -> Tuple[str, ...]:
        colors = raw.get("colors")
        if isinstance(colors, list) and colors:
            return tuple(str(c) for c in colors)
        color = raw.get("color")
        if isinstance(color, str) and color:
            return (color,)
        return ("green",)

    # ---------- Conditions ----------
    def parse_condition(self, raw: Any, where: str = "condition") -> Condition:
        if not isinstance(raw, dict):
            self._warn(f"{where}: missing condition")
            return NeverTrue("missing condition")
        kind = raw_type(raw)
        if kind in ("and", "or"):
            subs = tuple(
                self.parse_condition(c, f"{where}.{kind}[{k}]")
                for k, c in enumerate(raw.get("conditions") or [])
            )
            return And(subs) if kind == "and" else Or(subs)
        if kind in ("sensorCheck", "condition") or (kind is None and "functionName" in raw and "operator" not in raw):
            name = first_key(raw, "functionName", "function", "sensor")
            if not name:
                self._warn(f"{where}: sensor check without a function name")
                return NeverTrue("sensor check without a name")
            return SensorCheck(str(name), _as_bool(raw.get("check", True)))
        if kind in ("variableComparison", "comparison") or (kind is None and "operator" in raw):
            op = str(raw.get("operator", "=="))
            if op == "=":
                op = "=="
            if op not in COMPARISON_OPERATORS:
                self._warn(f"{where}: unknown comparison operator '{op}'")
                return NeverTrue(f"unknown operator {op}")
            return VariableComparison(
                variable=parse_expression(raw.get("variable"), self.warnings),
                operator=op,
                value=parse_expression(raw.get("value"), self.warnings),
            )
        self._warn(f"{where}: unknown condition type '{kind}'")
        return NeverTrue(f"unknown condition {kind}")

    def _warn(self, msg: str) -> None:
        logger.warning(msg)
        self.warnings.append(msg)


def _as_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.lower() not in ("false", "0", "no", "")
    return bool(v)


def _decode(source: Any) -> Any:
    if isinstance(source, Path):
        source = source.read_text(encoding="utf-8")
    if isinstance(source, (str, bytes)):
        try:
            return json.loads(source)
        except json.JSONDecodeError as e:
            raise ProgramStructureError(f"Program is not valid JSON: {e}") from e
    return source


def load(source: Any, limits: Optional[ExecutionLimits] = None) -> Program:
    return ProgramLoader(limits).load(source)
