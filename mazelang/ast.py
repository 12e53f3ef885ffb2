# Typed program tree for MazeLang block programs
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

# ---------- Expressions ----------
@dataclass(frozen=True)
class Literal:
    value: Any  # number, string or None (unresolvable)

@dataclass(frozen=True)
class VariableRef:
    name: str

@dataclass(frozen=True)
class FunctionRef:
    # function-style variable naming an external world query
    name: str
    args: Tuple[Tuple[str, Any], ...] = ()

    def kwargs(self) -> Dict[str, Any]:
        return dict(self.args)

@dataclass(frozen=True)
class Arithmetic:
    op: str  # + - * / ^
    left: "Expression"
    right: "Expression"

Expression = Union[Literal, VariableRef, FunctionRef, Arithmetic]

# ---------- Conditions ----------
@dataclass(frozen=True)
class VariableComparison:
    variable: Expression
    operator: str
    value: Expression

@dataclass(frozen=True)
class And:
    conditions: Tuple["Condition", ...]

@dataclass(frozen=True)
class Or:
    conditions: Tuple["Condition", ...]

@dataclass(frozen=True)
class SensorCheck:
    function_name: str
    check: bool = True

@dataclass(frozen=True)
class NeverTrue:
    # stands in for a missing or unknown condition
    reason: str = ""

Condition = Union[VariableComparison, And, Or, SensorCheck, NeverTrue]

# ---------- Actions ----------
@dataclass(frozen=True)
class Forward:
    count: Expression = Literal(1)
    kind = "forward"

@dataclass(frozen=True)
class TurnLeft:
    kind = "turnLeft"

@dataclass(frozen=True)
class TurnRight:
    kind = "turnRight"

@dataclass(frozen=True)
class TurnBack:
    kind = "turnBack"

@dataclass(frozen=True)
class Collect:
    count: Expression = Literal(1)
    colors: Tuple[str, ...] = ("green",)
    kind = "collect"

@dataclass(frozen=True)
class PutBox:
    count: Expression = Literal(1)
    kind = "putBox"

@dataclass(frozen=True)
class TakeBox:
    count: Expression = Literal(1)
    kind = "takeBox"

@dataclass(frozen=True)
class Repeat:
    """Counted loop. Static repeats (plain `repeat` blocks) are unrolled by the
    loader; ranged repeats keep their bounds as expressions for the executors."""
    body: Tuple["ActionNode", ...]
    start: Expression = Literal(1)
    end: Expression = Literal(1)
    step: Expression = Literal(1)
    variable: Optional[str] = None
    is_static: bool = False

    @property
    def kind(self) -> str:
        return "repeat" if self.is_static else "repeatRange"

@dataclass(frozen=True)
class ElseIf:
    condition: Condition
    then_actions: Tuple["ActionNode", ...] = ()

@dataclass(frozen=True)
class If:
    condition: Condition
    then_actions: Tuple["ActionNode", ...] = ()
    else_if_clauses: Tuple[ElseIf, ...] = ()
    else_actions: Tuple["ActionNode", ...] = ()
    kind = "if"

@dataclass(frozen=True)
class While:
    condition: Condition
    body_actions: Tuple["ActionNode", ...] = ()
    kind = "while"

@dataclass(frozen=True)
class CallFunction:
    function_name: str
    kind = "callFunction"

PRIMITIVE_TYPES = (Forward, TurnLeft, TurnRight, TurnBack, Collect, PutBox, TakeBox)
CONTROL_TYPES = (Repeat, If, While, CallFunction)

ActionNode = Union[Forward, TurnLeft, TurnRight, TurnBack, Collect, PutBox, TakeBox,
                   Repeat, If, While, CallFunction]

def is_primitive(node: Any) -> bool:
    return isinstance(node, PRIMITIVE_TYPES)

@dataclass
class Function:
    name: str
    body: Tuple[ActionNode, ...]

@dataclass
class Program:
    name: str
    version: str
    functions: Dict[str, Function]
    actions: Tuple[ActionNode, ...]
    block_count: int = 0
    warnings: List[str] = field(default_factory=list)
    # statement tags that disappear from the tree once unrolled (e.g. repeat)
    load_time_statements: FrozenSet[str] = frozenset()
