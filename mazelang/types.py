from enum import Enum
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Set, Tuple

Position = Tuple[int, int]

class Direction(int, Enum):
    north = 0
    east = 1
    south = 2
    west = 3

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, Direction):
            return value
        if isinstance(value, int):
            return cls(max(0, min(3, value)))
        try:
            return cls[str(value).lower()]
        except KeyError:
            return cls.north

BATTERY_COLORS = ("red", "yellow", "green")

# ─── Results returned by the world for primitive operations ─────
@dataclass
class MoveResult:
    success: bool
    new_position: Position
    error: Optional[str] = None

@dataclass
class TileCollectibles:
    count: int
    color_counts: Dict[str, int] = field(default_factory=dict)

@dataclass
class CollectResult:
    success: bool
    color: Optional[str] = None
    message: Optional[str] = None

@dataclass
class BoxResult:
    success: bool
    message: Optional[str] = None

# ─── Execution records ───────────────────────────────────────────
@dataclass
class PrimitiveAction:
    """One unit operation applied to the world (a single move, turn, pickup or box)."""
    type: str
    color: Optional[str] = None
    success: bool = True
    message: Optional[str] = None
    position: Optional[Position] = None
    direction: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

@dataclass
class Outcome:
    won: bool
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"won": self.won, "message": self.message, "details": self.details}

@dataclass
class SimulationResult:
    primitive_actions: List[PrimitiveAction]
    outcome: Outcome
    used_statements: Set[str] = field(default_factory=set)
    operations: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primitiveActions": [a.to_dict() for a in self.primitive_actions],
            "outcome": self.outcome.to_dict(),
            "usedStatements": sorted(self.used_statements),
            "operations": self.operations,
        }

# ─── Interactive executor state ─────────────────────────────────
class ExecutorState(str, Enum):
    Idle = "idle"
    Running = "running"
    Paused = "paused"
    Completed = "completed"
    Failed = "failed"

    @property
    def terminal(self) -> bool:
        return self in (ExecutorState.Completed, ExecutorState.Failed)

@dataclass
class ExecutorStatus:
    state: ExecutorState
    running: bool
    paused: bool
    step_index: int
    total_steps: int
    program_name: Optional[str] = None
    outcome: Optional[Outcome] = None

@dataclass
class ExecutorEvent:
    kind: str  # started | step | paused | resumed | stopped | completed | failed
    status: ExecutorStatus
    action: Optional[PrimitiveAction] = None
    message: Optional[str] = None
