"""
World state contract consumed by the executors, plus GridWorld, an in-memory
reference world used by the CLI and the test-suite.
"""
from __future__ import annotations
import threading
import weakref
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple, runtime_checkable

from .errors import ExecutorStateError
from .persistence import BatterySnapshot, BoxPile, RobotSnapshot, WorldSnapshot
from .types import (
    BATTERY_COLORS, BoxResult, CollectResult, Direction, MoveResult, Position,
    TileCollectibles,
)


@runtime_checkable
class WorldState(Protocol):
    position: Position
    direction: Direction

    @property
    def inventory(self) -> "Inventory": ...
    def move_forward(self) -> MoveResult: ...
    def turn_left(self) -> None: ...
    def turn_right(self) -> None: ...
    def turn_back(self) -> None: ...
    def get_collectibles_at_current_tile(self) -> TileCollectibles: ...
    def collect(self, color: Optional[str] = None) -> CollectResult: ...
    def take_box(self) -> BoxResult: ...
    def put_box(self) -> BoxResult: ...
    def serialize(self) -> Any: ...
    def restore(self, snapshot: Any) -> None: ...


@dataclass
class Inventory:
    batteries: Dict[str, int] = field(default_factory=lambda: {c: 0 for c in BATTERY_COLORS})
    boxes: int = 0

    @property
    def total_batteries(self) -> int:
        return sum(self.batteries.values())


@dataclass
class Battery:
    x: int
    y: int
    color: str = "green"
    collected: bool = False
    allowed: bool = True

    def is_available(self) -> bool:
        return not self.collected


class GridWorld:
    """Rectangular tile world holding one robot, batteries and box piles."""

    def __init__(self, width: int, height: int, robot: Position = (0, 0),
                 direction: Any = "north", batteries: Optional[List[Battery]] = None,
                 boxes: Optional[Dict[Position, int]] = None, blocked: Optional[Set[Position]] = None,
                 warehouse: Optional[Position] = None):
        self.width = width
        self.height = height
        self.position: Position = tuple(robot)
        self.direction: Direction = Direction.parse(direction)
        self._inventory = Inventory()
        self.batteries: List[Battery] = list(batteries or [])
        self.boxes: Dict[Position, int] = dict(boxes or {})
        self.blocked: Set[Position] = set(blocked or ())
        self.warehouse: Optional[Position] = tuple(warehouse) if warehouse else None

    @classmethod
    def from_snapshot(cls, snapshot: Any) -> "GridWorld":
        if not isinstance(snapshot, WorldSnapshot):
            snapshot = WorldSnapshot.from_dict(snapshot)
        world = cls(snapshot.width, snapshot.height)
        world.restore(snapshot)
        return world

    @property
    def inventory(self) -> Inventory:
        return self._inventory

    # ---------- Geometry ----------
    def is_within_bounds(self, x: int, y: int) -> bool:
        return 0 <= x < self.width and 0 <= y < self.height

    def front_position(self) -> Position:
        x, y = self.position
        dx, dy = {
            Direction.north: (0, -1),
            Direction.east: (1, 0),
            Direction.south: (0, 1),
            Direction.west: (-1, 0),
        }[self.direction]
        return (x + dx, y + dy)

    # ---------- Movement ----------
    def move_forward(self) -> MoveResult:
        # the robot stays where it lands, even on a losing tile
        self.position = self.front_position()
        x, y = self.position
        if not self.is_within_bounds(x, y):
            return MoveResult(False, self.position, f"Robot walked off the map at ({x}, {y})")
        if self.position in self.blocked:
            return MoveResult(False, self.position, f"Robot fell into empty space at ({x}, {y})")
        return MoveResult(True, self.position)

    def turn_left(self) -> None:
        self.direction = Direction((self.direction - 1) % 4)

    def turn_right(self) -> None:
        self.direction = Direction((self.direction + 1) % 4)

    def turn_back(self) -> None:
        self.direction = Direction((self.direction + 2) % 4)

    # ---------- Batteries ----------
    def batteries_at(self, pos: Position) -> List[Battery]:
        return [b for b in self.batteries if (b.x, b.y) == tuple(pos) and b.is_available()]

    def get_collectibles_at_current_tile(self) -> TileCollectibles:
        here = self.batteries_at(self.position)
        counts = {c: 0 for c in BATTERY_COLORS}
        for b in here:
            counts[b.color] = counts.get(b.color, 0) + 1
        return TileCollectibles(len(here), counts)

    def collect(self, color: Optional[str] = None) -> CollectResult:
        x, y = self.position
        here = self.batteries_at(self.position)
        target = next((b for b in here if color is None or b.color == color), None)
        if target is None:
            return CollectResult(False, color, f"No {color or 'any'} battery at ({x}, {y})")
        if not target.allowed:
            return CollectResult(False, target.color, f"Collected a forbidden {target.color} battery at ({x}, {y})")
        target.collected = True
        self._inventory.batteries[target.color] = self._inventory.batteries.get(target.color, 0) + 1
        return CollectResult(True, target.color, f"Collected {target.color} battery")

    # ---------- Boxes ----------
    def take_box(self) -> BoxResult:
        fx, fy = self.front_position()
        if not self.is_within_bounds(fx, fy):
            return BoxResult(False, f"Front tile ({fx}, {fy}) is out of bounds")
        available = self.boxes.get((fx, fy), 0)
        if available < 1:
            return BoxResult(False, f"Not enough boxes to take: 1 (available: {available}) at ({fx}, {fy})")
        self.boxes[(fx, fy)] = available - 1
        self._inventory.boxes += 1
        return BoxResult(True, f"Took 1 box from ({fx}, {fy})")

    def put_box(self) -> BoxResult:
        fx, fy = self.front_position()
        if self._inventory.boxes < 1:
            return BoxResult(False, f"Not enough boxes to put: 1 (carried: {self._inventory.boxes})")
        if not self.is_within_bounds(fx, fy):
            return BoxResult(False, f"Front tile ({fx}, {fy}) is out of bounds")
        self.boxes[(fx, fy)] = self.boxes.get((fx, fy), 0) + 1
        self._inventory.boxes -= 1
        return BoxResult(True, f"Put 1 box at ({fx}, {fy})")

    # ---------- Function-style queries ----------
    def query(self, name: str, **args: Any) -> Any:
        if name == "warehouseStock":
            pos = _pos_arg(args) or self.warehouse
            return self.boxes.get(pos, 0) if pos else None
        if name == "boxesAt":
            pos = _pos_arg(args)
            return self.boxes.get(pos, 0) if pos else None
        if name == "boxesAhead":
            return self.boxes.get(self.front_position(), 0)
        if name == "batteriesAt":
            pos = _pos_arg(args)
            if pos is None:
                return None
            color = args.get("color")
            return sum(1 for b in self.batteries_at(pos) if color is None or b.color == color)
        return None

    # ---------- Snapshot / restore ----------
    def serialize(self) -> WorldSnapshot:
        return WorldSnapshot(
            width=self.width,
            height=self.height,
            robot=RobotSnapshot(
                x=self.position[0], y=self.position[1], direction=self.direction.name,
                batteries=dict(self._inventory.batteries), boxes=self._inventory.boxes,
            ),
            batteries=[BatterySnapshot(x=b.x, y=b.y, color=b.color, collected=b.collected, allowed=b.allowed)
                       for b in self.batteries],
            boxes=[BoxPile(x=x, y=y, count=n) for (x, y), n in self.boxes.items()],
            blocked=sorted(self.blocked),
            warehouse=self.warehouse,
        )

    def restore(self, snapshot: WorldSnapshot) -> None:
        self.width = snapshot.width
        self.height = snapshot.height
        self.position = (snapshot.robot.x, snapshot.robot.y)
        self.direction = Direction.parse(snapshot.robot.direction)
        self._inventory = Inventory(dict(snapshot.robot.batteries), snapshot.robot.boxes)
        for c in BATTERY_COLORS:
            self._inventory.batteries.setdefault(c, 0)
        self.batteries = [Battery(b.x, b.y, b.color, b.collected, b.allowed) for b in snapshot.batteries]
        self.boxes = {(p.x, p.y): p.count for p in snapshot.boxes}
        self.blocked = {tuple(t) for t in snapshot.blocked}
        self.warehouse = tuple(snapshot.warehouse) if snapshot.warehouse else None


def _pos_arg(args: Dict[str, Any]) -> Optional[Tuple[int, int]]:
    try:
        return (int(args["x"]), int(args["y"]))
    except (KeyError, TypeError, ValueError):
        return None


# ─── World leases: one active executor per world ────────────────
# keyed by id() so unhashable worlds can be leased; the weakref drops the entry
# when the world is collected
_leases: Dict[int, Tuple["weakref.ref[Any]", Any]] = {}
_lease_lock = threading.Lock()

def _holder(world: Any) -> Any:
    entry = _leases.get(id(world))
    if entry is None or entry[0]() is not world:
        return None
    return entry[1]

def _expire(key: int, ref: "weakref.ref[Any]") -> None:
    # runs from the garbage collector, so it must not take the lock
    entry = _leases.get(key)
    if entry is not None and entry[0] is ref:
        _leases.pop(key, None)

def acquire_world(world: Any, owner: Any) -> None:
    with _lease_lock:
        holder = _holder(world)
        if holder is not None and holder is not owner:
            raise ExecutorStateError(
                f"World is already in use by {type(holder).__name__}; stop it before running another executor"
            )
        key = id(world)
        _leases[key] = (weakref.ref(world, lambda ref, key=key: _expire(key, ref)), owner)

def release_world(world: Any, owner: Any) -> None:
    with _lease_lock:
        if _holder(world) is owner:
            del _leases[id(world)]

def world_owner(world: Any) -> Any:
    with _lease_lock:
        return _holder(world)
