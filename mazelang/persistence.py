import json
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, Field, field_validator

# ─── WorldSnapshot: Validated copy of every outcome-relevant entity ─
class RobotSnapshot(BaseModel):
    x: int = 0
    y: int = 0
    direction: str = "north"
    batteries: Dict[str, int] = Field(default_factory=lambda: {"red": 0, "yellow": 0, "green": 0})
    boxes: int = Field(default=0, ge=0)

    @field_validator("direction", mode="before")
    @classmethod
    def coerce_direction(cls, v):
        """Accept 0-3 or a direction name and normalize to the lowercase name."""
        names = ("north", "east", "south", "west")
        if isinstance(v, int) and not isinstance(v, bool):
            return names[max(0, min(3, v))]
        if hasattr(v, "name"):
            return v.name
        return str(v).lower()


class BatterySnapshot(BaseModel):
    x: int
    y: int
    color: str = "green"
    collected: bool = False
    allowed: bool = True


class BoxPile(BaseModel):
    x: int
    y: int
    count: int = Field(default=0, ge=0)


class WorldSnapshot(BaseModel):
    """Serializable snapshot of a grid world (Pydantic-validated)."""
    width: int = Field(gt=0)
    height: int = Field(gt=0)
    robot: RobotSnapshot = Field(default_factory=RobotSnapshot)
    batteries: List[BatterySnapshot] = Field(default_factory=list)
    boxes: List[BoxPile] = Field(default_factory=list)
    blocked: List[Tuple[int, int]] = Field(default_factory=list)
    warehouse: Optional[Tuple[int, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorldSnapshot":
        return cls.model_validate(data)


def load_snapshot(path: str) -> WorldSnapshot:
    """Load a world snapshot from a JSON file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"World file not found: {path}")
    return WorldSnapshot.from_dict(json.loads(p.read_text(encoding="utf-8")))


@contextmanager
def world_transaction(world) -> Iterator[Any]:
    """Snapshot `world` on entry and restore it on every exit path.

    The snapshot is taken through the world's own serialize()/restore() pair, so
    whatever happens inside the block (including exceptions) leaves the world as
    it was."""
    snapshot = world.serialize()
    try:
        yield snapshot
    finally:
        world.restore(snapshot)
        logger.debug("World restored from snapshot")
