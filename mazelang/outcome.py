"""Outcome evaluation: decides victory from final resource tallies.

The executors only depend on the `OutcomeEvaluator` protocol; hosts with their own
level rules plug in their own implementation.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Set, Tuple

from loguru import logger

from .types import BATTERY_COLORS, Outcome


class OutcomeEvaluator(Protocol):
    def evaluate(self, world: Any, used_statements: Set[str]) -> Outcome: ...


@dataclass(frozen=True)
class BoxTarget:
    x: int
    y: int
    count: int


@dataclass
class TallyOutcomeEvaluator:
    """Compares collected batteries and placed boxes with level targets.

    Collecting more than required is a loss, as is any color tally that differs
    from its target. Box targets require the exact count on the tile. Statement
    requirements (e.g. "must use a loop") are checked against the used set.
    """
    required_batteries: Dict[str, int] = field(default_factory=dict)
    box_targets: Tuple[BoxTarget, ...] = ()
    required_statements: FrozenSet[str] = frozenset()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TallyOutcomeEvaluator":
        targets = tuple(BoxTarget(int(t["x"]), int(t["y"]), int(t.get("count", 1)))
                        for t in data.get("boxes", []))
        return cls(
            required_batteries={k: int(v) for k, v in (data.get("batteries") or {}).items()},
            box_targets=targets,
            required_statements=frozenset(data.get("statements") or ()),
        )

    def evaluate(self, world: Any, used_statements: Set[str]) -> Outcome:
        collected = dict(world.inventory.batteries)
        required_total = sum(self.required_batteries.values())
        collected_total = sum(collected.values())
        details = {
            "collected": collected,
            "required": dict(self.required_batteries),
            "usedStatements": sorted(used_statements),
        }

        message = self._battery_failure(collected, collected_total, required_total)
        if message is None:
            message = self._box_failure(world)
        if message is None:
            missing = sorted(set(self.required_statements) - set(used_statements))
            if missing:
                message = f"Program must use: {', '.join(missing)}"
        if message is not None:
            logger.info("Outcome: lost ({})", message)
            return Outcome(False, message, details)

        message = f"Victory! Collected {collected_total}/{required_total} batteries"
        logger.info("Outcome: {}", message)
        return Outcome(True, message, details)

    def _battery_failure(self, collected: Dict[str, int], total: int, required_total: int) -> Optional[str]:
        if total > required_total:
            return f"Collected too many batteries: {total}/{required_total}"
        colors: List[str] = list(BATTERY_COLORS) + [c for c in self.required_batteries if c not in BATTERY_COLORS]
        for color in colors:
            have = collected.get(color, 0)
            want = self.required_batteries.get(color, 0)
            if have > want:
                return f"Collected too many {color} batteries: {have}/{want}"
            if have < want:
                return f"Missing {color} batteries: {have}/{want}"
        return None

    def _box_failure(self, world: Any) -> Optional[str]:
        for target in self.box_targets:
            placed = _boxes_at(world, target.x, target.y)
            if placed != target.count:
                return f"Box target ({target.x}, {target.y}) holds {placed}/{target.count}"
        return None


def _boxes_at(world: Any, x: int, y: int) -> int:
    query = getattr(world, "query", None)
    if query is not None:
        value = query("boxesAt", x=x, y=y)
        if value is not None:
            return int(value)
    return int(getattr(world, "boxes", {}).get((x, y), 0))
