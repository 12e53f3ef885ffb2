import gc
import threading
from dataclasses import dataclass

import pytest
from pydantic import ValidationError

from mazelang.persistence import WorldSnapshot, load_snapshot, world_transaction
from mazelang.types import Direction
from mazelang.errors import ExecutorStateError
from mazelang.world import GridWorld, WorldState, acquire_world, release_world, world_owner


class TestGridWorld:
    def test_satisfies_protocol(self, grid_world):
        assert isinstance(grid_world, WorldState)

    def test_turns_wrap(self, grid_world):
        grid_world.turn_left()
        assert grid_world.direction is Direction.north
        grid_world.turn_left()
        assert grid_world.direction is Direction.west
        grid_world.turn_back()
        assert grid_world.direction is Direction.east

    def test_move_into_hole_stays_there(self, grid_world):
        grid_world.position = (3, 1)
        grid_world.direction = Direction.north
        result = grid_world.move_forward()
        assert not result.success
        assert "empty space at (3, 0)" in result.error
        assert grid_world.position == (3, 0)

    def test_collect_by_color(self, grid_world):
        grid_world.position = (6, 2)
        assert not grid_world.collect("green").success
        result = grid_world.collect("yellow")
        assert result.success
        assert grid_world.inventory.batteries["yellow"] == 1
        assert grid_world.get_collectibles_at_current_tile().color_counts == {"red": 1, "yellow": 0, "green": 0}

    def test_forbidden_battery(self, grid_world):
        grid_world.position = (2, 2)
        for b in grid_world.batteries_at((2, 2)):
            b.allowed = False
        result = grid_world.collect("green")
        assert not result.success
        assert "forbidden" in result.message

    def test_boxes(self, grid_world):
        assert not grid_world.put_box().success
        grid_world.turn_right()
        assert grid_world.take_box().success
        assert grid_world.inventory.boxes == 1
        assert grid_world.query("warehouseStock") == 1
        grid_world.turn_back()
        assert grid_world.put_box().success
        assert grid_world.query("boxesAt", x=0, y=1) == 1
        assert grid_world.query("boxesAt") is None
        assert grid_world.query("unknown") is None


class TestSnapshots:
    def test_restore_round_trip(self, grid_world):
        snap = grid_world.serialize()
        grid_world.position = (2, 2)
        grid_world.collect("green")
        grid_world.turn_right()
        grid_world.restore(snap)
        assert grid_world.position == (0, 2)
        assert grid_world.direction is Direction.east
        assert grid_world.inventory.total_batteries == 0
        assert len(grid_world.batteries_at((2, 2))) == 2

    def test_transaction_restores_on_error(self, grid_world):
        with pytest.raises(RuntimeError):
            with world_transaction(grid_world):
                grid_world.move_forward()
                raise RuntimeError("boom")
        assert grid_world.position == (0, 2)

    def test_from_dict(self, tmp_path):
        data = {
            "width": 3, "height": 3,
            "robot": {"x": 1, "y": 1, "direction": 2},
            "batteries": [{"x": 1, "y": 1, "color": "red"}],
            "boxes": [{"x": 0, "y": 0, "count": 4}],
            "warehouse": [0, 0],
        }
        world = GridWorld.from_snapshot(data)
        assert world.direction is Direction.south
        assert world.query("warehouseStock") == 4
        path = tmp_path / "world.json"
        path.write_text(WorldSnapshot.from_dict(data).model_dump_json(), encoding="utf-8")
        assert load_snapshot(str(path)) == WorldSnapshot.from_dict(data)

    def test_invalid_snapshot(self):
        with pytest.raises(ValidationError):
            WorldSnapshot.from_dict({"width": 0, "height": 3})

    def test_missing_snapshot_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(str(tmp_path / "nope.json"))


@dataclass
class PlainWorld:
    """Dataclass with eq=True, hence unhashable."""
    name: str = "plain"


class TestWorldLease:
    def test_unhashable_world_can_be_leased(self):
        world, owner = PlainWorld(), object()
        acquire_world(world, owner)
        assert world_owner(world) is owner
        with pytest.raises(ExecutorStateError):
            acquire_world(world, object())
        release_world(world, owner)
        assert world_owner(world) is None

    def test_equal_worlds_have_separate_leases(self):
        first, second = PlainWorld(), PlainWorld()
        acquire_world(first, "a")
        acquire_world(second, "b")
        assert world_owner(first) == "a"
        assert world_owner(second) == "b"
        release_world(first, "a")
        release_world(second, "b")

    def test_release_by_other_owner_is_ignored(self, grid_world):
        acquire_world(grid_world, "a")
        release_world(grid_world, "b")
        assert world_owner(grid_world) == "a"
        release_world(grid_world, "a")

    def test_collected_world_drops_its_lease(self):
        from mazelang import world as world_module

        world = PlainWorld()
        acquire_world(world, "a")
        key = id(world)
        del world
        gc.collect()
        assert key not in world_module._leases

    def test_only_one_thread_wins(self, grid_world):
        barrier = threading.Barrier(8)
        winners = []

        def contend(owner):
            barrier.wait()
            try:
                acquire_world(grid_world, owner)
                winners.append(owner)
            except ExecutorStateError:
                pass

        threads = [threading.Thread(target=contend, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(winners) == 1
        assert world_owner(grid_world) == winners[0]
        release_world(grid_world, winners[0])
