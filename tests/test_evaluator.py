"""Tests for expression resolution and condition evaluation."""
import pytest

from mazelang.ast import (
    And, Arithmetic, FunctionRef, Literal, NeverTrue, Or, SensorCheck,
    VariableComparison, VariableRef,
)
from mazelang.evaluator import Evaluator, ExecutionContext
from mazelang.expressions import parse_expression, parse_expression_text


def compare(variable, operator, value):
    return VariableComparison(parse_expression(variable), operator, parse_expression(value))


class TestExpressions:
    """Inline arithmetic text goes through the lark grammar."""

    @pytest.mark.parametrize("text,expected", [
        ("3", 3),
        ("1 + 2 * 3", 7),
        ("(1 + 2) * 3", 9),
        ("2 ^ 3", 8),
        ("-3 + 5", 2),
        ("7 / 2", 3.5),
        ("6 / 2", 3),
        ("10 - 4 - 3", 3),
    ])
    def test_arithmetic_text(self, evaluator, text, expected):
        assert evaluator.resolve_numeric(text) == expected

    def test_integral_results_are_ints(self, evaluator):
        assert isinstance(evaluator.resolve_numeric("6 / 2"), int)

    def test_not_an_expression(self):
        assert parse_expression_text("red!") is None
        assert parse_expression_text("   ") is None

    def test_division_by_zero_is_unresolved(self, evaluator):
        assert evaluator.resolve_numeric("1 / 0") is None
        expr = Arithmetic("/", Literal(1), parse_expression("i - i"))
        assert evaluator.resolve_numeric(expr, ExecutionContext({"i": 2})) is None

    def test_unresolved_operand_poisons_arithmetic(self, evaluator):
        assert evaluator.resolve_numeric("ghost + 1") is None

    def test_non_finite_results_are_unresolved(self, evaluator):
        assert evaluator.resolve_numeric(float("inf")) is None
        assert evaluator.resolve_numeric("(0 - 8) ^ 0.5") is None

    def test_power_overflow_is_unresolved(self, evaluator):
        assert evaluator.resolve_numeric("9 ^ 999999999") is None
        assert evaluator.resolve_numeric(Arithmetic("^", Literal(7), Literal(3000000))) is None
        assert evaluator.resolve_numeric("0 ^ (0 - 1)") is None

    def test_power_stays_integral(self, evaluator):
        assert evaluator.resolve_numeric("2 ^ 10") == 1024
        assert isinstance(evaluator.resolve_numeric("2 ^ 10"), int)
        assert evaluator.resolve_numeric("2 ^ (0 - 1)") == 0.5

    def test_unparsable_raw_operand_warns(self):
        warnings = []
        assert parse_expression({"type": "arithmetic", "op": "%", "left": 1, "right": 2}, warnings) == Literal(None)
        assert warnings


class TestVariables:
    """Loop bindings shadow sensors; sensors read the current tile."""

    def test_context_shadows_sensor(self, evaluator):
        assert evaluator.resolve_variable("batteryCount") == 0
        assert evaluator.resolve_variable("batteryCount", ExecutionContext({"batteryCount": 9})) == 9

    def test_sensor_values_follow_robot(self, grid_world, evaluator):
        grid_world.position = (2, 2)
        assert evaluator.resolve_variable("batteryCount") == 2
        assert evaluator.resolve_variable("greenBatteryCount") == 2
        assert evaluator.resolve_variable("redBatteryCount") == 0
        grid_world.position = (6, 2)
        assert evaluator.resolve_variable("redBatteryCount") == 1

    def test_box_sensors(self, grid_world, evaluator):
        assert evaluator.resolve_variable("boxCount") == 0
        grid_world.turn_right()  # facing the warehouse
        assert evaluator.resolve_variable("boxCount") == 2
        assert evaluator.resolve_variable("carriedBoxes") == 0

    def test_unknown_variable(self, evaluator):
        assert evaluator.resolve_variable("nope") is None

    def test_child_context_keeps_outer_bindings(self):
        outer = ExecutionContext({"i": 1})
        inner = outer.child(j=2)
        assert inner.variables == {"i": 1, "j": 2}
        assert "j" not in outer

    def test_function_style_variable(self, evaluator):
        assert evaluator.resolve_numeric(parse_expression({"functionName": "warehouseStock"})) == 2
        ref = parse_expression({"type": "function", "name": "batteriesAt", "x": 4, "y": 2})
        assert ref == FunctionRef("batteriesAt", (("x", 4), ("y", 2)))
        assert evaluator.resolve_numeric(ref) == 3

    def test_custom_query_callback(self, grid_world):
        calls = []

        def query(name, **args):
            calls.append((name, args))
            return 7

        evaluator = Evaluator(grid_world, query=query)
        assert evaluator.resolve_numeric(FunctionRef("score", (("level", 1),))) == 7
        assert calls == [("score", {"level": 1})]


class TestConditions:
    """Condition evaluation never raises; anything unresolved is false."""

    @pytest.mark.parametrize("op", ["==", "!=", "<", ">", "<=", ">="])
    def test_unresolved_comparison_is_false(self, evaluator, op):
        assert evaluator.evaluate_condition(compare("ghost", op, 1)) is False

    def test_numeric_comparison(self, grid_world, evaluator):
        grid_world.position = (4, 2)
        assert evaluator.evaluate_condition(compare("batteryCount", ">", 2))
        assert evaluator.evaluate_condition(compare("batteryCount", "==", "1 + 2"))
        assert not evaluator.evaluate_condition(compare("batteryCount", "<=", 2))

    def test_loop_variable_comparison(self, evaluator):
        ctx = ExecutionContext({"i": 3})
        assert evaluator.evaluate_condition(compare("i", ">=", 3), ctx)
        assert evaluator.evaluate_condition(compare("i * 2", "==", 6), ctx)

    def test_text_value_against_number_is_false(self, evaluator):
        assert evaluator.evaluate_condition(compare("batteryCount", ">", "red")) is False
        assert evaluator.evaluate_condition(compare("batteryCount", "!=", "red")) is True

    def test_sensor_check_and_inversion(self, grid_world, evaluator):
        grid_world.position = (6, 2)
        assert evaluator.evaluate_condition(SensorCheck("isRed"))
        assert evaluator.evaluate_condition(SensorCheck("isGreen", check=False))
        assert not evaluator.evaluate_condition(SensorCheck("isCarryingBox"))

    def test_unknown_sensor_is_false(self, evaluator):
        assert evaluator.evaluate_condition(SensorCheck("isPurple")) is False
        assert evaluator.evaluate_condition(NeverTrue("missing")) is False

    def test_and_or(self, grid_world, evaluator):
        grid_world.position = (2, 2)
        yes = SensorCheck("hasBattery")
        no = SensorCheck("isRed")
        assert evaluator.evaluate_condition(And((yes, yes)))
        assert not evaluator.evaluate_condition(And((yes, no)))
        assert evaluator.evaluate_condition(Or((no, yes)))
        assert not evaluator.evaluate_condition(Or(()))
        assert evaluator.evaluate_condition(And(()))
