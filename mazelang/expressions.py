from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from lark import Lark, Transformer
from lark.exceptions import LarkError
from loguru import logger

from .ast import Arithmetic, Expression, FunctionRef, Literal, VariableRef

GRAMMAR_PATH = Path(__file__).with_name("grammar.lark")

ARITHMETIC_OPS = ("+", "-", "*", "/", "^")

_parser = None

def _load_parser() -> Lark:
    global _parser
    if _parser is None:
        grammar = GRAMMAR_PATH.read_text(encoding="utf-8")
        _parser = Lark(grammar, start="start", parser="lalr")
    return _parser


def normalize_number(value: Any) -> Any:
    """Collapse integral floats to int so counts and loop bounds stay integers."""
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


class _ToExpression(Transformer):
    def number(self, items):
        return Literal(normalize_number(float(items[0])))

    def var(self, items):
        return VariableRef(str(items[0]))

    def neg(self, items):
        return Arithmetic("-", Literal(0), items[0])

    def add(self, items):
        return Arithmetic("+", items[0], items[1])

    def sub(self, items):
        return Arithmetic("-", items[0], items[1])

    def mul(self, items):
        return Arithmetic("*", items[0], items[1])

    def div(self, items):
        return Arithmetic("/", items[0], items[1])

    def pow(self, items):
        return Arithmetic("^", items[0], items[1])


@lru_cache(maxsize=512)
def parse_expression_text(text: str) -> Optional[Expression]:
    """Parse inline text such as "3", "i" or "(i + 1) * 2". Returns None when the
    text is not an arithmetic expression."""
    stripped = text.strip()
    if not stripped:
        return None
    try:
        tree = _load_parser().parse(stripped)
    except LarkError:
        return None
    return _ToExpression().transform(tree)


def parse_expression(raw: Any, warnings: Optional[list] = None) -> Expression:
    """Build an Expression from any raw operand the block editor emits."""
    if isinstance(raw, (Literal, VariableRef, FunctionRef, Arithmetic)):
        return raw
    if raw is None:
        return Literal(None)
    if isinstance(raw, bool):
        return Literal(int(raw))
    if isinstance(raw, (int, float)):
        return Literal(normalize_number(raw))
    if isinstance(raw, str):
        expr = parse_expression_text(raw)
        if expr is None:
            _warn(warnings, f"Unresolvable expression {raw!r}")
            return Literal(None)
        return expr
    if isinstance(raw, dict):
        kind = raw.get("type")
        if kind == "arithmetic" or ("op" in raw and "left" in raw and "right" in raw):
            op = str(raw.get("op", raw.get("operator", "")))
            if op not in ARITHMETIC_OPS:
                _warn(warnings, f"Unknown arithmetic operator {op!r}")
                return Literal(None)
            return Arithmetic(op, parse_expression(raw.get("left"), warnings),
                              parse_expression(raw.get("right"), warnings))
        if kind == "variable":
            return parse_expression(raw.get("name"), warnings)
        if kind == "number":
            return parse_expression(raw.get("value"), warnings)
        if kind == "function" or "functionName" in raw:
            name = raw.get("functionName") or raw.get("name")
            if not name:
                _warn(warnings, f"Function-style variable without a name: {raw}")
                return Literal(None)
            args = tuple(sorted(
                (k, v) for k, v in raw.items()
                if k not in ("type", "functionName", "name") and _hashable(v)
            ))
            return FunctionRef(str(name), args)
    _warn(warnings, f"Unsupported expression {raw!r}")
    return Literal(None)


def _hashable(v: Any) -> bool:
    try:
        hash(v)
        return True
    except TypeError:
        return False


def _warn(warnings: Optional[list], msg: str) -> None:
    logger.warning(msg)
    if warnings is not None:
        warnings.append(msg)
