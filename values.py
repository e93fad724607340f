from __future__ import annotations
import math
import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Tuple


TYPE_NIL = "NIL"
TYPE_BOOL = "BOOL"
TYPE_INT = "INT"
TYPE_FLT = "FLT"
TYPE_STR = "STR"
TYPE_TBL = "TBL"

NUMERIC_TYPES = (TYPE_INT, TYPE_FLT)
OWNING_TYPES = (TYPE_STR, TYPE_TBL)
ARITHMETIC_OPERATORS = "+-*/%"
COMPARISON_OPERATORS = ("==", "!=", "<=", ">=", "<", ">")

NON_NUMBER_WARNING = "Warning: arithmetic on non-number."


class ArlError(Exception):
    """Base class for interpreter errors."""


class ArlRuntimeError(ArlError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Any = None,
        rewrite_rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.step_index: Optional[int] = None


class ArlCapacityError(ArlRuntimeError):
    """Raised when a configured runtime limit would be exceeded."""


class ArlBlockError(ArlRuntimeError):
    """Raised for an unmatched block when strict block matching is on."""


@dataclass(frozen=True)
class Value:
    type: str
    value: Any


NIL = Value(TYPE_NIL, None)


def nil() -> Value:
    return NIL


def boolean(flag: bool) -> Value:
    return Value(TYPE_BOOL, bool(flag))


def integer(number: Any) -> Value:
    # Out-of-range literals wrap like a 32-bit C int.
    wrapped = (int(number) + 2**31) % 2**32 - 2**31
    return Value(TYPE_INT, np.int32(wrapped))


def floating(number: Any) -> Value:
    return Value(TYPE_FLT, np.float32(number))


def string(text: str) -> Value:
    return Value(TYPE_STR, str(text))


def table(items: Iterable[Value]) -> Value:
    return Value(TYPE_TBL, tuple(items))


def is_numeric(value: Value) -> bool:
    return value.type in NUMERIC_TYPES


def truthy(value: Value) -> bool:
    vtype = value.type
    if vtype == TYPE_NIL:
        return False
    if vtype == TYPE_BOOL:
        return bool(value.value)
    if vtype == TYPE_INT:
        return int(value.value) != 0
    if vtype == TYPE_FLT:
        return float(value.value) != 0.0
    if vtype == TYPE_STR:
        return value.value is not None and len(value.value) > 0
    if vtype == TYPE_TBL:
        return len(value.value) > 0
    return False


def _format_float(number: Any) -> str:
    x = float(number)
    if math.isnan(x):
        return "-nan" if math.copysign(1.0, x) < 0 else "nan"
    if math.isinf(x):
        return "-inf" if x < 0 else "inf"
    return "%g" % x


def stringify(value: Value) -> str:
    vtype = value.type
    if vtype == TYPE_STR:
        return value.value
    if vtype == TYPE_INT:
        return str(int(value.value))
    if vtype == TYPE_FLT:
        return _format_float(value.value)
    if vtype == TYPE_BOOL:
        return "true" if value.value else "false"
    if vtype == TYPE_NIL:
        return "nil"
    return "[table]"


def render(value: Value) -> str:
    """Return the text `print` writes for a value.

    Tables are shown one level deep as ``{e1, e2, ...}``; each element goes
    through :func:`stringify`, so nested tables appear as ``[table]``.
    """
    if value.type == TYPE_TBL:
        return "{" + ", ".join(stringify(item) for item in value.value) + "}"
    return stringify(value)


def _as_float32(value: Value) -> np.float32:
    if value.type == TYPE_INT:
        return np.float32(int(value.value))
    return np.float32(value.value)


def compare(left: Value, right: Value, op: str) -> bool:
    if left.type == TYPE_STR and right.type == TYPE_STR:
        a: Any = left.value
        b: Any = right.value
    elif is_numeric(left) and is_numeric(right):
        a = _as_float32(left)
        b = _as_float32(right)
    else:
        return False
    if op == "==":
        return bool(a == b)
    if op == "!=":
        return bool(a != b)
    if op == "<":
        return bool(a < b)
    if op == "<=":
        return bool(a <= b)
    if op == ">":
        return bool(a > b)
    if op == ">=":
        return bool(a >= b)
    return False


def arithmetic(
    left: Value,
    op: str,
    right: Value,
    warn: Optional[Callable[[str], None]] = None,
) -> Value:
    if not (is_numeric(left) and is_numeric(right)):
        if warn is not None:
            warn(NON_NUMBER_WARNING)
        return NIL

    if left.type == TYPE_FLT or right.type == TYPE_FLT or op == "/":
        a = _as_float32(left)
        b = _as_float32(right)
        with np.errstate(over="ignore", invalid="ignore"):
            if op == "+":
                return Value(TYPE_FLT, np.float32(a + b))
            if op == "-":
                return Value(TYPE_FLT, np.float32(a - b))
            if op == "*":
                return Value(TYPE_FLT, np.float32(a * b))
            if op == "/":
                return Value(TYPE_FLT, np.float32(a / b) if b != 0.0 else np.float32(0.0))
            if op == "%":
                return Value(TYPE_FLT, np.float32(np.fmod(a, b)) if b != 0.0 else np.float32(0.0))
        return floating(0.0)

    x = np.int32(left.value)
    y = np.int32(right.value)
    with np.errstate(over="ignore"):
        if op == "+":
            return Value(TYPE_INT, np.int32(x + y))
        if op == "-":
            return Value(TYPE_INT, np.int32(x - y))
        if op == "*":
            return Value(TYPE_INT, np.int32(x * y))
        if op == "%":
            # C remainder: sign follows the dividend.
            return Value(TYPE_INT, np.int32(np.fmod(x, y)) if y != 0 else np.int32(0))
    return integer(0)


def concat(left: Value, right: Value) -> Value:
    return string(stringify(left) + stringify(right))


def release(
    value: Value,
    hook: Optional[Callable[[Value], None]] = None,
    last_reference: Optional[Callable[[Value], bool]] = None,
) -> int:
    """Release a value and everything it owns, children first.

    Only strings and tables own storage. Each owned allocation is reported
    to ``hook`` once; the return value is the number of releases. When
    ``last_reference`` is given, an allocation (and its subtree) is only
    released if that call reports the reference being dropped was the last.
    """
    if value.type not in OWNING_TYPES:
        return 0
    if last_reference is not None and not last_reference(value):
        return 0
    count = 0
    if value.type == TYPE_TBL:
        items: Tuple[Value, ...] = value.value
        for item in items:
            count += release(item, hook, last_reference)
    if hook is not None:
        hook(value)
    return count + 1
