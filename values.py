from __future__ import annotations
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, List, Optional

import numpy as np

from decoder import FlatRuntimeError


class VarType(Enum):
    NATURAL = "NATURAL"
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    CHARACTER = "CHARACTER"
    BOOLEAN = "BOOLEAN"
    STR = "STR"
    LIST = "LIST"

    @classmethod
    def from_name(cls, name: str) -> "VarType":
        try:
            return cls(name.upper())
        except ValueError:
            raise FlatRuntimeError(f"Unknown type '{name}'", rewrite_rule="DECL") from None


NUMERIC_TYPES = frozenset({VarType.NATURAL, VarType.INTEGER, VarType.FLOAT})

NATURAL_MAX = 2**32 - 1
INTEGER_MIN = -(2**31)
INTEGER_MAX = 2**31 - 1


@dataclass
class Value:
    type: VarType
    value: Any

    def copy(self) -> "Value":
        if self.type is VarType.LIST:
            return Value(VarType.LIST, [item.copy() for item in self.value])
        # Every other payload is an immutable scalar or str.
        return Value(self.type, self.value)

    def __repr__(self) -> str:
        return f"Value({self.type.value}, {debug(self)})"


def natural(number: int) -> Value:
    if number < 0 or number > NATURAL_MAX:
        raise FlatRuntimeError(f"Value {number} does not fit in NATURAL", rewrite_rule="NATURAL")
    return Value(VarType.NATURAL, np.uint32(number))


def integer(number: int) -> Value:
    if number < INTEGER_MIN or number > INTEGER_MAX:
        raise FlatRuntimeError(f"Value {number} does not fit in INTEGER", rewrite_rule="INTEGER")
    return Value(VarType.INTEGER, np.int32(number))


def floating(number: float) -> Value:
    return Value(VarType.FLOAT, np.float32(number))


def character(ch: str) -> Value:
    if len(ch) != 1:
        raise FlatRuntimeError(f"CHARACTER expects exactly one character, got {ch!r}", rewrite_rule="CHARACTER")
    return Value(VarType.CHARACTER, ch)


def boolean(flag: bool) -> Value:
    return Value(VarType.BOOLEAN, bool(flag))


def string(text: str) -> Value:
    return Value(VarType.STR, text)


def list_of(items: List[Value]) -> Value:
    return Value(VarType.LIST, [item.copy() for item in items])


def zero_value(vartype: VarType) -> Value:
    if vartype is VarType.NATURAL:
        return Value(vartype, np.uint32(0))
    if vartype is VarType.INTEGER:
        return Value(vartype, np.int32(0))
    if vartype is VarType.FLOAT:
        return Value(vartype, np.float32(0.0))
    if vartype is VarType.CHARACTER:
        return Value(vartype, "\0")
    if vartype is VarType.BOOLEAN:
        return Value(vartype, False)
    if vartype is VarType.STR:
        return Value(vartype, "")
    if vartype is VarType.LIST:
        return Value(vartype, [])
    raise FlatRuntimeError(f"No zero value for {vartype}", rewrite_rule="DECL")


# ---- numeric projection and casting ----


def numeric(value: Value, rule: str = "NUMERIC") -> np.float32:
    if value.type in NUMERIC_TYPES:
        return np.float32(value.value)
    raise FlatRuntimeError(
        f"{rule} expects a NATURAL, INTEGER or FLOAT operand but got {value.type.value}",
        rewrite_rule=rule,
    )


def round_half_away(number: float) -> float:
    if math.isnan(number) or math.isinf(number):
        return number
    return math.copysign(math.floor(abs(number) + 0.5), number)


def _saturate(number: float, lo: int, hi: int) -> int:
    if math.isnan(number):
        return 0
    if number <= lo:
        return lo
    if number >= hi:
        return hi
    return int(number)


def cast_numeric(result: Any, vartype: VarType, rule: str) -> Any:
    """Cast a float result into the payload of a numeric destination.

    NATURAL takes the magnitude of the rounded result, so negative results
    fold to their absolute value. Out-of-range results saturate and NaN
    becomes zero.
    """
    number = float(result)
    if vartype is VarType.NATURAL:
        return np.uint32(_saturate(abs(round_half_away(number)), 0, NATURAL_MAX))
    if vartype is VarType.INTEGER:
        return np.int32(_saturate(round_half_away(number), INTEGER_MIN, INTEGER_MAX))
    if vartype is VarType.FLOAT:
        return np.float32(result)
    raise FlatRuntimeError(
        f"{rule} destination must be NATURAL, INTEGER or FLOAT, not {vartype.value}",
        rewrite_rule=rule,
    )


# ---- display ----


def _format_float(number: np.float32) -> str:
    if np.isnan(number):
        return "NaN"
    if np.isinf(number):
        return "-inf" if number < 0 else "inf"
    return np.format_float_positional(number, trim="-")


def display(value: Value) -> str:
    t = value.type
    if t is VarType.NATURAL or t is VarType.INTEGER:
        return str(int(value.value))
    if t is VarType.FLOAT:
        return _format_float(value.value)
    if t is VarType.CHARACTER or t is VarType.STR:
        return value.value
    if t is VarType.BOOLEAN:
        return "true" if value.value else "false"
    if t is VarType.LIST:
        return "[" + " ".join(debug(item) for item in value.value) + "]"
    raise FlatRuntimeError(f"Cannot display value of type {t}", rewrite_rule="DISPLAY")


def debug(value: Value) -> str:
    if value.type is VarType.STR:
        return '"' + value.value + '"'
    if value.type is VarType.CHARACTER:
        return "'" + value.value + "'"
    return display(value)


# ---- equality and ordering ----


def compare(left: Value, right: Value) -> Optional[int]:
    """Partial order: -1, 0, 1, or None when the values are unordered.

    Values of different types are never ordered. Lists compare element by
    element, then by length.
    """
    if left.type is not right.type:
        return None
    if left.type is VarType.LIST:
        for a, b in zip(left.value, right.value):
            outcome = compare(a, b)
            if outcome != 0:
                return outcome
        return (len(left.value) > len(right.value)) - (len(left.value) < len(right.value))
    a, b = left.value, right.value
    if a < b:
        return -1
    if a > b:
        return 1
    if a == b:
        return 0
    return None


def values_equal(left: Value, right: Value) -> bool:
    return compare(left, right) == 0
