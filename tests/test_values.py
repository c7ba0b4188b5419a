import math

import numpy as np
import pytest

from decoder import FlatRuntimeError
from values import (
    VarType,
    boolean,
    cast_numeric,
    character,
    compare,
    display,
    floating,
    integer,
    list_of,
    natural,
    numeric,
    round_half_away,
    string,
    values_equal,
    zero_value,
)


def test_zero_values_per_type():
    assert zero_value(VarType.NATURAL).value == 0
    assert isinstance(zero_value(VarType.NATURAL).value, np.uint32)
    assert isinstance(zero_value(VarType.INTEGER).value, np.int32)
    assert isinstance(zero_value(VarType.FLOAT).value, np.float32)
    assert zero_value(VarType.CHARACTER).value == "\0"
    assert zero_value(VarType.BOOLEAN).value is False
    assert zero_value(VarType.STR).value == ""
    assert zero_value(VarType.LIST).value == []


def test_type_names_are_case_insensitive_and_closed():
    assert VarType.from_name("str") is VarType.STR
    assert VarType.from_name("NATURAL") is VarType.NATURAL
    with pytest.raises(FlatRuntimeError):
        VarType.from_name("DOUBLE")


def test_constructors_reject_out_of_range_numbers():
    with pytest.raises(FlatRuntimeError):
        natural(-1)
    with pytest.raises(FlatRuntimeError):
        natural(2**32)
    with pytest.raises(FlatRuntimeError):
        integer(2**31)
    assert int(integer(-(2**31)).value) == -(2**31)
    with pytest.raises(FlatRuntimeError):
        character("ab")


def test_numeric_projection_only_for_numbers():
    assert numeric(natural(3)) == np.float32(3.0)
    assert numeric(integer(-2)) == np.float32(-2.0)
    assert numeric(floating(1.5)) == np.float32(1.5)
    with pytest.raises(FlatRuntimeError):
        numeric(string("3"))
    with pytest.raises(FlatRuntimeError):
        numeric(boolean(True), "ADD")


def test_round_half_away_from_zero():
    assert round_half_away(2.5) == 3.0
    assert round_half_away(-2.5) == -3.0
    assert round_half_away(0.4) == 0.0
    assert math.isinf(round_half_away(float("inf")))


def test_cast_numeric_natural_folds_negative_results():
    assert int(cast_numeric(np.float32(-3.7), VarType.NATURAL, "ROUND")) == 4
    assert int(cast_numeric(np.float32(-3.2), VarType.NATURAL, "ROUND")) == 3


def test_cast_numeric_integer_and_float():
    assert int(cast_numeric(np.float32(2.5), VarType.INTEGER, "ADD")) == 3
    assert int(cast_numeric(np.float32(-2.5), VarType.INTEGER, "ADD")) == -3
    assert float(cast_numeric(np.float32(2.5), VarType.FLOAT, "ADD")) == 2.5


def test_cast_numeric_saturates_and_zeroes_nan():
    assert int(cast_numeric(np.float32(1e10), VarType.INTEGER, "MUL")) == 2**31 - 1
    assert int(cast_numeric(np.float32(-1e10), VarType.INTEGER, "MUL")) == -(2**31)
    assert int(cast_numeric(np.float32(1e10), VarType.NATURAL, "MUL")) == 2**32 - 1
    assert int(cast_numeric(np.float32(float("nan")), VarType.NATURAL, "DIV")) == 0


def test_cast_numeric_rejects_non_numeric_destination():
    with pytest.raises(FlatRuntimeError) as info:
        cast_numeric(np.float32(1.0), VarType.BOOLEAN, "ADD")
    assert info.value.rewrite_rule == "ADD"


def test_display_forms():
    assert display(natural(5)) == "5"
    assert display(integer(-3)) == "-3"
    assert display(floating(1.5)) == "1.5"
    assert display(floating(2.0)) == "2"
    assert display(floating(0.1)) == "0.1"
    assert display(boolean(True)) == "true"
    assert display(boolean(False)) == "false"
    assert display(character("a")) == "a"
    assert display(string("hi there")) == "hi there"


def test_list_display_is_bracketed_debug_form_without_commas():
    value = list_of([natural(1), integer(-2), string("hi"), character("c"), boolean(True)])
    assert display(value) == "[1 -2 \"hi\" 'c' true]"
    assert display(list_of([])) == "[]"


def test_compare_within_matching_types():
    assert compare(natural(1), natural(2)) == -1
    assert compare(integer(5), integer(-5)) == 1
    assert compare(string("abc"), string("abc")) == 0
    assert compare(character("a"), character("b")) == -1
    assert compare(boolean(False), boolean(True)) == -1


def test_compare_across_types_is_unordered():
    assert compare(natural(1), integer(1)) is None
    assert not values_equal(natural(1), integer(1))
    assert not values_equal(string("1"), natural(1))


def test_compare_lists_lexicographically():
    one_two = list_of([natural(1), natural(2)])
    one_three = list_of([natural(1), natural(3)])
    one = list_of([natural(1)])
    assert compare(one_two, one_three) == -1
    assert compare(one, one_two) == -1
    assert values_equal(one_two, list_of([natural(1), natural(2)]))
    assert compare(list_of([natural(1)]), list_of([string("1")])) is None


def test_nan_is_unordered():
    nan = floating(float("nan"))
    assert compare(nan, nan) is None
    assert not values_equal(nan, nan)


def test_copy_is_deep_for_lists():
    inner = list_of([natural(1)])
    outer = list_of([inner])
    clone = outer.copy()
    clone.value[0].value.append(natural(2))
    assert len(outer.value[0].value) == 1
