import pytest

from decoder import FlatRuntimeError
from literals import parse_literal
from values import VarType, natural


def test_bare_digits_are_natural():
    value = parse_literal("42")
    assert value.type is VarType.NATURAL
    assert int(value.value) == 42


def test_signed_digits_are_integer():
    negative = parse_literal("-7")
    positive = parse_literal("+7")
    assert negative.type is VarType.INTEGER and int(negative.value) == -7
    # A leading '+' still yields INTEGER, not NATURAL.
    assert positive.type is VarType.INTEGER and int(positive.value) == 7


def test_string_literal_takes_rest_of_token():
    assert parse_literal('"hello').value == "hello"
    assert parse_literal('"').value == ""
    assert parse_literal('"a"b').value == 'a"b'


def test_boolean_literals_are_case_sensitive():
    assert parse_literal("TRUE").value is True
    assert parse_literal("FALSE").value is False
    with pytest.raises(FlatRuntimeError):
        parse_literal("true")


def test_character_literal():
    value = parse_literal("'x'")
    assert value.type is VarType.CHARACTER
    assert value.value == "x"
    with pytest.raises(FlatRuntimeError):
        parse_literal("'xy'")


def test_list_literal_parses_each_piece():
    value = parse_literal('[1,-2,"a,TRUE]')
    assert value.type is VarType.LIST
    assert [item.type for item in value.value] == [
        VarType.NATURAL,
        VarType.INTEGER,
        VarType.STR,
        VarType.BOOLEAN,
    ]
    assert value.value[2].value == "a"


def test_list_literal_edge_shapes():
    assert parse_literal("[]").value == []
    unclosed = parse_literal("[1,2")
    assert [int(item.value) for item in unclosed.value] == [1, 2]


def test_invalid_naturals_fail():
    with pytest.raises(FlatRuntimeError):
        parse_literal("12a")
    with pytest.raises(FlatRuntimeError):
        parse_literal("99999999999")
    with pytest.raises(FlatRuntimeError):
        parse_literal("-")


def test_variable_names_take_precedence_and_are_copied():
    table = {"x": natural(3), "TRUE": natural(1)}
    value = parse_literal("x", table.get)
    assert int(value.value) == 3
    assert value is not table["x"]
    assert parse_literal("TRUE", table.get).type is VarType.NATURAL


def test_list_pieces_may_reference_variables():
    table = {"x": natural(9)}
    value = parse_literal("[x,1]", table.get)
    assert [int(item.value) for item in value.value] == [9, 1]


def test_overlong_digit_runs_are_literal_errors():
    for token in ("9" * 5000, "-" + "9" * 5000, "+" + "1" * 5000):
        with pytest.raises(FlatRuntimeError) as info:
            parse_literal(token)
        assert info.value.rewrite_rule == "LITERAL"


def test_unknown_identifier_with_lookup_is_undefined():
    with pytest.raises(FlatRuntimeError) as info:
        parse_literal("missing", {}.get)
    assert info.value.rewrite_rule == "IDENT"
    assert "Undefined identifier 'missing'" in info.value.message
    with pytest.raises(FlatRuntimeError) as info:
        parse_literal("[1,missing]", {}.get)
    assert info.value.rewrite_rule == "IDENT"
    # Without a variable table the same token is just a bad literal.
    with pytest.raises(FlatRuntimeError) as info:
        parse_literal("missing")
    assert info.value.rewrite_rule == "LITERAL"


def test_unicode_spaces_stay_inside_string_literals():
    assert parse_literal('"a\xa0b\xa0').value == "a\xa0b\xa0"
    assert parse_literal('"\u2003').value == "\u2003"
