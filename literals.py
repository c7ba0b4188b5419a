"""Operand literal parsing.

A value operand is either the name of a declared variable (its current
value is copied) or a literal:

    -12  +12    INTEGER
    12          NATURAL
    "text       STR (the token after the quote; tokens never contain spaces)
    TRUE FALSE  BOOLEAN
    'c'         CHARACTER
    [1,-2,"a]   LIST (pieces are parsed recursively; no nesting)

When a variable lookup is available, an identifier-shaped token that names
no variable is reported as an undefined identifier rather than a bad literal.
"""

from __future__ import annotations
from typing import Callable, List, Optional

from decoder import ASCII_WHITESPACE, FlatRuntimeError
from values import Value, boolean, character, integer, list_of, natural, string

Lookup = Callable[[str], Optional[Value]]


def _bad_literal(token: str) -> FlatRuntimeError:
    return FlatRuntimeError(f"Cannot parse literal '{token}'", rewrite_rule="LITERAL")


def _digits(text: str, token: str) -> int:
    if not text or not text.isascii() or not text.isdigit():
        raise _bad_literal(token)
    try:
        return int(text)
    except ValueError:
        # longer than CPython's int-string digit limit
        raise _bad_literal(token) from None


def parse_literal(token: str, lookup: Optional[Lookup] = None) -> Value:
    token = token.strip(ASCII_WHITESPACE)
    if lookup is not None:
        found = lookup(token)
        if found is not None:
            return found.copy()

    if token.startswith("-"):
        return integer(-_digits(token[1:], token))
    if token.startswith("+"):
        return integer(_digits(token[1:], token))
    if token.startswith('"'):
        return string(token[1:])
    if token == "TRUE":
        return boolean(True)
    if token == "FALSE":
        return boolean(False)
    if token.startswith("["):
        return _parse_list(token, lookup)
    if token.startswith("'"):
        if len(token) != 3 or not token.endswith("'"):
            raise FlatRuntimeError(f"Malformed CHARACTER literal '{token}'", rewrite_rule="LITERAL")
        return character(token[1])
    if lookup is not None and token.isidentifier():
        raise FlatRuntimeError(f"Undefined identifier '{token}'", rewrite_rule="IDENT")
    return natural(_digits(token, token))


def _parse_list(token: str, lookup: Optional[Lookup]) -> Value:
    body = token[1:]
    if body.endswith("]"):
        body = body[:-1]
    items: List[Value] = []
    for piece in body.split(","):
        piece = piece.strip(ASCII_WHITESPACE)
        if piece == "":
            continue
        items.append(parse_literal(piece, lookup))
    return list_of(items)
