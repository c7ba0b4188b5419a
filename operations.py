from __future__ import annotations
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple, Union

import numpy as np

from decoder import OPCODES, FlatRuntimeError, SourceLocation
from extensions import FlatExtensionError
from values import (
    NATURAL_MAX,
    NUMERIC_TYPES,
    INTEGER_MAX,
    INTEGER_MIN,
    Value,
    VarType,
    cast_numeric,
    character,
    compare,
    display,
    numeric,
    round_half_away,
    values_equal,
)

if TYPE_CHECKING:
    from interpreter import Interpreter


# ---- control responses ----


@dataclass(frozen=True)
class DeclareVariable:
    name: str
    vartype: VarType


@dataclass(frozen=True)
class FreeVariable:
    name: str


@dataclass(frozen=True)
class DefineLabel:
    name: str


@dataclass(frozen=True)
class JumpToLabel:
    name: str


ControlResponse = Union[DeclareVariable, FreeVariable, DefineLabel, JumpToLabel]

# (interpreter, destination, remaining operands, location) -> response
OperationImpl = Callable[["Interpreter", Optional[Value], List[Any], SourceLocation], Optional[ControlResponse]]


@dataclass
class Operation:
    name: str
    roles: Tuple[str, ...]
    impl: OperationImpl


class Operations:
    def __init__(self) -> None:
        self.table: Dict[str, Operation] = {}
        self._register_arith("ADD", lambda a, b: a + b, self._add_special)
        self._register_arith("SUB", lambda a, b: a - b)
        self._register_arith("MUL", lambda a, b: a * b)
        self._register_arith("DIV", lambda a, b: a / b)
        self._register_arith("MOD", np.fmod)
        self._register_rounding("ROUND", lambda x: np.float32(round_half_away(float(x))))
        self._register_rounding("FLOOR", np.floor)
        self._register_rounding("CEIL", np.ceil)
        self._register_logical("AND", lambda a, b: a and b)
        self._register_logical("OR", lambda a, b: a or b)
        self._register_logical("XOR", lambda a, b: a != b)
        self._register_custom("NOT", self._not)
        self._register_custom("DECL", self._decl)
        self._register_custom("SET", self._set)
        self._register_custom("FREE", self._free)
        self._register_custom("LABEL", self._label)
        self._register_custom("JMP", self._jmp)
        self._register_jump("JEQ", values_equal)
        self._register_jump("JNE", lambda left, right: not values_equal(left, right))
        self._register_jump("JGT", lambda left, right: compare(left, right) == 1)
        self._register_jump("JLT", lambda left, right: compare(left, right) == -1)
        self._register_custom("PRINT", self._print)
        self._register_custom("INPUT", self._input)
        self._register_custom("CONVERT", self._convert)
        self._register_custom("SLICE", self._slice)
        self._register_custom("INDEX", self._index)
        self._register_custom("LEN", self._len)
        self._register_custom("INSERT", self._insert)

        self._conversions: Dict[VarType, Callable[[Value, SourceLocation], Any]] = {
            VarType.BOOLEAN: self._to_boolean,
            VarType.CHARACTER: self._to_character,
            VarType.NATURAL: lambda src, loc: self._to_number(src, VarType.NATURAL, loc),
            VarType.INTEGER: lambda src, loc: self._to_number(src, VarType.INTEGER, loc),
            VarType.FLOAT: lambda src, loc: self._to_number(src, VarType.FLOAT, loc),
            VarType.LIST: self._to_list,
            VarType.STR: self._to_string,
        }

    # ---- registration ----

    def _register_custom(self, name: str, impl: OperationImpl) -> None:
        self.table[name] = Operation(name=name, roles=OPCODES[name], impl=impl)

    def _register_arith(
        self,
        name: str,
        func: Callable[[np.float32, np.float32], Any],
        special: Optional[Callable[[str, Value, List[Any]], bool]] = None,
    ) -> None:
        def impl(_: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
            assert dest is not None
            if special is not None and special(name, dest, args):
                return None
            a = numeric(args[0], name)
            b = numeric(args[1], name)
            with np.errstate(all="ignore"):
                result = func(a, b)
            dest.value = cast_numeric(result, dest.type, name)
            return None

        self._register_custom(name, impl)

    def _register_rounding(self, name: str, func: Callable[[np.float32], Any]) -> None:
        def impl(_: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
            assert dest is not None
            x = numeric(args[0], name)
            dest.value = cast_numeric(func(x), dest.type, name)
            return None

        self._register_custom(name, impl)

    def _register_logical(self, name: str, func: Callable[[bool, bool], bool]) -> None:
        def impl(_: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
            assert dest is not None
            self._expect_bool(dest, name, location)
            a = self._expect_bool(args[0], name, location)
            b = self._expect_bool(args[1], name, location)
            dest.value = bool(func(a, b))
            return None

        self._register_custom(name, impl)

    def _register_jump(self, name: str, predicate: Callable[[Value, Value], bool]) -> None:
        def impl(_: "Interpreter", __: Optional[Value], args: List[Any], location: SourceLocation) -> Optional[ControlResponse]:
            label, left, right = args
            if predicate(left, right):
                return JumpToLabel(label)
            return None

        self._register_custom(name, impl)

    def register_extension_opcode(self, *, name: str, roles: Tuple[str, ...], impl: OperationImpl) -> None:
        if name in self.table:
            raise FlatExtensionError(f"Cannot override existing opcode '{name}'")
        self.table[name] = Operation(name=name, roles=tuple(roles), impl=impl)

    def invoke(
        self,
        interpreter: "Interpreter",
        name: str,
        dest: Optional[Value],
        args: List[Any],
        location: SourceLocation,
    ) -> Optional[ControlResponse]:
        operation = self.table.get(name)
        if operation is None:
            raise FlatRuntimeError(f"Unknown opcode '{name}'", location=location)
        return operation.impl(interpreter, dest, args, location)

    # ---- helpers ----

    def _expect_bool(self, value: Value, rule: str, location: SourceLocation) -> bool:
        if value.type is not VarType.BOOLEAN:
            raise FlatRuntimeError(f"{rule} expects BOOLEAN operands but got {value.type.value}", location=location, rewrite_rule=rule)
        return bool(value.value)

    def _expect_str(self, value: Value, rule: str, location: SourceLocation) -> str:
        if value.type is not VarType.STR:
            raise FlatRuntimeError(f"{rule} expects a STR but got {value.type.value}", location=location, rewrite_rule=rule)
        return value.value

    def _expect_list(self, value: Value, rule: str, location: SourceLocation) -> List[Value]:
        if value.type is not VarType.LIST:
            raise FlatRuntimeError(f"{rule} expects a LIST but got {value.type.value}", location=location, rewrite_rule=rule)
        return value.value

    def _expect_index(self, value: Value, rule: str, location: SourceLocation) -> int:
        if value.type is not VarType.NATURAL and value.type is not VarType.INTEGER:
            raise FlatRuntimeError(f"{rule} index must be NATURAL or INTEGER", location=location, rewrite_rule=rule)
        index = int(value.value)
        if index < 0:
            raise FlatRuntimeError(f"{rule} index must be non-negative", location=location, rewrite_rule=rule)
        return index

    def _assign(self, dest: Value, src: Value, rule: str, location: SourceLocation) -> None:
        if dest.type is not src.type:
            raise FlatRuntimeError(
                f"Type mismatch: expected {dest.type.value} but got {src.type.value}",
                location=location,
                rewrite_rule=rule,
            )
        dest.value = src.copy().value

    # ---- arithmetic / logic ----

    def _add_special(self, name: str, dest: Value, args: List[Any]) -> bool:
        if dest.type is VarType.LIST:
            items: List[Value] = []
            for operand in args:
                if operand.type is VarType.LIST:
                    items.extend(item.copy() for item in operand.value)
                else:
                    items.append(operand.copy())
            dest.value = items
            return True
        if dest.type is VarType.STR:
            dest.value = display(args[0]) + display(args[1])
            return True
        return False

    def _not(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        self._expect_bool(dest, "NOT", location)
        dest.value = not self._expect_bool(args[0], "NOT", location)
        return None

    # ---- variables and labels ----

    def _decl(self, _: "Interpreter", __: Optional[Value], args: List[Any], location: SourceLocation) -> ControlResponse:
        name, type_name = args
        return DeclareVariable(name, VarType.from_name(type_name))

    def _set(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        self._assign(dest, args[0], "SET", location)
        return None

    def _free(self, _: "Interpreter", __: Optional[Value], args: List[Any], location: SourceLocation) -> ControlResponse:
        return FreeVariable(args[0])

    def _label(self, _: "Interpreter", __: Optional[Value], args: List[Any], location: SourceLocation) -> ControlResponse:
        return DefineLabel(args[0])

    def _jmp(self, _: "Interpreter", __: Optional[Value], args: List[Any], location: SourceLocation) -> ControlResponse:
        return JumpToLabel(args[0])

    # ---- I/O ----

    def _print(self, interpreter: "Interpreter", _: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        text = self._expect_str(args[0], "PRINT", location)
        interpreter.output_sink(text)
        interpreter.io_log.append({"event": "PRINT", "text": text})
        return None

    def _input(self, interpreter: "Interpreter", dest: Optional[Value], _: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        self._expect_str(dest, "INPUT", location)
        try:
            text = interpreter.input_provider()
        except (EOFError, OSError) as exc:
            reason = str(exc) or "end of input"
            raise FlatRuntimeError(f"INPUT failed to read a line: {reason}", location=location, rewrite_rule="INPUT")
        if text.endswith("\n"):
            text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
        dest.value = text
        interpreter.io_log.append({"event": "INPUT", "text": text})
        return None

    # ---- conversion ----

    def _convert(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        converter = self._conversions.get(dest.type)
        if converter is None:
            raise FlatRuntimeError(f"CONVERT has no rules for {dest.type.value}", location=location, rewrite_rule="CONVERT")
        dest.value = converter(args[0], location)
        return None

    def _unsupported(self, src: Value, target: VarType, location: SourceLocation) -> FlatRuntimeError:
        return FlatRuntimeError(
            f"CONVERT cannot turn {src.type.value} into {target.value}",
            location=location,
            rewrite_rule="CONVERT",
        )

    def _to_boolean(self, src: Value, location: SourceLocation) -> bool:
        t = src.type
        if t in NUMERIC_TYPES:
            return float(src.value) != 0.0
        if t is VarType.STR or t is VarType.LIST:
            return len(src.value) > 0
        if t is VarType.BOOLEAN:
            return bool(src.value)
        if t is VarType.CHARACTER:
            return src.value not in ("f", "F", "\0")
        raise self._unsupported(src, VarType.BOOLEAN, location)

    def _to_character(self, src: Value, location: SourceLocation) -> str:
        if src.type is VarType.BOOLEAN:
            return "t" if src.value else "f"
        if src.type is VarType.CHARACTER:
            return src.value
        raise self._unsupported(src, VarType.CHARACTER, location)

    def _to_number(self, src: Value, target: VarType, location: SourceLocation) -> Any:
        t = src.type
        if t in NUMERIC_TYPES:
            if target is VarType.INTEGER and t is VarType.NATURAL:
                return np.int32(min(int(src.value), INTEGER_MAX))
            if target is VarType.NATURAL and t is VarType.INTEGER:
                return np.uint32(abs(int(src.value)))
            if t is target:
                return src.value
            return cast_numeric(numeric(src, "CONVERT"), target, "CONVERT")
        if t is VarType.BOOLEAN:
            return cast_numeric(1.0 if src.value else 0.0, target, "CONVERT")
        if t is VarType.STR:
            return self._parse_number(src.value, target, location)
        raise self._unsupported(src, target, location)

    def _parse_number(self, text: str, target: VarType, location: SourceLocation) -> Any:
        if target is VarType.FLOAT:
            try:
                if text != text.strip() or "_" in text:
                    raise ValueError(text)
                return np.float32(float(text))
            except ValueError:
                raise FlatRuntimeError(f"CONVERT cannot parse '{text}' as FLOAT", location=location, rewrite_rule="CONVERT") from None
        body = text[1:] if text[:1] in ("+", "-") else text
        if not body or not body.isascii() or not body.isdigit() or (target is VarType.NATURAL and text.startswith("-")):
            raise FlatRuntimeError(f"CONVERT cannot parse '{text}' as {target.value}", location=location, rewrite_rule="CONVERT")
        number = int(text)
        if target is VarType.NATURAL:
            if number > NATURAL_MAX:
                raise FlatRuntimeError(f"'{text}' does not fit in NATURAL", location=location, rewrite_rule="CONVERT")
            return np.uint32(number)
        if number < INTEGER_MIN or number > INTEGER_MAX:
            raise FlatRuntimeError(f"'{text}' does not fit in INTEGER", location=location, rewrite_rule="CONVERT")
        return np.int32(number)

    def _to_list(self, src: Value, location: SourceLocation) -> List[Value]:
        if src.type is VarType.LIST:
            return [item.copy() for item in src.value]
        if src.type is VarType.STR:
            return [character(ch) for ch in src.value]
        return [src.copy()]

    def _to_string(self, src: Value, location: SourceLocation) -> str:
        if src.type is VarType.LIST and all(item.type is VarType.CHARACTER for item in src.value):
            # Character lists join back into text so STR -> LIST -> STR is lossless.
            return "".join(item.value for item in src.value)
        return display(src)

    # ---- lists ----

    def _slice(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        self._expect_list(dest, "SLICE", location)
        items = self._expect_list(args[0], "SLICE", location)
        start = self._expect_index(args[1], "SLICE", location)
        end = self._expect_index(args[2], "SLICE", location)
        if start > end or end > len(items):
            raise FlatRuntimeError(
                f"SLICE bounds [{start}, {end}) out of range for list of length {len(items)}",
                location=location,
                rewrite_rule="SLICE",
            )
        dest.value = [item.copy() for item in items[start:end]]
        return None

    def _index(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        items = self._expect_list(args[0], "INDEX", location)
        index = self._expect_index(args[1], "INDEX", location)
        if index >= len(items):
            raise FlatRuntimeError(
                f"INDEX {index} out of range for list of length {len(items)}",
                location=location,
                rewrite_rule="INDEX",
            )
        self._assign(dest, items[index], "INDEX", location)
        return None

    def _len(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        items = self._expect_list(args[0], "LEN", location)
        dest.value = cast_numeric(len(items), dest.type, "LEN")
        return None

    def _insert(self, _: "Interpreter", dest: Optional[Value], args: List[Any], location: SourceLocation) -> None:
        assert dest is not None
        items = self._expect_list(dest, "INSERT", location)
        index = self._expect_index(args[0], "INSERT", location)
        if index > len(items):
            raise FlatRuntimeError(
                f"INSERT index {index} out of range for list of length {len(items)}",
                location=location,
                rewrite_rule="INSERT",
            )
        items.insert(index, args[1].copy())
        return None
