from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


class FlatError(Exception):
    """Base class for interpreter errors."""


class FlatParseError(FlatError):
    """Raised when an instruction line cannot be decoded."""


@dataclass
class SourceLocation:
    file: str
    line: int
    column: int
    statement: str


class FlatRuntimeError(FlatError):
    """Raised for runtime faults."""

    def __init__(
        self,
        message: str,
        *,
        location: Optional[SourceLocation] = None,
        rewrite_rule: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.location = location
        self.rewrite_rule = rewrite_rule
        self.step_index: Optional[int] = None


# Only ASCII whitespace separates fields; NBSP, U+2028 and friends are
# ordinary token characters.
ASCII_WHITESPACE = " \t\n\r\x0b\x0c"
_FIELD_SEPARATOR = re.compile(r"[ \t\n\r\x0b\x0c]+")


def split_fields(text: str) -> List[str]:
    stripped = text.strip(ASCII_WHITESPACE)
    if not stripped:
        return []
    return _FIELD_SEPARATOR.split(stripped)


def split_source(source: str) -> List[str]:
    """Split program text into instruction lines.

    Lines end at ``\\n`` only. A ``\\r`` before it is dropped, and a final
    newline does not open an extra empty line.
    """
    if not source:
        return []
    lines = source.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


# Operand roles. DEST names an existing variable that the opcode mutates,
# VALUE goes through the literal parser, the rest are passed through raw.
ROLE_DEST = "dest"
ROLE_VALUE = "value"
ROLE_NAME = "name"
ROLE_TYPE = "type"
ROLE_LABEL = "label"

_ARITH = (ROLE_DEST, ROLE_VALUE, ROLE_VALUE)
_UNARY = (ROLE_DEST, ROLE_VALUE)
_COND_JUMP = (ROLE_LABEL, ROLE_VALUE, ROLE_VALUE)

OPCODES: Dict[str, Tuple[str, ...]] = {
    "ADD": _ARITH,
    "SUB": _ARITH,
    "MUL": _ARITH,
    "DIV": _ARITH,
    "MOD": _ARITH,
    "ROUND": _UNARY,
    "FLOOR": _UNARY,
    "CEIL": _UNARY,
    "AND": _ARITH,
    "OR": _ARITH,
    "XOR": _ARITH,
    "NOT": _UNARY,
    "DECL": (ROLE_NAME, ROLE_TYPE),
    "SET": _UNARY,
    "FREE": (ROLE_NAME,),
    "LABEL": (ROLE_LABEL,),
    "JMP": (ROLE_LABEL,),
    "JEQ": _COND_JUMP,
    "JGT": _COND_JUMP,
    "JLT": _COND_JUMP,
    "JNE": _COND_JUMP,
    "PRINT": (ROLE_VALUE,),
    "INPUT": (ROLE_DEST,),
    "CONVERT": _UNARY,
    "SLICE": (ROLE_DEST, ROLE_VALUE, ROLE_VALUE, ROLE_VALUE),
    "INDEX": (ROLE_DEST, ROLE_VALUE, ROLE_VALUE),
    "LEN": _UNARY,
    "INSERT": (ROLE_DEST, ROLE_VALUE, ROLE_VALUE),
}


@dataclass
class Instruction:
    mnemonic: str
    operands: List[str]
    roles: Tuple[str, ...]
    location: SourceLocation

    def operand_roles(self) -> List[Tuple[str, str]]:
        return list(zip(self.roles, self.operands))


class Decoder:
    """Turns source lines into instructions.

    Decoding is lazy: the interpreter asks for one line at a time, so a
    malformed line further down a program only fails once it is reached.
    """

    def __init__(self, filename: str, opcodes: Optional[Dict[str, Tuple[str, ...]]] = None) -> None:
        self.filename = filename
        self.opcodes: Dict[str, Tuple[str, ...]] = dict(OPCODES if opcodes is None else opcodes)

    def register(self, mnemonic: str, roles: Tuple[str, ...]) -> None:
        self.opcodes[mnemonic.upper()] = tuple(roles)

    def is_mnemonic(self, token: str) -> bool:
        return token.upper() in self.opcodes

    def decode(self, text: str, line_index: int) -> Optional[Instruction]:
        tokens = split_fields(text)
        if not tokens:
            return None
        mnemonic = tokens[0].upper()
        roles = self.opcodes.get(mnemonic)
        if roles is None:
            # Unknown first token: the whole line is a no-op.
            return None
        column = text.find(tokens[0]) + 1
        location = SourceLocation(
            file=self.filename,
            line=line_index + 1,
            column=column,
            statement=text.strip(ASCII_WHITESPACE),
        )
        operands = tokens[1:]
        if len(operands) < len(roles):
            raise FlatParseError(
                f"{mnemonic} expects {len(roles)} operands but got {len(operands)} "
                f"at {self.filename}:{line_index + 1}:{column}"
            )
        return Instruction(
            mnemonic=mnemonic,
            operands=operands[: len(roles)],
            roles=roles,
            location=location,
        )
