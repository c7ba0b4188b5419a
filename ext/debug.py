"""Flat-Lang Extension: debugging helpers.

Adds:
- DUMP value: writes the debug form of a value followed by a newline.
- Step tracing to stderr when the FLAT_TRACE environment variable is set
  at load time. Each line shows the step number, the source line, the
  mnemonic and, for control opcodes, the response they produced.
"""

from __future__ import annotations

import os
import sys
from typing import Any, List, Optional

from decoder import ROLE_VALUE, Instruction, SourceLocation
from extensions import ExtensionAPI
from values import Value, debug


FLAT_LANG_EXTENSION_NAME = "debug"
FLAT_LANG_EXTENSION_API_VERSION = 1


def _dump(interpreter: Any, _: Optional[Value], args: List[Any], location: SourceLocation) -> None:
    interpreter.output_sink(debug(args[0]) + "\n")
    return None


def _trace(interpreter: Any, instruction: Instruction, response: Any) -> None:
    line = f"[trace {interpreter.steps.count:06d}] line {instruction.location.line}: {instruction.mnemonic}"
    if response is not None:
        line += f" -> {response}"
    print(line, file=sys.stderr)


def flat_lang_register(ext: ExtensionAPI) -> None:
    ext.register_opcode("DUMP", (ROLE_VALUE,), _dump)
    if os.environ.get("FLAT_TRACE"):
        ext.on_event("after_step", _trace)
