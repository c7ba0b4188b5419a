from __future__ import annotations
import json
import os
import sys
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from decoder import (
    ROLE_DEST,
    ROLE_VALUE,
    Decoder,
    FlatError,
    FlatRuntimeError,
    Instruction,
    split_source,
)
from extensions import RuntimeServices
from literals import parse_literal
from operations import (
    ControlResponse,
    DeclareVariable,
    DefineLabel,
    FreeVariable,
    JumpToLabel,
    Operations,
)
from values import Value, VarType, display, zero_value


@dataclass
class Environment:
    """The single flat variable table of a run."""

    values: Dict[str, Value] = field(default_factory=dict)

    def declare(self, name: str, vartype: VarType) -> None:
        # Re-declaring a name starts a new lifetime with a fresh zero value.
        self.values[name] = zero_value(vartype)

    def get(self, name: str) -> Value:
        try:
            return self.values[name]
        except KeyError:
            raise FlatRuntimeError(f"Undefined identifier '{name}'", rewrite_rule="IDENT") from None

    def get_optional(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def delete(self, name: str) -> None:
        if name not in self.values:
            raise FlatRuntimeError(f"Cannot free undefined identifier '{name}'", rewrite_rule="FREE")
        del self.values[name]

    def has(self, name: str) -> bool:
        return name in self.values

    def clear(self) -> None:
        self.values.clear()

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = display(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type.value}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}


@dataclass
class StepRecord:
    """One executed instruction and the variable table it started from."""

    index: int
    instruction: Instruction
    variables: Optional[Dict[str, str]] = None
    response: Optional[ControlResponse] = None


class StepLog:
    """Numbered history of executed instructions.

    Goto loops may run indefinitely, so unless ``verbose`` is set only the
    last ``window`` records are retained. ``count`` is the total number of
    instructions executed so far.
    """

    def __init__(self, verbose: bool, window: int = 32) -> None:
        self.verbose = verbose
        self.records: Deque[StepRecord] = deque(maxlen=None if verbose else window)
        self.count = 0

    def begin(self, instruction: Instruction, variables: Optional[Dict[str, str]]) -> StepRecord:
        self.count += 1
        record = StepRecord(index=self.count, instruction=instruction, variables=variables)
        self.records.append(record)
        return record

    @property
    def last(self) -> Optional[StepRecord]:
        return self.records[-1] if self.records else None


def _read_stdin_line() -> str:
    line = sys.stdin.readline()
    if line == "":
        raise EOFError("end of input")
    return line


def _write_stdout(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class Interpreter:
    def __init__(
        self,
        *,
        source: str,
        filename: str,
        verbose: bool = False,
        services: Optional[RuntimeServices] = None,
        input_provider: Optional[Callable[[], str]] = None,
        output_sink: Optional[Callable[[str], None]] = None,
    ) -> None:
        self.source = source
        self.lines: List[str] = split_source(source)
        self.filename = filename if filename.startswith("<") else os.path.abspath(filename)
        self.verbose = verbose
        self.services = services or RuntimeServices()
        self.input_provider = input_provider or _read_stdin_line
        self.output_sink = output_sink or _write_stdout

        self.decoder = Decoder(self.filename)
        self.operations = Operations()
        for opcode in self.services.opcodes.values():
            self.operations.register_extension_opcode(name=opcode.mnemonic, roles=opcode.roles, impl=opcode.impl)
            self.decoder.register(opcode.mnemonic, opcode.roles)

        self.env = Environment()
        self.labels: Dict[str, int] = {}
        self.ip = 0
        self.steps = StepLog(verbose=verbose)
        self.io_log: Deque[Dict[str, str]] = deque(maxlen=None if verbose else 32)

    @property
    def halted(self) -> bool:
        return self.ip >= len(self.lines)

    def reset(self) -> None:
        self.env.clear()
        self.labels.clear()
        self.ip = 0

    def run(self) -> None:
        self.reset()
        self._fire("program_start", self)
        self._run_until_halt()
        self._fire("program_end", self)

    def execute_source(self, text: str) -> None:
        """Append lines to the program and keep running from the current pointer.

        Variables and labels survive between calls, which is what the REPL
        relies on.
        """
        self.lines.extend(split_source(text))
        self._run_until_halt()

    def _run_until_halt(self) -> None:
        try:
            while not self.halted:
                self.step()
        except FlatError as error:
            self._fire("on_error", self, error)
            raise

    def step(self) -> None:
        instruction = self.decoder.decode(self.lines[self.ip], self.ip)
        if instruction is None:
            self.ip += 1
            return
        record = self.steps.begin(instruction, self.env.snapshot() if self.verbose else None)
        try:
            self._fire("before_step", self, instruction)
            dest, args = self._resolve(instruction)
            record.response = self.operations.invoke(self, instruction.mnemonic, dest, args, instruction.location)
            self._apply(record.response)
            self.ip += 1
            self._fire("after_step", self, instruction, record.response)
        except FlatRuntimeError as error:
            _attribute(error, record)
            raise
        except Exception as exc:
            # Bugs in opcode implementations still surface as Flat-Lang errors.
            wrapped = FlatRuntimeError(f"Internal interpreter error: {exc}", rewrite_rule="internal")
            raise _attribute(wrapped, record) from exc

    def _resolve(self, instruction: Instruction) -> Tuple[Optional[Value], List[Any]]:
        dest: Optional[Value] = None
        args: List[Any] = []
        lookup = self.env.get_optional
        for role, token in instruction.operand_roles():
            if role == ROLE_DEST and dest is None:
                dest = self.env.get(token)
            elif role == ROLE_DEST or role == ROLE_VALUE:
                args.append(parse_literal(token, lookup))
            else:
                args.append(token)
        return dest, args

    def _apply(self, response: Optional[ControlResponse]) -> None:
        if response is None:
            return
        if isinstance(response, DeclareVariable):
            self.env.declare(response.name, response.vartype)
        elif isinstance(response, FreeVariable):
            self.env.delete(response.name)
        elif isinstance(response, DefineLabel):
            self.labels[response.name] = self.ip
        elif isinstance(response, JumpToLabel):
            target = self.labels.get(response.name)
            if target is None:
                raise FlatRuntimeError(f"Jump to undefined label '{response.name}'")
            self.ip = target
        else:
            raise FlatRuntimeError(f"Unknown control response {response!r}")

    def _fire(self, event: str, *args: Any) -> None:
        for handler in self.services.hooks[event]:
            try:
                handler(*args)
            except FlatError:
                raise
            except Exception as exc:
                raise FlatRuntimeError(f"Extension hook '{event}' failed: {exc}", rewrite_rule="EXT") from exc


def _attribute(error: FlatRuntimeError, record: StepRecord) -> FlatRuntimeError:
    """Pin an error to the step that raised it."""
    if error.location is None:
        error.location = record.instruction.location
    if error.rewrite_rule is None:
        error.rewrite_rule = record.instruction.mnemonic
    error.step_index = record.index
    return error


def format_error(error: FlatRuntimeError, steps: StepLog, *, verbose: bool = False, context: int = 5) -> str:
    """Render a fatal error together with the steps that led up to it."""
    lines: List[str] = []
    recent = list(steps.records)[-context:]
    if recent:
        lines.append("Recent steps (most recent last):")
        for record in recent:
            where = record.instruction.location
            lines.append(f"  #{record.index:<5} line {where.line:<4} {where.statement}")
    if error.location is not None:
        where = error.location
        lines.append(f"  File \"{where.file}\", line {where.line}, column {where.column}")
        lines.append(f"    {where.statement}")
    last = steps.last
    if verbose and last is not None and last.variables is not None:
        table = ", ".join(f"{name}={shown}" for name, shown in last.variables.items()) or "(empty)"
        lines.append(f"  Variables before step {last.index}: {table}")
    lines.append(f"{error.__class__.__name__}: {error.message} [{error.rewrite_rule or 'runtime'}]")
    return "\n".join(lines)


def error_to_json(error: FlatRuntimeError, steps: StepLog) -> str:
    def _record(record: StepRecord) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": record.index,
            "line": record.instruction.location.line,
            "mnemonic": record.instruction.mnemonic,
            "operands": record.instruction.operands,
            "response": None if record.response is None else repr(record.response),
        }
        if record.variables is not None:
            data["variables"] = record.variables
        return data

    location = None if error.location is None else asdict(error.location)
    payload = {
        "error": {
            "type": error.__class__.__name__,
            "message": error.message,
            "rule": error.rewrite_rule,
            "failing_step_index": error.step_index,
            "location": location,
        },
        "steps": [_record(record) for record in steps.records],
    }
    return json.dumps(payload, indent=2)
