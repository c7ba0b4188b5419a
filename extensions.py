"""Extension hooks and extension-provided opcodes.

An extension is a Python file that defines ``flat_lang_register(ext)``.
Through the ``ExtensionAPI`` it receives, it can add opcodes, declared by
their operand roles exactly like the built-in table, and watch a run
through hooks:

    program_start(interpreter)
    before_step(interpreter, instruction)
    after_step(interpreter, instruction, response)
    on_error(interpreter, error)
    program_end(interpreter)

``response`` is the control response the opcode returned (a jump, a
declaration, ...) or None for plain data opcodes.
"""

from __future__ import annotations

import functools
import importlib.util
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from decoder import OPCODES, ROLE_DEST, ROLE_LABEL, ROLE_NAME, ROLE_TYPE, ROLE_VALUE, split_fields


EXTENSION_API_VERSION = 1

KNOWN_ROLES = frozenset({ROLE_DEST, ROLE_VALUE, ROLE_NAME, ROLE_TYPE, ROLE_LABEL})

EVENTS = ("program_start", "before_step", "after_step", "on_error", "program_end")


class FlatExtensionError(Exception):
    pass


@dataclass(frozen=True)
class ExtensionOpcode:
    mnemonic: str
    roles: Tuple[str, ...]
    impl: Callable[..., Any]
    origin: str


def _empty_hooks() -> Dict[str, List[Callable[..., None]]]:
    return {event: [] for event in EVENTS}


@dataclass
class RuntimeServices:
    """Everything the loaded extensions contributed to a run."""

    hooks: Dict[str, List[Callable[..., None]]] = field(default_factory=_empty_hooks)
    opcodes: Dict[str, ExtensionOpcode] = field(default_factory=dict)
    extensions: List[str] = field(default_factory=list)

    def add_hook(self, event: str, handler: Callable[..., None]) -> None:
        if event not in self.hooks:
            raise FlatExtensionError(f"Unknown event '{event}' (expected one of: {', '.join(EVENTS)})")
        self.hooks[event].append(handler)

    def add_opcode(self, opcode: ExtensionOpcode) -> None:
        if opcode.mnemonic in OPCODES:
            raise FlatExtensionError(f"Extension '{opcode.origin}' cannot redefine built-in opcode '{opcode.mnemonic}'")
        taken = self.opcodes.get(opcode.mnemonic)
        if taken is not None:
            raise FlatExtensionError(
                f"Opcode '{opcode.mnemonic}' is defined by both '{taken.origin}' and '{opcode.origin}'"
            )
        self.opcodes[opcode.mnemonic] = opcode


class ExtensionAPI:
    """The handle an extension registers through."""

    def __init__(self, services: RuntimeServices, name: str) -> None:
        self.services = services
        self.name = name

    def register_opcode(self, mnemonic: str, roles: Sequence[str], impl: Callable[..., Any]) -> None:
        # The decoder must see the mnemonic as one field.
        if split_fields(mnemonic) != [mnemonic]:
            raise FlatExtensionError(f"Opcode name {mnemonic!r} must be a single token")
        roles = tuple(roles)
        unknown = sorted(set(roles) - KNOWN_ROLES)
        if unknown:
            raise FlatExtensionError(f"Opcode '{mnemonic}' uses unknown operand roles: {', '.join(unknown)}")
        self.services.add_opcode(ExtensionOpcode(mnemonic.upper(), roles, impl, self.name))

    def opcode(self, mnemonic: str, *roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
        def deco(fn: Callable[..., Any]) -> Callable[..., Any]:
            self.register_opcode(mnemonic, roles, fn)
            return fn

        return deco

    def on_event(self, event: str, handler: Optional[Callable[..., None]] = None) -> Any:
        """Attach ``handler`` to ``event``; without a handler, act as a decorator."""
        if handler is None:
            return functools.partial(self.on_event, event)
        self.services.add_hook(event, handler)
        return handler


def load_extension(path: str, services: RuntimeServices) -> str:
    """Execute one extension file and let it register into ``services``."""
    if not os.path.isfile(path):
        raise FlatExtensionError(f"Extension not found: {path}")
    stem = os.path.splitext(os.path.basename(path))[0]
    spec = importlib.util.spec_from_file_location(f"flat_ext_{len(services.extensions)}_{stem}", path)
    if spec is None or spec.loader is None:
        raise FlatExtensionError(f"Cannot import extension {path}")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)

    api_version = getattr(module, "FLAT_LANG_EXTENSION_API_VERSION", EXTENSION_API_VERSION)
    if api_version != EXTENSION_API_VERSION:
        raise FlatExtensionError(
            f"Extension {path} targets API {api_version}; this interpreter provides {EXTENSION_API_VERSION}"
        )
    register = getattr(module, "flat_lang_register", None)
    if not callable(register):
        raise FlatExtensionError(f"Extension {path} must define flat_lang_register(ext)")
    name = str(getattr(module, "FLAT_LANG_EXTENSION_NAME", stem))
    register(ExtensionAPI(services, name))
    services.extensions.append(name)
    return name


def load_runtime_services(paths: Sequence[str]) -> RuntimeServices:
    services = RuntimeServices()
    for path in paths:
        load_extension(os.path.abspath(path), services)
    return services
