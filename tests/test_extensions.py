from pathlib import Path

import pytest

from extensions import (
    ExtensionAPI,
    FlatExtensionError,
    RuntimeServices,
    load_extension,
    load_runtime_services,
)
from interpreter import Interpreter

DEBUG_EXT = Path(__file__).resolve().parent.parent / "ext" / "debug.py"


def run_with(services, source):
    output = []
    interpreter = Interpreter(source=source, filename="<test>", services=services, output_sink=output.append)
    interpreter.run()
    return interpreter, "".join(output)


def test_debug_extension_adds_dump_opcode(monkeypatch):
    monkeypatch.delenv("FLAT_TRACE", raising=False)
    services = load_runtime_services([str(DEBUG_EXT)])
    assert services.extensions == ["debug"]
    assert services.opcodes["DUMP"].roles == ("value",)
    assert services.hooks["after_step"] == []
    _, out = run_with(services, 'DECL l LIST\nSET l [1,"a]\nDUMP l\ndump 7')
    assert out == '[1 "a"]\n7\n'


def test_debug_trace_writes_to_stderr_when_enabled(monkeypatch, capsys):
    monkeypatch.setenv("FLAT_TRACE", "1")
    services = load_runtime_services([str(DEBUG_EXT)])
    run_with(services, "DECL x NATURAL\nLABEL L\nSET x 3")
    err = capsys.readouterr().err.splitlines()
    assert err[0].startswith("[trace 000001] line 1: DECL -> DeclareVariable(")
    assert err[1] == "[trace 000002] line 2: LABEL -> DefineLabel(name='L')"
    assert err[2] == "[trace 000003] line 3: SET"


def test_same_opcode_from_two_extensions_conflicts():
    services = RuntimeServices()
    load_extension(str(DEBUG_EXT), services)
    with pytest.raises(FlatExtensionError) as info:
        load_extension(str(DEBUG_EXT), services)
    assert "DUMP" in str(info.value)


def test_missing_extension_is_reported(tmp_path):
    with pytest.raises(FlatExtensionError):
        load_runtime_services([str(tmp_path / "nope.py")])


def test_extension_must_define_register_function(tmp_path):
    module = tmp_path / "empty_ext.py"
    module.write_text("X = 1\n", encoding="utf-8")
    with pytest.raises(FlatExtensionError) as info:
        load_runtime_services([str(module)])
    assert "flat_lang_register" in str(info.value)


def test_extension_api_version_must_match(tmp_path):
    module = tmp_path / "future_ext.py"
    module.write_text(
        "FLAT_LANG_EXTENSION_API_VERSION = 99\n"
        "def flat_lang_register(ext):\n"
        "    pass\n",
        encoding="utf-8",
    )
    with pytest.raises(FlatExtensionError):
        load_runtime_services([str(module)])


def test_extension_name_defaults_to_file_stem(tmp_path):
    module = tmp_path / "counter.py"
    module.write_text(
        "def flat_lang_register(ext):\n"
        "    ext.on_event('program_end', lambda interp: interp.output_sink(str(interp.steps.count)))\n",
        encoding="utf-8",
    )
    services = load_runtime_services([str(module)])
    assert services.extensions == ["counter"]
    _, out = run_with(services, "DECL x NATURAL\nSET x 1\nhello world")
    assert out == "2"


def test_opcode_roles_and_names_are_validated():
    api = ExtensionAPI(RuntimeServices(), "test")
    with pytest.raises(FlatExtensionError):
        api.register_opcode("BAD", ("dest", "whatever"), lambda *args: None)
    with pytest.raises(FlatExtensionError):
        api.register_opcode("TWO WORDS", (), lambda *args: None)
    with pytest.raises(FlatExtensionError):
        api.register_opcode("", (), lambda *args: None)
