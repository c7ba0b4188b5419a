"""Flat-Lang entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from decoder import FlatParseError, FlatRuntimeError
from extensions import FlatExtensionError, RuntimeServices, load_runtime_services
from interpreter import Interpreter, error_to_json, format_error


def run_repl(verbose: bool, services: Optional[RuntimeServices] = None) -> int:
    print("\x1b[38;2;153;221;255mFlat-Lang\033[0m REPL. Each line runs as soon as it is entered.") # "Flat-Lang" in light blue
    had_output = False

    def _output_sink(text: str) -> None:
        nonlocal had_output
        had_output = True
        sys.stdout.write(text)
        sys.stdout.flush()

    # INPUT inside the REPL reads from the same terminal.
    interpreter = Interpreter(
        source="",
        filename="<repl>",
        verbose=verbose,
        services=services,
        input_provider=(lambda: input()),
        output_sink=_output_sink,
    )

    while True:
        if had_output:
            # Ensure prompt starts on a fresh line if the program printed anything
            print()
            had_output = False
        try:
            line = input("\x1b[38;2;153;221;255m>>>\033[0m ")
        except EOFError:
            print()
            break

        if line.strip() == "":
            continue
        try:
            interpreter.execute_source(line)
        except FlatParseError as error:
            print(f"ParseError: {error}", file=sys.stderr)
            interpreter.ip = len(interpreter.lines)
        except FlatRuntimeError as error:
            print(format_error(error, interpreter.steps, verbose=interpreter.verbose), file=sys.stderr)
            # skip the failing line so the REPL stays usable
            interpreter.ip = len(interpreter.lines)

    return 0


def run_cli(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Flat-Lang reference interpreter")
    parser.add_argument("program", nargs="?", help="Source file path or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Keep the full step history and show variables in error reports")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit the error report as JSON")
    parser.add_argument("-ext", "--ext", dest="extensions", action="append", default=[], help="Extension .py file (repeatable)")
    args = parser.parse_args(argv)

    try:
        services = load_runtime_services(args.extensions)
    except FlatExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1

    if args.program is None:
        if args.source_mode:
            print("-source requires a program string", file=sys.stderr)
            return 1
        return run_repl(verbose=args.verbose, services=services)

    if args.source_mode:
        source_text = args.program
        filename = "<string>"
    else:
        filename = args.program
        try:
            with open(filename, "r", encoding="utf-8") as handle:
                source_text = handle.read()
        except OSError as exc:
            print(f"Failed to read {filename}: {exc}", file=sys.stderr)
            return 1

    try:
        interpreter = Interpreter(source=source_text, filename=filename, verbose=args.verbose, services=services)
    except FlatExtensionError as error:
        print(f"ExtensionError: {error}", file=sys.stderr)
        return 1
    try:
        interpreter.run()
    except FlatParseError as error:
        print(f"ParseError: {error}", file=sys.stderr)
        return 1
    except FlatRuntimeError as error:
        print(format_error(error, interpreter.steps, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(error_to_json(error, interpreter.steps), file=sys.stderr)
        return 1
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
