"""ARL entry point and REPL wiring."""

from __future__ import annotations
import argparse
import sys
from typing import List, Optional

from interpreter import BLOCK_LEGACY, BLOCK_MODES, Interpreter, RuntimeLimits, Script, TracebackFormatter, split_statement
from values import ArlRuntimeError


USAGE = "Usage: arlang <file.arl>"
BLOCK_OPENERS = ("if", "while")


def load_script(filename: str) -> Script:
    with open(filename, "r", encoding="utf-8", errors="replace") as handle:
        return Script.from_lines(handle.readlines(), filename)


def run_repl(interpreter: Interpreter) -> int:
    print("ARL REPL. Enter statements, blank line to run an if/while block.")
    formatter = TracebackFormatter(interpreter)
    buffer: List[str] = []

    while True:
        prompt = ">>> " if not buffer else "..> "
        try:
            line = input(prompt)
        except EOFError:
            print()
            break

        stripped = line.strip()
        if not buffer and split_statement(stripped)[0] not in BLOCK_OPENERS:
            if stripped:
                _run_repl_lines(interpreter, formatter, [line])
            continue

        if stripped == "" and buffer:
            lines = list(buffer)
            buffer.clear()
            _run_repl_lines(interpreter, formatter, lines)
            continue

        buffer.append(line)

    interpreter.close()
    return 0


def _run_repl_lines(interpreter: Interpreter, formatter: TracebackFormatter, lines: List[str]) -> None:
    try:
        interpreter.execute_script(Script.from_lines(lines, "<string>"))
    except ArlRuntimeError as error:
        print(formatter.format_text(error, verbose=interpreter.verbose), file=sys.stderr)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ARL line-oriented script interpreter")
    parser.add_argument("program", nargs="?", help="Script path, or literal source with -source")
    parser.add_argument("-source", "--source", dest="source_mode", action="store_true", help="Treat program argument as literal source text")
    parser.add_argument("-repl", "--repl", dest="repl", action="store_true", help="Start an interactive session")
    parser.add_argument("-verbose", "--verbose", dest="verbose", action="store_true", help="Emit env snapshots in tracebacks")
    parser.add_argument("-strict", "--strict", dest="strict", action="store_true", help="Fail on if/while blocks without a matching end")
    parser.add_argument("-blocks", "--blocks", dest="block_mode", choices=BLOCK_MODES, default=BLOCK_LEGACY, help="How end decides which block it closes")
    parser.add_argument("-max-vars", "--max-vars", dest="max_vars", type=int, default=None, help="Maximum number of distinct variables")
    parser.add_argument("-max-items", "--max-items", dest="max_items", type=int, default=None, help="Maximum number of items in a table literal")
    parser.add_argument("-max-depth", "--max-depth", dest="max_depth", type=int, default=None, help="Maximum block nesting depth")
    parser.add_argument("--traceback-json", action="store_true", help="Also emit JSON traceback")
    return parser


def run_cli(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)
    limits = RuntimeLimits(
        max_variables=args.max_vars,
        max_table_items=args.max_items,
        max_block_depth=args.max_depth,
    )

    def _make(filename: str) -> Interpreter:
        return Interpreter(
            filename=filename,
            verbose=args.verbose,
            limits=limits,
            block_mode=args.block_mode,
            strict_blocks=args.strict,
        )

    if args.repl:
        return run_repl(_make("<string>"))

    if args.program is None:
        print(USAGE)
        return 1

    if args.source_mode:
        script = Script.from_source(args.program, "<string>")
    else:
        try:
            script = load_script(args.program)
        except OSError:
            # A missing script is reported but is not a process failure.
            print(f"Error: Could not open {args.program}")
            return 0

    interpreter = _make(script.filename)
    try:
        interpreter.execute_script(script)
    except ArlRuntimeError as error:
        formatter = TracebackFormatter(interpreter)
        print(formatter.format_text(error, verbose=args.verbose), file=sys.stderr)
        if args.traceback_json:
            print(formatter.to_json(error), file=sys.stderr)
        return 1
    finally:
        interpreter.close()
    return 0


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
