from __future__ import annotations
import json
import sys
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, List, Optional, Sequence, Tuple, Union

from environment import Environment
from evaluator import ExpressionEvaluator
from values import ArlBlockError, ArlCapacityError, ArlRuntimeError, Value, render, truthy


BLOCK_LEGACY = "legacy"
BLOCK_TAGGED = "tagged"
BLOCK_MODES = (BLOCK_LEGACY, BLOCK_TAGGED)

KEYWORD_PRINT = "print"
KEYWORD_VAR = "var"
KEYWORD_IF = "if"
KEYWORD_ELSE = "else"
KEYWORD_WHILE = "while"
KEYWORD_END = "end"


@dataclass(frozen=True)
class RuntimeLimits:
    """Optional ceilings; ``None`` means the container grows as needed."""

    max_variables: Optional[int] = None
    max_table_items: Optional[int] = None
    max_block_depth: Optional[int] = None
    max_log_entries: Optional[int] = None

    @classmethod
    def reference(cls) -> "RuntimeLimits":
        # Fixed array sizes of the first ARL implementation.
        return cls(max_variables=256, max_table_items=64, max_block_depth=64)


@dataclass
class SourceLocation:
    file: str
    line: int
    statement: str


def split_statement(line: str) -> Tuple[str, str]:
    """Split a line into its leading keyword and the text after it."""
    parts = line.strip().split(None, 1)
    if not parts:
        return "", ""
    if len(parts) == 1:
        return parts[0], ""
    return parts[0], parts[1]


@dataclass(frozen=True)
class Script:
    filename: str
    lines: Tuple[str, ...]

    @classmethod
    def from_source(cls, source: str, filename: str = "<string>") -> "Script":
        return cls(filename=filename, lines=tuple(source.splitlines()))

    @classmethod
    def from_lines(cls, lines: Sequence[str], filename: str = "<string>") -> "Script":
        return cls(filename=filename, lines=tuple(line.rstrip("\r\n") for line in lines))

    def keyword_at(self, index: int) -> str:
        return split_statement(self.lines[index])[0]

    def location(self, index: int) -> SourceLocation:
        return SourceLocation(file=self.filename, line=index + 1, statement=self.lines[index].strip())

    def __len__(self) -> int:
        return len(self.lines)


@dataclass
class StateEntry:
    step_index: int
    state_id: str
    source_location: Optional[SourceLocation]
    statement: Optional[str]
    env_snapshot: Optional[Dict[str, str]]
    rewrite_record: Dict[str, Any] = field(default_factory=dict)


class StateLogger:
    def __init__(self, verbose: bool, capacity: Optional[int] = None) -> None:
        self.verbose = verbose
        self.entries: Deque[StateEntry] = deque(maxlen=capacity)
        self.next_state_index = 0
        self.last_state_id = "seed"

    def record(
        self,
        *,
        location: Optional[SourceLocation],
        statement: Optional[str],
        rewrite_record: Optional[Dict[str, Any]] = None,
        env_snapshot: Optional[Dict[str, str]] = None,
    ) -> StateEntry:
        rewrite = {} if rewrite_record is None else rewrite_record
        if "from_state_id" not in rewrite:
            rewrite["from_state_id"] = self.last_state_id
        step_index = self.next_state_index
        state_id = f"s_{step_index:06d}"
        rewrite["to_state_id"] = state_id
        entry = StateEntry(
            step_index=step_index,
            state_id=state_id,
            source_location=location,
            statement=statement,
            env_snapshot=env_snapshot,
            rewrite_record=rewrite,
        )
        self.entries.append(entry)
        self.last_state_id = state_id
        self.next_state_index += 1
        return entry

    @property
    def last(self) -> Optional[StateEntry]:
        return self.entries[-1] if self.entries else None


class Interpreter:
    def __init__(
        self,
        *,
        source: str = "",
        filename: str = "<string>",
        verbose: bool = False,
        output_sink: Optional[Callable[[str], None]] = None,
        diagnostic_sink: Optional[Callable[[str], None]] = None,
        limits: Optional[RuntimeLimits] = None,
        block_mode: str = BLOCK_LEGACY,
        strict_blocks: bool = False,
    ) -> None:
        if block_mode not in BLOCK_MODES:
            raise ValueError(f"Unknown block mode '{block_mode}' (expected one of {', '.join(BLOCK_MODES)})")
        self.filename = filename
        self.script = Script.from_source(source, filename)
        self.verbose = verbose
        self.output_sink = output_sink or (lambda text: print(text))
        self.diagnostic_sink = diagnostic_sink or (lambda text: print(text, file=sys.stderr))
        self.limits = limits or RuntimeLimits()
        self.block_mode = block_mode
        self.strict_blocks = strict_blocks

        self.env = Environment(max_variables=self.limits.max_variables)
        self.evaluator = ExpressionEvaluator(
            self.env,
            warn=self._warn,
            max_table_items=self.limits.max_table_items,
        )
        self.logger = StateLogger(verbose=verbose, capacity=self.limits.max_log_entries)
        self.logger.record(location=None, statement="<seed>", rewrite_record={"rule": "SEED"})

        # Program counter and open blocks of the script currently running.
        self.pc = 0
        self.block_stack: List[Tuple[str, int]] = []
        # Tagged mode remembers where each rewound loop ended.
        self.loop_exits: Dict[int, int] = {}

    def run(self) -> None:
        self.execute_script(self.script)

    def execute_script(self, script: Union[Script, Sequence[str]]) -> None:
        if not isinstance(script, Script):
            script = Script.from_lines(script, self.filename)
        self.pc = 0
        self.block_stack = []
        self.loop_exits = {}
        try:
            while self.pc < len(script):
                self.pc = self._execute_line(script, self.pc) + 1
        except ArlRuntimeError as error:
            last = self.logger.last
            if last is not None:
                error.step_index = last.step_index
                if error.location is None:
                    error.location = last.source_location
            raise
        except Exception as exc:
            # Surface Python-level faults as ARL runtime errors so the CLI
            # and REPL can format them like any other traceback.
            last = self.logger.last
            wrapped = ArlRuntimeError(
                f"Internal interpreter error: {exc}",
                location=last.source_location if last else None,
                rewrite_rule="internal",
            )
            if last is not None:
                wrapped.step_index = last.step_index
            raise wrapped from exc

    def evaluate(self, text: str) -> Value:
        return self.evaluator.evaluate(text)

    def close(self) -> None:
        self.env.clear()

    def _execute_line(self, script: Script, pc: int) -> int:
        """Run the statement at ``pc`` and return the index to continue after."""
        keyword, rest = split_statement(script.lines[pc])

        if keyword == KEYWORD_PRINT:
            self._log_step(rule="PRINT", script=script, pc=pc)
            value = self.evaluator.evaluate(rest)
            self.output_sink(render(value))
            self.env.discard(value)
            return pc

        if keyword == KEYWORD_VAR:
            self._log_step(rule="VAR", script=script, pc=pc)
            target, sep, expression = rest.partition("=")
            names = target.split()
            if not sep or not names:
                return pc
            value = self.evaluator.evaluate(expression)
            self.env.set(names[0], value)
            return pc

        if keyword == KEYWORD_IF:
            entry = self._log_step(rule="IF", script=script, pc=pc)
            condition = self.evaluator.evaluate(rest)
            taken = truthy(condition)
            self.env.discard(condition)
            if taken:
                if self.block_mode == BLOCK_TAGGED:
                    self._push_block(KEYWORD_IF, pc)
                return pc
            target = self.find_match(script, pc)
            if self.block_mode == BLOCK_TAGGED and target < len(script) and script.keyword_at(target) == KEYWORD_ELSE:
                # The else branch runs; its end closes this marker.
                self._push_block(KEYWORD_IF, pc)
            entry.rewrite_record["jump"] = target + 1
            return target

        if keyword == KEYWORD_ELSE:
            entry = self._log_step(rule="ELSE", script=script, pc=pc)
            if self.block_mode == BLOCK_TAGGED and self.block_stack and self.block_stack[-1][0] == KEYWORD_IF:
                self.block_stack.pop()
            target = self.find_match(script, pc)
            entry.rewrite_record["jump"] = target + 1
            return target

        if keyword == KEYWORD_WHILE:
            entry = self._log_step(rule="WHILE", script=script, pc=pc)
            # A rewound loop is already on the stack.
            if not (self.block_stack and self.block_stack[-1] == (KEYWORD_WHILE, pc)):
                self._push_block(KEYWORD_WHILE, pc)
            condition = self.evaluator.evaluate(rest)
            looping = truthy(condition)
            self.env.discard(condition)
            if not looping:
                target = self.loop_exits.get(pc)
                if target is None:
                    target = self.find_match(script, pc)
                self.block_stack.pop()
                entry.rewrite_record["jump"] = target + 1
                return target
            return pc

        if keyword == KEYWORD_END:
            entry = self._log_step(rule="END", script=script, pc=pc)
            if not self.block_stack:
                return pc
            if self.block_mode == BLOCK_TAGGED:
                kind, start = self.block_stack.pop()
                if kind == KEYWORD_WHILE:
                    self.loop_exits[start] = pc
            else:
                start = self.block_stack[-1][1]
                kind = script.keyword_at(start)
                if kind != KEYWORD_WHILE:
                    self.block_stack.pop()
            if kind == KEYWORD_WHILE:
                entry.rewrite_record["jump"] = start + 1
                return start - 1
            return pc

        return pc

    def find_match(self, script: Script, start: int) -> int:
        """Index of the ``else``/``end`` closing the block opened at ``start``.

        Only openers with the same keyword nest; an ``else`` ends an ``if``
        scan at depth 1 and is never a match for any other opener.
        """
        opener = script.keyword_at(start)
        depth = 1
        pc = start + 1
        while pc < len(script):
            keyword = script.keyword_at(pc)
            if keyword == opener:
                depth += 1
            elif keyword == KEYWORD_END:
                depth -= 1
                if depth == 0:
                    return pc
            elif opener == KEYWORD_IF and keyword == KEYWORD_ELSE:
                if depth == 1:
                    return pc
            pc += 1
        if self.strict_blocks:
            raise ArlBlockError(
                f"No matching 'end' for '{opener}' on line {start + 1}",
                location=script.location(start),
                rewrite_rule=opener.upper(),
            )
        return pc - 1

    def _push_block(self, kind: str, index: int) -> None:
        depth = self.limits.max_block_depth
        if depth is not None and len(self.block_stack) >= depth:
            raise ArlCapacityError(
                f"Block nesting deeper than {depth}",
                rewrite_rule=kind.upper(),
            )
        self.block_stack.append((kind, index))

    def _warn(self, text: str) -> None:
        self.diagnostic_sink(text)

    def _log_step(self, *, rule: str, script: Script, pc: int) -> StateEntry:
        location = script.location(pc)
        env_snapshot = self.env.snapshot() if self.verbose else None
        return self.logger.record(
            location=location,
            statement=location.statement,
            env_snapshot=env_snapshot,
            rewrite_record={"rule": rule},
        )


class TracebackFormatter:
    def __init__(self, interpreter: Interpreter) -> None:
        self.interpreter = interpreter

    def format_text(self, error: ArlRuntimeError, verbose: bool) -> str:
        lines = ["Traceback (most recent call last):"]
        entry = self.interpreter.logger.last
        location = error.location or (entry.source_location if entry else None)
        if location:
            lines.append(f"  File \"{location.file}\", line {location.line}, in <top-level>")
            if location.statement:
                lines.append(f"    {location.statement}")
        else:
            lines.append("  <unknown location> in <top-level>")
        if entry:
            lines.append(f"    State log index: {entry.step_index}  State id: {entry.state_id}")
            if verbose and entry.env_snapshot is not None:
                snapshot = ", ".join(f"{k}={v}" for k, v in entry.env_snapshot.items())
                lines.append(f"    Env snapshot: {snapshot}")
        rule = error.rewrite_rule or "runtime"
        lines.append(f"{error.__class__.__name__}: {error.message} (rewrite: {rule})")
        return "\n".join(lines)

    def to_json(self, error: ArlRuntimeError) -> str:
        frame: Dict[str, Any] = {"frame_index": 0, "name": "<top-level>"}
        entry = self.interpreter.logger.last
        location = error.location or (entry.source_location if entry else None)
        if location:
            frame["source_location"] = {
                "file": location.file,
                "line": location.line,
                "statement": location.statement,
            }
        if entry:
            frame["state_id"] = entry.state_id
            frame["step_index"] = entry.step_index
            if entry.env_snapshot is not None:
                frame["env_snapshot"] = entry.env_snapshot
            frame["rewrite_record"] = entry.rewrite_record
        data = {
            "error": {
                "type": error.__class__.__name__,
                "message": error.message,
                "rewrite_rule": error.rewrite_rule,
                "step_index": error.step_index,
            },
            "frames": [frame],
        }
        return json.dumps(data, indent=2)
