"""Single-pass expression evaluation over raw characters.

There is no token stream and no syntax tree: the parser walks the expression
text with a :class:`Cursor` and evaluates every literal, lookup and operator
application as soon as it has been read.
"""

from __future__ import annotations
import string as _ascii
from typing import Callable, List, Optional

from environment import Environment
from values import (
    ARITHMETIC_OPERATORS,
    COMPARISON_OPERATORS,
    NIL,
    ArlCapacityError,
    Value,
    arithmetic,
    boolean,
    compare,
    concat,
    floating,
    integer,
    string,
    table,
)


DIGITS = _ascii.digits
IDENTIFIER_START = _ascii.ascii_letters
IDENTIFIER_PART = _ascii.ascii_letters + _ascii.digits + "_"
WHITESPACE = " \t\r\n"

# Right operands of '..' are parsed above every arithmetic level.
CONCAT_PRECEDENCE = 3

LITERAL_NAMES = {
    "true": boolean(True),
    "false": boolean(False),
    "nil": NIL,
}


def get_precedence(op: str) -> int:
    if op in ("*", "/", "%"):
        return 2
    if op in ("+", "-"):
        return 1
    return 0


class Cursor:
    """Read position over one immutable expression string."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.index = 0

    @property
    def eof(self) -> bool:
        return self.index >= len(self.text)

    def peek(self, offset: int = 0) -> str:
        at = self.index + offset
        if at < len(self.text):
            return self.text[at]
        return ""

    def advance(self, count: int = 1) -> None:
        self.index = min(self.index + count, len(self.text))

    def skip_whitespace(self) -> None:
        text = self.text
        n = len(text)
        while self.index < n and text[self.index] in WHITESPACE:
            self.index += 1

    def comparison_operator(self) -> Optional[str]:
        for op in COMPARISON_OPERATORS:
            if self.text.startswith(op, self.index):
                return op
        return None

    def at_concat(self) -> bool:
        return self.peek() == "." and self.peek(1) == "."


class ExpressionEvaluator:
    def __init__(
        self,
        env: Environment,
        *,
        warn: Optional[Callable[[str], None]] = None,
        max_table_items: Optional[int] = None,
    ) -> None:
        self.env = env
        self.warn = warn
        self.max_table_items = max_table_items

    def evaluate(self, text: str) -> Value:
        cursor = Cursor(text)
        return self._parse_expression(cursor, 0)

    def _parse_expression(self, cursor: Cursor, min_precedence: int) -> Value:
        left = self._parse_primary(cursor)
        cursor.skip_whitespace()

        while cursor.peek() != "" and cursor.peek() in ARITHMETIC_OPERATORS:
            op = cursor.peek()
            prec = get_precedence(op)
            if prec < min_precedence:
                break
            cursor.advance()
            cursor.skip_whitespace()
            right = self._parse_expression(cursor, prec + 1)
            result = arithmetic(left, op, right, self.warn)
            self._discard(left, right)
            left = result
            cursor.skip_whitespace()

        while cursor.at_concat():
            cursor.advance(2)
            cursor.skip_whitespace()
            right = self._parse_expression(cursor, CONCAT_PRECEDENCE)
            result = concat(left, right)
            self._discard(left, right)
            left = result
            cursor.skip_whitespace()

        if min_precedence == 0:
            op_text = cursor.comparison_operator()
            while op_text is not None:
                cursor.advance(len(op_text))
                cursor.skip_whitespace()
                right = self._parse_expression(cursor, 1)
                result = boolean(compare(left, right, op_text))
                self._discard(left, right)
                left = result
                cursor.skip_whitespace()
                op_text = cursor.comparison_operator()

        return left

    def _discard(self, *operands: Value) -> None:
        # Operands are consumed by the operator that read them.
        for operand in operands:
            self.env.discard(operand)

    def _parse_primary(self, cursor: Cursor) -> Value:
        cursor.skip_whitespace()
        ch = cursor.peek()
        if ch == "":
            return NIL
        if ch == "(":
            cursor.advance()
            value = self._parse_expression(cursor, 0)
            if cursor.peek() == ")":
                cursor.advance()
            return value
        if ch == '"':
            cursor.advance()
            return self._parse_string(cursor)
        if ch in DIGITS or (ch == "-" and cursor.peek(1) != "" and cursor.peek(1) in DIGITS):
            return self._parse_number(cursor)
        if ch in IDENTIFIER_START:
            name = self._parse_identifier(cursor)
            if name in LITERAL_NAMES:
                return LITERAL_NAMES[name]
            return self.env.get(name)
        if ch == "{":
            return self._parse_table(cursor)
        return NIL

    def _parse_string(self, cursor: Cursor) -> Value:
        chars: List[str] = []
        while not cursor.eof and cursor.peek() != '"':
            chars.append(cursor.peek())
            cursor.advance()
        if cursor.peek() == '"':
            cursor.advance()
        return string("".join(chars))

    def _parse_number(self, cursor: Cursor) -> Value:
        chars: List[str] = []
        seen_dot = False
        while not cursor.eof:
            ch = cursor.peek()
            if ch in DIGITS:
                chars.append(ch)
            elif ch == "-" and not chars:
                chars.append(ch)
            elif ch == "." and not seen_dot and cursor.peek(1) != ".":
                seen_dot = True
                chars.append(ch)
            else:
                break
            cursor.advance()
        text = "".join(chars)
        if seen_dot:
            return floating(float(text))
        return integer(int(text))

    def _parse_identifier(self, cursor: Cursor) -> str:
        chars: List[str] = []
        while not cursor.eof and cursor.peek() in IDENTIFIER_PART:
            chars.append(cursor.peek())
            cursor.advance()
        return "".join(chars)

    def _parse_table(self, cursor: Cursor) -> Value:
        items: List[Value] = []
        cursor.advance()  # '{'
        cursor.skip_whitespace()
        while not cursor.eof and cursor.peek() != "}":
            if self.max_table_items is not None and len(items) >= self.max_table_items:
                raise ArlCapacityError(
                    f"Table literal exceeds {self.max_table_items} items",
                    rewrite_rule="TABLE",
                )
            start = cursor.index
            items.append(self._parse_expression(cursor, 0))
            cursor.skip_whitespace()
            if cursor.peek() == ",":
                cursor.advance()
                cursor.skip_whitespace()
            elif cursor.index == start:
                # Nothing readable left before '}'.
                break
        if cursor.peek() == "}":
            cursor.advance()
        return table(items)


def evaluate_expression(
    text: str,
    env: Optional[Environment] = None,
    *,
    warn: Optional[Callable[[str], None]] = None,
) -> Value:
    evaluator = ExpressionEvaluator(env if env is not None else Environment(), warn=warn)
    return evaluator.evaluate(text)
