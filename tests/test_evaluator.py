import pytest

from environment import Environment
from evaluator import Cursor, ExpressionEvaluator, evaluate_expression, get_precedence
from values import (
    NIL,
    NON_NUMBER_WARNING,
    TYPE_BOOL,
    TYPE_FLT,
    TYPE_INT,
    TYPE_TBL,
    ArlCapacityError,
    boolean,
    floating,
    integer,
    render,
    string,
    stringify,
    table,
)


def _eval(text, env=None):
    warnings = []
    value = evaluate_expression(text, env, warn=warnings.append)
    return value, warnings


def test_precedence_levels():
    assert get_precedence("*") == get_precedence("/") == get_precedence("%") == 2
    assert get_precedence("+") == get_precedence("-") == 1
    assert get_precedence(")") == 0


def test_multiplication_binds_tighter_than_addition():
    assert _eval("1 + 2 * 3")[0] == integer(7)
    assert _eval("2 * 3 + 1")[0] == integer(7)
    assert _eval("(1 + 2) * 3")[0] == integer(9)


def test_subtraction_is_left_associative():
    assert _eval("10 - 4 - 3")[0] == integer(3)
    assert _eval("100 / 10 / 5")[0] == floating(2.0)


def test_number_literals():
    assert _eval("42")[0] == integer(42)
    value = _eval("2.5")[0]
    assert value.type == TYPE_FLT and stringify(value) == "2.5"
    assert _eval("-3 + 1")[0] == integer(-2)
    assert _eval("2 * -3")[0] == integer(-6)
    assert _eval("4-1")[0] == integer(3)


def test_division_of_integers_is_float():
    value = _eval("7 / 2")[0]
    assert value.type == TYPE_FLT
    assert stringify(value) == "3.5"


def test_string_literals_are_verbatim():
    assert _eval('"hello world"')[0] == string("hello world")
    assert _eval('"a\\nb"')[0] == string("a\\nb")
    assert _eval('"unterminated')[0] == string("unterminated")


def test_concatenation():
    assert _eval('"a" .. "b"')[0] == string("ab")
    assert _eval('"n=" .. 5')[0] == string("n=5")
    assert _eval('1.5 .. "x" .. true')[0] == string("1.5xtrue")
    assert _eval("1..2")[0] == string("12")


def test_concatenation_binds_tighter_than_arithmetic_on_the_right():
    value, warnings = _eval('1 + 2 .. "x"')
    assert value == NIL
    assert warnings == [NON_NUMBER_WARNING]


def test_concatenation_takes_reduced_left_side():
    assert _eval('1 + 2 .. "x"', None)[0] == NIL
    assert _eval('(1 + 2) .. "x"')[0] == string("3x")


def test_literal_names_and_identifiers():
    env = Environment()
    env.set("count", integer(3))
    env.set("my_name2", string("arl"))
    assert _eval("true")[0] == boolean(True)
    assert _eval("false")[0] == boolean(False)
    assert _eval("nil")[0] == NIL
    assert _eval("count * 2", env)[0] == integer(6)
    assert _eval("my_name2", env)[0] == string("arl")


def test_unknown_variable_is_nil_without_warning():
    value, warnings = _eval("missing")
    assert value == NIL
    assert warnings == []


def test_lookup_shares_stored_value():
    env = Environment()
    stored = table([string("x")])
    env.set("t", stored)
    assert _eval("t", env)[0] is stored


def test_table_literals():
    value = _eval('{1, "two", 3.5, {4}}')[0]
    assert value.type == TYPE_TBL
    assert render(value) == "{1, two, 3.5, [table]}"
    assert _eval("{}")[0] == table([])
    assert _eval("{ 1 + 1 , 2 * 2 }")[0] == table([integer(2), integer(4)])
    assert _eval("{1, 2,}")[0] == table([integer(1), integer(2)])


def test_table_limit_raises():
    evaluator = ExpressionEvaluator(Environment(), max_table_items=2)
    assert evaluator.evaluate("{1, 2}") == table([integer(1), integer(2)])
    with pytest.raises(ArlCapacityError):
        evaluator.evaluate("{1, 2, 3}")


def test_large_tables_are_not_truncated():
    text = "{" + ", ".join(str(i) for i in range(100)) + "}"
    assert len(_eval(text)[0].value) == 100


def test_comparisons_produce_booleans():
    assert _eval("1 < 2")[0] == boolean(True)
    assert _eval("1 + 1 == 2")[0] == boolean(True)
    assert _eval("3 >= 4")[0] == boolean(False)
    assert _eval('"abc" != "abd"')[0] == boolean(True)
    assert _eval('"1" == 1')[0] == boolean(False)
    assert _eval("(2 > 1)")[0].type == TYPE_BOOL
    assert _eval("{1 < 2}")[0] == table([boolean(True)])


def test_type_mismatch_arithmetic_warns():
    value, warnings = _eval('"a" + 1')
    assert value == NIL
    assert warnings == [NON_NUMBER_WARNING]


def test_unparseable_input_degrades_to_nil():
    assert _eval("")[0] == NIL
    assert _eval("   ")[0] == NIL
    assert _eval("@oops")[0] == NIL
    assert _eval("5 @ 6")[0] == integer(5)


def test_cursor_reads_without_running_past_end():
    cursor = Cursor("a..b")
    assert cursor.peek() == "a"
    cursor.advance()
    assert cursor.at_concat()
    cursor.advance(10)
    assert cursor.eof
    assert cursor.peek() == ""
    assert Cursor("<= 1").comparison_operator() == "<="
    assert Cursor("= 1").comparison_operator() is None
    assert Cursor("!=x").comparison_operator() == "!="
    assert Cursor("> 2").comparison_operator() == ">"


def test_operands_are_released_after_use():
    env = Environment()
    env.set("name", string("x"))
    evaluator = ExpressionEvaluator(env)
    assert evaluator.evaluate('"a" .. name .. "b"') == string("axb")
    # "a", "ax" and "b" are spent; the variable's string is not.
    assert env.released_allocations == 3
    assert env.get("name") == string("x")
