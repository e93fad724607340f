import pytest

from environment import Environment
from values import NIL, ArlCapacityError, integer, string, table


def test_get_missing_name_is_nil():
    env = Environment()
    assert env.get("missing") == NIL
    assert env.get_optional("missing") is None
    assert not env.has("missing")


def test_reassignment_releases_previous_value_once():
    released = []
    env = Environment(on_release=released.append)
    first = string("first")
    second = string("second")
    env.set("name", first)
    env.set("name", second)
    assert released == [first]
    assert released[0] is first
    assert env.get("name") is second


def test_clear_releases_every_stored_value():
    released = []
    env = Environment(on_release=released.append)
    env.set("a", table([string("x"), string("y")]))
    env.set("b", integer(1))
    env.clear()
    assert [value.type for value in released] == ["STR", "STR", "TBL"]
    assert env.released_allocations == 3
    assert len(env) == 0


def test_variable_limit_raises_for_new_names_only():
    env = Environment(max_variables=2)
    env.set("a", integer(1))
    env.set("b", integer(2))
    env.set("a", integer(3))
    with pytest.raises(ArlCapacityError):
        env.set("c", integer(4))
    assert env.names() == ["a", "b"]
    assert env.get("a") == integer(3)


def test_snapshot_renders_values():
    env = Environment()
    env.set("t", table([integer(1), string("z")]))
    env.set("s", string("q" * 100))
    snap = env.snapshot()
    assert snap["t"] == "TBL:{1, z}"
    assert snap["s"].startswith("STR:qqq")
    assert snap["s"].endswith("...")


def test_value_shared_by_two_names_is_released_once():
    released = []
    env = Environment(on_release=released.append)
    shared = string("a")
    env.set("x", shared)
    env.set("y", env.get("x"))
    assert env.holders(shared) == 2
    env.set("x", integer(1))
    assert released == []
    env.clear()
    assert released == [shared]
    assert env.released_allocations == 1


def test_table_element_alias_is_released_once():
    env = Environment()
    element = string("a")
    env.set("s", element)
    env.set("t", table([env.get("s")]))
    env.set("s", integer(0))
    assert env.released_allocations == 0
    env.clear()
    assert env.released_allocations == 2


def test_self_assignment_keeps_value_alive():
    env = Environment()
    value = string("keep")
    env.set("x", value)
    env.set("x", env.get("x"))
    assert env.released_allocations == 0
    assert env.holders(value) == 1


def test_discard_releases_only_unheld_temporaries():
    released = []
    env = Environment(on_release=released.append)
    stored = string("stored")
    env.set("s", stored)
    env.discard(stored)
    assert released == []
    temporary = table([stored, string("temp")])
    env.discard(temporary)
    assert [value.value for value in released if value.type == "STR"] == ["temp"]
    assert released[-1] is temporary
    assert env.holders(stored) == 1
    env.discard(integer(3))
    assert env.released_allocations == 2
