from __future__ import annotations
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from values import NIL, OWNING_TYPES, TYPE_TBL, ArlCapacityError, Value, release, render


@dataclass
class Environment:
    """Flat name -> Value store shared by every statement of a script.

    Values are immutable (strings are ``str``, table payloads are tuples), so
    ``get`` hands out the stored object itself and one string or table may be
    reachable from several names or table slots at once. Each such allocation
    carries a holder count and is released exactly once, when its last holder
    goes away: a name is reassigned, a temporary is discarded, or the
    environment is cleared. ``on_release`` sees every released allocation,
    children before the table that owned them; ``released_allocations``
    counts them.
    """

    max_variables: Optional[int] = None
    on_release: Optional[Callable[[Value], None]] = None
    values: Dict[str, Value] = field(default_factory=dict)
    released_allocations: int = 0
    # id(value) -> live holders. _held pins each counted object so its id
    # cannot be reused while the count exists.
    _holders: Dict[int, int] = field(default_factory=dict, repr=False)
    _held: Dict[int, Value] = field(default_factory=dict, repr=False)

    def set(self, name: str, value: Value) -> None:
        if name in self.values:
            # Hold first so `var x = x` never frees the value being stored.
            self._hold(value)
            self._release(self.values[name])
            self.values[name] = value
            return
        if self.max_variables is not None and len(self.values) >= self.max_variables:
            raise ArlCapacityError(
                f"Cannot define '{name}': variable limit of {self.max_variables} reached",
                rewrite_rule="VAR",
            )
        self._hold(value)
        self.values[name] = value

    def get(self, name: str) -> Value:
        return self.values.get(name, NIL)

    def get_optional(self, name: str) -> Optional[Value]:
        return self.values.get(name)

    def has(self, name: str) -> bool:
        return name in self.values

    def names(self) -> List[str]:
        return list(self.values.keys())

    def holders(self, value: Value) -> int:
        return self._holders.get(id(value), 0)

    def discard(self, value: Value) -> None:
        """Drop a temporary; anything no variable still reaches is released."""
        self._hold(value)
        self._release(value)

    def snapshot(self) -> Dict[str, str]:
        def _render(val: Value) -> str:
            rendered = render(val)
            if len(rendered) > 80:
                rendered = rendered[:77] + "..."
            return f"{val.type}:{rendered}"

        return {k: _render(v) for k, v in self.values.items()}

    def clear(self) -> None:
        for value in self.values.values():
            self._release(value)
        self.values.clear()
        self._holders.clear()
        self._held.clear()

    def _hold(self, value: Value) -> None:
        if value.type not in OWNING_TYPES:
            return
        key = id(value)
        count = self._holders.get(key, 0)
        self._holders[key] = count + 1
        if count == 0:
            self._held[key] = value
            if value.type == TYPE_TBL:
                for item in value.value:
                    self._hold(item)

    def _last_reference(self, value: Value) -> bool:
        key = id(value)
        count = self._holders.get(key, 0) - 1
        if count > 0:
            self._holders[key] = count
            return False
        self._holders.pop(key, None)
        self._held.pop(key, None)
        return True

    def _release(self, value: Value) -> None:
        self.released_allocations += release(value, self.on_release, self._last_reference)

    def __len__(self) -> int:
        return len(self.values)
