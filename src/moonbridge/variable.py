"""
References to locations in a session's global namespace.

A location is a path of keys starting at the global table: "config.window.width"
is the key path ["config", "window", "width"]. LuaVariable reads, writes and
calls whatever is stored there.
"""

from typing import Any, List, Sequence, Union

from .values import LuaValue, lua_value


def split_path(path: Union[str, LuaValue, Sequence[Any]]) -> List[LuaValue]:
    """
    Turn a dotted path (or a sequence of keys) into a list of LuaValue keys.

    Use a sequence for keys that are not strings or contain dots.
    """
    if isinstance(path, str):
        keys: List[LuaValue] = [LuaValue.string(part) for part in path.split(".")]
    elif isinstance(path, LuaValue):
        keys = [path]
    else:
        keys = [lua_value(key) for key in path]
    if not keys:
        raise ValueError("a variable path needs at least one key")
    return keys


class LuaVariable:
    """
    A location in the global namespace of a LuaSession.

    Indexing a variable extends its path without touching the VM; the VM is
    only consulted by `value`, `assign` and calls.

    Usage:
        width = session["config"]["window"]["width"].value()
        session["config"]["title"].assign("hello")
        results = session["math"]["max"](1, 5, 3)
    """

    def __init__(self, session: Any, keys: Sequence[LuaValue]):
        self._session = session
        self._keys = list(keys)

    @property
    def keys(self) -> List[LuaValue]:
        return list(self._keys)

    def __getitem__(self, key: Any) -> "LuaVariable":
        return LuaVariable(self._session, self._keys + [lua_value(key)])

    def raw(self) -> Any:
        """The raw VM value stored at this location."""
        return self._session.resolve(self._keys)

    def value(self) -> LuaValue:
        """The decoded value; a missing final key reads as Nil."""
        return self._session.marshaler.to_value(self.raw())

    def assign(self, value: Any) -> None:
        parent = self._session.resolve_parent(self._keys)
        marshaler = self._session.marshaler
        parent[marshaler.from_value(self._keys[-1])] = marshaler.from_value(value)

    def __call__(self, *args: Any) -> List[LuaValue]:
        """Call the function stored here; returns all its results."""
        return self._session.call(self.raw(), *args)

    def __repr__(self) -> str:
        return f"LuaVariable({'.'.join(str(key) for key in self._keys)})"
