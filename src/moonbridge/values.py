"""
Dynamic values exchanged between Python and the Lua VM.

A LuaValue is a closed tagged union over six kinds: nil, boolean, number,
string, table and userdata (an opaque host-owned byte buffer, see
ForeignPayload). Tables are represented by TableValue, a mapping from
LuaValue to LuaValue.

LuaValues are totally ordered: by kind first (alphabetical order of the kind
names), then by a kind-specific comparison. The order exists so that a
LuaValue can be a table key; every comparison operator is derived from
`compare` so `<` and `>` are always exact inverses.
"""

from collections.abc import Mapping, MutableMapping
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union
import math
import numbers

from .errors import NoSuchKeyError, TypeMismatchError, unsupported_type


class LuaKind(Enum):
    """The six kinds a LuaValue can hold. The value is the kind name."""
    NIL = "nil"
    BOOLEAN = "boolean"
    NUMBER = "number"
    STRING = "string"
    TABLE = "table"
    USERDATA = "userdata"

    @property
    def rank(self) -> int:
        """Position of this kind in the canonical type order."""
        return _KIND_RANK[self]


_KIND_RANK = {kind: i for i, kind in enumerate(sorted(LuaKind, key=lambda k: k.value))}


def _sign(lhs: Any, rhs: Any) -> int:
    return (lhs > rhs) - (lhs < rhs)


# =============================================================================
# Foreign payloads
# =============================================================================

class ForeignPayload:
    """
    A fixed-size byte buffer owned by the host.

    Copying (copy(), copy.copy, copy.deepcopy) always allocates a new buffer
    with the same contents. Payloads are ordered by size first, then by their
    raw bytes.
    """

    __slots__ = ("_data",)

    def __init__(self, size: int = 0):
        if size < 0:
            raise ValueError(f"payload size must be non-negative, got {size}")
        self._data = bytearray(size)

    @classmethod
    def from_bytes(cls, data: Union[bytes, bytearray, memoryview]) -> "ForeignPayload":
        """Create a payload holding a copy of `data`."""
        payload = cls()
        payload._data = bytearray(data)
        return payload

    @property
    def size(self) -> int:
        return len(self._data)

    @property
    def data(self) -> memoryview:
        """Writable view of the payload bytes."""
        return memoryview(self._data)

    def tobytes(self) -> bytes:
        return bytes(self._data)

    def copy(self) -> "ForeignPayload":
        return ForeignPayload.from_bytes(self._data)

    def __copy__(self) -> "ForeignPayload":
        return self.copy()

    def __deepcopy__(self, memo: Dict[int, Any]) -> "ForeignPayload":
        return self.copy()

    def assign(self, other: "ForeignPayload") -> "ForeignPayload":
        """Replace this payload's buffer with a copy of `other`'s bytes."""
        self._data = bytearray(other._data)
        return self

    def compare(self, other: "ForeignPayload") -> int:
        if len(self._data) != len(other._data):
            return _sign(len(self._data), len(other._data))
        return _sign(bytes(self._data), bytes(other._data))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ForeignPayload):
            return NotImplemented
        return self.compare(other) == 0

    def __lt__(self, other: "ForeignPayload") -> bool:
        if not isinstance(other, ForeignPayload):
            return NotImplemented
        return self.compare(other) < 0

    def __gt__(self, other: "ForeignPayload") -> bool:
        if not isinstance(other, ForeignPayload):
            return NotImplemented
        return self.compare(other) > 0

    def __le__(self, other: "ForeignPayload") -> bool:
        if not isinstance(other, ForeignPayload):
            return NotImplemented
        return self.compare(other) <= 0

    def __ge__(self, other: "ForeignPayload") -> bool:
        if not isinstance(other, ForeignPayload):
            return NotImplemented
        return self.compare(other) >= 0

    def __hash__(self) -> int:
        return hash((len(self._data), bytes(self._data)))

    def __repr__(self) -> str:
        return f"ForeignPayload({bytes(self._data)!r})"


# =============================================================================
# Values
# =============================================================================

class LuaValue:
    """
    A single Lua value.

    Build values with the classmethod constructors (or `lua_value` for plain
    Python data); `kind` tells which variant is active and the `as_*`
    accessors raise TypeMismatchError when asked for a different one.
    """

    __slots__ = ("_kind", "_data")

    def __init__(self, kind: LuaKind = LuaKind.NIL, data: Any = None):
        self._kind = kind
        self._data = data

    # --- Constructors ---

    @classmethod
    def nil(cls) -> "LuaValue":
        return Nil

    @classmethod
    def boolean(cls, b: bool) -> "LuaValue":
        return cls(LuaKind.BOOLEAN, bool(b))

    @classmethod
    def number(cls, x: numbers.Real) -> "LuaValue":
        if isinstance(x, bool) or not isinstance(x, numbers.Real):
            raise unsupported_type(type(x).__name__, "a number constructor")
        return cls(LuaKind.NUMBER, float(x))

    @classmethod
    def string(cls, s: Union[str, bytes]) -> "LuaValue":
        # Lua strings are byte strings; undecodable bytes survive the round trip
        if isinstance(s, (bytes, bytearray)):
            s = bytes(s).decode("utf-8", "surrogateescape")
        elif not isinstance(s, str):
            raise unsupported_type(type(s).__name__, "a string constructor")
        return cls(LuaKind.STRING, s)

    @classmethod
    def table(cls, entries: Optional[Union[Mapping, Iterable[Tuple[Any, Any]]]] = None) -> "LuaValue":
        if isinstance(entries, TableValue):
            return cls(LuaKind.TABLE, entries)
        return cls(LuaKind.TABLE, TableValue(entries))

    @classmethod
    def userdata(cls, payload: ForeignPayload) -> "LuaValue":
        if not isinstance(payload, ForeignPayload):
            raise unsupported_type(type(payload).__name__, "a userdata constructor")
        return cls(LuaKind.USERDATA, payload.copy())

    # --- Introspection ---

    @property
    def kind(self) -> LuaKind:
        return self._kind

    @property
    def kind_name(self) -> str:
        return self._kind.value

    def is_nil(self) -> bool:
        return self._kind is LuaKind.NIL

    def is_truthy(self) -> bool:
        """Lua truthiness: only nil and false are false."""
        if self._kind is LuaKind.NIL:
            return False
        if self._kind is LuaKind.BOOLEAN:
            return self._data
        return True

    # --- Typed accessors ---

    def _expect(self, kind: LuaKind) -> Any:
        if self._kind is not kind:
            raise TypeMismatchError(kind.value, self._kind.value)
        return self._data

    def as_number(self) -> float:
        return self._expect(LuaKind.NUMBER)

    def as_string(self) -> str:
        return self._expect(LuaKind.STRING)

    def as_boolean(self) -> bool:
        return self._expect(LuaKind.BOOLEAN)

    def as_table(self) -> "TableValue":
        return self._expect(LuaKind.TABLE)

    def as_userdata(self) -> ForeignPayload:
        return self._expect(LuaKind.USERDATA)

    # --- Table access ---

    def __getitem__(self, key: Any) -> "LuaValue":
        return self.as_table()[key]

    def __setitem__(self, key: Any, value: Any) -> None:
        self.as_table()[key] = value

    def __delitem__(self, key: Any) -> None:
        del self.as_table()[key]

    def __contains__(self, key: Any) -> bool:
        return key in self.as_table()

    def __iter__(self) -> Iterator["LuaValue"]:
        return iter(self.as_table())

    def copy(self) -> "LuaValue":
        """Deep copy; tables and payloads get independent storage."""
        if self._kind is LuaKind.TABLE:
            return LuaValue(LuaKind.TABLE, self._data.copy())
        if self._kind is LuaKind.USERDATA:
            return LuaValue(LuaKind.USERDATA, self._data.copy())
        return self

    # --- Ordering ---

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) == 0

    def __ne__(self, other: object) -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) != 0

    def __lt__(self, other: "LuaValue") -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) < 0

    def __gt__(self, other: "LuaValue") -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) > 0

    def __le__(self, other: "LuaValue") -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) <= 0

    def __ge__(self, other: "LuaValue") -> bool:
        if not isinstance(other, LuaValue):
            return NotImplemented
        return compare(self, other) >= 0

    def __hash__(self) -> int:
        kind = self._kind
        if kind is LuaKind.NUMBER and math.isnan(self._data):
            return hash((kind.value, "nan"))
        if kind is LuaKind.TABLE:
            return hash((kind.value, self._data.content_hash()))
        return hash((kind.value, self._data))

    def __repr__(self) -> str:
        if self._kind is LuaKind.NIL:
            return "Nil"
        return f"LuaValue.{self._kind.name.lower()}({self._data!r})"

    def __str__(self) -> str:
        """Render the value the way Lua's tostring would (tables by content)."""
        kind = self._kind
        if kind is LuaKind.NIL:
            return "nil"
        if kind is LuaKind.BOOLEAN:
            return "true" if self._data else "false"
        if kind is LuaKind.NUMBER:
            return "%.14g" % self._data
        if kind is LuaKind.STRING:
            return self._data
        if kind is LuaKind.TABLE:
            return "{" + ", ".join(f"[{k!r}] = {v!r}" for k, v in self._data.sorted_items()) + "}"
        return f"userdata({self._data.size} bytes)"


Nil = LuaValue(LuaKind.NIL, None)


def _compare_numbers(lhs: float, rhs: float) -> int:
    # NaN sorts after every number and equals itself, keeping the order total
    lhs_nan, rhs_nan = math.isnan(lhs), math.isnan(rhs)
    if lhs_nan or rhs_nan:
        return _sign(lhs_nan, rhs_nan)
    return _sign(lhs, rhs)


def _string_bytes(s: str) -> bytes:
    # Escaped bytes (U+DC80..U+DCFF) turn back into the raw bytes they stand for
    try:
        return s.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        return s.encode("utf-8", "surrogatepass")


def _compare_strings(lhs: str, rhs: str) -> int:
    # Byte order as in the VM; code points only split byte-identical spellings
    return _sign(_string_bytes(lhs), _string_bytes(rhs)) or _sign(lhs, rhs)


def compare(lhs: LuaValue, rhs: LuaValue) -> int:
    """
    Three-way comparison implementing the total order over LuaValues.

    Returns -1, 0 or 1.
    """
    if lhs._kind is not rhs._kind:
        return _sign(lhs._kind.rank, rhs._kind.rank)

    kind = lhs._kind
    if kind is LuaKind.NIL:
        return 0
    if kind is LuaKind.BOOLEAN:
        return _sign(lhs._data, rhs._data)
    if kind is LuaKind.STRING:
        return _compare_strings(lhs._data, rhs._data)
    if kind is LuaKind.NUMBER:
        return _compare_numbers(lhs._data, rhs._data)
    if kind is LuaKind.TABLE:
        return lhs._data.compare(rhs._data)
    return lhs._data.compare(rhs._data)


# =============================================================================
# Tables
# =============================================================================

class TableValue(MutableMapping):
    """
    A Lua table: a mapping from LuaValue keys to LuaValue values.

    Keys and values that are not LuaValues are wrapped with `lua_value`.
    Reading a missing key raises NoSuchKeyError (a KeyError, so `get` and
    `in` behave as for any mapping). Assigning Nil removes the key, as it
    does in the VM. Table-kind keys are copied on insert so a stored key
    cannot change under the mapping.
    """

    __slots__ = ("_entries",)

    def __init__(self, entries: Optional[Union[Mapping, Iterable[Tuple[Any, Any]]]] = None):
        self._entries: Dict[LuaValue, LuaValue] = {}
        if entries is None:
            return
        pairs = entries.items() if isinstance(entries, Mapping) else entries
        for key, value in pairs:
            self[key] = value

    def __getitem__(self, key: Any) -> LuaValue:
        key = lua_value(key)
        try:
            return self._entries[key]
        except KeyError:
            raise NoSuchKeyError(key) from None

    def __setitem__(self, key: Any, value: Any) -> None:
        key = lua_value(key)
        value = lua_value(value)
        if value.is_nil():
            self._entries.pop(key, None)
            return
        if key._kind is LuaKind.TABLE or key._kind is LuaKind.USERDATA:
            key = key.copy()
        self._entries[key] = value

    def __delitem__(self, key: Any) -> None:
        key = lua_value(key)
        try:
            del self._entries[key]
        except KeyError:
            raise NoSuchKeyError(key) from None

    def __iter__(self) -> Iterator[LuaValue]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def sorted_items(self) -> List[Tuple[LuaValue, LuaValue]]:
        """Entries in key order."""
        return sorted(self._entries.items(), key=lambda item: item[0])

    def copy(self) -> "TableValue":
        result = TableValue()
        for key, value in self._entries.items():
            result._entries[key.copy()] = value.copy()
        return result

    def compare(self, other: "TableValue") -> int:
        """Entry count first, then key by key (and value by value) in key order."""
        if len(self) != len(other):
            return _sign(len(self), len(other))
        for (lhs_key, lhs_value), (rhs_key, rhs_value) in zip(self.sorted_items(), other.sorted_items()):
            result = compare(lhs_key, rhs_key)
            if result:
                return result
            result = compare(lhs_value, rhs_value)
            if result:
                return result
        return 0

    def content_hash(self) -> int:
        return hash(frozenset(self._entries.items()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TableValue):
            return NotImplemented
        return self.compare(other) == 0

    __hash__ = None

    def __repr__(self) -> str:
        body = ", ".join(f"{k!r}: {v!r}" for k, v in self.sorted_items())
        return f"TableValue({{{body}}})"


# =============================================================================
# Conversion helpers
# =============================================================================

def lua_value(obj: Any) -> LuaValue:
    """
    Wrap plain Python data as a LuaValue.

    Lists and tuples become sequences with 1-based number keys; mappings
    become tables; LuaValues are returned unchanged.
    """
    if isinstance(obj, LuaValue):
        return obj
    if obj is None:
        return Nil
    if isinstance(obj, bool):
        return LuaValue.boolean(obj)
    if isinstance(obj, numbers.Real):
        return LuaValue.number(obj)
    if isinstance(obj, (str, bytes, bytearray)):
        return LuaValue.string(obj)
    if isinstance(obj, ForeignPayload):
        return LuaValue.userdata(obj)
    if isinstance(obj, TableValue):
        return LuaValue.table(obj)
    if isinstance(obj, Mapping):
        return LuaValue.table(obj)
    if isinstance(obj, (list, tuple)):
        return LuaValue.table((i, item) for i, item in enumerate(obj, start=1))
    raise unsupported_type(type(obj).__name__, "a conversion to a Lua value")


def python_value(value: LuaValue) -> Any:
    """
    Unwrap a LuaValue into plain Python data.

    Tables become dicts; table-kind keys stay LuaValues since dicts are not
    hashable.
    """
    kind = value.kind
    if kind is LuaKind.NIL:
        return None
    if kind is LuaKind.TABLE:
        result = {}
        for key, item in value.as_table().items():
            py_key = key if key.kind is LuaKind.TABLE else python_value(key)
            result[py_key] = python_value(item)
        return result
    if kind is LuaKind.USERDATA:
        return value.as_userdata().copy()
    return value._data


# Convenience constructors

def nil_val() -> LuaValue:
    """The nil value."""
    return Nil


def bool_val(b: bool) -> LuaValue:
    """Create a boolean value."""
    return LuaValue.boolean(b)


def number_val(x: numbers.Real) -> LuaValue:
    """Create a number value."""
    return LuaValue.number(x)


def string_val(s: Union[str, bytes]) -> LuaValue:
    """Create a string value."""
    return LuaValue.string(s)


def table_val(entries: Optional[Union[Mapping, Iterable[Tuple[Any, Any]]]] = None) -> LuaValue:
    """Create a table value from a mapping or (key, value) pairs."""
    return LuaValue.table(entries)


def userdata_val(payload: Union[ForeignPayload, bytes]) -> LuaValue:
    """Create a userdata value holding a copy of `payload`."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        payload = ForeignPayload.from_bytes(payload)
    return LuaValue.userdata(payload)
