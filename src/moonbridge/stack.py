"""
Marshaling between a call frame's positional slots and LuaValues.

When the VM calls into Python, the arguments of that call arrive as one
positional frame (slot 1 is the first argument); whatever is left in the frame
when the host side is done becomes the call's return values. Frame models
those slots and StackMarshaler converts single slots, whole argument lists and
return lists to and from LuaValues.

Raw slot values are whatever lupa hands over: None, bool, int, float or bytes
for primitives, lupa table/function/thread wrappers for VM objects, and the
Python object itself for Python objects stored in the VM. The runtime is
opened without an encoding, so VM strings stay byte strings until the
marshaler decodes them.
"""

from typing import Any, Iterable, List, Tuple
import math

from lupa import lua54

from .errors import LuaTypeError, unsupported_type
from .values import ForeignPayload, LuaKind, LuaValue, Nil, TableValue, lua_value

# Tables nested deeper than this are rejected; a self-referential table
# would otherwise recurse forever.
DEFAULT_MAX_DEPTH = 200

# Integral numbers up to this magnitude reach the VM as integers
MAX_EXACT_INTEGER = 2 ** 53


def raw_type_name(raw: Any) -> str:
    """The VM's name for the kind of a raw slot value."""
    if raw is None:
        return "nil"
    if isinstance(raw, bool):
        return "boolean"
    if isinstance(raw, (int, float)):
        return "number"
    if isinstance(raw, (str, bytes)):
        return "string"
    kind = lua54.lua_type(raw)
    if kind is not None:
        return kind
    # A Python object living in the VM is a full userdata there
    return "userdata"


class Frame:
    """
    The positional slots of one call across the VM boundary.

    Indexes follow the VM's convention: 1 is the bottom slot, -1 the top one.
    """

    __slots__ = ("_slots",)

    def __init__(self, slots: Iterable[Any] = ()):
        self._slots: List[Any] = list(slots)

    @property
    def top(self) -> int:
        """Number of slots in the frame."""
        return len(self._slots)

    def _offset(self, index: int) -> int:
        top = len(self._slots)
        if 0 < index <= top:
            return index - 1
        if 0 < -index <= top:
            return top + index
        raise LuaTypeError(f"Invalid stack index {index} in a frame of {top} slots.")

    def get(self, index: int) -> Any:
        return self._slots[self._offset(index)]

    def push(self, raw: Any) -> None:
        self._slots.append(raw)

    def pop(self, count: int = 1) -> None:
        if count < 0 or count > len(self._slots):
            raise LuaTypeError(f"Cannot pop {count} slots from a frame of {len(self._slots)} slots.")
        del self._slots[len(self._slots) - count:]

    def clear(self) -> None:
        self._slots.clear()

    def slots(self) -> Tuple[Any, ...]:
        """All slots, bottom to top."""
        return tuple(self._slots)

    def __repr__(self) -> str:
        return f"Frame({self._slots!r})"


def as_value_list(results: Any) -> List[LuaValue]:
    """
    Normalize what a host function returned into a list of LuaValues.

    None means no return values, a list or tuple holds one entry per return
    value, and anything else is a single return value.
    """
    if results is None:
        return []
    if isinstance(results, (list, tuple)):
        return [lua_value(item) for item in results]
    return [lua_value(results)]


class StackMarshaler:
    """
    Converts between raw VM values and LuaValues for one VM instance.

    Args:
        runtime: The lupa.LuaRuntime whose values are converted
        max_depth: Deepest table nesting accepted by `to_value`
        encoding: Text encoding of VM strings; bytes that do not decode are
            kept as surrogates so they reach the VM unchanged
    """

    def __init__(self, runtime: Any, max_depth: int = DEFAULT_MAX_DEPTH,
                 encoding: str = "UTF-8"):
        self.runtime = runtime
        self.max_depth = max_depth
        self.encoding = encoding

    def encode_string(self, text: str) -> bytes:
        return text.encode(self.encoding, "surrogateescape")

    def decode_string(self, raw: bytes) -> str:
        return bytes(raw).decode(self.encoding, "surrogateescape")

    # --- Single values ---

    def to_value(self, raw: Any, _depth: int = 0) -> LuaValue:
        """Decode one raw VM value. Tables are decoded recursively."""
        if raw is None:
            return Nil
        if isinstance(raw, bool):
            return LuaValue.boolean(raw)
        if isinstance(raw, (int, float)):
            return LuaValue.number(raw)
        if isinstance(raw, bytes):
            return LuaValue.string(self.decode_string(raw))
        if isinstance(raw, str):
            return LuaValue.string(raw)
        if isinstance(raw, ForeignPayload):
            return LuaValue.userdata(raw)
        if isinstance(raw, BaseException):
            # A host failure caught by pcall reads as its message
            return LuaValue.string(str(raw))
        if lua54.lua_type(raw) == "table":
            return self._table_to_value(raw, _depth)
        raise unsupported_type(raw_type_name(raw), "a conversion from the VM")

    def _table_to_value(self, raw: Any, depth: int) -> LuaValue:
        if depth >= self.max_depth:
            raise LuaTypeError(
                f"Table nested deeper than {self.max_depth} levels "
                f"(is it recursive?)."
            )
        table = TableValue()
        for key, item in raw.items():
            table[self.to_value(key, depth + 1)] = self.to_value(item, depth + 1)
        return LuaValue.table(table)

    def from_value(self, value: Any) -> Any:
        """Encode one LuaValue (or plain Python data) as a raw VM value."""
        value = lua_value(value)
        kind = value.kind
        if kind is LuaKind.NIL:
            return None
        if kind is LuaKind.BOOLEAN:
            return value.as_boolean()
        if kind is LuaKind.NUMBER:
            number = value.as_number()
            if number.is_integer() and abs(number) <= MAX_EXACT_INTEGER:
                return int(number)
            return number
        if kind is LuaKind.STRING:
            return self.encode_string(value.as_string())
        if kind is LuaKind.TABLE:
            return self._table_from_value(value.as_table())
        return value.as_userdata().copy()

    def _table_from_value(self, table: TableValue) -> Any:
        raw = self.runtime.table()
        for key, item in table.items():
            if key.is_nil():
                raise LuaTypeError("Table index is nil.")
            if key.kind is LuaKind.NUMBER and math.isnan(key.as_number()):
                raise LuaTypeError("Table index is NaN.")
            raw[self.from_value(key)] = self.from_value(item)
        return raw

    # --- Frame protocol ---

    def decode(self, frame: Frame, index: int) -> LuaValue:
        """Decode the slot at `index` without removing it."""
        return self.to_value(frame.get(index))

    def encode(self, frame: Frame, value: Any) -> None:
        """Push `value` as exactly one new slot."""
        frame.push(self.from_value(value))

    def decode_arguments(self, frame: Frame, first: int = 1) -> List[LuaValue]:
        """
        Decode slots `first`..top in order, then clear the whole frame.

        The frame is left empty so return values can be pushed onto it.
        """
        params = [self.decode(frame, i) for i in range(first, frame.top + 1)]
        frame.clear()
        return params

    def encode_returns(self, frame: Frame, results: Any) -> int:
        """
        Push every return value in order.

        Returns:
            The number of slots pushed
        """
        values = as_value_list(results)
        for value in values:
            self.encode(frame, value)
        return len(values)
