"""
Tests for the dynamic value model (LuaValue, TableValue, ForeignPayload).
"""

import copy
import itertools
import math

import pytest

from moonbridge import (
    LuaKind, LuaValue, TableValue, ForeignPayload, Nil, compare,
    lua_value, python_value,
    nil_val, bool_val, number_val, string_val, table_val, userdata_val,
    TypeMismatchError, NoSuchKeyError, LuaTypeError,
)


def sample_values():
    """One or more values of every kind, in a scrambled order."""
    return [
        string_val("b"),
        number_val(3),
        table_val({1: "x"}),
        Nil,
        bool_val(True),
        number_val(-1.5),
        userdata_val(b"\x01\x02"),
        string_val("a"),
        table_val(),
        bool_val(False),
        number_val(float("nan")),
        userdata_val(b"\x00"),
        table_val({1: "x", 2: "y"}),
        string_val(""),
        number_val(float("inf")),
    ]


# --- Construction and access ---

class TestConstruction:
    """Test the constructors and typed accessors."""

    def test_kinds(self):
        """Each constructor produces its kind."""
        assert nil_val().kind is LuaKind.NIL
        assert bool_val(True).kind is LuaKind.BOOLEAN
        assert number_val(1).kind is LuaKind.NUMBER
        assert string_val("s").kind is LuaKind.STRING
        assert table_val().kind is LuaKind.TABLE
        assert userdata_val(b"").kind is LuaKind.USERDATA

    def test_nil_is_singleton(self):
        """LuaValue.nil() and the default constructor are Nil."""
        assert LuaValue.nil() is Nil
        assert LuaValue() == Nil
        assert Nil.is_nil()
        assert Nil.kind_name == "nil"

    def test_numbers_are_doubles(self):
        """Integers are stored as floats."""
        v = number_val(7)
        assert isinstance(v.as_number(), float)
        assert v == number_val(7.0)

    def test_bool_is_not_a_number(self):
        """Booleans cannot be passed where numbers are expected."""
        with pytest.raises(LuaTypeError):
            LuaValue.number(True)

    def test_bytes_become_strings(self):
        """Byte strings are decoded; undecodable bytes are kept."""
        assert string_val(b"abc").as_string() == "abc"
        raw = b"\xff\xfe"
        s = string_val(raw).as_string()
        assert s.encode("utf-8", "surrogateescape") == raw

    def test_accessor_type_mismatch(self):
        """Accessors fail with the expected and found kind names."""
        with pytest.raises(TypeMismatchError) as info:
            string_val("x").as_number()
        assert info.value.expected_type == "number"
        assert info.value.found_type == "string"
        assert str(info.value) == "Type mismatch: 'number' was expected but 'string' was found."

    def test_every_accessor_checks_kind(self):
        """Every accessor rejects every other kind."""
        accessors = {
            LuaKind.NUMBER: LuaValue.as_number,
            LuaKind.STRING: LuaValue.as_string,
            LuaKind.BOOLEAN: LuaValue.as_boolean,
            LuaKind.TABLE: LuaValue.as_table,
            LuaKind.USERDATA: LuaValue.as_userdata,
        }
        for value in sample_values():
            for kind, accessor in accessors.items():
                if value.kind is kind:
                    accessor(value)
                else:
                    with pytest.raises(TypeMismatchError):
                        accessor(value)

    def test_truthiness(self):
        """Only nil and false are false."""
        assert Nil.is_truthy() is False
        assert bool_val(False).is_truthy() is False
        assert bool_val(True).is_truthy() is True
        assert number_val(0).is_truthy() is True
        assert string_val("").is_truthy() is True
        assert table_val().is_truthy() is True

    def test_lua_value_wraps_python_data(self):
        """Plain Python data is wrapped recursively."""
        v = lua_value({"name": "box", "size": [1, 2]})
        assert v["name"] == string_val("box")
        assert v["size"][1] == number_val(1)
        assert v["size"][2] == number_val(2)
        assert lua_value(None) is Nil

    def test_lua_value_rejects_unknown_types(self):
        """Arbitrary objects have no Lua representation."""
        with pytest.raises(LuaTypeError):
            lua_value(object())

    def test_python_value(self):
        """Unwrapping gives plain Python data."""
        assert python_value(lua_value({"a": [True, None, "s"]})) == {"a": {1.0: True, 3.0: "s"}}
        assert python_value(Nil) is None

    def test_str_matches_lua_tostring(self):
        """Numbers print without a trailing .0."""
        assert str(number_val(2)) == "2"
        assert str(number_val(0.5)) == "0.5"
        assert str(Nil) == "nil"
        assert str(bool_val(False)) == "false"


# --- Tables ---

class TestTables:
    """Test indexed access on tables."""

    def test_write_then_read(self):
        """A written key reads back its value."""
        t = table_val()
        t["k"] = 10
        assert t["k"] == number_val(10)
        t["k"] = "replaced"
        assert t["k"] == string_val("replaced")

    def test_missing_key(self):
        """Reading a key never written fails."""
        t = table_val({1: "one"})
        with pytest.raises(NoSuchKeyError) as info:
            t[2]
        assert info.value.key == number_val(2)
        assert str(info.value) == "Trying to access a table with an invalid key."

    def test_missing_key_is_a_key_error(self):
        """Mapping helpers treat a missing key as absent."""
        t = TableValue({"a": 1})
        assert t.get("b") is None
        assert "b" not in t
        assert "a" in t

    def test_nil_assignment_removes_key(self):
        """Assigning Nil removes the entry, as in Lua."""
        t = table_val({"a": 1, "b": 2})
        t["a"] = Nil
        assert len(t.as_table()) == 1
        with pytest.raises(NoSuchKeyError):
            t["a"]

    def test_index_on_non_table(self):
        """Indexing a non-table value is a type mismatch."""
        with pytest.raises(TypeMismatchError):
            number_val(1)["k"]
        with pytest.raises(TypeMismatchError):
            string_val("s")["k"] = 1

    def test_non_string_keys(self):
        """Booleans, numbers and tables can be keys."""
        inner = table_val({1: 2})
        t = table_val()
        t[True] = "yes"
        t[1.5] = "one and a half"
        t[inner] = "table key"
        assert t[True] == string_val("yes")
        assert t[1.5] == string_val("one and a half")
        assert t[table_val({1: 2})] == string_val("table key")

    def test_table_keys_are_snapshots(self):
        """Mutating a table after using it as a key leaves the stored key alone."""
        key = table_val({1: "a"})
        t = table_val()
        t[key] = "v"
        key[2] = "b"
        assert t[table_val({1: "a"})] == string_val("v")
        with pytest.raises(NoSuchKeyError):
            t[key]

    def test_int_and_float_keys_match(self):
        """Integral floats and ints name the same key."""
        t = table_val()
        t[1] = "x"
        assert t[1.0] == string_val("x")

    def test_copy_is_deep(self):
        """Copies do not share nested tables."""
        original = table_val({"inner": {"x": 1}})
        duplicate = original.copy()
        duplicate["inner"]["x"] = 2
        assert original["inner"]["x"] == number_val(1)
        assert duplicate != original

    def test_equality_ignores_insertion_order(self):
        """Tables with the same entries are equal."""
        a = TableValue()
        a["x"] = 1
        a["y"] = 2
        b = TableValue()
        b["y"] = 2
        b["x"] = 1
        assert a == b
        assert LuaValue.table(a) == LuaValue.table(b)
        assert hash(LuaValue.table(a)) == hash(LuaValue.table(b))


# --- Ordering ---

class TestOrdering:
    """Test the total order over values."""

    def test_kind_rank(self):
        """Kinds sort alphabetically by name."""
        ordered = [bool_val(True), Nil, number_val(-100), string_val(""),
                   table_val(), userdata_val(b"")]
        assert sorted(reversed(ordered)) == ordered
        for lhs, rhs in zip(ordered, ordered[1:]):
            assert lhs < rhs
            assert rhs > lhs

    def test_exactly_one_relation_holds(self):
        """For every pair exactly one of <, > and neither holds."""
        values = sample_values()
        for a, b in itertools.product(values, repeat=2):
            lt, gt = a < b, a > b
            eq = not lt and not gt
            assert [lt, gt, eq].count(True) == 1
            assert (a == b) == eq
            assert (a <= b) == (lt or eq)
            assert (a >= b) == (gt or eq)

    def test_transitive(self):
        """a < b and b < c imply a < c."""
        values = sample_values()
        for a, b, c in itertools.product(values, repeat=3):
            if a < b and b < c:
                assert a < c

    def test_sorting_is_stable_under_permutation(self):
        """Any permutation sorts to the same sequence."""
        values = sample_values()
        expected = sorted(values)
        assert sorted(list(reversed(values))) == expected

    def test_within_kind(self):
        """Within a kind the natural order applies."""
        assert bool_val(False) < bool_val(True)
        assert number_val(1) < number_val(2)
        assert number_val(float("inf")) < number_val(float("nan"))
        assert string_val("abc") < string_val("abd")
        assert table_val({1: 1}) < table_val({1: 1, 2: 2})
        assert table_val({1: "a"}) < table_val({1: "b"})
        assert userdata_val(b"\xff") < userdata_val(b"\x00\x00")
        assert userdata_val(b"\x00\x01") < userdata_val(b"\x00\x02")

    def test_strings_order_by_bytes(self):
        """Strings order by their bytes, as in the VM."""
        assert string_val("\ue000") < string_val(b"\xff")
        assert string_val("z") < string_val("\u00e9")
        raw = [b"\xff", b"\xee\x80\x80", b"a", b"", b"\xc3\xa9", b"\x00"]
        assert [string_val(b) for b in sorted(raw)] == sorted(string_val(b) for b in raw)

    def test_nan_equals_itself(self):
        """NaN is usable as a value and a key."""
        nan = number_val(float("nan"))
        assert nan == number_val(math.nan)
        assert compare(nan, nan) == 0
        t = table_val()
        t[nan] = 1
        assert t[number_val(float("nan"))] == number_val(1)

    def test_compare_returns_sign(self):
        """compare answers -1, 0 or 1."""
        assert compare(number_val(1), number_val(5)) == -1
        assert compare(number_val(5), number_val(1)) == 1
        assert compare(string_val("x"), string_val("x")) == 0

    def test_not_comparable_with_python_objects(self):
        """Ordering against non-LuaValues is a TypeError."""
        with pytest.raises(TypeError):
            number_val(1) < 2
        assert (number_val(1) == 1) is False


# --- Foreign payloads ---

class TestForeignPayload:
    """Test opaque host-owned buffers."""

    def test_zero_filled(self):
        """New payloads are zero-filled."""
        payload = ForeignPayload(4)
        assert payload.size == 4
        assert payload.tobytes() == b"\x00" * 4

    def test_copy_is_independent(self):
        """Copies do not share storage."""
        payload = ForeignPayload.from_bytes(b"abc")
        for duplicate in (payload.copy(), copy.copy(payload), copy.deepcopy(payload)):
            duplicate.data[0] = ord("z")
            assert payload.tobytes() == b"abc"
            assert duplicate.tobytes() == b"zbc"

    def test_assign(self):
        """Assignment copies the other buffer, size included."""
        target = ForeignPayload(1)
        source = ForeignPayload.from_bytes(b"hello")
        target.assign(source)
        assert target == source
        source.data[0] = ord("j")
        assert target.tobytes() == b"hello"

    def test_order(self):
        """Size first, then bytes."""
        assert ForeignPayload.from_bytes(b"\xff") < ForeignPayload.from_bytes(b"\x00\x00")
        assert ForeignPayload.from_bytes(b"a") < ForeignPayload.from_bytes(b"b")
        assert ForeignPayload.from_bytes(b"a") == ForeignPayload.from_bytes(b"a")

    def test_userdata_value_copies_payload(self):
        """A userdata value does not alias the payload it was built from."""
        payload = ForeignPayload.from_bytes(b"xy")
        value = LuaValue.userdata(payload)
        payload.data[0] = 0
        assert value.as_userdata().tobytes() == b"xy"
