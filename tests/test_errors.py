"""
Tests for the error taxonomy.
"""

import pytest

from moonbridge import (
    LuaStatus, LuaError, LuaValueError, TypeMismatchError, NoSuchKeyError,
    LuaTypeError, LuaRunTimeError, LuaSyntaxError, LuaFileError,
    LuaMemoryError, LuaErrorInErrorHandlingError,
    NO_ADDITIONAL_INFORMATION, error_from_status, raise_on_status,
)
from moonbridge.errors import diagnostic_message, unsupported_type


class TestHierarchy:
    """Test the exception class hierarchy."""

    def test_everything_is_a_lua_error(self):
        """All failures share the LuaError root."""
        for cls in (LuaValueError, LuaTypeError, LuaRunTimeError, LuaSyntaxError,
                    LuaFileError, LuaMemoryError, LuaErrorInErrorHandlingError):
            assert issubclass(cls, LuaError)

    def test_value_errors(self):
        """Shape errors derive from LuaValueError."""
        assert issubclass(TypeMismatchError, LuaValueError)
        assert issubclass(NoSuchKeyError, LuaValueError)
        assert issubclass(NoSuchKeyError, KeyError)

    def test_message_attribute(self):
        """The message is kept verbatim."""
        error = LuaRunTimeError("boom")
        assert error.message == "boom"
        assert str(error) == "boom"

    def test_no_such_key_message_is_not_quoted(self):
        """KeyError's repr quoting does not leak into the message."""
        error = NoSuchKeyError("k")
        assert str(error) == "Trying to access a table with an invalid key."
        assert error.key == "k"


class TestStatusMapping:
    """Test building errors from VM status codes."""

    @pytest.mark.parametrize("status, cls", [
        (LuaStatus.ERRRUN, LuaRunTimeError),
        (LuaStatus.ERRSYNTAX, LuaSyntaxError),
        (LuaStatus.ERRMEM, LuaMemoryError),
        (LuaStatus.ERRERR, LuaErrorInErrorHandlingError),
        (LuaStatus.ERRFILE, LuaFileError),
    ])
    def test_status_classes(self, status, cls):
        """Every failure status maps to its own class."""
        error = error_from_status(status, "details")
        assert type(error) is cls
        assert error.message == "details"

    def test_status_codes(self):
        """Codes follow the VM's numbering."""
        assert LuaStatus.OK == 0
        assert LuaStatus.ERRRUN == 2
        assert LuaStatus.ERRFILE == 6

    def test_missing_diagnostic(self):
        """A missing or non-string diagnostic uses the fallback message."""
        assert error_from_status(LuaStatus.ERRRUN).message == NO_ADDITIONAL_INFORMATION
        assert error_from_status(LuaStatus.ERRRUN, {"a": 1}).message == NO_ADDITIONAL_INFORMATION

    def test_numeric_and_bytes_diagnostics(self):
        """Numbers and byte strings are turned into text."""
        assert diagnostic_message(42) == "42"
        assert diagnostic_message(b"bad") == "bad"
        assert diagnostic_message(True) == NO_ADDITIONAL_INFORMATION

    def test_undecodable_bytes_diagnostic(self):
        """Invalid UTF-8 in a diagnostic is escaped, never rejected."""
        assert diagnostic_message(b"\xff") == "\udcff"
        assert error_from_status(LuaStatus.ERRRUN, b"bad \xfe").message == "bad \udcfe"

    def test_exception_diagnostic(self):
        """A Python exception used as error object gives its message."""
        assert diagnostic_message(RuntimeError("host failure")) == "host failure"
        assert diagnostic_message(RuntimeError()) == NO_ADDITIONAL_INFORMATION

    def test_unknown_status(self):
        """An unknown code gives a plain LuaError naming it."""
        error = error_from_status(99, "ignored")
        assert type(error) is LuaError
        assert "99" in error.message

    def test_raise_on_status(self):
        """OK is silent, anything else raises."""
        raise_on_status(LuaStatus.OK)
        with pytest.raises(LuaSyntaxError, match="unexpected symbol"):
            raise_on_status(LuaStatus.ERRSYNTAX, "unexpected symbol")

    def test_unsupported_type(self):
        """Unsupported kinds name the kind and where they were found."""
        error = unsupported_type("function", "a conversion from the VM")
        assert isinstance(error, LuaTypeError)
        assert error.message == "Unsupported type 'function' found in a conversion from the VM."
