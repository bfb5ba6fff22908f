"""
Exceptions raised by the value model, the marshaler and the session wrapper.

Hierarchy:
- LuaError: root of every failure raised by moonbridge
  - LuaValueError: value-shape errors (TypeMismatchError, NoSuchKeyError)
  - LuaTypeError: a VM value the value model cannot represent
  - LuaRunTimeError, LuaSyntaxError, LuaFileError, LuaMemoryError,
    LuaErrorInErrorHandlingError: failures reported by the VM itself

VM-origin errors are built from the VM's numeric status code and the
diagnostic it left behind; see `error_from_status`.
"""

from enum import IntEnum
from typing import Any, Optional


NO_ADDITIONAL_INFORMATION = "Sorry, there is no additional information about this error."
UNKNOWN_FAILURE = "Unknown exception caught by wrapper."


class LuaStatus(IntEnum):
    """Status codes returned by the VM's load and protected-call primitives."""
    OK = 0
    YIELD = 1
    ERRRUN = 2
    ERRSYNTAX = 3
    ERRMEM = 4
    ERRERR = 5
    ERRFILE = 6


class LuaError(Exception):
    """Base exception for moonbridge errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class LuaValueError(LuaError):
    """A value was used in a way its shape does not allow."""
    pass


class TypeMismatchError(LuaValueError):
    """An accessor expected one kind of value and found another."""

    def __init__(self, expected_type: str, found_type: str):
        self.expected_type = expected_type
        self.found_type = found_type
        super().__init__(
            f"Type mismatch: '{expected_type}' was expected "
            f"but '{found_type}' was found."
        )


class NoSuchKeyError(LuaValueError, KeyError):
    """
    A table was read with a key it does not contain.

    Also a KeyError, so mapping helpers such as `get` and `in` work.
    """

    def __init__(self, key: Any):
        self.key = key
        super().__init__("Trying to access a table with an invalid key.")


class LuaTypeError(LuaError):
    """A VM value has no representation in the value model."""
    pass


class LuaRunTimeError(LuaError):
    """A script raised an error while running (ERRRUN)."""
    pass


class LuaSyntaxError(LuaError):
    """A chunk failed to compile (ERRSYNTAX)."""
    pass


class LuaFileError(LuaError):
    """A chunk could not be read from disk (ERRFILE)."""
    pass


class LuaMemoryError(LuaError):
    """The VM failed to allocate memory (ERRMEM)."""
    pass


class LuaErrorInErrorHandlingError(LuaError):
    """The VM failed while running an error handler (ERRERR)."""
    pass


_STATUS_ERRORS = {
    LuaStatus.ERRRUN: LuaRunTimeError,
    LuaStatus.ERRSYNTAX: LuaSyntaxError,
    LuaStatus.ERRMEM: LuaMemoryError,
    LuaStatus.ERRERR: LuaErrorInErrorHandlingError,
    LuaStatus.ERRFILE: LuaFileError,
}


def diagnostic_message(diagnostic: Any, encoding: str = "UTF-8") -> str:
    """
    Turn whatever the VM left as an error object into a message.

    Strings and numbers are used as-is (the VM treats numbers as strings here);
    byte strings are decoded with `encoding`, keeping undecodable bytes as
    surrogates. A Python exception raised inside the VM reads as its message.
    Anything else falls back to NO_ADDITIONAL_INFORMATION.
    """
    if isinstance(diagnostic, bytes):
        return diagnostic.decode(encoding, "surrogateescape")
    if isinstance(diagnostic, str):
        return diagnostic
    if isinstance(diagnostic, (int, float)) and not isinstance(diagnostic, bool):
        return str(diagnostic)
    if isinstance(diagnostic, BaseException):
        return str(diagnostic) or NO_ADDITIONAL_INFORMATION
    return NO_ADDITIONAL_INFORMATION


def error_from_status(status: int, diagnostic: Any = None, encoding: str = "UTF-8") -> LuaError:
    """
    Build the typed failure for a non-zero VM status.

    Args:
        status: The VM status code (see LuaStatus)
        diagnostic: The error object the VM reported, if any
        encoding: Text encoding of byte-string diagnostics

    Returns:
        The matching LuaError subclass instance; a plain LuaError when the
        status code is not one the VM defines.
    """
    error_class = _STATUS_ERRORS.get(status)
    if error_class is None:
        return LuaError(f"Unknown Lua return code passed to error handling: {status}.")
    return error_class(diagnostic_message(diagnostic, encoding))


def raise_on_status(status: int, diagnostic: Any = None) -> None:
    """Raise the typed failure for `status`; do nothing for LuaStatus.OK."""
    if status != LuaStatus.OK:
        raise error_from_status(status, diagnostic)


def unsupported_type(type_name: str, where: Optional[str] = None) -> LuaTypeError:
    """A VM value of kind `type_name` cannot be converted."""
    if where:
        return LuaTypeError(f"Unsupported type '{type_name}' found in {where}.")
    return LuaTypeError(f"Unsupported type '{type_name}' found.")
