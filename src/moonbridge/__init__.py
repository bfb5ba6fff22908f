# -*- coding: utf-8 -*-
"""
moonbridge: a bridge between Python and an embedded Lua VM.

Values produced by scripts are read as LuaValues; Python functions, classes
and objects are exported to scripts through moonbridge.binding.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("moonbridge")
except PackageNotFoundError:  # pragma: no cover - handled when package not installed
    __version__ = "unknown"

from .errors import (
    LuaStatus, LuaError, LuaValueError, TypeMismatchError, NoSuchKeyError,
    LuaTypeError, LuaRunTimeError, LuaSyntaxError, LuaFileError,
    LuaMemoryError, LuaErrorInErrorHandlingError,
    NO_ADDITIONAL_INFORMATION, UNKNOWN_FAILURE,
    error_from_status, raise_on_status,
)
from .values import (
    LuaKind, LuaValue, TableValue, ForeignPayload, Nil, compare,
    lua_value, python_value,
    nil_val, bool_val, number_val, string_val, table_val, userdata_val,
)
from .stack import Frame, StackMarshaler
from .binding import (
    Ownership, BoundObjectHandle, ClassBinding, ClassBuilder,
    begin_class, boundary, register_function, register_object, wrap_function,
)
from .config import SessionConfig, load_config
from .session import LuaSession
from .variable import LuaVariable

__all__ = [
    '__version__',
    # Errors
    'LuaStatus', 'LuaError', 'LuaValueError', 'TypeMismatchError', 'NoSuchKeyError',
    'LuaTypeError', 'LuaRunTimeError', 'LuaSyntaxError', 'LuaFileError',
    'LuaMemoryError', 'LuaErrorInErrorHandlingError',
    'NO_ADDITIONAL_INFORMATION', 'UNKNOWN_FAILURE',
    'error_from_status', 'raise_on_status',
    # Values
    'LuaKind', 'LuaValue', 'TableValue', 'ForeignPayload', 'Nil', 'compare',
    'lua_value', 'python_value',
    'nil_val', 'bool_val', 'number_val', 'string_val', 'table_val', 'userdata_val',
    # Marshaling
    'Frame', 'StackMarshaler',
    # Binding
    'Ownership', 'BoundObjectHandle', 'ClassBinding', 'ClassBuilder',
    'begin_class', 'boundary', 'register_function', 'register_object', 'wrap_function',
    # Session
    'SessionConfig', 'load_config', 'LuaSession', 'LuaVariable',
]
