"""
LuaSession: one embedded Lua VM and the host-side view of it.

A session owns a lupa.LuaRuntime and everything published into it. It runs
chunks with a numeric status (see LuaStatus), decodes results into LuaValues,
gives access to the global namespace and delegates function, class and object
exports to moonbridge.binding.

Usage:
    with LuaSession() as session:
        session.register_function("twice", lambda params: params[0].as_number() * 2)
        assert session.do_string("return twice(21)") == LuaValue.number(42)
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
import logging
import weakref

from lupa import lua54

from . import binding as _binding
from .config import SessionConfig
from .errors import LuaError, LuaStatus, TypeMismatchError, error_from_status
from .stack import StackMarshaler, raw_type_name
from .values import LuaValue, Nil, lua_value
from .variable import LuaVariable, split_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Sequence[Any]]

# Lua-side support for the boundary. Host dispatchers answer (true, ...) or
# (false, message); settle() turns the latter into a Lua error raised at
# level 0 so the message reaches the script unchanged.
_HELPERS_SOURCE = """
local error, load, pcall, rawget, setmetatable, collectgarbage =
      error, load, pcall, rawget, setmetatable, collectgarbage

local helpers = { closed = false }

local function settle(ok, ...)
  if not ok then
    error((...), 0)
  end
  return ...
end

function helpers.trampoline(dispatch)
  return function(...)
    return settle(dispatch(...))
  end
end

-- Finalizers still run while the state is torn down; by then the host
-- side may be gone.
function helpers.finalizer(dispatch)
  return function(...)
    if helpers.closed then
      return
    end
    return settle(dispatch(...))
  end
end

function helpers.load(source, chunk_name)
  return load(source, chunk_name, "t")
end

helpers.pcall = pcall
helpers.rawget = rawget
helpers.setmetatable = setmetatable

function helpers.collect()
  collectgarbage("collect")
  collectgarbage("collect")
end

return helpers
"""

_UTF8_BOM = b"\xef\xbb\xbf"


def _deny_attribute_access(obj: Any, attr_name: Any, is_setting: bool) -> Any:
    """lupa attribute filter: scripts never reach Python attributes."""
    if isinstance(attr_name, bytes):
        attr_name = attr_name.decode("utf-8", "replace")
    raise AttributeError(f"access to Python attribute '{attr_name}' is not allowed")


def _mark_closed(helpers: Any) -> None:
    helpers[b"closed"] = True


def _runtime_options(config: SessionConfig) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        # Strings cross as bytes; StackMarshaler decodes them with config.encoding
        "encoding": None,
        "unpack_returned_tuples": True,
        "register_eval": config.expose_python,
        "register_builtins": config.expose_python,
    }
    if not config.expose_python:
        options["attribute_filter"] = _deny_attribute_access
    if config.max_memory is not None:
        options["max_memory"] = config.max_memory
    return options


def _strip_file_prefix(source: bytes) -> bytes:
    """Drop a UTF-8 BOM and a leading '#' line, keeping line numbers intact."""
    if source.startswith(_UTF8_BOM):
        source = source[len(_UTF8_BOM):]
    if source.startswith(b"#"):
        newline = source.find(b"\n")
        source = b"" if newline < 0 else source[newline:]
    return source


class LuaSession:
    """
    One Lua VM.

    Args:
        config: Session options; defaults to SessionConfig()

    Sessions are context managers. `close()` (or leaving the `with` block)
    detaches the host from the VM: finalizers of instances still alive no
    longer call back into Python and further use raises LuaError.
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self.config = config or SessionConfig()
        self._runtime = lua54.LuaRuntime(**_runtime_options(self.config))
        self.marshaler = StackMarshaler(self._runtime, max_depth=self.config.max_table_depth,
                                        encoding=self.config.encoding)
        self._helpers = self._runtime.execute(_HELPERS_SOURCE.encode("ascii"))
        self._trampoline = self._helpers[b"trampoline"]
        self._finalizer_wrapper = self._helpers[b"finalizer"]
        self._load = self._helpers[b"load"]
        self._pcall = self._helpers[b"pcall"]
        self._rawget = self._helpers[b"rawget"]
        self._setmetatable = self._helpers[b"setmetatable"]
        self._collect = self._helpers[b"collect"]
        self._classes: Dict[str, Any] = {}
        self._closed = False
        self._detach = weakref.finalize(self, _mark_closed, self._helpers)
        self._apply_config()
        logger.debug("Opened Lua session")

    def _apply_config(self) -> None:
        if self.config.package_path:
            package = self._runtime.globals()[b"package"]
            extra = ";".join(
                f"{directory}/?.lua;{directory}/?/init.lua"
                for directory in self.config.package_path
            )
            package[b"path"] = package[b"path"] + b";" + self.marshaler.encode_string(extra)
        for script in self.config.preload:
            self.do_file(script)

    # --- Lifetime ---

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Detach from the VM. Safe to call more than once."""
        if self._closed:
            return
        self._detach()
        self._closed = True
        self._classes.clear()
        logger.debug("Closed Lua session")

    def __enter__(self) -> "LuaSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise LuaError("The Lua session has been closed.")

    @property
    def runtime(self) -> Any:
        """The underlying lupa.LuaRuntime."""
        self._check_open()
        return self._runtime

    # --- Boundary primitives used by moonbridge.binding ---

    def trampoline(self, dispatch: Callable[..., Tuple[Any, ...]]) -> Any:
        """A VM function raising a Lua error when `dispatch` reports failure."""
        self._check_open()
        return self._trampoline(dispatch)

    def finalizer(self, dispatch: Callable[..., Tuple[Any, ...]]) -> Any:
        """Like `trampoline`, but a no-op once the session is closed."""
        self._check_open()
        return self._finalizer_wrapper(dispatch)

    def rawget(self, table: Any, key: Any) -> Any:
        return self._rawget(table, key)

    def set_metatable(self, table: Any, metatable: Any) -> Any:
        return self._setmetatable(table, metatable)

    def remember_class(self, name: str, class_table: Any) -> None:
        self._classes[name] = class_table

    def class_table(self, name: str) -> Any:
        """The class table published under `name` in this session."""
        self._check_open()
        try:
            return self._classes[name]
        except KeyError:
            raise LuaError(f"Class '{name}' has not been registered in this session.") from None

    # --- Global namespace ---

    def globals(self) -> Any:
        """The raw global table."""
        return self.runtime.globals()

    def resolve(self, keys: Sequence[LuaValue]) -> Any:
        """
        Follow `keys` from the global table and return the raw value found.

        Every key but the last must lead to a table; a missing final key
        gives None.
        """
        current = self.globals()
        for key in keys:
            if lua54.lua_type(current) != "table":
                raise TypeMismatchError("table", raw_type_name(current))
            current = current[self.marshaler.from_value(key)]
        return current

    def resolve_parent(self, keys: Sequence[LuaValue]) -> Any:
        """The raw table that holds the last key of `keys`."""
        parent = self.resolve(keys[:-1])
        if lua54.lua_type(parent) != "table":
            raise TypeMismatchError("table", raw_type_name(parent))
        return parent

    def variable(self, path: PathLike) -> LuaVariable:
        return LuaVariable(self, split_path(path))

    def __getitem__(self, key: Any) -> LuaVariable:
        return LuaVariable(self, [lua_value(key)])

    def get(self, path: PathLike) -> LuaValue:
        """Decoded value at a dotted path (or key sequence)."""
        return self.variable(path).value()

    def set(self, path: PathLike, value: Any) -> None:
        """Store `value` at a dotted path (or key sequence)."""
        self.variable(path).assign(value)

    # --- Calls and chunks ---

    def protected_call(self, function: Any, *args: Any) -> Tuple[LuaStatus, Tuple[Any, ...]]:
        """
        Call a raw VM function in protected mode.

        Returns:
            (LuaStatus.OK, raw results) or (error status, (error object,))
        """
        self._check_open()
        try:
            result = self._pcall(function, *args)
        except lua54.LuaMemoryError as exc:
            return LuaStatus.ERRMEM, (str(exc),)
        except lua54.LuaError as exc:
            return LuaStatus.ERRRUN, (str(exc),)
        if not isinstance(result, tuple):
            result = (result,)
        if result[0]:
            return LuaStatus.OK, result[1:]
        return LuaStatus.ERRRUN, result[1:2]

    def _failure(self, status: LuaStatus, diagnostic: Any) -> LuaError:
        return error_from_status(status, diagnostic, self.config.encoding)

    def call(self, function: Any, *args: Any) -> List[LuaValue]:
        """Call a raw VM function with LuaValue (or plain) arguments."""
        raw_args = [self.marshaler.from_value(arg) for arg in args]
        status, results = self.protected_call(function, *raw_args)
        if status != LuaStatus.OK:
            raise self._failure(status, results[0] if results else None)
        return [self.marshaler.to_value(raw) for raw in results]

    def load_string(self, source: Union[str, bytes], chunk_name: Optional[str] = None) -> Any:
        """
        Compile a chunk without running it.

        Returns:
            The raw VM function of the chunk
        """
        self._check_open()
        if isinstance(source, str):
            source = self.marshaler.encode_string(source)
        if chunk_name is not None:
            chunk_name = self.marshaler.encode_string(chunk_name)
        status, results = self.protected_call(self._load, source, chunk_name)
        if status != LuaStatus.OK:
            raise self._failure(status, results[0] if results else None)
        function = results[0] if results else None
        if function is None:
            raise self._failure(LuaStatus.ERRSYNTAX, results[1] if len(results) > 1 else None)
        return function

    def load_file(self, path: Union[str, Path]) -> Any:
        """Compile a chunk read from `path`."""
        path = Path(path)
        try:
            source = path.read_bytes()
        except OSError as exc:
            raise error_from_status(
                LuaStatus.ERRFILE, f"cannot open {path}: {exc.strerror or exc}"
            ) from exc
        return self.load_string(_strip_file_prefix(source), chunk_name=f"@{path}")

    def do_string_mult_ret(self, source: Union[str, bytes],
                           chunk_name: Optional[str] = None) -> List[LuaValue]:
        """Run a chunk; returns all of its results."""
        return self.call(self.load_string(source, chunk_name))

    def do_string(self, source: Union[str, bytes], chunk_name: Optional[str] = None) -> LuaValue:
        """Run a chunk; returns its first result, or Nil."""
        results = self.do_string_mult_ret(source, chunk_name)
        return results[0] if results else Nil

    def do_file_mult_ret(self, path: Union[str, Path]) -> List[LuaValue]:
        return self.call(self.load_file(path))

    def do_file(self, path: Union[str, Path]) -> LuaValue:
        results = self.do_file_mult_ret(path)
        return results[0] if results else Nil

    # --- Exports ---

    def wrap_function(self, func: _binding.HostFunction, name: Optional[str] = None) -> Any:
        return _binding.wrap_function(self, func, name=name)

    def register_function(self, path: PathLike, func: _binding.HostFunction) -> Any:
        return _binding.register_function(self, path, func)

    def register_class(self, binding: _binding.ClassBinding) -> Any:
        return binding.publish(self)

    def register_object(self, path: PathLike, binding: Union[_binding.ClassBinding, str],
                        obj: Any) -> _binding.BoundObjectHandle:
        return _binding.register_object(self, path, binding, obj)

    def collect_garbage(self) -> None:
        """Run a full collection cycle; unreachable instances get finalized."""
        self._check_open()
        self._collect()
