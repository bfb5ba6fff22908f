"""
Exporting Python functions, classes and objects to Lua.

Every VM-callable function created here is made of two layers:

- a glue function `glue(frame) -> count` that decodes the call's arguments,
  runs the host code and pushes its return values (see stack.Frame);
- `boundary`, which runs the glue and reports either `(True, *returns)` or
  `(False, message)`. A Lua trampoline turns the false status into a Lua
  error, so a Python exception never travels through the VM.

Classes are described with an explicit builder:

    binding = (begin_class(Counter)
               .add_method("increment")
               .add_method("get")
               .end_class())
    binding.publish(session)

Publishing creates the class table (`new`, `delete`, one entry per method)
under the class name in the session's global namespace. Script code then runs
`local c = Counter.new()` and `c:increment()`.

Instances visible to scripts are VM tables carrying a BoundObjectHandle and
using the class table as metatable. Objects constructed by scripts are owned
by the script side and destroyed exactly once, when `delete` is called or the
collector finalizes them; objects registered by the host are never destroyed
by the VM.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union
import logging
import threading
import weakref

from lupa import lua54

from .errors import LuaError, TypeMismatchError, UNKNOWN_FAILURE
from .stack import Frame, raw_type_name
from .values import LuaValue
from .variable import split_path

logger = logging.getLogger(__name__)

# Instance-table field holding the BoundObjectHandle
HANDLE_KEY = b"__moonbridge_handle"

# Class-table entries that methods cannot use
RESERVED_NAMES = frozenset({"classname", "new", "delete", "__gc", "__index"})

HostFunction = Callable[[List[LuaValue]], Any]
HostMethod = Callable[[Any, List[LuaValue]], Any]
Glue = Callable[[Frame], int]


# =============================================================================
# Ownership
# =============================================================================

class Ownership(Enum):
    """Who is responsible for destroying a bound object."""
    HOST_OWNED = "host-owned"
    SCRIPT_OWNED = "script-owned"
    RECLAIMED = "reclaimed"


class BoundObjectHandle:
    """
    The VM-resident record tying a script-visible instance to a host object.

    Ownership only ever moves from SCRIPT_OWNED to RECLAIMED; `reclaim` makes
    that transition under a lock, so only the first of any number of
    reclamation notifications gets the object.
    """

    __slots__ = ("_obj", "class_name", "_ownership", "_lock")

    def __init__(self, obj: Any, class_name: str, ownership: Ownership):
        self._obj = obj
        self.class_name = class_name
        self._ownership = ownership
        self._lock = threading.Lock()

    @property
    def ownership(self) -> Ownership:
        return self._ownership

    @property
    def owns(self) -> bool:
        """True while the VM side still has to destroy the object."""
        return self._ownership is Ownership.SCRIPT_OWNED

    def target(self) -> Any:
        """The bound object; fails once it has been reclaimed."""
        if self._ownership is Ownership.RECLAIMED:
            raise LuaError(f"Attempt to use a deleted '{self.class_name}' object.")
        return self._obj

    def reclaim(self) -> Tuple[bool, Any]:
        """
        Take the object away from the handle if the VM owns it.

        Returns:
            (True, obj) for the one call that performs the transition,
            (False, None) for host-owned or already reclaimed handles
        """
        with self._lock:
            if self._ownership is not Ownership.SCRIPT_OWNED:
                return False, None
            self._ownership = Ownership.RECLAIMED
            obj, self._obj = self._obj, None
        return True, obj

    def __repr__(self) -> str:
        return f"BoundObjectHandle({self.class_name!r}, {self._ownership.value})"


def handle_of(session: Any, raw: Any) -> Optional[BoundObjectHandle]:
    """The handle stored in a raw instance table, or None for anything else."""
    if lua54.lua_type(raw) != "table":
        return None
    handle = session.rawget(raw, HANDLE_KEY)
    if isinstance(handle, BoundObjectHandle):
        return handle
    return None


def reclaim_handle(handle: BoundObjectHandle, destructor: Optional[Callable[[Any], Any]]) -> bool:
    """
    Destroy the object behind `handle` if the VM owns it. Never raises.

    Returns:
        True if this call destroyed the object
    """
    claimed, obj = handle.reclaim()
    if not claimed:
        return False
    if destructor is not None:
        try:
            destructor(obj)
        except Exception:
            logger.exception("Destructor of a '%s' object failed", handle.class_name)
    logger.debug("Reclaimed a '%s' object", handle.class_name)
    return True


# =============================================================================
# Boundary dispatch
# =============================================================================

def boundary(glue: Glue, name: str, encoding: str = "UTF-8") -> Callable[..., Tuple[Any, ...]]:
    """
    Wrap a glue function as the Python side of a VM-callable function.

    Args:
        glue: Decodes arguments, runs host code, pushes returns, returns count
        name: Used in log records
        encoding: Encoding of the failure message handed to the VM

    Returns:
        A callable taking the raw call arguments and answering
        `(True, *returns)` or `(False, message)`; the message is a byte string
    """
    def dispatch(*slots: Any) -> Tuple[Any, ...]:
        frame = Frame(slots)
        try:
            count = glue(frame)
        except LuaError as exc:
            logger.debug("'%s' failed: %s", name, exc.message)
            return (False, exc.message.encode(encoding, "surrogateescape"))
        except Exception:
            logger.exception("Unexpected failure in '%s'", name)
            return (False, UNKNOWN_FAILURE.encode(encoding))
        returns = frame.slots()
        return (True,) + returns[len(returns) - count:]

    dispatch.__name__ = f"dispatch_{name}"
    return dispatch


def _session_ref(session: Any) -> Callable[[], Any]:
    """Weak reference to a session that fails cleanly once it is gone."""
    ref = weakref.ref(session)

    def resolve() -> Any:
        current = ref()
        if current is None:
            raise LuaError("The Lua session has been closed.")
        return current

    return resolve


def function_glue(session: Any, func: HostFunction) -> Glue:
    """Glue for a free function taking and returning a list of LuaValues."""
    resolve = _session_ref(session)

    def glue(frame: Frame) -> int:
        marshaler = resolve().marshaler
        params = marshaler.decode_arguments(frame)
        return marshaler.encode_returns(frame, func(params))

    return glue


def constructor_glue(session: Any, binding: "ClassBinding") -> Glue:
    """Glue for `Class.new(...)`: builds a script-owned instance."""
    resolve = _session_ref(session)

    def glue(frame: Frame) -> int:
        current = resolve()
        params = current.marshaler.decode_arguments(frame)
        obj = binding.cls(params)
        handle = BoundObjectHandle(obj, binding.name, Ownership.SCRIPT_OWNED)
        frame.push(make_instance(current, current.class_table(binding.name), handle))
        return 1

    return glue


def method_glue(session: Any, binding: "ClassBinding", method: HostMethod) -> Glue:
    """Glue for `obj:method(...)`: slot 1 is the receiver."""
    resolve = _session_ref(session)

    def glue(frame: Frame) -> int:
        current = resolve()
        receiver = frame.get(1) if frame.top else None
        handle = handle_of(current, receiver)
        if handle is None:
            raise TypeMismatchError(binding.name, raw_type_name(receiver))
        if handle.class_name != binding.name:
            raise TypeMismatchError(binding.name, handle.class_name)
        obj = handle.target()
        params = current.marshaler.decode_arguments(frame, first=2)
        return current.marshaler.encode_returns(frame, method(obj, params))

    return glue


def reclaim_glue(session: Any, binding: "ClassBinding") -> Glue:
    """Glue for `delete` and `__gc`. Reclaiming never fails."""
    ref = weakref.ref(session)

    def glue(frame: Frame) -> int:
        current = ref()
        receiver = frame.get(1) if frame.top else None
        frame.clear()
        if current is None:
            return 0
        handle = handle_of(current, receiver)
        if handle is not None:
            reclaim_handle(handle, binding.destructor)
        return 0

    return glue


def make_instance(session: Any, class_table: Any, handle: BoundObjectHandle) -> Any:
    """A fresh instance table holding `handle`, with `class_table` as metatable."""
    instance = session.runtime.table()
    instance[HANDLE_KEY] = handle
    return session.set_metatable(instance, class_table)


# =============================================================================
# Free functions
# =============================================================================

def wrap_function(session: Any, func: HostFunction, name: Optional[str] = None) -> Any:
    """
    Make a VM function out of `func(params) -> results`.

    `params` is the list of decoded arguments; `results` may be None, a single
    value or a list/tuple of return values (plain Python data is wrapped).
    Raising a LuaError reports its message to the calling script.
    """
    name = name or getattr(func, "__name__", "function")
    return session.trampoline(
        boundary(function_glue(session, func), name, session.marshaler.encoding)
    )


def register_function(session: Any, path: Union[str, Sequence[Any]], func: HostFunction) -> Any:
    """Wrap `func` and store it at `path` in the global namespace."""
    keys = split_path(path)
    wrapped = wrap_function(session, func, name=str(keys[-1]))
    parent = session.resolve_parent(keys)
    parent[session.marshaler.from_value(keys[-1])] = wrapped
    logger.debug("Registered function at %s", ".".join(str(k) for k in keys))
    return wrapped


# =============================================================================
# Classes
# =============================================================================

@dataclass(frozen=True, eq=False)
class ClassBinding:
    """
    Everything needed to expose one host class to scripts.

    Built by ClassBuilder.end_class(); publish it into each session that
    should see the class.
    """
    name: str
    cls: Callable[[List[LuaValue]], Any]
    methods: Mapping[str, HostMethod] = field(default_factory=dict)
    destructor: Optional[Callable[[Any], Any]] = None

    def publish(self, session: Any) -> Any:
        """
        Create the class table in `session` and store it under the class name.

        Returns:
            The raw class table
        """
        marshaler = session.marshaler
        encoding = marshaler.encoding
        class_table = session.runtime.table()
        for method_name, method in self.methods.items():
            dispatch = boundary(method_glue(session, self, method),
                                f"{self.name}.{method_name}", encoding)
            class_table[marshaler.encode_string(method_name)] = session.trampoline(dispatch)

        reclaim = session.finalizer(
            boundary(reclaim_glue(session, self), f"{self.name}.delete", encoding)
        )
        class_table[b"classname"] = marshaler.encode_string(self.name)
        class_table[b"new"] = session.trampoline(
            boundary(constructor_glue(session, self), f"{self.name}.new", encoding)
        )
        class_table[b"delete"] = reclaim
        class_table[b"__gc"] = reclaim
        class_table[b"__index"] = class_table

        session.globals()[marshaler.encode_string(self.name)] = class_table
        session.remember_class(self.name, class_table)
        logger.debug("Published class '%s' with %d methods", self.name, len(self.methods))
        return class_table


class ClassBuilder:
    """
    Collects the methods of one exported class.

    The class is constructed from scripts as `cls(params)` where `params` is
    the list of constructor arguments; methods are called as
    `method(obj, params)` and return what a free function returns.
    """

    def __init__(self, cls: Callable[[List[LuaValue]], Any], name: Optional[str] = None,
                 destructor: Optional[Callable[[Any], Any]] = None):
        self.cls = cls
        self.name = name or cls.__name__
        self.destructor = destructor
        self._methods: Dict[str, HostMethod] = {}
        self._ended = False

    def add_method(self, name: str, func: Optional[HostMethod] = None) -> "ClassBuilder":
        """
        Export one method. Without `func`, the class attribute `name` is used.
        """
        if self._ended:
            raise ValueError(f"class '{self.name}' has already been ended")
        if name in RESERVED_NAMES:
            raise ValueError(f"'{name}' is reserved and cannot be used as a method name")
        if name in self._methods:
            raise ValueError(f"method '{name}' is already registered for class '{self.name}'")
        if func is None:
            func = getattr(self.cls, name, None)
            if not callable(func):
                raise ValueError(f"class '{self.name}' has no method '{name}'")
        self._methods[name] = func
        return self

    def end_class(self) -> ClassBinding:
        """Finish the class; the builder cannot be extended afterwards."""
        self._ended = True
        return ClassBinding(
            name=self.name,
            cls=self.cls,
            methods=MappingProxyType(dict(self._methods)),
            destructor=self.destructor,
        )


def begin_class(cls: Callable[[List[LuaValue]], Any], name: Optional[str] = None,
                destructor: Optional[Callable[[Any], Any]] = None) -> ClassBuilder:
    """
    Start describing an exported class.

    Args:
        cls: Called with the constructor argument list to build instances
        name: Global name of the class table (defaults to `cls.__name__`)
        destructor: Called once with a script-owned object when it is deleted
            or collected
    """
    return ClassBuilder(cls, name=name, destructor=destructor)


# =============================================================================
# Host-owned objects
# =============================================================================

def register_object(session: Any, path: Union[str, Sequence[Any]],
                    binding: Union[ClassBinding, str], obj: Any) -> BoundObjectHandle:
    """
    Expose an existing host object at `path` without handing over ownership.

    The class must already be published in `session`. Every key of `path`
    but the last must lead to a table.
    """
    class_name = binding.name if isinstance(binding, ClassBinding) else binding
    class_table = session.class_table(class_name)
    keys = split_path(path)
    parent = session.resolve_parent(keys)
    handle = BoundObjectHandle(obj, class_name, Ownership.HOST_OWNED)
    parent[session.marshaler.from_value(keys[-1])] = make_instance(session, class_table, handle)
    logger.debug("Registered a host-owned '%s' object at %s", class_name,
                 ".".join(str(k) for k in keys))
    return handle
