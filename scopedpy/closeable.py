from __future__ import annotations
import contextvars
import threading
import weakref
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Protocol, Tuple, TypeVar, runtime_checkable
from .errors import NotCloseableError

T = TypeVar("T")

# Immutable values may be shared (interned ints, literal strings), so an
# identity-keyed attachment on one occurrence would tag every occurrence.
_IMMUTABLE = (str, bytes, int, float, complex, bool, tuple, frozenset, range, type(None))


@runtime_checkable
class Closeable(Protocol):
    def close(self) -> None: ...


@dataclass(frozen=True)
class Tagged(Generic[T]):
    """A value paired with the function that closes it.

    Produced by :func:`with_close_fn`. Scopes bind ``value``, not the wrapper.
    """
    value: T
    close_fn: Callable[[T], Any]


@dataclass(frozen=True)
class Entered:
    """A context manager entered by a scope; closing it calls ``exit_``.

    ``exit_`` is the unbound ``__exit__`` (or ``__aexit__``) of the manager's
    type and receives the error in flight when the scope closes.
    """
    cm: Any
    exit_: Callable[..., Any]

    def exit_args(self, error: Optional[BaseException]) -> Tuple[Any, Any, Any]:
        if error is None: return (None, None, None)
        return (type(error), error, error.__traceback__)


class _Slot:
    __slots__ = ("wr", "strong", "fn")

    def __init__(self, wr: Optional[weakref.ref], strong: Any, fn: Callable[[Any], Any]):
        self.wr = wr; self.strong = strong; self.fn = fn

    def referent(self) -> Any:
        return self.wr() if self.wr is not None else self.strong


# Attachments made while a scope is active are listed here and dropped when
# that scope finishes cleaning up.
_owner: contextvars.ContextVar[Optional[List[Tuple[int, _Slot]]]] = contextvars.ContextVar('scopedpy_close_fn_owner', default=None)


class _CloseFnTable:
    # Keyed by id(). Weak-referenceable values are held weakly and expire with
    # their referent; others (lists, dicts) are held strongly until closed or
    # until the owning scope is cleaned up.
    def __init__(self):
        self._fns: Dict[int, _Slot] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock: return len(self._fns)

    def _expire(self, key: int) -> Callable[[weakref.ref], None]:
        def cb(wr: weakref.ref) -> None:
            with self._lock:
                slot = self._fns.get(key)
                if slot is not None and slot.wr is wr: del self._fns[key]
        return cb

    def put(self, ref: Any, fn: Callable[[Any], Any]) -> None:
        key = id(ref)
        try:
            slot = _Slot(weakref.ref(ref, self._expire(key)), None, fn)
        except TypeError:
            slot = _Slot(None, ref, fn)
        with self._lock: self._fns[key] = slot
        owned = _owner.get()
        if owned is not None: owned.append((key, slot))

    def _hit(self, ref: Any) -> Optional[_Slot]:
        slot = self._fns.get(id(ref))
        return slot if slot is not None and slot.referent() is ref else None

    def get(self, ref: Any) -> Optional[Callable[[Any], Any]]:
        with self._lock:
            slot = self._hit(ref)
        return slot.fn if slot is not None else None

    def pop(self, ref: Any) -> Optional[Callable[[Any], Any]]:
        with self._lock:
            slot = self._hit(ref)
            if slot is None: return None
            del self._fns[id(ref)]
        return slot.fn

    def purge(self, owned: List[Tuple[int, _Slot]]) -> None:
        with self._lock:
            for key, slot in owned:
                if self._fns.get(key) is slot: del self._fns[key]
        owned.clear()


_close_fns = _CloseFnTable()


def own_attachments() -> Tuple[List[Tuple[int, _Slot]], contextvars.Token]:
    """Start collecting close fns attached in the current context."""
    owned: List[Tuple[int, _Slot]] = []
    return owned, _owner.set(owned)


def release_attachments(owned: List[Tuple[int, _Slot]], token: Optional[contextvars.Token] = None) -> None:
    """Drop attachments collected by :func:`own_attachments` that were never closed."""
    if token is not None: _owner.reset(token)
    _close_fns.purge(owned)


def with_close_fn(value: T, fn: Callable[[T], Any]) -> Tagged[T]:
    """Pair ``value`` with ``fn`` so that closing it calls ``fn(value)``.

    The input is not modified; a new :class:`Tagged` wrapper is returned.

    Note:
        A compound resource built by hand inside one close function does not
        get acquisition-failure cleanup: if its second part fails to acquire,
        the first part is never closed. Acquire the parts as separate clauses
        of one scope instead.

    Example:
        ```python
        res = with_close_fn({"port": 8080}, lambda cfg: release_port(cfg["port"]))
        close(res)  # release_port(8080)
        ```
    """
    if not callable(fn): raise TypeError(f"close fn must be callable, got {fn!r}")
    return Tagged(value, fn)


def add_close_fn(ref: T, fn: Callable[[T], Any]) -> T:
    """Attach ``fn`` as the close function of ``ref`` itself and return ``ref``.

    Use this instead of :func:`with_close_fn` when the identity of the
    resource must be preserved (mutable references such as lists, dicts or
    plain objects). Attaching again replaces the previous function.

    The attachment lasts until ``ref`` is closed, garbage collected, or, when
    made inside an open scope, until that scope has been cleaned up.

    Raises:
        TypeError: if ``fn`` is not callable, or ``ref`` is an immutable value
            (str, int, tuple, ...) whose identity may be shared; wrap those
            with :func:`with_close_fn` instead.
    """
    if not callable(fn): raise TypeError(f"close fn must be callable, got {fn!r}")
    if isinstance(ref, _IMMUTABLE):
        raise TypeError(f"cannot attach a close fn to immutable {type(ref).__name__} {ref!r}; use with_close_fn")
    _close_fns.put(ref, fn)
    return ref


def close_fn_of(ref: Any) -> Optional[Callable[[Any], Any]]:
    if isinstance(ref, Tagged): return ref.close_fn
    return _close_fns.get(ref)


def unwrap(resource: Any) -> Any:
    return resource.value if isinstance(resource, Tagged) else resource


def close(resource: Any, error: Optional[BaseException] = None) -> None:
    """Close ``resource``. Returns None.

    Variants, checked in order: ``None`` is a no-op; an :class:`Entered`
    context manager is exited with ``error`` (the error in flight, if any);
    a :class:`Tagged` wrapper calls its close function with the wrapped value;
    a reference registered with :func:`add_close_fn` calls the attached
    function with itself; any object with a callable ``close()`` has it called.

    Raises:
        NotCloseableError: for anything else, with the resource attached.
    """
    if resource is None: return None
    if isinstance(resource, Entered):
        resource.exit_(resource.cm, *resource.exit_args(error)); return None
    if isinstance(resource, Tagged):
        resource.close_fn(resource.value); return None
    fn = _close_fns.pop(resource)
    if fn is not None:
        fn(resource); return None
    native = getattr(resource, "close", None)
    if callable(native):
        native(); return None
    raise NotCloseableError(resource)
