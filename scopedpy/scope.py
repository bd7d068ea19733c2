from __future__ import annotations
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, TypeVar, Union
from .closeable import Entered, Tagged, own_attachments, release_attachments, unwrap
from .closer import close_all
from .config import default_logger
from .errors import ScopeClosedError
from .logger import ConsoleLogger
from .registry import CloseRegistry

A = TypeVar("A")

Bindings = Union[Mapping[str, Callable[..., Any]], Iterable[Tuple[str, Callable[..., Any]]]]


class ScopeState(Enum):
    ACQUIRING = "acquiring"
    RUNNING_BODY = "running_body"
    CLEANING_UP = "cleaning_up"
    RETURNED = "returned"
    FAILED = "failed"


def _call(fn: Callable[[], Any]) -> Any: return fn()


class _ScopeBase:
    def __init__(self, logger: Optional[ConsoleLogger] = None):
        self._registry = CloseRegistry()
        self._state = ScopeState.ACQUIRING
        self._log = logger or default_logger()
        self._owned: Optional[list] = None
        self._owner_token = None

    @property
    def state(self) -> ScopeState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state in (ScopeState.CLEANING_UP, ScopeState.RETURNED, ScopeState.FAILED)

    def __len__(self) -> int: return len(self._registry)

    def begin_body(self) -> None:
        """Mark the end of acquisition: ``state`` moves to ``RUNNING_BODY``.

        ``with_open`` calls this itself. In the statement form ``state`` stays
        ``ACQUIRING`` until the caller calls it.
        """
        if self._state is ScopeState.ACQUIRING: self._state = ScopeState.RUNNING_BODY

    def _own(self) -> None:
        self._owned, self._owner_token = own_attachments()

    def _disown(self) -> None:
        if self._owner_token is not None:
            release_attachments(self._owned, self._owner_token)
            self._owner_token = None

    def _purge(self) -> None:
        if self._owned is not None: release_attachments(self._owned)

    def _settle(self, result: Optional[BaseException]) -> Optional[BaseException]:
        self._state = ScopeState.FAILED if result is not None else ScopeState.RETURNED
        return result


class OpenScope(_ScopeBase):
    """Scope that closes every resource opened in it, most recent first.

    On exit each recorded resource is closed exactly once, whether the block
    returned or raised. If the block raised, that error is re-raised with any
    close failures attached as suppressed errors. If only closes failed, the
    first close failure is raised as a :class:`CloseError` and the rest are
    suppressed on it.

    Call :meth:`begin_body` once everything is opened if ``state`` should
    report ``RUNNING_BODY``; resources may still be opened afterwards.

    Args:
        logger: Logger for close diagnostics (default: built from settings)

    Example:
        ```python
        with OpenScope() as scope:
            src = scope.open(open("in.csv"), "src")
            dst = scope.open(open("out.csv", "w"), "dst")
            lock = scope.enter(threading.Lock(), "lock")
            dst.write(src.read())
        # closes lock, then dst, then src
        ```
    """
    def open(self, resource: Any, hint: Any = None) -> Any:
        """Record an acquired resource and return the value to bind.

        For a :class:`Tagged` resource the wrapped value is returned.

        Raises:
            ScopeClosedError: if the scope has already been cleaned up; the
                resource is closed before raising.
        """
        if self.closed:
            err = close_all([(resource, hint)], ScopeClosedError("scope is already closed"), logger=self._log)
            raise err  # type: ignore[misc]
        self._registry.push(resource, hint)
        self._log.debug("recorded resource", hint=hint, depth=len(self._registry))
        return unwrap(resource)

    def enter(self, cm: Any, hint: Any = None) -> Any:
        """Enter a context manager and record its exit as the close action.

        On cleanup the manager's ``__exit__`` receives the error in flight
        (the body error, or an earlier close failure), as in ``ExitStack``.
        Its return value is ignored: a scope never swallows an error.
        """
        if self.closed: raise ScopeClosedError("scope is already closed")
        exit_ = type(cm).__exit__
        value = type(cm).__enter__(cm)
        self.open(Entered(cm, exit_), hint)
        return value

    def add_finalizer(self, fn: Callable[[], Any], hint: Any = None) -> None:
        """Record a zero-argument cleanup callback.

        If the scope is already closed, the finalizer is executed immediately.
        """
        if self.closed: fn(); return
        self.open(Tagged(fn, _call), hint)

    def close(self) -> None:
        """Close all recorded resources now. Closing twice is a no-op."""
        err = self._cleanup(None)
        if err is not None: raise err

    def _cleanup(self, error: Optional[BaseException]) -> Optional[BaseException]:
        if self.closed: return error
        self._state = ScopeState.CLEANING_UP
        try:
            result = close_all(self._registry.drain(), error, logger=self._log)
        except BaseException:
            self._state = ScopeState.FAILED
            raise
        finally:
            self._purge()
        return self._settle(result)

    def __enter__(self) -> "OpenScope":
        self._own()
        return self

    def __exit__(self, et, e, tb) -> bool:
        try:
            err = self._cleanup(e)
        finally:
            self._disown()
        if err is None or err is e:
            return False
        raise err


def _pairs(bindings: Bindings) -> list:
    if isinstance(bindings, Mapping): return list(bindings.items())
    return list(bindings)


def with_open(bindings: Bindings, body: Callable[..., A], *, logger: Optional[ConsoleLogger] = None) -> A:
    """Acquire resources in order, run ``body``, then close them in reverse.

    ``bindings`` is an ordered sequence of ``(name, acquire)`` pairs, or a
    mapping. Each ``acquire`` is called with the values bound so far as
    keyword arguments; ``body`` is called with all of them. The name doubles
    as the hint on close errors. A binding named ``_`` is closed but not
    passed on.

    If an acquisition fails, later acquisitions are skipped, the resources
    already acquired are closed, and the acquisition error is raised.

    Example:
        ```python
        rows = with_open(
            [("conn", lambda: db.connect(url)),
             ("cur", lambda conn: conn.cursor())],
            lambda conn, cur: cur.execute("select 1").fetchall(),
        )
        ```
    """
    bound: dict[str, Any] = {}
    with OpenScope(logger=logger) as scope:
        for name, acquire in _pairs(bindings):
            value = scope.open(acquire(**bound), name)
            if name != "_": bound[name] = value
        scope.begin_body()
        return body(**bound)
