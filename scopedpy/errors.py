from __future__ import annotations
import traceback
from typing import Any, List, Optional

_SUPPRESSED_ATTR = "__suppressed__"


class ScopedError(Exception):
    """Base class for errors raised by scopedpy.

    Every ScopedError carries an ordered ``suppressed`` list: secondary errors
    preserved for diagnostics without altering control flow.
    """
    def __init__(self, message: str = ""):
        super().__init__(message)
        self.suppressed: List[BaseException] = []


class CloseError(ScopedError):
    """Raised when closing a single resource fails.

    The underlying failure is the ``__cause__``; ``hint`` names the clause
    that acquired the resource.

    Example:
        ```python
        try:
            with_open([("db", connect)], lambda db: db.query())
        except CloseError as ex:
            print(ex.hint, repr(ex.__cause__))
        ```
    """
    def __init__(self, message: str = "Error during closing", hint: Any = None, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.hint = hint
        if cause is not None: self.__cause__ = cause

    def __str__(self) -> str:
        base = super().__str__()
        return base if self.hint is None else f"{base} (hint={self.hint!r})"


class NotCloseableError(ScopedError, TypeError):
    def __init__(self, resource: Any):
        super().__init__("no close fn found")
        self.resource = resource

    def __str__(self) -> str:
        return f"no close fn found for {self.resource!r}"


class ScopeClosedError(ScopedError, RuntimeError):
    pass


def suppressed_of(exc: BaseException) -> List[BaseException]:
    """Return the ordered suppressed list of ``exc`` (empty if none)."""
    if isinstance(exc, ScopedError): return exc.suppressed
    return exc.__dict__.get(_SUPPRESSED_ATTR, [])


def add_suppressed(primary: BaseException, err: BaseException) -> BaseException:
    """Append ``err`` to the suppressed list of ``primary`` and return ``primary``.

    Foreign exceptions get the list stored on the instance. A note is added
    as well so a default traceback of ``primary`` mentions the suppressed error.
    """
    if primary is err:
        raise ValueError("an error cannot suppress itself")
    if isinstance(primary, ScopedError):
        primary.suppressed.append(err)
    else:
        primary.__dict__.setdefault(_SUPPRESSED_ATTR, []).append(err)
    primary.add_note(f"Suppressed: {_describe(err)}")
    return primary


def _describe(err: BaseException) -> str:
    s = f"{type(err).__name__}: {err}"
    if err.__cause__ is not None:
        s += f" <- {type(err.__cause__).__name__}: {err.__cause__}"
    return s


def render(exc: BaseException, indent: str = "", include_traces: bool = False, _seen: frozenset = frozenset()) -> str:
    """Render an error with its hint, cause chain and suppressed trail.

    Example output for a body error with one failed close::

        ValueError('body failed')
          Suppressed:
            CloseError('Error during closing') hint='b'
              Cause:
                OSError('disk gone')

    An error that reappears inside its own cause or suppressed chain is
    printed once more with ``(see above)`` and not expanded again.
    """
    def line(s: str) -> str: return indent + s + "\n"
    msg = exc.args[0] if len(exc.args) == 1 else str(exc)
    head = f"{type(exc).__name__}({msg!r})"
    hint = exc.hint if isinstance(exc, CloseError) else None
    out = line(head + (f" hint={hint!r}" if hint is not None else ""))
    if id(exc) in _seen:
        return out[:-1] + " (see above)\n"
    seen = _seen | {id(exc)}
    if include_traces and exc.__traceback__ is not None:
        tb = ''.join(traceback.format_tb(exc.__traceback__))
        out += ''.join(indent + '  ' + l for l in tb.splitlines(True))
    if exc.__cause__ is not None:
        out += line("  Cause:") + render(exc.__cause__, indent + "    ", include_traces, seen)
    sup = suppressed_of(exc)
    if sup:
        out += line("  Suppressed:")
        for s in sup: out += render(s, indent + "    ", include_traces, seen)
    return out
