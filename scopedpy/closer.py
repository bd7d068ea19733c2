from __future__ import annotations
from typing import Any, Iterable, Optional, Tuple
from .closeable import close
from .errors import CloseError, add_suppressed
from .logger import ConsoleLogger
from .config import default_logger


def close_all(entries: Iterable[Tuple[Any, Any]], error: Optional[BaseException] = None, *, logger: Optional[ConsoleLogger] = None) -> Optional[BaseException]:
    """Close every ``(resource, hint)`` pair in the order given.

    A failing close is wrapped in a :class:`CloseError` carrying the hint.
    If ``error`` was passed in, or an earlier close already failed, later
    close errors are added as suppressed to that first error, which is never
    replaced. Returns the resulting error, if any.

    Entered context managers are exited with the current error, so a
    transaction-style manager sees the failure and can roll back.

    Example:
        ```python
        err = close_all([(cur, "cur"), (conn, "conn")], body_error)
        if err is not None:
            raise err
        ```
    """
    log = logger or default_logger()
    interrupt: Optional[BaseException] = None
    for resource, hint in entries:
        try:
            close(resource, error)
            log.debug("closed resource", hint=hint)
        except BaseException as ex:
            if ex is error:
                # a context manager re-raised the error it was handed
                log.debug("closed resource", hint=hint)
                continue
            if not isinstance(ex, Exception):
                # KeyboardInterrupt and friends: finish closing, then let it through
                if interrupt is None: interrupt = ex
                elif ex is not interrupt: add_suppressed(interrupt, ex)
                continue
            wrapped = CloseError(hint=hint, cause=ex)
            log.warn("close failed", hint=hint, error=repr(ex))
            if error is None: error = wrapped
            else: add_suppressed(error, wrapped)
    if interrupt is not None:
        if error is not None and error is not interrupt: add_suppressed(interrupt, error)
        raise interrupt
    return error
