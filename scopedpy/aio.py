from __future__ import annotations
import inspect
from typing import Any, Awaitable, Callable, Iterable, Optional, Tuple, TypeVar, Union
import anyio
from .closeable import Entered, Tagged, _close_fns, unwrap
from .config import default_logger
from .errors import CloseError, NotCloseableError, ScopeClosedError, add_suppressed
from .logger import ConsoleLogger
from .scope import Bindings, ScopeState, _ScopeBase, _call, _pairs

A = TypeVar("A")


async def _resolve(v: Union[A, Awaitable[A]]) -> A:
    if inspect.isawaitable(v): return await v
    return v  # type: ignore[return-value]


async def aclose(resource: Any, error: Optional[BaseException] = None) -> None:
    """Async counterpart of :func:`scopedpy.close`.

    Close functions may be plain or return an awaitable. A resource exposing
    ``aclose()`` has it awaited in preference to ``close()``. Entered context
    managers (sync or async) are exited with ``error``.
    """
    if resource is None: return None
    if isinstance(resource, Entered):
        await _resolve(resource.exit_(resource.cm, *resource.exit_args(error))); return None
    if isinstance(resource, Tagged):
        await _resolve(resource.close_fn(resource.value)); return None
    fn = _close_fns.pop(resource)
    if fn is not None:
        await _resolve(fn(resource)); return None
    for attr in ("aclose", "close"):
        native = getattr(resource, attr, None)
        if callable(native):
            await _resolve(native()); return None
    raise NotCloseableError(resource)


async def aclose_all(entries: Iterable[Tuple[Any, Any]], error: Optional[BaseException] = None, *, logger: Optional[ConsoleLogger] = None) -> Optional[BaseException]:
    """Close every ``(resource, hint)`` pair in order; same rules as ``close_all``.

    Closing runs in a shielded cancel scope, so cancelling the surrounding
    task cannot cut cleanup short.
    """
    log = logger or default_logger()
    interrupt: Optional[BaseException] = None
    with anyio.CancelScope(shield=True):
        for resource, hint in entries:
            try:
                await aclose(resource, error)
                log.debug("closed resource", hint=hint)
            except BaseException as ex:
                if ex is error:
                    log.debug("closed resource", hint=hint)
                    continue
                if not isinstance(ex, Exception):
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


class AsyncOpenScope(_ScopeBase):
    """Async scope; resources are closed most recent first on ``async with`` exit.

    Example:
        ```python
        async with AsyncOpenScope() as scope:
            client = await scope.open(await connect(), "client")
            sess = await scope.enter_async(client.session(), "session")
            await scope.add_finalizer(flush_metrics, "metrics")
            await sess.send(b"ping")
        ```
    """
    async def open(self, resource: Any, hint: Any = None) -> Any:
        if self.closed:
            err = await aclose_all([(resource, hint)], ScopeClosedError("scope is already closed"), logger=self._log)
            raise err  # type: ignore[misc]
        self._registry.push(resource, hint)
        self._log.debug("recorded resource", hint=hint, depth=len(self._registry))
        return unwrap(resource)

    async def enter_async(self, acm: Any, hint: Any = None) -> Any:
        """Enter an async context manager and record its exit as the close action.

        On cleanup ``__aexit__`` receives the error in flight, if any.
        """
        if self.closed: raise ScopeClosedError("scope is already closed")
        exit_ = type(acm).__aexit__
        value = await type(acm).__aenter__(acm)
        await self.open(Entered(acm, exit_), hint)
        return value

    async def enter(self, cm: Any, hint: Any = None) -> Any:
        if self.closed: raise ScopeClosedError("scope is already closed")
        exit_ = type(cm).__exit__
        value = type(cm).__enter__(cm)
        await self.open(Entered(cm, exit_), hint)
        return value

    async def add_finalizer(self, fn: Callable[[], Any], hint: Any = None) -> None:
        """Record a cleanup callback (plain or async).

        If the scope is already closed, the finalizer is executed immediately.
        """
        if self.closed: await _resolve(fn()); return
        await self.open(Tagged(fn, _call), hint)

    async def aclose(self) -> None:
        err = await self._cleanup(None)
        if err is not None: raise err

    async def _cleanup(self, error: Optional[BaseException]) -> Optional[BaseException]:
        if self.closed: return error
        self._state = ScopeState.CLEANING_UP
        try:
            result = await aclose_all(self._registry.drain(), error, logger=self._log)
        except BaseException:
            self._state = ScopeState.FAILED
            raise
        finally:
            self._purge()
        return self._settle(result)

    async def __aenter__(self) -> "AsyncOpenScope":
        self._own()
        return self

    async def __aexit__(self, et, e, tb) -> bool:
        try:
            err = await self._cleanup(e)
        finally:
            self._disown()
        if err is None or err is e:
            return False
        raise err


async def async_with_open(bindings: Bindings, body: Callable[..., Any], *, logger: Optional[ConsoleLogger] = None) -> Any:
    """Async counterpart of :func:`scopedpy.with_open`.

    Acquisitions and the body may be plain callables or return awaitables.

    Example:
        ```python
        n = await async_with_open(
            {"pool": lambda: make_pool(dsn), "conn": lambda pool: pool.acquire()},
            lambda pool, conn: conn.fetchval("select count(*) from jobs"),
        )
        ```
    """
    bound: dict[str, Any] = {}
    async with AsyncOpenScope(logger=logger) as scope:
        for name, acquire in _pairs(bindings):
            value = await scope.open(await _resolve(acquire(**bound)), name)
            if name != "_": bound[name] = value
        scope.begin_body()
        return await _resolve(body(**bound))
