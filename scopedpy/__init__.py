from .closeable import (
    Closeable,
    Entered,
    Tagged,
    close,
    with_close_fn,
    add_close_fn,
    close_fn_of,
    unwrap,
)
from .errors import (
    ScopedError,
    CloseError,
    NotCloseableError,
    ScopeClosedError,
    add_suppressed,
    suppressed_of,
    render,
)
from .registry import CloseRegistry, Entry
from .closer import close_all
from .scope import OpenScope, ScopeState, with_open
from .aio import AsyncOpenScope, aclose, aclose_all, async_with_open
from .logger import ConsoleLogger
from .config import Settings, configure, current_settings, settings, default_logger
