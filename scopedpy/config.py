from __future__ import annotations
import contextvars
from contextlib import contextmanager
from dataclasses import dataclass, replace
from typing import Any, Iterator
from .logger import ConsoleLogger, _LEVELS


@dataclass(frozen=True)
class Settings:
    log_level: str = "ERROR"
    json_output: bool = False
    logger_name: str = "scopedpy"

    def __post_init__(self):
        if self.log_level.upper() not in _LEVELS:
            raise ValueError(f"unknown log level {self.log_level!r}; expected one of {sorted(_LEVELS)}")


_settings: contextvars.ContextVar[Settings] = contextvars.ContextVar('scopedpy_settings', default=Settings())


def current_settings() -> Settings:
    return _settings.get()


def configure(**changes: Any) -> Settings:
    """Replace fields of the current settings and return the result.

    Example:
        ```python
        configure(log_level="DEBUG", json_output=True)
        ```
    """
    s = replace(_settings.get(), **changes)
    _settings.set(s)
    return s


@contextmanager
def settings(**changes: Any) -> Iterator[Settings]:
    """Override settings for the duration of a ``with`` block."""
    token = _settings.set(replace(_settings.get(), **changes))
    try:
        yield _settings.get()
    finally:
        _settings.reset(token)


def default_logger() -> ConsoleLogger:
    s = _settings.get()
    return ConsoleLogger(s.logger_name, level=s.log_level, json_output=s.json_output)
