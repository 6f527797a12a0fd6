from __future__ import annotations
import contextvars
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from typing import Any, Iterator, Optional

from .duration import Duration
from .executor import AsyncioExecutor, Executor
from .logger import ConsoleLogger
from .outcome import FailurePolicy


def _default_logger() -> ConsoleLogger:
    return ConsoleLogger("asyncdrop", level="WARN")


@dataclass(frozen=True)
class Settings:
    """Ambient configuration read by teardown hooks.

    ``default_timeout`` and ``default_policy`` apply to values that do not
    override ``drop_timeout()`` / ``failure_policy()``.
    """
    executor: Executor = field(default_factory=AsyncioExecutor)
    logger: ConsoleLogger = field(default_factory=_default_logger)
    default_timeout: Optional[Duration] = Duration(3.0)
    default_policy: FailurePolicy = FailurePolicy.CONTINUE


_lock = threading.Lock()
_defaults = Settings()
# Context-local overrides are inherited by tasks spawned from the current context
_override: contextvars.ContextVar[Optional[Settings]] = contextvars.ContextVar("asyncdrop_settings", default=None)


def current_settings() -> Settings:
    s = _override.get()
    return s if s is not None else _defaults


def configure(**overrides: Any) -> Settings:
    """Replace the process-wide defaults; returns the previous settings."""
    global _defaults
    with _lock:
        previous = _defaults
        _defaults = replace(_defaults, **_normalize(overrides))
    return previous


def restore(settings: Settings) -> None:
    global _defaults
    with _lock:
        _defaults = settings


@contextmanager
def use_settings(**overrides: Any) -> Iterator[Settings]:
    """Apply settings overrides to the current context for the ``with`` body.

    Example:
        ```python
        with use_settings(executor=AnyIOExecutor(), default_policy=FailurePolicy.ESCALATE):
            del conn  # finalized through anyio, failures are fatal
        ```
    """
    s = replace(current_settings(), **_normalize(overrides))
    token = _override.set(s)
    try:
        yield s
    finally:
        _override.reset(token)


def _normalize(overrides: dict[str, Any]) -> dict[str, Any]:
    out = dict(overrides)
    if "default_timeout" in out:
        out["default_timeout"] = Duration.coerce(out["default_timeout"])
    if "default_policy" in out:
        out["default_policy"] = FailurePolicy(out["default_policy"])
    if "executor" in out and not isinstance(out["executor"], Executor):
        raise TypeError(f"executor must provide block_on(), got {type(out['executor']).__name__}")
    return out
