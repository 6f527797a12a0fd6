from __future__ import annotations
import inspect
from typing import Any, Optional, Protocol, runtime_checkable

from .duration import Duration
from .errors import FinalizableMisuse
from .outcome import FailurePolicy


@runtime_checkable
class Finalizable(Protocol):
    """A value with asynchronous cleanup.

    Optional hooks, looked up by name when present:

    - ``drop_timeout() -> Duration | None``: deadline for ``finalize()``
    - ``failure_policy() -> FailurePolicy``: what a failed teardown does
    - ``reset() -> None``: return every field to its default
    """
    async def finalize(self) -> None: ...


def check_finalizable(value: Any) -> None:
    if value is None or not isinstance(value, Finalizable):
        raise FinalizableMisuse(f"{type(value).__name__} does not define an async finalize() method")
    # a plain def would run to completion before anything could be awaited
    if not inspect.iscoroutinefunction(value.finalize):
        raise FinalizableMisuse(f"{type(value).__name__}.finalize must be declared with async def")


def timeout_of(value: Any, default: Optional[Duration]) -> Optional[Duration]:
    fn = getattr(value, "drop_timeout", None)
    return Duration.coerce(fn()) if callable(fn) else default


def policy_of(value: Any, default: FailurePolicy) -> FailurePolicy:
    fn = getattr(value, "failure_policy", None)
    return FailurePolicy(fn()) if callable(fn) else default
