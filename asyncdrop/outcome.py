from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

from .errors import (
    FatalFinalizationError,
    FinalizationError,
    FinalizationTimeout,
    UnexpectedFinalizationError,
)

if TYPE_CHECKING:
    from .logger import ConsoleLogger


class FailurePolicy(str, Enum):
    """What teardown does with a finalization that timed out or failed."""
    CONTINUE = "continue"
    ESCALATE = "escalate"


@dataclass(frozen=True)
class Outcome:
    """Result of one asynchronous finalization unit.

    ``kind`` is one of ``'success'``, ``'timeout'`` or ``'error'``; ``cause``
    holds the exception raised by ``finalize()`` for the ``'error'`` kind.
    """
    kind: str
    cause: Optional[BaseException] = None
    elapsed: float = 0.0

    @property
    def success(self) -> bool: return self.kind == 'success'

    def render(self) -> str:
        if self.kind == 'success': return "Success"
        if self.kind == 'timeout': return "Timeout"
        if self.kind == 'error': return f"InternalError({self.cause!r})"
        return f"Unknown({self.kind})"

    def to_error(self) -> Optional[FinalizationError]:
        if self.kind == 'timeout':
            return FinalizationTimeout("finalize() did not complete before its deadline", self)
        if self.kind == 'error':
            err = UnexpectedFinalizationError(f"finalize() failed: {self.cause!r}", self)
            err.__cause__ = self.cause
            return err
        return None

    @staticmethod
    def succeeded(elapsed: float = 0.0) -> "Outcome": return Outcome(kind='success', elapsed=elapsed)
    @staticmethod
    def timed_out(elapsed: float = 0.0) -> "Outcome": return Outcome(kind='timeout', elapsed=elapsed)
    @staticmethod
    def internal_error(ex: BaseException, elapsed: float = 0.0) -> "Outcome": return Outcome(kind='error', cause=ex, elapsed=elapsed)


def apply_policy(outcome: Outcome, policy: FailurePolicy, logger: Optional["ConsoleLogger"] = None, **fields: Any) -> None:
    """Combine an outcome with a failure policy.

    Success is always quiet. Under ``CONTINUE`` a timeout or internal error is
    logged and swallowed; under ``ESCALATE`` it becomes a
    :class:`FatalFinalizationError`.
    """
    err = outcome.to_error()
    if err is None:
        return
    if FailurePolicy(policy) is FailurePolicy.ESCALATE:
        if logger: logger.error("finalize.escalate", outcome=outcome.render(), **fields)
        raise FatalFinalizationError(f"async finalization failed: {err}", err) from err
    if logger:
        logger.warn(f"finalize.{outcome.kind}", outcome=outcome.render(), **fields)
