from __future__ import annotations
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .outcome import Outcome


class FinalizationError(Exception):
    """A finalization that did not succeed.

    Only surfaced to calling code under the ``Escalate`` policy, wrapped in a
    :class:`FatalFinalizationError`.
    """
    def __init__(self, msg: str, outcome: Optional["Outcome"] = None):
        super().__init__(msg); self.outcome = outcome


class FinalizationTimeout(FinalizationError):
    pass


class UnexpectedFinalizationError(FinalizationError):
    pass


class FatalFinalizationError(BaseException):
    """Teardown could not release its resource and the process may not continue.

    Derives from ``BaseException`` so that ordinary ``except Exception``
    handlers do not recover from it.
    """
    def __init__(self, msg: str, error: Optional[FinalizationError] = None):
        super().__init__(msg); self.error = error


class ConsistencyViolation(FatalFinalizationError):
    pass


class FinalizableMisuse(TypeError):
    pass


class GuardReleasedError(FinalizableMisuse):
    pass
