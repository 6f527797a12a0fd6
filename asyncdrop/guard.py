from __future__ import annotations
import threading
from datetime import timedelta
from typing import Any, Generic, Optional, TypeVar, Union

from .duration import Duration
from .errors import FinalizableMisuse, GuardReleasedError
from .executor import Executor
from .finalizable import check_finalizable, policy_of
from .outcome import FailurePolicy, apply_policy
from .settings import current_settings

T = TypeVar("T")
DeadlineLike = Union[Duration, timedelta, float, int]

_INTERNAL = frozenset({"_lock", "_value", "_deadline", "_policy", "_executor", "_completed", "_status"})


class FinalizationGuard(Generic[T]):
    """Owns a finalizable value and runs its async cleanup when torn down.

    Teardown fires on ``drop()``, on leaving a ``with`` block, or when the
    guard is garbage collected. Whichever comes first detaches the value and
    blocks until ``value.finalize()`` resolves (or the deadline elapses);
    every later trigger is a no-op.

    Args:
        value: The value to guard. Must define ``async def finalize(self)``.
        deadline: Optional bound on how long ``finalize()`` may run.
        policy: Overrides the value's ``failure_policy()``.
        executor: Overrides the ambient executor from :func:`current_settings`.

    Attributes:
        completed: True once teardown has run or was found unnecessary
        status: ``'armed'``, ``'detaching'``, ``'finalizing'`` or ``'finalized'``

    Example:
        ```python
        with FinalizationGuard.create_with_deadline(Connection(url), Duration.seconds_(2)) as conn:
            conn.borrow_mut().send(b"bye")
        # conn.finalize() has completed (or timed out) here
        ```
    """
    def __init__(self, value: T, deadline: Optional[DeadlineLike] = None, *, policy: Optional[FailurePolicy] = None, executor: Optional[Executor] = None):
        check_finalizable(value)
        self._lock = threading.Lock()
        self._value: Optional[T] = value
        self._deadline: Optional[Duration] = Duration.coerce(deadline)
        self._policy: Optional[FailurePolicy] = FailurePolicy(policy) if policy is not None else None
        self._executor = executor
        self._status: str = "armed"
        # Set last: a partially built guard reads as completed in __del__
        self._completed = False

    @classmethod
    def create(cls, value: T, *, policy: Optional[FailurePolicy] = None, executor: Optional[Executor] = None) -> "FinalizationGuard[T]":
        """Guard ``value`` with no deadline: teardown waits for ``finalize()`` as long as it takes."""
        return cls(value, None, policy=policy, executor=executor)

    @classmethod
    def create_with_deadline(cls, value: T, deadline: DeadlineLike, *, policy: Optional[FailurePolicy] = None, executor: Optional[Executor] = None) -> "FinalizationGuard[T]":
        """Guard ``value``; teardown gives up on ``finalize()`` after ``deadline``.

        A timed-out ``finalize()`` is cancelled, and the timeout is handled
        by the failure policy.
        """
        if deadline is None:
            raise ValueError("create_with_deadline() needs a deadline; use create() for none")
        return cls(value, deadline, policy=policy, executor=executor)

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def status(self) -> str:
        return self._status

    @property
    def deadline(self) -> Optional[Duration]:
        return self._deadline

    @property
    def policy(self) -> FailurePolicy:
        if self._policy is not None:
            return self._policy
        if self._value is not None:
            return policy_of(self._value, current_settings().default_policy)
        return current_settings().default_policy

    def borrow(self) -> T:
        if self._value is None:
            raise GuardReleasedError("guard has already released its value")
        return self._value

    # Python references are always mutable; kept for symmetry with borrow()
    borrow_mut = borrow

    @property
    def inner(self) -> T:
        return self.borrow()

    def __getattr__(self, name: str) -> Any:
        if name in _INTERNAL or name.startswith("__"):
            raise AttributeError(name)
        return getattr(self.borrow(), name)

    def _detach(self) -> "FinalizationGuard[T]":
        # Both the returned shell and self are completed before any async work
        shell: FinalizationGuard[T] = object.__new__(type(self))
        shell.__dict__.update(self.__dict__)
        shell._completed = True
        self._value = None
        self._completed = True
        return shell

    def drop(self) -> None:
        """Run teardown now. Safe to call any number of times.

        Raises:
            FatalFinalizationError: if ``finalize()`` timed out or failed and
                the policy is ``ESCALATE``.
        """
        settings = current_settings()
        log = settings.logger
        with self._lock:
            if self._completed:
                log.debug("finalize.skip", guard=id(self), status=self._status)
                return
            self._status = "detaching"
            policy = self.policy
            shell = self._detach()
        value = shell._value; shell._value = None
        executor = self._executor or settings.executor
        fields = {"type": type(value).__name__, "deadline": str(self._deadline) if self._deadline else None}
        self._status = "finalizing"
        log.debug("finalize.start", **fields)
        try:
            outcome = executor.block_on(value.finalize, self._deadline)
        finally:
            self._status = "finalized"
        log.debug("finalize.done", outcome=outcome.render(), elapsed=round(outcome.elapsed, 6), **fields)
        apply_policy(outcome, policy, log, **fields)

    def __enter__(self) -> "FinalizationGuard[T]":
        return self

    def __exit__(self, et, e, tb) -> None:
        self.drop()

    def __del__(self) -> None:
        if getattr(self, "_completed", True):
            return
        self.drop()

    def __copy__(self) -> "FinalizationGuard[T]":
        raise FinalizableMisuse("FinalizationGuard cannot be copied; a second armed guard would finalize twice")

    def __deepcopy__(self, memo: dict) -> "FinalizationGuard[T]":
        raise FinalizableMisuse("FinalizationGuard cannot be copied; a second armed guard would finalize twice")

    def __reduce_ex__(self, protocol: Any) -> Any:
        raise FinalizableMisuse("FinalizationGuard cannot be pickled")

    def __repr__(self) -> str:
        inner = "<released>" if self._value is None else repr(self._value)
        return f"FinalizationGuard({inner}, status={self._status!r}, deadline={self._deadline})"
