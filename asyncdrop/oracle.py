from __future__ import annotations
import copy
import threading
from typing import Any, Callable, Generic, Optional, TypeVar, overload

from .derive import empty_of, field_names, move_fields, reset_to_defaults, validate_type
from .duration import Duration
from .errors import ConsistencyViolation
from .finalizable import policy_of, timeout_of
from .outcome import FailurePolicy, Outcome, apply_policy
from .settings import current_settings

T = TypeVar("T")

_HOLDER = "__asyncdrop_empty__"
_register_lock = threading.Lock()


class SharedEmpty(Generic[T]):
    """The canonical empty instance of one type.

    Built on first use, then only ever read. Comparisons run under the lock.
    """
    def __init__(self, cls: type[T]):
        self._cls = cls
        self._lock = threading.RLock()
        self._value: Optional[T] = None
        self._built = False

    @property
    def initialized(self) -> bool:
        return self._built

    def _get_locked(self) -> T:
        if not self._built:
            self._value = empty_of(self._cls); self._built = True
        return self._value  # type: ignore[return-value]

    def get(self) -> T:
        with self._lock:
            return self._get_locked()

    def matches(self, value: Any) -> bool:
        with self._lock:
            return value == self._get_locked()

    def claim(self, value: T) -> Optional[T]:
        """Detach ``value``'s contents unless it is already empty.

        The check and the swap happen under one lock, so two threads tearing
        down the same value cannot both get a non-empty original.
        """
        with self._lock:
            if value == self._get_locked():
                return None
            return _swap_out(value)


def shared_empty(cls: type[T]) -> SharedEmpty[T]:
    holder = cls.__dict__.get(_HOLDER)
    if holder is not None:
        return holder
    with _register_lock:
        holder = cls.__dict__.get(_HOLDER)
        if holder is None:
            # undecorated subclass of a registered type
            validate_type(cls)
            holder = SharedEmpty(cls)
            setattr(cls, _HOLDER, holder)
    return holder


def is_already_finalized(value: Any) -> bool:
    return shared_empty(type(value)).matches(value)


def _swap_out(value: T) -> T:
    """Move ``value``'s fields into a detached copy and leave ``value`` empty."""
    original = copy.copy(value)
    move_fields(empty_of(type(value)), value)
    return original


def _reset_detached(original: Any, holder: SharedEmpty, log: Any, fields: dict) -> None:
    name = type(original).__name__
    try:
        original.reset()
        ok = holder.matches(original)
    except Exception as ex:
        reset_to_defaults(original)
        log.error("finalize.inconsistent", error=repr(ex), **fields)
        raise ConsistencyViolation(f"{name}.reset() failed: {ex!r}") from ex
    if not ok:
        # Force the derived defaults so the detached copy cannot finalize again
        reset_to_defaults(original)
        log.error("finalize.inconsistent", **fields)
        raise ConsistencyViolation(f"{name}.reset() did not return the value to its empty state")


def finalize_in_place(value: Any) -> Outcome:
    """Teardown hook for values registered with :func:`async_finalizable`.

    A value equal to its type's empty instance is treated as already
    finalized. Otherwise ``value`` is emptied first, the detached original is
    finalized through the ambient executor, then reset and checked against
    the empty instance.

    Returns:
        The finalization outcome (``Success`` for the no-op path).

    Raises:
        FatalFinalizationError: failure under ``ESCALATE``.
        ConsistencyViolation: ``reset()`` left a non-default field.
    """
    cls = type(value)
    holder = shared_empty(cls)
    settings = current_settings()
    log = settings.logger
    fields: dict[str, Any] = {"type": cls.__name__}
    original = holder.claim(value)
    if original is None:
        log.debug("finalize.skip", **fields)
        return Outcome.succeeded()
    try:
        deadline = timeout_of(original, settings.default_timeout)
        policy = policy_of(original, settings.default_policy)
        fields["deadline"] = str(deadline) if deadline else None
        log.debug("finalize.start", **fields)
        outcome = settings.executor.block_on(original.finalize, deadline)
        log.debug("finalize.done", outcome=outcome.render(), elapsed=round(outcome.elapsed, 6), **fields)
    finally:
        _reset_detached(original, holder, log, fields)
    apply_policy(outcome, policy, log, **fields)
    return outcome


def _drop(self: Any) -> None:
    finalize_in_place(self)


def _del(self: Any) -> None:
    # class-level field defaults would mask a missing instance attribute
    d = getattr(self, "__dict__", None)
    built = all((n in d) if d is not None else hasattr(self, n) for n in field_names(self))
    if not built:
        # __init__ never finished
        return
    finalize_in_place(self)


def _enter(self: Any) -> Any:
    return self


def _exit(self: Any, et: Any, e: Any, tb: Any) -> None:
    finalize_in_place(self)


def _reset(self: Any) -> None:
    reset_to_defaults(self)


def _default_timeout(self: Any) -> Optional[Duration]:
    return current_settings().default_timeout


def _default_policy(self: Any) -> FailurePolicy:
    return current_settings().default_policy


_DEFAULTS: dict[str, Callable[..., Any]] = {
    "drop": _drop,
    "__del__": _del,
    "__enter__": _enter,
    "__exit__": _exit,
    "reset": _reset,
    "drop_timeout": _default_timeout,
    "failure_policy": _default_policy,
}


def _register(cls: type[T], timeout: Any, policy: Optional[FailurePolicy]) -> type[T]:
    validate_type(cls)
    for name, fn in _DEFAULTS.items():
        if not hasattr(cls, name):
            setattr(cls, name, fn)
    if timeout is not _UNSET:
        deadline = Duration.coerce(timeout)
        setattr(cls, "drop_timeout", lambda self: deadline)
    if policy is not None:
        chosen = FailurePolicy(policy)
        setattr(cls, "failure_policy", lambda self: chosen)
    with _register_lock:
        setattr(cls, _HOLDER, SharedEmpty(cls))
    return cls


_UNSET: Any = object()


@overload
def async_finalizable(cls: type[T]) -> type[T]: ...
@overload
def async_finalizable(cls: None = None, *, timeout: Any = ..., policy: Optional[FailurePolicy] = ...) -> Callable[[type[T]], type[T]]: ...
def async_finalizable(cls: Any = None, *, timeout: Any = _UNSET, policy: Optional[FailurePolicy] = None) -> Any:
    """Attach async teardown directly to a dataclass.

    The class must be a mutable dataclass with ``eq=True`` whose fields all
    have defaults, so that ``cls()`` is its empty instance. Missing hooks
    (``drop``, ``reset``, ``drop_timeout``, ``failure_policy``, context
    manager methods and ``__del__``) are filled in; hooks the class defines
    itself are kept, except that ``timeout=`` / ``policy=`` override
    ``drop_timeout`` / ``failure_policy``.

    Raises:
        FinalizableMisuse: at decoration time for unsupported types.

    Example:
        ```python
        @async_finalizable(timeout=Duration.seconds_(5))
        @dataclass
        class Session:
            session_id: str = ""

            async def finalize(self) -> None:
                await api.close_session(self.session_id)

        s = Session("abc")
        del s  # blocks until api.close_session("abc") resolves
        ```
    """
    def wrap(c: type[T]) -> type[T]:
        return _register(c, timeout, policy)
    if cls is None:
        return wrap
    return wrap(cls)
