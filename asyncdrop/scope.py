from __future__ import annotations
from typing import Any, List, Optional, Protocol, TypeVar

from .errors import FatalFinalizationError
from .executor import Executor
from .guard import DeadlineLike, FinalizationGuard
from .outcome import FailurePolicy

T = TypeVar("T")


class Droppable(Protocol):
    def drop(self) -> None: ...


class DropScope:
    """Tears down several finalizable values together, in LIFO order.

    Accepts guards and values registered with ``@async_finalizable``. A fatal
    failure in one teardown does not stop the rest; the first fatal error is
    re-raised once every teardown has run.

    Example:
        ```python
        with DropScope() as scope:
            db = scope.guard(Database(url))
            cache = scope.guard(Cache(url), deadline=Duration.seconds_(1))
            ...
        # cache finalized, then db
        ```
    """
    def __init__(self, executor: Optional[Executor] = None):
        self._items: List[Droppable] = []
        self._closed = False
        self._executor = executor

    @property
    def closed(self) -> bool:
        return self._closed

    def guard(self, value: T, deadline: Optional[DeadlineLike] = None, *, policy: Optional[FailurePolicy] = None) -> FinalizationGuard[T]:
        g = FinalizationGuard(value, deadline, policy=policy, executor=self._executor)
        self.add(g)
        return g

    def add(self, item: Droppable) -> None:
        """Register ``item``; if the scope is already closed it is dropped immediately."""
        if self._closed: item.drop()
        else: self._items.append(item)

    def close(self) -> None:
        if self._closed: return
        self._closed = True
        first: Optional[FatalFinalizationError] = None
        while self._items:
            item = self._items.pop()
            try: item.drop()
            except FatalFinalizationError as ex:
                if first is None: first = ex
        if first is not None:
            raise first

    def __enter__(self) -> "DropScope":
        return self

    def __exit__(self, et: Any, e: Any, tb: Any) -> None:
        self.close()
