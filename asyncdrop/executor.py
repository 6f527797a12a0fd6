from __future__ import annotations
import asyncio
import itertools
import threading
import time
from typing import Any, Awaitable, Callable, Optional, Protocol, runtime_checkable

from .duration import Duration
from .outcome import Outcome

Work = Callable[[], Awaitable[Any]]


@runtime_checkable
class Executor(Protocol):
    """Scheduler boundary used by teardown hooks.

    ``block_on`` spawns ``work`` as an independent asynchronous unit, races it
    against ``deadline`` when one is given, and blocks the calling thread until
    the unit resolves. It never raises for failures of ``work`` itself; those
    are reported through the returned :class:`Outcome`.
    """
    def block_on(self, work: Work, deadline: Optional[Duration]) -> Outcome: ...


async def run_unit(work: Work, deadline: Optional[Duration]) -> Outcome:
    """Run one finalization unit on the current event loop and classify it.

    On timeout the unit is cancelled and awaited until the cancellation
    settles, so nothing keeps running after the outcome is reported.
    """
    start = time.monotonic()
    try:
        task = asyncio.ensure_future(work())
    except Exception as ex:
        return Outcome.internal_error(ex, time.monotonic() - start)
    timeout = deadline.seconds if deadline is not None else None
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if not done:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return Outcome.timed_out(time.monotonic() - start)
    elapsed = time.monotonic() - start
    if task.cancelled():
        return Outcome.internal_error(asyncio.CancelledError("finalize() was cancelled"), elapsed)
    ex = task.exception()
    if ex is None:
        return Outcome.succeeded(elapsed)
    if not isinstance(ex, Exception):
        raise ex
    return Outcome.internal_error(ex, elapsed)


def _run_private(work: Work, deadline: Optional[Duration]) -> Outcome:
    # loop_factory keeps the thread's current event loop untouched
    with asyncio.Runner(loop_factory=asyncio.new_event_loop) as runner:
        return runner.run(run_unit(work, deadline))


class AsyncioExecutor:
    """Bridge from a synchronous teardown point to asyncio.

    With no event loop running in the calling thread the unit runs to
    completion on a private loop in that same thread. When the calling thread
    is already driving a loop (a teardown fired inside a coroutine), that loop
    cannot be re-entered, so the unit is handed to a dedicated worker thread
    with its own loop and the caller blocks on it.

    Example:
        ```python
        executor = AsyncioExecutor()
        outcome = executor.block_on(conn.finalize, Duration.seconds_(2))
        ```
    """
    _counter = itertools.count(1)

    def __init__(self, thread_name_prefix: str = "asyncdrop"):
        self.thread_name_prefix = thread_name_prefix

    @staticmethod
    def in_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return False
        return True

    def block_on(self, work: Work, deadline: Optional[Duration]) -> Outcome:
        if not self.in_running_loop():
            return _run_private(work, deadline)
        return self._block_on_worker(work, deadline)

    def _block_on_worker(self, work: Work, deadline: Optional[Duration]) -> Outcome:
        result: dict[str, Any] = {}

        def target() -> None:
            try: result['outcome'] = _run_private(work, deadline)
            except BaseException as ex: result['error'] = ex

        name = f"{self.thread_name_prefix}-{next(self._counter)}"
        worker = threading.Thread(target=target, name=name, daemon=True)
        try:
            worker.start()
        except RuntimeError as ex:
            # e.g. no new threads during interpreter shutdown
            return Outcome.internal_error(ex)
        worker.join()
        if 'error' in result:
            raise result['error']
        return result['outcome']

    def __repr__(self) -> str:
        return f"AsyncioExecutor(thread_name_prefix={self.thread_name_prefix!r})"
