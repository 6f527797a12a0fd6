from __future__ import annotations
import time
from typing import Any, Optional
import anyio
from anyio.from_thread import start_blocking_portal

from .duration import Duration
from .executor import Work
from .outcome import Outcome


async def run_unit_anyio(work: Work, deadline: Optional[Duration]) -> Outcome:
    start = time.monotonic()
    with anyio.move_on_after(deadline.seconds if deadline is not None else None) as scope:
        try:
            await work()
        except Exception as ex:
            return Outcome.internal_error(ex, time.monotonic() - start)
    if scope.cancelled_caught:
        return Outcome.timed_out(time.monotonic() - start)
    return Outcome.succeeded(time.monotonic() - start)


class AnyIOExecutor:
    """Executor that runs each finalization inside an anyio blocking portal.

    The portal owns a worker thread with its own event loop, so the calling
    thread may be a plain thread or one that is itself running a loop.
    """
    def __init__(self, backend: str = "asyncio", backend_options: Optional[dict[str, Any]] = None):
        self.backend = backend; self.backend_options = dict(backend_options or {})

    def block_on(self, work: Work, deadline: Optional[Duration]) -> Outcome:
        with start_blocking_portal(self.backend, self.backend_options or None) as portal:
            return portal.call(run_unit_anyio, work, deadline)

    def __repr__(self) -> str:
        return f"AnyIOExecutor(backend={self.backend!r})"
