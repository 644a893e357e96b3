"""
Background dispatch for best-effort side effects (telemetry, email, CRM).

A request dispatches its side effects together and returns without waiting.
Each task is wrapped so a failure is logged, never raised to the caller.
Side effects that must outlive the request (the customer may close the tab
the moment they are redirected) are also held in a process-wide registry that
the app lifespan drains on shutdown.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

# Strong references so running tasks are not garbage collected mid-flight
_running_tasks: set[asyncio.Task] = set()
# Tasks flagged must_survive_navigation, awaited by drain_durable_tasks()
_durable_tasks: set[asyncio.Task] = set()


async def run_best_effort(
    name: str,
    coro_fn: Callable[[], Awaitable[Any]],
    submission_id: Optional[str] = None,
) -> Any:
    """Await coro_fn(), logging and swallowing any failure. Returns None on failure."""
    try:
        return await coro_fn()
    except asyncio.CancelledError:
        logger.warning("Background task %s cancelled", name, extra={"submission_id": submission_id})
        raise
    except Exception as e:
        logger.error(
            "Background task %s failed: %s", name, str(e),
            extra={"submission_id": submission_id},
        )
        return None


class BackgroundDispatcher:
    """Launches best-effort tasks for one request and offers an optional join."""

    def __init__(self, submission_id: Optional[str] = None):
        self.submission_id = submission_id
        self._tasks: list[asyncio.Task] = []

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    def dispatch(
        self,
        name: str,
        coro_fn: Callable[[], Awaitable[Any]],
        must_survive_navigation: bool = False,
    ) -> asyncio.Task:
        task = asyncio.create_task(
            run_best_effort(name, coro_fn, self.submission_id),
            name=f"funnel:{name}",
        )
        self._tasks.append(task)
        _running_tasks.add(task)
        task.add_done_callback(_running_tasks.discard)
        if must_survive_navigation:
            _durable_tasks.add(task)
            task.add_done_callback(_durable_tasks.discard)
        logger.debug(
            "Dispatched %s (durable=%s)", name, must_survive_navigation,
            extra={"submission_id": self.submission_id},
        )
        return task

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for every task this dispatcher launched. Production handlers never call this."""
        pending = [t for t in self._tasks if not t.done()]
        if not pending:
            return
        done, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            logger.warning("%d background tasks still running after join timeout", len(still_pending))


def durable_task_count() -> int:
    return len(_durable_tasks)


async def drain_durable_tasks(timeout: float = 10.0) -> int:
    """
    Wait for navigation-survivable tasks at shutdown, cancelling any that
    overrun the timeout. Other background tasks are cancelled straight away.
    Returns the number of durable tasks that finished in time.
    """
    durable = [t for t in _durable_tasks if not t.done()]
    others = [t for t in _running_tasks if not t.done() and t not in _durable_tasks]
    for task in others:
        task.cancel()

    finished = 0
    if durable:
        done, pending = await asyncio.wait(durable, timeout=timeout)
        finished = len(done)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d durable background tasks at shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
    if others:
        await asyncio.gather(*others, return_exceptions=True)
    return finished
