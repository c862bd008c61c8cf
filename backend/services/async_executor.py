"""
Bounded best-effort execution for secondary steps.

AWB assignment, pickup scheduling and customer notification must never fail
the operation that triggered them. Each runs under a timeout; any exception
or timeout is logged and turned into None.

    run_best_effort   await inline, result or None
    spawn_best_effort fire-and-forget background task, tracked for drain()
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, TypeVar

from config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Background tasks still running; kept so they are not garbage collected
_tasks: set[asyncio.Task] = set()


async def run_best_effort(
    label: str,
    factory: Callable[[], Awaitable[T]],
    *,
    timeout: float | None = None,
) -> T | None:
    """
    Await factory() under a timeout. Never raises (cancellation aside).

    Args:
        label: Step name for logs (e.g. "awb RM1002")
        factory: Zero-arg callable returning the coroutine to run
        timeout: Seconds; defaults to settings.best_effort_timeout_seconds
    """
    timeout = timeout if timeout is not None else settings.best_effort_timeout_seconds
    try:
        return await asyncio.wait_for(factory(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error(f"  ⏱️  {label} timed out after {timeout}s (non-critical)")
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"  ⚠️ {label} failed (non-critical): {e}")
    return None


def spawn_best_effort(
    label: str,
    factory: Callable[[], Awaitable[Any]],
    *,
    timeout: float | None = None,
) -> asyncio.Task:
    """Schedule run_best_effort() in the background and return immediately."""
    task = asyncio.create_task(run_best_effort(label, factory, timeout=timeout), name=label)
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return task


def pending_count() -> int:
    return len(_tasks)


async def drain() -> None:
    """Wait for every background task currently scheduled."""
    while _tasks:
        await asyncio.gather(*list(_tasks), return_exceptions=True)


async def shutdown(timeout: float = 5.0) -> None:
    """Give background tasks a grace period on app shutdown, then cancel."""
    if not _tasks:
        return
    done, pending = await asyncio.wait(list(_tasks), timeout=timeout)
    for task in pending:
        task.cancel()
    if pending:
        logger.warning(f"Cancelled {len(pending)} best-effort task(s) on shutdown")
    logger.info("Best-effort executor shut down")
