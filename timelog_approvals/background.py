"""Thread pool used to run interaction handling off the Slack ack path."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars


_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="timelog")


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared pool, carrying the caller's log context.

    Exceptions escaping *func* are logged as ``background_task_failed`` and
    re-raised into the returned Future so callers waiting on it still see them.
    """

    context = copy_context()

    if trace_id is not None and context.run(lambda: get_contextvars().get("trace_id")) != trace_id:
        context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        try:
            return func(*args, **kwargs)
        except Exception:
            structlog.get_logger().exception(
                "background_task_failed",
                task=getattr(func, "__name__", repr(func)),
            )
            raise

    return _executor.submit(context.run, runner)
