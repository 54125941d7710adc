"""Worker pool with transparent in-process fallback.

`WorkerPool` hands a (task_type, payload) pair to a `concurrent.futures`
executor and waits at most `timeout` seconds.  A task that overruns is
stopped, not abandoned: the executor's worker processes are terminated and
a fresh executor is built for the next task.  `run_with_fallback` is the
one place that decides between the delegated and the direct branch: any
worker failure, including a timeout, runs the direct branch with the same
inputs, so callers get the same result shape either way.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import BrokenExecutor, Executor
from typing import Any, Awaitable, Callable, TypeVar

from engine.errors import WorkerError

logger = logging.getLogger("engine.worker")

T = TypeVar("T")

TaskFn = Callable[[str, dict], Any]


def terminate_executor(executor: Executor) -> None:
    """Stop *executor* now, killing any worker processes mid-task."""
    terminate = getattr(executor, "terminate_workers", None)  # Python 3.14+
    if terminate is not None:
        terminate()
        return
    processes = getattr(executor, "_processes", None) or {}
    for process in list(processes.values()):
        if process.is_alive():
            process.terminate()
    executor.shutdown(wait=False, cancel_futures=True)


class WorkerPool:
    def __init__(self, executor_factory: Callable[[], Executor], task_fn: TaskFn) -> None:
        # task_fn must be picklable when the executor is a process pool
        self.executor_factory = executor_factory
        self.task_fn = task_fn
        self._executor: Executor | None = None
        self._closed = False
        self._lock = threading.Lock()

    def _current(self) -> Executor:
        with self._lock:
            if self._closed:
                raise WorkerError("worker pool unavailable: shut down")
            if self._executor is None:
                self._executor = self.executor_factory()
            return self._executor

    def _discard(self, executor: Executor) -> None:
        with self._lock:
            if self._executor is executor:
                self._executor = None
        terminate_executor(executor)

    async def execute_task(self, task_type: str, payload: dict, timeout: float) -> Any:
        """Run one task in the pool; raises WorkerError on failure or timeout."""
        loop = asyncio.get_running_loop()
        executor = self._current()
        try:
            future = loop.run_in_executor(executor, self.task_fn, task_type, payload)
        except RuntimeError as exc:  # executor already shut down
            raise WorkerError(f"worker pool unavailable: {exc}") from exc
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("%s overran %ss; terminating its workers", task_type, timeout)
            self._discard(executor)
            raise WorkerError(f"{task_type} timed out after {timeout}s") from exc
        except BrokenExecutor as exc:
            self._discard(executor)
            raise WorkerError(f"{task_type} lost its worker: {exc}") from exc
        except Exception as exc:
            raise WorkerError(f"{task_type} failed in worker: {exc}") from exc

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=False, cancel_futures=True)


async def run_with_fallback(
    delegate: Callable[[], Awaitable[T]] | None,
    direct: Callable[[], Awaitable[T]],
    label: str = "task",
) -> tuple[T, str]:
    """Return (result, "worker") or, after any worker failure, (result, "direct")."""
    if delegate is not None:
        try:
            return await delegate(), "worker"
        except Exception as exc:
            logger.warning("%s: worker path failed, running in-process: %s", label, exc)
    return await direct(), "direct"
