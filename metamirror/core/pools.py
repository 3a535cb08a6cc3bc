from __future__ import annotations
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List

from metamirror.core.workflow import TaskResult, TaskStatus

log = logging.getLogger(__name__)


class PhasePool:
    """Bounded worker pool whose submitted tasks are joined as one barrier.

    Every callable returns a TaskResult. An exception escaping a task is
    turned into a FATAL result so sibling tasks always run to completion.
    """

    def __init__(self, name: str, max_workers: int):
        self.name = name
        self.max_workers = max(1, max_workers)
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=name)
        self._futures: Dict[Future, str] = {}

    def submit(self, subject: str, fn: Callable[[], TaskResult]) -> Future:
        future = self._executor.submit(fn)
        self._futures[future] = subject
        return future

    def join(self) -> List[TaskResult]:
        """Wait for every submitted task and return their results."""
        done, _ = wait(list(self._futures))
        results: List[TaskResult] = []
        for future in done:
            subject = self._futures[future]
            try:
                results.append(future.result())
            except Exception as e:
                log.exception("Task %s in pool %s raised", subject, self.name)
                results.append(TaskResult(subject=subject, status=TaskStatus.FATAL, message=str(e)))
        self._futures.clear()
        return results

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "PhasePool":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class CancelToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def phase_failed(results: List[TaskResult]) -> bool:
    return any(r.status in (TaskStatus.ERROR, TaskStatus.FATAL) for r in results)
