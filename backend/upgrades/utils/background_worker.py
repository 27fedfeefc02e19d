"""Out-of-band retry queue for idempotent store repairs.

Only jobs that are safe to repeat may be queued here: the reconciliation
store step re-checks its own guard on every attempt.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict, deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="store-retry")
_tasks: Dict[str, Future] = {}
# Recently finished jobs stay joinable until evicted
_finished: "OrderedDict[str, Future]" = OrderedDict()
FINISHED_KEEP = 100
_lock = threading.Lock()
# Jobs that exhausted their retries, kept for manual reconciliation.
# Each entry: (job name, args, kwargs, exception)
dead_letter_queue: deque[Tuple[str, tuple, dict, Exception]] = deque(maxlen=500)


def _run_with_retry(
    func: Callable[..., Any], *args: Any, retries: int = 3, backoff: float = 2.0, **kwargs: Any
) -> Any:
    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, retries + 1):
        try:
            result = func(*args, **kwargs)
            if attempt > 1:
                logger.info("Retry job %s succeeded on attempt %s", name, attempt)
            return result
        except Exception as exc:
            logger.error("Retry job %s failed on attempt %s/%s: %s", name, attempt, retries, exc)
            if attempt == retries:
                dead_letter_queue.append((name, args, kwargs, exc))
                logger.critical("Retry job %s dead-lettered args=%s", name, args)
                raise
            time.sleep(backoff * attempt)


def _retire(task_id: str) -> None:
    with _lock:
        future = _tasks.pop(task_id, None)
        if future is None:
            return
        _finished[task_id] = future
        while len(_finished) > FINISHED_KEEP:
            _finished.popitem(last=False)


def enqueue(
    func: Callable[..., Any], *args: Any, retries: int = 3, backoff: float = 2.0, **kwargs: Any
) -> str:
    """Submit ``func`` for retried execution and return a job id."""
    task_id = uuid.uuid4().hex
    future = _executor.submit(
        _run_with_retry, func, *args, retries=retries, backoff=backoff, **kwargs
    )
    with _lock:
        _tasks[task_id] = future
    future.add_done_callback(lambda _f: _retire(task_id))
    logger.info("Queued retry job %s id=%s", getattr(func, "__name__", func), task_id)
    return task_id


def wait(task_id: str, timeout: Optional[float] = None) -> Any:
    """Block until ``task_id`` finishes; re-raises the job's final exception."""
    with _lock:
        future = _tasks.get(task_id) or _finished.get(task_id)
    if future is None:
        raise KeyError(task_id)
    try:
        return future.result(timeout=timeout)
    finally:
        if future.done():
            with _lock:
                _finished.pop(task_id, None)
