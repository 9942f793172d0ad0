"""
Common utilities for Celery tasks.
"""
import asyncio
import functools
import logging
import time
from typing import Any

logger = logging.getLogger(__name__)


def run_task_with_new_loop(func):
    """
    Decorator for Celery tasks written as coroutines.
    Each invocation gets a fresh event loop that is closed afterwards.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        loop.set_debug(False)

        try:
            return loop.run_until_complete(func(*args, **kwargs))
        finally:
            try:
                pending = [task for task in asyncio.all_tasks(loop) if not task.done()]
                for task in pending:
                    task.cancel()
                if pending:
                    loop.run_until_complete(
                        asyncio.wait_for(asyncio.gather(*pending, return_exceptions=True), timeout=5.0)
                    )
            except (asyncio.TimeoutError, RuntimeError) as e:
                logger.warning(f"Error cleaning up tasks: {e}")
            loop.close()
            asyncio.set_event_loop(None)

    return wrapper


class TaskMetrics:
    """
    Tracks counters and duration of one task run and logs them on exit.

    Usage:
        with TaskMetrics("refresh_all_devices") as metrics:
            metrics.increment("processed")
            metrics.increment("errors")
    """

    def __init__(self, task_name: str):
        self.task_name = task_name
        self.start_time = None
        self.metrics = {
            "processed": 0,
            "errors": 0,
        }

    def __enter__(self):
        self.start_time = time.time()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        self.metrics["duration"] = round(duration, 3)

        metric_strs = ", ".join(f"{k}={v}" for k, v in self.metrics.items())
        if exc_type:
            logger.error(f"Task {self.task_name} failed after {duration:.3f}s: {exc_val} | {metric_strs}")
        else:
            logger.info(f"Task {self.task_name} completed in {duration:.3f}s | {metric_strs}")

        return False  # Don't suppress exceptions

    def increment(self, metric: str, value: int = 1):
        self.metrics[metric] = self.metrics.get(metric, 0) + value

    def set(self, metric: str, value: Any):
        self.metrics[metric] = value
