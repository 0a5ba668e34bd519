"""
Bounded thread pool with caller-runs backpressure.

Submissions beyond max_workers + queue_size in-flight tasks are executed on
the submitting thread instead of queueing without bound.
"""

import os
import threading
from concurrent.futures import Future, ThreadPoolExecutor


def default_workers():
    return os.cpu_count() or 1


class CallerRunsExecutor:

    def __init__(self, max_workers=None, queue_size=1000, thread_name_prefix=""):
        self.max_workers = max_workers or default_workers()
        self.queue_size = queue_size
        self._pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=thread_name_prefix
        )
        self._slots = threading.BoundedSemaphore(self.max_workers + queue_size)
        self._shutdown = False

    def submit(self, fn, *args, **kwargs):
        if self._shutdown:
            raise RuntimeError("cannot schedule new futures after shutdown")

        if not self._slots.acquire(blocking=False):
            return self._run_inline(fn, *args, **kwargs)

        try:
            future = self._pool.submit(fn, *args, **kwargs)
        except BaseException:
            self._slots.release()
            raise
        future.add_done_callback(self._release_slot)
        return future

    def _release_slot(self, _future):
        self._slots.release()

    @staticmethod
    def _run_inline(fn, *args, **kwargs):
        future = Future()
        future.set_running_or_notify_cancel()
        try:
            result = fn(*args, **kwargs)
        except BaseException as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)
        return future

    @property
    def running(self):
        return not self._shutdown

    def shutdown(self, wait=True, cancel_futures=False):
        self._shutdown = True
        self._pool.shutdown(wait=wait, cancel_futures=cancel_futures)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.shutdown(wait=True)
        return False
