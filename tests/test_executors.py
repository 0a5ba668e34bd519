"""
Tests for pipeline/executors.py: caller-runs backpressure.
"""

import threading

import pytest

from pipeline.executors import CallerRunsExecutor


class TestCallerRunsExecutor:

    def test_runs_in_pool_when_free(self):
        with CallerRunsExecutor(max_workers=2, queue_size=2, thread_name_prefix="t") as pool:
            name = pool.submit(lambda: threading.current_thread().name).result(timeout=5)
        assert name.startswith("t")

    def test_saturated_pool_runs_on_caller(self):
        """With every slot taken the submitting thread does the work itself."""
        release = threading.Event()
        pool = CallerRunsExecutor(max_workers=1, queue_size=0)
        try:
            blocker = pool.submit(release.wait, 5)
            inline = pool.submit(threading.get_ident)
            assert inline.done()
            assert inline.result() == threading.get_ident()
        finally:
            release.set()
            blocker.result(timeout=5)
            pool.shutdown()

    def test_inline_exception_captured(self):
        release = threading.Event()
        pool = CallerRunsExecutor(max_workers=1, queue_size=0)
        try:
            pool.submit(release.wait, 5)
            future = pool.submit(lambda: 1 / 0)
            with pytest.raises(ZeroDivisionError):
                future.result()
        finally:
            release.set()
            pool.shutdown()

    def test_submit_after_shutdown(self):
        pool = CallerRunsExecutor(max_workers=1)
        pool.shutdown()
        assert not pool.running
        with pytest.raises(RuntimeError):
            pool.submit(print)

    def test_results_keep_submission_order(self):
        with CallerRunsExecutor(max_workers=4, queue_size=1) as pool:
            futures = [pool.submit(lambda i=i: i * i) for i in range(50)]
            assert [f.result(timeout=5) for f in futures] == [i * i for i in range(50)]
