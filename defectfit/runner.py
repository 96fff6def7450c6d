"""Background execution of the analysis pipeline where the latest call wins."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from functools import partial
from typing import Callable, Optional

from defectfit.logging import get_logger
from defectfit.pipeline import AnalysisResult, run_analysis

log = get_logger(__name__, component="runner")

CompletionCallback = Callable[[Optional[AnalysisResult], Optional[BaseException]], None]


class AnalysisRunner:
    """Runs analyses on a single worker thread.

    Every submission supersedes the previous one: a superseded call that has
    not started is cancelled, and one that has started still runs to the end
    but its outcome is discarded. ``latest_result`` only ever holds a complete
    result from the most recent successful submission, so a failing run
    leaves the previous valid result in place.
    """

    def __init__(self, analyse: Callable = run_analysis) -> None:
        self._analyse = analyse
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="defectfit-analysis")
        self._lock = threading.Lock()
        self._generation = 0
        self._pending: Optional[Future] = None
        self._closed = False
        self.latest_result: Optional[AnalysisResult] = None
        self.latest_error: Optional[BaseException] = None

    @property
    def generation(self) -> int:
        return self._generation

    def submit(self, records, config=None, on_complete: Optional[CompletionCallback] = None) -> Future:
        records = list(records)
        with self._lock:
            self._generation += 1
            generation = self._generation
            if self._pending is not None and self._pending.cancel():
                log.debug("Cancelled queued analysis", extra={"generation": generation - 1})
            future = self._executor.submit(self._run, generation, records, config)
            self._pending = future
        future.add_done_callback(partial(self._finish, generation, on_complete))
        return future

    def _run(self, generation: int, records, config):
        # Runs on the worker: the outcome is published before the future
        # resolves, so callers of ``result()`` see it in ``latest_result``.
        try:
            result = self._analyse(records, config)
        except Exception as e:
            with self._lock:
                if generation == self._generation:
                    self.latest_error = e
                    log.error("Analysis failed", extra={"generation": generation, "error": str(e)})
            raise
        with self._lock:
            if generation == self._generation:
                self.latest_result = result
                self.latest_error = None
            else:
                log.debug("Discarding superseded analysis", extra={"generation": generation})
        return result

    def _finish(self, generation: int, on_complete: Optional[CompletionCallback], future: Future) -> None:
        if future.cancelled() or on_complete is None:
            return
        with self._lock:
            if generation != self._generation:
                return
        error = future.exception()
        on_complete(future.result() if error is None else None, error)

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
            if self._pending is not None:
                self._pending.cancel()
        self._executor.shutdown(wait=wait)

    def __enter__(self) -> "AnalysisRunner":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
