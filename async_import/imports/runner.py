"""Thread pool that executes accepted import jobs off the request path."""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor


class ImportRunner:
    """Small wrapper around :class:`ThreadPoolExecutor`.

    There is no cancellation here: aborting a job rolls back its transaction
    and the worker ends on its own once the engine notices. A job aborted
    while still queued finishes immediately and its worker returns at once.
    """

    Worker = Callable[[], object]

    def __init__(self, max_workers: int = 4):
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="import-job"
        )

    def submit(self, fn: Worker) -> Future:
        """Schedule ``fn``; raises ``RuntimeError`` once the runner is shut down."""

        return self.executor.submit(fn)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
