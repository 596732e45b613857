"""Shared job queue between the admission producer and the worker pool.

One condition guards the pending jobs and both lifecycle flags, so a worker
always evaluates "is there work" and "should I stop" against the same snapshot.
Waiters re-check the full predicate after every wakeup, which rules out lost
wakeups when a producer writes between a worker's check and its wait.
"""

import threading
from collections import deque
from typing import Deque, Union
from ffpack.domain.models import Job, WorkerExitReason


class JobQueue:
    """FIFO of pending jobs plus `cancel_requested` and `admission_done` flags.

    Both flags are monotonic. The condition uses a reentrant lock so `cancel()`
    may run from a signal handler that interrupted the main thread while it was
    inside `put()`.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.RLock())
        self._jobs: Deque[Job] = deque()
        self._cancel_requested = False
        self._admission_done = False

    def put(self, job: Job) -> None:
        with self._cond:
            self._jobs.append(job)
            self._cond.notify()

    def take(self) -> Union[Job, WorkerExitReason]:
        """Blocks until a job is available or the run is over.

        Returns the head job, or the reason the caller must stop: CANCELLED once
        cancellation was requested, DRAINED once admission is done and the queue
        is empty. The reason is decided under the same lock as the job check.
        """
        with self._cond:
            while True:
                if self._cancel_requested:
                    return WorkerExitReason.CANCELLED
                if self._jobs:
                    return self._jobs.popleft()
                if self._admission_done:
                    return WorkerExitReason.DRAINED
                self._cond.wait()

    def finish_admission(self) -> bool:
        """Marks admission done and wakes every worker. Returns False if already done."""
        with self._cond:
            if self._admission_done:
                return False
            self._admission_done = True
            self._cond.notify_all()
            return True

    def cancel(self) -> bool:
        """Requests cancellation and wakes every worker. Returns False if already cancelled."""
        with self._cond:
            if self._cancel_requested:
                return False
            self._cancel_requested = True
            self._cond.notify_all()
            return True

    @property
    def cancel_requested(self) -> bool:
        with self._cond:
            return self._cancel_requested

    @property
    def admission_done(self) -> bool:
        with self._cond:
            return self._admission_done

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._jobs)
