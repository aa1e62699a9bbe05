"""In-memory queue applying DNS mutations one at a time with bounded retries."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque

from .cloudflare import DNSProvider
from .models import ReconciliationTask, TaskKind, TaskStatus

logger = logging.getLogger(__name__)

BACKOFF_FIXED = "fixed"
BACKOFF_EXPONENTIAL = "exponential"


class TaskQueue:
    """FIFO queue of ReconciliationTasks drained sequentially against a provider.

    Tasks are process-local. A task that keeps failing is dropped as FAILED
    after ``max_attempts`` tries and reported in the log only; callers of
    ``enqueue`` are never notified.
    """

    def __init__(
        self,
        provider: DNSProvider,
        *,
        max_attempts: int = 3,
        retry_delay: float = 5.0,
        backoff: str = BACKOFF_FIXED,
        clock: Callable[[], float] = time.monotonic,
    ):
        if backoff not in (BACKOFF_FIXED, BACKOFF_EXPONENTIAL):
            raise ValueError(f"Unknown retry backoff '{backoff}'")
        self.provider = provider
        self.max_attempts = max(1, int(max_attempts))
        self.retry_delay = max(0.0, float(retry_delay))
        self.backoff = backoff
        self._clock = clock
        self._queue: Deque[ReconciliationTask] = deque()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queue)

    def enqueue(self, task: ReconciliationTask) -> None:
        task.max_attempts = self.max_attempts
        task.status = TaskStatus.PENDING
        with self._lock:
            self._queue.append(task)
        logger.debug(f"Queued task {task.id}: {task.describe()}")

    def drain(self) -> int:
        """Process every task queued at call time once. Returns how many ran.

        Tasks enqueued while draining wait for the next pass.
        """
        with self._lock:
            pending = len(self._queue)

        processed = 0
        for _ in range(pending):
            with self._lock:
                if not self._queue:
                    break
                task = self._queue.popleft()

            if task.not_before > self._clock():
                with self._lock:
                    self._queue.append(task)
                continue

            self._process(task)
            processed += 1

        return processed

    def _process(self, task: ReconciliationTask) -> None:
        task.status = TaskStatus.IN_PROGRESS
        logger.debug(f"Processing task {task.id} (attempt {task.attempts + 1}/{task.max_attempts})")

        try:
            self._apply(task)
        except Exception as e:
            task.attempts += 1
            task.last_error = str(e)
            if task.attempts >= task.max_attempts:
                task.status = TaskStatus.FAILED
                logger.error(
                    f"Task {task.id} failed after {task.attempts} attempts, giving up: "
                    f"{task.describe()} payload={task.payload} error={e}"
                )
                return

            task.status = TaskStatus.PENDING
            delay = self._delay_for(task.attempts)
            task.not_before = self._clock() + delay
            logger.warning(
                f"Task {task.id} failed (attempt {task.attempts}/{task.max_attempts}), "
                f"retrying in {delay:g}s: {e}"
            )
            with self._lock:
                self._queue.append(task)
            return

        task.status = TaskStatus.COMPLETED
        logger.info(f"Completed task {task.id}: {task.describe()}")

    def _apply(self, task: ReconciliationTask) -> None:
        record = task.payload.to_record()
        if task.kind == TaskKind.CREATE:
            self.provider.create_record(record)
        else:
            self.provider.update_record(task.payload.record_id or "", record)

    def _delay_for(self, attempts: int) -> float:
        if self.backoff == BACKOFF_EXPONENTIAL:
            return self.retry_delay * (2 ** (attempts - 1))
        return self.retry_delay

    def run(self, stop_event: threading.Event, interval: float) -> None:
        """Drain every ``interval`` seconds until ``stop_event`` is set."""
        logger.info(f"Task worker started (interval {interval:g}s)")
        while not stop_event.wait(max(0.1, interval)):
            try:
                self.drain()
            except Exception as e:
                logger.error(f"Task worker pass failed: {e}", exc_info=True)
        logger.info("Task worker stopped")
