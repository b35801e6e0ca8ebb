# pikotunnel/core/job_queue.py
"""
Bounded job queue between producers (API, bootstrap) and the convergence worker
"""

import enum
import queue
import threading
from dataclasses import dataclass
from typing import Optional

# How often a blocked consumer re-checks for close()
_POLL_INTERVAL = 0.5


class JobKind(str, enum.Enum):
    PEER = "peer"
    ACCESS_RULE = "access_rule"


@dataclass(frozen=True)
class Job:
    """
    A unit of convergence work

    Carries only the entity id: the worker re-reads the current status
    when it picks the job up.
    """
    kind: JobKind
    id: str

    @classmethod
    def peer(cls, peer_id: str) -> "Job":
        return cls(JobKind.PEER, peer_id)

    @classmethod
    def access_rule(cls, rule_id: str) -> "Job":
        return cls(JobKind.ACCESS_RULE, rule_id)


_CLOSED = object()


class JobQueue:
    """
    FIFO of jobs with a fixed capacity, drained by a single consumer

    put() blocks while the queue is full, throttling producers instead of
    dropping work. Order is kept per producer; producers interleave freely.
    The queue is not durable: the store's statuses are what survive a restart.
    """

    def __init__(self, maxsize: int = 1024):
        if maxsize < 1:
            raise ValueError("maxsize must be at least 1")
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def qsize(self) -> int:
        return self._queue.qsize()

    def empty(self) -> bool:
        return self._queue.empty()

    def put(self, job: Job, timeout: Optional[float] = None) -> None:
        """
        Enqueue a job, blocking while the queue is full

        Raises:
            RuntimeError: If the queue was closed
            queue.Full: If timeout elapsed with the queue still full
        """
        if self.closed:
            raise RuntimeError("job queue is closed")
        self._queue.put(job, timeout=timeout)

    def get(self, timeout: Optional[float] = None) -> Optional[Job]:
        """
        Dequeue the next job, blocking until one is available

        Returns:
            The job, or None once the queue is closed and drained
            (or when timeout elapsed)
        """
        while True:
            if self.closed and self._queue.empty():
                return None
            try:
                item = self._queue.get(timeout=_POLL_INTERVAL if timeout is None else timeout)
            except queue.Empty:
                if timeout is None:
                    continue
                return None
            if item is _CLOSED:
                self._queue.task_done()
                return None
            return item

    def get_nowait(self) -> Optional[Job]:
        try:
            item = self._queue.get_nowait()
        except queue.Empty:
            return None
        if item is _CLOSED:
            self._queue.task_done()
            return None
        return item

    def task_done(self) -> None:
        self._queue.task_done()

    def join(self) -> None:
        """Block until every enqueued job has been processed"""
        self._queue.join()

    def close(self) -> None:
        """Stop accepting jobs; the consumer finishes the backlog, then get() returns None"""
        if self.closed:
            return
        self._closed.set()
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            # get() notices the closed flag once the backlog is gone
            pass
