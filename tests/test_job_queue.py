"""
Tests for the bounded job queue.
"""

import queue
import threading
import time

import pytest

from pikotunnel.core.job_queue import Job, JobKind, JobQueue


def test_fifo_per_producer():
    q = JobQueue(maxsize=10)
    jobs = [Job.peer("a"), Job.access_rule("r1"), Job.peer("b")]
    for job in jobs:
        q.put(job)
    assert [q.get(timeout=0.1) for _ in jobs] == jobs


def test_job_constructors():
    assert Job.peer("x") == Job(JobKind.PEER, "x")
    assert Job.access_rule("y").kind is JobKind.ACCESS_RULE


def test_put_blocks_when_full_until_consumed():
    q = JobQueue(maxsize=1)
    q.put(Job.peer("first"))
    done = threading.Event()

    def producer():
        q.put(Job.peer("second"))
        done.set()

    t = threading.Thread(target=producer, daemon=True)
    t.start()
    assert not done.wait(0.2)

    assert q.get(timeout=0.1) == Job.peer("first")
    assert done.wait(2)
    assert q.get(timeout=0.1) == Job.peer("second")


def test_put_with_timeout_raises_full():
    q = JobQueue(maxsize=1)
    q.put(Job.peer("a"))
    with pytest.raises(queue.Full):
        q.put(Job.peer("b"), timeout=0.05)


def test_close_drains_backlog_then_returns_none():
    q = JobQueue(maxsize=5)
    q.put(Job.peer("a"))
    q.close()
    assert q.get() == Job.peer("a")
    assert q.get() is None
    assert q.get() is None


def test_put_after_close_is_rejected():
    q = JobQueue()
    q.close()
    with pytest.raises(RuntimeError):
        q.put(Job.peer("a"))


def test_close_on_full_queue_still_terminates_consumer():
    q = JobQueue(maxsize=1)
    q.put(Job.peer("a"))
    q.close()
    assert q.get() == Job.peer("a")
    start = time.monotonic()
    assert q.get() is None
    assert time.monotonic() - start < 2


def test_close_wakes_blocked_consumer():
    q = JobQueue(maxsize=2)
    results = []
    t = threading.Thread(target=lambda: results.append(q.get()), daemon=True)
    t.start()
    time.sleep(0.1)
    q.close()
    t.join(2)
    assert results == [None]


def test_get_nowait_on_empty_queue():
    assert JobQueue().get_nowait() is None


def test_invalid_maxsize():
    with pytest.raises(ValueError):
        JobQueue(maxsize=0)
