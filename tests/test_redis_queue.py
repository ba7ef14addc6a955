"""Tests for the Redis job store against a dict-backed fake client.

A real server is used instead when USE_REAL_REDIS is set:
    export USE_REAL_REDIS=true
    pytest tests/test_redis_queue.py
"""
import os
import secrets
from unittest.mock import MagicMock, patch

import pytest
import redis

from app.config import QUEUE_SETTINGS
from app.jobs.job import BackoffOptions, JobState, QueueBackendError, StoreEnqueueOptions
from app.jobs.redis_queue import RedisJobStore
from fake_redis import FakeRedis

USE_REAL_REDIS = os.environ.get("USE_REAL_REDIS", "").lower() in ("true", "1", "yes")

Q = "embedding-generation"


def _opts(priority=5, job_id=None, attempts=1, delay=0, keep_completed=100, keep_failed=100):
    return StoreEnqueueOptions(
        priority=priority,
        job_id=job_id,
        attempts=attempts,
        backoff=BackoffOptions(type="exponential", delay=delay),
        remove_on_complete=keep_completed,
        remove_on_fail=keep_failed,
    )


@pytest.fixture
def store(monkeypatch):
    if USE_REAL_REDIS:
        monkeypatch.setitem(QUEUE_SETTINGS, "key_prefix", f"test:{secrets.token_hex(4)}")
        real = RedisJobStore()
        if not real.health_check():
            pytest.skip("Real Redis requested but not reachable")
        yield real
        real.purge(Q)
    else:
        yield RedisJobStore(client=FakeRedis())


def test_enqueue_and_take_in_priority_order(store):
    low = store.enqueue(Q, "generate-embedding", {"courseId": 1}, _opts(priority=10))
    high = store.enqueue(Q, "generate-embedding", {"courseId": 2}, _opts(priority=1))
    normal = store.enqueue(Q, "generate-embedding", {"courseId": 3}, _opts(priority=5))

    assert store.counts(Q)["waiting"] == 3
    taken = [store.take(Q) for _ in range(3)]
    assert [j.id for j in taken] == [high.id, normal.id, low.id]
    assert taken[0].data == {"courseId": 2}
    assert taken[0].state is JobState.ACTIVE
    assert store.take(Q) is None
    assert store.counts(Q)["active"] == 3


def test_job_record_round_trips_policy_fields(store):
    store.enqueue(Q, "generate-embedding", {"courseId": 42}, _opts(priority=1, job_id="course-42", attempts=3, delay=5000, keep_completed=50))
    job = store.get_job(Q, "course-42")
    assert job.name == "generate-embedding"
    assert job.priority == 1
    assert job.attempts == 3
    assert job.backoff.type == "exponential"
    assert job.backoff.delay == 5000
    assert job.remove_on_complete == 50


def test_dedup_ignores_pending_and_replaces_failed(store):
    first = store.enqueue(Q, "generate-embedding", {"v": 1}, _opts(job_id="course-7"))
    dup = store.enqueue(Q, "generate-embedding", {"v": 2}, _opts(job_id="course-7"))
    assert dup.duplicate is True and dup.id == first.id
    assert store.counts(Q)["waiting"] == 1

    store.take(Q)
    store.fail(Q, "course-7", "model unavailable")
    assert store.counts(Q)["failed"] == 1

    replaced = store.enqueue(Q, "generate-embedding", {"v": 3}, _opts(job_id="course-7"))
    assert replaced.duplicate is False
    assert store.counts(Q)["failed"] == 0
    assert store.get_job(Q, "course-7").data == {"v": 3}


def test_fail_schedules_retry_then_fails_permanently(store):
    store.enqueue(Q, "generate-embedding", {}, _opts(job_id="j", attempts=2, delay=0))
    store.take(Q)
    job = store.fail(Q, "j", "timeout")
    assert job.state is JobState.DELAYED
    assert store.counts(Q)["delayed"] == 1

    retried = store.take(Q)
    assert retried.id == "j"
    assert retried.attempts_made == 1
    job = store.fail(Q, "j", "timeout")
    assert job.state is JobState.FAILED
    counts = store.counts(Q)
    assert counts["failed"] == 1 and counts["delayed"] == 0 and counts["active"] == 0


def test_completed_retention_trims_old_records(store):
    for i in range(4):
        store.enqueue(Q, "generate-embedding", {"i": i}, _opts(keep_completed=2))
    ids = []
    for _ in range(4):
        job = store.take(Q)
        ids.append(job.id)
        store.complete(Q, job.id)
    assert store.counts(Q)["completed"] == 2
    assert store.get_job(Q, ids[0]) is None
    assert store.get_job(Q, ids[-1]).state is JobState.COMPLETED


def test_zero_retention_drops_finished_records(store):
    store.enqueue(Q, "generate-embedding", {}, _opts(job_id="gone", keep_completed=0))
    store.take(Q)
    store.complete(Q, "gone")
    assert store.counts(Q)["completed"] == 0
    assert store.get_job(Q, "gone") is None


def test_purge_removes_everything(store):
    store.enqueue(Q, "generate-embedding", {}, _opts())
    store.enqueue(Q, "generate-embedding", {}, _opts())
    store.take(Q)
    store.purge(Q)
    assert store.counts(Q) == {"waiting": 0, "delayed": 0, "active": 0, "completed": 0, "failed": 0}


def test_redis_error_on_enqueue_raises_backend_error():
    client = MagicMock()
    client.incr.side_effect = redis.ConnectionError("connection refused")
    store = RedisJobStore(client=client)
    with pytest.raises(QueueBackendError):
        store.enqueue(Q, "generate-embedding", {}, _opts())


def test_redis_error_on_counts_raises_backend_error():
    client = MagicMock()
    client.zcard.side_effect = redis.TimeoutError("timed out")
    store = RedisJobStore(client=client)
    with pytest.raises(QueueBackendError):
        store.counts(Q)


def test_health_check_reports_unreachable_server():
    client = MagicMock()
    client.ping.side_effect = redis.ConnectionError("down")
    assert RedisJobStore(client=client).health_check() is False
    assert RedisJobStore(client=FakeRedis()).health_check() is True


def test_client_built_from_settings(monkeypatch):
    monkeypatch.setitem(QUEUE_SETTINGS, "redis_host", "cache.internal")
    monkeypatch.setitem(QUEUE_SETTINGS, "redis_port", 6380)
    monkeypatch.setitem(QUEUE_SETTINGS, "redis_password", "secret")
    monkeypatch.setitem(QUEUE_SETTINGS, "redis_tls", True)
    with patch("redis.Redis") as redis_cls:
        RedisJobStore()
    kwargs = redis_cls.call_args.kwargs
    assert kwargs["host"] == "cache.internal"
    assert kwargs["port"] == 6380
    assert kwargs["password"] == "secret"
    assert kwargs["ssl"] is True
    assert kwargs["decode_responses"] is True
