import pytest

from app.jobs.job import BackoffOptions, JobState, StoreEnqueueOptions
from app.jobs.queue import InMemoryJobStore

Q = "hls-transcoding"


def _opts(priority=5, job_id=None, attempts=1, delay=0, keep_completed=100, keep_failed=100):
    return StoreEnqueueOptions(
        priority=priority,
        job_id=job_id,
        attempts=attempts,
        backoff=BackoffOptions(type="exponential", delay=delay),
        remove_on_complete=keep_completed,
        remove_on_fail=keep_failed,
    )


def test_priority_queue_ordering():
    store = InMemoryJobStore()
    low = store.enqueue(Q, "convert-to-hls", {"n": "low"}, _opts(priority=10))
    high = store.enqueue(Q, "convert-to-hls", {"n": "high"}, _opts(priority=1))
    normal_a = store.enqueue(Q, "convert-to-hls", {"n": "a"}, _opts(priority=5))
    normal_b = store.enqueue(Q, "convert-to-hls", {"n": "b"}, _opts(priority=5))

    order = [store.take(Q).id for _ in range(4)]
    assert order == [high.id, normal_a.id, normal_b.id, low.id]
    assert store.take(Q) is None
    assert store.counts(Q)["active"] == 4


def test_generated_ids_are_sequential_per_queue():
    store = InMemoryJobStore()
    first = store.enqueue(Q, "convert-to-hls", {}, _opts())
    second = store.enqueue(Q, "convert-to-hls", {}, _opts())
    other = store.enqueue("video-transcription", "transcribe-video", {}, _opts())
    assert (first.id, second.id, other.id) == ("1", "2", "1")


def test_duplicate_of_waiting_or_active_job_is_ignored():
    store = InMemoryJobStore()
    original = store.enqueue(Q, "convert-to-hls", {"v": 1}, _opts(job_id="lesson-9-hls"))
    dup = store.enqueue(Q, "convert-to-hls", {"v": 2}, _opts(job_id="lesson-9-hls"))
    assert dup.duplicate is True
    assert dup.id == original.id
    assert store.counts(Q)["waiting"] == 1
    assert store.get_job(Q, "lesson-9-hls").data == {"v": 1}

    store.take(Q)
    again = store.enqueue(Q, "convert-to-hls", {"v": 3}, _opts(job_id="lesson-9-hls"))
    assert again.duplicate is True
    assert again.state is JobState.ACTIVE


def test_finished_job_is_replaced_by_new_enqueue():
    store = InMemoryJobStore()
    store.enqueue(Q, "convert-to-hls", {"v": 1}, _opts(job_id="lesson-9-hls"))
    store.take(Q)
    store.fail(Q, "lesson-9-hls", "ffmpeg crashed")
    assert store.counts(Q)["failed"] == 1

    fresh = store.enqueue(Q, "convert-to-hls", {"v": 2}, _opts(job_id="lesson-9-hls"))
    assert fresh.duplicate is False
    assert fresh.state is JobState.WAITING
    counts = store.counts(Q)
    assert counts["failed"] == 0
    assert counts["waiting"] == 1
    assert store.get_job(Q, "lesson-9-hls").data == {"v": 2}


def test_failed_attempt_is_retried_until_attempts_exhausted():
    store = InMemoryJobStore()
    store.enqueue(Q, "convert-to-hls", {}, _opts(job_id="j", attempts=2, delay=0))

    store.take(Q)
    job = store.fail(Q, "j", "boom")
    assert job.state is JobState.DELAYED
    assert job.attempts_made == 1
    assert store.counts(Q)["delayed"] == 1

    # zero backoff: due immediately
    retried = store.take(Q)
    assert retried is not None and retried.id == "j"
    job = store.fail(Q, "j", "boom again")
    assert job.state is JobState.FAILED
    assert job.attempts_made == 2
    assert job.failed_reason == "boom again"
    assert store.counts(Q) == {"waiting": 0, "delayed": 0, "active": 0, "completed": 0, "failed": 1}


def test_retry_waits_out_backoff():
    store = InMemoryJobStore()
    store.enqueue(Q, "convert-to-hls", {}, _opts(job_id="j", attempts=3, delay=5000))
    store.take(Q)
    job = store.fail(Q, "j", "boom")
    assert job.ready_at - job.enqueued_at >= 4.9
    assert store.take(Q) is None


def test_retention_keeps_most_recent_records():
    store = InMemoryJobStore()
    for i in range(5):
        store.enqueue(Q, "convert-to-hls", {"i": i}, _opts(keep_completed=2))
    for _ in range(5):
        job = store.take(Q)
        store.complete(Q, job.id)

    assert store.counts(Q)["completed"] == 2
    assert store.get_job(Q, "1") is None
    assert store.get_job(Q, "5").state is JobState.COMPLETED
    assert store.get_job(Q, "5").attempts_made == 1


def test_capacity_limit_raises_overflow():
    store = InMemoryJobStore(max_in_memory=2)
    store.enqueue(Q, "convert-to-hls", {}, _opts())
    store.enqueue(Q, "convert-to-hls", {}, _opts())
    with pytest.raises(OverflowError):
        store.enqueue(Q, "convert-to-hls", {}, _opts())


def test_complete_requires_active_job():
    store = InMemoryJobStore()
    handle = store.enqueue(Q, "convert-to-hls", {}, _opts())
    with pytest.raises(ValueError):
        store.complete(Q, handle.id)


def test_purge_drops_queue_contents():
    store = InMemoryJobStore()
    store.enqueue(Q, "convert-to-hls", {}, _opts())
    store.purge(Q)
    assert store.counts(Q)["waiting"] == 0
    assert store.snapshot()["backend"] == "memory"
