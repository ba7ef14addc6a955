"""Redis-backed priority + delay job store.

Same semantics as the in-memory store, persisted across application restarts.

Data structures in Redis (``p`` = ``<key_prefix>:<queue_name>``):
 1. Hash  p:job:<id>   - job record fields (data/backoff JSON encoded)
 2. ZSet  p:waiting    - score = priority * 10^12 + seq (lowest first, FIFO within priority)
 3. ZSet  p:delayed    - score = ready_at_ts, jobs waiting out a retry backoff
 4. ZSet  p:active     - score = processed_at_ts
 5. List  p:completed / p:failed - job ids, newest first, trimmed to retention
 6. Str   p:id / p:seq - counters for generated job ids and FIFO sequence

On take:
  - Promote delayed jobs whose ready_at <= now back into waiting.
  - ZPOPMIN from waiting and mark the job active.

Redis errors are raised as QueueBackendError; the caller decides what to do.
Mutations are serialized by a process-local lock only (single orchestrator
instance).
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Optional

import redis

from app.config import QUEUE_SETTINGS
from app.jobs.job import (
    BackoffOptions,
    JobHandle,
    JobRecord,
    JobState,
    QueueBackendError,
    StoreEnqueueOptions,
    dedup_replaces,
)
from app.utils import get_logger
from app.utils.backoff import compute_backoff_ms

logger = get_logger(__name__)

_PRIORITY_SCALE = 10 ** 12


def _decode(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return str(value)


def _safe_int(value: Any) -> int:
    """Convert a Redis reply (int, bytes, str, None) to int."""
    if value is None:
        return 0
    try:
        return int(_decode(value) or 0)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to convert {type(value)} to int", error=str(e))
        return 0


def _opt_float(value: Optional[str]) -> Optional[float]:
    return float(value) if value not in (None, "") else None


class RedisJobStore:
    def __init__(self, client: Optional[redis.Redis] = None) -> None:
        self._key_prefix: str = str(QUEUE_SETTINGS.get("key_prefix", "elearning:queue"))
        self._lock = threading.RLock()
        self._client: redis.Redis = client if client is not None else self._build_client()

    @staticmethod
    def _build_client() -> redis.Redis:
        timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        return redis.Redis(
            host=str(QUEUE_SETTINGS.get("redis_host", "localhost")),
            port=int(QUEUE_SETTINGS.get("redis_port", 6379)),  # type: ignore[arg-type]
            db=int(QUEUE_SETTINGS.get("redis_db", 0)),  # type: ignore[arg-type]
            password=QUEUE_SETTINGS.get("redis_password") or None,  # type: ignore[arg-type]
            ssl=bool(QUEUE_SETTINGS.get("redis_tls", False)),
            socket_connect_timeout=timeout,
            decode_responses=True,
        )

    # ----------------------------- keys ----------------------------- #
    def _k(self, queue_name: str, suffix: str) -> str:
        return f"{self._key_prefix}:{queue_name}:{suffix}"

    def _job_key(self, queue_name: str, job_id: str) -> str:
        return self._k(queue_name, f"job:{job_id}")

    # ----------------------------- serialization ----------------------------- #
    def _serialize(self, job: JobRecord) -> dict[str, str]:
        return {
            "id": job.id,
            "queue": job.queue,
            "name": job.name,
            "data": json.dumps(job.data),
            "priority": str(job.priority),
            "attempts": str(job.attempts),
            "attempts_made": str(job.attempts_made),
            "backoff": json.dumps({"type": job.backoff.type, "delay": job.backoff.delay}),
            "remove_on_complete": str(job.remove_on_complete),
            "remove_on_fail": str(job.remove_on_fail),
            "state": job.state.value,
            "seq": str(job.seq),
            "enqueued_at": str(job.enqueued_at),
            "ready_at": str(job.ready_at),
            "processed_at": "" if job.processed_at is None else str(job.processed_at),
            "finished_at": "" if job.finished_at is None else str(job.finished_at),
            "failed_reason": job.failed_reason or "",
        }

    def _deserialize(self, raw: dict[Any, Any]) -> JobRecord:
        fields = {_decode(k): _decode(v) for k, v in raw.items()}
        backoff = json.loads(fields.get("backoff") or "{}")
        return JobRecord(
            id=fields["id"] or "",
            queue=fields["queue"] or "",
            name=fields["name"] or "",
            data=json.loads(fields.get("data") or "{}"),
            priority=_safe_int(fields.get("priority")),
            attempts=_safe_int(fields.get("attempts")),
            backoff=BackoffOptions(type=backoff.get("type", "exponential"), delay=int(backoff.get("delay", 0))),
            remove_on_complete=_safe_int(fields.get("remove_on_complete")),
            remove_on_fail=_safe_int(fields.get("remove_on_fail")),
            state=JobState(fields.get("state") or JobState.WAITING.value),
            attempts_made=_safe_int(fields.get("attempts_made")),
            seq=_safe_int(fields.get("seq")),
            enqueued_at=_opt_float(fields.get("enqueued_at")) or 0.0,
            ready_at=_opt_float(fields.get("ready_at")) or 0.0,
            processed_at=_opt_float(fields.get("processed_at")),
            finished_at=_opt_float(fields.get("finished_at")),
            failed_reason=fields.get("failed_reason") or None,
        )

    def _load(self, queue_name: str, job_id: str) -> Optional[JobRecord]:
        raw = self._client.hgetall(self._job_key(queue_name, job_id))
        if not raw:
            return None
        return self._deserialize(raw)

    def _save(self, job: JobRecord) -> None:
        self._client.hset(self._job_key(job.queue, job.id), mapping=self._serialize(job))

    def _trim(self, queue_name: str, list_key: str, keep: int) -> None:
        keep = max(keep, 0)
        overflow = self._client.lrange(list_key, keep, -1)
        for old_id in overflow or []:
            self._client.delete(self._job_key(queue_name, _decode(old_id) or ""))
        if keep == 0:
            self._client.delete(list_key)
        else:
            self._client.ltrim(list_key, 0, keep - 1)

    # ----------------------------- health ----------------------------- #
    def health_check(self) -> bool:
        try:
            return bool(self._client.ping())
        except (redis.RedisError, ConnectionError) as e:
            logger.warning("Redis health check failed", error=str(e))
            return False

    # ----------------------------- enqueue side ----------------------------- #
    def enqueue(self, queue_name: str, job_name: str, payload: dict[str, Any], options: StoreEnqueueOptions) -> JobHandle:
        with self._lock:
            try:
                if options.job_id is not None:
                    existing = self._load(queue_name, options.job_id)
                    if existing is not None:
                        if not dedup_replaces(existing.state):
                            logger.info(
                                "Duplicate job ignored",
                                queue=queue_name,
                                job_id=existing.id,
                                state=existing.state.value,
                            )
                            return existing.handle(duplicate=True)
                        self._client.lrem(self._k(queue_name, "completed"), 0, existing.id)
                        self._client.lrem(self._k(queue_name, "failed"), 0, existing.id)
                        self._client.delete(self._job_key(queue_name, existing.id))
                    job_id = options.job_id
                else:
                    job_id = str(_safe_int(self._client.incr(self._k(queue_name, "id"))))

                now_ts = time.time()
                job = JobRecord(
                    id=job_id,
                    queue=queue_name,
                    name=job_name,
                    data=dict(payload),
                    priority=options.priority,
                    attempts=max(1, options.attempts),
                    backoff=options.backoff,
                    remove_on_complete=options.remove_on_complete,
                    remove_on_fail=options.remove_on_fail,
                    seq=_safe_int(self._client.incr(self._k(queue_name, "seq"))),
                    enqueued_at=now_ts,
                    ready_at=now_ts,
                )
                self._save(job)
                self._client.zadd(self._k(queue_name, "waiting"), {job_id: job.priority * _PRIORITY_SCALE + job.seq})
                return job.handle()
            except redis.RedisError as e:
                logger.error("Redis error during enqueue", queue=queue_name, error=str(e))
                raise QueueBackendError(f"Failed to enqueue job on '{queue_name}': {e}") from e

    # ----------------------------- worker side ----------------------------- #
    def _promote_delayed(self, queue_name: str) -> None:
        due = self._client.zrangebyscore(self._k(queue_name, "delayed"), 0, time.time())
        for raw_id in due or []:
            job_id = _decode(raw_id) or ""
            self._client.zrem(self._k(queue_name, "delayed"), job_id)
            job = self._load(queue_name, job_id)
            if job is None:
                continue
            job.state = JobState.WAITING
            self._save(job)
            self._client.zadd(self._k(queue_name, "waiting"), {job_id: job.priority * _PRIORITY_SCALE + job.seq})
        if due:
            logger.debug("Promoted delayed jobs to waiting", queue=queue_name, count=len(due))

    def take(self, queue_name: str) -> Optional[JobRecord]:
        with self._lock:
            try:
                self._promote_delayed(queue_name)
                while True:
                    popped = self._client.zpopmin(self._k(queue_name, "waiting"), 1)
                    if not popped:
                        return None
                    job_id = _decode(popped[0][0]) or ""
                    job = self._load(queue_name, job_id)
                    if job is None:
                        continue
                    job.state = JobState.ACTIVE
                    job.processed_at = time.time()
                    self._save(job)
                    self._client.zadd(self._k(queue_name, "active"), {job_id: job.processed_at})
                    return job
            except redis.RedisError as e:
                raise QueueBackendError(f"Failed to take job from '{queue_name}': {e}") from e

    def _require_active(self, queue_name: str, job_id: str) -> JobRecord:
        job = self._load(queue_name, job_id)
        if job is None or job.state is not JobState.ACTIVE:
            raise ValueError(f"Job '{job_id}' is not active in queue '{queue_name}'")
        return job

    def complete(self, queue_name: str, job_id: str) -> JobRecord:
        with self._lock:
            try:
                job = self._require_active(queue_name, job_id)
                self._client.zrem(self._k(queue_name, "active"), job_id)
                job.attempts_made += 1
                job.state = JobState.COMPLETED
                job.finished_at = time.time()
                self._save(job)
                completed_key = self._k(queue_name, "completed")
                self._client.lpush(completed_key, job_id)
                self._trim(queue_name, completed_key, job.remove_on_complete)
                return job
            except redis.RedisError as e:
                raise QueueBackendError(f"Failed to complete job '{job_id}': {e}") from e

    def fail(self, queue_name: str, job_id: str, reason: str) -> JobRecord:
        with self._lock:
            try:
                job = self._require_active(queue_name, job_id)
                self._client.zrem(self._k(queue_name, "active"), job_id)
                job.attempts_made += 1
                job.failed_reason = reason
                if job.attempts_made < job.attempts:
                    delay_ms = compute_backoff_ms(job.attempts_made, job.backoff.delay, backoff_type=job.backoff.type)
                    job.state = JobState.DELAYED
                    job.ready_at = time.time() + delay_ms / 1000.0
                    self._save(job)
                    self._client.zadd(self._k(queue_name, "delayed"), {job_id: job.ready_at})
                    logger.info(
                        "Job attempt failed, retry scheduled",
                        queue=queue_name,
                        job_id=job_id,
                        attempts_made=job.attempts_made,
                        delay_ms=delay_ms,
                    )
                    return job
                job.state = JobState.FAILED
                job.finished_at = time.time()
                self._save(job)
                failed_key = self._k(queue_name, "failed")
                self._client.lpush(failed_key, job_id)
                self._trim(queue_name, failed_key, job.remove_on_fail)
                logger.warning("Job failed permanently", queue=queue_name, job_id=job_id, reason=reason)
                return job
            except redis.RedisError as e:
                raise QueueBackendError(f"Failed to record failure of job '{job_id}': {e}") from e

    # ----------------------------- inspection ----------------------------- #
    def get_job(self, queue_name: str, job_id: str) -> Optional[JobRecord]:
        try:
            return self._load(queue_name, job_id)
        except redis.RedisError as e:
            raise QueueBackendError(f"Failed to read job '{job_id}': {e}") from e

    def counts(self, queue_name: str) -> dict[str, int]:
        try:
            return {
                "waiting": _safe_int(self._client.zcard(self._k(queue_name, "waiting"))),
                "delayed": _safe_int(self._client.zcard(self._k(queue_name, "delayed"))),
                "active": _safe_int(self._client.zcard(self._k(queue_name, "active"))),
                "completed": _safe_int(self._client.llen(self._k(queue_name, "completed"))),
                "failed": _safe_int(self._client.llen(self._k(queue_name, "failed"))),
            }
        except redis.RedisError as e:
            logger.error("Error reading queue counts", queue=queue_name, error=str(e))
            raise QueueBackendError(f"Failed to read counts for '{queue_name}': {e}") from e

    def snapshot(self) -> dict:
        return {"backend": "redis", "redis_active": self.health_check(), "key_prefix": self._key_prefix}

    # ----------------------------- test utilities ----------------------------- #
    def purge(self, queue_name: str) -> None:
        """Remove every job of one queue (ids from all state structures)."""
        with self._lock:
            try:
                ids: set[str] = set()
                for suffix in ("waiting", "delayed", "active"):
                    ids.update(_decode(i) or "" for i in self._client.zrange(self._k(queue_name, suffix), 0, -1) or [])
                for suffix in ("completed", "failed"):
                    ids.update(_decode(i) or "" for i in self._client.lrange(self._k(queue_name, suffix), 0, -1) or [])
                for job_id in ids:
                    self._client.delete(self._job_key(queue_name, job_id))
                for suffix in ("waiting", "delayed", "active", "completed", "failed"):
                    self._client.delete(self._k(queue_name, suffix))
                logger.info("Redis queue purged", queue=queue_name, jobs=len(ids))
            except redis.RedisError as e:
                raise QueueBackendError(f"Failed to purge '{queue_name}': {e}") from e


__all__ = ["RedisJobStore"]
