from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from redis.asyncio import Redis
from redis.exceptions import WatchError

from ..core.errors import InvalidTransitionError, JobNotFoundError
from ..models import Job, JobStatus

log = logging.getLogger(__name__)

JOB_KEY = "deck_job:{}"
JOB_INDEX = "deck_jobs"

# Разрешённые переходы. Из завершённых состояний выхода нет.
_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_hash(job: Job) -> dict[str, str]:
    data = job.model_dump(mode="json", exclude_none=True)
    return {k: str(v) for k, v in data.items()}


class JobStore:
    """
    Задачи в Redis: хэш `deck_job:{id}` на задачу + sorted set `deck_jobs`
    (score = время создания) для списка.

    Каждый переход статуса выполняется как compare-and-set через WATCH/MULTI/EXEC,
    поэтому два воркера не могут одновременно взять одну задачу.
    Клиент Redis должен быть создан с decode_responses=True.
    """

    def __init__(self, redis: Redis, *, ttl_seconds: int | None = None):
        self._redis = redis
        self._ttl = ttl_seconds

    # -----------------------------------------------------------------
    async def create(self, source_filename: str, source_path: str | None = None) -> Job:
        job = Job(
            id=uuid.uuid4().hex,
            source_filename=source_filename,
            source_path=source_path,
            created_at=_now(),
        )
        key = JOB_KEY.format(job.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(key, mapping=_to_hash(job))
            pipe.zadd(JOB_INDEX, {job.id: job.created_at.timestamp()})
            await pipe.execute()
        log.info("Created job %s for %s", job.id, source_filename)
        return job

    async def get(self, job_id: str) -> Job:
        data = await self._redis.hgetall(JOB_KEY.format(job_id))
        if not data:
            raise JobNotFoundError(job_id)
        return Job.model_validate(data)

    async def list_jobs(self, status: JobStatus | None = None, limit: int = 100) -> list[Job]:
        """Последние задачи, новые первыми."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        ids = await self._redis.zrevrange(JOB_INDEX, 0, -1)
        jobs: list[Job] = []
        for job_id in ids:
            data = await self._redis.hgetall(JOB_KEY.format(job_id))
            if not data:
                # Запись истекла по TTL, индекс чистим лениво
                await self._redis.zrem(JOB_INDEX, job_id)
                continue
            job = Job.model_validate(data)
            if status is None or job.status is status:
                jobs.append(job)
                if len(jobs) >= limit:
                    break
        return jobs

    # -----------------------------------------------------------------
    async def _transition(
        self,
        job_id: str,
        target: JobStatus,
        updates: Callable[[Job], dict[str, Any]],
        *,
        lost_race_ok: bool = False,
    ) -> Job | None:
        """
        Атомарно переводит задачу в `target`.

        При `lost_race_ok` запрещённый переход возвращает None вместо
        исключения (так claim сообщает, что задачу взял другой воркер).
        """
        key = JOB_KEY.format(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data = await pipe.hgetall(key)
                    if not data:
                        raise JobNotFoundError(job_id)
                    job = Job.model_validate(data)

                    if target not in _TRANSITIONS[job.status]:
                        if lost_race_ok:
                            return None
                        raise InvalidTransitionError(job_id, job.status.value, target.value)

                    updated = job.model_copy(update={"status": target, **updates(job)})
                    pipe.multi()
                    pipe.hset(key, mapping=_to_hash(updated))
                    if target.is_terminal and self._ttl:
                        pipe.expire(key, self._ttl)
                    await pipe.execute()
                    return updated
                except WatchError:
                    log.debug("Job %s changed concurrently, retrying %s", job_id, target.value)
                    continue

    async def claim(self, job_id: str) -> Job | None:
        """pending -> processing; None, если задачу уже взяли или она завершена."""
        job = await self._transition(
            job_id,
            JobStatus.PROCESSING,
            lambda _: {"started_at": _now(), "stage": None, "progress": 0.0},
            lost_race_ok=True,
        )
        if job is None:
            log.info("Job %s already claimed or finished, skipping", job_id)
        return job

    async def update_stage(self, job_id: str, stage: str, progress: float) -> Job:
        """Отметка стадии; допустима только пока задача в processing."""
        key = JOB_KEY.format(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    status = await pipe.hget(key, "status")
                    if status is None:
                        raise JobNotFoundError(job_id)
                    if status != JobStatus.PROCESSING.value:
                        raise InvalidTransitionError(job_id, status, JobStatus.PROCESSING.value)
                    pipe.multi()
                    pipe.hset(key, mapping={"stage": stage, "progress": str(round(progress, 2))})
                    await pipe.execute()
                    break
                except WatchError:
                    continue
        return await self.get(job_id)

    async def complete(self, job_id: str, artifact_path: str) -> Job:
        job = await self._transition(
            job_id,
            JobStatus.COMPLETED,
            lambda _: {
                "artifact_path": artifact_path,
                "completed_at": _now(),
                "progress": 1.0,
            },
        )
        assert job is not None
        log.info("Job %s completed: %s", job_id, artifact_path)
        return job

    async def fail(self, job_id: str, error_detail: str) -> Job:
        if not error_detail or not error_detail.strip():
            raise ValueError("error_detail must be a non-empty description of the failure")
        job = await self._transition(
            job_id,
            JobStatus.FAILED,
            lambda _: {"error_detail": error_detail, "completed_at": _now()},
        )
        assert job is not None
        log.warning("Job %s failed: %s", job_id, error_detail)
        return job
