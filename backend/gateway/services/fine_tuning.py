"""
Fine-tuning jobs

Jobs are stored in the database and advanced by a background worker that
polls for unfinished jobs. Status changes follow ALLOWED_TRANSITIONS and only
ever move forward; every write is a conditional UPDATE on the status the
writer last saw, so a cancel and a worker step racing on the same job cannot
both apply.

Flow:
    queued -> running -> succeeded
       |         |
       +---------+----> failed / cancelled
"""
import asyncio
import logging
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.api.errors import NotFoundError
from gateway.core.config import settings
from gateway.db.database import async_session_maker
from gateway.models import APIKey, FineTuningJob, FineTuningStatus, User, utcnow

logger = logging.getLogger(__name__)

S = FineTuningStatus

ALLOWED_TRANSITIONS: Dict[FineTuningStatus, frozenset] = {
    S.VALIDATING_FILES: frozenset({S.QUEUED, S.FAILED, S.CANCELLED}),
    S.QUEUED: frozenset({S.RUNNING, S.FAILED, S.CANCELLED}),
    S.RUNNING: frozenset({S.SUCCEEDED, S.FAILED, S.CANCELLED}),
    S.SUCCEEDED: frozenset(),
    S.FAILED: frozenset(),
    S.CANCELLED: frozenset(),
}

DEFAULT_HYPERPARAMETERS = {
    "batch_size": 1,
    "learning_rate_multiplier": 1,
    "n_epochs": 1,
}


class InvalidTransitionError(ValueError):
    """Raised when a job is asked to move to a state it cannot reach"""

    def __init__(self, current: FineTuningStatus, target: FineTuningStatus):
        super().__init__(f"Cannot move fine-tuning job from {current.value} to {target.value}")
        self.current = current
        self.target = target


def check_transition(current: FineTuningStatus, target: FineTuningStatus) -> None:
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(current, target)


def _epoch(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(value.replace(tzinfo=timezone.utc).timestamp())


def advance_job(
    job: FineTuningJob,
    now: datetime,
    queue_seconds: int = settings.FINE_TUNE_QUEUE_SECONDS,
    run_seconds: int = settings.FINE_TUNE_RUN_SECONDS,
) -> Optional[Dict[str, Any]]:
    """
    Work out the next step for a job.

    Returns the column values to write (always including `status`), or None
    when the job should stay where it is. The job itself is not modified.
    """
    status = job.status

    if status in (S.VALIDATING_FILES, S.QUEUED) and not job.training_file.startswith("file-"):
        check_transition(status, S.FAILED)
        return {
            "status": S.FAILED,
            "finished_at": now,
            "estimated_finish": None,
            "error": {
                "code": "invalid_training_file",
                "message": f"Training file {job.training_file!r} is not a valid file id",
                "param": "training_file",
            },
        }

    if status == S.VALIDATING_FILES:
        check_transition(status, S.QUEUED)
        return {"status": S.QUEUED}

    if status == S.QUEUED:
        if now - job.created_at < timedelta(seconds=queue_seconds):
            return None
        check_transition(status, S.RUNNING)
        return {
            "status": S.RUNNING,
            "started_at": now,
            "estimated_finish": now + timedelta(seconds=run_seconds),
        }

    if status == S.RUNNING:
        started = job.started_at or job.created_at
        if now - started < timedelta(seconds=run_seconds):
            return None
        check_transition(status, S.SUCCEEDED)
        fragment = job.suffix or job.id[6:12]
        return {
            "status": S.SUCCEEDED,
            "finished_at": now,
            "estimated_finish": None,
            "fine_tuned_model": f"ft:{job.model}:{fragment}",
            "trained_tokens": random.randint(1000, 10999),
            "result_files": [f"file-{uuid.uuid4()}"],
        }

    return None


def serialize_job(job: FineTuningJob) -> Dict[str, Any]:
    """OpenAI `fine_tuning.job` object"""
    return {
        "object": "fine_tuning.job",
        "id": job.id,
        "model": job.model,
        "created_at": _epoch(job.created_at),
        "finished_at": _epoch(job.finished_at),
        "fine_tuned_model": job.fine_tuned_model,
        "organization_id": job.organization_id,
        "result_files": job.result_files or [],
        "status": job.status.value,
        "validation_file": job.validation_file,
        "training_file": job.training_file,
        "hyperparameters": job.hyperparameters,
        "trained_tokens": job.trained_tokens,
        "error": job.error,
        "user_provided_suffix": job.suffix,
        "estimated_finish": _epoch(job.estimated_finish),
    }


class FineTuningService:
    """Job storage plus the background worker that drives job progress"""

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        poll_interval: float = settings.FINE_TUNE_POLL_INTERVAL,
        queue_seconds: int = settings.FINE_TUNE_QUEUE_SECONDS,
        run_seconds: int = settings.FINE_TUNE_RUN_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory or async_session_maker
        self.poll_interval = poll_interval
        self.queue_seconds = queue_seconds
        self.run_seconds = run_seconds
        self.clock = clock
        self._worker_task: Optional[asyncio.Task] = None
        self._running = False

    # === Request-side operations ===

    async def create_job(
        self,
        db: AsyncSession,
        user: User,
        api_key: APIKey,
        model: str,
        training_file: str,
        validation_file: Optional[str] = None,
        hyperparameters: Optional[Dict[str, Any]] = None,
        suffix: Optional[str] = None,
    ) -> FineTuningJob:
        now = self.clock()
        job = FineTuningJob(
            id=f"ftjob-{uuid.uuid4().hex}",
            user_id=user.id,
            api_key_id=api_key.id,
            organization_id=f"org-{uuid.uuid4()}",
            model=model,
            training_file=training_file,
            validation_file=validation_file,
            hyperparameters=hyperparameters or dict(DEFAULT_HYPERPARAMETERS),
            suffix=suffix,
            status=S.QUEUED,
            result_files=[],
            created_at=now,
            estimated_finish=now + timedelta(seconds=settings.FINE_TUNE_ESTIMATE_SECONDS),
        )
        db.add(job)
        await db.flush()
        logger.info(f"Created fine-tuning job {job.id} for model {model}")
        return job

    async def list_jobs(
        self,
        db: AsyncSession,
        user: User,
        limit: int = 20,
        after: Optional[str] = None,
    ) -> Tuple[List[FineTuningJob], bool]:
        """
        Newest-first page of the user's jobs.

        `after` is the id of the last job on the previous page. An unknown
        cursor is ignored and the first page is returned.
        """
        query = select(FineTuningJob).where(FineTuningJob.user_id == user.id)

        if after:
            cursor = await self._get_owned(db, user, after)
            if cursor is not None:
                query = query.where(
                    or_(
                        FineTuningJob.created_at < cursor.created_at,
                        and_(
                            FineTuningJob.created_at == cursor.created_at,
                            FineTuningJob.id < cursor.id,
                        ),
                    )
                )

        query = query.order_by(FineTuningJob.created_at.desc(), FineTuningJob.id.desc()).limit(limit + 1)
        jobs = list((await db.execute(query)).scalars().all())
        return jobs[:limit], len(jobs) > limit

    async def get_job(self, db: AsyncSession, user: User, job_id: str) -> FineTuningJob:
        job = await self._get_owned(db, user, job_id)
        if job is None:
            raise NotFoundError(f"Fine-tuning job not found: {job_id}")
        return job

    async def cancel_job(self, db: AsyncSession, user: User, job_id: str) -> FineTuningJob:
        """
        Cancel a job that has not finished yet.

        Cancelling a job that already reached a terminal state returns it
        unchanged.
        """
        job = await self.get_job(db, user, job_id)

        while not job.status.is_terminal:
            check_transition(job.status, S.CANCELLED)
            applied = await self._apply(
                db, job, {"status": S.CANCELLED, "finished_at": self.clock(), "estimated_finish": None}
            )
            await db.refresh(job)
            if applied:
                logger.info(f"Cancelled fine-tuning job {job.id}")
                break

        return job

    async def _get_owned(self, db: AsyncSession, user: User, job_id: str) -> Optional[FineTuningJob]:
        result = await db.execute(
            select(FineTuningJob).where(
                FineTuningJob.id == job_id,
                FineTuningJob.user_id == user.id,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _apply(db: AsyncSession, job: FineTuningJob, values: Dict[str, Any]) -> bool:
        """Write values only if the job is still in the status we read"""
        result = await db.execute(
            update(FineTuningJob)
            .where(FineTuningJob.id == job.id, FineTuningJob.status == job.status)
            .values(**values)
        )
        return result.rowcount == 1

    # === Background worker ===

    async def process_pending(self, now: Optional[datetime] = None) -> int:
        """
        Advance every unfinished job by at most one step.

        Returns the number of jobs whose status changed.
        """
        now = now or self.clock()
        changed = 0

        async with self.session_factory() as db:
            result = await db.execute(
                select(FineTuningJob).where(
                    FineTuningJob.status.in_([S.VALIDATING_FILES, S.QUEUED, S.RUNNING])
                )
            )
            for job in result.scalars().all():
                values = advance_job(job, now, self.queue_seconds, self.run_seconds)
                if values is None:
                    continue
                if await self._apply(db, job, values):
                    changed += 1
                    logger.info(f"Fine-tuning job {job.id}: {job.status.value} -> {values['status'].value}")
            await db.commit()

        return changed

    async def worker(self) -> None:
        """Background loop polling for jobs to advance"""
        logger.info("Fine-tuning worker started")
        while self._running:
            try:
                await self.process_pending()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Fine-tuning worker error: {e}")
                await asyncio.sleep(self.poll_interval * 5)
        logger.info("Fine-tuning worker stopped")

    def start_worker(self) -> None:
        if self._worker_task is not None:
            return
        self._running = True
        self._worker_task = asyncio.create_task(self.worker())

    def stop_worker(self) -> None:
        self._running = False
        if self._worker_task:
            self._worker_task.cancel()
            self._worker_task = None

    @property
    def worker_running(self) -> bool:
        return self._running


# Global service instance
fine_tuning_service = FineTuningService()


def get_fine_tuning_service() -> FineTuningService:
    return fine_tuning_service
