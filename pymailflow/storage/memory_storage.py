# pymailflow/storage/memory_storage.py
import copy
import logging
import time
import uuid
from threading import RLock
from typing import Callable, Optional, List, Dict

from pymailflow.storage.base import JobStorage
from pymailflow.common.job import Job, FailedJob, MailPayload

logger = logging.getLogger(__name__)


class MemoryStorage(JobStorage):
    """
    Queue store living inside one process.

    Same contract as RedisStorage, guarded by a single lock. Jobs handed out
    are copies, so callers never mutate the stored state directly.
    """

    def __init__(self, reservation_timeout: float = 90, clock: Callable[[], float] = time.time):
        self.reservation_timeout = reservation_timeout
        self.clock = clock
        self._jobs: Dict[str, Job] = {}
        self._pending: Dict[str, Dict[str, None]] = {}
        self._reserved: Dict[str, float] = {}  # job id -> lease expiry
        self._failed: Dict[str, FailedJob] = {}
        self._lock = RLock()

    def _pending_for(self, queue: str) -> Dict[str, None]:
        return self._pending.setdefault(queue, {})

    def enqueue(self, queue: str, payload: MailPayload) -> str:
        self.check_queue_name(queue)
        now = self.clock()
        job = Job(queue=queue, payload=copy.deepcopy(payload), enqueued_at=now, available_at=now)
        with self._lock:
            self._jobs[job.id] = job
            self._pending_for(queue)[job.id] = None
        logger.debug(f"Enqueued job {job.id} on queue {queue}")
        return job.id

    def _reclaim_expired(self, queue: str, now: float) -> List[str]:
        reclaimed = []
        for job_id, expires_at in list(self._reserved.items()):
            job = self._jobs.get(job_id)
            if job is None or job.queue != queue or expires_at > now:
                continue
            del self._reserved[job_id]
            job.reserved_at = None
            job.reservation = None
            job.available_at = now
            self._pending_for(queue)[job_id] = None
            reclaimed.append(job_id)
        return reclaimed

    def reserve(self, queue: str) -> Optional[Job]:
        self.check_queue_name(queue)
        with self._lock:
            now = self.clock()
            self._reclaim_expired(queue, now)
            pending = self._pending_for(queue)
            due = [self._jobs[job_id] for job_id in pending if self._jobs[job_id].available_at <= now]
            if not due:
                return None
            job = min(due, key=lambda j: (j.available_at, j.id))
            del pending[job.id]
            job.attempts += 1
            job.reserved_at = now
            job.reservation = uuid.uuid4().hex
            self._reserved[job.id] = now + self.reservation_timeout
            return copy.deepcopy(job)

    def _held(self, job_id: str, token: Optional[str]) -> Optional[Job]:
        job = self._jobs.get(job_id)
        if job is None or (token and job.reservation != token):
            return None
        return job

    def acknowledge(self, job_id: str, token: Optional[str] = None) -> bool:
        with self._lock:
            job = self._held(job_id, token)
            if job is None:
                return False
            del self._jobs[job_id]
            self._reserved.pop(job_id, None)
            self._pending_for(job.queue).pop(job_id, None)
            return True

    def release(self, job_id: str, delay: float, token: Optional[str] = None) -> bool:
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        with self._lock:
            job = self._held(job_id, token)
            if job is None:
                return False
            self._reserved.pop(job_id, None)
            job.reserved_at = None
            job.reservation = None
            job.available_at = self.clock() + delay
            self._pending_for(job.queue)[job_id] = None
            return True

    def fail(self, job_id: str, reason: str, token: Optional[str] = None) -> Optional[FailedJob]:
        with self._lock:
            job = self._held(job_id, token)
            if job is None:
                return None
            del self._jobs[job_id]
            job.reservation = None
            self._reserved.pop(job_id, None)
            self._pending_for(job.queue).pop(job_id, None)
            failed = FailedJob(job=job, exception_message=reason, failed_at=self.clock())
            self._failed[job_id] = failed
            return copy.deepcopy(failed)

    def list(self, queue: str) -> List[Job]:
        with self._lock:
            jobs = [self._jobs[job_id] for job_id in self._pending_for(queue)]
            jobs += [
                job for job_id, job in self._jobs.items()
                if job.queue == queue and job_id in self._reserved
            ]
            jobs.sort(key=lambda j: (j.available_at, j.id))
            return copy.deepcopy(jobs)

    def list_failed(self) -> List[FailedJob]:
        with self._lock:
            failed = sorted(self._failed.values(), key=lambda f: (f.failed_at, f.id))
            return copy.deepcopy(failed)

    def retry(self, job_id: str) -> bool:
        with self._lock:
            failed = self._failed.pop(job_id, None)
            if failed is None:
                return False
            now = self.clock()
            job = failed.job
            job.attempts = 0
            job.available_at = now
            job.reserved_at = None
            job.reservation = None
            self._jobs[job.id] = job
            self._pending_for(job.queue)[job.id] = None
            return True

    def clear(self, queue: str) -> int:
        with self._lock:
            doomed = [job_id for job_id, job in self._jobs.items() if job.queue == queue]
            for job_id in doomed:
                del self._jobs[job_id]
                self._reserved.pop(job_id, None)
            self._pending.pop(queue, None)
            return len(doomed)

    def flush_failed(self, queue: Optional[str] = None) -> int:
        with self._lock:
            doomed = [
                job_id for job_id, failed in self._failed.items()
                if queue is None or failed.job.queue == queue
            ]
            for job_id in doomed:
                del self._failed[job_id]
            return len(doomed)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def queues(self) -> List[str]:
        with self._lock:
            names = set(self._pending) | {job.queue for job in self._jobs.values()}
            return sorted(names)

    def recover_expired(self, queue: str) -> List[str]:
        with self._lock:
            return self._reclaim_expired(queue, self.clock())

    def size(self, queue: str) -> int:
        with self._lock:
            return sum(1 for job in self._jobs.values() if job.queue == queue)

    def failed_count(self) -> int:
        with self._lock:
            return len(self._failed)
