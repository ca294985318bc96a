# pymailflow/client.py
from typing import Any, Dict, List, Optional

from .common.job import Job, FailedJob, MailPayload
from .storage.base import JobStorage
from .storage.redis_storage import RedisStorage
from .serialization.json_serializer import JsonSerializer


class Client:
    """
    A client for interacting with the mail queue: enqueuing jobs and the
    administrative operations used by the CLI and the dashboard.
    """

    def __init__(self, storage: Optional[JobStorage] = None, default_queue: str = "emails"):
        self.storage = storage or RedisStorage()
        self.default_queue = default_queue
        self.serializer = JsonSerializer()

    def enqueue(self, payload: MailPayload, queue: Optional[str] = None) -> str:
        """Creates a fire-and-forget job."""
        return self.storage.enqueue(queue or self.default_queue, payload)

    def list(self, queue: Optional[str] = None) -> List[Job]:
        return self.storage.list(queue or self.default_queue)

    def failed(self) -> List[FailedJob]:
        return self.storage.list_failed()

    def retry(self, job_id: str) -> int:
        """Moves one failed job (or ``"all"``) back to its queue. Returns how many moved."""
        if job_id == "all":
            return self.storage.retry_all()
        return 1 if self.storage.retry(job_id) else 0

    def flush(self) -> int:
        return self.storage.flush_failed()

    def clear(self, queue: Optional[str] = None) -> int:
        return self.storage.clear(queue or self.default_queue)

    def purge(self, queue: Optional[str] = None) -> int:
        return self.storage.purge(queue)

    def recover(self, queue: Optional[str] = None) -> List[str]:
        return self.storage.recover_expired(queue or self.default_queue)

    def get_job(self, job_id: str) -> Optional[Job]:
        return self.storage.get_job(job_id)

    def queues(self) -> List[str]:
        names = set(self.storage.queues())
        names.add(self.default_queue)
        return sorted(names)

    # --- Dashboard Methods ---

    def stats(self) -> Dict[str, Any]:
        queues = {name: self.storage.size(name) for name in self.queues()}
        return {
            "queues": queues,
            "pending": sum(queues.values()),
            "failed": self.storage.failed_count(),
        }

    def job_dict(self, job: Job) -> Dict[str, Any]:
        return self.serializer.job_to_dict(job)

    def failed_dict(self, failed: FailedJob) -> Dict[str, Any]:
        return {
            "id": failed.id,
            "queue": failed.job.queue,
            "attempts": failed.job.attempts,
            "exception_message": failed.exception_message,
            "failed_at": failed.failed_at,
            "job": self.serializer.job_to_dict(failed.job),
        }
