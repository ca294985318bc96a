# pymailflow/storage/base.py
from abc import ABC, abstractmethod
from typing import Optional, List, Set

from pymailflow.common.job import Job, FailedJob, MailPayload


class JobStorage(ABC):
    """
    The queue store: sole source of truth for pending, reserved and failed jobs.

    Within one queue, jobs are reserved in ascending ``available_at`` order,
    ties broken by creation order. A reservation is a lease; once it expires
    the job can be reserved again by another worker.
    """

    reservation_timeout: float = 90

    @abstractmethod
    def enqueue(self, queue: str, payload: MailPayload) -> str: ...

    @abstractmethod
    def reserve(self, queue: str) -> Optional[Job]: ...

    # acknowledge, release and fail take the token handed out by reserve().
    # With a token they only act while that lease is still current; without
    # one (admin use) they act unconditionally.

    @abstractmethod
    def acknowledge(self, job_id: str, token: Optional[str] = None) -> bool: ...

    @abstractmethod
    def release(self, job_id: str, delay: float, token: Optional[str] = None) -> bool: ...

    @abstractmethod
    def fail(self, job_id: str, reason: str, token: Optional[str] = None) -> Optional[FailedJob]: ...

    @abstractmethod
    def list(self, queue: str) -> List[Job]: ...

    @abstractmethod
    def list_failed(self) -> List[FailedJob]: ...

    @abstractmethod
    def retry(self, job_id: str) -> bool: ...

    @abstractmethod
    def clear(self, queue: str) -> int: ...

    @abstractmethod
    def flush_failed(self, queue: Optional[str] = None) -> int: ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def queues(self) -> List[str]: ...

    @abstractmethod
    def recover_expired(self, queue: str) -> List[str]: ...

    def reserved_queue_names(self) -> Set[str]:
        return set()

    def check_queue_name(self, queue: str) -> str:
        """Raises ValueError for a name that cannot be used as a queue."""
        if not isinstance(queue, str) or not queue:
            raise ValueError("queue name must be a non-empty string")
        if ":" in queue:
            raise ValueError(f"queue name must not contain ':', got {queue!r}")
        if queue in self.reserved_queue_names():
            raise ValueError(f"queue name {queue!r} is reserved by the store")
        return queue

    def retry_all(self) -> int:
        retried = 0
        for failed in self.list_failed():
            if self.retry(failed.id):
                retried += 1
        return retried

    def purge(self, queue: Optional[str] = None) -> int:
        """Deletes pending jobs of one queue (or every queue) and their failed jobs."""
        names = [queue] if queue is not None else self.queues()
        removed = sum(self.clear(name) for name in names)
        return removed + self.flush_failed(queue)

    def size(self, queue: str) -> int:
        return len(self.list(queue))

    def failed_count(self) -> int:
        return len(self.list_failed())
