# pymailflow/common/job.py
import os
import time
from dataclasses import dataclass, field, fields
from threading import Lock
from typing import Optional, List, Dict, Any

_id_lock = Lock()
_last_micros = 0


def new_job_id() -> str:
    """Returns a unique id whose lexicographic order follows creation order."""
    global _last_micros
    with _id_lock:
        # Strictly increasing within the process, even inside one microsecond.
        _last_micros = max(time.time_ns() // 1000, _last_micros + 1)
        micros = _last_micros
    return f"job_{micros:014x}{os.urandom(5).hex()}"


@dataclass
class MailPayload:
    """
    The data needed to rebuild a send operation inside a worker.

    Named fields cover what every mail job carries; anything else travels in
    `extra` so newer producers can add keys without breaking older workers.
    """

    to: str = ""
    subject: str = ""
    content: str = ""
    content_type: str = "text/html"
    attachments: List[Dict[str, Any]] = field(default_factory=list)
    job: str = "send_mail"
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "job": self.job,
            "to": self.to,
            "subject": self.subject,
            "content": self.content,
            "content_type": self.content_type,
            "attachments": [dict(a) for a in self.attachments],
        }
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MailPayload":
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        kwargs["attachments"] = list(kwargs.get("attachments") or [])
        return cls(extra=extra, **kwargs)


@dataclass
class Job:
    """
    One unit of deferred mail work.

    This is the central data model that gets stored and passed around.
    Timestamps are epoch seconds.
    """

    queue: str
    payload: MailPayload

    id: str = field(default_factory=new_job_id)
    attempts: int = 0
    enqueued_at: float = field(default_factory=time.time)
    available_at: float = field(default_factory=time.time)
    reserved_at: Optional[float] = None
    # Token of the current lease; only its holder may resolve the job.
    reservation: Optional[str] = None

    @property
    def is_reserved(self) -> bool:
        return self.reserved_at is not None


@dataclass
class FailedJob:
    """A job that exhausted its tries, kept for inspection and manual retry."""

    job: Job
    exception_message: str
    failed_at: float = field(default_factory=time.time)
    will_retry: bool = False

    @property
    def id(self) -> str:
        return self.job.id
