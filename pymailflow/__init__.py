from .client import Client
from .config import (
    ConnectionConfig,
    QueueConfig,
    WorkerConfig,
    FromAddress,
    DkimConfig,
    SmtpConfig,
    MailgunConfig,
    RateLimitConfig,
    MailConfig,
)
from .common.job import Job, FailedJob, MailPayload
from .storage import JobStorage, MemoryStorage, RedisStorage

__all__ = [
    "Client",
    "ConnectionConfig",
    "QueueConfig",
    "WorkerConfig",
    "FromAddress",
    "DkimConfig",
    "SmtpConfig",
    "MailgunConfig",
    "RateLimitConfig",
    "MailConfig",
    "Job",
    "FailedJob",
    "MailPayload",
    "JobStorage",
    "MemoryStorage",
    "RedisStorage",
]
