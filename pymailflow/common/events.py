# pymailflow/common/events.py
"""
Lifecycle events of a mail job.

Events are plain data. Delivering them somewhere (logs, metrics, a test
recorder) is the job of an EventSink passed to whoever emits them.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from typing import Any, Dict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MessageQueued:
    job_id: str
    queue: str
    attempts: int = 0
    retry: bool = False
    delay: float = 0.0
    queued_at: float = field(default_factory=time.time)

    kind = "queued"


@dataclass(frozen=True)
class MessageSent:
    job_id: str
    queue: str
    duration_ms: float
    attempts: int = 1
    sent_at: float = field(default_factory=time.time)

    kind = "sent"


@dataclass(frozen=True)
class MessageFailed:
    job_id: str
    queue: str
    attempts: int
    will_retry: bool
    exception_message: str
    failed_at: float = field(default_factory=time.time)

    kind = "failed"


def event_to_dict(event) -> Dict[str, Any]:
    data = asdict(event)
    data["event"] = event.kind
    return data


class EventSink(ABC):
    @abstractmethod
    def emit(self, event) -> None: ...


class NullEventSink(EventSink):
    def emit(self, event) -> None:
        pass


class LoggingEventSink(EventSink):
    """Writes every event as one log line; failures go out at WARNING/ERROR."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def emit(self, event) -> None:
        data = event_to_dict(event)
        if isinstance(event, MessageFailed):
            level = logging.WARNING if event.will_retry else logging.ERROR
        else:
            level = logging.INFO
        details = ", ".join(f"{k}={v}" for k, v in data.items() if k != "event")
        self.log.log(level, f"Message{event.kind.capitalize()} ({details})")
