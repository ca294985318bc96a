# pymailflow/server/worker.py
import logging
import resource
import signal
import sys
import threading
import uuid
from typing import Callable, List, Optional

from pymailflow.config import WorkerConfig
from pymailflow.common.events import EventSink, NullEventSink
from pymailflow.common.exceptions import ConfigurationError, StoreConnectionError
from pymailflow.execution.performer import Performer
from pymailflow.filters.builtin import RetryFilter
from pymailflow.storage.base import JobStorage
from pymailflow.server.processor import JobProcessor

logger = logging.getLogger(__name__)


def peak_memory_mb() -> float:
    """Peak resident set size of this process in MB."""
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # Linux reports kilobytes, macOS reports bytes.
    if sys.platform == "darwin":
        return usage / (1024 * 1024)
    return usage / 1024


class Worker:
    """
    Polls the store and processes one job at a time.

    The loop ends only when ``stop()`` is called or the process outgrows its
    memory limit, so a supervisor can start a fresh worker.
    """

    STOPPED = "stopped"
    MEMORY = "memory"

    def __init__(
        self,
        storage: JobStorage,
        performer: Performer,
        config: Optional[WorkerConfig] = None,
        queues: Optional[List[str]] = None,
        events: Optional[EventSink] = None,
        memory_usage: Optional[Callable[[], float]] = None,
        error_cooldown: float = 5,
    ):
        self.storage = storage
        self.performer = performer
        self.config = config or WorkerConfig()
        self.queues = [storage.check_queue_name(queue) for queue in queues or ["emails"]]
        self.events = events or NullEventSink()
        self.memory_usage = memory_usage or peak_memory_mb
        self.error_cooldown = error_cooldown
        self.worker_id = f"worker:{uuid.uuid4()}"
        self.filters = [
            RetryFilter(
                max_tries=self.config.max_tries,
                retry_delay=self.config.retry_delay,
                max_retry_delay=self.config.max_retry_delay,
            )
        ]
        lease = storage.reservation_timeout
        if self.config.timeout >= lease:
            # The lease must outlive the longest attempt.
            raise ConfigurationError(
                f"Worker timeout ({self.config.timeout}s) must be shorter than the "
                f"reservation timeout ({lease}s)"
            )
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def install_signal_handlers(self) -> None:
        def handle(signum, frame):
            logger.info(f"[{self.worker_id}] Received signal {signum}, finishing current job and stopping")
            self.stop()

        signal.signal(signal.SIGINT, handle)
        signal.signal(signal.SIGTERM, handle)

    def memory_exceeded(self) -> bool:
        return self.memory_usage() >= self.config.memory

    def reserve_next(self):
        for queue in self.queues:
            job = self.storage.reserve(queue)
            if job is not None:
                return job
        return None

    def run_once(self) -> bool:
        """Reserves and processes at most one job. Returns True if one ran."""
        job = self.reserve_next()
        if job is None:
            return False
        logger.info(f"[{self.worker_id}] Picked up job {job.id} from {job.queue} (attempt {job.attempts})")
        processor = JobProcessor(
            job,
            self.storage,
            self.performer,
            filters=self.filters,
            events=self.events,
            timeout=self.config.timeout,
        )
        final_state = processor.process()
        logger.info(f"[{self.worker_id}] Finished job {job.id}: {final_state.name}")
        return True

    def run(self) -> str:
        """Starts the worker's processing loop and returns why it stopped."""
        logger.info(f"[{self.worker_id}] Starting worker for queues: {', '.join(self.queues)}")
        reason = self.STOPPED
        while not self.stopping:
            if self.memory_exceeded():
                logger.warning(
                    f"[{self.worker_id}] Memory limit of {self.config.memory}MB reached, stopping"
                )
                reason = self.MEMORY
                break
            try:
                processed = self.run_once()
            except StoreConnectionError as e:
                logger.error(f"[{self.worker_id}] Queue store unavailable: {e}")
                self._stop_event.wait(self.error_cooldown)
                continue
            except Exception:
                logger.exception(f"[{self.worker_id}] Unhandled exception in worker loop")
                self._stop_event.wait(self.error_cooldown)
                continue
            if not processed:
                self._stop_event.wait(self.config.sleep)

        logger.info(f"[{self.worker_id}] Worker has stopped ({reason}).")
        return reason
