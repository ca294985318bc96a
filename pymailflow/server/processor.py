# pymailflow/server/processor.py
import time
import logging
from typing import List, Optional

from pymailflow.common.job import Job
from pymailflow.common.states import BaseState, SucceededState, RetryState, FailedState
from pymailflow.common.events import EventSink, NullEventSink, MessageSent, MessageFailed, MessageQueued
from pymailflow.common.exceptions import JobTimeoutError
from pymailflow.execution.performer import Performer, run_with_timeout
from pymailflow.storage.base import JobStorage
from ..filters.base import JobFilter
from ..filters.builtin import RetryFilter
from .context import ElectStateContext

logger = logging.getLogger(__name__)


class JobProcessor:
    """Runs one reserved job and moves it to its next state in the store."""

    def __init__(
        self,
        job: Job,
        storage: JobStorage,
        performer: Performer,
        filters: Optional[List[JobFilter]] = None,
        events: Optional[EventSink] = None,
        timeout: Optional[float] = None,
    ):
        self.job = job
        self.storage = storage
        self.performer = performer
        self.filters = filters if filters is not None else [RetryFilter()]
        self.events = events or NullEventSink()
        self.timeout = timeout

    def _execute(self) -> BaseState:
        try:
            return run_with_timeout(lambda: self.performer.perform(self.job), self.timeout)
        except JobTimeoutError as e:
            logger.error(f"Job {self.job.id} timed out after {self.timeout}s")
            return RetryState(reason=str(e), exception_type=type(e).__name__)

    def process(self) -> BaseState:
        started = time.monotonic()
        state = self._execute()
        elapsed_ms = (time.monotonic() - started) * 1000
        if isinstance(state, SucceededState):
            state.duration_ms = elapsed_ms

        elect_state_context = ElectStateContext(job=self.job, candidate_state=state, elapsed_ms=elapsed_ms)
        for f in self.filters:
            f.on_state_election(elect_state_context)
        final_state = elect_state_context.candidate_state

        logger.debug(f"Job {self.job.id}: attempt {self.job.attempts} ended in state {final_state.name}")

        if isinstance(final_state, SucceededState):
            if not self.storage.acknowledge(self.job.id, token=self.job.reservation):
                logger.warning(f"Job {self.job.id} was sent after its reservation expired")
            self.events.emit(
                MessageSent(
                    job_id=self.job.id,
                    queue=self.job.queue,
                    duration_ms=final_state.duration_ms,
                    attempts=self.job.attempts,
                )
            )
        elif isinstance(final_state, RetryState):
            logger.warning(f"Job {self.job.id} failed, retrying in {final_state.delay}s: {final_state.reason}")
            if not self.storage.release(self.job.id, final_state.delay, token=self.job.reservation):
                logger.warning(f"Job {self.job.id}: reservation lost, retry left to the current holder")
                return self._applied(elect_state_context, final_state)
            self.events.emit(
                MessageFailed(
                    job_id=self.job.id,
                    queue=self.job.queue,
                    attempts=self.job.attempts,
                    will_retry=True,
                    exception_message=final_state.reason or "",
                )
            )
            self.events.emit(
                MessageQueued(
                    job_id=self.job.id,
                    queue=self.job.queue,
                    attempts=self.job.attempts,
                    retry=True,
                    delay=final_state.delay,
                )
            )
        elif isinstance(final_state, FailedState):
            logger.error(f"Job {self.job.id} failed permanently after {self.job.attempts} attempt(s): {final_state.reason}")
            if self.storage.fail(self.job.id, final_state.reason or "", token=self.job.reservation) is None:
                logger.warning(f"Job {self.job.id}: reservation lost, failure left to the current holder")
                return self._applied(elect_state_context, final_state)
            self.events.emit(
                MessageFailed(
                    job_id=self.job.id,
                    queue=self.job.queue,
                    attempts=self.job.attempts,
                    will_retry=False,
                    exception_message=final_state.reason or "",
                )
            )

        return self._applied(elect_state_context, final_state)

    def _applied(self, context: ElectStateContext, state: BaseState) -> BaseState:
        context.applied = state
        for f in self.filters:
            f.on_state_applied(context)
        return state
