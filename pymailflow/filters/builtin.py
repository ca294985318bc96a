# pymailflow/filters/builtin.py
from pymailflow.filters.base import JobFilter
from pymailflow.common.states import RetryState
import logging
from pymailflow.server.context import ElectStateContext

logger = logging.getLogger(__name__)


class RetryFilter(JobFilter):
    """
    Decides whether a failed attempt is retried.

    A job may run at most ``max_tries`` times. Retries back off exponentially
    from ``retry_delay`` and never wait longer than ``max_retry_delay``.
    """

    def __init__(self, max_tries: int = 3, retry_delay: float = 5, max_retry_delay: float = 300):
        self.max_tries = max_tries
        self.retry_delay = retry_delay
        self.max_retry_delay = max_retry_delay

    def backoff(self, attempts: int) -> float:
        return min(self.retry_delay * 2 ** max(attempts - 1, 0), self.max_retry_delay)

    def on_state_election(self, elect_state_context: ElectStateContext):
        job = elect_state_context.job
        candidate_state = elect_state_context.candidate_state

        if not isinstance(candidate_state, RetryState):
            return

        logger.debug(
            f"RetryFilter: Job {job.id} failed. Attempts: {job.attempts}, Max tries: {self.max_tries}"
        )
        if elect_state_context.attempts >= self.max_tries:
            logger.debug(f"RetryFilter: Job {job.id} tries exhausted. Moving to Failed state.")
            elect_state_context.give_up()
            return

        # Keep an explicit delay a handler asked for, as long as it is positive.
        delay = candidate_state.delay if candidate_state.delay > 0 else self.backoff(job.attempts)
        elect_state_context.retry_later(delay)
        logger.debug(
            f"RetryFilter: Releasing job {job.id} in {delay}s "
            f"(attempt {job.attempts} of {self.max_tries})"
        )
