from typing import Optional

from pymailflow.common.job import Job
from pymailflow.common.states import BaseState, FailedState, RetryState


class ElectStateContext:
    """
    Carries the outcome of one attempt while filters decide the job's next state.

    Filters replace ``candidate_state``; the processor applies whatever is left
    once every filter has run.
    """

    def __init__(self, job: Job, candidate_state: BaseState, elapsed_ms: float = 0.0):
        self.job = job
        self.candidate_state = candidate_state
        self.elapsed_ms = elapsed_ms
        self.applied: Optional[BaseState] = None

    @property
    def attempts(self) -> int:
        return self.job.attempts

    def retry_later(self, delay: float) -> None:
        state = self.candidate_state
        self.candidate_state = RetryState(
            reason=getattr(state, "reason", None) or "",
            delay=delay,
            exception_type=getattr(state, "exception_type", ""),
        )

    def give_up(self) -> None:
        state = self.candidate_state
        self.candidate_state = FailedState(
            reason=getattr(state, "reason", None) or "",
            exception_type=getattr(state, "exception_type", ""),
        )
