# pymailflow/execution/performer.py
import threading
from typing import Any, Callable, Mapping, Optional

from pymailflow.common.exceptions import JobLoadError, JobTimeoutError
from pymailflow.common.job import Job
from pymailflow.common.states import BaseState, RetryState, SucceededState


class Performer:
    """Resolves a job's handler by ``payload.job`` and runs it."""

    def __init__(self, handlers: Mapping[str, Callable[[Job], Any]]):
        self.handlers = dict(handlers)

    def resolve(self, job: Job) -> Callable[[Job], Any]:
        try:
            return self.handlers[job.payload.job]
        except KeyError:
            raise JobLoadError(f"No handler registered for job type: {job.payload.job!r}") from None

    def perform(self, job: Job) -> BaseState:
        """Runs the handler; any exception becomes a RetryState."""
        try:
            result = self.resolve(job)(job)
        except Exception as e:
            return RetryState(reason=str(e) or type(e).__name__, exception_type=type(e).__name__)
        if isinstance(result, BaseState):
            return result
        return SucceededState(result=result)


def run_with_timeout(func: Callable[[], Any], timeout: Optional[float]) -> Any:
    """
    Calls ``func`` and waits at most ``timeout`` seconds for it.

    Python cannot kill a thread, so on timeout the worker thread is abandoned
    and keeps running in the background until the call returns by itself.
    """
    if not timeout or timeout <= 0:
        return func()

    outcome = {}

    def target():
        try:
            outcome["result"] = func()
        except Exception as e:
            outcome["error"] = e

    thread = threading.Thread(target=target, name="pymailflow-job", daemon=True)
    thread.start()
    thread.join(timeout)
    if thread.is_alive():
        raise JobTimeoutError(f"Job exceeded its timeout of {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome.get("result")
