# pymailflow/common/states.py
"""
Outcomes of one job execution.

The processor branches on these values rather than on exception types: a
handler either succeeds, fails in a way that may be retried, or fails for
good. Retry filters may turn a RetryState into a FailedState.
"""

from typing import Any, Optional


class BaseState:
    NAME = "base"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason

    @property
    def name(self) -> str:
        return self.NAME

    def __repr__(self) -> str:
        return f"{type(self).__name__}(reason={self.reason!r})"


class SucceededState(BaseState):
    NAME = "succeeded"

    def __init__(self, result: Any = None, duration_ms: float = 0.0, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.result = result
        self.duration_ms = duration_ms


class RetryState(BaseState):
    NAME = "retry"

    def __init__(self, reason: str, delay: float = 0.0, exception_type: str = "", *args, **kwargs):
        super().__init__(reason, *args, **kwargs)
        self.delay = delay
        self.exception_type = exception_type


class FailedState(BaseState):
    NAME = "failed"

    def __init__(self, reason: str, exception_type: str = "", *args, **kwargs):
        super().__init__(reason, *args, **kwargs)
        self.exception_type = exception_type
