import threading
import time

import pytest

from pymailflow.common.states import FailedState, RetryState, SucceededState
from pymailflow.config import WorkerConfig
from pymailflow.execution.performer import Performer, run_with_timeout
from pymailflow.common.exceptions import ConfigurationError, JobLoadError, JobTimeoutError, StoreConnectionError
from pymailflow.filters.base import JobFilter
from pymailflow.filters.builtin import RetryFilter
from pymailflow.server.context import ElectStateContext
from pymailflow.server.processor import JobProcessor
from pymailflow.server.worker import Worker
from pymailflow.common.job import Job, MailPayload
from pymailflow.storage.memory_storage import MemoryStorage


def _always_fails(job):
    raise RuntimeError("Transport exploded")


def _succeeds(job):
    return "queued-at-provider"


def _worker(storage, handler, sink=None, **config):
    return Worker(
        storage,
        Performer({"send_mail": handler}),
        config=WorkerConfig(**{"sleep": 0, **config}),
        queues=["emails"],
        events=sink,
        memory_usage=lambda: 1.0,
    )


# --- Retry policy ---

def test_retry_filter_backs_off_exponentially():
    f = RetryFilter(max_tries=10, retry_delay=5, max_retry_delay=60)
    assert [f.backoff(n) for n in range(1, 6)] == [5, 10, 20, 40, 60]


def test_retry_filter_fails_job_when_tries_exhausted(payload):
    job = Job(queue="emails", payload=payload, attempts=3)
    context = ElectStateContext(job, RetryState(reason="boom", exception_type="RuntimeError"))

    RetryFilter(max_tries=3).on_state_election(context)

    assert isinstance(context.candidate_state, FailedState)
    assert context.candidate_state.reason == "boom"
    assert context.candidate_state.exception_type == "RuntimeError"


def test_retry_filter_leaves_success_alone(payload):
    job = Job(queue="emails", payload=payload, attempts=5)
    state = SucceededState()
    context = ElectStateContext(job, state)

    RetryFilter(max_tries=1).on_state_election(context)

    assert context.candidate_state is state


# --- Performer ---

def test_performer_unknown_job_type_becomes_retry(payload):
    job = Job(queue="emails", payload=MailPayload(to="a@example.com", job="unknown"))

    state = Performer({}).perform(job)

    assert isinstance(state, RetryState)
    assert state.exception_type == JobLoadError.__name__


def test_performer_passes_explicit_state_through(payload):
    job = Job(queue="emails", payload=payload)
    explicit = FailedState(reason="hard bounce")

    assert Performer({"send_mail": lambda j: explicit}).perform(job) is explicit


def test_run_with_timeout_raises_on_slow_call():
    with pytest.raises(JobTimeoutError):
        run_with_timeout(lambda: time.sleep(1), 0.05)


def test_run_with_timeout_propagates_errors():
    def boom():
        raise KeyError("x")

    with pytest.raises(KeyError):
        run_with_timeout(boom, 1)


# --- Worker scenarios ---

def test_successful_job_is_acknowledged(memory_storage, payload, sink):
    job_id = memory_storage.enqueue("emails", payload)
    worker = _worker(memory_storage, _succeeds, sink)

    assert worker.run_once() is True

    assert memory_storage.list("emails") == []
    assert memory_storage.list_failed() == []
    sent = sink.of_kind("sent")
    assert len(sent) == 1
    assert sent[0].job_id == job_id
    assert sent[0].duration_ms >= 0
    assert sink.of_kind("failed") == []


def test_failing_job_is_released_with_backoff(memory_storage, payload, sink, clock):
    job_id = memory_storage.enqueue("emails", payload)
    worker = _worker(memory_storage, _always_fails, sink, max_tries=3, retry_delay=5)

    worker.run_once()

    job = memory_storage.get_job(job_id)
    assert job.available_at == clock.now + 5
    assert not job.is_reserved
    failed = sink.of_kind("failed")
    assert len(failed) == 1 and failed[0].will_retry is True
    assert failed[0].exception_message == "Transport exploded"
    queued = sink.of_kind("queued")
    assert queued[0].retry is True and queued[0].delay == 5
    assert worker.run_once() is False  # not yet due


def test_always_failing_job_ends_in_failed_collection(memory_storage, payload, sink, clock):
    job_id = memory_storage.enqueue("emails", payload)
    worker = _worker(memory_storage, _always_fails, sink, max_tries=3, retry_delay=5, max_retry_delay=300)

    reservations = 0
    while memory_storage.get_job(job_id) is not None:
        assert worker.run_once() is True
        reservations += 1
        clock.advance(300)

    assert reservations == 3
    failed = memory_storage.list_failed()
    assert len(failed) == 1
    assert failed[0].job.attempts == 3
    assert failed[0].exception_message == "Transport exploded"
    assert memory_storage.list("emails") == []


def test_two_tries_then_failed_without_retry(memory_storage, payload, sink, clock):
    memory_storage.enqueue("emails", payload)
    worker = _worker(memory_storage, _always_fails, sink, max_tries=2)

    worker.run_once()
    clock.advance(600)
    worker.run_once()

    failed = memory_storage.list_failed()
    assert len(failed) == 1
    assert failed[0].job.attempts == 2
    final = sink.of_kind("failed")[-1]
    assert final.will_retry is False
    assert final.attempts == 2


def test_timed_out_job_counts_as_failure(memory_storage, payload, sink):
    job_id = memory_storage.enqueue("emails", payload)
    worker = _worker(memory_storage, lambda job: time.sleep(1), sink, max_tries=1, timeout=0.05)

    worker.run_once()

    failed = memory_storage.list_failed()
    assert [f.id for f in failed] == [job_id]
    assert "timeout" in failed[0].exception_message


def test_queues_are_worked_in_priority_order(memory_storage, sink):
    low = memory_storage.enqueue("bulk", MailPayload(to="b@example.com"))
    high = memory_storage.enqueue("emails", MailPayload(to="a@example.com"))
    seen = []
    worker = Worker(
        memory_storage,
        Performer({"send_mail": lambda job: seen.append(job.id)}),
        config=WorkerConfig(sleep=0),
        queues=["emails", "bulk"],
        memory_usage=lambda: 1.0,
    )

    worker.run_once()
    worker.run_once()

    assert seen == [high, low]


def test_memory_limit_stops_before_reserving(memory_storage, payload):
    job_id = memory_storage.enqueue("emails", payload)
    worker = Worker(
        memory_storage,
        Performer({"send_mail": _succeeds}),
        config=WorkerConfig(memory=64),
        memory_usage=lambda: 65.0,
    )

    assert worker.run() == Worker.MEMORY
    assert not memory_storage.get_job(job_id).is_reserved


def test_stop_interrupts_idle_wait(memory_storage):
    worker = _worker(memory_storage, _succeeds, sleep=30)
    result = {}
    thread = threading.Thread(target=lambda: result.update(reason=worker.run()))

    thread.start()
    time.sleep(0.05)
    worker.stop()
    thread.join(timeout=2)

    assert not thread.is_alive()
    assert result["reason"] == Worker.STOPPED


def test_store_outage_does_not_crash_loop(payload):
    class FlakyStorage(MemoryStorage):
        def __init__(self):
            super().__init__()
            self.calls = 0

        def reserve(self, queue):
            self.calls += 1
            raise StoreConnectionError("down")

    storage = FlakyStorage()
    worker = Worker(storage, Performer({}), config=WorkerConfig(sleep=0), memory_usage=lambda: 1.0, error_cooldown=0.01)

    thread = threading.Thread(target=worker.run)
    thread.start()
    time.sleep(0.1)
    worker.stop()
    thread.join(timeout=2)

    assert not thread.is_alive()
    assert storage.calls >= 2


def test_processor_returns_final_state(memory_storage, payload):
    memory_storage.enqueue("emails", payload)
    job = memory_storage.reserve("emails")

    state = JobProcessor(job, memory_storage, Performer({"send_mail": _succeeds})).process()

    assert isinstance(state, SucceededState)
    assert state.result == "queued-at-provider"


class _RecordingFilter(JobFilter):
    def __init__(self):
        self.elected = []
        self.applied = []

    def on_state_election(self, elect_state_context):
        self.elected.append(elect_state_context.candidate_state.name)

    def on_state_applied(self, elect_state_context):
        self.applied.append((elect_state_context.applied.name, elect_state_context.elapsed_ms))


def test_processor_runs_applied_hook_after_store_transition(memory_storage, payload):
    memory_storage.enqueue("emails", payload)
    job = memory_storage.reserve("emails")
    recorder = _RecordingFilter()

    JobProcessor(
        job,
        memory_storage,
        Performer({"send_mail": _always_fails}),
        filters=[RetryFilter(max_tries=1), recorder],
    ).process()

    assert recorder.elected == ["failed"]
    assert recorder.applied[0][0] == "failed"
    assert recorder.applied[0][1] >= 0
    assert memory_storage.failed_count() == 1


def test_retry_filter_keeps_handler_delay(memory_storage, payload, clock):
    memory_storage.enqueue("emails", payload)
    job = memory_storage.reserve("emails")

    state = JobProcessor(
        job,
        memory_storage,
        Performer({"send_mail": lambda j: RetryState(reason="Rate Limited: slow down", delay=42)}),
        filters=[RetryFilter(max_tries=3)],
    ).process()

    assert state.delay == 42
    assert memory_storage.get_job(job.id).available_at == clock() + 42


def test_worker_rejects_timeout_not_shorter_than_lease(memory_storage):
    with pytest.raises(ConfigurationError, match="reservation timeout"):
        _worker(memory_storage, _succeeds, timeout=120)

    with pytest.raises(ConfigurationError):
        _worker(memory_storage, _succeeds, timeout=90)


@pytest.mark.parametrize("queue", ["job:x", "a:b", ""])
def test_worker_rejects_queue_names_outside_queue_key_space(memory_storage, queue):
    with pytest.raises(ValueError):
        Worker(memory_storage, Performer({}), config=WorkerConfig(sleep=0), queues=[queue])


def test_late_success_does_not_touch_job_taken_over_by_another_worker(memory_storage, payload, clock, sink):
    memory_storage.enqueue("emails", payload)
    stale = memory_storage.reserve("emails")
    clock.advance(91)
    current = memory_storage.reserve("emails")

    JobProcessor(stale, memory_storage, Performer({"send_mail": _succeeds}), events=sink).process()

    assert memory_storage.get_job(current.id) is not None
    assert memory_storage.acknowledge(current.id, token=current.reservation)
    assert len(sink.of_kind("sent")) == 1


def test_late_failure_leaves_current_holder_in_charge(memory_storage, payload, clock, sink):
    memory_storage.enqueue("emails", payload)
    stale = memory_storage.reserve("emails")
    clock.advance(91)
    current = memory_storage.reserve("emails")

    state = JobProcessor(
        stale,
        memory_storage,
        Performer({"send_mail": _always_fails}),
        filters=[RetryFilter(max_tries=1)],
        events=sink,
    ).process()

    assert isinstance(state, FailedState)
    assert memory_storage.failed_count() == 0
    assert memory_storage.reserve("emails") is None
    assert sink.of_kind("failed") == []
    assert memory_storage.fail(current.id, "bounced", token=current.reservation) is not None
