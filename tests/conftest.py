import pytest
import redis

from pymailflow.common.events import EventSink
from pymailflow.common.job import MailPayload
from pymailflow.config import QueueConfig
from pymailflow.storage.memory_storage import MemoryStorage
from pymailflow.storage.redis_storage import RedisStorage


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink(EventSink):
    def __init__(self):
        self.events = []

    def emit(self, event) -> None:
        self.events.append(event)

    def of_kind(self, kind):
        return [e for e in self.events if e.kind == kind]


class RecordingTransport:
    kind = "recording"

    def __init__(self, fail_with=None):
        self.sent = []
        self.fail_with = fail_with

    def send(self, message):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append(message)
        return message.message_id


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def payload():
    return MailPayload(to="a@example.com", subject="Hi", content="Hello")


@pytest.fixture
def memory_storage(clock):
    return MemoryStorage(reservation_timeout=90, clock=clock)


@pytest.fixture
def redis_client():
    r = redis.Redis(host="localhost", port=6379, db=15)
    try:
        r.ping()
    except redis.exceptions.ConnectionError:
        pytest.skip("Redis server not running on localhost:6379")
    r.flushdb()  # Clear database before each test
    yield r
    r.flushdb()


@pytest.fixture
def redis_storage(redis_client, clock):
    return RedisStorage(
        connection_pool=redis_client.connection_pool,
        queue_config=QueueConfig(reservation_timeout=90),
        clock=clock,
    )


@pytest.fixture(params=["memory", "redis"])
def storage(request, clock):
    if request.param == "memory":
        return request.getfixturevalue("memory_storage")
    return request.getfixturevalue("redis_storage")
