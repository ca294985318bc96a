# pymailflow/storage/redis_storage.py
import redis
import logging
import time
import uuid
import functools
from typing import Callable, Optional, List, Dict, Set

from .base import JobStorage
from ..config import ConnectionConfig, QueueConfig
from ..common.job import Job, FailedJob, MailPayload
from ..common.exceptions import StoreConnectionError
from ..serialization.json_serializer import JsonSerializer

logger = logging.getLogger(__name__)

# Moves every lease that expired at or before ARGV[1] back to pending.
# KEYS[1] pending zset, KEYS[2] reserved zset, ARGV[2] job key prefix.
_RECLAIM_LUA = """
    local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
    for _, id in ipairs(expired) do
        redis.call('ZREM', KEYS[2], id)
        if redis.call('EXISTS', ARGV[2] .. id) == 1 then
            redis.call('ZADD', KEYS[1], ARGV[1], id)
            redis.call('HSET', ARGV[2] .. id, 'available_at', ARGV[1], 'reserved_at', '', 'reservation', '')
        end
    end
"""

# ARGV[3] lease expiry, ARGV[4] reservation token.
_RESERVE_LUA = _RECLAIM_LUA + """
    local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
    if #ids == 0 then
        return false
    end
    local id = ids[1]
    local job_key = ARGV[2] .. id
    redis.call('ZREM', KEYS[1], id)
    if redis.call('EXISTS', job_key) == 0 then
        return false
    end
    redis.call('ZADD', KEYS[2], ARGV[3], id)
    redis.call('HINCRBY', job_key, 'attempts', 1)
    redis.call('HSET', job_key, 'reserved_at', ARGV[1], 'reservation', ARGV[4])
    return redis.call('HGETALL', job_key)
"""

_RECOVER_LUA = _RECLAIM_LUA + """
    return expired
"""

# An empty token skips the lease check.
_HOLDS_LEASE_LUA = """
    local function holds_lease(job_key, token)
        return token == '' or redis.call('HGET', job_key, 'reservation') == token
    end
"""

# ARGV: prefix, id, token.
_ACKNOWLEDGE_LUA = _HOLDS_LEASE_LUA + """
    local queue = redis.call('HGET', KEYS[1], 'queue')
    if not queue or not holds_lease(KEYS[1], ARGV[3]) then
        return 0
    end
    redis.call('ZREM', ARGV[1] .. queue, ARGV[2])
    redis.call('ZREM', ARGV[1] .. queue .. ':reserved', ARGV[2])
    redis.call('DEL', KEYS[1])
    return 1
"""

# ARGV: prefix, id, available_at, token.
_RELEASE_LUA = _HOLDS_LEASE_LUA + """
    local queue = redis.call('HGET', KEYS[1], 'queue')
    if not queue or not holds_lease(KEYS[1], ARGV[4]) then
        return 0
    end
    redis.call('ZREM', ARGV[1] .. queue .. ':reserved', ARGV[2])
    redis.call('ZADD', ARGV[1] .. queue, ARGV[3], ARGV[2])
    redis.call('HSET', KEYS[1], 'available_at', ARGV[3], 'reserved_at', '', 'reservation', '')
    return 1
"""

# KEYS[1] job hash, KEYS[2] failed hash; ARGV[3] is the failed record JSON, ARGV[4] the token.
_FAIL_LUA = _HOLDS_LEASE_LUA + """
    local queue = redis.call('HGET', KEYS[1], 'queue')
    if not queue or not holds_lease(KEYS[1], ARGV[4]) then
        return 0
    end
    redis.call('ZREM', ARGV[1] .. queue, ARGV[2])
    redis.call('ZREM', ARGV[1] .. queue .. ':reserved', ARGV[2])
    redis.call('DEL', KEYS[1])
    redis.call('HSET', KEYS[2], ARGV[2], ARGV[3])
    return 1
"""

# ARGV: prefix, id, queue, available_at, then the job hash as field/value pairs.
_RETRY_LUA = """
    if redis.call('HDEL', KEYS[1], ARGV[2]) == 0 then
        return 0
    end
    redis.call('HSET', KEYS[2], unpack(ARGV, 5))
    redis.call('ZADD', ARGV[1] .. ARGV[3], ARGV[4], ARGV[2])
    redis.call('SADD', ARGV[1] .. 'queues', ARGV[3])
    return 1
"""

_CLEAR_LUA = """
    local count = 0
    for i = 1, 2 do
        local ids = redis.call('ZRANGE', KEYS[i], 0, -1)
        for _, id in ipairs(ids) do
            redis.call('DEL', ARGV[1] .. id)
            count = count + 1
        end
        redis.call('DEL', KEYS[i])
    end
    return count
"""


def _wrap_connection_errors(method):
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except (redis.exceptions.ConnectionError, redis.exceptions.TimeoutError) as e:
            raise StoreConnectionError(f"Redis unavailable: {e}") from e
    return wrapper


def _decoding_pool(pool: redis.ConnectionPool) -> redis.ConnectionPool:
    # Ids are used to build keys, so replies must be str rather than bytes.
    if pool.connection_kwargs.get("decode_responses"):
        return pool
    kwargs = dict(pool.connection_kwargs, decode_responses=True)
    return redis.ConnectionPool(connection_class=pool.connection_class, **kwargs)


def _pairs_to_dict(flat: List[str]) -> Dict[str, str]:
    return dict(zip(flat[::2], flat[1::2]))


class RedisStorage(JobStorage):
    """
    Queue store backed by Redis.

    Every state transition that touches more than one key runs as a Lua
    script, so concurrent workers never observe a half-moved job.
    """

    def __init__(
        self,
        connection_pool=None,
        redis_client=None,
        queue_config: Optional[QueueConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        if redis_client:
            self.redis_client = redis.Redis(connection_pool=_decoding_pool(redis_client.connection_pool))
        elif connection_pool:
            self.redis_client = redis.Redis(connection_pool=_decoding_pool(connection_pool))
        else:
            self.redis_client = redis.Redis(
                host="127.0.0.1", port=6379, db=0, decode_responses=True
            )

        self.queue_config = queue_config or QueueConfig()
        self.prefix = self.queue_config.key_prefix
        self.failed_key = self.queue_config.failed_jobs_key
        self.reservation_timeout = self.queue_config.reservation_timeout
        self.clock = clock
        self.serializer = JsonSerializer()

        self.reserve_script = self.redis_client.register_script(_RESERVE_LUA)
        self.recover_script = self.redis_client.register_script(_RECOVER_LUA)
        self.acknowledge_script = self.redis_client.register_script(_ACKNOWLEDGE_LUA)
        self.release_script = self.redis_client.register_script(_RELEASE_LUA)
        self.fail_script = self.redis_client.register_script(_FAIL_LUA)
        self.retry_script = self.redis_client.register_script(_RETRY_LUA)
        self.clear_script = self.redis_client.register_script(_CLEAR_LUA)

    @classmethod
    def from_config(
        cls, connection: ConnectionConfig, queue_config: Optional[QueueConfig] = None
    ) -> "RedisStorage":
        client = redis.Redis(
            host=connection.host,
            port=connection.port,
            password=connection.password,
            db=connection.database,
            socket_timeout=connection.timeout,
            socket_connect_timeout=connection.timeout,
            decode_responses=True,
        )
        return cls(redis_client=client, queue_config=queue_config)

    def _pending_key(self, queue: str) -> str:
        return f"{self.prefix}{queue}"

    def _reserved_key(self, queue: str) -> str:
        return f"{self.prefix}{queue}:reserved"

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}job:{job_id}"

    @property
    def _queues_key(self) -> str:
        return f"{self.prefix}queues"

    def reserved_queue_names(self) -> Set[str]:
        # Names whose queue keys would land on the queue set or the failed hash.
        names = {"queues"}
        if self.failed_key.startswith(self.prefix):
            rest = self.failed_key[len(self.prefix):]
            if rest.endswith(":reserved"):
                rest = rest[: -len(":reserved")]
            if ":" not in rest:
                names.add(rest)
        return names

    @_wrap_connection_errors
    def enqueue(self, queue: str, payload: MailPayload) -> str:
        self.check_queue_name(queue)
        now = self.clock()
        job = Job(queue=queue, payload=payload, enqueued_at=now, available_at=now)
        with self.redis_client.pipeline() as pipe:
            pipe.hset(self._job_key(job.id), mapping=self.serializer.job_to_hash(job))
            pipe.zadd(self._pending_key(queue), {job.id: now})
            pipe.sadd(self._queues_key, queue)
            pipe.execute()
        logger.debug(f"Enqueued job {job.id} on queue {queue}")
        return job.id

    @_wrap_connection_errors
    def reserve(self, queue: str) -> Optional[Job]:
        self.check_queue_name(queue)
        now = self.clock()
        result = self.reserve_script(
            keys=[self._pending_key(queue), self._reserved_key(queue)],
            args=[repr(now), self._job_key(""), repr(now + self.reservation_timeout), uuid.uuid4().hex],
        )
        if not result:
            return None
        return self.serializer.job_from_hash(_pairs_to_dict(result))

    @_wrap_connection_errors
    def acknowledge(self, job_id: str, token: Optional[str] = None) -> bool:
        result = self.acknowledge_script(
            keys=[self._job_key(job_id)], args=[self.prefix, job_id, token or ""]
        )
        return result == 1

    @_wrap_connection_errors
    def release(self, job_id: str, delay: float, token: Optional[str] = None) -> bool:
        if delay < 0:
            raise ValueError(f"delay must be >= 0, got {delay}")
        available_at = self.clock() + delay
        result = self.release_script(
            keys=[self._job_key(job_id)], args=[self.prefix, job_id, repr(available_at), token or ""]
        )
        return result == 1

    @_wrap_connection_errors
    def fail(self, job_id: str, reason: str, token: Optional[str] = None) -> Optional[FailedJob]:
        job = self.get_job(job_id)
        if job is None:
            return None
        job.reservation = None
        failed = FailedJob(job=job, exception_message=reason, failed_at=self.clock())
        result = self.fail_script(
            keys=[self._job_key(job_id), self.failed_key],
            args=[self.prefix, job_id, self.serializer.serialize_failed(failed), token or ""],
        )
        return failed if result == 1 else None

    @_wrap_connection_errors
    def get_job(self, job_id: str) -> Optional[Job]:
        job_data = self.redis_client.hgetall(self._job_key(job_id))
        if not job_data:
            return None
        return self.serializer.job_from_hash(job_data)

    def _jobs_by_ids(self, ids: List[str]) -> List[Job]:
        if not ids:
            return []
        with self.redis_client.pipeline(transaction=False) as pipe:
            for job_id in ids:
                pipe.hgetall(self._job_key(job_id))
            rows = pipe.execute()
        return [self.serializer.job_from_hash(row) for row in rows if row]

    @_wrap_connection_errors
    def list(self, queue: str) -> List[Job]:
        ids = self.redis_client.zrange(self._pending_key(queue), 0, -1)
        ids += self.redis_client.zrange(self._reserved_key(queue), 0, -1)
        jobs = self._jobs_by_ids(ids)
        jobs.sort(key=lambda j: (j.available_at, j.id))
        return jobs

    @_wrap_connection_errors
    def list_failed(self) -> List[FailedJob]:
        records = self.redis_client.hvals(self.failed_key)
        failed = []
        for record in records:
            try:
                failed.append(self.serializer.deserialize_failed(record))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable failed record: {e}")
        failed.sort(key=lambda f: (f.failed_at, f.id))
        return failed

    @_wrap_connection_errors
    def retry(self, job_id: str) -> bool:
        record = self.redis_client.hget(self.failed_key, job_id)
        if record is None:
            return False
        job = self.serializer.deserialize_failed(record).job
        now = self.clock()
        job.attempts = 0
        job.available_at = now
        job.reserved_at = None
        fields = []
        for key, value in self.serializer.job_to_hash(job).items():
            fields += [key, value]
        result = self.retry_script(
            keys=[self.failed_key, self._job_key(job_id)],
            args=[self.prefix, job_id, job.queue, repr(now)] + fields,
        )
        return result == 1

    @_wrap_connection_errors
    def clear(self, queue: str) -> int:
        return int(
            self.clear_script(
                keys=[self._pending_key(queue), self._reserved_key(queue)],
                args=[self._job_key("")],
            )
        )

    @_wrap_connection_errors
    def flush_failed(self, queue: Optional[str] = None) -> int:
        if queue is None:
            with self.redis_client.pipeline() as pipe:
                pipe.hlen(self.failed_key)
                pipe.delete(self.failed_key)
                count, _ = pipe.execute()
            return int(count)
        doomed = [f.id for f in self.list_failed() if f.job.queue == queue]
        if not doomed:
            return 0
        return int(self.redis_client.hdel(self.failed_key, *doomed))

    @_wrap_connection_errors
    def queues(self) -> List[str]:
        return sorted(self.redis_client.smembers(self._queues_key))

    @_wrap_connection_errors
    def recover_expired(self, queue: str) -> List[str]:
        result = self.recover_script(
            keys=[self._pending_key(queue), self._reserved_key(queue)],
            args=[repr(self.clock()), self._job_key("")],
        )
        return list(result or [])

    @_wrap_connection_errors
    def size(self, queue: str) -> int:
        with self.redis_client.pipeline(transaction=False) as pipe:
            pipe.zcard(self._pending_key(queue))
            pipe.zcard(self._reserved_key(queue))
            pending, reserved = pipe.execute()
        return int(pending) + int(reserved)

    @_wrap_connection_errors
    def failed_count(self) -> int:
        return int(self.redis_client.hlen(self.failed_key))
