"""
Storage - Backends.

============================================================
PURPOSE
============================================================
Key/value backends behind the time-series, current-value and
alert stores.

Two implementations:
- MemoryBackend: single process, per-key threading locks
- RedisBackend: sorted sets, hashes, sets and lists in Redis,
  multi-step mutations wrapped in MULTI/EXEC

============================================================
ATOMICITY
============================================================
Every mutation of one key is a single atomic unit. Series
append+trim and hash replace are never observable half-done.
Operations on different keys never block each other.

lock(name) gives callers a mutual-exclusion region for
check-then-act sequences that touch several keys.

Backend connectivity failures surface as BackendUnavailable.

============================================================
"""

from abc import ABC, abstractmethod
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from fnmatch import fnmatchcase
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Set, Tuple
import itertools
import logging
import threading

import redis
from redis.exceptions import LockError, RedisError

from core.exceptions import BackendUnavailable, ValidationError


logger = logging.getLogger(__name__)


# (timestamp, value)
Point = Tuple[float, float]


# ============================================================
# BATCHED WRITES
# ============================================================

@dataclass(frozen=True)
class Write:
    """
    One mutation inside a write_batch().

    op is the name of the backend method to apply (set, delete,
    hash_replace, set_add, set_remove, list_push_capped) and args
    are its arguments after the key.
    """

    op: str
    key: str
    args: Tuple[Any, ...] = ()


BATCH_OPS = {
    "set": 1,
    "delete": 0,
    "hash_replace": 1,
    "set_add": 1,
    "set_remove": 1,
    "list_push_capped": 2,
}


def _check_writes(writes: Sequence[Write]) -> None:
    for write in writes:
        arity = BATCH_OPS.get(write.op)
        if arity is None or len(write.args) != arity:
            raise ValidationError("invalid batched write", field_name="op", value=write.op)
        if write.op == "list_push_capped":
            _check_max_len(write.args[1])


# ============================================================
# BACKEND INTERFACE
# ============================================================

class StorageBackend(ABC):
    """Abstract storage backend."""

    name: str = "abstract"

    # --- plain values ---

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    # --- bounded series ---

    @abstractmethod
    def series_append(self, key: str, timestamp: float, value: float, max_len: int) -> None:
        """Add one point and trim to max_len, smallest timestamp evicted first."""
        pass

    @abstractmethod
    def series_range(self, key: str, descending: bool = True) -> List[Point]:
        pass

    @abstractmethod
    def series_size(self, key: str) -> int:
        pass

    # --- hashes ---

    @abstractmethod
    def hash_replace(self, key: str, mapping: Mapping[str, str]) -> None:
        """Replace the whole hash. An empty mapping removes the key."""
        pass

    @abstractmethod
    def hash_get(self, key: str) -> Dict[str, str]:
        pass

    # --- sets ---

    @abstractmethod
    def set_add(self, key: str, member: str) -> None:
        pass

    @abstractmethod
    def set_remove(self, key: str, member: str) -> None:
        pass

    @abstractmethod
    def set_members(self, key: str) -> Set[str]:
        pass

    # --- capped lists ---

    @abstractmethod
    def list_push_capped(self, key: str, value: str, max_len: int) -> None:
        """Prepend value, keep at most max_len newest entries."""
        pass

    @abstractmethod
    def list_range(self, key: str) -> List[str]:
        pass

    # --- batches ---

    @abstractmethod
    def write_batch(self, writes: Sequence[Write]) -> None:
        """Apply several writes as one unit; no reader sees them half applied."""
        pass

    # --- misc ---

    @abstractmethod
    def keys(self, pattern: str) -> List[str]:
        pass

    @abstractmethod
    def lock(self, name: str):
        """Context manager holding an exclusive lock on name."""
        pass

    @abstractmethod
    def ping(self) -> bool:
        pass

    def close(self) -> None:
        pass


def _check_max_len(max_len: int) -> None:
    if max_len < 1:
        raise ValidationError("max_len must be at least 1", field_name="max_len", value=max_len)


# ============================================================
# MEMORY BACKEND
# ============================================================

class KeyedLocks:
    """Lazily created lock per key."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        lock = self.get(key)
        with lock:
            yield


class MemoryBackend(StorageBackend):
    """
    In-process backend.

    Suitable for a single monitor process and for tests.
    Data is lost on restart.
    """

    name = "memory"

    def __init__(self):
        self._values: Dict[str, str] = {}
        # key -> list of (timestamp, insertion seq, value), ascending
        self._series: Dict[str, List[Tuple[float, int, float]]] = {}
        self._hashes: Dict[str, Dict[str, str]] = {}
        self._sets: Dict[str, Set[str]] = {}
        self._lists: Dict[str, List[str]] = {}
        self._seq = itertools.count()
        self._key_locks = KeyedLocks()
        self._user_locks = KeyedLocks()

    def get(self, key: str) -> Optional[str]:
        with self._key_locks.hold(key):
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._key_locks.hold(key):
            self._values[key] = value

    def delete(self, key: str) -> bool:
        with self._key_locks.hold(key):
            removed = False
            for store in (self._values, self._series, self._hashes, self._sets, self._lists):
                if key in store:
                    del store[key]
                    removed = True
            return removed

    def series_append(self, key: str, timestamp: float, value: float, max_len: int) -> None:
        _check_max_len(max_len)
        with self._key_locks.hold(key):
            points = self._series.setdefault(key, [])
            points.append((timestamp, next(self._seq), value))
            points.sort(key=lambda p: (p[0], p[1]))
            if len(points) > max_len:
                del points[: len(points) - max_len]

    def series_range(self, key: str, descending: bool = True) -> List[Point]:
        with self._key_locks.hold(key):
            points = [(ts, value) for ts, _, value in self._series.get(key, ())]
        if descending:
            points.reverse()
        return points

    def series_size(self, key: str) -> int:
        with self._key_locks.hold(key):
            return len(self._series.get(key, ()))

    def hash_replace(self, key: str, mapping: Mapping[str, str]) -> None:
        with self._key_locks.hold(key):
            if mapping:
                self._hashes[key] = dict(mapping)
            else:
                self._hashes.pop(key, None)

    def hash_get(self, key: str) -> Dict[str, str]:
        with self._key_locks.hold(key):
            return dict(self._hashes.get(key, {}))

    def set_add(self, key: str, member: str) -> None:
        with self._key_locks.hold(key):
            self._sets.setdefault(key, set()).add(member)

    def set_remove(self, key: str, member: str) -> None:
        with self._key_locks.hold(key):
            members = self._sets.get(key)
            if members is not None:
                members.discard(member)
                if not members:
                    del self._sets[key]

    def set_members(self, key: str) -> Set[str]:
        with self._key_locks.hold(key):
            return set(self._sets.get(key, ()))

    def list_push_capped(self, key: str, value: str, max_len: int) -> None:
        _check_max_len(max_len)
        with self._key_locks.hold(key):
            items = self._lists.setdefault(key, [])
            items.insert(0, value)
            del items[max_len:]

    def list_range(self, key: str) -> List[str]:
        with self._key_locks.hold(key):
            return list(self._lists.get(key, ()))

    def write_batch(self, writes: Sequence[Write]) -> None:
        _check_writes(writes)
        # key locks are reentrant; sorted order keeps batches deadlock free
        with ExitStack() as stack:
            for key in sorted({w.key for w in writes}):
                stack.enter_context(self._key_locks.hold(key))
            for write in writes:
                getattr(self, write.op)(write.key, *write.args)

    def keys(self, pattern: str) -> List[str]:
        found = set()
        for store in (self._values, self._series, self._hashes, self._sets, self._lists):
            found.update(k for k in list(store) if fnmatchcase(k, pattern))
        return sorted(found)

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        with self._user_locks.hold(name):
            yield

    def ping(self) -> bool:
        return True


# ============================================================
# REDIS BACKEND
# ============================================================

SERIES_SEQUENCE_KEY = "series:seq"


@contextmanager
def _redis_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (RedisError, LockError) as e:
        raise BackendUnavailable(
            f"Redis {operation} failed: {e}",
            backend="redis",
            context={"operation": operation},
            cause=e,
        ) from e


def _encode_point(seq: int, value: float) -> str:
    # zero padded so equal scores order by insertion
    return f"{seq:020d}|{value!r}"


def _decode_point(member: str) -> float:
    return float(member.split("|", 1)[1])


def _queue_write(pipe, write: Write) -> None:
    key, args = write.key, write.args
    if write.op == "set":
        pipe.set(key, args[0])
    elif write.op == "delete":
        pipe.delete(key)
    elif write.op == "hash_replace":
        pipe.delete(key)
        if args[0]:
            pipe.hset(key, mapping=dict(args[0]))
    elif write.op == "set_add":
        pipe.sadd(key, args[0])
    elif write.op == "set_remove":
        pipe.srem(key, args[0])
    elif write.op == "list_push_capped":
        pipe.lpush(key, args[0])
        pipe.ltrim(key, 0, args[1] - 1)


class RedisBackend(StorageBackend):
    """
    Redis backend.

    Series are sorted sets scored by timestamp. Append and trim run
    in one MULTI/EXEC transaction.
    """

    name = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        timeout_seconds: float = 5.0,
        lock_timeout_seconds: float = 10.0,
        client: Optional["redis.Redis"] = None,
    ):
        self._lock_timeout = lock_timeout_seconds
        self._blocking_timeout = timeout_seconds
        if client is not None:
            self._client = client
        else:
            self._client = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_connect_timeout=timeout_seconds,
                socket_timeout=timeout_seconds,
                health_check_interval=30,
            )

    def get(self, key: str) -> Optional[str]:
        with _redis_errors("get"):
            return self._client.get(key)

    def set(self, key: str, value: str) -> None:
        with _redis_errors("set"):
            self._client.set(key, value)

    def delete(self, key: str) -> bool:
        with _redis_errors("delete"):
            return bool(self._client.delete(key))

    def series_append(self, key: str, timestamp: float, value: float, max_len: int) -> None:
        _check_max_len(max_len)
        with _redis_errors("series_append"):
            seq = int(self._client.incr(SERIES_SEQUENCE_KEY))
            with self._client.pipeline(transaction=True) as pipe:
                pipe.zadd(key, {_encode_point(seq, value): timestamp})
                pipe.zremrangebyrank(key, 0, -(max_len + 1))
                pipe.execute()

    def series_range(self, key: str, descending: bool = True) -> List[Point]:
        with _redis_errors("series_range"):
            if descending:
                rows = self._client.zrevrange(key, 0, -1, withscores=True)
            else:
                rows = self._client.zrange(key, 0, -1, withscores=True)
        return [(float(score), _decode_point(member)) for member, score in rows]

    def series_size(self, key: str) -> int:
        with _redis_errors("series_size"):
            return int(self._client.zcard(key))

    def hash_replace(self, key: str, mapping: Mapping[str, str]) -> None:
        with _redis_errors("hash_replace"):
            with self._client.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                if mapping:
                    pipe.hset(key, mapping=dict(mapping))
                pipe.execute()

    def hash_get(self, key: str) -> Dict[str, str]:
        with _redis_errors("hash_get"):
            return dict(self._client.hgetall(key))

    def set_add(self, key: str, member: str) -> None:
        with _redis_errors("set_add"):
            self._client.sadd(key, member)

    def set_remove(self, key: str, member: str) -> None:
        with _redis_errors("set_remove"):
            self._client.srem(key, member)

    def set_members(self, key: str) -> Set[str]:
        with _redis_errors("set_members"):
            return set(self._client.smembers(key))

    def list_push_capped(self, key: str, value: str, max_len: int) -> None:
        _check_max_len(max_len)
        with _redis_errors("list_push_capped"):
            with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, value)
                pipe.ltrim(key, 0, max_len - 1)
                pipe.execute()

    def list_range(self, key: str) -> List[str]:
        with _redis_errors("list_range"):
            return list(self._client.lrange(key, 0, -1))

    def write_batch(self, writes: Sequence[Write]) -> None:
        _check_writes(writes)
        with _redis_errors("write_batch"):
            with self._client.pipeline(transaction=True) as pipe:
                for write in writes:
                    _queue_write(pipe, write)
                pipe.execute()

    def keys(self, pattern: str) -> List[str]:
        with _redis_errors("keys"):
            return sorted(set(self._client.scan_iter(match=pattern, count=500)))

    @contextmanager
    def lock(self, name: str) -> Iterator[None]:
        with _redis_errors("lock"):
            with self._client.lock(
                f"lock:{name}",
                timeout=self._lock_timeout,
                blocking_timeout=self._blocking_timeout,
            ):
                yield

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    def close(self) -> None:
        with _redis_errors("close"):
            self._client.close()


# ============================================================
# FACTORY
# ============================================================

def create_backend(
    kind: str,
    redis_url: str = "redis://localhost:6379/0",
    timeout_seconds: float = 5.0,
) -> StorageBackend:
    """Create a backend by name ("memory" or "redis")."""
    kind = (kind or "").lower()
    if kind == "memory":
        return MemoryBackend()
    if kind == "redis":
        backend = RedisBackend(redis_url=redis_url, timeout_seconds=timeout_seconds)
        if not backend.ping():
            logger.warning(f"Redis at {redis_url} not reachable yet, continuing")
        return backend
    raise ValidationError("unknown storage backend", field_name="kind", value=kind)


__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "RedisBackend",
    "KeyedLocks",
    "Write",
    "create_backend",
]
