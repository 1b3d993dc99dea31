"""
Read-through cache over Redis for catalog reads.

Redis is ONLY a cache, never the source of truth; Postgres is authoritative.
Every failure on the Redis side (connection, timeout, bad payload) degrades to
a cache miss and the producer runs against the database instead.

Keys follow the pattern cache:{function_name}:{canonical_json(input)}.
See cache_policy.py for the TTL table.

Supports both local Redis and Upstash (cloud-hosted) via UPSTASH_REDIS_URL.
"""

import json
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Callable, Iterable, Optional, TypeVar

import redis
from pydantic import BaseModel

from storefront.cache_policy import KEY_PREFIX
from storefront.config import StorefrontConfig, get_config
from storefront.logger import get_logger
from storefront.metrics import metrics_collector

logger = get_logger("cache")

T = TypeVar("T")

_MISS = object()


#
# Typed outcomes
#

class CacheErrorKind(Enum):
    CONNECTION = auto()
    TIMEOUT = auto()
    SERIALIZATION = auto()
    BACKEND = auto()


@dataclass(frozen=True, slots=True)
class CacheError:
    """Cache backend error, reported instead of raised."""
    kind: CacheErrorKind
    message: str


@dataclass(frozen=True, slots=True)
class CacheOutcome:
    """
    Result of a single cache operation.

    Reads: hit=True means `value` holds a deserialized cached value (which may
    itself be None); on a miss or an error, callers unwrap_or() to their own
    default. Writes and deletes never hit; a successful one carries its result
    in `value`, read back with value_or().
    """
    hit: bool = False
    value: Any = None
    error: Optional[CacheError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        return self.value if self.hit else default

    def value_or(self, default: Any) -> Any:
        return self.value if self.ok else default


def _classify(exc: Exception) -> CacheError:
    if isinstance(exc, redis.exceptions.TimeoutError):
        kind = CacheErrorKind.TIMEOUT
    elif isinstance(exc, (redis.exceptions.ConnectionError, OSError)):
        kind = CacheErrorKind.CONNECTION
    elif isinstance(exc, (TypeError, ValueError)):
        kind = CacheErrorKind.SERIALIZATION
    else:
        kind = CacheErrorKind.BACKEND
    return CacheError(kind, f"{type(exc).__name__}: {exc}")


#
# Key construction
#

def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    return value


def canonical_json(value: Any) -> str:
    """
    Serialize with mapping keys sorted at every depth and compact separators.

    Two logically equal inputs always produce the same string, whatever the
    insertion order of their dicts.
    """
    return json.dumps(
        _to_jsonable(value),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def make_cache_key(function_name: str, input: Any = None) -> str:
    """Build cache:{function_name}:{input}. Absent input leaves the last part empty."""
    input_str = canonical_json(input) if input is not None else ""
    return f"{KEY_PREFIX}:{function_name}:{input_str}"


#
# Client
#

class CacheClient:
    """
    Thin wrapper over a redis-py client that never raises.

    Connection priority:
    1. UPSTASH_REDIS_URL (cloud-hosted, rediss:// TLS)
    2. REDIS_HOST + REDIS_PORT + REDIS_DB (local)
    """

    def __init__(self, client: Optional[Any] = None, config: Optional[StorefrontConfig] = None):
        """
        Args:
            client: Pre-built redis client (anything with get/set/scan_iter/delete/ping).
                    Built from configuration when omitted.
            config: Settings used to build the client; defaults to get_config().

        If the client cannot be built (e.g. a malformed URL), the instance
        stays usable: every operation reports `build_error` and ping() is False.
        """
        self.build_error: Optional[CacheError] = None
        if client is None:
            try:
                client = self._build_client(config or get_config())
            except Exception as e:
                self.build_error = CacheError(CacheErrorKind.CONNECTION, f"{type(e).__name__}: {e}")
                metrics_collector.record_cache_error()
                logger.error("Could not build Redis client, caching disabled: %s", self.build_error.message)
        self.client = client

    @staticmethod
    def _build_client(config: StorefrontConfig):
        if config.upstash_redis_url:
            return redis.from_url(
                config.upstash_redis_url,
                decode_responses=True,
                socket_connect_timeout=config.redis_socket_timeout,
                socket_timeout=config.redis_socket_timeout,
            )
        return redis.Redis(
            host=config.redis_host,
            port=config.redis_port,
            db=config.redis_db,
            decode_responses=True,
            socket_connect_timeout=config.redis_socket_timeout,
            socket_timeout=config.redis_socket_timeout,
        )

    def ping(self) -> bool:
        """Check if Redis is reachable."""
        if self.build_error is not None:
            return False
        try:
            return bool(self.client.ping())
        except Exception:
            return False

    def read(self, key: str) -> CacheOutcome:
        """GET + JSON decode. A stored JSON null is still a hit."""
        if self.build_error is not None:
            return CacheOutcome(error=self.build_error)
        try:
            cached = self.client.get(key)
            if cached is None:
                return CacheOutcome()
            return CacheOutcome(hit=True, value=json.loads(cached))
        except Exception as e:
            return CacheOutcome(error=_classify(e))

    def write(self, key: str, value: Any, ttl_seconds: int) -> CacheOutcome:
        """JSON encode + SET with expiry."""
        if self.build_error is not None:
            return CacheOutcome(error=self.build_error)
        try:
            payload = json.dumps(value, separators=(",", ":"), default=str)
            self.client.set(key, payload, ex=ttl_seconds)
            return CacheOutcome()
        except Exception as e:
            return CacheOutcome(error=_classify(e))

    def delete_pattern(self, pattern: str) -> CacheOutcome:
        """Delete every key matching a glob pattern; value is the deleted count."""
        if self.build_error is not None:
            return CacheOutcome(error=self.build_error)
        try:
            keys = list(self.client.scan_iter(match=pattern, count=100))
            deleted = self.client.delete(*keys) if keys else 0
            return CacheOutcome(value=int(deleted))
        except Exception as e:
            return CacheOutcome(error=_classify(e))


# Process-wide client. Built on first use and reused; two racing first calls
# may each build one, and either is equivalent.
_cache_client: Optional[CacheClient] = None


def get_cache_client() -> CacheClient:
    global _cache_client
    client = _cache_client
    if client is None:
        client = CacheClient()
        _cache_client = client
    return client


def set_cache_client(client: Optional[CacheClient]) -> None:
    """Install a specific client (tests, CLI). None drops it so the next call rebuilds."""
    global _cache_client
    _cache_client = client


#
# Read-through wrapper
#

def with_cache(
    producer: Callable[[], T],
    function_name: str,
    input: Any = None,
    ttl_seconds: Optional[int] = None,
) -> T:
    """
    Return producer(), memoized in Redis under make_cache_key(function_name, input).

    Cache hit: the producer is not called. Cache miss or cache failure: the
    producer is called and its result stored for ttl_seconds (default from
    configuration, 7200). Exceptions from the producer propagate and nothing
    is stored. The producer's result must be JSON-serializable.
    """
    config = get_config()
    if not config.cache_enabled:
        return producer()

    ttl = ttl_seconds if ttl_seconds is not None else config.cache_default_ttl
    client = get_cache_client()
    key = make_cache_key(function_name, input)

    read = client.read(key)
    if not read.ok:
        metrics_collector.record_cache_error()
        logger.warning("Cache read failed for %s: %s", key, read.error.message)

    cached = read.unwrap_or(_MISS)
    if cached is not _MISS:
        metrics_collector.record_cache_hit()
        logger.debug("Cache hit %s", key)
        return cached

    metrics_collector.record_cache_miss()
    result = producer()

    written = client.write(key, result, ttl)
    if not written.ok:
        metrics_collector.record_cache_error()
        logger.warning("Cache write failed for %s: %s", key, written.error.message)
    return result


#
# Invalidation
#

def invalidate_cache(pattern: str) -> int:
    """Delete all keys matching pattern (e.g. "cache:getProductDetails:*"). Returns count, 0 on failure."""
    outcome = get_cache_client().delete_pattern(pattern)
    if not outcome.ok:
        metrics_collector.record_cache_error()
        logger.warning("Cache invalidation failed for %s: %s", pattern, outcome.error.message)
    deleted = outcome.value_or(0)
    logger.info("Invalidated %d cache keys matching %s", deleted, pattern)
    return deleted


def clear_function_cache(function_name: str) -> int:
    """Clear all cache entries for one cached operation."""
    return invalidate_cache(f"{KEY_PREFIX}:{function_name}:*")


def clear_all_cache() -> int:
    return invalidate_cache(f"{KEY_PREFIX}:*")


def clear_functions_cache(function_names: Iterable[str]) -> int:
    return sum(clear_function_cache(name) for name in function_names)
