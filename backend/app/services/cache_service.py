# backend/app/services/cache_service.py
"""
Cache Service for the TutorDesk scheduling engine.

The engine only talks to the small ``CachePort`` protocol (get / set / add /
delete / delete_pattern). ``CacheService`` implements it on Redis with a
circuit breaker, falling back to an in-process dictionary when Redis is not
configured or unreachable. Nothing in the ledger or lifecycle depends on the
cache being present; it only short-circuits availability reads and
deduplicates reminder notifications.
"""

from datetime import datetime, timedelta
from enum import Enum
import fnmatch
import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

import redis
from redis import Redis
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from ..core.config import settings
from .base import BaseService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CachePort(Protocol):
    """Cache operations the engine depends on."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        ...

    def add(self, key: str, value: Any, ttl: int) -> bool:
        """Set only if absent; True when this call stored the value."""
        ...

    def delete(self, key: str) -> bool:
        ...

    def delete_pattern(self, pattern: str) -> int:
        ...


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Circuit breaker for cache resilience.

    Prevents cascading failures when Redis is unavailable.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type[BaseException] = RedisError,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception

        self._failure_count: int = 0
        self._last_failure_time: Optional[datetime] = None
        self._state: CircuitState = CircuitState.CLOSED
        self._lock = threading.Lock()

    @property
    def state(self) -> CircuitState:
        """Get current circuit state."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time:
                time_since_failure = (datetime.now() - self._last_failure_time).total_seconds()
                if time_since_failure >= self.recovery_timeout:
                    self._state = CircuitState.HALF_OPEN
            return self._state

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> Optional[T]:
        """
        Execute function with circuit breaker protection.

        Returns:
            Function result or None if circuit is open
        """
        if self.state == CircuitState.OPEN:
            logger.warning(f"Circuit breaker is OPEN, skipping {func.__name__}")
            return None

        try:
            result = func(*args, **kwargs)
            self._on_success()
            return result
        except self.expected_exception:
            self._on_failure()
            if self.state == CircuitState.CLOSED:
                # Still under threshold, propagate error
                raise
            return None

    def _on_success(self) -> None:
        with self._lock:
            self._failure_count = 0
            if self._state == CircuitState.HALF_OPEN:
                self._state = CircuitState.CLOSED
                logger.info("Circuit breaker recovered, closing circuit")

    def _on_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = datetime.now()

            if self._failure_count >= self.failure_threshold:
                self._state = CircuitState.OPEN
                logger.warning(f"Circuit breaker opened after {self._failure_count} failures")


class CacheService(BaseService):
    """
    Redis-backed cache with an in-memory fallback.

    Values are JSON-serialized in Redis; the in-memory store keeps them as-is.
    """

    DEFAULT_TTL = 300

    def __init__(
        self,
        db: Optional[Session] = None,
        redis_client: Optional[Redis] = None,
        *,
        redis_url: Optional[str] = None,
    ):
        super().__init__(db)  # type: ignore[arg-type]
        self.logger = logging.getLogger(__name__)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=5, recovery_timeout=60, expected_exception=RedisError
        )

        # In-memory fallback
        self._memory_cache: Dict[str, Any] = {}
        self._memory_expiry: Dict[str, datetime] = {}
        self._memory_lock = threading.Lock()

        self.redis: Optional[Redis] = redis_client
        if self.redis is None:
            self._setup_redis_connection(redis_url if redis_url is not None else settings.redis_url)

        self._stats: Dict[str, int] = {"hits": 0, "misses": 0, "sets": 0, "deletes": 0, "errors": 0}

    def _setup_redis_connection(self, url: Optional[str]) -> None:
        """Connect to Redis when configured; otherwise stay in-memory."""
        if not url:
            logger.info("Redis not configured, using in-memory cache")
            return
        try:
            client = redis.from_url(
                url,
                decode_responses=True,
                socket_connect_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30,
            )
            client.ping()
            self.redis = client
            logger.info("Connected to Redis")
        except (RedisError, ConnectionError) as e:
            logger.warning(f"Redis not available: {e}. Using in-memory fallback.")
            self.redis = None

    @property
    def is_memory_backed(self) -> bool:
        return self.redis is None

    # In-memory helpers

    def _memory_get(self, key: str) -> Optional[Any]:
        with self._memory_lock:
            if key not in self._memory_cache:
                return None
            expires_at = self._memory_expiry.get(key)
            if expires_at is not None and datetime.now() >= expires_at:
                del self._memory_cache[key]
                del self._memory_expiry[key]
                return None
            return self._memory_cache[key]

    def _memory_set(self, key: str, value: Any, ttl: int, only_if_absent: bool = False) -> bool:
        with self._memory_lock:
            if only_if_absent and key in self._memory_cache:
                expires_at = self._memory_expiry.get(key)
                if expires_at is None or datetime.now() < expires_at:
                    return False
            self._memory_cache[key] = value
            self._memory_expiry[key] = datetime.now() + timedelta(seconds=ttl)
            return True

    # Core Cache Operations

    @BaseService.measure_operation("cache_get")
    def get(self, key: str) -> Optional[Any]:
        """Get value from cache with circuit breaker protection."""
        redis_client = self.redis

        def _get_from_redis() -> Optional[Any]:
            assert redis_client is not None
            value = redis_client.get(key)
            return json.loads(value) if value is not None else None

        try:
            if redis_client is None:
                value = self._memory_get(key)
            elif self.circuit_breaker.state != CircuitState.OPEN:
                value = self.circuit_breaker.call(_get_from_redis)
            else:
                value = None
        except Exception as e:
            logger.error(f"Cache get error for key {key}: {e}")
            self._stats["errors"] += 1
            return None

        if value is None:
            self._stats["misses"] += 1
        else:
            self._stats["hits"] += 1
        return value

    @BaseService.measure_operation("cache_set")
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        """Set value in cache with circuit breaker protection."""
        redis_client = self.redis
        ttl = ttl or self.DEFAULT_TTL

        def _set_in_redis() -> bool:
            assert redis_client is not None
            redis_client.setex(key, ttl, json.dumps(value, default=str))
            return True

        try:
            if redis_client is None:
                stored = self._memory_set(key, value, ttl)
            elif self.circuit_breaker.state != CircuitState.OPEN:
                stored = bool(self.circuit_breaker.call(_set_in_redis))
            else:
                stored = False
        except Exception as e:
            logger.error(f"Cache set error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

        if stored:
            self._stats["sets"] += 1
        return stored

    @BaseService.measure_operation("cache_add")
    def add(self, key: str, value: Any, ttl: int) -> bool:
        """Store only if the key is absent (SET NX). Returns True when stored."""
        redis_client = self.redis

        def _add_in_redis() -> bool:
            assert redis_client is not None
            return bool(redis_client.set(key, json.dumps(value, default=str), nx=True, ex=ttl))

        try:
            if redis_client is None:
                return self._memory_set(key, value, ttl, only_if_absent=True)
            if self.circuit_breaker.state == CircuitState.OPEN:
                return False
            return bool(self.circuit_breaker.call(_add_in_redis))
        except Exception as e:
            logger.error(f"Cache add error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

    @BaseService.measure_operation("cache_delete")
    def delete(self, key: str) -> bool:
        """Delete a key from cache with circuit breaker protection."""
        redis_client = self.redis

        def _delete_from_redis() -> bool:
            assert redis_client is not None
            return bool(redis_client.delete(key))

        try:
            if redis_client is None:
                with self._memory_lock:
                    result = key in self._memory_cache
                    self._memory_cache.pop(key, None)
                    self._memory_expiry.pop(key, None)
            elif self.circuit_breaker.state != CircuitState.OPEN:
                result = bool(self.circuit_breaker.call(_delete_from_redis))
            else:
                result = False
        except Exception as e:
            logger.error(f"Cache delete error for key {key}: {e}")
            self._stats["errors"] += 1
            return False

        if result:
            self._stats["deletes"] += 1
        return result

    @BaseService.measure_operation("cache_delete_pattern")
    def delete_pattern(self, pattern: str) -> int:
        """Delete all keys matching a glob pattern."""
        try:
            if self.redis:
                count = 0
                for key in self.redis.scan_iter(match=pattern):
                    if self.redis.delete(key):
                        count += 1
            else:
                with self._memory_lock:
                    keys = [k for k in self._memory_cache if fnmatch.fnmatch(k, pattern)]
                    for key in keys:
                        self._memory_cache.pop(key, None)
                        self._memory_expiry.pop(key, None)
                    count = len(keys)

            self._stats["deletes"] += count
            logger.debug(f"Deleted {count} keys matching pattern: {pattern}")
            return count
        except Exception as e:
            logger.error(f"Cache delete pattern error: {e}")
            self._stats["errors"] += 1
            return 0

    def get_stats(self) -> Dict[str, Any]:
        total = self._stats["hits"] + self._stats["misses"]
        return {
            **self._stats,
            "hit_rate": (self._stats["hits"] / total) if total else 0.0,
            "backend": "memory" if self.redis is None else "redis",
            "circuit_state": self.circuit_breaker.state.value,
        }


_shared_cache: Optional[CacheService] = None
_shared_cache_lock = threading.Lock()


def get_cache_service() -> CacheService:
    """Process-wide cache instance (the in-memory fallback must be shared to be useful)."""
    global _shared_cache
    if _shared_cache is None:
        with _shared_cache_lock:
            if _shared_cache is None:
                _shared_cache = CacheService()
    return _shared_cache
