"""
Scheduling and ledger locks.

Two decisions touching the same tutor or the same student must not
interleave their conflict re-check and status write. The lock is taken on
``tutor:{id}`` and ``student:{id}`` keys in sorted order around the whole
decision transaction. Balance rows are guarded the same way on
``wallet:{user}`` and ``course:{student}:{course}`` keys, since SQLite
ignores ``SELECT ... FOR UPDATE``. With Redis configured the keys are
``SET NX`` locks shared across workers; without Redis (or when Redis
errors) an in-process lock registry is used. The database conflict
re-check inside the transaction remains authoritative either way.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Dict, Iterator, List, Optional, Tuple

from redis import Redis
import ulid

from app.core.config import settings
from app.core.exceptions import ConflictException
from app.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()

_LOCAL_LOCKS: Dict[str, threading.Lock] = {}
_LOCAL_REGISTRY_LOCK = threading.Lock()

_POLL_INTERVAL_S = 0.05


class SchedulingBusyException(ConflictException):
    """Raised when another decision holds the tutor's or student's schedule."""

    def __init__(self, key: str):
        super().__init__(
            message="Another scheduling change for this tutor or student is in progress",
            code="SCHEDULING_BUSY",
            details={"lock": key},
        )


def tutor_key(tutor_id: str) -> str:
    return f"tutor:{tutor_id}"


def student_key(student_id: str) -> str:
    return f"student:{student_id}"


def wallet_key(user_id: str) -> str:
    return f"wallet:{user_id}"


def course_ledger_key(student_id: str, course_id: str) -> str:
    return f"course:{student_id}:{course_id}"


def _namespaced_key(key: str) -> str:
    return f"tutordesk:lock:schedule:{key}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if _SYNC_REDIS is not None or not settings.redis_url:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("scheduling_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def _local_lock(key: str) -> threading.Lock:
    with _LOCAL_REGISTRY_LOCK:
        lock = _LOCAL_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _LOCAL_LOCKS[key] = lock
        return lock


class _Held:
    """One acquired key: either a Redis token or a local lock."""

    def __init__(self, key: str, token: Optional[str] = None, local: Optional[threading.Lock] = None):
        self.key = key
        self.token = token
        self.local = local


def _acquire_redis(client: Redis, key: str, ttl_s: int, wait_s: float) -> Optional[str]:
    token = str(ulid.ULID())
    deadline = time.monotonic() + wait_s
    while True:
        if client.set(_namespaced_key(key), token, nx=True, ex=ttl_s):
            return token
        if time.monotonic() >= deadline:
            return None
        time.sleep(_POLL_INTERVAL_S)


def _acquire_one(key: str, ttl_s: int, wait_s: float) -> _Held:
    client = _get_sync_redis()
    if client is not None:
        try:
            token = _acquire_redis(client, key, ttl_s, wait_s)
        except Exception as exc:
            prometheus_metrics.record_scheduling_lock("acquire", "error")
            logger.warning(
                "scheduling_lock_redis_failed",
                extra={"lock": key, "error": str(exc), "error_type": type(exc).__name__},
            )
        else:
            if token is None:
                prometheus_metrics.record_scheduling_lock("acquire", "blocked")
                raise SchedulingBusyException(key)
            prometheus_metrics.record_scheduling_lock("acquire", "success")
            return _Held(key, token=token)
    else:
        prometheus_metrics.record_scheduling_lock("acquire", "redis_unavailable")

    local = _local_lock(key)
    if not local.acquire(timeout=wait_s):
        prometheus_metrics.record_scheduling_lock("acquire", "blocked")
        raise SchedulingBusyException(key)
    return _Held(key, local=local)


def _release_one(held: _Held) -> None:
    if held.local is not None:
        held.local.release()
        prometheus_metrics.record_scheduling_lock("release", "success")
        return
    client = _get_sync_redis()
    if client is None:
        return
    try:
        name = _namespaced_key(held.key)
        if client.get(name) == held.token:
            client.delete(name)
            prometheus_metrics.record_scheduling_lock("release", "success")
        else:
            prometheus_metrics.record_scheduling_lock("release", "expired")
    except Exception as exc:
        prometheus_metrics.record_scheduling_lock("release", "error")
        logger.warning(
            "scheduling_lock_release_failed",
            extra={"lock": held.key, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def scheduling_lock(
    *keys: Optional[str],
    ttl_s: Optional[int] = None,
    wait_s: float = 5.0,
) -> Iterator[Tuple[str, ...]]:
    """
    Hold every given key for the duration of the block.

    Keys are de-duplicated and acquired in sorted order so two callers
    locking the same pair can never deadlock. ``None`` keys are ignored.

    Raises:
        SchedulingBusyException: If a key stays held longer than ``wait_s``
    """
    ordered = tuple(sorted({k for k in keys if k}))
    ttl = ttl_s or settings.scheduling_lock_ttl_seconds
    held: List[_Held] = []
    try:
        for key in ordered:
            held.append(_acquire_one(key, ttl, wait_s))
        yield ordered
    finally:
        for item in reversed(held):
            _release_one(item)
